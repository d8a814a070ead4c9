"""Lockfile parser and serializer.

The on-disk form is pretty-printed JSON with sorted keys and entries sorted by
name, so serializing a parsed lockfile reproduces it byte for byte::

    {
      "entries": [
        {
          "locked_version": "1.2.0",
          "name": "nginx",
          "origin": {"endpoint": "https://supermarket.chef.io/api/v1", "kind": "index"}
        }
      ],
      "manifest_digest": "<sha256>",
      "version": 1
    }
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

from larder.common.schema import LOCKFILE_SCHEMA, first_error
from larder.constants import Constants
from larder.errors import InvalidVersionConstraint, LockfileError
from larder.locations.specs import spec_from_dict
from larder.lockfile.model import LockEntry, Lockfile
from larder.versioning.parser import parse_version

logger = logging.getLogger(__name__)


def serialize_lockfile(lockfile: Lockfile) -> str:
    payload = {
        "version": lockfile.version,
        "manifest_digest": lockfile.manifest_digest,
        "entries": [
            {
                "name": entry.name,
                "locked_version": str(entry.locked_version),
                "origin": entry.origin.to_dict(),
            }
            for entry in sorted(lockfile.entries, key=lambda e: e.name)
        ],
    }
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def parse_lockfile(raw: str) -> Lockfile:
    """Parse lockfile text.

    Raises:
        LockfileError: On invalid JSON, schema violations, unknown format
            versions or duplicate names.
    """
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LockfileError("Invalid lockfile JSON.", hint=str(exc)) from exc

    problem = first_error(LOCKFILE_SCHEMA, payload)
    if problem:
        raise LockfileError(f"Invalid lockfile: {problem}")
    version = payload["version"]
    if version != Constants.LOCKFILE_FORMAT_VERSION:
        raise LockfileError(
            f"Unsupported lockfile format version {version}.",
            hint="Delete the lockfile and install again to regenerate it.",
            context={"version": version},
        )
    entries = [_parse_entry(item) for item in payload["entries"]]
    return Lockfile(manifest_digest=payload["manifest_digest"], entries=entries, version=version)


def read_lockfile(path: Union[str, Path]) -> Optional[Lockfile]:
    """Read the lockfile at ``path``; None when it does not exist."""
    lock_path = Path(path)
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("No lockfile at %s", lock_path)
        return None
    return parse_lockfile(raw)


def write_lockfile(lockfile: Lockfile, path: Union[str, Path]) -> Path:
    """Write ``lockfile`` through a temporary sibling replaced in one step."""
    lock_path = Path(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{lock_path.name}-", dir=str(lock_path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(serialize_lockfile(lockfile))
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, lock_path)
    finally:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
    logger.info("Wrote lockfile %s (%d entries)", lock_path, len(lockfile))
    return lock_path


def _parse_entry(item: Dict[str, Any]) -> LockEntry:
    try:
        version = parse_version(item["locked_version"])
    except InvalidVersionConstraint as exc:
        raise LockfileError(
            f"Invalid locked version for '{item['name']}': {exc.message}",
            context={"name": item["name"]},
        ) from exc
    return LockEntry(name=item["name"], locked_version=version, origin=spec_from_dict(item["origin"]))
