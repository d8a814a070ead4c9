"""Filesystem-backed, content-addressed package store.

Layout under the store root::

    packages/<name>-<version|revision>/   materialized packages
    tmp/                                  private scratch directories
    locks/<name>-<identity>.lock          per-destination insertion locks

A package only becomes visible under ``packages/`` through an atomic rename of
a fully written and validated scratch directory.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

try:
    import fcntl  # type: ignore
except ImportError:  # pragma: no cover - non-POSIX platforms
    fcntl = None  # type: ignore

from larder.common.logging_utils import extra_context
from larder.constants import Constants
from larder.errors import ValidationFailure
from larder.locations.specs import LocationSpec, spec_from_dict
from larder.store.package import CachedPackage

logger = logging.getLogger(__name__)


class PackageStore:
    """Cache of previously fetched packages keyed by (name, version or revision)."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).expanduser()
        self.storage_path = self.root / Constants.PACKAGES_DIR
        self.tmp_path = self.root / Constants.TMP_DIR
        self.locks_path = self.root / Constants.LOCKS_DIR
        for directory in (self.storage_path, self.tmp_path, self.locks_path):
            directory.mkdir(parents=True, exist_ok=True)
        self._guard = threading.Lock()
        self._thread_locks: Dict[str, threading.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def path_for(self, name: str, identity: str) -> Path:
        return self.storage_path / f"{name}-{identity}"

    def contains(self, name: str, identity: str) -> bool:
        return self.path_for(name, identity).is_dir()

    def get(self, name: str, identity: str) -> Optional[CachedPackage]:
        """Return the cached package, or None when it has not been materialized.

        Raises:
            ValidationFailure: If the cached directory fails validation.
        """
        path = self.path_for(name, identity)
        if not path.is_dir():
            return None
        origin, revision = self._read_origin(path)
        if origin is None:
            logger.warning("Ignoring cache entry without origin record: %s", path)
            return None
        return self._load(name, path, origin, revision)

    def packages(self, name: Optional[str] = None) -> List[CachedPackage]:
        """List every cached package, optionally restricted to one name."""
        found = []
        for path in sorted(self.storage_path.iterdir()):
            if not path.is_dir():
                continue
            origin, revision = self._read_origin(path)
            if origin is None:
                continue
            pkg = self._load(None, path, origin, revision)
            if name is None or pkg.name == name:
                found.append(pkg)
        return found

    def mkscratch(self, prefix: str = "scratch-") -> Path:
        """Create a private scratch directory inside the store."""
        self.tmp_path.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=prefix, dir=str(self.tmp_path)))

    @contextlib.contextmanager
    def scratch(self, prefix: str = "scratch-") -> Iterator[Path]:
        """Yield a scratch directory that is always removed afterwards."""
        path = self.mkscratch(prefix)
        try:
            yield path
        finally:
            if path.exists():
                shutil.rmtree(path, ignore_errors=True)

    @contextlib.contextmanager
    def lock(self, name: str, identity: str) -> Iterator[None]:
        """Hold the exclusive insertion lock for one destination.

        The in-process lock and the lock file are dropped once the last holder
        releases them.
        """
        key = f"{name}-{identity}"
        with self._guard:
            thread_lock = self._thread_locks.setdefault(key, threading.Lock())
            self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            with thread_lock:
                if fcntl is None:
                    yield
                else:
                    with self._file_lock(self.locks_path / f"{key}.lock"):
                        yield
        finally:
            with self._guard:
                self._lock_users[key] -= 1
                if not self._lock_users[key]:
                    del self._lock_users[key]
                    del self._thread_locks[key]

    @staticmethod
    @contextlib.contextmanager
    def _file_lock(path: Path) -> Iterator[None]:
        while True:
            lf = path.open("a+", encoding="utf-8")
            fcntl.flock(lf.fileno(), fcntl.LOCK_EX)
            try:
                current = os.stat(path).st_ino == os.fstat(lf.fileno()).st_ino
            except FileNotFoundError:
                current = False
            if current:
                break
            # unlinked by the previous holder while we waited
            lf.close()
        try:
            yield
        finally:
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
            fcntl.flock(lf.fileno(), fcntl.LOCK_UN)
            lf.close()

    def insert(
        self,
        name: str,
        identity: str,
        scratch_dir: Path,
        origin: LocationSpec,
        revision: Optional[str] = None,
    ) -> CachedPackage:
        """Validate ``scratch_dir`` and move it into the store atomically.

        When another writer already inserted the same destination, the scratch
        copy is discarded and the existing package is returned.

        Raises:
            ValidationFailure: If the scratch content is not a valid package
                named ``name``.
        """
        scratch_dir = Path(scratch_dir)
        final = self.path_for(name, identity)
        with self.lock(name, identity):
            if final.is_dir():
                logger.debug(
                    "Package already cached; discarding scratch copy",
                    extra=extra_context(event="store_hit", component="store", target=str(final)),
                )
                shutil.rmtree(scratch_dir, ignore_errors=True)
                return self.get(name, identity) or self._load(name, final, origin, revision)

            candidate = CachedPackage.from_path(scratch_dir, origin, revision)
            if candidate.name != name:
                raise ValidationFailure(
                    f"Package at {origin} is named '{candidate.name}', expected '{name}'.",
                    context={"name": name, "found": candidate.name},
                )
            self._write_origin(scratch_dir, origin, revision)
            try:
                os.rename(scratch_dir, final)
            except OSError:
                if not final.is_dir():
                    raise
                shutil.rmtree(scratch_dir, ignore_errors=True)
            logger.info("Cached %s (%s) at %s", name, identity, final)
        return self._load(name, final, origin, revision)

    def clear(self) -> None:
        """Remove every cached package and scratch directory."""
        for directory in (self.storage_path, self.tmp_path):
            if directory.exists():
                shutil.rmtree(directory)
            directory.mkdir(parents=True, exist_ok=True)

    def _load(self, name: Optional[str], path: Path, origin: LocationSpec,
              revision: Optional[str]) -> CachedPackage:
        pkg = CachedPackage.from_path(path, origin, revision)
        if name is not None and pkg.name != name:
            raise ValidationFailure(
                f"Cache entry {path} holds '{pkg.name}', expected '{name}'.",
                hint="Clear the store and fetch again.",
                context={"path": str(path)},
            )
        return pkg

    def _write_origin(self, path: Path, origin: LocationSpec, revision: Optional[str]) -> None:
        payload = {"origin": origin.to_dict(), "revision": revision}
        (path / Constants.ORIGIN_FILE).write_text(
            json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8"
        )

    def _read_origin(self, path: Path):
        record = path / Constants.ORIGIN_FILE
        try:
            payload = json.loads(record.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError):
            return None, None
        return spec_from_dict(payload["origin"]), payload.get("revision")
