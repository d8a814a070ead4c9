"""Transport primitives used by locations.

Locations never talk to git or HTTP directly; they go through these narrow
interfaces so tests can swap in fakes:

- ``GitTransport``: ``ls_remote``, ``clone``, ``checkout``, ``rev_parse``
- ``IndexTransport`` / ``ApiTransport``: ``fetch_index``, ``download``

Every call takes a caller-controlled timeout; expiry raises ``TransportError``.
"""
from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from larder.common.http_client import download_file, get_json
from larder.common.logging_utils import extra_context, is_debug_enabled, redact, Timer
from larder.constants import Constants
from larder.errors import GitNotFound, NotFound, TransportError
from larder.locations.specs import ApiSpec, IndexSpec

logger = logging.getLogger(__name__)

COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")


class GitTransport:
    """Runs git as a subprocess."""

    def __init__(self, timeout: float = Constants.GIT_TIMEOUT, executable: str = "git") -> None:
        self.timeout = timeout
        self.executable = executable

    def ls_remote(self, uri: str, ref: Optional[str] = None) -> Optional[str]:
        """Resolve ``ref`` (default: HEAD) to a commit without cloning.

        Returns:
            The 40-char commit, or None when the ref can only be resolved from
            a clone (abbreviated commits).

        Raises:
            NotFound: If the remote does not know the ref.
        """
        if ref and COMMIT_PATTERN.fullmatch(ref):
            return ref
        wanted = ref or "HEAD"
        output = self._run(["ls-remote", uri, wanted])
        refs: Dict[str, str] = {}
        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2:
                refs[parts[1]] = parts[0]
        for candidate in (
            wanted,
            f"refs/heads/{wanted}",
            f"refs/tags/{wanted}^{{}}",
            f"refs/tags/{wanted}",
        ):
            if candidate in refs:
                return refs[candidate]
        if refs:
            return next(iter(refs.values()))
        if ref and re.fullmatch(r"[0-9a-f]{7,39}", ref):
            return None
        raise NotFound(f"Unable to resolve git ref '{wanted}' at {uri}", context={"uri": uri, "ref": wanted})

    def clone(self, uri: str, destination: Path, ref: Optional[str] = None) -> str:
        """Clone ``uri`` into ``destination``, check out ``ref`` and return the revision."""
        self._run(["clone", "--quiet", uri, str(destination)])
        if ref:
            self.checkout(destination, ref)
        return self.rev_parse(destination)

    def checkout(self, repo_dir: Path, ref: str) -> None:
        self._run(["checkout", "--quiet", ref], cwd=repo_dir)

    def rev_parse(self, repo_dir: Path, ref: str = "HEAD") -> str:
        return self._run(["rev-parse", ref], cwd=repo_dir)

    def _run(self, argv: List[str], cwd: Optional[Path] = None) -> str:
        if shutil.which(self.executable) is None:
            raise GitNotFound()
        command = [self.executable, *argv]
        with Timer() as t:
            try:
                completed = subprocess.run(
                    command,
                    cwd=str(cwd) if cwd else None,
                    check=False,
                    text=True,
                    capture_output=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as exc:
                raise TransportError(
                    f"git {argv[0]} timed out after {self.timeout} seconds",
                    context={"argv": redact(" ".join(command))},
                ) from exc
        if is_debug_enabled(logger):
            logger.debug(
                "git command finished",
                extra=extra_context(
                    event="git",
                    component="git_transport",
                    action=argv[0],
                    returncode=completed.returncode,
                    duration_ms=t.duration_ms(),
                ),
            )
        if completed.returncode != 0:
            raise TransportError(
                f"An error occurred during Git execution: git {argv[0]} failed",
                hint="Inspect the repository URI and ref.",
                context={"argv": redact(" ".join(command)), "stderr": completed.stderr.strip()},
            )
        return completed.stdout.strip()


class IndexTransport:
    """Community index API.

    ``GET {endpoint}/cookbooks/{name}`` lists version URLs ending in
    ``1_2_3``; ``GET {endpoint}/cookbooks/{name}/versions/1_2_3`` returns a
    document whose ``file`` field is the archive URL.
    """

    context = "index"

    def __init__(self, spec: IndexSpec, timeout: float = Constants.REQUEST_TIMEOUT) -> None:
        self.spec = spec
        self.timeout = timeout

    def fetch_index(self, name: str) -> List[str]:
        data = get_json(f"{self.spec.endpoint}/cookbooks/{name}", context=self.context, timeout=self.timeout)
        urls = data.get("versions", []) if isinstance(data, dict) else []
        return [str(url).rstrip("/").split("/")[-1].replace("_", ".") for url in urls]

    def download(self, name: str, version: str, destination_dir: Path) -> Path:
        slug = version.replace(".", "_")
        info = get_json(
            f"{self.spec.endpoint}/cookbooks/{name}/versions/{slug}",
            context=self.context,
            timeout=self.timeout,
        )
        file_url = info.get("file") if isinstance(info, dict) else None
        if not file_url:
            raise NotFound(f"{name} {version} has no archive at {self.spec}", name=name)
        return download_file(
            file_url,
            Path(destination_dir) / f"{name}-{version}.tar.gz",
            context=self.context,
            timeout=self.timeout,
        )


class ApiTransport:
    """Private package server.

    ``GET {endpoint}/cookbooks/{name}`` answers
    ``{name: {"versions": [{"version": "1.2.3"}, ...]}}`` and
    ``GET {endpoint}/cookbooks/{name}/{version}/download`` serves the archive.
    """

    context = "api"

    def __init__(self, spec: ApiSpec, timeout: float = Constants.REQUEST_TIMEOUT) -> None:
        self.spec = spec
        self.timeout = timeout

    def _auth(self) -> Dict[str, str]:
        return self.spec.credentials.headers() if self.spec.credentials else {}

    def fetch_index(self, name: str) -> List[str]:
        data = get_json(
            f"{self.spec.endpoint}/cookbooks/{name}",
            context=self.context,
            timeout=self.timeout,
            headers=self._auth(),
        )
        entry = data.get(name, {}) if isinstance(data, dict) else {}
        return [str(item["version"]) for item in entry.get("versions", []) if "version" in item]

    def download(self, name: str, version: str, destination_dir: Path) -> Path:
        return download_file(
            f"{self.spec.endpoint}/cookbooks/{name}/{version}/download",
            Path(destination_dir) / f"{name}-{version}.tar.gz",
            context=self.context,
            timeout=self.timeout,
            headers=self._auth(),
        )
