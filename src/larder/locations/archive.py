"""Extraction of downloaded package archives."""

from __future__ import annotations

import logging
import tarfile
from pathlib import Path

from larder.errors import NotFound
from larder.store.package import has_descriptor

logger = logging.getLogger(__name__)


def extract_archive(archive: Path, destination: Path) -> None:
    """Unpack a tar.gz archive into ``destination``.

    Members escaping the destination or carrying special files are refused by
    the ``data`` extraction filter.

    Raises:
        NotFound: If the archive is unreadable.
    """
    try:
        with tarfile.open(str(archive)) as tf:
            tf.extractall(path=str(destination), filter="data")  # noqa: S202
    except (tarfile.TarError, OSError) as exc:
        raise NotFound(
            f"Unable to extract archive {Path(archive).name}: {exc}",
            context={"archive": str(archive)},
        ) from exc


def package_root(extracted: Path, name: str) -> Path:
    """Locate the package directory inside an extracted archive.

    Archives either hold the package at top level or inside a single wrapping
    directory (usually named after the package).

    Raises:
        NotFound: If no descriptor can be found.
    """
    extracted = Path(extracted)
    if has_descriptor(extracted):
        return extracted
    named = extracted / name
    if has_descriptor(named):
        return named
    subdirs = [p for p in extracted.iterdir() if p.is_dir()]
    if len(subdirs) == 1 and has_descriptor(subdirs[0]):
        return subdirs[0]
    raise NotFound(
        f"The archive for '{name}' does not contain a package descriptor.",
        name=name,
        context={"path": str(extracted)},
    )
