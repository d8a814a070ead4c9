"""Lockfile model and JSON serialization."""

from .io import parse_lockfile, read_lockfile, serialize_lockfile, write_lockfile
from .model import LockEntry, Lockfile

__all__ = [
    "LockEntry",
    "Lockfile",
    "parse_lockfile",
    "read_lockfile",
    "serialize_lockfile",
    "write_lockfile",
]
