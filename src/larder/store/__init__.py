"""Content-addressed on-disk package store."""

from .package import CachedPackage, Descriptor, checksum_tree, read_descriptor
from .store import PackageStore

__all__ = ["CachedPackage", "Descriptor", "PackageStore", "checksum_tree", "read_descriptor"]
