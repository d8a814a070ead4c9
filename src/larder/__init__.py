"""larder: resolve, cache and lock cookbook dependencies."""

from larder.config import Config
from larder.errors import LarderError
from larder.installer import Installer, InstallResult, LockState, Reconciler, install
from larder.manifest import Manifest
from larder.resolver import Downloader, ResolutionGraph, Resolver
from larder.store import PackageStore

__version__ = "0.4.0"

__all__ = [
    "Config",
    "Downloader",
    "InstallResult",
    "Installer",
    "LarderError",
    "LockState",
    "Manifest",
    "PackageStore",
    "Reconciler",
    "ResolutionGraph",
    "Resolver",
    "install",
]
