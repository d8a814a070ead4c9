"""Dependency resolution."""

from .downloader import Downloader
from .graph import Demand, ResolutionGraph
from .resolver import Resolver

__all__ = ["Demand", "Downloader", "ResolutionGraph", "Resolver"]
