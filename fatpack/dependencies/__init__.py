"""
The dependency package.
Models dependency coordinates and resolves them to local archive files.
"""
from .coordinates import DependencyCoordinate, DependencyRecord
from .repository import LocalRepository
from .resolver import classpath, present_paths, resolve, split_direct_and_transitive

__all__ = [
    "DependencyCoordinate", "DependencyRecord", "LocalRepository",
    "classpath", "present_paths", "resolve", "split_direct_and_transitive",
]
