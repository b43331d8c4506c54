"""
The packaging package.
Builds the executable fat archive and merges service registries into it.
"""
from .archive import Archive, read_manifest
from .assembler import AssemblyRequest, assemble
from .services import merge_service_registries, relocate_service_interfaces

__all__ = [
    "Archive", "AssemblyRequest", "assemble", "read_manifest",
    "merge_service_registries", "relocate_service_interfaces",
]
