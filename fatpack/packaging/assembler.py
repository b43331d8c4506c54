import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from string import Template
from typing import Dict, Tuple

from fatpack.config import effective_settings as config
from fatpack.errors import AssemblyError, PreconditionError
from fatpack.packaging.archive import Archive
from fatpack.project import LaunchDescriptor

log = logging.getLogger(__name__)

# Written as `__main__.py` so the archive runs with `python app-fat.pyz`.
MAIN_MODULE_TEMPLATE = Template('''\
"""Runs the entry point named in the archive manifest."""
import os
import sys
import zipfile
import importlib


def _read_manifest(archive):
    with zipfile.ZipFile(archive) as zf:
        lines = zf.read("$manifest_path").decode("utf-8").splitlines()
    attributes = {}
    for line in lines:
        key, sep, value = line.partition(":")
        if sep:
            attributes[key.strip()] = value.strip()
    return attributes


def main():
    archive = os.path.dirname(os.path.abspath(__file__))
    attributes = _read_manifest(archive)
    module_name, _, attr = attributes["$entrypoint_key"].partition(":")
    entrypoint = getattr(importlib.import_module(module_name), attr or "main")
    args = sys.argv[1:]
    unit = attributes.get("$unit_key")
    if not args:
        args = ["$run_command", unit] if unit else ["$run_command"]
    return entrypoint(args)


if __name__ == "__main__":
    sys.exit(main())
''')


@dataclass(frozen=True)
class AssemblyRequest:
    """Everything needed to assemble one fat archive."""
    primary_artifact: Path
    output_directory: Path
    base_name: str
    launch: LaunchDescriptor = field(default_factory=LaunchDescriptor)
    direct_dependencies: Tuple[Path, ...] = ()
    transitive_dependencies: Tuple[Path, ...] = ()

    @property
    def target(self) -> Path:
        file_name = f"{self.base_name}{config.FAT_ARCHIVE_SUFFIX}.{config.FAT_ARCHIVE_EXTENSION}"
        return Path(self.output_directory) / file_name


def manifest_attributes(launch: LaunchDescriptor) -> Dict[str, str]:
    attributes = {config.MANIFEST_MAIN_ENTRYPOINT: launch.launcher}
    # Custom launchers may deploy the application themselves.
    if launch.application_unit:
        attributes[config.MANIFEST_MAIN_APPLICATION_UNIT] = launch.application_unit
    return attributes


def main_module_source() -> bytes:
    return MAIN_MODULE_TEMPLATE.substitute(
        manifest_path=config.MANIFEST_PATH,
        entrypoint_key=config.MANIFEST_MAIN_ENTRYPOINT,
        unit_key=config.MANIFEST_MAIN_APPLICATION_UNIT,
        run_command=config.LAUNCHER_COMMAND_RUN,
    ).encode("utf-8")


def assemble(request: AssemblyRequest) -> Path:
    """
    Merges the primary artifact and its dependencies into one executable archive.

    Entries are imported from the primary artifact, then the direct and the
    transitive dependencies in order; a later entry at the same path replaces
    an earlier one. The manifest and the `__main__.py` bootstrap are written last.

    :param request: The assembly inputs.
    :return: The path of the exported `{base_name}-fat.pyz`.
    :raises PreconditionError: If the primary artifact does not exist.
    :raises AssemblyError: If an input cannot be read or the archive cannot be written.
    """
    primary = Path(request.primary_artifact)
    if not primary.is_file():
        raise PreconditionError(f"No primary artifact found at '{primary}'. Build the project before packaging.")

    target = request.target
    log.info(f"Assembling fat archive {target.name} from {primary.name}")

    archive = Archive()
    try:
        archive.import_from(primary)
        for dependency in (*request.direct_dependencies, *request.transitive_dependencies):
            log.debug(f"Adding dependency: {dependency}")
            archive.import_from(dependency)
    except (OSError, zipfile.BadZipFile) as e:
        raise AssemblyError(target, e) from e

    archive.set_manifest(manifest_attributes(request.launch))
    archive.add(config.ARCHIVE_MAIN_MODULE, main_module_source())

    archive.export(target)
    log.info(f"Fat archive written to {target} ({len(archive)} entries)")
    return target
