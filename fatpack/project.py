"""
Project metadata: the launch descriptor and the `fatpack.yaml` project model.

The project file stands in for the host build tool. It supplies the primary
artifact, the dependency records and the launch settings that the packaging
and orchestration layers consume.
"""
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fatpack.config import effective_settings as config
from fatpack.dependencies import DependencyCoordinate, DependencyRecord
from fatpack.errors import PreconditionError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LaunchDescriptor:
    """The resolved configuration describing how to start the application."""
    launcher: str = config.DEFAULT_LAUNCHER
    application_unit: Optional[str] = None
    redeploy: bool = False
    redeploy_patterns: Tuple[str, ...] = ()
    config_path: Optional[Path] = None
    work_directory: Path = field(default_factory=Path.cwd)
    fork: bool = False
    base_directory: Path = field(default_factory=Path.cwd)
    start_grace_timeout: float = config.PROCESS_START_GRACE_TIMEOUT


@dataclass(frozen=True)
class ProjectModel:
    """Project metadata as read from `fatpack.yaml`."""
    name: str
    base_directory: Path
    primary_artifact: Optional[Path]
    build_directory: Path
    output_directory: Optional[Path]
    resource_directories: Tuple[Path, ...]
    dependencies: Tuple[DependencyRecord, ...]
    launch: LaunchDescriptor
    service_relocator: Optional[str] = None
    repository: Optional[Path] = None
    remote_repositories: Tuple[str, ...] = ()
    final_name: Optional[str] = None

    @property
    def base_name(self) -> str:
        """Base name of the fat archive, e.g. `demo` for `demo-fat.pyz`."""
        if self.final_name:
            return self.final_name
        if self.primary_artifact is not None:
            return self.primary_artifact.stem
        return self.name


def _path(base: Path, value: Any) -> Optional[Path]:
    if value in (None, ""):
        return None
    path = Path(str(value)).expanduser()
    return path if path.is_absolute() else base / path


def _dependency_records(entries: List[Any]) -> Tuple[DependencyRecord, ...]:
    records = []
    for entry in entries or []:
        if isinstance(entry, str):
            records.append(DependencyRecord(DependencyCoordinate.parse(entry)))
            continue
        if "coordinate" in entry:
            coordinate = DependencyCoordinate.parse(entry["coordinate"])
        else:
            try:
                coordinate = DependencyCoordinate(
                    entry["group"], entry["name"], str(entry["version"]),
                    entry.get("type", config.DEFAULT_DEPENDENCY_TYPE), entry.get("classifier"),
                )
            except KeyError as e:
                raise PreconditionError(f"Dependency entry {entry} is missing {e}") from e
        records.append(DependencyRecord(coordinate, entry.get("scope", "compile"), bool(entry.get("direct", True))))
    return tuple(records)


def project_from_dict(data: Dict[str, Any], base_directory: Path) -> ProjectModel:
    """
    Builds a project model from the parsed project document.

    Relative paths are resolved against `base_directory`.
    """
    base = Path(base_directory).resolve()
    if not data.get("name"):
        raise PreconditionError("Project descriptor must define a 'name'.")

    work_directory = _path(base, data.get("work_directory")) or base
    launch = LaunchDescriptor(
        launcher=data.get("launcher") or config.DEFAULT_LAUNCHER,
        application_unit=data.get("application_unit"),
        redeploy=bool(data.get("redeploy", False)),
        redeploy_patterns=tuple(data.get("redeploy_patterns") or ()),
        config_path=_path(base, data.get("config")),
        work_directory=work_directory,
        fork=bool(data.get("fork", False)),
        base_directory=base,
        start_grace_timeout=float(data.get("start_grace_timeout", config.PROCESS_START_GRACE_TIMEOUT)),
    )

    relocator = data.get("service_relocator")
    if relocator is not None and relocator not in config.SERVICE_RELOCATOR_MODES:
        raise PreconditionError(
            f"Unsupported service relocator '{relocator}'. Supported: {', '.join(sorted(config.SERVICE_RELOCATOR_MODES))}"
        )

    return ProjectModel(
        name=data["name"],
        base_directory=base,
        primary_artifact=_path(base, data.get("primary_artifact")),
        build_directory=_path(base, data.get("build_directory")) or base / "build",
        output_directory=_path(base, data.get("output_directory")),
        resource_directories=tuple(_path(base, d) for d in data.get("resource_directories") or ()),
        dependencies=_dependency_records(data.get("dependencies")),
        launch=launch,
        service_relocator=relocator,
        repository=_path(base, data.get("repository")),
        remote_repositories=tuple(data.get("remote_repositories") or ()),
        final_name=data.get("final_name"),
    )


def load_project(project_file: Path) -> ProjectModel:
    """
    Loads the project model from a YAML project file.

    :param project_file: Path to `fatpack.yaml`.
    :raises PreconditionError: If the file is missing or malformed.
    """
    project_file = Path(project_file)
    if not project_file.is_file():
        raise PreconditionError(f"Project file not found: {project_file}")
    try:
        data = yaml.safe_load(project_file.read_text(encoding="utf-8")) or {}
    except (yaml.YAMLError, OSError) as e:
        raise PreconditionError(f"Unable to read project file '{project_file}': {e}") from e
    if not isinstance(data, dict):
        raise PreconditionError(f"Project file '{project_file}' must contain a mapping.")

    log.debug(f"Loaded project descriptor from {project_file}")
    return project_from_dict(data, project_file.parent)
