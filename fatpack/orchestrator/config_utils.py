import json
import yaml
import logging
from pathlib import Path
from typing import Optional

from fatpack.config import effective_settings as config
from fatpack.errors import PreconditionError
from fatpack.project import ProjectModel

log = logging.getLogger(__name__)


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in (".yml", ".yaml")


def convert_yaml_to_json(yaml_path: Path, json_path: Path) -> Path:
    """
    Converts a YAML configuration document to JSON.

    :raises PreconditionError: If the document cannot be read, parsed or written.
    """
    try:
        document = yaml.safe_load(Path(yaml_path).read_text(encoding="utf-8"))
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(json.dumps(document if document is not None else {}, indent=2), encoding="utf-8")
    except (yaml.YAMLError, OSError, TypeError) as e:
        raise PreconditionError(f"Error loading and converting configuration file: {yaml_path}") from e
    log.debug(f"Converted {yaml_path} to {json_path}")
    return json_path


def discover_config(base_directory: Path) -> Optional[Path]:
    """Returns the first JSON or YAML document in `<base>/conf`, if any."""
    conf_dir = Path(base_directory) / config.CONFIG_DIR_NAME
    if not conf_dir.is_dir():
        return None
    candidates = sorted(p for pattern in config.CONFIG_FILE_PATTERNS for p in conf_dir.glob(pattern) if p.is_file())
    return candidates[0] if candidates else None


def resolve_config(config_path: Optional[Path], base_directory: Path, build_directory: Path) -> Optional[Path]:
    """
    Determines the configuration file handed to the launcher.

    An explicit path wins when it exists; otherwise `<base>/conf` is scanned.
    YAML documents are converted to `<build>/conf/application.json`.
    """
    candidate = Path(config_path) if config_path is not None and Path(config_path).is_file() else None
    if candidate is None:
        candidate = discover_config(base_directory)
    if candidate is None:
        return None
    if _is_yaml(candidate):
        return convert_yaml_to_json(candidate, Path(build_directory) / config.CONFIG_DIR_NAME / config.CONFIG_FILE_JSON)
    return candidate


def check_configuration(project: ProjectModel) -> bool:
    """
    Validates that the paths named by the project exist.

    :return: True if all required paths are found, otherwise False.
    """
    log.info("Performing configuration and path validation...")
    all_ok = True
    checks = {
        "Primary artifact": project.primary_artifact,
        "Sources directory": project.output_directory,
        "Working directory": project.launch.work_directory,
        "Python executable": Path(config.PYTHON_EXECUTABLE),
    }
    for index, resource_dir in enumerate(project.resource_directories):
        checks[f"Resource directory #{index + 1}"] = resource_dir

    for name, path in checks.items():
        if path is None:
            log.info(f"Config Check SKIPPED: {name} not configured")
        elif not path.exists():
            log.error(f"CONFIG CHECK FAILED: {name} not found at '{path}'")
            all_ok = False
        else:
            log.info(f"Config Check OK: Found {name} at '{path}'")
    return all_ok
