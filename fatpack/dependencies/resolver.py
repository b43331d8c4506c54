import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from fatpack.dependencies.coordinates import DependencyCoordinate, DependencyRecord
from fatpack.errors import ResolutionError

log = logging.getLogger(__name__)


def resolve(records: Iterable[DependencyRecord], service) -> Dict[DependencyCoordinate, Optional[Path]]:
    """
    Resolves the compile and runtime scoped dependencies to local files.

    A coordinate the service cannot resolve is recorded as None rather than
    aborting the batch; the rest of the dependencies can still be packaged.

    :param records: The declared and transitive dependency records, in declared order.
    :param service: Any object with a `resolve(coordinate) -> Path` method raising `ResolutionError`.
    :return: An ordered mapping of coordinate to resolved path, or None on failure.
    """
    resolved: Dict[DependencyCoordinate, Optional[Path]] = {}
    for record in records:
        if not record.is_packaged:
            log.debug(f"Skipping {record.coordinate} with scope '{record.scope}'")
            continue
        if record.coordinate in resolved:
            continue
        try:
            resolved[record.coordinate] = service.resolve(record.coordinate)
            log.debug(f"Resolved {record.coordinate} -> {resolved[record.coordinate]}")
        except ResolutionError as e:
            log.debug(f"Unable to resolve {record.coordinate}: {e}")
            resolved[record.coordinate] = None
    return resolved


def present_paths(resolved: Dict[DependencyCoordinate, Optional[Path]]) -> List[Path]:
    """Filters out absent resolutions, preserving order and dropping duplicate paths."""
    paths: List[Path] = []
    for path in resolved.values():
        if path is not None and path not in paths:
            paths.append(path)
    return paths


def split_direct_and_transitive(records: Iterable[DependencyRecord], service) -> Tuple[List[Path], List[Path]]:
    """
    Resolves the records and splits the present paths into direct and transitive lists.

    A path already listed as direct is not repeated in the transitive list.

    :return: A tuple of (direct dependency paths, transitive dependency paths).
    """
    records = list(records)
    direct = present_paths(resolve((r for r in records if r.direct), service))
    transitive = [
        p for p in present_paths(resolve((r for r in records if not r.direct), service))
        if p not in direct
    ]
    return direct, transitive


def classpath(output_directory: Optional[Path], resource_directories: Iterable[Path],
              direct: Iterable[Path], transitive: Iterable[Path]) -> List[Path]:
    """
    Builds the ordered resolution context used to launch the application:
    resource directories, the sources directory, then direct and transitive dependencies.
    """
    entries: List[Path] = list(resource_directories)
    if output_directory is not None:
        entries.append(output_directory)
    entries.extend(direct)
    entries.extend(transitive)

    ordered: List[Path] = []
    for entry in entries:
        entry = Path(entry)
        if entry not in ordered:
            ordered.append(entry)
    return ordered
