import shutil
import logging
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from fatpack.config import effective_settings as config
from fatpack.errors import PreconditionError, ServiceMergeError
from fatpack.packaging.archive import Archive

log = logging.getLogger(__name__)


def _backup(source: Path, work_dir: Path) -> Path:
    """Copies `source` into `work_dir` as `<name>.bak` and returns the copy's path."""
    work_dir.mkdir(parents=True, exist_ok=True)
    backup_path = work_dir / f"{source.name}{config.BACKUP_SUFFIX}"
    shutil.copy2(source, backup_path)
    log.debug(f"Backed up {source} to {backup_path}")
    return backup_path


def combine_service_entries(archive_paths: Iterable[Path]) -> Dict[str, List[str]]:
    """
    Unions the service registry entries of the given archives.

    Archives are visited in the given order; within each entry path the lines
    keep their first-seen order, without blanks or duplicates.

    :return: An ordered mapping of entry path to merged lines.
    """
    combined: Dict[str, List[str]] = {}
    for archive_path in archive_paths:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for info in zf.infolist():
                name = info.filename
                if info.is_dir() or not name.startswith(config.SERVICES_PREFIX):
                    continue
                lines = combined.setdefault(name, [])
                for line in zf.read(info).decode("utf-8").splitlines():
                    line = line.strip()
                    if line and line not in lines:
                        lines.append(line)
    return combined


def merge_service_registries(primary_archive: Path, dependency_archives: Iterable[Path],
                             target_archive: Path, work_dir: Path) -> Path:
    """
    Replaces the service registry entries of the fat archive with the union of
    the same entries across all dependencies and the primary archive.

    The primary and the target archive are backed up into `work_dir` before
    anything is touched. The backups are removed only after the merged archive
    has been exported; on failure they stay in place for manual recovery.

    :param primary_archive: The project's primary artifact.
    :param dependency_archives: Dependency archives, direct ones first then transitive.
    :param target_archive: The fat archive to rewrite in place.
    :param work_dir: Directory receiving the backups.
    :return: The rewritten target archive.
    :raises ServiceMergeError: If any step after the backups fails.
    """
    primary_archive, target_archive, work_dir = Path(primary_archive), Path(target_archive), Path(work_dir)
    dependency_archives = [Path(p) for p in dependency_archives]

    primary_backup = _backup(primary_archive, work_dir)
    try:
        target_backup = _backup(target_archive, work_dir)
    except OSError as e:
        raise ServiceMergeError(primary_archive, [primary_backup]) from e
    backups = [target_backup, primary_backup]

    try:
        target = Archive.from_file(target_backup)
        combined = combine_service_entries([*dependency_archives, primary_backup])

        for entry_path, lines in combined.items():
            content = "\n".join(lines) + "\n"
            log.debug(f"Adding service entry {entry_path}: {lines}")
            target.delete(entry_path)
            target.add(entry_path, content.encode("utf-8"))

        target_archive.unlink(missing_ok=True)
        target.export(target_archive)
    except Exception as e:
        log.error(f"Service registry merge failed, backups kept: {', '.join(str(b) for b in backups)}")
        raise ServiceMergeError(primary_archive, backups) from e

    for backup in backups:
        try:
            backup.unlink()
        except OSError:
            log.warning(f"Unable to delete backup file: {backup}")

    log.info(f"Merged {len(combined)} service registry entries into {target_archive.name}")
    return target_archive


def relocate_service_interfaces(mode: Optional[str], primary_archive: Path, dependency_archives: Iterable[Path],
                                target_archive: Path, work_dir: Path) -> Optional[Path]:
    """
    Runs the service registry relocation requested by `mode`.

    Without a mode nothing is merged and colliding entries keep the
    last-writer-wins content from assembly.

    :raises PreconditionError: For an unsupported mode.
    """
    if mode is None:
        return None
    if mode not in config.SERVICE_RELOCATOR_MODES:
        raise PreconditionError(f"Unsupported service relocator mode '{mode}'")
    return merge_service_registries(primary_archive, dependency_archives, target_archive, work_dir)
