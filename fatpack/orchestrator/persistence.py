import psutil
import logging
from pathlib import Path
from typing import Optional

from fatpack.config import effective_settings as config
from fatpack.errors import NotRunningError

log = logging.getLogger(__name__)


def pid_file_path(work_dir: Path) -> Path:
    return Path(work_dir) / config.PID_FILE_NAME


def write_pid_file(work_dir: Path, pid: int) -> Path:
    """
    Atomically writes the process id of a started application.

    :param work_dir: The working directory holding the handle.
    :param pid: The process id to persist.
    :return: The path of the pid file.
    """
    pid_path = pid_file_path(work_dir)
    temp_pid_path = pid_path.with_suffix(".tmp")
    try:
        pid_path.parent.mkdir(parents=True, exist_ok=True)
        temp_pid_path.write_text(str(pid))
        temp_pid_path.replace(pid_path)
        log.debug(f"Wrote PID {pid} to {pid_path}")
    finally:
        temp_pid_path.unlink(missing_ok=True)
    return pid_path


def read_pid_file(work_dir: Path) -> int:
    """
    Reads the persisted process id.

    :raises NotRunningError: If the file is missing or does not hold a process id.
    """
    pid_path = pid_file_path(work_dir)
    try:
        return int(pid_path.read_text().strip())
    except (OSError, ValueError) as e:
        raise NotRunningError(f"Unable to read process file from directory: {work_dir}") from e


def delete_pid_file(work_dir: Path, expected_pid: Optional[int] = None) -> None:
    """
    Removes the pid file. With `expected_pid`, the file is only removed when it
    still names that process.
    """
    pid_path = pid_file_path(work_dir)
    if expected_pid is not None:
        try:
            if int(pid_path.read_text().strip()) != expected_pid:
                return
        except (OSError, ValueError):
            return
    pid_path.unlink(missing_ok=True)
    log.debug(f"Removed PID file {pid_path}")


def get_running_pid(work_dir: Path) -> Optional[int]:
    """Returns the persisted process id if that process is still alive, else None."""
    try:
        pid = read_pid_file(work_dir)
    except NotRunningError:
        return None
    return pid if psutil.pid_exists(pid) else None
