import psutil
import logging
from pathlib import Path
from typing import List, Set

from fatpack.errors import NotRunningError, StopTimeoutError
from fatpack.orchestrator import persistence

log = logging.getLogger(__name__)


def identify_processes_to_stop(proc: psutil.Process) -> Set[psutil.Process]:
    """
    Returns the process and all of its children.

    :param proc: The application process.
    :return: A set of psutil.Process objects to be stopped.
    """
    all_procs_to_stop: Set[psutil.Process] = {proc}
    try:
        all_procs_to_stop.update(proc.children(recursive=True))
    except psutil.NoSuchProcess:
        log.debug(f"Process {proc.pid} no longer exists, skipping children retrieval.")
    return all_procs_to_stop


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            continue


def graceful_shutdown_sequence(proc: psutil.Process, timeout: float) -> List[psutil.Process]:
    """
    Sends SIGTERM to the process, waits up to `timeout` for it and its children,
    then kills whatever is still alive.

    :param proc: The application process.
    :param timeout: Seconds to wait before force-killing.
    :return: The processes that had to be killed.
    """
    procs_list = list(identify_processes_to_stop(proc))
    try:
        log.debug(f"Sending SIGTERM to PID {proc.pid}")
        proc.terminate()
    except psutil.NoSuchProcess:
        return []

    # Wait and verify
    try:
        _, alive = psutil.wait_procs(procs_list, timeout=timeout)
    except psutil.NoSuchProcess:
        alive = []

    _forceful_kill(alive)
    return alive


def terminate_pid(pid: int, timeout: float) -> None:
    """
    Stops the process identified by `pid`.

    :raises NotRunningError: If no such process exists.
    :raises StopTimeoutError: If it had to be killed after `timeout` seconds.
    """
    try:
        proc = psutil.Process(pid)
    except psutil.NoSuchProcess as e:
        raise NotRunningError(f"No process with PID {pid} is running.") from e

    log.info(f"Stopping process {pid} (timeout {timeout}s)...")
    if graceful_shutdown_sequence(proc, timeout):
        raise StopTimeoutError(pid, timeout)
    log.info(f"Process {pid} stopped.")


def stop(work_dir: Path, timeout: float) -> int:
    """
    Stops the application started in `work_dir`, identified by its pid file.

    The pid file is deleted once the process has exited cleanly. A handle
    naming a process that no longer exists is removed as stale.

    :param work_dir: The working directory of the started application.
    :param timeout: Seconds to wait after the graceful terminate signal.
    :return: The id of the stopped process.
    :raises NotRunningError: If there is no pid file or no such process.
    :raises StopTimeoutError: If the process had to be killed; the pid file is kept.
    """
    pid = persistence.read_pid_file(work_dir)
    try:
        terminate_pid(pid, timeout)
    except NotRunningError:
        persistence.delete_pid_file(work_dir)
        log.warning(f"Removed stale process file for PID {pid}.")
        raise
    persistence.delete_pid_file(work_dir)
    return pid
