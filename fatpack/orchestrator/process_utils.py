import os
import sys
import logging
import threading
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from fatpack.config import effective_settings as config
from fatpack.errors import LaunchError

log = logging.getLogger(__name__)


def _detect_inherit_io() -> bool:
    """A child can write straight to our console only if stdout and stderr are real descriptors."""
    try:
        sys.stdout.fileno()
        sys.stderr.fileno()
        return True
    except (AttributeError, OSError, ValueError):
        return False

# Resolved once; spawn_process branches on it.
INHERIT_IO = _detect_inherit_io()


#* --- Process Creation ---
def get_executable_path(base_path: Path) -> Path:
    """Returns the platform-specific full path for an executable."""
    if sys.platform == "win32" and not base_path.suffix:
        return base_path.with_suffix(".exe")
    return base_path

def get_popen_creation_flags(detached: bool) -> Dict[str, Any]:
    """Returns platform-specific creation flags for subprocess.Popen."""
    if not detached:
        return {}
    if sys.platform == "win32":
        return {"creationflags": subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}

def build_command(launcher: str, launcher_args: List[str], classpath: Iterable[Path],
                  executable: Optional[str] = None) -> List[str]:
    """
    Builds the full command line of a forked application process.

    :param launcher: The launcher spec the child bootstrap resolves.
    :param launcher_args: The launcher argument vector.
    :param classpath: Entries the child puts in front of `sys.path`.
    :param executable: The interpreter, defaults to the one running fatpack.
    """
    python = str(get_executable_path(Path(executable or config.PYTHON_EXECUTABLE)))
    entries = os.pathsep.join(str(p) for p in classpath)
    log.debug(f"Classpath for forked process: {entries}")
    return [
        python, "-m", config.BOOTSTRAP_MODULE,
        config.BOOTSTRAP_ARG_CLASSPATH, entries,
        launcher, *launcher_args,
    ]

def _relay_line_handler(process_name: str) -> Callable[[str], None]:
    proc_logger = logging.getLogger(f"proc.{process_name}")

    def handle(line: str) -> None:
        # With logging configured the console handler prints proc.* records raw.
        if logging.getLogger().handlers:
            proc_logger.info(line)
        else:
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
    return handle

def _read_pipe(pipe, process_name: str, line_handler: Callable[[str], None]) -> None:
    """Target function for relay threads. Forwards lines from a child's output pipe."""
    try:
        for line_bytes in iter(pipe.readline, b""):
            line_handler(line_bytes.decode("utf-8", errors="replace").rstrip("\r\n"))
    except (OSError, ValueError) as e:
        log.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()

def relay_output(process: subprocess.Popen, name: str,
                 line_handler: Optional[Callable[[str], None]] = None) -> Optional[threading.Thread]:
    """Starts a background thread relaying the child's merged output line by line."""
    if not process.stdout:
        return None
    thread = threading.Thread(
        target=_read_pipe, args=(process.stdout, name, line_handler or _relay_line_handler(name)),
        daemon=True, name=f"RelayThread-{name}",
    )
    thread.start()
    return thread

def spawn_process(command: List[str], cwd: Path, detached: bool = False,
                  log_path: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> subprocess.Popen:
    """
    Spawns the application process with stderr merged into stdout.

    Output goes to `log_path` when given, else straight to our console when
    `INHERIT_IO` allows it, else through a pipe the caller relays.

    :raises LaunchError: If the process cannot be spawned.
    """
    popen_kwargs = get_popen_creation_flags(detached)
    stdin = subprocess.DEVNULL if detached else None
    log_file = None
    try:
        if log_path is not None:
            log_file = open(log_path, "ab")
            stdout = log_file
        elif INHERIT_IO:
            stdout = None
        else:
            stdout = subprocess.PIPE
        return subprocess.Popen(
            command, cwd=str(Path(cwd).resolve()), stdin=stdin,
            stdout=stdout, stderr=subprocess.STDOUT, env=env, **popen_kwargs,
        )
    except OSError as e:
        log.critical(f"Failed to start process {command[0]}: {e}")
        raise LaunchError(f"Error starting process: {e}") from e
    finally:
        if log_file is not None:
            log_file.close()
