"""
The default launcher.

    run <unit> [--launcher-class <spec>] [--redeploy=<patterns>] [--conf <file>]
    stop [--launcher-class <spec>] <pid>

`run` imports the application unit (`module[:callable]`, callable defaulting
to `main`) and calls it with the parsed JSON configuration. With `--redeploy`
the unit runs in a child interpreter that is restarted whenever a file
matching one of the comma separated glob patterns changes.

`stop` terminates the process with the given id.
"""
import os
import re
import sys
import json
import time
import signal
import psutil
import logging
import importlib
import threading
import subprocess
from pathlib import Path
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from fatpack.config import effective_settings as config
from fatpack.errors import LaunchError, NotRunningError, StopTimeoutError
from fatpack.log import setup_logging
from fatpack.orchestrator import process_utils, shutdown

log = logging.getLogger(__name__)


@dataclass
class RunArguments:
    unit: str
    launcher_class: Optional[str] = None
    redeploy_patterns: Tuple[str, ...] = ()
    conf: Optional[Path] = None
    redeploy: bool = False


def parse_run_arguments(args: List[str]) -> RunArguments:
    """
    Parses the arguments following `run`.

    :raises LaunchError: If no unit is given or an option lacks its value.
    """
    unit = None
    launcher_class = None
    patterns: Tuple[str, ...] = ()
    conf = None
    redeploy = False
    remaining = list(args)
    while remaining:
        arg = remaining.pop(0)
        if arg == config.LAUNCHER_ARG_CLASS or arg == config.LAUNCHER_ARG_CONF:
            if not remaining:
                raise LaunchError(f"Missing value for {arg}")
            value = remaining.pop(0)
            if arg == config.LAUNCHER_ARG_CLASS:
                launcher_class = value
            else:
                conf = Path(value)
        elif arg == config.LAUNCHER_ARG_REDEPLOY or arg.startswith(f"{config.LAUNCHER_ARG_REDEPLOY}="):
            redeploy = True
            _, _, value = arg.partition("=")
            patterns = tuple(p for p in value.split(",") if p)
        elif unit is None and not arg.startswith("-"):
            unit = arg
        else:
            log.warning(f"Ignoring unknown launcher argument '{arg}'")

    if not unit:
        raise LaunchError("No application unit given to run.")
    return RunArguments(unit, launcher_class, patterns, conf, redeploy)


#* --- Application Units ---
def load_unit(unit: str) -> Callable[..., Any]:
    """
    Imports the callable named by `module[:callable]`.

    :raises LaunchError: If the module cannot be imported or has no such callable.
    """
    module_name, _, attr = unit.partition(":")
    attr = attr or config.DEFAULT_UNIT_CALLABLE
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise LaunchError(f"Application unit \"{unit}\" not found: {e}") from e
    target = getattr(module, attr, None)
    if not callable(target):
        raise LaunchError(f"The module {module_name} does not have a callable '{attr}'")
    return target


def load_config(conf: Optional[Path]) -> Dict[str, Any]:
    """Reads the JSON configuration document, an empty dict when there is none."""
    if conf is None:
        return {}
    try:
        with Path(conf).open("r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise LaunchError(f"Unable to read configuration file '{conf}': {e}") from e
    if not isinstance(document, dict):
        raise LaunchError(f"Configuration file '{conf}' must contain a JSON object.")
    return document


def run_unit(unit: str, conf: Optional[Path] = None) -> int:
    """Runs the application unit once in this interpreter and returns its exit code."""
    target = load_unit(unit)
    log.info(f"Running application unit {unit}")
    result = target(load_config(conf))
    return result if isinstance(result, int) else 0


#* --- Redeploy ---
def pattern_to_regex(pattern: str) -> Pattern:
    """
    Translates a glob pattern into a regular expression over posix paths.
    `**/` matches any number of directories, `*` and `?` stay within one.
    """
    pattern = Path(pattern).as_posix()
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts))


def watch_root(pattern: str) -> Path:
    """Returns the deepest existing directory above the first wildcard of `pattern`."""
    path = Path(pattern)
    fixed = []
    for part in path.parts:
        if any(c in part for c in "*?["):
            break
        fixed.append(part)
    root = Path(*fixed) if fixed else Path.cwd()
    while not root.is_dir() and root != root.parent:
        root = root.parent
    return root


def _absolute(pattern: str) -> str:
    path = Path(pattern).expanduser()
    return str(path if path.is_absolute() else Path.cwd() / path)


class RedeployHandler(FileSystemEventHandler):
    """A watchdog event handler that requests a redeploy when a watched file changes."""

    def __init__(self, patterns: List[str], restart_event: threading.Event):
        super().__init__()
        self.matchers = [pattern_to_regex(p) for p in patterns]
        self.restart_event = restart_event
        self.debounce_cache: Dict[str, float] = {}
        self.debounce_interval = config.REDEPLOY_DEBOUNCE_SECONDS

    def matches(self, path_str: str) -> bool:
        posix_path = Path(path_str).as_posix()
        return any(m.fullmatch(posix_path) for m in self.matchers)

    def _should_process_event(self, path_str: str) -> bool:
        """Check if the event should be processed or skipped due to debouncing."""
        now = time.time()
        if self.debounce_cache.get(path_str, 0) > now - self.debounce_interval:
            return False
        self.debounce_cache[path_str] = now
        return True

    def on_any_event(self, event) -> None:
        if event.is_directory:
            return
        for path_str in (event.src_path, getattr(event, "dest_path", "")):
            if path_str and self.matches(path_str) and self._should_process_event(path_str):
                log.info(f"Change detected: {event.event_type} on {path_str}. Redeploying...")
                self.restart_event.set()
                return


def unit_command(args: RunArguments) -> List[str]:
    """The command line of a redeployable application child."""
    command = [config.PYTHON_EXECUTABLE, "-m", "fatpack.launcher", config.LAUNCHER_COMMAND_RUN, args.unit]
    if args.conf is not None:
        command.extend([config.LAUNCHER_ARG_CONF, str(args.conf)])
    return command


def _stop_child(process: subprocess.Popen) -> None:
    if process.poll() is not None:
        return
    try:
        killed = shutdown.graceful_shutdown_sequence(psutil.Process(process.pid), config.PROCESS_STOP_GRACE_TIMEOUT)
    except psutil.NoSuchProcess:
        killed = []
    if killed:
        log.warning(f"Application child {process.pid} was killed.")
    process.wait()


def redeploy_loop(args: RunArguments, stop_event: threading.Event) -> int:
    """
    Runs the unit in a child interpreter and restarts it on every matching
    file change until `stop_event` is set.
    """
    patterns = [_absolute(p) for p in args.redeploy_patterns or (config.REDEPLOY_DEFAULT_PATTERN,)]
    restart_event = threading.Event()
    handler = RedeployHandler(patterns, restart_event)
    env = dict(os.environ, PYTHONPATH=os.pathsep.join(p for p in sys.path if p))

    observer = Observer()
    for root in sorted({watch_root(p) for p in patterns}):
        log.info(f"Watching {root} for changes")
        observer.schedule(handler, str(root), recursive=True)
    observer.start()

    process = None
    try:
        while not stop_event.is_set():
            restart_event.clear()
            process = process_utils.spawn_process(unit_command(args), Path.cwd(), env=env)
            relay = process_utils.relay_output(process, args.unit)
            log.info(f"Application unit {args.unit} deployed with PID {process.pid}")

            while not stop_event.is_set() and not restart_event.is_set():
                stop_event.wait(timeout=0.2)
                if process.poll() is not None and not restart_event.is_set():
                    log.info(f"Application unit exited with code {process.returncode}. Waiting for changes...")
                    while not stop_event.is_set() and not restart_event.is_set():
                        stop_event.wait(timeout=0.2)

            _stop_child(process)
            if relay is not None:
                relay.join(timeout=1)
    finally:
        if process is not None:
            _stop_child(process)
        observer.stop()
        observer.join()
        log.info("Redeploy watcher stopped.")
    return 0


def _install_stop_handlers(stop_event: threading.Event) -> None:
    if threading.current_thread() is not threading.main_thread():
        return

    def handle(signum, frame):
        log.info(f"Signal {signum} received, stopping.")
        stop_event.set()

    signal.signal(signal.SIGTERM, handle)
    signal.signal(signal.SIGINT, handle)


#* --- Commands ---
def run(args: List[str]) -> int:
    run_args = parse_run_arguments(args)
    if not run_args.redeploy:
        return run_unit(run_args.unit, run_args.conf)

    stop_event = threading.Event()
    _install_stop_handlers(stop_event)
    return redeploy_loop(run_args, stop_event)


def stop(args: List[str]) -> int:
    values = []
    remaining = list(args)
    while remaining:
        arg = remaining.pop(0)
        if arg == config.LAUNCHER_ARG_CLASS:
            remaining = remaining[1:]
        else:
            values.append(arg)
    if not values or not values[-1].isdigit():
        raise LaunchError("stop requires a process id.")

    pid = int(values[-1])
    try:
        shutdown.terminate_pid(pid, config.STOP_TIMEOUT)
    except NotRunningError as e:
        log.error(f"{e}")
        return 1
    except StopTimeoutError as e:
        log.warning(f"{e}")
    return 0


def main(argv: List[str]) -> int:
    """
    Launcher entry point called by the orchestrator.

    :param argv: The launcher argument vector, starting with the command.
    :return: The exit code.
    """
    if not argv:
        raise LaunchError("No launcher command given. Expected 'run' or 'stop'.")
    command, args = argv[0], argv[1:]
    if command == config.LAUNCHER_COMMAND_RUN:
        return run(args)
    if command == config.LAUNCHER_COMMAND_STOP:
        return stop(args)
    raise LaunchError(f"Unknown launcher command: '{command}'")


if __name__ == "__main__":
    setup_logging(logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO)
    try:
        sys.exit(main(sys.argv[1:]))
    except LaunchError as e:
        log.critical(f"{e}")
        sys.exit(1)
