"""
Runs a launcher inside the current interpreter on an isolated worker thread.

The launcher is looked up through a registry: callables registered at startup
first, then a `module:callable` spec imported with the launch classpath
prepended to `sys.path`. The worker reports its outcome over a one-shot
queue; once it finishes, every non-daemon thread it left behind is joined and
the first failure seen anywhere in the launch is raised to the caller.
"""
import sys
import queue
import logging
import importlib
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from fatpack.errors import LaunchError

log = logging.getLogger(__name__)

Outcome = Tuple[Optional[int], Optional[BaseException]]


class LauncherRegistry:
    """Maps launcher names to callables accepting an argument list."""

    def __init__(self) -> None:
        self._launchers: Dict[str, Callable[[List[str]], Optional[int]]] = {}
        self._lock = threading.Lock()

    def register(self, name: str, launcher: Callable[[List[str]], Optional[int]]) -> None:
        with self._lock:
            self._launchers[name] = launcher

    def unregister(self, name: str) -> None:
        with self._lock:
            self._launchers.pop(name, None)

    def resolve(self, spec: str) -> Callable[[List[str]], Optional[int]]:
        """
        Returns the launcher registered as `spec`, or imports it as `module:callable`.

        :raises LaunchError: If the module cannot be imported or holds no such callable.
        """
        with self._lock:
            if spec in self._launchers:
                return self._launchers[spec]

        module_name, _, attr = spec.partition(":")
        attr = attr or "main"
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise LaunchError(f"Launcher \"{spec}\" not found: {e}") from e

        launcher = getattr(module, attr, None)
        if not callable(launcher):
            raise LaunchError(f"The module {module_name} does not have a callable '{attr}' that accepts an argument list")
        return launcher


launchers = LauncherRegistry()


def register_launcher(name: str):
    """Decorator registering a launcher callable under `name`."""
    def decorator(func):
        launchers.register(name, func)
        return func
    return decorator


@contextmanager
def resolution_context(classpath: Iterable[Path]):
    """
    Temporarily prepends the classpath entries to `sys.path`.

    `sys.path` is process wide, so inline launches must not overlap.
    """
    added = [str(p) for p in classpath if str(p) not in sys.path]
    sys.path[:0] = added
    importlib.invalidate_caches()
    try:
        yield added
    finally:
        for entry in added:
            try:
                sys.path.remove(entry)
            except ValueError:
                pass


@contextmanager
def _isolated_failures(baseline: Set[threading.Thread], failures: List[BaseException]):
    """Captures uncaught exceptions of threads started after `baseline` was taken."""
    previous_hook = threading.excepthook

    def hook(hook_args):
        if hook_args.thread is not None and hook_args.thread not in baseline:
            log.warning(f"Uncaught error in thread '{hook_args.thread.name}': {hook_args.exc_value!r}")
            failures.append(hook_args.exc_value)
        else:
            previous_hook(hook_args)

    threading.excepthook = hook
    try:
        yield failures
    finally:
        threading.excepthook = previous_hook


def join_non_daemon_threads(baseline: Set[threading.Thread]) -> None:
    """Joins non-daemon threads started after `baseline` until none remain."""
    current = threading.current_thread()
    while True:
        pending = [
            t for t in threading.enumerate()
            if t not in baseline and t is not current and not t.daemon and t.is_alive()
        ]
        if not pending:
            return
        for thread in pending:
            thread.join()


def _invoke(launcher_spec: str, args: List[str], outcome: "queue.Queue[Outcome]") -> None:
    try:
        launcher = launchers.resolve(launcher_spec)
        result = launcher(list(args))
        outcome.put((result if isinstance(result, int) else 0, None))
    except SystemExit as e:
        code = e.code if isinstance(e.code, int) else (0 if e.code is None else 1)
        outcome.put((code, None))
    except BaseException as e:
        outcome.put((None, e))


def run_inline(launcher_spec: str, args: List[str], classpath: Iterable[Path] = ()) -> int:
    """
    Invokes the launcher with `args` on a dedicated thread and waits for the
    launch to finish, including every non-daemon thread the application started.

    :param launcher_spec: A registered launcher name or a `module:callable` spec.
    :param args: The launcher argument vector.
    :param classpath: Entries made importable for the duration of the launch.
    :return: The launcher's exit code.
    :raises LaunchError: With the first failure raised by the launcher or any of its threads.
    """
    outcome: "queue.Queue[Outcome]" = queue.Queue(maxsize=1)
    failures: List[BaseException] = []
    baseline = set(threading.enumerate())

    with resolution_context(classpath), _isolated_failures(baseline, failures):
        worker = threading.Thread(
            target=_invoke, args=(launcher_spec, args, outcome),
            name=f"fatpack-launch-{launcher_spec}", daemon=False,
        )
        worker.start()
        worker.join()
        join_non_daemon_threads(baseline)

    code, error = outcome.get_nowait()
    if error is None and failures:
        error = failures[0]
    if error is not None:
        raise LaunchError(f"Error occurred while running {launcher_spec}: {error}") from error
    return code
