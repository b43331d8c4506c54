import time
import atexit
import signal
import psutil
import logging
import threading
import subprocess
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from fatpack.config import effective_settings as config
from fatpack.errors import LaunchError
from fatpack.project import LaunchDescriptor
from fatpack.orchestrator import arguments, config_utils, inline, persistence, process_utils, shutdown

log = logging.getLogger(__name__)


class LaunchState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class ProcessOrchestrator:
    """
    Launches the application described by a LaunchDescriptor, either inline on
    an isolated thread or as a forked child interpreter, and stops it again.

    One instance drives one launch request.
    """

    def __init__(self, descriptor: LaunchDescriptor, classpath: Iterable[Path] = (),
                 build_directory: Optional[Path] = None) -> None:
        """
        :param descriptor: How to launch the application.
        :param classpath: Resource dirs, sources dir and dependency archives, in order.
        :param build_directory: Where converted configuration documents are written.
        """
        self.descriptor = descriptor
        self.classpath: List[Path] = [Path(p) for p in classpath]
        self.build_directory = Path(build_directory) if build_directory else Path(descriptor.base_directory) / "build"
        self.state = LaunchState.IDLE
        self.process: Optional[subprocess.Popen] = None
        self.relay_thread: Optional[threading.Thread] = None
        self._exited_at: Optional[float] = None
        self._kill_timer: Optional[threading.Timer] = None
        self._state_lock = threading.Lock()

    @property
    def work_directory(self) -> Path:
        return Path(self.descriptor.work_directory)

    @property
    def display_name(self) -> str:
        return self.descriptor.application_unit or self.descriptor.launcher

    def _transition(self, state: LaunchState) -> None:
        with self._state_lock:
            log.debug(f"Launch state of {self.display_name}: {self.state.value} -> {state.value}")
            self.state = state

    def launch_arguments(self, command: str = config.LAUNCHER_COMMAND_RUN, pid: Optional[int] = None) -> List[str]:
        """Returns the launcher argument vector, resolving the configuration document first."""
        config_path = None
        if command == config.LAUNCHER_COMMAND_RUN:
            config_path = config_utils.resolve_config(
                self.descriptor.config_path, self.descriptor.base_directory, self.build_directory,
            )
        args = arguments.build_arguments(self.descriptor, command, pid=pid, config_path=config_path)
        log.debug(f"Running command : {' '.join(args)}")
        return args

    def run(self) -> int:
        """
        Runs the application in the foreground until it exits.

        :return: The application's exit code.
        :raises LaunchError: If the application cannot be started or fails inline.
        """
        if self.descriptor.fork:
            log.info("Running in forked mode")
            return self._run_forked()
        log.info("Running with fork disabled")
        return self._run_inline()

    #* --- Inline Mode ---
    def _run_inline(self) -> int:
        args = self.launch_arguments()
        self._transition(LaunchState.STARTING)
        try:
            self._transition(LaunchState.RUNNING)
            code = inline.run_inline(self.descriptor.launcher, args, self.classpath)
        except LaunchError:
            self._transition(LaunchState.FAILED)
            raise
        self._transition(LaunchState.STOPPED if code == 0 else LaunchState.FAILED)
        return code

    #* --- Forked Mode ---
    def _spawn(self, detached: bool) -> subprocess.Popen:
        command = process_utils.build_command(self.descriptor.launcher, self.launch_arguments(), self.classpath)
        self._transition(LaunchState.STARTING)
        try:
            log_path = self.work_directory / config.START_LOG_FILE_NAME if detached else None
            self.process = process_utils.spawn_process(command, self.work_directory, detached=detached, log_path=log_path)
        except LaunchError:
            self._transition(LaunchState.FAILED)
            raise

        if self.process.stdout is not None:
            log.info("Redirecting output to stdout...")
            self.relay_thread = process_utils.relay_output(self.process, self.display_name)
        log.info(f"{self.display_name} started with PID: {self.process.pid}")
        return self.process

    def _await_readiness(self) -> None:
        """Gives the child a grace period; an early non-zero exit fails the start."""
        try:
            code = self.process.wait(timeout=self.descriptor.start_grace_timeout)
        except subprocess.TimeoutExpired:
            return
        self._exited_at = time.monotonic()
        if code != 0:
            self._transition(LaunchState.FAILED)
            raise LaunchError(f"Unable to start process: {self.display_name} exited with code {code}")

    def _run_forked(self) -> int:
        process = self._spawn(detached=False)
        persistence.write_pid_file(self.work_directory, process.pid)
        atexit.register(self._shutdown_hook)
        previous_handler = self._install_sigint_handler()
        try:
            self._await_readiness()
            if process.returncode is None:
                self._transition(LaunchState.RUNNING)
            code = process.wait()
            self._exited_at = time.monotonic()
        finally:
            atexit.unregister(self._shutdown_hook)
            self._restore_sigint_handler(previous_handler)
            if self._kill_timer is not None:
                self._kill_timer.cancel()
            persistence.delete_pid_file(self.work_directory, expected_pid=process.pid)
            if self.relay_thread is not None:
                self.relay_thread.join(timeout=1)

        log.info(f"{self.display_name} exited with code {code}")
        self._transition(LaunchState.STOPPED if code == 0 else LaunchState.FAILED)
        return code

    def start(self) -> int:
        """
        Starts the application as a detached child and persists its process id.

        :return: The process id of the started application.
        :raises LaunchError: If an instance is already running or the start fails.
        """
        running_pid = persistence.get_running_pid(self.work_directory)
        if running_pid is not None:
            raise LaunchError(f"Application appears to be running with PID {running_pid}. Use 'stop' first.")

        process = self._spawn(detached=True)
        self._await_readiness()
        if process.returncode is not None:
            log.warning(f"{self.display_name} exited before the start completed.")
            self._transition(LaunchState.STOPPED)
            return process.pid

        persistence.write_pid_file(self.work_directory, process.pid)
        self._transition(LaunchState.RUNNING)
        log.info(f"Output of {self.display_name} is written to {self.work_directory / config.START_LOG_FILE_NAME}")
        return process.pid

    def stop(self, timeout: float = config.STOP_TIMEOUT) -> int:
        """
        Stops the application started in the working directory.

        :return: The id of the stopped process.
        :raises NotRunningError: If nothing is running.
        :raises StopTimeoutError: If the process had to be killed.
        """
        pid = shutdown.stop(self.work_directory, timeout)
        self._transition(LaunchState.STOPPED)
        return pid

    #* --- Signals & Shutdown Hook ---
    def stop_gracefully(self) -> None:
        """
        Asks the child to terminate and schedules a kill after the stop grace
        timeout. Does not wait, so it is safe to call from a signal handler.
        """
        if self.process is None or self.process.returncode is not None:
            return
        log.info(f"Stopping {self.display_name} (PID {self.process.pid})...")
        try:
            self.process.terminate()
        except OSError:
            return
        if self._kill_timer is None:
            self._kill_timer = threading.Timer(config.PROCESS_STOP_GRACE_TIMEOUT, self._kill_if_running)
            self._kill_timer.daemon = True
            self._kill_timer.start()

    def _kill_if_running(self) -> None:
        if self.process is not None and self.process.returncode is None:
            log.warning(f"Killing stubborn process {self.display_name} (PID {self.process.pid}).")
            try:
                self.process.kill()
            except OSError:
                pass

    def _note_exit(self) -> None:
        """Records when the child was first seen exited, reaped or not, without touching the wait lock."""
        if self._exited_at is not None or self.process is None:
            return
        try:
            exited = self.process.returncode is not None or psutil.Process(self.process.pid).status() == psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            exited = True
        if exited:
            self._exited_at = time.monotonic()

    def _handle_sigint(self, signum, frame) -> None:
        self._note_exit()
        # A child that just exited is part of a normal shutdown already.
        if self._exited_at is not None and time.monotonic() - self._exited_at < config.SIGINT_DEBOUNCE_SECONDS:
            return
        log.debug(f"Signal {signum} received, stopping {self.display_name}.")
        self.stop_gracefully()

    def _install_sigint_handler(self):
        if threading.current_thread() is not threading.main_thread():
            return None
        return signal.signal(signal.SIGINT, self._handle_sigint)

    def _restore_sigint_handler(self, previous_handler) -> None:
        if previous_handler is not None and threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, previous_handler)

    def _shutdown_hook(self) -> None:
        """Runs at interpreter exit so a forked child is not left orphaned."""
        if self.process is None or self.process.poll() is not None:
            return
        log.info(f"Shutting down {self.display_name} with the parent process...")
        self.process.terminate()
        try:
            self.process.wait(timeout=config.PROCESS_STOP_GRACE_TIMEOUT)
        except subprocess.TimeoutExpired:
            self.process.kill()
            self.process.wait()
