import os
import sys
import time
import signal
import subprocess
import threading

import psutil

import pytest

from fatpack.errors import LaunchError, NotRunningError, StopTimeoutError
from fatpack.orchestrator import LaunchState, ProcessOrchestrator, persistence
from fatpack.orchestrator import orchestrator as orchestrator_module
from fatpack.project import LaunchDescriptor

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="forked process tests rely on POSIX signals")


def forked(tmp_path, launcher, grace=0.1, **kwargs):
    descriptor = LaunchDescriptor(
        launcher=launcher, fork=True, work_directory=tmp_path, base_directory=tmp_path,
        start_grace_timeout=grace, **kwargs,
    )
    return ProcessOrchestrator(descriptor, [tmp_path], tmp_path / "build")


def wait_for(path, timeout=10.0):
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} was not created")
        time.sleep(0.05)


def dead_pid():
    process = subprocess.Popen([sys.executable, "-c", "pass"])
    process.wait()
    return process.pid


#* --- Process Handle ---
def test_pid_file_round_trip(tmp_path):
    persistence.write_pid_file(tmp_path, 1234)
    assert (tmp_path / "fatpack-start-process.id").read_text() == "1234"
    assert persistence.read_pid_file(tmp_path) == 1234
    persistence.delete_pid_file(tmp_path)
    with pytest.raises(NotRunningError):
        persistence.read_pid_file(tmp_path)


def test_delete_pid_file_respects_expected_pid(tmp_path):
    persistence.write_pid_file(tmp_path, 1234)
    persistence.delete_pid_file(tmp_path, expected_pid=99)
    assert persistence.read_pid_file(tmp_path) == 1234


def test_get_running_pid(tmp_path):
    assert persistence.get_running_pid(tmp_path) is None
    persistence.write_pid_file(tmp_path, os.getpid())
    assert persistence.get_running_pid(tmp_path) == os.getpid()


def test_stop_without_handle_raises(tmp_path):
    with pytest.raises(NotRunningError):
        forked(tmp_path, "unused:main").stop(1)


def test_stop_with_stale_handle_removes_it(tmp_path):
    persistence.write_pid_file(tmp_path, dead_pid())
    with pytest.raises(NotRunningError):
        forked(tmp_path, "unused:main").stop(1)
    assert not (tmp_path / "fatpack-start-process.id").exists()


#* --- Forked Mode ---
@posix_only
def test_forked_run_returns_child_exit_code(tmp_path, write_module):
    write_module("fork_exit_app", """
        import time

        def main(args):
            time.sleep(0.5)
            return 3
    """)
    orchestrator = forked(tmp_path, "fork_exit_app:main")
    assert orchestrator.run() == 3
    assert orchestrator.state is LaunchState.FAILED
    assert not (tmp_path / "fatpack-start-process.id").exists()


@posix_only
def test_forked_run_success(tmp_path, write_module):
    write_module("fork_ok_app", """
        import time

        def main(args):
            time.sleep(0.3)
            print("hello from child")
    """)
    orchestrator = forked(tmp_path, "fork_ok_app:main")
    assert orchestrator.run() == 0
    assert orchestrator.state is LaunchState.STOPPED


@posix_only
def test_early_failure_fails_the_start(tmp_path, write_module):
    write_module("fork_crash_app", """
        def main(args):
            raise SystemExit(4)
    """)
    orchestrator = forked(tmp_path, "fork_crash_app:main", grace=10)
    with pytest.raises(LaunchError):
        orchestrator.run()
    assert orchestrator.state is LaunchState.FAILED


def test_missing_interpreter_fails_immediately(tmp_path, monkeypatch):
    from fatpack.config import effective_settings
    monkeypatch.setattr(effective_settings, "PYTHON_EXECUTABLE", str(tmp_path / "no-such-python"))
    with pytest.raises(LaunchError):
        forked(tmp_path, "unused:main").run()


@posix_only
def test_start_then_stop(tmp_path, write_module):
    write_module("fork_sleep_app", """
        import time

        def main(args):
            time.sleep(60)
    """)
    orchestrator = forked(tmp_path, "fork_sleep_app:main", grace=0.2)
    pid = orchestrator.start()

    assert persistence.read_pid_file(tmp_path) == pid
    assert orchestrator.state is LaunchState.RUNNING
    with pytest.raises(LaunchError):
        forked(tmp_path, "fork_sleep_app:main").start()

    assert forked(tmp_path, "fork_sleep_app:main").stop(timeout=10) == pid
    assert not (tmp_path / "fatpack-start-process.id").exists()
    with pytest.raises(NotRunningError):
        forked(tmp_path, "fork_sleep_app:main").stop(timeout=10)


@posix_only
def test_stop_escalates_to_kill(tmp_path, write_module):
    marker = tmp_path / "ready"
    write_module("fork_stubborn_app", f"""
        import signal
        import time
        from pathlib import Path

        def main(args):
            signal.signal(signal.SIGTERM, signal.SIG_IGN)
            Path({str(marker)!r}).write_text("ready")
            time.sleep(60)
    """)
    orchestrator = forked(tmp_path, "fork_stubborn_app:main", grace=0.2)
    pid = orchestrator.start()
    wait_for(marker)

    with pytest.raises(StopTimeoutError) as excinfo:
        orchestrator.stop(timeout=0.5)
    assert excinfo.value.pid == pid
    assert (tmp_path / "fatpack-start-process.id").exists()
    orchestrator.process.wait(timeout=10)


#* --- Inline Mode ---
def test_inline_run_with_default_launcher(tmp_path, write_module):
    write_module("inline_unit_app", """
        RECEIVED = []

        def main(config):
            RECEIVED.append(config)
            return 0
    """)
    (tmp_path / "conf").mkdir()
    (tmp_path / "conf" / "app.yaml").write_text("greeting: hello\nport: 8080\n")
    descriptor = LaunchDescriptor(
        application_unit="inline_unit_app", work_directory=tmp_path, base_directory=tmp_path,
    )
    orchestrator = ProcessOrchestrator(descriptor, [tmp_path], tmp_path / "build")

    assert orchestrator.run() == 0
    assert orchestrator.state is LaunchState.STOPPED
    assert sys.modules["inline_unit_app"].RECEIVED == [{"greeting": "hello", "port": 8080}]
    assert (tmp_path / "build" / "conf" / "application.json").is_file()


#* --- Signals & Shutdown Hook ---
@pytest.fixture
def sleeping_app(tmp_path, write_module):
    marker = tmp_path / "ready"
    write_module("fork_signal_app", f"""
        import time
        from pathlib import Path

        def main(args):
            Path({str(marker)!r}).write_text("ready")
            time.sleep(60)
    """)
    return marker


@posix_only
def test_sigint_stops_forked_child(tmp_path, sleeping_app, monkeypatch):
    registered, unregistered = [], []
    monkeypatch.setattr(orchestrator_module.atexit, "register", registered.append)
    monkeypatch.setattr(orchestrator_module.atexit, "unregister", unregistered.append)
    orchestrator = forked(tmp_path, "fork_signal_app:main")
    results = []
    runner = threading.Thread(target=lambda: results.append(orchestrator.run()))
    runner.start()
    wait_for(sleeping_app)

    orchestrator._handle_sigint(signal.SIGINT, None)
    runner.join(timeout=15)

    assert results == [-signal.SIGTERM]
    assert orchestrator.state is LaunchState.FAILED
    assert orchestrator._kill_timer is not None and orchestrator._kill_timer.finished.is_set()
    assert registered == unregistered == [orchestrator._shutdown_hook]
    assert not (tmp_path / "fatpack-start-process.id").exists()


@posix_only
def test_sigint_right_after_child_exit_is_ignored(tmp_path, sleeping_app):
    orchestrator = forked(tmp_path, "fork_signal_app:main")
    process = orchestrator._spawn(detached=False)
    try:
        wait_for(sleeping_app)
        orchestrator._exited_at = time.monotonic()
        orchestrator._handle_sigint(signal.SIGINT, None)
        assert process.poll() is None
        assert orchestrator._kill_timer is None
    finally:
        process.kill()
        process.wait()


@posix_only
def test_sigint_notices_unreaped_exit(tmp_path, write_module):
    write_module("fork_quick_app", """
        def main(args):
            return 0
    """)
    orchestrator = forked(tmp_path, "fork_quick_app:main")
    process = orchestrator._spawn(detached=False)
    deadline = time.monotonic() + 10
    while psutil.Process(process.pid).status() != psutil.STATUS_ZOMBIE:
        assert time.monotonic() < deadline
        time.sleep(0.05)

    orchestrator._handle_sigint(signal.SIGINT, None)

    assert orchestrator._exited_at is not None
    assert orchestrator._kill_timer is None
    assert process.wait(timeout=10) == 0


@posix_only
def test_shutdown_hook_terminates_live_child(tmp_path, sleeping_app):
    orchestrator = forked(tmp_path, "fork_signal_app:main")
    process = orchestrator._spawn(detached=False)
    wait_for(sleeping_app)

    orchestrator._shutdown_hook()

    assert process.returncode == -signal.SIGTERM
    orchestrator._shutdown_hook()
