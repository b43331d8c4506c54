from pathlib import Path

from fatpack.orchestrator.arguments import build_arguments, redeploy_patterns
from fatpack.project import LaunchDescriptor


def descriptor(tmp_path, **kwargs):
    return LaunchDescriptor(
        launcher="fatpack.launcher:main", application_unit="demo.app",
        base_directory=tmp_path, work_directory=tmp_path, **kwargs,
    )


def test_run_arguments_order(tmp_path):
    conf = tmp_path / "application.json"
    conf.write_text("{}")
    args = build_arguments(descriptor(tmp_path, redeploy=True, redeploy_patterns=("a/*.py", "b/**"), config_path=conf))
    assert args == [
        "run", "demo.app",
        "--launcher-class", "fatpack.launcher:main",
        "--redeploy=a/*.py,b/**",
        "--conf", str(conf),
    ]


def test_run_arguments_without_optional_flags(tmp_path):
    args = build_arguments(descriptor(tmp_path, config_path=tmp_path / "missing.json"))
    assert args == ["run", "demo.app", "--launcher-class", "fatpack.launcher:main"]


def test_empty_redeploy_patterns_use_default(tmp_path):
    d = descriptor(tmp_path, redeploy=True)
    expected = str(Path(tmp_path) / "src/**/*.py")
    assert redeploy_patterns(d) == [expected]
    assert f"--redeploy={expected}" in build_arguments(d)


def test_stop_arguments(tmp_path):
    args = build_arguments(descriptor(tmp_path, redeploy=True), command="stop", pid=4242)
    assert args == ["stop", "--launcher-class", "fatpack.launcher:main", "4242"]


def test_unit_is_omitted_when_absent(tmp_path):
    d = LaunchDescriptor(launcher="custom:boot", base_directory=tmp_path, work_directory=tmp_path)
    assert build_arguments(d) == ["run", "--launcher-class", "custom:boot"]
