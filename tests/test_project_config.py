import json
from pathlib import Path

import pytest

from fatpack.config import MergedSettings
from fatpack.dependencies import DependencyCoordinate
from fatpack.errors import PreconditionError
from fatpack.orchestrator.config_utils import check_configuration, convert_yaml_to_json, discover_config, resolve_config
from fatpack.project import load_project, project_from_dict

PROJECT_YAML = """\
name: demo
primary_artifact: dist/demo.zip
output_directory: src
resource_directories: [resources]
application_unit: demo.app
service_relocator: combine
fork: true
dependencies:
  - org.example:lib:1.0
  - coordinate: org.example:tool:2.0
    scope: test
  - group: org.example
    name: extra
    version: 3.1
    direct: false
"""


#* --- Project File ---
def test_load_project(tmp_path):
    project_file = tmp_path / "fatpack.yaml"
    project_file.write_text(PROJECT_YAML)
    project = load_project(project_file)

    assert project.name == "demo"
    assert project.primary_artifact == tmp_path.resolve() / "dist" / "demo.zip"
    assert project.build_directory == tmp_path.resolve() / "build"
    assert project.base_name == "demo"
    assert project.service_relocator == "combine"
    assert project.launch.fork is True
    assert project.launch.application_unit == "demo.app"
    assert project.launch.launcher == "fatpack.launcher:main"
    assert [r.scope for r in project.dependencies] == ["compile", "test", "compile"]
    assert project.dependencies[2].coordinate == DependencyCoordinate("org.example", "extra", "3.1")
    assert project.dependencies[2].direct is False


def test_missing_project_file(tmp_path):
    with pytest.raises(PreconditionError):
        load_project(tmp_path / "fatpack.yaml")


def test_unsupported_relocator_is_rejected(tmp_path):
    with pytest.raises(PreconditionError):
        project_from_dict({"name": "demo", "service_relocator": "shade"}, tmp_path)


def test_project_requires_name(tmp_path):
    with pytest.raises(PreconditionError):
        project_from_dict({"primary_artifact": "demo.zip"}, tmp_path)


def test_check_configuration_reports_missing_paths(tmp_path):
    project = project_from_dict({"name": "demo", "primary_artifact": "dist/demo.zip"}, tmp_path)
    assert check_configuration(project) is False
    (tmp_path / "dist").mkdir()
    (tmp_path / "dist" / "demo.zip").write_bytes(b"")
    assert check_configuration(project) is True


#* --- Configuration Documents ---
def test_convert_yaml_to_json(tmp_path):
    source = tmp_path / "app.yaml"
    source.write_text("server:\n  port: 8080\nnames: [a, b]\n")
    target = convert_yaml_to_json(source, tmp_path / "out" / "application.json")
    assert json.loads(target.read_text()) == {"server": {"port": 8080}, "names": ["a", "b"]}


def test_invalid_yaml_is_a_precondition_error(tmp_path):
    source = tmp_path / "app.yaml"
    source.write_text("server: [unclosed\n")
    with pytest.raises(PreconditionError):
        convert_yaml_to_json(source, tmp_path / "application.json")


def test_discover_and_resolve_config(tmp_path):
    assert discover_config(tmp_path) is None
    assert resolve_config(None, tmp_path, tmp_path / "build") is None

    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    (conf_dir / "app.json").write_text("{}")
    assert discover_config(tmp_path) == conf_dir / "app.json"

    explicit = tmp_path / "explicit.yml"
    explicit.write_text("a: 1\n")
    resolved = resolve_config(explicit, tmp_path, tmp_path / "build")
    assert resolved == tmp_path / "build" / "conf" / "application.json"
    assert json.loads(resolved.read_text()) == {"a": 1}


#* --- Settings Overrides ---
def test_overrides_apply_only_to_modifiable_settings(tmp_path):
    overrides = tmp_path / "overrides.json"
    overrides.write_text(json.dumps({
        "STOP_TIMEOUT": 42,
        "LOCAL_REPOSITORY": str(tmp_path / "repo"),
        "PID_FILE_NAME": "other.id",
        "UNKNOWN_SETTING": 1,
    }))
    settings = MergedSettings(overrides)

    assert settings.STOP_TIMEOUT == 42
    assert settings.LOCAL_REPOSITORY == tmp_path / "repo"
    assert isinstance(settings.LOCAL_REPOSITORY, Path)
    assert settings.PID_FILE_NAME == "fatpack-start-process.id"
    assert not hasattr(settings, "UNKNOWN_SETTING")


def test_save_overrides_persists_modifiable_keys(tmp_path):
    overrides = tmp_path / "overrides.json"
    settings = MergedSettings(overrides)
    settings.save_overrides({"STOP_TIMEOUT": 5, "PID_FILE_NAME": "x"})
    assert json.loads(overrides.read_text()) == {"STOP_TIMEOUT": 5}
