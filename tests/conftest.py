import sys
import zipfile
import textwrap
from pathlib import Path

import pytest


def write_zip(path: Path, entries) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


def zip_entries(path: Path):
    with zipfile.ZipFile(path) as zf:
        return {info.filename: zf.read(info) for info in zf.infolist()}


@pytest.fixture
def make_zip(tmp_path):
    def factory(name, entries):
        return write_zip(tmp_path / name, entries)
    return factory


@pytest.fixture
def write_module(tmp_path):
    """Writes an importable module into tmp_path and forgets it from sys.modules afterwards."""
    written = []

    def factory(name, source):
        (tmp_path / f"{name}.py").write_text(textwrap.dedent(source), encoding="utf-8")
        written.append(name)
        return tmp_path

    yield factory
    for name in written:
        sys.modules.pop(name, None)
