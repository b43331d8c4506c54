from pathlib import Path

import pytest

from fatpack.dependencies import (
    DependencyCoordinate, DependencyRecord, LocalRepository,
    classpath, present_paths, resolve, split_direct_and_transitive,
)
from fatpack.dependencies import repository as repository_module
from fatpack.errors import PreconditionError, ResolutionError


class FakeService:
    def __init__(self, paths):
        self.paths = paths
        self.requested = []

    def resolve(self, coordinate):
        self.requested.append(coordinate)
        if coordinate.name not in self.paths:
            raise ResolutionError(f"Unable to resolve: {coordinate}")
        return self.paths[coordinate.name]


def record(text, scope="compile", direct=True):
    return DependencyRecord(DependencyCoordinate.parse(text), scope, direct)


def test_coordinate_canonical_form():
    assert str(DependencyCoordinate.parse("org.example:lib:1.0")) == "org.example:lib:1.0"
    assert str(DependencyCoordinate.parse("org.example:lib:1.0:zip")) == "org.example:lib:1.0:zip"
    assert str(DependencyCoordinate.parse("org.example:lib:1.0:whl:linux")) == "org.example:lib:1.0:whl:linux"


def test_coordinate_identity_is_the_full_tuple():
    assert DependencyCoordinate.parse("g:a:1") == DependencyCoordinate("g", "a", "1")
    assert DependencyCoordinate.parse("g:a:1:whl:x") != DependencyCoordinate("g", "a", "1")


@pytest.mark.parametrize("text", ["g:a", "g:a:1:whl:x:y", "g::1"])
def test_coordinate_parse_rejects_malformed_text(text):
    with pytest.raises(PreconditionError):
        DependencyCoordinate.parse(text)


def test_coordinate_repository_path():
    coordinate = DependencyCoordinate("org.example", "lib", "1.0", "zip", "linux")
    assert coordinate.repository_path == "org/example/lib/1.0/lib-1.0-linux.zip"


def test_resolve_skips_non_packaged_scopes():
    service = FakeService({"a": Path("/r/a.whl"), "t": Path("/r/t.whl")})
    resolved = resolve([record("g:a:1"), record("g:t:1", scope="test"), record("g:p:1", scope="provided")], service)
    assert list(resolved) == [DependencyCoordinate("g", "a", "1")]
    assert [c.name for c in service.requested] == ["a"]


def test_resolve_records_absence_without_aborting():
    service = FakeService({"a": Path("/r/a.whl"), "c": Path("/r/c.whl")})
    resolved = resolve([record("g:a:1"), record("g:b:1", scope="runtime"), record("g:c:1")], service)
    assert [c.name for c in resolved] == ["a", "b", "c"]
    assert resolved[DependencyCoordinate("g", "b", "1")] is None
    assert present_paths(resolved) == [Path("/r/a.whl"), Path("/r/c.whl")]


def test_split_direct_and_transitive_removes_duplicates():
    service = FakeService({"a": Path("/r/a.whl"), "b": Path("/r/b.whl")})
    records = [record("g:a:1"), record("g:b:1", direct=False), record("g:a:1", direct=False), record("g:x:1", direct=False)]
    direct, transitive = split_direct_and_transitive(records, service)
    assert direct == [Path("/r/a.whl")]
    assert transitive == [Path("/r/b.whl")]


def test_classpath_order():
    entries = classpath(Path("src"), [Path("res1"), Path("res2")], [Path("d.whl")], [Path("t.whl"), Path("d.whl")])
    assert entries == [Path("res1"), Path("res2"), Path("src"), Path("d.whl"), Path("t.whl")]


def test_local_repository_resolves_group_layout(tmp_path):
    artifact = tmp_path / "org" / "example" / "lib" / "1.0" / "lib-1.0.whl"
    artifact.parent.mkdir(parents=True)
    artifact.write_bytes(b"wheel")
    repository = LocalRepository(tmp_path, remote_urls=[])
    assert repository.resolve(DependencyCoordinate.parse("org.example:lib:1.0")) == artifact.resolve()


def test_local_repository_missing_artifact_raises(tmp_path):
    with pytest.raises(ResolutionError):
        LocalRepository(tmp_path, remote_urls=[]).resolve(DependencyCoordinate.parse("org.example:lib:1.0"))


class FakeResponse:
    def __init__(self, chunks):
        self.chunks = chunks

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        pass

    def iter_content(self, chunk_size):
        yield from self.chunks


def test_local_repository_downloads_from_remote(tmp_path, monkeypatch):
    requested = []

    def fake_get(url, **kwargs):
        requested.append(url)
        return FakeResponse([b"whe", b"el"])

    monkeypatch.setattr(repository_module.requests, "get", fake_get)
    repository = LocalRepository(tmp_path, remote_urls=["https://repo.example/releases/"])
    path = repository.resolve(DependencyCoordinate.parse("org.example:lib:1.0"))

    assert requested == ["https://repo.example/releases/org/example/lib/1.0/lib-1.0.whl"]
    assert path.read_bytes() == b"wheel"
    assert not list(tmp_path.rglob("*.part"))
