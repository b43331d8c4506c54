import os
import logging
import zipfile
import threading
from pathlib import Path
from typing import Dict, Optional

from fatpack.config import effective_settings as config
from fatpack.errors import AssemblyError

log = logging.getLogger(__name__)


def _normalize(entry_path: str) -> str:
    return entry_path.replace("\\", "/").lstrip("/")


def render_manifest(attributes: Dict[str, str]) -> bytes:
    """Renders manifest attributes as `Key: Value` lines."""
    lines = [f"Manifest-Version: {config.MANIFEST_VERSION}"]
    lines.extend(f"{key}: {value}" for key, value in attributes.items() if value is not None)
    return ("\n".join(lines) + "\n").encode("utf-8")


def parse_manifest(content: bytes) -> Dict[str, str]:
    """Parses `Key: Value` manifest lines into a dictionary."""
    attributes: Dict[str, str] = {}
    for line in content.decode("utf-8").splitlines():
        key, sep, value = line.partition(":")
        if sep:
            attributes[key.strip()] = value.strip()
    return attributes


class Archive:
    """
    An in-memory, ordered mapping of entry path to bytes.

    Writing an existing path replaces its content. Mutation and export share a
    lock, but an instance is meant to serve a single assembly or merge.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, archive_path: Path) -> "Archive":
        """Creates an archive holding every file entry of the zip at `archive_path`."""
        archive = cls()
        archive.import_from(archive_path)
        return archive

    def __contains__(self, entry_path: str) -> bool:
        return _normalize(entry_path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, entry_path: str) -> Optional[bytes]:
        return self._entries.get(_normalize(entry_path))

    def add(self, entry_path: str, data: bytes) -> None:
        with self._lock:
            self._entries[_normalize(entry_path)] = data

    def delete(self, entry_path: str) -> bool:
        with self._lock:
            return self._entries.pop(_normalize(entry_path), None) is not None

    def import_from(self, archive_path: Path) -> int:
        """
        Imports all file entries of a zip archive; existing paths are overwritten.

        :param archive_path: The zip (or wheel) file to import.
        :return: The number of entries imported.
        """
        count = 0
        with zipfile.ZipFile(archive_path, "r") as zf, self._lock:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                self._entries[_normalize(info.filename)] = zf.read(info)
                count += 1
        log.debug(f"Imported {count} entries from {archive_path}")
        return count

    def set_manifest(self, attributes: Dict[str, str]) -> None:
        self.add(config.MANIFEST_PATH, render_manifest(attributes))

    def manifest(self) -> Dict[str, str]:
        content = self.get(config.MANIFEST_PATH)
        return parse_manifest(content) if content is not None else {}

    def export(self, target: Path) -> Path:
        """
        Writes the archive to `target` as a deterministic zip file.

        The content goes to a temporary file next to the target which then
        replaces it, so a failed export never leaves a truncated archive behind.

        :param target: The destination path; parent directories are created.
        :return: The target path.
        :raises AssemblyError: On any I/O failure, naming the target path.
        """
        target = Path(target)
        temp_path = target.with_name(target.name + ".tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with self._lock, zipfile.ZipFile(temp_path, "w") as zf:
                for entry_path, data in self._entries.items():
                    info = zipfile.ZipInfo(entry_path, date_time=config.ARCHIVE_ENTRY_DATE_TIME)
                    info.compress_type = zipfile.ZIP_DEFLATED
                    info.external_attr = 0o644 << 16
                    zf.writestr(info, data)
            os.replace(temp_path, target)
        except (OSError, zipfile.BadZipFile) as e:
            raise AssemblyError(target, e) from e
        finally:
            temp_path.unlink(missing_ok=True)

        log.debug(f"Exported {len(self._entries)} entries to {target}")
        return target


def read_manifest(archive_path: Path) -> Dict[str, str]:
    """Reads the manifest attributes of an exported archive."""
    with zipfile.ZipFile(archive_path, "r") as zf:
        try:
            return parse_manifest(zf.read(config.MANIFEST_PATH))
        except KeyError:
            return {}
