from dataclasses import dataclass
from typing import Optional

from fatpack.config import effective_settings as config
from fatpack.errors import PreconditionError


@dataclass(frozen=True)
class DependencyCoordinate:
    """
    The unique identity of an external dependency.

    The canonical string form is `group:name:version[:type][:classifier]`, the
    type being omitted when it is the default archive type.
    """
    group: str
    name: str
    version: str
    type: str = config.DEFAULT_DEPENDENCY_TYPE
    classifier: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "DependencyCoordinate":
        """
        Parses a coordinate from its string form.

        :param text: e.g. `org.example:lib:1.0`, `org.example:lib:1.0:zip:linux`.
        :return: The parsed coordinate.
        :raises PreconditionError: If the string has fewer than three or more than five parts.
        """
        parts = text.strip().split(":")
        if not 3 <= len(parts) <= 5 or not all(parts):
            raise PreconditionError(f"Invalid dependency coordinate: '{text}'")
        group, name, version = parts[:3]
        dep_type = parts[3] if len(parts) > 3 else config.DEFAULT_DEPENDENCY_TYPE
        classifier = parts[4] if len(parts) > 4 else None
        return cls(group, name, version, dep_type, classifier)

    @property
    def file_name(self) -> str:
        """The file name of the artifact inside a repository."""
        suffix = f"-{self.classifier}" if self.classifier else ""
        return f"{self.name}-{self.version}{suffix}.{self.type}"

    @property
    def repository_path(self) -> str:
        """Relative path of the artifact inside a group/name/version repository layout."""
        return "/".join(self.group.split(".") + [self.name, self.version, self.file_name])

    def __str__(self) -> str:
        text = f"{self.group}:{self.name}:{self.version}"
        if self.type != config.DEFAULT_DEPENDENCY_TYPE or self.classifier:
            text += f":{self.type}"
        if self.classifier:
            text += f":{self.classifier}"
        return text


@dataclass(frozen=True)
class DependencyRecord:
    """A coordinate as declared in project metadata, with its scope."""
    coordinate: DependencyCoordinate
    scope: str = "compile"
    direct: bool = True

    @property
    def is_packaged(self) -> bool:
        """Only compile and runtime scoped dependencies are packaged and put on the launch path."""
        return self.scope in config.RESOLVABLE_SCOPES
