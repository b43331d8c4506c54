"""
Exception hierarchy shared by the packaging and orchestration layers.
"""


class FatpackError(Exception):
    """Base class for all errors reported by fatpack."""


class ResolutionError(FatpackError):
    """A single dependency coordinate could not be resolved to a local file."""


class PreconditionError(FatpackError):
    """Required input is missing or invalid. Raised before any file is mutated."""


class AssemblyError(FatpackError):
    """The fat archive could not be written."""

    def __init__(self, target, cause: BaseException):
        super().__init__(f"Unable to build fat archive '{target}': {cause}")
        self.target = target


class ServiceMergeError(FatpackError):
    """
    Merging service registries failed after backups were taken.
    The backups are left on disk and must be cleaned up by hand.
    """

    def __init__(self, source, backups=()):
        super().__init__(f"Unable to create fat archive: {source}")
        self.source = source
        self.backups = list(backups)


class LaunchError(FatpackError):
    """The application could not be started, or failed while running inline."""


class NotRunningError(FatpackError):
    """There is no started process to stop."""


class StopTimeoutError(FatpackError):
    """The process did not stop within the timeout and was killed."""

    def __init__(self, pid: int, timeout: float):
        super().__init__(f"Unable to stop process {pid} within timeout: {timeout} seconds")
        self.pid = pid
        self.timeout = timeout
