"""Exception hierarchy for archive resolution and download."""


class ArchiveError(Exception):
    """Base class for all archive reader errors."""


class ConfigurationError(ArchiveError):
    """Invalid request shape; never retried."""


class RemoteUnavailable(ArchiveError):
    """The archive did not answer in time or reported itself unavailable."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(ArchiveError):
    """The archive answered with something we cannot interpret."""


class LocalIOError(ArchiveError):
    """A local filesystem operation failed."""


class FileInUseError(LocalIOError):
    """The target file is held open by another process."""


class PathTooLongError(LocalIOError):
    """The target path exceeds the platform limit and cannot be escaped."""


class EmptyQueueError(ArchiveError):
    """The download queue holds nothing to process."""


class CartError(ArchiveError):
    """A bundling request ended in a state that cannot be downloaded."""

    def __init__(self, message: str, state=None):
        super().__init__(message)
        self.state = state
