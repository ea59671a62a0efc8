"""Error types raised by the launcher core."""


class LauncherError(Exception):
    """Base class for every failure the launcher core reports."""


class NotFoundError(LauncherError):
    """A version, loader build or file does not exist upstream or locally."""


class NetworkError(LauncherError):
    """Transport or HTTP failure, including non-2xx answers and redirect loops."""

    def __init__(self, message: str, url: str = "", status: int = 0):
        super().__init__(message)
        self.url = url
        self.status = status


class VerificationError(LauncherError):
    """Downloaded content does not match its expected size or SHA-1."""


class StorageError(LauncherError):
    """Filesystem access failure or on-disk corruption."""


class LockTimeoutError(LauncherError):
    """A destination lock could not be acquired in time."""


class ProcessorError(LauncherError):
    """An installer processor step failed."""

    def __init__(self, message: str, step: int = -1, returncode: int = 0, stderr: str = ""):
        super().__init__(message)
        self.step = step
        self.returncode = returncode
        self.stderr = stderr


class MissingToolError(LauncherError):
    """A processor references a tool library that is not available."""


class ValidationError(LauncherError):
    """A produced game binary is structurally invalid."""


class OperationCancelledError(LauncherError):
    """The operation observed a cancellation request.

    Callers should treat this as a user-initiated stop, not a failure.
    """
