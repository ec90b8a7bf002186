from enum import Enum


class ErrorCategory(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    EXECUTION = "execution"
    UNAUTHORIZED = "unauthorized"
    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    CONFIGURATION = "configuration"


class MachineLinkError(Exception):
    """Base exception for every connection-layer failure, with a category."""

    def __init__(self, message: str = "", category: ErrorCategory = ErrorCategory.EXECUTION):
        super().__init__(message)
        self.message = message
        self.category = category

    def to_dict(self):
        return {
            "error": self.message,
            "kind": type(self).__name__,
            "category": self.category.value,
        }


class DoesNotExist(MachineLinkError):
    """The addressed path, or its parent, does not exist."""

    def __init__(self, path: str = ""):
        super().__init__(str(path), ErrorCategory.NOT_FOUND)
        self.path = path


class NameAlreadyExists(MachineLinkError):
    def __init__(self, message: str = ""):
        super().__init__(message, ErrorCategory.VALIDATION)


class NameCannotContainSlash(MachineLinkError):
    def __init__(self, message: str = ""):
        super().__init__(message, ErrorCategory.VALIDATION)


class RefusedPath(MachineLinkError):
    """Raised for destructive operations addressed at the filesystem root."""

    def __init__(self, message: str = ""):
        super().__init__(message, ErrorCategory.VALIDATION)


class UnknownOwner(MachineLinkError):
    """An access change named a user or group the host does not know."""

    def __init__(self, message: str = ""):
        super().__init__(message, ErrorCategory.VALIDATION)


class BashFailed(MachineLinkError):
    """A shell command exited non-zero (or wrote to stderr over SSH)."""

    def __init__(self, stderr: str = ""):
        super().__init__(stderr, ErrorCategory.EXECUTION)
        self.stderr = stderr


class PasswordRequired(MachineLinkError):
    """The remote side asked for a password and none was configured.

    Recoverable: configure a password on the machine and run the command again.
    """

    def __init__(self, message: str = ""):
        super().__init__(
            message or "the remote command asked for a password and none is configured",
            ErrorCategory.CONFIGURATION,
        )


class NotAuthorized(MachineLinkError):
    def __init__(self, message: str = ""):
        super().__init__(message, ErrorCategory.UNAUTHORIZED)


class FailedTransmit(MachineLinkError):
    def __init__(self, message: str = ""):
        super().__init__(message, ErrorCategory.TRANSPORT)


class UnknownAction(MachineLinkError):
    def __init__(self, message: str = ""):
        super().__init__(message, ErrorCategory.PROTOCOL)


class NotAnEntry(MachineLinkError, TypeError):
    """Copy/move was handed something other than a File or Dir handle."""

    def __init__(self, message: str = "must operate on File or Dir entries"):
        super().__init__(message, ErrorCategory.VALIDATION)


class CrossNetworkMove(MachineLinkError):
    def __init__(self, message: str = ""):
        super().__init__(
            message
            or "refusing to move an entry across the network; copy it, verify, then destroy the source",
            ErrorCategory.VALIDATION,
        )


class UnsupportedTransfer(MachineLinkError):
    def __init__(self, message: str = ""):
        super().__init__(message, ErrorCategory.CONFIGURATION)
