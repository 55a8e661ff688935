"""Error taxonomy shared by the remote source, the local store and the coordinators.

Only ``ValidationError`` and ``AuthenticationError`` ever reach the caller.
``RemoteUnavailable`` travels inside a ``RemoteResult`` and ``StorageError`` is
logged and absorbed by the local store.
"""


class OrderingError(Exception):
    pass


class ValidationError(OrderingError):
    """Bad caller input. Raised before any network or storage call."""


class AuthenticationError(OrderingError):
    """The ordering API answered 401; the credential must be refreshed."""

    def __init__(self, message: str = "API authentication failed", path: str | None = None):
        super().__init__(message)
        self.path = path


class RemoteUnavailable(OrderingError):
    def __init__(self, kind: str, message: str = ""):
        super().__init__(message or kind)
        self.kind = kind


class StorageError(OrderingError):
    def __init__(self, operation: str, message: str = ""):
        super().__init__(message or operation)
        self.operation = operation
