"""Custom exceptions for infrabump."""


class BumpError(Exception):
    """Base exception for all bump engine errors."""


class FatalError(BumpError):
    """Raised when the operation cannot start (missing root path, invalid options)."""


class ScanError(BumpError):
    """Raised when a directory or declaration file cannot be read or parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


class FetchError(BumpError):
    """Raised when a registry cannot produce a version catalog for an identity.

    Instances are also stored as values in the resolution cache so a broken
    identity is not retried within the same session.
    """

    def __init__(self, identity_key: str, reason: str):
        self.identity_key = identity_key
        self.reason = reason
        super().__init__(f"{identity_key}: {reason}")


class VersionParseError(BumpError, ValueError):
    """Raised when a string is not a valid semantic version."""


class ApplyError(BumpError):
    """Raised when the expected version token is not found at the recorded location."""

    def __init__(self, file_path: str, line: int, reason: str):
        self.file_path = file_path
        self.line = line
        self.reason = reason
        super().__init__(f"{file_path}:{line}: {reason}")
