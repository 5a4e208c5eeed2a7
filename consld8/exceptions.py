"""
Module: exceptions
Purpose: Custom exception hierarchy for consld8.
"""


class Consld8Error(Exception):
    """Base exception for consld8."""

    pass


class ConfigError(Consld8Error):
    pass


class ScanError(Consld8Error):
    pass


class HashingError(Consld8Error):
    pass


class InvalidTargetError(Consld8Error):
    """The subfolder or destination disk does not resolve under the share."""

    pass


class NoDiskSpaceError(Consld8Error):
    """The destination disk cannot hold the planned moves plus the safety margin."""

    def __init__(self, message: str, required: int = 0, available: int = 0):
        super().__init__(message)
        self.required = required
        self.available = available


class ConflictDetectedError(Consld8Error):
    """Unresolved same-path conflicts block execution."""

    def __init__(self, message: str, paths: list[str] | None = None):
        super().__init__(message)
        self.paths = list(paths or [])


class SessionConflictError(Consld8Error):
    pass


class SessionStateError(Consld8Error):
    pass


class MoveFailedError(Consld8Error):
    """Per-file failure. Recorded in the execution result, never aborts a plan."""

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason


class FatalIOError(Consld8Error):
    """Destination became unusable mid-run; the remaining plan is abandoned."""

    pass
