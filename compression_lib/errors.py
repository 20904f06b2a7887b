"""Custom exceptions for the compression monitor library."""


class CompressionMonitorError(Exception):
    """Base exception for all compression monitor errors."""

    pass


class ValidationError(CompressionMonitorError):
    """Raised when an operator action is attempted while its precondition is false.

    Raised before any I/O is performed; the controller state is left unchanged.
    """

    pass


class DeviceConnectionError(CompressionMonitorError):
    """Raised when a serial port cannot be claimed (missing, busy, no permission)."""

    pass


class DeviceIOError(CompressionMonitorError):
    """Raised when reading from or writing to an open device fails."""

    pass


class PersistenceError(CompressionMonitorError):
    """Raised when a call to the session backend fails."""

    pass


class SessionNotFoundError(PersistenceError):
    """Raised when the backend has no session with the requested id."""

    pass
