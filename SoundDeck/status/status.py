"""Status definitions, exceptions and result envelopes for SoundDeck.

This module provides:
    - Status: enumeration of possible outcomes
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions raised by the profile and backup services
    - Result: internal outcome of a persistence operation
    - envelope / returns_envelope: the ``{'success': bool, 'error'?: str}`` dicts
      returned to the UI
"""
import dataclasses
import enum
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Profile status
    ProfileNotFound = enum.auto()
    DuplicateProfile = enum.auto()
    InvalidProfileName = enum.auto()
    CannotDeleteActiveProfile = enum.auto()

    # State file status
    StateFileCorrupt = enum.auto()
    StateWriteFailed = enum.auto()
    BackupWriteFailed = enum.auto()
    SaveSuppressed = enum.auto()
    StateLoadFailed = enum.auto()

    # Backup status
    BackupNotFound = enum.auto()

    # Switch status
    FlushFailed = enum.auto()
    RelaunchFailed = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status.',
    Status.Okay: 'Everything is okay.',

    Status.ProfileNotFound: 'Could not find the profile.',
    Status.DuplicateProfile: 'A profile with this name already exists.',
    Status.InvalidProfileName: 'The profile name is empty or too long after removing unsupported characters.',
    Status.CannotDeleteActiveProfile: 'The active profile cannot be deleted. Switch to another profile first.',

    Status.StateFileCorrupt: 'The saved state could not be read and was reset to empty.',
    Status.StateWriteFailed: 'Could not write the state file.',
    Status.BackupWriteFailed: 'Could not write a backup of the previous state.',
    Status.SaveSuppressed: 'Save skipped while the state is being restored.',
    Status.StateLoadFailed: 'Could not apply the saved state to the hotkeys and holding tank.',

    Status.BackupNotFound: 'Could not find the backup.',

    Status.FlushFailed: 'Could not save the current profile. The switch was cancelled.',
    Status.RelaunchFailed: 'Could not restart the application with the new profile.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in SoundDeck.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        level (int): Logging level the error is reported at.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus
    level = logging.ERROR

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.log(self.level, exception_message)

        if self.level >= logging.ERROR:
            from ..ui.actions import signals
            signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class ProfileNotFoundException(BaseStatusException):
    """Exception raised when a named profile has no directory on disk."""
    status = Status.ProfileNotFound


class DuplicateProfileException(BaseStatusException):
    """Exception raised when a profile with the same sanitized name already exists."""
    status = Status.DuplicateProfile


class InvalidProfileNameException(BaseStatusException):
    """Exception raised when a profile name sanitizes to an empty or over-long string."""
    status = Status.InvalidProfileName


class CannotDeleteActiveProfileException(BaseStatusException):
    """Exception raised when deleting the profile that is currently active."""
    status = Status.CannotDeleteActiveProfile


class StateFileCorruptException(BaseStatusException):
    """Exception raised when a state file cannot be parsed. Recovered by loading empty state."""
    status = Status.StateFileCorrupt
    level = logging.WARNING


class StateWriteFailedException(BaseStatusException):
    """Exception raised when the primary state file write fails."""
    status = Status.StateWriteFailed


class BackupWriteFailedException(BaseStatusException):
    """Exception raised when a backup copy could not be written."""
    status = Status.BackupWriteFailed
    level = logging.WARNING


class BackupNotFoundException(BaseStatusException):
    """Exception raised when a backup id does not exist for the profile."""
    status = Status.BackupNotFound


class FlushFailedException(BaseStatusException):
    """Exception raised when the pre-switch flush fails or times out."""
    status = Status.FlushFailed


class RelaunchFailedException(BaseStatusException):
    """Exception raised when the process could not be relaunched."""
    status = Status.RelaunchFailed


@dataclasses.dataclass
class Result:
    """Outcome of a persistence operation.

    ``SaveSuppressed`` results are not errors: ``ok`` is False but ``error`` is empty.
    """
    ok: bool
    status: Status = Status.Okay
    error: Optional[str] = None
    data: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def success(cls, **data: Any) -> 'Result':
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, status: Status, error: Optional[str] = None) -> 'Result':
        return cls(ok=False, status=status, error=error or get_message(status))

    @classmethod
    def suppressed(cls) -> 'Result':
        return cls(ok=False, status=Status.SaveSuppressed)

    @property
    def is_suppressed(self) -> bool:
        return self.status == Status.SaveSuppressed

    def as_envelope(self) -> Dict[str, Any]:
        if self.ok:
            return envelope(True, **self.data)
        if self.is_suppressed:
            return envelope(False, suppressed=True, **self.data)
        return envelope(False, error=self.error, status=str(self.status), **self.data)


def envelope(success: bool, error: Optional[str] = None, **data: Any) -> Dict[str, Any]:
    """Build the dict returned by every profile and backup command.

    Args:
        success: Whether the command succeeded.
        error: Human-readable error. Omitted when None.
        **data: Extra payload merged into the envelope.

    Returns:
        dict: ``{'success': success, 'error'?: error, **data}``.
    """
    result: Dict[str, Any] = {'success': success}
    if error is not None:
        result['error'] = error
    result.update(data)
    return result


def returns_envelope(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Dict[str, Any]]]:
    """Decorator converting a coroutine's outcome into an envelope.

    The wrapped coroutine may return a dict payload, a :class:`Result`, or None.
    :class:`BaseStatusException`, :class:`OSError` and invalid-argument errors
    are turned into failed envelopes so that no exception crosses into the UI.
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Dict[str, Any]:
        try:
            value = await func(*args, **kwargs)
        except BaseStatusException as ex:
            return envelope(False, error=str(ex), status=str(ex.status))
        except (OSError, ValueError, TypeError) as ex:
            logging.error(f'{func.__name__} failed: {ex}')
            return envelope(False, error=str(ex), status=str(Status.UnknownStatus))

        if isinstance(value, Result):
            return value.as_envelope()
        if value is None:
            return envelope(True)
        return envelope(True, **value)

    return wrapper
