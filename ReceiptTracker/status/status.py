"""Status codes and the exception taxonomy of ReceiptTracker.

Each exception class is bound to a :class:`Status`. The status selects the
user-facing message (:data:`STATUS_MESSAGE`) and the HTTP status code the web layer
answers with (:data:`HTTP_STATUS`). Use :func:`error_response` to turn any exception
into the ``(code, {'error': message})`` pair returned to the browser.
"""
import enum
import logging
from typing import Any, Dict, Tuple


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    SettingsInvalid = enum.auto()

    ClientSecretNotFound = enum.auto()
    ClientSecretInvalid = enum.auto()
    NotAuthenticated = enum.auto()

    ServiceUnavailable = enum.auto()

    ValidationFailed = enum.auto()
    NotFound = enum.auto()
    StorageFailed = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Internal server error.',
    Status.Okay: 'Everything is okay.',
    Status.SettingsInvalid: 'settings.json is malformed or contains invalid values.',
    Status.ClientSecretNotFound: 'No Google OAuth client is configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.',
    Status.ClientSecretInvalid: 'The Google OAuth client configuration is invalid.',
    Status.NotAuthenticated: 'Not signed in to Google. Sign in again to sync receipts.',
    Status.ServiceUnavailable: 'Google Drive or Google Sheets is unavailable.',
    Status.ValidationFailed: 'Invalid request.',
    Status.NotFound: 'Receipt not found.',
    Status.StorageFailed: 'Failed to read or write local receipt data.',
}

HTTP_STATUS: Dict[Status, int] = {
    Status.UnknownStatus: 500,
    Status.Okay: 200,
    Status.SettingsInvalid: 500,
    Status.ClientSecretNotFound: 500,
    Status.ClientSecretInvalid: 500,
    Status.NotAuthenticated: 401,
    Status.ServiceUnavailable: 502,
    Status.ValidationFailed: 400,
    Status.NotFound: 404,
    Status.StorageFailed: 500,
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, STATUS_MESSAGE[Status.UnknownStatus])


class BaseStatusException(Exception):
    """Base of every ReceiptTracker error. Logs itself at ERROR level when raised.

    Attributes:
        status (Status): Status bound to the exception class.
        status_message (str): User-facing message of the status.
        detail (str): Context passed by the raiser, if any.

    Args:
        message (str): Optional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        self.detail = message or ''
        text = f'{self.status_message} {self.detail}' if self.detail else self.status_message
        super().__init__(text)

        logging.error(f'[{self.status}] {text}')

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.status]


class UnknownException(BaseStatusException):
    pass


class SettingsInvalidError(BaseStatusException):
    """settings.json cannot be parsed or fails validation."""
    status = Status.SettingsInvalid


class AuthError(BaseStatusException):
    """Not signed in, or a code exchange or token refresh failed."""
    status = Status.NotAuthenticated


class ClientSecretNotFoundError(AuthError):
    status = Status.ClientSecretNotFound


class ClientSecretInvalidError(AuthError):
    status = Status.ClientSecretInvalid


class RemoteError(BaseStatusException):
    """A Google Drive or Google Sheets call failed or timed out."""
    status = Status.ServiceUnavailable


class ValidationError(BaseStatusException):
    """Disallowed file type, oversized file, or a missing or malformed field."""
    status = Status.ValidationFailed


class NotFoundError(BaseStatusException):
    """Unknown receipt id, or the file behind a receipt is gone."""
    status = Status.NotFound


class StorageError(BaseStatusException):
    """The local snapshot or a local file cannot be read or written."""
    status = Status.StorageFailed


def error_response(ex: BaseException) -> Tuple[int, Dict[str, Any]]:
    """Map an exception to an HTTP status code and a JSON error body.

    Exceptions outside the taxonomy are logged with their traceback and
    answered with a generic 500.

    Args:
        ex: The exception raised by a :class:`ReceiptTracker.api.ReceiptAPI` call.

    Returns:
        tuple: ``(http_status, {'error': message})``.
    """
    if isinstance(ex, BaseStatusException):
        return ex.http_status, {'error': str(ex)}
    logging.error('Unhandled error', exc_info=ex)
    return HTTP_STATUS[Status.UnknownStatus], {'error': get_message(Status.UnknownStatus)}
