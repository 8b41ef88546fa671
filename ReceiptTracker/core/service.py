"""Google API client construction and request execution.

Every client is bound to an ``httplib2.Http`` with an explicit timeout, and every
request goes through :func:`execute`, which maps transport and API failures onto
:class:`ReceiptTracker.status.status.RemoteError` (or ``AuthError`` for rejected
credentials).
"""

import logging
import ssl
from typing import Any, Optional

import google.auth.exceptions
import google.auth.transport.requests
import google_auth_httplib2
import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..status import status

DRIVE_SCOPE: str = 'https://www.googleapis.com/auth/drive.file'
SHEETS_SCOPE: str = 'https://www.googleapis.com/auth/spreadsheets'
DEFAULT_SCOPES = [DRIVE_SCOPE, SHEETS_SCOPE]

DEFAULT_TIMEOUT: float = 30


class TimeoutRequest(google.auth.transport.requests.Request):
    """A google-auth transport that applies a default timeout to every token request."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session: Any = None) -> None:
        super().__init__(session=session)
        self.timeout = timeout

    def __call__(self, url, method='GET', body=None, headers=None, timeout=None, **kwargs):
        return super().__call__(
            url, method=method, body=body, headers=headers,
            timeout=timeout or self.timeout, **kwargs
        )


def authorized_http(creds: Any, timeout: float = DEFAULT_TIMEOUT) -> google_auth_httplib2.AuthorizedHttp:
    """Wrap credentials in an authorized httplib2 client with the given timeout."""
    return google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))


def build_service(name: str, version: str, creds: Any, timeout: float = DEFAULT_TIMEOUT) -> Any:
    """
    Builds a Google API service client.

    Args:
        name (str): API name, e.g. 'drive' or 'sheets'.
        version (str): API version, e.g. 'v3'.
        creds: Google credentials.
        timeout (float): Per-request timeout in seconds.

    Returns:
        The API Resource.

    Raises:
        status.RemoteError: If the client cannot be created.
    """
    try:
        service: Any = build(name, version, http=authorized_http(creds, timeout), cache_discovery=False)
    except Exception as ex:
        raise status.RemoteError(f'Could not create the Google {name} client: {ex}') from ex
    logging.debug(f'Google {name} {version} service client created.')
    return service


def execute(request: Any, num_retries: int = 0, description: str = 'Google API request',
            not_found_ok: bool = False) -> Optional[Any]:
    """
    Executes a Google API request, translating failures.

    Args:
        request: An ``HttpRequest`` built from a service Resource.
        num_retries (int): Retries for 5xx and rate limit responses. Only use for idempotent requests.
        description (str): Used in log and error messages.
        not_found_ok (bool): Return None instead of raising on HTTP 404.

    Returns:
        The decoded response body.

    Raises:
        status.AuthError: If the credentials were rejected or could not be refreshed.
        status.RemoteError: On any other API, transport or timeout failure.
    """
    logging.debug(f'{description}: executing.')
    try:
        return request.execute(num_retries=num_retries)
    except HttpError as ex:
        stat: Optional[int] = ex.resp.status if ex.resp else None
        if stat == 404 and not_found_ok:
            logging.warning(f'{description}: not found (HTTP 404).')
            return None
        if stat == 401:
            raise status.AuthError(f'{description}: credentials rejected (HTTP 401).') from ex
        if stat == 403:
            raise status.RemoteError(f'{description}: access denied (HTTP 403).') from ex
        raise status.RemoteError(f'{description} failed (HTTP {stat}): {ex}') from ex
    except google.auth.exceptions.RefreshError as ex:
        raise status.AuthError(f'{description}: failed to refresh credentials: {ex}') from ex
    except TimeoutError as ex:
        raise status.RemoteError(f'{description}: timed out: {ex}') from ex
    except ssl.SSLError as ex:
        raise status.RemoteError(f'{description}: SSL error: {ex}') from ex
    except (httplib2.HttpLib2Error, google.auth.exceptions.TransportError, OSError) as ex:
        raise status.RemoteError(f'{description}: transport error: {ex}') from ex
