"""
Google OAuth2 authentication and credential management.

Provides the :class:`CredentialManager`, which issues authorization URLs, exchanges
authorization codes, and loads, refreshes and clears the single persisted credential.
"""

import json
import logging
import threading
from typing import Optional

import google.oauth2.credentials
import google_auth_oauthlib.flow

from . import service
from ..settings.lib import SettingsAPI
from ..status import status

DEFAULT_SCOPES = service.DEFAULT_SCOPES


class CredentialManager:
    """Manages OAuth2 credentials with thread-safe refresh.

    The credential lives in a single file slot (``SettingsAPI.creds_path``). A missing
    credential is a valid, unauthenticated state.
    """

    def __init__(self, settings: SettingsAPI) -> None:
        self.settings = settings
        self._lock = threading.Lock()

    @property
    def creds_path(self):
        return self.settings.creds_path

    def _flow(self) -> google_auth_oauthlib.flow.Flow:
        """
        Build a web-server OAuth flow from the configured client.

        Raises:
            status.ClientSecretNotFoundError: If no client is configured.
            status.ClientSecretInvalidError: If the client configuration is malformed.
        """
        client_config = self.settings.get_client_config()
        # The code is exchanged in a different request, so no PKCE verifier
        return google_auth_oauthlib.flow.Flow.from_client_config(
            client_config,
            scopes=DEFAULT_SCOPES,
            redirect_uri=self.settings.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def get_authorization_url(self) -> str:
        """
        Return the Google consent URL requesting offline access to Drive and Sheets.

        Returns:
            str: The authorization URL.

        Raises:
            status.ClientSecretNotFoundError: If no client is configured.
            status.ClientSecretInvalidError: If the client configuration is malformed.
        """
        url, _ = self._flow().authorization_url(
            access_type='offline',
            prompt='consent',  # always ask, so Google returns a refresh token
        )
        return url

    def exchange_code(self, code: str) -> google.oauth2.credentials.Credentials:
        """
        Exchange a one-time authorization code for credentials and persist them.

        Args:
            code (str): The code passed to the OAuth callback.

        Returns:
            google.oauth2.credentials.Credentials: The new credentials.

        Raises:
            status.AuthError: If the code is empty, invalid or expired, or the exchange fails.
            status.StorageError: If the credentials cannot be saved.
        """
        if not code:
            raise status.AuthError('Missing authorization code.')

        flow = self._flow()
        logging.debug('Exchanging authorization code for credentials...')
        try:
            flow.fetch_token(code=code, timeout=self.settings.timeout)
        except Exception as ex:
            raise status.AuthError(f'Authorization code exchange failed: {ex}') from ex

        creds = flow.credentials
        if not creds or not creds.token:
            raise status.AuthError('Authorization code exchange returned no access token.')
        if not creds.refresh_token:
            logging.warning('No refresh token was returned; the credentials cannot be refreshed once expired.')

        with self._lock:
            self.save_creds(creds)
        return creds

    def get_valid_credential(self) -> Optional[google.oauth2.credentials.Credentials]:
        """
        Return valid credentials, refreshing them if they have expired.

        Never raises for auth problems: a missing, corrupt, expired-and-unrefreshable
        credential or a failed refresh all return None, so local-only operation keeps
        working when Google is unreachable.

        Returns:
            The credentials, or None when unauthenticated.
        """
        with self._lock:
            if not self.creds_path.exists():
                logging.debug('No credentials found.')
                return None

            try:
                creds = google.oauth2.credentials.Credentials.from_authorized_user_file(
                    str(self.creds_path))
            except (ValueError, OSError) as ex:
                # Credentials file invalid → remove, treat as signed out
                logging.error(f'Failed to load credentials, removing them: {ex}')
                self._remove_creds()
                return None

            if not creds.expired:
                return creds

            if not creds.refresh_token:
                logging.warning('Credentials expired and no refresh token is available.')
                return None

            logging.debug('Credentials expired; attempting refresh.')
            try:
                creds.refresh(service.TimeoutRequest(self.settings.timeout))
            except Exception as ex:
                logging.error(f'Failed to refresh credentials: {ex}')
                return None
            logging.debug('Successfully refreshed credentials.')

            try:
                self.save_creds(creds)
            except status.StorageError:
                logging.warning('Refreshed credentials could not be saved; using them for this request only.')
            return creds

    def require_credential(self) -> google.oauth2.credentials.Credentials:
        """
        Like :meth:`get_valid_credential`, but raise when unauthenticated.

        Raises:
            status.AuthError: If no valid credentials are available.
        """
        creds = self.get_valid_credential()
        if creds is None:
            raise status.AuthError('Not signed in to Google.')
        return creds

    def is_authenticated(self) -> bool:
        """
        Cheap local check for a stored access token. Makes no network call, so
        stale credentials that would fail to refresh still count as authenticated.
        """
        if not self.creds_path.exists():
            return False
        try:
            with self.creds_path.open('r', encoding='utf-8') as f:
                data = json.load(f)
        except (ValueError, OSError):
            return False
        return isinstance(data, dict) and bool(data.get('token'))

    def clear(self) -> None:
        """
        Delete stored credentials to sign out the user. Safe to call when signed out.
        """
        with self._lock:
            self._remove_creds()

    def save_creds(self, creds: google.oauth2.credentials.Credentials) -> None:
        """
        Save OAuth2 credentials to the credentials slot.

        Raises:
            status.StorageError: If the file cannot be written.
        """
        try:
            self.creds_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.creds_path, 'w', encoding='utf-8') as token_file:
                token_file.write(creds.to_json())
        except OSError as ex:
            raise status.StorageError(f'Failed to save credentials to {self.creds_path}: {ex}') from ex

        logging.debug(f'Credentials saved to {self.creds_path}.')

    def _remove_creds(self) -> None:
        try:
            self.creds_path.unlink()
            logging.debug(f'Deleted {self.creds_path}.')
        except FileNotFoundError:
            logging.debug('No credentials file found. No action taken.')
        except OSError as ex:
            raise status.StorageError(f'Failed to delete credentials at {self.creds_path}: {ex}') from ex
