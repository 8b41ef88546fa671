"""Settings library for data paths, remote service settings and OAuth client configuration.

Provides:
    - Schema validation and enforcement for the settings.json structure.
    - Loading, saving and clearing the settings and client_secret.json data.
    - Environment overrides for serverless deployments.
    - The data directory layout shared by every component.
"""

import copy
import json
import logging
import os
import pathlib
import tempfile
from typing import Dict, Any, Optional, List

from ..status import status

app_name: str = 'ReceiptTracker'

DATA_DIR_ENV: str = 'RECEIPT_TRACKER_DATA_DIR'
SERVERLESS_ENV: str = 'VERCEL'

NOT_CONFIGURED: str = 'Not configured'

DEFAULT_AUTH_URI: str = 'https://accounts.google.com/o/oauth2/auth'
DEFAULT_TOKEN_URI: str = 'https://oauth2.googleapis.com/token'

SETTINGS_SCHEMA: Dict[str, Any] = {
    'drive': {
        'type': dict,
        'required': True,
        'item_schema': {
            'folder_id': {'type': str, 'required': True},
        }
    },
    'ledger': {
        'type': dict,
        'required': True,
        'item_schema': {
            'spreadsheet_id': {'type': str, 'required': True},
            'worksheet': {'type': str, 'required': True},
            'service_account_file': {'type': str, 'required': True},
        }
    },
    'server': {
        'type': dict,
        'required': True,
        'item_schema': {
            'redirect_uri': {'type': str, 'required': True},
            'client_url': {'type': str, 'required': True},
        }
    },
    'remote': {
        'type': dict,
        'required': True,
        'item_schema': {
            'timeout': {'type': (int, float), 'required': True},
            'num_retries': {'type': int, 'required': True},
        }
    },
}

DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    'drive': {
        'folder_id': '',
    },
    'ledger': {
        'spreadsheet_id': '',
        'worksheet': 'Sheet1',
        'service_account_file': '',
    },
    'server': {
        'redirect_uri': 'http://localhost:3001/api/auth/callback',
        'client_url': 'http://localhost:5173',
    },
    'remote': {
        'timeout': 30,
        'num_retries': 2,
    },
}

# Environment variable -> (section, key)
ENV_OVERRIDES: Dict[str, tuple] = {
    'GOOGLE_DRIVE_FOLDER_ID': ('drive', 'folder_id'),
    'GOOGLE_SHEET_ID': ('ledger', 'spreadsheet_id'),
    'GOOGLE_SHEET_WORKSHEET': ('ledger', 'worksheet'),
    'GOOGLE_SERVICE_ACCOUNT_FILE': ('ledger', 'service_account_file'),
    'GOOGLE_REDIRECT_URI': ('server', 'redirect_uri'),
    'CLIENT_URL': ('server', 'client_url'),
}

REQUIRED_CLIENT_SECRET_KEYS: List[str] = ['client_id', 'client_secret', 'auth_uri', 'token_uri']


def _validate_section(section_name: str, section_data: Any, specs: Dict[str, Any]) -> None:
    """Validate one section of settings.json against its schema entry.

    Args:
        section_name: Name of the section, used in error messages.
        section_data: The section's data.
        specs: The SETTINGS_SCHEMA entry for the section.

    Raises:
        TypeError: If the section or one of its values has the wrong type.
        ValueError: If a required key is missing or a value is out of range.
    """
    logging.debug(f'Validating "{section_name}" section.')
    if not isinstance(section_data, specs['type']):
        msg: str = f'"{section_name}" must be {specs["type"]}, got {type(section_data)}.'
        logging.error(msg)
        raise TypeError(msg)

    for field, field_specs in specs['item_schema'].items():
        if field_specs['required'] and field not in section_data:
            msg = f'Section "{section_name}" missing "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        if field not in section_data:
            continue
        value = section_data[field]
        # bool is an int subclass, but never a valid number here
        if isinstance(value, bool) or not isinstance(value, field_specs['type']):
            msg = (
                f'Section "{section_name}" field "{field}" must be {field_specs["type"]}, '
                f'got {type(value)}.'
            )
            logging.error(msg)
            raise TypeError(msg)

    if section_name == 'remote':
        if section_data['timeout'] <= 0:
            msg = f'Remote timeout must be positive, got {section_data["timeout"]}.'
            logging.error(msg)
            raise ValueError(msg)
        if section_data['num_retries'] < 0:
            msg = f'Remote num_retries must not be negative, got {section_data["num_retries"]}.'
            logging.error(msg)
            raise ValueError(msg)


def mask_account(account: str) -> str:
    """Mask an account identity for display, keeping the first five characters and the domain.

    Args:
        account (str): An email address or client id.

    Returns:
        str: e.g. ``'recei...@project.iam.gserviceaccount.com'``, or NOT_CONFIGURED when empty.
    """
    if not account:
        return NOT_CONFIGURED
    at = account.find('@')
    domain = account[at:] if at >= 0 else ''
    return f'{account[:5]}...{domain}'


class ConfigPaths:
    """Resolve the data directory and the files and directories kept beneath it.

    The data directory is taken from the ``data_dir`` argument, then the
    ``RECEIPT_TRACKER_DATA_DIR`` environment variable. Serverless deployments
    (``VERCEL=1``) fall back to an ephemeral directory under the system temp dir,
    everything else to ``~/.ReceiptTracker``.
    """

    def __init__(self, data_dir: Optional[str] = None) -> None:
        """Set up application paths and ensure the required directories exist.

        Args:
            data_dir: Optional explicit data directory.
        """
        if data_dir:
            p = pathlib.Path(data_dir)
        elif os.environ.get(DATA_DIR_ENV):
            p = pathlib.Path(os.environ[DATA_DIR_ENV])
        elif os.environ.get(SERVERLESS_ENV) == '1':
            p = pathlib.Path(tempfile.gettempdir()) / app_name
        else:
            p = pathlib.Path.home() / f'.{app_name}'

        self.data_dir: pathlib.Path = p
        logging.debug(f'Using data directory: {self.data_dir}')

        self.config_dir: pathlib.Path = self.data_dir / 'config'
        self.auth_dir: pathlib.Path = self.data_dir / 'auth'
        self.uploads_dir: pathlib.Path = self.data_dir / 'uploads'

        self.settings_path: pathlib.Path = self.config_dir / 'settings.json'
        self.client_secret_path: pathlib.Path = self.config_dir / 'client_secret.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'
        self.receipts_path: pathlib.Path = self.data_dir / 'receipts.json'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Create missing config, auth and uploads directories.

        Raises:
            status.StorageError: If a directory cannot be created.
        """
        for d in (self.data_dir, self.config_dir, self.auth_dir, self.uploads_dir):
            if d.exists():
                continue
            logging.debug(f'Creating directory: {d}')
            try:
                d.mkdir(parents=True, exist_ok=True)
            except OSError as ex:
                raise status.StorageError(f'Could not create "{d}": {ex}') from ex


class SettingsAPI(ConfigPaths):
    """
    The configuration object handed to every component.

    Provides an interface to get/set/save settings.json sections and the OAuth client
    configuration, with an explicit load/clear lifecycle. Environment overrides are
    applied on top of the file data on every load.
    """

    def __init__(self, data_dir: Optional[str] = None, client_secret_path: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load settings and client_secret data.

        Args:
            data_dir: Optional data directory, see :class:`ConfigPaths`.
            client_secret_path: Optional path to a custom client_secret.json file.
        """
        super().__init__(data_dir=data_dir)

        self.client_secret_path: pathlib.Path = (
            pathlib.Path(client_secret_path)
            if client_secret_path
            else self.client_secret_path
        )

        self.settings_data: Dict[str, Any] = copy.deepcopy(DEFAULT_SETTINGS)
        self.client_secret_data: Dict[str, Any] = {}
        self._client_secret_error: Optional[str] = None

        self.load()

    def load(self) -> None:
        """(Re)load settings.json, client_secret.json and the environment overrides.

        Raises:
            status.SettingsInvalidError: If settings.json is malformed.
        """
        self.load_settings()
        self.load_client_secret()
        self.apply_env_overrides()

    def clear(self) -> None:
        """Drop all loaded data and return to the built-in defaults. Files on disk are kept."""
        logging.debug('Clearing loaded settings.')
        self.settings_data = copy.deepcopy(DEFAULT_SETTINGS)
        self.client_secret_data = {}
        self._client_secret_error = None

    def load_settings(self) -> Dict[str, Any]:
        """Load settings.json from disk, fill in defaults and validate against the schema.

        A missing file is not an error; the defaults are used.

        Returns:
            The loaded settings dictionary.

        Raises:
            status.SettingsInvalidError: If JSON parsing or validation fails.
        """
        data: Dict[str, Any] = copy.deepcopy(DEFAULT_SETTINGS)
        if not self.settings_path.exists():
            logging.debug(f'No settings file at "{self.settings_path}", using defaults.')
            self.settings_data = data
            return self.settings_data

        logging.debug(f'Loading settings from "{self.settings_path}"')
        try:
            with self.settings_path.open('r', encoding='utf-8') as f:
                file_data: Dict[str, Any] = json.load(f)
            if not isinstance(file_data, dict):
                raise TypeError('settings.json must contain an object.')
            for section, values in file_data.items():
                if section not in SETTINGS_SCHEMA:
                    logging.warning(f'Ignoring unknown settings section "{section}".')
                    continue
                if not isinstance(values, dict):
                    raise TypeError(f'"{section}" must be a dict.')
                data[section].update(values)
            self.validate_settings_data(data)
        except (OSError, ValueError, TypeError) as ex:
            raise status.SettingsInvalidError(str(ex)) from ex

        self.settings_data = data
        return self.settings_data

    def load_client_secret(self) -> Dict[str, Any]:
        """Load client_secret.json from disk and validate required OAuth fields.

        A missing or malformed file leaves the client configuration empty; the error is
        raised later, by :meth:`get_client_config`, so that local-only operation keeps working.

        Returns:
            The loaded client secret data dictionary.
        """
        self.client_secret_data = {}
        self._client_secret_error = None

        if not self.client_secret_path.exists():
            logging.debug(f'No client secret file at "{self.client_secret_path}".')
            return self.client_secret_data

        logging.debug(f'Loading client_secret from "{self.client_secret_path}"')
        try:
            with self.client_secret_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_client_secret(data)
            self.client_secret_data = data
        except (OSError, ValueError) as ex:
            self._client_secret_error = f'Failed to load "{self.client_secret_path}": {ex}'
            logging.error(self._client_secret_error)
        except status.ClientSecretInvalidError as ex:
            self._client_secret_error = str(ex)
        return self.client_secret_data

    def apply_env_overrides(self) -> None:
        """Overlay the supported environment variables onto the loaded data."""
        for env_key, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(env_key)
            if value:
                logging.debug(f'Applying {env_key} to "{section}.{key}".')
                self.settings_data[section][key] = value

        client_id = os.environ.get('GOOGLE_CLIENT_ID')
        client_secret = os.environ.get('GOOGLE_CLIENT_SECRET')
        if client_id and client_secret:
            logging.debug('Using the OAuth client from GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.')
            self.client_secret_data = {
                'web': {
                    'client_id': client_id,
                    'client_secret': client_secret,
                    'auth_uri': DEFAULT_AUTH_URI,
                    'token_uri': DEFAULT_TOKEN_URI,
                    'redirect_uris': [self.redirect_uri],
                }
            }
            self._client_secret_error = None

    def validate_settings_data(self, data: Dict[str, Any] = None) -> None:
        """Validate settings data against the defined SETTINGS_SCHEMA.

        Args:
            data (dict, optional): Settings data to validate. Defaults to self.settings_data.

        Raises:
            ValueError: If a required section is missing or a value is out of range.
            TypeError: If a section or value has the wrong type.
        """
        if data is None:
            data = self.settings_data

        for field, specs in SETTINGS_SCHEMA.items():
            if specs.get('required') and field not in data:
                msg: str = f'Missing required section: {field}'
                logging.error(msg)
                raise ValueError(msg)
            if field not in data:
                continue
            _validate_section(field, data[field], specs)

        logging.debug('Settings data is valid.')

    def validate_client_secret(self, data: Dict[str, Any] = None) -> str:
        """Validate that the client configuration contains required OAuth credentials.

        Args:
            data (dict, optional): Client secret data to validate. Defaults to loaded client_secret_data.

        Returns:
            str: Section key used ('web' or 'installed').

        Raises:
            status.ClientSecretInvalidError: If no valid section exists or required fields are missing.
        """
        if data is None:
            data = self.client_secret_data

        if not isinstance(data, dict):
            raise status.ClientSecretInvalidError('Client secret must be a JSON object.')

        key = next((k for k in ('web', 'installed') if k in data), None)
        if not key:
            raise status.ClientSecretInvalidError('Missing "installed" or "web" section in client_secret.')

        config_section: Dict[str, Any] = data[key]
        missing: List[str] = [k for k in REQUIRED_CLIENT_SECRET_KEYS if not config_section.get(k)]
        if missing:
            raise status.ClientSecretInvalidError(
                f'Missing required fields in the \'{key}\' section: {missing}.'
            )
        return key

    def get_client_config(self) -> Dict[str, Any]:
        """Return the validated OAuth client configuration.

        Returns:
            A copy of the client configuration, suitable for ``Flow.from_client_config``.

        Raises:
            status.ClientSecretInvalidError: If the configured client secret is malformed.
            status.ClientSecretNotFoundError: If no client secret is configured at all.
        """
        if self._client_secret_error:
            raise status.ClientSecretInvalidError(self._client_secret_error)
        if not self.client_secret_data:
            raise status.ClientSecretNotFoundError
        self.validate_client_secret()
        return copy.deepcopy(self.client_secret_data)

    def has_client_config(self) -> bool:
        """Whether a valid OAuth client configuration is loaded."""
        return bool(self.client_secret_data) and not self._client_secret_error

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of configuration data for a settings or client_secret section.

        Args:
            section_name: Section name ('client_secret' or key from the settings schema).

        Returns:
            A copied dict of the requested section data.

        Raises:
            KeyError: If section_name is not a known section.
        """
        if section_name == 'client_secret':
            return copy.deepcopy(self.client_secret_data)

        return self.settings_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace and persist a configuration section.

        Args:
            section_name: Section to update ('client_secret' or a settings key).
            new_data: New data dict for the section.

        Raises:
            ValueError: If section_name is unrecognized or the data fails validation.
            status.ClientSecretInvalidError: If new client secret data is malformed.
            status.StorageError: If the section cannot be saved. The previous values are kept.
        """
        if section_name == 'client_secret':
            logging.debug('Setting entire client_secret data.')
            self.validate_client_secret(new_data)
            self.client_secret_data = copy.deepcopy(new_data)
            self._client_secret_error = None
            self.save_section('client_secret')
            return

        if section_name not in SETTINGS_SCHEMA:
            raise ValueError(f'Unknown settings section: {section_name}')

        merged = {**DEFAULT_SETTINGS[section_name], **new_data}
        _validate_section(section_name, merged, SETTINGS_SCHEMA[section_name])

        original = self.settings_data[section_name]
        self.settings_data[section_name] = merged
        try:
            self.save_section(section_name)
        except status.StorageError:
            self.settings_data[section_name] = original
            raise

    def save_section(self, section_name: str) -> None:
        """Persist a section to its file.

        The file is replaced atomically, so a failed write leaves the previous file intact.

        Args:
            section_name: 'client_secret' or a settings key. All settings sections share settings.json.

        Raises:
            status.StorageError: If the file cannot be written.
        """
        if section_name == 'client_secret':
            path, data = self.client_secret_path, self.client_secret_data
        else:
            path, data = self.settings_path, self.settings_data

        logging.debug(f'Saving "{section_name}" to "{path}".')
        tmp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                    'w', encoding='utf-8', dir=path.parent,
                    prefix=f'.{path.name}.', suffix='.tmp', delete=False
            ) as f:
                tmp_path = f.name
                json.dump(data, f, indent=4, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as ex:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise status.StorageError(f'Failed to save "{section_name}" to "{path}": {ex}') from ex

    @property
    def timeout(self) -> float:
        """Per-call timeout for remote requests, in seconds."""
        return self.settings_data['remote']['timeout']

    @property
    def num_retries(self) -> int:
        """Retries for idempotent Google API requests."""
        return self.settings_data['remote']['num_retries']

    @property
    def redirect_uri(self) -> str:
        return self.settings_data['server']['redirect_uri']

    @property
    def client_url(self) -> str:
        return self.settings_data['server']['client_url']

    def service_account_info(self) -> Optional[Dict[str, Any]]:
        """Load the ledger's service account key file, if one is configured.

        Returns:
            The parsed key file, or None if unset, missing or unreadable.
        """
        path = self.settings_data['ledger'].get('service_account_file')
        if not path:
            return None
        p = pathlib.Path(path)
        if not p.exists():
            logging.warning(f'Service account file "{p}" does not exist.')
            return None
        try:
            with p.open('r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as ex:
            logging.error(f'Failed to read service account file "{p}": {ex}')
            return None

    def masked_account(self) -> str:
        """Return the masked identity used for the remote services.

        The service account email is preferred, then the OAuth client id.
        """
        info = self.service_account_info()
        if info and info.get('client_email'):
            return mask_account(info['client_email'])
        if self.has_client_config():
            key = next((k for k in ('web', 'installed') if k in self.client_secret_data), None)
            if key:
                return mask_account(self.client_secret_data[key].get('client_id', ''))
        return NOT_CONFIGURED
