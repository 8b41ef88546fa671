"""Remote ledger: an optional, append-only Google Sheets audit trail of synced receipts.

The ledger is never the source of truth. :meth:`RemoteLedger.append_row` reports its
result as an :class:`~ReceiptTracker.core.outcome.Outcome` and never raises.
"""

import abc
import logging
from typing import Any, Dict, List, Optional

from google.oauth2 import service_account

from . import service
from .auth import CredentialManager
from .model import Receipt, DATE_FORMAT, amount_to_number
from .outcome import Outcome
from ..settings.lib import SettingsAPI
from ..status import status

LEDGER_COLUMNS: List[str] = ['Date', 'Provider', 'Amount', 'Category', 'Notes', 'Drive Link', 'Receipt ID']


def receipt_row(receipt: Receipt) -> List[Any]:
    """Return the ledger row for a receipt, in LEDGER_COLUMNS order."""
    return [
        receipt.date.strftime(DATE_FORMAT),
        receipt.provider,
        amount_to_number(receipt.amount),
        receipt.category.value,
        receipt.notes,
        receipt.remote_link or '',
        receipt.id,
    ]


def sheet_range(worksheet: str) -> str:
    """A1 range covering the ledger columns of a worksheet, quoting the worksheet name."""
    quoted = worksheet.replace("'", "''")
    return f"'{quoted}'!A:G"


class RemoteLedger(abc.ABC):
    """Interface of the external tabular ledger."""

    @abc.abstractmethod
    def is_configured(self) -> bool:
        """Whether a destination and credentials are configured."""

    @abc.abstractmethod
    def append_row(self, receipt: Receipt) -> Outcome:
        """Append the receipt's row.

        Returns:
            Outcome: Ok, Skipped when not configured, or Degraded on failure. Never raises.
        """


class GoogleSheetsLedger(RemoteLedger):
    """Google Sheets v4 implementation.

    Authorizes with the service account key file from the ``ledger`` settings when one
    is configured, otherwise with the user's OAuth2 credentials.
    """

    def __init__(self, settings: SettingsAPI, credentials: Optional[CredentialManager] = None) -> None:
        self.settings = settings
        self.credentials = credentials

    @property
    def spreadsheet_id(self) -> str:
        return self.settings.get_section('ledger').get('spreadsheet_id', '')

    @property
    def worksheet(self) -> str:
        return self.settings.get_section('ledger').get('worksheet', '') or 'Sheet1'

    def is_configured(self) -> bool:
        if not self.spreadsheet_id:
            return False
        if self.settings.service_account_info():
            return True
        return self.credentials is not None and self.credentials.is_authenticated()

    def _get_creds(self) -> Optional[Any]:
        """
        Returns:
            Service account or OAuth2 credentials, or None if neither is available.

        Raises:
            ValueError: If the service account key file is malformed.
        """
        info = self.settings.service_account_info()
        if info:
            return service_account.Credentials.from_service_account_info(
                info, scopes=[service.SHEETS_SCOPE])
        if self.credentials is not None:
            return self.credentials.get_valid_credential()
        return None

    def append_row(self, receipt: Receipt) -> Outcome:
        if not self.spreadsheet_id:
            logging.debug('Google Sheets not configured (spreadsheet id missing). Skipping sheet update.')
            return Outcome.skipped('Spreadsheet id not configured.')

        try:
            creds = self._get_creds()
        except ValueError as ex:
            logging.error(f'Invalid service account key file: {ex}')
            return Outcome.degraded(f'Invalid service account key file: {ex}', ex)

        if creds is None:
            logging.debug('Google Sheets not configured (no credentials). Skipping sheet update.')
            return Outcome.skipped('No ledger credentials available.')

        try:
            sheets = service.build_service('sheets', 'v4', creds, timeout=self.settings.timeout)
            # Appending is not idempotent, so no automatic retries
            result: Dict[str, Any] = service.execute(
                sheets.spreadsheets().values().append(
                    spreadsheetId=self.spreadsheet_id,
                    range=sheet_range(self.worksheet),
                    valueInputOption='USER_ENTERED',
                    insertDataOption='INSERT_ROWS',
                    body={'values': [receipt_row(receipt)]},
                ),
                description=f'Appending receipt {receipt.id} to Google Sheets',
            )
        except status.BaseStatusException as ex:
            return Outcome.degraded(str(ex), ex)
        except Exception as ex:
            logging.exception('Google Sheets append failed due to an unexpected error.')
            return Outcome.degraded(f'Google Sheets append failed: {ex}', ex)

        updated = (result or {}).get('updates', {}).get('updatedCells', 0)
        logging.info(f'Appended to Google Sheet: {updated} cells updated.')
        return Outcome.ok(result)
