"""The facade called by the HTTP layer.

Each method corresponds to one endpoint and returns plain, JSON-serializable data
(except :meth:`ReceiptAPI.get_file`, which returns a path to stream). Errors are
raised as :mod:`ReceiptTracker.status.status` exceptions;
:func:`ReceiptTracker.status.status.error_response` maps them onto HTTP responses.
"""
import datetime
import logging
import pathlib
from typing import Any, Dict, List, Optional, Tuple

from .core.auth import CredentialManager
from .core.database import JsonReceiptStore, ReceiptRepository, summarize
from .core.drive import GoogleDriveStore, RemoteDocumentStore
from .core.files import LocalFileStore
from .core.ledger import GoogleSheetsLedger, RemoteLedger
from .core.model import amount_to_number
from .core.pipeline import ReceiptPipeline
from .settings.lib import SettingsAPI, NOT_CONFIGURED
from .status import status


def summary_to_json(summary: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a receipt summary with its Decimal amounts as numbers."""
    data = dict(summary)
    data['totalAmount'] = amount_to_number(summary['totalAmount'])
    for key in ('byCategory', 'byMonth'):
        data[key] = {
            k: {'count': v['count'], 'amount': amount_to_number(v['amount'])}
            for k, v in summary[key].items()
        }
    return data


class ReceiptAPI:
    """Entry points for uploading, listing, syncing and deleting receipts, and for sign-in."""

    def __init__(self, settings: SettingsAPI, credentials: CredentialManager, store: ReceiptRepository,
                 files: LocalFileStore, documents: RemoteDocumentStore,
                 ledger: Optional[RemoteLedger] = None) -> None:
        self.settings = settings
        self.credentials = credentials
        self.store = store
        self.files = files
        self.documents = documents
        self.ledger = ledger
        self.pipeline = ReceiptPipeline(store, files, documents, ledger)

    @classmethod
    def from_settings(cls, settings: SettingsAPI) -> 'ReceiptAPI':
        """Wire the production components to a configuration object.

        The Google Sheets ledger is only created when a spreadsheet id is configured.
        """
        credentials = CredentialManager(settings)
        ledger = None
        if settings.get_section('ledger').get('spreadsheet_id'):
            ledger = GoogleSheetsLedger(settings, credentials)
        else:
            logging.debug('No spreadsheet id configured; receipts will not be mirrored to Google Sheets.')
        return cls(
            settings=settings,
            credentials=credentials,
            store=JsonReceiptStore(settings.receipts_path),
            files=LocalFileStore(settings.uploads_dir),
            documents=GoogleDriveStore(settings, credentials),
            ledger=ledger,
        )

    # Receipts

    def upload(self, data: bytes, original_name: str, mime_type: str, provider: Optional[str] = None,
               amount: Optional[str] = None, date: Optional[str] = None, category: Optional[str] = None,
               notes: Optional[str] = None) -> Dict[str, Any]:
        """Ingest an uploaded receipt.

        Returns:
            dict: ``success``, ``receipt`` and a status ``message``.

        Raises:
            status.ValidationError: For a disallowed type, an oversized file or an invalid field.
            status.StorageError: If the receipt cannot be stored locally.
        """
        result = self.pipeline.ingest(
            data, original_name, mime_type,
            metadata={
                'provider': provider,
                'amount': amount,
                'date': date,
                'category': category,
                'notes': notes,
            },
        )
        return {
            'success': True,
            'receipt': result.receipt.to_dict(),
            'message': result.message,
        }

    def list_receipts(self, category: Optional[str] = None) -> Dict[str, Any]:
        """Return the receipts of category (all when None), newest first, with their totals."""
        receipts = self.store.list(category=category)
        summary = summarize(receipts)
        return {
            'receipts': [r.to_dict() for r in receipts],
            'totals': {
                'total': amount_to_number(summary['totalAmount']),
                'byCategory': {k: amount_to_number(v['amount']) for k, v in summary['byCategory'].items()},
            },
        }

    def summary(self) -> Dict[str, Any]:
        return summary_to_json(self.store.compute_summary())

    def get_file(self, receipt_id: str) -> Tuple[pathlib.Path, str]:
        """Return the local file of a receipt and its MIME type.

        Raises:
            status.NotFoundError: If the receipt or its file does not exist.
        """
        receipt = self.pipeline.get(receipt_id)
        if not self.files.exists(receipt.local_path):
            raise status.NotFoundError(f'Image file for receipt "{receipt_id}" not found.')
        return pathlib.Path(receipt.local_path), receipt.mime_type

    def delete(self, receipt_id: str) -> Dict[str, Any]:
        """
        Raises:
            status.NotFoundError: If the receipt does not exist.
        """
        self.pipeline.delete(receipt_id)
        return {'success': True, 'message': 'Receipt deleted successfully'}

    def retry_sync(self, receipt_id: str) -> Dict[str, Any]:
        """
        Raises:
            status.NotFoundError: If the receipt does not exist.
            status.AuthError: If not signed in.
            status.RemoteError: If the upload fails.
        """
        result = self.pipeline.retry(receipt_id)
        return {'success': True, 'receipt': result.receipt.to_dict(), 'message': result.message}

    def remote_files(self) -> List[Dict[str, Any]]:
        """List the files in the Google Drive folder."""
        return self.documents.list_files()

    # Authorization

    def auth_status(self) -> Dict[str, bool]:
        return {'authenticated': self.credentials.is_authenticated()}

    def login_url(self) -> Dict[str, str]:
        """
        Raises:
            status.AuthError: If no valid OAuth client is configured.
        """
        return {'authUrl': self.credentials.get_authorization_url()}

    def auth_callback(self, code: Optional[str]) -> str:
        """Complete sign-in and return the URL to redirect the browser to.

        Raises:
            status.ValidationError: If no code was passed.
            status.AuthError: If the exchange fails.
        """
        if not code:
            raise status.ValidationError('Missing authorization code.')
        self.credentials.exchange_code(code)
        return f'{self.settings.client_url}?auth=success'

    def logout(self) -> Dict[str, bool]:
        self.credentials.clear()
        return {'success': True}

    # Introspection

    def config(self) -> Dict[str, Any]:
        """Return the non-secret configuration subset."""
        folder_id = self.settings.get_section('drive').get('folder_id')
        sheet_id = self.settings.get_section('ledger').get('spreadsheet_id')
        return {
            'driveFolderId': folder_id or NOT_CONFIGURED,
            'sheetId': sheet_id or NOT_CONFIGURED,
            'serviceAccount': self.settings.masked_account(),
            'isSheetsConfigured': self.ledger is not None and self.ledger.is_configured(),
            'isAuthenticated': self.credentials.is_authenticated(),
        }

    def health(self) -> Dict[str, str]:
        return {
            'status': 'ok',
            'timestamp': datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
