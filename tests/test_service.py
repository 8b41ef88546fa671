"""Tests for Google API request execution, the Drive document store and the Sheets ledger.

The Google clients are replaced by mocks; no network access is needed.

Classes:
    ExecuteTests: Error translation of service.execute.
    DriveStoreTests: GoogleDriveStore upload, delete and listing.
    SheetsLedgerTests: GoogleSheetsLedger outcomes.
"""
import datetime
import json
import pathlib
import socket
from unittest.mock import MagicMock, patch

import google.auth.exceptions
import httplib2
from googleapiclient.errors import HttpError

from ReceiptTracker.core import service
from ReceiptTracker.core.auth import CredentialManager
from ReceiptTracker.core.drive import GoogleDriveStore, remote_file_name
from ReceiptTracker.core.ledger import GoogleSheetsLedger, LEDGER_COLUMNS, receipt_row, sheet_range
from ReceiptTracker.core.model import Category
from ReceiptTracker.core.outcome import OutcomeState
from ReceiptTracker.status import status
from tests.base import BaseTestCase, make_receipt


def http_error(code: int) -> HttpError:
    return HttpError(httplib2.Response({'status': str(code)}), b'{"error": {"message": "nope"}}')


def failing_request(error: BaseException) -> MagicMock:
    request = MagicMock()
    request.execute.side_effect = error
    return request


class ExecuteTests(BaseTestCase):

    def test_returns_response_and_passes_retries(self):
        request = MagicMock()
        request.execute.return_value = {'id': 'x'}
        self.assertEqual(service.execute(request, num_retries=3), {'id': 'x'})
        request.execute.assert_called_once_with(num_retries=3)

    def test_404_is_none_when_allowed(self):
        self.assertIsNone(service.execute(failing_request(http_error(404)), not_found_ok=True))
        with self.assertRaises(status.RemoteError):
            service.execute(failing_request(http_error(404)))

    def test_401_is_auth_error(self):
        with self.assertRaises(status.AuthError):
            service.execute(failing_request(http_error(401)))

    def test_other_http_errors_are_remote_errors(self):
        for code in (403, 429, 500, 503):
            with self.subTest(code=code), self.assertRaises(status.RemoteError):
                service.execute(failing_request(http_error(code)))

    def test_refresh_error_is_auth_error(self):
        with self.assertRaises(status.AuthError):
            service.execute(failing_request(google.auth.exceptions.RefreshError('revoked')))

    def test_transport_failures_are_remote_errors(self):
        for error in (
                TimeoutError('slow'),
                socket.timeout('slow'),
                httplib2.ServerNotFoundError('dns'),
                ConnectionResetError('reset'),
                google.auth.exceptions.TransportError('down'),
        ):
            with self.subTest(error=error), self.assertRaises(status.RemoteError):
                service.execute(failing_request(error))

    def test_build_service_failure_is_remote_error(self):
        with patch.object(service, 'build', side_effect=Exception('discovery failed')):
            with self.assertRaises(status.RemoteError):
                service.build_service('drive', 'v3', MagicMock())


class RemoteNameTests(BaseTestCase):

    def test_name_is_prefixed_dated_and_sanitized(self):
        self.assertEqual(
            remote_file_name('cvs receipt (1).pdf', datetime.date(2024, 3, 1)),
            'HSA_Receipt_2024-03-01_cvs_receipt__1_.pdf',
        )

    def test_defaults_to_today(self):
        self.assertIn(datetime.date.today().isoformat(), remote_file_name('a.png'))


class DriveStoreTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.credentials = MagicMock(spec=CredentialManager)
        self.credentials.require_credential.return_value = object()
        self.drive = MagicMock()
        patcher = patch('ReceiptTracker.core.service.build_service', return_value=self.drive)
        self.build_service = patcher.start()
        self.addCleanup(patcher.stop)

        self.local_file = pathlib.Path(self.tmp_dir) / 'uploads' / 'receipt.pdf'
        self.local_file.write_bytes(b'%PDF')
        self.store = GoogleDriveStore(self.settings, self.credentials)

    def test_upload_into_folder(self):
        self.settings.set_section('drive', {'folder_id': 'folder-1'})
        self.drive.files().create().execute.return_value = {
            'id': 'doc-1', 'name': 'HSA_Receipt_x.pdf', 'webViewLink': 'https://drive/doc-1'}

        document = self.store.upload(str(self.local_file), 'cvs receipt.pdf', 'application/pdf')

        self.assertEqual(document.remote_id, 'doc-1')
        self.assertEqual(document.link, 'https://drive/doc-1')
        kwargs = self.drive.files().create.call_args.kwargs
        self.assertEqual(kwargs['body']['parents'], ['folder-1'])
        self.assertTrue(kwargs['body']['name'].startswith('HSA_Receipt_'))
        self.assertTrue(kwargs['body']['name'].endswith('_cvs_receipt.pdf'))
        # Not idempotent, so never retried
        self.drive.files().create().execute.assert_called_with(num_retries=0)
        self.build_service.assert_called_with('drive', 'v3', self.credentials.require_credential.return_value,
                                              timeout=self.settings.timeout)

    def test_upload_without_folder_and_fallback_link(self):
        self.drive.files().create().execute.return_value = {'id': 'doc-2'}
        document = self.store.upload(str(self.local_file), 'a.pdf', 'application/pdf')
        self.assertNotIn('parents', self.drive.files().create.call_args.kwargs['body'])
        self.assertEqual(document.link, 'https://drive.google.com/file/d/doc-2/view')

    def test_upload_without_id_is_remote_error(self):
        self.drive.files().create().execute.return_value = {}
        with self.assertRaises(status.RemoteError):
            self.store.upload(str(self.local_file), 'a.pdf', 'application/pdf')

    def test_upload_unauthenticated_is_auth_error(self):
        self.credentials.require_credential.side_effect = status.AuthError('Not signed in.')
        with self.assertRaises(status.AuthError):
            self.store.upload(str(self.local_file), 'a.pdf', 'application/pdf')
        self.build_service.assert_not_called()

    def test_upload_missing_local_file_is_storage_error(self):
        with self.assertRaises(status.StorageError):
            self.store.upload(str(self.local_file.with_name('gone.pdf')), 'a.pdf', 'application/pdf')

    def test_delete_tolerates_missing_document(self):
        self.drive.files().delete().execute.side_effect = http_error(404)
        self.store.delete('doc-1')
        self.drive.files().delete.assert_called_with(fileId='doc-1')
        self.drive.files().delete().execute.assert_called_with(num_retries=self.settings.num_retries)

    def test_delete_failure_is_remote_error(self):
        self.drive.files().delete().execute.side_effect = http_error(500)
        with self.assertRaises(status.RemoteError):
            self.store.delete('doc-1')

    def test_list_files_in_folder(self):
        self.settings.set_section('drive', {'folder_id': 'folder-1'})
        self.drive.files().list().execute.return_value = {'files': [{'id': 'a'}, {'id': 'b'}]}
        self.assertEqual(self.store.list_files(), [{'id': 'a'}, {'id': 'b'}])
        kwargs = self.drive.files().list.call_args.kwargs
        self.assertEqual(kwargs['q'], "'folder-1' in parents and trashed = false")
        self.assertEqual(kwargs['orderBy'], 'createdTime desc')


class SheetsLedgerTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.credentials = MagicMock(spec=CredentialManager)
        self.credentials.get_valid_credential.return_value = object()
        self.credentials.is_authenticated.return_value = True
        self.sheets = MagicMock()
        patcher = patch('ReceiptTracker.core.service.build_service', return_value=self.sheets)
        self.build_service = patcher.start()
        self.addCleanup(patcher.stop)

        self.ledger = GoogleSheetsLedger(self.settings, self.credentials)
        self.receipt = make_receipt(
            'r1', amount=45.67, category=Category.Prescription, provider='CVS Pharmacy',
            notes='Antibiotics', remote_document_id='doc-1',
        )

    def _append(self):
        return self.sheets.spreadsheets().values().append

    def test_row_layout(self):
        row = receipt_row(self.receipt)
        self.assertEqual(len(row), len(LEDGER_COLUMNS))
        self.assertEqual(row, [
            '2024-03-01', 'CVS Pharmacy', 45.67, 'Prescription', 'Antibiotics',
            'https://drive.google.com/file/d/doc-1/view', 'r1',
        ])
        self.assertEqual(receipt_row(make_receipt('r2'))[5], '')

    def test_sheet_range_quotes_worksheet(self):
        self.assertEqual(sheet_range('Sheet1'), "'Sheet1'!A:G")
        self.assertEqual(sheet_range("Bob's HSA"), "'Bob''s HSA'!A:G")

    def test_skipped_without_spreadsheet(self):
        outcome = self.ledger.append_row(self.receipt)
        self.assertEqual(outcome.state, OutcomeState.Skipped)
        self.assertFalse(self.ledger.is_configured())
        self.build_service.assert_not_called()

    def test_skipped_without_credentials(self):
        self.settings.set_section('ledger', {'spreadsheet_id': 'sheet-1'})
        self.credentials.get_valid_credential.return_value = None
        outcome = self.ledger.append_row(self.receipt)
        self.assertEqual(outcome.state, OutcomeState.Skipped)

    def test_append_ok(self):
        self.settings.set_section('ledger', {'spreadsheet_id': 'sheet-1', 'worksheet': 'HSA'})
        self._append().return_value.execute.return_value = {'updates': {'updatedCells': 7}}

        outcome = self.ledger.append_row(self.receipt)

        self.assertTrue(outcome.is_ok)
        self.assertTrue(self.ledger.is_configured())
        kwargs = self._append().call_args.kwargs
        self.assertEqual(kwargs['spreadsheetId'], 'sheet-1')
        self.assertEqual(kwargs['range'], "'HSA'!A:G")
        self.assertEqual(kwargs['valueInputOption'], 'USER_ENTERED')
        self.assertEqual(kwargs['insertDataOption'], 'INSERT_ROWS')
        self.assertEqual(kwargs['body'], {'values': [receipt_row(self.receipt)]})
        self._append().return_value.execute.assert_called_once_with(num_retries=0)

    def test_append_failure_is_degraded(self):
        self.settings.set_section('ledger', {'spreadsheet_id': 'sheet-1'})
        self._append().return_value.execute.side_effect = http_error(403)
        outcome = self.ledger.append_row(self.receipt)
        self.assertEqual(outcome.state, OutcomeState.Degraded)
        self.assertIsInstance(outcome.error, status.RemoteError)

    def test_unexpected_failure_is_degraded(self):
        self.settings.set_section('ledger', {'spreadsheet_id': 'sheet-1'})
        self._append().side_effect = RuntimeError('boom')
        outcome = self.ledger.append_row(self.receipt)
        self.assertEqual(outcome.state, OutcomeState.Degraded)

    def _configure_service_account(self, data) -> None:
        path = pathlib.Path(self.tmp_dir) / 'sa.json'
        path.write_text(json.dumps(data), encoding='utf-8')
        self.settings.set_section('ledger', {'spreadsheet_id': 'sheet-1', 'service_account_file': str(path)})

    def test_service_account_is_preferred(self):
        self._configure_service_account({'client_email': 'bot@project.iam.gserviceaccount.com'})
        sa_creds = object()
        with patch('google.oauth2.service_account.Credentials.from_service_account_info',
                   return_value=sa_creds) as from_info:
            outcome = self.ledger.append_row(self.receipt)
        self.assertTrue(outcome.is_ok)
        from_info.assert_called_once_with(
            {'client_email': 'bot@project.iam.gserviceaccount.com'}, scopes=[service.SHEETS_SCOPE])
        self.assertIs(self.build_service.call_args.args[2], sa_creds)
        self.credentials.get_valid_credential.assert_not_called()

    def test_malformed_service_account_is_degraded(self):
        self._configure_service_account({'client_email': 'bot@project.iam.gserviceaccount.com'})
        outcome = self.ledger.append_row(self.receipt)
        self.assertEqual(outcome.state, OutcomeState.Degraded)
        self.build_service.assert_not_called()
