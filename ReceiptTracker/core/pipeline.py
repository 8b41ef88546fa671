"""Ingestion, retry-sync and deletion of receipts.

Ingestion is local-first: the receipt and its file are always stored locally, while
the Google Drive upload and the Google Sheets row are best-effort. A receipt whose
upload failed stays pending until :meth:`ReceiptPipeline.retry` succeeds.

Every remote call is captured as an :class:`~ReceiptTracker.core.outcome.Outcome`.
Ingestion and deletion branch on it; retry unwraps it, so its errors reach the caller.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .database import ReceiptRepository
from .drive import RemoteDocumentStore, RemoteDocument
from .files import LocalFileStore
from .ledger import RemoteLedger
from .model import (
    Receipt,
    DEFAULT_PROVIDER,
    parse_amount,
    parse_category,
    parse_date,
    parse_text,
)
from .outcome import Outcome, attempt
from ..status import status

ALLOWED_MIME_TYPES = (
    'image/jpeg',
    'image/png',
    'image/gif',
    'image/webp',
    'application/pdf',
)
MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

MESSAGE_SYNCED = 'Receipt uploaded and synced to Google Drive!'
MESSAGE_SYNCED_LEDGER = 'Receipt uploaded and synced to Google Drive & Sheets!'
MESSAGE_PENDING = 'Receipt saved locally (Google Drive sync pending)'
MESSAGE_ALREADY_SYNCED = 'Already synced to Google Drive'
MESSAGE_RETRY_SYNCED = 'Successfully synced to Google Drive!'


@dataclass
class IngestResult:
    """Result of :meth:`ReceiptPipeline.ingest`."""
    receipt: Receipt
    synced: bool
    message: str
    upload: Outcome
    ledger: Outcome


@dataclass
class SyncResult:
    """Result of :meth:`ReceiptPipeline.retry`. ``uploaded`` is False when nothing was sent."""
    receipt: Receipt
    message: str
    uploaded: bool
    ledger: Optional[Outcome] = None


def validate_upload(data: bytes, original_name: str, mime_type: str) -> None:
    """Check an upload against the allowed types and the size limit.

    Raises:
        status.ValidationError: If the file is missing, empty, too large or of a disallowed type.
    """
    if data is None or not original_name:
        raise status.ValidationError('No file uploaded.')
    if mime_type not in ALLOWED_MIME_TYPES:
        raise status.ValidationError(
            f'Invalid file type "{mime_type}". Only images and PDFs are allowed.')
    if len(data) == 0:
        raise status.ValidationError('The uploaded file is empty.')
    if len(data) > MAX_UPLOAD_BYTES:
        raise status.ValidationError(
            f'The uploaded file is {len(data)} bytes, the limit is {MAX_UPLOAD_BYTES} bytes.')


class ReceiptPipeline:
    """Orchestrates the local store, the local files and the remote mirrors.

    Args:
        store: The receipt repository.
        files: The local file store.
        documents: The remote document store.
        ledger: The remote ledger, or None when no ledger is used.
    """

    def __init__(self, store: ReceiptRepository, files: LocalFileStore,
                 documents: RemoteDocumentStore, ledger: Optional[RemoteLedger] = None) -> None:
        self.store = store
        self.files = files
        self.documents = documents
        self.ledger = ledger

    def get(self, receipt_id: str) -> Receipt:
        """Return a receipt.

        Raises:
            status.NotFoundError: If there is no such receipt.
        """
        receipt = self.store.get(receipt_id)
        if receipt is None:
            raise status.NotFoundError(f'No receipt with id "{receipt_id}".')
        return receipt

    def _append_to_ledger(self, receipt: Receipt) -> Outcome:
        if self.ledger is None:
            return Outcome.skipped('No ledger configured.')
        try:
            return self.ledger.append_row(receipt)
        except Exception as ex:
            logging.exception(f'Ledger append for receipt {receipt.id} failed due to an unexpected error.')
            return Outcome.degraded(str(ex), ex)

    def ingest(self, data: bytes, original_name: str, mime_type: str,
               metadata: Optional[Dict[str, Any]] = None) -> IngestResult:
        """Store a new receipt locally and mirror it remotely where possible.

        Args:
            data: The file contents.
            original_name: The uploaded file's name.
            mime_type: The uploaded file's MIME type.
            metadata: Optional ``provider``, ``amount``, ``date``, ``category`` and ``notes``.

        Returns:
            IngestResult: The stored receipt and whether it reached Google Drive.

        Raises:
            status.ValidationError: If the file or a metadata field is invalid.
            status.StorageError: If the file or the record cannot be stored locally.
        """
        validate_upload(data, original_name, mime_type)

        metadata = metadata or {}
        provider = parse_text(metadata.get('provider'), DEFAULT_PROVIDER)
        amount = parse_amount(metadata.get('amount'))
        date = parse_date(metadata.get('date'))
        category = parse_category(metadata.get('category'))
        notes = parse_text(metadata.get('notes'))

        local_path = self.files.write(data, original_name)

        upload = attempt(
            self.documents.upload, str(local_path), original_name, mime_type,
            description=f'Uploading "{original_name}" to the remote document store',
        )

        receipt = Receipt(
            id=str(uuid.uuid4()),
            original_name=original_name,
            local_path=str(local_path),
            mime_type=mime_type,
            size=len(data),
            provider=provider,
            amount=amount,
            date=date,
            category=category,
            notes=notes,
        )

        if upload.is_ok:
            document: RemoteDocument = upload.value
            receipt.mark_synced(document.remote_id, document.link)
            ledger = self._append_to_ledger(receipt)
        else:
            logging.warning(f'Remote upload failed, storing receipt locally: {upload.reason}')
            ledger = Outcome.skipped('Remote upload failed.')

        try:
            self.store.save(receipt)
        except status.StorageError:
            self.files.remove(local_path)
            if upload.is_ok:
                removed = attempt(
                    self.documents.delete, receipt.remote_document_id,
                    description=f'Removing the remote document of unsaved receipt {receipt.id}',
                )
                logging.warning(
                    f'Receipt {receipt.id} could not be saved; remote document '
                    f'{receipt.remote_document_id} removed: {removed.is_ok}. '
                    f'A ledger row, if appended, is left in place.'
                )
            raise

        if not upload.is_ok:
            message = MESSAGE_PENDING
        elif ledger.is_ok:
            message = MESSAGE_SYNCED_LEDGER
        else:
            message = MESSAGE_SYNCED

        logging.info(f'Ingested receipt {receipt.id} ({receipt.provider}, {receipt.amount}): {message}')
        return IngestResult(
            receipt=receipt,
            synced=receipt.synced_to_remote,
            message=message,
            upload=upload,
            ledger=ledger,
        )

    def retry(self, receipt_id: str) -> SyncResult:
        """Upload a pending receipt again.

        An already synced receipt is returned without any remote call.

        Raises:
            status.NotFoundError: If there is no such receipt.
            status.StorageError: If the receipt's local file is gone, or the record cannot be saved.
            status.AuthError: If no valid credentials are available.
            status.RemoteError: If the upload fails.
        """
        receipt = self.get(receipt_id)
        if receipt.synced_to_remote:
            logging.info(f'Receipt {receipt_id} is already synced. Nothing to do.')
            return SyncResult(receipt=receipt, message=MESSAGE_ALREADY_SYNCED, uploaded=False)

        if not self.files.exists(receipt.local_path):
            raise status.StorageError(f'Local file for receipt {receipt_id} is missing: "{receipt.local_path}".')

        upload = attempt(
            self.documents.upload, receipt.local_path, receipt.original_name, receipt.mime_type,
            description=f'Retrying upload of receipt {receipt_id}',
        )
        document: RemoteDocument = upload.unwrap()

        receipt.mark_synced(document.remote_id, document.link)
        self.store.save(receipt)
        ledger = self._append_to_ledger(receipt)

        logging.info(f'Receipt {receipt_id} synced to the remote document store.')
        return SyncResult(receipt=receipt, message=MESSAGE_RETRY_SYNCED, uploaded=True, ledger=ledger)

    def delete(self, receipt_id: str) -> Outcome:
        """Delete a receipt, its local file and, best-effort, its remote document.

        Returns:
            Outcome: The outcome of the remote deletion; Skipped if the receipt was never synced.

        Raises:
            status.NotFoundError: If there is no such receipt.
            status.StorageError: If the local file or the record cannot be removed.
        """
        receipt = self.get(receipt_id)

        if receipt.remote_document_id:
            remote = attempt(
                self.documents.delete, receipt.remote_document_id,
                description=f'Deleting remote document of receipt {receipt_id}',
            )
            if not remote.is_ok:
                logging.warning(f'Failed to delete receipt {receipt_id} from the remote store: {remote.reason}')
        else:
            remote = Outcome.skipped('Receipt was never synced.')

        self.files.remove(receipt.local_path)
        self.store.delete(receipt_id)
        logging.info(f'Deleted receipt {receipt_id}.')
        return remote
