"""Remote document store: mirrors receipt files to Google Drive."""

import abc
import datetime
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from googleapiclient.http import MediaFileUpload

from . import service
from .auth import CredentialManager
from ..settings.lib import SettingsAPI
from ..status import status

REMOTE_NAME_PREFIX: str = 'HSA_Receipt'
DRIVE_VIEW_URL: str = 'https://drive.google.com/file/d/{remote_id}/view'

_UNSAFE_CHARS = re.compile(r'[^a-zA-Z0-9.-]')


def remote_file_name(original_name: str, day: Optional[datetime.date] = None) -> str:
    """Build the Drive file name: prefix, date and the sanitized original name.

    Args:
        original_name (str): The uploaded file's name.
        day (datetime.date, optional): Defaults to today.

    Returns:
        str: e.g. ``'HSA_Receipt_2024-03-01_cvs_receipt_1_.pdf'``.
    """
    day = day or datetime.date.today()
    safe_name = _UNSAFE_CHARS.sub('_', original_name)
    return f'{REMOTE_NAME_PREFIX}_{day.isoformat()}_{safe_name}'


@dataclass(frozen=True)
class RemoteDocument:
    """An uploaded document."""
    remote_id: str
    link: str
    name: str = ''


class RemoteDocumentStore(abc.ABC):
    """Interface of the external store that keeps a copy of every receipt file."""

    @abc.abstractmethod
    def upload(self, local_path: str, display_name: str, mime_type: str) -> RemoteDocument:
        """Upload a local file.

        Raises:
            status.AuthError: If no valid credentials are available.
            status.RemoteError: On transport or API failure.
        """

    @abc.abstractmethod
    def delete(self, remote_id: str) -> None:
        """Delete a remote document. A document that is already gone is not an error.

        Raises:
            status.AuthError: If no valid credentials are available.
            status.RemoteError: On transport or API failure.
        """

    def list_files(self) -> List[Dict[str, Any]]:
        """List the stored documents, newest first."""
        return []


class GoogleDriveStore(RemoteDocumentStore):
    """Google Drive v3 implementation, authorized with the user's OAuth2 credentials."""

    def __init__(self, settings: SettingsAPI, credentials: CredentialManager) -> None:
        self.settings = settings
        self.credentials = credentials

    @property
    def folder_id(self) -> str:
        return self.settings.get_section('drive').get('folder_id', '')

    def _get_service(self) -> Any:
        creds = self.credentials.require_credential()
        return service.build_service('drive', 'v3', creds, timeout=self.settings.timeout)

    def upload(self, local_path: str, display_name: str, mime_type: str) -> RemoteDocument:
        drive = self._get_service()

        body: Dict[str, Any] = {'name': remote_file_name(display_name)}
        if self.folder_id:
            body['parents'] = [self.folder_id]

        try:
            media = MediaFileUpload(str(local_path), mimetype=mime_type, resumable=False)
        except OSError as ex:
            raise status.StorageError(f'Could not open "{local_path}" for upload: {ex}') from ex

        try:
            # File creation is not idempotent, so no automatic retries
            result: Dict[str, Any] = service.execute(
                drive.files().create(
                    body=body,
                    media_body=media,
                    fields='id, name, webViewLink, webContentLink',
                ),
                description=f'Uploading "{body["name"]}" to Google Drive',
            )
        finally:
            media.stream().close()

        if not result or not result.get('id'):
            raise status.RemoteError('Google Drive returned no file id for the upload.')

        remote_id: str = result['id']
        link: str = result.get('webViewLink') or DRIVE_VIEW_URL.format(remote_id=remote_id)
        logging.info(f'Uploaded to Google Drive: {result.get("name", body["name"])} (ID: {remote_id})')
        return RemoteDocument(remote_id=remote_id, link=link, name=result.get('name', body['name']))

    def delete(self, remote_id: str) -> None:
        drive = self._get_service()
        service.execute(
            drive.files().delete(fileId=remote_id),
            num_retries=self.settings.num_retries,
            description=f'Deleting {remote_id} from Google Drive',
            not_found_ok=True,
        )
        logging.info(f'Deleted from Google Drive: {remote_id}')

    def list_files(self) -> List[Dict[str, Any]]:
        """List the files in the configured folder (or all visible files), newest first.

        Raises:
            status.AuthError: If no valid credentials are available.
            status.RemoteError: On transport or API failure.
        """
        drive = self._get_service()
        query = f"'{self.folder_id}' in parents and trashed = false" if self.folder_id else 'trashed = false'
        result: Dict[str, Any] = service.execute(
            drive.files().list(
                q=query,
                fields='files(id, name, mimeType, size, createdTime, webViewLink)',
                orderBy='createdTime desc',
            ),
            num_retries=self.settings.num_retries,
            description='Listing Google Drive files',
        )
        files: List[Dict[str, Any]] = (result or {}).get('files', [])
        logging.debug(f'Found {len(files)} files in Google Drive.')
        return files
