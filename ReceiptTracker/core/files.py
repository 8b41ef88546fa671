"""Local storage of uploaded receipt files."""

import logging
import os
import pathlib
import re
import time
import uuid
from typing import BinaryIO

from ..status import status

_SAFE_SUFFIX = re.compile(r'^\.[A-Za-z0-9]{1,10}$')


def generate_name(original_name: str) -> str:
    """Return a collision-resistant file name that keeps the original extension.

    Args:
        original_name (str): The uploaded file's name.

    Returns:
        str: ``<epoch milliseconds>-<uuid4><extension>``.
    """
    suffix = pathlib.PurePath(original_name or '').suffix
    if not _SAFE_SUFFIX.match(suffix):
        suffix = ''
    return f'{int(time.time() * 1000)}-{uuid.uuid4()}{suffix}'


class LocalFileStore:
    """Owns the files kept in the uploads directory."""

    def __init__(self, uploads_dir: os.PathLike) -> None:
        self.uploads_dir = pathlib.Path(uploads_dir)

    def write(self, data: bytes, original_name: str) -> pathlib.Path:
        """Persist uploaded bytes under a generated name.

        Returns:
            pathlib.Path: The absolute path of the new file.

        Raises:
            status.StorageError: If the file cannot be written.
        """
        path = (self.uploads_dir / generate_name(original_name)).resolve()
        try:
            self.uploads_dir.mkdir(parents=True, exist_ok=True)
            with open(path, 'xb') as f:
                f.write(data)
        except OSError as ex:
            raise status.StorageError(f'Failed to write "{path}": {ex}') from ex
        logging.debug(f'Stored {len(data)} bytes at "{path}".')
        return path

    def exists(self, path: os.PathLike) -> bool:
        return bool(path) and pathlib.Path(path).is_file()

    def open(self, path: os.PathLike) -> BinaryIO:
        """Open a stored file for reading.

        Raises:
            status.NotFoundError: If the file does not exist.
            status.StorageError: If the file cannot be opened.
        """
        if not self.exists(path):
            raise status.NotFoundError(f'Receipt file "{path}" does not exist.')
        try:
            return open(path, 'rb')
        except OSError as ex:
            raise status.StorageError(f'Failed to open "{path}": {ex}') from ex

    def remove(self, path: os.PathLike) -> bool:
        """Delete a stored file. A missing file is ignored.

        Returns:
            bool: True if a file was deleted.

        Raises:
            status.StorageError: If an existing file cannot be deleted.
        """
        if not path:
            return False
        p = pathlib.Path(path)
        if not p.resolve().is_relative_to(self.uploads_dir.resolve()):
            logging.warning(f'Refusing to delete "{p}": not inside "{self.uploads_dir}".')
            return False
        try:
            p.unlink()
        except FileNotFoundError:
            logging.debug(f'"{p}" already removed.')
            return False
        except OSError as ex:
            raise status.StorageError(f'Failed to delete "{p}": {ex}') from ex
        logging.debug(f'Deleted "{p}".')
        return True
