"""
Local receipt repository and summaries.

This module defines the :class:`ReceiptRepository` interface with two implementations:
:class:`InMemoryReceiptStore`, used by tests and embedders, and :class:`JsonReceiptStore`,
which keeps every receipt in a single JSON snapshot that is fully read, modified and
rewritten on each mutation.

The snapshot is only locked against writers in the same process. Writers in separate
processes can lose updates (last writer wins).
"""

import abc
import decimal
import json
import logging
import os
import pathlib
import tempfile
import threading
from typing import Any, Dict, List, Optional

import pandas as pd

from .model import Receipt, DATE_FORMAT
from ..status import status

UNKNOWN_MONTH = 'Unknown'


def _cents(amount: decimal.Decimal) -> int:
    return int(amount.scaleb(2))


def _from_cents(cents: Any) -> decimal.Decimal:
    return decimal.Decimal(int(cents)).scaleb(-2)


def _sorted(receipts: List[Receipt]) -> List[Receipt]:
    return sorted(receipts, key=lambda r: r.created_at, reverse=True)


def summarize(receipts: List[Receipt]) -> Dict[str, Any]:
    """Aggregate amounts and sync state over receipts.

    Amounts are summed as integer cents, so ``totalAmount`` equals both the sum of
    the receipts' amounts and the sum of the ``byCategory`` (or ``byMonth``) amounts.

    Returns:
        dict: ``totalReceipts``, ``totalAmount``, ``byCategory`` and ``byMonth``
        (both ``{key: {'count': int, 'amount': Decimal}}``, months keyed ``YYYY-MM``),
        ``syncedCount`` and ``pendingSyncCount``.
    """
    summary: Dict[str, Any] = {
        'totalReceipts': len(receipts),
        'totalAmount': _from_cents(0),
        'byCategory': {},
        'byMonth': {},
        'syncedCount': 0,
        'pendingSyncCount': 0,
    }
    if not receipts:
        return summary

    df = pd.DataFrame([
        {
            'cents': _cents(r.amount),
            'category': r.category.value,
            'month': r.date.strftime(DATE_FORMAT)[:7] if r.date else UNKNOWN_MONTH,
            'synced': r.synced_to_remote,
        }
        for r in receipts
    ])

    summary['totalAmount'] = _from_cents(df['cents'].sum())
    for key, column in (('byCategory', 'category'), ('byMonth', 'month')):
        grouped = df.groupby(column, sort=True)['cents'].agg(['count', 'sum'])
        summary[key] = {
            str(idx): {'count': int(row['count']), 'amount': _from_cents(row['sum'])}
            for idx, row in grouped.iterrows()
        }

    synced = int(df['synced'].sum())
    summary['syncedCount'] = synced
    summary['pendingSyncCount'] = len(receipts) - synced
    return summary


class ReceiptRepository(abc.ABC):
    """Durable set of receipts keyed by id."""

    @abc.abstractmethod
    def save(self, receipt: Receipt) -> Receipt:
        """Insert or update a receipt by id.

        Fields of the incoming receipt overwrite stored ones; stored keys the
        incoming record does not carry are kept.

        Raises:
            status.StorageError: If the store cannot be read or written.
        """

    @abc.abstractmethod
    def get(self, receipt_id: str) -> Optional[Receipt]:
        """Return the receipt, or None if there is no such id."""

    @abc.abstractmethod
    def list(self, category: Optional[str] = None) -> List[Receipt]:
        """Return all receipts, newest ``created_at`` first, optionally of one category."""

    @abc.abstractmethod
    def delete(self, receipt_id: str) -> None:
        """Remove a receipt. Removing an unknown id is a no-op."""

    def compute_summary(self, category: Optional[str] = None) -> Dict[str, Any]:
        """Summarize the receipts :meth:`list` returns for category. See :func:`summarize`."""
        return summarize(self.list(category=category))


class InMemoryReceiptStore(ReceiptRepository):
    """Dictionary-backed repository. Records are kept serialized, as in the snapshot."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}

    def save(self, receipt: Receipt) -> Receipt:
        existing = self._records.get(receipt.id, {})
        self._records[receipt.id] = {**existing, **receipt.to_dict()}
        return receipt

    def get(self, receipt_id: str) -> Optional[Receipt]:
        record = self._records.get(receipt_id)
        return Receipt.from_dict(record) if record else None

    def list(self, category: Optional[str] = None) -> List[Receipt]:
        receipts = [Receipt.from_dict(r) for r in self._records.values()]
        if category is not None:
            receipts = [r for r in receipts if r.category == category]
        return _sorted(receipts)

    def delete(self, receipt_id: str) -> None:
        self._records.pop(receipt_id, None)


class JsonReceiptStore(ReceiptRepository):
    """Repository backed by a single JSON snapshot file.

    Args:
        path: The snapshot file. Created on first write.
    """

    def __init__(self, path: os.PathLike) -> None:
        self.path = pathlib.Path(path)
        self._lock = threading.Lock()

    def _read(self) -> List[Dict[str, Any]]:
        """Read every record from the snapshot.

        Raises:
            status.StorageError: If the file cannot be read or parsed.
        """
        if not self.path.exists():
            return []
        try:
            with self.path.open('r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as ex:
            raise status.StorageError(f'Failed to read receipts from "{self.path}": {ex}') from ex
        if not isinstance(data, list):
            raise status.StorageError(f'Receipt snapshot "{self.path}" must contain a list.')
        return data

    def _write(self, records: List[Dict[str, Any]]) -> None:
        """Replace the snapshot atomically.

        Raises:
            status.StorageError: If the file cannot be written.
        """
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                    'w', encoding='utf-8', dir=self.path.parent,
                    prefix=f'.{self.path.name}.', suffix='.tmp', delete=False
            ) as f:
                tmp_path = f.name
                json.dump(records, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as ex:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise status.StorageError(f'Failed to write receipts to "{self.path}": {ex}') from ex
        logging.debug(f'Wrote {len(records)} receipts to "{self.path}".')

    def _parse(self, record: Dict[str, Any]) -> Receipt:
        try:
            return Receipt.from_dict(record)
        except (KeyError, ValueError, TypeError, decimal.InvalidOperation) as ex:
            raise status.StorageError(f'Malformed receipt record {record.get("id")!r}: {ex}') from ex

    def save(self, receipt: Receipt) -> Receipt:
        with self._lock:
            records = self._read()
            incoming = receipt.to_dict()
            index = next((i for i, r in enumerate(records) if r.get('id') == receipt.id), None)
            if index is None:
                records.append(incoming)
            else:
                records[index] = {**records[index], **incoming}
            self._write(records)
        logging.debug(f'Saved receipt {receipt.id}.')
        return receipt

    def get(self, receipt_id: str) -> Optional[Receipt]:
        record = next((r for r in self._read() if r.get('id') == receipt_id), None)
        return self._parse(record) if record else None

    def list(self, category: Optional[str] = None) -> List[Receipt]:
        receipts = [self._parse(r) for r in self._read()]
        if category is not None:
            receipts = [r for r in receipts if r.category == category]
        return _sorted(receipts)

    def delete(self, receipt_id: str) -> None:
        with self._lock:
            records = self._read()
            filtered = [r for r in records if r.get('id') != receipt_id]
            if len(filtered) == len(records):
                logging.debug(f'Receipt {receipt_id} not in store. No action taken.')
                return
            self._write(filtered)
        logging.debug(f'Deleted receipt {receipt_id}.')
