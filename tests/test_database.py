"""Tests for the receipt model, the local receipt repositories and the summary.

Classes:
    ModelTests: Field parsing and (de)serialization of Receipt.
    JsonReceiptStoreTests: The JSON snapshot repository.
    InMemoryReceiptStoreTests: The dictionary-backed repository.
    SummaryTests: compute_summary aggregation.
"""
import datetime
import json
from decimal import Decimal
from unittest.mock import patch

from ReceiptTracker.core import database
from ReceiptTracker.core.database import InMemoryReceiptStore, JsonReceiptStore
from ReceiptTracker.core.model import (
    Category,
    Receipt,
    DEFAULT_PROVIDER,
    parse_amount,
    parse_category,
    parse_date,
    parse_text,
)
from ReceiptTracker.status import status
from tests.base import BaseTestCase, make_receipt

UTC = datetime.timezone.utc


class ModelTests(BaseTestCase):

    def test_parse_amount(self):
        self.assertEqual(parse_amount('45.67'), Decimal('45.67'))
        self.assertEqual(parse_amount(' 12 '), Decimal('12.00'))
        self.assertEqual(parse_amount(None), Decimal('0.00'))
        self.assertEqual(parse_amount(''), Decimal('0.00'))
        self.assertEqual(parse_amount('abc'), Decimal('0.00'))
        self.assertEqual(parse_amount('nan'), Decimal('0.00'))
        self.assertEqual(parse_amount('inf'), Decimal('0.00'))
        self.assertEqual(parse_amount(True), Decimal('0.00'))

    def test_parse_amount_rounds_half_up_to_cents(self):
        self.assertEqual(parse_amount('0.005'), Decimal('0.01'))
        self.assertEqual(parse_amount('0.004'), Decimal('0.00'))
        self.assertEqual(parse_amount(0.1), Decimal('0.10'))
        self.assertEqual(parse_amount('19.999'), Decimal('20.00'))

    def test_receipt_amount_is_whole_cents(self):
        receipt = make_receipt('r1', amount=0.1 + 0.2)
        self.assertEqual(receipt.amount, Decimal('0.30'))
        self.assertEqual(receipt.to_dict()['amount'], 0.3)

    def test_negative_amount_is_rejected(self):
        with self.assertRaises(status.ValidationError):
            parse_amount('-1')

    def test_parse_date(self):
        self.assertEqual(parse_date('2024-03-01'), datetime.date(2024, 3, 1))
        self.assertEqual(parse_date(''), datetime.date.today())
        self.assertEqual(parse_date(None), datetime.date.today())
        with self.assertRaises(status.ValidationError):
            parse_date('03/01/2024')
        with self.assertRaises(status.ValidationError):
            parse_date('2024-02-30')

    def test_parse_category(self):
        self.assertIs(parse_category('Prescription'), Category.Prescription)
        self.assertIs(parse_category(''), Category.General)
        self.assertIs(parse_category(None), Category.General)
        with self.assertRaises(status.ValidationError):
            parse_category('Groceries')

    def test_parse_text(self):
        self.assertEqual(parse_text('  CVS  '), 'CVS')
        self.assertEqual(parse_text('', DEFAULT_PROVIDER), DEFAULT_PROVIDER)
        self.assertEqual(parse_text(None), '')

    def test_synced_flag_follows_document_id(self):
        receipt = make_receipt('r1')
        self.assertFalse(receipt.synced_to_remote)
        receipt.mark_synced('doc-1', 'https://link')
        self.assertTrue(receipt.synced_to_remote)
        self.assertTrue(receipt.to_dict()['syncedToRemote'])
        receipt.mark_pending()
        self.assertFalse(receipt.synced_to_remote)
        self.assertIsNone(receipt.remote_link)

    def test_mark_synced_requires_id(self):
        with self.assertRaises(ValueError):
            make_receipt('r1').mark_synced('', None)

    def test_to_dict_from_dict(self):
        created = datetime.datetime(2024, 3, 1, 12, 30, tzinfo=UTC)
        receipt = make_receipt(
            'r1', amount=45.67, category=Category.Prescription, created_at=created,
            provider='CVS', notes='Antibiotics', remote_document_id='doc-1',
        )
        data = receipt.to_dict()
        self.assertEqual(data['date'], '2024-03-01')
        self.assertEqual(data['category'], 'Prescription')
        self.assertEqual(data['createdAt'], created.isoformat())
        self.assertEqual(Receipt.from_dict(json.loads(json.dumps(data))), receipt)

    def test_from_dict_unknown_category_becomes_other(self):
        data = make_receipt('r1').to_dict()
        data['category'] = 'Legacy'
        self.assertIs(Receipt.from_dict(data).category, Category.Other)

    def test_from_dict_trusts_document_id(self):
        data = make_receipt('r1').to_dict()
        data['syncedToRemote'] = True
        self.assertFalse(Receipt.from_dict(data).synced_to_remote)

    def test_from_dict_naive_timestamp_is_utc(self):
        data = make_receipt('r1').to_dict()
        data['createdAt'] = '2024-03-01T10:00:00'
        self.assertEqual(Receipt.from_dict(data).created_at.tzinfo, UTC)


class JsonReceiptStoreTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.store = JsonReceiptStore(self.settings.receipts_path)

    def test_missing_snapshot_is_empty(self):
        self.assertFalse(self.settings.receipts_path.exists())
        self.assertEqual(self.store.list(), [])
        self.assertIsNone(self.store.get('r1'))

    def test_save_and_get(self):
        receipt = make_receipt('r1', amount=5.5)
        self.store.save(receipt)
        self.assertEqual(self.store.get('r1'), receipt)
        with self.settings.receipts_path.open('r', encoding='utf-8') as f:
            data = json.load(f)
        self.assertEqual(len(data), 1)
        self.assertEqual(data[0]['id'], 'r1')

    def test_save_updates_by_id(self):
        receipt = make_receipt('r1')
        self.store.save(receipt)
        receipt.mark_synced('doc-1', 'https://link')
        self.store.save(receipt)
        self.assertEqual(len(self.store.list()), 1)
        self.assertEqual(self.store.get('r1').remote_document_id, 'doc-1')

    def test_save_keeps_unknown_stored_keys(self):
        self.settings.receipts_path.write_text(
            json.dumps([{**make_receipt('r1').to_dict(), 'legacyField': 'kept'}]), encoding='utf-8')
        self.store.save(make_receipt('r1', amount=99.0))
        with self.settings.receipts_path.open('r', encoding='utf-8') as f:
            data = json.load(f)
        self.assertEqual(data[0]['legacyField'], 'kept')
        self.assertEqual(data[0]['amount'], 99.0)

    def test_list_is_newest_first(self):
        base = datetime.datetime(2024, 3, 1, tzinfo=UTC)
        for rid, hours in (('old', 0), ('new', 2), ('mid', 1)):
            self.store.save(make_receipt(rid, created_at=base + datetime.timedelta(hours=hours)))
        self.assertEqual([r.id for r in self.store.list()], ['new', 'mid', 'old'])

    def test_list_by_category(self):
        self.store.save(make_receipt('r1', category=Category.Dental))
        self.store.save(make_receipt('r2', category=Category.Vision))
        self.assertEqual([r.id for r in self.store.list(category='Dental')], ['r1'])
        self.assertEqual(self.store.list(category='Therapy'), [])

    def test_delete(self):
        self.store.save(make_receipt('r1'))
        self.store.save(make_receipt('r2'))
        self.store.delete('r1')
        self.assertIsNone(self.store.get('r1'))
        self.assertEqual([r.id for r in self.store.list()], ['r2'])
        self.store.delete('r1')

    def test_corrupt_snapshot_raises_storage_error(self):
        self.settings.receipts_path.write_text('{broken', encoding='utf-8')
        with self.assertRaises(status.StorageError):
            self.store.list()
        with self.assertRaises(status.StorageError):
            self.store.save(make_receipt('r1'))

    def test_non_list_snapshot_raises_storage_error(self):
        self.settings.receipts_path.write_text('{}', encoding='utf-8')
        with self.assertRaises(status.StorageError):
            self.store.list()

    def test_malformed_record_raises_storage_error(self):
        self.settings.receipts_path.write_text(json.dumps([{'id': 'r1'}]), encoding='utf-8')
        with self.assertRaises(status.StorageError):
            self.store.get('r1')

    def test_failed_write_leaves_snapshot_intact(self):
        self.store.save(make_receipt('r1'))
        with patch.object(database.os, 'replace', side_effect=OSError('disk full')):
            with self.assertRaises(status.StorageError):
                self.store.save(make_receipt('r2'))
        self.assertEqual([r.id for r in self.store.list()], ['r1'])
        leftovers = [p for p in self.settings.receipts_path.parent.iterdir() if p.suffix == '.tmp']
        self.assertEqual(leftovers, [])


class InMemoryReceiptStoreTests(BaseTestCase):

    def test_crud(self):
        store = InMemoryReceiptStore()
        receipt = make_receipt('r1')
        store.save(receipt)
        self.assertEqual(store.get('r1'), receipt)
        store.delete('r1')
        self.assertIsNone(store.get('r1'))
        store.delete('r1')

    def test_get_returns_independent_copy(self):
        store = InMemoryReceiptStore()
        store.save(make_receipt('r1'))
        fetched = store.get('r1')
        fetched.mark_synced('doc-1', None)
        self.assertFalse(store.get('r1').synced_to_remote)


class SummaryTests(BaseTestCase):

    def test_empty_summary(self):
        summary = InMemoryReceiptStore().compute_summary()
        self.assertEqual(summary, {
            'totalReceipts': 0,
            'totalAmount': Decimal('0.00'),
            'byCategory': {},
            'byMonth': {},
            'syncedCount': 0,
            'pendingSyncCount': 0,
        })

    def test_summary_aggregates(self):
        store = InMemoryReceiptStore()
        store.save(make_receipt('r1', amount=45.67, category=Category.Prescription, date='2024-03-01',
                                remote_document_id='doc-1'))
        store.save(make_receipt('r2', amount=0.1, category=Category.Prescription, date='2024-03-15'))
        store.save(make_receipt('r3', amount=0.2, category=Category.Dental, date='2024-04-02'))

        summary = store.compute_summary()
        self.assertEqual(summary['totalReceipts'], 3)
        self.assertEqual(summary['totalAmount'], Decimal('45.97'))
        self.assertEqual(summary['byCategory'], {
            'Dental': {'count': 1, 'amount': Decimal('0.20')},
            'Prescription': {'count': 2, 'amount': Decimal('45.77')},
        })
        self.assertEqual(summary['byMonth'], {
            '2024-03': {'count': 2, 'amount': Decimal('45.77')},
            '2024-04': {'count': 1, 'amount': Decimal('0.20')},
        })
        self.assertEqual(summary['syncedCount'], 1)
        self.assertEqual(summary['pendingSyncCount'], 2)

    def test_counts_add_up(self):
        store = JsonReceiptStore(self.settings.receipts_path)
        for i in range(5):
            store.save(make_receipt(f'r{i}', amount=i, remote_document_id='doc' if i % 2 else None))
        summary = store.compute_summary()
        self.assertEqual(summary['syncedCount'] + summary['pendingSyncCount'], summary['totalReceipts'])
        self.assertEqual(sum(v['count'] for v in summary['byCategory'].values()), 5)
        self.assertEqual(summary['totalAmount'], Decimal('10.00'))

    def test_group_amounts_add_up_to_total(self):
        amounts = ['0.1', '0.2', '0.005', '0.004', '0.004', '19.99', '0.3', '7.015', '0.01', '100']
        categories = [Category.Dental, Category.Vision, Category.Prescription, Category.LabWork]
        dates = ['2024-01-31', '2024-02-01', '2024-02-29', '2024-12-31', '2025-01-01']

        store = JsonReceiptStore(self.settings.receipts_path)
        for i, amount in enumerate(amounts * 3):
            store.save(make_receipt(
                f'r{i}', amount=parse_amount(amount),
                category=categories[i % len(categories)], date=dates[i % len(dates)],
            ))

        summary = store.compute_summary()
        total = summary['totalAmount']
        self.assertEqual(total, sum((r.amount for r in store.list()), Decimal('0.00')))
        self.assertEqual(total, sum((v['amount'] for v in summary['byCategory'].values()), Decimal('0.00')))
        self.assertEqual(total, sum((v['amount'] for v in summary['byMonth'].values()), Decimal('0.00')))
        self.assertEqual(summary['totalReceipts'], len(amounts) * 3)

    def test_sub_cent_amounts_in_separate_groups(self):
        store = InMemoryReceiptStore()
        store.save(make_receipt('r1', amount=parse_amount('0.004'), category=Category.Dental))
        store.save(make_receipt('r2', amount=parse_amount('0.004'), category=Category.Vision))
        store.save(make_receipt('r3', amount=0.1, category=Category.Dental))
        store.save(make_receipt('r4', amount=0.2, category=Category.Vision))

        summary = store.compute_summary()
        self.assertEqual(summary['totalAmount'], Decimal('0.30'))
        self.assertEqual(summary['byCategory']['Dental']['amount'], Decimal('0.10'))
        self.assertEqual(summary['byCategory']['Vision']['amount'], Decimal('0.20'))

    def test_summary_of_one_category(self):
        store = InMemoryReceiptStore()
        store.save(make_receipt('r1', amount=10, category=Category.Dental))
        store.save(make_receipt('r2', amount=4.33, category=Category.Dental))
        store.save(make_receipt('r3', amount=99, category=Category.Vision))

        summary = store.compute_summary(category='Dental')
        self.assertEqual(summary['totalReceipts'], 2)
        self.assertEqual(summary['totalAmount'], Decimal('14.33'))
        self.assertEqual(list(summary['byCategory']), ['Dental'])
