"""
Core package for ReceiptTracker providing the ingestion and synchronization pipeline.

This package includes:

- :mod:`ReceiptTracker.core.model` – The Receipt record, categories and field parsing.
- :mod:`ReceiptTracker.core.outcome` – Explicit Ok/Skipped/Degraded results of remote calls.
- :mod:`ReceiptTracker.core.service` – Google API client construction with per-call timeouts.
- :mod:`ReceiptTracker.core.auth` – Google OAuth2 credential lifecycle.
- :mod:`ReceiptTracker.core.drive` – Google Drive document store.
- :mod:`ReceiptTracker.core.ledger` – Google Sheets ledger mirror.
- :mod:`ReceiptTracker.core.database` – Local receipt repository and summaries.
- :mod:`ReceiptTracker.core.files` – Local storage of the uploaded files.
- :mod:`ReceiptTracker.core.pipeline` – Ingestion, retry-sync and deletion.
"""
