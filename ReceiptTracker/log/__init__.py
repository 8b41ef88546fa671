"""
Logging subsystem.

Modules:

- :mod:`ReceiptTracker.log.log` – Root logger setup and the in-memory log tank handler.
"""
