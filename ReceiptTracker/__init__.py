"""
ReceiptTracker: local-first HSA receipt ledger mirrored to Google Drive and Google Sheets.

This package provides:

- :mod:`ReceiptTracker.core` – Credentials, remote document store, remote ledger, local store and the sync pipeline.
- :mod:`ReceiptTracker.settings` – Data directory paths and the settings/client secret configuration object.
- :mod:`ReceiptTracker.status` – Status codes and the exception taxonomy.
- :mod:`ReceiptTracker.log` – Logging setup and the in-memory log tank.
- :mod:`ReceiptTracker.api` – The facade called by the HTTP layer.

Use :func:`ReceiptTracker.create_api` to build a ready-to-use :class:`ReceiptTracker.api.ReceiptAPI`.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('ReceiptTracker requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'ReceiptTracker: local-first HSA receipt ledger mirrored to Google Drive and Google Sheets.'

from .log import log

log.setup_logging()


def create_api(data_dir=None):
    """Build the configuration object and every component, wired together.

    Args:
        data_dir (str, optional): Data directory override. Defaults to the environment or platform default.

    Returns:
        ReceiptTracker.api.ReceiptAPI: The facade.
    """
    from .api import ReceiptAPI
    from .settings.lib import SettingsAPI

    settings = SettingsAPI(data_dir=data_dir)
    return ReceiptAPI.from_settings(settings)
