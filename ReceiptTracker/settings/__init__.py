"""
Settings package: data directory layout and configuration.

- :mod:`ReceiptTracker.settings.lib` – ConfigPaths, SettingsAPI, schema and environment overrides.
"""
