"""Root logger setup and the in-memory log tank.

The tank keeps the most recent formatted records so the web layer can serve them
for diagnostics without access to the process output.
"""
import collections
import logging
import os
import sys

LOG_LEVEL_ENV = 'RECEIPT_TRACKER_LOG_LEVEL'

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

LEVELS = (
    logging.DEBUG,
    logging.INFO,
    logging.WARNING,
    logging.ERROR,
    logging.CRITICAL,
)


def level_from_env(default=LOG_LEVEL):
    """
    Reads the log level name from ``RECEIPT_TRACKER_LOG_LEVEL``.

    Args:
        default (int): Returned when the variable is unset or not a level name.

    Returns:
        int: The logging level.
    """
    name = os.environ.get(LOG_LEVEL_ENV, '').strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    if level not in LEVELS:
        return default
    return level


def set_logging_level(level):
    """
    Sets the level of the root logger and its handlers.

    Args:
        level (int): One of the standard logging levels.

    Raises:
        ValueError: If level is not a standard logging level.
    """
    if not isinstance(level, int) or isinstance(level, bool):
        raise ValueError('Logging level must be an integer.')
    if level not in LEVELS:
        raise ValueError('Invalid logging level. Use one of the standard logging levels, e.g., logging.DEBUG.')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def setup_logging(enable_stream_handler=True, log_level=None):
    """
    Replaces the root logger's handlers with a stdout stream handler and a tank.

    Args:
        enable_stream_handler (bool): Echo records to stdout.
        log_level (int, optional): Defaults to the environment, then DEBUG.
    """
    if log_level is None:
        log_level = level_from_env()

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    handlers = [TankHandler()]
    if enable_stream_handler:
        handlers.insert(0, logging.StreamHandler(sys.stdout))

    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    set_logging_level(log_level)


def get_tank():
    """Returns the TankHandler installed on the root logger, or None."""
    return next((h for h in logging.getLogger().handlers if isinstance(h, TankHandler)), None)


def get_logs(level=logging.NOTSET):
    """
    Returns the tank's messages at or above level, oldest first.
    Empty when no tank is installed.
    """
    tank = get_tank()
    return tank.get_logs(level) if tank else []


class TankHandler(logging.Handler):
    """
    Keeps the last ``max_records`` formatted records in memory.

    Attributes:
        tank (collections.deque[tuple[int, str]]): ``(level, message)`` pairs.
    """
    max_records = 10_000

    def __init__(self, max_records=None):
        super().__init__()
        self.tank = collections.deque(maxlen=max_records or self.max_records)

    def emit(self, record):
        try:
            self.tank.append((record.levelno, self.format(record)))
        except Exception:
            self.handleError(record)

    def get_logs(self, level=logging.NOTSET):
        """
        Args:
            level (int, optional): The minimum logging level. Defaults to logging.NOTSET.

        Returns:
            list[str]: Messages with a level >= level.
        """
        return [msg for lvl, msg in self.tank if lvl >= level]

    def clear_logs(self):
        self.tank.clear()
