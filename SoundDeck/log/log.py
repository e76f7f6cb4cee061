"""Logging setup for SoundDeck.

Python and Qt messages share one formatter and go to stdout and to a bounded
in-memory :class:`TankHandler`. The tank keeps the recent persistence history of
the session (saves, suppressed saves, restorations, backups) so it can be
returned by :meth:`SoundDeck.profiles.lib.ProfilesAPI.get_logs`.
"""
import collections
import logging
import sys

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

from ..ui.actions import signals

LOG_LEVEL = logging.DEBUG
LOG_FORMAT = '[%(asctime)s] <%(module)s> %(levelname)s:  %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

# Records kept by the tank; older ones are dropped
TANK_CAPACITY = 5000

LEVELS = (
    logging.DEBUG,
    logging.INFO,
    logging.WARNING,
    logging.ERROR,
    logging.CRITICAL,
)

QT_LEVELS = {
    QtMsgType.QtDebugMsg: logging.DEBUG,
    QtMsgType.QtInfoMsg: logging.INFO,
    QtMsgType.QtWarningMsg: logging.WARNING,
    QtMsgType.QtCriticalMsg: logging.ERROR,
    QtMsgType.QtFatalMsg: logging.CRITICAL,
}


def set_logging_level(level):
    """Apply ``level`` to the root logger and every handler attached to it.

    Raises:
        ValueError: If ``level`` is not one of the standard logging levels.
    """
    if isinstance(level, bool) or not isinstance(level, int):
        raise ValueError(f'Logging level must be an integer, got {level!r}.')
    if level not in LEVELS:
        raise ValueError(f'Unknown logging level {level}. Expected one of {LEVELS}.')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def qt_message_handler(mode, context, message):
    """Forward a Qt message to the ``Qt`` logger. Fatal messages exit."""
    level = QT_LEVELS.get(mode, logging.WARNING)
    logging.getLogger('Qt').log(level, message.strip())
    if mode == QtMsgType.QtFatalMsg:
        sys.exit(1)


def setup_logging(enable_stream_handler=True, enable_qt_handler=True, log_level=LOG_LEVEL):
    """Replace the root logger's handlers with the SoundDeck ones.

    Args:
        enable_stream_handler (bool): Also log to stdout.
        enable_qt_handler (bool): Route Qt messages into Python logging.
        log_level (int): Level of the root logger and its handlers.

    Returns:
        TankHandler: The new in-memory handler.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    handlers = [TankHandler()]
    if enable_stream_handler:
        handlers.insert(0, logging.StreamHandler(sys.stdout))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(log_level)
        root_logger.addHandler(handler)

    if enable_qt_handler:
        qInstallMessageHandler(qt_message_handler)

    return handlers[-1]


def get_tank_handler():
    """Return the TankHandler attached to the root logger, or None."""
    return next(
        (h for h in logging.getLogger().handlers if isinstance(h, TankHandler)),
        None
    )


class TankHandler(logging.Handler):
    """Keeps the most recent formatted records in memory.

    Errors and above emit ``signals.showLogs`` so a window can surface them.

    Attributes:
        tank (collections.deque[tuple[int, str]]): Level and message pairs, oldest first.
    """

    def __init__(self, capacity=TANK_CAPACITY):
        super().__init__()
        self.tank = collections.deque(maxlen=capacity)

    def emit(self, record):
        try:
            self.tank.append((record.levelno, self.format(record)))
        except Exception:
            self.handleError(record)
            return
        if record.levelno >= logging.ERROR:
            signals.showLogs.emit()

    def get_logs(self, level=logging.NOTSET, limit=None):
        """Return messages at or above ``level``, oldest first.

        Args:
            level (int): Minimum level.
            limit (int, optional): Only return the last ``limit`` matches.
        """
        messages = [msg for lvl, msg in self.tank if lvl >= level]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def clear_logs(self):
        self.tank.clear()
