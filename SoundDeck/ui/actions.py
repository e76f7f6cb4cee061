"""Application-wide Qt signals for SoundDeck.

Signals cover the profile lifecycle, state restoration and saving, backups, and
log/error reporting.
"""
from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for profile, state and backup events."""
    profilesChanged = QtCore.Signal()
    profileActivated = QtCore.Signal(str)  # Profile name
    profileAboutToSwitch = QtCore.Signal(str)  # Target profile name

    restorationStarted = QtCore.Signal()
    restorationFinished = QtCore.Signal()

    stateSaved = QtCore.Signal(str)  # Profile name
    stateLoaded = QtCore.Signal(str)  # Profile name
    saveSuppressed = QtCore.Signal(str)  # Domain

    backupCreated = QtCore.Signal(str, str)  # Profile name, backup id
    backupRestored = QtCore.Signal(str, str)  # Profile name, backup id

    showLogs = QtCore.Signal()
    error = QtCore.Signal(str)


signals = Signals()
