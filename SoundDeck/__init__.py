"""
SoundDeck: profile-scoped state persistence for a hotkey and holding-tank audio control surface.

This package provides:

- :mod:`SoundDeck.profiles` – Profile directories, state snapshots, save coordination, lifecycle and backups.
- :mod:`SoundDeck.settings` – Application paths, per-profile preferences and user settings.
- :mod:`SoundDeck.status` – Status codes, exceptions and result envelopes.
- :mod:`SoundDeck.ui` – Application-wide signals and the live hotkey/holding-tank accessors.
- :mod:`SoundDeck.log` – In-app logging with an in-memory log tank.

Use :func:`SoundDeck.exec_` to start a headless session for the profile named on the command line.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('SoundDeck requires Python 3.11 or higher.')

__version__ = '0.1.0'
__author__ = 'Gergely Wootsch'
__license__ = 'GPL-3.0'
__copyright__ = 'Copyright (C) 2025 Gergely Wootsch'
__description__ = 'SoundDeck: profile-scoped hotkey and holding tank state persistence.'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Start a SoundDeck session and enter the event loop.

    Resolves the profile to activate from ``sys.argv``, loads its state and keeps
    the auto-backup timer running until the session hands over to a relaunched
    process or is interrupted.
    """
    import asyncio

    from PySide6 import QtCore

    from .profiles import lib

    if not QtCore.QCoreApplication.instance():
        QtCore.QCoreApplication(sys.argv)

    async def _run() -> int:
        api = lib.ProfilesAPI()
        result = await api.startup(sys.argv)
        if not result['success']:
            return 1
        try:
            await api.finished.wait()
        finally:
            await api.shutdown()
        return 0

    sys.exit(asyncio.run(_run()))


if __name__ == '__main__':
    exec_()
