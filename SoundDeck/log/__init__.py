"""
Logging subsystem: handlers for application logging.

Modules:

- :mod:`SoundDeck.log.log` – Log handlers integrating Python logging and Qt messages.
"""
