"""
UI package: application signals and the live state accessors.

This package provides:

- :mod:`SoundDeck.ui.actions` – Application-wide Qt signals.
- :mod:`SoundDeck.ui.accessors` – Hotkey and holding tank accessor protocols and in-memory implementations.
"""
