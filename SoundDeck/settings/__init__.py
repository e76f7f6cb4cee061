"""
Settings package: application paths, preferences and user settings.

This package provides:

- :mod:`SoundDeck.settings.lib` – Path management, preference schema validation and the user settings store.
"""
