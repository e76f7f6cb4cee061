"""
Profiles package: profile-scoped state persistence.

This package provides:

- :mod:`SoundDeck.profiles.paths` – Profile name sanitization and directory resolution.
- :mod:`SoundDeck.profiles.state` – State snapshots and atomic state file I/O.
- :mod:`SoundDeck.profiles.coordinator` – The restoration lock and the save coordinator.
- :mod:`SoundDeck.profiles.backup` – Backup snapshots, retention and the auto-backup timer.
- :mod:`SoundDeck.profiles.files` – Hotkey (.mrv) and holding tank (.hld) file formats.
- :mod:`SoundDeck.profiles.lib` – The profile lifecycle API (:class:`SoundDeck.profiles.lib.ProfilesAPI`).
"""
