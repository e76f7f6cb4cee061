"""Settings library for application paths, profile preferences and user settings.

Provides:
    - ConfigPaths: the application data directory layout.
    - Schema validation, loading and saving of per-profile preferences.json files.
    - UserSettings: the QSettings store recording the active, pending and fallback profiles.
    - Constants shared by the profile services.
"""

import copy
import json
import logging
import os
import pathlib
import tempfile
from typing import Any, Dict, Optional, Union

from PySide6 import QtCore

app_name: str = 'SoundDeck'

DEFAULT_PROFILE_NAME: str = 'Default User'
MAX_PROFILE_NAME_LENGTH: int = 50
PROFILE_ARG_PREFIX: str = '--profile='

# Seconds
FLUSH_TIMEOUT: float = 10.0
SAVE_DEBOUNCE: float = 0.5

PROFILE_METADATA_FILE: str = 'profile.json'
PREFERENCES_FILE: str = 'preferences.json'
STATE_FILE: str = 'state.json'
STATE_BACKUP_FILE: str = 'state.json.backup'
BACKUPS_DIR: str = 'backups'

# Keys that older versions stored in preferences.json and are no longer used
DEPRECATED_PREFERENCE_KEYS: tuple = (
    'hotkeys',
    'holding_tank',
    'browser_width',
    'browser_height',
    'window_state',
)

SCREEN_MODES: list = ['auto', 'light', 'dark']
HOLDING_TANK_MODES: list = ['storage', 'playlist']

PREFERENCES_SCHEMA: Dict[str, Any] = {
    'fade_out_seconds': {'type': (int, float), 'default': 2},
    'screen_mode': {'type': str, 'default': 'auto', 'allowed_values': SCREEN_MODES},
    'font_size': {'type': int, 'default': 11},
    'column_order': {'type': (list, type(None)), 'default': None},
    'debug_log_enabled': {'type': bool, 'default': False},
    'prerelease_updates': {'type': bool, 'default': False},
    'holding_tank_mode': {'type': str, 'default': 'storage', 'allowed_values': HOLDING_TANK_MODES},
    'backup_settings': {
        'type': dict,
        'item_schema': {
            'auto_backup_enabled': {'type': bool, 'default': True},
            'backup_interval': {'type': int, 'default': 30 * 60},
            'max_backup_count': {'type': int, 'default': 25},
            'max_backup_age': {'type': int, 'default': 30 * 24 * 60 * 60},
        }
    },
}

PROFILES_ACTIVE_KEY: str = 'profiles/active'
PROFILES_PENDING_KEY: str = 'profiles/pending'
PROFILES_FALLBACK_KEY: str = 'profiles/fallback'


def _default_for(specs: Dict[str, Any]) -> Any:
    if 'item_schema' in specs:
        return {k: copy.deepcopy(v['default']) for k, v in specs['item_schema'].items()}
    return copy.deepcopy(specs['default'])


def default_preferences() -> Dict[str, Any]:
    """Return a fresh copy of the default preferences."""
    return {k: _default_for(v) for k, v in PREFERENCES_SCHEMA.items()}


def _is_type(value: Any, expected: Any) -> bool:
    # bool is an int subclass; only accept it where bool is expected
    if isinstance(value, bool):
        expected = expected if isinstance(expected, tuple) else (expected,)
        return bool in expected
    return isinstance(value, expected)


def _validate_value(key: str, value: Any, specs: Dict[str, Any]) -> None:
    """Validate a single preference value against its schema entry.

    Raises:
        TypeError: If the value has the wrong type.
        ValueError: If the value is not one of the allowed values.
    """
    if not _is_type(value, specs['type']):
        msg: str = f'Preference "{key}" must be {specs["type"]}, got {type(value)}.'
        logging.error(msg)
        raise TypeError(msg)
    if 'allowed_values' in specs and value not in specs['allowed_values']:
        msg = f'Preference "{key}" must be one of {specs["allowed_values"]}, got "{value}".'
        logging.error(msg)
        raise ValueError(msg)
    if 'item_schema' in specs:
        for sub_key, sub_value in value.items():
            if sub_key not in specs['item_schema']:
                msg = f'Unknown key "{sub_key}" in preference "{key}".'
                logging.error(msg)
                raise ValueError(msg)
            _validate_value(f'{key}.{sub_key}', sub_value, specs['item_schema'][sub_key])


def validate_preferences(data: Dict[str, Any]) -> None:
    """Validate preferences against :data:`PREFERENCES_SCHEMA`.

    Unknown top-level keys are allowed and preserved.

    Args:
        data: Preferences to validate.

    Raises:
        TypeError: If ``data`` is not a dict or a value has the wrong type.
        ValueError: If a value is not allowed.
    """
    logging.debug('Validating preferences.')
    if not isinstance(data, dict):
        msg: str = 'Preferences must be a dict.'
        logging.error(msg)
        raise TypeError(msg)
    for key, specs in PREFERENCES_SCHEMA.items():
        if key in data:
            _validate_value(key, data[key], specs)


def _unwrap(value: Any) -> Any:
    # Older versions stored IPC results as {'success': True, 'value': ...}
    while isinstance(value, dict) and 'success' in value and 'value' in value:
        value = value['value']
    return value


def normalize_preferences(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a clean copy of ``data``.

    Deprecated keys are stripped, wrapped values unwrapped, and missing or
    invalid values replaced by defaults.
    """
    result: Dict[str, Any] = {}
    for key, value in data.items():
        if key in DEPRECATED_PREFERENCE_KEYS:
            logging.debug(f'Dropping deprecated preference "{key}"')
            continue
        result[key] = _unwrap(value)

    defaults = default_preferences()
    for key, specs in PREFERENCES_SCHEMA.items():
        if key not in result:
            result[key] = defaults[key]
            continue

        if 'item_schema' in specs and isinstance(result[key], dict):
            merged = defaults[key]
            for sub_key, sub_value in result[key].items():
                sub_value = _unwrap(sub_value)
                sub_specs = specs['item_schema'].get(sub_key)
                if sub_specs is None:
                    logging.warning(f'Ignoring unknown preference "{key}.{sub_key}"')
                    continue
                try:
                    _validate_value(f'{key}.{sub_key}', sub_value, sub_specs)
                except (TypeError, ValueError):
                    logging.warning(f'Resetting "{key}.{sub_key}" to its default')
                    continue
                merged[sub_key] = sub_value
            result[key] = merged
            continue

        try:
            _validate_value(key, result[key], specs)
        except (TypeError, ValueError):
            logging.warning(f'Resetting preference "{key}" to its default')
            result[key] = defaults[key]
    return result


def load_preferences(path: Union[str, pathlib.Path]) -> Dict[str, Any]:
    """Load a preferences.json file.

    Missing or unreadable files yield the defaults.

    Args:
        path: Path to preferences.json.

    Returns:
        dict: Normalized preferences.
    """
    path = pathlib.Path(path)
    if not path.exists():
        logging.debug(f'No preferences at "{path}", using defaults')
        return default_preferences()

    try:
        with path.open('r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as ex:
        logging.warning(f'Failed to read preferences "{path}": {ex}. Using defaults.')
        return default_preferences()

    if not isinstance(data, dict):
        logging.warning(f'Preferences "{path}" is not an object. Using defaults.')
        return default_preferences()

    return normalize_preferences(data)


def save_preferences(path: Union[str, pathlib.Path], data: Dict[str, Any]) -> None:
    """Validate and write preferences, replacing the file atomically.

    Raises:
        TypeError, ValueError: If validation fails.
        OSError: If the file cannot be written.
    """
    path = pathlib.Path(path)
    validate_preferences(data)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp = tempfile.mkstemp(prefix=f'.{path.name}.', suffix='.tmp', dir=path.parent)
    tmp_path = pathlib.Path(tmp)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=4, ensure_ascii=False)
        tmp_path.replace(path)
    except OSError as ex:
        logging.error(f'Error saving preferences "{path}": {ex}')
        tmp_path.unlink(missing_ok=True)
        raise
    logging.debug(f'Saved preferences to "{path}"')


class ConfigPaths:
    """Manage application file paths and ensure the required directories exist.

    Layout::

        <root>/usersettings.ini
        <root>/profiles/<directory_name>/...
    """

    def __init__(self, root: Optional[Union[str, pathlib.Path]] = None) -> None:
        """Set up application paths.

        Args:
            root: Application data directory. Defaults to the platform's
                writable AppDataLocation.
        """
        if root is None:
            QtCore.QCoreApplication.setApplicationName(app_name)
            QtCore.QCoreApplication.setOrganizationName('')
            logging.debug(f'Setting application name: {app_name}')

            p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
            root = pathlib.Path(p)

        self.app_data_dir: pathlib.Path = pathlib.Path(root)
        logging.debug(f'Using app data directory: {self.app_data_dir}')

        self.profiles_dir: pathlib.Path = self.app_data_dir / 'profiles'
        self.usersettings_path: pathlib.Path = self.app_data_dir / 'usersettings.ini'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Create the application data and profiles directories if missing."""
        if not self.app_data_dir.exists():
            logging.debug(f'Creating app data directory: {self.app_data_dir}')
            self.app_data_dir.mkdir(parents=True, exist_ok=True)

        if not self.profiles_dir.exists():
            logging.debug(f'Creating profiles directory: {self.profiles_dir}')
            self.profiles_dir.mkdir(parents=True, exist_ok=True)


class UserSettings:
    """INI-backed store for process-wide profile bookkeeping.

    Records which profile is active, which one a relaunch should activate
    (pending), and which one to fall back to if the pending profile is gone.
    """

    def __init__(self, path: Union[str, pathlib.Path]) -> None:
        self.path = pathlib.Path(path)
        self._settings = QtCore.QSettings(str(self.path), QtCore.QSettings.IniFormat)

    def _get(self, key: str) -> Optional[str]:
        v = self._settings.value(key, None)
        return str(v) if v else None

    def _set(self, key: str, value: Optional[str]) -> None:
        if value:
            self._settings.setValue(key, value)
        else:
            self._settings.remove(key)
        self._settings.sync()

    @property
    def active_profile(self) -> Optional[str]:
        return self._get(PROFILES_ACTIVE_KEY)

    @active_profile.setter
    def active_profile(self, value: Optional[str]) -> None:
        self._set(PROFILES_ACTIVE_KEY, value)

    @property
    def pending_profile(self) -> Optional[str]:
        return self._get(PROFILES_PENDING_KEY)

    @pending_profile.setter
    def pending_profile(self, value: Optional[str]) -> None:
        self._set(PROFILES_PENDING_KEY, value)

    @property
    def fallback_profile(self) -> Optional[str]:
        return self._get(PROFILES_FALLBACK_KEY)

    @fallback_profile.setter
    def fallback_profile(self, value: Optional[str]) -> None:
        self._set(PROFILES_FALLBACK_KEY, value)
