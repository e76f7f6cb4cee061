"""Profile directory resolution.

A profile lives in ``<profiles_dir>/<directory_name>`` where ``directory_name``
is the sanitized profile name. Two names that sanitize to the same directory
name, ignoring case, refer to the same profile.
"""
import dataclasses
import datetime
import json
import logging
import pathlib
import re
from typing import Any, Dict, List, Optional

from ..settings import lib
from ..status import status


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec='seconds')


def sanitize_profile_name(name: str) -> str:
    """Strip unsupported characters from a profile name.

    Only letters, digits, whitespace, ``-`` and ``_`` are kept. Whitespace runs
    collapse to a single space and the result is trimmed.

    Args:
        name: The human-entered profile name.

    Returns:
        str: The sanitized name, possibly empty.
    """
    if not isinstance(name, str):
        return ''
    name = re.sub(r'[^a-zA-Z0-9\s\-_]', '', name)
    return re.sub(r'\s+', ' ', name).strip()


@dataclasses.dataclass
class Profile:
    """A profile directory and its identity metadata."""
    name: str
    directory_name: str
    path: pathlib.Path
    description: str = ''
    created_at: Optional[str] = None
    last_used: Optional[str] = None

    @property
    def metadata_path(self) -> pathlib.Path:
        return self.path / lib.PROFILE_METADATA_FILE

    @property
    def state_path(self) -> pathlib.Path:
        return self.path / lib.STATE_FILE

    @property
    def state_backup_path(self) -> pathlib.Path:
        return self.path / lib.STATE_BACKUP_FILE

    @property
    def preferences_path(self) -> pathlib.Path:
        return self.path / lib.PREFERENCES_FILE

    @property
    def backups_dir(self) -> pathlib.Path:
        return self.path / lib.BACKUPS_DIR

    def metadata(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'created_at': self.created_at,
            'last_used': self.last_used,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.metadata()
        data['directory'] = str(self.path)
        return data


class ProfileResolver:
    """Maps profile names to directories under the profiles root."""

    def __init__(self, profiles_dir: pathlib.Path) -> None:
        self.profiles_dir = pathlib.Path(profiles_dir)

    @staticmethod
    def directory_name(name: str) -> str:
        """Return the directory name for ``name``.

        Raises:
            status.InvalidProfileNameException: If the sanitized name is empty or too long.
        """
        sanitized = sanitize_profile_name(name)
        if not sanitized:
            raise status.InvalidProfileNameException(f'"{name}" contains no usable characters.')
        if len(sanitized) > lib.MAX_PROFILE_NAME_LENGTH:
            raise status.InvalidProfileNameException(
                f'"{sanitized}" is longer than {lib.MAX_PROFILE_NAME_LENGTH} characters.'
            )
        return sanitized

    def path_for(self, name: str) -> pathlib.Path:
        return self.profiles_dir / self.directory_name(name)

    def _find_directory(self, name: str) -> Optional[pathlib.Path]:
        key = sanitize_profile_name(name).casefold()
        if not key or not self.profiles_dir.exists():
            return None
        for p in self.profiles_dir.iterdir():
            if p.is_dir() and p.name.casefold() == key:
                return p
        return None

    def exists(self, name: str) -> bool:
        return self._find_directory(name) is not None

    def find(self, name: str) -> Optional[Profile]:
        """Return the profile matching ``name``, or None."""
        p = self._find_directory(name)
        if p is None:
            return None
        return self.read(p)

    def get(self, name: str) -> Profile:
        """Return the profile matching ``name``.

        Raises:
            status.ProfileNotFoundException: If no such profile exists.
        """
        profile = self.find(name)
        if profile is None:
            raise status.ProfileNotFoundException(f'"{name}"')
        return profile

    def list(self) -> List[Profile]:
        """Return all profiles sorted case-insensitively by name."""
        if not self.profiles_dir.exists():
            return []
        profiles = [self.read(p) for p in self.profiles_dir.iterdir() if p.is_dir()]
        return sorted(profiles, key=lambda p: p.name.casefold())

    @staticmethod
    def read(path: pathlib.Path) -> Profile:
        """Build a :class:`Profile` from a directory, reading profile.json when present."""
        profile = Profile(name=path.name, directory_name=path.name, path=path)
        metadata_path = path / lib.PROFILE_METADATA_FILE
        if not metadata_path.exists():
            return profile

        try:
            with metadata_path.open('r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as ex:
            logging.warning(f'Failed to read profile metadata "{metadata_path}": {ex}')
            return profile

        if not isinstance(data, dict):
            logging.warning(f'Profile metadata "{metadata_path}" is not an object')
            return profile

        profile.name = data.get('name') or path.name
        profile.description = data.get('description') or ''
        profile.created_at = data.get('created_at')
        profile.last_used = data.get('last_used')
        return profile

    @staticmethod
    def write(profile: Profile) -> None:
        """Write profile.json, replacing the previous file atomically."""
        profile.path.mkdir(parents=True, exist_ok=True)
        tmp_path = profile.metadata_path.with_name(profile.metadata_path.name + '.tmp')
        with tmp_path.open('w', encoding='utf-8') as f:
            json.dump(profile.metadata(), f, indent=4, ensure_ascii=False)
        tmp_path.replace(profile.metadata_path)

    def touch(self, profile: Profile) -> None:
        """Update ``last_used`` and persist it."""
        profile.last_used = now_iso()
        try:
            self.write(profile)
        except OSError as ex:
            logging.warning(f'Failed to update last_used for "{profile.name}": {ex}')
