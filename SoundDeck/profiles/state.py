"""State snapshots and atomic state file I/O.

A :class:`StateSnapshot` is the complete hotkey and holding tank configuration of
one profile. It is always written whole, never patched. :class:`StateStore`
writes it with an atomic replace and keeps a best-effort copy of the previous
file in ``state.json.backup``.
"""
import asyncio
import dataclasses
import json
import logging
import os
import pathlib
import shutil
import tempfile
import time
from typing import Any, Dict, List, Optional

from .paths import Profile
from ..status import status
from ..ui.actions import signals

SNAPSHOT_VERSION: str = '1.0.0'
TAB_COUNT: int = 5
HOTKEY_SLOTS: List[str] = [f'f{i}' for i in range(1, 13)]

HOTKEYS: str = 'hotkeys'
HOLDING_TANK: str = 'holdingTank'
DOMAINS: tuple = (HOTKEYS, HOLDING_TANK)


def now_ms() -> int:
    return int(time.time() * 1000)


def _track(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


def _title(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value or None


def _tab_number(entry: Dict[str, Any], index: int) -> int:
    n = entry.get('tabNumber', index + 1)
    if isinstance(n, bool) or not isinstance(n, (int, str)):
        raise ValueError(f'Invalid tabNumber: {n!r}')
    return int(n)


@dataclasses.dataclass
class HotkeyTab:
    """One hotkey tab: key slots ``f1``..``f12`` mapped to track references."""
    tab_number: int
    title: Optional[str] = None
    slots: Dict[str, str] = dataclasses.field(default_factory=dict)

    def ordered_slots(self) -> Dict[str, str]:
        return {k: self.slots[k] for k in HOTKEY_SLOTS if self.slots.get(k)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tabNumber': self.tab_number,
            'tabName': self.title,
            'hotkeys': self.ordered_slots(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], tab_number: int) -> 'HotkeyTab':
        hotkeys = data.get('hotkeys') or {}
        if not isinstance(hotkeys, dict):
            raise ValueError(f'Hotkey tab {tab_number}: "hotkeys" must be an object')

        slots: Dict[str, str] = {}
        for key, value in hotkeys.items():
            slot = str(key).lower()
            if slot not in HOTKEY_SLOTS:
                logging.warning(f'Hotkey tab {tab_number}: dropping unknown slot "{key}"')
                continue
            track = _track(value)
            if track is not None:
                slots[slot] = track

        tab = cls(tab_number=tab_number, title=_title(data.get('tabName')))
        tab.slots = {k: slots[k] for k in HOTKEY_SLOTS if k in slots}
        return tab


@dataclasses.dataclass
class HoldingTankTab:
    """One holding tank tab: an ordered list of track references."""
    tab_number: int
    title: Optional[str] = None
    tracks: List[str] = dataclasses.field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tabNumber': self.tab_number,
            'tabName': self.title,
            'songIds': list(self.tracks),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], tab_number: int) -> 'HoldingTankTab':
        song_ids = data.get('songIds') or []
        if not isinstance(song_ids, list):
            raise ValueError(f'Holding tank tab {tab_number}: "songIds" must be a list')
        tracks = [t for t in (_track(v) for v in song_ids) if t is not None]
        return cls(tab_number=tab_number, title=_title(data.get('tabName')), tracks=tracks)


def empty_hotkey_tabs() -> List[HotkeyTab]:
    return [HotkeyTab(tab_number=i) for i in range(1, TAB_COUNT + 1)]


def empty_holding_tank_tabs() -> List[HoldingTankTab]:
    return [HoldingTankTab(tab_number=i) for i in range(1, TAB_COUNT + 1)]


def _normalize_tabs(entries: Any, factory, empty_tabs: list, label: str) -> list:
    if entries is None:
        return empty_tabs
    if not isinstance(entries, list):
        raise ValueError(f'"{label}" must be a list')

    tabs = {t.tab_number: t for t in empty_tabs}
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f'"{label}" entries must be objects')
        n = _tab_number(entry, index)
        if n not in tabs:
            logging.warning(f'Dropping {label} tab {n}: only {TAB_COUNT} tabs are supported')
            continue
        tabs[n] = factory(entry, n)
    return [tabs[n] for n in sorted(tabs)]


@dataclasses.dataclass
class StateSnapshot:
    """The complete persisted state of one profile."""
    hotkeys: List[HotkeyTab] = dataclasses.field(default_factory=empty_hotkey_tabs)
    holding_tank: List[HoldingTankTab] = dataclasses.field(default_factory=empty_holding_tank_tabs)
    version: str = SNAPSHOT_VERSION
    timestamp: Optional[int] = None

    @classmethod
    def empty(cls) -> 'StateSnapshot':
        return cls()

    @property
    def is_empty(self) -> bool:
        return (
                not any(t.slots or t.title for t in self.hotkeys) and
                not any(t.tracks or t.title for t in self.holding_tank)
        )

    def replace(self, **changes: Any) -> 'StateSnapshot':
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'timestamp': self.timestamp if self.timestamp is not None else now_ms(),
            HOTKEYS: [t.to_dict() for t in self.hotkeys],
            HOLDING_TANK: [t.to_dict() for t in self.holding_tank],
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'StateSnapshot':
        """Build a normalized snapshot with exactly five tabs per domain.

        Raises:
            ValueError: If the structure cannot be interpreted.
        """
        if not isinstance(data, dict):
            raise ValueError('State must be a JSON object')
        timestamp = data.get('timestamp')
        return cls(
            hotkeys=_normalize_tabs(data.get(HOTKEYS), HotkeyTab.from_dict, empty_hotkey_tabs(), HOTKEYS),
            holding_tank=_normalize_tabs(
                data.get(HOLDING_TANK), HoldingTankTab.from_dict, empty_holding_tank_tabs(), HOLDING_TANK
            ),
            version=str(data.get('version') or SNAPSHOT_VERSION),
            timestamp=timestamp if isinstance(timestamp, int) else None,
        )


def parse_snapshot(text: str, source: Any = None) -> StateSnapshot:
    """Parse snapshot JSON.

    Raises:
        status.StateFileCorruptException: If the text is empty, not JSON, or not a snapshot.
    """
    if not text.strip():
        raise status.StateFileCorruptException(f'{source} is empty.')
    try:
        return StateSnapshot.from_dict(json.loads(text))
    except ValueError as ex:
        raise status.StateFileCorruptException(f'{source}: {ex}') from ex


def serialize_snapshot(snapshot: StateSnapshot) -> str:
    return json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False)


def read_snapshot_file(path: pathlib.Path) -> StateSnapshot:
    """Read and parse a snapshot file.

    Raises:
        OSError: If the file cannot be read.
        status.StateFileCorruptException: If it cannot be parsed.
    """
    return parse_snapshot(pathlib.Path(path).read_text(encoding='utf-8'), path)


def write_atomic(path: pathlib.Path, text: str) -> None:
    """Write ``text`` to ``path`` through a unique temp file, fsync and rename.

    Raises:
        OSError: If any step fails. The temp file is removed and ``path`` is untouched.
    """
    fd, tmp = tempfile.mkstemp(prefix=f'.{path.name}.', suffix='.tmp', dir=path.parent)
    tmp_path = pathlib.Path(tmp)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class StateStore:
    """Reads and writes profile state files.

    Writes to the same target are serialized: each rename completes before the
    next write to that file starts.
    """

    def __init__(self) -> None:
        self._locks: Dict[pathlib.Path, asyncio.Lock] = {}

    def lock_for(self, path: pathlib.Path) -> asyncio.Lock:
        key = pathlib.Path(path).resolve()
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @staticmethod
    def _has_content(path: pathlib.Path) -> bool:
        """True if ``path`` holds a readable snapshot with at least one assignment or title."""
        try:
            text = path.read_text(encoding='utf-8')
            return not StateSnapshot.from_dict(json.loads(text)).is_empty
        except FileNotFoundError:
            return False
        except (OSError, ValueError) as ex:
            logging.debug(f'Not backing up {path}: {ex}')
            return False

    @classmethod
    def _backup_previous(cls, profile: Profile) -> Optional[str]:
        # Returns an error message instead of raising: the primary save must go ahead.
        # Empty or unreadable state never replaces the backup slot.
        tmp_path = profile.state_backup_path.with_name(profile.state_backup_path.name + '.tmp')
        if not cls._has_content(profile.state_path):
            return None
        try:
            shutil.copyfile(profile.state_path, tmp_path)
            tmp_path.replace(profile.state_backup_path)
        except OSError as ex:
            tmp_path.unlink(missing_ok=True)
            return str(ex)
        return None

    def _write(self, profile: Profile, text: str) -> Optional[str]:
        backup_error = self._backup_previous(profile)
        write_atomic(profile.state_path, text)
        return backup_error

    async def save(self, profile: Profile, snapshot: StateSnapshot) -> status.Result:
        """Persist a complete snapshot for ``profile``.

        Returns:
            status.Result: Failed only when the primary write fails.
        """
        text = serialize_snapshot(snapshot.replace(timestamp=now_ms()))
        async with self.lock_for(profile.state_path):
            try:
                backup_error = await asyncio.to_thread(self._write, profile, text)
            except OSError as ex:
                msg = f'{status.get_message(status.Status.StateWriteFailed)} {profile.state_path}: {ex}'
                logging.error(msg)
                return status.Result.failure(status.Status.StateWriteFailed, msg)

        if backup_error:
            logging.warning(
                f'{status.get_message(status.Status.BackupWriteFailed)} '
                f'{profile.state_backup_path}: {backup_error}'
            )

        logging.debug(f'Saved state for "{profile.name}" to {profile.state_path}')
        signals.stateSaved.emit(profile.name)
        return status.Result.success(backup_written=backup_error is None)

    async def load(self, profile: Profile) -> StateSnapshot:
        """Load the snapshot for ``profile``.

        Missing, unreadable or corrupt files yield the empty snapshot. Never raises.
        """
        path = profile.state_path
        if not path.exists():
            logging.debug(f'No state file for "{profile.name}", starting empty')
            return StateSnapshot.empty()

        try:
            text = await asyncio.to_thread(path.read_text, encoding='utf-8')
        except (OSError, UnicodeDecodeError) as ex:
            logging.warning(f'{status.get_message(status.Status.StateFileCorrupt)} {path}: {ex}')
            return StateSnapshot.empty()

        try:
            snapshot = parse_snapshot(text, path)
        except status.StateFileCorruptException:
            return StateSnapshot.empty()

        logging.debug(f'Loaded state for "{profile.name}" from {path}')
        return snapshot
