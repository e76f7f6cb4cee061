"""Profile lifecycle API.

:class:`ProfilesAPI` owns the running session: the active profile, the live
hotkey and holding tank accessors, the restoration lock, the save coordinator
and the backup manager. Every public command is a coroutine returning an
envelope dict (``{'success': bool, 'error'?: str, ...}``).

Exactly one profile is active per process. Switching saves the live state,
records the target as pending and relaunches the process with
``--profile=<name>``; the new process activates it in :meth:`ProfilesAPI.startup`.
"""
import asyncio
import logging
import pathlib
import shutil
import sys
from typing import Any, Callable, Dict, Optional, Sequence, Union

from PySide6 import QtCore

from . import files
from .backup import MANUAL, AutoBackupTimer, BackupManager
from .coordinator import RestorationLock, SaveCoordinator
from .paths import Profile, ProfileResolver, now_iso, sanitize_profile_name
from .state import HOLDING_TANK, HOTKEY_SLOTS, HOTKEYS, TAB_COUNT, StateStore
from ..log import log
from ..settings import lib
from ..status import status
from ..ui.accessors import HoldingTankAccessor, HoldingTankTabs, HotkeyAccessor, HotkeyTabs
from ..ui.actions import signals

# Not copied when duplicating a profile
DUPLICATE_IGNORE_PATTERNS: tuple = (
    lib.BACKUPS_DIR,
    lib.STATE_BACKUP_FILE,
    lib.PROFILE_METADATA_FILE,
    '*.tmp',
)


def parse_profile_argument(argv: Sequence[str]) -> Optional[str]:
    """Return the value of the last ``--profile=`` argument, or None."""
    name = None
    for arg in argv:
        if arg.startswith(lib.PROFILE_ARG_PREFIX):
            name = arg[len(lib.PROFILE_ARG_PREFIX):].strip().strip('"') or None
    return name


def relaunch_command(profile_name: str, argv: Optional[Sequence[str]] = None) -> tuple:
    """Build the program and arguments that restart this process with ``profile_name``.

    Returns:
        tuple: ``(program, arguments)``.
    """
    argv = list(sys.argv if argv is None else argv)
    if getattr(sys, 'frozen', False):
        args = argv[1:]
    elif argv and pathlib.Path(argv[0]).name == '__main__.py':
        args = ['-m', pathlib.Path(argv[0]).parent.name] + argv[1:]
    else:
        args = argv
    args = [a for a in args if not a.startswith(lib.PROFILE_ARG_PREFIX)]
    args.append(f'{lib.PROFILE_ARG_PREFIX}{profile_name}')
    return sys.executable, args


def relaunch(profile_name: str) -> bool:
    """Start a detached copy of this process for ``profile_name`` and quit.

    Returns:
        bool: True if the new process was started.
    """
    program, args = relaunch_command(profile_name)
    logging.info(f'Relaunching: {program} {" ".join(args)}')
    result = QtCore.QProcess.startDetached(program, args)
    started = result[0] if isinstance(result, tuple) else bool(result)
    if not started:
        logging.error(f'Failed to start {program}')
        return False

    app = QtCore.QCoreApplication.instance()
    if app is not None:
        app.quit()
    return True


class ProfilesAPI:
    """Manages profiles and the persisted state of the active one.

    Args:
        root: Application data directory. Defaults to the platform location.
        hotkeys: Live hotkey accessor. Defaults to an in-memory one.
        holding_tank: Live holding tank accessor. Defaults to an in-memory one.
        relauncher: Callable starting the process for a profile name and
            returning True on success. Defaults to :func:`relaunch`.
        flush_timeout: Seconds to wait for the pre-switch save.
        backup_interval: Overrides the auto-backup interval, in seconds.
    """

    def __init__(
            self,
            root: Optional[Union[str, pathlib.Path]] = None,
            hotkeys: Optional[HotkeyAccessor] = None,
            holding_tank: Optional[HoldingTankAccessor] = None,
            relauncher: Optional[Callable[[str], bool]] = None,
            flush_timeout: float = lib.FLUSH_TIMEOUT,
            backup_interval: Optional[float] = None,
    ) -> None:
        self.paths = lib.ConfigPaths(root)
        self.user_settings = lib.UserSettings(self.paths.usersettings_path)
        self.resolver = ProfileResolver(self.paths.profiles_dir)

        self.hotkeys = hotkeys if hotkeys is not None else HotkeyTabs()
        self.holding_tank = holding_tank if holding_tank is not None else HoldingTankTabs()

        self.active_profile: Optional[Profile] = None

        self.store = StateStore()
        self.lock = RestorationLock()
        self.coordinator = SaveCoordinator(
            self.store,
            self.lock,
            self.hotkeys,
            self.holding_tank,
            lambda: self.active_profile,
        )
        self.backups = BackupManager(self.store, self.lock, self.coordinator)
        self.auto_backup = AutoBackupTimer(self.backups, interval=backup_interval)

        self.relauncher = relauncher or relaunch
        self.flush_timeout = flush_timeout

        # Set once this process hands over to a relaunched one
        self.finished = asyncio.Event()

    def _require_active(self) -> Profile:
        if self.active_profile is None:
            raise status.ProfileNotFoundException('No active profile.')
        return self.active_profile

    def _profile(self, name: Optional[str]) -> Profile:
        if name is None:
            return self._require_active()
        return self.resolver.get(name)

    def is_active(self, profile: Profile) -> bool:
        return (
                self.active_profile is not None and
                self.active_profile.directory_name.casefold() == profile.directory_name.casefold()
        )

    def _profile_dict(self, profile: Profile) -> Dict[str, Any]:
        data = profile.to_dict()
        data['active'] = self.is_active(profile)
        return data

    @staticmethod
    def _write_new_profile(profile: Profile) -> None:
        profile.path.mkdir(parents=True, exist_ok=False)
        lib.save_preferences(profile.preferences_path, lib.default_preferences())
        ProfileResolver.write(profile)

    async def _create(self, name: str, description: str = '') -> Profile:
        directory_name = self.resolver.directory_name(name)
        if self.resolver.exists(directory_name):
            raise status.DuplicateProfileException(f'"{directory_name}"')

        profile = Profile(
            name=name.strip(),
            directory_name=directory_name,
            path=self.paths.profiles_dir / directory_name,
            description=description or '',
            created_at=now_iso(),
        )
        try:
            await asyncio.to_thread(self._write_new_profile, profile)
        except FileExistsError as ex:
            raise status.DuplicateProfileException(f'"{directory_name}"') from ex

        logging.info(f'Created profile "{profile.name}" at {profile.path}')
        signals.profilesChanged.emit()
        return profile

    async def _flush(self) -> None:
        """Save the active profile's live state, bounded by ``flush_timeout``.

        Raises:
            status.FlushFailedException: If the save fails or times out.
        """
        profile = self._require_active()
        try:
            result = await asyncio.wait_for(self.coordinator.flush(), timeout=self.flush_timeout)
        except asyncio.TimeoutError as ex:
            raise status.FlushFailedException(
                f'Saving "{profile.name}" took longer than {self.flush_timeout}s.'
            ) from ex
        if not result.ok:
            raise status.FlushFailedException(result.error or f'Saving "{profile.name}" was suppressed.')

    # Profile lifecycle

    @status.returns_envelope
    async def list_profiles(self) -> Dict[str, Any]:
        profiles = await asyncio.to_thread(self.resolver.list)
        return {'profiles': [self._profile_dict(p) for p in profiles]}

    @status.returns_envelope
    async def create_profile(self, name: str, description: str = '') -> Dict[str, Any]:
        """Create an empty profile with default preferences."""
        profile = await self._create(name, description)
        return {'profile': self._profile_dict(profile)}

    @status.returns_envelope
    async def duplicate_profile(self, source: str, target: str, description: Optional[str] = None) -> Dict[str, Any]:
        """Copy a profile's state, preferences and assets into a new profile.

        Backups are not copied. An active source is saved first.
        """
        src = self.resolver.get(source)
        directory_name = self.resolver.directory_name(target)
        if self.resolver.exists(directory_name):
            raise status.DuplicateProfileException(f'"{directory_name}"')

        if self.is_active(src):
            await self._flush()

        dst = Profile(
            name=target.strip(),
            directory_name=directory_name,
            path=self.paths.profiles_dir / directory_name,
            description=src.description if description is None else description,
            created_at=now_iso(),
        )

        def _copy() -> None:
            shutil.copytree(src.path, dst.path, ignore=shutil.ignore_patterns(*DUPLICATE_IGNORE_PATTERNS))
            ProfileResolver.write(dst)

        try:
            await asyncio.to_thread(_copy)
        except FileExistsError as ex:
            raise status.DuplicateProfileException(f'"{directory_name}"') from ex

        logging.info(f'Duplicated profile "{src.name}" to "{dst.name}"')
        signals.profilesChanged.emit()
        return {'profile': self._profile_dict(dst)}

    @status.returns_envelope
    async def switch_profile(self, name: str) -> Dict[str, Any]:
        """Save the current profile and relaunch into ``name``.

        Switching to the active profile does nothing.
        """
        target = self.resolver.get(name)
        current = self.active_profile
        if current is not None and self.is_active(target):
            logging.debug(f'"{target.name}" is already active')
            return {'profile': self._profile_dict(target), 'switched': False}

        signals.profileAboutToSwitch.emit(target.name)

        if current is not None:
            await self._flush()
            await self.auto_backup.stop()

        self.user_settings.pending_profile = target.name
        self.user_settings.fallback_profile = current.name if current is not None else None

        try:
            started = self.relauncher(target.name)
        except (OSError, RuntimeError) as ex:
            logging.error(f'Relaunch raised: {ex}')
            started = False

        if not started:
            self.user_settings.pending_profile = None
            if current is not None:
                self.auto_backup.start(current)
            raise status.RelaunchFailedException(f'Target profile: "{target.name}".')

        logging.info(f'Switching from "{current.name if current else None}" to "{target.name}"')
        self.coordinator.reset()
        self.active_profile = None
        self.finished.set()
        return {'profile': target.to_dict(), 'switched': True}

    @status.returns_envelope
    async def delete_profile(self, name: str) -> Dict[str, Any]:
        """Delete a profile directory, including its backups."""
        active = self.active_profile
        if active is not None and sanitize_profile_name(name).casefold() == active.directory_name.casefold():
            raise status.CannotDeleteActiveProfileException(f'"{active.name}"')

        profile = self.resolver.get(name)
        await asyncio.to_thread(shutil.rmtree, profile.path)

        for key in ('pending_profile', 'fallback_profile', 'active_profile'):
            value = getattr(self.user_settings, key)
            if value and sanitize_profile_name(value).casefold() == profile.directory_name.casefold():
                setattr(self.user_settings, key, None)

        logging.info(f'Deleted profile "{profile.name}"')
        signals.profilesChanged.emit()
        return {'profile': profile.name}

    async def startup(self, argv: Sequence[str]) -> Dict[str, Any]:
        """Activate the profile for this process and load its state.

        The profile is taken from ``--profile=<name>``, else the pending
        profile, else the last active one. Unknown names fall back to the
        recorded fallback profile, then to the default profile, which is
        created when missing.
        """
        await self.auto_backup.stop()
        self.coordinator.reset()

        requested = (
                parse_profile_argument(argv) or
                self.user_settings.pending_profile or
                self.user_settings.active_profile
        )

        profile = self.resolver.find(requested) if requested else None
        if profile is None and requested:
            logging.warning(f'Profile "{requested}" not found')
            fallback = self.user_settings.fallback_profile
            profile = self.resolver.find(fallback) if fallback else None
            if profile is not None:
                logging.info(f'Falling back to "{profile.name}"')
        if profile is None:
            profile = self.resolver.find(lib.DEFAULT_PROFILE_NAME)
        if profile is None:
            try:
                profile = await self._create(lib.DEFAULT_PROFILE_NAME)
            except (status.BaseStatusException, OSError) as ex:
                return status.envelope(False, error=str(ex))

        # Saves must not see the profile as active before its state is loaded
        with self.lock.restoring():
            self.user_settings.pending_profile = None
            self.user_settings.active_profile = profile.name
            self.active_profile = profile
            await asyncio.to_thread(self.resolver.touch, profile)
            result = await self.coordinator.load_profile_state()

        self.auto_backup.start(profile)

        logging.info(f'Activated profile "{profile.name}"')
        signals.profileActivated.emit(profile.name)
        return status.envelope(result.ok, error=result.error, profile=self._profile_dict(profile), requested=requested)

    async def shutdown(self) -> Dict[str, Any]:
        """Stop the auto-backup timer and save the live state of the active profile."""
        await self.auto_backup.stop()
        if self.active_profile is None:
            return status.envelope(True)
        result = await self.coordinator.flush()
        return result.as_envelope()

    # State

    @status.returns_envelope
    async def save_profile_state(self) -> status.Result:
        self._require_active()
        return await self.coordinator.save_profile_state()

    @status.returns_envelope
    async def load_profile_state(self) -> status.Result:
        self._require_active()
        return await self.coordinator.load_profile_state()

    @status.returns_envelope
    async def request_save(self, domain: str) -> status.Result:
        return await self.coordinator.request_save(domain)

    # Preferences

    @status.returns_envelope
    async def get_preferences(self, name: Optional[str] = None) -> Dict[str, Any]:
        profile = self._profile(name)
        preferences = await asyncio.to_thread(lib.load_preferences, profile.preferences_path)
        return {'preferences': preferences}

    @status.returns_envelope
    async def set_preference(self, key: str, value: Any, name: Optional[str] = None) -> Dict[str, Any]:
        profile = self._profile(name)
        preferences = await asyncio.to_thread(lib.load_preferences, profile.preferences_path)
        preferences[key] = value
        await asyncio.to_thread(lib.save_preferences, profile.preferences_path, preferences)
        return {'preferences': preferences}

    # Logs

    @status.returns_envelope
    async def get_logs(self, level: int = logging.WARNING, limit: Optional[int] = 100) -> Dict[str, Any]:
        """Return the session's recent log messages at or above ``level``."""
        tank = log.get_tank_handler()
        if tank is None:
            return {'logs': []}
        return {'logs': tank.get_logs(level, limit=limit)}

    # Backups

    @status.returns_envelope
    async def create_backup(self, name: Optional[str] = None, mode: str = MANUAL) -> status.Result:
        profile = self._profile(name)
        if self.is_active(profile):
            await self.coordinator.flush()
        return await self.backups.create_backup(profile, mode)

    @status.returns_envelope
    async def list_backups(self, name: Optional[str] = None) -> Dict[str, Any]:
        profile = self._profile(name)
        records = await asyncio.to_thread(self.backups.list_backups, profile)
        return {'backups': [r.to_dict() for r in records]}

    @status.returns_envelope
    async def restore_backup(self, backup_id: str, name: Optional[str] = None) -> status.Result:
        profile = self._profile(name)
        return await self.backups.restore_backup(profile, backup_id, active=self.is_active(profile))

    @status.returns_envelope
    async def delete_backup(self, backup_id: str, name: Optional[str] = None) -> Dict[str, Any]:
        profile = self._profile(name)
        await self.backups.delete_backup(profile, backup_id)
        return {'deleted': backup_id}

    # Batch and single-item mutations

    @staticmethod
    def _check_tab(tab_number: int) -> int:
        if not 1 <= tab_number <= TAB_COUNT:
            raise ValueError(f'Tab number must be between 1 and {TAB_COUNT}, got {tab_number}.')
        return tab_number - 1

    @status.returns_envelope
    async def import_hotkey_file(self, path: Union[str, pathlib.Path], tab_number: int) -> Dict[str, Any]:
        """Replace a hotkey tab with the contents of a .mrv file and save once."""
        self._require_active()
        index = self._check_tab(tab_number)
        slots, title = await asyncio.to_thread(files.read_hotkey_file, path)

        tabs = self.hotkeys.get_hotkey_data()
        tabs[index].slots = slots
        if title:
            tabs[index].title = title
        self.hotkeys.set_hotkey_data(tabs)

        result = await self.coordinator.request_save(HOTKEYS)
        return {'tab': tabs[index].to_dict(), 'saved': result.ok}

    @status.returns_envelope
    async def import_holding_tank_file(self, path: Union[str, pathlib.Path], tab_number: int) -> Dict[str, Any]:
        """Replace a holding tank tab with the contents of a .hld file and save once."""
        self._require_active()
        index = self._check_tab(tab_number)
        tracks = await asyncio.to_thread(files.read_holding_tank_file, path)

        tabs = self.holding_tank.get_holding_tank_data()
        tabs[index].tracks = tracks
        self.holding_tank.set_holding_tank_data(tabs)

        result = await self.coordinator.request_save(HOLDING_TANK)
        return {'tab': tabs[index].to_dict(), 'saved': result.ok}

    @status.returns_envelope
    async def export_hotkey_file(self, path: Union[str, pathlib.Path], tab_number: int) -> Dict[str, Any]:
        index = self._check_tab(tab_number)
        tab = self.hotkeys.get_hotkey_data()[index]
        await asyncio.to_thread(files.write_hotkey_file, path, tab)
        return {'path': str(path)}

    @status.returns_envelope
    async def export_holding_tank_file(self, path: Union[str, pathlib.Path], tab_number: int) -> Dict[str, Any]:
        index = self._check_tab(tab_number)
        tab = self.holding_tank.get_holding_tank_data()[index]
        await asyncio.to_thread(files.write_holding_tank_file, path, tab)
        return {'path': str(path)}

    @status.returns_envelope
    async def assign_hotkey(self, tab_number: int, slot: str, track: Optional[str]) -> status.Result:
        """Assign one hotkey slot and save."""
        self._require_active()
        index = self._check_tab(tab_number)
        slot = slot.lower()
        tabs = self.hotkeys.get_hotkey_data()
        if slot not in HOTKEY_SLOTS:
            raise ValueError(f'Unknown hotkey slot: {slot}')
        if track:
            tabs[index].slots[slot] = str(track)
        else:
            tabs[index].slots.pop(slot, None)
        self.hotkeys.set_hotkey_data(tabs)
        return await self.coordinator.request_save(HOTKEYS)

    @status.returns_envelope
    async def add_to_holding_tank(self, tab_number: int, track: str) -> status.Result:
        """Append one track to a holding tank tab and save."""
        self._require_active()
        index = self._check_tab(tab_number)
        tabs = self.holding_tank.get_holding_tank_data()
        tabs[index].tracks.append(str(track))
        self.holding_tank.set_holding_tank_data(tabs)
        return await self.coordinator.request_save(HOLDING_TANK)
