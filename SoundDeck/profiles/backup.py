"""Backup snapshots of profile state.

Backups live in ``<profile>/backups/<id>.json`` where the id is a UTC timestamp
followed by the backup mode, e.g. ``20251019T201500123456Z-manual``. Each file
holds a complete state snapshot. Retention is applied after every backup:
entries older than ``max_backup_age`` seconds or beyond ``max_backup_count``
are deleted, oldest first.
"""
import asyncio
import dataclasses
import datetime
import hashlib
import json
import logging
import pathlib
import re
from typing import Any, Dict, List, Optional

from . import state
from .coordinator import RestorationLock, SaveCoordinator
from .paths import Profile
from ..settings import lib
from ..status import status
from ..ui.actions import signals

MANUAL: str = 'manual'
AUTO: str = 'auto'
BACKUP_MODES: tuple = (MANUAL, AUTO)

BACKUP_ID_FORMAT: str = '%Y%m%dT%H%M%S%fZ'
BACKUP_FILE_PATTERN = re.compile(r'^(?P<stamp>\d{8}T\d{12}Z)-(?P<mode>manual|auto)\.json$')

# Smallest allowed auto-backup interval, in seconds
MIN_BACKUP_INTERVAL: float = 1.0


@dataclasses.dataclass(frozen=True)
class BackupRecord:
    """A backup file on disk."""
    id: str
    timestamp: int
    mode: str
    path: pathlib.Path

    @classmethod
    def from_path(cls, path: pathlib.Path) -> Optional['BackupRecord']:
        match = BACKUP_FILE_PATTERN.match(path.name)
        if not match:
            return None
        dt = datetime.datetime.strptime(match['stamp'], BACKUP_ID_FORMAT).replace(tzinfo=datetime.timezone.utc)
        return cls(
            id=path.stem,
            timestamp=int(dt.timestamp() * 1000),
            mode=match['mode'],
            path=path,
        )

    @property
    def age(self) -> float:
        """Age in seconds."""
        return max(0.0, state.now_ms() / 1000 - self.timestamp / 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'mode': self.mode,
            'path': str(self.path),
        }


def snapshot_digest(snapshot: state.StateSnapshot) -> str:
    """Return the SHA-256 of a snapshot's content, ignoring its timestamp."""
    data = snapshot.to_dict()
    data.pop('timestamp', None)
    blob = json.dumps(data, sort_keys=True, ensure_ascii=False).encode('utf-8')
    return hashlib.sha256(blob).hexdigest()


def backup_settings_for(profile: Profile) -> Dict[str, Any]:
    return lib.load_preferences(profile.preferences_path)['backup_settings']


class BackupManager:
    """Creates, lists, restores, deletes and prunes backups.

    Args:
        store: State file I/O used to read the live snapshot and to restore.
        lock: The restoration lock engaged while a restore writes and repopulates.
        coordinator: Save coordinator of the running session.
    """

    def __init__(self, store: state.StateStore, lock: RestorationLock, coordinator: SaveCoordinator) -> None:
        self.store = store
        self.lock = lock
        self.coordinator = coordinator

    @staticmethod
    def _new_path(profile: Profile, mode: str) -> pathlib.Path:
        dt = datetime.datetime.now(datetime.timezone.utc)
        while True:
            path = profile.backups_dir / f'{dt.strftime(BACKUP_ID_FORMAT)}-{mode}.json'
            if not path.exists():
                return path
            dt += datetime.timedelta(microseconds=1)

    def _write_backup(self, profile: Profile, text: str, mode: str) -> BackupRecord:
        try:
            profile.backups_dir.mkdir(parents=True, exist_ok=True)
            path = self._new_path(profile, mode)
            state.write_atomic(path, text)
        except OSError as ex:
            raise status.BackupWriteFailedException(f'{profile.backups_dir}: {ex}') from ex
        return BackupRecord.from_path(path)

    async def create_backup(
            self,
            profile: Profile,
            mode: str = MANUAL,
            backup_settings: Optional[Dict[str, Any]] = None,
    ) -> status.Result:
        """Copy the current snapshot into a new backup, then prune.

        Failures are logged and returned, never raised.

        Args:
            profile: The profile to back up.
            mode: ``'manual'`` or ``'auto'``.
            backup_settings: Retention settings. Read from the profile's preferences when omitted.
        """
        if mode not in BACKUP_MODES:
            raise ValueError(f'Unknown backup mode: {mode}')

        snapshot = await self.store.load(profile)
        text = state.serialize_snapshot(snapshot)
        try:
            record = await asyncio.to_thread(self._write_backup, profile, text, mode)
        except status.BackupWriteFailedException as ex:
            return status.Result.failure(ex.status, str(ex))

        logging.info(f'Created {mode} backup "{record.id}" for "{profile.name}"')
        signals.backupCreated.emit(profile.name, record.id)

        if backup_settings is None:
            backup_settings = backup_settings_for(profile)
        deleted = await self.prune(profile, backup_settings)
        return status.Result.success(backup=record.to_dict(), pruned=deleted)

    @staticmethod
    def list_backups(profile: Profile) -> List[BackupRecord]:
        """Return the profile's backups, newest first."""
        if not profile.backups_dir.exists():
            return []
        records = []
        for path in profile.backups_dir.glob('*.json'):
            record = BackupRecord.from_path(path)
            if record is None:
                logging.debug(f'Ignoring unrecognized file in backups: {path.name}')
                continue
            records.append(record)
        return sorted(records, key=lambda r: (r.timestamp, r.id), reverse=True)

    def get_backup(self, profile: Profile, backup_id: str) -> BackupRecord:
        """Return the backup with ``backup_id``.

        Raises:
            status.BackupNotFoundException: If there is no such backup.
        """
        record = next((r for r in self.list_backups(profile) if r.id == backup_id), None)
        if record is None:
            raise status.BackupNotFoundException(f'"{backup_id}" of profile "{profile.name}"')
        return record

    async def delete_backup(self, profile: Profile, backup_id: str) -> None:
        """Remove one backup.

        Raises:
            status.BackupNotFoundException: If there is no such backup.
        """
        record = self.get_backup(profile, backup_id)
        await asyncio.to_thread(record.path.unlink)
        logging.info(f'Deleted backup "{backup_id}" of "{profile.name}"')

    async def prune(self, profile: Profile, backup_settings: Dict[str, Any]) -> List[str]:
        """Delete backups beyond the count limit or older than the age limit.

        The newest backup is always kept.

        Returns:
            list[str]: Ids of the deleted backups, oldest first.
        """
        max_count = max(1, int(backup_settings.get('max_backup_count', 1)))
        max_age = backup_settings.get('max_backup_age')

        records = self.list_backups(profile)
        expired = []
        for index, record in enumerate(records):
            if index == 0:
                continue
            if index >= max_count or (max_age is not None and record.age > max_age):
                expired.append(record)

        deleted = []
        for record in reversed(expired):
            try:
                await asyncio.to_thread(record.path.unlink)
            except OSError as ex:
                logging.warning(f'Failed to remove old backup {record.path}: {ex}')
                continue
            deleted.append(record.id)

        if deleted:
            logging.debug(f'Pruned {len(deleted)} backup(s) of "{profile.name}"')
        return deleted

    async def create_backup_if_changed(
            self,
            profile: Profile,
            backup_settings: Optional[Dict[str, Any]] = None,
    ) -> status.Result:
        """Create an automatic backup unless the state matches the newest backup.

        Skipped when automatic backups are disabled.
        """
        if backup_settings is None:
            backup_settings = backup_settings_for(profile)
        if not backup_settings.get('auto_backup_enabled', True):
            return status.Result.success(skipped=True, reason='disabled')

        records = self.list_backups(profile)
        if records:
            current = await self.store.load(profile)
            try:
                newest = await asyncio.to_thread(state.read_snapshot_file, records[0].path)
            except (OSError, status.StateFileCorruptException):
                newest = None
            if newest is not None and snapshot_digest(newest) == snapshot_digest(current):
                logging.debug(f'State of "{profile.name}" unchanged since "{records[0].id}", skipping backup')
                return status.Result.success(skipped=True, reason='unchanged')

        return await self.create_backup(profile, AUTO, backup_settings)

    async def restore_backup(self, profile: Profile, backup_id: str, active: bool) -> status.Result:
        """Replace the profile's state with a backup.

        An automatic backup of the current state is taken first. The write,
        and the repopulation of the live state when ``profile`` is active,
        happen with the restoration lock engaged.

        Raises:
            status.BackupNotFoundException: If there is no such backup.
            status.StateFileCorruptException: If the backup cannot be parsed.
        """
        record = self.get_backup(profile, backup_id)
        snapshot = await asyncio.to_thread(state.read_snapshot_file, record.path)

        if active:
            await self.coordinator.flush()

        pre_restore = await self.create_backup(profile, AUTO)
        if not pre_restore.ok:
            logging.warning(f'Restoring "{backup_id}" without a pre-restore backup: {pre_restore.error}')

        with self.lock.restoring():
            # Saves captured before the lock must not land after the restored content
            await self.coordinator.drain()
            result = await self.store.save(profile, snapshot)
            if not result.ok:
                return result
            if active:
                try:
                    self.coordinator.apply_snapshot(snapshot)
                except Exception as ex:
                    msg = f'{status.get_message(status.Status.StateLoadFailed)} Backup "{backup_id}": {ex}'
                    logging.error(msg)
                    return status.Result.failure(status.Status.StateLoadFailed, msg)

        logging.info(f'Restored backup "{backup_id}" for "{profile.name}"')
        signals.backupRestored.emit(profile.name, backup_id)
        return status.Result.success(
            restored=record.to_dict(),
            pre_restore_backup=pre_restore.data.get('backup'),
        )


class AutoBackupTimer:
    """Periodically calls :meth:`BackupManager.create_backup_if_changed`.

    Errors are logged and the timer keeps running until :meth:`stop`.

    Args:
        manager: The backup manager.
        interval: Seconds between checks. Defaults to the profile's ``backup_interval``.
    """

    def __init__(self, manager: BackupManager, interval: Optional[float] = None) -> None:
        self.manager = manager
        self.interval = interval
        self.profile: Optional[Profile] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _next_interval(self, profile: Profile) -> float:
        if self.interval is not None:
            return self.interval
        try:
            interval = backup_settings_for(profile)['backup_interval']
        except Exception as ex:
            logging.error(f'Failed to read backup interval: {ex}')
            interval = lib.default_preferences()['backup_settings']['backup_interval']
        return max(MIN_BACKUP_INTERVAL, float(interval))

    async def _run(self, profile: Profile) -> None:
        while True:
            await asyncio.sleep(self._next_interval(profile))
            try:
                result = await self.manager.create_backup_if_changed(profile)
                if not result.ok:
                    logging.error(f'Automatic backup of "{profile.name}" failed: {result.error}')
            except Exception as ex:
                logging.error(f'Automatic backup of "{profile.name}" failed: {ex}')

    def start(self, profile: Profile) -> None:
        """Start the timer for ``profile``, replacing any running timer."""
        if self._task is not None:
            self._task.cancel()
        self.profile = profile
        self._task = asyncio.ensure_future(self._run(profile))
        logging.debug(f'Auto-backup timer started for "{profile.name}"')

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logging.debug('Auto-backup timer stopped')
