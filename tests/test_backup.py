# tests/test_backup.py
"""
Tests for SoundDeck.profiles.backup: backup creation, retention, restore and the auto-backup timer.

Run with:
    python -m unittest tests.test_backup
"""
import asyncio
from typing import List
from unittest.mock import patch

from SoundDeck.profiles.backup import AUTO, MANUAL, BackupRecord, snapshot_digest
from SoundDeck.profiles.state import StateSnapshot
from SoundDeck.settings import lib
from SoundDeck.status import status
from tests.base import BaseTestCase, read_json, write_json

OLD_BACKUP = '20200101T000000000000Z-auto'


def retention(**overrides):
    settings = lib.default_preferences()['backup_settings']
    settings.update(overrides)
    return settings


class BackupRecordTests(BaseTestCase):
    def test_from_path(self):
        record = BackupRecord.from_path(self.root / f'{OLD_BACKUP}.json')
        self.assertEqual(record.id, OLD_BACKUP)
        self.assertEqual(record.mode, AUTO)
        self.assertEqual(record.timestamp, 1577836800000)
        self.assertGreater(record.age, 0)

    def test_unrecognized_name(self):
        self.assertIsNone(BackupRecord.from_path(self.root / 'notes.json'))

    def test_digest_ignores_timestamp(self):
        a = StateSnapshot.empty().replace(timestamp=1)
        b = StateSnapshot.empty().replace(timestamp=2)
        self.assertEqual(snapshot_digest(a), snapshot_digest(b))


class BackupManagerTests(BaseTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        await self.start()
        self.manager = self.api.backups

    async def test_create_and_list_newest_first(self):
        self.api.hotkeys.assign(1, 'f1', 'x')
        ids = []
        for _ in range(3):
            result = await self.api.create_backup()
            self.assertTrue(result['success'], result)
            ids.append(result['backup']['id'])

        self.assertTrue(all(i.endswith(f'-{MANUAL}') for i in ids))
        self.assertEqual(len(set(ids)), 3)

        listed = await self.api.list_backups()
        self.assertEqual([b['id'] for b in listed['backups']], list(reversed(ids)))

        data = read_json(self.active.backups_dir / f'{ids[0]}.json')
        self.assertEqual(data['hotkeys'][0]['hotkeys'], {'f1': 'x'})

    async def test_count_retention(self):
        for _ in range(5):
            result = await self.manager.create_backup(self.active, MANUAL, retention(max_backup_count=3))
        self.assertEqual(len(result.data['pruned']), 1)
        self.assertEqual(len(self.manager.list_backups(self.active)), 3)

    async def test_pruned_ids_reported(self):
        settings = retention(max_backup_count=2)
        first = await self.manager.create_backup(self.active, MANUAL, settings)
        await self.manager.create_backup(self.active, MANUAL, settings)
        third = await self.manager.create_backup(self.active, MANUAL, settings)
        self.assertEqual(third.data['pruned'], [first.data['backup']['id']])

    async def test_age_retention(self):
        write_json(self.active.backups_dir / f'{OLD_BACKUP}.json', StateSnapshot.empty().to_dict())
        result = await self.manager.create_backup(self.active, MANUAL)
        self.assertEqual(result.data['pruned'], [OLD_BACKUP])
        self.assertEqual(len(self.manager.list_backups(self.active)), 1)

    async def test_newest_is_always_kept(self):
        write_json(self.active.backups_dir / f'{OLD_BACKUP}.json', StateSnapshot.empty().to_dict())
        deleted = await self.manager.prune(self.active, retention(max_backup_age=0, max_backup_count=0))
        self.assertEqual(deleted, [])

    async def test_unrecognized_files_are_ignored(self):
        self.active.backups_dir.mkdir(parents=True, exist_ok=True)
        (self.active.backups_dir / 'readme.txt').write_text('x', encoding='utf-8')
        await self.manager.create_backup(self.active, MANUAL, retention(max_backup_count=1))
        self.assertTrue((self.active.backups_dir / 'readme.txt').exists())

    async def test_create_if_changed(self):
        first = await self.manager.create_backup_if_changed(self.active)
        self.assertTrue(first.ok)
        self.assertEqual(first.data['backup']['mode'], AUTO)

        second = await self.manager.create_backup_if_changed(self.active)
        self.assertEqual(second.data, {'skipped': True, 'reason': 'unchanged'})

        await self.api.assign_hotkey(1, 'f1', 'new')
        third = await self.manager.create_backup_if_changed(self.active)
        self.assertIn('backup', third.data)
        self.assertEqual(len(self.manager.list_backups(self.active)), 2)

    async def test_create_if_changed_disabled(self):
        result = await self.manager.create_backup_if_changed(self.active, retention(auto_backup_enabled=False))
        self.assertEqual(result.data['reason'], 'disabled')
        self.assertEqual(self.manager.list_backups(self.active), [])

    async def test_write_failure_is_returned(self):
        with patch('SoundDeck.profiles.state.os.replace', side_effect=OSError('read-only')):
            result = await self.manager.create_backup(self.active, MANUAL)
        self.assertFalse(result.ok)
        self.assertEqual(result.status, status.Status.BackupWriteFailed)

    async def test_delete(self):
        created = await self.api.create_backup()
        backup_id = created['backup']['id']
        result = await self.api.delete_backup(backup_id)
        self.assertTrue(result['success'])
        self.assertEqual((await self.api.list_backups())['backups'], [])

    async def test_missing_backup(self):
        for result in (await self.api.restore_backup('nope'), await self.api.delete_backup('nope')):
            self.assertFalse(result['success'])
            self.assertEqual(result['status'], str(status.Status.BackupNotFound))


class RestoreTests(BaseTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        await self.start()

    async def test_restore_active_profile(self):
        await self.api.assign_hotkey(1, 'f1', 'v1')
        created = await self.api.create_backup()
        backup_id = created['backup']['id']
        self.api.hotkeys.assign(1, 'f1', 'v2')
        self.api.holding_tank.add(2, 'extra')

        lock_states: List[bool] = []
        save = self.api.store.save

        async def spy(profile, snapshot):
            lock_states.append(self.api.lock.is_restoring)
            return await save(profile, snapshot)

        with patch.object(self.api.store, 'save', side_effect=spy):
            result = await self.api.restore_backup(backup_id)

        self.assertTrue(result['success'], result)
        self.assertEqual(result['restored']['id'], backup_id)
        self.assertEqual(lock_states, [False, True])
        self.assertFalse(self.api.lock.is_restoring)

        # Live state and file both hold the backup
        self.assertEqual(self.api.hotkeys.get_hotkey_data()[0].slots, {'f1': 'v1'})
        self.assertEqual(self.api.holding_tank.get_holding_tank_data()[1].tracks, [])
        self.assertEqual(read_json(self.active.state_path)['hotkeys'][0]['hotkeys'], {'f1': 'v1'})

        # The state before the restore was backed up first
        pre_id = result['pre_restore_backup']['id']
        pre = read_json(self.active.backups_dir / f'{pre_id}.json')
        self.assertEqual(pre['hotkeys'][0]['hotkeys'], {'f1': 'v2'})
        self.assertEqual(pre['holdingTank'][1]['songIds'], ['extra'])

    async def test_restore_survives_retention_of_one(self):
        await self.api.assign_hotkey(1, 'f1', 'v1')
        created = await self.api.create_backup()
        await self.api.set_preference('backup_settings', retention(max_backup_count=1))
        await self.api.assign_hotkey(1, 'f1', 'v2')

        result = await self.api.restore_backup(created['backup']['id'])
        self.assertTrue(result['success'], result)
        self.assertEqual(read_json(self.active.state_path)['hotkeys'][0]['hotkeys'], {'f1': 'v1'})
        self.assertEqual(len((await self.api.list_backups())['backups']), 1)

    async def test_restore_inactive_profile_keeps_live_state(self):
        await self.api.create_profile('Other')
        other = self.api.resolver.get('Other')
        write_json(other.state_path, {'hotkeys': [{'tabNumber': 1, 'hotkeys': {'f5': 'o'}}]})
        created = await self.api.create_backup('Other')
        write_json(other.state_path, {})
        self.api.hotkeys.assign(1, 'f1', 'live')

        result = await self.api.restore_backup(created['backup']['id'], 'Other')
        self.assertTrue(result['success'], result)
        self.assertEqual(read_json(other.state_path)['hotkeys'][0]['hotkeys'], {'f5': 'o'})
        self.assertEqual(self.api.hotkeys.get_hotkey_data()[0].slots, {'f1': 'live'})

    async def test_restore_corrupt_backup(self):
        created = await self.api.create_backup()
        backup_id = created['backup']['id']
        (self.active.backups_dir / f'{backup_id}.json').write_text('{', encoding='utf-8')

        result = await self.api.restore_backup(backup_id)
        self.assertFalse(result['success'])
        self.assertEqual(result['status'], str(status.Status.StateFileCorrupt))


class AutoBackupTimerTests(BaseTestCase):
    async def test_timer_creates_backups(self):
        self.api = self.make_api(backup_interval=0.02)
        await self.start()
        await asyncio.sleep(0.15)
        self.assertTrue(self.api.auto_backup.is_running)
        records = self.api.backups.list_backups(self.active)
        # Unchanged state is backed up only once
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].mode, AUTO)

    async def test_timer_survives_errors(self):
        self.api = self.make_api(backup_interval=0.02)
        calls: List[int] = []

        async def flaky(profile):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError('disk gone')
            return status.Result.failure(status.Status.BackupWriteFailed)

        with patch.object(self.api.backups, 'create_backup_if_changed', side_effect=flaky):
            await self.start()
            await asyncio.sleep(0.15)
            self.assertGreaterEqual(len(calls), 2)
            self.assertTrue(self.api.auto_backup.is_running)

    async def test_stop(self):
        self.api = self.make_api(backup_interval=0.02)
        await self.start()
        await self.api.auto_backup.stop()
        self.assertFalse(self.api.auto_backup.is_running)
        await asyncio.sleep(0.06)
        self.assertEqual(self.api.backups.list_backups(self.active), [])
