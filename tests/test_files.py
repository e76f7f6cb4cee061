# tests/test_files.py
"""
Tests for SoundDeck.profiles.files: hotkey (.mrv) and holding tank (.hld) files.

Run with:
    python -m unittest tests.test_files
"""
from SoundDeck.profiles import files
from SoundDeck.profiles.state import HoldingTankTab, HotkeyTab
from tests.base import BaseTestCase


class HotkeyFileTests(BaseTestCase):
    def test_read(self):
        path = self.root / 'set.mrv'
        path.write_text('f1::42\nf2::\n\nF5::7\nf13::9\ngarbage\ntab_name::Friday_Night\n', encoding='utf-8')

        slots, title = files.read_hotkey_file(path)
        self.assertEqual(slots, {'f1': '42', 'f5': '7'})
        self.assertEqual(title, 'Friday Night')

    def test_read_without_title(self):
        path = self.root / 'set.mrv'
        path.write_text('f3::1\n', encoding='utf-8')
        self.assertEqual(files.read_hotkey_file(path), ({'f3': '1'}, None))

    def test_write_all_slots_then_title(self):
        path = self.root / 'out.mrv'
        files.write_hotkey_file(path, HotkeyTab(tab_number=1, title='Open Mic', slots={'f2': '5', 'f1': '4'}))

        lines = path.read_text(encoding='utf-8').splitlines()
        self.assertEqual(len(lines), 13)
        self.assertEqual(lines[0], 'f1::4')
        self.assertEqual(lines[1], 'f2::5')
        self.assertEqual(lines[2], 'f3::')
        self.assertEqual(lines[11], 'f12::')
        self.assertEqual(lines[12], 'tab_name::Open_Mic')

    def test_write_without_title(self):
        path = self.root / 'out.mrv'
        files.write_hotkey_file(path, HotkeyTab(tab_number=1))
        self.assertEqual(len(path.read_text(encoding='utf-8').splitlines()), 12)


class HoldingTankFileTests(BaseTestCase):
    def test_read_keeps_order_and_skips_blank_lines(self):
        path = self.root / 'tank.hld'
        path.write_text('c\n\n a \nb\n', encoding='utf-8')
        self.assertEqual(files.read_holding_tank_file(path), ['c', 'a', 'b'])

    def test_write(self):
        path = self.root / 'tank.hld'
        files.write_holding_tank_file(path, HoldingTankTab(tab_number=1, tracks=['3', '1', '2']))
        self.assertEqual(path.read_text(encoding='utf-8'), '3\n1\n2\n')
