# tests/test_paths.py
"""
Tests for SoundDeck.profiles.paths: name sanitization and profile lookup.

Run with:
    python -m unittest tests.test_paths
"""
import unittest

from SoundDeck.profiles.paths import Profile, ProfileResolver, sanitize_profile_name
from SoundDeck.status import status
from tests.base import BaseTestCase


class SanitizeTests(unittest.TestCase):
    def test_strips_illegal_characters(self):
        self.assertEqual(sanitize_profile_name('DJ\'s <Set>/2!'), 'DJs Set2')

    def test_collapses_and_trims_whitespace(self):
        self.assertEqual(sanitize_profile_name('  Friday   Night  '), 'Friday Night')

    def test_keeps_dash_and_underscore(self):
        self.assertEqual(sanitize_profile_name('a-b_c'), 'a-b_c')

    def test_non_string_is_empty(self):
        self.assertEqual(sanitize_profile_name(None), '')  # type: ignore[arg-type]


class ResolverTests(BaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.resolver = ProfileResolver(self.root / 'profiles')

    def test_directory_name_rejects_empty(self):
        with self.assertRaises(status.InvalidProfileNameException):
            self.resolver.directory_name('???')

    def test_directory_name_rejects_long(self):
        with self.assertRaises(status.InvalidProfileNameException):
            self.resolver.directory_name('x' * 51)
        self.assertEqual(self.resolver.directory_name('x' * 50), 'x' * 50)

    def test_find_is_case_insensitive(self):
        profile = Profile(name='Band', directory_name='Band', path=self.root / 'profiles' / 'Band')
        ProfileResolver.write(profile)

        found = self.resolver.find('  band ')
        self.assertIsNotNone(found)
        self.assertEqual(found.path, profile.path)
        self.assertTrue(self.resolver.exists('BAND'))

    def test_get_missing_raises(self):
        with self.assertRaises(status.ProfileNotFoundException):
            self.resolver.get('Ghost')

    def test_directory_without_metadata(self):
        (self.root / 'profiles' / 'Legacy').mkdir(parents=True)
        profile = self.resolver.get('legacy')
        self.assertEqual(profile.name, 'Legacy')
        self.assertEqual(profile.description, '')

    def test_corrupt_metadata_falls_back_to_directory_name(self):
        path = self.root / 'profiles' / 'Broken'
        path.mkdir(parents=True)
        (path / 'profile.json').write_text('[', encoding='utf-8')
        self.assertEqual(self.resolver.get('Broken').name, 'Broken')

    def test_list_sorted_case_insensitively(self):
        for name in ('beta', 'Alpha', 'gamma'):
            ProfileResolver.write(Profile(name=name, directory_name=name, path=self.root / 'profiles' / name))
        self.assertEqual([p.name for p in self.resolver.list()], ['Alpha', 'beta', 'gamma'])

    def test_touch_updates_last_used(self):
        profile = Profile(name='Band', directory_name='Band', path=self.root / 'profiles' / 'Band')
        ProfileResolver.write(profile)
        self.resolver.touch(profile)
        self.assertIsNotNone(self.resolver.get('Band').last_used)
