import os
import unittest
from unittest import mock

from infrastructure.config import load_settings


def settings_from(env):
    with mock.patch.dict(os.environ, env, clear=True):
        return load_settings(env_file=None)


class LoadSettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = settings_from({})
        self.assertIsNone(settings.discord_token)
        self.assertEqual(settings.db_path, "gamba.db")
        self.assertEqual(settings.command_prefix, "!")
        self.assertEqual(settings.starting_balance, 1000)
        self.assertEqual((settings.dice_low, settings.dice_high), (1, 100))
        self.assertEqual(settings.decks_per_shoe, 2)
        self.assertEqual(settings.shuffle_threshold, 15)
        self.assertEqual(settings.shoe_expiration_seconds, 3600)
        self.assertEqual(settings.settlement_hour_utc, 4)
        self.assertFalse(settings.log_json)

    def test_overrides(self):
        settings = settings_from(
            {
                "DISCORD_TOKEN": "abc",
                "DB_PATH": "/data/ledger.db",
                "ADMIN_ROLE": "Boss",
                "DICE_LOW": "2",
                "DICE_HIGH": "12",
                "SETTLEMENT_HOUR_UTC": "0",
                "LOG_JSON": "true",
            }
        )
        self.assertEqual(settings.discord_token, "abc")
        self.assertEqual(settings.db_path, "/data/ledger.db")
        self.assertEqual(settings.admin_role, "Boss")
        self.assertEqual((settings.dice_low, settings.dice_high), (2, 12))
        self.assertEqual(settings.settlement_hour_utc, 0)
        self.assertTrue(settings.log_json)

    def test_settings_are_immutable(self):
        settings = settings_from({})
        with self.assertRaises(ValueError):
            settings.db_path = "other.db"

    def test_bad_integer_names_the_key(self):
        with self.assertRaisesRegex(ValueError, "(?i)decks_per_shoe"):
            settings_from({"DECKS_PER_SHOE": "two"})

    def test_invalid_ranges(self):
        for env, message in (
            ({"DICE_LOW": "10", "DICE_HIGH": "10"}, "DICE_LOW"),
            ({"SETTLEMENT_HOUR_UTC": "24"}, "SETTLEMENT_HOUR_UTC"),
            ({"DECKS_PER_SHOE": "0"}, "DECKS_PER_SHOE"),
        ):
            with self.subTest(env=env), self.assertRaisesRegex(ValueError, message):
                settings_from(env)


if __name__ == "__main__":
    unittest.main()
