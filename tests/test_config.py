import unittest

from chatsync.config import Settings, load_settings_from_env


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        self.assertEqual(load_settings_from_env({}), Settings())

    def test_overrides(self):
        settings = load_settings_from_env(
            {
                "CHATSYNC_PING_INTERVAL_S": "5",
                "CHATSYNC_PING_MISS_LIMIT": "0",
                "CHATSYNC_MAX_MSG_SIZE": "4096",
                "CHATSYNC_DB_PATH": "/tmp/chatsync.db",
                "CHATSYNC_NOTIFY_FRESHNESS_MS": "250",
                "CHATSYNC_LOG_LEVEL": "debug",
            }
        )

        self.assertEqual(settings.ping_interval_s, 5)
        self.assertEqual(settings.ping_miss_limit, 0)
        self.assertEqual(settings.max_msg_size, 4096)
        self.assertEqual(settings.db_path, "/tmp/chatsync.db")
        self.assertEqual(settings.notify_freshness_ms, 250)
        self.assertEqual(settings.log_level, "DEBUG")

    def test_lower_bounds_are_clamped(self):
        settings = load_settings_from_env({"CHATSYNC_PING_INTERVAL_S": "0", "CHATSYNC_MAX_MSG_SIZE": "10"})

        self.assertEqual(settings.ping_interval_s, 1)
        self.assertEqual(settings.max_msg_size, 1024)

    def test_invalid_values_name_the_variable(self):
        cases = {
            "CHATSYNC_PING_INTERVAL_S": "soon",
            "CHATSYNC_PING_MISS_LIMIT": "-1",
            "CHATSYNC_LOG_LEVEL": "loud",
        }
        for name, raw in cases.items():
            with self.subTest(name=name):
                with self.assertRaisesRegex(ValueError, name):
                    load_settings_from_env({name: raw})


if __name__ == "__main__":
    unittest.main()
