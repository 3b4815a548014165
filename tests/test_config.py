import tempfile
import unittest
from pathlib import Path

from smsbridge.config import AppConfig, ConfigError, load_config, parse_config

VALID_TOML = """
[serial]
port_name = "auto"
baud_rate = 115200
timeout_ms = 1000
max_retry_count = 3
retry_delay_ms = 5000

[database]
path = "sms.db"

[notification]
bark_server_url = "https://api.day.app"
bark_device_key = "abc"
enabled = true
"""


def _raw(**sections) -> dict:
    raw = {
        "serial": {
            "port_name": "/dev/ttyUSB0",
            "baud_rate": 115200,
            "timeout_ms": 1000,
            "max_retry_count": 3,
            "retry_delay_ms": 5000,
        },
        "database": {"path": "sms.db"},
        "notification": {
            "bark_server_url": "",
            "bark_device_key": "",
            "enabled": False,
        },
    }
    for name, overrides in sections.items():
        raw.setdefault(name, {}).update(overrides)
    return raw


class LoadConfigTests(unittest.TestCase):
    def test_load_valid_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.toml"
            path.write_text(VALID_TOML, encoding="utf-8")
            cfg = load_config(path)
        self.assertIsInstance(cfg, AppConfig)
        self.assertTrue(cfg.serial.auto_detect)
        self.assertEqual(cfg.serial.baud_rate, 115200)
        self.assertEqual(cfg.database.path, "sms.db")
        self.assertTrue(cfg.notification.enabled)
        self.assertEqual(cfg.notification.bark_device_key, "abc")
        # Optional probe settings fall back to defaults
        self.assertEqual(cfg.serial.probe_timeout_ms, 1000)
        self.assertEqual(cfg.serial.scan_attempts, 10)
        self.assertEqual(cfg.serial.scan_interval_ms, 10000)
        self.assertEqual(cfg.log_level, "INFO")

    def test_missing_file_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ConfigError):
                load_config(Path(tmp) / "nope.toml")

    def test_invalid_toml_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config.toml"
            path.write_text("[serial\nport_name = ", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(path)


class ParseConfigTests(unittest.TestCase):
    def test_configured_port_is_not_auto(self) -> None:
        cfg = parse_config(_raw())
        self.assertFalse(cfg.serial.auto_detect)
        self.assertEqual(cfg.serial.port_name, "/dev/ttyUSB0")

    def test_zero_values_are_rejected(self) -> None:
        for key in ("baud_rate", "timeout_ms", "max_retry_count", "retry_delay_ms"):
            with self.subTest(key=key):
                with self.assertRaisesRegex(ConfigError, key):
                    parse_config(_raw(serial={key: 0}))

    def test_wrong_types_are_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            parse_config(_raw(serial={"baud_rate": "fast"}))
        with self.assertRaises(ConfigError):
            parse_config(_raw(serial={"max_retry_count": True}))
        with self.assertRaises(ConfigError):
            parse_config(_raw(notification={"enabled": "yes"}))

    def test_missing_fields_are_rejected(self) -> None:
        raw = _raw()
        del raw["serial"]["timeout_ms"]
        with self.assertRaisesRegex(ConfigError, "serial.timeout_ms"):
            parse_config(raw)
        raw = _raw()
        del raw["database"]
        with self.assertRaisesRegex(ConfigError, r"\[database\]"):
            parse_config(raw)

    def test_empty_database_path_is_rejected(self) -> None:
        with self.assertRaisesRegex(ConfigError, "database.path"):
            parse_config(_raw(database={"path": ""}))

    def test_enabled_notification_requires_url_and_key(self) -> None:
        with self.assertRaisesRegex(ConfigError, "URL"):
            parse_config(_raw(notification={"enabled": True, "bark_device_key": "k"}))
        with self.assertRaisesRegex(ConfigError, "key"):
            parse_config(
                _raw(
                    notification={
                        "enabled": True,
                        "bark_server_url": "https://api.day.app",
                    }
                )
            )

    def test_disabled_notification_allows_empty_credentials(self) -> None:
        cfg = parse_config(_raw())
        self.assertFalse(cfg.notification.enabled)

    def test_optional_probe_settings(self) -> None:
        cfg = parse_config(
            _raw(serial={"probe_timeout_ms": 250, "scan_attempts": 2, "scan_interval_ms": 50})
        )
        self.assertEqual(cfg.serial.probe_timeout_ms, 250)
        self.assertEqual(cfg.serial.scan_attempts, 2)
        self.assertEqual(cfg.serial.scan_interval_ms, 50)
        with self.assertRaises(ConfigError):
            parse_config(_raw(serial={"scan_attempts": 0}))

    def test_log_level(self) -> None:
        self.assertEqual(parse_config(_raw(logging={"level": "debug"})).log_level, "DEBUG")
        with self.assertRaises(ConfigError):
            parse_config(_raw(logging={"level": "chatty"}))


if __name__ == "__main__":
    unittest.main()
