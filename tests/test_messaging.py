import unittest
from types import SimpleNamespace
from unittest import mock

import requests

from smsbridge.config import NotificationConfig
from smsbridge.messaging import (
    BarkNotifier,
    NotificationError,
    NullNotifier,
    build_notifier,
)


class BarkNotifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.Mock(spec=requests.Session)
        self.notifier = BarkNotifier(
            "https://api.day.app/", "KEY123", session=self.session, timeout=5.0
        )

    def test_send_issues_get_with_encoded_segments(self) -> None:
        self.session.get.return_value = SimpleNamespace(status_code=200, text="ok")

        self.notifier.send("SMS from +100", "hi/there & more")

        self.session.get.assert_called_once_with(
            "https://api.day.app/KEY123/SMS%20from%20%2B100/hi%2Fthere%20%26%20more",
            timeout=5.0,
        )

    def test_any_2xx_is_success(self) -> None:
        self.session.get.return_value = SimpleNamespace(status_code=204, text="")
        self.notifier.send("t", "b")

    def test_error_status_raises(self) -> None:
        self.session.get.return_value = SimpleNamespace(status_code=500, text="boom")
        with self.assertRaises(NotificationError):
            self.notifier.send("t", "b")

    def test_network_failure_raises(self) -> None:
        self.session.get.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(NotificationError):
            self.notifier.send("t", "b")

    def test_unicode_is_percent_encoded(self) -> None:
        url = self.notifier.build_url("短信", "验证码")
        self.assertEqual(
            url,
            "https://api.day.app/KEY123/%E7%9F%AD%E4%BF%A1/%E9%AA%8C%E8%AF%81%E7%A0%81",
        )


class BuildNotifierTests(unittest.TestCase):
    def test_enabled_config_builds_bark_notifier(self) -> None:
        notifier = build_notifier(
            NotificationConfig(
                bark_server_url="https://bark.example", bark_device_key="k", enabled=True
            )
        )
        self.assertIsInstance(notifier, BarkNotifier)
        self.assertEqual(notifier.server_url, "https://bark.example")

    def test_disabled_config_builds_null_notifier(self) -> None:
        notifier = build_notifier(NotificationConfig(enabled=False))
        self.assertIsInstance(notifier, NullNotifier)
        notifier.send("title", "body")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
