import tempfile
import unittest
from pathlib import Path
from unittest import mock

from click.testing import CliRunner

from smsbridge import app
from smsbridge.config import AppConfig, DatabaseConfig
from smsbridge.connection import ProbeFailure
from smsbridge.storage import SmsRecord, SmsStore

CONFIG_TEMPLATE = """
[serial]
port_name = "COM5"
baud_rate = 115200
timeout_ms = 100
max_retry_count = 1
retry_delay_ms = 10

[database]
path = "{db_path}"

[notification]
bark_server_url = ""
bark_device_key = ""
enabled = false
"""


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.db_path = self.tmp / "sms.db"
        self.config_path = self.tmp / "config.toml"
        self.write_config(self.db_path)
        self.runner = CliRunner()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def write_config(self, db_path: Path) -> None:
        self.config_path.write_text(
            CONFIG_TEMPLATE.format(db_path=db_path.as_posix()), encoding="utf-8"
        )

    def invoke(self, *args: str):
        return self.runner.invoke(app.cli, ["--config", str(self.config_path), *args])

    def test_missing_config_exits_with_failure(self) -> None:
        result = self.runner.invoke(app.cli, ["--config", str(self.tmp / "absent.toml")])
        self.assertEqual(result.exit_code, 1)

    def test_invalid_config_exits_with_failure(self) -> None:
        self.config_path.write_text(
            self.config_path.read_text(encoding="utf-8").replace(
                "baud_rate = 115200", "baud_rate = 0"
            ),
            encoding="utf-8",
        )
        self.assertEqual(self.invoke().exit_code, 1)

    def test_database_failure_exits_with_failure(self) -> None:
        directory = self.tmp / "db-dir"
        directory.mkdir()
        self.write_config(directory)
        self.assertEqual(self.invoke().exit_code, 1)

    @mock.patch("smsbridge.app.install_signal_handlers")
    @mock.patch("smsbridge.app.ConnectionManager")
    def test_probe_failure_exits_with_failure(self, manager_cls, _signals) -> None:
        manager_cls.return_value.run.side_effect = ProbeFailure("no device")
        self.assertEqual(self.invoke().exit_code, 1)

    @mock.patch("smsbridge.app.install_signal_handlers")
    @mock.patch("smsbridge.app.ConnectionManager")
    def test_clean_shutdown_exits_with_success(self, manager_cls, signals) -> None:
        manager_cls.return_value.run.return_value = None

        result = self.invoke()

        self.assertEqual(result.exit_code, 0)
        signals.assert_called_once_with(manager_cls.return_value)
        config = manager_cls.call_args.args[0]
        self.assertEqual(config.port_name, "COM5")

    def test_report_lists_unacknowledged_messages(self) -> None:
        with SmsStore(self.db_path) as store:
            store.insert(SmsRecord(id="m1", sender="+100", content="hi", received_at=1))
            store.insert(SmsRecord(id="m2", sender="+200", content="yo", received_at=2))
            store.mark_acknowledged("m2")

        result = self.invoke("report")

        self.assertEqual(result.exit_code, 0)
        self.assertIn("Total messages: 2", result.output)
        self.assertIn("Unacknowledged: 1", result.output)
        self.assertIn("m1", result.output)
        self.assertNotIn("m2 ", result.output)


class RunBridgeTests(unittest.TestCase):
    def test_uses_injected_context_and_closes_it(self) -> None:
        context = mock.Mock(name="context")
        context.store.count_total.return_value = 3
        context.store.count_unacknowledged.return_value = 1
        config = AppConfig(database=DatabaseConfig(path="unused.db"))

        with mock.patch("smsbridge.app.ConnectionManager", autospec=True) as factory:
            with mock.patch("smsbridge.app.install_signal_handlers"):
                result = app.run_bridge(config, context=context)

        factory.assert_called_once_with(config.serial, context.store, context.notifier)
        self.assertEqual(result, app.EXIT_OK)
        context.close.assert_called_once_with()


class SignalHandlerTests(unittest.TestCase):
    def test_signals_stop_the_manager(self) -> None:
        manager = mock.Mock()
        with mock.patch("smsbridge.app.signal.signal") as register:
            app.install_signal_handlers(manager)
        handlers = [call.args[1] for call in register.call_args_list]
        self.assertTrue(handlers)
        handlers[0](2, None)
        manager.stop.assert_called_once_with()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
