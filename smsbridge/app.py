import logging
import signal
from typing import Optional

import click

from .config import AppConfig, ConfigError, load_config
from .connection import ConnectionManager, ProbeFailure
from .context import AppContext
from .settings import CONFIG_FILE, configure_logging
from .storage import StoreInitError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def _load(config_path: str, verbose: bool) -> Optional[AppConfig]:
    configure_logging(level=logging.DEBUG if verbose else logging.INFO)
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        logger.error("Failed to load configuration: %s", exc)
        return None
    if not verbose:
        configure_logging(level=config.log_level)
    return config


def install_signal_handlers(manager: ConnectionManager) -> None:
    """Route SIGINT/SIGTERM to a graceful stop of *manager*."""

    def handler(signum, _frame) -> None:
        logger.info("Received signal %s, shutting down...", signum)
        manager.stop()

    for name in ("SIGINT", "SIGTERM"):
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, handler)


def run_bridge(config: AppConfig, *, context: Optional[AppContext] = None) -> int:
    """Run the serial bridge until shutdown and return the process exit code."""

    if context is None:
        try:
            context = AppContext.from_config(config)
        except StoreInitError as exc:
            logger.error("Failed to initialize database: %s", exc)
            return EXIT_FAILURE

    try:
        total = context.store.count_total()
        pending = context.store.count_unacknowledged()
        logger.info("Database holds %d SMS message(s), %d unacknowledged", total, pending)
        if config.notification.enabled:
            logger.info("Bark notifications enabled")
        else:
            logger.info("Notifications disabled")

        manager = ConnectionManager(config.serial, context.store, context.notifier)
        install_signal_handlers(manager)
        try:
            manager.run()
        except ProbeFailure as exc:
            logger.error("Failed to establish connection: %s", exc)
            return EXIT_FAILURE
    finally:
        context.close()
    logger.info("Shutdown complete")
    return EXIT_OK


def print_report(config: AppConfig) -> int:
    try:
        context = AppContext.from_config(config)
    except StoreInitError as exc:
        logger.error("Failed to initialize database: %s", exc)
        return EXIT_FAILURE
    try:
        store = context.store
        click.echo(f"Total messages: {store.count_total()}")
        click.echo(f"Unacknowledged: {store.count_unacknowledged()}")
        for record in store.get_unacknowledged():
            click.echo(
                f"  {record.id}  from={record.sender}  received_at={record.received_at}"
                f"  content={record.content!r}"
            )
    finally:
        context.close()
    return EXIT_OK


@click.group(invoke_without_command=True)
@click.option(
    "-c",
    "--config",
    "config_path",
    default=CONFIG_FILE,
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Path to the TOML configuration file",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str, verbose: bool) -> None:
    """Bridge SMS from a UART cellular modem into SQLite and Bark.

    Without a subcommand the bridge runs until interrupted.
    """

    config = _load(config_path, verbose)
    if config is None:
        ctx.exit(EXIT_FAILURE)
    ctx.obj = config
    if ctx.invoked_subcommand is None:
        ctx.exit(run_bridge(config))


@cli.command()
@click.pass_context
def report(ctx: click.Context) -> None:
    """Print message counts and list unacknowledged SMS."""

    ctx.exit(print_report(ctx.obj))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
