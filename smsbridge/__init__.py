"""SMS Bridge: forwards SMS from a UART cellular modem to SQLite and Bark."""

from __future__ import annotations

__all__ = ["main"]

__version__ = "0.1.0"


def main() -> None:
    """Launch the SMS Bridge command line."""

    from .app import main as _app_main

    _app_main()
