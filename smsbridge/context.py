"""Application context container for shared services."""
from __future__ import annotations

from dataclasses import dataclass

from .config import AppConfig
from .messaging import Notifier, build_notifier
from .storage import SmsStore


@dataclass
class AppContext:
    store: SmsStore
    notifier: Notifier

    @classmethod
    def from_config(cls, config: AppConfig) -> "AppContext":
        """Open the store and pick a notifier; raises ``StoreInitError``."""

        return cls(
            store=SmsStore(config.database.path),
            notifier=build_notifier(config.notification),
        )

    def close(self) -> None:
        self.store.close()
        close = getattr(self.notifier, "close", None)
        if close is not None:
            close()
