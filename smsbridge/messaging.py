"""Push notification helpers for SMS Bridge."""

from __future__ import annotations

import logging
from typing import Optional, Protocol
from urllib.parse import quote

import requests

from .config import NotificationConfig

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    """A notification could not be delivered."""


class Notifier(Protocol):
    def send(self, title: str, body: str) -> None:
        ...


class NullNotifier:
    """Used when notifications are disabled."""

    def send(self, title: str, body: str) -> None:
        logger.debug("Notifications disabled; dropping %r", title)


class BarkNotifier:
    """Sends push notifications through a Bark server."""

    def __init__(
        self,
        server_url: str,
        device_key: str,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.server_url = server_url
        self.device_key = device_key
        self.timeout = timeout
        self._session = session or requests.Session()

    def build_url(self, title: str, body: str) -> str:
        return "/".join(
            [
                self.server_url.rstrip("/"),
                self.device_key,
                quote(title, safe=""),
                quote(body, safe=""),
            ]
        )

    def send(self, title: str, body: str) -> None:
        """Deliver *title*/*body*, raising :class:`NotificationError` on failure."""

        url = self.build_url(title, body)
        logger.debug("Sending Bark notification to: %s", url)
        try:
            response = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Failed to send Bark notification: %s", exc)
            raise NotificationError(str(exc)) from exc

        if 200 <= response.status_code < 300:
            logger.info("Bark notification sent successfully.")
            return
        logger.warning(
            "Bark notification failed with status %s: %s",
            response.status_code,
            response.text,
        )
        raise NotificationError(
            f"Bark notification failed with status: {response.status_code}"
        )

    def close(self) -> None:
        self._session.close()


def build_notifier(config: NotificationConfig) -> Notifier:
    if config.enabled:
        return BarkNotifier(config.bark_server_url, config.bark_device_key)
    return NullNotifier()
