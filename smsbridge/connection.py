"""Connection state machine and per-frame processing for the modem link."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from .config import SerialConfig
from .messaging import Notifier
from .storage import SmsRecord, SmsStore, StoreError
from .transport.frames import (
    HANDSHAKE_COMMAND,
    DeviceInfo,
    MessageKind,
    ParsedMessage,
    SmsPayload,
    decode_frame,
    encode_ack,
)
from .transport.serial_manager import (
    PortIOError,
    PortProber,
    SerialFactory,
    SerialManager,
    TransportError,
)

IDLE_TIMEOUT = 30.0
RELEASE_GRACE = 0.5
DETECT_GRACE = 1.0
_LOGGER = logging.getLogger(__name__)


class Phase(str, Enum):
    INITIALIZING = "Initializing"
    VALIDATING = "Validating"
    CONNECTED = "Connected"
    RECONNECTING = "Reconnecting"
    FAILED = "Failed"


@dataclass(frozen=True)
class ConnectionState:
    phase: Phase
    attempts: int = 0

    def __str__(self) -> str:
        if self.phase is Phase.RECONNECTING:
            return f"{self.phase.value}{{{self.attempts}}}"
        return self.phase.value


INITIALIZING = ConnectionState(Phase.INITIALIZING)
VALIDATING = ConnectionState(Phase.VALIDATING)
CONNECTED = ConnectionState(Phase.CONNECTED)
FAILED = ConnectionState(Phase.FAILED)

StateCallback = Callable[[ConnectionState], None]


class ProbeFailure(RuntimeError):
    """No usable port could be found or validated."""


class LineWriter(Protocol):
    def send_line(self, data: bytes) -> None:
        ...


class ConnectionManager:
    """Discover, validate, and serve the modem link until stopped.

    Frames are handled one at a time on the thread that calls :meth:`run`. For
    each SMS the row is committed before the ACK is written, and the ACK is
    flushed before the row is marked acknowledged.
    """

    def __init__(
        self,
        config: SerialConfig,
        store: SmsStore,
        notifier: Notifier,
        *,
        prober: Optional[PortProber] = None,
        serial_factory: Optional[SerialFactory] = None,
        on_state_change: Optional[StateCallback] = None,
        idle_timeout: float = IDLE_TIMEOUT,
        release_grace: float = RELEASE_GRACE,
        detect_grace: float = DETECT_GRACE,
    ) -> None:
        self.config = config
        self.store = store
        self.notifier = notifier
        self.idle_timeout = idle_timeout
        self.release_grace = release_grace
        self.detect_grace = detect_grace
        self._serial_factory = serial_factory
        self._on_state_change = on_state_change
        self._stop_event = threading.Event()
        self.prober = prober or PortProber(
            config.baud_rate,
            timeout=config.probe_timeout_ms / 1000.0,
            scan_attempts=config.scan_attempts,
            scan_interval=config.scan_interval_ms / 1000.0,
            serial_factory=serial_factory,
            stop_event=self._stop_event,
        )
        self.state = INITIALIZING
        self.device_info: Optional[DeviceInfo] = None
        self.reconnects = 0

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Ask :meth:`run` to return; safe to call from a signal handler."""

        self._stop_event.set()

    def _set_state(self, state: ConnectionState) -> None:
        self.state = state
        _LOGGER.debug("Connection state -> %s", state)
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception:
                _LOGGER.debug("State callback failed", exc_info=True)

    def _wait(self, seconds: float) -> bool:
        """Sleep for *seconds*; returns ``True`` if a stop was requested."""

        if seconds <= 0:
            return self.stopped
        return self._stop_event.wait(seconds)

    def establish(self) -> Optional[str]:
        """Resolve and validate the port. Returns ``None`` only when stopped."""

        _LOGGER.info("Establishing serial connection...")
        self._set_state(INITIALIZING)

        if self.config.auto_detect:
            _LOGGER.info("Auto-detecting serial port...")
            port = self.prober.auto_detect()
            if port is None:
                if self.stopped:
                    return None
                self._set_state(FAILED)
                raise ProbeFailure(
                    "Failed to auto-detect serial port. No valid device found."
                )
            _LOGGER.info("Auto-detected port: %s", port)
            # the OS needs a moment to release the port the prober just closed
            if self._wait(self.detect_grace):
                return None
        else:
            port = self.config.port_name
            _LOGGER.info("Using configured port: %s", port)

        max_attempts = self.config.max_retry_count
        for attempt in range(1, max_attempts + 1):
            if self.stopped:
                return None
            _LOGGER.info(
                "Validating port %s (attempt %d/%d)", port, attempt, max_attempts
            )
            self._set_state(VALIDATING)
            if self.prober.probe(port):
                _LOGGER.info("Port %s validated successfully", port)
                if self._wait(self.release_grace):
                    return None
                self._set_state(CONNECTED)
                return port
            _LOGGER.warning(
                "Port validation failed (attempt %d/%d)", attempt, max_attempts
            )
            if attempt < max_attempts:
                _LOGGER.info("Retrying in %dms...", self.config.retry_delay_ms)
                if self._wait(self.config.retry_delay_ms / 1000.0):
                    return None

        self._set_state(FAILED)
        raise ProbeFailure(f"Failed to validate port after {max_attempts} attempts")

    def run(self) -> None:
        """Serve the link until :meth:`stop`; raises :class:`ProbeFailure`."""

        while not self.stopped:
            port = self.establish()
            if port is None:
                break
            try:
                self._serve(port)
            except TransportError as exc:
                if self.stopped:
                    break
                _LOGGER.error("Message handling error: %s", exc)
                self._set_state(ConnectionState(Phase.RECONNECTING, 0))
                self.reconnects += 1
                _LOGGER.warning("Connection lost, attempting to reconnect...")
                self._wait(self.config.retry_delay_ms / 1000.0)
        _LOGGER.info("Connection manager stopped")

    def _serve(self, port: str) -> None:
        timeout = self.config.timeout_ms / 1000.0
        session = SerialManager(
            port,
            baudrate=self.config.baud_rate,
            timeout=timeout,
            write_timeout=timeout,
            serial_factory=self._serial_factory,
        )
        _LOGGER.info("Opening serial port: %s", port)
        session.open()
        try:
            _LOGGER.info("Sending GET_DEVICE_INFO command to device...")
            try:
                session.send_line(HANDSHAKE_COMMAND)
            except PortIOError as exc:
                _LOGGER.error("Failed to send GET_DEVICE_INFO command: %s", exc)

            _LOGGER.info("Message handling loop started, waiting for data...")
            last_activity = time.monotonic()
            while not self.stopped:
                raw = session.read_line()
                now = time.monotonic()
                if raw is None:
                    if now - last_activity >= self.idle_timeout:
                        _LOGGER.info(
                            "No data received in last %d seconds, still waiting...",
                            self.idle_timeout,
                        )
                        last_activity = now
                    continue
                last_activity = now
                self.handle_line(raw, session)
        finally:
            session.close()

    def handle_line(self, raw: bytes, writer: LineWriter) -> None:
        """Decode and process one received line; bad frames are skipped."""

        text = raw.decode("utf-8", errors="replace")
        if not text.strip():
            return
        _LOGGER.debug("Received %d bytes: %r", len(raw), text.strip())
        message = decode_frame(text)
        if message is None:
            _LOGGER.warning("Failed to parse message: %r", text.strip())
            return
        self.process_message(message, writer)

    def process_message(self, message: ParsedMessage, writer: LineWriter) -> None:
        kind = message.kind
        if kind is MessageKind.SMS_RECEIVED:
            self._handle_sms(message, writer)
        elif kind is MessageKind.DEVICE_INFO:
            info: DeviceInfo = message.payload
            self.device_info = info
            _LOGGER.info(
                "Device info - IMEI: %s, Number: %s, Status: %s, RSSI: %s",
                info.imei,
                info.number,
                info.status,
                info.rssi,
            )
        elif kind is MessageKind.SYSTEM_INIT:
            _LOGGER.info("System init: %s", message.payload)
        elif kind is MessageKind.HEART_BEAT:
            _LOGGER.debug("Heartbeat: %s", message.payload)
        else:
            _LOGGER.warning("Unknown message type: %s", message.tag)

    def _handle_sms(self, message: ParsedMessage, writer: LineWriter) -> None:
        payload: SmsPayload = message.payload
        if payload.id != message.id:
            _LOGGER.warning(
                "SMS payload id %r differs from frame id %r; using the frame id",
                payload.id,
                message.id,
            )
        _LOGGER.info("SMS received from %s: %s", payload.sender, payload.content)
        record = SmsRecord(
            id=message.id,
            sender=payload.sender,
            content=payload.content,
            received_at=payload.received_at,
            metas=payload.metas,
        )

        try:
            inserted = self.store.insert(record)
        except StoreError as exc:
            _LOGGER.error("Failed to store SMS %s, not acknowledging: %s", message.id, exc)
            return

        if inserted:
            try:
                self.notifier.send(f"SMS from {payload.sender}", payload.content)
            except Exception as exc:
                _LOGGER.warning("Failed to send notification: %s", exc)

        # a failed write leaves the stream suspect; let run() reconnect
        writer.send_line(encode_ack(message.id))
        _LOGGER.info("Sent ACK for message: %s", message.id)

        try:
            self.store.mark_acknowledged(message.id)
        except StoreError as exc:
            _LOGGER.error("Failed to mark SMS %s as acknowledged: %s", message.id, exc)
