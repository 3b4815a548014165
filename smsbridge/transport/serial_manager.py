"""Serial transport helpers: handshake probing, port discovery, and the session."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

import serial
import serial.tools.list_ports

from .frames import HANDSHAKE_COMMAND, is_device_info_line

SerialFactory = Callable[..., serial.Serial]

_DEFAULT_BAUDRATE = 115200
PROBE_TIMEOUT = 1.0
SCAN_ATTEMPTS = 10
SCAN_INTERVAL = 10.0
_LOGGER = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Base class for failures on the serial link itself."""


class PortOpenError(TransportError):
    pass


class PortIOError(TransportError):
    pass


def list_port_names() -> List[str]:
    """Return the device names of the serial ports the OS currently reports."""

    return [info.device for info in serial.tools.list_ports.comports() if info.device]


class PortProber:
    """Find the modem by sending the handshake and waiting for DEVICE_INFO."""

    def __init__(
        self,
        baudrate: int = _DEFAULT_BAUDRATE,
        *,
        timeout: float = PROBE_TIMEOUT,
        scan_attempts: int = SCAN_ATTEMPTS,
        scan_interval: float = SCAN_INTERVAL,
        serial_factory: Optional[SerialFactory] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.baudrate = baudrate
        self.timeout = timeout
        self.scan_attempts = scan_attempts
        self.scan_interval = scan_interval
        self._serial_factory = serial_factory or serial.Serial
        self._stop_event = stop_event or threading.Event()

    def probe(self, port: str) -> Optional[str]:
        """Return *port* if the device on it answers the handshake."""

        try:
            ser = self._serial_factory(
                port, self.baudrate, timeout=self.timeout, write_timeout=self.timeout
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            _LOGGER.debug("Skipping port %s during probe: %s", port, exc)
            return None
        try:
            ser.write(HANDSHAKE_COMMAND)
            ser.flush()
            raw = ser.readline()
        except (serial.SerialException, OSError) as exc:
            _LOGGER.debug("Handshake on %s failed: %s", port, exc)
            return None
        finally:
            try:
                ser.close()
            except Exception:
                _LOGGER.debug("Failed to close %s after probe", port, exc_info=True)

        if not raw:
            _LOGGER.debug("No handshake response on %s", port)
            return None
        line = raw.decode("utf-8", errors="replace")
        if is_device_info_line(line):
            _LOGGER.info("Port %s answered the handshake", port)
            return port
        _LOGGER.debug("Unexpected handshake response on %s: %r", port, line.strip())
        return None

    def scan(self, ports: List[str]) -> List[str]:
        """Probe *ports* concurrently and return the validated ones in input order."""

        if not ports:
            return []
        with ThreadPoolExecutor(
            max_workers=len(ports), thread_name_prefix="PortProber"
        ) as pool:
            futures = [pool.submit(self.probe, port) for port in ports]
            results = []
            for future in futures:
                try:
                    found = future.result()
                except Exception:
                    _LOGGER.debug("Probe task crashed", exc_info=True)
                    continue
                if found:
                    results.append(found)
        return results

    def auto_detect(self) -> Optional[str]:
        """Scan all ports repeatedly until one validates or attempts run out."""

        for attempt in range(1, self.scan_attempts + 1):
            if self._stop_event.is_set():
                return None
            _LOGGER.info(
                "Auto-detecting port (attempt %d/%d)", attempt, self.scan_attempts
            )
            try:
                ports = list_port_names()
            except Exception as exc:
                _LOGGER.error("Failed to list available ports: %s", exc)
                ports = []
            _LOGGER.info("Scanning %d port(s)...", len(ports))
            found = self.scan(ports)
            _LOGGER.info(
                "Scan complete. Found %d valid device(s): [%s]",
                len(found),
                ", ".join(found),
            )
            if found:
                return found[0]
            if attempt < self.scan_attempts:
                _LOGGER.warning(
                    "No valid device found, retrying in %.1fs", self.scan_interval
                )
                if self._stop_event.wait(self.scan_interval):
                    return None
        _LOGGER.error("Failed to auto-detect port after %d attempts", self.scan_attempts)
        return None


def probe_port(port: str, baudrate: int = _DEFAULT_BAUDRATE) -> Optional[str]:
    return PortProber(baudrate).probe(port)


def auto_detect_port(baudrate: int = _DEFAULT_BAUDRATE) -> Optional[str]:
    return PortProber(baudrate).auto_detect()


class SerialManager:
    """Owns one open serial session: locked writes and buffered line reads."""

    def __init__(
        self,
        port: str,
        *,
        baudrate: int = _DEFAULT_BAUDRATE,
        timeout: float = 1.0,
        write_timeout: float = 1.0,
        serial_factory: Optional[SerialFactory] = None,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.write_timeout = write_timeout
        self._serial_factory = serial_factory or serial.Serial
        self._serial: Optional[serial.Serial] = None
        self._buffer = bytearray()
        self._write_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return bool(self._serial is not None and self._serial.is_open)

    def open(self) -> serial.Serial:
        if self.is_open:
            return self._serial
        try:
            ser = self._serial_factory(
                self.port,
                self.baudrate,
                timeout=self.timeout,
                write_timeout=self.write_timeout,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise PortOpenError(f"Failed to open serial port {self.port!r}: {exc}") from exc
        self._serial = ser
        self._buffer.clear()
        return ser

    def close(self) -> None:
        if self._serial is not None:
            try:
                self._serial.close()
            except Exception:
                _LOGGER.debug("Failed to close %s", self.port, exc_info=True)
        self._serial = None
        self._buffer.clear()

    def __enter__(self) -> "SerialManager":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def send_line(self, data: bytes) -> None:
        """Write *data* and flush before returning."""

        if not self.is_open:
            raise PortIOError(f"Serial port {self.port!r} is not open")
        try:
            with self._write_lock:
                assert self._serial is not None
                self._serial.write(data)
                self._serial.flush()
        except (serial.SerialException, OSError) as exc:
            raise PortIOError(f"Write to {self.port!r} failed: {exc}") from exc

    def read_line(self) -> Optional[bytes]:
        """Return one complete line, or ``None`` when the read timed out first."""

        if not self.is_open:
            raise PortIOError(f"Serial port {self.port!r} is not open")
        assert self._serial is not None
        try:
            chunk = self._serial.readline()
        except (serial.SerialException, OSError) as exc:
            raise PortIOError(f"Read from {self.port!r} failed: {exc}") from exc
        if chunk:
            self._buffer.extend(chunk)
        if not self._buffer.endswith(b"\n"):
            return None
        line = bytes(self._buffer)
        self._buffer.clear()
        return line
