"""Transport layer: wire frames and the serial link."""

from .frames import (
    HANDSHAKE_COMMAND,
    DeviceInfo,
    FrameError,
    MessageKind,
    ParsedMessage,
    SmsPayload,
    decode_frame,
    encode_ack,
    encode_frame,
)
from .serial_manager import (
    PortIOError,
    PortOpenError,
    PortProber,
    SerialManager,
    TransportError,
    auto_detect_port,
    probe_port,
)

__all__ = [
    "HANDSHAKE_COMMAND",
    "DeviceInfo",
    "FrameError",
    "MessageKind",
    "ParsedMessage",
    "PortIOError",
    "PortOpenError",
    "PortProber",
    "SerialManager",
    "SmsPayload",
    "TransportError",
    "auto_detect_port",
    "decode_frame",
    "encode_ack",
    "encode_frame",
    "probe_port",
]
