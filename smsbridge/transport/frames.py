"""Line framing for the modem link: ``<id>:<TYPE>:<base64 json>\\r\\n``."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

HANDSHAKE_COMMAND = b"CMD:GET_DEVICE_INFO\r\n"
FRAME_PATTERN = re.compile(r"^(.+?):(.+?):(.+?)[\r\n]*$")
DEVICE_INFO_PATTERN = re.compile(r"^(.+):DEVICE_INFO:([A-Za-z0-9+/=]+)\s*$")

_LOGGER = logging.getLogger(__name__)


class FrameError(ValueError):
    """Raised when a line cannot be decoded into a frame."""


class MessageKind(str, Enum):
    DEVICE_INFO = "DEVICE_INFO"
    SMS_RECEIVED = "SMS_RECEIVED"
    SYSTEM_INIT = "SYSTEM_INIT"
    HEART_BEAT = "HEART_BEAT"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class DeviceInfo:
    imei: str
    number: str
    status: int
    rssi: int
    iccid: str
    timestamp: int


@dataclass(frozen=True)
class SmsPayload:
    """SMS body as reported by the modem; ``id`` here is advisory only."""

    id: str
    sender: str
    content: str
    received_at: int
    metas: Any = None


@dataclass(frozen=True)
class ParsedMessage:
    id: str
    kind: MessageKind
    tag: str
    payload: Any = None


def _require(data: dict, key: str, kind: type) -> Any:
    value = data.get(key)
    # bool is an int subclass but never a valid integer field on the wire
    if value is None or isinstance(value, bool) or not isinstance(value, kind):
        raise FrameError(f"field {key!r} missing or not {kind.__name__}")
    return value


def _parse_device_info(data: Any) -> DeviceInfo:
    if not isinstance(data, dict):
        raise FrameError("DEVICE_INFO payload must be an object")
    return DeviceInfo(
        imei=_require(data, "imei", str),
        number=_require(data, "number", str),
        status=_require(data, "status", int),
        rssi=_require(data, "rssi", int),
        iccid=_require(data, "iccid", str),
        timestamp=_require(data, "timestamp", int),
    )


def _parse_sms(data: Any) -> SmsPayload:
    if not isinstance(data, dict):
        raise FrameError("SMS_RECEIVED payload must be an object")
    return SmsPayload(
        id=_require(data, "id", str),
        sender=_require(data, "sender", str),
        content=_require(data, "content", str),
        received_at=_require(data, "received_at", int),
        metas=data.get("metas"),
    )


def parse_frame(line: str) -> ParsedMessage:
    """Decode one line, raising :class:`FrameError` on any malformed input."""

    match = FRAME_PATTERN.match(line)
    if match is None:
        raise FrameError("line does not contain id:TYPE:payload")
    frame_id, tag, encoded = match.groups()

    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FrameError(f"invalid base64 payload: {exc}") from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FrameError("payload is not valid UTF-8") from exc

    try:
        kind = MessageKind(tag)
    except ValueError:
        kind = MessageKind.UNKNOWN
    if kind is MessageKind.UNKNOWN:
        return ParsedMessage(id=frame_id, kind=kind, tag=tag, payload=text)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FrameError(f"payload is not valid JSON: {exc}") from exc

    if kind is MessageKind.DEVICE_INFO:
        payload: Any = _parse_device_info(data)
    elif kind is MessageKind.SMS_RECEIVED:
        payload = _parse_sms(data)
    else:
        payload = data
    return ParsedMessage(id=frame_id, kind=kind, tag=tag, payload=payload)


def decode_frame(line: str) -> Optional[ParsedMessage]:
    """Return the parsed frame, or ``None`` when *line* is not a valid frame."""

    try:
        return parse_frame(line)
    except FrameError as exc:
        _LOGGER.debug("Rejected frame %r: %s", line.strip(), exc)
        return None


def _payload_json(message: ParsedMessage) -> Any:
    payload = message.payload
    if message.kind is MessageKind.DEVICE_INFO:
        return {
            "imei": payload.imei,
            "number": payload.number,
            "status": payload.status,
            "rssi": payload.rssi,
            "iccid": payload.iccid,
            "timestamp": payload.timestamp,
        }
    if message.kind is MessageKind.SMS_RECEIVED:
        body = {
            "id": payload.id,
            "sender": payload.sender,
            "content": payload.content,
            "received_at": payload.received_at,
        }
        if payload.metas is not None:
            body["metas"] = payload.metas
        return body
    return payload


def encode_frame(message: ParsedMessage) -> bytes:
    """Serialize *message* back into a CRLF-terminated wire frame."""

    if message.kind is MessageKind.UNKNOWN:
        text = str(message.payload or "")
    else:
        text = json.dumps(
            _payload_json(message), separators=(",", ":"), ensure_ascii=False
        )
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    return f"{message.id}:{message.tag}:{encoded}\r\n".encode("utf-8")


def encode_ack(message_id: str) -> bytes:
    return f"ACK:{message_id}\r\n".encode("utf-8")


def is_device_info_line(line: str) -> bool:
    """Cheap handshake check: the line looks like a DEVICE_INFO frame."""

    return DEVICE_INFO_PATTERN.match(line) is not None
