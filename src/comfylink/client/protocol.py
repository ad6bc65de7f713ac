"""Push-channel frame decoding.

Text frames are JSON ``{"type": ..., "data": {...}}``. Binary frames start
with a big-endian uint32 event type; the layouts handled here are:

* ``1`` preview image: uint32 image format (1 = JPEG, 2 = PNG), image bytes.
* ``3`` progress text: uint32 node-id length, node id, UTF-8 text.
* ``4`` preview image with metadata: uint32 metadata length, JSON metadata
  (carries ``prompt_id``, ``node_id``, ``image_type``), image bytes.
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional


class ProtocolDecodeError(Exception):
    """Raised when a push frame cannot be parsed."""


class BinaryEventType(IntEnum):
    PREVIEW_IMAGE = 1
    UNENCODED_PREVIEW_IMAGE = 2
    TEXT = 3
    PREVIEW_IMAGE_WITH_METADATA = 4


_IMAGE_FORMATS = {1: "JPEG", 2: "PNG"}
_MIME_FORMATS = {"image/jpeg": "JPEG", "image/png": "PNG", "image/webp": "WEBP"}
_UINT32 = struct.Struct(">I")


@dataclass
class PushMessage:
    """Decoded frame, not yet attributed to a registered job."""

    kind: str
    data: Dict[str, Any] = field(default_factory=dict)
    raw: Any = None
    image: Optional[bytes] = None
    image_format: Optional[str] = None

    @property
    def job_id(self) -> Optional[str]:
        prompt_id = self.data.get("prompt_id")
        return prompt_id if isinstance(prompt_id, str) and prompt_id else None


def decode_text_frame(text: str) -> PushMessage:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolDecodeError(f"text frame is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolDecodeError("text frame is not an object")
    kind = payload.get("type")
    if not isinstance(kind, str) or not kind:
        raise ProtocolDecodeError("text frame has no type")
    data = payload.get("data")
    return PushMessage(kind=kind, data=data if isinstance(data, dict) else {}, raw=payload)


def decode_binary_frame(frame: bytes) -> PushMessage:
    event_type, offset = _read_uint32(frame, 0)

    if event_type == BinaryEventType.PREVIEW_IMAGE:
        image_format, offset = _read_uint32(frame, offset)
        return PushMessage(
            kind="preview",
            data={},
            image=bytes(frame[offset:]),
            image_format=_IMAGE_FORMATS.get(image_format, str(image_format)),
        )

    if event_type == BinaryEventType.TEXT:
        length, offset = _read_uint32(frame, offset)
        node_id = _slice(frame, offset, length).decode("utf-8", errors="replace")
        text = bytes(frame[offset + length:]).decode("utf-8", errors="replace")
        return PushMessage(kind="progress_text", data={"node": node_id, "text": text})

    if event_type == BinaryEventType.PREVIEW_IMAGE_WITH_METADATA:
        length, offset = _read_uint32(frame, offset)
        try:
            metadata = json.loads(_slice(frame, offset, length).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProtocolDecodeError(f"preview metadata is not JSON: {exc}") from exc
        if not isinstance(metadata, dict):
            raise ProtocolDecodeError("preview metadata is not an object")
        image_type = metadata.get("image_type")
        return PushMessage(
            kind="preview",
            data=metadata,
            image=bytes(frame[offset + length:]),
            image_format=_MIME_FORMATS.get(image_type, image_type) if isinstance(image_type, str) else None,
        )

    raise ProtocolDecodeError(f"unsupported binary event type {event_type}")


def _read_uint32(frame: bytes, offset: int) -> tuple[int, int]:
    if len(frame) < offset + 4:
        raise ProtocolDecodeError("binary frame truncated")
    (value,) = _UINT32.unpack_from(frame, offset)
    return value, offset + 4


def _slice(frame: bytes, offset: int, length: int) -> bytes:
    if len(frame) < offset + length:
        raise ProtocolDecodeError("binary frame truncated")
    return bytes(frame[offset:offset + length])
