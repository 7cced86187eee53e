"""Codec for Clawatch relay frames.

One JSON object per UTF-8 text message. Decoding dispatches solely on the
string ``type`` tag; unknown tags decode to ``UnknownFrame`` so newer relays
can add frame kinds without breaking older clients.
"""

from __future__ import annotations

import json
import time
from typing import Any
from uuid import uuid4

from .config import CLIENT_ID, PLUGIN_VERSION
from .errors import FrameDecodeError
from .frames import FRAME_TYPES, Frame, RegisterFrame, UnknownFrame


def encode_frame(frame: Frame | dict[str, Any]) -> str:
    """Serialize a frame (or an already-built frame dict) to wire text."""
    payload = frame if isinstance(frame, dict) else frame.to_dict()
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def decode_frame(text: str | bytes) -> Frame | UnknownFrame:
    """Parse wire text into a frame.

    Raises:
        FrameDecodeError: Payload is not JSON (or nests too deeply to
            parse), not an object, has no string
            ``type``, or misses a required field for its type.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as err:
            raise FrameDecodeError("Frame is not valid UTF-8") from err
    try:
        data = json.loads(text)
    except (RecursionError, TypeError, ValueError) as err:
        raise FrameDecodeError("Invalid JSON from server") from err

    if not isinstance(data, dict):
        raise FrameDecodeError("Frame must be a JSON object")

    frame_type = data.get("type")
    if not isinstance(frame_type, str):
        raise FrameDecodeError("Frame has no string 'type' field")

    frame_cls = FRAME_TYPES.get(frame_type)
    if frame_cls is None:
        return UnknownFrame(frame_type=frame_type, raw=data)
    return frame_cls.from_dict(data)


def build_register(
    token: str, *, client: str = CLIENT_ID, version: str = PLUGIN_VERSION
) -> RegisterFrame:
    """Construct the handshake frame sent right after the transport opens."""
    return RegisterFrame(token=token, client=client, version=version)


def new_correlation_id(kind: str, *, now_ms: int | None = None) -> str:
    """Generate a one-shot correlation id, e.g. ``push-1700000000000-3f9a1c2``."""
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{kind}-{ts}-{uuid4().hex[:7]}"
