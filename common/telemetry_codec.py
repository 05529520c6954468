"""
Telemetry frame codec.

Frames on the telemetry channel are UTF-8 JSON text, one object per frame:

  {"gas": 120, "flama": false, "estadoVent": "OFF", "estadoAsp": "OFF", "modo": "MANUAL"}

Decoding only validates the envelope (text, JSON, object). Field-level
interpretation belongs to the safety engine.
"""

import json
import logging
from typing import Any, Dict, Union

from .constants import MAX_FRAME_SIZE

logger = logging.getLogger(__name__)


class CodecError(Exception):
    """Base exception for codec errors"""
    pass


class TelemetryDecodeError(CodecError):
    """Frame could not be decoded into a telemetry record"""
    pass


class FrameSizeError(CodecError):
    """Frame exceeds maximum size"""
    pass


def decode_frame(raw: Union[str, bytes]) -> Dict[str, Any]:
    """
    Decode one inbound frame into a telemetry record.

    Args:
        raw: Frame payload as received (text or binary)

    Returns:
        Decoded record

    Raises:
        FrameSizeError: If the frame is larger than MAX_FRAME_SIZE
        TelemetryDecodeError: If the frame is not a UTF-8 JSON object
    """
    if len(raw) > MAX_FRAME_SIZE:
        raise FrameSizeError(f"Frame too large: {len(raw)} > {MAX_FRAME_SIZE}")

    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise TelemetryDecodeError(f"Invalid UTF-8: {e}") from e

    try:
        record = json.loads(raw)
    except json.JSONDecodeError as e:
        raise TelemetryDecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(record, dict):
        raise TelemetryDecodeError(f"Expected JSON object, got {type(record).__name__}")

    return record


def encode_message(payload: Any) -> str:
    """
    Encode an outbound message as frame text.

    Raises:
        CodecError: If the payload is not JSON-serialisable
    """
    try:
        return json.dumps(payload)
    except (TypeError, ValueError) as e:
        raise CodecError(f"Cannot encode payload: {e}") from e
