"""
MessagePack wire codec for room server frames.

Outbound payloads are pydantic ``model_dump(mode="json")`` dicts, so they
only contain strings, numbers, booleans, None, lists and string-keyed maps.
"""

from typing import Any

import msgpack


class DecodeError(Exception):
    """Error raised when an inbound frame cannot be decoded."""


# Size limits for inbound frames. A composition carries every note of every
# track, so arrays are allowed to be fairly long.
MAX_BUFFER_LEN = 512 * 1024  # 512KB total payload
MAX_STR_LEN = 16 * 1024  # 16KB per string
MAX_BIN_LEN = 16 * 1024
MAX_ARRAY_LEN = 4096  # notes per track
MAX_MAP_LEN = 64
MAX_EXT_LEN = 0  # extension types are never used


def encode(data: dict[str, Any]) -> bytes:
    return msgpack.packb(data)


def decode(data: bytes) -> dict[str, Any]:
    """
    Decode a MessagePack frame into a dict.

    Raises DecodeError if the frame is malformed, is not a map, or exceeds
    the size limits.
    """
    if len(data) > MAX_BUFFER_LEN:
        raise DecodeError(f"payload too large: {len(data)} bytes (max {MAX_BUFFER_LEN})")
    try:
        result = msgpack.unpackb(
            data,
            raw=False,
            strict_map_key=True,
            max_str_len=MAX_STR_LEN,
            max_bin_len=MAX_BIN_LEN,
            max_array_len=MAX_ARRAY_LEN,
            max_map_len=MAX_MAP_LEN,
            max_ext_len=MAX_EXT_LEN,
        )
    except (msgpack.UnpackException, ValueError) as e:
        raise DecodeError(f"failed to decode MessagePack data: {e}") from e

    if not isinstance(result, dict):
        raise DecodeError(f"expected map, got {type(result).__name__}")

    return result
