"""Short human-shareable room codes.

Codes are room pointers, not secrets, so generation uses the non-cryptographic
``random`` module.
"""

from __future__ import annotations

import random
import re

# No 0/1/I/O: they are easy to misread when a code is shared out loud.
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6
ROOM_CODE_SEPARATOR = " "

# Accepts any uppercase alphanumeric, a superset of ROOM_CODE_ALPHABET.
_ROOM_CODE_PATTERN = re.compile(r"^[A-Z0-9]{6}$")
_STRIP_PATTERN = re.compile(r"[\s\-]+")


def generate_room_code(rng: random.Random | None = None) -> str:
    """Draw ROOM_CODE_LENGTH characters uniformly from ROOM_CODE_ALPHABET."""
    source = rng or random
    return "".join(source.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))


def is_valid_room_code(code: object) -> bool:
    return isinstance(code, str) and _ROOM_CODE_PATTERN.match(code) is not None


def format_room_code(code: str | None) -> str | None:
    """Insert a separator after the third character (``ABCDEF`` -> ``ABC DEF``).

    Anything that is not a 6-character string is returned unchanged.
    """
    if not isinstance(code, str) or len(code) != ROOM_CODE_LENGTH:
        return code
    half = ROOM_CODE_LENGTH // 2
    return f"{code[:half]}{ROOM_CODE_SEPARATOR}{code[half:]}"


def normalize_room_code(raw: str) -> str:
    """Turn user input such as ``"abc def"`` or ``"ABC-DEF"`` into ``"ABCDEF"``."""
    return _STRIP_PATTERN.sub("", raw).upper()
