"""Random short-code generation.

Codes are drawn uniformly from a 62-symbol alphabet using nanoid, which reads
from the operating system's CSPRNG. They are never derived from record ids or
counters, so they leak neither creation order nor record count.
"""

from nanoid import generate

from shortener.config import get_settings

__all__ = ["ALPHABET", "generate_short_code"]

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


def generate_short_code(length: int | None = None) -> str:
    if length is None:
        length = get_settings().SHORT_CODE_LENGTH
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)
