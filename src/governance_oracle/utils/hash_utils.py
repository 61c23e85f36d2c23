"""Helpers for hex hashes, byte arrays and Dash addresses."""

import hashlib
import re
from typing import Iterable, Union

_HASH256_RE = re.compile(r'[a-f0-9]{64}', re.IGNORECASE)

_BASE58_ALPHABET = '123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz'


def hex_to_bytes(value: str) -> bytes:
    """Decode a hex string, accepting an optional 0x prefix."""
    clean = value[2:] if value.startswith('0x') else value
    if len(clean) % 2 != 0:
        raise ValueError("Invalid hex string: odd length")
    return bytes.fromhex(clean)


def bytes_to_hex(value: Union[bytes, bytearray, Iterable[int]]) -> str:
    """Encode bytes (or a list of byte values) as lowercase hex."""
    return bytes(value).hex()


def normalize_hash(value: str) -> str:
    return value.lower()


def is_valid_hash256(value: str) -> bool:
    return bool(_HASH256_RE.fullmatch(value))


def truncate_hash(value: str, chars: int = 8) -> str:
    """Shorten a hash for log output."""
    if len(value) <= chars * 2:
        return value
    return f"{value[:chars]}...{value[-chars:]}"


def b58check_decode(address: str) -> bytes:
    """
    Decode a base58check string and verify its 4-byte checksum.

    Returns the payload including the version byte.
    """
    number = 0
    for char in address:
        index = _BASE58_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"Invalid base58 character: {char!r}")
        number = number * 58 + index

    raw = number.to_bytes((number.bit_length() + 7) // 8, 'big') if number else b''
    leading_zeros = len(address) - len(address.lstrip('1'))
    raw = b'\x00' * leading_zeros + raw

    if len(raw) < 5:
        raise ValueError("base58check payload too short")

    payload, checksum = raw[:-4], raw[-4:]
    expected = hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]
    if checksum != expected:
        raise ValueError("base58check checksum mismatch")
    return payload


def address_to_hash160(address: str) -> str:
    """Extract the 20-byte key hash from a P2PKH/P2SH address as hex."""
    payload = b58check_decode(address)
    if len(payload) != 21:
        raise ValueError(f"Unexpected address payload length: {len(payload)}")
    return payload[1:].hex()
