"""
EVM-style address helpers.

Assets, oracles and the ledger itself are identified by 20-byte hex
addresses.  The all-zero address is the null identity and is never a
valid collaborator.  Addresses are normalised to EIP-55 mixed-case
checksum form, which needs Keccak-256 (``pycryptodome``).
"""

from __future__ import annotations

import re

from Crypto.Hash import keccak

ZERO_ADDRESS = "0x" + "00" * 20

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def keccak256(data: bytes) -> bytes:
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def is_hex_address(value: object) -> bool:
    return isinstance(value, str) and bool(_HEX_ADDRESS.match(value))


def to_checksum_address(value: str) -> str:
    """
    Return the EIP-55 checksum form of *value*.

    Raises ``ValueError`` for anything that is not ``0x`` + 40 hex digits.
    """
    if not is_hex_address(value):
        raise ValueError(f"Not a hex address: {value!r}")
    lower = value[2:].lower()
    digest = keccak256(lower.encode("ascii")).hex()
    out = [
        ch.upper() if ch.isalpha() and int(digest[i], 16) >= 8 else ch
        for i, ch in enumerate(lower)
    ]
    return "0x" + "".join(out)


def is_checksum_address(value: str) -> bool:
    """True when *value* is already in correct EIP-55 form.

    All-lowercase and all-uppercase inputs carry no checksum and are
    accepted as well.
    """
    if not is_hex_address(value):
        return False
    body = value[2:]
    if body == body.lower() or body == body.upper():
        return True
    return to_checksum_address(value) == value


def is_zero_address(value: object) -> bool:
    """True for ``None``, empty strings and the all-zero address."""
    if value is None or value == "":
        return True
    return isinstance(value, str) and value.lower() == ZERO_ADDRESS


def address_from_label(label: str) -> str:
    """Deterministic checksum address for a human label (test/dev helper).

    Same scheme as contract addresses in local devnets: the last 20 bytes
    of ``keccak256(label)``.
    """
    return to_checksum_address("0x" + keccak256(label.encode("utf-8"))[-20:].hex())
