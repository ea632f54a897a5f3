"""Content fingerprints and verification URLs.

A credential's fingerprint is SHA-256 over a canonical encoding of the
fields that identify it.  Each field is written as

    len(name) (4 bytes, big-endian) | name (UTF-8)
    len(value) (4 bytes, big-endian) | value (UTF-8)

in the fixed order of FIELD_ORDER.  Length prefixes make the encoding
unambiguous: ("ab", "c") and ("a", "bc") hash differently, which plain
concatenation would not guarantee.

The issuance timestamp (nanoseconds) and a random nonce are part of the
input, so issuing the same participant/event/title/type twice yields two
different fingerprints.  Uniqueness across the store is still enforced
by the credential repository.
"""

from __future__ import annotations

import hashlib
import re
import secrets
import struct
import time
from dataclasses import dataclass

FIELD_ORDER = (
    "participantRef",
    "eventRef",
    "title",
    "type",
    "issuedAtNanos",
    "nonce",
)

FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True, slots=True)
class FingerprintInput:
    participant_ref: str
    event_ref: str
    title: str
    type: str
    issued_at_nanos: int
    nonce: str

    def values(self) -> tuple[str, ...]:
        return (
            self.participant_ref,
            self.event_ref,
            self.title,
            self.type,
            str(self.issued_at_nanos),
            self.nonce,
        )


def _length_prefixed(data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + data


def canonical_bytes(inp: FingerprintInput) -> bytes:
    out = bytearray()
    for name, value in zip(FIELD_ORDER, inp.values()):
        out += _length_prefixed(name.encode("utf-8"))
        out += _length_prefixed(value.encode("utf-8"))
    return bytes(out)


def compute_fingerprint(inp: FingerprintInput) -> str:
    """Return the 64-character lowercase hex SHA-256 of ``inp``."""
    return hashlib.sha256(canonical_bytes(inp)).hexdigest()


def verification_url(base_url: str, fingerprint: str) -> str:
    return f"{base_url.rstrip('/')}/verify/{fingerprint}"


def is_fingerprint(value: str) -> bool:
    return bool(FINGERPRINT_RE.match(value))


def new_fingerprint(
    *, participant_ref: str, event_ref: str, title: str, type: str
) -> str:
    """Fingerprint a new issuance with a fresh timestamp and nonce."""
    return compute_fingerprint(
        FingerprintInput(
            participant_ref=participant_ref,
            event_ref=event_ref,
            title=title,
            type=type,
            issued_at_nanos=time.time_ns(),
            nonce=secrets.token_hex(16),
        )
    )
