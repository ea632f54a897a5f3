from __future__ import annotations

import hashlib

from sifapass.services.fingerprint import (
    FingerprintInput,
    canonical_bytes,
    compute_fingerprint,
    is_fingerprint,
    new_fingerprint,
    verification_url,
)


def _input(**overrides) -> FingerprintInput:
    fields = {
        "participant_ref": "p-1",
        "event_ref": "e-1",
        "title": "Certificate of Completion",
        "type": "certificate",
        "issued_at_nanos": 1_700_000_000_000_000_000,
        "nonce": "abc",
    }
    fields.update(overrides)
    return FingerprintInput(**fields)


def test_fingerprint_is_64_lowercase_hex() -> None:
    fp = compute_fingerprint(_input())
    assert len(fp) == 64
    assert fp == fp.lower()
    assert is_fingerprint(fp)


def test_fingerprint_is_deterministic_for_same_input() -> None:
    assert compute_fingerprint(_input()) == compute_fingerprint(_input())


def test_fingerprint_is_sha256_of_canonical_bytes() -> None:
    inp = _input()
    assert compute_fingerprint(inp) == hashlib.sha256(canonical_bytes(inp)).hexdigest()


def test_length_prefix_keeps_field_boundaries() -> None:
    """("ab", "c") and ("a", "bc") must not collide."""
    a = _input(participant_ref="ab", event_ref="c")
    b = _input(participant_ref="a", event_ref="bc")
    assert canonical_bytes(a) != canonical_bytes(b)
    assert compute_fingerprint(a) != compute_fingerprint(b)


def test_canonical_encoding_layout() -> None:
    data = canonical_bytes(_input(participant_ref="p"))
    # len("participantRef") = 14, then the name, then len("p") = 1, then "p"
    assert data[:4] == (14).to_bytes(4, "big")
    assert data[4:18] == b"participantRef"
    assert data[18:22] == (1).to_bytes(4, "big")
    assert data[22:23] == b"p"


def test_each_field_changes_the_fingerprint() -> None:
    base = compute_fingerprint(_input())
    for field, value in (
        ("participant_ref", "p-2"),
        ("event_ref", "e-2"),
        ("title", "Other"),
        ("type", "badge"),
        ("issued_at_nanos", 1),
        ("nonce", "xyz"),
    ):
        assert compute_fingerprint(_input(**{field: value})) != base, field


def test_new_fingerprint_differs_for_identical_requests() -> None:
    kwargs = {"participant_ref": "p", "event_ref": "e", "title": "T", "type": "badge"}
    assert new_fingerprint(**kwargs) != new_fingerprint(**kwargs)


def test_verification_url_joins_base_and_fingerprint() -> None:
    fp = "a" * 64
    assert verification_url("https://example.test/", fp) == f"https://example.test/verify/{fp}"


def test_is_fingerprint_rejects_malformed_values() -> None:
    assert not is_fingerprint("")
    assert not is_fingerprint("A" * 64)
    assert not is_fingerprint("a" * 63)
    assert not is_fingerprint("g" * 64)
