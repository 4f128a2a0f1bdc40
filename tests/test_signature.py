from __future__ import annotations

import pytest

from webhook_service.services.signature import SIGNATURE_PREFIX, sign, signature_header, verify

PAYLOAD = b'{"event":"deal_won","deal":{"id":"42"}}'


def test_sign_known_vector():
    digest = sign(b"The quick brown fox jumps over the lazy dog", "key")
    assert digest == "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"


def test_verify_accepts_own_signature_with_and_without_prefix():
    digest = sign(PAYLOAD, "s3cret")
    assert verify(PAYLOAD, digest, "s3cret")
    assert verify(PAYLOAD, SIGNATURE_PREFIX + digest, "s3cret")
    assert verify(PAYLOAD, digest.upper(), "s3cret")


@pytest.mark.parametrize("index", [0, 7, len(PAYLOAD) - 1])
def test_verify_rejects_flipped_payload_bit(index):
    digest = sign(PAYLOAD, "s3cret")
    mutated = bytearray(PAYLOAD)
    mutated[index] ^= 0x01
    assert not verify(bytes(mutated), digest, "s3cret")


def test_verify_rejects_other_secret():
    digest = sign(PAYLOAD, "s3cret")
    assert not verify(PAYLOAD, digest, "0therSecret")


@pytest.mark.parametrize("index", [0, 3, len("s3cret") - 1])
@pytest.mark.parametrize("bit", [0x01, 0x40])
def test_verify_rejects_flipped_secret_bit(index, bit):
    digest = sign(PAYLOAD, "s3cret")
    mutated = bytearray(b"s3cret")
    mutated[index] ^= bit
    assert not verify(PAYLOAD, digest, mutated.decode("ascii"))


@pytest.mark.parametrize("provided", [None, "", "sha256=", "not-hex"])
def test_verify_rejects_missing_or_garbage(provided):
    assert not verify(PAYLOAD, provided, "s3cret")


def test_signature_header_skipped_without_secret():
    assert signature_header(PAYLOAD, None) is None
    assert signature_header(PAYLOAD, "") is None
    assert signature_header(PAYLOAD, "s3cret") == f"sha256={sign(PAYLOAD, 's3cret')}"
