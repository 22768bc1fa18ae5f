"""
Tests for arkcore.crypto
"""

import hashlib

import pytest

from arkcore.crypto import KeyPair, lift_x, tagged_hash, verify_schnorr, xonly_from_hex
from arkcore.errors import ConversionError, SigningError


def test_tagged_hash():
    tag = hashlib.sha256(b"TapLeaf").digest()
    assert tagged_hash("TapLeaf", b"abc") == hashlib.sha256(tag + tag + b"abc").digest()


def test_keypair_schnorr_signing():
    kp = KeyPair()
    digest = hashlib.sha256(b"forfeit").digest()
    sig = kp.sign_schnorr(digest)

    assert len(sig) == 64
    assert verify_schnorr(kp.xonly_public_key(), sig, digest)
    assert not verify_schnorr(kp.xonly_public_key(), sig, hashlib.sha256(b"other").digest())
    assert not verify_schnorr(KeyPair().xonly_public_key(), sig, digest)


def test_sign_rejects_wrong_digest_length():
    with pytest.raises(SigningError):
        KeyPair().sign_schnorr(b"short")


def test_keypair_from_secret_hex():
    kp = KeyPair.from_secret_hex("01" * 32)
    assert kp.secret_bytes == bytes.fromhex("01" * 32)
    assert len(kp.public_key_bytes()) == 33
    assert kp.xonly_public_key() == kp.public_key_bytes()[1:]


@pytest.mark.parametrize("secret", ["zz" * 32, "01" * 31, "00" * 32])
def test_keypair_from_invalid_secret(secret):
    with pytest.raises(ConversionError):
        KeyPair.from_secret_hex(secret)


def test_xonly_from_hex_accepts_both_encodings():
    kp = KeyPair()
    assert xonly_from_hex(kp.public_key_bytes().hex()) == kp.xonly_public_key()
    assert xonly_from_hex(kp.xonly_public_key().hex()) == kp.xonly_public_key()

    with pytest.raises(ConversionError):
        xonly_from_hex("abcd")


def test_lift_x_has_even_y():
    kp = KeyPair()
    point = lift_x(kp.xonly_public_key())
    assert point.format(compressed=True)[0] == 0x02
