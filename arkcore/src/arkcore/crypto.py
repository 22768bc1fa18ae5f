"""
Key handling and BIP340 primitives on top of coincurve.
"""

from __future__ import annotations

import hashlib
import secrets

from coincurve import PrivateKey, PublicKey, PublicKeyXOnly

from arkcore.constants import SECP256K1_ORDER
from arkcore.errors import ConversionError, SigningError


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP340 tagged hash: SHA256(SHA256(tag) || SHA256(tag) || data)."""
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def int_from_bytes(data: bytes) -> int:
    return int.from_bytes(data, "big")


def bytes_from_int(value: int) -> bytes:
    return value.to_bytes(32, "big")


def has_even_y(point: PublicKey) -> bool:
    return point.format(compressed=True)[0] == 0x02


def xonly(point: PublicKey) -> bytes:
    return point.format(compressed=True)[1:]


def lift_x(xonly_key: bytes) -> PublicKey:
    """Return the point with the given x coordinate and even y."""
    if len(xonly_key) != 32:
        raise ConversionError(f"x-only key must be 32 bytes, got {len(xonly_key)}")
    try:
        return PublicKey(b"\x02" + xonly_key)
    except ValueError as e:
        raise ConversionError(f"Not a valid x-only key: {xonly_key.hex()}") from e


def point_from_bytes(data: bytes) -> PublicKey:
    try:
        return PublicKey(data)
    except ValueError as e:
        raise ConversionError(f"Invalid public key: {data.hex()}") from e


def xonly_from_hex(value: str) -> bytes:
    """Accept either a 33-byte compressed or a 32-byte x-only key in hex."""
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise ConversionError(f"Invalid public key hex: {value!r}") from e
    if len(raw) == 33:
        return point_from_bytes(raw).format(compressed=True)[1:]
    if len(raw) == 32:
        lift_x(raw)
        return raw
    raise ConversionError(f"Public key must be 32 or 33 bytes, got {len(raw)}")


def point_mul_base(scalar: int) -> PublicKey:
    return PublicKey.from_secret(bytes_from_int(scalar % SECP256K1_ORDER))


def point_mul(point: PublicKey, scalar: int) -> PublicKey:
    return point.multiply(bytes_from_int(scalar % SECP256K1_ORDER))


def point_add(*points: PublicKey | None) -> PublicKey | None:
    """Add points, treating None as the point at infinity."""
    present = [p for p in points if p is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    try:
        return PublicKey.combine_keys(present)
    except ValueError:
        # Sum is the point at infinity
        return None


def point_negate(point: PublicKey) -> PublicKey:
    return point_mul(point, SECP256K1_ORDER - 1)


def verify_schnorr(xonly_key: bytes, signature: bytes, digest: bytes) -> bool:
    try:
        return PublicKeyXOnly(xonly_key).verify(signature, digest)
    except ValueError:
        return False


class KeyPair:
    """
    A secp256k1 key pair.

    The wallet holds one long-term KeyPair; each round additionally creates
    a fresh disposable KeyPair as its tree cosigner.
    """

    def __init__(self, private_key: PrivateKey | None = None):
        self._private_key = private_key or PrivateKey(secrets.token_bytes(32))

    @classmethod
    def from_secret_hex(cls, secret_hex: str) -> KeyPair:
        try:
            secret = bytes.fromhex(secret_hex.strip())
            if len(secret) != 32:
                raise ValueError(f"secret key must be 32 bytes, got {len(secret)}")
            return cls(PrivateKey(secret))
        except ValueError as e:
            raise ConversionError(f"Invalid secret key: {e}") from e

    @property
    def secret_bytes(self) -> bytes:
        return self._private_key.secret

    @property
    def secret_int(self) -> int:
        return int_from_bytes(self._private_key.secret)

    @property
    def public_key(self) -> PublicKey:
        return self._private_key.public_key

    def public_key_bytes(self) -> bytes:
        """33-byte compressed public key."""
        return self._private_key.public_key.format(compressed=True)

    def xonly_public_key(self) -> bytes:
        return self.public_key_bytes()[1:]

    def sign_schnorr(self, digest: bytes) -> bytes:
        """BIP340 signature over a 32-byte digest."""
        if len(digest) != 32:
            raise SigningError(f"Digest must be 32 bytes, got {len(digest)}")
        try:
            return self._private_key.sign_schnorr(digest, secrets.token_bytes(32))
        except ValueError as e:
            raise SigningError(f"Schnorr signing failed: {e}") from e

    def __repr__(self) -> str:
        return f"KeyPair(xonly={self.xonly_public_key().hex()})"
