"""
MuSig2 (BIP327) multi-signatures for the VTXO tree.

Covers key aggregation with x-only tweaking, nonce generation and
aggregation, partial signing and verification, and final aggregation.
Signing is only ever done with a disposable per-round cosigner key.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass

from coincurve import PublicKey

from arkcore.constants import SECP256K1_ORDER
from arkcore.crypto import (
    bytes_from_int,
    has_even_y,
    int_from_bytes,
    point_add,
    point_from_bytes,
    point_mul,
    point_mul_base,
    point_negate,
    tagged_hash,
    xonly,
)
from arkcore.errors import SigningError

N = SECP256K1_ORDER
PUBNONCE_SIZE = 66
INFINITY_BYTES = bytes(33)


@dataclass(frozen=True)
class KeyAggContext:
    pubkeys: tuple[bytes, ...]
    q: PublicKey
    gacc: int = 1
    tacc: int = 0

    @property
    def xonly_key(self) -> bytes:
        return xonly(self.q)


@dataclass
class SecretNonce:
    """Secret nonce pair. Wiped on first use so it can never sign twice."""

    k1: int
    k2: int
    pubkey: bytes

    def take(self) -> tuple[int, int]:
        if self.k1 == 0 or self.k2 == 0:
            raise SigningError("Secret nonce already used")
        k1, k2 = self.k1, self.k2
        self.k1 = self.k2 = 0
        return k1, k2


def key_sort(pubkeys: list[bytes]) -> list[bytes]:
    return sorted(pubkeys)


def _hash_keys(pubkeys: tuple[bytes, ...]) -> bytes:
    return tagged_hash("KeyAgg list", b"".join(pubkeys))


def _second_key(pubkeys: tuple[bytes, ...]) -> bytes:
    for pk in pubkeys[1:]:
        if pk != pubkeys[0]:
            return pk
    return INFINITY_BYTES


def key_agg_coeff(pubkeys: tuple[bytes, ...], pubkey: bytes) -> int:
    if pubkey not in pubkeys:
        raise SigningError("Signer key is not part of the aggregate")
    if pubkey == _second_key(pubkeys):
        return 1
    return int_from_bytes(tagged_hash("KeyAgg coefficient", _hash_keys(pubkeys) + pubkey)) % N


def key_agg(pubkeys: list[bytes]) -> KeyAggContext:
    """Aggregate compressed pubkeys in the given order."""
    if not pubkeys:
        raise SigningError("Cannot aggregate an empty key set")
    keys = tuple(pubkeys)
    terms = [point_mul(point_from_bytes(pk), key_agg_coeff(keys, pk)) for pk in keys]
    q = point_add(*terms)
    if q is None:
        raise SigningError("Aggregate key is the point at infinity")
    return KeyAggContext(keys, q)


def apply_xonly_tweak(ctx: KeyAggContext, tweak: bytes) -> KeyAggContext:
    t = int_from_bytes(tweak)
    if t >= N:
        raise SigningError("Tweak exceeds curve order")
    g = 1 if has_even_y(ctx.q) else N - 1
    q = point_add(point_mul(ctx.q, g), point_mul_base(t) if t else None)
    if q is None:
        raise SigningError("Tweaked key is the point at infinity")
    return KeyAggContext(ctx.pubkeys, q, g * ctx.gacc % N, (t + g * ctx.tacc) % N)


def apply_taproot_tweak(ctx: KeyAggContext, merkle_root: bytes) -> KeyAggContext:
    """BIP341 tweak of the aggregate key committing to a script tree."""
    return apply_xonly_tweak(ctx, tagged_hash("TapTweak", ctx.xonly_key + merkle_root))


def nonce_gen(pubkey: bytes, rand: bytes | None = None) -> tuple[SecretNonce, bytes]:
    """Fresh nonce pair for a signer; returns (secret nonce, 66-byte public nonce)."""
    rand = rand or secrets.token_bytes(32)
    ks = []
    for i in range(2):
        k = int_from_bytes(tagged_hash("MuSig/nonce", rand + pubkey + bytes([i]))) % N
        if k == 0:
            raise SigningError("Generated zero nonce")
        ks.append(k)
    pubnonce = b"".join(point_mul_base(k).format(compressed=True) for k in ks)
    return SecretNonce(ks[0], ks[1], pubkey), pubnonce


def _point_or_infinity(data: bytes) -> PublicKey | None:
    if data == INFINITY_BYTES:
        return None
    return point_from_bytes(data)


def nonce_agg(pubnonces: list[bytes]) -> bytes:
    aggnonce = b""
    for j in range(2):
        points = []
        for nonce in pubnonces:
            if len(nonce) != PUBNONCE_SIZE:
                raise SigningError(f"Public nonce must be {PUBNONCE_SIZE} bytes")
            points.append(point_from_bytes(nonce[33 * j : 33 * (j + 1)]))
        r = point_add(*points)
        aggnonce += INFINITY_BYTES if r is None else r.format(compressed=True)
    return aggnonce


@dataclass(frozen=True)
class _SessionValues:
    b: int
    r: PublicKey
    e: int


def _session_values(ctx: KeyAggContext, aggnonce: bytes, msg: bytes) -> _SessionValues:
    if len(aggnonce) != PUBNONCE_SIZE:
        raise SigningError(f"Aggregate nonce must be {PUBNONCE_SIZE} bytes")
    b = int_from_bytes(tagged_hash("MuSig/noncecoef", aggnonce + ctx.xonly_key + msg)) % N
    r1 = _point_or_infinity(aggnonce[:33])
    r2 = _point_or_infinity(aggnonce[33:])
    r = point_add(r1, point_mul(r2, b) if r2 is not None else None)
    if r is None:
        r = point_mul_base(1)
    e = int_from_bytes(tagged_hash("BIP0340/challenge", xonly(r) + ctx.xonly_key + msg)) % N
    return _SessionValues(b, r, e)


def partial_sign(
    secnonce: SecretNonce, secret_key: int, ctx: KeyAggContext, aggnonce: bytes, msg: bytes
) -> bytes:
    k1, k2 = secnonce.take()
    pubkey = point_mul_base(secret_key).format(compressed=True)
    if pubkey != secnonce.pubkey:
        raise SigningError("Secret nonce was generated for a different key")

    session = _session_values(ctx, aggnonce, msg)
    if not has_even_y(session.r):
        k1, k2 = N - k1, N - k2
    a = key_agg_coeff(ctx.pubkeys, pubkey)
    g = 1 if has_even_y(ctx.q) else N - 1
    d = g * ctx.gacc * secret_key % N
    s = (k1 + session.b * k2 + session.e * a * d) % N
    return bytes_from_int(s)


def partial_sig_verify(
    psig: bytes,
    pubnonce: bytes,
    pubkey: bytes,
    ctx: KeyAggContext,
    aggnonce: bytes,
    msg: bytes,
) -> bool:
    s = int_from_bytes(psig)
    if s >= N:
        return False
    session = _session_values(ctx, aggnonce, msg)
    r_signer = point_add(
        point_from_bytes(pubnonce[:33]), point_mul(point_from_bytes(pubnonce[33:]), session.b)
    )
    if r_signer is None:
        return False
    if not has_even_y(session.r):
        r_signer = point_negate(r_signer)
    a = key_agg_coeff(ctx.pubkeys, pubkey)
    g = 1 if has_even_y(ctx.q) else N - 1
    scalar = session.e * a * g * ctx.gacc % N
    expected = point_add(r_signer, point_mul(point_from_bytes(pubkey), scalar) if scalar else None)
    if expected is None:
        return s == 0
    if s == 0:
        return False
    return point_mul_base(s).format() == expected.format()


def partial_sig_agg(
    psigs: list[bytes], ctx: KeyAggContext, aggnonce: bytes, msg: bytes
) -> bytes:
    """Combine partial signatures into a BIP340 signature for the tweaked key."""
    session = _session_values(ctx, aggnonce, msg)
    s = sum(int_from_bytes(p) for p in psigs) % N
    g = 1 if has_even_y(ctx.q) else N - 1
    s = (s + session.e * g * ctx.tacc) % N
    return xonly(session.r) + bytes_from_int(s)
