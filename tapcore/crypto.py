"""Keccak hashing, Ethereum addresses and secp256k1 recoverable signatures."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Iterator

from Crypto.Hash import keccak

from .errors import SignatureError

_P = 2**256 - 2**32 - 977
_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
_G = (
    0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
    0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8,
    1,
)
_INF = (0, 1, 0)

_Point = tuple[int, int, int]


def keccak256(data: bytes) -> bytes:
    """Return the Keccak-256 digest of ``data``."""
    return keccak.new(digest_bits=256, data=bytes(data)).digest()


def parse_address(value: str | bytes | bytearray) -> bytes:
    """Turn a hex string or 20 raw bytes into a 20-byte address."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise ValueError(f"address must be 20 bytes, got {len(value)}")
        return bytes(value)
    if not isinstance(value, str):
        raise TypeError(f"cannot parse address from {type(value).__name__}")
    text = value[2:] if value[:2] in ("0x", "0X") else value
    if len(text) != 40:
        raise ValueError(f"address must have 40 hex digits: {value!r}")
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise ValueError(f"invalid hex in address: {value!r}") from exc


def format_address(address: str | bytes | bytearray) -> str:
    """Format an address as an EIP-55 checksummed hex string."""
    lower = parse_address(address).hex()
    digest = keccak256(lower.encode("ascii")).hex()
    return "0x" + "".join(
        ch.upper() if int(nibble, 16) >= 8 else ch for ch, nibble in zip(lower, digest)
    )


def _double(pt: _Point) -> _Point:
    x, y, z = pt
    if z == 0 or y == 0:
        return _INF
    ysq = y * y % _P
    s = 4 * x * ysq % _P
    m = 3 * x * x % _P
    nx = (m * m - 2 * s) % _P
    ny = (m * (s - nx) - 8 * ysq * ysq) % _P
    nz = 2 * y * z % _P
    return nx, ny, nz


def _add(p1: _Point, p2: _Point) -> _Point:
    if p1[2] == 0:
        return p2
    if p2[2] == 0:
        return p1
    x1, y1, z1 = p1
    x2, y2, z2 = p2
    z1s = z1 * z1 % _P
    z2s = z2 * z2 % _P
    u1 = x1 * z2s % _P
    u2 = x2 * z1s % _P
    s1 = y1 * z2s * z2 % _P
    s2 = y2 * z1s * z1 % _P
    if u1 == u2:
        return _double(p1) if s1 == s2 else _INF
    h = (u2 - u1) % _P
    r = (s2 - s1) % _P
    h2 = h * h % _P
    h3 = h * h2 % _P
    u1h2 = u1 * h2 % _P
    nx = (r * r - h3 - 2 * u1h2) % _P
    ny = (r * (u1h2 - nx) - s1 * h3) % _P
    nz = h * z1 * z2 % _P
    return nx, ny, nz


def _multiply(pt: _Point, k: int) -> _Point:
    result, addend = _INF, pt
    while k:
        if k & 1:
            result = _add(result, addend)
        addend = _double(addend)
        k >>= 1
    return result


def _to_affine(pt: _Point) -> tuple[int, int] | None:
    x, y, z = pt
    if z == 0:
        return None
    zi = pow(z, -1, _P)
    zi2 = zi * zi % _P
    return x * zi2 % _P, y * zi2 * zi % _P


def _address_of(point: tuple[int, int]) -> bytes:
    x, y = point
    return keccak256(x.to_bytes(32, "big") + y.to_bytes(32, "big"))[12:]


def _check_hash(message_hash: bytes) -> bytes:
    message_hash = bytes(message_hash)
    if len(message_hash) != 32:
        raise SignatureError(f"message hash must be 32 bytes, got {len(message_hash)}")
    return message_hash


def _rfc6979_nonces(secret: int, message_hash: bytes) -> Iterator[int]:
    def mac(key: bytes, data: bytes) -> bytes:
        return hmac.new(key, data, hashlib.sha256).digest()

    x = secret.to_bytes(32, "big")
    h1 = (int.from_bytes(message_hash, "big") % _N).to_bytes(32, "big")
    v = b"\x01" * 32
    k = b"\x00" * 32
    k = mac(k, v + b"\x00" + x + h1)
    v = mac(k, v)
    k = mac(k, v + b"\x01" + x + h1)
    v = mac(k, v)
    while True:
        v = mac(k, v)
        candidate = int.from_bytes(v, "big")
        if 1 <= candidate < _N:
            yield candidate
        k = mac(k, v + b"\x00")
        v = mac(k, v)


@dataclass(frozen=True)
class Signature:
    """An ECDSA signature over secp256k1 with its recovery parity."""

    r: int
    s: int
    y_parity: bool

    def to_bytes(self) -> bytes:
        """Return the 65-byte ``r || s || v`` form, with ``v`` 27 or 28."""
        return (
            self.r.to_bytes(32, "big")
            + self.s.to_bytes(32, "big")
            + bytes([27 + int(self.y_parity)])
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Signature:
        """Parse a 65-byte signature; ``v`` may be 0, 1, 27 or 28."""
        data = bytes(data)
        if len(data) != 65:
            raise SignatureError(f"signature must be 65 bytes, got {len(data)}")
        v = data[64]
        if v in (27, 28):
            parity = v - 27
        elif v in (0, 1):
            parity = v
        else:
            raise SignatureError(f"invalid recovery byte {v}")
        return cls(
            int.from_bytes(data[:32], "big"),
            int.from_bytes(data[32:64], "big"),
            bool(parity),
        )

    def recover_address(self, message_hash: bytes) -> bytes:
        """Recover the address that signed the 32-byte ``message_hash``."""
        message_hash = _check_hash(message_hash)
        r, s = self.r, self.s
        if not (0 < r < _N and 0 < s < _N):
            raise SignatureError("signature scalars out of range")
        alpha = (pow(r, 3, _P) + 7) % _P
        beta = pow(alpha, (_P + 1) // 4, _P)
        if beta * beta % _P != alpha:
            raise SignatureError("signature r is not the x coordinate of a curve point")
        y = beta if (beta & 1) == int(self.y_parity) else _P - beta
        z = int.from_bytes(message_hash, "big")
        r_inv = pow(r, -1, _N)
        u1 = (-z * r_inv) % _N
        u2 = (s * r_inv) % _N
        point = _to_affine(_add(_multiply(_G, u1), _multiply((r, y, 1), u2)))
        if point is None:
            raise SignatureError("recovered public key is the point at infinity")
        return _address_of(point)


class PrivateKeySigner:
    """A local secp256k1 private key that signs message hashes."""

    def __init__(self, secret: int) -> None:
        if not 0 < secret < _N:
            raise ValueError("private key out of range")
        self._secret = secret
        public = _to_affine(_multiply(_G, secret))
        assert public is not None
        self._address = _address_of(public)

    @classmethod
    def random(cls) -> PrivateKeySigner:
        """Create a signer with a freshly generated key."""
        return cls(secrets.randbelow(_N - 1) + 1)

    @classmethod
    def from_bytes(cls, secret: bytes) -> PrivateKeySigner:
        """Create a signer from a 32-byte big-endian private key."""
        secret = bytes(secret)
        if len(secret) != 32:
            raise ValueError(f"private key must be 32 bytes, got {len(secret)}")
        return cls(int.from_bytes(secret, "big"))

    def address(self) -> bytes:
        """Return the 20-byte address of this key."""
        return self._address

    def sign_hash(self, message_hash: bytes) -> Signature:
        """Sign a 32-byte hash deterministically, with low ``s``."""
        message_hash = _check_hash(message_hash)
        z = int.from_bytes(message_hash, "big")
        for k in _rfc6979_nonces(self._secret, message_hash):
            point = _to_affine(_multiply(_G, k))
            if point is None:
                continue
            r = point[0] % _N
            if r == 0:
                continue
            s = pow(k, -1, _N) * (z + r * self._secret) % _N
            if s == 0:
                continue
            parity = point[1] & 1
            if s > _N // 2:
                s = _N - s
                parity ^= 1
            return Signature(r, s, bool(parity))
        raise SignatureError("unable to produce a signature")  # pragma: no cover

    def __repr__(self) -> str:
        return f"PrivateKeySigner(address={format_address(self._address)})"