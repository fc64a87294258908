"""EIP-712 typed structured data hashing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, ClassVar

from .crypto import keccak256, parse_address

_INT_TYPE = re.compile(r"(u?)int(\d*)")
_FIXED_BYTES = re.compile(r"bytes(\d+)")


def _encode_int(sol_type: str, signed: bool, bits_text: str, value: Any) -> bytes:
    bits = int(bits_text) if bits_text else 256
    if bits % 8 or not 8 <= bits <= 256:
        raise ValueError(f"unsupported EIP-712 type: {sol_type}")
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{sol_type} value must be an int, got {type(value).__name__}")
    low, high = (-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if signed else (0, (1 << bits) - 1)
    if not low <= value <= high:
        raise ValueError(f"value {value} out of range for {sol_type}")
    return (value % (1 << 256)).to_bytes(32, "big")


def _encode_value(sol_type: str, value: Any) -> bytes:
    if sol_type == "address":
        return parse_address(value).rjust(32, b"\x00")
    if sol_type == "bool":
        return int(bool(value)).to_bytes(32, "big")
    if sol_type == "string":
        return keccak256(str(value).encode("utf-8"))
    if sol_type == "bytes":
        return keccak256(bytes(value))
    match = _FIXED_BYTES.fullmatch(sol_type)
    if match:
        size = int(match.group(1))
        data = bytes(value)
        if not 1 <= size <= 32 or len(data) != size:
            raise ValueError(f"value does not fit {sol_type}")
        return data.ljust(32, b"\x00")
    match = _INT_TYPE.fullmatch(sol_type)
    if match:
        return _encode_int(sol_type, not match.group(1), match.group(2), value)
    raise ValueError(f"unsupported EIP-712 type: {sol_type}")


def _hash_fields(type_string: str, fields: list[tuple[str, Any]]) -> bytes:
    encoded = b"".join(_encode_value(sol_type, value) for sol_type, value in fields)
    return keccak256(keccak256(type_string.encode("utf-8")) + encoded)


class Eip712Struct:
    """Base for messages hashed under EIP-712.

    Subclasses set ``EIP712_TYPE_NAME`` and ``EIP712_FIELDS``, a tuple of
    ``(solidity_name, solidity_type, attribute)`` entries in encoding order.
    """

    EIP712_TYPE_NAME: ClassVar[str] = ""
    EIP712_FIELDS: ClassVar[tuple[tuple[str, str, str], ...]] = ()


def _encode_type(struct_type: type[Eip712Struct]) -> str:
    if not struct_type.EIP712_TYPE_NAME:
        raise ValueError(f"{struct_type.__name__} has no EIP-712 type name")
    members = ",".join(f"{sol_type} {name}" for name, sol_type, _ in struct_type.EIP712_FIELDS)
    return f"{struct_type.EIP712_TYPE_NAME}({members})"


def type_hash(struct_type: type[Eip712Struct] | Eip712Struct) -> bytes:
    """Return the Keccak-256 hash of the struct's encoded type."""
    cls = struct_type if isinstance(struct_type, type) else type(struct_type)
    return keccak256(_encode_type(cls).encode("utf-8"))


def hash_struct(message: Eip712Struct) -> bytes:
    """Return the EIP-712 ``hashStruct`` of ``message``."""
    cls = type(message)
    return _hash_fields(
        _encode_type(cls),
        [(sol_type, getattr(message, attr)) for _, sol_type, attr in cls.EIP712_FIELDS],
    )


@dataclass(frozen=True)
class Eip712Domain:
    """The EIP-712 signing domain; absent fields are left out of the type."""

    name: str | None = None
    version: str | None = None
    chain_id: int | None = None
    verifying_contract: bytes | str | None = None
    salt: bytes | None = None

    def separator(self) -> bytes:
        """Return the domain separator hash."""
        candidates = (
            ("name", "string", self.name),
            ("version", "string", self.version),
            ("chainId", "uint256", self.chain_id),
            ("verifyingContract", "address", self.verifying_contract),
            ("salt", "bytes32", self.salt),
        )
        present = [entry for entry in candidates if entry[2] is not None]
        members = ",".join(f"{sol_type} {name}" for name, sol_type, _ in present)
        return _hash_fields(
            f"EIP712Domain({members})",
            [(sol_type, value) for _, sol_type, value in present],
        )


def signing_hash(message: Eip712Struct, domain: Eip712Domain) -> bytes:
    """Return the digest that is signed for ``message`` under ``domain``."""
    return keccak256(b"\x19\x01" + domain.separator() + hash_struct(message))