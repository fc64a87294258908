import pytest

from tapcore.crypto import (
    PrivateKeySigner,
    Signature,
    format_address,
    keccak256,
    parse_address,
)
from tapcore.errors import SignatureError

KEY_ONE_ADDRESS = "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"


def test_keccak_of_empty_input():
    assert keccak256(b"").hex() == (
        "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
    )


def test_address_of_private_key_one():
    signer = PrivateKeySigner.from_bytes((1).to_bytes(32, "big"))
    assert format_address(signer.address()) == KEY_ONE_ADDRESS


def test_eip55_checksum():
    lower = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
    assert format_address(parse_address(lower)) == "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


def test_parse_address_round_trip():
    raw = bytes(range(20))
    assert parse_address(format_address(raw)) == raw
    assert parse_address(raw) == raw
    assert parse_address(raw.hex()) == raw


@pytest.mark.parametrize("bad", ["0x1234", "zz" * 20, b"\x00" * 19])
def test_parse_address_rejects_bad_input(bad):
    with pytest.raises(ValueError):
        parse_address(bad)


def test_sign_and_recover_round_trip():
    signer = PrivateKeySigner.random()
    digest = keccak256(b"hello")
    signature = signer.sign_hash(digest)
    assert signature.recover_address(digest) == signer.address()


def test_recover_with_other_hash_gives_other_address():
    signer = PrivateKeySigner.random()
    signature = signer.sign_hash(keccak256(b"one"))
    assert signature.recover_address(keccak256(b"two")) != signer.address()


def test_signing_is_deterministic():
    signer = PrivateKeySigner.from_bytes((1).to_bytes(32, "big"))
    digest = keccak256(b"same")
    first = signer.sign_hash(digest)
    second = signer.sign_hash(digest)
    assert first.to_bytes() == second.to_bytes()
    assert format_address(first.recover_address(digest)) == KEY_ONE_ADDRESS


def test_signature_bytes_round_trip():
    signature = PrivateKeySigner.random().sign_hash(keccak256(b"bytes"))
    raw = signature.to_bytes()
    assert len(raw) == 65
    assert raw[64] in (27, 28)
    assert Signature.from_bytes(raw) == signature


def test_signature_accepts_zero_one_recovery_byte():
    signature = PrivateKeySigner.random().sign_hash(keccak256(b"v"))
    raw = signature.to_bytes()
    assert Signature.from_bytes(raw[:64] + bytes([raw[64] - 27])) == signature


@pytest.mark.parametrize("raw", [b"\x00" * 64, b"\x01" * 64 + b"\x05"])
def test_signature_from_bad_bytes(raw):
    with pytest.raises(SignatureError):
        Signature.from_bytes(raw)


def test_recover_rejects_zero_scalars():
    with pytest.raises(SignatureError):
        Signature(0, 1, False).recover_address(keccak256(b"x"))


def test_sign_rejects_short_hash():
    with pytest.raises(SignatureError):
        PrivateKeySigner.random().sign_hash(b"short")


def test_private_key_out_of_range():
    with pytest.raises(ValueError):
        PrivateKeySigner.from_bytes(bytes(32))


def test_random_signers_differ():
    addresses = [PrivateKeySigner.random().address() for _ in range(5)]
    assert all(len(address) == 20 for address in addresses)
    assert len(set(addresses)) == 5