import pytest

from tapcore.adapters import (
    EscrowHandler,
    ReceiptStore,
    TimestampRange,
    safe_truncate_receipts,
)
from tapcore.crypto import PrivateKeySigner, Signature
from tapcore.eip712 import Eip712Domain
from tapcore.errors import (
    FailedToVerifySigner,
    InvalidRecoveredSigner,
    InvalidSignature,
    SubtractEscrowFailed,
)
from tapcore.rav import ReceiptAggregateVoucher
from tapcore.receipt import AwaitingReserve, Receipt, ReceiptWithState
from tapcore.signed_message import EIP712SignedMessage

ALLOCATION = bytes.fromhex("abababababababababababababababababababab")
DOMAIN = Eip712Domain(
    name="TAP", version="1", chain_id=1, verifying_contract=bytes([0x11] * 20)
)
FAKE_SIG = Signature(1, 1, False)


def _receipt(timestamp_ns, nonce=0, value=1, signature=FAKE_SIG):
    message = Receipt(
        allocation_id=ALLOCATION, timestamp_ns=timestamp_ns, nonce=nonce, value=value
    )
    return ReceiptWithState(EIP712SignedMessage(message, signature))


def _timestamps(receipts):
    return [r.signed_receipt.message.timestamp_ns for r in receipts]


class _Escrow(EscrowHandler):
    def __init__(self, balances, accepted=(), fail_verify=False):
        self.balances = dict(balances)
        self.accepted = set(accepted)
        self.fail_verify = fail_verify

    async def get_available_escrow(self, sender_id):
        return self.balances[sender_id]

    async def subtract_escrow(self, sender_id, value):
        current = self.balances.get(sender_id)
        if current is None or current < value:
            raise RuntimeError("not enough escrow")
        self.balances[sender_id] = current - value

    async def verify_signer(self, signer_address):
        if self.fail_verify:
            raise RuntimeError("lookup failed")
        return signer_address in self.accepted


def _awaiting(wallet, value):
    message = Receipt(allocation_id=ALLOCATION, timestamp_ns=5, nonce=1, value=value)
    signed = EIP712SignedMessage.sign(DOMAIN, message, wallet)
    return ReceiptWithState(signed, AwaitingReserve())


def test_timestamp_range_exclusive_end():
    rng = TimestampRange(10, 20)
    assert rng.contains(10)
    assert rng.contains(19)
    assert not rng.contains(20)
    assert not rng.contains(9)


def test_timestamp_range_inclusive_end_unbounded_start():
    rng = TimestampRange(end=20, end_inclusive=True)
    assert rng.contains(0)
    assert 20 in rng
    assert 21 not in rng


def test_timestamp_range_unbounded():
    assert TimestampRange().contains((1 << 64) - 1)


def test_safe_truncate_keeps_all_when_under_limit():
    receipts = [_receipt(300), _receipt(100)]
    assert safe_truncate_receipts(receipts, 5) == receipts


def test_safe_truncate_zero_limit():
    assert safe_truncate_receipts([_receipt(1), _receipt(2)], 0) == []


def test_safe_truncate_whole_first_timestamp_fits():
    receipts = [_receipt(200, n) for n in range(5)] + [_receipt(100, n) for n in range(10)]
    result = safe_truncate_receipts(receipts, 10)
    assert _timestamps(result) == [100] * 10


def test_safe_truncate_drops_split_timestamp():
    receipts = [_receipt(100, n) for n in range(5)] + [_receipt(200, n) for n in range(10)]
    result = safe_truncate_receipts(receipts, 10)
    assert _timestamps(result) == [100] * 5


def test_safe_truncate_result_is_sorted_and_within_limit():
    receipts = [_receipt(t, t) for t in (50, 10, 40, 20, 30)]
    result = safe_truncate_receipts(receipts, 3)
    assert _timestamps(result) == sorted(_timestamps(receipts))[:3]


def test_abstract_adapter_cannot_be_instantiated():
    with pytest.raises(TypeError):
        ReceiptStore()


@pytest.mark.asyncio
async def test_check_and_reserve_escrow_subtracts_value():
    wallet = PrivateKeySigner.random()
    handler = _Escrow({wallet.address(): 100})
    await handler.check_and_reserve_escrow(_awaiting(wallet, 40), DOMAIN)
    assert await handler.get_available_escrow(wallet.address()) == 100 - 40


@pytest.mark.asyncio
async def test_check_and_reserve_escrow_insufficient():
    wallet = PrivateKeySigner.random()
    handler = _Escrow({wallet.address(): 10})
    with pytest.raises(SubtractEscrowFailed):
        await handler.check_and_reserve_escrow(_awaiting(wallet, 40), DOMAIN)
    assert handler.balances[wallet.address()] == 10


@pytest.mark.asyncio
async def test_check_and_reserve_escrow_bad_signature():
    handler = _Escrow({})
    broken = _receipt(5, signature=Signature(0, 1, False))
    with pytest.raises(Exception) as recover_info:
        broken.signed_receipt.recover_signer(DOMAIN)
    with pytest.raises(InvalidSignature) as info:
        await handler.check_and_reserve_escrow(broken, DOMAIN)
    assert str(info.value) == f"Signature check failed:\n{recover_info.value}"
    assert info.value == InvalidSignature(str(recover_info.value))
    assert handler.balances == {}


@pytest.mark.asyncio
async def test_check_rav_signature_accepts_known_signer():
    wallet = PrivateKeySigner.random()
    handler = _Escrow({}, accepted=[wallet.address()])
    rav = EIP712SignedMessage.sign(DOMAIN, ReceiptAggregateVoucher(ALLOCATION, 1, 2), wallet)
    await handler.check_rav_signature(rav, DOMAIN)
    assert rav.recover_signer(DOMAIN) in handler.accepted


@pytest.mark.asyncio
async def test_check_rav_signature_rejects_unknown_signer():
    wallet = PrivateKeySigner.random()
    handler = _Escrow({})
    rav = EIP712SignedMessage.sign(DOMAIN, ReceiptAggregateVoucher(ALLOCATION, 1, 2), wallet)
    with pytest.raises(InvalidRecoveredSigner) as info:
        await handler.check_rav_signature(rav, DOMAIN)
    assert info.value.address == wallet.address()


@pytest.mark.asyncio
async def test_check_rav_signature_verify_failure():
    wallet = PrivateKeySigner.random()
    handler = _Escrow({}, accepted=[wallet.address()], fail_verify=True)
    rav = EIP712SignedMessage.sign(DOMAIN, ReceiptAggregateVoucher(ALLOCATION, 1, 2), wallet)
    assert rav.recover_signer(DOMAIN) == wallet.address()
    with pytest.raises(FailedToVerifySigner) as info:
        await handler.check_rav_signature(rav, DOMAIN)
    assert info.value.message == "lookup failed"
    assert str(info.value) == str(FailedToVerifySigner("lookup failed"))