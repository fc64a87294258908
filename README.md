# tapcore

Core building blocks for a receipt-based micropayment scheme. A payer signs
many small receipts with EIP-712. The receiver checks and stores them, and
later has them aggregated into one signed Receipt Aggregate Voucher (RAV)
that can be redeemed.

## Installation

```
pip install tapcore
```

The only runtime dependency is `pycryptodome`, used for Keccak-256.
Elliptic-curve signing and recovery over secp256k1 are done in pure Python.

## Modules

- `tapcore.crypto`: `keccak256`, `parse_address`, `format_address`
  (EIP-55 checksummed), `Signature` (65-byte `r || s || v`, with
  `recover_address`) and `PrivateKeySigner` (`random`, `from_bytes`,
  `address`, and deterministic low-`s` `sign_hash`).
- `tapcore.eip712`: `Eip712Domain` with `separator()`, the `Eip712Struct`
  base class, and `type_hash`, `hash_struct` and `signing_hash`.
- `tapcore.signed_message.EIP712SignedMessage`: a message with the signature
  over its EIP-712 signing hash. It has `sign`, `recover_signer`, `verify`,
  `unique_hash` and `signature_bytes`.
- `tapcore.receipt`: `Receipt` (allocation id, nanosecond timestamp, random
  nonce, value; `Receipt.new` stamps the current time), and
  `ReceiptWithState`, which moves a signed receipt through the states
  `Checking`, `AwaitingReserve`, `Reserved` and `Failed`.
- `tapcore.checks`: the abstract `Check`, `CheckList`, and the built-in
  `StatefulTimestampCheck`, `TimestampCheck` and `UniqueCheck`.
- `tapcore.rav`: `ReceiptAggregateVoucher.aggregate_receipts` and
  `RAVRequest`.
- `tapcore.adapters`: the interfaces a context implements (`ReceiptStore`,
  `ReceiptRead`, `ReceiptDelete`, `RAVStore`, `RAVRead`, `EscrowHandler`),
  `TimestampRange`, and `safe_truncate_receipts`, which limits a batch
  without splitting a timestamp.
- `tapcore.manager.Manager`: verifies and stores receipts, builds RAV
  requests, verifies and stores signed RAVs, and removes receipts already
  covered by the last RAV.
- `tapcore.memory`: `InMemoryContext`, which implements every adapter in
  memory, plus `AllocationIdCheck`, `SignatureCheck` and
  `get_full_list_of_checks`.

## Example

```python
import asyncio

from tapcore.checks import CheckList, StatefulTimestampCheck
from tapcore.crypto import PrivateKeySigner, parse_address
from tapcore.eip712 import Eip712Domain
from tapcore.manager import Manager
from tapcore.memory import InMemoryContext
from tapcore.receipt import Receipt
from tapcore.signed_message import EIP712SignedMessage


async def main():
    domain = Eip712Domain(
        name="TAP",
        version="1",
        chain_id=1,
        verifying_contract=parse_address("0x" + "11" * 20),
    )
    wallet = PrivateKeySigner.random()
    allocation_id = parse_address("0x" + "ab" * 20)

    context = InMemoryContext(StatefulTimestampCheck(0)).with_sender_address(
        wallet.address()
    )
    context.increase_escrow(wallet.address(), 1_000)
    manager = Manager(domain, context, CheckList.empty())

    receipt = EIP712SignedMessage.sign(domain, Receipt.new(allocation_id, 100), wallet)
    await manager.verify_and_store_receipt({}, receipt)

    request = await manager.create_rav_request({}, 0, None)
    print(len(request.valid_receipts), request.expected_rav)


asyncio.run(main())
```

`RAVRequest.expected_rav` holds either the expected voucher or the error that
prevented computing it, such as `NoValidReceiptsForRAVRequest` or
`AggregateOverflow`.

## Errors

Errors come as exceptions, all defined in `tapcore.errors`:

- `TapError` is the base of errors raised by the manager and signature code,
  for example `AdapterError`, `TimestampRangeError`, `InvalidReceivedRAV`,
  `VerificationFailed` and `ReceiptProcessingError`, which wraps a receipt
  error.
- `ReceiptError` is the base of the reasons a single receipt is rejected, for
  example `InvalidTimestamp`, `NonUniqueReceipt`, `SubtractEscrowFailed`,
  `CheckFailure` and `RetryableCheck`.
- A `Check` raises `FailedCheckError` or `RetryableCheckError`, both
  subclasses of `CheckError`.

`InMemoryContext` raises its own `tapcore.memory.InMemoryError`.

## What it does not do

The package does not talk to an aggregator. Sending a `RAVRequest` and
receiving the signed RAV is left to the caller, and the result is passed to
`Manager.verify_and_store_rav`. It has no persistent storage: the only
context provided keeps everything in memory. There is no command-line tool
and no server.

## Running the tests

```
pip install -e ".[test]"
pytest
```