"""An in-memory context implementing every adapter, for testing and development."""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, MutableMapping, MutableSet, Optional

from .adapters import (
    EscrowHandler,
    RAVRead,
    RAVStore,
    ReceiptDelete,
    ReceiptRead,
    ReceiptStore,
    TimestampRange,
    safe_truncate_receipts,
)
from .checks import Check, StatefulTimestampCheck
from .crypto import parse_address
from .eip712 import Eip712Domain
from .errors import FailedCheckError, InvalidAllocationID, InvalidSignature, SignatureError
from .rav import SignedRAV
from .receipt import Context, ReceiptWithState


class InMemoryError(Exception):
    """Raised by the in-memory context when a lookup or update fails."""

    def __init__(self, error: str) -> None:
        super().__init__(error)
        self.error = error

    def __str__(self) -> str:
        return f"something went wrong: {self.error}"


@dataclass
class _SharedState:
    lock: threading.RLock = field(default_factory=threading.RLock)
    next_id: int = 0
    rav: Optional[SignedRAV] = None


class InMemoryContext(
    ReceiptStore, ReceiptDelete, ReceiptRead, RAVStore, RAVRead, EscrowHandler
):
    """Keeps receipts, the last RAV and escrow balances in memory.

    ``receipt_storage`` and ``sender_escrow_storage`` may be passed in to
    share them with other components; copies made by
    :meth:`with_sender_address` share all storage with the original.
    """

    def __init__(
        self,
        timestamp_check: StatefulTimestampCheck,
        receipt_storage: Optional[MutableMapping[int, ReceiptWithState]] = None,
        sender_escrow_storage: Optional[MutableMapping[bytes, int]] = None,
    ) -> None:
        self._timestamp_check = timestamp_check
        self._receipts = {} if receipt_storage is None else receipt_storage
        self._escrow = {} if sender_escrow_storage is None else sender_escrow_storage
        self._shared = _SharedState()
        self._sender_address: Optional[bytes] = None

    def with_sender_address(self, sender_address: bytes | str) -> InMemoryContext:
        """Return a context sharing this one's storage that accepts ``sender_address``."""
        other = copy.copy(self)
        other._sender_address = parse_address(sender_address)
        return other

    async def retrieve_receipt_by_id(self, receipt_id: int) -> ReceiptWithState:
        """Return the receipt stored under ``receipt_id``."""
        with self._shared.lock:
            try:
                return self._receipts[receipt_id]
            except KeyError:
                raise InMemoryError("No receipt found with ID") from None

    async def retrieve_receipts_by_timestamp(
        self, timestamp_ns: int
    ) -> list[tuple[int, ReceiptWithState]]:
        """Return ``(id, receipt)`` pairs for receipts with exactly ``timestamp_ns``."""
        with self._shared.lock:
            return [
                (receipt_id, receipt)
                for receipt_id, receipt in self._receipts.items()
                if receipt.signed_receipt.message.timestamp_ns == timestamp_ns
            ]

    async def retrieve_receipts_upto_timestamp(
        self, timestamp_ns: int
    ) -> list[ReceiptWithState]:
        """Return every receipt with a timestamp at or before ``timestamp_ns``."""
        return await self.retrieve_receipts_in_timestamp_range(
            TimestampRange(end=timestamp_ns, end_inclusive=True), None
        )

    async def remove_receipt_by_id(self, receipt_id: int) -> None:
        """Delete the receipt stored under ``receipt_id``."""
        with self._shared.lock:
            if self._receipts.pop(receipt_id, None) is None:
                raise InMemoryError("No receipt found with ID")

    async def remove_receipts_by_ids(self, receipt_ids: Iterable[int]) -> None:
        """Delete receipts by id, stopping at the first id that is missing."""
        for receipt_id in receipt_ids:
            await self.remove_receipt_by_id(receipt_id)

    async def update_last_rav(self, rav: SignedRAV) -> None:
        with self._shared.lock:
            self._shared.rav = rav
            self._timestamp_check.update_min_timestamp_ns(rav.message.timestamp_ns)

    async def last_rav(self) -> Optional[SignedRAV]:
        with self._shared.lock:
            return self._shared.rav

    async def store_receipt(self, receipt: ReceiptWithState) -> int:
        with self._shared.lock:
            receipt_id = self._shared.next_id
            self._receipts[receipt_id] = receipt
            self._shared.next_id += 1
            return receipt_id

    async def remove_receipts_in_timestamp_range(
        self, timestamp_range_ns: TimestampRange
    ) -> None:
        with self._shared.lock:
            doomed = [
                receipt_id
                for receipt_id, receipt in self._receipts.items()
                if timestamp_range_ns.contains(receipt.signed_receipt.message.timestamp_ns)
            ]
            for receipt_id in doomed:
                del self._receipts[receipt_id]

    async def retrieve_receipts_in_timestamp_range(
        self, timestamp_range_ns: TimestampRange, limit: Optional[int] = None
    ) -> list[ReceiptWithState]:
        with self._shared.lock:
            in_range = [
                receipt
                for receipt in self._receipts.values()
                if timestamp_range_ns.contains(receipt.signed_receipt.message.timestamp_ns)
            ]
        if limit is not None and len(in_range) > limit:
            in_range = safe_truncate_receipts(in_range, limit)
        return in_range

    def escrow(self, sender_id: bytes | str) -> int:
        """Return the escrow balance of ``sender_id``."""
        with self._shared.lock:
            try:
                return self._escrow[parse_address(sender_id)]
            except KeyError:
                raise InMemoryError("No escrow exists for provided sender ID.") from None

    def increase_escrow(self, sender_id: bytes | str, value: int) -> None:
        """Add ``value`` to the escrow of ``sender_id``, creating it if needed."""
        sender = parse_address(sender_id)
        with self._shared.lock:
            self._escrow[sender] = self._escrow.get(sender, 0) + value

    def reduce_escrow(self, sender_id: bytes | str, value: int) -> None:
        """Subtract ``value`` from the escrow of ``sender_id``."""
        sender = parse_address(sender_id)
        with self._shared.lock:
            current = self._escrow.get(sender)
            if current is None or value > current:
                raise InMemoryError("Provided value is greater than existing escrow.")
            self._escrow[sender] = current - value

    async def get_available_escrow(self, sender_id: bytes) -> int:
        return self.escrow(sender_id)

    async def subtract_escrow(self, sender_id: bytes, value: int) -> None:
        self.reduce_escrow(sender_id, value)

    async def verify_signer(self, signer_address: bytes) -> bool:
        if self._sender_address is None:
            return False
        return parse_address(signer_address) == self._sender_address


class AllocationIdCheck(Check):
    """Accepts receipts whose allocation id is in a shared set of 20-byte ids."""

    def __init__(self, allocation_ids: MutableSet[bytes]) -> None:
        self._allocation_ids = allocation_ids

    async def check(self, ctx: Context, receipt: ReceiptWithState) -> None:
        allocation_id = receipt.signed_receipt.message.allocation_id
        if allocation_id not in self._allocation_ids:
            raise FailedCheckError(InvalidAllocationID(allocation_id))


class SignatureCheck(Check):
    """Accepts receipts signed by one of the valid signers."""

    def __init__(
        self, domain_separator: Eip712Domain, valid_signers: Iterable[bytes | str]
    ) -> None:
        self._domain_separator = domain_separator
        self._valid_signers = frozenset(parse_address(s) for s in valid_signers)

    async def check(self, ctx: Context, receipt: ReceiptWithState) -> None:
        try:
            signer = receipt.signed_receipt.recover_signer(self._domain_separator)
        except SignatureError as err:
            raise FailedCheckError(InvalidSignature(str(err))) from err
        if signer not in self._valid_signers:
            raise FailedCheckError(InvalidSignature("Invalid signer"))


def get_full_list_of_checks(
    domain_separator: Eip712Domain,
    valid_signers: Iterable[bytes | str],
    allocation_ids: MutableSet[bytes],
    query_appraisals: Any,
) -> list[Check]:
    """Return the allocation id and signature checks.

    ``query_appraisals`` is accepted for compatibility and not used.
    """
    return [
        AllocationIdCheck(allocation_ids),
        SignatureCheck(domain_separator, valid_signers),
    ]