"""Storage and escrow adapters that a manager's context implements."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional

from .eip712 import Eip712Domain
from .errors import (
    FailedToVerifySigner,
    InvalidRecoveredSigner,
    InvalidSignature,
    SignatureError,
    SubtractEscrowFailed,
)
from .rav import SignedRAV
from .receipt import ReceiptWithState


@dataclass(frozen=True)
class TimestampRange:
    """A range of nanosecond timestamps; a missing bound is unbounded.

    ``start`` is inclusive; ``end`` is exclusive unless ``end_inclusive``.
    """

    start: Optional[int] = None
    end: Optional[int] = None
    end_inclusive: bool = False

    def contains(self, timestamp_ns: int) -> bool:
        """Return whether ``timestamp_ns`` lies within the range."""
        if self.start is not None and timestamp_ns < self.start:
            return False
        if self.end is not None:
            if self.end_inclusive:
                return timestamp_ns <= self.end
            return timestamp_ns < self.end
        return True

    def __contains__(self, timestamp_ns: int) -> bool:
        return self.contains(timestamp_ns)


class ReceiptStore(ABC):
    """Stores received receipts."""

    @abstractmethod
    async def store_receipt(self, receipt: ReceiptWithState) -> int:
        """Store a checking receipt and return its unique id."""


class ReceiptDelete(ABC):
    """Deletes receipts from storage."""

    @abstractmethod
    async def remove_receipts_in_timestamp_range(
        self, timestamp_range_ns: TimestampRange
    ) -> None:
        """Remove every receipt whose timestamp lies in ``timestamp_range_ns``."""


class ReceiptRead(ABC):
    """Retrieves receipts from storage."""

    @abstractmethod
    async def retrieve_receipts_in_timestamp_range(
        self, timestamp_range_ns: TimestampRange, limit: Optional[int]
    ) -> list[ReceiptWithState]:
        """Return checking receipts in the range, at most ``limit`` of them.

        When limited, no timestamp that is returned may have receipts left
        behind; :func:`safe_truncate_receipts` does this.
        """


class RAVStore(ABC):
    """Stores the latest RAV."""

    @abstractmethod
    async def update_last_rav(self, rav: SignedRAV) -> None:
        """Store ``rav`` as the latest validated RAV."""


class RAVRead(ABC):
    """Reads the latest RAV."""

    @abstractmethod
    async def last_rav(self) -> Optional[SignedRAV]:
        """Return the latest RAV, or ``None`` if there is none."""


class EscrowHandler(ABC):
    """Manages the local accounting of senders' escrow."""

    @abstractmethod
    async def get_available_escrow(self, sender_id: bytes) -> int:
        """Return the escrow available for ``sender_id``."""

    @abstractmethod
    async def subtract_escrow(self, sender_id: bytes, value: int) -> None:
        """Deduct ``value`` from the escrow of ``sender_id``."""

    @abstractmethod
    async def verify_signer(self, signer_address: bytes) -> bool:
        """Return whether ``signer_address`` is an accepted sender."""

    async def check_and_reserve_escrow(
        self, received_receipt: ReceiptWithState, domain_separator: Eip712Domain
    ) -> None:
        """Reserve escrow for the receipt's value from its signer.

        Raises :class:`InvalidSignature` or :class:`SubtractEscrowFailed`.
        """
        signed_receipt = received_receipt.signed_receipt
        try:
            signer = signed_receipt.recover_signer(domain_separator)
        except SignatureError as err:
            raise InvalidSignature(str(err)) from err
        try:
            await self.subtract_escrow(signer, signed_receipt.message.value)
        except Exception as err:
            raise SubtractEscrowFailed() from err

    async def check_rav_signature(
        self, signed_rav: SignedRAV, domain_separator: Eip712Domain
    ) -> None:
        """Check that the RAV was signed by an accepted sender.

        Raises :class:`FailedToVerifySigner` or :class:`InvalidRecoveredSigner`.
        """
        recovered = signed_rav.recover_signer(domain_separator)
        try:
            accepted = await self.verify_signer(recovered)
        except Exception as err:
            raise FailedToVerifySigner(str(err)) from err
        if not accepted:
            raise InvalidRecoveredSigner(recovered)


def safe_truncate_receipts(
    receipts: Iterable[ReceiptWithState], limit: int
) -> list[ReceiptWithState]:
    """Return at most ``limit`` receipts without splitting any timestamp.

    When truncation is needed the result is sorted by timestamp, and the
    receipts sharing the boundary timestamp are dropped as a whole.
    """
    receipts = list(receipts)
    if len(receipts) <= limit:
        return receipts
    if limit == 0:
        return []

    def timestamp(receipt: ReceiptWithState) -> int:
        return receipt.signed_receipt.message.timestamp_ns

    receipts.sort(key=timestamp)
    last_timestamp = timestamp(receipts[limit - 1])
    after_last_timestamp = timestamp(receipts[limit])
    kept = receipts[:limit]
    if last_timestamp == after_last_timestamp:
        kept = [r for r in kept if timestamp(r) != last_timestamp]
    return kept