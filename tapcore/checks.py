"""Receipt checks: user-defined single checks and built-in batch checks."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable

from .errors import FailedCheckError, InvalidTimestamp, NonUniqueReceipt
from .receipt import Context, ReceiptWithState


class Check(ABC):
    """A check run against each receipt before it is stored or aggregated."""

    @abstractmethod
    async def check(self, ctx: Context, receipt: ReceiptWithState) -> None:
        """Raise a :class:`CheckError` subclass if ``receipt`` is not acceptable."""


class CheckList(tuple):
    """An immutable, ordered collection of checks."""

    def __new__(cls, checks: Iterable[Check] = ()) -> CheckList:
        return super().__new__(cls, checks)

    @classmethod
    def empty(cls) -> CheckList:
        """Return a check list with no checks."""
        return cls()

    def __repr__(self) -> str:
        return f"CheckList({list(self)!r})"


class StatefulTimestampCheck(Check):
    """Rejects receipts whose timestamp is not after an updatable minimum."""

    def __init__(self, min_timestamp_ns: int) -> None:
        self._lock = threading.Lock()
        self._min_timestamp_ns = min_timestamp_ns

    def update_min_timestamp_ns(self, min_timestamp_ns: int) -> None:
        """Set the exclusive minimum timestamp accepted from now on."""
        with self._lock:
            self._min_timestamp_ns = min_timestamp_ns

    async def check(self, ctx: Context, receipt: ReceiptWithState) -> None:
        with self._lock:
            min_timestamp_ns = self._min_timestamp_ns
        timestamp_ns = receipt.signed_receipt.message.timestamp_ns
        if timestamp_ns <= min_timestamp_ns:
            raise FailedCheckError(InvalidTimestamp(timestamp_ns, min_timestamp_ns))


Batch = tuple[list[ReceiptWithState], list[ReceiptWithState]]


@dataclass(frozen=True)
class TimestampCheck:
    """Keeps receipts whose timestamp is at least ``min_timestamp_ns``."""

    min_timestamp_ns: int

    def check_batch(self, receipts: Iterable[ReceiptWithState]) -> Batch:
        """Split ``receipts`` into those still checking and those that failed."""
        checking: list[ReceiptWithState] = []
        failed: list[ReceiptWithState] = []
        for receipt in receipts:
            timestamp_ns = receipt.signed_receipt.message.timestamp_ns
            if timestamp_ns >= self.min_timestamp_ns:
                checking.append(receipt)
            else:
                failed.append(
                    receipt.with_error(InvalidTimestamp(timestamp_ns, self.min_timestamp_ns))
                )
        return checking, failed


@dataclass(frozen=True)
class UniqueCheck:
    """Fails every receipt whose signature already appeared earlier in the batch."""

    def check_batch(self, receipts: Iterable[ReceiptWithState]) -> Batch:
        """Split ``receipts`` into unique ones and duplicates."""
        seen: set[bytes] = set()
        checking: list[ReceiptWithState] = []
        failed: list[ReceiptWithState] = []
        for receipt in receipts:
            signature = receipt.signed_receipt.signature_bytes()
            if signature in seen:
                failed.append(receipt.with_error(NonUniqueReceipt()))
            else:
                seen.add(signature)
                checking.append(receipt)
        return checking, failed