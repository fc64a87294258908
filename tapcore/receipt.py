"""Receipts, the states a received receipt moves through, and its transitions."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, ClassVar, Iterable, Union

from .crypto import parse_address
from .eip712 import Eip712Domain, Eip712Struct
from .errors import (
    CheckError,
    CheckFailure,
    ReceiptError,
    RetryableCheck,
    RetryableCheckError,
)
from .signed_message import EIP712SignedMessage

if TYPE_CHECKING:
    from .checks import Check

_U64_MAX = (1 << 64) - 1
_U128_MAX = (1 << 128) - 1

Context = dict[Any, Any]
"""Per-request values handed to every check, keyed by whatever the caller chooses."""


def current_timestamp_ns() -> int:
    """Return the current Unix time in nanoseconds."""
    return time.time_ns()


def _check_uint(name: str, value: int, maximum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if not 0 <= value <= maximum:
        raise ValueError(f"{name} {value} is out of range")


@dataclass(frozen=True)
class Receipt(Eip712Struct):
    """A single promise of payment, signed by the sender."""

    EIP712_TYPE_NAME: ClassVar[str] = "Receipt"
    EIP712_FIELDS: ClassVar[tuple[tuple[str, str, str], ...]] = (
        ("allocation_id", "address", "allocation_id"),
        ("timestamp_ns", "uint64", "timestamp_ns"),
        ("nonce", "uint64", "nonce"),
        ("value", "uint128", "value"),
    )

    allocation_id: bytes
    timestamp_ns: int
    nonce: int
    value: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "allocation_id", parse_address(self.allocation_id))
        _check_uint("timestamp_ns", self.timestamp_ns, _U64_MAX)
        _check_uint("nonce", self.nonce, _U64_MAX)
        _check_uint("value", self.value, _U128_MAX)

    @classmethod
    def new(cls, allocation_id: bytes | str, value: int) -> Receipt:
        """Create a receipt stamped with the current time and a random nonce."""
        return cls(
            allocation_id=allocation_id,
            timestamp_ns=current_timestamp_ns(),
            nonce=secrets.randbits(64),
            value=value,
        )


SignedReceipt = EIP712SignedMessage[Receipt]


@dataclass(frozen=True)
class Checking:
    """The receipt is being checked."""


@dataclass(frozen=True)
class AwaitingReserve:
    """The receipt passed every check and waits for escrow to be reserved."""


@dataclass(frozen=True)
class Reserved:
    """Escrow has been reserved for the receipt."""


@dataclass(frozen=True)
class Failed:
    """The receipt failed a check or its escrow reservation."""

    error: ReceiptError


ReceiptState = Union[Checking, AwaitingReserve, Reserved, Failed]


@dataclass(frozen=True)
class ReceiptWithState:
    """A signed receipt together with the state it has reached."""

    signed_receipt: EIP712SignedMessage[Receipt]
    state: ReceiptState = field(default_factory=Checking)

    def _require(self, state_type: type) -> None:
        if not isinstance(self.state, state_type):
            raise TypeError(
                f"receipt is {type(self.state).__name__}, expected {state_type.__name__}"
            )

    async def perform_checks(self, ctx: Context, checks: Iterable[Check]) -> None:
        """Run ``checks`` in order, stopping at the first one that rejects.

        Raises :class:`RetryableCheck` or :class:`CheckFailure`.
        """
        self._require(Checking)
        for check in checks:
            try:
                await check.check(ctx, self)
            except RetryableCheckError as exc:
                raise RetryableCheck(str(exc)) from exc
            except CheckError as exc:
                raise CheckFailure(str(exc)) from exc

    async def finalize_receipt_checks(
        self, ctx: Context, checks: Iterable[Check]
    ) -> ReceiptWithState:
        """Run every check and return the receipt awaiting reserve, or failed.

        A retryable check error is raised as :class:`RetryableCheck`.
        """
        self._require(Checking)
        try:
            await self.perform_checks(ctx, checks)
        except RetryableCheck:
            raise
        except ReceiptError as error:
            return self.with_error(error)
        return replace(self, state=AwaitingReserve())

    async def check_and_reserve_escrow(
        self, context: Any, domain_separator: Eip712Domain
    ) -> ReceiptWithState:
        """Reserve escrow through ``context``; return the receipt reserved or failed."""
        self._require(AwaitingReserve)
        try:
            await context.check_and_reserve_escrow(self, domain_separator)
        except ReceiptError as error:
            return self.with_error(error)
        return replace(self, state=Reserved())

    def with_error(self, error: ReceiptError) -> ReceiptWithState:
        """Return this receipt moved to the failed state with ``error``."""
        return replace(self, state=Failed(error))

    def error(self) -> ReceiptError:
        """Return the error of a failed receipt."""
        if not isinstance(self.state, Failed):
            raise ValueError(f"receipt is {type(self.state).__name__}, not Failed")
        return self.state.error