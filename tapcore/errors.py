"""Exceptions raised while handling receipts, signatures and RAVs."""

from __future__ import annotations

from typing import Any


def _fmt_address(address: Any) -> str:
    from .crypto import format_address

    try:
        return format_address(address)
    except (TypeError, ValueError):
        return repr(address)


class _ValueEquality:
    """Equality and hashing by exception type and arguments."""

    args: tuple

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return self.args == other.args  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class TapError(_ValueEquality, Exception):
    """Base class for errors raised by the TAP manager and its helpers."""


class SignatureError(TapError):
    """A signature could not be produced, parsed or recovered."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"signature error: {self.message}"


class VerificationFailed(TapError):
    """The recovered signer differs from the expected address."""

    def __init__(self, expected: bytes, received: bytes) -> None:
        super().__init__(expected, received)
        self.expected = expected
        self.received = received

    def __str__(self) -> str:
        return (
            f"signature verification failed: expected {_fmt_address(self.expected)}, "
            f"received {_fmt_address(self.received)}"
        )


class AggregateOverflow(TapError):
    """Aggregating receipt values overflowed 128 bits."""

    def __str__(self) -> str:
        return "aggregating receipt results in overflow"


class InvalidReceivedRAV(TapError):
    """The RAV returned by the aggregator is not the one that was expected."""

    def __init__(self, received_rav: Any, expected_rav: Any) -> None:
        super().__init__(received_rav, expected_rav)
        self.received_rav = received_rav
        self.expected_rav = expected_rav

    def __str__(self) -> str:
        return (
            "received RAV does not match expected RAV\n"
            f"received: {self.received_rav!r}\nexpected: {self.expected_rav!r}"
        )


class AdapterError(TapError):
    """A storage or escrow adapter failed."""

    def __init__(self, source_error: BaseException) -> None:
        super().__init__(source_error)
        self.source_error = source_error

    def __str__(self) -> str:
        return f"adapter error: {self.source_error}"


class TimestampRangeError(TapError):
    """The minimum timestamp for a RAV request lies after the maximum."""

    def __init__(self, min_timestamp_ns: int, max_timestamp_ns: int) -> None:
        super().__init__(min_timestamp_ns, max_timestamp_ns)
        self.min_timestamp_ns = min_timestamp_ns
        self.max_timestamp_ns = max_timestamp_ns

    def __str__(self) -> str:
        return (
            f"minimum timestamp {self.min_timestamp_ns} is greater than "
            f"maximum timestamp {self.max_timestamp_ns}"
        )


class NoValidReceiptsForRAVRequest(TapError):
    """A RAV request was attempted with no valid receipts."""

    def __str__(self) -> str:
        return "no valid receipts for RAV request"


class FailedToVerifySigner(TapError):
    """The escrow handler could not decide whether a signer is valid."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"failed to verify signer: {self.message}"


class InvalidRecoveredSigner(TapError):
    """The signer recovered from a RAV is not an accepted sender."""

    def __init__(self, address: bytes) -> None:
        super().__init__(address)
        self.address = address

    def __str__(self) -> str:
        return f"recovered signer {_fmt_address(self.address)} is not a valid sender"


class ReceiptProcessingError(TapError):
    """A receipt error surfaced through the manager."""

    def __init__(self, error: ReceiptError) -> None:
        super().__init__(error)
        self.error = error

    def __str__(self) -> str:
        return str(self.error)


class ReceiptError(_ValueEquality, Exception):
    """Base class for the reasons a receipt is rejected."""


class InvalidAllocationID(ReceiptError):
    def __init__(self, received_allocation_id: bytes) -> None:
        super().__init__(received_allocation_id)
        self.received_allocation_id = received_allocation_id

    def __str__(self) -> str:
        return f"invalid allocation ID: {_fmt_address(self.received_allocation_id)}"


class InvalidSignature(ReceiptError):
    def __init__(self, source_error_message: str) -> None:
        super().__init__(source_error_message)
        self.source_error_message = source_error_message

    def __str__(self) -> str:
        return f"Signature check failed:\n{self.source_error_message}"


class InvalidTimestamp(ReceiptError):
    def __init__(self, received_timestamp: int, timestamp_min: int) -> None:
        super().__init__(received_timestamp, timestamp_min)
        self.received_timestamp = received_timestamp
        self.timestamp_min = timestamp_min

    def __str__(self) -> str:
        return (
            f"invalid timestamp: {self.received_timestamp} "
            f"(expected min {self.timestamp_min})"
        )


class InvalidValue(ReceiptError):
    def __init__(self, received_value: int) -> None:
        super().__init__(received_value)
        self.received_value = received_value

    def __str__(self) -> str:
        return f"Invalid Value: {self.received_value} "


class NonUniqueReceipt(ReceiptError):
    def __str__(self) -> str:
        return "Receipt is not unique"


class SubtractEscrowFailed(ReceiptError):
    def __str__(self) -> str:
        return "Attempt to collect escrow failed"


class CheckFailure(ReceiptError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"Issue encountered while performing check: {self.message}"


class RetryableCheck(ReceiptError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"Retryable check error encountered: {self.message}"


class CheckError(Exception):
    """Raised by a receipt check; the message is that of its source."""

    def __init__(self, source: BaseException | str) -> None:
        super().__init__(source)
        self.source = source

    def __str__(self) -> str:
        return str(self.source)


class RetryableCheckError(CheckError):
    """A check could not complete now but may succeed when retried."""


class FailedCheckError(CheckError):
    """A check ran and rejected the receipt."""