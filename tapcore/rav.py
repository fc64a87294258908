"""Receipt Aggregate Vouchers and requests to aggregate receipts into one.

A RAV sums a batch of receipts for one allocation, together with any
previous RAV, and is what the receiver eventually redeems.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Iterable, Optional, Union

from .crypto import parse_address
from .eip712 import Eip712Struct
from .errors import AggregateOverflow, TapError
from .receipt import Receipt, ReceiptWithState
from .signed_message import EIP712SignedMessage

_U64_MAX = (1 << 64) - 1
_U128_MAX = (1 << 128) - 1


def _check_uint(name: str, value: int, maximum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if not 0 <= value <= maximum:
        raise ValueError(f"{name} {value} is out of range")


@dataclass(frozen=True)
class ReceiptAggregateVoucher(Eip712Struct):
    """The aggregate of a batch of receipts, signed by the aggregator."""

    EIP712_TYPE_NAME: ClassVar[str] = "ReceiptAggregateVoucher"
    EIP712_FIELDS: ClassVar[tuple[tuple[str, str, str], ...]] = (
        ("allocationId", "address", "allocation_id"),
        ("timestampNs", "uint64", "timestamp_ns"),
        ("valueAggregate", "uint128", "value_aggregate"),
    )

    allocation_id: bytes
    timestamp_ns: int
    value_aggregate: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "allocation_id", parse_address(self.allocation_id))
        _check_uint("timestamp_ns", self.timestamp_ns, _U64_MAX)
        _check_uint("value_aggregate", self.value_aggregate, _U128_MAX)

    @classmethod
    def aggregate_receipts(
        cls,
        allocation_id: bytes | str,
        receipts: Iterable[EIP712SignedMessage[Receipt]],
        previous_rav: Optional[EIP712SignedMessage[ReceiptAggregateVoucher]],
    ) -> ReceiptAggregateVoucher:
        """Aggregate ``receipts`` on top of ``previous_rav``.

        Raises :class:`AggregateOverflow` if the sum exceeds 128 bits.
        """
        if previous_rav is not None:
            timestamp_max = previous_rav.message.timestamp_ns
            value_aggregate = previous_rav.message.value_aggregate
        else:
            timestamp_max = 0
            value_aggregate = 0

        for receipt in receipts:
            value_aggregate += receipt.message.value
            if value_aggregate > _U128_MAX:
                raise AggregateOverflow()
            timestamp_max = max(timestamp_max, receipt.message.timestamp_ns)

        return cls(
            allocation_id=allocation_id,
            timestamp_ns=timestamp_max,
            value_aggregate=value_aggregate,
        )


SignedRAV = EIP712SignedMessage[ReceiptAggregateVoucher]


@dataclass
class RAVRequest:
    """What is sent to the aggregator to obtain a new signed RAV.

    ``expected_rav`` holds either the RAV the aggregator should return or
    the error that prevented computing it.
    """

    valid_receipts: list[ReceiptWithState]
    previous_rav: Optional[SignedRAV]
    invalid_receipts: list[ReceiptWithState]
    expected_rav: Union[ReceiptAggregateVoucher, TapError]