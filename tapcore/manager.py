"""Entry point for verifying, storing and aggregating TAP receipts and RAVs.

A :class:`Manager` runs the configured checks on incoming receipts, builds
RAV requests from stored receipts and verifies the RAVs returned by the
aggregator. Storage and escrow accounting are delegated to a context that
implements the adapters in :mod:`tapcore.adapters`.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional, Sequence

from .adapters import TimestampRange
from .checks import Check, CheckList, TimestampCheck, UniqueCheck
from .eip712 import Eip712Domain
from .errors import (
    AdapterError,
    InvalidReceivedRAV,
    NoValidReceiptsForRAVRequest,
    ReceiptError,
    ReceiptProcessingError,
    RetryableCheck,
    TapError,
    TimestampRangeError,
)
from .rav import RAVRequest, ReceiptAggregateVoucher, SignedRAV
from .receipt import Context, Failed, ReceiptWithState, SignedReceipt, current_timestamp_ns


@contextmanager
def _adapter_errors() -> Iterator[None]:
    """Wrap any failure of an adapter call in :class:`AdapterError`."""
    try:
        yield
    except Exception as err:
        raise AdapterError(err) from err


class Manager:
    """Validates receipts and RAVs and drives their storage through a context."""

    def __init__(
        self,
        domain_separator: Eip712Domain,
        context: Any,
        checks: Iterable[Check] = (),
    ) -> None:
        self._domain_separator = domain_separator
        self._context = context
        self._checks = CheckList(checks)

    async def verify_and_store_rav(
        self, expected_rav: ReceiptAggregateVoucher, signed_rav: SignedRAV
    ) -> None:
        """Check ``signed_rav`` against ``expected_rav`` and its signer, then store it.

        Raises :class:`InvalidReceivedRAV` on a mismatch and
        :class:`AdapterError` if storing fails.
        """
        await self._context.check_rav_signature(signed_rav, self._domain_separator)

        if signed_rav.message != expected_rav:
            raise InvalidReceivedRAV(signed_rav.message, expected_rav)

        with _adapter_errors():
            await self._context.update_last_rav(signed_rav)

    async def _previous_rav(self) -> Optional[SignedRAV]:
        with _adapter_errors():
            return await self._context.last_rav()

    async def _collect_receipts(
        self,
        ctx: Context,
        timestamp_buffer_ns: int,
        min_timestamp_ns: int,
        limit: Optional[int],
    ) -> tuple[list[ReceiptWithState], list[ReceiptWithState]]:
        max_timestamp_ns = current_timestamp_ns() - timestamp_buffer_ns
        if min_timestamp_ns > max_timestamp_ns:
            raise TimestampRangeError(min_timestamp_ns, max_timestamp_ns)

        with _adapter_errors():
            checking = await self._context.retrieve_receipts_in_timestamp_range(
                TimestampRange(start=min_timestamp_ns, end=max_timestamp_ns), limit
            )

        failed: list[ReceiptWithState] = []
        checking, rejected = TimestampCheck(min_timestamp_ns).check_batch(checking)
        failed.extend(rejected)
        checking, rejected = UniqueCheck().check_batch(checking)
        failed.extend(rejected)

        awaiting_reserve: list[ReceiptWithState] = []
        for receipt in checking:
            try:
                checked = await receipt.finalize_receipt_checks(ctx, self._checks)
            except RetryableCheck as err:
                raise ReceiptProcessingError(err) from err
            if isinstance(checked.state, Failed):
                failed.append(checked)
            else:
                awaiting_reserve.append(checked)

        reserved: list[ReceiptWithState] = []
        for receipt in awaiting_reserve:
            outcome = await receipt.check_and_reserve_escrow(
                self._context, self._domain_separator
            )
            if isinstance(outcome.state, Failed):
                failed.append(outcome)
            else:
                reserved.append(outcome)

        return reserved, failed

    async def create_rav_request(
        self,
        ctx: Context,
        timestamp_buffer_ns: int,
        receipts_limit: Optional[int] = None,
    ) -> RAVRequest:
        """Finish checking the receipts up to now minus the buffer and build a request.

        Raises :class:`AdapterError` if the previous RAV or the receipts
        cannot be read, and :class:`TimestampRangeError` if the previous
        RAV is newer than the end of the range. An error while computing
        the expected RAV is kept in the request's ``expected_rav``.
        """
        previous_rav = await self._previous_rav()
        min_timestamp_ns = previous_rav.message.timestamp_ns + 1 if previous_rav else 0

        valid, invalid = await self._collect_receipts(
            ctx, timestamp_buffer_ns, min_timestamp_ns, receipts_limit
        )

        expected: ReceiptAggregateVoucher | TapError
        try:
            expected = self._expected_rav(valid, previous_rav)
        except TapError as err:
            expected = err

        return RAVRequest(
            valid_receipts=valid,
            previous_rav=previous_rav,
            invalid_receipts=invalid,
            expected_rav=expected,
        )

    @staticmethod
    def _expected_rav(
        receipts: Sequence[ReceiptWithState], previous_rav: Optional[SignedRAV]
    ) -> ReceiptAggregateVoucher:
        if not receipts:
            raise NoValidReceiptsForRAVRequest()
        allocation_id = receipts[0].signed_receipt.message.allocation_id
        return ReceiptAggregateVoucher.aggregate_receipts(
            allocation_id,
            [receipt.signed_receipt for receipt in receipts],
            previous_rav,
        )

    async def remove_obsolete_receipts(self) -> None:
        """Delete receipts already covered by the last RAV; no-op without one.

        Raises :class:`AdapterError` if reading the RAV or deleting fails.
        """
        last_rav = await self._previous_rav()
        if last_rav is None:
            return
        with _adapter_errors():
            await self._context.remove_receipts_in_timestamp_range(
                TimestampRange(end=last_rav.message.timestamp_ns, end_inclusive=True)
            )

    async def verify_and_store_receipt(
        self, ctx: Context, signed_receipt: SignedReceipt
    ) -> None:
        """Run the checks on ``signed_receipt`` and store it.

        Raises :class:`ReceiptProcessingError` if a check rejects it and
        :class:`AdapterError` if storing fails.
        """
        received = ReceiptWithState(signed_receipt)
        try:
            await received.perform_checks(ctx, self._checks)
        except ReceiptError as err:
            raise ReceiptProcessingError(err) from err

        with _adapter_errors():
            await self._context.store_receipt(received)