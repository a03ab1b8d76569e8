"""
Bill reconciliation state machine.

This module defines `ReconciliationPipeline`, the decision engine run once per
tick. Given the current `ProcessState` it decides whether to:

1) finish settling a claim that was exported earlier but never submitted
   (the settle-first rule),
2) evaluate the current bill and, if claiming it is profitable, export and
   submit a new claim,
3) or do nothing.

`run()` never mutates its input. It returns a `StepOutcome` holding the next
state, the hash of a newly broadcast transaction still awaiting confirmation
(if any) and a `StepStatus` naming where the step stopped. Per-call failures
are logged and folded into the outcome; they never escape `run()`.

The pipeline is thin. I/O is delegated to:
- `BillingService`: bill inspection and claim export.
- `SettlementLedger`: claim submission.
- `NonceGenerator`: export nonces.
- `RetryPolicy`: retries around the idempotent billing calls.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .lib.enums.message import FailMessage, ProgressMessage, StatusMessage
from .lib.errors.app_error import (
    AppError,
    ClockError,
    DataInconsistencyError,
    ServiceError,
)
from .lib.retry import RetryPolicy
from .models import BillReceipt, ProcessState, StepOutcome, StepStatus

logger = logging.getLogger(__name__)


def _log_failure(message: str, exc: Exception) -> None:
    if isinstance(exc, AppError):
        logger.log(exc.level, f"{message}: {exc.describe()}", extra={"context": exc.context})
    else:
        logger.error(f"{message}: {type(exc).__name__}: {exc}")


def select_claimable(
    bill: Dict[str, int], balance_transfer_cost: int
) -> Tuple[List[str], int]:
    """
    Pick the usage lines worth including in a claim.

    A line is claimable when its amount strictly exceeds the per-transfer cost.
    Each claimed line contributes `amount - balance_transfer_cost` to the margin.

    Returns:
        `(transfer_ids, margin)`.

    Example:
        >>> select_claimable({"tx1": 150, "tx2": 50}, 50)
        (['tx1'], 100)
    """
    transfer_ids: List[str] = []
    margin = 0
    for transfer_id, amount in bill.items():
        if amount > balance_transfer_cost:
            transfer_ids.append(transfer_id)
            margin += amount - balance_transfer_cost
    return transfer_ids, margin


class ReconciliationPipeline:
    """
    One reconciliation step per call to `run()`.

    Attributes:
        billing: `BillingService`-like object implementing `fetch_current_bill`,
            `fetch_export` and `fetch_latest_unclaimed_export`.
        ledger: `SettlementLedger`-like object implementing `submit`.
        nonces: `NonceGenerator` providing one nonce per export attempt.
        retry: Retry policy wrapped around the billing calls. Never applied to
            `ledger.submit`.
        payee: Wallet address credited by submitted claims.
        method_call_cost: Fixed cost of a `settle` call; the margin must exceed it.
        balance_transfer_cost: Per-transfer cost subtracted from each line.

    Notes:
        Types are loose (`Any`) for the collaborators so tests can pass fakes.
    """

    def __init__(
        self,
        billing: Any,
        ledger: Any,
        nonces: Any,
        retry: RetryPolicy,
        payee: str,
        method_call_cost: int,
        balance_transfer_cost: int,
    ) -> None:
        self.billing = billing
        self.ledger = ledger
        self.nonces = nonces
        self.retry = retry
        self.payee = payee
        self.method_call_cost = method_call_cost
        self.balance_transfer_cost = balance_transfer_cost

    async def run(self, state: ProcessState) -> StepOutcome:
        """
        Execute one reconciliation step.

        High-level steps:
            1) If a claim is pending, resolve its receipt (held in memory or
               recovered from the billing service) and submit it. Stop unless
               the submission was confirmed outright.
            2) Fetch the current bill.
            3) Keep lines above `balance_transfer_cost`; stop unless the margin
               exceeds `method_call_cost`.
            4) Export a claim under a fresh nonce and submit it.

        Args:
            state: State left by the previous tick.

        Returns:
            The outcome of the step. `outcome.tx_hash` is set only when a
            transaction was broadcast and is still awaiting confirmation.
        """
        if state.claim_pending:
            outcome = await self._settle_pending(state)
            if outcome is not None:
                return outcome

        return await self._claim_current_bill()

    async def _settle_pending(self, state: ProcessState) -> Optional[StepOutcome]:
        """Apply the settle-first rule. `None` means carry on with a new bill."""
        receipt = state.unsettled_receipt

        if receipt is None:
            logger.info(ProgressMessage.RECOVERING_EXPORT)
            try:
                receipt = await self.retry.run(
                    self.billing.fetch_latest_unclaimed_export,
                    label="fetch_latest_unclaimed_export",
                )
            except Exception as e:
                _log_failure(FailMessage.RECOVERY_FAILED, e)
                return StepOutcome(state=state, status=StepStatus.RECOVERY_FAILED)

            if receipt is None:
                DataInconsistencyError(
                    FailMessage.CLAIM_LOST,
                    context={"claim_pending": True},
                ).log()
                return None

        logger.info(ProgressMessage.SETTLING_PENDING_CLAIM)
        outcome = await self._submit(receipt)
        if outcome.status == StepStatus.SETTLED:
            return None
        return outcome

    async def _claim_current_bill(self) -> StepOutcome:
        idle = ProcessState()

        logger.debug(ProgressMessage.EVALUATING_BILL)
        try:
            bill = await self.retry.run(
                self.billing.fetch_current_bill, label="fetch_current_bill"
            )
        except Exception as e:
            _log_failure(FailMessage.BILL_FETCH_FAILED, e)
            return StepOutcome(state=idle, status=StepStatus.BILL_UNAVAILABLE)

        transfer_ids, margin = select_claimable(bill, self.balance_transfer_cost)
        if not transfer_ids or margin <= self.method_call_cost:
            logger.info(StatusMessage.BILL_NOT_WORTH_CLAIMING)
            return StepOutcome(state=idle, status=StepStatus.NOT_WORTH_CLAIMING)

        try:
            nonce = self.nonces.next()
        except ClockError as e:
            _log_failure(FailMessage.NONCE_FAILED, e)
            return StepOutcome(state=idle, status=StepStatus.CLOCK_FAILED)

        logger.info(
            f"{ProgressMessage.EXPORTING_BILL}: {len(transfer_ids)} transfers, margin {margin}"
        )
        try:
            receipt = await self.retry.run(
                lambda: self.billing.fetch_export(nonce, transfer_ids),
                retry_if=lambda e: not isinstance(e, ServiceError),
                label="fetch_export",
            )
        except Exception as e:
            _log_failure(FailMessage.EXPORT_FAILED, e)
            return StepOutcome(state=idle, status=StepStatus.EXPORT_FAILED)

        if receipt is None:
            return StepOutcome(state=idle, status=StepStatus.EXPORT_DEFERRED)

        return await self._submit(receipt)

    async def _submit(self, receipt: BillReceipt) -> StepOutcome:
        """Submit a claim once. Submission is never retried within a tick."""
        try:
            tx_hash, tx_receipt = await self.ledger.submit(receipt, self.payee)
        except Exception as e:
            _log_failure(FailMessage.SUBMIT_FAILED, e)
            return StepOutcome(
                state=ProcessState(claim_pending=True, unsettled_receipt=receipt),
                status=StepStatus.SUBMIT_FAILED,
            )

        if tx_receipt is None:
            logger.info(f"{StatusMessage.BILL_PENDING}: {tx_hash}")
            return StepOutcome(
                state=ProcessState(),
                status=StepStatus.PENDING_CONFIRMATION,
                tx_hash=tx_hash,
            )

        logger.info(f"{StatusMessage.BILL_SUBMITTED}: {tx_hash}")
        return StepOutcome(state=ProcessState(), status=StepStatus.SETTLED)
