"""Tests for tick ordering and the scheduler's error boundary."""

import asyncio

import pytest

from settler.lib.enums.message import StatusMessage
from settler.lib.errors.app_error import SubmissionError
from settler.models import ProcessState, StepOutcome, StepStatus
from settler.pipeline import ReconciliationPipeline
from settler.scheduler import ReconciliationScheduler
from settler.tracker import ConfirmationTracker

from conftest import PAYEE, FakeBilling, FakeLedger


def build(billing, ledger, nonces, retry, interval=0):
    pipeline = ReconciliationPipeline(
        billing=billing,
        ledger=ledger,
        nonces=nonces,
        retry=retry,
        payee=PAYEE,
        method_call_cost=80,
        balance_transfer_cost=50,
    )
    tracker = ConfirmationTracker(ledger)
    return ReconciliationScheduler(pipeline, tracker, interval=interval)


class TestTick:
    @pytest.mark.asyncio
    async def test_pending_hash_tracked_then_confirmed(
        self, receipt, nonces, retry, caplog
    ):
        billing = FakeBilling(bill={"tx1": 150}, exports=[receipt])
        ledger = FakeLedger(submissions=[("0xfeed", None)])
        scheduler = build(billing, ledger, nonces, retry)

        state = await scheduler.tick(ProcessState())
        assert scheduler.tracker.pending == ["0xfeed"]

        ledger.receipts["0xfeed"] = [{"status": 1, "blockNumber": 9}]
        billing.bill = {}
        with caplog.at_level("INFO"):
            await scheduler.tick(state)
        assert len(scheduler.tracker) == 0
        assert any(
            r.getMessage().startswith(f"{StatusMessage.BILL_CONFIRMED} 0xfeed")
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_sweep_runs_before_step(self, nonces, retry):
        order = []

        class OrderedLedger(FakeLedger):
            async def get_receipt(self, tx_hash):
                order.append("sweep")
                return None

        class OrderedBilling(FakeBilling):
            async def fetch_current_bill(self):
                order.append("step")
                return {}

        scheduler = build(OrderedBilling(), OrderedLedger(), nonces, retry)
        scheduler.tracker.add("0xa")
        await scheduler.tick(ProcessState())
        assert order == ["sweep", "step"]

    @pytest.mark.asyncio
    async def test_unsettled_claim_is_retried_next_tick(self, receipt, nonces, retry):
        billing = FakeBilling(bill={"tx1": 150}, exports=[receipt])
        ledger = FakeLedger(submissions=[SubmissionError("nope"), ("0x2", None)])
        scheduler = build(billing, ledger, nonces, retry)

        state = await scheduler.tick(ProcessState())
        assert state.unsettled_receipt == receipt
        state = await scheduler.tick(state)

        assert len(billing.export_calls) == 1
        assert [r for r, _ in ledger.submitted] == [receipt, receipt]
        assert state == ProcessState()
        assert scheduler.tracker.pending == ["0x2"]

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_previous_state(self, receipt, nonces, retry):
        class ExplodingPipeline:
            async def run(self, state):
                raise RuntimeError("boom")

        scheduler = ReconciliationScheduler(
            ExplodingPipeline(), ConfirmationTracker(FakeLedger()), interval=0
        )
        state = ProcessState(claim_pending=True, unsettled_receipt=receipt)
        assert await scheduler.tick(state) is state


class TestRun:
    @pytest.mark.asyncio
    async def test_runs_requested_number_of_ticks(self, nonces, retry):
        billing = FakeBilling(bill={})
        scheduler = build(billing, FakeLedger(), nonces, retry)
        final = await scheduler.run(max_ticks=3)
        assert scheduler.ticks == 3
        assert billing.bill_calls == 3
        assert final == ProcessState()

    @pytest.mark.asyncio
    async def test_stop_ends_loop_during_sleep(self, nonces, retry):
        billing = FakeBilling(bill={})
        scheduler = build(billing, FakeLedger(), nonces, retry, interval=3600)

        task = asyncio.create_task(scheduler.run())
        await asyncio.sleep(0.05)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert scheduler.ticks == 1

    @pytest.mark.asyncio
    async def test_state_threads_between_ticks(self, receipt, nonces, retry):
        class RecordingPipeline:
            def __init__(self):
                self.seen = []

            async def run(self, state):
                self.seen.append(state)
                return StepOutcome(
                    state=ProcessState(claim_pending=True, unsettled_receipt=receipt),
                    status=StepStatus.SUBMIT_FAILED,
                )

        pipeline = RecordingPipeline()
        scheduler = ReconciliationScheduler(
            pipeline, ConfirmationTracker(FakeLedger()), interval=0
        )
        await scheduler.run(max_ticks=2)
        assert pipeline.seen[0] == ProcessState()
        assert pipeline.seen[1].unsettled_receipt == receipt

    @pytest.mark.asyncio
    async def test_slow_tick_starts_next_tick_without_overlap(self, monkeypatch):
        loop = asyncio.get_running_loop()

        class SlowPipeline:
            def __init__(self):
                self.spans = []

            async def run(self, state):
                started = loop.time()
                await asyncio.sleep(0.05)
                self.spans.append((started, loop.time()))
                return StepOutcome(state=state, status=StepStatus.NOT_WORTH_CLAIMING)

        timeouts = []
        real_wait_for = asyncio.wait_for

        async def recording_wait_for(aw, timeout):
            timeouts.append(timeout)
            return await real_wait_for(aw, timeout)

        monkeypatch.setattr("settler.scheduler.asyncio.wait_for", recording_wait_for)

        pipeline = SlowPipeline()
        scheduler = ReconciliationScheduler(
            pipeline, ConfirmationTracker(FakeLedger()), interval=0.01
        )
        await scheduler.run(max_ticks=3)

        assert timeouts == [0.0, 0.0]
        for (_, previous_end), (next_start, _) in zip(pipeline.spans, pipeline.spans[1:]):
            assert next_start >= previous_end
