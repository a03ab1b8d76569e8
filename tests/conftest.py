"""Shared fakes for the billing service and settlement ledger."""

from typing import Any, Dict, List, Optional

import pytest

from settler.lib.retry import RetryPolicy
from settler.models import BillReceipt
from settler.nonce import NonceGenerator

OWNER = "0x" + "11" * 20
PAYEE = "0x" + "22" * 20


def _resolve(value: Any) -> Any:
    if isinstance(value, BaseException):
        raise value
    return value


class FakeBilling:
    """Scripted billing service. List attributes are consumed in call order."""

    def __init__(
        self,
        bill: Optional[Dict[str, int]] = None,
        exports: Optional[List[Any]] = None,
        latest: Optional[List[Any]] = None,
    ) -> None:
        self.bill = bill if bill is not None else {}
        self.bill_errors: List[BaseException] = []
        self.exports = list(exports or [])
        self.latest = list(latest or [])
        self.bill_calls = 0
        self.export_calls: List[tuple] = []
        self.latest_calls = 0

    async def fetch_current_bill(self) -> Dict[str, int]:
        self.bill_calls += 1
        if self.bill_errors:
            raise self.bill_errors.pop(0)
        return dict(self.bill)

    async def fetch_export(self, nonce: bytes, transfer_ids) -> Optional[BillReceipt]:
        self.export_calls.append((nonce, list(transfer_ids)))
        return _resolve(self.exports.pop(0))

    async def fetch_latest_unclaimed_export(self) -> Optional[BillReceipt]:
        self.latest_calls += 1
        return _resolve(self.latest.pop(0))


class FakeLedger:
    """Scripted ledger. `submissions` holds `(tx_hash, receipt)` tuples or errors."""

    def __init__(self, submissions: Optional[List[Any]] = None) -> None:
        self.submissions = list(submissions or [])
        self.submitted: List[tuple] = []
        self.receipts: Dict[str, List[Any]] = {}
        self.receipt_calls: List[str] = []

    async def submit(self, receipt: BillReceipt, payee: str):
        self.submitted.append((receipt, payee))
        return _resolve(self.submissions.pop(0))

    async def get_receipt(self, tx_hash: str):
        self.receipt_calls.append(tx_hash)
        queue = self.receipts.get(tx_hash) or [None]
        value = queue.pop(0) if len(queue) > 1 else queue[0]
        return _resolve(value)


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def receipt() -> BillReceipt:
    return BillReceipt(claim_data=b"\x01\x02claim", signature=b"\xaa" * 65)


@pytest.fixture
def retry() -> RetryPolicy:
    return RetryPolicy(attempts=2, base_delay=0.0, sleep=no_sleep)


@pytest.fixture
def nonces() -> NonceGenerator:
    ticks = iter(range(1_700_000_000, 1_800_000_000))
    return NonceGenerator(OWNER, 7, clock=lambda: next(ticks))
