"""
Confirmation tracking for broadcast billing transactions.

`ConfirmationTracker` holds the hashes of claim transactions that were sent but
had no receipt yet when `submit()` returned. Each `sweep()` asks the ledger once
per hash:

- receipt available: the hash is dropped and logged as confirmed;
- no receipt yet, or the lookup failed: the hash stays for the next sweep.

A hash is not followed forever. After `max_checks` unsuccessful lookups it is
dropped and logged at error severity, bounding the set when a transaction was
dropped from the mempool or replaced.
"""

import logging
from typing import Any, Dict, List, Optional

from .lib.enums.message import FailMessage, StatusMessage
from .lib.errors.decorators import handle_errors

logger = logging.getLogger(__name__)


class ConfirmationTracker:
    """
    Follows broadcast claim transactions until their receipt shows up.

    Attributes:
        ledger: `SettlementLedger`-like object implementing `get_receipt`.
        max_checks: Lookups allowed per hash before it is abandoned. `None`
            follows a hash until it confirms.
    """

    def __init__(self, ledger: Any, max_checks: Optional[int] = None) -> None:
        if max_checks is not None and max_checks < 1:
            raise ValueError("max_checks must be positive or None")
        self.ledger = ledger
        self.max_checks = max_checks
        # insertion-ordered: hash -> lookups done so far
        self._checks: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._checks)

    def __contains__(self, tx_hash: str) -> bool:
        return tx_hash in self._checks

    @property
    def pending(self) -> List[str]:
        return list(self._checks)

    def add(self, tx_hash: str) -> None:
        self._checks.setdefault(tx_hash, 0)

    @handle_errors(default_return=None)
    async def _lookup(self, tx_hash: str) -> Optional[Any]:
        return await self.ledger.get_receipt(tx_hash)

    async def sweep(self) -> List[str]:
        """
        Check every pending hash once.

        Returns:
            Hashes confirmed during this sweep, in tracking order.
        """
        confirmed: List[str] = []
        for tx_hash in list(self._checks):
            receipt = await self._lookup(tx_hash)
            if receipt is not None:
                del self._checks[tx_hash]
                confirmed.append(tx_hash)
                logger.info(f"{StatusMessage.BILL_CONFIRMED} {tx_hash}: {receipt}")
                continue

            self._checks[tx_hash] += 1
            if self.max_checks is not None and self._checks[tx_hash] >= self.max_checks:
                del self._checks[tx_hash]
                logger.error(
                    f"{FailMessage.RECEIPT_ABANDONED} {tx_hash} after "
                    f"{self.max_checks} checks"
                )
        return confirmed
