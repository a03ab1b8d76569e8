"""
Client for the on-chain settlement contract.

The contract exposes a single call, `settle(bytes claimData, bytes signature)`,
sent from the agent's signing account. `SettlementLedger` builds that
transaction, signs it locally with `eth_account`, broadcasts it through an
`AsyncWeb3` provider and then briefly waits for it to reach the configured
confirmation depth.

A broadcast transaction that has not reached that depth within the wait is not
an error: `submit()` returns its hash without a receipt and the confirmation
tracker follows it up on later ticks.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple

from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from .lib.errors.app_error import ConfigError, LedgerError, SubmissionError
from .models import BillReceipt

logger = logging.getLogger(__name__)

SETTLE_ABI = [
    {
        "type": "function",
        "name": "settle",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "claimData", "type": "bytes"},
            {"name": "signature", "type": "bytes"},
        ],
        "outputs": [],
    }
]
"""Minimal ABI of the settlement contract: only `settle` is ever called."""

DEFAULT_CONFIRMATIONS = 3
DEFAULT_CONFIRMATION_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 2.0


class SettlementLedger:
    """
    Submits signed bill claims and looks up their receipts.

    Attributes:
        w3: Connected `AsyncWeb3` instance.
        account: Local signing account (the payer of the claim transaction).
        contract: Bound settlement contract.
        confirmations: Block depth at which a receipt counts as confirmed.
        confirmation_timeout: Seconds `submit()` waits for that depth.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        account: LocalAccount,
        *,
        confirmations: int = DEFAULT_CONFIRMATIONS,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.w3 = w3
        self.account = account
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=SETTLE_ABI
        )
        self.confirmations = max(1, confirmations)
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep

    @classmethod
    async def connect(
        cls, rpc_url: str, contract_address: str, account: LocalAccount, **kwargs
    ) -> "SettlementLedger":
        """
        Open an HTTP provider on `rpc_url` and bind the contract.

        Raises:
            ConfigError: If the RPC endpoint does not answer.
        """
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        if not await w3.is_connected():
            raise ConfigError(f"Error connecting to the rpc {rpc_url}")
        return cls(w3, contract_address, account, **kwargs)

    async def submit(
        self, receipt: BillReceipt, payee: str
    ) -> Tuple[str, Optional[Any]]:
        """
        Broadcast `settle(claim_data, signature)` and wait briefly for finality.

        Args:
            receipt: The exported claim. Its bytes are passed through unmodified.
            payee: Wallet credited by the claim, recorded in logs.

        Returns:
            `(tx_hash, receipt)` where `receipt` is `None` if the transaction did
            not reach the confirmation depth within `confirmation_timeout`.

        Raises:
            SubmissionError: The transaction could not be built, signed or sent.
                No transaction hash exists in that case.
        """
        sender = self.account.address
        try:
            nonce = await self.w3.eth.get_transaction_count(sender, "pending")
            tx = await self.contract.functions.settle(
                receipt.claim_data, receipt.signature
            ).build_transaction({"from": sender, "nonce": nonce})
            signed = self.account.sign_transaction(tx)
            raw_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise SubmissionError(
                f"Failed to send the billing transaction: {e}",
                context={"payee": payee, **receipt.to_json()},
            ) from e

        tx_hash = Web3.to_hex(raw_hash)
        logger.info(f"Broadcast billing transaction {tx_hash} for payee {payee}")
        return tx_hash, await self._wait_for_confirmations(tx_hash)

    async def _wait_for_confirmations(self, tx_hash: str) -> Optional[Any]:
        try:
            return await asyncio.wait_for(
                self._poll_confirmed(tx_hash), timeout=self.confirmation_timeout
            )
        except asyncio.TimeoutError:
            return None
        except Exception as e:
            # The transaction is already out; a flaky provider only delays the receipt.
            logger.warning(f"Error while waiting for confirmations of {tx_hash}: {e}")
            return None

    async def _poll_confirmed(self, tx_hash: str) -> Any:
        while True:
            try:
                tx_receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                tx_receipt = None

            if tx_receipt is not None:
                head = await self.w3.eth.block_number
                if head - tx_receipt["blockNumber"] + 1 >= self.confirmations:
                    if tx_receipt.get("status") == 0:
                        logger.warning(f"Billing transaction {tx_hash} reverted")
                    return tx_receipt

            await self._sleep(self.poll_interval)

    async def get_receipt(self, tx_hash: str) -> Optional[Any]:
        """
        Look up the receipt of a broadcast transaction.

        Returns:
            The receipt, or `None` if the transaction is not mined yet.

        Raises:
            LedgerError: Transport or RPC failure.
        """
        try:
            return await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise LedgerError(
                f"Error pulling confirmation receipt for the billing transaction {tx_hash}: {e}",
                context={"tx_hash": tx_hash},
            ) from e
