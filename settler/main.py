"""
Entry point for the settlement agent.

This module wires the reconciliation loop together and runs it until SIGINT or
SIGTERM:

- Settings are read from the environment (a `.env` file is loaded on import via
  `python-dotenv`) and validated by `lib.config.load_settings`.
- The signing account is loaded from `SECRET_KEY_FILE` with `eth_account`.
- `SettlementLedger` connects to `RPC_URL` and binds the billing contract.
- `BillingService`, `NonceGenerator`, `RetryPolicy`, `ReconciliationPipeline`,
  `ConfirmationTracker` and `ReconciliationScheduler` are built on top.

Configuration errors are fatal at launch. Once the loop is running, per-tick
failures are only logged.

Run with:

    >>> python -m settler.main
"""

from dotenv import load_dotenv

load_dotenv()

import asyncio
import logging
import signal
import sys
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .billing import BillingService
from .ledger import SettlementLedger
from .lib.config import Settings, load_settings
from .lib.errors.app_error import ConfigError
from .lib.retry import RetryPolicy
from .nonce import NonceGenerator
from .pipeline import ReconciliationPipeline
from .scheduler import ReconciliationScheduler
from .tracker import ConfirmationTracker

logger = logging.getLogger("settler")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(settings: Settings) -> None:
    """Log to stderr and, when `LOG_FILE` is set, append to that file too."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=settings.log_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def load_account(path: str) -> LocalAccount:
    """
    Load the signing account from a file holding a hex private key.

    Raises:
        ConfigError: If the file is unreadable or the key is invalid.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"Error reading the secret key file at path {path}: {e}")
    if not raw:
        raise ConfigError(f"Secret key file {path} is empty")
    try:
        return Account.from_key(raw if raw.startswith("0x") else "0x" + raw)
    except Exception as e:
        raise ConfigError(f"Invalid secret key provided: {type(e).__name__}")


async def build_scheduler(
    settings: Settings, billing: BillingService
) -> ReconciliationScheduler:
    """
    Build the reconciliation loop for `settings`.

    Raises:
        ConfigError: Bad key material or an unreachable RPC endpoint.
    """
    account = load_account(settings.secret_key_file)
    ledger = await SettlementLedger.connect(
        settings.rpc_url,
        settings.billing_contract_addr,
        account,
        confirmations=settings.confirmations,
        confirmation_timeout=settings.confirmation_timeout,
    )

    pipeline = ReconciliationPipeline(
        billing=billing,
        ledger=ledger,
        nonces=NonceGenerator(account.address, settings.settler_id),
        retry=RetryPolicy(
            attempts=settings.retry_attempts, base_delay=settings.retry_base_delay
        ),
        payee=settings.payee_wallet_address,
        method_call_cost=settings.method_call_cost,
        balance_transfer_cost=settings.balance_transfer_cost,
    )
    tracker = ConfirmationTracker(ledger, max_checks=settings.confirmation_max_checks)

    logger.info(
        f"Settler {settings.settler_id} signing as {account.address}, "
        f"billing {settings.billing_url}, contract {settings.billing_contract_addr}"
    )
    return ReconciliationScheduler(
        pipeline, tracker, interval=settings.billing_interval_secs
    )


async def main() -> None:
    """
    Build and run the settlement agent until a shutdown signal arrives.

    Raises:
        ConfigError: Invalid configuration, key or RPC endpoint.
    """
    settings = load_settings()
    configure_logging(settings)

    async with BillingService(
        settings.billing_url, timeout=settings.http_timeout
    ) as billing:
        scheduler = await build_scheduler(settings, billing)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.stop)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                signal.signal(sig, lambda *_: scheduler.stop())

        await scheduler.run()


def run() -> None:
    """Console-script entry point."""
    try:
        asyncio.run(main())
    except ConfigError as e:
        logging.basicConfig(format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        e.log()
        sys.exit(1)


if __name__ == "__main__":
    run()
