"""
Log message constants for the reconciliation loop.

Recurring events are logged with these enums so that every occurrence of an
event reads the same way in the log file. Messages that carry values are
completed at the call site, e.g. `f"{StatusMessage.BILL_PENDING}: {tx_hash}"`.
"""

from .common import AutoStrEnum


class StatusMessage(AutoStrEnum):
    """Outcomes of submitting and confirming a claim."""

    BILL_SUBMITTED = "Bill submitted successfully with confirmation receipt"
    BILL_PENDING = "Bill submitted, PENDING confirmation receipt"
    BILL_CONFIRMED = "Received confirmation receipt for the billing transaction"
    BILL_NOT_WORTH_CLAIMING = "Bill isn't worth claiming"


class ProgressMessage(AutoStrEnum):
    """Stages of a tick, logged at debug level."""

    TICK_STARTED = "Reconciliation tick started"
    SETTLING_PENDING_CLAIM = "Settling previously exported claim"
    RECOVERING_EXPORT = "Recovering latest unclaimed export from billing service"
    EVALUATING_BILL = "Evaluating current bill"
    EXPORTING_BILL = "Exporting bill receipt"


class FailMessage(AutoStrEnum):
    """Failure descriptions for per-tick errors."""

    RECOVERY_FAILED = "Error fetching the last bill receipt to claim"
    CLAIM_LOST = "FATAL ERROR: Lost exported bill info pending to claim"
    SUBMIT_FAILED = "Error sending the billing transaction to the network"
    BILL_FETCH_FAILED = "Error fetching the current bill"
    NONCE_FAILED = "Error generating current timestamp for nonce"
    EXPORT_FAILED = "Error exporting the bill receipt"
    EXPORT_SIGNING_FAILED = "Internal server error occurred while signing the bill receipt"
    RECEIPT_ABANDONED = "Gave up waiting for confirmation receipt"
    TICK_FAILED = "Unexpected error during reconciliation tick"
