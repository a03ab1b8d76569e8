"""
Value types exchanged between the settlement agent's components.

Everything here is immutable. The reconciliation step takes a `ProcessState`
and returns a new one inside a `StepOutcome`; nothing mutates state in place.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from eth_utils import decode_hex, encode_hex

from .lib.enums.common import AutoStrEnum
from .lib.errors.app_error import MalformedResponse


@dataclass(frozen=True)
class BillReceipt:
    """
    A signed claim exported by the billing service.

    The bytes are opaque here; they travel unmodified from the export response
    to the `settle` contract call.
    """

    claim_data: bytes
    signature: bytes

    @classmethod
    def from_json(cls, body: Any) -> "BillReceipt":
        """
        Decode the billing service's `{"bill_claim_data", "signature"}` body.

        Raises:
            MalformedResponse: If a field is missing or is not a hex string.
        """
        if not isinstance(body, Mapping):
            raise MalformedResponse(
                "Export body is not a JSON object", context={"body": repr(body)[:200]}
            )
        try:
            claim_data = decode_hex(body["bill_claim_data"])
            signature = decode_hex(body["signature"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponse(
                f"Invalid export body: {e}", context={"body": repr(body)[:200]}
            ) from e
        return cls(claim_data=bytes(claim_data), signature=bytes(signature))

    def to_json(self) -> dict:
        return {
            "bill_claim_data": encode_hex(self.claim_data),
            "signature": encode_hex(self.signature),
        }


@dataclass(frozen=True)
class ProcessState:
    """
    In-memory reconciliation state carried from one tick to the next.

    Attributes:
        claim_pending: A claim was exported and has not been submitted yet.
        unsettled_receipt: The exported claim, when this process still holds
            it. Only ever set while `claim_pending` is true.
    """

    claim_pending: bool = False
    unsettled_receipt: Optional[BillReceipt] = None

    def __post_init__(self) -> None:
        if self.unsettled_receipt is not None and not self.claim_pending:
            raise ValueError("unsettled_receipt requires claim_pending")


class StepStatus(AutoStrEnum):
    """Why a reconciliation step stopped where it did."""

    RECOVERY_FAILED = "recovery_failed"
    SUBMIT_FAILED = "submit_failed"
    PENDING_CONFIRMATION = "pending_confirmation"
    SETTLED = "settled"
    BILL_UNAVAILABLE = "bill_unavailable"
    NOT_WORTH_CLAIMING = "not_worth_claiming"
    CLOCK_FAILED = "clock_failed"
    EXPORT_DEFERRED = "export_deferred"
    EXPORT_FAILED = "export_failed"


@dataclass(frozen=True)
class StepOutcome:
    state: ProcessState
    status: StepStatus
    tx_hash: Optional[str] = None
