"""
HTTP client for the billing service.

The billing service meters usage and signs claims. This module exposes the
three calls the reconciliation loop needs:

- `fetch_current_bill()`: `GET /billing/inspect`, the outstanding bill as
  `{transfer_id: amount}`.
- `fetch_export()`: `POST /billing/export`, asks the service to sign a claim
  over a set of transfer ids under a fresh nonce.
- `fetch_latest_unclaimed_export()`: `GET /billing/latest`, the most recent
  export that has not been claimed yet, used to recover a claim this process
  no longer holds.

Error mapping:
- Connection and timeout failures raise `ServiceUnreachable`.
- Bodies that are not the expected JSON shape raise `MalformedResponse`.
- Status codes outside each route's contract raise `ServiceError`.

None of these methods retry; wrapping them in a `RetryPolicy` is the caller's
decision, since an export has side effects on the service.
"""

import logging
from typing import Any, Dict, Iterable, Optional

import httpx

from .lib.enums.message import FailMessage
from .lib.errors.app_error import MalformedResponse, ServiceError, ServiceUnreachable
from .models import BillReceipt

logger = logging.getLogger(__name__)

INSPECT_PATH = "/billing/inspect"
EXPORT_PATH = "/billing/export"
LATEST_PATH = "/billing/latest"

DEFAULT_TIMEOUT = 10.0


class BillingService:
    """
    Async client for a single billing service instance.

    Attributes:
        base_url: Service root, e.g. `http://127.0.0.1:8000`.
        client: The underlying `httpx.AsyncClient`. Created (and owned) by the
            instance unless one is passed in.
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "BillingService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, self.base_url + path, **kwargs)
        except httpx.TransportError as e:
            raise ServiceUnreachable(
                f"Failed to connect to the billing server at {self.base_url}: {e}",
                context={"path": path},
            ) from e

    @staticmethod
    def _json(res: httpx.Response) -> Any:
        try:
            return res.json()
        except ValueError as e:
            raise MalformedResponse(
                "Failed to parse the response into json body",
                context={"status": res.status_code, "body": res.text[:400]},
            ) from e

    async def fetch_current_bill(self) -> Dict[str, int]:
        """
        Fetch the bill currently owed.

        Returns:
            Mapping of transfer id to outstanding amount.

        Raises:
            ServiceUnreachable: The service could not be reached.
            MalformedResponse: The body is not `{"bill": {str: non-negative int}}`.
            ServiceError: The service answered with a non-2xx status.
        """
        res = await self._request("GET", INSPECT_PATH)
        if not res.is_success:
            raise ServiceError(
                f"Billing inspect failed: {res.text[:400]}", status=res.status_code
            )

        body = self._json(res)
        bill = body.get("bill") if isinstance(body, dict) else None
        if not isinstance(bill, dict):
            raise MalformedResponse(
                "Inspect body has no bill object", context={"body": res.text[:400]}
            )

        out: Dict[str, int] = {}
        for transfer_id, amount in bill.items():
            # bool is an int subclass; reject it explicitly
            if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
                raise MalformedResponse(
                    "Invalid bill amount",
                    context={"transfer_id": transfer_id, "amount": amount},
                )
            out[transfer_id] = amount
        return out

    async def fetch_export(
        self, nonce: bytes, transfer_ids: Iterable[str]
    ) -> Optional[BillReceipt]:
        """
        Ask the service to sign a claim over `transfer_ids`.

        Args:
            nonce: 32-byte export nonce, sent hex-encoded without `0x`.
            transfer_ids: Transfer ids to include in the claim.

        Returns:
            The signed receipt, or `None` when the service hit an internal
            error while signing (try again on a later tick).

        Raises:
            ServiceUnreachable: The service could not be reached.
            MalformedResponse: A 2xx body could not be decoded.
            ServiceError: Any other non-success status. Not safe to retry
                blindly.
        """
        ids = list(transfer_ids)
        res = await self._request(
            "POST", EXPORT_PATH, json={"nonce": nonce.hex(), "tx_hashes": ids}
        )

        if res.is_success:
            return BillReceipt.from_json(self._json(res))

        if res.is_server_error:
            logger.error(
                f"{FailMessage.EXPORT_SIGNING_FAILED} for nonce: {nonce.hex()} "
                f"and tx_hashes: {ids}"
            )
            return None

        raise ServiceError(
            f"Error occurred while exporting the bill receipt: {res.text[:400]}",
            status=res.status_code,
            context={"nonce": nonce.hex()},
        )

    async def fetch_latest_unclaimed_export(self) -> Optional[BillReceipt]:
        """
        Fetch the latest export that has not been claimed on-chain yet.

        Returns:
            The receipt, or `None` when the service has nothing outstanding
            (any 4xx status).

        Raises:
            ServiceUnreachable, MalformedResponse, ServiceError (5xx).
        """
        res = await self._request("GET", LATEST_PATH)

        if res.is_success:
            return BillReceipt.from_json(self._json(res))

        if res.is_client_error:
            return None

        raise ServiceError(
            f"Internal Server error occurred while fetching the latest bill receipt: "
            f"{res.text[:400]}",
            status=res.status_code,
        )
