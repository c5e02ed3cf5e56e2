"""HTTP client for the storefront's read-only payment status endpoint."""
from typing import Optional

import httpx
import structlog
from pydantic import ValidationError

from storefront_payments.config import Settings, get_settings
from storefront_payments.domain import NetworkError, PaymentNotFoundError, PaymentStatusView

logger = structlog.get_logger(__name__)


class PaymentStatusClient:
    """
    Queries ``GET /payments/{payment_number}/status``.

    Every failure other than an unknown payment is reported as a
    ``NetworkError`` so the poller keeps its last known state and retries
    on the next tick.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._http = httpx.AsyncClient(
            base_url=base_url or self.settings.status_api_url,
            timeout=self.settings.http_timeout_seconds,
            transport=transport,
        )

    async def get_status(self, payment_number: str) -> PaymentStatusView:
        """
        Fetch the current status of a payment.

        Raises:
            PaymentNotFoundError: If the server does not know the payment
            NetworkError: On transport failures and unexpected responses
        """
        try:
            response = await self._http.get(f"/payments/{payment_number}/status")
        except httpx.TransportError as e:
            logger.warning("status_query_transport_error", payment_number=payment_number, error=str(e))
            raise NetworkError(
                f"Status query failed: {e}", operation="get_status", original_error=e
            ) from e

        if response.status_code == 404:
            raise PaymentNotFoundError(payment_number)

        if response.is_error:
            logger.warning(
                "status_query_error",
                payment_number=payment_number,
                status_code=response.status_code,
            )
            raise NetworkError(
                f"Status query returned {response.status_code}", operation="get_status"
            )

        try:
            return PaymentStatusView.model_validate_json(response.content)
        except ValidationError as e:
            raise NetworkError(
                "Status query returned an unusable payload",
                operation="get_status",
                original_error=e,
            ) from e

    async def aclose(self) -> None:
        await self._http.aclose()
