"""
Gateway client for invoice creation.

Implements:
- Precondition checks before anything leaves the process
- Bearer token injection through the credential cache's request hook
- Error classification into AuthError / ProviderError / NetworkError
- A single token refresh when the gateway rejects a cached token
"""
import time
from typing import Any, Dict, Optional

import httpx
import structlog
from pydantic import ValidationError

from storefront_payments.config import Settings, get_settings
from storefront_payments.domain import (
    Invoice,
    InvoiceResult,
    InvoiceValidationError,
    NetworkError,
    ProviderError,
)
from storefront_payments.monitoring.metrics import metrics

from .credential_cache import CredentialCache
from .responses import describe_error_body, parse_error_body

logger = structlog.get_logger(__name__)

INVOICES_PATH = "ecommerce/invoices"


class BonumClient:
    """
    Creates payment invoices on the gateway.

    The client performs no implicit retries on failures; retry policy belongs
    to the caller. The only replay is the one-off token refresh on 401.
    """

    def __init__(
        self,
        credential_cache: CredentialCache,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize gateway client.

        Args:
            credential_cache: Source of bearer tokens, hooked into every request
            settings: Optional settings (uses config if not provided)
            transport: Optional httpx transport, used by tests to fake the gateway
        """
        self.settings = settings or get_settings()
        self.credential_cache = credential_cache
        self._http = httpx.AsyncClient(
            base_url=self.settings.bonum_url,
            timeout=self.settings.http_timeout_seconds,
            transport=transport,
            event_hooks={"request": [credential_cache.auth_hook]},
        )

    def callback_url(self, transaction_id: str) -> str:
        """Storefront page the gateway sends the customer back to."""
        return f"{self.settings.storefront_url}/payment/success/{transaction_id}"

    @staticmethod
    def validate_invoice(invoice: Invoice) -> None:
        """
        Check invoice preconditions.

        Raises:
            InvoiceValidationError: If the invoice must not be sent
        """
        if not invoice.transaction_id:
            raise InvoiceValidationError("Transaction ID is required")

        if invoice.total_amount <= 0:
            raise InvoiceValidationError("Total amount must be positive")

        if not invoice.line_items:
            raise InvoiceValidationError("Invoice must contain at least one line item")

        for item in invoice.line_items:
            if item.quantity <= 0:
                raise InvoiceValidationError(f"Quantity must be positive for '{item.title}'")
            if item.unit_amount < 0:
                raise InvoiceValidationError(f"Unit amount must not be negative for '{item.title}'")

        items_total = sum(item.unit_amount * item.quantity for item in invoice.line_items)
        if invoice.total_amount != items_total:
            raise InvoiceValidationError(
                f"Total amount {invoice.total_amount} does not match line items ({items_total})"
            )

    def build_payload(self, invoice: Invoice) -> Dict[str, Any]:
        return {
            "transactionId": invoice.transaction_id,
            "amount": invoice.total_amount,
            "expiresIn": self.settings.invoice_expires_in,
            "callback": self.callback_url(invoice.transaction_id),
            "items": [item.to_gateway_payload() for item in invoice.line_items],
        }

    @staticmethod
    def summarize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of the request body safe to log: line items reduced to a count."""
        return {**payload, "items": f"[{len(payload.get('items', []))} items]"}

    async def create_invoice(self, invoice: Invoice) -> InvoiceResult:
        """
        Create a remote invoice for one payment attempt.

        Args:
            invoice: Invoice to send

        Returns:
            InvoiceResult: Gateway invoice id and the checkout link

        Raises:
            InvoiceValidationError: If preconditions fail (nothing is sent)
            AuthError: If no access token could be obtained
            ProviderError: If the gateway rejects the invoice
            NetworkError: If the gateway cannot be reached
        """
        self.validate_invoice(invoice)
        payload = self.build_payload(invoice)

        logger.info(
            "creating_invoice",
            transaction_id=invoice.transaction_id,
            amount=invoice.total_amount,
            item_count=len(invoice.line_items),
        )

        response = await self._post_invoice(payload)

        if response.status_code == 401:
            # One refresh per call; a second 401 falls through as a provider error
            logger.warning("invoice_token_rejected", transaction_id=invoice.transaction_id)
            await self.credential_cache.invalidate()
            await self.credential_cache.get_token(force_refresh=True)
            response = await self._post_invoice(payload)

        if response.is_error:
            body = parse_error_body(response)
            request_echo = self.summarize_payload(payload)
            metrics.record_gateway_error("provider")
            logger.error(
                "create_invoice_error",
                status_code=response.status_code,
                response_body=body,
                request_body=request_echo,
            )
            raise ProviderError(
                f"Gateway create invoice failed: {response.status_code} - "
                f"{describe_error_body(body)}",
                status_code=response.status_code,
                body=body,
                request_echo=request_echo,
            )

        try:
            result = InvoiceResult.model_validate_json(response.content)
        except ValidationError as e:
            metrics.record_gateway_error("provider")
            logger.error("create_invoice_malformed_response", error=str(e))
            raise ProviderError(
                "Gateway create invoice returned an unusable payload",
                status_code=response.status_code,
                body=response.text[:300],
                request_echo=self.summarize_payload(payload),
            ) from e

        logger.info(
            "invoice_created",
            invoice_id=result.provider_invoice_id,
            transaction_id=invoice.transaction_id,
        )
        return result

    async def _post_invoice(self, payload: Dict[str, Any]) -> httpx.Response:
        start_time = time.monotonic()
        try:
            response = await self._http.post(INVOICES_PATH, json=payload)
        except httpx.TransportError as e:
            metrics.record_gateway_error("network")
            logger.error(
                "create_invoice_transport_error",
                transaction_id=payload["transactionId"],
                error=str(e),
            )
            raise NetworkError(
                f"Gateway create invoice request failed: {e}",
                operation="create_invoice",
                original_error=e,
            ) from e

        metrics.record_gateway_call(
            "create_invoice", str(response.status_code), time.monotonic() - start_time
        )
        return response

    async def aclose(self) -> None:
        await self._http.aclose()
