"""
Service wiring for the API.

Each service is built once per process on first use. Tests replace them
through ``app.dependency_overrides``.
"""
from functools import lru_cache
from typing import Optional

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from storefront_payments.config import Settings, get_settings
from storefront_payments.core.checkout import CheckoutService
from storefront_payments.core.orders import OrderRepository
from storefront_payments.core.payment_store import PaymentRecordStore
from storefront_payments.integrations.bonum_client import BonumClient
from storefront_payments.integrations.credential_cache import CredentialCache
from storefront_payments.integrations.kv_store import RedisKeyValueStore
from storefront_payments.integrations.webhook_signature import (
    SIGNATURE_HEADER,
    WebhookSignatureError,
    verify_signature,
)
from storefront_payments.monitoring.health import HealthCheck
from storefront_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@lru_cache()
def get_kv_store() -> RedisKeyValueStore:
    return RedisKeyValueStore(redis_url=get_settings().redis_url)


@lru_cache()
def get_credential_cache() -> CredentialCache:
    return CredentialCache(get_kv_store(), settings=get_settings())


@lru_cache()
def get_bonum_client() -> BonumClient:
    return BonumClient(get_credential_cache(), settings=get_settings())


@lru_cache()
def get_payment_store() -> PaymentRecordStore:
    return PaymentRecordStore()


@lru_cache()
def get_order_repository() -> OrderRepository:
    return OrderRepository()


@lru_cache()
def get_checkout_service() -> CheckoutService:
    return CheckoutService(
        gateway=get_bonum_client(),
        kv_store=get_kv_store(),
        store=get_payment_store(),
        settings=get_settings(),
    )


@lru_cache()
def get_health_check() -> HealthCheck:
    return HealthCheck(kv_store=get_kv_store())


async def verify_bonum_signature(
    request: Request,
    signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject webhook calls not signed with the shared webhook secret."""
    body = await request.body()
    try:
        verify_signature(body, signature, settings.bonum_webhook_secret)
    except WebhookSignatureError as e:
        metrics.record_webhook("rejected")
        logger.warning("api_webhook_rejected", error=str(e), path=request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))


async def close_services() -> None:
    """Close outbound clients that were actually created."""
    if get_bonum_client.cache_info().currsize:
        await get_bonum_client().aclose()
    if get_credential_cache.cache_info().currsize:
        await get_credential_cache().aclose()
    if get_kv_store.cache_info().currsize:
        await get_kv_store().close()
    for factory in (
        get_kv_store,
        get_credential_cache,
        get_bonum_client,
        get_order_repository,
        get_checkout_service,
        get_health_check,
    ):
        factory.cache_clear()
