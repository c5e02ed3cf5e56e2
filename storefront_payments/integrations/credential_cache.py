"""
Cache-aside store for the gateway's short-lived bearer token.

The token is looked up in the key-value store first; on a miss the gateway's
auth endpoint is called with the terminal id and the long-lived app secret,
and the answer is written back with a TTL no longer than the token's own
lifetime. The cache is an explicit object so several gateway configurations
can coexist in one process.
"""
import asyncio
import time
from typing import Callable, Optional

import httpx
import structlog
from pydantic import ValidationError

from storefront_payments.config import Settings, get_settings
from storefront_payments.domain import AuthError, Credential, NetworkError
from storefront_payments.monitoring.metrics import metrics

from .kv_store import KeyValueStore
from .responses import describe_error_body, parse_error_body

logger = structlog.get_logger(__name__)

AUTH_PATH = "ecommerce/auth/create"


class CredentialCache:
    """
    Hands out gateway access tokens, fetching a new one only when needed.

    Concurrent misses inside one process are coalesced behind a lock; across
    processes several callers may fetch at once, which is harmless because the
    auth endpoint is idempotent and the entry is overwritten, never mutated.
    """

    def __init__(
        self,
        kv_store: KeyValueStore,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize credential cache.

        Args:
            kv_store: Store holding the serialized credential
            settings: Optional settings (uses config if not provided)
            transport: Optional httpx transport, used by tests to fake the gateway
            clock: Source of unix time, used for expiry checks
        """
        self.settings = settings or get_settings()
        self.kv_store = kv_store
        self.clock = clock
        self.cache_key = f"bonum_access_token:{self.settings.bonum_terminal_id}"
        self._lock = asyncio.Lock()
        self._http = httpx.AsyncClient(
            base_url=self.settings.bonum_url,
            timeout=self.settings.http_timeout_seconds,
            transport=transport,
        )

    async def _read_cached(self) -> Optional[Credential]:
        raw = await self.kv_store.get(self.cache_key)
        if not raw:
            return None
        try:
            credential = Credential.model_validate_json(raw)
        except ValidationError:
            logger.warning("credential_cache_corrupt_entry", cache_key=self.cache_key)
            return None
        if credential.is_expired(self.clock()):
            return None
        return credential

    async def get_token(self, force_refresh: bool = False) -> str:
        """
        Return a valid access token.

        Args:
            force_refresh: Skip the cache and fetch a new token

        Returns:
            str: Bearer token

        Raises:
            AuthError: If the gateway rejects the credentials
            NetworkError: If the auth endpoint cannot be reached
        """
        if not force_refresh:
            credential = await self._read_cached()
            if credential is not None:
                metrics.record_credential_lookup("hit")
                return credential.access_token

        async with self._lock:
            # Another coroutine may have refreshed while we waited.
            if not force_refresh:
                credential = await self._read_cached()
                if credential is not None:
                    metrics.record_credential_lookup("hit")
                    return credential.access_token

            metrics.record_credential_lookup("forced" if force_refresh else "miss")
            credential, expires_in = await self._fetch_credential()
            ttl = self._cache_ttl(expires_in)
            await self.kv_store.put(
                self.cache_key, credential.model_dump_json(), expiration_ttl=ttl
            )
            logger.info("credential_cached", cache_key=self.cache_key, ttl_seconds=ttl)
            return credential.access_token

    async def invalidate(self) -> None:
        """Drop the cached token so the next call fetches a new one."""
        await self.kv_store.delete(self.cache_key)
        logger.info("credential_invalidated", cache_key=self.cache_key)

    async def auth_hook(self, request: httpx.Request) -> None:
        """httpx request hook that attaches the bearer token to outbound calls."""
        token = await self.get_token()
        request.headers["Authorization"] = f"Bearer {token}"

    def _cache_ttl(self, expires_in: int) -> int:
        margin = self.settings.credential_ttl_margin_seconds
        if expires_in > margin:
            return expires_in - margin
        return expires_in

    async def _fetch_credential(self) -> tuple[Credential, int]:
        headers = {
            "Content-Type": "application/json",
            "X-TERMINAL-ID": self.settings.bonum_terminal_id,
            "Authorization": f"AppSecret {self.settings.bonum_app_secret}",
        }
        start_time = time.monotonic()

        try:
            response = await self._http.get(AUTH_PATH, headers=headers)
        except httpx.TransportError as e:
            metrics.record_gateway_error("network")
            logger.error("gateway_auth_transport_error", error=str(e))
            raise NetworkError(
                f"Gateway auth request failed: {e}", operation="auth", original_error=e
            ) from e

        duration = time.monotonic() - start_time
        metrics.record_gateway_call("auth", str(response.status_code), duration)

        if response.is_error:
            body = parse_error_body(response)
            metrics.record_gateway_error("auth")
            logger.error(
                "gateway_auth_error",
                status_code=response.status_code,
                response_body=body,
            )
            raise AuthError(
                f"Gateway authentication failed: {response.status_code} - "
                f"{describe_error_body(body)}",
                status_code=response.status_code,
                body=body,
            )

        try:
            payload = response.json()
            access_token = str(payload["accessToken"])
            expires_in = int(payload["expiresIn"])
        except (ValueError, KeyError, TypeError) as e:
            metrics.record_gateway_error("auth")
            logger.error("gateway_auth_malformed_response", error=str(e))
            raise AuthError(
                f"Gateway auth returned an unusable payload: {e}",
                status_code=response.status_code,
                body=response.text[:300],
            ) from e

        if expires_in <= 0:
            raise AuthError(
                f"Gateway auth returned non-positive expiresIn: {expires_in}",
                status_code=response.status_code,
                body=payload,
            )

        credential = Credential(
            access_token=access_token,
            expires_at=self.clock() + expires_in,
        )
        logger.info("gateway_auth_succeeded", expires_in=expires_in, duration_seconds=duration)
        return credential, expires_in

    async def aclose(self) -> None:
        await self._http.aclose()
