"""
Pytest configuration and fixtures.
"""
import json
import os
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncGenerator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
    Union,
)

# Settings are read on import of the application modules
os.environ.setdefault("BONUM_URL", "https://bonum.test/api/")
os.environ.setdefault("BONUM_TERMINAL_ID", "T-1001")
os.environ.setdefault("BONUM_APP_SECRET", "app-secret-for-tests")
os.environ.setdefault("BONUM_WEBHOOK_SECRET", "webhook-secret-for-tests")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("APP_ENV", "test")

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from storefront_payments.config import Settings  # noqa: E402
from storefront_payments.database.models import Base, Order, OrderItem  # noqa: E402
from storefront_payments.domain import LineItem, OrderSnapshot  # noqa: E402
from storefront_payments.integrations.bonum_client import BonumClient  # noqa: E402
from storefront_payments.integrations.credential_cache import CredentialCache  # noqa: E402


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests spanning several layers")


class FakeClock:
    """Manually advanced unix clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryKeyValueStore:
    """KeyValueStore that honours TTLs against a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self.puts: List[Tuple[str, Optional[int]]] = []

    async def get(self, key: str) -> Optional[str]:
        entry = self.entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self.entries[key]
            return None
        return value

    async def put(self, key: str, value: str, expiration_ttl: Optional[int] = None) -> None:
        if expiration_ttl is not None and expiration_ttl <= 0:
            raise ValueError("expiration_ttl must be positive")
        expires_at = self.clock() + expiration_ttl if expiration_ttl is not None else None
        self.entries[key] = (value, expires_at)
        self.puts.append((key, expiration_ttl))

    async def delete(self, key: str) -> None:
        self.entries.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


GatewayReply = Union[httpx.Response, Exception]


class FakeGateway:
    """
    Stand-in for the payment gateway behind an ``httpx.MockTransport``.

    Queued replies are served first; otherwise auth hands out numbered
    tokens and invoice creation echoes the transaction id.
    """

    def __init__(self, expires_in: int = 3600):
        self.expires_in = expires_in
        self.requests: List[httpx.Request] = []
        self.auth_replies: List[GatewayReply] = []
        self.invoice_replies: List[GatewayReply] = []
        self.tokens_issued = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/ecommerce/auth/create"):
            if self.auth_replies:
                return self._serve(self.auth_replies.pop(0))
            self.tokens_issued += 1
            return httpx.Response(
                200,
                json={"accessToken": f"token-{self.tokens_issued}", "expiresIn": self.expires_in},
            )

        if path.endswith("/ecommerce/invoices"):
            if self.invoice_replies:
                return self._serve(self.invoice_replies.pop(0))
            transaction_id = json.loads(request.content)["transactionId"]
            return httpx.Response(
                200,
                json={
                    "invoiceId": f"inv_{transaction_id}",
                    "followUpLink": f"https://pay.example/inv_{transaction_id}",
                },
            )

        return httpx.Response(404, json={"message": "unknown path"})

    @staticmethod
    def _serve(reply: GatewayReply) -> httpx.Response:
        if isinstance(reply, Exception):
            raise reply
        return reply

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, suffix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    @property
    def auth_calls(self) -> List[httpx.Request]:
        return self.calls("/ecommerce/auth/create")

    @property
    def invoice_calls(self) -> List[httpx.Request]:
        return self.calls("/ecommerce/invoices")


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        bonum_url="https://bonum.test/api",
        bonum_terminal_id="T-1001",
        bonum_app_secret="app-secret-for-tests",
        bonum_webhook_secret="webhook-secret-for-tests",
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/15",
        storefront_url="https://shop.test/",
        status_api_url="http://test",
        app_name="storefront-payments-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def credential_cache(
    kv_store: InMemoryKeyValueStore,
    test_settings: Settings,
    gateway: FakeGateway,
    clock: FakeClock,
) -> AsyncGenerator[CredentialCache, Any]:
    cache = CredentialCache(
        kv_store, settings=test_settings, transport=gateway.transport, clock=clock
    )
    yield cache
    await cache.aclose()


@pytest_asyncio.fixture
async def bonum_client(
    credential_cache: CredentialCache,
    test_settings: Settings,
    gateway: FakeGateway,
) -> AsyncGenerator[BonumClient, Any]:
    client = BonumClient(credential_cache, settings=test_settings, transport=gateway.transport)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """In-memory SQLite database shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def sample_order() -> OrderSnapshot:
    """Order of three units at 15000 each."""
    return OrderSnapshot(
        order_id=42,
        total_amount=45000,
        line_items=(
            LineItem(
                title="Vitamin C 500mg",
                unit_amount=15000,
                quantity=3,
                image_ref="https://cdn.example/vitc.png",
                remark="Vitamin C 500mg",
            ),
        ),
    )


PlaceOrder = Callable[..., Awaitable[None]]


@pytest.fixture
def place_order(session_factory: async_sessionmaker[AsyncSession]) -> PlaceOrder:
    """Insert a stored order; defaults match ``sample_order``."""

    async def place(
        order_id: int = 42,
        total: int = 45000,
        unit_price: int = 15000,
        quantity: int = 3,
        deleted: bool = False,
    ) -> None:
        async with session_factory() as session:
            session.add(
                Order(
                    id=order_id,
                    order_number=f"ORD{order_id:05d}",
                    total=total,
                    deleted_at=datetime.now(timezone.utc) if deleted else None,
                    items=[
                        OrderItem(
                            product_name="Vitamin C 500mg",
                            unit_price=unit_price,
                            quantity=quantity,
                            image_url="https://cdn.example/vitc.png",
                        )
                    ],
                )
            )
            await session.commit()

    return place
