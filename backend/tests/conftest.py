"""
Pytest configuration and shared fixtures for backend tests.
"""

import os
import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are read once at import time, so the test environment goes first
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["SENTRY_DSN"] = ""
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-that-is-long-enough-1234")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-1234567")
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRICE_STARTER"] = "price_starter"
os.environ["STRIPE_PRICE_PROFESSIONAL"] = "price_professional"
os.environ["STRIPE_PRICE_ENTERPRISE"] = "price_enterprise"

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Optional
from uuid import uuid4

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# main must be imported before api.dependencies (routes and dependencies import each other)
from main import app

from adapters.ai.base import ProviderClient, ProviderResponse
from adapters.payments.stripe_adapter import StripeAdapter
from api.routes.auth import token_service
from api.routes.billing import get_stripe_adapter
from core.security import PasswordHasher
from infrastructure.database.connection import get_db
from infrastructure.database.models import Base, User
from infrastructure.database.models.analysis import Analysis
from services.analysis_service import normalize_website
from services.citation_checker import CitationChecker, get_citation_checker
from services.kv_store import InMemoryKeyValueStore, get_kv_store

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_PASSWORD = "TestPassword123"
WEBHOOK_SECRET = "whsec_test_secret"

# Fewer rounds keep user fixtures fast
password_hasher = PasswordHasher(rounds=4)
TEST_PASSWORD_HASH = password_hasher.hash(TEST_PASSWORD)


def auth_headers_for(user: User) -> dict:
    """Bearer header for ``user``."""
    access_token = token_service.create_access_token(
        user_id=user.id, email=user.email, role=user.role
    )
    return {"Authorization": f"Bearer {access_token}"}


class FakeProvider(ProviderClient):
    """Provider returning canned answers, recording every prompt it receives."""

    def __init__(self, name: str, answer: str = "", sources=None, fail: bool = False):
        self.name = name
        self.model = f"{name}-test-model"
        self.answer = answer
        self.sources = list(sources or [])
        self.fail = fail
        self.prompts: list[str] = []

    @property
    def configured(self) -> bool:
        return True

    async def query(self, prompt: str) -> ProviderResponse:
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError(f"{self.name} is down")
        return ProviderResponse(
            text=self.answer,
            tokens_used=1000,
            model=self.model,
            sources=self.sources,
        )


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# ============================================================================
# Service doubles
# ============================================================================


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(max_entries=1000)


@pytest.fixture
def provider_factory():
    """The fake provider class, for tests that need custom answers."""
    return FakeProvider


@pytest.fixture
def fake_providers() -> dict[str, FakeProvider]:
    """One fake per provider; openai cites example.com, the others do not."""
    return {
        "openai": FakeProvider(
            "openai",
            "For CRM tools, Example (https://example.com/crm) and https://hubspot.com are "
            "popular. Many teams also use salesforce.com.",
        ),
        "anthropic": FakeProvider(
            "anthropic",
            "Popular choices include hubspot.com and pipedrive.com for small teams.",
        ),
        "perplexity": FakeProvider(
            "perplexity",
            "Here are some options.",
            sources=[
                {"url": "https://www.zoho.com/crm", "title": "Zoho CRM"},
                "https://hubspot.com/products/crm",
            ],
        ),
    }


@pytest.fixture
def citation_checker(fake_providers) -> CitationChecker:
    return CitationChecker(fake_providers, batch_size=2)


@pytest.fixture
def stripe_requests() -> list[httpx.Request]:
    """Requests the Stripe adapter sent during a test."""
    return []


@pytest.fixture
def stripe_adapter(stripe_requests) -> StripeAdapter:
    """Stripe adapter backed by an httpx mock transport."""

    def handler(request: httpx.Request) -> httpx.Response:
        stripe_requests.append(request)
        if request.url.path.endswith("/checkout/sessions"):
            return httpx.Response(
                200,
                json={"id": "cs_test_123", "url": "https://checkout.stripe.com/c/cs_test_123"},
            )
        if "/subscriptions/" in request.url.path:
            return httpx.Response(200, json={"id": request.url.path.rsplit("/", 1)[-1]})
        return httpx.Response(404, json={"error": {"message": "Not found"}})

    return StripeAdapter(
        secret_key="sk_test_dummy",
        webhook_secret=WEBHOOK_SECRET,
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    kv_store: InMemoryKeyValueStore,
    citation_checker: CitationChecker,
    stripe_adapter: StripeAdapter,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_kv_store] = lambda: kv_store
    app.dependency_overrides[get_citation_checker] = lambda: citation_checker
    app.dependency_overrides[get_stripe_adapter] = lambda: stripe_adapter

    # Reset rate limiter state between tests to prevent cross-test 429s
    app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Users
# ============================================================================


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable:
    """Factory creating committed users."""

    async def _make_user(
        email: Optional[str] = None,
        subscription_tier: str = "free",
        subscription_status: str = "active",
        role: str = "user",
        status: str = "active",
        name: str = "Test User",
        **extra,
    ) -> User:
        user = User(
            id=str(uuid4()),
            email=email or f"user-{uuid4().hex[:8]}@example.com",
            password_hash=TEST_PASSWORD_HASH,
            name=name,
            role=role,
            status=status,
            subscription_tier=subscription_tier,
            subscription_status=subscription_status,
            **extra,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def test_user(make_user) -> User:
    """Free tier user."""
    return await make_user(email="test@example.com", name="Test User")


@pytest.fixture
def user_password() -> str:
    """Plain password of every fixture user."""
    return TEST_PASSWORD


@pytest.fixture
def headers_for() -> Callable[[User], dict]:
    """Build bearer headers for any user."""
    return auth_headers_for


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user."""
    return auth_headers_for(test_user)


@pytest.fixture
async def trial_user(make_user) -> User:
    return await make_user(
        email="trial@example.com",
        subscription_tier="trial",
        subscription_status="trialing",
        trial_ends_at=datetime.now(timezone.utc) + timedelta(days=7),
    )


@pytest.fixture
async def starter_user(make_user) -> User:
    """
    Paid Starter subscriber.

    Used for testing:
    - Live citation checks
    - Subscription cancellation
    - Webhook-driven plan changes
    """
    return await make_user(
        email="starter@example.com",
        name="Starter User",
        subscription_tier="starter",
        subscription_status="active",
        stripe_customer_id="cus_starter",
        stripe_subscription_id="sub_starter",
        stripe_price_id="price_starter",
        subscription_expires=datetime.now(timezone.utc) + timedelta(days=30),
        payment_verified=True,
    )


@pytest.fixture
async def enterprise_user(make_user) -> User:
    return await make_user(
        email="enterprise@example.com",
        name="Enterprise User",
        subscription_tier="enterprise",
        subscription_status="active",
        stripe_customer_id="cus_enterprise",
        stripe_subscription_id="sub_enterprise",
        payment_verified=True,
    )


@pytest.fixture
async def admin_user(make_user) -> User:
    return await make_user(email="admin@example.com", name="Admin User", role="admin")


@pytest.fixture
async def super_admin_user(make_user) -> User:
    return await make_user(email="root@example.com", name="Super Admin", role="super_admin")


# ============================================================================
# Analyses
# ============================================================================


@pytest.fixture
def make_analysis(db_session: AsyncSession) -> Callable:
    """Factory storing a finished analysis row with an explicit timestamp."""

    async def _make_analysis(
        user: User,
        score: int = 50,
        created_at: Optional[datetime] = None,
        website: str = "https://example.com",
        **extra,
    ) -> Analysis:
        values = dict(
            user_id=user.id,
            website=website,
            normalized_website=normalize_website(website),
            keywords=["What are the best CRM tools?"],
            providers=["openai"],
            score=score,
            metrics={},
            insights="",
            predicted_rank=5,
            category="Visible",
            recommendations=[],
            citation_rate=score,
            created_at=created_at or datetime.now(timezone.utc),
        )
        values.update(extra)
        analysis = Analysis(**values)
        db_session.add(analysis)
        await db_session.commit()
        return analysis

    return _make_analysis
