"""
Shared fixtures for the Storefront Promotions test suite.
"""
import asyncio
import sys
import os
import uuid
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Set env vars before any imports that read them; ENVIRONMENT=dev allows anonymous actors
os.environ["ENVIRONMENT"] = "dev"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("ENCRYPTION_KEY", "storefront-test-encryption-key")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_PRODUCTION_SECRET_KEY"] = ""

from storefront.config.settings import Settings  # noqa: E402
from storefront.db.engine import build_engine, build_session_factory, create_tables  # noqa: E402
from storefront.db.product_repository import ProductRepository  # noqa: E402
from storefront.observability.events import EventBus, DeploymentEvent  # noqa: E402
from storefront.promotions.errors import ProviderError  # noqa: E402
from storefront.promotions.models import Environment, Product  # noqa: E402
from storefront.promotions.service import build_promotion_service  # noqa: E402
from storefront.providers.stripe_client import (  # noqa: E402
    PaymentProviderClient, ProviderPrice, ProviderProduct,
)

TENANT = "tenant-acme"
OTHER_TENANT = "tenant-globex"


# ── Fake payment provider ────────────────────────────────────────

class FakeProvider:
    """In-memory stand-in for the payment provider, shared by every client it builds.

    Pass an instance as `client_builder`; it is called with the same arguments as
    StripeEnvironmentClient.
    """

    def __init__(self):
        self.products: Dict[str, Dict[str, dict]] = {"test": {}, "production": {}}
        self.prices: Dict[str, Dict[str, dict]] = {"test": {}, "production": {}}
        self.fail_on: Dict[str, Exception] = {}
        self.clients: List[dict] = []
        self.delay = 0.0

    def __call__(self, api_key: str, environment: Environment,
                 account_id: Optional[str] = None, api_version: Optional[str] = None):
        self.clients.append({"api_key": api_key, "environment": environment.value, "account_id": account_id})
        return FakeProviderClient(self, environment)

    def seed_product(self, environment: str = "test", name: str = "Pro Plan") -> str:
        product_id = f"prod_{uuid.uuid4().hex[:14]}"
        self.products[environment][product_id] = {"id": product_id, "name": name, "metadata": {}}
        return product_id


class FakeProviderClient(PaymentProviderClient):

    def __init__(self, state: FakeProvider, environment: Environment):
        self._state = state
        self.environment = environment

    async def _maybe_fail(self, operation: str) -> None:
        if self._state.delay:
            await asyncio.sleep(self._state.delay)
        error = self._state.fail_on.get(operation)
        if error is not None:
            raise error

    async def retrieve_product(self, product_id: str) -> ProviderProduct:
        await self._maybe_fail("retrieve_product")
        obj = self._state.products[self.environment.value].get(product_id)
        if obj is None:
            raise ProviderError(f"No such product: '{product_id}'", code="resource_missing")
        return ProviderProduct(id=obj["id"], name=obj["name"])

    async def create_product(self, name, description, metadata, idempotency_key=None) -> ProviderProduct:
        await self._maybe_fail("create_product")
        product_id = f"prod_{uuid.uuid4().hex[:14]}"
        self._state.products[self.environment.value][product_id] = {
            "id": product_id, "name": name, "description": description, "metadata": dict(metadata),
        }
        return ProviderProduct(id=product_id, name=name)

    async def create_price(self, product_id, unit_amount, currency, metadata, idempotency_key=None) -> ProviderPrice:
        await self._maybe_fail("create_price")
        price_id = f"price_{uuid.uuid4().hex[:14]}"
        self._state.prices[self.environment.value][price_id] = {
            "id": price_id, "product": product_id, "unit_amount": unit_amount,
            "currency": currency, "metadata": dict(metadata),
        }
        return ProviderPrice(id=price_id, product_id=product_id, unit_amount=unit_amount, currency=currency)


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def test_settings():
    return Settings(ENVIRONMENT="dev", SCHEDULER_ENABLED=False, SCHEDULER_POLL_SECONDS=1)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh file-backed SQLite database with all tables."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'promotions.db'}")
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def recorded_events():
    return []


@pytest.fixture
def event_bus(recorded_events):
    bus = EventBus()

    async def _record(event: DeploymentEvent) -> None:
        recorded_events.append(event)

    bus.register_handler(_record)
    return bus


@pytest.fixture
def service(session_factory, test_settings, fake_provider, event_bus):
    """PromotionService over the test database and the fake provider."""
    return build_promotion_service(session_factory, test_settings,
                                   client_builder=fake_provider, events=event_bus)


@pytest.fixture
def product_repo(session_factory):
    return ProductRepository(session_factory)


async def connect_environments(service, tenant_id: str = TENANT, production: bool = True) -> None:
    """Connect the test environment, and production unless told otherwise."""
    await service.upsert_environment_config(
        tenant_id, Environment.TEST, account_id="acct_test_123",
        access_token="sk_test_abc", is_active=True, actor="setup",
    )
    if production:
        await service.upsert_environment_config(
            tenant_id, Environment.PRODUCTION, account_id="acct_live_123",
            access_token="sk_live_abc", is_active=True, actor="setup",
        )


async def seed_product(product_repo, fake_provider, product_id: str = "prod-pro-plan",
                       tenant_id: str = TENANT, **overrides) -> Product:
    """Save a deployable product whose test-environment object exists in the fake provider."""
    fields = dict(
        product_id=product_id, tenant_id=tenant_id, environment=Environment.TEST,
        name="Pro Plan", description="Monthly pro subscription",
        price=Decimal("19.99"), currency="usd",
        stripe_test_product_id=fake_provider.seed_product("test"),
        stripe_test_price_id="price_test_123",
    )
    fields.update(overrides)
    return await product_repo.save(Product(**fields))


@pytest_asyncio.fixture
async def ready(service, product_repo, fake_provider):
    """Both environments connected and one valid product. Returns the product."""
    await connect_environments(service)
    return await seed_product(product_repo, fake_provider)
