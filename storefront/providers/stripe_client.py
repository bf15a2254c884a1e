"""
Payment provider clients — Stripe, bound to one tenant and one environment.

The factory resolves the tenant's EnvironmentConfig through the registry and builds a
client with the environment's own access token, falling back to the platform key for
that environment acting on the connected account. An environment that was never
connected raises EnvironmentNotConfigured instead of yielding a default client.

The Stripe SDK is synchronous; calls are pushed to a worker thread so the event loop
keeps serving other deployments.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, Callable

import stripe
from pydantic import BaseModel

from storefront.config.settings import Settings
from storefront.environments.environment_registry import EnvironmentRegistry
from storefront.promotions.errors import EnvironmentNotConfigured, ProviderError
from storefront.promotions.models import Environment
from storefront.utils.crypto import decrypt

logger = logging.getLogger(__name__)

# Currencies Stripe charges in whole units
ZERO_DECIMAL_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg",
    "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
})


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit price to the provider's integer minor units, rounding half up."""
    amount = Decimal(str(amount))
    if currency.lower() not in ZERO_DECIMAL_CURRENCIES:
        amount = amount * 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class ProviderProduct(BaseModel):
    id: str
    name: str = ""
    active: bool = True


class ProviderPrice(BaseModel):
    id: str
    product_id: str
    unit_amount: int
    currency: str


class PaymentProviderClient(ABC):
    """Operations the promotion pipeline needs from a payment environment."""

    environment: Environment

    @abstractmethod
    async def retrieve_product(self, product_id: str) -> ProviderProduct:
        ...

    @abstractmethod
    async def create_product(self, name: str, description: str, metadata: Dict[str, str],
                             idempotency_key: Optional[str] = None) -> ProviderProduct:
        ...

    @abstractmethod
    async def create_price(self, product_id: str, unit_amount: int, currency: str,
                           metadata: Dict[str, str],
                           idempotency_key: Optional[str] = None) -> ProviderPrice:
        ...


class StripeEnvironmentClient(PaymentProviderClient):

    def __init__(self, api_key: str, environment: Environment,
                 account_id: Optional[str] = None, api_version: Optional[str] = None):
        self._api_key = api_key
        self._account_id = account_id
        self._api_version = api_version
        self.environment = environment

    def _request_options(self, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        opts: Dict[str, Any] = {"api_key": self._api_key}
        if self._account_id:
            opts["stripe_account"] = self._account_id
        if self._api_version:
            opts["stripe_version"] = self._api_version
        if idempotency_key:
            opts["idempotency_key"] = idempotency_key
        return opts

    async def _call(self, operation: str, fn, *args, **params):
        try:
            return await asyncio.to_thread(fn, *args, **params)
        except stripe.StripeError as e:
            message = e.user_message or str(e)
            logger.error(f"Stripe {operation} failed in {self.environment.value}: {message}")
            raise ProviderError(message, code=e.code) from e

    async def retrieve_product(self, product_id: str) -> ProviderProduct:
        obj = await self._call("product retrieve", stripe.Product.retrieve, product_id,
                               **self._request_options())
        return ProviderProduct(id=obj["id"], name=obj.get("name") or "", active=bool(obj.get("active", True)))

    async def create_product(self, name: str, description: str, metadata: Dict[str, str],
                             idempotency_key: Optional[str] = None) -> ProviderProduct:
        params: Dict[str, Any] = {"name": name, "active": True, "metadata": metadata}
        if description:
            params["description"] = description
        obj = await self._call("product create", stripe.Product.create,
                               **params, **self._request_options(idempotency_key))
        return ProviderProduct(id=obj["id"], name=obj.get("name") or name, active=True)

    async def create_price(self, product_id: str, unit_amount: int, currency: str,
                           metadata: Dict[str, str],
                           idempotency_key: Optional[str] = None) -> ProviderPrice:
        obj = await self._call(
            "price create", stripe.Price.create,
            product=product_id, unit_amount=unit_amount, currency=currency.lower(),
            metadata=metadata, **self._request_options(idempotency_key),
        )
        return ProviderPrice(id=obj["id"], product_id=product_id,
                             unit_amount=unit_amount, currency=currency.lower())


class ProviderClientFactory:
    """Builds environment-bound clients for a tenant."""

    def __init__(self, registry: EnvironmentRegistry, settings: Settings,
                 client_builder: Optional[Callable[..., PaymentProviderClient]] = None):
        self._registry = registry
        self._settings = settings
        self._build = client_builder or StripeEnvironmentClient
        stripe.set_app_info(settings.stripe_app_name, version=settings.stripe_app_version)

    def _platform_key(self, environment: Environment) -> Optional[str]:
        if environment == Environment.PRODUCTION:
            return self._settings.stripe_production_secret_key
        return self._settings.stripe_secret_key

    async def get_client(self, tenant_id: str, environment: Environment) -> PaymentProviderClient:
        cfg = await self._registry.require_config(tenant_id, environment)
        try:
            api_key = decrypt(cfg.access_credential) if cfg.has_credentials else self._platform_key(environment)
        except ValueError:
            logger.error(f"Stored {environment.value} credential for tenant {tenant_id} cannot be decrypted")
            raise EnvironmentNotConfigured(tenant_id, environment.value, reason="credential unreadable")
        if not api_key:
            raise EnvironmentNotConfigured(tenant_id, environment.value, reason="missing credentials")
        return self._build(
            api_key=api_key, environment=environment,
            account_id=cfg.account_id, api_version=self._settings.stripe_api_version,
        )
