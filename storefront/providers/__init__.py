"""Payment provider clients — Stripe, bound per tenant and environment"""
from .stripe_client import (
    PaymentProviderClient, StripeEnvironmentClient, ProviderClientFactory,
    ProviderProduct, ProviderPrice, to_minor_units,
)

__all__ = [
    "PaymentProviderClient", "StripeEnvironmentClient", "ProviderClientFactory",
    "ProviderProduct", "ProviderPrice", "to_minor_units",
]
