"""
Validation Engine — readiness checks run before a product may be promoted.

Checks run in a fixed order and every check reports, so a caller sees all issues at once:

    product_exists → product_name → product_price → provider_integration
        → target_environment_config → concurrent_deployment

Only `product_exists` short-circuits: with no product nothing else is verifiable.
validate() never raises for a failing product; store errors become a failed
`validation_error` check.
"""

import logging
from typing import Optional, List

from storefront.db.deployment_repository import DeploymentRepository
from storefront.db.product_repository import ProductRepository
from storefront.environments.environment_registry import EnvironmentRegistry
from storefront.promotions.errors import PromotionError, EnvironmentNotConfigured, ProviderError
from storefront.promotions.models import (
    CheckStatus, Environment, Product, ValidationResult, has_failures,
)
from storefront.providers.stripe_client import ProviderClientFactory

logger = logging.getLogger(__name__)


class ValidationCheck:
    PRODUCT_EXISTS = "product_exists"
    PRODUCT_NAME = "product_name"
    PRODUCT_PRICE = "product_price"
    PROVIDER_INTEGRATION = "provider_integration"
    TARGET_ENVIRONMENT_CONFIG = "target_environment_config"
    CONCURRENT_DEPLOYMENT = "concurrent_deployment"
    VALIDATION_ERROR = "validation_error"


def _passed(check: str, message: str) -> ValidationResult:
    return ValidationResult(check=check, status=CheckStatus.PASSED, message=message)


def _failed(check: str, message: str, details: Optional[dict] = None) -> ValidationResult:
    return ValidationResult(check=check, status=CheckStatus.FAILED, message=message, details=details)


class ValidationEngine:

    def __init__(self, products: ProductRepository, deployments: DeploymentRepository,
                 registry: EnvironmentRegistry, client_factory: ProviderClientFactory):
        self._products = products
        self._deployments = deployments
        self._registry = registry
        self._clients = client_factory

    async def validate(self, tenant_id: str, product_id: str,
                       exclude_deployment_id: Optional[str] = None) -> List[ValidationResult]:
        """Run the full battery for one product. `exclude_deployment_id` is the deployment
        being executed, which must not count as concurrent with itself."""
        results: List[ValidationResult] = []
        try:
            product = await self._products.get(tenant_id, product_id, Environment.TEST)
        except PromotionError as e:
            logger.error(f"Product lookup failed during validation of {product_id}: {e}")
            results.append(_failed(ValidationCheck.VALIDATION_ERROR,
                                   "Failed to complete validation", {"error": str(e)}))
            return results

        if product is None:
            results.append(_failed(ValidationCheck.PRODUCT_EXISTS,
                                   "Product not found in test environment",
                                   {"product_id": product_id}))
            logger.warning(f"Validation rejected {product_id}: not found for tenant {tenant_id}")
            return results
        results.append(_passed(ValidationCheck.PRODUCT_EXISTS, "Product found in test environment"))

        results.append(self._check_name(product))
        results.append(self._check_price(product))
        try:
            results.append(await self._check_provider_integration(tenant_id, product))
            results.append(await self._check_target_environment(tenant_id))
            results.append(await self._check_concurrent(tenant_id, product_id, exclude_deployment_id))
        except PromotionError as e:
            logger.error(f"Validation of {product_id} aborted: {e}")
            results.append(_failed(ValidationCheck.VALIDATION_ERROR,
                                   "Failed to complete validation", {"error": str(e)}))

        if has_failures(results):
            failed = [r.check for r in results if r.failed]
            logger.warning(f"Validation rejected {product_id} for tenant {tenant_id}: {failed}")
        return results

    # ── Individual checks ─────────────────────────────────────────

    @staticmethod
    def _check_name(product: Product) -> ValidationResult:
        if not product.name or not product.name.strip():
            return _failed(ValidationCheck.PRODUCT_NAME, "Product name is required")
        return _passed(ValidationCheck.PRODUCT_NAME, "Product name is valid")

    @staticmethod
    def _check_price(product: Product) -> ValidationResult:
        if product.price is None or product.price <= 0:
            return _failed(ValidationCheck.PRODUCT_PRICE, "Product price must be greater than 0")
        return _passed(ValidationCheck.PRODUCT_PRICE, "Product price is valid")

    async def _check_provider_integration(self, tenant_id: str, product: Product) -> ValidationResult:
        if not product.stripe_test_product_id:
            return _failed(ValidationCheck.PROVIDER_INTEGRATION,
                           "Product is not connected to the test payment environment")
        try:
            client = await self._clients.get_client(tenant_id, Environment.TEST)
            await client.retrieve_product(product.stripe_test_product_id)
        except (EnvironmentNotConfigured, ProviderError) as e:
            return _failed(ValidationCheck.PROVIDER_INTEGRATION,
                           "Failed to verify the test environment product",
                           {"error": str(e), "external_product_id": product.stripe_test_product_id})
        return _passed(ValidationCheck.PROVIDER_INTEGRATION, "Payment provider integration is valid")

    async def _check_target_environment(self, tenant_id: str) -> ValidationResult:
        cfg = await self._registry.get_config(tenant_id, Environment.PRODUCTION)
        if cfg is None or not cfg.is_active:
            return _failed(ValidationCheck.TARGET_ENVIRONMENT_CONFIG,
                           "Production environment is not configured or active")
        return _passed(ValidationCheck.TARGET_ENVIRONMENT_CONFIG,
                       "Production environment is properly configured")

    async def _check_concurrent(self, tenant_id: str, product_id: str,
                                exclude_deployment_id: Optional[str]) -> ValidationResult:
        active = await self._deployments.list_in_flight(tenant_id, product_id, exclude_id=exclude_deployment_id)
        if active:
            return ValidationResult(
                check=ValidationCheck.CONCURRENT_DEPLOYMENT, status=CheckStatus.WARNING,
                message="There is already an active deployment for this product",
                details={"deployment_ids": [d.deployment_id for d in active]},
            )
        return _passed(ValidationCheck.CONCURRENT_DEPLOYMENT, "No concurrent deployments found")
