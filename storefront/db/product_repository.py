"""
ProductRepository — the Product Store collaborator.
Reads product attributes by id and environment tag, and writes back production identifiers
and the last-promoted timestamp after a successful promotion.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select

from storefront.db.models import ProductModel
from storefront.db.store_base import SessionStore
from storefront.promotions.errors import ProductNotFound
from storefront.promotions.models import Environment, Product, utcnow

logger = logging.getLogger(__name__)


def _row_to_product(row: ProductModel) -> Product:
    return Product(
        product_id=row.id,
        tenant_id=row.tenant_id,
        environment=Environment(row.environment),
        name=row.name or "",
        description=row.description or "",
        price=Decimal(str(row.price)) if row.price is not None else Decimal("0"),
        currency=(row.currency or "usd").lower(),
        stripe_test_product_id=row.stripe_test_product_id,
        stripe_test_price_id=row.stripe_test_price_id,
        stripe_production_product_id=row.stripe_production_product_id,
        stripe_production_price_id=row.stripe_production_price_id,
        last_deployed_to_production=row.last_deployed_to_production,
        updated_at=row.updated_at,
    )


class ProductRepository(SessionStore):

    async def get(self, tenant_id: str, product_id: str,
                  environment: Environment = Environment.TEST) -> Optional[Product]:
        """Fetch a tenant's product as tagged for the given environment."""
        async with self._session("load product") as session:
            row = (await session.execute(
                select(ProductModel).where(
                    ProductModel.id == product_id,
                    ProductModel.tenant_id == tenant_id,
                    ProductModel.environment == environment.value,
                )
            )).scalar_one_or_none()
            return _row_to_product(row) if row else None

    async def save(self, product: Product) -> Product:
        """Insert or replace a product row (used by seeding and tests)."""
        async with self._session("save product") as session:
            row = await session.get(ProductModel, product.product_id)
            if row is None:
                row = ProductModel(id=product.product_id, created_at=utcnow())
                session.add(row)
            row.tenant_id = product.tenant_id
            row.environment = product.environment.value
            row.name = product.name
            row.description = product.description
            row.price = product.price
            row.currency = product.currency
            row.stripe_test_product_id = product.stripe_test_product_id
            row.stripe_test_price_id = product.stripe_test_price_id
            row.stripe_production_product_id = product.stripe_production_product_id
            row.stripe_production_price_id = product.stripe_production_price_id
            row.last_deployed_to_production = product.last_deployed_to_production
            row.updated_at = utcnow()
            await session.commit()
            return _row_to_product(row)

    async def record_promotion(self, tenant_id: str, product_id: str,
                               target_product_id: str, target_price_id: str,
                               promoted_at: datetime) -> Product:
        """Attach production identifiers to the product. Last write wins."""
        async with self._session("record product promotion") as session:
            row = (await session.execute(
                select(ProductModel).where(
                    ProductModel.id == product_id, ProductModel.tenant_id == tenant_id,
                )
            )).scalar_one_or_none()
            if row is None:
                raise ProductNotFound(product_id)
            row.stripe_production_product_id = target_product_id
            row.stripe_production_price_id = target_price_id
            row.last_deployed_to_production = promoted_at
            row.updated_at = utcnow()
            await session.commit()
            logger.info(f"Product {product_id} now mapped to production {target_product_id}/{target_price_id}")
            return _row_to_product(row)
