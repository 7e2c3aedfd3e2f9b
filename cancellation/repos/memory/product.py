"""
Memory implementation of ProductRepository.
"""

import logging
from typing import Dict, Iterable, List, Optional

from cancellation.domain import Product, ProductStatus
from cancellation.repositories import ProductRepository

logger = logging.getLogger(__name__)


class MemoryProductRepository(ProductRepository):
    def __init__(self, products: Optional[Iterable[Product]] = None) -> None:
        logger.debug("Initializing MemoryProductRepository")
        self._products: Dict[str, Product] = {
            p.id: p for p in products or []
        }

    async def find_by_id(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    async def find_by_ids(self, product_ids: List[str]) -> List[Product]:
        return [
            self._products[pid] for pid in product_ids if pid in self._products
        ]

    async def update_status(
        self, product_id: str, status: ProductStatus
    ) -> Optional[Product]:
        product = self._products.get(product_id)
        if product is None:
            logger.warning(
                "MemoryProductRepository: Cannot update unknown product",
                extra={"product_id": product_id},
            )
            return None
        updated = product.model_copy(update={"status": status})
        self._products[product_id] = updated
        logger.info(
            "MemoryProductRepository: Product status updated",
            extra={
                "product_id": product_id,
                "from_status": product.status.value,
                "to_status": status.value,
            },
        )
        return updated

    async def save(self, product: Product) -> None:
        """Store or replace a product. Not part of the protocol."""
        self._products[product.id] = product
