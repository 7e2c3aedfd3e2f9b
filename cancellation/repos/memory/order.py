"""
Memory implementation of OrderRepository.

Orders live in a dictionary keyed by order id. Status updates replace the
stored model without awaiting in between, so they are atomic with respect
to other tasks on the same event loop.
"""

import logging
from typing import Dict, Iterable, Optional

from cancellation.domain import Order, OrderStatus, utc_now
from cancellation.repositories import OrderRepository

logger = logging.getLogger(__name__)


class MemoryOrderRepository(OrderRepository):
    """Dictionary-backed orders for tests and local runs."""

    def __init__(self, orders: Optional[Iterable[Order]] = None) -> None:
        logger.debug("Initializing MemoryOrderRepository")
        self._orders: Dict[str, Order] = {o.id: o for o in orders or []}

    async def find_by_identifier(
        self, pnr: str, email: Optional[str] = None
    ) -> Optional[Order]:
        pnr = pnr.strip().upper()
        email = email.strip().lower() if email else None
        for order in self._orders.values():
            if order.pnr != pnr:
                continue
            if email is not None and order.customer_email != email:
                continue
            return order
        logger.debug(
            "MemoryOrderRepository: Order not found",
            extra={"pnr": pnr, "with_email": email is not None},
        )
        return None

    async def find_by_id(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    async def update_status(
        self, order_id: str, status: OrderStatus
    ) -> Optional[Order]:
        order = self._orders.get(order_id)
        if order is None:
            return None
        updated = order.model_copy(
            update={"status": status, "updated_at": utc_now()}
        )
        self._orders[order_id] = updated
        logger.info(
            "MemoryOrderRepository: Order status updated",
            extra={
                "order_id": order_id,
                "from_status": order.status.value,
                "to_status": status.value,
            },
        )
        return updated

    async def save(self, order: Order) -> None:
        """Store or replace an order. Not part of the protocol."""
        self._orders[order.id] = order
