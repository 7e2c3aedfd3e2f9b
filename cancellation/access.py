"""
Order resolution, role-based access and status preconditions.

Every check returns an ``AccessDecision`` instead of raising, so the
orchestrator can branch on expected failures without exception handling.
"""

import logging
from typing import List, Optional

from cancellation.domain import (
    CANCELLABLE_ORDER_STATUSES,
    CANCELLABLE_PRODUCT_STATUSES,
    AccessDecision,
    AuthType,
    Order,
    OrderIdentifier,
    Principal,
    Product,
    UserRole,
)
from cancellation.repositories import OrderRepository, ProductRepository
from util.validation import ensure_repository_protocol

logger = logging.getLogger(__name__)

UNRESTRICTED_ROLES = frozenset(
    {UserRole.ADMIN, UserRole.CUSTOMER_SERVICE, UserRole.SYSTEM}
)


class OrderAccessValidator:
    def __init__(
        self,
        order_repo: OrderRepository,
        product_repo: ProductRepository,
    ) -> None:
        self.order_repo = ensure_repository_protocol(
            order_repo, OrderRepository  # type: ignore[type-abstract]
        )
        self.product_repo = ensure_repository_protocol(
            product_repo, ProductRepository  # type: ignore[type-abstract]
        )

    async def resolve_order(
        self, identifier: OrderIdentifier
    ) -> Optional[Order]:
        """Find the order by PNR and email, or by PNR alone without email."""
        order = await self.order_repo.find_by_identifier(
            identifier.pnr, identifier.email
        )
        logger.debug(
            "Order lookup finished",
            extra={
                "pnr": identifier.pnr,
                "with_email": identifier.email is not None,
                "found": order is not None,
            },
        )
        return order

    def check_access(
        self, order: Order, principal: Principal
    ) -> AccessDecision:
        """
        Decide whether the principal may act on the order.

        Staff and system roles have unconditional access. Partners are
        currently also unconditional: no ownership check between
        ``principal.partner_id`` and the order exists yet. Customers must be
        authenticated by JWT and their email must match the order's
        customer email exactly.
        """
        role = principal.user_role

        if role in UNRESTRICTED_ROLES:
            return AccessDecision.allow()

        if role is UserRole.PARTNER:
            # TODO: restrict partners to orders they sold once orders carry
            # the selling partner's id.
            return AccessDecision.allow()

        if role is UserRole.CUSTOMER:
            if (
                principal.auth_type is AuthType.JWT
                and principal.email is not None
                and principal.email.strip().lower() == order.customer_email
            ):
                return AccessDecision.allow()
            logger.warning(
                "Customer attempted to access another customer's order",
                extra={"order_id": order.id, "user_id": principal.user_id},
            )
            return AccessDecision.deny(
                "Customer can only access their own orders"
            )

        return AccessDecision.deny("Insufficient permissions")

    def check_order_status(self, order: Order) -> AccessDecision:
        if order.status in CANCELLABLE_ORDER_STATUSES:
            return AccessDecision.allow()
        return AccessDecision.deny(
            f"Order status '{order.status.value}' does not allow cancellation"
        )

    def check_product_status(self, product: Product) -> AccessDecision:
        if product.status in CANCELLABLE_PRODUCT_STATUSES:
            return AccessDecision.allow()
        return AccessDecision.deny(
            f"Product status '{product.status.value}' does not allow "
            f"cancellation"
        )

    async def resolve_product(
        self, order: Order, product_id: str
    ) -> Optional[Product]:
        """Return the product only if it belongs to the order."""
        if product_id not in order.products:
            logger.debug(
                "Product is not part of order",
                extra={"order_id": order.id, "product_id": product_id},
            )
            return None
        return await self.product_repo.find_by_id(product_id)

    async def get_order_products(self, order: Order) -> List[Product]:
        """Products of the order, in the order's declared sequence."""
        return await self.product_repo.find_by_ids(list(order.products))
