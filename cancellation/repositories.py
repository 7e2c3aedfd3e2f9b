"""
Repository and gateway interfaces defined as Protocols.

All persistence operations follow these principles:

- **Update by identifier**: status changes are single operations keyed by
  id. Implementations must apply them atomically; the orchestrator never
  reads, modifies and writes back a whole entity.

- **Domain Objects**: Methods accept and return domain objects or
  primitives, never storage-specific types.

- **Not found is not an error**: lookups return None (or skip missing ids)
  rather than raising.

Architectural Notes:

- These are pure interfaces with no implementation details
- The orchestrator, access validator and commands depend on these
  protocols, not on concrete implementations
- Implementations are validated at construction time with
  ``util.validation.ensure_repository_protocol``
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from cancellation.domain import (
    CancellationRecord,
    Order,
    OrderStatus,
    Product,
    ProductStatus,
    RecordStatus,
)


@runtime_checkable
class OrderRepository(Protocol):
    """Read access and status updates for orders."""

    async def find_by_identifier(
        self, pnr: str, email: Optional[str] = None
    ) -> Optional[Order]:
        """Find an order by booking reference.

        Args:
            pnr: Booking reference, compared case-insensitively
            email: When given, the order's customer email must also match
                (case-insensitively)

        Returns:
            The order if found, None otherwise
        """
        ...

    async def find_by_id(self, order_id: str) -> Optional[Order]:
        """Retrieve an order by id, or None."""
        ...

    async def update_status(
        self, order_id: str, status: OrderStatus
    ) -> Optional[Order]:
        """Set an order's status.

        Returns:
            The updated order, or None if no order has this id
        """
        ...


@runtime_checkable
class ProductRepository(Protocol):
    """Read access and status updates for purchased products."""

    async def find_by_id(self, product_id: str) -> Optional[Product]:
        """Retrieve a product by id, or None."""
        ...

    async def find_by_ids(self, product_ids: List[str]) -> List[Product]:
        """Retrieve several products.

        Args:
            product_ids: Product ids in the caller's preferred order

        Returns:
            Found products in the same order as ``product_ids``; unknown
            ids are skipped
        """
        ...

    async def update_status(
        self, product_id: str, status: ProductStatus
    ) -> Optional[Product]:
        """Set a product's status, returning the updated product or None."""
        ...


@runtime_checkable
class CancellationRecordRepository(Protocol):
    """Persistence of cancellation records.

    A record is created ``pending`` before its command runs and moves
    exactly once to ``completed`` or ``failed``.
    """

    async def create(
        self, record: CancellationRecord
    ) -> CancellationRecord:
        """Store a new record.

        Raises:
            ValueError: If a record with the same id already exists
        """
        ...

    async def update_status(
        self,
        record_id: str,
        status: RecordStatus,
        external_provider_response: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> Optional[CancellationRecord]:
        """Move a record to a terminal status.

        Returns:
            The updated record, or None if no record has this id

        Implementation Notes:

        - Must refuse (raise ValueError) to move a record that is already
          terminal
        """
        ...

    async def find_by_correlation_id(
        self, correlation_id: str
    ) -> Optional[CancellationRecord]:
        """Retrieve the record for a correlation id, or None."""
        ...


@runtime_checkable
class DragonPassGateway(Protocol):
    """Outbound calls to the DragonPass lounge cancellation API."""

    async def cancel_booking(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Request cancellation of a lounge booking.

        Args:
            payload: ``{booking_id, lounge_id?, booking_time?, product_id?}``

        Returns:
            The decoded response body: ``{status: success|error,
            cancellation_id?, refund_amount?, cancellation_fee?, currency?,
            message?, error_code?, retry_after?}``

        Raises:
            ProviderFailure: On a non-2xx response or a network error
        """
        ...
