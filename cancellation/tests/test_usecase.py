"""
Tests for CancellationOrchestrator.

These run the real access validator, policy engine, commands, invoker and
event bus against memory repositories. Only the DragonPass gateway is
mocked.
"""

from decimal import Decimal
from typing import List

import pytest

from cancellation.commands import (
    CancellationCommand,
    CommandDependencies,
    CommandFactory,
)
from cancellation.domain import (
    CancellationEventType,
    CancellationResult,
    CancellationStatus,
    OrderStatus,
    ProductStatus,
    RecordStatus,
)
from cancellation.invoker import CommandExecutionOptions, CommandInvoker
from cancellation.repos.memory.cancellation_record import (
    MemoryCancellationRecordRepository,
)
from cancellation.repos.memory.order import MemoryOrderRepository
from cancellation.repos.memory.product import MemoryProductRepository
from cancellation.tests.factories import (
    OrderFactory,
    PrincipalFactory,
    ProductFactory,
    admin_request,
    customer_principal,
    customer_request,
    fixed_clock,
)
from cancellation.usecase import CancellationOrchestrator

Events = CancellationEventType
EMAIL = "traveller@example.com"
ADMIN = PrincipalFactory.build()


class BrokenProductRepository(MemoryProductRepository):
    """Product status updates always fail."""

    async def update_status(self, product_id, status):
        raise RuntimeError("product store unavailable")


class ExplodingCommand(CancellationCommand):
    provider = "dragonpass"
    command_type = "ExplodingCommand"

    async def execute(self) -> CancellationResult:
        raise RuntimeError("vendor socket closed")


@pytest.fixture
def products():
    return [
        ProductFactory.build(id="A"),
        ProductFactory.build(id="B", status=ProductStatus.CANCELLED),
        ProductFactory.build(id="C"),
    ]


@pytest.fixture
def order():
    return OrderFactory.build(
        id="order-1",
        pnr="XYZ789",
        customer_email=EMAIL,
        products=["A", "B", "C"],
    )


@pytest.fixture
def order_repo(order):
    return MemoryOrderRepository([order])


@pytest.fixture
def product_repo(products):
    return MemoryProductRepository(products)


@pytest.fixture
def record_repo():
    return MemoryCancellationRecordRepository()


def build_orchestrator(
    order_repo, product_repo, record_repo, event_bus, gateway
) -> CancellationOrchestrator:
    deps = CommandDependencies(
        product_repo=product_repo,
        dragonpass_gateway=gateway,
        clock=fixed_clock,
    )
    return CancellationOrchestrator(
        order_repo=order_repo,
        product_repo=product_repo,
        record_repo=record_repo,
        event_bus=event_bus,
        command_factory=CommandFactory(deps),
        invoker=CommandInvoker(
            CommandExecutionOptions(
                max_retries=2, retry_delay_ms=0, timeout_ms=1000
            )
        ),
        clock=fixed_clock,
    )


@pytest.fixture
def orchestrator(
    order_repo, product_repo, record_repo, event_bus, dragonpass_gateway
) -> CancellationOrchestrator:
    return build_orchestrator(
        order_repo, product_repo, record_repo, event_bus, dragonpass_gateway
    )


class TestSingleProductCancellation:
    @pytest.mark.asyncio
    async def test_successful_cancellation_updates_state_and_publishes(
        self, orchestrator, recorder, record_repo, product_repo, order_repo
    ) -> None:
        # Arrange
        request = admin_request("XYZ789", product_id="A")

        # Act
        result = await orchestrator.cancel(request, ADMIN)

        # Assert
        assert result.success is True
        assert result.status is CancellationStatus.COMPLETED
        assert result.refund_amount == Decimal("100.00")
        assert result.product_id == "A"
        assert result.cancellation_id == "DP-CXL-1"

        record = await record_repo.find_by_correlation_id(
            result.correlation_id
        )
        assert record.status is RecordStatus.COMPLETED
        assert record.product_id == "A"
        assert record.external_provider_response["status"] == "success"
        assert (await product_repo.find_by_id("A")).status is (
            ProductStatus.CANCELLED
        )
        # C is still confirmed, so the order stays open
        assert (await order_repo.find_by_id("order-1")).status is (
            OrderStatus.CONFIRMED
        )

        assert recorder.types() == [
            Events.CANCELLATION_STARTED,
            Events.CANCELLATION_COMPLETED,
            Events.REFUND_PROCESSED,
        ]
        assert {e.correlation_id for e in recorder.events} == {
            result.correlation_id
        }
        completed = recorder.of_type(Events.CANCELLATION_COMPLETED)[0]
        assert completed.order_id == "order-1"
        assert completed.product_id == "A"
        assert completed.data["refund_amount"] == "100.00"
        assert completed.data["provider"] == "dragonpass"

    @pytest.mark.asyncio
    async def test_audit_trail_is_keyed_by_correlation_id(
        self, orchestrator
    ) -> None:
        result = await orchestrator.cancel(
            admin_request("XYZ789", product_id="A"), ADMIN
        )

        trail = orchestrator.get_audit_trail_by_correlation_id(
            result.correlation_id
        )
        assert len(trail) == 1
        assert trail[0].attempt == 1
        assert trail[0].success is True
        assert orchestrator.get_audit_trail() == trail

    @pytest.mark.asyncio
    async def test_last_product_closes_the_order(
        self, event_bus, dragonpass_gateway
    ) -> None:
        order = OrderFactory.build(pnr="ONE001", products=["solo"])
        order_repo = MemoryOrderRepository([order])
        product_repo = MemoryProductRepository(
            [ProductFactory.build(id="solo")]
        )
        orchestrator = build_orchestrator(
            order_repo,
            product_repo,
            MemoryCancellationRecordRepository(),
            event_bus,
            dragonpass_gateway,
        )

        result = await orchestrator.cancel(
            admin_request("ONE001", product_id="solo"), ADMIN
        )

        assert result.success is True
        assert (await order_repo.find_by_id(order.id)).status is (
            OrderStatus.CANCELLED
        )

    @pytest.mark.asyncio
    async def test_partial_refund_marks_product_refunded(
        self, orchestrator, recorder, product_repo, dragonpass_gateway
    ) -> None:
        dragonpass_gateway.cancel_booking.return_value = {
            "status": "success",
            "refund_amount": 50,
            "cancellation_fee": 50,
        }

        result = await orchestrator.cancel(
            admin_request("XYZ789", product_id="A"), ADMIN
        )

        assert result.status is CancellationStatus.PARTIAL
        assert (await product_repo.find_by_id("A")).status is (
            ProductStatus.REFUNDED
        )
        assert Events.CANCELLATION_PARTIAL in recorder.types()
        assert Events.CANCELLATION_COMPLETED not in recorder.types()

    @pytest.mark.asyncio
    async def test_provider_refusal_marks_record_failed(
        self, orchestrator, recorder, record_repo, product_repo,
        dragonpass_gateway,
    ) -> None:
        dragonpass_gateway.cancel_booking.return_value = {
            "status": "error",
            "error_code": "BOOKING_USED",
            "message": "Lounge visit already redeemed",
        }

        result = await orchestrator.cancel(
            admin_request("XYZ789", product_id="A"), ADMIN
        )

        assert result.success is False
        assert result.error_code == "BOOKING_USED"
        record = await record_repo.find_by_correlation_id(
            result.correlation_id
        )
        assert record.status is RecordStatus.FAILED
        assert record.notes == "Lounge visit already redeemed"
        assert (await product_repo.find_by_id("A")).status is (
            ProductStatus.CONFIRMED
        )
        failed = recorder.of_type(Events.CANCELLATION_FAILED)
        assert len(failed) == 1
        assert failed[0].data["error_code"] == "BOOKING_USED"
        assert failed[0].data["stage"] == "provider"

    @pytest.mark.asyncio
    async def test_exhausted_invoker_becomes_execution_error(
        self, orchestrator, recorder, record_repo
    ) -> None:
        # Arrange
        orchestrator.command_factory.register_command(
            "dragonpass", ExplodingCommand
        )

        # Act
        result = await orchestrator.cancel(
            admin_request("XYZ789", product_id="A"), ADMIN
        )

        # Assert
        assert result.success is False
        assert result.error_code == "EXECUTION_ERROR"
        assert "vendor socket closed" in result.message
        record = await record_repo.find_by_correlation_id(
            result.correlation_id
        )
        assert record.status is RecordStatus.FAILED
        trail = orchestrator.get_audit_trail_by_correlation_id(
            result.correlation_id
        )
        assert [r.attempt for r in trail] == [1, 2]
        assert recorder.types()[-1] is Events.CANCELLATION_FAILED

    @pytest.mark.asyncio
    async def test_unsupported_provider(
        self, orchestrator, product_repo
    ) -> None:
        await product_repo.save(
            ProductFactory.build(id="A", provider="HolidayExtras")
        )

        result = await orchestrator.cancel(
            admin_request("XYZ789", product_id="A"), ADMIN
        )

        assert result.error_code == "PROVIDER_NOT_SUPPORTED"
        assert result.message == "Provider 'holidayextras' not supported"

    @pytest.mark.asyncio
    async def test_bookkeeping_failure_undoes_and_reports(
        self, order_repo, products, record_repo, event_bus, recorder,
        dragonpass_gateway,
    ) -> None:
        orchestrator = build_orchestrator(
            order_repo,
            BrokenProductRepository(products),
            record_repo,
            event_bus,
            dragonpass_gateway,
        )

        result = await orchestrator.cancel(
            admin_request("XYZ789", product_id="A"), ADMIN
        )

        assert result.success is False
        assert result.error_code == "SERVICE_ERROR"
        assert "rolled back" in result.message
        assert recorder.types() == [
            Events.CANCELLATION_STARTED,
            Events.CANCELLATION_UNDO,
            Events.CANCELLATION_FAILED,
        ]
        failed = recorder.of_type(Events.CANCELLATION_FAILED)[0]
        assert failed.data["error_code"] == "SERVICE_ERROR"
        assert failed.data["stage"] == "bookkeeping"
        assert failed.correlation_id == result.correlation_id
        record = await record_repo.find_by_correlation_id(
            result.correlation_id
        )
        assert record.status is RecordStatus.FAILED
        assert record.notes.startswith("Rolled back")
        dragonpass_gateway.cancel_booking.assert_awaited_once()


class TestRejections:
    @pytest.mark.asyncio
    async def test_customer_request_without_email_has_no_side_effects(
        self, orchestrator, recorder, record_repo, dragonpass_gateway
    ) -> None:
        request = {
            "orderIdentifier": {"pnr": "XYZ789"},
            "requestSource": "customer_app",
            "requestedBy": {"userId": "customer-1", "userRole": "customer"},
        }

        result = await orchestrator.cancel(
            request, customer_principal(EMAIL)
        )

        assert result.success is False
        assert result.error_code == "VALIDATION_ERROR"
        assert "Email is required" in result.message
        assert recorder.events == []
        assert record_repo.all() == []
        dragonpass_gateway.cancel_booking.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_role_not_allowed_on_channel(
        self, orchestrator, recorder
    ) -> None:
        request = admin_request(
            "XYZ789",
            requestedBy={"userId": "partner-1", "userRole": "partner"},
        )

        result = await orchestrator.cancel(request, ADMIN)

        assert result.error_code == "VALIDATION_ERROR"
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_unknown_order(self, orchestrator, recorder) -> None:
        result = await orchestrator.cancel(admin_request("NOPE00"), ADMIN)

        assert result.error_code == "ORDER_NOT_FOUND"
        assert recorder.types() == [Events.CANCELLATION_FAILED]
        assert recorder.events[0].data["stage"] == "lookup"

    @pytest.mark.asyncio
    async def test_customer_cannot_cancel_someone_elses_order(
        self, orchestrator, recorder, record_repo
    ) -> None:
        result = await orchestrator.cancel(
            admin_request("XYZ789", product_id="A"),
            customer_principal("intruder@example.com"),
        )

        assert result.error_code == "ACCESS_DENIED"
        assert result.message == "Customer can only access their own orders"
        assert record_repo.all() == []
        assert recorder.types() == [Events.CANCELLATION_FAILED]

    @pytest.mark.asyncio
    async def test_customer_can_cancel_own_order(self, orchestrator) -> None:
        result = await orchestrator.cancel(
            customer_request("xyz789", EMAIL, product_id="A"),
            customer_principal(EMAIL),
        )

        assert result.success is True

    @pytest.mark.asyncio
    async def test_closed_order(self, orchestrator, order_repo) -> None:
        await order_repo.update_status("order-1", OrderStatus.REFUNDED)

        result = await orchestrator.cancel(admin_request("XYZ789"), ADMIN)

        assert result.error_code == "ORDER_STATUS_INVALID"
        assert result.message == (
            "Order status 'refunded' does not allow cancellation"
        )

    @pytest.mark.asyncio
    async def test_product_outside_order(self, orchestrator) -> None:
        result = await orchestrator.cancel(
            admin_request("XYZ789", product_id="Z"), ADMIN
        )

        assert result.error_code == "PRODUCT_NOT_FOUND"
        assert result.product_id == "Z"

    @pytest.mark.asyncio
    async def test_product_already_cancelled(self, orchestrator) -> None:
        result = await orchestrator.cancel(
            admin_request("XYZ789", product_id="B"), ADMIN
        )

        assert result.error_code == "PRODUCT_STATUS_INVALID"

    @pytest.mark.asyncio
    async def test_unexpected_repository_error_is_contained(
        self, orchestrator, order_repo, recorder
    ) -> None:
        async def broken(*args, **kwargs):
            raise RuntimeError("database gone")

        order_repo.find_by_identifier = broken

        result = await orchestrator.cancel(admin_request("XYZ789"), ADMIN)

        assert result.error_code == "SERVICE_ERROR"
        assert recorder.types() == [Events.CANCELLATION_FAILED]


class TestWholeOrderCancellation:
    @pytest.mark.asyncio
    async def test_already_cancelled_product_does_not_stop_the_others(
        self, orchestrator, recorder, product_repo, order_repo,
        dragonpass_gateway,
    ) -> None:
        # Act
        results: List[CancellationResult] = await orchestrator.cancel(
            admin_request("XYZ789"), ADMIN
        )

        # Assert
        assert [r.product_id for r in results] == ["A", "B", "C"]
        assert results[0].success is True
        assert results[1].success is False
        assert results[1].error_code == "PRODUCT_STATUS_INVALID"
        assert results[2].success is True
        assert dragonpass_gateway.cancel_booking.await_count == 2

        correlation_ids = {r.correlation_id for r in results}
        assert len(correlation_ids) == 3

        for product_id in ("A", "C"):
            assert (await product_repo.find_by_id(product_id)).status is (
                ProductStatus.CANCELLED
            )
        assert (await order_repo.find_by_id("order-1")).status is (
            OrderStatus.CANCELLED
        )
        assert len(recorder.of_type(Events.CANCELLATION_COMPLETED)) == 2
        assert len(recorder.of_type(Events.CANCELLATION_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_failure_of_one_product_is_reported_independently(
        self, orchestrator, dragonpass_gateway
    ) -> None:
        dragonpass_gateway.cancel_booking.side_effect = [
            {"status": "error", "error_code": "BOOKING_USED"},
            {"status": "success"},
        ]

        results = await orchestrator.cancel(admin_request("XYZ789"), ADMIN)

        assert [r.success for r in results] == [False, False, True]
        assert results[0].error_code == "BOOKING_USED"

    @pytest.mark.asyncio
    async def test_order_without_products(
        self, event_bus, recorder, dragonpass_gateway
    ) -> None:
        order = OrderFactory.build(pnr="EMPTY1", products=[])
        orchestrator = build_orchestrator(
            MemoryOrderRepository([order]),
            MemoryProductRepository(),
            MemoryCancellationRecordRepository(),
            event_bus,
            dragonpass_gateway,
        )

        results = await orchestrator.cancel(admin_request("EMPTY1"), ADMIN)

        assert len(results) == 1
        assert results[0].error_code == "NO_PRODUCTS_FOUND"

    @pytest.mark.asyncio
    async def test_missing_product_is_reported_in_sequence(
        self, event_bus, dragonpass_gateway
    ) -> None:
        order = OrderFactory.build(pnr="GAP001", products=["A", "ghost"])
        orchestrator = build_orchestrator(
            MemoryOrderRepository([order]),
            MemoryProductRepository([ProductFactory.build(id="A")]),
            MemoryCancellationRecordRepository(),
            event_bus,
            dragonpass_gateway,
        )

        results = await orchestrator.cancel(admin_request("GAP001"), ADMIN)

        assert [r.product_id for r in results] == ["A", "ghost"]
        assert results[1].error_code == "PRODUCT_NOT_FOUND"
