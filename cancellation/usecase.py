"""
Cancellation orchestration use case.

The orchestrator depends only on repository protocols, the event bus and a
command factory. It never raises for expected failures: every outcome,
including an exhausted invoker, becomes a ``CancellationResult`` and a
published lifecycle event.

Request lifecycle::

    STARTED -> LOOKUP_FAILED | ACCESS_DENIED | STATUS_INVALID
    STARTED -> EXECUTING -> COMPLETED | PARTIAL | FAILED
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from cancellation.access import OrderAccessValidator
from cancellation.commands import CommandFactory
from cancellation.domain import (
    AuditRecord,
    CancellationContext,
    CancellationEvent,
    CancellationEventType,
    CancellationRecord,
    CancellationResult,
    CancellationStatus,
    CancelOrderRequest,
    Order,
    OrderStatus,
    Principal,
    Product,
    ProductStatus,
    RecordStatus,
    utc_now,
)
from cancellation.errors import ProviderFailure
from cancellation.events import EventBus
from cancellation.invoker import CommandExecutionOptions, CommandInvoker
from cancellation.policy import PolicyEngine
from cancellation.repositories import (
    CancellationRecordRepository,
    OrderRepository,
    ProductRepository,
)
from util.validation import ensure_repository_protocol

logger = logging.getLogger(__name__)

CancelOutcome = Union[CancellationResult, List[CancellationResult]]


def _new_id() -> str:
    return str(uuid.uuid4())


class CancellationOrchestrator:
    """
    Use case cancelling a whole order or one of its products.

    A single-product request reuses the request's correlation id for its
    record, audit entries and events. A whole-order request processes the
    order's products one at a time in their declared order and gives each
    product its own correlation id; a failure on one product never stops
    the others.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        product_repo: ProductRepository,
        record_repo: CancellationRecordRepository,
        event_bus: EventBus,
        command_factory: CommandFactory,
        invoker: Optional[CommandInvoker] = None,
        policy_engine: Optional[PolicyEngine] = None,
        execution_options: Optional[CommandExecutionOptions] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self.order_repo = ensure_repository_protocol(
            order_repo, OrderRepository  # type: ignore[type-abstract]
        )
        self.product_repo = ensure_repository_protocol(
            product_repo, ProductRepository  # type: ignore[type-abstract]
        )
        self.record_repo = ensure_repository_protocol(
            record_repo,
            CancellationRecordRepository,  # type: ignore[type-abstract]
        )
        self.access = OrderAccessValidator(self.order_repo, self.product_repo)
        self.event_bus = event_bus
        self.command_factory = command_factory
        self.invoker = invoker or CommandInvoker()
        self.policy_engine = policy_engine or PolicyEngine()
        self.execution_options = execution_options
        self.clock = clock
        self.id_factory = id_factory

    async def cancel(
        self,
        request: Union[CancelOrderRequest, Dict[str, Any]],
        principal: Principal,
    ) -> CancelOutcome:
        """
        Cancel an order, or one product of it when ``product_id`` is set.

        Returns:
            A single result for a product request, or one result per
            product (in the order's sequence) for a whole-order request.
            Malformed requests return a ``VALIDATION_ERROR`` result without
            any lookup, write or event.
        """
        if not isinstance(request, CancelOrderRequest):
            try:
                request = CancelOrderRequest.model_validate(request)
            except ValidationError as e:
                logger.info(
                    "Rejected malformed cancellation request",
                    extra={"errors": e.error_count()},
                )
                return CancellationResult.failure(
                    "Invalid cancellation request: "
                    + "; ".join(err["msg"] for err in e.errors()),
                    "VALIDATION_ERROR",
                )

        correlation_id = self.id_factory()
        logger.info(
            "Cancellation requested",
            extra={
                "correlation_id": correlation_id,
                "pnr": request.order_identifier.pnr,
                "product_id": request.product_id,
                "request_source": request.request_source.value,
                "requested_by": request.requested_by.user_id,
            },
        )

        try:
            return await self._cancel(request, principal, correlation_id)
        except Exception as e:
            logger.error(
                "Cancellation request failed unexpectedly",
                extra={
                    "correlation_id": correlation_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            result = CancellationResult.failure(
                "Cancellation service error",
                "SERVICE_ERROR",
                product_id=request.product_id,
                correlation_id=correlation_id,
            )
            await self._publish_result(
                CancellationEventType.CANCELLATION_FAILED,
                result,
                order_id=None,
                extra={"stage": "service", "error": str(e)},
            )
            return result

    async def _cancel(
        self,
        request: CancelOrderRequest,
        principal: Principal,
        correlation_id: str,
    ) -> CancelOutcome:
        order = await self.access.resolve_order(request.order_identifier)
        if order is None:
            return await self._reject(
                "Order not found",
                "ORDER_NOT_FOUND",
                "lookup",
                correlation_id,
                order_id=None,
                product_id=request.product_id,
            )

        decision = self.access.check_access(order, principal)
        if not decision.allowed:
            return await self._reject(
                decision.reason or "Access denied",
                "ACCESS_DENIED",
                "access",
                correlation_id,
                order_id=order.id,
                product_id=request.product_id,
            )

        decision = self.access.check_order_status(order)
        if not decision.allowed:
            return await self._reject(
                decision.reason or "Order cannot be cancelled",
                "ORDER_STATUS_INVALID",
                "status",
                correlation_id,
                order_id=order.id,
                product_id=request.product_id,
            )

        await self.event_bus.publish(
            CancellationEvent(
                type=CancellationEventType.CANCELLATION_STARTED,
                correlation_id=correlation_id,
                order_id=order.id,
                product_id=request.product_id,
                data={
                    "request_source": request.request_source.value,
                    "requested_by": request.requested_by.user_id,
                    "reason": request.reason,
                    "whole_order": request.product_id is None,
                },
            )
        )

        if request.product_id is not None:
            return await self._cancel_single(
                order, request, request.product_id, correlation_id
            )
        return await self._cancel_whole_order(order, request)

    async def _cancel_single(
        self,
        order: Order,
        request: CancelOrderRequest,
        product_id: str,
        correlation_id: str,
    ) -> CancellationResult:
        product = await self.access.resolve_product(order, product_id)
        if product is None:
            return await self._reject(
                "Product not found in order",
                "PRODUCT_NOT_FOUND",
                "lookup",
                correlation_id,
                order_id=order.id,
                product_id=product_id,
            )

        decision = self.access.check_product_status(product)
        if not decision.allowed:
            return await self._reject(
                decision.reason or "Product cannot be cancelled",
                "PRODUCT_STATUS_INVALID",
                "status",
                correlation_id,
                order_id=order.id,
                product_id=product_id,
            )

        return await self._cancel_product(
            order, product, request, correlation_id, "SERVICE_ERROR"
        )

    async def _cancel_whole_order(
        self, order: Order, request: CancelOrderRequest
    ) -> List[CancellationResult]:
        products = await self.access.get_order_products(order)
        if not products:
            return [
                await self._reject(
                    "No products found for order",
                    "NO_PRODUCTS_FOUND",
                    "lookup",
                    self.id_factory(),
                    order_id=order.id,
                    product_id=None,
                )
            ]

        by_id = {p.id: p for p in products}
        results: List[CancellationResult] = []
        for product_id in order.products:
            correlation_id = self.id_factory()
            product = by_id.get(product_id)
            if product is None:
                results.append(
                    await self._reject(
                        "Product not found in order",
                        "PRODUCT_NOT_FOUND",
                        "lookup",
                        correlation_id,
                        order_id=order.id,
                        product_id=product_id,
                    )
                )
                continue

            decision = self.access.check_product_status(product)
            if not decision.allowed:
                results.append(
                    await self._reject(
                        decision.reason or "Product cannot be cancelled",
                        "PRODUCT_STATUS_INVALID",
                        "status",
                        correlation_id,
                        order_id=order.id,
                        product_id=product_id,
                    )
                )
                continue

            results.append(
                await self._cancel_product(
                    order,
                    product,
                    request,
                    correlation_id,
                    "PRODUCT_CANCELLATION_FAILED",
                )
            )

        logger.info(
            "Whole order cancellation finished",
            extra={
                "order_id": order.id,
                "product_count": len(results),
                "succeeded": sum(1 for r in results if r.success),
            },
        )
        return results

    async def _cancel_product(
        self,
        order: Order,
        product: Product,
        request: CancelOrderRequest,
        correlation_id: str,
        fault_code: str,
    ) -> CancellationResult:
        """Run one product through record, command, status updates, event."""
        try:
            return await self._execute_product(
                order, product, request, correlation_id
            )
        except Exception as e:
            logger.error(
                "Product cancellation failed unexpectedly",
                extra={
                    "order_id": order.id,
                    "product_id": product.id,
                    "correlation_id": correlation_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            result = CancellationResult.failure(
                f"Cancellation of product {product.id} failed: {e}",
                fault_code,
                currency=product.price.currency,
                product_id=product.id,
                correlation_id=correlation_id,
            )
            await self._publish_result(
                CancellationEventType.CANCELLATION_FAILED,
                result,
                order_id=order.id,
                extra={"stage": "execution", "provider": product.provider},
            )
            return result

    async def _execute_product(
        self,
        order: Order,
        product: Product,
        request: CancelOrderRequest,
        correlation_id: str,
    ) -> CancellationResult:
        context = CancellationContext(
            order_id=order.id,
            product_id=product.id,
            reason=request.reason or "",
            requested_by=request.requested_by.user_id,
            request_source=request.request_source.cancellation_source,
            correlation_id=correlation_id,
        )
        quote = self.policy_engine.evaluate(
            product.cancellation_policy,
            product.price,
            product.service_date_time,
            self.clock(),
        )
        record = await self.record_repo.create(
            CancellationRecord(
                id=self.id_factory(),
                order_id=order.id,
                product_id=product.id,
                reason=context.reason,
                request_source=context.request_source,
                requested_by=context.requested_by,
                refund_amount=quote.refund_amount,
                cancellation_fee=quote.cancellation_fee,
                currency=product.price.currency,
                status=RecordStatus.PENDING,
                correlation_id=correlation_id,
            )
        )
        command = self.command_factory.create(product.provider, context)
        event_extra = {"provider": product.provider, "record_id": record.id}

        try:
            result = await self.invoker.execute(
                command, self.execution_options
            )
        except ProviderFailure as e:
            await self.record_repo.update_status(
                record.id, RecordStatus.FAILED, notes=str(e)
            )
            failed = CancellationResult.failure(
                f"Cancellation failed: {e}",
                "EXECUTION_ERROR",
                currency=product.price.currency,
                product_id=product.id,
                correlation_id=correlation_id,
            )
            await self._publish_result(
                CancellationEventType.CANCELLATION_FAILED,
                failed,
                order_id=order.id,
                extra={**event_extra, "stage": "execution"},
            )
            return failed

        result = result.model_copy(
            update={"product_id": product.id, "correlation_id": correlation_id}
        )

        if not result.success:
            await self.record_repo.update_status(
                record.id,
                RecordStatus.FAILED,
                external_provider_response=result.external_response,
                notes=result.message,
            )
            await self._publish_result(
                CancellationEventType.CANCELLATION_FAILED,
                result,
                order_id=order.id,
                extra={**event_extra, "stage": "provider"},
            )
            return result

        try:
            await self._apply_success(order, product, record.id, result)
        except Exception as e:
            return await self._compensate(
                order, product, record.id, command, result, e
            )

        event_type = (
            CancellationEventType.CANCELLATION_PARTIAL
            if result.status is CancellationStatus.PARTIAL
            else CancellationEventType.CANCELLATION_COMPLETED
        )
        await self._publish_result(
            event_type, result, order_id=order.id, extra=event_extra
        )
        if result.refund_amount > 0:
            await self._publish_result(
                CancellationEventType.REFUND_PROCESSED,
                result,
                order_id=order.id,
                extra=event_extra,
            )

        logger.info(
            "Product cancellation completed",
            extra={
                "order_id": order.id,
                "product_id": product.id,
                "correlation_id": correlation_id,
                "status": result.status.value,
                "refund_amount": str(result.refund_amount),
            },
        )
        return result

    async def _apply_success(
        self,
        order: Order,
        product: Product,
        record_id: str,
        result: CancellationResult,
    ) -> None:
        product_status = (
            ProductStatus.REFUNDED
            if result.status is CancellationStatus.PARTIAL
            else ProductStatus.CANCELLED
        )
        await self.product_repo.update_status(product.id, product_status)
        await self._close_order_if_done(order)
        # Last, so a failure above leaves the record pending for rollback
        await self.record_repo.update_status(
            record_id,
            RecordStatus.COMPLETED,
            external_provider_response=result.external_response,
            notes=result.message,
        )

    async def _close_order_if_done(self, order: Order) -> None:
        products = await self.product_repo.find_by_ids(list(order.products))
        if len(products) != len(order.products):
            return
        if all(p.status.is_terminal for p in products):
            await self.order_repo.update_status(
                order.id, OrderStatus.CANCELLED
            )
            logger.info(
                "All products terminal, order cancelled",
                extra={"order_id": order.id},
            )

    async def _compensate(
        self,
        order: Order,
        product: Product,
        record_id: str,
        command: Any,
        result: CancellationResult,
        error: Exception,
    ) -> CancellationResult:
        """Undo a provider cancellation whose local bookkeeping failed."""
        logger.error(
            "Persisting cancellation outcome failed, undoing command",
            extra={
                "order_id": order.id,
                "product_id": product.id,
                "correlation_id": result.correlation_id,
                "error": str(error),
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
        await command.undo()
        await self._publish_result(
            CancellationEventType.CANCELLATION_UNDO,
            result,
            order_id=order.id,
            extra={"provider": product.provider, "error": str(error)},
        )
        try:
            await self.record_repo.update_status(
                record_id,
                RecordStatus.FAILED,
                notes=f"Rolled back: {error}",
            )
        except Exception as e:
            logger.warning(
                "Could not mark cancellation record as failed",
                extra={"record_id": record_id, "error": str(e)},
            )
        failed = CancellationResult.failure(
            f"Cancellation could not be recorded and was rolled back: {error}",
            "SERVICE_ERROR",
            currency=result.currency,
            product_id=product.id,
            correlation_id=result.correlation_id,
        )
        await self._publish_result(
            CancellationEventType.CANCELLATION_FAILED,
            failed,
            order_id=order.id,
            extra={"provider": product.provider, "stage": "bookkeeping"},
        )
        return failed

    async def _reject(
        self,
        message: str,
        error_code: str,
        stage: str,
        correlation_id: str,
        order_id: Optional[str],
        product_id: Optional[str],
    ) -> CancellationResult:
        logger.info(
            "Cancellation rejected",
            extra={
                "correlation_id": correlation_id,
                "order_id": order_id,
                "product_id": product_id,
                "error_code": error_code,
                "stage": stage,
            },
        )
        result = CancellationResult.failure(
            message,
            error_code,
            product_id=product_id,
            correlation_id=correlation_id,
        )
        await self._publish_result(
            CancellationEventType.CANCELLATION_FAILED,
            result,
            order_id=order_id,
            extra={"stage": stage},
        )
        return result

    async def _publish_result(
        self,
        event_type: CancellationEventType,
        result: CancellationResult,
        order_id: Optional[str],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        data = result.model_dump(mode="json", exclude_none=True)
        data.update(extra or {})
        await self.event_bus.publish(
            CancellationEvent(
                type=event_type,
                data=data,
                timestamp=self.clock(),
                correlation_id=result.correlation_id or self.id_factory(),
                order_id=order_id,
                product_id=result.product_id,
            )
        )

    def get_audit_trail(self) -> List[AuditRecord]:
        return self.invoker.get_audit_trail()

    def get_audit_trail_by_correlation_id(
        self, correlation_id: str
    ) -> List[AuditRecord]:
        return self.invoker.get_audit_trail_by_correlation_id(correlation_id)
