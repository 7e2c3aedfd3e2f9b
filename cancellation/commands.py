"""
Provider-specific cancellation commands and the registry that selects them.

A command encapsulates one cancellation attempt for one product with one
vendor. ``execute`` never raises to its caller: validation problems, policy
refusals, vendor errors and unexpected faults all resolve to a failed
``CancellationResult``. Only task cancellation (for example an invoker
timeout) propagates out of ``execute``.

Supported providers are listed in an explicit table mapping the lower-cased
provider name to a command class. ``CommandFactory`` looks providers up in
that table and falls back to ``UnsupportedProviderCommand``.
"""

import logging
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Type

from cancellation.domain import (
    AuditRecord,
    CancellationContext,
    CancellationResult,
    CancellationStatus,
    Product,
    utc_now,
)
from cancellation.errors import (
    CancellationError,
    NotFound,
    PolicyViolation,
    ValidationFailure,
)
from cancellation.policy import PolicyEngine
from cancellation.repositories import DragonPassGateway, ProductRepository

logger = logging.getLogger(__name__)

UNAVAILABLE_RETRY_AFTER_SECONDS = 900


class CommandDependencies:
    """Collaborators shared by every command a factory builds."""

    def __init__(
        self,
        product_repo: ProductRepository,
        dragonpass_gateway: Optional[DragonPassGateway] = None,
        policy_engine: Optional[PolicyEngine] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.product_repo = product_repo
        self.dragonpass_gateway = dragonpass_gateway
        self.policy_engine = policy_engine or PolicyEngine()
        self.clock = clock


class CancellationCommand:
    """Base class for provider commands.

    Subclasses set ``provider`` and ``command_type`` and implement
    ``_perform``. They may raise ``CancellationError`` subclasses from
    ``_perform``; ``execute`` converts them into failed results.
    """

    provider = "unknown"
    command_type = "CancellationCommand"

    def __init__(
        self,
        context: CancellationContext,
        dependencies: CommandDependencies,
    ) -> None:
        self.context = context
        self.dependencies = dependencies
        self.product: Optional[Product] = None
        self.last_result: Optional[CancellationResult] = None
        self.execution_time_ms = 0

    async def execute(self) -> CancellationResult:
        started = time.monotonic()
        logger.debug(
            "Executing cancellation command",
            extra={
                "command_type": self.command_type,
                "provider": self.provider,
                "correlation_id": self.context.correlation_id,
                "product_id": self.context.product_id,
            },
        )
        try:
            self.validate_context()
            result = await self._perform()
        except CancellationError as e:
            result = self.handle_error(e, e.error_code)
        except Exception as e:
            logger.error(
                "Cancellation command raised unexpectedly",
                extra={
                    "command_type": self.command_type,
                    "correlation_id": self.context.correlation_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            result = self.handle_error(e, "EXECUTION_ERROR")
        finally:
            self.execution_time_ms = int((time.monotonic() - started) * 1000)

        self.last_result = result
        return result

    async def undo(self) -> None:
        """Best-effort reversal. Never raises."""
        try:
            await self._undo()
        except Exception as e:
            logger.error(
                "Cancellation undo failed",
                extra={
                    "command_type": self.command_type,
                    "correlation_id": self.context.correlation_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

    def get_audit_info(self) -> AuditRecord:
        result = self.last_result
        return AuditRecord(
            command_type=self.command_type,
            provider=self.provider,
            execution_time_ms=self.execution_time_ms,
            correlation_id=self.context.correlation_id,
            success=bool(result and result.success),
            error_message=(
                result.message if result and not result.success else None
            ),
        )

    def validate_context(self) -> None:
        if not self.context.order_id:
            raise ValidationFailure("Order ID is required")
        if not self.context.product_id:
            raise ValidationFailure("Product ID is required")
        if not self.context.correlation_id:
            raise ValidationFailure("Correlation ID is required")

    def handle_error(
        self, error: Exception, error_code: str
    ) -> CancellationResult:
        logger.warning(
            "Cancellation command failed",
            extra={
                "command_type": self.command_type,
                "correlation_id": self.context.correlation_id,
                "error": str(error),
                "error_code": error_code,
            },
        )
        return CancellationResult.failure(
            str(error) or type(error).__name__,
            error_code,
            currency=self._currency(),
        )

    async def _perform(self) -> CancellationResult:
        raise NotImplementedError

    async def _undo(self) -> None:
        logger.info(
            "No undo action for provider",
            extra={
                "provider": self.provider,
                "correlation_id": self.context.correlation_id,
            },
        )

    async def _load_product(self) -> Product:
        product_id = self.context.product_id or ""
        product = await self.dependencies.product_repo.find_by_id(product_id)
        if product is None:
            raise NotFound(
                f"Product not found: {product_id}", "PRODUCT_NOT_FOUND"
            )
        if product.provider != self.provider:
            raise ValidationFailure(
                f"Product provider mismatch: expected {self.provider}, "
                f"got {product.provider}",
                "PROVIDER_MISMATCH",
            )
        self.product = product
        return product

    def _currency(self) -> str:
        return self.product.price.currency if self.product else "USD"


class DragonPassCancellationCommand(CancellationCommand):
    """Cancels a lounge booking through the DragonPass API."""

    provider = "dragonpass"
    command_type = "DragonPassCancellationCommand"

    async def _perform(self) -> CancellationResult:
        gateway = self.dependencies.dragonpass_gateway
        if gateway is None:
            raise ValidationFailure(
                "DragonPass gateway is not configured", "CONFIGURATION_ERROR"
            )

        product = await self._load_product()
        quote = self.dependencies.policy_engine.evaluate(
            product.cancellation_policy,
            product.price,
            product.service_date_time,
            self.dependencies.clock(),
        )
        if not quote.can_cancel:
            raise PolicyViolation(quote.message)

        booking_id = product.metadata.get("booking_id")
        if not booking_id:
            raise ValidationFailure(
                f"Product {product.id} has no DragonPass booking reference",
                "MISSING_BOOKING_REFERENCE",
            )
        payload: Dict[str, Any] = {
            "booking_id": booking_id,
            "booking_time": product.created_at.isoformat(),
            "product_id": product.id,
        }
        if product.metadata.get("lounge_id"):
            payload["lounge_id"] = product.metadata["lounge_id"]

        response = await gateway.cancel_booking(payload)

        currency = response.get("currency") or product.price.currency
        if response.get("status") != "success":
            return CancellationResult.failure(
                response.get("message") or "DragonPass cancellation failed",
                response.get("error_code") or "PROVIDER_ERROR",
                currency=currency,
                cancellation_fee=quote.cancellation_fee,
                retry_after=response.get("retry_after"),
                external_response=response,
            )

        returned_refund = _to_decimal(response.get("refund_amount"))
        returned_fee = _to_decimal(response.get("cancellation_fee"))
        refund_amount = (
            quote.refund_amount if returned_refund is None else returned_refund
        )
        cancellation_fee = (
            quote.cancellation_fee if returned_fee is None else returned_fee
        )
        is_partial = (
            returned_refund is not None
            and returned_fee is not None
            and returned_refund == returned_fee
        )

        logger.info(
            "DragonPass cancellation accepted",
            extra={
                "correlation_id": self.context.correlation_id,
                "product_id": product.id,
                "cancellation_id": response.get("cancellation_id"),
                "refund_amount": str(refund_amount),
                "partial": is_partial,
            },
        )

        return CancellationResult(
            success=True,
            refund_amount=refund_amount,
            cancellation_fee=cancellation_fee,
            currency=currency,
            status=(
                CancellationStatus.PARTIAL
                if is_partial
                else CancellationStatus.COMPLETED
            ),
            message=response.get("message") or quote.message,
            external_response=response,
            cancellation_id=response.get("cancellation_id"),
        )

    async def _undo(self) -> None:
        # DragonPass offers no reinstatement endpoint
        logger.warning(
            "DragonPass cancellation cannot be reversed automatically",
            extra={
                "order_id": self.context.order_id,
                "product_id": self.context.product_id,
                "correlation_id": self.context.correlation_id,
            },
        )


class UnavailableProviderCommand(CancellationCommand):
    """Provider whose cancellation integration is not live yet."""

    async def _perform(self) -> CancellationResult:
        return CancellationResult.failure(
            "Service unavailable",
            "SERVICE_UNAVAILABLE",
            retry_after=UNAVAILABLE_RETRY_AFTER_SECONDS,
            external_response={
                "status": "error",
                "message": f"{self.provider} cancellation is not available",
                "retry_after": UNAVAILABLE_RETRY_AFTER_SECONDS,
            },
        )


class MozioCancellationCommand(UnavailableProviderCommand):
    provider = "mozio"
    command_type = "MozioCancellationCommand"


class AiraloCancellationCommand(UnavailableProviderCommand):
    provider = "airalo"
    command_type = "AiraloCancellationCommand"


class UnsupportedProviderCommand(CancellationCommand):
    command_type = "DefaultCancellationCommand"

    def __init__(
        self,
        context: CancellationContext,
        dependencies: CommandDependencies,
        provider: str = "unknown",
    ) -> None:
        super().__init__(context, dependencies)
        self.provider = provider

    def validate_context(self) -> None:
        pass

    async def _perform(self) -> CancellationResult:
        return CancellationResult.failure(
            f"Provider '{self.provider}' not supported",
            "PROVIDER_NOT_SUPPORTED",
        )


COMMAND_REGISTRY: Dict[str, Type[CancellationCommand]] = {
    "dragonpass": DragonPassCancellationCommand,
    "mozio": MozioCancellationCommand,
    "airalo": AiraloCancellationCommand,
}


class CommandFactory:
    """Builds the command for a provider from the registry table."""

    def __init__(
        self,
        dependencies: CommandDependencies,
        registry: Optional[Dict[str, Type[CancellationCommand]]] = None,
    ) -> None:
        self.dependencies = dependencies
        self.registry = dict(
            COMMAND_REGISTRY if registry is None else registry
        )

    def create(
        self, provider: str, context: CancellationContext
    ) -> CancellationCommand:
        command_class = self.registry.get(provider.strip().lower())
        if command_class is None:
            logger.info(
                "No command registered for provider",
                extra={
                    "provider": provider,
                    "correlation_id": context.correlation_id,
                },
            )
            return UnsupportedProviderCommand(
                context, self.dependencies, provider=provider
            )
        return command_class(context, self.dependencies)

    def register_command(
        self, provider: str, command_class: Type[CancellationCommand]
    ) -> None:
        self.registry[provider.strip().lower()] = command_class

    def is_supported(self, provider: str) -> bool:
        return provider.strip().lower() in self.registry

    def supported_providers(self) -> List[str]:
        return sorted(self.registry)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None
