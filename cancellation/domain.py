"""
Domain models for ancillary cancellations, defined as Pydantic models.

Value objects that are produced once and never changed afterwards
(contexts, results, audit records, events, cancellation windows) are frozen.
Persisted entities (orders, products, cancellation records) are plain models
that repositories replace wholesale with ``model_copy(update=...)``.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class ProductStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (ProductStatus.CANCELLED, ProductStatus.REFUNDED)


CANCELLABLE_ORDER_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED}
)
CANCELLABLE_PRODUCT_STATUSES = frozenset(
    {ProductStatus.PENDING, ProductStatus.CONFIRMED}
)


class ProductType(str, Enum):
    AIRPORT_TRANSFER = "airport_transfer"
    LOUNGE_ACCESS = "lounge_access"
    ESIM = "esim"
    MEAL = "meal"
    INSURANCE = "insurance"
    TRANSPORT = "transport"


class CancellationStatus(str, Enum):
    """Outcome of a single command execution"""

    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class RecordStatus(str, Enum):
    """Lifecycle of a persisted cancellation record"""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CancellationSource(str, Enum):
    """Who initiated the cancellation, as recorded on the context"""

    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


class RequestSource(str, Enum):
    """Channel a cancellation request arrived through"""

    CUSTOMER_APP = "customer_app"
    ADMIN_PANEL = "admin_panel"
    PARTNER_API = "partner_api"
    SYSTEM = "system"

    @property
    def cancellation_source(self) -> CancellationSource:
        if self is RequestSource.CUSTOMER_APP:
            return CancellationSource.CUSTOMER
        if self is RequestSource.ADMIN_PANEL:
            return CancellationSource.ADMIN
        return CancellationSource.SYSTEM


class UserRole(str, Enum):
    ADMIN = "admin"
    CUSTOMER_SERVICE = "customer_service"
    SYSTEM = "system"
    CUSTOMER = "customer"
    PARTNER = "partner"


# Roles allowed to submit a request through each channel
ROLES_BY_SOURCE: Dict[RequestSource, frozenset[UserRole]] = {
    RequestSource.CUSTOMER_APP: frozenset({UserRole.CUSTOMER}),
    RequestSource.ADMIN_PANEL: frozenset(
        {UserRole.ADMIN, UserRole.CUSTOMER_SERVICE}
    ),
    RequestSource.PARTNER_API: frozenset({UserRole.PARTNER}),
    RequestSource.SYSTEM: frozenset({UserRole.SYSTEM}),
}


class AuthType(str, Enum):
    JWT = "jwt"
    API_KEY = "api_key"
    SERVICE_TOKEN = "service_token"


class CancellationEventType(str, Enum):
    """Lifecycle events published on the event bus"""

    CANCELLATION_STARTED = "cancellation.started"
    CANCELLATION_COMPLETED = "cancellation.completed"
    CANCELLATION_FAILED = "cancellation.failed"
    CANCELLATION_PARTIAL = "cancellation.partial"
    CANCELLATION_UNDO = "cancellation.undo"
    REFUND_PROCESSED = "refund.processed"
    AUDIT_UPDATED = "audit.updated"


# Catalogue data


class Price(BaseModel):
    amount: Decimal
    currency: str = "USD"

    @field_validator("amount")
    @classmethod
    def amount_must_not_be_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Price amount cannot be negative")
        return v

    @field_validator("currency")
    @classmethod
    def currency_must_be_iso_code(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("Currency must be a 3 letter code")
        return v


class CancellationWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    hours_before_service: float = Field(ge=0)
    refund_percentage: Decimal = Field(ge=0, le=100)
    description: str


class CancellationPolicy(BaseModel):
    windows: List[CancellationWindow] = Field(default_factory=list)
    can_cancel: bool = True
    cancel_condition: Optional[str] = None


class Product(BaseModel):
    id: str
    title: str = ""
    provider: str
    type: ProductType = ProductType.LOUNGE_ACCESS
    price: Price
    cancellation_policy: CancellationPolicy = Field(
        default_factory=CancellationPolicy
    )
    service_date_time: datetime
    status: ProductStatus = ProductStatus.CONFIRMED
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("service_date_time", "created_at")
    @classmethod
    def timestamps_are_utc(cls, v: datetime) -> datetime:
        return _ensure_utc(v)

    @field_validator("provider")
    @classmethod
    def provider_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Provider cannot be empty")
        return v.strip().lower()


class Order(BaseModel):
    id: str
    pnr: str
    customer_email: str
    products: List[str] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.CONFIRMED
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("pnr")
    @classmethod
    def pnr_is_upper(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("customer_email")
    @classmethod
    def email_is_lower(cls, v: str) -> str:
        return v.strip().lower()


# Cancellation processing


class CancellationContext(BaseModel):
    """One unit of cancellation work, created once per product"""

    model_config = ConfigDict(frozen=True)

    order_id: str
    product_id: Optional[str] = None
    reason: str = ""
    requested_by: str
    request_source: CancellationSource
    correlation_id: str


class CancellationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    refund_amount: Decimal = Decimal("0")
    cancellation_fee: Decimal = Decimal("0")
    currency: str = "USD"
    status: CancellationStatus
    message: str
    error_code: Optional[str] = None
    retry_after: Optional[int] = None
    external_response: Optional[Dict[str, Any]] = None
    cancellation_id: Optional[str] = None
    product_id: Optional[str] = None
    correlation_id: Optional[str] = None

    @classmethod
    def failure(
        cls,
        message: str,
        error_code: str,
        *,
        currency: str = "USD",
        cancellation_fee: Decimal = Decimal("0"),
        retry_after: Optional[int] = None,
        external_response: Optional[Dict[str, Any]] = None,
        product_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> "CancellationResult":
        return cls(
            success=False,
            refund_amount=Decimal("0"),
            cancellation_fee=cancellation_fee,
            currency=currency,
            status=CancellationStatus.FAILED,
            message=message,
            error_code=error_code,
            retry_after=retry_after,
            external_response=external_response,
            product_id=product_id,
            correlation_id=correlation_id,
        )


class AuditRecord(BaseModel):
    """One invoker attempt. Appended, never modified."""

    model_config = ConfigDict(frozen=True)

    command_type: str
    provider: str
    execution_time_ms: int
    timestamp: datetime = Field(default_factory=utc_now)
    correlation_id: str
    success: bool
    error_message: Optional[str] = None
    attempt: int = 1


class CancellationRecord(BaseModel):
    id: str
    order_id: str
    product_id: str
    reason: str = ""
    request_source: CancellationSource
    requested_by: str
    refund_amount: Decimal = Decimal("0")
    cancellation_fee: Decimal = Decimal("0")
    currency: str = "USD"
    status: RecordStatus = RecordStatus.PENDING
    correlation_id: str
    external_provider_response: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CancellationEvent(BaseModel):
    """Payload published on the event bus"""

    model_config = ConfigDict(frozen=True)

    type: CancellationEventType
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    correlation_id: str
    order_id: Optional[str] = None
    product_id: Optional[str] = None


class PolicyQuote(BaseModel):
    """Refund and fee computed from a product's cancellation policy"""

    model_config = ConfigDict(frozen=True)

    can_cancel: bool
    refund_amount: Decimal
    cancellation_fee: Decimal
    refund_percentage: Decimal = Decimal("0")
    hours_until_service: float
    message: str
    window: Optional[CancellationWindow] = None


class AccessDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "AccessDecision":
        return cls(allowed=False, reason=reason)


# Requests and callers


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderIdentifier(_CamelModel):
    pnr: str = Field(min_length=1, max_length=20)
    email: Optional[str] = None

    @field_validator("pnr")
    @classmethod
    def pnr_is_upper(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("email")
    @classmethod
    def email_must_look_valid(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("Invalid email address")
        return v


class RequestedBy(_CamelModel):
    user_id: str = Field(min_length=1)
    user_role: UserRole


class CancelOrderRequest(_CamelModel):
    """A cancellation request for a whole order or one of its products"""

    order_identifier: OrderIdentifier
    product_id: Optional[str] = None
    request_source: RequestSource
    reason: Optional[str] = Field(default=None, max_length=500)
    requested_by: RequestedBy

    @model_validator(mode="after")
    def check_channel_rules(self) -> "CancelOrderRequest":
        if (
            self.request_source is RequestSource.CUSTOMER_APP
            and not self.order_identifier.email
        ):
            raise ValueError("Email is required for customer requests")
        allowed_roles = ROLES_BY_SOURCE[self.request_source]
        if self.requested_by.user_role not in allowed_roles:
            raise ValueError(
                f"Role '{self.requested_by.user_role.value}' cannot submit "
                f"requests through '{self.request_source.value}'"
            )
        return self


class Principal(BaseModel):
    """Authenticated caller, as established by the authentication layer"""

    model_config = ConfigDict(frozen=True)

    auth_type: AuthType
    user_id: Optional[str] = None
    user_role: Optional[UserRole] = None
    partner_id: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)
    request_source: RequestSource
    email: Optional[str] = None
