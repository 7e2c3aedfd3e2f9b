"""
Refund and fee calculation from a product's cancellation windows.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from cancellation.domain import (
    CancellationPolicy,
    PolicyQuote,
    Price,
    utc_now,
)

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600


class PolicyEngine:
    """
    Evaluates a cancellation policy against the time left before service.

    Windows are scanned in the order they are declared and the first window
    whose ``hours_before_service`` does not exceed the hours remaining wins.
    This is order dependent: ``[{24h, 100%}, {4h, 50%}]`` evaluated 10 hours
    before service selects the 4h window because the 24h window does not
    qualify, while ``[{4h, 50%}, {1h, 10%}]`` evaluated 10 hours before
    service selects the 4h window even though neither is the tightest bound.

    The engine is a pure function of its inputs and never raises; refusals
    are reported on the returned ``PolicyQuote``.
    """

    def evaluate(
        self,
        policy: CancellationPolicy,
        price: Price,
        service_date_time: datetime,
        now: Optional[datetime] = None,
    ) -> PolicyQuote:
        now = now or utc_now()
        hours_until_service = (
            service_date_time - now
        ).total_seconds() / SECONDS_PER_HOUR

        if not policy.can_cancel:
            return self._refuse(
                price,
                hours_until_service,
                policy.cancel_condition or "Cancellation not allowed",
            )

        window = next(
            (
                w
                for w in policy.windows
                if w.hours_before_service <= hours_until_service
            ),
            None,
        )
        if window is None:
            return self._refuse(
                price, hours_until_service, "Outside cancellation window"
            )

        refund_amount = price.amount * window.refund_percentage / 100
        cancellation_fee = price.amount - refund_amount

        logger.debug(
            "Cancellation window matched",
            extra={
                "hours_until_service": round(hours_until_service, 2),
                "hours_before_service": window.hours_before_service,
                "refund_percentage": str(window.refund_percentage),
                "refund_amount": str(refund_amount),
                "cancellation_fee": str(cancellation_fee),
            },
        )

        return PolicyQuote(
            can_cancel=True,
            refund_amount=refund_amount,
            cancellation_fee=cancellation_fee,
            refund_percentage=window.refund_percentage,
            hours_until_service=hours_until_service,
            message=window.description,
            window=window,
        )

    def _refuse(
        self, price: Price, hours_until_service: float, message: str
    ) -> PolicyQuote:
        logger.debug(
            "Cancellation refused by policy",
            extra={
                "hours_until_service": round(hours_until_service, 2),
                "reason": message,
            },
        )
        return PolicyQuote(
            can_cancel=False,
            refund_amount=Decimal("0"),
            cancellation_fee=price.amount,
            hours_until_service=hours_until_service,
            message=message,
        )
