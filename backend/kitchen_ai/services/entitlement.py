"""Entitlement gate for meal-plan generation

Pure functions of a SubscriptionSnapshot, a requested date range and ``now``.
All comparisons are done on calendar days in UTC.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from kitchen_ai.core.errors import EntitlementError
from kitchen_ai.models.subscription import SubscriptionSnapshot
from kitchen_ai.utils.dates import utc_day, utcnow

PLAN_HORIZON_MESSAGES = {
    "weekly": "Con plan semanal puedes planificar hasta 7 días adelante.",
    "monthly": "Con plan mensual puedes planificar hasta 30 días adelante.",
}


class EntitlementErrorCode(str, Enum):
    SUBSCRIPTION_REQUIRED = "subscription_required"
    INVALID_SUBSCRIPTION = "invalid_subscription"
    DATE_BEFORE_PERIOD = "date_before_period"
    DATE_AFTER_PERIOD = "date_after_period"
    DATE_IN_PAST = "date_in_past"


ERROR_STATUS = {
    EntitlementErrorCode.SUBSCRIPTION_REQUIRED: 403,
    EntitlementErrorCode.INVALID_SUBSCRIPTION: 500,
    EntitlementErrorCode.DATE_BEFORE_PERIOD: 403,
    EntitlementErrorCode.DATE_AFTER_PERIOD: 403,
    EntitlementErrorCode.DATE_IN_PAST: 400,
}


@dataclass(frozen=True)
class EntitlementDecision:
    allowed: bool
    code: Optional[EntitlementErrorCode] = None
    message: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return 200 if self.allowed else ERROR_STATUS[self.code]

    def to_dict(self) -> Dict[str, Any]:
        if self.allowed:
            return {"allowed": True}
        body = {"allowed": False, "error": self.code.value, "message": self.message}
        body.update(self.extra)
        return body

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise EntitlementError(
                self.message,
                code=self.code.value,
                status_code=self.status_code,
                extra=self.extra,
            )


ALLOWED = EntitlementDecision(allowed=True)


def _deny(code: EntitlementErrorCode, message: str, **extra) -> EntitlementDecision:
    return EntitlementDecision(allowed=False, code=code, message=message, extra=extra)


def _format_day(day: date) -> str:
    return day.strftime("%d/%m/%Y")


def check_generation_window(
    snapshot: Optional[SubscriptionSnapshot],
    first_date: date,
    last_date: date,
    now: Optional[datetime] = None
) -> EntitlementDecision:
    """Decide whether meals may be generated for ``[first_date, last_date]``"""
    now = now or utcnow()

    if snapshot is None or snapshot.plan == "free" or snapshot.status != "active":
        return _deny(
            EntitlementErrorCode.SUBSCRIPTION_REQUIRED,
            "Necesitas una suscripción activa para usar el planificador de comidas",
            plan=snapshot.plan if snapshot else "free",
        )

    if snapshot.period_start is None or snapshot.period_end is None:
        return _deny(
            EntitlementErrorCode.INVALID_SUBSCRIPTION,
            "Tu suscripción no tiene fechas válidas. Por favor contacta soporte.",
        )

    period_start = utc_day(snapshot.period_start)
    period_end = utc_day(snapshot.period_end)
    first_date = utc_day(first_date)
    last_date = utc_day(last_date)

    if first_date < period_start:
        return _deny(
            EntitlementErrorCode.DATE_BEFORE_PERIOD,
            f"No puedes generar comidas antes del inicio de tu período de suscripción ({_format_day(period_start)})",
        )

    if last_date > period_end:
        horizon = PLAN_HORIZON_MESSAGES.get(snapshot.plan, PLAN_HORIZON_MESSAGES["monthly"])
        return _deny(
            EntitlementErrorCode.DATE_AFTER_PERIOD,
            f"No puedes generar comidas después del final de tu período de suscripción ({_format_day(period_end)}). {horizon}",
            period_end=snapshot.period_end.isoformat(),
            plan=snapshot.plan,
        )

    if last_date < utc_day(now) - timedelta(days=1):
        return _deny(
            EntitlementErrorCode.DATE_IN_PAST,
            "No puedes generar planes de comidas para fechas pasadas",
        )

    return ALLOWED


def can_generate_for_date(
    snapshot: Optional[SubscriptionSnapshot],
    target: date,
    now: Optional[datetime] = None
) -> EntitlementDecision:
    """Single-day variant used for UI gating"""
    return check_generation_window(snapshot, target, target, now)


def generation_range(week_start: date, start_day_offset: int = 0, days_to_generate: int = 7):
    """First and last day covered by a generation request"""
    first = week_start + timedelta(days=start_day_offset)
    last = first + timedelta(days=max(days_to_generate, 1) - 1)
    return first, last
