"""Subscription domain rules: states, billing periods and period arithmetic."""
import calendar
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Optional


class SubscriptionStatus(str, Enum):
    """Subscription states as reported by the processor."""
    CREATED = "created"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    PENDING = "pending"
    HALTED = "halted"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset(
    {
        SubscriptionStatus.HALTED,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.COMPLETED,
        SubscriptionStatus.EXPIRED,
    }
)

# Statuses meaning the customer completed authorization
ACTIVATED_STATUSES = frozenset({SubscriptionStatus.AUTHENTICATED, SubscriptionStatus.ACTIVE})


class PaymentStatus(str, Enum):
    """Payment states."""
    CREATED = "created"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    REFUNDED = "refunded"
    FAILED = "failed"


class PlanInterval(str, Enum):
    """Recurrence unit of a plan."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BillingPeriod(str, Enum):
    """Local classification of a plan's recurrence."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class AuditActor(str, Enum):
    """Who caused a subscription change."""
    CONTROLLER = "controller"
    WEBHOOK = "webhook"
    POLL = "poll"


class AuditKind(str, Enum):
    """What kind of change an audit entry records."""
    CREATED = "created"
    SELF_HEALED = "self_healed"
    STATUS_CHANGED = "status_changed"
    CHARGED = "charged"
    INVOICE = "invoice"
    MANUAL_CHECK = "manual_check"
    ADDON_ADDED = "addon_added"


# Webhook event name -> status it asserts for the subscription
EVENT_STATUS: dict[str, SubscriptionStatus] = {
    "subscription.authenticated": SubscriptionStatus.AUTHENTICATED,
    "subscription.activated": SubscriptionStatus.ACTIVE,
    "subscription.charged": SubscriptionStatus.ACTIVE,
    "subscription.resumed": SubscriptionStatus.ACTIVE,
    "subscription.pending": SubscriptionStatus.PENDING,
    "subscription.halted": SubscriptionStatus.HALTED,
    "subscription.cancelled": SubscriptionStatus.CANCELLED,
    "subscription.completed": SubscriptionStatus.COMPLETED,
    "subscription.ended": SubscriptionStatus.COMPLETED,
    "subscription.expired": SubscriptionStatus.EXPIRED,
}

DEFAULT_TOTAL_COUNT: dict[BillingPeriod, int] = {
    BillingPeriod.YEARLY: 1,
    BillingPeriod.QUARTERLY: 4,
    BillingPeriod.MONTHLY: 12,
}

_INTERVAL_ALIASES = {
    "day": PlanInterval.DAILY,
    "daily": PlanInterval.DAILY,
    "week": PlanInterval.WEEKLY,
    "weekly": PlanInterval.WEEKLY,
    "month": PlanInterval.MONTHLY,
    "monthly": PlanInterval.MONTHLY,
    "year": PlanInterval.YEARLY,
    "yearly": PlanInterval.YEARLY,
}


def parse_status(value: Optional[str]) -> Optional[SubscriptionStatus]:
    """Map a processor status string to a known status, or None if unrecognised."""
    try:
        return SubscriptionStatus(value)
    except ValueError:
        return None


def is_terminal(status: str) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns stored timestamps without tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_unix(value: Optional[int | float | str]) -> Optional[datetime]:
    """Convert a processor unix timestamp to an aware datetime."""
    if value in (None, "", 0):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def to_unix(value: datetime) -> int:
    return int(ensure_utc(value).timestamp())


def normalize_interval(period: Optional[str]) -> PlanInterval:
    """Normalise processor periods ("month", "monthly", ...) to a PlanInterval."""
    return _INTERVAL_ALIASES.get((period or "").strip().lower(), PlanInterval.MONTHLY)


def derive_billing_period(period: Optional[str], interval: Optional[int]) -> BillingPeriod:
    """Classify a processor (period, interval) pair.

    Every 3 months is quarterly, any yearly period is yearly, everything
    else is treated as monthly.
    """
    unit = normalize_interval(period)
    if unit == PlanInterval.YEARLY:
        return BillingPeriod.YEARLY
    if unit == PlanInterval.MONTHLY and int(interval or 1) == 3:
        return BillingPeriod.QUARTERLY
    return BillingPeriod.MONTHLY


def default_total_count(billing_period: str) -> int:
    try:
        return DEFAULT_TOTAL_COUNT[BillingPeriod(billing_period)]
    except ValueError:
        return DEFAULT_TOTAL_COUNT[BillingPeriod.MONTHLY]


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of shorter months (Jan 31 + 1 month -> Feb 28/29)
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_interval(value: datetime, interval: str, count: int) -> datetime:
    """Advance a datetime by `count` plan intervals."""
    unit = normalize_interval(interval)
    if unit == PlanInterval.DAILY:
        return value + timedelta(days=count)
    if unit == PlanInterval.WEEKLY:
        return value + timedelta(weeks=count)
    if unit == PlanInterval.YEARLY:
        return _add_months(value, 12 * count)
    return _add_months(value, count)


def compute_end_date(
    start: datetime,
    interval: str,
    interval_count: int,
    total_count: int,
) -> datetime:
    """Compute the subscription end date locally from the plan schedule.

    The end date is the final scheduled charge: `total_count - 1` cycles
    after the start. A single-cycle subscription covers one full cycle.
    """
    cycles = max(total_count - 1, 1)
    return add_interval(start, interval, max(interval_count, 1) * cycles)


def renewal_start_date(current_end: datetime) -> datetime:
    """A renewal starts at 00:00 UTC on the day after the current cycle ends."""
    next_day = ensure_utc(current_end) + timedelta(days=1)
    return next_day.replace(hour=0, minute=0, second=0, microsecond=0)


def compute_expire_by(
    now: datetime,
    start_at: Optional[datetime] = None,
    window_days: int = 7,
) -> datetime:
    """Latest moment the processor should hold an unauthenticated subscription.

    Immediate subscriptions get the full window. Scheduled ones expire at the
    earlier of the window and one day before the scheduled start; if that has
    already passed, the start itself is used.
    """
    window_end = now + timedelta(days=window_days)
    if start_at is None:
        return window_end
    expire_by = min(window_end, start_at - timedelta(days=1))
    if expire_by <= now:
        return start_at
    return expire_by
