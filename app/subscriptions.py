import calendar
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from app.errors import SignatureInvalid, StorageError, ValidationError
from app.plans import PLAN_FREE, TOKEN_LIMITS, is_known_plan, normalize_plan_id, quota_for
from app.schemas import SubscriptionDocument
from app.services.razorpay_client import RazorpayClient, looks_like_razorpay_id
from app.store import SubscriptionStore
from app.utils.signatures import verify_payment_signature

logger = logging.getLogger(__name__)

STATUS_NONE = "none"
STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"
STATUS_INVALID = "invalid"

SUBSCRIPTION_TERM_MONTHS = 1
EXPIRING_SOON_DAYS = 7
DAY = timedelta(days=1)


@dataclass(frozen=True)
class ActivationResult:
    subscription: SubscriptionDocument
    applied: bool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day (Jan 31 + 1 month -> Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def effective_status(subscription: Optional[SubscriptionDocument], now: Optional[datetime] = None) -> str:
    """Status as of ``now``; a stored active subscription past its end date reads as expired."""
    if subscription is None:
        return STATUS_NONE
    status = (subscription.status or STATUS_NONE).strip().lower()
    if status != STATUS_ACTIVE:
        return status

    ends_at = _normalize_datetime(subscription.end_date)
    now = _normalize_datetime(now) or utcnow()
    if ends_at is None or now > ends_at:
        return STATUS_EXPIRED
    return STATUS_ACTIVE


def is_active(subscription: Optional[SubscriptionDocument], now: Optional[datetime] = None) -> bool:
    return effective_status(subscription, now) == STATUS_ACTIVE


def days_until_expiration(subscription: Optional[SubscriptionDocument], now: Optional[datetime] = None) -> int:
    """
    Whole days left until ``endDate``, rounded up. Zero or negative once the
    end date has passed, -1 when there is no end date at all.
    """
    ends_at = _normalize_datetime(subscription.end_date) if subscription is not None else None
    if ends_at is None:
        return -1
    now = _normalize_datetime(now) or utcnow()
    return math.ceil((ends_at - now) / DAY)


def is_expiring_soon(subscription: Optional[SubscriptionDocument], now: Optional[datetime] = None) -> bool:
    days = days_until_expiration(subscription, now)
    return 0 < days <= EXPIRING_SOON_DAYS


def effective_plan(subscription: Optional[SubscriptionDocument], now: Optional[datetime] = None) -> str:
    if not is_active(subscription, now):
        return PLAN_FREE
    plan_id = normalize_plan_id(subscription.plan_id)
    return plan_id if plan_id in TOKEN_LIMITS else PLAN_FREE


def quota_for_subscription(subscription: Optional[SubscriptionDocument], now: Optional[datetime] = None) -> int:
    """Token ceiling the chat-send path enforces for this subscription right now."""
    return quota_for(effective_plan(subscription, now))


def _same_payment(subscription: Optional[SubscriptionDocument], order_id: str, payment_id: str) -> bool:
    return (
        subscription is not None
        and subscription.order_id == order_id
        and subscription.payment_id == payment_id
    )


def reconcile_order(gateway: RazorpayClient, order_id: str, user_id: str, plan_id: str) -> dict:
    """
    Confirm with the provider that the order was created for this user and
    plan. The checkout signature covers only the order and payment ids, so
    without this a client could pay for one plan and claim another.
    """
    if not looks_like_razorpay_id(order_id, "order"):
        raise ValidationError("Invalid payment order id")

    order_data = gateway.fetch_order(order_id)
    if str(order_data.get("id") or "").strip() != order_id:
        raise ValidationError("Payment order mismatch")

    # Razorpay serializes empty notes as [].
    notes = order_data.get("notes")
    if not isinstance(notes, dict):
        notes = {}
    order_user_id = str(notes.get("userId") or "").strip()
    if order_user_id and order_user_id != user_id:
        raise ValidationError("Payment order does not belong to this account")
    order_plan_id = normalize_plan_id(notes.get("planId"))
    if order_plan_id and order_plan_id != plan_id:
        raise ValidationError("Payment order was created for a different plan")
    return order_data


def _order_amount(order_data: Optional[dict]) -> Tuple[Optional[int], Optional[str]]:
    if not order_data:
        return None, None
    amount = order_data.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, int):
        amount = None
    currency = str(order_data.get("currency") or "").strip().upper()
    if len(currency) != 3:
        currency = None
    return amount, currency


def verify_and_activate(
    store: SubscriptionStore,
    key_secret: str,
    user_id: str,
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    plan_id: Optional[str],
    gateway: Optional[RazorpayClient] = None,
    now: Optional[datetime] = None,
    email: Optional[str] = None,
) -> ActivationResult:
    """
    Apply a client-reported payment to the user's subscription.

    ``user_id`` must come from an identity verified in the same request.
    Nothing is written unless every check passes; the compare-and-set write
    is the single commit point. Replays of an applied (order, payment) pair
    return the stored subscription untouched.
    """
    order_id = (order_id or "").strip()
    payment_id = (payment_id or "").strip()
    plan = normalize_plan_id(plan_id)
    if not user_id or not order_id or not payment_id or not signature or not plan:
        raise ValidationError("Missing required fields")
    if not is_known_plan(plan):
        raise ValidationError(f"Unknown plan: {plan}")

    if not verify_payment_signature(key_secret, order_id, payment_id, signature):
        logger.warning(
            "Rejected payment signature user_id=%s order_id=%s payment_id=%s",
            user_id,
            order_id,
            payment_id,
        )
        raise SignatureInvalid()

    stored = store.load(user_id)
    if _same_payment(stored.subscription, order_id, payment_id):
        return ActivationResult(subscription=stored.subscription, applied=False)

    event = store.find_payment_event(payment_id)
    if event is not None:
        if event.user_id != user_id or event.order_id != order_id:
            logger.warning(
                "Payment id reuse payment_id=%s user_id=%s order_id=%s (recorded for user_id=%s order_id=%s)",
                payment_id,
                user_id,
                order_id,
                event.user_id,
                event.order_id,
            )
            raise ValidationError("Payment is already tied to another order")
        # Applied earlier and since superseded; never re-activate from it.
        if stored.subscription is not None:
            return ActivationResult(subscription=stored.subscription, applied=False)

    order_data = None
    if gateway is not None:
        order_data = reconcile_order(gateway, order_id, user_id, plan)
    amount, currency = _order_amount(order_data)

    starts_at = _normalize_datetime(now) or utcnow()
    subscription = SubscriptionDocument(
        plan_id=plan,
        status=STATUS_ACTIVE,
        start_date=starts_at,
        end_date=add_months(starts_at, SUBSCRIPTION_TERM_MONTHS),
        payment_id=payment_id,
        order_id=order_id,
    )

    if store.compare_and_set(user_id, stored, subscription, email=email, amount=amount, currency=currency):
        logger.info(
            "Activated subscription user_id=%s plan=%s order_id=%s payment_id=%s ends_at=%s",
            user_id,
            plan,
            order_id,
            payment_id,
            subscription.end_date.isoformat(),
        )
        return ActivationResult(subscription=subscription, applied=True)

    latest = store.get(user_id)
    if _same_payment(latest, order_id, payment_id):
        return ActivationResult(subscription=latest, applied=False)
    logger.warning("Concurrent subscription update user_id=%s order_id=%s", user_id, order_id)
    raise StorageError("Subscription was modified concurrently; please retry")
