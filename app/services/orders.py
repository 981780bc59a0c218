import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from app.errors import GatewayError, ValidationError
from app.plans import is_known_plan, normalize_plan_id
from app.services.razorpay_client import RazorpayClient, looks_like_razorpay_id

logger = logging.getLogger(__name__)

RECEIPT_MAX_LENGTH = 40
RECEIPT_USER_ID_CHARS = 20


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    amount: int
    currency: str


def to_minor_units(amount: Any) -> int:
    """Convert a major-unit amount (e.g. 10.5 USD) to minor units (1050)."""
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        raise ValidationError("Amount must be a positive number")
    if isinstance(amount, float) and not math.isfinite(amount):
        raise ValidationError("Amount must be a positive number")
    try:
        minor = (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError("Amount must be a positive number")
    if minor < 1:
        raise ValidationError("Amount must be a positive number")
    return int(minor)


def build_receipt(user_id: str, now: datetime) -> str:
    millis = int(now.timestamp() * 1000)
    return f"rcpt_{user_id[:RECEIPT_USER_ID_CHARS]}_{millis}"[:RECEIPT_MAX_LENGTH]


def create_order(
    gateway: RazorpayClient,
    plan_id: Optional[str],
    amount: Any,
    user_id: str,
    currency: str,
    now: Optional[datetime] = None,
) -> OrderResult:
    plan = normalize_plan_id(plan_id)
    if not plan:
        raise ValidationError("Missing required fields")
    if not is_known_plan(plan):
        raise ValidationError(f"Unknown plan: {plan}")
    amount_minor = to_minor_units(amount)
    now = now or datetime.now(timezone.utc)

    order_data = gateway.create_order(
        amount=amount_minor,
        currency=currency,
        receipt=build_receipt(user_id, now),
        notes={"userId": user_id, "planId": plan},
    )

    order_id = str(order_data.get("id", "")).strip()
    if not looks_like_razorpay_id(order_id, "order"):
        logger.error("Razorpay order response without a valid id: %s", order_data)
        raise GatewayError("Invalid payment order response from provider")

    try:
        returned_amount = int(order_data.get("amount", amount_minor) or amount_minor)
    except (TypeError, ValueError):
        returned_amount = amount_minor
    returned_currency = str(order_data.get("currency") or currency).strip().upper()

    logger.info(
        "Created payment order order_id=%s user_id=%s plan=%s amount=%s %s",
        order_id,
        user_id,
        plan,
        returned_amount,
        returned_currency,
    )
    return OrderResult(order_id=order_id, amount=returned_amount, currency=returned_currency)
