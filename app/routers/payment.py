from fastapi import APIRouter, Depends, Request

from app import schemas
from app.config import Settings, get_settings
from app.errors import ValidationError
from app.identity import get_identity_verifier
from app.services.orders import create_order
from app.services.razorpay_client import RazorpayClient, get_razorpay_client
from app.store import SubscriptionStore, get_subscription_store
from app.subscriptions import effective_status, verify_and_activate
from app.utils.rate_limiter import enforce_rate_limit

router = APIRouter(prefix="/api/payment", tags=["payment"])


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@router.post("/create-order", response_model=schemas.CreateOrderResponse)
def create_payment_order(
    payload: schemas.CreateOrderRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    verifier=Depends(get_identity_verifier),
    gateway: RazorpayClient = Depends(get_razorpay_client),
):
    if _is_blank(payload.plan_id) or _is_blank(payload.amount) or _is_blank(payload.id_token):
        raise ValidationError("Missing required fields")

    identity = verifier.verify(payload.id_token)
    enforce_rate_limit(
        request=request,
        settings=settings,
        scope="payment.create_order",
        limit=settings.create_order_rate_limit,
        window_seconds=settings.create_order_rate_window_seconds,
        extra_key=identity.user_id,
    )

    order = create_order(
        gateway=gateway,
        plan_id=payload.plan_id,
        amount=payload.amount,
        user_id=identity.user_id,
        currency=settings.payment_currency,
    )
    return schemas.CreateOrderResponse(
        order_id=order.order_id,
        amount=order.amount,
        currency=order.currency,
    )


@router.post("/verify", response_model=schemas.PaymentVerifyResponse)
def verify_payment(
    payload: schemas.PaymentVerifyRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    verifier=Depends(get_identity_verifier),
    gateway: RazorpayClient = Depends(get_razorpay_client),
    store: SubscriptionStore = Depends(get_subscription_store),
):
    required = (
        payload.razorpay_payment_id,
        payload.razorpay_order_id,
        payload.razorpay_signature,
        payload.plan_id,
        payload.id_token,
    )
    if any(_is_blank(value) for value in required):
        raise ValidationError("Missing required fields")

    identity = verifier.verify(payload.id_token)
    enforce_rate_limit(
        request=request,
        settings=settings,
        scope="payment.verify",
        limit=settings.verify_rate_limit,
        window_seconds=settings.verify_rate_window_seconds,
        extra_key=identity.user_id,
    )

    result = verify_and_activate(
        store=store,
        key_secret=settings.razorpay_key_secret,
        user_id=identity.user_id,
        order_id=payload.razorpay_order_id,
        payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
        plan_id=payload.plan_id,
        gateway=gateway if settings.razorpay_reconcile_orders else None,
        email=identity.email,
    )

    subscription = result.subscription
    if result.applied:
        message = "Payment verified and subscription updated"
    else:
        message = "Payment already verified"
    return schemas.PaymentVerifyResponse(
        success=True,
        message=message,
        subscription=schemas.SubscriptionSummary(
            plan_id=subscription.plan_id,
            status=effective_status(subscription),
            end_date=subscription.end_date,
        ),
    )
