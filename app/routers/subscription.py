from fastapi import APIRouter, Depends

from app import schemas
from app.auth import get_current_identity
from app.identity import VerifiedIdentity
from app.plans import PLAN_FREE, TOKEN_LIMITS
from app.store import SubscriptionStore, get_subscription_store
from app.subscriptions import (
    days_until_expiration,
    effective_status,
    is_active,
    is_expiring_soon,
    quota_for_subscription,
    utcnow,
)

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("/me", response_model=schemas.SubscriptionStatusResponse)
def get_my_subscription(
    identity: VerifiedIdentity = Depends(get_current_identity),
    store: SubscriptionStore = Depends(get_subscription_store),
):
    subscription = store.get(identity.user_id)
    now = utcnow()
    if subscription is None:
        return schemas.SubscriptionStatusResponse(
            plan_id=PLAN_FREE,
            status=effective_status(None, now),
            is_active=False,
            token_limit=quota_for_subscription(None, now),
        )

    return schemas.SubscriptionStatusResponse(
        plan_id=subscription.plan_id,
        status=effective_status(subscription, now),
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        is_active=is_active(subscription, now),
        token_limit=quota_for_subscription(subscription, now),
        days_until_expiration=days_until_expiration(subscription, now),
        is_expiring_soon=is_expiring_soon(subscription, now),
    )


@router.get("/plans", response_model=schemas.PlansResponse)
def list_plans():
    return schemas.PlansResponse(
        plans=[
            schemas.PlanInfo(plan_id=plan_id, token_limit=limit)
            for plan_id, limit in TOKEN_LIMITS.items()
        ]
    )
