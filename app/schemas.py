from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SubscriptionDocument(CamelModel):
    """The subscription field embedded in a user record."""

    plan_id: str = Field(alias="planId")
    status: str
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    order_id: Optional[str] = Field(default=None, alias="orderId")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CreateOrderRequest(CamelModel):
    plan_id: Optional[str] = Field(default=None, alias="planId")
    # Validated by the order service; bools and strings are rejected there.
    amount: Optional[Any] = None
    id_token: Optional[str] = Field(default=None, alias="idToken")


class CreateOrderResponse(CamelModel):
    order_id: str = Field(alias="orderId")
    amount: int
    currency: str


class PaymentVerifyRequest(CamelModel):
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    plan_id: Optional[str] = Field(default=None, alias="planId")
    id_token: Optional[str] = Field(default=None, alias="idToken")


class SubscriptionSummary(CamelModel):
    plan_id: str = Field(alias="planId")
    status: str
    end_date: Optional[datetime] = Field(default=None, alias="endDate")


class PaymentVerifyResponse(BaseModel):
    success: bool
    message: str
    subscription: SubscriptionSummary


class SubscriptionStatusResponse(CamelModel):
    plan_id: str = Field(alias="planId")
    status: str
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    is_active: bool = Field(alias="isActive")
    token_limit: int = Field(alias="tokenLimit")
    days_until_expiration: int = Field(default=-1, alias="daysUntilExpiration")
    is_expiring_soon: bool = Field(default=False, alias="isExpiringSoon")


class PlanInfo(CamelModel):
    plan_id: str = Field(alias="planId")
    token_limit: int = Field(alias="tokenLimit")


class PlansResponse(BaseModel):
    plans: List[PlanInfo]


class ErrorResponse(BaseModel):
    error: str
