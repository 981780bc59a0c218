"""
Subscription persistence.

The subscription is a document embedded in the user record. Writes are a
compare-and-set on ``subscription_version`` that only touch the subscription
field, so unrelated user fields are never clobbered and two concurrent
writers cannot both apply.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app import models
from app.database import get_db
from app.errors import StorageError
from app.schemas import SubscriptionDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredSubscription:
    subscription: Optional[SubscriptionDocument]
    version: int
    user_exists: bool


@dataclass(frozen=True)
class PaymentEventRecord:
    payment_id: str
    order_id: str
    user_id: str
    plan_id: str
    amount: Optional[int] = None
    currency: Optional[str] = None


class SubscriptionStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def load(self, user_id: str) -> StoredSubscription:
        try:
            row = self.db.execute(
                select(models.User.subscription, models.User.subscription_version).where(
                    models.User.id == user_id
                )
            ).first()
        except SQLAlchemyError as exc:
            logger.exception("Failed to read subscription user_id=%s", user_id)
            raise StorageError("Failed to read subscription") from exc

        if row is None:
            return StoredSubscription(subscription=None, version=0, user_exists=False)

        document = None
        if row.subscription:
            try:
                document = SubscriptionDocument.model_validate(row.subscription)
            except SchemaValidationError as exc:
                logger.error("Corrupt subscription document user_id=%s: %s", user_id, exc)
                raise StorageError("Stored subscription is unreadable") from exc
        return StoredSubscription(
            subscription=document,
            version=int(row.subscription_version or 0),
            user_exists=True,
        )

    def get(self, user_id: str) -> Optional[SubscriptionDocument]:
        return self.load(user_id).subscription

    def find_payment_event(self, payment_id: str) -> Optional[PaymentEventRecord]:
        try:
            row = self.db.execute(
                select(models.PaymentEvent).where(models.PaymentEvent.payment_id == payment_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("Failed to read payment event payment_id=%s", payment_id)
            raise StorageError("Failed to read payment history") from exc
        if row is None:
            return None
        return PaymentEventRecord(
            payment_id=row.payment_id,
            order_id=row.order_id,
            user_id=row.user_id,
            plan_id=row.plan_id,
            amount=row.amount,
            currency=row.currency,
        )

    def compare_and_set(
        self,
        user_id: str,
        expected: StoredSubscription,
        subscription: SubscriptionDocument,
        email: Optional[str] = None,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> bool:
        """
        Merge-write the subscription field if nobody wrote it since ``expected``
        was loaded, recording the payment event in the same transaction.
        Returns False on a version conflict; raises StorageError on failure.
        """
        document = subscription.to_document()
        try:
            if not expected.user_exists:
                self.db.add(
                    models.User(
                        id=user_id,
                        email=email,
                        subscription=document,
                        subscription_version=1,
                    )
                )
                self.db.flush()
            else:
                result = self.db.execute(
                    update(models.User)
                    .where(
                        models.User.id == user_id,
                        models.User.subscription_version == expected.version,
                    )
                    .values(
                        subscription=document,
                        subscription_version=expected.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    self.db.rollback()
                    return False

            if subscription.payment_id and subscription.order_id:
                self.db.add(
                    models.PaymentEvent(
                        payment_id=subscription.payment_id,
                        order_id=subscription.order_id,
                        user_id=user_id,
                        plan_id=subscription.plan_id,
                        amount=amount,
                        currency=currency,
                    )
                )
                self.db.flush()
            self.db.commit()
        except IntegrityError:
            # Concurrent insert of the same user row or payment id.
            self.db.rollback()
            return False
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to write subscription user_id=%s", user_id)
            raise StorageError("Failed to update subscription") from exc
        return True


def get_subscription_store(db: Session = Depends(get_db)) -> SubscriptionStore:
    return SubscriptionStore(db)
