from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from app.database import Base


class User(Base):
    __tablename__ = "users"

    # Opaque uid issued by the identity provider.
    id = Column(String(128), primary_key=True, index=True)
    email = Column(String, nullable=True)
    # Embedded subscription document (camelCase keys), merged in place.
    subscription = Column(JSON, nullable=True)
    subscription_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PaymentEvent(Base):
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(String(64), unique=True, index=True, nullable=False)
    order_id = Column(String(64), index=True, nullable=False)
    user_id = Column(String(128), ForeignKey("users.id"), index=True, nullable=False)
    plan_id = Column(String(32), nullable=False)
    # Minor units and ISO code, as reported by the provider when the order was reconciled.
    amount = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
