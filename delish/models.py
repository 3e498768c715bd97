from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from delish.database import Base

ORDER_PAID = "PAID"
ORDER_REFUNDED = "REFUNDED"


def utcnow() -> datetime:
    # Naive UTC; sqlite does not round-trip tzinfo.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)          # identity provider subject
    email = Column(String, nullable=True)
    name = Column(String, nullable=True)
    stripe_account = Column(String, nullable=True, unique=True)  # Connect account id
    created_at = Column(DateTime, nullable=False, default=utcnow)

    lists = relationship("MapList", back_populates="owner")


class MapList(Base):
    __tablename__ = "lists"

    id = Column(String, primary_key=True, default=_uuid)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    slug = Column(String, unique=True, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    maps_list_url = Column(String, nullable=False)
    price_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="usd")
    cover_image_url = Column(String, nullable=True)
    hosted_mirror = Column(Boolean, nullable=False, default=False)
    published = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="lists")
    orders = relationship("Order", back_populates="list")


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=_uuid)
    buyer_email = Column(String, nullable=False, index=True)
    list_id = Column(String, ForeignKey("lists.id"), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)
    stripe_session_id = Column(String, unique=True, nullable=False)   # idempotency key
    stripe_payment_id = Column(String, nullable=True, index=True)     # PaymentIntent ID, matches refunds
    status = Column(String, nullable=False, default=ORDER_PAID)       # PAID | REFUNDED
    created_at = Column(DateTime, nullable=False, default=utcnow)

    list = relationship("MapList", back_populates="orders")
    access_grants = relationship("AccessGrant", back_populates="order")


class AccessGrant(Base):
    __tablename__ = "access_grants"
    __table_args__ = (UniqueConstraint("order_id", "buyer_email"),)

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    list_id = Column(String, ForeignKey("lists.id"), nullable=False, index=True)
    buyer_email = Column(String, nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    last_access_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="access_grants")


class SessionToken(Base):
    __tablename__ = "session_tokens"

    id = Column(String, primary_key=True)          # unlock token jti
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
