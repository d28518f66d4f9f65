"""SQLAlchemy ORM models for the receipt API.

Identifiers are opaque UUID strings so that they can be handed to the
browser for selection without exposing row counts.  Timestamps are
naive UTC datetimes.

If you extend or modify these models remember to recreate the tables
(``init_db``) during development.
"""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from receiptbox.core.database import Base
from .enums import ReceiptStatus


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """User account owning a set of receipts."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    receipts = relationship("Receipt", back_populates="owner", cascade="all, delete-orphan")


class Receipt(Base):
    """Uploaded receipt and its extracted fields."""

    __tablename__ = "receipts"
    __table_args__ = (
        Index("ix_receipts_user_id_purchase_date", "user_id", "purchase_date"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    image_url = Column(String, nullable=False)
    raw_text = Column(Text, nullable=True)
    merchant = Column(String, nullable=False, index=True)
    total = Column(Numeric(10, 2), nullable=False)
    purchase_date = Column(DateTime, nullable=False)
    category = Column(String, nullable=True, index=True)
    subcategory = Column(String, nullable=True)
    confidence_score = Column(Float, nullable=True)  # 0..1
    summary = Column(Text, nullable=True)
    status = Column(Enum(ReceiptStatus), default=ReceiptStatus.PROCESSING, nullable=False)
    created_at = Column(DateTime, default=dt.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=dt.datetime.utcnow, onupdate=dt.datetime.utcnow, nullable=False)

    owner = relationship("User", back_populates="receipts")
