"""SQLAlchemy models for database tables.

Provides ORM models for carts, orders, order items and order status history.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from storefront.infrastructure.database import Base


# ============================================================================
# Cart Models
# ============================================================================


class CartModel(Base):
    """Cart model for database persistence.

    One row per actor key. The item list is stored as a JSON array and
    rewritten whole on every mutation.
    """

    __tablename__ = "carts"

    cart_key = Column(String(255), primary_key=True)
    items = Column(JSON, nullable=False, default=list)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    Represents a paid cart. Payment fields are copied from the gateway
    sale result; the transaction id is unique so a resubmission can be
    detected.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    buyer_id = Column(String(100), nullable=False, index=True)
    buyer_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="Not Processed", index=True)

    # Totals
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Payment
    transaction_id = Column(String(100), nullable=False, unique=True, index=True)
    payment_status = Column(String(50), nullable=False)
    payment_success = Column(Boolean, nullable=False)
    payment_amount_cents = Column(Integer, nullable=False)
    payment_message = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
        lazy="selectin",
    )
    status_history = relationship(
        "OrderStatusHistoryModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistoryModel.created_at",
        lazy="selectin",
    )


class OrderItemModel(Base):
    """Order item model for database persistence.

    Holds the price snapshot of one product in an order.
    """

    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)
    product_id = Column(String(100), nullable=False)
    name = Column(String(500), nullable=False)
    unit = Column(String(50), nullable=False, default="each")
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Relationships
    order = relationship("OrderModel", back_populates="items")


class OrderStatusHistoryModel(Base):
    """Order status history model for audit trail.

    Tracks all status transitions for an order.
    """

    __tablename__ = "order_status_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action = Column(String(50), nullable=False)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    actor = Column(String(100), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    order = relationship("OrderModel", back_populates="status_history")
