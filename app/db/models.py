"""
SQLAlchemy ORM models for the UltimateApp database.
Defines all entities: User, Transaction, Order, Ride, Address, Message.
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text,
    Boolean, Numeric, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from db.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ENUM Types
class TransactionType(str, enum.Enum):
    """Ledger entry type. ADD and REFUND credit the wallet, the rest debit it."""
    ADD = "add"
    REFUND = "refund"
    TRANSFER = "transfer"
    FOOD_PURCHASE = "food_purchase"
    RIDE_FARE = "ride_fare"


CREDIT_TRANSACTION_TYPES = (TransactionType.ADD, TransactionType.REFUND)


class OrderStatus(str, enum.Enum):
    """Status of a food order."""
    CONFIRMED = "confirmed"


class RideStatus(str, enum.Enum):
    """Status of a ride."""
    DRIVER_ASSIGNED = "driver_assigned"
    COMPLETED = "completed"


# Models
class User(Base):
    """User entity - represents system users."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    password_hash = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    transactions = relationship("Transaction", back_populates="user")
    orders = relationship("Order", back_populates="user")
    rides = relationship("Ride", back_populates="user")
    addresses = relationship("Address", back_populates="user")


class Transaction(Base):
    """Append-only wallet ledger entry. The balance is derived from these rows."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(
        SQLEnum(TransactionType, values_callable=_enum_values, name="transaction_type"),
        nullable=False
    )
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    user = relationship("User", back_populates="transactions")


class Order(Base):
    """Food order."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_name = Column(String(255), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    status = Column(
        SQLEnum(OrderStatus, values_callable=_enum_values, name="order_status"),
        default=OrderStatus.CONFIRMED,
        nullable=False
    )
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    user = relationship("User", back_populates="orders")


class Ride(Base):
    """Ride-hailing trip."""
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(
        SQLEnum(RideStatus, values_callable=_enum_values, name="ride_status"),
        default=RideStatus.DRIVER_ASSIGNED,
        nullable=False
    )
    fare = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    user = relationship("User", back_populates="rides")


class Address(Base):
    """Saved delivery / pickup address. At most one default per user."""
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    address = Column(Text, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="addresses")


class Message(Base):
    """
    Direct message between two users.

    Rows are immutable once written; the autoincrement id is the storage
    order and breaks ties between equal created_at values.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(Integer, nullable=False, index=True)
    receiver_id = Column(Integer, nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
