"""
Repository layer for database operations.
Provides high-level methods for the REST handlers: users, wallet ledger,
food orders, rides and addresses.
"""
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import case, func
from sqlalchemy.orm import Session
from db.models import (
    User, Transaction, Order, Ride, Address,
    TransactionType, OrderStatus, RideStatus, CREDIT_TRANSACTION_TYPES
)


class Repository:
    """Repository class for database operations."""

    def __init__(self, db: Session):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    # User operations
    def create_user(self, username: str, password_hash: str, full_name: Optional[str] = None) -> User:
        """Create a new user. Raises IntegrityError if the username is taken."""
        user = User(
            username=username,
            password_hash=password_hash,
            full_name=full_name
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def get_user_by_username(self, username: str) -> Optional[User]:
        """Get user by username."""
        return self.db.query(User).filter(User.username == username).first()

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        return self.db.query(User).filter(User.id == user_id).first()

    def list_other_users(self, user_id: int) -> List[User]:
        """All users except the given one, ordered by id."""
        return self.db.query(User).filter(User.id != user_id).order_by(User.id).all()

    def update_profile(
        self,
        user: User,
        email: Optional[str],
        phone: Optional[str],
        full_name: Optional[str]
    ) -> User:
        """Overwrite the profile fields. Empty values are stored as NULL."""
        user.email = email or None
        user.phone = phone or None
        user.full_name = full_name or None
        self.db.commit()
        self.db.refresh(user)
        return user

    def update_password(self, user: User, password_hash: str) -> None:
        """Replace the stored password hash."""
        user.password_hash = password_hash
        self.db.commit()

    # Wallet operations
    def get_balance(self, user_id: int) -> Decimal:
        """
        Derive the wallet balance from the ledger.

        Credits (add, refund) count positive, every other entry negative.
        """
        signed_amount = case(
            (Transaction.type.in_(CREDIT_TRANSACTION_TYPES), Transaction.amount),
            else_=-Transaction.amount
        )
        balance = self.db.query(
            func.coalesce(func.sum(signed_amount), 0)
        ).filter(Transaction.user_id == user_id).scalar()
        return Decimal(str(balance or 0))

    def add_transaction(
        self,
        user_id: int,
        transaction_type: TransactionType,
        amount: Decimal,
        description: Optional[str] = None,
        commit: bool = True
    ) -> Transaction:
        """Append a ledger entry."""
        transaction = Transaction(
            user_id=user_id,
            type=transaction_type,
            amount=amount,
            description=description
        )
        self.db.add(transaction)
        if commit:
            self.db.commit()
            self.db.refresh(transaction)
        return transaction

    def get_recent_transactions(self, user_id: int, limit: int = 20) -> List[Transaction]:
        """Latest ledger entries, newest first."""
        return self.db.query(Transaction).filter(
            Transaction.user_id == user_id
        ).order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).all()

    # Food order operations
    def create_order(self, user_id: int, restaurant_name: str, total_price: Decimal) -> Order:
        """
        Record a confirmed order and debit its price in one commit.
        """
        order = Order(
            user_id=user_id,
            restaurant_name=restaurant_name,
            total_price=total_price,
            status=OrderStatus.CONFIRMED
        )
        self.db.add(order)
        self.db.flush()
        self.add_transaction(
            user_id,
            TransactionType.FOOD_PURCHASE,
            total_price,
            f"Food order #{order.id}",
            commit=False
        )
        self.db.commit()
        self.db.refresh(order)
        return order

    def get_recent_orders(self, user_id: int, limit: int = 10) -> List[Order]:
        """Latest orders, newest first."""
        return self.db.query(Order).filter(
            Order.user_id == user_id
        ).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()

    def count_orders(self, user_id: int) -> int:
        """Total number of orders placed by the user."""
        return self.db.query(func.count(Order.id)).filter(Order.user_id == user_id).scalar()

    # Ride operations
    def create_ride(self, user_id: int, fare: Decimal) -> Ride:
        """Create a ride with a driver assigned."""
        ride = Ride(user_id=user_id, status=RideStatus.DRIVER_ASSIGNED, fare=fare)
        self.db.add(ride)
        self.db.commit()
        self.db.refresh(ride)
        return ride

    def get_ride(self, ride_id: int, user_id: int) -> Optional[Ride]:
        """Get a ride owned by the user."""
        return self.db.query(Ride).filter(Ride.id == ride_id, Ride.user_id == user_id).first()

    def complete_ride(self, ride: Ride) -> Ride:
        """Mark the ride completed and debit its fare in one commit."""
        ride.status = RideStatus.COMPLETED
        self.add_transaction(
            ride.user_id,
            TransactionType.RIDE_FARE,
            ride.fare,
            f"Ride #{ride.id}",
            commit=False
        )
        self.db.commit()
        self.db.refresh(ride)
        return ride

    def get_recent_rides(self, user_id: int, limit: int = 10) -> List[Ride]:
        """Latest rides, newest first."""
        return self.db.query(Ride).filter(
            Ride.user_id == user_id
        ).order_by(Ride.created_at.desc(), Ride.id.desc()).limit(limit).all()

    def count_completed_rides(self, user_id: int) -> int:
        """Number of completed rides."""
        return self.db.query(func.count(Ride.id)).filter(
            Ride.user_id == user_id,
            Ride.status == RideStatus.COMPLETED
        ).scalar()

    # Address operations
    def list_addresses(self, user_id: int) -> List[Address]:
        """Addresses with the default first, then newest first."""
        return self.db.query(Address).filter(
            Address.user_id == user_id
        ).order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc()).all()

    def get_address(self, address_id: int, user_id: int) -> Optional[Address]:
        """Get an address owned by the user."""
        return self.db.query(Address).filter(
            Address.id == address_id,
            Address.user_id == user_id
        ).first()

    def _clear_default_address(self, user_id: int) -> None:
        self.db.query(Address).filter(
            Address.user_id == user_id
        ).update({Address.is_default: False}, synchronize_session="fetch")

    def create_address(self, user_id: int, title: str, address: str, is_default: bool) -> Address:
        """Save an address. A new default replaces the previous one."""
        if is_default:
            self._clear_default_address(user_id)
        record = Address(user_id=user_id, title=title, address=address, is_default=is_default)
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def update_address(self, record: Address, title: str, address: str, is_default: bool) -> Address:
        """Overwrite an address. A new default replaces the previous one."""
        if is_default:
            self._clear_default_address(record.user_id)
        record.title = title
        record.address = address
        record.is_default = is_default
        self.db.commit()
        self.db.refresh(record)
        return record

    def delete_address(self, record: Address) -> None:
        """Delete an address."""
        self.db.delete(record)
        self.db.commit()
