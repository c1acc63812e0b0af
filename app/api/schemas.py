"""
Pydantic schemas for request/response validation.
Defines all data transfer objects (DTOs) for the API.

Field names follow the mobile client's wire format (camelCase where the
client sends camelCase), so several models declare aliases.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict
from db.models import TransactionType, OrderStatus, RideStatus


# Authentication Schemas
class CredentialsRequest(BaseModel):
    """
    Username/password pair used by both registration and login.

    Example:
        ```json
        {"username": "ayse", "password": "secret123"}
        ```
    """
    username: str = Field(..., min_length=1, max_length=50, description="Username")
    password: str = Field(..., min_length=1, description="Plain text password")


class UserSummary(BaseModel):
    """Public user identity."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str


class RegisterResponse(BaseModel):
    message: str
    user: UserSummary


class LoginResponse(BaseModel):
    """
    Login result. ``token`` is a JWT to send as ``Authorization: Bearer``
    and as the ``token`` query parameter / frame field on the socket.
    """
    message: str
    token: str
    id: int


class MessageResponse(BaseModel):
    """Generic acknowledgement body."""
    message: str


# Wallet Schemas
class BalanceResponse(BaseModel):
    user: str
    balance: str = Field(..., description="Balance formatted with two decimals")
    last_updated: str


class WalletAddRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Amount to load into the wallet")


class WalletTransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal = Field(..., gt=0)
    iban: str = Field(..., min_length=1)
    recipient_name: str = Field(..., min_length=1, alias="recipientName")


class WalletUpdateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    new_balance: str = Field(..., serialization_alias="newBalance")


class TransactionItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    amount: Decimal
    description: Optional[str] = None
    created_at: datetime


# Food Schemas
class FoodItem(BaseModel):
    id: int
    name: str
    price: int
    image: str
    description: str


class FoodOrderRequest(BaseModel):
    """
    Food order. ``items`` is stored as-is by the client and only checked
    for presence; ``totalPrice`` is what gets debited.
    """
    model_config = ConfigDict(populate_by_name=True)

    items: List[Any] = Field(..., min_length=1)
    total_price: Decimal = Field(..., gt=0, alias="totalPrice")
    restaurant_name: Optional[str] = Field(None, alias="restaurantName")


class FoodOrderResponse(BaseModel):
    message: str
    order_id: int = Field(..., serialization_alias="orderId")
    new_balance: str = Field(..., serialization_alias="newBalance")


class OrderItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    restaurant_name: str
    total_price: Decimal
    status: OrderStatus
    created_at: datetime


# Ride Schemas
class RideRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pickup: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    estimated_fare: Optional[Decimal] = Field(None, gt=0, alias="estimatedFare")


class DriverInfo(BaseModel):
    name: str
    car: str
    plate: str
    rating: float


class RideRequestResponse(BaseModel):
    message: str
    ride_id: int = Field(..., serialization_alias="rideId")
    driver: DriverInfo
    estimated_arrival: str = Field(..., serialization_alias="estimatedArrival")
    fare: float


class RideCompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ride_id: int = Field(..., alias="rideId")


class RideCompleteResponse(BaseModel):
    message: str
    fare: Decimal
    new_balance: str = Field(..., serialization_alias="newBalance")


class RideItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: RideStatus
    fare: Decimal
    created_at: datetime


# Profile Schemas
class ProfileStats(BaseModel):
    total_orders: int = Field(..., serialization_alias="totalOrders")
    total_rides: int = Field(..., serialization_alias="totalRides")
    balance: str


class ProfileResponse(BaseModel):
    id: int
    username: str
    email: str
    phone: str
    full_name: str = Field(..., serialization_alias="fullName")
    created_at: datetime = Field(..., serialization_alias="createdAt")
    stats: ProfileStats


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    phone: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullName")


class PasswordChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., min_length=1, alias="currentPassword")
    new_password: str = Field(..., min_length=6, alias="newPassword")


# Address Schemas
class AddressRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=100)
    address: str = Field(..., min_length=1)
    is_default: bool = Field(False, alias="isDefault")


class AddressItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    address: str
    is_default: bool
    created_at: datetime


class AddressCreateResponse(BaseModel):
    message: str
    address_id: int = Field(..., serialization_alias="addressId")


# Conversation history
class HistoryMessage(BaseModel):
    """One stored direct message as returned by the history endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    from_: int = Field(..., alias="from")
    to: int
    text: str
    created_at: datetime


# WebSocket Schemas
class WSDelivery(BaseModel):
    """
    Server → client push for a new direct message.

    Example:
        ```json
        {"from": 1, "text": "hi", "created_at": "2026-10-19T10:00:00.000000Z"}
        ```
    """
    model_config = ConfigDict(populate_by_name=True)

    from_: int = Field(..., alias="from")
    text: str
    created_at: str


class WSError(BaseModel):
    """Feedback for a rejected frame, only sent when frame feedback is enabled."""
    type: str = "error"
    code: str
    error: str
