"""
API endpoint implementations.
Defines the REST endpoints for authentication, wallet, food orders, rides,
profile, addresses, user listing and conversation history, plus the
WebSocket endpoint for real-time direct messages.
"""
import logging
import random
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from api.dependencies import get_db, get_current_user, get_message_store, get_gateway
from api.messaging_gateway import MessagingGateway
from api.metrics import auth_requests_total, message_store_failures_total
from api.schemas import (
    CredentialsRequest, RegisterResponse, LoginResponse, UserSummary, MessageResponse,
    BalanceResponse, WalletAddRequest, WalletTransferRequest, WalletUpdateResponse, TransactionItem,
    FoodItem, FoodOrderRequest, FoodOrderResponse, OrderItem,
    RideRequest, RideRequestResponse, RideCompleteRequest, RideCompleteResponse, RideItem, DriverInfo,
    ProfileResponse, ProfileStats, ProfileUpdateRequest, PasswordChangeRequest,
    AddressRequest, AddressItem, AddressCreateResponse,
    HistoryMessage
)
from core.audit_logger import audit_logger
from core.config import settings
from core.exceptions import StoreError
from core.security import hash_password, verify_password, create_access_token
from db.message_store import MessageStore
from db.models import User, TransactionType, RideStatus
from db.repository import Repository

logger = logging.getLogger(__name__)

# Create routers
auth_router = APIRouter()
wallet_router = APIRouter()
food_router = APIRouter()
ride_router = APIRouter()
profile_router = APIRouter()
addresses_router = APIRouter()
chat_router = APIRouter()
websocket_router = APIRouter()

DEFAULT_RESTAURANT_NAME = "UltimateApp Restaurant"

FOOD_MENU = [
    FoodItem(id=1, name="Adana Kebap", price=180, image="🍖", description="Spicy Adana-style kebab"),
    FoodItem(id=2, name="İskender", price=200, image="🥙", description="With butter and yoghurt"),
    FoodItem(id=3, name="Döner", price=120, image="🌯", description="Chicken or beef"),
    FoodItem(id=4, name="Lahmacun", price=45, image="🫓", description="Thin crust, generous topping"),
    FoodItem(id=5, name="Pide", price=90, image="🥖", description="Cheese or minced meat"),
    FoodItem(id=6, name="Baklava", price=80, image="🍯", description="Pistachio, in syrup"),
]

SIMULATED_DRIVERS = [
    DriverInfo(name="Ahmet Yılmaz", car="Toyota Corolla", plate="34 ABC 123", rating=4.8),
    DriverInfo(name="Mehmet Demir", car="Honda Civic", plate="34 XYZ 456", rating=4.9),
    DriverInfo(name="Ali Kaya", car="Renault Megane", plate="34 DEF 789", rating=4.7),
]


def format_amount(amount: Decimal) -> str:
    """Two-decimal string, the format the client displays balances in."""
    return f"{Decimal(amount):.2f}"


def _client_context(request: Request):
    ip_address = request.client.host if request.client else None
    return ip_address, getattr(request.state, "request_id", None)


# Authentication Endpoints
@auth_router.post("/auth/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(body: CredentialsRequest, request: Request, db: Session = Depends(get_db)):
    """
    Create an account.

    Raises:
        HTTPException: 409 Conflict if the username is already taken
    """
    repository = Repository(db)
    try:
        user = repository.create_user(body.username, hash_password(body.password))
    except IntegrityError:
        db.rollback()
        auth_requests_total.labels(type="register", status="conflict", instance="api").inc()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username already in use."
        )

    ip_address, request_id = _client_context(request)
    audit_logger.log_user_registered(user.id, user.username, ip_address, request_id)
    auth_requests_total.labels(type="register", status="success", instance="api").inc()

    return RegisterResponse(
        message="User registered successfully!",
        user=UserSummary(id=user.id, username=user.username)
    )


@auth_router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
def login(body: CredentialsRequest, request: Request, db: Session = Depends(get_db)):
    """
    Exchange username/password for a JWT access token.

    Example Response:
        ```json
        {"message": "Login successful!", "token": "eyJhbGciOiJIUzI1NiIs...", "id": 1}
        ```

    Raises:
        HTTPException: 401 Unauthorized if the credentials are invalid
    """
    repository = Repository(db)
    ip_address, request_id = _client_context(request)

    user = repository.get_user_by_username(body.username)
    if not user or not verify_password(body.password, user.password_hash):
        audit_logger.log_auth_failure(body.username, ip_address, request_id, "invalid_credentials")
        auth_requests_total.labels(type="login", status="failure", instance="api").inc()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials.",
            headers={"WWW-Authenticate": "Bearer"}
        )

    token_data = create_access_token(user_id=user.id, username=user.username)
    expires_in = int((token_data["expires_at"] - token_data["issued_at"]).total_seconds())

    audit_logger.log_auth_success(user.id, user.username, ip_address, request_id)
    audit_logger.log_token_issued(user.id, user.username, expires_in)
    auth_requests_total.labels(type="login", status="success", instance="api").inc()

    return LoginResponse(message="Login successful!", token=token_data["token"], id=user.id)


# Wallet Endpoints
@wallet_router.get("/balance", response_model=BalanceResponse)
def get_balance(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Current wallet balance derived from the transaction ledger."""
    balance = Repository(db).get_balance(current_user.id)
    return BalanceResponse(
        user=current_user.username,
        balance=format_amount(balance),
        last_updated=datetime.now().strftime("%d.%m.%Y")
    )


@wallet_router.post("/add", response_model=WalletUpdateResponse)
def add_money(
    body: WalletAddRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Load money into the wallet."""
    repository = Repository(db)
    repository.add_transaction(current_user.id, TransactionType.ADD, body.amount, "Wallet top-up")
    balance = repository.get_balance(current_user.id)

    logger.info(f"User {current_user.id} added {body.amount} to wallet")
    return WalletUpdateResponse(message="Money added successfully!", new_balance=format_amount(balance))


@wallet_router.post("/transfer", response_model=WalletUpdateResponse)
def transfer_money(
    body: WalletTransferRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Transfer money to an IBAN.

    Raises:
        HTTPException: 400 Bad Request if the balance does not cover the amount
    """
    repository = Repository(db)
    balance = repository.get_balance(current_user.id)
    if balance < body.amount:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insufficient balance!")

    repository.add_transaction(
        current_user.id,
        TransactionType.TRANSFER,
        body.amount,
        f"Transfer: {body.recipient_name} ({body.iban})"
    )

    logger.info(f"User {current_user.id} transferred {body.amount}")
    return WalletUpdateResponse(
        message="Transfer completed successfully!",
        new_balance=format_amount(balance - body.amount)
    )


@wallet_router.get("/transactions", response_model=List[TransactionItem])
def list_transactions(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Latest 20 ledger entries, newest first."""
    return Repository(db).get_recent_transactions(current_user.id, limit=20)


# Food Endpoints
@food_router.get("/list", response_model=List[FoodItem])
def list_food():
    """Static menu. No authentication required."""
    return FOOD_MENU


@food_router.post("/order", response_model=FoodOrderResponse)
def create_food_order(
    body: FoodOrderRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Place a food order and pay for it from the wallet.

    Raises:
        HTTPException: 400 Bad Request if the balance does not cover the total
    """
    repository = Repository(db)
    balance = repository.get_balance(current_user.id)
    if balance < body.total_price:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insufficient balance!")

    order = repository.create_order(
        current_user.id,
        body.restaurant_name or DEFAULT_RESTAURANT_NAME,
        body.total_price
    )

    logger.info(f"User {current_user.id} placed order {order.id} ({len(body.items)} items)")
    return FoodOrderResponse(
        message="Order created successfully!",
        order_id=order.id,
        new_balance=format_amount(balance - body.total_price)
    )


@food_router.get("/orders", response_model=List[OrderItem])
def list_orders(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Latest 10 orders, newest first."""
    return Repository(db).get_recent_orders(current_user.id, limit=10)


# Ride Endpoints
@ride_router.post("/request", response_model=RideRequestResponse)
def request_ride(
    body: RideRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Request a ride. A simulated driver is assigned immediately; the fare is
    only charged when the ride is completed.

    Raises:
        HTTPException: 400 Bad Request if the balance does not cover the fare
    """
    repository = Repository(db)
    fare = body.estimated_fare or Decimal(str(settings.default_ride_fare))

    balance = repository.get_balance(current_user.id)
    if balance < fare:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insufficient balance!")

    ride = repository.create_ride(current_user.id, fare)
    driver = random.choice(SIMULATED_DRIVERS)

    logger.info(f"User {current_user.id} requested ride {ride.id} ({body.pickup} -> {body.destination})")
    return RideRequestResponse(
        message="Driver assigned!",
        ride_id=ride.id,
        driver=driver,
        estimated_arrival="3-5 minutes",
        fare=float(fare)
    )


@ride_router.post("/complete", response_model=RideCompleteResponse)
def complete_ride(
    body: RideCompleteRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Complete a ride and charge its fare.

    Raises:
        HTTPException: 404 Not Found if the ride does not belong to the user
        HTTPException: 400 Bad Request if the ride was already completed
    """
    repository = Repository(db)
    ride = repository.get_ride(body.ride_id, current_user.id)
    if not ride:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ride not found.")
    if ride.status == RideStatus.COMPLETED:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Ride already completed.")

    ride = repository.complete_ride(ride)
    balance = repository.get_balance(current_user.id)

    logger.info(f"User {current_user.id} completed ride {ride.id}")
    return RideCompleteResponse(message="Ride completed!", fare=ride.fare, new_balance=format_amount(balance))


@ride_router.get("/history", response_model=List[RideItem])
def ride_history(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Latest 10 rides, newest first."""
    return Repository(db).get_recent_rides(current_user.id, limit=10)


# Profile Endpoints
@profile_router.get("", response_model=ProfileResponse)
def get_profile(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Profile fields plus order, ride and balance stats."""
    repository = Repository(db)
    return ProfileResponse(
        id=current_user.id,
        username=current_user.username,
        email=current_user.email or "",
        phone=current_user.phone or "",
        full_name=current_user.full_name or "",
        created_at=current_user.created_at,
        stats=ProfileStats(
            total_orders=repository.count_orders(current_user.id),
            total_rides=repository.count_completed_rides(current_user.id),
            balance=format_amount(repository.get_balance(current_user.id))
        )
    )


@profile_router.put("", response_model=MessageResponse)
def update_profile(
    body: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Overwrite email, phone and full name. Omitted fields are cleared."""
    Repository(db).update_profile(current_user, body.email, body.phone, body.full_name)
    return MessageResponse(message="Profile updated successfully!")


@profile_router.put("/password", response_model=MessageResponse)
def change_password(
    body: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Change the password.

    Raises:
        HTTPException: 401 Unauthorized if the current password is wrong
    """
    if not verify_password(body.current_password, current_user.password_hash):
        audit_logger.log_password_change(current_user.id, success=False, reason="wrong_current_password")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect.")

    Repository(db).update_password(current_user, hash_password(body.new_password))
    audit_logger.log_password_change(current_user.id, success=True)
    return MessageResponse(message="Password changed successfully!")


# Address Endpoints
@addresses_router.get("", response_model=List[AddressItem])
def list_addresses(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Saved addresses, default first."""
    return Repository(db).list_addresses(current_user.id)


@addresses_router.post("", response_model=AddressCreateResponse, status_code=status.HTTP_201_CREATED)
def create_address(
    body: AddressRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Save an address. Marking it default clears the previous default."""
    record = Repository(db).create_address(current_user.id, body.title, body.address, body.is_default)
    return AddressCreateResponse(message="Address added successfully!", address_id=record.id)


@addresses_router.put("/{address_id}", response_model=MessageResponse)
def update_address(
    address_id: int,
    body: AddressRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Update an address.

    Raises:
        HTTPException: 404 Not Found if the address does not belong to the user
    """
    repository = Repository(db)
    record = repository.get_address(address_id, current_user.id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Address not found.")

    repository.update_address(record, body.title, body.address, body.is_default)
    return MessageResponse(message="Address updated successfully!")


@addresses_router.delete("/{address_id}", response_model=MessageResponse)
def delete_address(
    address_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Delete an address.

    Raises:
        HTTPException: 404 Not Found if the address does not belong to the user
    """
    repository = Repository(db)
    record = repository.get_address(address_id, current_user.id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Address not found.")

    repository.delete_address(record)
    return MessageResponse(message="Address deleted successfully!")


# Chat Endpoints
@chat_router.get("/users", response_model=List[UserSummary])
def list_users(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Everyone the caller can message, i.e. every other user."""
    return Repository(db).list_other_users(current_user.id)


@chat_router.get("/messages/{user_id}", response_model=List[HistoryMessage])
async def get_conversation_history(
    user_id: int,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store)
):
    """
    Full direct-message history between the caller and another user,
    oldest first. Includes messages whose live delivery failed.

    Example Response:
        ```json
        [{"from": 1, "to": 2, "text": "hi", "created_at": "2026-10-19T10:00:00"}]
        ```
    """
    try:
        records = await run_in_threadpool(store.history, current_user.id, user_id)
    except StoreError as e:
        message_store_failures_total.labels(operation="history", instance="api").inc()
        logger.error(f"Error fetching history {current_user.id} <-> {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not load messages."
        )

    return [
        HistoryMessage(from_=record.sender_id, to=record.receiver_id, text=record.text, created_at=record.created_at)
        for record in records
    ]


# WebSocket Endpoint
@websocket_router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="JWT access token for authentication"),
    gateway: MessagingGateway = Depends(get_gateway)
):
    """
    WebSocket endpoint for real-time direct messages.

    Connection Flow:
        1. Client connects with token: ws://api/ws?token={jwt}
        2. Server verifies the token and registers the connection for that user
        3. Client sends frames: {"token": jwt, "to": 2, "text": "hi"}
        4. Server re-verifies each frame's token, pushes
           {"from": 1, "text": "hi", "created_at": "..."} to the recipient if
           connected, and stores the message either way
        5. On disconnect the user's registry entry is removed

    Close Codes:
        - 4000: Superseded by a newer connection (ws_close_superseded)
        - 4001: Authentication failed (ws_require_auth)
        - 1001: Idle timeout (ws_idle_timeout_seconds)
    """
    await gateway.run(websocket, token)
