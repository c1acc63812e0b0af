"""
Realtime direct-messaging gateway.

Owns the connection registry and runs the per-connection lifecycle:

    Connecting -> Authenticating -> Open -> Closed

While Open, every inbound frame is parsed, re-authenticated with the token
it carries, pushed to the recipient's live connection if there is one, and
persisted to the message store whether or not the push happened. Nothing
in the frame path is reported back to the sender unless frame feedback is
enabled in settings.

Frame (client -> server):
    {"token": "<jwt>", "to": 2, "text": "hi", "created_at": "..."}   created_at optional

Delivery (server -> client):
    {"from": 1, "text": "hi", "created_at": "..."}
"""
import asyncio
import enum
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from api.metrics import (
    websocket_connections_active, websocket_connections_total,
    websocket_disconnections_total, websocket_frames_received_total,
    websocket_deliveries_total, message_store_failures_total,
    websocket_frame_duration_seconds, auth_token_validations_total,
    update_websocket_metrics
)
from api.schemas import WSDelivery, WSError
from api.websocket_manager import ClientConnection, ConnectionRegistry, DeliveryResult, connection_registry
from core.audit_logger import audit_logger
from core.config import Settings, settings as default_settings
from core.exceptions import AuthError, MalformedFrame, StoreError
from core.security import CredentialVerifier, SessionClaim, credential_verifier
from db.message_store import MessageRecord, MessageStore, message_store
from db.models import utcnow

logger = logging.getLogger(__name__)

# Close codes
WS_CLOSE_SUPERSEDED = 4000
WS_CLOSE_AUTH_FAILED = 4001
WS_CLOSE_IDLE = 1001
WS_CLOSE_INTERNAL_ERROR = 1011

# Recipient ids must fit the signed 64-bit integer column
MIN_USER_ID = -(2 ** 63)
MAX_USER_ID = 2 ** 63 - 1


class FrameOutcome(str, enum.Enum):
    """How the gateway disposed of one inbound frame."""
    ACCEPTED = "accepted"
    MALFORMED = "malformed"
    AUTH_REJECTED = "auth_rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class InboundFrame:
    """A parsed client frame. The token is verified separately."""
    token: Optional[str]
    to: int
    text: str
    created_at: Optional[str] = None


@dataclass(frozen=True)
class FrameResult:
    """Result of handle_frame, used by tests and logging."""
    outcome: FrameOutcome
    sender_id: Optional[int] = None
    delivery: Optional[DeliveryResult] = None
    record: Optional[MessageRecord] = None
    reason: Optional[str] = None

    @property
    def stored(self) -> bool:
        return self.record is not None


def format_timestamp(value: datetime) -> str:
    """ISO 8601 with a trailing Z for naive UTC datetimes."""
    return value.isoformat() + "Z"


def _parse_recipient(value) -> int:
    recipient = None
    if isinstance(value, int) and not isinstance(value, bool):
        recipient = value
    elif isinstance(value, str):
        try:
            recipient = int(value.strip())
        except ValueError:
            pass
    if recipient is None or not MIN_USER_ID <= recipient <= MAX_USER_ID:
        raise MalformedFrame("invalid_recipient")
    return recipient


def parse_frame(raw: Union[str, bytes]) -> InboundFrame:
    """
    Parse one client frame.

    Args:
        raw: Text (or UTF-8 bytes) frame as received

    Returns:
        InboundFrame

    Raises:
        MalformedFrame: If the frame is not a JSON object with a usable
            ``to`` and a string ``text``
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedFrame("invalid_encoding")

    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise MalformedFrame("invalid_json")

    if not isinstance(data, dict):
        raise MalformedFrame("not_an_object")

    if "to" not in data or data["to"] is None:
        raise MalformedFrame("missing_recipient")
    to = _parse_recipient(data["to"])

    text = data.get("text")
    if not isinstance(text, str):
        raise MalformedFrame("invalid_text")

    created_at = data.get("created_at")
    if created_at is not None and not isinstance(created_at, str):
        raise MalformedFrame("invalid_created_at")

    token = data.get("token")
    return InboundFrame(
        token=token if isinstance(token, str) else None,
        to=to,
        text=text,
        created_at=created_at or None
    )


class MessagingGateway:
    """
    Accepts WebSocket connections and routes direct messages between them.

    The gateway is the only writer of the registry. Frames from one
    connection are handled strictly in order; store calls run in the
    threadpool so a slow insert suspends only the connection that made it.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        verifier: CredentialVerifier,
        store: MessageStore,
        settings: Settings = default_settings
    ):
        self.registry = registry
        self.verifier = verifier
        self.store = store
        self.require_auth = settings.ws_require_auth
        self.frame_feedback = settings.ws_frame_feedback
        self.close_superseded = settings.ws_close_superseded
        self.queue_size = settings.ws_outbound_queue_size
        self.idle_timeout = settings.ws_idle_timeout_seconds

    def authenticate(self, token: Optional[str], channel: str = "websocket_connect") -> Optional[SessionClaim]:
        """
        Verify a token, logging and auditing failures.

        Returns:
            SessionClaim, or None if the token is missing or invalid
        """
        try:
            claim = self.verifier.verify(token)
        except AuthError as e:
            auth_token_validations_total.labels(channel=channel, status=e.reason, instance="api").inc()
            if token:
                audit_logger.log_token_rejected(reason=e.reason, channel=channel)
            logger.warning(f"Token rejected on {channel}: {e.reason}")
            return None
        auth_token_validations_total.labels(channel=channel, status="valid", instance="api").inc()
        return claim

    async def open(self, websocket: WebSocket, token: Optional[str]) -> Optional[ClientConnection]:
        """
        Authenticate and accept a connection.

        A failed connect-time authentication either closes the socket with
        4001 (``ws_require_auth``) or lets it stay open anonymously with no
        registry entry.

        Returns:
            ClientConnection, or None if the connection was refused
        """
        claim = self.authenticate(token)

        if claim is None and self.require_auth:
            await websocket.close(code=WS_CLOSE_AUTH_FAILED, reason="Authentication failed")
            websocket_disconnections_total.labels(instance="api", reason="auth_failed").inc()
            return None

        await websocket.accept()

        user_id = claim.user_id if claim else None
        connection = ClientConnection(websocket, user_id=user_id, queue_size=self.queue_size)
        connection.start()

        if user_id is not None:
            displaced = self.registry.put(user_id, connection)
            if displaced is not None and self.close_superseded:
                await displaced.close(code=WS_CLOSE_SUPERSEDED, reason="Superseded by a new connection")
            logger.info(f"User {user_id} connected via WebSocket ({connection.connection_id})")
        else:
            logger.info(f"Anonymous WebSocket connection opened ({connection.connection_id})")

        websocket_connections_total.labels(instance="api", authenticated=str(user_id is not None).lower()).inc()
        websocket_connections_active.labels(instance="api").inc()
        update_websocket_metrics(self.registry)
        return connection

    def deliver(self, recipient_id: int, payload: dict) -> DeliveryResult:
        """
        Push a payload to the recipient's live connection, if any.

        Never waits on the recipient's socket.
        """
        target = self.registry.get(recipient_id)
        if target is None:
            result = DeliveryResult.OFFLINE
        else:
            result = target.push(payload)
        websocket_deliveries_total.labels(result=result.value, instance="api").inc()
        return result

    def _send_feedback(self, connection: ClientConnection, code: str, error: str) -> None:
        if not self.frame_feedback:
            return
        connection.push(WSError(code=code, error=error).model_dump())

    async def handle_frame(self, connection: ClientConnection, raw: Union[str, bytes]) -> FrameResult:
        """
        Process one inbound frame: parse, re-authenticate, deliver, persist.

        The sender of record is the identity in the frame's own token, not
        the identity the connection authenticated with at connect time.
        """
        started = time.perf_counter()
        received_at = utcnow()

        try:
            frame = parse_frame(raw)
        except MalformedFrame as e:
            logger.warning(f"Dropping malformed frame on {connection.connection_id}: {e.reason}")
            self._send_feedback(connection, "MALFORMED_FRAME", e.reason)
            return self._finish(started, FrameResult(FrameOutcome.MALFORMED, reason=e.reason))

        claim = self.authenticate(frame.token, channel="websocket_frame")
        if claim is None:
            self._send_feedback(connection, "AUTH_REJECTED", "Authentication failed")
            return self._finish(started, FrameResult(FrameOutcome.AUTH_REJECTED, reason="auth_rejected"))

        sender_id = claim.user_id
        if connection.user_id is not None and sender_id != connection.user_id:
            logger.warning(
                f"Frame on connection {connection.connection_id} registered for user "
                f"{connection.user_id} carries a token for user {sender_id}"
            )

        delivery_payload = WSDelivery(
            from_=sender_id,
            text=frame.text,
            created_at=frame.created_at or format_timestamp(received_at)
        ).model_dump(by_alias=True)
        delivery = self.deliver(frame.to, delivery_payload)
        logger.info(f"Message {sender_id} -> {frame.to}: live delivery {delivery.value}")

        record = None
        try:
            record = await run_in_threadpool(self.store.append, sender_id, frame.to, frame.text, received_at)
        except StoreError as e:
            message_store_failures_total.labels(operation="append", instance="api").inc()
            logger.error(f"Failed to persist message {sender_id} -> {frame.to}: {e}")

        return self._finish(started, FrameResult(
            FrameOutcome.ACCEPTED,
            sender_id=sender_id,
            delivery=delivery,
            record=record
        ))

    def _finish(self, started: float, result: FrameResult) -> FrameResult:
        websocket_frames_received_total.labels(outcome=result.outcome.value, instance="api").inc()
        websocket_frame_duration_seconds.labels(outcome=result.outcome.value).observe(time.perf_counter() - started)
        return result

    async def close(self, connection: ClientConnection, reason: str = "normal") -> None:
        """
        Tear a connection down and drop its registry entry.

        Only removes the entry if it still points at this connection, so a
        connection replaced by a reconnect does not evict its successor.
        """
        await connection.shutdown()
        if connection.user_id is not None:
            removed = self.registry.remove(connection.user_id, connection)
            logger.info(
                f"User {connection.user_id} disconnected from WebSocket "
                f"({connection.connection_id}, registry entry removed={removed})"
            )
        websocket_disconnections_total.labels(instance="api", reason=reason).inc()
        websocket_connections_active.labels(instance="api").dec()
        update_websocket_metrics(self.registry)

    async def _receive(self, websocket: WebSocket) -> Union[str, bytes]:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    async def run(self, websocket: WebSocket, token: Optional[str]) -> None:
        """
        Serve one connection until it closes.

        Frames are awaited one at a time, which keeps per-connection order.
        """
        connection = await self.open(websocket, token)
        if connection is None:
            return

        reason = "normal"
        try:
            while True:
                if self.idle_timeout and self.idle_timeout > 0:
                    raw = await asyncio.wait_for(self._receive(websocket), timeout=self.idle_timeout)
                else:
                    raw = await self._receive(websocket)
                started = time.perf_counter()
                try:
                    await self.handle_frame(connection, raw)
                except Exception as e:
                    logger.error(f"Frame handling failed on connection {connection.connection_id}: {e}")
                    self._finish(started, FrameResult(FrameOutcome.FAILED, reason=type(e).__name__))
        except WebSocketDisconnect:
            pass
        except asyncio.TimeoutError:
            reason = "timeout"
            logger.warning(f"Closing idle connection {connection.connection_id}")
            await connection.close(code=WS_CLOSE_IDLE, reason="Connection timeout")
        except Exception as e:
            reason = "error"
            logger.error(f"WebSocket error on connection {connection.connection_id}: {e}")
            await connection.close(code=WS_CLOSE_INTERNAL_ERROR, reason="Internal error")
        finally:
            await self.close(connection, reason=reason)


# Global gateway instance
messaging_gateway = MessagingGateway(connection_registry, credential_verifier, message_store)
