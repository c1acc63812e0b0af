"""
WebSocket connection registry for real-time direct messages.

Maps an authenticated user to the single live connection that currently
represents them, and wraps each socket in a handle with a bounded
outbound queue so a slow reader never stalls the sender's task.
"""
import asyncio
import enum
import logging
import threading
from typing import Any, Dict, Optional
from uuid import uuid4
from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    """Whether a handle can still accept outbound payloads."""
    OPEN = "open"
    CLOSED = "closed"


class DeliveryResult(str, enum.Enum):
    """Outcome of a live push attempt. None of these is an error."""
    DELIVERED = "delivered"
    OFFLINE = "offline"
    NOT_OPEN = "not_open"
    DROPPED = "dropped"


class ClientConnection:
    """
    Handle to one open WebSocket connection.

    Outbound payloads go through a bounded queue drained by a dedicated
    writer task. push() never awaits: a full queue drops the payload.

    Attributes:
        websocket: Underlying FastAPI WebSocket
        user_id: Identity authenticated at connect time, None if anonymous
        connection_id: Short random id used in logs
    """

    def __init__(self, websocket: WebSocket, user_id: Optional[int] = None, queue_size: int = 100):
        self.websocket = websocket
        self.user_id = user_id
        self.connection_id = uuid4().hex[:12]
        self._outbound: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer_task: Optional[asyncio.Task] = None
        self._closed = False

    def __repr__(self) -> str:
        return f"<ClientConnection {self.connection_id} user={self.user_id}>"

    @property
    def state(self) -> ConnectionState:
        """A handle only exists once authentication has finished."""
        return ConnectionState.OPEN if self.is_open else ConnectionState.CLOSED

    @property
    def is_open(self) -> bool:
        """True while both sides of the socket are connected and close() has not run."""
        if self._closed:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def start(self) -> None:
        """Start the writer task. Must run inside the event loop."""
        if self._writer_task is None:
            self._writer_task = asyncio.create_task(self._drain())

    def push(self, payload: Dict[str, Any]) -> DeliveryResult:
        """
        Queue a payload for sending without waiting.

        Returns:
            DELIVERED if queued, NOT_OPEN if the socket is gone,
            DROPPED if the outbound queue is full
        """
        if not self.is_open:
            return DeliveryResult.NOT_OPEN
        try:
            self._outbound.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for connection {self.connection_id}, payload dropped")
            return DeliveryResult.DROPPED
        return DeliveryResult.DELIVERED

    async def flush(self) -> None:
        """Wait until every queued payload has been handed to the socket."""
        await self._outbound.join()

    async def _drain(self) -> None:
        while True:
            payload = await self._outbound.get()
            try:
                await self.websocket.send_json(payload)
            except Exception as e:
                logger.error(f"Error sending to connection {self.connection_id}: {e}")
                self._closed = True
            finally:
                self._outbound.task_done()

    def _discard_pending(self) -> None:
        while not self._outbound.empty():
            self._outbound.get_nowait()
            self._outbound.task_done()

    async def shutdown(self) -> None:
        """Stop the writer and drop anything still queued. Does not touch the socket."""
        self._closed = True
        if self._writer_task is not None:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass
            self._writer_task = None
        self._discard_pending()

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        """Shut the handle down and close the socket if it is still connected."""
        await self.shutdown()
        if self.websocket.application_state == WebSocketState.CONNECTED:
            try:
                await self.websocket.close(code=code, reason=reason)
            except RuntimeError as e:
                logger.debug(f"Close on connection {self.connection_id} ignored: {e}")


class ConnectionRegistry:
    """
    Process-wide map from user id to their live connection handle.

    At most one handle per user. A plain lock guards every access, so the
    registry is safe from connection tasks on the event loop and from
    worker threads alike. Contention is one write per connect/disconnect
    and one read per outbound message.
    """

    def __init__(self):
        self._connections: Dict[int, Any] = {}
        self._lock = threading.Lock()

    def put(self, user_id: int, connection: Any) -> Optional[Any]:
        """
        Register a connection, replacing any existing one for the user.

        The replaced handle is returned but not closed.
        """
        with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = connection
        if previous is not None and previous is not connection:
            logger.info(f"User {user_id} reconnected, replacing {previous!r} with {connection!r}")
            return previous
        return None

    def get(self, user_id: int) -> Optional[Any]:
        """Current handle for the user, or None."""
        with self._lock:
            return self._connections.get(user_id)

    def remove(self, user_id: int, connection: Any = None) -> bool:
        """
        Drop the user's entry. Removing an absent user is a no-op.

        When ``connection`` is given the entry is only dropped if it still
        points at that handle, so a replaced connection closing late cannot
        evict its successor.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            current = self._connections.get(user_id)
            if current is None:
                return False
            if connection is not None and current is not connection:
                return False
            del self._connections[user_id]
            return True

    def snapshot(self) -> Dict[int, Any]:
        """Copy of the current mapping."""
        with self._lock:
            return dict(self._connections)

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._connections


# Global connection registry instance
connection_registry = ConnectionRegistry()
