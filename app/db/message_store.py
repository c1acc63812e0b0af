"""
Durable store for direct messages.

The store is the source of truth for conversation history: the realtime
gateway appends every accepted frame here whether or not the live push
reached the recipient, and clients rebuild a conversation from history().
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from core.exceptions import StoreError
from db.models import Message, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageRecord:
    """Immutable view of a stored message."""
    id: int
    sender_id: int
    receiver_id: int
    text: str
    created_at: datetime

    @classmethod
    def from_model(cls, message: Message) -> "MessageRecord":
        return cls(
            id=message.id,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            text=message.content,
            created_at=message.created_at
        )


class MessageStore:
    """
    Append-only message persistence.

    Each call opens its own session from the factory, so the store can be
    shared by every connection task and called from worker threads.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        """
        Initialize message store.

        Args:
            session_factory: Callable returning a new SQLAlchemy session
        """
        self.session_factory = session_factory

    def append(
        self,
        sender_id: int,
        receiver_id: int,
        text: str,
        created_at: Optional[datetime] = None
    ) -> MessageRecord:
        """
        Persist one message.

        Args:
            sender_id: Authenticated sender
            receiver_id: Recipient identity from the frame
            text: Message body
            created_at: Server receipt time (defaults to now, naive UTC)

        Returns:
            The stored record

        Raises:
            StoreError: If the insert fails
        """
        db = self.session_factory()
        try:
            message = Message(
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=text,
                created_at=created_at or utcnow()
            )
            db.add(message)
            db.commit()
            db.refresh(message)
            return MessageRecord.from_model(message)
        except (SQLAlchemyError, OverflowError, ValueError) as e:
            # The DBAPI can raise plain Python errors for unbindable values
            db.rollback()
            raise StoreError("append", e) from e
        finally:
            db.close()

    def history(self, user_a: int, user_b: int) -> List[MessageRecord]:
        """
        All messages exchanged between two users, oldest first.

        Ties on created_at fall back to storage order.

        Raises:
            StoreError: If the query fails
        """
        db = self.session_factory()
        try:
            messages = db.query(Message).filter(
                or_(
                    and_(Message.sender_id == user_a, Message.receiver_id == user_b),
                    and_(Message.sender_id == user_b, Message.receiver_id == user_a)
                )
            ).order_by(Message.created_at.asc(), Message.id.asc()).all()
            return [MessageRecord.from_model(message) for message in messages]
        except SQLAlchemyError as e:
            raise StoreError("history", e) from e
        finally:
            db.close()


def _default_session_factory() -> Session:
    from db.database import SessionLocal
    return SessionLocal()


# Global message store instance
message_store = MessageStore(_default_session_factory)
