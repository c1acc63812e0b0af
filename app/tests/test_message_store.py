"""
Unit tests for the message store.
"""
import pytest
from datetime import datetime, timedelta
from sqlalchemy.exc import OperationalError
from core.exceptions import StoreError
from db.message_store import MessageStore


class TestMessageStore:

    def test_append_returns_record(self, test_store):
        record = test_store.append(1, 2, "hello")

        assert record.id is not None
        assert record.sender_id == 1
        assert record.receiver_id == 2
        assert record.text == "hello"
        assert isinstance(record.created_at, datetime)

    def test_append_keeps_given_timestamp(self, test_store):
        when = datetime(2026, 1, 2, 3, 4, 5)

        record = test_store.append(1, 2, "hello", when)

        assert record.created_at == when

    def test_history_covers_both_directions_oldest_first(self, test_store):
        base = datetime(2026, 1, 1, 12, 0, 0)
        test_store.append(2, 1, "reply", base + timedelta(seconds=2))
        test_store.append(1, 2, "hi", base)
        test_store.append(1, 3, "elsewhere", base + timedelta(seconds=1))

        history = test_store.history(1, 2)

        assert [r.text for r in history] == ["hi", "reply"]
        assert [r.text for r in test_store.history(2, 1)] == ["hi", "reply"]

    def test_history_ties_fall_back_to_insert_order(self, test_store):
        when = datetime(2026, 1, 1, 12, 0, 0)
        for text in ("a", "b", "c"):
            test_store.append(1, 2, text, when)

        assert [r.text for r in test_store.history(1, 2)] == ["a", "b", "c"]

    def test_empty_text_and_unknown_users_are_stored(self, test_store):
        test_store.append(1, 424242, "")

        assert [r.text for r in test_store.history(424242, 1)] == [""]

    def test_history_empty(self, test_store):
        assert test_store.history(5, 6) == []


class _FailingSession:
    """Session whose every operation raises a database error."""

    def add(self, instance):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    def query(self, *entities):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def rollback(self):
        pass

    def close(self):
        pass


class TestMessageStoreFailures:

    def test_append_failure_raises_store_error(self):
        store = MessageStore(_FailingSession)

        with pytest.raises(StoreError) as exc_info:
            store.append(1, 2, "hello")

        assert exc_info.value.operation == "append"

    def test_history_failure_raises_store_error(self):
        store = MessageStore(_FailingSession)

        with pytest.raises(StoreError) as exc_info:
            store.history(1, 2)

        assert exc_info.value.operation == "history"

    def test_unbindable_recipient_raises_store_error(self, test_store):
        with pytest.raises(StoreError) as exc_info:
            test_store.append(1, 10 ** 30, "hello")

        assert exc_info.value.operation == "append"
        assert test_store.history(1, 2) == []
