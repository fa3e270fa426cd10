"""
NeighborLink Backend — Relational Store Error Translation Tests
================================================================

What:  The real Store over a stubbed async_sessionmaker, so driver errors
       can be raised from commit/get without a database.

What we test:
    ✅ SQLSTATE 23505 → ConflictError carrying the constraint name
    ✅ A "duplicate key" message without a SQLSTATE still counts as unique
    ✅ Other integrity errors and operational errors → DatabaseError
    ✅ Every failure rolls the session back and publishes nothing
    ✅ NotFoundError passes through untouched
"""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from neighborlink.exceptions import ConflictError, DatabaseError, NotFoundError
from neighborlink.realtime.feed import ChangeFeed
from neighborlink.store.relational import Store


class DriverError(Exception):
    """Stands in for the asyncpg exception wrapped by SQLAlchemy."""

    def __init__(self, message, sqlstate=None, constraint_name=None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.constraint_name = constraint_name


def integrity_error(message, sqlstate=None, constraint_name=None):
    return IntegrityError(
        "INSERT ...", {}, DriverError(message, sqlstate=sqlstate, constraint_name=constraint_name)
    )


@pytest.fixture
def session():
    session = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.get = AsyncMock(return_value=None)
    return session


@pytest.fixture
def published():
    return []


@pytest.fixture
def store(session, published):
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    feed = ChangeFeed()
    feed.subscribe("reviews", published.append)
    feed.subscribe("conversations", published.append)
    return Store(session_factory=factory, feed=feed)


class TestUniqueViolations:
    @pytest.mark.asyncio
    async def test_sqlstate_23505_is_conflict(self, store, session, published):
        session.commit.side_effect = integrity_error(
            "duplicate key value violates unique constraint",
            sqlstate="23505",
            constraint_name="uq_reviews_offer_reviewer_reviewee",
        )

        with pytest.raises(ConflictError) as exc_info:
            await store.insert_review(uuid.uuid4(), uuid.uuid4(), uuid.uuid4(), 5, None)

        assert exc_info.value.constraint == "uq_reviews_offer_reviewer_reviewee"
        assert exc_info.value.context["operation"] == "insert_review"
        session.rollback.assert_awaited_once()
        assert published == []

    @pytest.mark.asyncio
    async def test_duplicate_message_without_sqlstate(self, store, session, published):
        session.commit.side_effect = integrity_error(
            'duplicate key value violates unique constraint "uq_conversations_offer_pair"'
        )

        with pytest.raises(ConflictError):
            await store.insert_conversation(uuid.uuid4(), uuid.uuid4(), uuid.uuid4())

        session.rollback.assert_awaited_once()
        assert published == []


class TestOtherFailures:
    @pytest.mark.asyncio
    async def test_foreign_key_violation_is_database_error(self, store, session, published):
        session.commit.side_effect = integrity_error(
            "insert or update violates foreign key constraint", sqlstate="23503"
        )

        with pytest.raises(DatabaseError) as exc_info:
            await store.insert_review(uuid.uuid4(), uuid.uuid4(), uuid.uuid4(), 4, "ok")

        assert not isinstance(exc_info.value, ConflictError)
        session.rollback.assert_awaited_once()
        assert published == []

    @pytest.mark.asyncio
    async def test_operational_error_is_database_error(self, store, session):
        session.get.side_effect = OperationalError(
            "SELECT ...", {}, Exception("connection reset by peer")
        )

        with pytest.raises(DatabaseError) as exc_info:
            await store.get_conversation(uuid.uuid4())

        assert exc_info.value.context == {
            "operation": "get_conversation",
            "error_type": "OperationalError",
        }
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_row_is_not_found(self, store, session):
        with pytest.raises(NotFoundError):
            await store.get_conversation(uuid.uuid4())

        session.rollback.assert_awaited_once()
