"""
Tests for the SQLAlchemy-backed stores.

Uses the mocked AsyncSession from conftest; these tests pin down error
translation and result mapping, not SQL semantics.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from kuiqlee.db.models import AuthToken, Subscription, UsageLog, User
from kuiqlee.exceptions import (
    EmailAlreadyRegisteredError,
    IdentityNotFoundError,
    StoreUnavailableError,
    SubscriptionConflictError,
)
from kuiqlee.models.api import PlanId, SubscriptionStatus
from kuiqlee.services.credential_store import CredentialStore
from kuiqlee.services.identity_store import IdentityStore
from kuiqlee.services.subscription_store import SubscriptionStore
from kuiqlee.services.usage_ledger import UsageLedger


class _DriverError(Exception):
    """Stand-in for an asyncpg error as exposed on IntegrityError.orig."""

    def __init__(self, message: str, sqlstate: str, constraint_name: str) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate
        self.constraint_name = constraint_name


def _integrity_error() -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception("duplicate key value"))


def _foreign_key_error() -> IntegrityError:
    return IntegrityError(
        "INSERT ...",
        {},
        _DriverError(
            'insert or update on table "subscriptions" violates foreign key constraint',
            "23503",
            "fk_subscriptions_user",
        ),
    )


def _unique_error(constraint: str) -> IntegrityError:
    return IntegrityError(
        "INSERT ...",
        {},
        _DriverError("duplicate key value violates unique constraint", "23505", constraint),
    )


def _operational_error() -> OperationalError:
    return OperationalError("SELECT ...", {}, Exception("connection refused"))


class TestIdentityStore:
    """Tests for IdentityStore."""

    @pytest.mark.asyncio
    async def test_create_flushes_and_commits(self, db_session: AsyncMock):
        store = IdentityStore(db_session)

        record = await store.create("a@x.com", "$argon2id$hash")

        assert record.email == "a@x.com"
        added = db_session.add.call_args[0][0]
        assert isinstance(added, User)
        db_session.flush.assert_awaited_once()
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_duplicate_email(self, db_session: AsyncMock):
        db_session.flush.side_effect = _integrity_error()
        store = IdentityStore(db_session)

        with pytest.raises(EmailAlreadyRegisteredError):
            await store.create("a@x.com", "$argon2id$hash")

        db_session.rollback.assert_awaited()
        db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_find_by_email_miss(self, db_session: AsyncMock):
        store = IdentityStore(db_session)
        assert await store.find_by_email("a@x.com") is None

    @pytest.mark.asyncio
    async def test_find_by_id_hit(self, db_session: AsyncMock):
        user = User(
            id=uuid4(),
            email="a@x.com",
            password_hash="$argon2id$hash",
            created_at=datetime.now(UTC),
        )
        db_session.get.return_value = user
        store = IdentityStore(db_session)

        record = await store.find_by_id(user.id)

        assert record is not None
        assert record.identity_id == user.id
        assert record.email == "a@x.com"

    @pytest.mark.asyncio
    async def test_database_failure_is_unavailable(self, db_session: AsyncMock):
        db_session.execute.side_effect = _operational_error()
        store = IdentityStore(db_session)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.find_by_email("a@x.com")

        assert exc_info.value.operation == "find_identity_by_email"
        db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_reports_rowcount(self, db_session: AsyncMock):
        db_session.execute.return_value.rowcount = 1
        store = IdentityStore(db_session)

        assert await store.delete(uuid4()) is True


class TestCredentialStore:
    """Tests for CredentialStore."""

    @pytest.mark.asyncio
    async def test_create_stores_fingerprint_only(self, db_session: AsyncMock):
        store = CredentialStore(db_session)
        identity_id = uuid4()
        expires_at = datetime.now(UTC) + timedelta(days=30)

        await store.create(identity_id, "f" * 64, expires_at)

        added = db_session.add.call_args[0][0]
        assert isinstance(added, AuthToken)
        assert added.token_hash == "f" * 64
        assert added.revoked is False

    @pytest.mark.asyncio
    async def test_create_for_missing_identity(self, db_session: AsyncMock):
        db_session.flush.side_effect = _integrity_error()
        store = CredentialStore(db_session)

        with pytest.raises(IdentityNotFoundError):
            await store.create(uuid4(), "f" * 64, datetime.now(UTC))

    @pytest.mark.asyncio
    async def test_revoke_unknown_fingerprint(self, db_session: AsyncMock):
        store = CredentialStore(db_session)

        assert await store.revoke("0" * 64) is False
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_revoke_all_returns_count(self, db_session: AsyncMock):
        db_session.execute.return_value.rowcount = 3
        store = CredentialStore(db_session)

        assert await store.revoke_all_for_identity(uuid4()) == 3

    @pytest.mark.asyncio
    async def test_find_by_fingerprint_maps_row(self, db_session: AsyncMock):
        row = AuthToken(
            id=uuid4(),
            user_id=uuid4(),
            token_hash="a" * 64,
            expires_at=datetime.now(UTC) + timedelta(days=1),
            revoked=True,
            created_at=datetime.now(UTC),
        )
        db_session.execute.return_value.scalars.return_value.first.return_value = row
        store = CredentialStore(db_session)

        record = await store.find_by_fingerprint("a" * 64)

        assert record is not None
        assert record.revoked is True
        assert record.identity_id == row.user_id

    @pytest.mark.asyncio
    async def test_sweep_expired(self, db_session: AsyncMock):
        db_session.execute.return_value.rowcount = 5
        store = CredentialStore(db_session)

        assert await store.sweep_expired(datetime.now(UTC)) == 5
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_count_expired(self, db_session: AsyncMock):
        db_session.execute.return_value.scalar_one.return_value = 2
        store = CredentialStore(db_session)

        assert await store.count_expired() == 2


class TestUsageLedger:
    """Tests for UsageLedger."""

    @pytest.mark.asyncio
    async def test_record_if_absent_inserted(self, db_session: AsyncMock):
        db_session.execute.return_value.scalar_one_or_none.return_value = uuid4()
        ledger = UsageLedger(db_session)

        assert await ledger.record_if_absent(uuid4(), "example.com") is True
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_record_if_absent_conflict(self, db_session: AsyncMock):
        ledger = UsageLedger(db_session)

        assert await ledger.record_if_absent(uuid4(), "example.com") is False

    @pytest.mark.asyncio
    async def test_record_if_absent_uses_on_conflict(self, db_session: AsyncMock):
        ledger = UsageLedger(db_session)

        await ledger.record_if_absent(uuid4(), "example.com", "https://example.com/a")

        stmt = db_session.execute.call_args[0][0]
        compiled = str(stmt.compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT ON CONSTRAINT uq_usage_logs_user_domain DO NOTHING" in compiled
        assert "RETURNING" in compiled

    @pytest.mark.asyncio
    async def test_record_failure_is_unavailable(self, db_session: AsyncMock):
        db_session.execute.side_effect = _operational_error()
        ledger = UsageLedger(db_session)

        with pytest.raises(StoreUnavailableError):
            await ledger.record_if_absent(uuid4(), "example.com")

    @pytest.mark.asyncio
    async def test_domains(self, db_session: AsyncMock):
        db_session.execute.return_value.scalars.return_value.all.return_value = ["a.com", "b.com"]
        ledger = UsageLedger(db_session)

        assert await ledger.domains(uuid4()) == ["a.com", "b.com"]

    @pytest.mark.asyncio
    async def test_history_maps_rows(self, db_session: AsyncMock):
        identity_id = uuid4()
        row = UsageLog(
            id=uuid4(),
            user_id=identity_id,
            domain="a.com",
            url=None,
            created_at=datetime.now(UTC),
        )
        db_session.execute.return_value.scalars.return_value.all.return_value = [row]
        ledger = UsageLedger(db_session)

        history = await ledger.history(identity_id, limit=10)

        assert len(history) == 1
        assert history[0].domain == "a.com"
        assert history[0].resource_url is None


class TestSubscriptionStore:
    """Tests for SubscriptionStore."""

    @pytest.mark.asyncio
    async def test_upsert_commits(self, db_session: AsyncMock, subscription_factory):
        store = SubscriptionStore(db_session)

        await store.upsert(subscription_factory(uuid4()))

        stmt = db_session.execute.call_args[0][0]
        compiled = str(stmt.compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT (user_id) DO UPDATE" in compiled
        db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_upsert_unknown_identity(self, db_session: AsyncMock, subscription_factory):
        db_session.execute.side_effect = _foreign_key_error()
        store = SubscriptionStore(db_session)

        with pytest.raises(IdentityNotFoundError):
            await store.upsert(subscription_factory(uuid4()))

        db_session.rollback.assert_awaited()

    @pytest.mark.asyncio
    async def test_upsert_unique_collision_is_conflict(
        self, db_session: AsyncMock, subscription_factory
    ):
        db_session.execute.side_effect = _unique_error("uq_subscriptions_stripe_subscription_id")
        store = SubscriptionStore(db_session)

        with pytest.raises(SubscriptionConflictError) as exc_info:
            await store.upsert(subscription_factory(uuid4()))

        assert exc_info.value.constraint == "uq_subscriptions_stripe_subscription_id"
        db_session.rollback.assert_awaited()

    @pytest.mark.asyncio
    async def test_upsert_unclassified_integrity_error_is_conflict(
        self, db_session: AsyncMock, subscription_factory
    ):
        db_session.execute.side_effect = _integrity_error()
        store = SubscriptionStore(db_session)

        with pytest.raises(SubscriptionConflictError) as exc_info:
            await store.upsert(subscription_factory(uuid4()))

        assert exc_info.value.constraint is None

    @pytest.mark.asyncio
    async def test_upsert_failure_is_unavailable(self, db_session: AsyncMock, subscription_factory):
        db_session.execute.side_effect = _operational_error()
        store = SubscriptionStore(db_session)

        with pytest.raises(StoreUnavailableError):
            await store.upsert(subscription_factory(uuid4()))

    @pytest.mark.asyncio
    async def test_get_by_identity_maps_row(self, db_session: AsyncMock):
        identity_id = uuid4()
        row = Subscription(
            user_id=identity_id,
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
            status="trialing",
            plan_id="annual",
            current_period_start=None,
            current_period_end=None,
            cancel_at_period_end=False,
        )
        db_session.execute.return_value.scalar_one_or_none.return_value = row
        store = SubscriptionStore(db_session)

        data = await store.get_by_identity(identity_id)

        assert data is not None
        assert data.status == SubscriptionStatus.TRIALING
        assert data.plan_id == PlanId.ANNUAL
        assert await store.is_premium(identity_id) is True

    @pytest.mark.asyncio
    async def test_is_premium_without_row(self, db_session: AsyncMock):
        store = SubscriptionStore(db_session)
        assert await store.is_premium(uuid4()) is False
