"""
Tests for EntitlementService.

Covers the credential lifecycle, free tier metering, premium bypass, the
concurrent first-use race and an end-to-end account scenario.
"""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from kuiqlee.exceptions import (
    EmailAlreadyRegisteredError,
    IdentityNotFoundError,
    InvalidCredentialsError,
    InvalidDomainError,
    InvalidEmailError,
    MalformedTokenError,
    MissingTokenError,
    StoreUnavailableError,
    TokenExpiredError,
    TokenRevokedError,
    UsageLimitReachedError,
    WeakPasswordError,
)
from kuiqlee.models.api import SubscriptionStatus
from kuiqlee.services.entitlement import normalize_email


class TestNormalizeEmail:
    """Tests for email normalization."""

    def test_lowercases_and_trims(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"

    @pytest.mark.parametrize("email", ["", "alice", "alice@", "@example.com", "a b@x.com", "a@x"])
    def test_rejects_invalid_syntax(self, email):
        with pytest.raises(InvalidEmailError):
            normalize_email(email)


class TestRegister:
    """Tests for account registration."""

    @pytest.mark.asyncio
    async def test_register_issues_non_premium_credential(self, entitlement_service, credential_store):
        result = await entitlement_service.register("A@X.com", "password1")

        assert result.identity.email == "a@x.com"
        assert result.is_premium is False
        assert result.credential.identity_id == result.identity.identity_id
        assert len(credential_store.rows) == 1

    @pytest.mark.asyncio
    async def test_credential_valid_for_thirty_days(self, entitlement_service):
        before = datetime.now(UTC)
        result = await entitlement_service.register("a@x.com", "password1")

        lifetime = result.credential.expires_at - before
        assert timedelta(days=29, hours=23) < lifetime <= timedelta(days=30)

    @pytest.mark.asyncio
    async def test_password_is_hashed(self, entitlement_service, identity_store):
        result = await entitlement_service.register("a@x.com", "password1")

        stored = identity_store.rows[result.identity.identity_id]
        assert stored.password_hash != "password1"
        assert stored.password_hash.startswith("$argon2")

    @pytest.mark.asyncio
    async def test_invalid_email_rejected(self, entitlement_service):
        with pytest.raises(InvalidEmailError):
            await entitlement_service.register("not-an-email", "password1")

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, entitlement_service):
        with pytest.raises(WeakPasswordError) as exc_info:
            await entitlement_service.register("a@x.com", "short")
        assert exc_info.value.min_length == 8

    @pytest.mark.asyncio
    async def test_duplicate_email_is_case_insensitive(self, entitlement_service):
        await entitlement_service.register("a@x.com", "password1")

        with pytest.raises(EmailAlreadyRegisteredError):
            await entitlement_service.register("A@X.COM", "password2")

    @pytest.mark.asyncio
    async def test_new_account_does_not_inherit_subscription(
        self, entitlement_service, subscription_store, subscription_factory
    ):
        first = await entitlement_service.register("a@x.com", "password1")
        await subscription_store.upsert(subscription_factory(first.identity.identity_id))
        await entitlement_service.delete_account(first.identity.identity_id)

        second = await entitlement_service.register("a@x.com", "password1")

        assert second.is_premium is False
        snapshot = await entitlement_service.check_entitlement(second.identity.identity_id)
        assert snapshot.is_premium is False


class TestLogin:
    """Tests for password login."""

    @pytest.mark.asyncio
    async def test_login_issues_new_credential(self, entitlement_service, credential_store):
        registered = await entitlement_service.register("a@x.com", "password1")
        result = await entitlement_service.login("a@x.com", "password1")

        assert result.identity.identity_id == registered.identity.identity_id
        assert result.credential.token != registered.credential.token
        assert len(credential_store.rows) == 2

    @pytest.mark.asyncio
    async def test_login_leaves_other_sessions_valid(self, entitlement_service):
        registered = await entitlement_service.register("a@x.com", "password1")
        await entitlement_service.login("a@x.com", "password1")

        identity_id = await entitlement_service.verify_credential(registered.credential.token)
        assert identity_id == registered.identity.identity_id

    @pytest.mark.asyncio
    async def test_unknown_email_and_wrong_password_are_indistinguishable(self, entitlement_service):
        await entitlement_service.register("a@x.com", "password1")

        with pytest.raises(InvalidCredentialsError) as unknown:
            await entitlement_service.login("nobody@x.com", "password1")
        with pytest.raises(InvalidCredentialsError) as wrong:
            await entitlement_service.login("a@x.com", "password2")

        assert str(unknown.value) == str(wrong.value) == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_login_email_case_insensitive(self, entitlement_service):
        await entitlement_service.register("a@x.com", "password1")
        result = await entitlement_service.login("  A@X.com", "password1")
        assert result.identity.email == "a@x.com"

    @pytest.mark.asyncio
    async def test_login_reports_premium(
        self, entitlement_service, subscription_store, subscription_factory, token_codec
    ):
        registered = await entitlement_service.register("a@x.com", "password1")
        await subscription_store.upsert(subscription_factory(registered.identity.identity_id))

        result = await entitlement_service.login("a@x.com", "password1")

        assert result.is_premium is True
        assert token_codec.parse(result.credential.token).is_premium is True


class TestTokenLifecycle:
    """Issue, verify, revoke, verify again."""

    @pytest.mark.asyncio
    async def test_issue_verify_logout_verify(self, entitlement_service):
        registered = await entitlement_service.register("a@x.com", "password1")
        token = registered.credential.token

        assert await entitlement_service.verify_credential(token) == registered.identity.identity_id

        await entitlement_service.logout(token)

        with pytest.raises(TokenRevokedError):
            await entitlement_service.verify_credential(token)

    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, entitlement_service):
        registered = await entitlement_service.register("a@x.com", "password1")

        await entitlement_service.logout(registered.credential.token)
        await entitlement_service.logout(registered.credential.token)
        await entitlement_service.logout("never-issued")
        await entitlement_service.logout(None)

    @pytest.mark.asyncio
    async def test_missing_token(self, entitlement_service):
        with pytest.raises(MissingTokenError):
            await entitlement_service.verify_credential(None)
        with pytest.raises(MissingTokenError):
            await entitlement_service.verify_credential("")

    @pytest.mark.asyncio
    async def test_malformed_token(self, entitlement_service):
        with pytest.raises(MalformedTokenError):
            await entitlement_service.verify_credential("not.a.jwt")

    @pytest.mark.asyncio
    async def test_signed_but_unknown_token_is_rejected(self, entitlement_service, token_codec):
        token, _ = token_codec.issue(uuid4(), "ghost@x.com", True, timedelta(days=1))

        with pytest.raises(TokenRevokedError):
            await entitlement_service.verify_credential(token)

    @pytest.mark.asyncio
    async def test_expired_token(self, entitlement_service, token_codec, credential_store):
        registered = await entitlement_service.register("a@x.com", "password1")
        token, claims = token_codec.issue(
            registered.identity.identity_id,
            "a@x.com",
            False,
            timedelta(days=30),
            now=datetime.now(UTC) - timedelta(days=31),
        )
        await credential_store.create(
            registered.identity.identity_id, token_codec.fingerprint(token), claims.expires_at
        )

        with pytest.raises(TokenExpiredError):
            await entitlement_service.verify_credential(token)

    @pytest.mark.asyncio
    async def test_store_expiry_is_rechecked(self, entitlement_service, token_codec, credential_store):
        registered = await entitlement_service.register("a@x.com", "password1")
        token = registered.credential.token
        fingerprint = token_codec.fingerprint(token)

        credential_store.rows[fingerprint] = replace(
            credential_store.rows[fingerprint],
            expires_at=datetime.now(UTC) - timedelta(seconds=1),
        )

        with pytest.raises(TokenExpiredError):
            await entitlement_service.verify_credential(token)

    @pytest.mark.asyncio
    async def test_revoke_all(self, entitlement_service):
        registered = await entitlement_service.register("a@x.com", "password1")
        second = await entitlement_service.login("a@x.com", "password1")

        revoked = await entitlement_service.revoke_all(registered.identity.identity_id)

        assert revoked == 2
        for token in (registered.credential.token, second.credential.token):
            with pytest.raises(TokenRevokedError):
                await entitlement_service.verify_credential(token)


class TestCheckEntitlement:
    """Tests for the free tier decision."""

    @pytest.mark.asyncio
    async def test_fresh_account_has_full_allowance(self, entitlement_service):
        registered = await entitlement_service.register("a@x.com", "password1")

        snapshot = await entitlement_service.check_entitlement(registered.identity.identity_id)

        assert snapshot.allowed is True
        assert snapshot.used == 0
        assert snapshot.remaining == 3
        assert snapshot.limit == 3

    @pytest.mark.asyncio
    async def test_invalid_domain(self, entitlement_service):
        with pytest.raises(InvalidDomainError):
            await entitlement_service.check_entitlement(uuid4(), "   ")

    @pytest.mark.asyncio
    async def test_premium_is_unlimited(
        self, entitlement_service, subscription_store, subscription_factory
    ):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id
        await subscription_store.upsert(subscription_factory(identity_id))

        snapshot = await entitlement_service.check_entitlement(identity_id, "example.com")

        assert snapshot.allowed is True
        assert snapshot.is_premium is True
        assert snapshot.unlimited is True
        assert snapshot.remaining is None
        assert snapshot.limit is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.CANCELED,
            SubscriptionStatus.INCOMPLETE,
            SubscriptionStatus.INCOMPLETE_EXPIRED,
            SubscriptionStatus.UNPAID,
        ],
    )
    async def test_non_entitled_statuses_are_metered(
        self, entitlement_service, subscription_store, subscription_factory, status
    ):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id
        await subscription_store.upsert(subscription_factory(identity_id, status=status))

        snapshot = await entitlement_service.check_entitlement(identity_id)

        assert snapshot.is_premium is False
        assert snapshot.limit == 3

    @pytest.mark.asyncio
    async def test_trialing_is_premium(
        self, entitlement_service, subscription_store, subscription_factory
    ):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id
        await subscription_store.upsert(
            subscription_factory(identity_id, status=SubscriptionStatus.TRIALING)
        )

        snapshot = await entitlement_service.check_entitlement(identity_id)

        assert snapshot.is_premium is True

    @pytest.mark.asyncio
    async def test_premium_survives_ledger_outage(
        self, entitlement_service, subscription_store, subscription_factory, usage_ledger
    ):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id
        await subscription_store.upsert(subscription_factory(identity_id))
        usage_ledger.domains = AsyncMock(
            side_effect=StoreUnavailableError("list_domains", "connection reset")
        )

        snapshot = await entitlement_service.check_entitlement(identity_id, "d1.com")
        result = await entitlement_service.record_usage(identity_id, "d1.com")

        assert snapshot.allowed is True
        assert snapshot.is_premium is True
        assert snapshot.used == 0
        assert snapshot.domains == ()
        assert result.recorded is False
        assert result.snapshot.is_premium is True

    @pytest.mark.asyncio
    async def test_free_tier_ledger_outage_propagates(self, entitlement_service, usage_ledger):
        registered = await entitlement_service.register("a@x.com", "password1")
        usage_ledger.domains = AsyncMock(
            side_effect=StoreUnavailableError("list_domains", "connection reset")
        )

        with pytest.raises(StoreUnavailableError):
            await entitlement_service.check_entitlement(registered.identity.identity_id, "d1.com")


class TestRecordUsage:
    """Tests for usage recording, dedup and the cap."""

    @pytest.mark.asyncio
    async def test_same_domain_counts_once(self, entitlement_service, usage_ledger):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id

        first = await entitlement_service.record_usage(identity_id, "example.com")
        second = await entitlement_service.record_usage(identity_id, "https://EXAMPLE.com/other")

        assert first.recorded is True
        assert second.recorded is False
        assert second.already_used is True
        assert len(usage_ledger.rows) == 1
        snapshot = await entitlement_service.check_entitlement(identity_id)
        assert snapshot.used == 1

    @pytest.mark.asyncio
    async def test_cap_blocks_fourth_domain_but_allows_revisit(self, entitlement_service):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id

        for domain in ("d1.com", "d2.com", "d3.com"):
            await entitlement_service.record_usage(identity_id, domain)

        revisit = await entitlement_service.check_entitlement(identity_id, "d1.com")
        assert revisit.allowed is True
        assert revisit.remaining == 0

        blocked = await entitlement_service.check_entitlement(identity_id, "d4.com")
        assert blocked.allowed is False

        with pytest.raises(UsageLimitReachedError) as exc_info:
            await entitlement_service.record_usage(identity_id, "d4.com")
        assert exc_info.value.used == 3
        assert exc_info.value.remaining == 0
        assert exc_info.value.limit == 3

    @pytest.mark.asyncio
    async def test_record_returns_updated_snapshot(self, entitlement_service):
        registered = await entitlement_service.register("a@x.com", "password1")

        result = await entitlement_service.record_usage(
            registered.identity.identity_id, "example.com", "https://example.com/a"
        )

        assert result.snapshot.used == 1
        assert result.snapshot.remaining == 2
        assert result.snapshot.domains == ("example.com",)

    @pytest.mark.asyncio
    async def test_premium_records_nothing(
        self, entitlement_service, subscription_store, subscription_factory, usage_ledger
    ):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id
        await subscription_store.upsert(subscription_factory(identity_id))

        for i in range(10):
            result = await entitlement_service.record_usage(identity_id, f"site{i}.com")
            assert result.recorded is False
            assert result.snapshot.unlimited is True

        assert usage_ledger.rows == []

    @pytest.mark.asyncio
    async def test_insert_failure_fails_open(self, entitlement_service, usage_ledger):
        registered = await entitlement_service.register("a@x.com", "password1")
        usage_ledger.fail_inserts = True

        result = await entitlement_service.record_usage(registered.identity.identity_id, "a.com")

        assert result.recorded is False
        assert result.snapshot.allowed is True

    @pytest.mark.asyncio
    async def test_concurrent_first_use_records_one_row(self, entitlement_service, usage_ledger):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id

        results = await asyncio.gather(
            entitlement_service.record_usage(identity_id, "race.com"),
            entitlement_service.record_usage(identity_id, "race.com"),
        )

        assert sorted(r.recorded for r in results) == [False, True]
        loser = next(r for r in results if not r.recorded)
        assert loser.already_used is True
        assert len(usage_ledger.rows) == 1

    @pytest.mark.asyncio
    async def test_usage_history_newest_first(self, entitlement_service):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id
        await entitlement_service.record_usage(identity_id, "first.com")
        await entitlement_service.record_usage(identity_id, "second.com")

        history = await entitlement_service.usage_history(identity_id)

        assert [h.domain for h in history] == ["second.com", "first.com"]

    @pytest.mark.asyncio
    async def test_usage_history_limit_clamped(self, entitlement_service, usage_ledger):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id
        await entitlement_service.record_usage(identity_id, "first.com")

        assert len(await entitlement_service.usage_history(identity_id, limit=0)) == 1


class TestDeleteAccount:
    """Tests for account deletion."""

    @pytest.mark.asyncio
    async def test_delete_revokes_and_cascades(self, entitlement_service, usage_ledger):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = registered.identity.identity_id
        await entitlement_service.record_usage(identity_id, "a.com")

        await entitlement_service.delete_account(identity_id)

        assert usage_ledger.rows == []
        with pytest.raises(TokenRevokedError):
            await entitlement_service.verify_credential(registered.credential.token)

    @pytest.mark.asyncio
    async def test_delete_unknown_identity(self, entitlement_service):
        with pytest.raises(IdentityNotFoundError):
            await entitlement_service.delete_account(uuid4())


class TestScenario:
    """Register, use the free tier, hit the cap, subscribe."""

    @pytest.mark.asyncio
    async def test_free_tier_then_premium(
        self, entitlement_service, subscription_store, subscription_factory
    ):
        registered = await entitlement_service.register("a@x.com", "password1")
        identity_id = await entitlement_service.verify_credential(registered.credential.token)

        for domain in ("d1", "d2", "d3"):
            await entitlement_service.record_usage(identity_id, f"{domain}.example")

        assert (await entitlement_service.check_entitlement(identity_id, "d1.example")).allowed
        with pytest.raises(UsageLimitReachedError):
            await entitlement_service.record_usage(identity_id, "d4.example")

        # Webhook "subscription created" with status active
        await subscription_store.upsert(subscription_factory(identity_id))

        snapshot = await entitlement_service.check_entitlement(identity_id, "d4.example")
        assert snapshot.allowed is True
        assert snapshot.unlimited is True
        assert snapshot.remaining is None
