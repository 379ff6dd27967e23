"""用户身份和验证令牌测试"""

from datetime import datetime, timedelta, timezone

import pytest

from anicache.config import Settings, TokenConfig
from anicache.database.models.base import ensure_utc
from anicache.database.models.user import TokenType
from anicache.services.base import (
    DuplicateKeyConflict, ResourceNotFoundError, TokenAlreadyUsed, TokenExpired, ValidationError
)
from anicache.services.factory import ServiceFactory

ISSUED_AT = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def verification(services):
    return services.verification


class TestUsers:
    """用户创建和查询"""

    async def test_email_is_normalised(self, verification):
        user = await verification.create_user("  Carol@Example.COM ", password_hash="hash", name="Carol")

        assert user.email == "carol@example.com"
        assert user.email_verified is False
        assert (await verification.get_user_by_email("CAROL@example.com")).id == user.id

    async def test_duplicate_email(self, verification, user):
        with pytest.raises(DuplicateKeyConflict):
            await verification.create_user("Alice@example.com")

    async def test_empty_email(self, verification):
        with pytest.raises(ValidationError):
            await verification.create_user("")

    async def test_link_google_account(self, verification, user, other_user):
        linked = await verification.link_google_account(user.id, "google-123", avatar="https://img/alice.png")

        assert linked.google_id == "google-123"
        assert linked.avatar == "https://img/alice.png"
        assert (await verification.get_user_by_google_id("google-123")).id == user.id

        with pytest.raises(DuplicateKeyConflict):
            await verification.link_google_account(other_user.id, "google-123")

    async def test_link_unknown_user(self, verification):
        with pytest.raises(ResourceNotFoundError):
            await verification.link_google_account(9999, "google-456")

    async def test_mark_email_verified(self, verification, user):
        await verification.mark_email_verified(user.id)
        assert (await verification.get_user(user.id)).email_verified is True

        with pytest.raises(ResourceNotFoundError):
            await verification.mark_email_verified(9999)


class TestTokens:
    """令牌签发和消费"""

    async def test_issue_uses_configured_ttl(self, verification, user):
        token = await verification.issue_token(user.id, TokenType.PASSWORD_RESET, now=ISSUED_AT)

        assert ensure_utc(token.expires_at) == ISSUED_AT + timedelta(hours=1)
        assert token.used_at is None
        assert len(token.token) >= 32

    async def test_ttl_from_settings(self, services, user):
        settings = Settings(tokens=TokenConfig(email_verification_ttl_hours=2))
        verification = ServiceFactory(services.repos, settings).verification

        token = await verification.issue_token(user.id, "email_verification", now=ISSUED_AT)
        assert ensure_utc(token.expires_at) == ISSUED_AT + timedelta(hours=2)

    async def test_issue_for_unknown_user(self, verification):
        with pytest.raises(ResourceNotFoundError):
            await verification.issue_token(9999, TokenType.EMAIL_VERIFICATION)

    async def test_unknown_token_type(self, verification, user):
        with pytest.raises(ValidationError):
            await verification.issue_token(user.id, "magic_link")

    async def test_consume_once(self, verification, user):
        token = await verification.issue_token(user.id, TokenType.PASSWORD_RESET, now=ISSUED_AT)
        consumed_at = ISSUED_AT + timedelta(minutes=10)

        consumed = await verification.consume_token(token.token, TokenType.PASSWORD_RESET, now=consumed_at)
        assert ensure_utc(consumed.used_at) == consumed_at

        with pytest.raises(TokenAlreadyUsed):
            await verification.consume_token(token.token, TokenType.PASSWORD_RESET, now=consumed_at)

    async def test_consuming_email_token_verifies_user(self, verification, user):
        token = await verification.issue_token(user.id, TokenType.EMAIL_VERIFICATION)

        await verification.consume_token(token.token, "email_verification")

        assert (await verification.get_user(user.id)).email_verified is True

    async def test_password_reset_does_not_verify_email(self, verification, user):
        token = await verification.issue_token(user.id, TokenType.PASSWORD_RESET)
        await verification.consume_token(token.token, TokenType.PASSWORD_RESET)
        assert (await verification.get_user(user.id)).email_verified is False

    async def test_expired_token(self, verification, user):
        token = await verification.issue_token(user.id, TokenType.PASSWORD_RESET, now=ISSUED_AT)

        with pytest.raises(TokenExpired):
            await verification.consume_token(token.token, TokenType.PASSWORD_RESET, now=ISSUED_AT + timedelta(hours=1))

        refreshed = (await verification.get_tokens_for_user(user.id))[0]
        assert refreshed.used_at is None

    async def test_wrong_type_or_unknown_token(self, verification, user):
        token = await verification.issue_token(user.id, TokenType.PASSWORD_RESET)

        with pytest.raises(ResourceNotFoundError):
            await verification.consume_token(token.token, TokenType.EMAIL_VERIFICATION)
        with pytest.raises(ResourceNotFoundError):
            await verification.consume_token("not-a-token", TokenType.PASSWORD_RESET)

    async def test_tokens_filtered_by_type(self, verification, user):
        await verification.issue_token(user.id, TokenType.PASSWORD_RESET)
        await verification.issue_token(user.id, TokenType.EMAIL_VERIFICATION)

        tokens = await verification.get_tokens_for_user(user.id, "password_reset")
        assert [t.token_type for t in tokens] == [TokenType.PASSWORD_RESET]

    async def test_purge_expired(self, verification, user):
        await verification.issue_token(user.id, TokenType.PASSWORD_RESET, now=ISSUED_AT)
        await verification.issue_token(user.id, TokenType.EMAIL_VERIFICATION, now=ISSUED_AT)

        removed = await verification.purge_expired_tokens(now=ISSUED_AT + timedelta(hours=2))

        assert removed == 1
        remaining = await verification.get_tokens_for_user(user.id)
        assert [t.token_type for t in remaining] == [TokenType.EMAIL_VERIFICATION]


class TestLoadedObjectsAfterErrors:
    """校验失败不会让会话中已加载的对象失效"""

    async def test_after_expired_token(self, verification, user):
        token = await verification.issue_token(user.id, TokenType.PASSWORD_RESET, now=ISSUED_AT)

        with pytest.raises(TokenExpired):
            await verification.consume_token(token.token, TokenType.PASSWORD_RESET, now=ISSUED_AT + timedelta(days=1))

        assert user.email == "alice@example.com"
        assert token.used_at is None

    async def test_after_token_already_used(self, verification, user):
        token = await verification.issue_token(user.id, TokenType.PASSWORD_RESET)
        await verification.consume_token(token.token, TokenType.PASSWORD_RESET)

        with pytest.raises(TokenAlreadyUsed):
            await verification.consume_token(token.token, TokenType.PASSWORD_RESET)

        assert user.email == "alice@example.com"
        assert token.token_type is TokenType.PASSWORD_RESET

    async def test_after_unknown_token_or_user(self, verification, user):
        token = await verification.issue_token(user.id, TokenType.EMAIL_VERIFICATION)

        with pytest.raises(ResourceNotFoundError):
            await verification.consume_token("not-a-token", TokenType.EMAIL_VERIFICATION)
        with pytest.raises(ResourceNotFoundError):
            await verification.issue_token(9999, TokenType.EMAIL_VERIFICATION)
        with pytest.raises(ResourceNotFoundError):
            await verification.link_google_account(9999, "google-9999")
        with pytest.raises(ResourceNotFoundError):
            await verification.mark_email_verified(9999)

        assert user.name == "Alice"
        assert token.user_id == user.id
