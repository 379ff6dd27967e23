"""
用户身份和验证令牌服务

只负责存储：密码哈希、Google账号ID由认证子系统生成后传入，
这里不做哈希、不签发JWT、不发送邮件。

验证令牌只能使用一次（used_at 只写一次），过期时间由本服务在消费时检查。
"""

import secrets
from datetime import datetime, timedelta
from typing import List, Optional, Union

from sqlalchemy.exc import IntegrityError

from .base import (
    BaseService, ValidationError, ResourceNotFoundError, DuplicateKeyConflict,
    TokenExpired, TokenAlreadyUsed, translate_integrity_error, service_operation
)
from ..config import TokenConfig
from ..database.models.base import utcnow, ensure_utc
from ..database.models.user import User, VerificationToken, TokenType
from ..database.repositories.factory import RepositoryFactory

# 令牌随机字节数
TOKEN_BYTES = 32


def _as_token_type(token_type: Union[TokenType, str]) -> TokenType:
    try:
        return TokenType(token_type)
    except ValueError:
        raise ValidationError(f"无效的令牌类型: {token_type!r}", field="token_type") from None


class VerificationService(BaseService):
    """用户身份和验证令牌服务"""

    def __init__(self, repository_factory: RepositoryFactory, token_config: Optional[TokenConfig] = None):
        super().__init__(repository_factory)
        self.token_config = token_config or TokenConfig()

    # ------------------------------------------------------------------
    # 用户
    # ------------------------------------------------------------------

    @service_operation("create_user")
    async def create_user(
        self,
        email: str,
        password_hash: Optional[str] = None,
        name: Optional[str] = None,
        avatar: Optional[str] = None,
        google_id: Optional[str] = None,
        email_verified: bool = False
    ) -> User:
        """
        创建用户

        Raises:
            ValidationError: 邮箱为空
            DuplicateKeyConflict: 邮箱或Google账号已被使用
        """
        self._validate_required_fields({"email": email}, ["email"])
        email = email.strip().lower()

        if await self.repos.user.get_by_email(email) is not None:
            raise DuplicateKeyConflict("user", email, message=f"邮箱 {email} 已被注册")
        if google_id and await self.repos.user.get_by_google_id(google_id) is not None:
            raise DuplicateKeyConflict("user", google_id, message="该Google账号已绑定其他用户")

        async with self.transaction():
            try:
                user = await self.repos.user.create(
                    email=email,
                    password_hash=password_hash,
                    name=name,
                    avatar=avatar,
                    google_id=google_id,
                    email_verified=email_verified
                )
            except IntegrityError as e:
                raise translate_integrity_error(e, "user", email) from e

        self.logger.info(f"创建用户: {email} (id={user.id})")
        return user

    async def get_user(self, user_id: int) -> Optional[User]:
        return await self.repos.user.get_by_id(user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await self.repos.user.get_by_email(email.strip().lower())

    async def get_user_by_google_id(self, google_id: str) -> Optional[User]:
        return await self.repos.user.get_by_google_id(google_id)

    @service_operation("link_google_account")
    async def link_google_account(self, user_id: int, google_id: str, avatar: Optional[str] = None) -> User:
        """
        为已有用户绑定Google账号

        Raises:
            ResourceNotFoundError: 用户不存在
            DuplicateKeyConflict: Google账号已绑定其他用户
        """
        owner = await self.repos.user.get_by_google_id(google_id)
        if owner is not None and owner.id != user_id:
            raise DuplicateKeyConflict("user", google_id, message="该Google账号已绑定其他用户")

        values = {"google_id": google_id}
        if avatar:
            values["avatar"] = avatar

        async with self.transaction():
            try:
                user = await self.repos.user.update(user_id, **values)
            except IntegrityError as e:
                raise translate_integrity_error(e, "user", google_id) from e

        if user is None:
            raise ResourceNotFoundError("user", user_id)

        return user

    async def mark_email_verified(self, user_id: int) -> None:
        """
        标记邮箱已验证

        Raises:
            ResourceNotFoundError: 用户不存在
        """
        async with self.transaction():
            marked = await self.repos.user.mark_verified(user_id)

        if not marked:
            raise ResourceNotFoundError("user", user_id)

    # ------------------------------------------------------------------
    # 验证令牌
    # ------------------------------------------------------------------

    def _default_ttl(self, token_type: TokenType) -> timedelta:
        if token_type is TokenType.PASSWORD_RESET:
            return self.token_config.password_reset_ttl
        return self.token_config.email_verification_ttl

    @service_operation("issue_token")
    async def issue_token(
        self,
        user_id: int,
        token_type: Union[TokenType, str],
        ttl: Optional[timedelta] = None,
        now: Optional[datetime] = None
    ) -> VerificationToken:
        """
        签发验证令牌

        Args:
            user_id: 用户ID
            token_type: 令牌类型
            ttl: 有效期，默认取配置
            now: 签发时间，默认为当前时间

        Raises:
            ResourceNotFoundError: 用户不存在
        """
        token_type = _as_token_type(token_type)
        issued_at = ensure_utc(now) or utcnow()
        ttl = ttl if ttl is not None else self._default_ttl(token_type)

        if not await self.repos.user.exists(id=user_id):
            raise ResourceNotFoundError("user", user_id)

        async with self.transaction():
            token = await self.repos.verification_token.create(
                user_id=user_id,
                token=secrets.token_urlsafe(TOKEN_BYTES),
                token_type=token_type,
                expires_at=issued_at + ttl
            )

        self.logger.debug(f"为用户 {user_id} 签发 {token_type.value} 令牌")
        return token

    @service_operation("consume_token")
    async def consume_token(
        self,
        token: str,
        token_type: Union[TokenType, str],
        now: Optional[datetime] = None
    ) -> VerificationToken:
        """
        消费验证令牌

        令牌只能成功消费一次；消费邮箱验证令牌会同时把用户标记为已验证。

        Args:
            token: 令牌字符串
            token_type: 期望的令牌类型
            now: 消费时间，默认为当前时间

        Returns:
            已消费的令牌

        Raises:
            ResourceNotFoundError: 令牌不存在或类型不符
            TokenAlreadyUsed: 令牌已被使用
            TokenExpired: 令牌已过期
        """
        token_type = _as_token_type(token_type)
        now = ensure_utc(now) or utcnow()

        record = await self.repos.verification_token.get_by_token(token)
        if record is None or record.token_type is not token_type:
            raise ResourceNotFoundError("verification_token", token)
        if record.used_at is not None:
            raise TokenAlreadyUsed()
        if ensure_utc(record.expires_at) <= now:
            raise TokenExpired()

        async with self.transaction():
            consumed = await self.repos.verification_token.mark_used(record.id, now)
            if consumed and token_type is TokenType.EMAIL_VERIFICATION:
                await self.repos.user.mark_verified(record.user_id)

        if not consumed:
            # 检查之后被并发请求抢先消费
            raise TokenAlreadyUsed()

        self.logger.info(f"用户 {record.user_id} 的 {token_type.value} 令牌已消费")
        return await self.repos.verification_token.get_by_token(token)

    async def get_tokens_for_user(
        self,
        user_id: int,
        token_type: Optional[Union[TokenType, str]] = None
    ) -> List[VerificationToken]:
        if token_type is not None:
            token_type = _as_token_type(token_type)
        return await self.repos.verification_token.get_by_user(user_id, token_type)

    @service_operation("purge_expired_tokens")
    async def purge_expired_tokens(self, now: Optional[datetime] = None) -> int:
        """
        删除已过期的令牌

        Returns:
            删除的令牌数量
        """
        async with self.transaction():
            removed = await self.repos.verification_token.delete_expired(ensure_utc(now) or utcnow())

        if removed:
            self.logger.info(f"清理了 {removed} 个过期令牌")
        return removed


