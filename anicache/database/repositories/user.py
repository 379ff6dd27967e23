"""
用户、验证令牌和用户关系Repository

提供用户账号、验证令牌、观看历史、收藏、订阅的数据访问方法。
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
from sqlalchemy import select, update, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository
from ..models.user import (
    User, VerificationToken, TokenType,
    UserHistory, UserFavorite, UserSubscription
)


class UserRepository(BaseRepository[User]):
    """用户Repository"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, User)

    async def get_by_email(self, email: str) -> Optional[User]:
        """
        根据邮箱获取用户

        Args:
            email: 邮箱

        Returns:
            用户对象或None
        """
        return await self.get_by_field("email", email)

    async def get_by_google_id(self, google_id: str) -> Optional[User]:
        """根据Google账号ID获取用户"""
        return await self.get_by_field("google_id", google_id)

    async def mark_verified(self, user_id: int) -> bool:
        """
        标记用户邮箱已验证

        Returns:
            是否更新成功
        """
        result = await self.update(user_id, email_verified=True)
        return result is not None

    async def delete_by_id(self, user_id: int) -> bool:
        """
        删除用户

        令牌、历史、收藏、订阅由数据库外键级联删除
        """
        return await self.delete_by_field("id", user_id) > 0


class VerificationTokenRepository(BaseRepository[VerificationToken]):
    """验证令牌Repository"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, VerificationToken)

    async def get_by_token(self, token: str) -> Optional[VerificationToken]:
        """根据令牌字符串获取令牌"""
        return await self.get_by_field("token", token)

    async def mark_used(self, token_id: int, used_at: datetime) -> bool:
        """
        标记令牌已使用

        条件更新：只有 used_at 仍为空时才会写入，并发消费时只有一方成功。

        Args:
            token_id: 令牌ID
            used_at: 使用时间

        Returns:
            本次是否成功消费
        """
        stmt = (
            update(VerificationToken)
            .where(
                and_(
                    VerificationToken.id == token_id,
                    VerificationToken.used_at.is_(None)
                )
            )
            .values(used_at=used_at)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def get_by_user(self, user_id: int, token_type: Optional[TokenType] = None) -> List[VerificationToken]:
        """获取用户的令牌列表"""
        stmt = self._select().where(VerificationToken.user_id == user_id)
        if token_type is not None:
            stmt = stmt.where(VerificationToken.token_type == token_type)

        result = await self.session.execute(stmt.order_by(VerificationToken.id))
        return list(result.scalars().all())

    async def delete_expired(self, now: datetime) -> int:
        """
        清理过期令牌

        Returns:
            清理的令牌数量
        """
        stmt = delete(VerificationToken).where(VerificationToken.expires_at <= now)
        result = await self.session.execute(stmt)
        return result.rowcount


class UserRelationRepository(BaseRepository):
    """
    用户关系表的公共逻辑

    子类指定 item_key（与 user_id 组成唯一键的字段）和列表排序字段。
    """

    item_key: str = "anime_slug"
    list_order: str = "-created_at"

    async def add(self, values: Dict[str, Any]) -> bool:
        """
        幂等插入关系

        Returns:
            是否新插入了记录（已存在时返回False）
        """
        if await self.get_item(values["user_id"], values[self.item_key]) is not None:
            return False
        affected = await self.upsert(values, conflict_columns=("user_id", self.item_key))
        return affected > 0

    async def get_item(self, user_id: int, item: str):
        stmt = self._select().where(
            and_(
                self.model.user_id == user_id,
                getattr(self.model, self.item_key) == item
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def remove(self, user_id: int, item: str) -> bool:
        """
        删除关系

        Returns:
            是否删除了记录
        """
        stmt = delete(self.model).where(
            and_(
                self.model.user_id == user_id,
                getattr(self.model, self.item_key) == item
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def list_for_user(
        self,
        user_id: int,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> list:
        """获取用户的关系列表，最新的在前"""
        return await self.get_many_by_field(
            "user_id", user_id, limit=limit, offset=offset, order_by=self.list_order
        )

    async def count_for_user(self, user_id: int) -> int:
        return await self.count(user_id=user_id)

    async def delete_for_user(self, user_id: int) -> int:
        return await self.delete_by_field("user_id", user_id)


class UserHistoryRepository(UserRelationRepository):
    """观看历史Repository"""

    item_key = "episode_slug"
    list_order = "-watched_at"

    def __init__(self, session: AsyncSession):
        super().__init__(session, UserHistory)

    async def record(self, values: Dict[str, Any]) -> None:
        """
        记录观看历史

        同一用户同一分集只保留一行，重复记录时刷新 watched_at 和快照字段。
        """
        await self.upsert(
            values,
            conflict_columns=("user_id", "episode_slug"),
            update_columns=[key for key in values if key not in ("user_id", "episode_slug")]
        )


class UserFavoriteRepository(UserRelationRepository):
    """收藏Repository"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, UserFavorite)

    async def refresh_snapshot(self, user_id: int, anime_slug: str, anime_title: str, thumbnail: Optional[str]) -> int:
        """更新收藏中的标题和缩略图快照"""
        stmt = (
            update(UserFavorite)
            .where(and_(UserFavorite.user_id == user_id, UserFavorite.anime_slug == anime_slug))
            .values(anime_title=anime_title, thumbnail=thumbnail)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount


class UserSubscriptionRepository(UserRelationRepository):
    """订阅Repository"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, UserSubscription)

    async def refresh_snapshot(self, user_id: int, anime_slug: str, anime_title: str, thumbnail: Optional[str]) -> int:
        """更新订阅中的标题和缩略图快照"""
        stmt = (
            update(UserSubscription)
            .where(and_(UserSubscription.user_id == user_id, UserSubscription.anime_slug == anime_slug))
            .values(anime_title=anime_title, thumbnail=thumbnail)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def get_subscriber_ids(self, anime_slug: str) -> List[int]:
        """获取订阅了某番剧的所有用户ID"""
        stmt = (
            select(UserSubscription.user_id)
            .where(UserSubscription.anime_slug == anime_slug)
            .order_by(UserSubscription.user_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
