"""
用户关系服务

观看历史、收藏、订阅三种用户关系。每种关系按 (user_id, 条目键) 唯一：
重复观看只刷新 watched_at，重复收藏/订阅是空操作。

关系行保存写入时的标题和缩略图快照，不校验引用的番剧或分集是否还存在；
快照只在显式调用 refresh_snapshots 时才会按番剧详情重新复制。
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field
from sqlalchemy.exc import IntegrityError

from .base import (
    BaseService, ForeignKeyViolation, translate_integrity_error, service_operation
)
from .catalogue import Record, coerce_payload
from .crawler import CrawlPayload
from ..database.models.base import utcnow
from ..database.models.user import UserHistory, UserFavorite, UserSubscription
from ..database.repositories.factory import RepositoryFactory


class HistoryEntry(CrawlPayload):
    """观看历史条目"""
    episode_slug: str = Field(min_length=1)
    anime_slug: str = Field(min_length=1)
    episode_title: Optional[str] = None
    anime_title: Optional[str] = None
    thumbnail: Optional[str] = None


class AnimeSnapshot(CrawlPayload):
    """收藏/订阅时保存的番剧快照"""
    anime_slug: str = Field(min_length=1)
    anime_title: str = Field(min_length=1)
    thumbnail: Optional[str] = None


class UserRelationService(BaseService):
    """用户关系服务"""

    def __init__(self, repository_factory: RepositoryFactory):
        super().__init__(repository_factory)

    async def _ensure_user(self, user_id: int) -> None:
        if not await self.repos.user.exists(id=user_id):
            raise ForeignKeyViolation("user", user_id, message=f"用户 {user_id} 不存在")

    # ------------------------------------------------------------------
    # 观看历史
    # ------------------------------------------------------------------

    @service_operation("record_history")
    async def record_history(
        self,
        user_id: int,
        entry: Record,
        watched_at: Optional[datetime] = None
    ) -> UserHistory:
        """
        记录观看历史

        同一用户同一分集只有一行，再次记录时更新 watched_at 和快照字段。

        Args:
            user_id: 用户ID
            entry: HistoryEntry 或等价字典
            watched_at: 观看时间，默认为当前时间

        Raises:
            ForeignKeyViolation: 用户不存在
        """
        entry = coerce_payload(HistoryEntry, entry)
        values = entry.model_dump()
        values["user_id"] = user_id
        values["watched_at"] = watched_at or utcnow()

        await self._ensure_user(user_id)
        async with self.transaction():
            try:
                await self.repos.user_history.record(values)
            except IntegrityError as e:
                raise translate_integrity_error(e, "user", user_id) from e
            return await self.repos.user_history.get_item(user_id, entry.episode_slug)

    async def remove_history(self, user_id: int, episode_slug: str) -> bool:
        """删除一条观看历史"""
        async with self.transaction():
            return await self.repos.user_history.remove(user_id, episode_slug)

    async def clear_history(self, user_id: int) -> int:
        """清空用户的观看历史"""
        async with self.transaction():
            removed = await self.repos.user_history.delete_for_user(user_id)

        self.logger.info(f"用户 {user_id} 的 {removed} 条观看历史已清空")
        return removed

    async def list_history(
        self,
        user_id: int,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[UserHistory]:
        """获取观看历史，最近观看的在前"""
        return await self.repos.user_history.list_for_user(user_id, limit=limit, offset=offset)

    # ------------------------------------------------------------------
    # 收藏和订阅
    # ------------------------------------------------------------------

    async def _add_relation(self, repository, user_id: int, snapshot: Record) -> bool:
        snapshot = coerce_payload(AnimeSnapshot, snapshot)
        values = snapshot.model_dump()
        values["user_id"] = user_id

        await self._ensure_user(user_id)
        async with self.transaction():
            try:
                return await repository.add(values)
            except IntegrityError as e:
                raise translate_integrity_error(e, "user", user_id) from e

    @service_operation("add_favorite")
    async def add_favorite(self, user_id: int, snapshot: Record) -> bool:
        """
        收藏番剧

        已收藏时不做任何修改（快照也不更新）。

        Returns:
            是否新增了收藏

        Raises:
            ForeignKeyViolation: 用户不存在
        """
        return await self._add_relation(self.repos.user_favorite, user_id, snapshot)

    async def remove_favorite(self, user_id: int, anime_slug: str) -> bool:
        """取消收藏"""
        async with self.transaction():
            return await self.repos.user_favorite.remove(user_id, anime_slug)

    async def list_favorites(
        self,
        user_id: int,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[UserFavorite]:
        return await self.repos.user_favorite.list_for_user(user_id, limit=limit, offset=offset)

    async def is_favorite(self, user_id: int, anime_slug: str) -> bool:
        return await self.repos.user_favorite.get_item(user_id, anime_slug) is not None

    @service_operation("subscribe")
    async def subscribe(self, user_id: int, snapshot: Record) -> bool:
        """
        订阅番剧

        Returns:
            是否新增了订阅

        Raises:
            ForeignKeyViolation: 用户不存在
        """
        return await self._add_relation(self.repos.user_subscription, user_id, snapshot)

    async def unsubscribe(self, user_id: int, anime_slug: str) -> bool:
        """取消订阅"""
        async with self.transaction():
            return await self.repos.user_subscription.remove(user_id, anime_slug)

    async def list_subscriptions(
        self,
        user_id: int,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[UserSubscription]:
        return await self.repos.user_subscription.list_for_user(user_id, limit=limit, offset=offset)

    async def is_subscribed(self, user_id: int, anime_slug: str) -> bool:
        return await self.repos.user_subscription.get_item(user_id, anime_slug) is not None

    async def list_subscribers(self, anime_slug: str) -> List[int]:
        """订阅了某番剧的用户ID列表，供更新通知使用"""
        return await self.repos.user_subscription.get_subscriber_ids(anime_slug)

    # ------------------------------------------------------------------
    # 快照和用户删除
    # ------------------------------------------------------------------

    @service_operation("refresh_snapshots")
    async def refresh_snapshots(self, user_id: int) -> Dict[str, int]:
        """
        按当前番剧详情重新复制收藏和订阅中的标题、缩略图

        番剧详情已被删除的条目保持原快照不变。

        Returns:
            收藏和订阅各自更新的条目数
        """
        updated = {"favorites": 0, "subscriptions": 0}

        async with self.transaction():
            relations = (
                ("favorites", self.repos.user_favorite),
                ("subscriptions", self.repos.user_subscription),
            )
            for name, repository in relations:
                for row in await repository.list_for_user(user_id):
                    anime = await self.repos.anime_detail.get_by_slug(row.anime_slug)
                    if anime is None:
                        continue
                    if row.anime_title == anime.title and row.thumbnail == anime.poster:
                        continue
                    updated[name] += await repository.refresh_snapshot(
                        user_id, row.anime_slug, anime.title, anime.poster
                    )

        self.logger.info(f"用户 {user_id} 的快照已刷新: {updated}")
        return updated

    @service_operation("delete_user")
    async def delete_user(self, user_id: int) -> bool:
        """
        删除用户

        令牌和全部关系行由数据库在同一事务中级联删除，不影响其他用户。

        Returns:
            是否删除了用户
        """
        async with self.transaction():
            deleted = await self.repos.user.delete_by_id(user_id)

        if deleted:
            self.logger.info(f"用户 {user_id} 及其关系数据已删除")
        return deleted

    async def get_relation_counts(self, user_id: int) -> Dict[str, int]:
        """用户各类关系的条目数"""
        return {
            "history": await self.repos.user_history.count_for_user(user_id),
            "favorites": await self.repos.user_favorite.count_for_user(user_id),
            "subscriptions": await self.repos.user_subscription.count_for_user(user_id),
        }
