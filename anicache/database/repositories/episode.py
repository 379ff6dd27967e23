"""
分集和视频源Repository

提供分集、视频源的数据访问方法，以及孤立视频源的回收查询。
"""

from typing import Any, Dict, List, Optional
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository
from ..models.episode import Episode, VideoSource, EPISODE_MUTABLE_FIELDS


class EpisodeRepository(BaseRepository[Episode]):
    """分集Repository"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Episode)

    async def get_by_url(self, url: str) -> Optional[Episode]:
        """根据分集URL获取分集"""
        return await self.get_by_field("url", url)

    async def get_by_anime_slug(self, anime_slug: str) -> List[Episode]:
        """
        获取番剧下的所有分集

        按插入顺序返回（id 升序）
        """
        stmt = (
            self._select()
            .where(Episode.anime_slug == anime_slug)
            .order_by(Episode.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_episode(self, values: Dict[str, Any]) -> bool:
        """
        插入或更新分集

        冲突时只有 anime_slug 相同才会覆盖可变字段，分集不会被挂到其他番剧下。

        Args:
            values: 字段值，必须包含 anime_slug、url 和 updated_at

        Returns:
            是否写入成功；URL 已属于其他番剧时返回 False
        """
        affected = await self.upsert(
            values,
            conflict_columns=("url",),
            update_columns=[field for field in EPISODE_MUTABLE_FIELDS if field in values] + ["updated_at"],
            match_columns=("anime_slug",)
        )
        if self.reports_found_rows:
            existing = await self.get_by_url(values["url"])
            return existing is not None and existing.anime_slug == values["anime_slug"]
        return affected > 0

    async def count_by_anime_slug(self, anime_slug: str) -> int:
        """统计番剧的分集数"""
        return await self.count(anime_slug=anime_slug)


class VideoSourceRepository(BaseRepository[VideoSource]):
    """视频源Repository"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, VideoSource)

    async def get_by_episode_url(self, episode_url: str) -> List[VideoSource]:
        """获取分集的所有视频源，按插入顺序"""
        stmt = (
            self._select()
            .where(VideoSource.episode_url == episode_url)
            .order_by(VideoSource.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_source(self, values: Dict[str, Any]) -> None:
        """
        按 (episode_url, server, quality) 插入或更新视频源

        Args:
            values: 字段值，必须包含 episode_url、server、quality 和 updated_at
        """
        await self.upsert(
            values,
            conflict_columns=("episode_url", "server", "quality"),
            update_columns=("url", "updated_at")
        )

    async def delete_by_episode_url(self, episode_url: str) -> int:
        """删除分集的所有视频源"""
        return await self.delete_by_field("episode_url", episode_url)

    def _orphan_condition(self):
        return VideoSource.episode_url.not_in(select(Episode.url))

    async def count_orphans(self) -> int:
        """统计没有对应分集的视频源数量"""
        stmt = select(func.count(VideoSource.id)).where(self._orphan_condition())
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def delete_orphans(self) -> int:
        """
        删除没有对应分集的视频源

        Returns:
            删除的记录数
        """
        stmt = delete(VideoSource).where(self._orphan_condition())
        result = await self.session.execute(stmt)
        return result.rowcount
