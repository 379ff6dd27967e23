"""
番剧详情Repository

提供番剧详情的按 slug 读写操作。
"""

from typing import Any, Dict, Optional
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository
from ..models.anime import AnimeDetail, ANIME_MUTABLE_FIELDS


class AnimeDetailRepository(BaseRepository[AnimeDetail]):
    """番剧详情Repository"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AnimeDetail)

    async def get_by_slug(self, slug: str) -> Optional[AnimeDetail]:
        """根据 slug 获取番剧详情"""
        return await self.get_by_field("slug", slug)

    async def get_by_url(self, url: str) -> Optional[AnimeDetail]:
        """根据详情页URL获取番剧详情"""
        return await self.get_by_field("url", url)

    async def upsert_detail(self, values: Dict[str, Any]) -> None:
        """
        插入或更新番剧详情

        冲突时覆盖所有可变字段和 updated_at；url 仅在原值为空时写入，
        slug 和 created_at 不会被修改。

        MySQL 上 url 同样会触发 ON DUPLICATE KEY，调用前需确认 url 不属于其他番剧。

        Args:
            values: 字段值，必须包含 slug、title 和 updated_at
        """
        await self.upsert(
            values,
            conflict_columns=("slug",),
            update_columns=[field for field in ANIME_MUTABLE_FIELDS if field in values] + ["updated_at"],
            keep_existing=("url",)
        )

    async def delete_by_slug(self, slug: str) -> bool:
        """
        删除番剧详情

        分集由数据库外键级联删除，视频源不受影响。

        Returns:
            是否删除了记录
        """
        stmt = delete(AnimeDetail).where(AnimeDetail.slug == slug)
        result = await self.session.execute(stmt)
        return result.rowcount > 0
