"""
爬取列表Repository

浏览页、完结列表、最新更新三张暂存表的批量写入和读取。
"""

from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository
from ..models.listing import CrawledAnime, CompletedAnime, AnimeUpdate


class ListingRepository(BaseRepository):
    """
    列表暂存表的公共逻辑

    子类指定自然键 natural_key；冲突时覆盖除自然键外的所有字段。
    """

    natural_key: str = "url"

    async def save_batch(self, items: List[Dict[str, Any]]) -> int:
        """
        批量保存列表记录

        Args:
            items: 记录列表，每条都必须包含 updated_at

        Returns:
            处理的记录数
        """
        if not items:
            return 0

        # 同一批次内重复的自然键只保留最后一条
        deduplicated = list({item[self.natural_key]: item for item in items}.values())
        update_columns = [key for key in deduplicated[0] if key != self.natural_key]
        return await self.upsert_many(
            deduplicated,
            conflict_columns=(self.natural_key,),
            update_columns=update_columns
        )

    async def get_recent(self, limit: Optional[int] = None, offset: Optional[int] = None) -> list:
        """按更新时间倒序获取记录"""
        return await self.get_all(limit=limit, offset=offset, order_by="-updated_at")


class CrawledAnimeRepository(ListingRepository):
    """浏览页爬取结果Repository"""

    natural_key = "slug"

    def __init__(self, session: AsyncSession):
        super().__init__(session, CrawledAnime)

    async def get_by_slug(self, slug: str) -> Optional[CrawledAnime]:
        return await self.get_by_field("slug", slug)

    async def delete_by_slug(self, slug: str) -> bool:
        return await self.delete_by_field("slug", slug) > 0


class CompletedAnimeRepository(ListingRepository):
    """完结番剧列表Repository"""

    natural_key = "url"

    def __init__(self, session: AsyncSession):
        super().__init__(session, CompletedAnime)


class AnimeUpdateRepository(ListingRepository):
    """最新更新列表Repository"""

    natural_key = "episode_url"

    def __init__(self, session: AsyncSession):
        super().__init__(session, AnimeUpdate)
