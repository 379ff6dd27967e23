"""
系统Repository

提供缓存新鲜度台账（cache_metadata）的数据访问方法。
"""

from typing import Dict, List, Optional
from datetime import datetime
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from .base import BaseRepository
from ..models.base import ensure_utc
from ..models.system import CacheMetadata


class CacheMetadataRepository(BaseRepository[CacheMetadata]):
    """缓存台账Repository"""

    def __init__(self, session: AsyncSession):
        super().__init__(session, CacheMetadata)

    async def get_by_key(self, cache_key: str) -> Optional[CacheMetadata]:
        """
        根据缓存键获取台账记录

        Args:
            cache_key: 缓存键

        Returns:
            台账记录或None
        """
        return await self.get_by_field("cache_key", cache_key)

    async def get_last_fetched(self, cache_key: str) -> Optional[datetime]:
        """获取缓存键的最近抓取时间（UTC）"""
        stmt = select(CacheMetadata.last_fetched).where(CacheMetadata.cache_key == cache_key)
        result = await self.session.execute(stmt)
        return ensure_utc(result.scalar_one_or_none())

    async def touch(self, cache_key: str, fetched_at: datetime) -> None:
        """
        写入缓存键的抓取时间

        已存在时覆盖 last_fetched；调用方必须在数据合并成功之后调用。

        Args:
            cache_key: 缓存键
            fetched_at: 抓取时间
        """
        await self.upsert(
            {"cache_key": cache_key, "last_fetched": fetched_at},
            conflict_columns=("cache_key",),
            update_columns=("last_fetched",)
        )

    async def delete_by_key(self, cache_key: str) -> bool:
        """
        删除缓存键

        Returns:
            是否删除了记录
        """
        return await self.delete_by_field("cache_key", cache_key) > 0

    async def delete_by_prefix(self, prefix: str) -> int:
        """
        删除指定前缀的所有缓存键

        Returns:
            删除的记录数
        """
        stmt = delete(CacheMetadata).where(
            CacheMetadata.cache_key.startswith(prefix, autoescape=True)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def get_entries(self, prefix: Optional[str] = None) -> List[CacheMetadata]:
        """获取台账记录，可按前缀过滤"""
        stmt = self._select().order_by(CacheMetadata.cache_key)
        if prefix:
            stmt = stmt.where(CacheMetadata.cache_key.startswith(prefix, autoescape=True))

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_cache_stats(self) -> Dict[str, int]:
        """按命名空间统计台账记录数"""
        stats: Dict[str, int] = {}
        result = await self.session.execute(select(CacheMetadata.cache_key))
        for cache_key in result.scalars():
            namespace = cache_key.split(":", 1)[0]
            stats[namespace] = stats.get(namespace, 0) + 1
        return stats
