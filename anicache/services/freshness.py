"""
缓存新鲜度协调器

对每个缓存键决定是直接使用已缓存的数据（命中），还是调用爬虫重新抓取（刷新）。

刷新流程：
1. 在事务之外调用爬虫（可设超时）
2. 在同一个事务中合并全部抓取结果，最后写入台账的 last_fetched
3. 提交

任何一步失败都会回滚，台账保持不变，下一次调用仍会判定为未命中。
同一缓存键的并发刷新允许重复抓取（合并是幂等的）；开启 single_flight 后，
同一进程内的并发调用会排队，后到者在拿到锁后重新检查台账。
"""

import asyncio
import enum
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Union

from .base import (
    ServiceError, ValidationError, CrawlFailure, CrawlTimeout,
    ServiceMetrics, service_operation
)
from .cache_keys import CacheKey, CacheNamespace
from .catalogue import CatalogueService, coerce_payload
from .crawler import Crawler, CrawlResult
from ..config import CacheConfig
from ..database.models.base import utcnow, ensure_utc
from ..database.repositories.factory import RepositoryManager

logger = logging.getLogger(__name__)

MaxAge = Union[timedelta, int, float]


class FreshnessStatus(enum.Enum):
    """ensure_fresh 的结果类型"""
    HIT = "hit"
    REFRESHED = "refreshed"


@dataclass(frozen=True)
class FreshnessResult:
    """ensure_fresh 的返回值"""
    cache_key: CacheKey
    status: FreshnessStatus
    last_fetched: datetime
    merged: Dict[str, int] = field(default_factory=dict)

    @property
    def hit(self) -> bool:
        return self.status is FreshnessStatus.HIT

    @property
    def refreshed(self) -> bool:
        return self.status is FreshnessStatus.REFRESHED


@dataclass(frozen=True)
class FreshnessPolicy:
    """
    按命名空间划分的默认 max_age

    供调用方选择 max_age 使用，协调器本身不读取它。
    """
    listing_max_age: timedelta = timedelta(hours=1)
    anime_max_age: timedelta = timedelta(hours=1)
    sources_max_age: timedelta = timedelta(hours=6)
    crawl_timeout: Optional[float] = None

    @classmethod
    def from_config(cls, config: CacheConfig) -> "FreshnessPolicy":
        return cls(
            listing_max_age=timedelta(seconds=config.listing_max_age_seconds),
            anime_max_age=timedelta(seconds=config.anime_max_age_seconds),
            sources_max_age=timedelta(seconds=config.sources_max_age_seconds),
            crawl_timeout=config.crawl_timeout_seconds,
        )

    def max_age_for(self, key: Union[CacheKey, CacheNamespace]) -> timedelta:
        namespace = key.namespace if isinstance(key, CacheKey) else key
        if namespace is CacheNamespace.LISTING:
            return self.listing_max_age
        if namespace is CacheNamespace.ANIME:
            return self.anime_max_age
        return self.sources_max_age


def _as_cache_key(cache_key: Union[CacheKey, str]) -> CacheKey:
    if isinstance(cache_key, CacheKey):
        return cache_key
    return CacheKey.parse(cache_key)


def _as_max_age(max_age: MaxAge) -> timedelta:
    if not isinstance(max_age, timedelta):
        max_age = timedelta(seconds=max_age)
    if max_age < timedelta(0):
        raise ValidationError("max_age 不能为负数", field="max_age")
    return max_age


class FreshnessCoordinator:
    """缓存新鲜度协调器"""

    def __init__(
        self,
        session_factory,
        crawler: Crawler,
        clock: Callable[[], datetime] = utcnow,
        single_flight: bool = False,
        default_timeout: Optional[float] = None
    ):
        """
        初始化协调器

        Args:
            session_factory: 会话工厂（async_sessionmaker），每次操作使用独立会话
            crawler: 爬虫实现
            clock: 返回当前UTC时间的函数
            single_flight: 是否在进程内合并同一缓存键的并发刷新
            default_timeout: 未指定 timeout 时使用的爬取超时（秒），None 表示不限
        """
        self.repository_manager = RepositoryManager(session_factory)
        self.crawler = crawler
        self.clock = clock
        self.single_flight = single_flight
        self.default_timeout = default_timeout
        self.metrics = ServiceMetrics()
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    @service_operation("ensure_fresh")
    async def ensure_fresh(
        self,
        cache_key: Union[CacheKey, str],
        max_age: MaxAge,
        timeout: Optional[float] = None
    ) -> FreshnessResult:
        """
        确保缓存键对应的数据足够新

        台账中存在该键且 now - last_fetched <= max_age 时直接返回命中，
        否则调用爬虫抓取并合并。

        Args:
            cache_key: 缓存键
            max_age: 允许的最大数据年龄（timedelta 或秒数）
            timeout: 爬取超时（秒）

        Returns:
            命中或刷新结果

        Raises:
            CrawlTimeout: 爬取超时
            CrawlFailure: 爬虫抛出异常或返回了无效结果
            DuplicateKeyConflict / ForeignKeyViolation: 抓取结果无法合并
        """
        key = _as_cache_key(cache_key)
        max_age = _as_max_age(max_age)
        if timeout is None:
            timeout = self.default_timeout

        if not self.single_flight:
            return await self._ensure_fresh(key, max_age, timeout)

        lock = self._locks.get(str(key))
        if lock is None:
            lock = asyncio.Lock()
            self._locks[str(key)] = lock

        async with lock:
            # 等锁期间其他调用可能已经刷新过
            return await self._ensure_fresh(key, max_age, timeout)

    async def _ensure_fresh(self, key: CacheKey, max_age: timedelta, timeout: Optional[float]) -> FreshnessResult:
        last_fetched = await self.get_last_fetched(key)
        now = self._now()

        if last_fetched is not None and now - last_fetched <= max_age:
            self.logger.debug(f"缓存命中: {key} (age={now - last_fetched})")
            return FreshnessResult(key, FreshnessStatus.HIT, last_fetched)

        if last_fetched is None:
            self.logger.info(f"缓存未命中: {key} 尚未抓取过")
        else:
            self.logger.info(f"缓存过期: {key} (age={now - last_fetched}, max_age={max_age})")

        result = await self._crawl(key, timeout)
        merged, fetched_at = await self._merge(key, result)

        self.logger.info(f"缓存已刷新: {key} ({merged})")
        return FreshnessResult(key, FreshnessStatus.REFRESHED, fetched_at, merged)

    async def _crawl(self, key: CacheKey, timeout: Optional[float]) -> CrawlResult:
        try:
            if timeout is None:
                raw = await self.crawler.crawl(key)
            else:
                raw = await asyncio.wait_for(self.crawler.crawl(key), timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"爬取超时: {key} ({timeout}s)")
            raise CrawlTimeout(str(key), timeout) from None
        except CrawlFailure:
            raise
        except Exception as e:
            self.logger.warning(f"爬取失败: {key}: {e}")
            raise CrawlFailure(
                str(key),
                f"crawl of {key} failed: {e}",
                details={"error_type": type(e).__name__}
            ) from e

        try:
            return coerce_payload(CrawlResult, raw)
        except ServiceError as e:
            raise CrawlFailure(
                str(key),
                f"crawler returned an invalid result for {key}: {e.message}",
                details=e.details
            ) from e

    async def _merge(self, key: CacheKey, result: CrawlResult):
        """在一个事务中合并抓取结果，最后写台账"""
        async with self.repository_manager.get_repository_factory() as repos:
            catalogue = CatalogueService(repos)
            async with repos.transaction():
                merged = await catalogue.merge_crawl_result(result)
                fetched_at = self._now()
                await repos.cache_metadata.touch(str(key), fetched_at)

        return merged, fetched_at

    # ------------------------------------------------------------------
    # 台账操作
    # ------------------------------------------------------------------

    async def get_last_fetched(self, cache_key: Union[CacheKey, str]) -> Optional[datetime]:
        """获取缓存键最近一次成功刷新的时间，从未刷新过时返回None"""
        key = _as_cache_key(cache_key)
        async with self.repository_manager.get_repository_factory() as repos:
            return await repos.cache_metadata.get_last_fetched(str(key))

    async def is_fresh(self, cache_key: Union[CacheKey, str], max_age: MaxAge) -> bool:
        """只检查是否新鲜，不触发抓取"""
        max_age = _as_max_age(max_age)
        last_fetched = await self.get_last_fetched(cache_key)
        return last_fetched is not None and self._now() - last_fetched <= max_age

    async def invalidate(self, cache_key: Union[CacheKey, str]) -> bool:
        """
        删除缓存键的台账记录，下一次 ensure_fresh 必定刷新

        Returns:
            是否删除了记录
        """
        key = _as_cache_key(cache_key)
        async with self.repository_manager.get_repository_factory() as repos:
            async with repos.transaction():
                deleted = await repos.cache_metadata.delete_by_key(str(key))

        if deleted:
            self.logger.info(f"缓存键已失效: {key}")
        return deleted

    async def invalidate_namespace(self, namespace: CacheNamespace) -> int:
        """删除某个命名空间下的全部台账记录"""
        async with self.repository_manager.get_repository_factory() as repos:
            async with repos.transaction():
                deleted = await repos.cache_metadata.delete_by_prefix(f"{namespace.value}:")

        self.logger.info(f"命名空间 {namespace.value} 下 {deleted} 个缓存键已失效")
        return deleted

    async def clear_ledger(self) -> int:
        """清空台账"""
        async with self.repository_manager.get_repository_factory() as repos:
            async with repos.transaction():
                deleted = await repos.cache_metadata.delete_all()

        self.logger.info(f"台账已清空，删除 {deleted} 条记录")
        return deleted

    async def get_ledger_stats(self) -> Dict[str, int]:
        """按命名空间统计台账记录数"""
        async with self.repository_manager.get_repository_factory() as repos:
            return await repos.cache_metadata.get_cache_stats()
