"""
测试公共夹具

每个测试使用独立的内存 SQLite 数据库（aiosqlite，开启外键约束）。
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest

from anicache.database.engine import DatabaseEngine
from anicache.database.repositories.factory import RepositoryManager
from anicache.services.cache_keys import CacheKey
from anicache.services.crawler import Crawler, CrawlResult
from anicache.services.factory import ServiceFactory, ServiceManager


class FixedClock:
    """可手动拨动的时钟"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeCrawler(Crawler):
    """
    记录调用次数的假爬虫

    responder 接收缓存键，返回 CrawlResult / 字典，或抛出异常
    """

    def __init__(self, responder: Callable[[CacheKey], object], delay: float = 0.0):
        self.responder = responder
        self.delay = delay
        self.calls: List[str] = []

    async def crawl(self, cache_key: CacheKey) -> CrawlResult:
        self.calls.append(str(cache_key))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.responder(cache_key)


def anime_result(slug: str, title: str, episodes: int = 0, **fields) -> CrawlResult:
    """构造一部番剧的抓取结果"""
    return CrawlResult.model_validate({
        "anime": [{
            "slug": slug,
            "title": title,
            "url": f"https://example.com/anime/{slug}/",
            **fields,
            "episodes": [
                {"url": f"https://example.com/{slug}-episode-{n}/", "number": str(n)}
                for n in range(1, episodes + 1)
            ],
        }]
    })


@pytest.fixture
async def db_engine():
    engine = DatabaseEngine("sqlite+aiosqlite:///:memory:")
    await engine.create_all()
    yield engine
    await engine.close()


@pytest.fixture
def session_factory(db_engine):
    return db_engine.session_factory


@pytest.fixture
async def services(session_factory):
    """一个会话上的服务工厂"""
    async with RepositoryManager(session_factory).get_repository_factory() as repos:
        yield ServiceFactory(repos)


@pytest.fixture
def manager(session_factory) -> ServiceManager:
    return ServiceManager(session_factory)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
async def user(services):
    return await services.verification.create_user("alice@example.com", name="Alice")


@pytest.fixture
async def other_user(services):
    return await services.verification.create_user("bob@example.com", name="Bob")
