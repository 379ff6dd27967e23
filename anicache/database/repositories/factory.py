"""
Repository工厂和依赖注入

提供Repository的创建和管理，支持依赖注入模式。
"""

from typing import Type, TypeVar, Dict
from sqlalchemy.ext.asyncio import AsyncSession
from contextlib import asynccontextmanager

from .base import BaseRepository
from .anime import AnimeDetailRepository
from .episode import EpisodeRepository, VideoSourceRepository
from .listing import CrawledAnimeRepository, CompletedAnimeRepository, AnimeUpdateRepository
from .user import (
    UserRepository, VerificationTokenRepository,
    UserHistoryRepository, UserFavoriteRepository, UserSubscriptionRepository
)
from .system import CacheMetadataRepository

# 类型定义
RepositoryType = TypeVar("RepositoryType", bound=BaseRepository)


class RepositoryFactory:
    """Repository工厂类"""

    def __init__(self, session: AsyncSession):
        """
        初始化工厂

        Args:
            session: SQLAlchemy异步会话
        """
        self.session = session
        self._repositories: Dict[Type, BaseRepository] = {}
        self._transaction_depth = 0

    def get_repository(self, repository_class: Type[RepositoryType]) -> RepositoryType:
        """
        获取Repository实例（同一会话内单例）

        Args:
            repository_class: Repository类

        Returns:
            Repository实例
        """
        if repository_class not in self._repositories:
            self._repositories[repository_class] = repository_class(self.session)

        return self._repositories[repository_class]

    # 番剧目录相关Repository
    @property
    def anime_detail(self) -> AnimeDetailRepository:
        """获取番剧详情Repository"""
        return self.get_repository(AnimeDetailRepository)

    @property
    def episode(self) -> EpisodeRepository:
        """获取分集Repository"""
        return self.get_repository(EpisodeRepository)

    @property
    def video_source(self) -> VideoSourceRepository:
        """获取视频源Repository"""
        return self.get_repository(VideoSourceRepository)

    # 爬取列表相关Repository
    @property
    def crawled_anime(self) -> CrawledAnimeRepository:
        """获取浏览页爬取结果Repository"""
        return self.get_repository(CrawledAnimeRepository)

    @property
    def completed_anime(self) -> CompletedAnimeRepository:
        """获取完结番剧列表Repository"""
        return self.get_repository(CompletedAnimeRepository)

    @property
    def anime_update(self) -> AnimeUpdateRepository:
        """获取最新更新列表Repository"""
        return self.get_repository(AnimeUpdateRepository)

    # 用户相关Repository
    @property
    def user(self) -> UserRepository:
        """获取用户Repository"""
        return self.get_repository(UserRepository)

    @property
    def verification_token(self) -> VerificationTokenRepository:
        """获取验证令牌Repository"""
        return self.get_repository(VerificationTokenRepository)

    @property
    def user_history(self) -> UserHistoryRepository:
        """获取观看历史Repository"""
        return self.get_repository(UserHistoryRepository)

    @property
    def user_favorite(self) -> UserFavoriteRepository:
        """获取收藏Repository"""
        return self.get_repository(UserFavoriteRepository)

    @property
    def user_subscription(self) -> UserSubscriptionRepository:
        """获取订阅Repository"""
        return self.get_repository(UserSubscriptionRepository)

    # 系统相关Repository
    @property
    def cache_metadata(self) -> CacheMetadataRepository:
        """获取缓存台账Repository"""
        return self.get_repository(CacheMetadataRepository)

    @asynccontextmanager
    async def transaction(self):
        """
        事务上下文管理器

        可以嵌套：只有最外层负责提交或回滚，内层直接加入外层事务。

        使用示例:
            async with factory.transaction():
                await factory.anime_detail.upsert_detail(...)
                await factory.cache_metadata.touch(...)
        """
        self._transaction_depth += 1
        try:
            yield self
            if self._transaction_depth == 1:
                await self.session.commit()
        except BaseException:
            if self._transaction_depth == 1:
                await self.session.rollback()
            raise
        finally:
            self._transaction_depth -= 1

    @property
    def in_transaction(self) -> bool:
        """是否处于 transaction() 块内"""
        return self._transaction_depth > 0

    async def close(self):
        """关闭会话"""
        await self.session.close()


class RepositoryManager:
    """
    Repository管理器

    用于管理数据库会话的生命周期和Repository的创建
    """

    def __init__(self, session_factory):
        """
        初始化管理器

        Args:
            session_factory: 会话工厂函数（async_sessionmaker）
        """
        self.session_factory = session_factory

    @asynccontextmanager
    async def get_repository_factory(self):
        """
        获取Repository工厂的异步上下文管理器

        使用示例:
            async with manager.get_repository_factory() as repos:
                anime = await repos.anime_detail.get_by_slug("one-piece")
        """
        async with self.session_factory() as session:
            factory = RepositoryFactory(session)
            try:
                yield factory
            finally:
                await factory.close()


# 依赖注入辅助函数
async def get_repository_factory(session: AsyncSession) -> RepositoryFactory:
    """
    获取Repository工厂实例

    供上层 HTTP 框架的依赖注入使用

    Args:
        session: SQLAlchemy异步会话

    Returns:
        Repository工厂实例
    """
    return RepositoryFactory(session)
