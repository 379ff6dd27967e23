"""
Repository 模式实现

Repository模式将数据访问逻辑封装在独立的类中，提供统一的数据访问接口。
Repository 只执行语句，不提交事务；事务由 RepositoryFactory.transaction() 或调用方控制。
"""

from .base import BaseRepository
from .anime import AnimeDetailRepository
from .episode import EpisodeRepository, VideoSourceRepository
from .listing import CrawledAnimeRepository, CompletedAnimeRepository, AnimeUpdateRepository
from .user import (
    UserRepository, VerificationTokenRepository,
    UserHistoryRepository, UserFavoriteRepository, UserSubscriptionRepository
)
from .system import CacheMetadataRepository
from .factory import RepositoryFactory, RepositoryManager

__all__ = [
    "BaseRepository",
    "AnimeDetailRepository",
    "EpisodeRepository",
    "VideoSourceRepository",
    "CrawledAnimeRepository",
    "CompletedAnimeRepository",
    "AnimeUpdateRepository",
    "UserRepository",
    "VerificationTokenRepository",
    "UserHistoryRepository",
    "UserFavoriteRepository",
    "UserSubscriptionRepository",
    "CacheMetadataRepository",
    "RepositoryFactory",
    "RepositoryManager",
]
