"""
业务服务层

提供番剧目录、缓存新鲜度、用户关系和身份验证的业务逻辑。
服务层位于Repository层之上，为上层 API 提供高级业务操作接口。
"""

from .base import (
    BaseService, ServiceMetrics, ServiceError, ValidationError, ResourceNotFoundError,
    DuplicateKeyConflict, ForeignKeyViolation, CrawlFailure, CrawlTimeout,
    TokenError, TokenExpired, TokenAlreadyUsed
)
from .cache_keys import CacheKey, CacheNamespace
from .crawler import (
    Crawler, CrawlResult, AnimeDetailPayload, EpisodePayload, VideoSourcePayload,
    EpisodeSourcesPayload, CrawledAnimePayload, CompletedAnimePayload, AnimeUpdatePayload
)
from .catalogue import CatalogueService
from .freshness import FreshnessCoordinator, FreshnessPolicy, FreshnessResult, FreshnessStatus
from .relations import UserRelationService, HistoryEntry, AnimeSnapshot
from .verification import VerificationService
from .factory import ServiceFactory, ServiceManager

__all__ = [
    # 基础类和异常
    "BaseService",
    "ServiceMetrics",
    "ServiceError",
    "ValidationError",
    "ResourceNotFoundError",
    "DuplicateKeyConflict",
    "ForeignKeyViolation",
    "CrawlFailure",
    "CrawlTimeout",
    "TokenError",
    "TokenExpired",
    "TokenAlreadyUsed",

    # 缓存键和爬虫接口
    "CacheKey",
    "CacheNamespace",
    "Crawler",
    "CrawlResult",
    "AnimeDetailPayload",
    "EpisodePayload",
    "VideoSourcePayload",
    "EpisodeSourcesPayload",
    "CrawledAnimePayload",
    "CompletedAnimePayload",
    "AnimeUpdatePayload",

    # 业务服务
    "CatalogueService",
    "FreshnessCoordinator",
    "FreshnessPolicy",
    "FreshnessResult",
    "FreshnessStatus",
    "UserRelationService",
    "HistoryEntry",
    "AnimeSnapshot",
    "VerificationService",

    # 工厂
    "ServiceFactory",
    "ServiceManager",
]
