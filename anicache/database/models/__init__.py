"""
SQLAlchemy ORM 模型定义

导入所有数据库模型，确保SQLAlchemy能够发现所有表和关系
"""

# 导入基类
from .base import Base, IDMixin, TimestampMixin, CreatedAtMixin, utcnow, ensure_utc

# 导入番剧目录模型
from .anime import AnimeDetail
from .episode import Episode, VideoSource, slug_from_url
from .listing import CrawledAnime, CompletedAnime, AnimeUpdate

# 导入用户和关系模型
from .user import (
    TokenType,
    User,
    VerificationToken,
    UserHistory,
    UserFavorite,
    UserSubscription
)

# 导入缓存台账模型
from .system import CacheMetadata

# 导出所有模型供外部使用
__all__ = [
    # 基类
    "Base",
    "IDMixin",
    "TimestampMixin",
    "CreatedAtMixin",
    "utcnow",
    "ensure_utc",

    # 番剧目录模型
    "AnimeDetail",
    "Episode",
    "VideoSource",
    "slug_from_url",
    "CrawledAnime",
    "CompletedAnime",
    "AnimeUpdate",

    # 用户和关系模型
    "TokenType",
    "User",
    "VerificationToken",
    "UserHistory",
    "UserFavorite",
    "UserSubscription",

    # 缓存台账模型
    "CacheMetadata",
]
