"""
缓存键

缓存键由命名空间和标识符组成，序列化为 "<前缀>:<标识符>" 后作为台账的主键：

    listing:updates
    anime:one-piece
    sources:https://example.com/one-piece-episode-1/
"""

import enum
from dataclasses import dataclass

from .base import ValidationError


class CacheNamespace(enum.Enum):
    """缓存键命名空间，值是序列化时使用的前缀"""
    LISTING = "listing"
    ANIME = "anime"
    EPISODE_SOURCES = "sources"


# 常用的列表页名称
LISTING_UPDATES = "updates"
LISTING_COMPLETED = "completed"
LISTING_BROWSE = "browse"


@dataclass(frozen=True)
class CacheKey:
    """
    缓存键

    同一个字符串只对应一个缓存键，parse(str(key)) == key
    """
    namespace: CacheNamespace
    identifier: str

    def __post_init__(self):
        if not isinstance(self.namespace, CacheNamespace):
            raise ValidationError(f"无效的缓存键命名空间: {self.namespace!r}", field="namespace")
        if not self.identifier or not self.identifier.strip():
            raise ValidationError("缓存键标识符不能为空", field="identifier")

    @classmethod
    def listing(cls, name: str) -> "CacheKey":
        return cls(CacheNamespace.LISTING, name)

    @classmethod
    def anime(cls, slug: str) -> "CacheKey":
        return cls(CacheNamespace.ANIME, slug)

    @classmethod
    def episode_sources(cls, episode_url: str) -> "CacheKey":
        return cls(CacheNamespace.EPISODE_SOURCES, episode_url)

    @classmethod
    def parse(cls, value: str) -> "CacheKey":
        """
        解析序列化后的缓存键

        只按第一个冒号切分，标识符本身可以包含冒号（例如URL）

        Raises:
            ValidationError: 格式错误或前缀未知
        """
        prefix, sep, identifier = value.partition(":")
        if not sep:
            raise ValidationError(f"缓存键缺少命名空间前缀: {value!r}", field="cache_key")

        try:
            namespace = CacheNamespace(prefix)
        except ValueError:
            raise ValidationError(f"未知的缓存键命名空间: {prefix!r}", field="cache_key") from None

        return cls(namespace, identifier)

    @property
    def prefix(self) -> str:
        return f"{self.namespace.value}:"

    def __str__(self) -> str:
        return f"{self.namespace.value}:{self.identifier}"
