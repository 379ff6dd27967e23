"""
爬取列表暂存模型

记录“爬虫最近一次在列表页上看到的内容”，与 AnimeDetail 的生命周期无关。

包含：
- CrawledAnime: 全站浏览页爬取结果
- CompletedAnime: 完结番剧列表
- AnimeUpdate: 最新更新列表
"""

from typing import List, Optional
from sqlalchemy import String, JSON, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IDMixin, TimestampMixin
from .episode import slug_from_url


class CrawledAnime(Base, IDMixin, TimestampMixin):
    """
    浏览页爬取结果表

    对应表：crawled_anime
    """
    __tablename__ = "crawled_anime"

    slug: Mapped[str] = mapped_column(String(500), nullable=False, comment="番剧slug")
    title: Mapped[str] = mapped_column(String(500), nullable=False, comment="番剧标题")
    url: Mapped[str] = mapped_column(String(1000), nullable=False, comment="番剧页面URL")
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1000), comment="缩略图")
    status: Mapped[Optional[str]] = mapped_column(String(50), comment="连载状态")
    type: Mapped[Optional[str]] = mapped_column(String(50), comment="类型")
    episode_status: Mapped[Optional[str]] = mapped_column(String(50), comment="集数或状态文本")

    __table_args__ = (
        UniqueConstraint('slug', name='uq_crawled_anime_slug'),
        UniqueConstraint('url', name='uq_crawled_anime_url'),
        Index('idx_crawled_anime_status', 'status'),
        Index('idx_crawled_anime_type', 'type'),
    )

    def __repr__(self) -> str:
        return f"<CrawledAnime(slug='{self.slug}', title='{self.title}')>"


class CompletedAnime(Base, IDMixin, TimestampMixin):
    """
    完结番剧列表表

    对应表：completed_anime
    """
    __tablename__ = "completed_anime"

    title: Mapped[str] = mapped_column(String(500), nullable=False, comment="标题")
    url: Mapped[str] = mapped_column(String(1000), nullable=False, comment="页面URL")
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1000), comment="缩略图")
    type: Mapped[Optional[str]] = mapped_column(String(50), comment="类型")
    episode_count: Mapped[Optional[str]] = mapped_column(String(50), comment="集数")
    status: Mapped[Optional[str]] = mapped_column(String(50), comment="状态")
    posted_by: Mapped[Optional[str]] = mapped_column(String(100), comment="发布者")
    posted_at: Mapped[Optional[str]] = mapped_column(String(100), comment="发布时间（站点文本）")
    series_title: Mapped[Optional[str]] = mapped_column(String(500), comment="系列标题")
    series_url: Mapped[Optional[str]] = mapped_column(String(1000), comment="系列URL")
    genres: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list, comment="类型标签")
    rating: Mapped[Optional[str]] = mapped_column(String(20), comment="评分")

    __table_args__ = (
        UniqueConstraint('url', name='uq_completed_anime_url'),
    )

    @property
    def slug(self) -> str:
        return slug_from_url(self.url)

    def __repr__(self) -> str:
        return f"<CompletedAnime(url='{self.url}', title='{self.title}')>"


class AnimeUpdate(Base, IDMixin, TimestampMixin):
    """
    最新更新列表表

    对应表：anime_updates
    """
    __tablename__ = "anime_updates"

    title: Mapped[str] = mapped_column(String(500), nullable=False, comment="标题")
    episode_url: Mapped[str] = mapped_column(String(1000), nullable=False, comment="分集URL")
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1000), comment="缩略图")
    episode_number: Mapped[Optional[str]] = mapped_column(String(50), comment="集数")
    type: Mapped[Optional[str]] = mapped_column(String(50), comment="类型")
    series_title: Mapped[Optional[str]] = mapped_column(String(500), comment="系列标题")
    series_url: Mapped[Optional[str]] = mapped_column(String(1000), comment="系列URL")
    status: Mapped[Optional[str]] = mapped_column(String(50), comment="状态")
    release_info: Mapped[Optional[str]] = mapped_column(String(200), comment="发布信息")

    __table_args__ = (
        UniqueConstraint('episode_url', name='uq_anime_updates_episode_url'),
    )

    @property
    def slug(self) -> str:
        """所属番剧的slug"""
        return slug_from_url(self.series_url)

    def __repr__(self) -> str:
        return f"<AnimeUpdate(episode_url='{self.episode_url}', title='{self.title}')>"
