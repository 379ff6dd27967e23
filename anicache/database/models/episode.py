"""
分集和视频源模型

包含：
- Episode: 分集表
- VideoSource: 视频源表
"""

from typing import Optional, TYPE_CHECKING
from sqlalchemy import String, Index, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IDMixin, TimestampMixin

if TYPE_CHECKING:
    from .anime import AnimeDetail


EPISODE_MUTABLE_FIELDS = ("number", "title", "release_date")


class Episode(Base, IDMixin, TimestampMixin):
    """
    分集表

    对应表：episodes
    """
    __tablename__ = "episodes"

    # 关联字段：按 slug 引用番剧，番剧删除时级联删除
    anime_slug: Mapped[str] = mapped_column(
        String(500),
        ForeignKey("anime_details.slug", ondelete="CASCADE", name="fk_episodes_anime_slug"),
        nullable=False,
        comment="所属番剧slug"
    )

    # 分集信息
    url: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
        comment="分集页面URL（自然键）"
    )
    number: Mapped[Optional[str]] = mapped_column(
        String(20),
        comment="集数（原样保存，可能是 '12' 或 '12.5'）"
    )
    title: Mapped[Optional[str]] = mapped_column(
        String(500),
        comment="分集标题"
    )
    release_date: Mapped[Optional[str]] = mapped_column(
        String(100),
        comment="发布日期"
    )

    # 关系定义
    anime: Mapped["AnimeDetail"] = relationship(
        "AnimeDetail",
        back_populates="episodes"
    )

    # 约束和索引
    __table_args__ = (
        UniqueConstraint('url', name='uq_episodes_url'),
        Index('idx_episodes_anime_slug', 'anime_slug'),
    )

    @property
    def slug(self) -> str:
        """分集slug，取自URL最后一段"""
        return slug_from_url(self.url)

    def to_dict(self) -> dict:
        return {
            "anime_slug": self.anime_slug,
            "slug": self.slug,
            "url": self.url,
            "number": self.number,
            "title": self.title,
            "release_date": self.release_date,
        }

    def __repr__(self) -> str:
        return f"<Episode(url='{self.url}', anime_slug='{self.anime_slug}', number='{self.number}')>"


class VideoSource(Base, IDMixin, TimestampMixin):
    """
    视频源表

    对应表：video_sources

    episode_url 只是按值关联的查找键，没有外键：分集删除后视频源不会自动清理，
    由 CatalogueService.collect_orphan_video_sources 显式回收。
    """
    __tablename__ = "video_sources"

    episode_url: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
        comment="所属分集URL（按值引用，无外键）"
    )
    server: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="",
        server_default="",
        comment="播放服务器"
    )
    quality: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="",
        server_default="",
        comment="清晰度"
    )
    url: Mapped[Optional[str]] = mapped_column(
        String(2000),
        comment="视频地址"
    )

    # 约束和索引
    __table_args__ = (
        # 唯一约束：同一分集的 服务器×清晰度 组合唯一，保证重复合并是幂等的
        UniqueConstraint('episode_url', 'server', 'quality', name='uq_video_sources_episode_server_quality'),
        Index('idx_video_sources_episode_url', 'episode_url'),
    )

    def to_dict(self) -> dict:
        return {
            "episode_url": self.episode_url,
            "server": self.server,
            "quality": self.quality,
            "url": self.url,
        }

    def __repr__(self) -> str:
        return f"<VideoSource(episode_url='{self.episode_url}', server='{self.server}', quality='{self.quality}')>"


def slug_from_url(url: Optional[str]) -> str:
    """
    从URL中提取slug

    "https://example.com/anime/one-piece/" -> "one-piece"
    """
    if not url:
        return ""
    return url.rstrip("/").rsplit("/", 1)[-1]
