"""
番剧详情模型

包含：
- AnimeDetail: 番剧详情表（爬虫抓取的规范记录，以 slug 为自然键）
"""

from typing import List, Optional, TYPE_CHECKING
from sqlalchemy import String, Text, JSON, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IDMixin, TimestampMixin

if TYPE_CHECKING:
    from .episode import Episode


# 身份字段：一经写入，只有删除才能改变
ANIME_IDENTITY_FIELDS = ("slug", "url")

# 可变字段：每次刷新都会被覆盖
ANIME_MUTABLE_FIELDS = (
    "title",
    "alternate_titles",
    "poster",
    "rating",
    "trailer_url",
    "status",
    "studio",
    "release_date",
    "duration",
    "season",
    "type",
    "total_episodes",
    "director",
    "casts",
    "genres",
    "synopsis",
)


class AnimeDetail(Base, IDMixin, TimestampMixin):
    """
    番剧详情表

    对应表：anime_details
    """
    __tablename__ = "anime_details"

    # 身份字段
    slug: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="番剧slug（自然键）"
    )
    url: Mapped[Optional[str]] = mapped_column(
        String(1000),
        comment="番剧详情页URL"
    )

    # 基本信息
    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="番剧标题"
    )
    alternate_titles: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="别名"
    )
    poster: Mapped[Optional[str]] = mapped_column(
        String(1000),
        comment="海报URL"
    )
    rating: Mapped[Optional[str]] = mapped_column(
        String(20),
        comment="评分"
    )
    trailer_url: Mapped[Optional[str]] = mapped_column(
        String(1000),
        comment="预告片URL"
    )
    status: Mapped[Optional[str]] = mapped_column(
        String(50),
        comment="连载状态（Ongoing, Completed 等）"
    )
    studio: Mapped[Optional[str]] = mapped_column(
        String(200),
        comment="制作公司"
    )
    release_date: Mapped[Optional[str]] = mapped_column(
        String(100),
        comment="首播日期（原样保存站点文本）"
    )
    duration: Mapped[Optional[str]] = mapped_column(
        String(50),
        comment="单集时长"
    )
    season: Mapped[Optional[str]] = mapped_column(
        String(100),
        comment="季度"
    )
    type: Mapped[Optional[str]] = mapped_column(
        String(50),
        comment="类型（TV, OVA, Movie 等）"
    )
    total_episodes: Mapped[Optional[str]] = mapped_column(
        String(50),
        comment="总集数"
    )
    director: Mapped[Optional[str]] = mapped_column(
        String(200),
        comment="导演"
    )
    casts: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="声优列表"
    )
    genres: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        comment="类型标签列表"
    )
    synopsis: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="简介"
    )

    # 关系定义：分集随番剧级联删除（数据库 ON DELETE CASCADE）
    episodes: Mapped[List["Episode"]] = relationship(
        "Episode",
        back_populates="anime",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Episode.id",
    )

    # 约束和索引
    __table_args__ = (
        UniqueConstraint('slug', name='uq_anime_details_slug'),
        UniqueConstraint('url', name='uq_anime_details_url'),
        Index('idx_anime_details_status', 'status'),
        Index('idx_anime_details_type', 'type'),
    )

    def to_dict(self) -> dict:
        data = {field: getattr(self, field) for field in ANIME_IDENTITY_FIELDS + ANIME_MUTABLE_FIELDS}
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data

    def __repr__(self) -> str:
        return f"<AnimeDetail(slug='{self.slug}', title='{self.title}')>"
