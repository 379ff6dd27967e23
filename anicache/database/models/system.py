"""
缓存新鲜度台账模型

包含：
- CacheMetadata: 每个缓存键一行，记录最近一次成功刷新的时间
"""

from datetime import datetime
from sqlalchemy import String, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, IDMixin, CreatedAtMixin


class CacheMetadata(Base, IDMixin, CreatedAtMixin):
    """
    缓存台账表

    对应表：cache_metadata

    cache_key 是不透明字符串，不是任何内容表的外键；
    行的生命周期与它所描述的实体无关，只能被显式删除。
    """
    __tablename__ = "cache_metadata"

    cache_key: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        comment="缓存键（如 anime:naruto）"
    )
    last_fetched: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="最近一次成功刷新时间"
    )

    __table_args__ = (
        UniqueConstraint('cache_key', name='uq_cache_metadata_cache_key'),
    )

    def __repr__(self) -> str:
        return f"<CacheMetadata(key='{self.cache_key}', last_fetched='{self.last_fetched}')>"
