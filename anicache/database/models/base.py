"""
SQLAlchemy 基础模型定义

所有ORM模型的基类和混入类
"""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """带时区的当前UTC时间"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    统一为带时区的UTC时间

    SQLite 不保存时区信息，读回来的是按UTC写入的naive时间
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """
    所有ORM模型的基类

    继承自 AsyncAttrs 以支持异步属性访问
    """
    pass


class IDMixin:
    """ID混入类 - 为模型提供自增主键（仅在表内部使用，不跨组件暴露）"""

    id: Mapped[int] = mapped_column(
        # SQLite 只有 INTEGER PRIMARY KEY 才会自增
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
        comment="主键ID"
    )


class CreatedAtMixin:
    """创建时间混入类"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="创建时间"
    )


class TimestampMixin(CreatedAtMixin):
    """时间戳混入类 - 为模型提供创建和更新时间"""

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="更新时间"
    )
