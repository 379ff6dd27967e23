"""
用户及用户关系模型

包含：
- User: 用户表
- VerificationToken: 邮箱验证/密码重置令牌表
- UserHistory: 观看历史表
- UserFavorite: 收藏表
- UserSubscription: 订阅表

关系表中的标题、缩略图是写入时的快照，不随番剧详情同步；
这些行也不校验 anime_slug / episode_slug 是否仍存在于番剧目录中。
"""

import enum
from datetime import datetime
from typing import List, Optional
from sqlalchemy import (
    String, Boolean, BigInteger, Integer, DateTime, Enum,
    Index, ForeignKey, UniqueConstraint, func, false
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, IDMixin, TimestampMixin, CreatedAtMixin


class TokenType(enum.Enum):
    """令牌类型枚举"""
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


def _user_fk() -> Mapped[int]:
    return mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="关联的用户ID"
    )


class User(Base, IDMixin, TimestampMixin):
    """
    用户表

    对应表：users
    """
    __tablename__ = "users"

    # 用户信息
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="邮箱"
    )
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="密码哈希（由认证子系统生成）"
    )
    google_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="Google账号ID"
    )
    name: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="显示名称"
    )
    avatar: Mapped[Optional[str]] = mapped_column(
        String(1000),
        comment="头像URL"
    )
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
        comment="邮箱是否已验证"
    )

    # 关系定义：全部由数据库 ON DELETE CASCADE 级联删除
    tokens: Mapped[List["VerificationToken"]] = relationship(
        "VerificationToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    history: Mapped[List["UserHistory"]] = relationship(
        "UserHistory",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    favorites: Mapped[List["UserFavorite"]] = relationship(
        "UserFavorite",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    subscriptions: Mapped[List["UserSubscription"]] = relationship(
        "UserSubscription",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    # 约束和索引
    __table_args__ = (
        UniqueConstraint('email', name='uq_users_email'),
        UniqueConstraint('google_id', name='uq_users_google_id'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "avatar": self.avatar,
            "email_verified": self.email_verified,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class VerificationToken(Base, IDMixin, CreatedAtMixin):
    """
    验证令牌表

    对应表：verification_tokens

    used_at 只会被设置一次；expires_at 由使用方检查，数据库不强制
    """
    __tablename__ = "verification_tokens"

    user_id: Mapped[int] = _user_fk()
    token: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="令牌字符串"
    )
    token_type: Mapped[TokenType] = mapped_column(
        Enum(
            TokenType,
            name="token_type",
            native_enum=False,
            length=50,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        comment="令牌类型"
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="过期时间"
    )
    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        comment="使用时间（单次使用标记）"
    )

    user: Mapped["User"] = relationship("User", back_populates="tokens")

    __table_args__ = (
        UniqueConstraint('token', name='uq_verification_tokens_token'),
        Index('idx_verification_tokens_user_id', 'user_id'),
        Index('idx_verification_tokens_type', 'token_type'),
    )

    def __repr__(self) -> str:
        return f"<VerificationToken(user_id={self.user_id}, type='{self.token_type.value}', used={self.used_at is not None})>"


class UserHistory(Base, IDMixin):
    """
    观看历史表

    对应表：user_history
    """
    __tablename__ = "user_history"

    user_id: Mapped[int] = _user_fk()
    episode_slug: Mapped[str] = mapped_column(String(500), nullable=False, comment="分集slug")
    anime_slug: Mapped[str] = mapped_column(String(500), nullable=False, comment="番剧slug")

    # 快照字段
    episode_title: Mapped[Optional[str]] = mapped_column(String(500), comment="分集标题快照")
    anime_title: Mapped[Optional[str]] = mapped_column(String(500), comment="番剧标题快照")
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1000), comment="缩略图快照")

    watched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="最近观看时间"
    )

    user: Mapped["User"] = relationship("User", back_populates="history")

    __table_args__ = (
        UniqueConstraint('user_id', 'episode_slug', name='uq_user_history_user_episode'),
        Index('idx_user_history_episode', 'episode_slug'),
        Index('idx_user_history_user_watched', 'user_id', 'watched_at'),
    )

    def to_dict(self) -> dict:
        return {
            "episode_slug": self.episode_slug,
            "anime_slug": self.anime_slug,
            "episode_title": self.episode_title,
            "anime_title": self.anime_title,
            "thumbnail": self.thumbnail,
            "watched_at": self.watched_at.isoformat() if self.watched_at else None,
        }

    def __repr__(self) -> str:
        return f"<UserHistory(user_id={self.user_id}, episode_slug='{self.episode_slug}')>"


class UserFavorite(Base, IDMixin, CreatedAtMixin):
    """
    收藏表

    对应表：user_favorites
    """
    __tablename__ = "user_favorites"

    user_id: Mapped[int] = _user_fk()
    anime_slug: Mapped[str] = mapped_column(String(500), nullable=False, comment="番剧slug")
    anime_title: Mapped[str] = mapped_column(String(500), nullable=False, comment="番剧标题快照")
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1000), comment="缩略图快照")

    user: Mapped["User"] = relationship("User", back_populates="favorites")

    __table_args__ = (
        UniqueConstraint('user_id', 'anime_slug', name='uq_user_favorites_user_anime'),
        Index('idx_user_favorites_slug', 'anime_slug'),
    )

    def to_dict(self) -> dict:
        return {
            "anime_slug": self.anime_slug,
            "anime_title": self.anime_title,
            "thumbnail": self.thumbnail,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<UserFavorite(user_id={self.user_id}, anime_slug='{self.anime_slug}')>"


class UserSubscription(Base, IDMixin, CreatedAtMixin):
    """
    订阅表

    对应表：user_subscriptions
    """
    __tablename__ = "user_subscriptions"

    user_id: Mapped[int] = _user_fk()
    anime_slug: Mapped[str] = mapped_column(String(500), nullable=False, comment="番剧slug")
    anime_title: Mapped[str] = mapped_column(String(500), nullable=False, comment="番剧标题快照")
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1000), comment="缩略图快照")

    user: Mapped["User"] = relationship("User", back_populates="subscriptions")

    __table_args__ = (
        UniqueConstraint('user_id', 'anime_slug', name='uq_user_subscriptions_user_anime'),
        Index('idx_user_subscriptions_slug', 'anime_slug'),
    )

    def to_dict(self) -> dict:
        return {
            "anime_slug": self.anime_slug,
            "anime_title": self.anime_title,
            "thumbnail": self.thumbnail,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<UserSubscription(user_id={self.user_id}, anime_slug='{self.anime_slug}')>"
