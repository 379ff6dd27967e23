"""Create catalogue, ledger and user schema

Revision ID: 3f9a1c2b7d40
Revises:
Create Date: 2026-10-16 09:00:12.418377+00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f9a1c2b7d40'
down_revision = None
branch_labels = None
depends_on = None


def _id_column() -> sa.Column:
    return sa.Column(
        'id',
        sa.BigInteger().with_variant(sa.Integer(), 'sqlite'),
        primary_key=True,
        autoincrement=True,
        nullable=False
    )


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _user_id() -> sa.Column:
    return sa.Column(
        'user_id',
        sa.BigInteger().with_variant(sa.Integer(), 'sqlite'),
        sa.ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False
    )


def upgrade() -> None:
    # 番剧详情表
    op.create_table('anime_details',
        _id_column(),
        sa.Column('slug', sa.String(length=500), nullable=False),
        sa.Column('url', sa.String(length=1000), nullable=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('alternate_titles', sa.Text(), nullable=True),
        sa.Column('poster', sa.String(length=1000), nullable=True),
        sa.Column('rating', sa.String(length=20), nullable=True),
        sa.Column('trailer_url', sa.String(length=1000), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=True),
        sa.Column('studio', sa.String(length=200), nullable=True),
        sa.Column('release_date', sa.String(length=100), nullable=True),
        sa.Column('duration', sa.String(length=50), nullable=True),
        sa.Column('season', sa.String(length=100), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=True),
        sa.Column('total_episodes', sa.String(length=50), nullable=True),
        sa.Column('director', sa.String(length=200), nullable=True),
        sa.Column('casts', sa.JSON(), nullable=False),
        sa.Column('genres', sa.JSON(), nullable=False),
        sa.Column('synopsis', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('slug', name='uq_anime_details_slug'),
        sa.UniqueConstraint('url', name='uq_anime_details_url')
    )
    op.create_index('idx_anime_details_status', 'anime_details', ['status'])
    op.create_index('idx_anime_details_type', 'anime_details', ['type'])

    # 分集表：随番剧级联删除
    op.create_table('episodes',
        _id_column(),
        sa.Column(
            'anime_slug', sa.String(length=500),
            sa.ForeignKey('anime_details.slug', ondelete='CASCADE', name='fk_episodes_anime_slug'),
            nullable=False
        ),
        sa.Column('url', sa.String(length=1000), nullable=False),
        sa.Column('number', sa.String(length=20), nullable=True),
        sa.Column('title', sa.String(length=500), nullable=True),
        sa.Column('release_date', sa.String(length=100), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('url', name='uq_episodes_url')
    )
    op.create_index('idx_episodes_anime_slug', 'episodes', ['anime_slug'])

    # 视频源表：episode_url 没有外键
    op.create_table('video_sources',
        _id_column(),
        sa.Column('episode_url', sa.String(length=1000), nullable=False),
        sa.Column('server', sa.String(length=100), server_default='', nullable=False),
        sa.Column('quality', sa.String(length=20), server_default='', nullable=False),
        sa.Column('url', sa.String(length=2000), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('episode_url', 'server', 'quality', name='uq_video_sources_episode_server_quality')
    )
    op.create_index('idx_video_sources_episode_url', 'video_sources', ['episode_url'])

    # 列表暂存表
    op.create_table('crawled_anime',
        _id_column(),
        sa.Column('slug', sa.String(length=500), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('url', sa.String(length=1000), nullable=False),
        sa.Column('thumbnail', sa.String(length=1000), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=True),
        sa.Column('episode_status', sa.String(length=50), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('slug', name='uq_crawled_anime_slug'),
        sa.UniqueConstraint('url', name='uq_crawled_anime_url')
    )
    op.create_index('idx_crawled_anime_status', 'crawled_anime', ['status'])
    op.create_index('idx_crawled_anime_type', 'crawled_anime', ['type'])

    op.create_table('completed_anime',
        _id_column(),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('url', sa.String(length=1000), nullable=False),
        sa.Column('thumbnail', sa.String(length=1000), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=True),
        sa.Column('episode_count', sa.String(length=50), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=True),
        sa.Column('posted_by', sa.String(length=100), nullable=True),
        sa.Column('posted_at', sa.String(length=100), nullable=True),
        sa.Column('series_title', sa.String(length=500), nullable=True),
        sa.Column('series_url', sa.String(length=1000), nullable=True),
        sa.Column('genres', sa.JSON(), nullable=False),
        sa.Column('rating', sa.String(length=20), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('url', name='uq_completed_anime_url')
    )

    op.create_table('anime_updates',
        _id_column(),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('episode_url', sa.String(length=1000), nullable=False),
        sa.Column('thumbnail', sa.String(length=1000), nullable=True),
        sa.Column('episode_number', sa.String(length=50), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=True),
        sa.Column('series_title', sa.String(length=500), nullable=True),
        sa.Column('series_url', sa.String(length=1000), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=True),
        sa.Column('release_info', sa.String(length=200), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('episode_url', name='uq_anime_updates_episode_url')
    )

    # 缓存台账表
    op.create_table('cache_metadata',
        _id_column(),
        sa.Column('cache_key', sa.String(length=500), nullable=False),
        sa.Column('last_fetched', sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.UniqueConstraint('cache_key', name='uq_cache_metadata_cache_key')
    )

    # 用户表
    op.create_table('users',
        _id_column(),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('google_id', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('avatar', sa.String(length=1000), nullable=True),
        sa.Column('email_verified', sa.Boolean(), server_default=sa.false(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sa.UniqueConstraint('google_id', name='uq_users_google_id')
    )

    op.create_table('verification_tokens',
        _id_column(),
        _user_id(),
        sa.Column('token', sa.String(length=255), nullable=False),
        sa.Column(
            'token_type',
            sa.Enum('email_verification', 'password_reset', name='token_type', native_enum=False, length=50),
            nullable=False
        ),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint('token', name='uq_verification_tokens_token')
    )
    op.create_index('idx_verification_tokens_user_id', 'verification_tokens', ['user_id'])
    op.create_index('idx_verification_tokens_type', 'verification_tokens', ['token_type'])

    # 用户关系表：随用户级联删除
    op.create_table('user_history',
        _id_column(),
        _user_id(),
        sa.Column('episode_slug', sa.String(length=500), nullable=False),
        sa.Column('anime_slug', sa.String(length=500), nullable=False),
        sa.Column('episode_title', sa.String(length=500), nullable=True),
        sa.Column('anime_title', sa.String(length=500), nullable=True),
        sa.Column('thumbnail', sa.String(length=1000), nullable=True),
        sa.Column('watched_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'episode_slug', name='uq_user_history_user_episode')
    )
    op.create_index('idx_user_history_episode', 'user_history', ['episode_slug'])
    op.create_index('idx_user_history_user_watched', 'user_history', ['user_id', 'watched_at'])

    op.create_table('user_favorites',
        _id_column(),
        _user_id(),
        sa.Column('anime_slug', sa.String(length=500), nullable=False),
        sa.Column('anime_title', sa.String(length=500), nullable=False),
        sa.Column('thumbnail', sa.String(length=1000), nullable=True),
        _created_at(),
        sa.UniqueConstraint('user_id', 'anime_slug', name='uq_user_favorites_user_anime')
    )
    op.create_index('idx_user_favorites_slug', 'user_favorites', ['anime_slug'])

    op.create_table('user_subscriptions',
        _id_column(),
        _user_id(),
        sa.Column('anime_slug', sa.String(length=500), nullable=False),
        sa.Column('anime_title', sa.String(length=500), nullable=False),
        sa.Column('thumbnail', sa.String(length=1000), nullable=True),
        _created_at(),
        sa.UniqueConstraint('user_id', 'anime_slug', name='uq_user_subscriptions_user_anime')
    )
    op.create_index('idx_user_subscriptions_slug', 'user_subscriptions', ['anime_slug'])


def downgrade() -> None:
    # 删除表（按依赖关系逆序删除，索引随表一起删除）
    op.drop_table('user_subscriptions')
    op.drop_table('user_favorites')
    op.drop_table('user_history')
    op.drop_table('verification_tokens')
    op.drop_table('users')
    op.drop_table('cache_metadata')
    op.drop_table('anime_updates')
    op.drop_table('completed_anime')
    op.drop_table('crawled_anime')
    op.drop_table('video_sources')
    op.drop_table('episodes')
    op.drop_table('anime_details')
