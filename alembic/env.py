"""
Alembic 环境配置

用于番剧目录数据库的 schema 管理，数据库连接取自应用配置
（config/config.yml 或 ANICACHE_DATABASE__* 环境变量）。
"""

import asyncio
import logging
import os
from logging.config import fileConfig
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

from anicache.config import settings
# 导入所有模型以确保完整的metadata
from anicache.database.models import Base

# Alembic 配置对象
config = context.config

# 支持环境变量覆盖数据库URL
database_url = os.getenv("DATABASE_URL") or settings.database.async_url
config.set_main_option('sqlalchemy.url', database_url)

# 配置日志
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# 目标元数据
target_metadata = Base.metadata

logger = logging.getLogger('alembic.env')


def run_migrations_offline() -> None:
    """
    在'离线'模式下运行迁移

    只配置 URL 而不创建 Engine，context.execute() 会把 SQL 输出到文件。
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    """运行迁移的具体逻辑"""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        # SQLite 不支持 ALTER 约束，使用批量模式
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """
    在'在线'模式下运行异步迁移

    使用应用同样的异步驱动（asyncpg / aiomysql / aiosqlite）
    """
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    """在'在线'模式下运行迁移"""
    logger.info(f"运行迁移: {config.get_main_option('sqlalchemy.url').split('@')[-1]}")
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
