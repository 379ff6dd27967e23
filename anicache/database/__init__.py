"""
数据库初始化模块

统一管理数据库引擎初始化、会话依赖和生命周期管理
"""

import logging
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession

from .engine import DatabaseEngine, init_database, get_db_session, close_database
from .models.base import Base
from ..config import settings

logger = logging.getLogger(__name__)


async def initialize_database() -> DatabaseEngine:
    """
    按全局配置初始化数据库系统

    在应用启动时调用
    """
    try:
        # 获取数据库配置
        database_url = settings.database.async_url
        engine_config = settings.database.get_engine_config()

        logger.info(f"初始化数据库: {settings.database.type}")
        logger.info(f"数据库URL: {database_url.split('@')[1] if '@' in database_url else database_url}")

        engine = await init_database(database_url, **engine_config)

        logger.info("数据库初始化成功")
        return engine

    except Exception as e:
        logger.error(f"数据库初始化失败: {e}")
        raise


async def shutdown_database() -> None:
    """
    关闭数据库连接

    在应用关闭时调用
    """
    try:
        await close_database()
        logger.info("数据库连接已关闭")
    except Exception as e:
        logger.error(f"关闭数据库连接时出错: {e}")


async def get_database_session() -> AsyncGenerator[AsyncSession, None]:
    """
    API层依赖注入：获取数据库会话

    Usage:
        @app.get("/api/anime/{slug}")
        async def anime_endpoint(
            session: AsyncSession = Depends(get_database_session)
        ):
            repos = RepositoryFactory(session)
            ...
    """
    async with get_db_session() as session:
        yield session


__all__ = [
    "Base",
    "DatabaseEngine",
    "initialize_database",
    "shutdown_database",
    "get_database_session",
]
