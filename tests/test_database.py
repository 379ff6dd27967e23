"""数据库生命周期和健康检查测试"""

from types import SimpleNamespace

import pytest
from sqlalchemy import text
from sqlalchemy.dialects import mysql

import anicache.database as database
from anicache.config import DatabaseConfig
from anicache.database.engine import DatabaseEngine
from anicache.database.models.base import utcnow
from anicache.database.repositories.episode import EpisodeRepository
from anicache.database.repositories.factory import RepositoryFactory
from anicache.database.repositories.user import UserFavoriteRepository
from anicache.services.factory import ServiceFactory


class TestDatabaseLifecycle:
    """全局引擎的初始化和关闭"""

    @pytest.fixture
    def sqlite_settings(self, monkeypatch):
        monkeypatch.setattr(database.settings, "database", DatabaseConfig(type="sqlite", name=":memory:"))

    async def test_initialize_and_shutdown(self, sqlite_settings):
        engine = await database.initialize_database()
        try:
            assert engine.is_memory_sqlite
            async for session in database.get_database_session():
                assert (await session.execute(text("SELECT 1"))).scalar() == 1
        finally:
            await database.shutdown_database()

        with pytest.raises(RuntimeError):
            async for _ in database.get_database_session():
                pass

    async def test_foreign_keys_enabled_on_sqlite(self, db_engine):
        async with db_engine.get_session() as session:
            assert (await session.execute(text("PRAGMA foreign_keys"))).scalar() == 1

    async def test_file_database_uses_separate_connections(self, tmp_path):
        engine = DatabaseEngine(f"sqlite+aiosqlite:///{tmp_path / 'catalogue.db'}")
        try:
            assert not engine.is_memory_sqlite
            assert engine.database_type == "sqlite"
            assert await engine.test_connection()
        finally:
            await engine.close()


class TestTransactions:
    """嵌套事务只在最外层提交"""

    async def test_inner_failure_rolls_back_outer_work(self, session_factory):
        async with session_factory() as session:
            repos = RepositoryFactory(session)
            with pytest.raises(RuntimeError):
                async with repos.transaction():
                    await repos.cache_metadata.touch("anime:naruto", utcnow())
                    async with repos.transaction():
                        assert repos.in_transaction
                        raise RuntimeError("boom")

            assert not repos.in_transaction
            assert await repos.cache_metadata.get_last_fetched("anime:naruto") is None

    async def test_outer_block_commits_inner_work(self, session_factory):
        async with session_factory() as session:
            repos = RepositoryFactory(session)
            async with repos.transaction():
                async with repos.transaction():
                    await repos.cache_metadata.touch("anime:naruto", utcnow())

        async with session_factory() as session:
            assert await RepositoryFactory(session).cache_metadata.exists(cache_key="anime:naruto")

    async def test_health_check(self, services):
        report = await services.health_check()

        assert report["overall_status"] == "healthy"
        assert set(report["services"]) == {"catalogue", "relations", "verification"}


async def test_service_factory_caches_services(services):
    assert services.catalogue is services.catalogue
    assert isinstance(services, ServiceFactory)


def _mysql_session():
    """只用于编译语句的会话替身"""
    return SimpleNamespace(get_bind=lambda: SimpleNamespace(dialect=mysql.dialect()))


class TestMySQLUpsert:
    """MySQL 没有带条件的 ON CONFLICT，语句需要单独生成"""

    def test_match_columns_become_case_expressions(self):
        repository = EpisodeRepository(_mysql_session())
        stmt = repository._build_upsert(
            [{"anime_slug": "naruto", "url": "https://example.com/naruto-episode-1/", "title": "Enter"}],
            conflict_columns=("url",),
            update_columns=["title"],
            match_columns=("anime_slug",)
        )

        sql = str(stmt.compile(dialect=mysql.dialect()))
        assert "ON DUPLICATE KEY UPDATE" in sql
        assert "CASE WHEN" in sql

    def test_ignore_on_conflict(self):
        repository = UserFavoriteRepository(_mysql_session())
        stmt = repository._build_upsert(
            [{"user_id": 1, "anime_slug": "naruto", "anime_title": "Naruto"}],
            conflict_columns=("user_id", "anime_slug"),
            update_columns=None
        )

        sql = str(stmt.compile(dialect=mysql.dialect()))
        assert "ON DUPLICATE KEY UPDATE user_id = " in sql

    async def test_rowcount_is_not_trusted(self, session_factory):
        assert EpisodeRepository(_mysql_session()).reports_found_rows
        async with session_factory() as session:
            assert not EpisodeRepository(session).reports_found_rows
