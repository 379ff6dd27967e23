"""迁移脚本与 ORM 模型一致性测试"""

from pathlib import Path

import pytest
from alembic import command
from alembic.autogenerate import compare_metadata
from alembic.config import Config
from alembic.migration import MigrationContext
from sqlalchemy import create_engine, inspect

from anicache.database.models import Base

ALEMBIC_DIR = Path(__file__).resolve().parent.parent / "alembic"


def _flatten(diffs):
    for diff in diffs:
        # 列级差异以列表形式嵌套返回
        if isinstance(diff, list):
            yield from diff
        else:
            yield diff


@pytest.fixture
def migrated_database(tmp_path, monkeypatch):
    path = tmp_path / "migrated.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{path}")

    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    command.upgrade(config, "head")

    engine = create_engine(f"sqlite:///{path}")
    yield engine
    engine.dispose()


class TestMigrations:
    """升级到最新版本后的表结构应与模型定义一致"""

    def test_all_tables_created(self, migrated_database):
        tables = set(inspect(migrated_database).get_table_names())
        assert set(Base.metadata.tables) <= tables

    def test_no_table_or_nullability_drift(self, migrated_database):
        with migrated_database.connect() as connection:
            diffs = list(_flatten(compare_metadata(MigrationContext.configure(connection), Base.metadata)))

        drift = [
            diff for diff in diffs
            if diff[0] in ("add_table", "remove_table", "add_column", "remove_column", "modify_nullable")
        ]
        assert drift == []

    def test_timestamps_are_not_null(self, migrated_database):
        inspector = inspect(migrated_database)
        for table in ("anime_details", "episodes", "users", "verification_tokens", "user_favorites"):
            columns = {column["name"]: column for column in inspector.get_columns(table)}
            assert columns["created_at"]["nullable"] is False
            if "updated_at" in columns:
                assert columns["updated_at"]["nullable"] is False
