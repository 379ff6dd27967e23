"""
数据库连接级设置

不同方言在建立连接时需要的会话参数：
- SQLite 默认不校验外键，必须显式开启，否则级联删除不会发生
- PostgreSQL / MySQL 统一使用UTC时区，保证 last_fetched 等时间戳可比较
"""

from sqlalchemy import event
from sqlalchemy.engine import Engine


class DatabaseOptimizer:
    """数据库连接参数配置器"""

    @staticmethod
    def configure_mysql_optimizations(engine: Engine) -> None:
        """MySQL连接参数"""

        @event.listens_for(engine, "connect")
        def set_mysql_session(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            # 设置时区
            cursor.execute("SET time_zone = '+00:00'")
            # 设置隔离级别
            cursor.execute("SET SESSION TRANSACTION ISOLATION LEVEL READ COMMITTED")
            cursor.close()

    @staticmethod
    def configure_postgresql_optimizations(engine: Engine) -> None:
        """PostgreSQL连接参数"""

        @event.listens_for(engine, "connect")
        def set_postgresql_session(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("SET timezone TO 'UTC'")
            cursor.close()

    @staticmethod
    def configure_sqlite_optimizations(engine: Engine) -> None:
        """SQLite PRAGMA"""

        @event.listens_for(engine, "connect")
        def set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            # 启用外键约束
            cursor.execute("PRAGMA foreign_keys=ON")
            # 设置同步模式
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()


def configure_database_optimizations(engine: Engine, database_type: str) -> None:
    """根据数据库类型配置连接参数"""
    optimizer = DatabaseOptimizer()

    if database_type in ("mysql", "mariadb"):
        optimizer.configure_mysql_optimizations(engine)
    elif database_type == "postgresql":
        optimizer.configure_postgresql_optimizations(engine)
    elif database_type == "sqlite":
        optimizer.configure_sqlite_optimizations(engine)
