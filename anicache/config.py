import yaml
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Tuple

from pydantic import BaseModel
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource


# 1. 为配置的不同部分创建 Pydantic 模型，提供类型提示和默认值
class DatabaseConfig(BaseModel):
    # 数据库类型：postgresql, mysql, sqlite
    type: str = "postgresql"
    host: str = "127.0.0.1"
    port: int = 5432
    user: str = "postgres"
    password: str = "password"
    name: str = "anime_catalogue"

    # SQLAlchemy 引擎配置
    echo: bool = False              # 是否输出SQL日志
    pool_size: int = 10            # 连接池大小
    max_overflow: int = 20         # 最大溢出连接
    pool_timeout: int = 30         # 获取连接超时（秒）
    pool_recycle: int = 3600       # 连接回收时间（秒）

    @property
    def async_url(self) -> str:
        """构建异步数据库URL"""
        if self.type == "postgresql":
            return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"
        elif self.type == "mysql":
            return f"mysql+aiomysql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}?charset=utf8mb4"
        elif self.type == "sqlite":
            # SQLite 不需要用户名密码和主机
            if self.name == ":memory:":
                return "sqlite+aiosqlite:///:memory:"
            return f"sqlite+aiosqlite:///{self.name}.db"
        else:
            raise ValueError(f"不支持的数据库类型: {self.type}")

    def get_engine_config(self) -> Dict[str, Any]:
        """获取SQLAlchemy引擎配置（连接池部分由 DatabaseEngine 按方言补全）"""
        config = {
            "echo": self.echo,
            "pool_pre_ping": True,
            "pool_recycle": self.pool_recycle,
        }

        if self.type != "sqlite":
            config.update({
                "pool_size": self.pool_size,
                "max_overflow": self.max_overflow,
                "pool_timeout": self.pool_timeout,
            })

        return config


class CacheConfig(BaseModel):
    """
    缓存新鲜度策略

    这些只是调用方（API层）可选用的默认值，协调器本身从不读取，
    max_age 总是由调用方显式传入。
    """
    listing_max_age_seconds: int = 3600       # 列表页（更新、完结、浏览页）
    anime_max_age_seconds: int = 3600         # 番剧详情页
    sources_max_age_seconds: int = 6 * 3600   # 分集视频源
    crawl_timeout_seconds: float = 30.0       # 单次爬取超时
    single_flight: bool = True                # 同一缓存键的并发刷新是否在进程内合并


class TokenConfig(BaseModel):
    email_verification_ttl_hours: int = 24
    password_reset_ttl_hours: int = 1

    @property
    def email_verification_ttl(self) -> timedelta:
        return timedelta(hours=self.email_verification_ttl_hours)

    @property
    def password_reset_ttl(self) -> timedelta:
        return timedelta(hours=self.password_reset_ttl_hours)


# 2. 创建一个自定义的配置源，用于从 YAML 文件加载设置
class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    def __init__(self, settings_cls: type[BaseSettings]):
        super().__init__(settings_cls)
        # 在项目根目录的 config/ 文件夹下查找 config.yml
        self.yaml_file = Path(__file__).parent.parent / "config" / "config.yml"

    def get_field_value(self, field, field_name):
        return None, None, False

    def __call__(self) -> Dict[str, Any]:
        if not self.yaml_file.is_file():
            return {}
        with open(self.yaml_file, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}


# 3. 定义主设置类，它将聚合所有配置
class Settings(BaseSettings):
    database: DatabaseConfig = DatabaseConfig()
    cache: CacheConfig = CacheConfig()
    tokens: TokenConfig = TokenConfig()

    class Config:
        # 为环境变量设置前缀，避免与系统变量冲突
        # 例如，在容器中设置环境变量 ANICACHE_DATABASE__HOST=db
        env_prefix = "ANICACHE_"
        case_sensitive = False
        env_nested_delimiter = '__'

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # 定义加载源的优先级:
        # 1. 构造参数 (最高，测试中使用)
        # 2. 环境变量
        # 3. .env 文件
        # 4. YAML 文件
        # 5. 文件密钥
        # 6. Pydantic 模型中的默认值 (最低)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


settings = Settings()
