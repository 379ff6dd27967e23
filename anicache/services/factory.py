"""
服务层工厂和依赖注入

提供服务层的创建和管理，支持依赖注入模式。
"""

import logging
from typing import Type, TypeVar, Dict, Any, Optional
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from .base import BaseService, ServiceMetrics
from .catalogue import CatalogueService
from .crawler import Crawler
from .freshness import FreshnessCoordinator, FreshnessPolicy
from .relations import UserRelationService
from .verification import VerificationService
from ..config import Settings
from ..database.repositories.factory import RepositoryFactory, RepositoryManager

# 类型定义
ServiceType = TypeVar("ServiceType", bound=BaseService)
logger = logging.getLogger(__name__)


class ServiceFactory:
    """服务层工厂类"""

    def __init__(
        self,
        repository_factory: RepositoryFactory,
        settings: Optional[Settings] = None,
        metrics: Optional[ServiceMetrics] = None
    ):
        """
        初始化服务工厂

        Args:
            repository_factory: Repository工厂实例
            settings: 应用配置，默认使用各配置段的默认值
            metrics: 共享的指标收集器
        """
        self.repos = repository_factory
        self.settings = settings
        self.metrics = metrics
        self._services: Dict[Type, BaseService] = {}

    def get_service(self, service_class: Type[ServiceType]) -> ServiceType:
        """
        获取服务实例（单例模式）

        Args:
            service_class: 服务类

        Returns:
            服务实例
        """
        if service_class not in self._services:
            if service_class is VerificationService:
                # 令牌有效期来自配置
                token_config = self.settings.tokens if self.settings else None
                service = service_class(self.repos, token_config)
            else:
                service = service_class(self.repos)
            service.metrics = self.metrics
            self._services[service_class] = service

        return self._services[service_class]

    # 便捷属性访问
    @property
    def catalogue(self) -> CatalogueService:
        """获取番剧目录服务"""
        return self.get_service(CatalogueService)

    @property
    def relations(self) -> UserRelationService:
        """获取用户关系服务"""
        return self.get_service(UserRelationService)

    @property
    def verification(self) -> VerificationService:
        """获取身份验证服务"""
        return self.get_service(VerificationService)

    @asynccontextmanager
    async def transaction(self):
        """
        全局事务上下文管理器

        使用示例:
            async with service_factory.transaction():
                await service_factory.catalogue.upsert_anime(...)
                await service_factory.catalogue.upsert_episode(...)
        """
        async with self.repos.transaction():
            yield self

    async def health_check(self) -> Dict[str, Any]:
        """
        服务层整体健康检查

        Returns:
            健康检查结果
        """
        health_results = {}
        overall_healthy = True

        for service_name, service in (
            ("catalogue", self.catalogue),
            ("relations", self.relations),
            ("verification", self.verification),
        ):
            result = await service.health_check()
            health_results[service_name] = result
            if result["status"] != "healthy":
                overall_healthy = False

        return {
            "overall_status": "healthy" if overall_healthy else "unhealthy",
            "services": health_results,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    async def close(self):
        """关闭服务工厂"""
        await self.repos.close()


class ServiceManager:
    """
    服务管理器

    用于管理服务的生命周期，以及按配置创建新鲜度协调器
    """

    def __init__(self, session_factory, settings: Optional[Settings] = None):
        """
        初始化服务管理器

        Args:
            session_factory: 会话工厂（async_sessionmaker）
            settings: 应用配置
        """
        self.session_factory = session_factory
        self.repository_manager = RepositoryManager(session_factory)
        self.settings = settings
        self.metrics = ServiceMetrics()

    @asynccontextmanager
    async def get_service_factory(self):
        """
        获取服务工厂的异步上下文管理器

        使用示例:
            async with manager.get_service_factory() as services:
                anime = await services.catalogue.get_anime_by_slug("one-piece")
        """
        async with self.repository_manager.get_repository_factory() as repos:
            yield ServiceFactory(repos, self.settings, self.metrics)

    @property
    def freshness_policy(self) -> FreshnessPolicy:
        if self.settings is None:
            return FreshnessPolicy()
        return FreshnessPolicy.from_config(self.settings.cache)

    def create_coordinator(self, crawler: Crawler, **kwargs) -> FreshnessCoordinator:
        """
        创建新鲜度协调器

        single_flight 和默认爬取超时取自配置，可以用关键字参数覆盖
        """
        if self.settings is not None:
            kwargs.setdefault("single_flight", self.settings.cache.single_flight)
            kwargs.setdefault("default_timeout", self.settings.cache.crawl_timeout_seconds)

        logger.info(f"创建新鲜度协调器: crawler={type(crawler).__name__}")
        return FreshnessCoordinator(self.session_factory, crawler, **kwargs)


# 依赖注入辅助函数
async def get_service_factory(
    repository_factory: RepositoryFactory,
    settings: Optional[Settings] = None
) -> ServiceFactory:
    """
    获取服务工厂实例

    供上层 HTTP 框架的依赖注入使用

    Args:
        repository_factory: Repository工厂
        settings: 应用配置

    Returns:
        服务工厂实例
    """
    return ServiceFactory(repository_factory, settings)
