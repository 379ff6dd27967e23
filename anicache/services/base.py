"""
业务服务层基础架构

提供业务服务层的基础类和接口，包括事务管理、错误处理、指标收集等。

服务方法在失败时抛出 ServiceError 的子类，调用方按异常类型处理；
查询不到数据不是错误，返回 None 或空列表。
"""

import time
import logging
import functools
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Any, Dict, List

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from ..database.repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """服务层异常基类"""
    def __init__(self, message: str, error_code: str = None, details: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "SERVICE_ERROR"
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(ServiceError):
    """数据验证异常"""
    def __init__(self, message: str, field: str = None, details: Dict[str, Any] = None):
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class ResourceNotFoundError(ServiceError):
    """资源不存在异常"""
    def __init__(self, resource_type: str, resource_id: Any, details: Dict[str, Any] = None):
        message = f"{resource_type} with id {resource_id} not found"
        super().__init__(message, "RESOURCE_NOT_FOUND", details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class DuplicateKeyConflict(ServiceError):
    """自然键冲突：写入的记录与已有记录的唯一键冲突，且不能合并"""
    def __init__(self, resource_type: str, key: Any, message: str = None, details: Dict[str, Any] = None):
        super().__init__(
            message or f"{resource_type} with key {key} conflicts with an existing record",
            "DUPLICATE_KEY",
            details
        )
        self.resource_type = resource_type
        self.key = key


class ForeignKeyViolation(ServiceError):
    """引用的父记录不存在"""
    def __init__(self, resource_type: str, reference: Any, message: str = None, details: Dict[str, Any] = None):
        super().__init__(
            message or f"referenced {resource_type} {reference} does not exist",
            "FOREIGN_KEY_VIOLATION",
            details
        )
        self.resource_type = resource_type
        self.reference = reference


class CrawlFailure(ServiceError):
    """爬虫抓取失败，台账不会被更新"""
    def __init__(self, cache_key: str, message: str = None, details: Dict[str, Any] = None, error_code: str = "CRAWL_FAILURE"):
        super().__init__(message or f"crawl of {cache_key} failed", error_code, details)
        self.cache_key = cache_key


class CrawlTimeout(CrawlFailure):
    """爬虫抓取超时"""
    def __init__(self, cache_key: str, timeout: float, details: Dict[str, Any] = None):
        super().__init__(
            cache_key,
            f"crawl of {cache_key} timed out after {timeout}s",
            details,
            error_code="CRAWL_TIMEOUT"
        )
        self.timeout = timeout


class TokenError(ServiceError):
    """验证令牌异常基类"""
    def __init__(self, message: str, error_code: str = "TOKEN_ERROR", details: Dict[str, Any] = None):
        super().__init__(message, error_code, details)


class TokenExpired(TokenError):
    """令牌已过期"""
    def __init__(self, message: str = "Token has expired", details: Dict[str, Any] = None):
        super().__init__(message, "TOKEN_EXPIRED", details)


class TokenAlreadyUsed(TokenError):
    """令牌已被使用"""
    def __init__(self, message: str = "Token has already been used", details: Dict[str, Any] = None):
        super().__init__(message, "TOKEN_ALREADY_USED", details)


def translate_integrity_error(error: IntegrityError, resource_type: str, key: Any) -> ServiceError:
    """
    把数据库完整性异常转换为服务层异常

    Args:
        error: SQLAlchemy 完整性异常
        resource_type: 正在写入的资源类型
        key: 正在写入的自然键

    Returns:
        ForeignKeyViolation 或 DuplicateKeyConflict
    """
    message = str(error.orig).lower()
    if "foreign key" in message:
        return ForeignKeyViolation(resource_type, key, details={"db_error": str(error.orig)})
    return DuplicateKeyConflict(resource_type, key, details={"db_error": str(error.orig)})


class BaseService:
    """业务服务基类"""

    def __init__(self, repository_factory: RepositoryFactory):
        """
        初始化服务

        Args:
            repository_factory: Repository工厂实例
        """
        self.repos = repository_factory
        self.metrics: Optional[ServiceMetrics] = None
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    @asynccontextmanager
    async def transaction(self):
        """
        事务上下文管理器

        嵌套在外层事务中时只加入外层事务，不单独提交。

        使用示例:
            async with service.transaction():
                await service.some_operation()
                await service.another_operation()
        """
        nested = self.repos.in_transaction
        try:
            if not nested:
                self.logger.debug("开始事务")
            async with self.repos.transaction():
                yield self.repos
            if not nested:
                self.logger.debug("事务提交成功")
        except Exception as e:
            if not nested:
                self.logger.warning(f"事务回滚: {e}")
            raise

    def _validate_required_fields(self, data: Dict[str, Any], required_fields: List[str]) -> None:
        """
        验证必需字段

        Args:
            data: 数据字典
            required_fields: 必需字段列表

        Raises:
            ValidationError: 字段验证失败
        """
        for field in required_fields:
            if field not in data or data[field] is None:
                raise ValidationError(f"字段 '{field}' 是必需的", field=field)

            # 检查字符串字段是否为空
            if isinstance(data[field], str) and not data[field].strip():
                raise ValidationError(f"字段 '{field}' 不能为空", field=field)

    async def health_check(self) -> Dict[str, Any]:
        """
        服务健康检查

        Returns:
            健康状态
        """
        try:
            await self.repos.session.execute(text("SELECT 1"))
            healthy = True
        except Exception as e:
            self.logger.error(f"健康检查失败: {e}")
            healthy = False

        return {
            "service": self.__class__.__name__,
            "status": "healthy" if healthy else "unhealthy",
            "metrics": self.metrics.get_metrics() if self.metrics else None,
        }


class ServiceMetrics:
    """服务指标收集"""

    def __init__(self):
        self.operation_counts = {}
        self.error_counts = {}
        self.response_times = {}

    def record_operation(self, operation: str, duration: float, success: bool):
        """记录操作指标"""
        # 操作计数
        self.operation_counts[operation] = self.operation_counts.get(operation, 0) + 1

        # 错误计数
        if not success:
            self.error_counts[operation] = self.error_counts.get(operation, 0) + 1

        # 响应时间
        self.response_times.setdefault(operation, []).append(duration)

    def get_metrics(self) -> Dict[str, Any]:
        """获取指标摘要"""
        metrics = {
            "total_operations": sum(self.operation_counts.values()),
            "total_errors": sum(self.error_counts.values()),
            "operations": {}
        }

        for operation, count in self.operation_counts.items():
            error_count = self.error_counts.get(operation, 0)
            times = self.response_times.get(operation, [])

            metrics["operations"][operation] = {
                "count": count,
                "errors": error_count,
                "success_rate": (count - error_count) / count * 100 if count > 0 else 0,
                "avg_response_time": sum(times) / len(times) if times else 0,
                "max_response_time": max(times) if times else 0,
                "min_response_time": min(times) if times else 0
            }

        return metrics


def service_operation(operation_name: str = None):
    """
    服务操作装饰器，用于统计指标和记录异常

    异常会原样抛出给调用方。

    Args:
        operation_name: 操作名称，默认使用方法名
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            op_name = operation_name or func.__name__
            start_time = time.monotonic()

            try:
                result = await func(self, *args, **kwargs)
            except ServiceError as e:
                _record(self, op_name, start_time, False)
                self.logger.info(f"{op_name} 失败: [{e.error_code}] {e.message}")
                raise
            except Exception as e:
                _record(self, op_name, start_time, False)
                self.logger.error(f"{op_name} 发生未预期异常: {e}", exc_info=True)
                raise

            _record(self, op_name, start_time, True)
            return result

        return wrapper
    return decorator


def _record(service, operation: str, start_time: float, success: bool) -> None:
    metrics = getattr(service, "metrics", None)
    if metrics:
        metrics.record_operation(operation, time.monotonic() - start_time, success)
