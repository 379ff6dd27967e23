"""
基础Repository类

提供通用的查询、按自然键的 upsert 和删除操作，所有具体的Repository都继承自这个基类。
使用SQLAlchemy 2.0的异步API进行数据库操作。

Repository 不提交事务，事务边界由调用方（服务层 / 协调器）控制。
"""

from typing import Generic, TypeVar, Type, Optional, List, Dict, Any, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_, case
from sqlalchemy.sql import Select

from ..models.base import Base

# 泛型类型
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    基础Repository类

    提供通用的查询和写入方法
    """

    def __init__(self, session: AsyncSession, model: Type[ModelType]):
        """
        初始化Repository

        Args:
            session: SQLAlchemy异步会话
            model: ORM模型类
        """
        self.session = session
        self.model = model

    @property
    def dialect_name(self) -> str:
        """当前会话绑定的数据库方言名"""
        return self.session.get_bind().dialect.name

    @property
    def reports_found_rows(self) -> bool:
        """
        upsert 的 rowcount 是否不可信

        MySQL 驱动默认开启 CLIENT_FOUND_ROWS，冲突后未修改的行也计入 rowcount。
        """
        return self.dialect_name in ("mysql", "mariadb")

    def _select(self) -> Select:
        """
        构建基础查询

        upsert 走的是 Core 语句，身份映射中的旧对象不会自动刷新，
        因此读取时总是用数据库中的值覆盖已加载的实例。
        """
        return select(self.model).execution_options(populate_existing=True)

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """
        根据ID获取单个记录

        Args:
            id: 记录ID

        Returns:
            找到的记录或None
        """
        return await self.get_by_field("id", id)

    async def update(self, id: int, **kwargs) -> Optional[ModelType]:
        """
        根据ID更新记录

        Args:
            id: 记录ID
            **kwargs: 要更新的字段值

        Returns:
            更新后的记录，不存在时返回None
        """
        stmt = update(self.model).where(self.model.id == id).values(**kwargs)
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_by_id(id)

    async def get_by_field(self, field: str, value: Any) -> Optional[ModelType]:
        """
        根据字段值获取单个记录

        Args:
            field: 字段名
            value: 字段值

        Returns:
            找到的记录或None
        """
        if not hasattr(self.model, field):
            return None

        stmt = self._select().where(getattr(self.model, field) == value)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many_by_field(
        self,
        field: str,
        value: Any,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order_by: Optional[str] = None
    ) -> List[ModelType]:
        """
        根据字段值获取多个记录

        Args:
            field: 字段名
            value: 字段值
            limit: 限制返回条数
            offset: 偏移量
            order_by: 排序字段，'-' 前缀表示降序

        Returns:
            记录列表
        """
        if not hasattr(self.model, field):
            return []

        stmt = self._apply_order(
            self._select().where(getattr(self.model, field) == value),
            order_by
        )

        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_all(
        self,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        order_by: Optional[str] = None
    ) -> List[ModelType]:
        """
        获取所有记录

        Args:
            limit: 限制返回条数
            offset: 偏移量
            order_by: 排序字段

        Returns:
            记录列表
        """
        stmt = self._apply_order(self._select(), order_by)

        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    def _apply_order(self, stmt: Select, order_by: Optional[str]) -> Select:
        if not order_by:
            return stmt

        descending = order_by.startswith('-')
        field_name = order_by.lstrip('-')
        if not hasattr(self.model, field_name):
            return stmt

        column = getattr(self.model, field_name)
        # 同一时间戳内按插入顺序稳定排序
        if descending:
            return stmt.order_by(column.desc(), self.model.id.desc())
        return stmt.order_by(column, self.model.id)

    async def create(self, **kwargs) -> ModelType:
        """
        创建新记录

        Args:
            **kwargs: 字段值

        Returns:
            创建的记录
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def upsert(
        self,
        values: Dict[str, Any],
        conflict_columns: Sequence[str],
        update_columns: Optional[Sequence[str]] = None,
        keep_existing: Sequence[str] = (),
        match_columns: Sequence[str] = ()
    ) -> int:
        """
        按自然唯一键插入或更新

        Args:
            values: 要写入的字段值
            conflict_columns: 冲突判定的唯一键字段
            update_columns: 冲突时覆盖的字段；为空时冲突即忽略（幂等插入）
            keep_existing: 冲突时只在原值为 NULL 时才写入的字段
            match_columns: 冲突时只有这些字段与原行一致才更新

        Returns:
            受影响的行数（冲突被忽略或条件不满足时为 0；MySQL 上不可信，见 reports_found_rows）
        """
        stmt = self._build_upsert([values], conflict_columns, update_columns, keep_existing, match_columns)
        result = await self.session.execute(stmt)
        return result.rowcount

    async def upsert_many(
        self,
        items: List[Dict[str, Any]],
        conflict_columns: Sequence[str],
        update_columns: Optional[Sequence[str]] = None
    ) -> int:
        """
        批量 upsert

        Returns:
            处理的记录数
        """
        if not items:
            return 0

        stmt = self._build_upsert(items, conflict_columns, update_columns)
        await self.session.execute(stmt)
        return len(items)

    def _build_upsert(
        self,
        items: List[Dict[str, Any]],
        conflict_columns: Sequence[str],
        update_columns: Optional[Sequence[str]],
        keep_existing: Sequence[str] = (),
        match_columns: Sequence[str] = ()
    ):
        """根据方言生成 ON CONFLICT / ON DUPLICATE KEY 语句"""
        dialect = self.dialect_name
        table = self.model.__table__

        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        elif dialect in ("mysql", "mariadb"):
            from sqlalchemy.dialects.mysql import insert

            # ON DUPLICATE KEY 会在任意唯一键上触发，conflict_columns 之外的唯一键
            # 冲突（例如 anime_details.url）需要由服务层在写入前排除
            stmt = insert(table).values(items)
            if not update_columns:
                # 没有“冲突即忽略”的语法，用 自身=自身 代替
                column = conflict_columns[0]
                return stmt.on_duplicate_key_update(**{column: table.c[column]})

            set_ = {column: stmt.inserted[column] for column in update_columns}
            for column in keep_existing:
                set_[column] = func.coalesce(table.c[column], stmt.inserted[column])
            if match_columns:
                # 没有 WHERE 子句，逐列用 CASE 保留原值
                matched = and_(*(table.c[column] == stmt.inserted[column] for column in match_columns))
                set_ = {column: case((matched, value), else_=table.c[column]) for column, value in set_.items()}
            return stmt.on_duplicate_key_update(**set_)
        else:
            raise NotImplementedError(f"不支持的数据库方言: {dialect}")

        stmt = insert(table).values(items)
        if not update_columns:
            return stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))

        set_ = {column: stmt.excluded[column] for column in update_columns}
        for column in keep_existing:
            set_[column] = func.coalesce(table.c[column], stmt.excluded[column])

        where = None
        if match_columns:
            where = and_(*(table.c[column] == stmt.excluded[column] for column in match_columns))

        return stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_=set_,
            where=where
        )

    async def delete_by_field(self, field: str, value: Any) -> int:
        """
        按字段值删除记录

        Returns:
            删除的记录数
        """
        stmt = delete(self.model).where(getattr(self.model, field) == value)
        result = await self.session.execute(stmt)
        return result.rowcount

    async def delete_all(self) -> int:
        """删除表中所有记录"""
        result = await self.session.execute(delete(self.model))
        return result.rowcount

    async def count(self, **filters) -> int:
        """
        统计记录数

        Args:
            **filters: 过滤条件

        Returns:
            记录总数
        """
        stmt = select(func.count(self.model.id))

        # 添加过滤条件
        for field, value in filters.items():
            if hasattr(self.model, field):
                stmt = stmt.where(getattr(self.model, field) == value)

        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def exists(self, **filters) -> bool:
        """
        检查记录是否存在

        Args:
            **filters: 过滤条件

        Returns:
            是否存在
        """
        count = await self.count(**filters)
        return count > 0
