"""
番剧目录服务

负责爬虫数据的规范存储：番剧详情、分集、视频源和三种列表暂存。
所有写操作按自然键 upsert，重复写入同样的数据是幂等的；
无法合并的冲突（分集被挂到另一部番剧下、父记录不存在）以类型化异常抛出。
"""

from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError

from .base import (
    BaseService, ValidationError, DuplicateKeyConflict, ForeignKeyViolation,
    translate_integrity_error, service_operation
)
from .crawler import (
    AnimeDetailPayload, EpisodePayload, VideoSourcePayload,
    CrawledAnimePayload, CompletedAnimePayload, AnimeUpdatePayload, CrawlResult
)
from ..database.models.base import utcnow
from ..database.models.anime import AnimeDetail
from ..database.models.episode import Episode, VideoSource
from ..database.models.listing import CrawledAnime, CompletedAnime, AnimeUpdate
from ..database.repositories.factory import RepositoryFactory

PayloadType = TypeVar("PayloadType", bound=BaseModel)
Record = Union[BaseModel, Dict[str, Any]]


def coerce_payload(model: Type[PayloadType], record: Record) -> PayloadType:
    """
    把字典或其他模型转换为指定的记录模型

    Raises:
        ValidationError: 字段缺失或格式错误
    """
    if isinstance(record, model):
        return record
    if isinstance(record, BaseModel):
        record = record.model_dump()

    try:
        return model.model_validate(record)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(
            f"{model.__name__} 字段 '{field}' 无效: {first.get('msg')}",
            field=field or None,
            details={"errors": e.errors(include_url=False)}
        ) from None


class CatalogueService(BaseService):
    """番剧目录服务"""

    def __init__(self, repository_factory: RepositoryFactory):
        super().__init__(repository_factory)

    # ------------------------------------------------------------------
    # 番剧详情
    # ------------------------------------------------------------------
    # _check_* 只做只读校验，在进入事务之前执行；_write_* 只在事务内调用

    @service_operation("upsert_anime")
    async def upsert_anime(self, record: Record) -> AnimeDetail:
        """
        插入或更新番剧详情（不含分集）

        slug 冲突时覆盖可变字段并刷新 updated_at；slug、created_at 保持不变，
        url 只在原值为空时写入。

        Args:
            record: AnimeDetailPayload 或等价字典

        Returns:
            写入后的番剧详情

        Raises:
            ValidationError: 记录格式错误
            DuplicateKeyConflict: url 已属于另一部番剧
        """
        payload = coerce_payload(AnimeDetailPayload, record)
        await self._check_anime(payload)

        async with self.transaction():
            await self._write_anime(payload)
            return await self.repos.anime_detail.get_by_slug(payload.slug)

    async def _check_anime(self, payload: AnimeDetailPayload) -> None:
        if not payload.url:
            return
        owner = await self.repos.anime_detail.get_by_url(payload.url)
        if owner is not None and owner.slug != payload.slug:
            raise DuplicateKeyConflict(
                "anime", payload.url,
                message=f"番剧URL {payload.url} 已属于 '{owner.slug}'，不能用于 '{payload.slug}'",
                details={"slug": payload.slug, "existing_slug": owner.slug}
            )

    async def _write_anime(self, payload: AnimeDetailPayload) -> None:
        values = payload.model_dump(exclude={"episodes"})
        values["updated_at"] = utcnow()

        try:
            await self.repos.anime_detail.upsert_detail(values)
        except IntegrityError as e:
            raise translate_integrity_error(e, "anime", payload.slug) from e

    async def _check_details(self, payloads: Iterable[AnimeDetailPayload]) -> None:
        """校验一批番剧及其分集，分集的父番剧就在同一批中"""
        owners: Dict[str, str] = {}
        anime_urls: Dict[str, str] = {}
        for payload in payloads:
            if payload.url:
                previous = anime_urls.setdefault(payload.url, payload.slug)
                if previous != payload.slug:
                    raise DuplicateKeyConflict(
                        "anime", payload.url,
                        message=f"番剧URL {payload.url} 在同一批中同时用于 '{previous}' 和 '{payload.slug}'",
                        details={"slug": payload.slug, "existing_slug": previous}
                    )
            await self._check_anime(payload)
            for episode in payload.episodes:
                previous = owners.setdefault(episode.url, payload.slug)
                if previous != payload.slug:
                    raise self._episode_conflict(episode.url, payload.slug, previous)
                await self._check_episode(payload.slug, episode, parent_pending=True)

    @service_operation("save_anime_detail")
    async def save_anime_detail(self, record: Record) -> AnimeDetail:
        """
        保存番剧详情及其附带的分集列表

        番剧和全部分集在同一个事务中写入，任何一条失败都会整体回滚。
        """
        payload = coerce_payload(AnimeDetailPayload, record)
        await self._check_details([payload])

        async with self.transaction():
            await self._write_anime(payload)
            for episode in payload.episodes:
                await self._write_episode(payload.slug, episode)
            return await self.repos.anime_detail.get_by_slug(payload.slug)

    async def get_anime_by_slug(self, slug: str) -> Optional[AnimeDetail]:
        """根据 slug 获取番剧详情，不存在时返回None"""
        return await self.repos.anime_detail.get_by_slug(slug)

    @service_operation("delete_anime")
    async def delete_anime(self, slug: str) -> bool:
        """
        删除番剧详情

        分集随番剧级联删除；视频源不会被删除，需要调用
        collect_orphan_video_sources 回收。

        Returns:
            是否删除了记录
        """
        async with self.transaction():
            deleted = await self.repos.anime_detail.delete_by_slug(slug)

        if deleted:
            self.logger.info(f"番剧 '{slug}' 已删除")
        return deleted

    # ------------------------------------------------------------------
    # 分集
    # ------------------------------------------------------------------

    @service_operation("upsert_episode")
    async def upsert_episode(self, anime_slug: str, record: Record) -> Episode:
        """
        插入或更新分集

        Args:
            anime_slug: 所属番剧slug
            record: EpisodePayload 或等价字典

        Returns:
            写入后的分集

        Raises:
            ForeignKeyViolation: 番剧不存在
            DuplicateKeyConflict: 分集URL已属于另一部番剧
        """
        payload = coerce_payload(EpisodePayload, record)
        await self._check_episode(anime_slug, payload)

        async with self.transaction():
            await self._write_episode(anime_slug, payload)
            return await self.repos.episode.get_by_url(payload.url)

    async def _check_episode(self, anime_slug: str, payload: EpisodePayload, parent_pending: bool = False) -> None:
        if not parent_pending and not await self.repos.anime_detail.exists(slug=anime_slug):
            raise ForeignKeyViolation(
                "anime", anime_slug,
                message=f"分集 {payload.url} 引用的番剧 '{anime_slug}' 不存在"
            )

        existing = await self.repos.episode.get_by_url(payload.url)
        if existing is not None and existing.anime_slug != anime_slug:
            raise self._episode_conflict(payload.url, anime_slug, existing.anime_slug)

    async def _write_episode(self, anime_slug: str, payload: EpisodePayload) -> None:
        values = payload.model_dump()
        values["anime_slug"] = anime_slug
        values["updated_at"] = utcnow()

        try:
            written = await self.repos.episode.upsert_episode(values)
        except IntegrityError as e:
            raise translate_integrity_error(e, "episode", payload.url) from e

        if not written:
            # 校验之后被其他番剧抢先插入
            raise self._episode_conflict(payload.url, anime_slug, None)

    def _episode_conflict(self, url: str, anime_slug: str, existing_slug: Optional[str]) -> DuplicateKeyConflict:
        return DuplicateKeyConflict(
            "episode", url,
            message=f"分集 {url} 已属于番剧 '{existing_slug}'，不能挂到 '{anime_slug}' 下",
            details={"anime_slug": anime_slug, "existing_anime_slug": existing_slug}
        )

    async def get_episodes_for_anime(self, slug: str) -> List[Episode]:
        """获取番剧的分集列表（按插入顺序）"""
        return await self.repos.episode.get_by_anime_slug(slug)

    async def get_episode_by_url(self, url: str) -> Optional[Episode]:
        return await self.repos.episode.get_by_url(url)

    # ------------------------------------------------------------------
    # 视频源
    # ------------------------------------------------------------------

    @service_operation("upsert_video_source")
    async def upsert_video_source(self, episode_url: str, record: Record) -> None:
        """
        按 (episode_url, server, quality) 插入或更新视频源

        不检查分集是否存在：视频源只按URL值关联分集。
        """
        payload = coerce_payload(VideoSourcePayload, record)

        async with self.transaction():
            await self._write_source(episode_url, payload)

    async def _write_source(self, episode_url: str, payload: VideoSourcePayload) -> None:
        values = payload.model_dump()
        values["episode_url"] = episode_url
        values["updated_at"] = utcnow()
        await self.repos.video_source.upsert_source(values)

    @service_operation("replace_video_sources")
    async def replace_video_sources(self, episode_url: str, records: Iterable[Record]) -> int:
        """
        用新的集合替换分集的全部视频源

        旧记录的删除和新记录的写入在同一个事务中完成。

        Returns:
            写入的视频源数量
        """
        payloads = [coerce_payload(VideoSourcePayload, record) for record in records]
        if not episode_url:
            raise ValidationError("episode_url 不能为空", field="episode_url")

        async with self.transaction():
            await self.repos.video_source.delete_by_episode_url(episode_url)
            for payload in payloads:
                await self._write_source(episode_url, payload)

        return len(payloads)

    async def get_video_sources_for_episode(self, episode_url: str) -> List[VideoSource]:
        """获取分集的视频源列表"""
        return await self.repos.video_source.get_by_episode_url(episode_url)

    @service_operation("collect_orphan_video_sources")
    async def collect_orphan_video_sources(self) -> int:
        """
        回收孤立视频源

        删除 episode_url 不对应任何分集的视频源，这是显式的维护操作，
        不会在删除番剧或分集时自动执行。

        Returns:
            删除的视频源数量
        """
        async with self.transaction():
            removed = await self.repos.video_source.delete_orphans()

        if removed:
            self.logger.info(f"回收了 {removed} 条孤立视频源")
        return removed

    async def count_orphan_video_sources(self) -> int:
        return await self.repos.video_source.count_orphans()

    # ------------------------------------------------------------------
    # 列表暂存
    # ------------------------------------------------------------------

    async def _save_listing(
        self,
        repository,
        model: Type[PayloadType],
        records: Iterable[Record],
        resource_type: str,
        check=None
    ) -> int:
        now = utcnow()
        items = []
        for record in records:
            values = coerce_payload(model, record).model_dump()
            values["updated_at"] = now
            items.append(values)

        if check is not None:
            await check(items)

        async with self.transaction():
            try:
                return await repository.save_batch(items)
            except IntegrityError as e:
                raise translate_integrity_error(e, resource_type, repository.natural_key) from e

    @service_operation("save_crawled_anime")
    async def save_crawled_anime(self, records: Iterable[Record]) -> int:
        """批量保存浏览页记录（按 slug upsert）"""
        return await self._save_listing(
            self.repos.crawled_anime, CrawledAnimePayload, records, "crawled_anime",
            check=self._check_crawled_urls
        )

    async def _check_crawled_urls(self, items: List[Dict[str, Any]]) -> None:
        """浏览页记录的 url 也是唯一键，不能属于另一个 slug"""
        owners: Dict[str, str] = {}
        for item in items:
            existing_slug = owners.setdefault(item["url"], item["slug"])
            if existing_slug == item["slug"]:
                owner = await self.repos.crawled_anime.get_by_field("url", item["url"])
                existing_slug = owner.slug if owner is not None else item["slug"]
            if existing_slug != item["slug"]:
                raise DuplicateKeyConflict(
                    "crawled_anime", item["url"],
                    message=f"浏览页URL {item['url']} 已属于 '{existing_slug}'，不能用于 '{item['slug']}'",
                    details={"slug": item["slug"], "existing_slug": existing_slug}
                )

    @service_operation("save_completed_anime")
    async def save_completed_anime(self, records: Iterable[Record]) -> int:
        """批量保存完结列表记录（按 url upsert）"""
        return await self._save_listing(self.repos.completed_anime, CompletedAnimePayload, records, "completed_anime")

    @service_operation("save_anime_updates")
    async def save_anime_updates(self, records: Iterable[Record]) -> int:
        """批量保存最新更新记录（按 episode_url upsert）"""
        return await self._save_listing(self.repos.anime_update, AnimeUpdatePayload, records, "anime_update")

    async def get_crawled_anime(self, limit: Optional[int] = None, offset: Optional[int] = None) -> List[CrawledAnime]:
        return await self.repos.crawled_anime.get_recent(limit=limit, offset=offset)

    async def get_crawled_anime_by_slug(self, slug: str) -> Optional[CrawledAnime]:
        return await self.repos.crawled_anime.get_by_slug(slug)

    async def count_crawled_anime(self) -> int:
        return await self.repos.crawled_anime.count()

    async def delete_crawled_anime(self, slug: str) -> bool:
        async with self.transaction():
            return await self.repos.crawled_anime.delete_by_slug(slug)

    async def get_completed_anime(self, limit: Optional[int] = None, offset: Optional[int] = None) -> List[CompletedAnime]:
        return await self.repos.completed_anime.get_recent(limit=limit, offset=offset)

    async def get_anime_updates(self, limit: Optional[int] = None, offset: Optional[int] = None) -> List[AnimeUpdate]:
        return await self.repos.anime_update.get_recent(limit=limit, offset=offset)

    async def clear_crawled_anime(self) -> int:
        async with self.transaction():
            return await self.repos.crawled_anime.delete_all()

    async def clear_completed_anime(self) -> int:
        async with self.transaction():
            return await self.repos.completed_anime.delete_all()

    async def clear_anime_updates(self) -> int:
        async with self.transaction():
            return await self.repos.anime_update.delete_all()

    # ------------------------------------------------------------------
    # 抓取结果合并
    # ------------------------------------------------------------------

    @service_operation("merge_crawl_result")
    async def merge_crawl_result(self, result: CrawlResult) -> Dict[str, int]:
        """
        合并一次抓取的全部结果

        由新鲜度协调器在其事务内调用；单独调用时自成一个事务。

        Returns:
            各类记录的写入数量
        """
        result = coerce_payload(CrawlResult, result)
        stats = {"anime": 0, "episodes": 0, "video_sources": 0, "listings": 0}

        await self._check_details(result.anime)
        await self._check_crawled_urls([item.model_dump() for item in result.crawled_anime])

        async with self.transaction():
            for anime in result.anime:
                await self._write_anime(anime)
                for episode in anime.episodes:
                    await self._write_episode(anime.slug, episode)
                stats["anime"] += 1
                stats["episodes"] += len(anime.episodes)

            for item in result.episode_sources:
                stats["video_sources"] += await self.replace_video_sources(item.episode_url, item.sources)

            stats["listings"] += await self.save_crawled_anime(result.crawled_anime)
            stats["listings"] += await self.save_completed_anime(result.completed_anime)
            stats["listings"] += await self.save_anime_updates(result.anime_updates)

        return stats

    # ------------------------------------------------------------------
    # 统计
    # ------------------------------------------------------------------

    async def get_catalogue_stats(self) -> Dict[str, int]:
        """各目录表的记录数"""
        return {
            "anime_details": await self.repos.anime_detail.count(),
            "episodes": await self.repos.episode.count(),
            "video_sources": await self.repos.video_source.count(),
            "crawled_anime": await self.repos.crawled_anime.count(),
            "completed_anime": await self.repos.completed_anime.count(),
            "anime_updates": await self.repos.anime_update.count(),
        }
