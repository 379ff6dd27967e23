"""
爬虫协作方接口

爬虫本身不在本项目内实现，这里只定义新鲜度协调器调用它时的接口，
以及它返回的按实体类型划分的记录结构。协调器只按字段名读取这些记录。
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .cache_keys import CacheKey


class CrawlPayload(BaseModel):
    """爬虫记录基类：忽略未知字段，去掉字符串首尾空白，数字按文本保存"""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, coerce_numbers_to_str=True)


class VideoSourcePayload(CrawlPayload):
    """视频源记录"""
    server: str = ""
    quality: str = ""
    url: Optional[str] = None


class EpisodePayload(CrawlPayload):
    """分集记录"""
    url: str = Field(min_length=1)
    number: Optional[str] = None
    title: Optional[str] = None
    release_date: Optional[str] = None


class AnimeDetailPayload(CrawlPayload):
    """番剧详情记录，可以附带分集列表"""
    slug: str = Field(min_length=1)
    title: str = Field(min_length=1)
    url: Optional[str] = None
    alternate_titles: Optional[str] = None
    poster: Optional[str] = None
    rating: Optional[str] = None
    trailer_url: Optional[str] = None
    status: Optional[str] = None
    studio: Optional[str] = None
    release_date: Optional[str] = None
    duration: Optional[str] = None
    season: Optional[str] = None
    type: Optional[str] = None
    total_episodes: Optional[str] = None
    director: Optional[str] = None
    casts: List[str] = Field(default_factory=list)
    genres: List[str] = Field(default_factory=list)
    synopsis: Optional[str] = None
    episodes: List[EpisodePayload] = Field(default_factory=list)


class EpisodeSourcesPayload(CrawlPayload):
    """一个分集的完整视频源集合"""
    episode_url: str = Field(min_length=1)
    sources: List[VideoSourcePayload] = Field(default_factory=list)


class CrawledAnimePayload(CrawlPayload):
    """浏览页记录"""
    slug: str = Field(min_length=1)
    title: str
    url: str = Field(min_length=1)
    thumbnail: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    episode_status: Optional[str] = None


class CompletedAnimePayload(CrawlPayload):
    """完结列表记录"""
    title: str
    url: str = Field(min_length=1)
    thumbnail: Optional[str] = None
    type: Optional[str] = None
    episode_count: Optional[str] = None
    status: Optional[str] = None
    posted_by: Optional[str] = None
    posted_at: Optional[str] = None
    series_title: Optional[str] = None
    series_url: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    rating: Optional[str] = None


class AnimeUpdatePayload(CrawlPayload):
    """最新更新记录"""
    title: str
    episode_url: str = Field(min_length=1)
    thumbnail: Optional[str] = None
    episode_number: Optional[str] = None
    type: Optional[str] = None
    series_title: Optional[str] = None
    series_url: Optional[str] = None
    status: Optional[str] = None
    release_info: Optional[str] = None


class CrawlResult(CrawlPayload):
    """
    一次抓取的全部结果

    一次抓取可以返回多种实体；协调器按 详情 -> 视频源 -> 列表 的顺序合并。
    """
    anime: List[AnimeDetailPayload] = Field(default_factory=list)
    episode_sources: List[EpisodeSourcesPayload] = Field(default_factory=list)
    crawled_anime: List[CrawledAnimePayload] = Field(default_factory=list)
    completed_anime: List[CompletedAnimePayload] = Field(default_factory=list)
    anime_updates: List[AnimeUpdatePayload] = Field(default_factory=list)

    @property
    def record_count(self) -> int:
        return (
            len(self.anime)
            + sum(len(anime.episodes) for anime in self.anime)
            + sum(len(item.sources) for item in self.episode_sources)
            + len(self.crawled_anime)
            + len(self.completed_anime)
            + len(self.anime_updates)
        )


class Crawler(ABC):
    """
    爬虫接口

    实现方负责网络抓取和页面解析，返回 CrawlResult；抛出的任何异常
    都会被协调器视为抓取失败。
    """

    @abstractmethod
    async def crawl(self, cache_key: CacheKey) -> CrawlResult:
        """抓取缓存键对应的内容"""
        raise NotImplementedError
