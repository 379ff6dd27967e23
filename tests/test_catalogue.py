"""番剧目录服务测试"""

import pytest

from anicache.database.models.base import ensure_utc
from anicache.services.base import DuplicateKeyConflict, ForeignKeyViolation, ValidationError
from anicache.services.crawler import AnimeDetailPayload, CrawlResult


def _episode(slug: str, n: int, **fields) -> dict:
    return {"url": f"https://example.com/{slug}-episode-{n}/", "number": str(n), **fields}


@pytest.fixture
def catalogue(services):
    return services.catalogue


@pytest.fixture
async def naruto(catalogue):
    return await catalogue.upsert_anime({
        "slug": "naruto",
        "title": "Naruto",
        "url": "https://example.com/anime/naruto/",
        "genres": ["Action", "Adventure"],
    })


class TestAnimeUpsert:
    """番剧详情的 upsert"""

    async def test_insert(self, naruto):
        assert naruto.slug == "naruto"
        assert naruto.title == "Naruto"
        assert naruto.genres == ["Action", "Adventure"]
        assert naruto.casts == []
        assert naruto.created_at is not None

    async def test_conflict_overwrites_mutable_fields_only(self, catalogue, naruto):
        created_at = ensure_utc(naruto.created_at)
        first_updated_at = ensure_utc(naruto.updated_at)

        updated = await catalogue.upsert_anime({
            "slug": "naruto",
            "title": "Naruto (TV)",
            "status": "Completed",
            "url": "https://mirror.example.com/anime/naruto/",
        })

        assert updated.title == "Naruto (TV)"
        assert updated.status == "Completed"
        # 身份字段不变
        assert updated.url == "https://example.com/anime/naruto/"
        assert ensure_utc(updated.created_at) == created_at
        assert ensure_utc(updated.updated_at) >= first_updated_at
        assert (await catalogue.get_catalogue_stats())["anime_details"] == 1

    async def test_url_is_filled_in_when_missing(self, catalogue):
        await catalogue.upsert_anime({"slug": "bleach", "title": "Bleach"})
        updated = await catalogue.upsert_anime({
            "slug": "bleach",
            "title": "Bleach",
            "url": "https://example.com/anime/bleach/",
        })
        assert updated.url == "https://example.com/anime/bleach/"

    async def test_url_owned_by_another_slug_conflicts(self, catalogue, naruto):
        with pytest.raises(DuplicateKeyConflict):
            await catalogue.upsert_anime({
                "slug": "naruto-shippuden",
                "title": "Naruto Shippuden",
                "url": "https://example.com/anime/naruto/",
            })
        assert await catalogue.get_anime_by_slug("naruto-shippuden") is None

    async def test_missing_title_is_rejected(self, catalogue):
        with pytest.raises(ValidationError):
            await catalogue.upsert_anime({"slug": "nameless"})

    async def test_lookup_miss_returns_none(self, catalogue):
        assert await catalogue.get_anime_by_slug("does-not-exist") is None
        assert await catalogue.get_episodes_for_anime("does-not-exist") == []


class TestEpisodeUpsert:
    """分集的 upsert 和外键约束"""

    async def test_episode_requires_existing_anime(self, catalogue):
        with pytest.raises(ForeignKeyViolation):
            await catalogue.upsert_episode("ghost-slug", _episode("ghost-slug", 1))
        assert await catalogue.get_episode_by_url("https://example.com/ghost-slug-episode-1/") is None

    async def test_upsert_overwrites_fields(self, catalogue, naruto):
        await catalogue.upsert_episode("naruto", _episode("naruto", 1, title="Enter: Naruto"))
        episode = await catalogue.upsert_episode("naruto", _episode("naruto", 1, title="Enter: Naruto Uzumaki!"))

        assert episode.title == "Enter: Naruto Uzumaki!"
        assert episode.slug == "naruto-episode-1"
        assert len(await catalogue.get_episodes_for_anime("naruto")) == 1

    async def test_episode_is_never_reparented(self, catalogue, naruto):
        await catalogue.upsert_anime({"slug": "bleach", "title": "Bleach"})
        await catalogue.upsert_episode("naruto", _episode("naruto", 1))

        with pytest.raises(DuplicateKeyConflict) as exc_info:
            await catalogue.upsert_episode("bleach", _episode("naruto", 1))

        assert exc_info.value.details["existing_anime_slug"] == "naruto"
        episode = await catalogue.get_episode_by_url("https://example.com/naruto-episode-1/")
        assert episode.anime_slug == "naruto"

    async def test_episodes_listed_in_insertion_order(self, catalogue, naruto):
        for n in (3, 1, 2):
            await catalogue.upsert_episode("naruto", _episode("naruto", n))

        episodes = await catalogue.get_episodes_for_anime("naruto")
        assert [e.number for e in episodes] == ["3", "1", "2"]

    async def test_save_anime_detail_is_atomic(self, catalogue, naruto):
        """任何一集冲突时，番剧和其他分集都不会写入"""
        await catalogue.upsert_episode("naruto", _episode("naruto", 1))

        payload = AnimeDetailPayload(
            slug="boruto",
            title="Boruto",
            episodes=[_episode("boruto", 1), _episode("naruto", 1)],
        )
        with pytest.raises(DuplicateKeyConflict):
            await catalogue.save_anime_detail(payload)

        assert await catalogue.get_anime_by_slug("boruto") is None
        assert await catalogue.get_episode_by_url("https://example.com/boruto-episode-1/") is None


class TestDeleteAnime:
    """删除番剧时的级联范围"""

    async def test_delete_cascades_to_own_episodes_only(self, catalogue, naruto):
        await catalogue.save_anime_detail({
            "slug": "bleach", "title": "Bleach",
            "episodes": [_episode("bleach", 1), _episode("bleach", 2)],
        })
        await catalogue.upsert_episode("naruto", _episode("naruto", 1))

        assert await catalogue.delete_anime("naruto") is True

        assert await catalogue.get_anime_by_slug("naruto") is None
        assert await catalogue.get_episodes_for_anime("naruto") == []
        assert len(await catalogue.get_episodes_for_anime("bleach")) == 2

    async def test_delete_missing_anime(self, catalogue):
        assert await catalogue.delete_anime("does-not-exist") is False

    async def test_video_sources_survive_until_collected(self, catalogue, naruto):
        episode_url = "https://example.com/naruto-episode-1/"
        await catalogue.upsert_episode("naruto", _episode("naruto", 1))
        await catalogue.upsert_video_source(episode_url, {"server": "vidhide", "quality": "720p", "url": "https://cdn/1"})
        await catalogue.upsert_video_source("https://example.com/unrelated-episode-1/", {"server": "x"})

        await catalogue.delete_anime("naruto")

        # 视频源不随分集级联删除
        assert len(await catalogue.get_video_sources_for_episode(episode_url)) == 1
        assert await catalogue.count_orphan_video_sources() == 2

        assert await catalogue.collect_orphan_video_sources() == 2
        assert await catalogue.get_video_sources_for_episode(episode_url) == []


class TestVideoSources:
    """视频源写入"""

    EPISODE_URL = "https://example.com/naruto-episode-1/"

    async def test_upsert_is_idempotent_per_server_and_quality(self, catalogue):
        await catalogue.upsert_video_source(self.EPISODE_URL, {"server": "vidhide", "quality": "720p", "url": "https://cdn/a"})
        await catalogue.upsert_video_source(self.EPISODE_URL, {"server": "vidhide", "quality": "720p", "url": "https://cdn/b"})
        await catalogue.upsert_video_source(self.EPISODE_URL, {"server": "vidhide", "quality": "1080p", "url": "https://cdn/c"})

        sources = await catalogue.get_video_sources_for_episode(self.EPISODE_URL)
        assert [(s.quality, s.url) for s in sources] == [("720p", "https://cdn/b"), ("1080p", "https://cdn/c")]

    async def test_missing_server_and_quality_default_to_empty(self, catalogue):
        await catalogue.upsert_video_source(self.EPISODE_URL, {"url": "https://cdn/a"})
        await catalogue.upsert_video_source(self.EPISODE_URL, {"url": "https://cdn/b"})

        sources = await catalogue.get_video_sources_for_episode(self.EPISODE_URL)
        assert len(sources) == 1
        assert sources[0].server == ""
        assert sources[0].url == "https://cdn/b"

    async def test_replace_drops_stale_sources(self, catalogue):
        await catalogue.replace_video_sources(self.EPISODE_URL, [
            {"server": "a", "quality": "480p"},
            {"server": "b", "quality": "480p"},
        ])
        written = await catalogue.replace_video_sources(self.EPISODE_URL, [{"server": "c", "quality": "1080p"}])

        assert written == 1
        sources = await catalogue.get_video_sources_for_episode(self.EPISODE_URL)
        assert [s.server for s in sources] == ["c"]


class TestListings:
    """列表暂存表"""

    async def test_crawled_anime_upsert_by_slug(self, catalogue):
        await catalogue.save_crawled_anime([
            {"slug": "naruto", "title": "Naruto", "url": "https://example.com/anime/naruto/"},
            {"slug": "bleach", "title": "Bleach", "url": "https://example.com/anime/bleach/"},
        ])
        await catalogue.save_crawled_anime([
            {"slug": "naruto", "title": "Naruto", "url": "https://example.com/anime/naruto/", "status": "Completed"},
        ])

        assert await catalogue.count_crawled_anime() == 2
        naruto = await catalogue.get_crawled_anime_by_slug("naruto")
        assert naruto.status == "Completed"

    async def test_duplicates_within_batch_keep_last(self, catalogue):
        saved = await catalogue.save_anime_updates([
            {"title": "Naruto 1", "episode_url": "https://example.com/naruto-episode-1/", "release_info": "old"},
            {"title": "Naruto 1", "episode_url": "https://example.com/naruto-episode-1/", "release_info": "new"},
        ])
        assert saved == 1
        updates = await catalogue.get_anime_updates()
        assert [u.release_info for u in updates] == ["new"]

    async def test_completed_listing_and_clear(self, catalogue):
        await catalogue.save_completed_anime([
            {"title": "Naruto", "url": "https://example.com/anime/naruto/", "genres": ["Action"]},
            {"title": "Bleach", "url": "https://example.com/anime/bleach/"},
        ])

        completed = await catalogue.get_completed_anime()
        assert {c.slug for c in completed} == {"naruto", "bleach"}

        assert await catalogue.clear_completed_anime() == 2
        assert await catalogue.get_completed_anime() == []

    async def test_crawled_url_conflict_between_slugs(self, catalogue):
        await catalogue.save_crawled_anime([
            {"slug": "naruto", "title": "Naruto", "url": "https://example.com/anime/naruto/"},
        ])
        with pytest.raises(DuplicateKeyConflict):
            await catalogue.save_crawled_anime([
                {"slug": "naruto-tv", "title": "Naruto", "url": "https://example.com/anime/naruto/"},
            ])

    async def test_delete_crawled_anime(self, catalogue):
        await catalogue.save_crawled_anime([
            {"slug": "naruto", "title": "Naruto", "url": "https://example.com/anime/naruto/"},
        ])
        assert await catalogue.delete_crawled_anime("naruto") is True
        assert await catalogue.clear_crawled_anime() == 0


class TestMergeCrawlResult:
    """抓取结果合并"""

    async def test_merge_all_record_kinds(self, catalogue):
        result = CrawlResult.model_validate({
            "anime": [{
                "slug": "naruto",
                "title": "Naruto",
                "episodes": [_episode("naruto", 1), _episode("naruto", 2)],
            }],
            "episode_sources": [{
                "episode_url": "https://example.com/naruto-episode-1/",
                "sources": [{"server": "vidhide", "quality": "720p"}],
            }],
            "anime_updates": [{"title": "Naruto 2", "episode_url": "https://example.com/naruto-episode-2/"}],
        })

        stats = await catalogue.merge_crawl_result(result)

        assert stats == {"anime": 1, "episodes": 2, "video_sources": 1, "listings": 1}
        assert result.record_count == 5
        catalogue_stats = await catalogue.get_catalogue_stats()
        assert catalogue_stats["episodes"] == 2
        assert catalogue_stats["anime_updates"] == 1

    async def test_merging_twice_is_idempotent(self, catalogue):
        result = CrawlResult.model_validate({
            "anime": [{"slug": "naruto", "title": "Naruto", "episodes": [_episode("naruto", 1)]}],
        })
        await catalogue.merge_crawl_result(result)
        await catalogue.merge_crawl_result(result)

        stats = await catalogue.get_catalogue_stats()
        assert stats["anime_details"] == 1
        assert stats["episodes"] == 1

    async def test_numeric_fields_are_stored_as_text(self, catalogue):
        result = CrawlResult.model_validate({
            "anime": [{
                "slug": "naruto",
                "title": "Naruto",
                "total_episodes": 220,
                "episodes": [{"url": "https://example.com/naruto-episode-1/", "number": 1}],
            }],
            "anime_updates": [{
                "title": "Naruto 2",
                "episode_url": "https://example.com/naruto-episode-2/",
                "episode_number": 2,
            }],
        })

        await catalogue.merge_crawl_result(result)

        assert (await catalogue.get_anime_by_slug("naruto")).total_episodes == "220"
        assert (await catalogue.get_episode_by_url("https://example.com/naruto-episode-1/")).number == "1"
        assert (await catalogue.get_anime_updates())[0].episode_number == "2"

    async def test_conflicts_within_batch_write_nothing(self, catalogue):
        shared = _episode("naruto", 1)
        result = CrawlResult.model_validate({
            "anime": [
                {"slug": "naruto", "title": "Naruto", "episodes": [shared]},
                {"slug": "boruto", "title": "Boruto", "episodes": [_episode("boruto", 1), shared]},
            ],
        })

        with pytest.raises(DuplicateKeyConflict):
            await catalogue.merge_crawl_result(result)
        assert (await catalogue.get_catalogue_stats())["anime_details"] == 0

        same_url = CrawlResult.model_validate({
            "anime": [
                {"slug": "naruto", "title": "Naruto", "url": "https://example.com/anime/naruto/"},
                {"slug": "naruto-tv", "title": "Naruto", "url": "https://example.com/anime/naruto/"},
            ],
        })
        with pytest.raises(DuplicateKeyConflict):
            await catalogue.merge_crawl_result(same_url)
        assert (await catalogue.get_catalogue_stats())["anime_details"] == 0


class TestLoadedObjectsAfterErrors:
    """校验失败不会让会话中已加载的对象失效"""

    async def test_after_missing_parent(self, catalogue, naruto):
        with pytest.raises(ForeignKeyViolation):
            await catalogue.upsert_episode("ghost-slug", _episode("ghost-slug", 1))

        assert naruto.title == "Naruto"

    async def test_after_reparent_conflict(self, catalogue, naruto):
        await catalogue.upsert_anime({"slug": "bleach", "title": "Bleach"})
        episode = await catalogue.upsert_episode("naruto", _episode("naruto", 1))

        with pytest.raises(DuplicateKeyConflict):
            await catalogue.upsert_episode("bleach", _episode("naruto", 1))

        assert episode.anime_slug == "naruto"
        assert naruto.title == "Naruto"

    async def test_after_url_conflict(self, catalogue, naruto):
        with pytest.raises(DuplicateKeyConflict):
            await catalogue.upsert_anime({
                "slug": "naruto-shippuden",
                "title": "Naruto Shippuden",
                "url": "https://example.com/anime/naruto/",
            })

        assert naruto.url == "https://example.com/anime/naruto/"

    async def test_after_failed_detail_save(self, catalogue, naruto):
        episode = await catalogue.upsert_episode("naruto", _episode("naruto", 1))

        with pytest.raises(DuplicateKeyConflict):
            await catalogue.save_anime_detail({
                "slug": "boruto",
                "title": "Boruto",
                "episodes": [_episode("boruto", 1), _episode("naruto", 1)],
            })

        assert naruto.genres == ["Action", "Adventure"]
        assert episode.number == "1"

    async def test_after_crawled_url_conflict(self, catalogue, naruto):
        await catalogue.save_crawled_anime([
            {"slug": "naruto", "title": "Naruto", "url": "https://example.com/anime/naruto/"},
        ])
        listed = await catalogue.get_crawled_anime_by_slug("naruto")

        with pytest.raises(DuplicateKeyConflict):
            await catalogue.save_crawled_anime([
                {"slug": "naruto-tv", "title": "Naruto", "url": "https://example.com/anime/naruto/"},
            ])

        assert listed.title == "Naruto"
        assert naruto.slug == "naruto"
