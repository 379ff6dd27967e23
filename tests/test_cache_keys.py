"""缓存键测试"""

import pytest

from anicache.services.base import ValidationError
from anicache.services.cache_keys import CacheKey, CacheNamespace, LISTING_UPDATES


class TestCacheKey:
    """缓存键的序列化和解析"""

    def test_render_per_namespace(self):
        assert str(CacheKey.listing(LISTING_UPDATES)) == "listing:updates"
        assert str(CacheKey.anime("naruto")) == "anime:naruto"
        assert str(CacheKey.episode_sources("https://example.com/naruto-episode-1/")) == (
            "sources:https://example.com/naruto-episode-1/"
        )

    def test_parse_keeps_colons_in_identifier(self):
        """URL 里的冒号属于标识符"""
        key = CacheKey.parse("sources:https://example.com/naruto-episode-1/")
        assert key.namespace is CacheNamespace.EPISODE_SOURCES
        assert key.identifier == "https://example.com/naruto-episode-1/"
        assert CacheKey.parse(str(key)) == key

    def test_same_identifier_in_different_namespaces_does_not_collide(self):
        listing = CacheKey.listing("completed")
        anime = CacheKey.anime("completed")
        assert listing != anime
        assert str(listing) != str(anime)

    def test_keys_are_hashable_values(self):
        keys = {CacheKey.anime("naruto"), CacheKey.anime("naruto"), CacheKey.anime("bleach")}
        assert len(keys) == 2

    @pytest.mark.parametrize("value", ["naruto", "unknown:naruto", "anime:", "anime:   "])
    def test_parse_rejects_malformed_keys(self, value):
        with pytest.raises(ValidationError):
            CacheKey.parse(value)

    def test_empty_identifier_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            CacheKey.anime("")
        assert exc_info.value.field == "identifier"

    def test_prefix(self):
        assert CacheKey.anime("naruto").prefix == "anime:"
