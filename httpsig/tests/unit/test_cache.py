"""
Unit tests for the JWKS cache.
"""
from unittest.mock import patch

from httpsig.cache import JwksCache


class TestJwksCache:
    """Test TTL behaviour and lazy eviction."""

    def test_miss(self):
        assert JwksCache().get("https://a.example/jwks") is None

    def test_hit_within_ttl(self):
        cache = JwksCache(ttl=60)
        with patch("httpsig.cache.time.time", return_value=1000.0):
            cache.set("https://a.example/jwks", {"keys": []})
        with patch("httpsig.cache.time.time", return_value=1059.0):
            assert cache.get("https://a.example/jwks") == {"keys": []}

    def test_expired_entry_is_evicted_on_access(self):
        cache = JwksCache(ttl=60)
        with patch("httpsig.cache.time.time", return_value=1000.0):
            cache.set("https://a.example/jwks", {"keys": []})
        assert len(cache) == 1

        with patch("httpsig.cache.time.time", return_value=1060.0):
            assert cache.get("https://a.example/jwks") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self):
        cache = JwksCache(ttl=3600)
        with patch("httpsig.cache.time.time", return_value=0.0):
            cache.set("u", 1, ttl=5)
        with patch("httpsig.cache.time.time", return_value=10.0):
            assert "u" not in cache

    def test_clear(self):
        cache = JwksCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_last_writer_wins(self):
        cache = JwksCache()
        cache.set("a", 1)
        cache.set("a", 2)
        assert cache.get("a") == 2
