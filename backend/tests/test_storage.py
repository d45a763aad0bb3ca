"""Tests for the object store and the TTL cache."""
import pytest

from clipforge.services.cache import TTLCache
from clipforge.storage import ArtifactKeys, ObjectNotFoundError


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


# =============================================================================
# Object store
# =============================================================================

class TestLocalObjectStore:
    """Key/value behaviour of the filesystem store."""

    @pytest.mark.asyncio
    async def test_put_and_get_json(self, store):
        await store.put_json("projects/r1/rank/rank.json", {"items": [1, 2]})
        assert await store.get_json("projects/r1/rank/rank.json") == {"items": [1, 2]}

    @pytest.mark.asyncio
    async def test_missing_key_raises(self, store):
        with pytest.raises(ObjectNotFoundError):
            await store.get_bytes("projects/r1/nothing.bin")
        assert not await store.exists("projects/r1/nothing.bin")

    @pytest.mark.asyncio
    async def test_list_by_prefix_with_limit(self, store):
        keys = ArtifactKeys("r1")
        for clip_id in ("sc_0001", "sc_0002"):
            await store.put_bytes(keys.clip_video(clip_id), b"video")
        await store.put_text(keys.title("sc_0001"), "Title")

        listed = await store.list(keys.clips_prefix)
        assert listed == [keys.clip_video("sc_0001"), keys.clip_video("sc_0002")]
        assert len(await store.list(keys.clips_prefix, limit=1)) == 1
        assert await store.list(ArtifactKeys("other").clips_prefix) == []

    @pytest.mark.asyncio
    async def test_upload_download_and_size(self, store, tmp_path):
        src = tmp_path / "clip.mp4"
        src.write_bytes(b"x" * 128)
        await store.upload_file("projects/r1/clips/a.mp4", src, "video/mp4")

        assert await store.size("projects/r1/clips/a.mp4") == 128
        out = await store.download_file("projects/r1/clips/a.mp4", tmp_path / "out" / "a.mp4")
        assert out.read_bytes() == b"x" * 128

    def test_rejects_keys_escaping_root(self, store):
        with pytest.raises(ValueError):
            store._path("../outside.txt")


class TestArtifactKeys:
    """Storage layout per root."""

    def test_layout(self):
        keys = ArtifactKeys("abc")
        assert keys.source == "projects/abc/source.mp4"
        assert keys.audio == "projects/abc/media/audio.wav"
        assert keys.transcript == "projects/abc/transcribe/transcript.json"
        assert keys.scenes == "projects/abc/scenes/scenes.json"
        assert keys.rank == "projects/abc/rank/rank.json"
        assert keys.clip_thumbnail("sc_0001") == "projects/abc/clips/sc_0001.jpg"
        assert keys.description("sc_0001") == "projects/abc/texts/sc_0001/description.md"
        assert keys.texts_marker("abc:texts") == "projects/abc/texts/_idem/abc:texts.txt"


# =============================================================================
# TTL cache
# =============================================================================

class TestTTLCache:
    """Expiry and LRU eviction."""

    def test_entries_expire(self):
        clock = _Clock()
        cache = TTLCache(max_entries=4, ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        clock.now = 9.9
        assert cache.get("a") == 1
        clock.now = 10.0
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_least_recently_used_is_evicted(self):
        cache = TTLCache(max_entries=2, ttl_seconds=60, clock=_Clock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_get_or_set_computes_once(self):
        cache = TTLCache(clock=_Clock())
        calls = []

        async def factory():
            calls.append(1)
            return [0.1, 0.2]

        assert await cache.get_or_set("k", factory) == [0.1, 0.2]
        assert await cache.get_or_set("k", factory) == [0.1, 0.2]
        assert len(calls) == 1

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            TTLCache(max_entries=0)
