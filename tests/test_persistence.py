# tests/test_persistence.py

import threading

import numpy as np
import pytest

from components.service import VisualMatchService
from core.batch_processor import ProjectLoader, BatchProcessor
from core.database import FingerprintCache
from core.errors import ProjectNotFound


@pytest.fixture
def cache():
    cache = FingerprintCache(":memory:")
    yield cache
    cache.close()


class TestFingerprintCache:

    def test_hit_requires_matching_checksum_and_dimension(self, cache):
        vector = np.arange(4, dtype=np.float32)
        cache.put("zoo", "cat.png", "phash-2", "abc", vector)

        assert np.array_equal(cache.get("zoo", "cat.png", "phash-2", "abc", 4), vector)
        assert cache.get("zoo", "cat.png", "phash-2", "changed", 4) is None
        assert cache.get("zoo", "cat.png", "phash-2", "abc", 9) is None
        assert cache.get("zoo", "cat.png", "dhash-2", "abc", 4) is None
        assert cache.get("farm", "cat.png", "phash-2", "abc", 4) is None

    def test_put_overwrites(self, cache):
        cache.put("zoo", "cat.png", "phash-2", "v1", np.zeros(4))
        cache.put("zoo", "cat.png", "phash-2", "v2", np.ones(4))

        assert cache.count() == 1
        assert cache.get("zoo", "cat.png", "phash-2", "v2", 4).sum() == 4

    def test_prune_and_delete(self, cache):
        for name in ("a.png", "b.png", "c.png"):
            cache.put("zoo", name, "phash-2", name, np.zeros(4))
        cache.put("farm", "a.png", "phash-2", "x", np.zeros(4))

        assert cache.prune("zoo", keep=["a.png"]) == 2
        assert cache.count("zoo") == 1
        assert cache.count("farm") == 1

        assert cache.delete("farm", "a.png") == 1
        assert cache.projects() == ["zoo"]


class CountingExtractor:
    """Wraps an extractor and counts how often it actually runs"""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0
        self._lock = threading.Lock()

    @property
    def name(self):
        return self.inner.name

    @property
    def dimension(self):
        return self.inner.dimension

    def extract(self, image):
        with self._lock:
            self.calls += 1
        return self.inner.extract(image)


class TestProjectLoader:

    def test_reuses_cached_fingerprints(self, store, cache, decoder, extractor, image_bytes):
        for seed in range(3):
            store.write_image("zoo", f"{seed}.png", image_bytes(seed))

        counting = CountingExtractor(extractor)
        loader = ProjectLoader(store, cache, decoder, counting,
                               BatchProcessor(n_workers=2, show_progress=False))

        first = loader.load("zoo")
        assert counting.calls == 3

        second = loader.load("zoo")
        assert counting.calls == 3
        assert [name for name, _ in first] == [name for name, _ in second]
        for (_, a), (_, b) in zip(first, second):
            assert np.array_equal(a, b)

    def test_changed_file_is_refingerprinted(self, store, cache, decoder, extractor, image_bytes):
        store.write_image("zoo", "cat.png", image_bytes(1))
        loader = ProjectLoader(store, cache, decoder, extractor,
                               BatchProcessor(show_progress=False))
        [(_, before)] = loader.load("zoo")

        store.write_image("zoo", "cat.png", image_bytes(2))
        [(_, after)] = loader.load("zoo")

        assert not np.array_equal(before, after)
        assert np.array_equal(after, extractor.extract(decoder.decode(image_bytes(2))))

    def test_skips_unreadable_and_prunes_deleted(self, store, cache, decoder, extractor, image_bytes):
        store.write_image("zoo", "good.png", image_bytes(1))
        store.write_image("zoo", "gone.png", image_bytes(2))
        loader = ProjectLoader(store, cache, decoder, extractor,
                               BatchProcessor(show_progress=False))
        loader.load("zoo")

        store.delete_image("zoo", "gone.png")
        store.write_image("zoo", "broken.png", b"garbage bytes")
        (store.project_path("zoo") / "readme.txt").write_text("ignored")

        loaded = loader.load("zoo")

        assert [name for name, _ in loaded] == ["good.png"]
        assert cache.count("zoo") == 1


class TestServiceRestart:

    def test_state_survives_restart(self, service_config, image_bytes):
        with VisualMatchService(service_config) as service:
            for seed, name in enumerate(["cat.png", "dog.png", "owl.png"]):
                service.ingestor.ingest("zoo", name, image_bytes(seed))
            before = service.engine.query("zoo", image_bytes(1), k=3)

        with VisualMatchService(service_config) as service:
            # Nothing is loaded until first reference
            assert service.registry.list_projects() == []
            after = service.engine.query("zoo", image_bytes(1), k=3)

            assert service.cache.count("zoo") == 3

        assert [r.identifier for r in after] == [r.identifier for r in before]
        assert [r.distance for r in after] == [r.distance for r in before]

    def test_warm_up_loads_every_project(self, service_config, image_bytes):
        with VisualMatchService(service_config) as service:
            service.ingestor.ingest("zoo", "cat.png", image_bytes(1))
            service.ingestor.ingest("farm", "cow.png", image_bytes(2))
            service.ingestor.ingest("farm", "pig.png", image_bytes(3))

        with VisualMatchService(service_config) as service:
            assert service.warm_up() == 3
            assert service.registry.list_projects() == ["farm", "zoo"]

    def test_removed_image_stays_removed(self, service_config, image_bytes):
        with VisualMatchService(service_config) as service:
            service.ingestor.ingest("zoo", "cat.png", image_bytes(1))
            service.ingestor.ingest("zoo", "dog.png", image_bytes(2))
            service.ingestor.remove("zoo", "cat.png")

        with VisualMatchService(service_config) as service:
            results = service.engine.query("zoo", image_bytes(1), k=5)
            assert [r.identifier for r in results] == ["dog.png"]

    def test_unknown_project_after_restart(self, service_config, image_bytes):
        with VisualMatchService(service_config) as service:
            with pytest.raises(ProjectNotFound):
                service.engine.query("zoo", image_bytes(1))

    def test_cache_disabled(self, service_config, image_bytes):
        service_config.feature_extraction.cache_features = False

        with VisualMatchService(service_config) as service:
            assert service.cache is None
            service.ingestor.ingest("zoo", "cat.png", image_bytes(1))

        with VisualMatchService(service_config) as service:
            assert service.engine.query("zoo", image_bytes(1), k=1)[0].distance == 0.0

    def test_status_and_idle_maintenance(self, service_config, image_bytes):
        service_config.registry.max_idle_seconds = 0
        service_config.memory_limit_gb = 0

        with VisualMatchService(service_config) as service:
            service.ingestor.ingest("zoo", "cat.png", image_bytes(1))
            service.engine.query("zoo", image_bytes(1))

            status = service.status()
            assert [p['project_id'] for p in status['projects']] == ["zoo"]
            assert status['projects'][0]['size'] == 1
            assert status['query_timings']['count'] == 1
            assert 'memory_total_gb' in status['system']

            assert service.maintain() == ["zoo"]
            assert service.registry.list_projects() == []

            # Evicted projects come back from disk on next use
            assert service.engine.query("zoo", image_bytes(1), k=1)[0].identifier == "cat.png"
