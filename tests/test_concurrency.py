# tests/test_concurrency.py

import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from components.ingestor import Ingestor
from components.request_pool import RequestExecutor
from core.errors import DeadlineExceeded, InvalidImage
from core.project_index import ProjectIndex
from core.project_store import ProjectStore

DIM = 64


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_concurrent_inserts_are_all_kept(seed):
    """N concurrent inserts of distinct identifiers leave exactly N records"""
    rng = np.random.RandomState(seed)
    jitter = random.Random(seed)
    index = ProjectIndex("p", DIM)
    items = [(f"{i}.png", rng.randint(0, 2, DIM).astype(np.float32)) for i in range(200)]
    delays = [jitter.random() * 0.002 for _ in items]

    def insert(args):
        (identifier, vector), delay = args
        time.sleep(delay)
        index.insert(identifier, vector)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(insert, zip(items, delays)))

    assert len(index) == len(items)
    for identifier, vector in items[::20]:
        assert index.search(vector, k=1)[0].identifier == identifier


def test_search_never_sees_torn_records():
    """A record replaced under concurrent search is seen whole, old or new"""
    index = ProjectIndex("p", DIM)
    zeros = np.zeros(DIM, dtype=np.float32)
    ones = np.ones(DIM, dtype=np.float32)
    index.insert("flip.png", zeros)
    stop = threading.Event()
    observed = set()
    failures = []

    def writer():
        i = 0
        while not stop.is_set():
            index.insert("flip.png", ones if i % 2 else zeros)
            i += 1
            time.sleep(0.0001)

    def reader():
        while not stop.is_set():
            results = index.search(zeros, k=5)
            if len(results) != 1:
                failures.append(results)
            observed.add(results[0].distance)

    threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    time.sleep(0.5)
    stop.set()
    for t in threads:
        t.join(5)

    assert not failures
    assert observed <= {0.0, float(DIM)}


def test_searches_during_inserts_stay_sorted():
    index = ProjectIndex("p", DIM)
    rng = np.random.RandomState(3)
    vectors = rng.randint(0, 2, (300, DIM)).astype(np.float32)
    query = vectors[0]
    problems = []
    done = threading.Event()

    def reader():
        while not done.is_set():
            results = index.search(query, k=10)
            distances = [r.distance for r in results]
            if distances != sorted(distances) or [r.rank for r in results] != list(range(1, len(results) + 1)):
                problems.append(results)

    readers = [threading.Thread(target=reader) for _ in range(3)]
    for t in readers:
        t.start()
    for i, vector in enumerate(vectors):
        index.insert(f"{i}.png", vector)
    done.set()
    for t in readers:
        t.join(5)

    assert not problems
    assert index.search(query, k=1)[0].identifier == "0.png"


def test_concurrent_ingest_across_projects(ingestor, engine, registry, image_bytes):
    """Uploads to different projects never leak into each other"""
    jobs = [("zoo" if i % 2 else "farm", f"img_{i}.png", image_bytes(i)) for i in range(12)]

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(lambda job: ingestor.ingest(*job), jobs))

    for project_id in ("zoo", "farm"):
        expected = {name for p, name, _ in jobs if p == project_id}
        results = engine.query(project_id, image_bytes(0), k=20)
        assert {r.identifier for r in results} == expected


def test_concurrent_queries_on_new_project_load_once(ingestor, engine, registry, image_bytes):
    ingestor.ingest("zoo", "cat.png", image_bytes(1))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: engine.query("zoo", image_bytes(1), k=1), range(16)))

    assert all(r[0].identifier == "cat.png" for r in results)
    assert registry.list_projects() == ["zoo"]


class TestRequestExecutor:

    def test_query_and_ingest_through_pool(self, ingestor, engine, image_bytes):
        with RequestExecutor(engine, ingestor, n_workers=4, default_timeout=10) as executor:
            futures = [executor.submit_ingest("zoo", f"{i}.png", image_bytes(i)) for i in range(4)]
            for f in futures:
                f.result(10)

            results = executor.query("zoo", image_bytes(2), k=1)

        assert results[0].identifier == "2.png"

    def test_deadline_exceeded(self):
        release = threading.Event()

        with RequestExecutor(None, None, n_workers=1) as executor:
            with pytest.raises(DeadlineExceeded):
                executor.run(release.wait, 5, timeout=0.05)
            release.set()

    def test_errors_propagate_to_caller(self, ingestor, engine):
        with RequestExecutor(engine, ingestor, n_workers=1) as executor:
            with pytest.raises(InvalidImage):
                executor.query("zoo", b"junk")


class StallingStore(ProjectStore):
    """Holds the first write until a second write lands, or a timeout passes"""

    def __init__(self, root):
        super().__init__(root)
        self.first_writing = threading.Event()
        self.second_written = threading.Event()
        self._writes = 0
        self._count_lock = threading.Lock()

    def write_image(self, project_id, identifier, data):
        with self._count_lock:
            self._writes += 1
            first = self._writes == 1
        if first:
            self.first_writing.set()
            self.second_written.wait(0.5)
            return super().write_image(project_id, identifier, data)
        path = super().write_image(project_id, identifier, data)
        self.second_written.set()
        return path


def test_same_identifier_ingests_keep_index_and_disk_in_step(tmp_path, registry, engine, image_bytes):
    store = StallingStore(str(tmp_path / "stalling_root"))
    ingestor = Ingestor(registry, store, engine)

    first = threading.Thread(target=ingestor.ingest, args=("zoo", "x.png", image_bytes(1)))
    first.start()
    assert store.first_writing.wait(5)
    second = threading.Thread(target=ingestor.ingest, args=("zoo", "x.png", image_bytes(2)))
    second.start()
    first.join(5)
    second.join(5)

    on_disk = store.read_image("zoo", "x.png")
    assert on_disk == image_bytes(2)
    [result] = engine.query("zoo", on_disk, k=1)
    assert result.identifier == "x.png"
    assert result.distance == 0.0
