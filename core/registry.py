# core/registry.py

import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from core.errors import ProjectNotFound, ProjectUnavailable
from core.project_index import ProjectIndex

logger = logging.getLogger(__name__)


class _RegistryEntry:
    """Bookkeeping for one registered project. Guarded by the registry lock."""

    def __init__(self, index: ProjectIndex, now: float):
        self.index = index
        self.last_access = now
        self.active = 0
        self.evicting = False
        self.ready = threading.Event()
        self.error: Optional[BaseException] = None


class IndexRegistry:
    """
    Process-wide map from project id to its ProjectIndex.

    The registry is the only place that constructs or destroys a
    ProjectIndex. Callers borrow an index through `acquire()` for the
    duration of one operation and must not keep it afterwards.

    Locking: a single lock guards the map itself and is only held while
    an entry is looked up, registered or removed. Loading a project from
    disk, searching and inserting all happen outside it, so one busy
    project never stalls another.

    Lifecycle: an entry is created on first reference and populated
    exactly once (concurrent first callers wait for the same load). It is
    destroyed only by `evict()` / `close()`, which drains in-flight
    handles before closing the index.
    """

    def __init__(self, dimension: int, metric: str = "hamming",
                 loader=None, clock=time.monotonic):
        """
        Args:
            dimension: Fingerprint dimensionality shared by every project
            metric: Distance metric name shared by every project
            loader: Optional object with exists(project_id) and
                    load(project_id) -> [(identifier, vector)], used to
                    populate new entries from durable state
            clock: Monotonic time source for last-access tracking
        """
        self.dimension = dimension
        self.metric = metric
        self.loader = loader
        self._clock = clock

        self._lock = threading.Lock()
        self._drained = threading.Condition(self._lock)
        self._entries: Dict[str, _RegistryEntry] = {}

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @contextmanager
    def acquire(self, project_id: str, create: bool = True) -> Iterator[ProjectIndex]:
        """
        Borrow the index for project_id for the duration of a with-block.

        Args:
            project_id: Project identifier
            create: Register the project if it is unknown. When False the
                    project must be registered already or exist on disk.

        Raises:
            ProjectNotFound: create is False and the project is unknown
            ProjectUnavailable: the project is being evicted or failed to load
        """
        entry = self._enter(project_id, create)
        try:
            yield entry.index
        finally:
            self._leave(entry)

    def get_or_create(self, project_id: str) -> ProjectIndex:
        """
        Return the index for project_id, registering it on first reference.

        The reference is for diagnostics and tests; operations should go
        through acquire() so eviction can account for them.
        """
        with self.acquire(project_id, create=True) as index:
            return index

    def has_project(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._entries

    def list_projects(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def stats(self) -> List[dict]:
        """Per-project size and activity, for diagnostics"""
        now = self._clock()
        with self._lock:
            entries = list(self._entries.items())

        return [
            {
                'project_id': project_id,
                'size': entry.index.size() if entry.ready.is_set() and not entry.index.closed else 0,
                'active': entry.active,
                'evicting': entry.evicting,
                'idle_seconds': now - entry.last_access,
            }
            for project_id, entry in sorted(entries)
        ]

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def evict(self, project_id: str, timeout: float = None) -> bool:
        """
        Remove and close a project's index once in-flight operations finish.

        While draining, new acquisitions fail with ProjectUnavailable.
        Must not be called by a thread that holds a handle on the same
        project.

        Args:
            project_id: Project to evict
            timeout: Seconds to wait for in-flight handles (None waits forever)

        Returns:
            True if evicted; False if not registered or the drain timed out
        """
        with self._lock:
            entry = self._entries.get(project_id)
            if entry is None or entry.evicting:
                return False

            entry.evicting = True
            drained = self._drained.wait_for(lambda: entry.active == 0, timeout)

            if not drained:
                entry.evicting = False
                logger.warning(
                    f"Eviction of <{project_id}> timed out with {entry.active} operations in flight"
                )
                return False

            del self._entries[project_id]

        entry.index.close()
        logger.info(f"Evicted project <{project_id}>")
        return True

    def evict_idle(self, max_idle_seconds: float, timeout: float = 0) -> List[str]:
        """Evict every project not accessed for max_idle_seconds"""
        now = self._clock()
        with self._lock:
            candidates = [
                project_id for project_id, entry in self._entries.items()
                if entry.active == 0 and now - entry.last_access >= max_idle_seconds
            ]

        return [p for p in candidates if self.evict(p, timeout=timeout)]

    def evict_under_pressure(self, monitor, timeout: float = 0) -> List[str]:
        """
        Evict least recently used idle projects until the memory monitor
        reports the process back under its limit.
        """
        if not monitor.over_limit():
            return []

        with self._lock:
            idle = sorted(
                (entry.last_access, project_id)
                for project_id, entry in self._entries.items()
                if entry.active == 0 and not entry.evicting
            )

        evicted = []
        for _, project_id in idle:
            if not monitor.over_limit():
                break
            if self.evict(project_id, timeout=timeout):
                evicted.append(project_id)

        if monitor.over_limit():
            logger.warning(
                f"Memory still above limit after evicting {len(evicted)} idle projects"
            )
        return evicted

    def close(self, timeout: float = None):
        """Evict every project (process shutdown)"""
        for project_id in self.list_projects():
            self.evict(project_id, timeout=timeout)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _register(self, project_id: str, create: bool):
        """Find or create the entry and take a handle on it. Returns (entry, is_new)."""
        with self._lock:
            entry = self._entries.get(project_id)
            if entry is not None:
                return self._take(project_id, entry), False

        if not create and not (self.loader is not None and self.loader.exists(project_id)):
            raise ProjectNotFound(project_id)

        with self._lock:
            # Another thread may have registered it while we checked the disk
            entry = self._entries.get(project_id)
            if entry is not None:
                return self._take(project_id, entry), False

            entry = _RegistryEntry(
                ProjectIndex(project_id, self.dimension, self.metric),
                self._clock()
            )
            self._entries[project_id] = entry
            return self._take(project_id, entry), True

    def _take(self, project_id: str, entry: _RegistryEntry) -> _RegistryEntry:
        # Caller holds self._lock
        if entry.evicting:
            raise ProjectUnavailable(project_id)
        entry.active += 1
        entry.last_access = self._clock()
        return entry

    def _enter(self, project_id: str, create: bool) -> _RegistryEntry:
        entry, is_new = self._register(project_id, create)

        if is_new:
            try:
                self._populate(project_id, entry)
            except BaseException as e:
                with self._lock:
                    entry.error = e
                    if self._entries.get(project_id) is entry:
                        del self._entries[project_id]
                entry.ready.set()
                self._leave(entry)
                entry.index.close()
                raise
            entry.ready.set()
            return entry

        entry.ready.wait()
        if entry.error is not None:
            self._leave(entry)
            raise ProjectUnavailable(project_id, f"failed to load: {entry.error}") from entry.error

        return entry

    def _populate(self, project_id: str, entry: _RegistryEntry):
        if self.loader is None:
            logger.info(f"Registered new project <{project_id}>")
            return

        start = time.time()
        count = entry.index.bulk_insert(self.loader.load(project_id))
        logger.info(
            f"Registered project <{project_id}> with {count} images "
            f"in {time.time() - start:.3f}s"
        )

    def _leave(self, entry: _RegistryEntry):
        with self._lock:
            entry.active -= 1
            if entry.active == 0:
                self._drained.notify_all()
