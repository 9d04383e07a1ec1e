# core/project_index.py

import heapq
import itertools
import logging
import threading
import time
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

import numpy as np

from core.errors import DimensionMismatch, DuplicateIdentifier, IndexClosed
from core.metrics import get_metric
from core.models import ImageRecord, InsertResult, SimilarityResult
from core.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)


class _Snapshot(NamedTuple):
    identifiers: Tuple[str, ...]
    sequences: Tuple[int, ...]
    matrix: np.ndarray


class ProjectIndex:
    """
    Exact nearest-neighbour index over the fingerprints of one project.

    Search is a linear scan over an immutable snapshot of the stored
    vectors with a bounded top-k heap. For project folders of hundreds to
    low thousands of images this keeps every insertion visible to the very
    next query, with no approximate structure to retrain or go stale.

    Concurrency: inserts and removes are serialized by the write side of a
    readers/writer lock. Searches only hold the read side while grabbing
    the current snapshot, then rank outside the lock. Records are never
    mutated in place; a replace swaps the whole record under the write
    lock, so a search sees either the old or the new vector.
    """

    def __init__(self, project_id: str, dimension: int, metric: str = "hamming"):
        if dimension <= 0:
            raise ValueError(f"Dimension must be positive, got {dimension}")

        self.project_id = project_id
        self.dimension = dimension
        self.metric = metric
        self._distance = get_metric(metric)

        self._lock = ReadWriteLock()
        self._snapshot_lock = threading.Lock()
        self._records: Dict[str, ImageRecord] = {}
        self._snapshot: Optional[_Snapshot] = None
        self._sequence = itertools.count()
        self._closed = False

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, identifier: str, vector: np.ndarray,
               unique: bool = False) -> InsertResult:
        """
        Add or replace the record for identifier.

        Args:
            identifier: Project-relative image identifier
            vector: Fingerprint with the index's dimensionality
            unique: Fail with DuplicateIdentifier instead of replacing

        Returns:
            InsertResult with the new record and the record it replaced
        """
        vector = self._check_vector(vector)

        with self._lock.write_locked():
            self._ensure_open()

            previous = self._records.get(identifier)
            if unique and previous is not None:
                raise DuplicateIdentifier(self.project_id, identifier)

            record = ImageRecord(
                identifier=identifier,
                vector=vector,
                sequence=next(self._sequence),
                inserted_at=time.time()
            )
            self._records[identifier] = record
            self._snapshot = None

        return InsertResult(record, previous)

    def bulk_insert(self, items: Iterable[Tuple[str, np.ndarray]]) -> int:
        """Insert many (identifier, vector) pairs in one writer section"""
        checked = [(identifier, self._check_vector(vector))
                   for identifier, vector in items]

        with self._lock.write_locked():
            self._ensure_open()
            now = time.time()
            for identifier, vector in checked:
                self._records[identifier] = ImageRecord(
                    identifier=identifier,
                    vector=vector,
                    sequence=next(self._sequence),
                    inserted_at=now
                )
            self._snapshot = None

        return len(checked)

    def remove(self, identifier: str) -> bool:
        """Delete the record if present. Returns False when it was absent."""
        with self._lock.write_locked():
            self._ensure_open()
            if self._records.pop(identifier, None) is None:
                return False
            self._snapshot = None
        return True

    def rollback(self, record: ImageRecord,
                 previous: Optional[ImageRecord]) -> bool:
        """
        Undo an insert whose durable write failed.

        Only acts if the slot still holds `record`; an insert that landed
        after it is left alone.
        """
        with self._lock.write_locked():
            if self._closed:
                return False
            if self._records.get(record.identifier) is not record:
                return False

            if previous is None:
                del self._records[record.identifier]
            else:
                self._records[record.identifier] = previous
            self._snapshot = None

        logger.debug(f"Rolled back <{record.identifier}> in project <{self.project_id}>")
        return True

    def close(self):
        """Release all records. Further operations raise IndexClosed."""
        with self._lock.write_locked():
            self._closed = True
            self._records = {}
            self._snapshot = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(self, query_vector: np.ndarray, k: int = 10) -> List[SimilarityResult]:
        """
        Find the k stored fingerprints closest to query_vector.

        Args:
            query_vector: Query fingerprint
            k: Maximum number of results

        Returns:
            Results ranked best first; ties go to the earliest insertion
        """
        query = self._check_vector(query_vector)

        if k <= 0:
            return []

        with self._lock.read_locked():
            self._ensure_open()
            snapshot = self._current_snapshot()

        if not snapshot.identifiers:
            return []

        distances = self._distance(snapshot.matrix, query).tolist()

        best = heapq.nsmallest(
            k, zip(distances, snapshot.sequences, snapshot.identifiers)
        )

        return [
            SimilarityResult(identifier=identifier, distance=float(distance), rank=rank)
            for rank, (distance, _, identifier) in enumerate(best, 1)
        ]

    def get(self, identifier: str) -> Optional[ImageRecord]:
        with self._lock.read_locked():
            return self._records.get(identifier)

    def contains(self, identifier: str) -> bool:
        return self.get(identifier) is not None

    def identifiers(self) -> List[str]:
        with self._lock.read_locked():
            return sorted(self._records)

    def size(self) -> int:
        with self._lock.read_locked():
            return len(self._records)

    def __len__(self) -> int:
        return self.size()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_vector(self, vector) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32)
        if arr.ndim != 1 or arr.shape[0] != self.dimension:
            raise DimensionMismatch(self.dimension, arr.shape)

        # Stored vectors are private, read-only copies
        arr = arr.copy()
        arr.setflags(write=False)
        return arr

    def _ensure_open(self):
        if self._closed:
            raise IndexClosed(self.project_id)

    def _current_snapshot(self) -> _Snapshot:
        # Caller holds the read lock, so no writer can touch _records here
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot

        with self._snapshot_lock:
            if self._snapshot is None:
                records = list(self._records.values())
                if records:
                    matrix = np.vstack([r.vector for r in records])
                else:
                    matrix = np.empty((0, self.dimension), dtype=np.float32)
                matrix.setflags(write=False)

                self._snapshot = _Snapshot(
                    identifiers=tuple(r.identifier for r in records),
                    sequences=tuple(r.sequence for r in records),
                    matrix=matrix
                )
            return self._snapshot

    def __repr__(self):
        return (f"ProjectIndex(project_id={self.project_id!r}, "
                f"dimension={self.dimension}, metric={self.metric!r})")
