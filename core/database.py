# core/database.py

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Optional

import numpy as np

logger = logging.getLogger(__name__)


class FingerprintCache:
    """
    SQLite cache of extracted fingerprints, keyed by project, identifier
    and feature type, and validated against the image content checksum.

    A cached vector is only returned while the file it was computed from
    is unchanged; anything else is a miss and gets recomputed.
    """

    def __init__(self, db_path: str = "data/fingerprints.db"):
        self.db_path = db_path
        self.conn = None
        self._lock = threading.Lock()
        self._initialize_database()

    def _initialize_database(self):
        """Create database schema"""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)

        with self._lock:
            cursor = self.conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS fingerprints (
                    project_id TEXT NOT NULL,
                    identifier TEXT NOT NULL,
                    feature_type TEXT NOT NULL,
                    checksum TEXT NOT NULL,
                    dimension INTEGER NOT NULL,
                    feature_vector BLOB NOT NULL,
                    extraction_date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (project_id, identifier, feature_type)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_fingerprints_project
                ON fingerprints(project_id, feature_type)
            """)

            self.conn.commit()

    def get(self, project_id: str, identifier: str, feature_type: str,
            checksum: str, dimension: int) -> Optional[np.ndarray]:
        """Cached vector, or None if missing or stale"""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("""
                SELECT checksum, dimension, feature_vector FROM fingerprints
                WHERE project_id = ? AND identifier = ? AND feature_type = ?
            """, (project_id, identifier, feature_type))
            result = cursor.fetchone()

        if result is None:
            return None

        cached_checksum, cached_dimension, blob = result
        if cached_checksum != checksum or cached_dimension != dimension:
            return None

        vector = np.frombuffer(blob, dtype=np.float32)
        if vector.shape[0] != dimension:
            logger.warning(f"Corrupt cache row for <{project_id}/{identifier}>, ignoring")
            return None

        return vector.copy()

    def put(self, project_id: str, identifier: str, feature_type: str,
            checksum: str, vector: np.ndarray):
        """Cache extracted features"""
        vector = np.asarray(vector, dtype=np.float32)

        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("""
                INSERT OR REPLACE INTO fingerprints
                (project_id, identifier, feature_type, checksum, dimension, feature_vector)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (project_id, identifier, feature_type, checksum,
                  int(vector.shape[0]), vector.tobytes()))
            self.conn.commit()

    def delete(self, project_id: str, identifier: str) -> int:
        """Drop every cached feature type for one image"""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("""
                DELETE FROM fingerprints WHERE project_id = ? AND identifier = ?
            """, (project_id, identifier))
            self.conn.commit()
            return cursor.rowcount

    def prune(self, project_id: str, keep: Iterable[str]) -> int:
        """Remove rows for images that no longer exist in the project"""
        keep = set(keep)

        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("""
                SELECT DISTINCT identifier FROM fingerprints WHERE project_id = ?
            """, (project_id,))
            stale = [(project_id, row[0]) for row in cursor.fetchall()
                     if row[0] not in keep]

            if stale:
                cursor.executemany("""
                    DELETE FROM fingerprints WHERE project_id = ? AND identifier = ?
                """, stale)
                self.conn.commit()

        if stale:
            logger.info(f"Pruned {len(stale)} stale cache entries from <{project_id}>")
        return len(stale)

    def projects(self):
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT DISTINCT project_id FROM fingerprints ORDER BY project_id")
            return [row[0] for row in cursor.fetchall()]

    def count(self, project_id: str = None) -> int:
        with self._lock:
            cursor = self.conn.cursor()
            if project_id is None:
                cursor.execute("SELECT COUNT(*) FROM fingerprints")
            else:
                cursor.execute(
                    "SELECT COUNT(*) FROM fingerprints WHERE project_id = ?",
                    (project_id,)
                )
            return cursor.fetchone()[0]

    def compact(self):
        """Reclaim space after many deletes"""
        with self._lock:
            self.conn.execute("VACUUM")

    def close(self):
        """Close database connection"""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
