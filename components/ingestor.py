# components/ingestor.py

import logging
import sqlite3
import threading
import time

from core.errors import PersistenceFailure
from core.models import IngestResult
from security.input_validation import SecurityValidator
from utils.file_utils import content_checksum

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


class Ingestor:
    """
    Adds uploaded images to a project: fingerprint, index, persist.

    The image file written into the project directory is the durable
    record. If that write fails the in-memory insertion is rolled back so
    memory and disk never disagree. The fingerprint cache is an
    accelerator only; failing to update it is logged, not fatal.

    Index insert, disk write and rollback for one (project, identifier)
    run under a striped lock, so concurrent uploads of the same name are
    applied to memory and disk in the same order.
    """

    def __init__(self, registry, store, engine, cache=None,
                 require_unique: bool = False, perf_logger=None):
        self.registry = registry
        self.store = store
        self.engine = engine
        self.cache = cache
        self.require_unique = require_unique
        self.perf_logger = perf_logger
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def ingest(self, project_id: str, identifier: str, raw_image: bytes) -> IngestResult:
        """
        Fingerprint and store an uploaded image.

        Args:
            project_id: Target project (created if it does not exist)
            identifier: File name of the image inside the project
            raw_image: Encoded image bytes, stored unchanged

        Raises:
            InvalidIdentifier: unsafe project id or identifier
            InvalidImage: bytes cannot be decoded
            DuplicateIdentifier: identifier exists and uniqueness is required
            PersistenceFailure: the image could not be written to disk
        """
        start = time.time()

        SecurityValidator.validate_project_id(project_id)
        SecurityValidator.validate_identifier(identifier)

        vector = self.engine.fingerprint(raw_image)
        checksum = content_checksum(raw_image)

        logger.info(f"Received upload <{identifier}> for project <{project_id}>")

        with self.registry.acquire(project_id, create=True) as index, \
                self._lock_for(project_id, identifier):
            record, previous = index.insert(identifier, vector, unique=self.require_unique)

            try:
                self.store.write_image(project_id, identifier, raw_image)
            except OSError as e:
                index.rollback(record, previous)
                logger.error(f"Failed to persist <{project_id}/{identifier}>, rolled back: {e}")
                raise PersistenceFailure(
                    f"Error while saving image <{identifier}> to project <{project_id}>: {e}"
                ) from e

            self._cache_fingerprint(project_id, identifier, checksum, vector)

        elapsed = time.time() - start
        logger.info(f"Indexed <{identifier}> in project <{project_id}> ({elapsed:.3f}s)")
        if self.perf_logger is not None:
            self.perf_logger.log_metric('ingest', elapsed, project_id=project_id)

        return IngestResult(
            project_id=project_id,
            identifier=identifier,
            checksum=checksum,
            sequence=record.sequence,
            replaced=previous is not None
        )

    def remove(self, project_id: str, identifier: str) -> bool:
        """
        Delete an image from a project, disk first.

        Returns:
            True if the image existed on disk or in the index
        """
        SecurityValidator.validate_project_id(project_id)
        SecurityValidator.validate_identifier(identifier)

        with self.registry.acquire(project_id, create=False) as index, \
                self._lock_for(project_id, identifier):
            try:
                deleted = self.store.delete_image(project_id, identifier)
            except OSError as e:
                raise PersistenceFailure(
                    f"Error while deleting image <{identifier}> from project <{project_id}>: {e}"
                ) from e

            removed = index.remove(identifier)

            if self.cache is not None:
                try:
                    self.cache.delete(project_id, identifier)
                except sqlite3.Error as e:
                    logger.warning(f"Cannot drop cached fingerprint for <{project_id}/{identifier}>: {e}")

        if deleted or removed:
            logger.info(f"Removed <{identifier}> from project <{project_id}>")
        return deleted or removed

    def _cache_fingerprint(self, project_id, identifier, checksum, vector):
        if self.cache is None:
            return
        try:
            self.cache.put(project_id, identifier, self.engine.extractor.name, checksum, vector)
        except sqlite3.Error as e:
            logger.warning(f"Cannot cache fingerprint for <{project_id}/{identifier}>: {e}")

    def _lock_for(self, project_id: str, identifier: str) -> threading.Lock:
        return self._locks[hash((project_id, identifier)) % LOCK_STRIPES]
