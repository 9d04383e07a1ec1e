# core/batch_processor.py

import logging
import os
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from core.errors import DecodeError
from utils.file_utils import content_checksum

logger = logging.getLogger(__name__)


class BatchProcessor:
    """
    Parallel processing for project-sized batches of images

    Threads rather than processes: decoding and hashing release the GIL
    in OpenCV/numpy, and the extractor objects stay shared.
    """

    def __init__(self, n_workers: int = None, show_progress: bool = True):
        self.n_workers = n_workers or os.cpu_count() or 1
        self.show_progress = show_progress

    def process_parallel(self, items: List[Any],
                         process_func: Callable,
                         desc: str = "Processing images") -> List[Any]:
        """
        Apply process_func to every item, preserving order

        Args:
            items: Work items
            process_func: Function to apply to each item
            desc: Progress bar label

        Returns:
            List of processing results
        """
        if not items:
            return []

        with ThreadPoolExecutor(max_workers=self.n_workers) as executor:
            results = list(tqdm(
                executor.map(process_func, items),
                total=len(items),
                desc=desc,
                disable=not self.show_progress
            ))

        return results


class ProjectLoader:
    """
    Rebuilds a project's (identifier, fingerprint) pairs from its directory

    Cached fingerprints are reused while the file checksum matches; the
    rest are recomputed in parallel and written back to the cache.
    Unreadable images are logged and skipped.
    """

    def __init__(self, store, cache, decoder, extractor,
                 batch_processor: BatchProcessor = None):
        self.store = store
        self.cache = cache
        self.decoder = decoder
        self.extractor = extractor
        self.batch_processor = batch_processor or BatchProcessor()

    def exists(self, project_id: str) -> bool:
        return self.store.project_exists(project_id)

    def load(self, project_id: str) -> List[Tuple[str, np.ndarray]]:
        identifiers = self.store.list_images(project_id)

        logger.info(f"Loading {len(identifiers)} images from project <{project_id}>")

        results = self.batch_processor.process_parallel(
            identifiers,
            lambda identifier: self._fingerprint(project_id, identifier),
            desc=f"Fingerprinting {project_id}"
        )

        loaded = [(identifier, vector)
                  for identifier, vector in zip(identifiers, results)
                  if vector is not None]

        if self.cache is not None:
            self.cache.prune(project_id, keep=[identifier for identifier, _ in loaded])

        skipped = len(identifiers) - len(loaded)
        if skipped:
            logger.warning(f"Skipped {skipped} unreadable images in project <{project_id}>")
        logger.info(f"Loaded {len(loaded)} entries from project <{project_id}>")

        return loaded

    def _fingerprint(self, project_id: str, identifier: str) -> Optional[np.ndarray]:
        try:
            data = self.store.read_image(project_id, identifier)
        except OSError as e:
            logger.warning(f"Cannot read <{project_id}/{identifier}>: {e}")
            return None

        checksum = content_checksum(data)

        if self.cache is not None:
            cached = self.cache.get(project_id, identifier, self.extractor.name,
                                    checksum, self.extractor.dimension)
            if cached is not None:
                return cached

        try:
            vector = self.extractor.extract(self.decoder.decode(data))
        except DecodeError as e:
            logger.warning(f"Cannot fingerprint <{project_id}/{identifier}>: {e}")
            return None

        if self.cache is not None:
            try:
                self.cache.put(project_id, identifier, self.extractor.name, checksum, vector)
            except sqlite3.Error as e:
                logger.warning(f"Cannot cache fingerprint for <{project_id}/{identifier}>: {e}")

        return vector
