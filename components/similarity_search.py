# components/similarity_search.py

import logging
import time
from typing import List

import numpy as np

from core.errors import DecodeError, InvalidImage
from core.models import SimilarityResult

logger = logging.getLogger(__name__)


class SimilarityEngine:
    """
    Answers "which images in this project look like this one?"

    Decoding and fingerprinting run before any project lookup, so the
    registry handle is only held for the search itself.
    """

    def __init__(self, registry, decoder, extractor,
                 default_k: int = 3,
                 max_results: int = 100,
                 auto_create: bool = False,
                 perf_logger=None):
        """
        Args:
            registry: IndexRegistry owning the per-project indexes
            decoder: ImageDecoder for query bytes
            extractor: Fingerprint extractor shared with ingestion
            default_k: Results returned when the caller does not ask for k
            max_results: Upper bound on k
            auto_create: Register unknown projects on query instead of
                         raising ProjectNotFound
            perf_logger: Optional PerformanceLogger for query timings
        """
        self.registry = registry
        self.decoder = decoder
        self.extractor = extractor
        self.default_k = default_k
        self.max_results = max_results
        self.auto_create = auto_create
        self.perf_logger = perf_logger

    def fingerprint(self, raw_image: bytes) -> np.ndarray:
        """Decode and fingerprint image bytes, raising InvalidImage on bad input"""
        try:
            pixels = self.decoder.decode(raw_image)
            return self.extractor.extract(pixels)
        except DecodeError as e:
            raise InvalidImage(f"Cannot create image from upload: {e}", e) from e

    def query(self, project_id: str, raw_image: bytes, k: int = None) -> List[SimilarityResult]:
        """
        Rank a project's images by similarity to raw_image.

        Args:
            project_id: Project to search
            raw_image: Encoded query image
            k: Number of results (default_k if None, capped at max_results)

        Returns:
            Up to k results, best match first

        Raises:
            InvalidImage: query bytes cannot be decoded
            ProjectNotFound: unknown project and auto_create is off
            ProjectUnavailable: project is being evicted
        """
        start = time.time()

        k = self.default_k if k is None else min(k, self.max_results)
        vector = self.fingerprint(raw_image)

        with self.registry.acquire(project_id, create=self.auto_create) as index:
            results = index.search(vector, k)

        elapsed = time.time() - start
        logger.debug(
            f"Query on <{project_id}> returned {len(results)} results in {elapsed:.3f}s"
        )
        if self.perf_logger is not None:
            self.perf_logger.log_metric('query', elapsed, project_id=project_id,
                                        results=len(results))

        return results
