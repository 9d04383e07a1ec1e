# components/duplicate_detector.py

import logging
from typing import List, Optional

import numpy as np
from skimage.metrics import structural_similarity as ssim

from core.errors import DecodeError
from core.models import NearDuplicate
from utils.image_utils import to_grayscale

logger = logging.getLogger(__name__)

SSIM_SIZE = (256, 256)


class NearDuplicateFinder:
    """
    Retrieves near-duplicates of an image for manual verification

    Stage 1: fingerprint distance filter (the regular similarity query)
    Stage 2: optional SSIM check against the stored image bytes
    """

    def __init__(self, engine, store,
                 distance_threshold: float = 10.0,
                 ssim_threshold: float = 0.90,
                 enable_ssim: bool = True,
                 max_candidates: int = 20):
        self.engine = engine
        self.store = store
        self.distance_threshold = distance_threshold
        self.ssim_threshold = ssim_threshold
        self.enable_ssim = enable_ssim
        self.max_candidates = max_candidates

    def find(self, project_id: str, raw_image: bytes,
             k: int = None,
             max_distance: float = None,
             verify: bool = None,
             with_image: bool = True) -> List[NearDuplicate]:
        """
        Find stored images within max_distance of raw_image.

        Args:
            project_id: Project to search
            raw_image: Encoded query image
            k: Maximum candidates to consider
            max_distance: Distance threshold (config default if None)
            verify: Compute SSIM against each candidate (config default if None)
            with_image: Attach stored image bytes for review

        Returns:
            Near-duplicates ordered by distance
        """
        k = self.max_candidates if k is None else k
        max_distance = self.distance_threshold if max_distance is None else max_distance
        verify = self.enable_ssim if verify is None else verify

        results = self.engine.query(project_id, raw_image, k=k)
        candidates = [r for r in results if r.distance <= max_distance]

        query_gray = None
        if verify and candidates:
            query_gray = to_grayscale(self.engine.decoder.decode(raw_image), SSIM_SIZE)

        duplicates = []
        for result in candidates:
            data = self._read_stored(project_id, result.identifier)
            if data is None:
                continue

            duplicate = NearDuplicate(result=result,
                                      image_data=data if with_image else None)

            if query_gray is not None:
                duplicate.ssim = self._ssim(query_gray, data)
                duplicate.verified = (duplicate.ssim is not None
                                      and duplicate.ssim >= self.ssim_threshold)

            duplicates.append(duplicate)

        logger.info(
            f"Near-duplicate search on <{project_id}>: {len(results)} candidates, "
            f"{len(duplicates)} within distance {max_distance}"
        )
        return duplicates

    def _read_stored(self, project_id: str, identifier: str) -> Optional[bytes]:
        try:
            return self.store.read_image(project_id, identifier)
        except FileNotFoundError:
            # Removed after the query ran
            logger.debug(f"<{project_id}/{identifier}> vanished before verification")
            return None

    def _ssim(self, query_gray: np.ndarray, data: bytes) -> Optional[float]:
        try:
            candidate = to_grayscale(self.engine.decoder.decode(data), SSIM_SIZE)
        except DecodeError as e:
            logger.warning(f"Cannot verify candidate with SSIM: {e}")
            return None

        return float(ssim(query_gray, candidate, data_range=255))
