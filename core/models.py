# core/models.py

from dataclasses import dataclass, field
from typing import NamedTuple, Optional

import numpy as np


@dataclass(frozen=True)
class ImageRecord:
    """A fingerprinted image owned by exactly one ProjectIndex"""
    identifier: str
    vector: np.ndarray = field(repr=False, compare=False)
    sequence: int
    inserted_at: float


class InsertResult(NamedTuple):
    record: ImageRecord
    previous: Optional[ImageRecord]


@dataclass(frozen=True)
class SimilarityResult:
    """One ranked hit of a top-k query. Produced fresh per query."""
    identifier: str
    distance: float
    rank: int

    @property
    def similarity(self) -> float:
        # Same 0-1 mapping the flat L2 index used
        return 1.0 / (1.0 + self.distance)

    def to_dict(self) -> dict:
        return {
            'identifier': self.identifier,
            'distance': self.distance,
            'similarity': self.similarity,
            'rank': self.rank,
        }


@dataclass
class NearDuplicate:
    """Container for a near-duplicate candidate awaiting manual verification"""
    result: SimilarityResult
    image_data: Optional[bytes] = field(default=None, repr=False)
    ssim: Optional[float] = None
    verified: bool = False

    @property
    def identifier(self) -> str:
        return self.result.identifier

    @property
    def distance(self) -> float:
        return self.result.distance


@dataclass(frozen=True)
class IngestResult:
    project_id: str
    identifier: str
    checksum: str
    sequence: int
    replaced: bool
