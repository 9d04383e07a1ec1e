# tests/conftest.py

"""Shared fixtures: synthetic images, encoders and a wired-up engine."""

import cv2
import numpy as np
import pytest

from components.ingestor import Ingestor
from components.similarity_search import SimilarityEngine
from config import SystemConfig
from core.feature_extractors import PerceptualHashExtractor
from core.image_decoder import ImageDecoder
from core.project_store import ProjectStore
from core.registry import IndexRegistry


def blocky_image(seed: int, size: int = 256, blocks: int = 8) -> np.ndarray:
    """Random coarse blocks upscaled to size x size. Stable under re-encoding."""
    rng = np.random.RandomState(seed)
    small = rng.randint(0, 256, (blocks, blocks, 3), dtype=np.uint8)
    return cv2.resize(small, (size, size), interpolation=cv2.INTER_NEAREST)


def encode(image: np.ndarray, ext: str = '.png', **params) -> bytes:
    flags = []
    if ext in ('.jpg', '.jpeg'):
        flags = [cv2.IMWRITE_JPEG_QUALITY, params.get('quality', 95)]
    ok, buf = cv2.imencode(ext, image, flags)
    assert ok
    return buf.tobytes()


@pytest.fixture
def make_image():
    """Factory for deterministic synthetic images"""
    return blocky_image


@pytest.fixture
def image_bytes():
    """Factory for encoded synthetic images: image_bytes(seed, ext='.png')"""
    def _make(seed: int, ext: str = '.png', **params) -> bytes:
        return encode(blocky_image(seed), ext, **params)
    return _make


@pytest.fixture
def extractor():
    return PerceptualHashExtractor(method='phash', hash_size=8)


@pytest.fixture
def decoder():
    return ImageDecoder(max_image_dimension=512)


@pytest.fixture
def store(tmp_path):
    return ProjectStore(str(tmp_path / "image_root"))


@pytest.fixture
def registry(extractor):
    return IndexRegistry(dimension=extractor.dimension, metric="hamming")


@pytest.fixture
def engine(registry, decoder, extractor):
    return SimilarityEngine(registry, decoder, extractor, default_k=3, max_results=10)


@pytest.fixture
def ingestor(registry, store, engine):
    return Ingestor(registry, store, engine)


@pytest.fixture
def service_config(tmp_path):
    """Config rooted in tmp_path, with small hashes for speed"""
    config = SystemConfig()
    config.n_workers = 2
    config.project_root = str(tmp_path / "image_root")
    config.database_path = str(tmp_path / "data" / "fingerprints.db")
    config.log_dir = str(tmp_path / "logs")
    config.feature_extraction.hash_size = 8
    return config
