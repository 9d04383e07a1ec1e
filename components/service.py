# components/service.py

import logging
import time

from components.duplicate_detector import NearDuplicateFinder
from components.ingestor import Ingestor
from components.request_pool import RequestExecutor
from components.similarity_search import SimilarityEngine
from config import SystemConfig
from core.batch_processor import BatchProcessor, ProjectLoader
from core.database import FingerprintCache
from core.errors import InvalidIdentifier
from core.feature_extractors import create_extractor
from core.image_decoder import ImageDecoder
from core.project_store import ProjectStore
from core.registry import IndexRegistry
from security.input_validation import SecurityValidator
from utils.logging_config import PerformanceLogger
from utils.performance_monitor import MemoryMonitor

logger = logging.getLogger(__name__)


class VisualMatchService:
    """
    Wires decoder, extractor, storage, registry and the request-level
    components together from a SystemConfig
    """

    def __init__(self, config: SystemConfig = None, extractor=None,
                 show_progress: bool = False):
        self.config = config or SystemConfig()
        cfg = self.config

        if not SecurityValidator.validate_directory(cfg.project_root):
            raise ValueError(f"Project root is not a usable directory: {cfg.project_root}")

        self.decoder = ImageDecoder(
            max_image_dimension=cfg.feature_extraction.max_image_dimension,
            max_bytes=cfg.ingestion.max_upload_bytes
        )
        self.extractor = extractor or create_extractor(cfg.feature_extraction)
        self.store = ProjectStore(cfg.project_root)
        self.cache = (FingerprintCache(cfg.database_path)
                      if cfg.feature_extraction.cache_features else None)
        self.perf_logger = PerformanceLogger()
        self.memory_monitor = MemoryMonitor(cfg.memory_limit_gb)

        self.loader = ProjectLoader(
            self.store, self.cache, self.decoder, self.extractor,
            BatchProcessor(n_workers=cfg.n_workers, show_progress=show_progress)
        )
        self.registry = IndexRegistry(
            dimension=self.extractor.dimension,
            metric=cfg.similarity_search.metric,
            loader=self.loader
        )

        self.engine = SimilarityEngine(
            self.registry, self.decoder, self.extractor,
            default_k=cfg.similarity_search.default_k,
            max_results=cfg.similarity_search.max_results,
            auto_create=cfg.similarity_search.auto_create_projects,
            perf_logger=self.perf_logger
        )
        self.ingestor = Ingestor(
            self.registry, self.store, self.engine, cache=self.cache,
            require_unique=cfg.ingestion.require_unique_identifiers,
            perf_logger=self.perf_logger
        )
        self.duplicates = NearDuplicateFinder(
            self.engine, self.store,
            distance_threshold=cfg.duplicate_detection.distance_threshold,
            ssim_threshold=cfg.duplicate_detection.ssim_threshold,
            enable_ssim=cfg.duplicate_detection.enable_ssim,
            max_candidates=cfg.duplicate_detection.max_candidates
        )
        self.executor = RequestExecutor(
            self.engine, self.ingestor,
            n_workers=cfg.n_workers,
            default_timeout=cfg.request_timeout_seconds
        )

        logger.info(
            f"Service ready: extractor={self.extractor.name} "
            f"dimension={self.extractor.dimension} metric={cfg.similarity_search.metric}"
        )

    def warm_up(self) -> int:
        """Load every project directory under the root. Returns total images."""
        start = time.time()
        total = 0

        for project_id in self.store.list_projects():
            try:
                with self.registry.acquire(project_id, create=False) as index:
                    total += index.size()
            except InvalidIdentifier as e:
                logger.warning(f"Skipping project directory <{project_id}>: {e}")

        logger.info(
            f"Initialization stage done: {total} images in "
            f"{len(self.registry.list_projects())} projects ({time.time() - start:.3f}s)"
        )
        return total

    def status(self) -> dict:
        """Registry, memory and timing snapshot for diagnostics"""
        return {
            'projects': self.registry.stats(),
            'process_memory_gb': self.memory_monitor.process_memory_gb(),
            'memory_limit_gb': self.memory_monitor.memory_limit_gb,
            'system': self.memory_monitor.get_system_info(),
            'query_timings': self.perf_logger.get_statistics('query'),
            'ingest_timings': self.perf_logger.get_statistics('ingest'),
        }

    def maintain(self) -> list:
        """Evict idle projects, then more if memory is above the limit"""
        evicted = self.registry.evict_idle(self.config.registry.max_idle_seconds)
        evicted += self.registry.evict_under_pressure(self.memory_monitor)
        return evicted

    def close(self):
        self.executor.shutdown()
        self.registry.close(timeout=self.config.registry.eviction_timeout)
        if self.cache is not None:
            self.cache.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
