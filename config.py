from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class FeatureExtractionConfig:
    """Configuration for feature extraction"""
    method: str = "phash"  # Options: phash, dhash, ahash, whash, clip
    hash_size: int = 16
    model_name: str = "openai/clip-vit-base-patch32"
    use_gpu: bool = False
    cache_features: bool = True
    max_image_dimension: int = 1024


@dataclass
class SimilaritySearchConfig:
    """Configuration for similarity search"""
    metric: str = "hamming"  # Options: hamming, euclidean, cosine
    default_k: int = 3
    max_results: int = 100
    auto_create_projects: bool = False  # Query on an unknown project creates it


@dataclass
class IngestionConfig:
    """Configuration for uploads"""
    require_unique_identifiers: bool = False  # False: re-upload replaces
    max_upload_bytes: int = 50 * 1024 * 1024


@dataclass
class DuplicateDetectionConfig:
    """Configuration for near-duplicate retrieval"""
    distance_threshold: float = 10.0
    ssim_threshold: float = 0.90
    enable_ssim: bool = True
    max_candidates: int = 20


@dataclass
class RegistryConfig:
    """Configuration for project index lifecycle"""
    max_idle_seconds: float = 3600.0
    eviction_timeout: float = 30.0


@dataclass
class SystemConfig:
    """System-wide configuration"""
    n_workers: int = 4
    project_root: str = "./image_root"
    database_path: str = "data/fingerprints.db"
    log_level: str = "INFO"
    log_dir: str = "logs"
    memory_limit_gb: float = 4.0
    request_timeout_seconds: float = 30.0
    structured_logging: bool = False  # Also write JSON log lines to log_dir

    # Feature extraction
    feature_extraction: FeatureExtractionConfig = field(
        default_factory=FeatureExtractionConfig
    )

    # Similarity search
    similarity_search: SimilaritySearchConfig = field(
        default_factory=SimilaritySearchConfig
    )

    # Ingestion
    ingestion: IngestionConfig = field(
        default_factory=IngestionConfig
    )

    # Duplicate detection
    duplicate_detection: DuplicateDetectionConfig = field(
        default_factory=DuplicateDetectionConfig
    )

    # Registry
    registry: RegistryConfig = field(
        default_factory=RegistryConfig
    )

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        config_dict = {
            'n_workers': self.n_workers,
            'project_root': self.project_root,
            'database_path': self.database_path,
            'log_level': self.log_level,
            'log_dir': self.log_dir,
            'memory_limit_gb': self.memory_limit_gb,
            'request_timeout_seconds': self.request_timeout_seconds,
            'structured_logging': self.structured_logging,
            'feature_extraction': {
                'method': self.feature_extraction.method,
                'hash_size': self.feature_extraction.hash_size,
                'model_name': self.feature_extraction.model_name,
                'use_gpu': self.feature_extraction.use_gpu,
                'cache_features': self.feature_extraction.cache_features,
                'max_image_dimension': self.feature_extraction.max_image_dimension
            },
            'similarity_search': {
                'metric': self.similarity_search.metric,
                'default_k': self.similarity_search.default_k,
                'max_results': self.similarity_search.max_results,
                'auto_create_projects': self.similarity_search.auto_create_projects
            },
            'ingestion': {
                'require_unique_identifiers': self.ingestion.require_unique_identifiers,
                'max_upload_bytes': self.ingestion.max_upload_bytes
            },
            'duplicate_detection': {
                'distance_threshold': self.duplicate_detection.distance_threshold,
                'ssim_threshold': self.duplicate_detection.ssim_threshold,
                'enable_ssim': self.duplicate_detection.enable_ssim,
                'max_candidates': self.duplicate_detection.max_candidates
            },
            'registry': {
                'max_idle_seconds': self.registry.max_idle_seconds,
                'eviction_timeout': self.registry.eviction_timeout
            }
        }

        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'SystemConfig':
        """Load configuration from YAML file"""
        if not Path(path).exists():
            return cls()  # Return default config

        with open(path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        config = cls()

        # Load system settings
        config.n_workers = config_dict.get('n_workers', config.n_workers)
        config.project_root = config_dict.get('project_root', config.project_root)
        config.database_path = config_dict.get('database_path', config.database_path)
        config.log_level = config_dict.get('log_level', config.log_level)
        config.log_dir = config_dict.get('log_dir', config.log_dir)
        config.memory_limit_gb = config_dict.get('memory_limit_gb', config.memory_limit_gb)
        config.request_timeout_seconds = config_dict.get(
            'request_timeout_seconds', config.request_timeout_seconds
        )
        config.structured_logging = config_dict.get('structured_logging', config.structured_logging)

        # Load feature extraction settings
        if 'feature_extraction' in config_dict:
            fe = config_dict['feature_extraction']
            config.feature_extraction = FeatureExtractionConfig(
                method=fe.get('method', config.feature_extraction.method),
                hash_size=fe.get('hash_size', config.feature_extraction.hash_size),
                model_name=fe.get('model_name', config.feature_extraction.model_name),
                use_gpu=fe.get('use_gpu', config.feature_extraction.use_gpu),
                cache_features=fe.get('cache_features', config.feature_extraction.cache_features),
                max_image_dimension=fe.get('max_image_dimension', config.feature_extraction.max_image_dimension)
            )

        # Load similarity search settings
        if 'similarity_search' in config_dict:
            ss = config_dict['similarity_search']
            config.similarity_search = SimilaritySearchConfig(
                metric=ss.get('metric', config.similarity_search.metric),
                default_k=ss.get('default_k', config.similarity_search.default_k),
                max_results=ss.get('max_results', config.similarity_search.max_results),
                auto_create_projects=ss.get('auto_create_projects', config.similarity_search.auto_create_projects)
            )

        # Load ingestion settings
        if 'ingestion' in config_dict:
            ing = config_dict['ingestion']
            config.ingestion = IngestionConfig(
                require_unique_identifiers=ing.get('require_unique_identifiers', config.ingestion.require_unique_identifiers),
                max_upload_bytes=ing.get('max_upload_bytes', config.ingestion.max_upload_bytes)
            )

        # Load duplicate detection settings
        if 'duplicate_detection' in config_dict:
            dd = config_dict['duplicate_detection']
            config.duplicate_detection = DuplicateDetectionConfig(
                distance_threshold=dd.get('distance_threshold', config.duplicate_detection.distance_threshold),
                ssim_threshold=dd.get('ssim_threshold', config.duplicate_detection.ssim_threshold),
                enable_ssim=dd.get('enable_ssim', config.duplicate_detection.enable_ssim),
                max_candidates=dd.get('max_candidates', config.duplicate_detection.max_candidates)
            )

        # Load registry settings
        if 'registry' in config_dict:
            rg = config_dict['registry']
            config.registry = RegistryConfig(
                max_idle_seconds=rg.get('max_idle_seconds', config.registry.max_idle_seconds),
                eviction_timeout=rg.get('eviction_timeout', config.registry.eviction_timeout)
            )

        return config
