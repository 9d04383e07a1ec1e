import logging
from typing import Callable, Dict

import imagehash
import numpy as np
from PIL import Image

from core.errors import DecodeError

logger = logging.getLogger(__name__)


def validate_pixels(image: np.ndarray) -> np.ndarray:
    """
    Check decoded pixel data before fingerprinting.

    Accepts HxW (grayscale), HxWx3 (RGB) or HxWx4 (RGBA) uint8 arrays.
    Returns the image as a contiguous RGB array.
    """
    if not isinstance(image, np.ndarray):
        raise DecodeError(f"Expected a numpy array of pixels, got {type(image).__name__}")

    if image.dtype != np.uint8:
        raise DecodeError(f"Expected uint8 pixel data, got {image.dtype}")

    if image.ndim == 2:
        image = np.stack([image] * 3, axis=-1)
    elif image.ndim != 3 or image.shape[2] not in (3, 4):
        raise DecodeError(f"Unsupported pixel layout {image.shape}")

    if image.shape[0] == 0 or image.shape[1] == 0:
        raise DecodeError("Image has zero area")

    return np.ascontiguousarray(image[:, :, :3])


class PerceptualHashExtractor:
    """
    Perceptual hash fingerprints - fast and robust for near-exact matches

    The hash bits are returned as a float32 vector of 0.0/1.0 so they can
    be compared with any configured metric (hamming by default).
    """

    HASH_FUNCTIONS: Dict[str, Callable] = {
        'phash': imagehash.phash,
        'dhash': imagehash.dhash,
        'ahash': imagehash.average_hash,
        'whash': imagehash.whash,
    }

    def __init__(self, method: str = 'phash', hash_size: int = 16):
        if method not in self.HASH_FUNCTIONS:
            raise ValueError(
                f"Unknown hash method '{method}'. "
                f"Options: {', '.join(sorted(self.HASH_FUNCTIONS))}"
            )
        if hash_size < 2:
            raise ValueError(f"hash_size must be at least 2, got {hash_size}")
        if method == 'whash' and hash_size & (hash_size - 1):
            raise ValueError("whash requires hash_size to be a power of 2")

        self.method = method
        self.hash_size = hash_size
        self._hash_func = self.HASH_FUNCTIONS[method]

    @property
    def name(self) -> str:
        return f"{self.method}-{self.hash_size}"

    @property
    def dimension(self) -> int:
        return self.hash_size * self.hash_size

    def extract(self, image: np.ndarray) -> np.ndarray:
        """Extract perceptual hash bits from an RGB uint8 image"""
        rgb = validate_pixels(image)
        pil_image = Image.fromarray(rgb)

        image_hash = self._hash_func(pil_image, hash_size=self.hash_size)

        return np.asarray(image_hash.hash, dtype=np.float32).flatten()


class CLIPFeatureExtractor:
    """
    CLIP-based feature extraction - excellent for blurry and partial images

    Inference only. torch and transformers are imported lazily so the hash
    extractors work without them installed.
    """

    def __init__(self, model_name: str = "openai/clip-vit-base-patch32",
                 device: str = None):
        import torch
        from transformers import CLIPModel, CLIPProcessor

        self._torch = torch
        self.model_name = model_name
        self.device = device or ('cuda' if torch.cuda.is_available() else 'cpu')

        self.model = CLIPModel.from_pretrained(model_name)
        self.processor = CLIPProcessor.from_pretrained(model_name)
        self.model.to(self.device)
        self.model.eval()

        logger.info(f"Loaded CLIP model {model_name} on {self.device}")

    @property
    def name(self) -> str:
        return f"clip:{self.model_name}"

    @property
    def dimension(self) -> int:
        return int(self.model.config.projection_dim)

    def extract(self, image: np.ndarray) -> np.ndarray:
        """Extract L2-normalized CLIP embeddings"""
        rgb = validate_pixels(image)

        with self._torch.no_grad():
            inputs = self.processor(images=rgb, return_tensors="pt")
            inputs = {k: v.to(self.device) for k, v in inputs.items()}

            image_features = self.model.get_image_features(**inputs)
            image_features = image_features / image_features.norm(dim=-1, keepdim=True)

        return image_features.cpu().numpy().astype(np.float32).flatten()


def create_extractor(config):
    """
    Build the extractor described by a FeatureExtractionConfig.

    Args:
        config: FeatureExtractionConfig (method, hash_size, model_name, use_gpu)

    Returns:
        An extractor exposing name, dimension and extract()
    """
    method = config.method.lower()

    if method in PerceptualHashExtractor.HASH_FUNCTIONS:
        return PerceptualHashExtractor(method=method, hash_size=config.hash_size)

    if method == 'clip':
        device = None if config.use_gpu else 'cpu'
        return CLIPFeatureExtractor(model_name=config.model_name, device=device)

    raise ValueError(f"Unknown feature extraction method '{config.method}'")
