"""
Image utility functions
"""

import cv2
import numpy as np
from typing import Tuple


def smart_resize(image: np.ndarray, max_dimension: int = 1024) -> np.ndarray:
    """
    Downsize images whose longest side exceeds max_dimension.

    INTER_AREA is deterministic, so the same pixels always produce the
    same resized image (and therefore the same fingerprint).
    """
    h, w = image.shape[:2]

    if max_dimension <= 0 or max(h, w) <= max_dimension:
        return image

    if h > w:
        new_h = max_dimension
        new_w = max(1, int(w * (max_dimension / h)))
    else:
        new_w = max_dimension
        new_h = max(1, int(h * (max_dimension / w)))

    return cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_AREA)


def to_grayscale(image: np.ndarray, size: Tuple[int, int] = None) -> np.ndarray:
    """Convert an RGB image to grayscale, optionally resizing to (width, height)"""
    if image.ndim == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    else:
        gray = image

    if size is not None:
        gray = cv2.resize(gray, size, interpolation=cv2.INTER_AREA)

    return gray
