# core/image_decoder.py

import io

import cv2
import numpy as np
from PIL import Image

from core.errors import DecodeError
from utils.image_utils import smart_resize

MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB


class ImageDecoder:
    """
    Turns raw image bytes (JPEG/PNG/WebP/BMP/TIFF/GIF/ICO...) into RGB pixel arrays
    """

    def __init__(self, max_image_dimension: int = 1024,
                 max_bytes: int = MAX_FILE_SIZE):
        self.max_image_dimension = max_image_dimension
        self.max_bytes = max_bytes

    def decode(self, data: bytes) -> np.ndarray:
        """
        Decode image bytes.

        OpenCV handles the common formats. Anything it cannot read (ICO,
        GIF on older builds) is retried with Pillow.

        Args:
            data: Encoded image file contents

        Returns:
            HxWx3 uint8 RGB array, downsized to max_image_dimension

        Raises:
            DecodeError: empty, oversize, or undecodable payload
        """
        if not data:
            raise DecodeError("Empty image payload")

        if len(data) > self.max_bytes:
            raise DecodeError(
                f"Image payload of {len(data)} bytes exceeds limit of {self.max_bytes}"
            )

        buffer = np.frombuffer(data, dtype=np.uint8)
        try:
            img = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        except cv2.error:
            img = None

        if img is None:
            img = self._decode_with_pillow(data)
        else:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

        if img.shape[0] == 0 or img.shape[1] == 0:
            raise DecodeError("Image has zero area")

        return smart_resize(img, self.max_image_dimension)

    @staticmethod
    def _decode_with_pillow(data: bytes) -> np.ndarray:
        try:
            with Image.open(io.BytesIO(data)) as pil_img:
                return np.array(pil_img.convert('RGB'))
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise DecodeError(f"Cannot decode image: unsupported or corrupt data ({e})") from e
