"""
File operation utilities
"""

import hashlib
import os
import tempfile
from pathlib import Path
from typing import List

IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.gif', '.bmp', '.ico', '.webp', '.tiff'}


def get_image_files(directory: str) -> List[str]:
    """Names of image files directly inside directory, sorted"""
    path = Path(directory)

    return sorted(
        f.name for f in path.iterdir()
        if f.is_file()
        and not f.name.startswith('.')
        and f.suffix.lower() in IMAGE_EXTENSIONS
    )


def content_checksum(data: bytes) -> str:
    """Checksum used to invalidate cached fingerprints when a file changes"""
    return hashlib.sha256(data).hexdigest()


def atomic_write_bytes(path: Path, data: bytes):
    """
    Write data to path so readers see either the old file or the complete
    new one, never a partial write.
    """
    path = Path(path)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix='.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.2f} PB"
