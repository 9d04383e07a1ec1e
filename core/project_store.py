# core/project_store.py

import logging
from pathlib import Path
from typing import List

from security.input_validation import SecurityValidator
from utils.file_utils import atomic_write_bytes, get_image_files

logger = logging.getLogger(__name__)


class ProjectStore:
    """
    On-disk layout: one flat directory of image files per project.

        <root>/<project_id>/<identifier>

    The image files are the durable source of truth; every index can be
    rebuilt from them.
    """

    def __init__(self, root: str = "./image_root"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def project_path(self, project_id: str) -> Path:
        return self.root / SecurityValidator.validate_project_id(project_id)

    def image_path(self, project_id: str, identifier: str) -> Path:
        return self.project_path(project_id) / SecurityValidator.validate_identifier(identifier)

    def list_projects(self) -> List[str]:
        """Project directories under the root, sorted"""
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_dir() and not p.name.startswith('.')
        )

    def project_exists(self, project_id: str) -> bool:
        return self.project_path(project_id).is_dir()

    def list_images(self, project_id: str) -> List[str]:
        path = self.project_path(project_id)
        if not path.is_dir():
            return []
        return get_image_files(str(path))

    def read_image(self, project_id: str, identifier: str) -> bytes:
        return self.image_path(project_id, identifier).read_bytes()

    def write_image(self, project_id: str, identifier: str, data: bytes) -> Path:
        """Durably write an image, replacing any existing file atomically"""
        target = self.image_path(project_id, identifier)
        target.parent.mkdir(parents=True, exist_ok=True)

        atomic_write_bytes(target, data)
        logger.debug(f"Saved image to <{target}>")

        return target

    def delete_image(self, project_id: str, identifier: str) -> bool:
        target = self.image_path(project_id, identifier)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True
