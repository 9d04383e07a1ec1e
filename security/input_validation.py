# security/input_validation.py

from pathlib import Path
import os
import re

from core.errors import InvalidIdentifier
from utils.file_utils import IMAGE_EXTENSIONS


class SecurityValidator:
    """
    Validate project ids and image identifiers before they touch the filesystem
    """

    # Same set the project folders are scanned for
    ALLOWED_EXTENSIONS = IMAGE_EXTENSIONS
    MAX_NAME_LENGTH = 255

    _PROJECT_ID_PATTERN = re.compile(r'^[\w][\w.-]*$')

    @staticmethod
    def is_image_name(name: str) -> bool:
        return Path(name).suffix.lower() in SecurityValidator.ALLOWED_EXTENSIONS

    @staticmethod
    def validate_project_id(project_id: str) -> str:
        """
        Project ids become directory names directly under the project root.
        """
        if not isinstance(project_id, str) or not project_id:
            raise InvalidIdentifier("Project id must be a non-empty string")

        if len(project_id) > SecurityValidator.MAX_NAME_LENGTH:
            raise InvalidIdentifier(f"Project id too long: {len(project_id)} characters")

        if project_id in ('.', '..') or not SecurityValidator._PROJECT_ID_PATTERN.match(project_id):
            raise InvalidIdentifier(f"Invalid project id: {project_id!r}")

        return project_id

    @staticmethod
    def validate_identifier(identifier: str) -> str:
        """
        Image identifiers are file names inside a project directory.

        Rejects path separators, traversal, hidden files and extensions
        the project scanner would not pick up again after a restart.
        """
        if not isinstance(identifier, str) or not identifier:
            raise InvalidIdentifier("Image identifier must be a non-empty string")

        if len(identifier) > SecurityValidator.MAX_NAME_LENGTH:
            raise InvalidIdentifier(f"Image identifier too long: {len(identifier)} characters")

        if '/' in identifier or '\\' in identifier or '\x00' in identifier:
            raise InvalidIdentifier(f"Image identifier must not contain path separators: {identifier!r}")

        if identifier.startswith('.'):
            raise InvalidIdentifier(f"Image identifier must not start with a dot: {identifier!r}")

        if not SecurityValidator.is_image_name(identifier):
            raise InvalidIdentifier(
                f"Unsupported image extension for {identifier!r}; "
                f"allowed: {', '.join(sorted(SecurityValidator.ALLOWED_EXTENSIONS))}"
            )

        return identifier

    @staticmethod
    def sanitize_filename(filename: str) -> str:
        """
        Sanitize filename to prevent injection attacks
        """
        # Remove path separators
        filename = filename.replace('/', '_').replace('\\', '_')

        # Remove special characters
        filename = re.sub(r'[^\w\s.-]', '', filename)
        filename = filename.lstrip('.')

        # Limit length
        if len(filename) > SecurityValidator.MAX_NAME_LENGTH:
            name, ext = os.path.splitext(filename)
            filename = name[:250] + ext

        return filename

    @staticmethod
    def validate_directory(directory: str) -> bool:
        """
        Check that a project root exists (or can be created) and is writable
        """
        dir_path = Path(directory).resolve()

        if dir_path.exists() and not dir_path.is_dir():
            return False

        existing = dir_path
        while not existing.exists():
            existing = existing.parent

        return os.access(existing, os.R_OK | os.W_OK)
