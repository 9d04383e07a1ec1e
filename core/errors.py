# core/errors.py

"""
Error taxonomy for fingerprinting, indexing and matching.

Components raise these synchronously to their direct caller. The
orchestration layer (SimilarityEngine, Ingestor) may wrap them with more
context but never swallows them.
"""


class VismatchError(Exception):
    """Base class for all errors raised by the matching core"""


class DecodeError(VismatchError):
    """Image bytes or pixel data are malformed, unsupported or empty"""


class DimensionMismatch(VismatchError):
    """
    A vector does not have the configured dimensionality.

    This is an invariant violation (usually a configuration bug such as a
    cache written by a different extractor), not a recoverable input error.
    """

    def __init__(self, expected: int, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected vector of dimension {expected}, got {actual}")


class ProjectNotFound(VismatchError):
    """Query against a project that was never registered"""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project <{project_id}> not found in current database")


class DuplicateIdentifier(VismatchError):
    """Identifier already present and the caller requires uniqueness"""

    def __init__(self, project_id: str, identifier: str):
        self.project_id = project_id
        self.identifier = identifier
        super().__init__(f"Image <{identifier}> already exists in project <{project_id}>")


class ProjectUnavailable(VismatchError):
    """Project is being evicted, or failed to load"""

    def __init__(self, project_id: str, reason: str = "project is being evicted"):
        self.project_id = project_id
        super().__init__(f"Project <{project_id}> unavailable: {reason}")


class IndexClosed(ProjectUnavailable):
    """Operation attempted on an index that has already been released"""

    def __init__(self, project_id: str):
        super().__init__(project_id, "index has been closed")


class InvalidImage(VismatchError):
    """Raised by the orchestration layer when decoding an upload or query fails"""

    def __init__(self, message: str, decode_error: DecodeError = None):
        self.decode_error = decode_error
        super().__init__(message)


class InvalidIdentifier(VismatchError, ValueError):
    """Project id or image identifier is unsafe or unsupported"""


class PersistenceFailure(VismatchError):
    """Durable write or delete did not complete"""


class DeadlineExceeded(VismatchError):
    """Caller stopped waiting for a request that exceeded its deadline"""
