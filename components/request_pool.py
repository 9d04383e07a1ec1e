# components/request_pool.py

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable

from core.errors import DeadlineExceeded

logger = logging.getLogger(__name__)


class RequestExecutor:
    """
    Worker pool servicing concurrent uploads and queries.

    A caller that stops waiting (deadline passed) gets DeadlineExceeded;
    the request itself keeps running to completion on its worker, and
    because index mutations are atomic nothing is left half-applied.
    """

    def __init__(self, engine, ingestor, n_workers: int = 4,
                 default_timeout: float = 30.0):
        self.engine = engine
        self.ingestor = ingestor
        self.default_timeout = default_timeout
        self._executor = ThreadPoolExecutor(max_workers=n_workers,
                                            thread_name_prefix="vismatch-worker")

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        return self._executor.submit(fn, *args, **kwargs)

    def submit_query(self, project_id: str, raw_image: bytes, k: int = None) -> Future:
        return self.submit(self.engine.query, project_id, raw_image, k)

    def submit_ingest(self, project_id: str, identifier: str, raw_image: bytes) -> Future:
        return self.submit(self.ingestor.ingest, project_id, identifier, raw_image)

    def run(self, fn: Callable, *args, timeout: float = None, **kwargs):
        """
        Run fn on the pool and wait for it.

        Raises:
            DeadlineExceeded: fn did not finish within timeout seconds
        """
        timeout = self.default_timeout if timeout is None else timeout
        future = self.submit(fn, *args, **kwargs)
        return self.wait(future, timeout)

    def query(self, project_id: str, raw_image: bytes, k: int = None,
              timeout: float = None):
        return self.run(self.engine.query, project_id, raw_image, k, timeout=timeout)

    def ingest(self, project_id: str, identifier: str, raw_image: bytes,
               timeout: float = None):
        return self.run(self.ingestor.ingest, project_id, identifier, raw_image,
                        timeout=timeout)

    @staticmethod
    def wait(future: Future, timeout: float):
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            # Only dequeued-but-not-started work can actually be cancelled
            future.cancel()
            logger.warning(f"Request abandoned after {timeout:.1f}s deadline")
            raise DeadlineExceeded(f"Request did not complete within {timeout:.1f}s") from None

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
