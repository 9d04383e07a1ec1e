# utils/performance_monitor.py

import psutil


class MemoryMonitor:
    """
    Reports process memory against the configured limit

    Used by the index registry to decide when idle projects should be
    evicted.
    """

    def __init__(self, memory_limit_gb: float = 4.0):
        self.memory_limit_gb = memory_limit_gb
        self._process = psutil.Process()

    def process_memory_gb(self) -> float:
        return self._process.memory_info().rss / (1024 ** 3)

    def over_limit(self) -> bool:
        if self.memory_limit_gb <= 0:
            return False
        return self.process_memory_gb() > self.memory_limit_gb

    @staticmethod
    def get_system_info() -> dict:
        """Get current system information"""
        memory = psutil.virtual_memory()

        return {
            'cpu_count': psutil.cpu_count(logical=False),
            'cpu_count_logical': psutil.cpu_count(logical=True),
            'memory_total_gb': memory.total / (1024 ** 3),
            'memory_available_gb': memory.available / (1024 ** 3),
            'memory_percent': memory.percent
        }
