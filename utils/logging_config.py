# utils/logging_config.py

import json
import logging
import logging.handlers
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List

import numpy as np


def setup_logging(log_level: str = "INFO", log_dir: str = None,
                  structured: bool = False):
    """
    Configure root logging: console handler plus, when log_dir is given,
    a rotating text log and optionally a rotating JSON log.
    """
    handlers: List[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    handlers.append(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "vismatch.log",
            maxBytes=10*1024*1024,  # 10 MB
            backupCount=5
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        ))
        handlers.append(file_handler)

        if structured:
            json_handler = logging.handlers.RotatingFileHandler(
                log_path / "vismatch_structured.json",
                maxBytes=10*1024*1024,
                backupCount=5
            )
            json_handler.setFormatter(JSONFormatter())
            handlers.append(json_handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=handlers,
        force=True
    )


class JSONFormatter(logging.Formatter):
    """Format logs as JSON"""

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'thread': record.threadName
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class PerformanceLogger:
    """
    Collect per-operation durations (query, ingest, load) across threads
    """

    def __init__(self, max_samples: int = 10000):
        self.max_samples = max_samples
        self._lock = threading.Lock()
        self.metrics: List[Dict] = []

    def log_metric(self, operation: str, duration: float, **metadata):
        """Log a performance metric"""
        metric = {
            'timestamp': datetime.now().isoformat(),
            'operation': operation,
            'duration_seconds': duration,
            **metadata
        }
        with self._lock:
            self.metrics.append(metric)
            if len(self.metrics) > self.max_samples:
                del self.metrics[:len(self.metrics) - self.max_samples]

    def save_metrics(self, output_path: str):
        """Save metrics to JSON file"""
        with self._lock:
            snapshot = list(self.metrics)
        with open(output_path, 'w') as f:
            json.dump(snapshot, f, indent=2)

    def get_statistics(self, operation: str = None) -> dict:
        """Get statistics for operations"""
        with self._lock:
            if operation:
                durations = [m['duration_seconds'] for m in self.metrics
                             if m['operation'] == operation]
            else:
                durations = [m['duration_seconds'] for m in self.metrics]

        if not durations:
            return {}

        return {
            'count': len(durations),
            'mean': float(np.mean(durations)),
            'median': float(np.median(durations)),
            'min': float(np.min(durations)),
            'max': float(np.max(durations)),
            'std': float(np.std(durations)),
            'total': float(np.sum(durations))
        }
