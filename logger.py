"""
Diagnostic logging and timing metrics for the QuizGen question service.

Keyword fields passed to QuizGenLogger are appended to the message as a
JSON object, e.g.

    Attempt failed | {"batch_id": "20250101T...", "question_type": "MCQ", "error_kind": "model_timeout"}
"""
import json
import logging
import os
import sys
import threading
import time
from collections import deque
from datetime import datetime
from functools import wraps
from logging.handlers import RotatingFileHandler
from typing import Any, Deque, Dict, Optional

from config import settings

MAX_LOG_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUPS = 5


class QuizGenLogger:
    """Named logger writing to stdout, a rotating debug file and a rotating error file"""

    def __init__(self, name: str = "quizgen", log_dir: str = "./logs", console_level: str = "INFO"):
        self.name = name
        self.log_dir = log_dir
        self.console_level = console_level
        self.logger = logging.getLogger(self.name)
        self._setup_logger()

    def _setup_logger(self):
        os.makedirs(self.log_dir, exist_ok=True)
        self.logger.setLevel(logging.DEBUG)

        # Prevent duplicate handlers
        if self.logger.handlers:
            return

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, self.console_level.upper(), logging.INFO))
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

        detailed = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        self.logger.addHandler(console_handler)
        self.logger.addHandler(self._rotating_handler(f"{self.name}.log", logging.DEBUG, detailed))
        self.logger.addHandler(self._rotating_handler(f"{self.name}_errors.log", logging.ERROR, detailed))

    def _rotating_handler(self, filename: str, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
        handler = RotatingFileHandler(os.path.join(self.log_dir, filename),
                                      maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    def info(self, message: str, **fields):
        self.logger.info(self._format_message(message, fields))

    def warning(self, message: str, **fields):
        self.logger.warning(self._format_message(message, fields))

    def error(self, message: str, **fields):
        self.logger.error(self._format_message(message, fields))

    def attempt(self, batch_id: str, question_type: str, attempt: int, count: int,
                elapsed_seconds: float, error_kind: Optional[str] = None):
        """One line per generation attempt; failed attempts go out at WARNING."""
        fields = {
            "batch_id": batch_id,
            "question_type": question_type,
            "attempt": f"{attempt}/{count}",
            "elapsed_seconds": round(elapsed_seconds, 3),
            "error_kind": error_kind,
        }
        if error_kind is None:
            self.info("Attempt succeeded", **fields)
        else:
            self.warning("Attempt failed", **fields)

    def batch(self, batch_id: str, mode: str, model: str, generated: int, attempts: int,
              elapsed_seconds: float):
        self.info(
            "Batch finished",
            batch_id=batch_id,
            mode=mode,
            model=model,
            questions_generated=generated,
            attempts=attempts,
            elapsed_seconds=round(elapsed_seconds, 3),
        )

    @staticmethod
    def _format_message(message: str, fields: Dict[str, Any]) -> str:
        present = {k: v for k, v in fields.items() if v is not None}
        if not present:
            return message
        return f"{message} | {json.dumps(present, default=str)}"


class PerformanceMonitor:
    """Keeps the most recent timing samples per metric name"""

    def __init__(self, logger: QuizGenLogger, max_samples: int = 1000):
        self.logger = logger
        self.max_samples = max_samples
        self.metrics: Dict[str, Deque[dict]] = {}
        self._lock = threading.Lock()

    def record_metric(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        sample = {
            "timestamp": datetime.now().isoformat(),
            "value": value,
            "tags": tags or {}
        }
        with self._lock:
            self.metrics.setdefault(name, deque(maxlen=self.max_samples)).append(sample)

    def get_stats(self, name: str) -> Optional[Dict[str, float]]:
        with self._lock:
            values = [m["value"] for m in self.metrics.get(name, ())]
        if not values:
            return None
        return {
            "count": len(values),
            "min": min(values),
            "max": max(values),
            "avg": sum(values) / len(values),
            "last": values[-1]
        }

    def get_all_stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            names = list(self.metrics)
        return {name: self.get_stats(name) for name in names}

    def log_stats(self):
        for name, stats in self.get_all_stats().items():
            if stats:
                self.logger.info(f"Metric: {name}", **stats)


def log_execution_time(logger: QuizGenLogger, operation_name: str):
    """Log how long the decorated call took, and the error if it raised"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{operation_name} failed",
                    duration_seconds=round(time.time() - start_time, 2),
                    function=func.__name__,
                    error=str(e)
                )
                raise
            logger.info(
                f"{operation_name} completed",
                duration_seconds=round(time.time() - start_time, 2),
                function=func.__name__
            )
            return result
        return wrapper
    return decorator


class RequestLogger:
    """Counts HTTP requests and error responses for the middleware in main.py"""

    def __init__(self, logger: QuizGenLogger):
        self.logger = logger
        self.request_count = 0
        self.error_count = 0
        self._lock = threading.Lock()

    def log_request(self, endpoint: str, method: str, client: Optional[str] = None):
        with self._lock:
            self.request_count += 1
            count = self.request_count
        self.logger.info(f"API Request: {method} {endpoint}", client=client, request_count=count)

    def log_response(self, endpoint: str, status_code: int, duration_ms: float):
        failed = status_code >= 400
        with self._lock:
            if failed:
                self.error_count += 1
            errors = self.error_count

        log_func = self.logger.error if failed else self.logger.info
        log_func(
            f"API Response: {endpoint}",
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
            error_count=errors
        )

    def get_stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                "total_requests": self.request_count,
                "total_errors": self.error_count,
                "success_rate": round(
                    (1 - self.error_count / max(self.request_count, 1)) * 100, 2
                )
            }


# Global logger instances
quizgen_logger = QuizGenLogger("quizgen", log_dir=settings.log_dir, console_level=settings.log_level)
performance_monitor = PerformanceMonitor(quizgen_logger)
request_logger = RequestLogger(quizgen_logger)
