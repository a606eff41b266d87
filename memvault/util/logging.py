"""Structured logging utility for the memvault embedding and storage layers."""

import logging
import sys
from typing import Dict, Any, Optional


class StructuredLogger:
    """Structured logger with consistent formatting."""

    def __init__(self, name: str, level: int = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # Only attach a handler once per logger name
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(level)
            formatter = logging.Formatter(
                '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str = "success",
                      duration_ms: Optional[float] = None,
                      details: Optional[Dict[str, Any]] = None):
        """Log structured operation with status and timing."""
        message_parts = [f"operation={operation}", f"status={status}"]

        if duration_ms is not None:
            message_parts.append(f"duration_ms={duration_ms:.2f}")

        if details:
            detail_str = " ".join([f"{k}={v}" for k, v in details.items()])
            message_parts.append(detail_str)

        message = " | ".join(message_parts)

        if status == "success":
            self.logger.info(message)
        elif status == "error":
            self.logger.error(message)
        else:
            self.logger.warning(message)

    def log_embedding_operation(self, provider: str, operation: str, count: int = 1,
                                status: str = "success", duration_ms: float = None,
                                details: Optional[Dict[str, Any]] = None):
        """Log an embedding call. Texts are never logged, only counts."""
        log_details = {"provider": provider, "count": count}
        if details:
            log_details.update(details)

        self.log_operation(f"embedding.{operation}", status, duration_ms, log_details)

    def log_store_operation(self, table: str, operation: str, record_id: str = None,
                            count: int = None, status: str = "success",
                            duration_ms: float = None):
        """Log a store operation on one entity table."""
        details: Dict[str, Any] = {"table": table}
        if record_id is not None:
            details["record_id"] = record_id
        if count is not None:
            details["count"] = count

        self.log_operation(f"store.{operation}", status, duration_ms, details)

    def log_cache_stats(self, provider: str, hits: int, misses: int, size: int):
        """Log embedding cache counters."""
        total = hits + misses
        details = {
            "provider": provider,
            "hits": hits,
            "misses": misses,
            "size": size,
            "hit_rate": f"{(hits / total if total else 0.0):.2f}",
        }
        self.log_operation("embedding.cache", "success", None, details)

    def info(self, message: str):
        """Log info message."""
        self.logger.info(message)

    def error(self, message: str):
        """Log error message."""
        self.logger.error(message)

    def warning(self, message: str):
        """Log warning message."""
        self.logger.warning(message)

    def debug(self, message: str):
        """Log debug message."""
        self.logger.debug(message)


def get_logger(name: str, level: int = logging.INFO) -> StructuredLogger:
    """Get a structured logger instance. DEBUG=true lowers the level to DEBUG."""
    from ..core.config import debug_enabled

    if debug_enabled():
        level = logging.DEBUG
    return StructuredLogger(name, level)
