import structlog
import logging
import sys
from dataclasses import dataclass
from typing import Dict, Any, Optional

from memchat import __version__
from memchat.infrastructure.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig, environment: str = "development") -> None:
    """Route structlog through stdlib logging, one line per event"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.level.upper(), logging.INFO)
    )

    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            # request_id / owner_id are bound per request by the HTTP layer
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            ServiceContext(config.service_name, environment),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class ServiceContext:
    """Processor stamping service identity on every entry"""

    def __init__(self, service: str, environment: str):
        self.fields = {
            "service": service,
            "environment": environment,
            "version": __version__,
        }

    def __call__(self, logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in self.fields.items():
            event_dict.setdefault(key, value)
        return event_dict


class MemoryLogger:
    """Specialized logger for memory subsystem events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_exchange(
        self,
        conversation_id: str,
        mode: str,
        turn_count: int,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Log a completed or failed exchange"""

        self.logger.info(
            "exchange",
            conversation_id=conversation_id,
            mode=mode,
            turn_count=turn_count,
            duration_ms=duration_ms,
            success=success,
            error=error
        )

    def log_archive(
        self,
        conversation_id: str,
        chunks: int,
        archived_turns: int,
        namespace: str
    ):
        self.logger.info(
            "archive_written",
            conversation_id=conversation_id,
            chunks=chunks,
            archived_turns=archived_turns,
            namespace=namespace
        )

    def log_retrieval(
        self,
        namespace: str,
        candidates: int,
        kept: int,
        scores: Optional[list] = None
    ):
        self.logger.info(
            "memory_retrieved",
            namespace=namespace,
            candidates=candidates,
            kept=kept,
            scores=scores or []
        )


# Global logger instance
memory_logger = MemoryLogger("memchat.memory")


@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        if not self.count:
            return {"count": 0, "avg": 0.0, "min": 0.0, "max": 0.0}
        return {
            "count": self.count,
            "avg": self.total_ms / self.count,
            "min": self.min_ms,
            "max": self.max_ms,
        }


class MetricsCollector:
    """In-process counters and latencies, reported by /health"""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.latencies: Dict[str, LatencyStats] = {}

    def record_latency(self, operation: str, duration_ms: float):
        self.latencies.setdefault(operation, LatencyStats()).add(duration_ms)
        memory_logger.logger.debug("metric", operation=operation, duration_ms=round(duration_ms, 2))

    def increment_counter(self, name: str, value: int = 1):
        self.counters[name] = self.counters.get(name, 0) + value
        memory_logger.logger.debug("metric", counter=name, value=value)

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = dict(self.counters)
        for operation, stats in self.latencies.items():
            summary[f"latency.{operation}"] = stats.summary()
        return summary

    def reset(self):
        self.counters.clear()
        self.latencies.clear()


# Global metrics collector
metrics = MetricsCollector()
