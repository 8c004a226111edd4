"""
Prometheus metrics for the registration workflow
"""

import time
import logging
from contextlib import asynccontextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, REGISTRY

from app.core.exceptions import EventHubException

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Registration metrics collector"""

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.logger = logging.getLogger(__name__)
        self.requests = Counter(
            "registration_requests_total",
            "Registration operations by outcome",
            ["operation", "outcome"],
            registry=registry,
        )
        self.promotions = Counter(
            "registration_promotions_total",
            "Waitlisted registrations promoted to confirmed",
            registry=registry,
        )
        self.retries = Counter(
            "registration_retries_total",
            "Units of work retried after a write conflict",
            ["operation"],
            registry=registry,
        )
        self.duration = Histogram(
            "registration_duration_seconds",
            "Registration operation duration",
            ["operation"],
            registry=registry,
        )

    @asynccontextmanager
    async def track_operation(self, operation: str):
        """Time an operation and count its outcome (rejections by error code)"""
        start_time = time.time()
        try:
            yield
        except EventHubException as e:
            self.requests.labels(operation=operation, outcome=e.code.lower()).inc()
            raise
        except Exception:
            self.requests.labels(operation=operation, outcome="error").inc()
            raise
        else:
            self.requests.labels(operation=operation, outcome="success").inc()
        finally:
            duration = time.time() - start_time
            self.duration.labels(operation=operation).observe(duration)
            if duration > 5.0:  # Log slow operations
                self.logger.warning(f"Slow {operation} operation: {duration:.2f}s")

    def record_promotion(self):
        self.promotions.inc()

    def record_retry(self, operation: str):
        self.retries.labels(operation=operation).inc()


# Global instance
metrics_collector = MetricsCollector()
