"""
Custom application metrics instrumentation for OpenTelemetry.

This module provides custom metrics for monitoring the session engine:
- Sessions started, abandoned and submitted (by trigger)
- Timer expiries, clock skew anomalies and dropped checkpoints
- Ranking recomputation counts and duration
- Error rates

Usage:
    from tryout.observability import metrics

    metrics.record_session_started(package_id=3)
    metrics.record_submission(trigger="timer")
"""
import logging
from typing import Any, Dict, Optional

from tryout.core.config import settings

logger = logging.getLogger(__name__)


class ApplicationMetrics:
    """
    Application-level metrics using OpenTelemetry.

    All methods are no-ops until ``initialize()`` succeeds, so engine code can
    record metrics unconditionally.
    """

    def __init__(self) -> None:
        """Initialize ApplicationMetrics with empty state."""
        self._initialized = False
        self._meter: Any = None
        self._meter_provider: Any = None
        self._counters: Dict[str, Any] = {}
        self._histograms: Dict[str, Any] = {}

    def initialize(self) -> None:
        """
        Initialize OpenTelemetry metrics.

        Should be called during application startup. Installs an SDK
        MeterProvider with a periodic console exporter.
        """
        if not settings.OTEL_ENABLED or not settings.OTEL_METRICS_ENABLED:
            logger.info("Application metrics not enabled (OTEL_METRICS_ENABLED=False)")
            return

        if self._initialized:
            logger.warning("Application metrics already initialized")
            return

        from opentelemetry import metrics as otel_metrics
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import (
            ConsoleMetricExporter,
            PeriodicExportingMetricReader,
        )
        from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource

        resource = Resource.create(
            {
                SERVICE_NAME: settings.OTEL_SERVICE_NAME,
                SERVICE_VERSION: settings.APP_VERSION,
            }
        )
        reader = PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=settings.OTEL_METRICS_EXPORT_INTERVAL_MILLIS,
        )
        self._meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
        otel_metrics.set_meter_provider(self._meter_provider)
        self._meter = otel_metrics.get_meter(
            settings.OTEL_SERVICE_NAME, version=settings.APP_VERSION
        )

        self._initialized = True
        logger.info("Application metrics initialized successfully")

    def shutdown(self) -> None:
        """Flush and shut down the meter provider."""
        if self._meter_provider is not None:
            try:
                self._meter_provider.shutdown()
            except Exception as e:
                logger.warning(f"Failed to shutdown meter provider: {e}")
            finally:
                self._meter_provider = None
        self._initialized = False
        self._meter = None
        self._counters.clear()
        self._histograms.clear()

    def _add(
        self, name: str, value: float, labels: Optional[Dict[str, str]] = None
    ) -> None:
        if not self._initialized:
            return
        try:
            if name not in self._counters:
                self._counters[name] = self._meter.create_counter(
                    name=name, unit="1", description=f"Counter for {name}"
                )
            self._counters[name].add(value, attributes=labels or {})
        except Exception as e:
            logger.debug(f"Failed to record metric {name}: {e}")

    def _observe(
        self,
        name: str,
        value: float,
        unit: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        if not self._initialized:
            return
        try:
            if name not in self._histograms:
                self._histograms[name] = self._meter.create_histogram(
                    name=name, unit=unit, description=f"Histogram for {name}"
                )
            self._histograms[name].record(value, attributes=labels or {})
        except Exception as e:
            logger.debug(f"Failed to record metric {name}: {e}")

    def record_error(self, error_type: str, path: Optional[str] = None) -> None:
        """
        Record an application error.

        Args:
            error_type: Type of error (e.g., "PersistenceFailure", "GracefulFailure")
            path: Optional request path where error occurred
        """
        labels: Dict[str, str] = {"error.type": error_type}
        if path:
            labels["http.route"] = path
        self._add("app.errors", 1, labels)

    def record_session_started(self, package_id: int, resumed: bool = False) -> None:
        self._add(
            "tryout.sessions.started",
            1,
            {"package.id": str(package_id), "resumed": str(resumed).lower()},
        )

    def record_session_abandoned(self, package_id: int) -> None:
        self._add("tryout.sessions.abandoned", 1, {"package.id": str(package_id)})

    def record_answer(self, action: str) -> None:
        """Record an answer ledger write ("select", "clear" or "flag")."""
        self._add("tryout.answers.recorded", 1, {"action": action})

    def record_submission(
        self, trigger: str, duration_seconds: Optional[float] = None
    ) -> None:
        """
        Record a completed submission.

        Args:
            trigger: "manual" or "timer"
            duration_seconds: Time the session was open, when known
        """
        self._add("tryout.submissions.completed", 1, {"trigger": trigger})
        if duration_seconds is not None:
            self._observe(
                "tryout.session.duration", duration_seconds, "s", {"trigger": trigger}
            )

    def record_submission_failure(self) -> None:
        self._add("tryout.submissions.failed", 1)

    def record_timer_expired(self) -> None:
        self._add("tryout.timer.expired", 1)

    def record_clock_skew(self, skew_seconds: float) -> None:
        self._add("tryout.timer.clock_skew", 1)
        self._observe("tryout.timer.clock_skew.magnitude", abs(skew_seconds), "s")

    def record_checkpoint_dropped(self) -> None:
        self._add("tryout.timer.checkpoint_dropped", 1)

    def record_rankings_recomputed(self, participants: int, duration: float) -> None:
        self._add("tryout.rankings.recomputed", 1)
        self._observe(
            "tryout.rankings.participants", participants, "1"
        )
        self._observe("tryout.rankings.duration", duration, "s")


# Global metrics instance
metrics = ApplicationMetrics()
