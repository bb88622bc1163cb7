"""
Metering metrics and tracing.

Counters are created against the global meter provider, so they are no-ops
until ``setup_telemetry`` installs an exporting provider.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry.metrics import Counter, Meter
from opentelemetry.trace import Span, Tracer

from auth247.platform.telemetry import get_meter, get_tracer

logger = structlog.get_logger(__name__)


class MeteringMetrics:
    """Metering metrics collector"""

    def __init__(self, meter: Meter | None = None, tracer: Tracer | None = None) -> None:
        self.meter = meter or get_meter("metering")
        self.tracer = tracer or get_tracer("metering")

        # Activity recorder
        self.activity_recorded_counter = self._create_counter(
            "metering.activity.recorded", "Activity events written"
        )
        self.activity_dropped_counter = self._create_counter(
            "metering.activity.dropped", "Activity events dropped because the buffer was full"
        )
        self.activity_failed_counter = self._create_counter(
            "metering.activity.failed", "Activity events lost to store errors"
        )

        # Snapshots and the monthly job
        self.snapshot_saved_counter = self._create_counter(
            "metering.snapshot.saved", "MAU snapshots upserted"
        )
        self.job_tenant_succeeded_counter = self._create_counter(
            "metering.job.tenant.succeeded", "Tenants reconciled successfully"
        )
        self.job_tenant_failed_counter = self._create_counter(
            "metering.job.tenant.failed", "Tenants whose reconciliation failed"
        )
        self.mau_histogram = self.meter.create_histogram(
            name="metering.mau", description="Monthly active users per tenant", unit="users"
        )

        # Subscriptions
        self.trial_expired_counter = self._create_counter(
            "subscriptions.trial.expired", "Trials moved back to the free plan"
        )

    def _create_counter(self, name: str, description: str) -> Counter:
        return self.meter.create_counter(name=name, description=description, unit="1")

    def record_activity(self, tenant_id: str, count: int = 1) -> None:
        self.activity_recorded_counter.add(count, {"tenant_id": tenant_id})

    def record_activity_dropped(self, tenant_id: str) -> None:
        self.activity_dropped_counter.add(1, {"tenant_id": tenant_id})

    def record_activity_failed(self, count: int = 1) -> None:
        self.activity_failed_counter.add(count)

    def record_snapshot(self, tenant_id: str, mau_count: int) -> None:
        self.snapshot_saved_counter.add(1, {"tenant_id": tenant_id})
        self.mau_histogram.record(mau_count, {"tenant_id": tenant_id})

    def record_tenant_result(self, tenant_id: str, succeeded: bool) -> None:
        counter = (
            self.job_tenant_succeeded_counter if succeeded else self.job_tenant_failed_counter
        )
        counter.add(1, {"tenant_id": tenant_id})

    def record_trial_expired(self, count: int = 1) -> None:
        self.trial_expired_counter.add(count)

    @contextmanager
    def trace_operation(self, name: str, **attributes: Any) -> Iterator[Span]:
        """Run a block inside a span; exceptions are recorded on the span."""
        with self.tracer.start_as_current_span(name, attributes=attributes) as span:
            yield span


_metering_metrics: MeteringMetrics | None = None


def get_metering_metrics() -> MeteringMetrics:
    """Get the process-wide metering metrics collector."""
    global _metering_metrics
    if _metering_metrics is None:
        _metering_metrics = MeteringMetrics()
    return _metering_metrics


__all__ = ["MeteringMetrics", "get_metering_metrics"]
