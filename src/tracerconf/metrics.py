"""Metrics sink and metrics-factory discovery for tracerconf."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from importlib.metadata import EntryPoint, entry_points
from typing import Protocol, cast, runtime_checkable

from opentelemetry import metrics
from opentelemetry.context import Context
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor
from opentelemetry.sdk.trace.sampling import Sampler, SamplingResult
from opentelemetry.trace import Link, SpanKind, TraceState
from opentelemetry.util.types import Attributes

from tracerconf.constants import SCOPE_NAME, MetricName

_LOGGER = logging.getLogger(__name__)

METRICS_FACTORY_ENTRY_POINT_GROUP = "tracerconf.metrics_factories"


@runtime_checkable
class MetricsFactory(Protocol):
    """Source of the meter provider backing a tracer's metrics."""

    def create_meter_provider(self) -> metrics.MeterProvider:
        """Return the meter provider to create instruments from."""
        ...


class NoopMetricsFactory:
    """Metrics factory that discards every measurement."""

    def create_meter_provider(self) -> metrics.MeterProvider:
        """Return the OpenTelemetry no-op meter provider.

        Returns
        -------
        metrics.MeterProvider
            No-op provider.
        """
        return metrics.NoOpMeterProvider()

    def __repr__(self) -> str:
        return "NoopMetricsFactory()"


class OtelMetricsFactory:
    """Metrics factory backed by an existing OpenTelemetry meter provider."""

    def __init__(self, meter_provider: metrics.MeterProvider | None = None) -> None:
        self._meter_provider = meter_provider

    def create_meter_provider(self) -> metrics.MeterProvider:
        """Return the wrapped provider, or the global one when none was given.

        Returns
        -------
        metrics.MeterProvider
            Meter provider for instrument creation.
        """
        if self._meter_provider is None:
            return metrics.get_meter_provider()
        return self._meter_provider

    def __repr__(self) -> str:
        return f"OtelMetricsFactory({self._meter_provider!r})"


class Metrics:
    """Counters recorded by the tracer, its sampler and its reporter."""

    def __init__(self, factory: MetricsFactory) -> None:
        self.factory = factory
        self.meter_provider = factory.create_meter_provider()
        meter = self.meter_provider.get_meter(SCOPE_NAME)
        self.traces_started_sampled = meter.create_counter(
            MetricName.TRACES_STARTED_SAMPLED,
            unit="1",
            description="Root spans the sampler decided to sample.",
        )
        self.traces_started_not_sampled = meter.create_counter(
            MetricName.TRACES_STARTED_NOT_SAMPLED,
            unit="1",
            description="Root spans the sampler decided to drop.",
        )
        self.spans_started = meter.create_counter(
            MetricName.SPANS_STARTED,
            unit="1",
            description="Recording spans started.",
        )
        self.spans_finished = meter.create_counter(
            MetricName.SPANS_FINISHED,
            unit="1",
            description="Recording spans finished.",
        )
        self.sampler_queried = meter.create_counter(
            MetricName.SAMPLER_QUERIED,
            unit="1",
            description="Successful sampling strategy polls.",
        )
        self.sampler_query_failed = meter.create_counter(
            MetricName.SAMPLER_QUERY_FAILED,
            unit="1",
            description="Failed sampling strategy polls.",
        )
        self.sampler_updated = meter.create_counter(
            MetricName.SAMPLER_UPDATED,
            unit="1",
            description="Sampler replacements after a poll.",
        )
        self.sampler_update_failed = meter.create_counter(
            MetricName.SAMPLER_UPDATE_FAILED,
            unit="1",
            description="Polled strategies that could not be applied.",
        )

    def __repr__(self) -> str:
        return f"Metrics(factory={self.factory!r})"


class MetricsSpanProcessor(SpanProcessor):
    """Count started and finished recording spans."""

    def __init__(self, tracer_metrics: Metrics) -> None:
        self._metrics = tracer_metrics

    def on_start(self, span: Span, parent_context: Context | None = None) -> None:
        """Record a span start.

        Parameters
        ----------
        span
            Span being started.
        parent_context
            Optional parent context for the span.
        """
        _ = (span, parent_context)
        self._metrics.spans_started.add(1)

    def on_end(self, span: ReadableSpan) -> None:
        """Record a span finish."""
        _ = span
        self._metrics.spans_finished.add(1)

    def shutdown(self) -> None:
        """Shutdown the span processor."""

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Nothing is buffered; always succeeds.

        Returns
        -------
        bool
            True.
        """
        _ = timeout_millis
        return True


class TraceStartSampler(Sampler):
    """Delegate sampling decisions and count them as started traces.

    Install as the root sampler of a parent-based sampler so that only
    spans opening a new trace are counted.
    """

    def __init__(self, delegate: Sampler, tracer_metrics: Metrics) -> None:
        self.delegate = delegate
        self._metrics = tracer_metrics

    def should_sample(
        self,
        parent_context: Context | None,
        trace_id: int,
        name: str,
        kind: SpanKind | None = None,
        attributes: Attributes = None,
        links: Sequence[Link] | None = None,
        trace_state: TraceState | None = None,
    ) -> SamplingResult:
        """Ask the delegate and record a sampled or not-sampled trace start.

        Returns
        -------
        SamplingResult
            Decision of the delegate.
        """
        result = self.delegate.should_sample(
            parent_context,
            trace_id,
            name,
            kind=kind,
            attributes=attributes,
            links=links,
            trace_state=trace_state,
        )
        if result.decision.is_sampled():
            self._metrics.traces_started_sampled.add(1)
        else:
            self._metrics.traces_started_not_sampled.add(1)
        return result

    def get_description(self) -> str:
        """Return the delegate's description.

        Returns
        -------
        str
            Description of the delegate sampler.
        """
        return self.delegate.get_description()


# -----------------------------------------------------------------------------
# Discovery
# -----------------------------------------------------------------------------

_REGISTRY_LOCK = threading.Lock()
_REGISTERED_FACTORIES: list[MetricsFactory] = []


def register_metrics_factory(factory: MetricsFactory) -> None:
    """Register a metrics factory for discovery.

    Parameters
    ----------
    factory
        Factory to append; the first registration wins during discovery.
    """
    with _REGISTRY_LOCK:
        _REGISTERED_FACTORIES.append(factory)


def reset_metrics_factories() -> None:
    """Clear explicitly registered metrics factories."""
    with _REGISTRY_LOCK:
        _REGISTERED_FACTORIES.clear()


def group_entry_points(group: str) -> list[EntryPoint]:
    """Return the installed entry points of ``group``."""
    eps = entry_points()
    if hasattr(eps, "select"):
        return list(eps.select(group=group))
    getter = getattr(eps, "get", None)
    if callable(getter):
        return list(cast("Iterable[EntryPoint]", getter(group, ())))
    return []


def _entrypoint_metrics_factory() -> MetricsFactory | None:
    for entry in group_entry_points(METRICS_FACTORY_ENTRY_POINT_GROUP):
        try:
            loaded = entry.load()
        except (ImportError, AttributeError) as exc:
            _LOGGER.warning("Failed to load metrics factory entrypoint %s: %s", entry.name, exc)
            continue
        factory = loaded() if isinstance(loaded, type) else loaded
        if isinstance(factory, MetricsFactory):
            return factory
        _LOGGER.warning("Metrics factory entrypoint %s returned invalid type.", entry.name)
    return None


def load_metrics_factory() -> MetricsFactory:
    """Return the first available metrics factory.

    Explicit registrations take precedence over entry points; the no-op factory
    is used when neither provides one.

    Returns
    -------
    MetricsFactory
        Discovered or no-op factory.
    """
    with _REGISTRY_LOCK:
        registered = _REGISTERED_FACTORIES[0] if _REGISTERED_FACTORIES else None
    factory = registered or _entrypoint_metrics_factory()
    if factory is None:
        return NoopMetricsFactory()
    _LOGGER.info("Found a metrics factory: %s", type(factory).__name__)
    return factory


__all__ = [
    "METRICS_FACTORY_ENTRY_POINT_GROUP",
    "Metrics",
    "MetricsFactory",
    "MetricsSpanProcessor",
    "NoopMetricsFactory",
    "OtelMetricsFactory",
    "TraceStartSampler",
    "group_entry_points",
    "load_metrics_factory",
    "register_metrics_factory",
    "reset_metrics_factories",
]
