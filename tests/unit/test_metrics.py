"""Unit tests for metrics-factory discovery and the metrics sink."""

from __future__ import annotations

import logging
from collections.abc import Callable

import pytest
from opentelemetry import metrics as otel_metrics

from tracerconf import metrics as tracer_metrics_module
from tracerconf.constants import MetricName
from tracerconf.metrics import (
    Metrics,
    NoopMetricsFactory,
    OtelMetricsFactory,
    load_metrics_factory,
    register_metrics_factory,
)


class _FakeEntryPoint:
    def __init__(self, name: str, loaded: object) -> None:
        self.name = name
        self._loaded = loaded

    def load(self) -> object:
        if isinstance(self._loaded, Exception):
            raise self._loaded
        return self._loaded


def test_no_factory_falls_back_to_noop(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure discovery without candidates yields the no-op factory."""
    monkeypatch.setattr(tracer_metrics_module, "group_entry_points", lambda group: [])
    factory = load_metrics_factory()
    assert isinstance(factory, NoopMetricsFactory)
    assert isinstance(factory.create_meter_provider(), otel_metrics.NoOpMeterProvider)


def test_first_registered_factory_wins(metrics_factory: OtelMetricsFactory) -> None:
    """Ensure the first explicit registration is returned."""
    register_metrics_factory(metrics_factory)
    register_metrics_factory(NoopMetricsFactory())
    assert load_metrics_factory() is metrics_factory


def test_entry_point_factory_discovered(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Ensure entry points are consulted, skipping broken and invalid ones."""
    entries = [
        _FakeEntryPoint("broken", ImportError("missing")),
        _FakeEntryPoint("invalid", object()),
        _FakeEntryPoint("otel", OtelMetricsFactory),
    ]
    monkeypatch.setattr(tracer_metrics_module, "group_entry_points", lambda group: entries)
    with caplog.at_level(logging.WARNING, logger="tracerconf.metrics"):
        factory = load_metrics_factory()
    assert isinstance(factory, OtelMetricsFactory)
    assert "broken" in caplog.text
    assert "invalid" in caplog.text


def test_counters_record_into_provider(
    tracer_metrics: Metrics,
    read_counter: Callable[[str], int],
) -> None:
    """Ensure counters are created on the factory's meter provider."""
    tracer_metrics.sampler_queried.add(2)
    tracer_metrics.sampler_updated.add(1)
    assert read_counter(MetricName.SAMPLER_QUERIED) == 2
    assert read_counter(MetricName.SAMPLER_UPDATED) == 1
    assert read_counter(MetricName.SPANS_STARTED) == 0
