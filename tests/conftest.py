"""Shared pytest fixtures for tracerconf tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from tracerconf.constants import ConfigKey
from tracerconf.metrics import Metrics, OtelMetricsFactory, reset_metrics_factories
from tracerconf.senders import reset_sender_factories


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove recognized configuration keys from the process environment."""
    for key in ConfigKey:
        monkeypatch.delenv(key.value, raising=False)


@pytest.fixture(autouse=True)
def reset_factory_registries() -> Iterator[None]:
    """Clear explicitly registered metrics and sender factories around each test."""
    reset_metrics_factories()
    reset_sender_factories()
    yield
    reset_metrics_factories()
    reset_sender_factories()


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    """Return an in-memory metric reader."""
    return InMemoryMetricReader()


@pytest.fixture
def metrics_factory(metric_reader: InMemoryMetricReader) -> OtelMetricsFactory:
    """Return a metrics factory backed by the in-memory reader."""
    return OtelMetricsFactory(MeterProvider(metric_readers=[metric_reader]))


@pytest.fixture
def tracer_metrics(metrics_factory: OtelMetricsFactory) -> Metrics:
    """Return tracer metrics recorded into the in-memory reader."""
    return Metrics(metrics_factory)


def counter_value(reader: InMemoryMetricReader, name: str) -> int:
    """Return the summed value of counter ``name``, or 0 when never recorded."""
    data = reader.get_metrics_data()
    if data is None:
        return 0
    total = 0
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                if metric.name == name:
                    total += sum(point.value for point in metric.data.data_points)
    return total


@pytest.fixture
def read_counter(metric_reader: InMemoryMetricReader) -> Callable[[str], int]:
    """Return a reader of counter totals recorded by ``tracer_metrics``."""
    return lambda name: counter_value(metric_reader, name)
