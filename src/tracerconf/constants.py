"""Canonical configuration keys and telemetry names for tracerconf."""

from __future__ import annotations

from enum import StrEnum


class ConfigKey(StrEnum):
    """Recognized property/environment keys."""

    SERVICE_NAME = "JAEGER_SERVICE_NAME"
    SAMPLER_TYPE = "JAEGER_SAMPLER_TYPE"
    SAMPLER_PARAM = "JAEGER_SAMPLER_PARAM"
    SAMPLER_MANAGER_HOST_PORT = "JAEGER_SAMPLER_MANAGER_HOST_PORT"
    REPORTER_LOG_SPANS = "JAEGER_REPORTER_LOG_SPANS"
    REPORTER_MAX_QUEUE_SIZE = "JAEGER_REPORTER_MAX_QUEUE_SIZE"
    REPORTER_FLUSH_INTERVAL = "JAEGER_REPORTER_FLUSH_INTERVAL"
    AGENT_HOST = "JAEGER_AGENT_HOST"
    AGENT_PORT = "JAEGER_AGENT_PORT"
    ENDPOINT = "JAEGER_ENDPOINT"
    AUTH_TOKEN = "JAEGER_AUTH_TOKEN"
    USER = "JAEGER_USER"
    PASSWORD = "JAEGER_PASSWORD"
    TAGS = "JAEGER_TAGS"
    PROPAGATION = "JAEGER_PROPAGATION"
    SENDER_FACTORY = "JAEGER_SENDER_FACTORY"


class MetricName(StrEnum):
    """Canonical metric names."""

    TRACES_STARTED_SAMPLED = "tracerconf.traces.started.sampled"
    TRACES_STARTED_NOT_SAMPLED = "tracerconf.traces.started.not_sampled"
    SPANS_STARTED = "tracerconf.spans.started"
    SPANS_FINISHED = "tracerconf.spans.finished"
    SAMPLER_QUERIED = "tracerconf.sampler.queried"
    SAMPLER_QUERY_FAILED = "tracerconf.sampler.query_failed"
    SAMPLER_UPDATED = "tracerconf.sampler.updated"
    SAMPLER_UPDATE_FAILED = "tracerconf.sampler.update_failed"


class ResourceAttribute(StrEnum):
    """Canonical resource attribute names."""

    SERVICE_NAME = "service.name"
    TRACER_VERSION = "tracerconf.version"


SCOPE_NAME = "tracerconf"

__all__ = [
    "SCOPE_NAME",
    "ConfigKey",
    "MetricName",
    "ResourceAttribute",
]
