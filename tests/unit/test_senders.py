"""Unit tests for sender resolution."""

from __future__ import annotations

import logging

import pytest
from opentelemetry.sdk.trace.export import SpanExporter
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from tracerconf.env_utils import PropertySource
from tracerconf.senders import (
    NoopSender,
    OtlpSenderFactory,
    SenderConfiguration,
    available_sender_factories,
    register_sender_factory,
    resolve_sender,
)


class _RecordingFactory:
    def __init__(self, name: str) -> None:
        self.name = name
        self.configs: list[SenderConfiguration] = []
        self.exporter = InMemorySpanExporter()

    def get_sender(self, config: SenderConfiguration) -> SpanExporter:
        self.configs.append(config)
        return self.exporter


def test_explicit_sender_wins_over_fields() -> None:
    """Ensure an explicit sender is used even when every other field is set."""
    explicit = InMemorySpanExporter()
    factory = _RecordingFactory("otlp")
    register_sender_factory(factory)
    config = (
        SenderConfiguration()
        .with_agent_host("agent")
        .with_agent_port(6831)
        .with_endpoint("http://collector:4318/v1/traces")
        .with_sender(explicit)
    )
    assert config.get_sender() is explicit
    assert factory.configs == []


def test_unset_factory_name_uses_otlp() -> None:
    """Ensure the otlp factory resolves senders when no factory is named."""
    factory = _RecordingFactory("otlp")
    register_sender_factory(factory)
    config = SenderConfiguration(agent_host="agent")
    assert resolve_sender(config) is factory.exporter
    assert factory.configs == [config]


def test_named_factory_selected() -> None:
    """Ensure a named factory is picked over the built-in one."""
    factory = _RecordingFactory("custom")
    register_sender_factory(factory)
    sender = SenderConfiguration(factory_name="custom").get_sender()
    assert sender is factory.exporter


def test_missing_named_factory_falls_back_to_noop(caplog: pytest.LogCaptureFixture) -> None:
    """Ensure a missing named factory logs a warning and drops spans."""
    with caplog.at_level(logging.WARNING, logger="tracerconf.senders"):
        sender = SenderConfiguration(factory_name="thrift").get_sender()
    assert isinstance(sender, NoopSender)
    assert "thrift" in caplog.text


def test_builtin_otlp_factory_always_available() -> None:
    """Ensure the built-in factory is listed last."""
    factories = available_sender_factories()
    assert isinstance(factories[-1], OtlpSenderFactory)


class _FakeOtlpExporter(NoopSender):
    def __init__(self, **kwargs: object) -> None:
        self.kwargs = kwargs


def test_otlp_grpc_sender_targets_agent(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure the agent transport is used when no endpoint is set."""
    from opentelemetry.exporter.otlp.proto.grpc import trace_exporter

    monkeypatch.setattr(trace_exporter, "OTLPSpanExporter", _FakeOtlpExporter)
    sender = OtlpSenderFactory().get_sender(SenderConfiguration(agent_port=14317))
    assert isinstance(sender, _FakeOtlpExporter)
    assert sender.kwargs == {"endpoint": "localhost:14317", "insecure": True}


def test_otlp_http_sender_prefers_bearer_token(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure an endpoint selects the HTTP transport with a bearer token."""
    from opentelemetry.exporter.otlp.proto.http import trace_exporter

    monkeypatch.setattr(trace_exporter, "OTLPSpanExporter", _FakeOtlpExporter)
    config = SenderConfiguration(
        endpoint="http://collector:4318/v1/traces",
        agent_host="agent",
        auth_token="secret",
        auth_username="user",
        auth_password="pass",
    )
    sender = OtlpSenderFactory().get_sender(config)
    assert isinstance(sender, _FakeOtlpExporter)
    assert sender.kwargs == {
        "endpoint": "http://collector:4318/v1/traces",
        "headers": {"Authorization": "Bearer secret"},
    }


def test_otlp_http_sender_with_basic_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure username and password produce a basic auth header."""
    from opentelemetry.exporter.otlp.proto.http import trace_exporter

    monkeypatch.setattr(trace_exporter, "OTLPSpanExporter", _FakeOtlpExporter)
    config = SenderConfiguration(
        endpoint="http://collector:4318/v1/traces",
        auth_username="user",
        auth_password="pass",
    )
    sender = OtlpSenderFactory().get_sender(config)
    assert isinstance(sender, _FakeOtlpExporter)
    assert sender.kwargs["headers"] == {"Authorization": "Basic dXNlcjpwYXNz"}


def test_sender_configuration_from_env() -> None:
    """Ensure sender fields are read from properties."""
    source = PropertySource(
        {
            "JAEGER_AGENT_HOST": "agent",
            "JAEGER_AGENT_PORT": "6831",
            "JAEGER_ENDPOINT": "http://collector:14268/api/traces",
            "JAEGER_AUTH_TOKEN": "token",
            "JAEGER_USER": "user",
            "JAEGER_PASSWORD": "pass",
            "JAEGER_SENDER_FACTORY": "otlp",
        },
        environ={},
    )
    assert SenderConfiguration.from_env(source) == SenderConfiguration(
        agent_host="agent",
        agent_port=6831,
        endpoint="http://collector:14268/api/traces",
        auth_token="token",
        auth_username="user",
        auth_password="pass",
        factory_name="otlp",
    )
