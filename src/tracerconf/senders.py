"""Sender configuration and sender-factory resolution."""

from __future__ import annotations

import base64
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, replace
from importlib.metadata import EntryPoint
from typing import Protocol, runtime_checkable

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult

from tracerconf.constants import ConfigKey
from tracerconf.env_utils import PropertySource, env_int, env_value
from tracerconf.metrics import group_entry_points

_LOGGER = logging.getLogger(__name__)

SENDER_FACTORY_ENTRY_POINT_GROUP = "tracerconf.sender_factories"
OTLP_FACTORY_NAME = "otlp"
DEFAULT_AGENT_HOST = "localhost"
DEFAULT_AGENT_PORT = 4317


@dataclass(frozen=True)
class SenderConfiguration:
    """Declared sender settings.

    An explicit ``sender`` takes precedence over every other field.
    """

    sender: SpanExporter | None = None
    agent_host: str | None = None
    agent_port: int | None = None
    endpoint: str | None = None
    auth_token: str | None = None
    auth_username: str | None = None
    auth_password: str | None = None
    factory_name: str | None = None

    @classmethod
    def from_env(cls, source: PropertySource | None = None) -> SenderConfiguration:
        """Read sender settings from properties and the environment.

        Returns
        -------
        SenderConfiguration
            Settings with unset keys left as None.
        """
        return cls(
            agent_host=env_value(ConfigKey.AGENT_HOST, source=source),
            agent_port=env_int(ConfigKey.AGENT_PORT, source=source),
            endpoint=env_value(ConfigKey.ENDPOINT, source=source),
            auth_token=env_value(ConfigKey.AUTH_TOKEN, source=source),
            auth_username=env_value(ConfigKey.USER, source=source),
            auth_password=env_value(ConfigKey.PASSWORD, source=source),
            factory_name=env_value(ConfigKey.SENDER_FACTORY, source=source),
        )

    def with_sender(self, sender: SpanExporter | None) -> SenderConfiguration:
        """Return a copy with an explicit ``sender``."""
        return replace(self, sender=sender)

    def with_agent_host(self, agent_host: str | None) -> SenderConfiguration:
        """Return a copy with ``agent_host`` replaced."""
        return replace(self, agent_host=agent_host)

    def with_agent_port(self, agent_port: int | None) -> SenderConfiguration:
        """Return a copy with ``agent_port`` replaced."""
        return replace(self, agent_port=agent_port)

    def with_endpoint(self, endpoint: str | None) -> SenderConfiguration:
        """Return a copy with ``endpoint`` replaced."""
        return replace(self, endpoint=endpoint)

    def with_auth_token(self, auth_token: str | None) -> SenderConfiguration:
        """Return a copy with ``auth_token`` replaced."""
        return replace(self, auth_token=auth_token)

    def with_auth_username(self, auth_username: str | None) -> SenderConfiguration:
        """Return a copy with ``auth_username`` replaced."""
        return replace(self, auth_username=auth_username)

    def with_auth_password(self, auth_password: str | None) -> SenderConfiguration:
        """Return a copy with ``auth_password`` replaced."""
        return replace(self, auth_password=auth_password)

    def with_factory_name(self, factory_name: str | None) -> SenderConfiguration:
        """Return a copy with ``factory_name`` replaced."""
        return replace(self, factory_name=factory_name)

    def get_sender(self) -> SpanExporter:
        """Return the explicit sender, else the one a sender factory resolves.

        Returns
        -------
        SpanExporter
            Sender for span delivery.
        """
        if self.sender is not None:
            return self.sender
        return resolve_sender(self)


class NoopSender(SpanExporter):
    """Sender that drops every span."""

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        """Discard ``spans``.

        Returns
        -------
        SpanExportResult
            Always ``SUCCESS``.
        """
        _ = spans
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        """Nothing to release."""

    def __repr__(self) -> str:
        return "NoopSender()"


@runtime_checkable
class SenderFactory(Protocol):
    """Named source of senders built from a :class:`SenderConfiguration`."""

    name: str

    def get_sender(self, config: SenderConfiguration) -> SpanExporter:
        """Return a sender for ``config``."""
        ...


def _auth_headers(config: SenderConfiguration) -> dict[str, str] | None:
    if config.auth_token:
        return {"Authorization": f"Bearer {config.auth_token}"}
    if config.auth_username and config.auth_password:
        raw = f"{config.auth_username}:{config.auth_password}".encode()
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}
    return None


class OtlpSenderFactory:
    """Build OTLP span exporters.

    A collector ``endpoint`` selects OTLP/HTTP with optional auth headers;
    otherwise OTLP/gRPC targets the agent host and port.
    """

    name = OTLP_FACTORY_NAME

    def get_sender(self, config: SenderConfiguration) -> SpanExporter:
        """Return an OTLP exporter for ``config``.

        Returns
        -------
        SpanExporter
            OTLP/HTTP or OTLP/gRPC exporter.
        """
        if config.endpoint:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

            _LOGGER.debug("Using OTLP/HTTP sender for %s", config.endpoint)
            return OTLPSpanExporter(endpoint=config.endpoint, headers=_auth_headers(config))
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        host = config.agent_host or DEFAULT_AGENT_HOST
        port = DEFAULT_AGENT_PORT if config.agent_port is None else config.agent_port
        _LOGGER.debug("Using OTLP/gRPC sender for %s:%s", host, port)
        return OTLPSpanExporter(endpoint=f"{host}:{port}", insecure=True)

    def __repr__(self) -> str:
        return "OtlpSenderFactory()"


# -----------------------------------------------------------------------------
# Discovery
# -----------------------------------------------------------------------------

_REGISTRY_LOCK = threading.Lock()
_REGISTERED_FACTORIES: list[SenderFactory] = []


def register_sender_factory(factory: SenderFactory) -> None:
    """Register a sender factory ahead of entry points and built-ins."""
    with _REGISTRY_LOCK:
        _REGISTERED_FACTORIES.append(factory)


def reset_sender_factories() -> None:
    """Clear explicitly registered sender factories."""
    with _REGISTRY_LOCK:
        _REGISTERED_FACTORIES.clear()


def _load_entry(entry: EntryPoint) -> SenderFactory | None:
    try:
        loaded = entry.load()
    except (ImportError, AttributeError) as exc:
        _LOGGER.warning("Failed to load sender factory entrypoint %s: %s", entry.name, exc)
        return None
    factory = loaded() if isinstance(loaded, type) else loaded
    if isinstance(factory, SenderFactory):
        return factory
    _LOGGER.warning("Sender factory entrypoint %s returned invalid type.", entry.name)
    return None


def available_sender_factories() -> list[SenderFactory]:
    """Return every known sender factory in lookup order.

    Returns
    -------
    list[SenderFactory]
        Registered factories, then entry-point factories, then the built-in OTLP one.
    """
    with _REGISTRY_LOCK:
        factories: list[SenderFactory] = list(_REGISTERED_FACTORIES)
    for entry in group_entry_points(SENDER_FACTORY_ENTRY_POINT_GROUP):
        factory = _load_entry(entry)
        if factory is not None:
            factories.append(factory)
    factories.append(OtlpSenderFactory())
    return factories


def resolve_sender(config: SenderConfiguration) -> SpanExporter:
    """Resolve a sender through the factory ``config.factory_name`` selects.

    Returns
    -------
    SpanExporter
        Factory-built sender, or :class:`NoopSender` when the named factory is missing.
    """
    wanted = config.factory_name or OTLP_FACTORY_NAME
    for factory in available_sender_factories():
        if factory.name == wanted:
            sender = factory.get_sender(config)
            _LOGGER.debug("Using sender %r from factory %s", sender, factory.name)
            return sender
    _LOGGER.warning(
        "No sender factory named %r; spans will be dropped. Set %s to one of the available factories.",
        wanted,
        ConfigKey.SENDER_FACTORY.value,
    )
    return NoopSender()


__all__ = [
    "DEFAULT_AGENT_HOST",
    "DEFAULT_AGENT_PORT",
    "OTLP_FACTORY_NAME",
    "SENDER_FACTORY_ENTRY_POINT_GROUP",
    "NoopSender",
    "OtlpSenderFactory",
    "SenderConfiguration",
    "SenderFactory",
    "available_sender_factories",
    "register_sender_factory",
    "reset_sender_factories",
    "resolve_sender",
]
