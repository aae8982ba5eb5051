"""Configuration root and the lazily built tracer it owns."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Any

import msgspec

from tracerconf.constants import ConfigKey
from tracerconf.env_utils import PropertySource, env_tags, env_value
from tracerconf.errors import ConfigurationError
from tracerconf.metrics import Metrics, MetricsFactory, load_metrics_factory
from tracerconf.propagation import CodecConfiguration
from tracerconf.reporters import ReporterConfiguration
from tracerconf.sampling import SamplerConfiguration, close_sampler
from tracerconf.senders import SenderConfiguration
from tracerconf.serde import StructBaseStrict, describe_validation_error
from tracerconf.tracer import Tracer, TracerBuilder, check_valid_service_name

_LOGGER = logging.getLogger(__name__)

_MASK = "***"


class TracerState(StrEnum):
    """Lifecycle of the tracer slot owned by a configuration."""

    UNBUILT = "unbuilt"
    BUILT = "built"
    CLOSED = "closed"


class SamplerSpec(StructBaseStrict, frozen=True):
    """Declarative sampler settings."""

    type: str | None = None
    param: float | None = None
    manager_host_port: str | None = None


class SenderSpec(StructBaseStrict, frozen=True):
    """Declarative sender settings."""

    agent_host: str | None = None
    agent_port: int | None = None
    endpoint: str | None = None
    auth_token: str | None = None
    auth_username: str | None = None
    auth_password: str | None = None
    factory_name: str | None = None


class ReporterSpec(StructBaseStrict, frozen=True):
    """Declarative reporter settings."""

    log_spans: bool | None = None
    flush_interval_ms: int | None = None
    max_queue_size: int | None = None
    sender: SenderSpec | None = None


class ConfigurationSpec(StructBaseStrict, frozen=True):
    """Declarative tracer configuration."""

    service_name: str
    sampler: SamplerSpec | None = None
    reporter: ReporterSpec | None = None
    propagation: str | tuple[str, ...] | None = None
    tags: dict[str, str] | None = None


def _sender_from_spec(spec: SenderSpec | None) -> SenderConfiguration:
    if spec is None:
        return SenderConfiguration()
    return SenderConfiguration(
        agent_host=spec.agent_host,
        agent_port=spec.agent_port,
        endpoint=spec.endpoint,
        auth_token=spec.auth_token,
        auth_username=spec.auth_username,
        auth_password=spec.auth_password,
        factory_name=spec.factory_name,
    )


def _masked(value: str | None) -> str | None:
    return None if value is None else _MASK


class Configuration:
    """Declared tracer configuration and the tracer it builds.

    The tracer is built at most once, on the first :meth:`get_tracer` call.
    Mutators are not synchronized; finish configuring before sharing the
    instance across threads.
    """

    def __init__(self, service_name: str | None) -> None:
        self._service_name = check_valid_service_name(service_name)
        self._sampler: SamplerConfiguration | None = None
        self._reporter: ReporterConfiguration | None = None
        self._codec: CodecConfiguration | None = None
        self._metrics_factory: MetricsFactory | None = None
        self._tracer_tags: dict[str, str | None] | None = None
        self._tracer: Tracer | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, source: PropertySource | None = None) -> Configuration:
        """Snapshot a configuration from properties and the environment.

        Parameters
        ----------
        source
            Lookup source; defaults to the process environment.

        Returns
        -------
        Configuration
            Configuration with every sub-configuration populated.
        """
        return (
            cls(env_value(ConfigKey.SERVICE_NAME, source=source))
            .with_tracer_tags(env_tags(ConfigKey.TAGS, source=source))
            .with_reporter(ReporterConfiguration.from_env(source))
            .with_sampler(SamplerConfiguration.from_env(source))
            .with_codec(CodecConfiguration.from_env(source))
        )

    @classmethod
    def from_spec(cls, spec: ConfigurationSpec | Mapping[str, Any]) -> Configuration:
        """Build a configuration from a declarative spec.

        Parameters
        ----------
        spec
            Spec struct, or a mapping validated into one.

        Returns
        -------
        Configuration
            Configuration mirroring the spec.

        Raises
        ------
        ConfigurationError
            Raised when the mapping does not validate.
        """
        if not isinstance(spec, ConfigurationSpec):
            try:
                spec = msgspec.convert(spec, type=ConfigurationSpec, strict=False)
            except msgspec.ValidationError as exc:
                msg = describe_validation_error(exc, subject="configuration spec")
                raise ConfigurationError(msg) from exc
        sampler = spec.sampler or SamplerSpec()
        reporter = spec.reporter or ReporterSpec()
        config = (
            cls(spec.service_name)
            .with_sampler(
                SamplerConfiguration(
                    type=sampler.type,
                    param=sampler.param,
                    manager_host_port=sampler.manager_host_port,
                )
            )
            .with_reporter(
                ReporterConfiguration(
                    log_spans=reporter.log_spans,
                    flush_interval_ms=reporter.flush_interval_ms,
                    max_queue_size=reporter.max_queue_size,
                    sender_configuration=_sender_from_spec(reporter.sender),
                )
            )
            .with_codec(CodecConfiguration.from_propagation(spec.propagation))
        )
        if spec.tags is not None:
            config.with_tracer_tags(spec.tags)
        return config

    # -- mutators -------------------------------------------------------------

    def with_service_name(self, service_name: str | None) -> Configuration:
        """Rename the service.

        Returns
        -------
        Configuration
            This configuration.
        """
        self._service_name = check_valid_service_name(service_name)
        return self

    def with_sampler(self, sampler: SamplerConfiguration | None) -> Configuration:
        """Set the sampler configuration.

        Returns
        -------
        Configuration
            This configuration.
        """
        self._sampler = sampler
        return self

    def with_reporter(self, reporter: ReporterConfiguration | None) -> Configuration:
        """Set the reporter configuration.

        Returns
        -------
        Configuration
            This configuration.
        """
        self._reporter = reporter
        return self

    def with_codec(self, codec: CodecConfiguration | None) -> Configuration:
        """Set the codec configuration.

        Returns
        -------
        Configuration
            This configuration.
        """
        self._codec = codec
        return self

    def with_metrics_factory(self, factory: MetricsFactory | None) -> Configuration:
        """Set the metrics factory, bypassing discovery.

        Returns
        -------
        Configuration
            This configuration.
        """
        self._metrics_factory = factory
        return self

    def with_tracer_tags(self, tags: Mapping[str, str | None] | None) -> Configuration:
        """Replace tracer-wide tags with a copy of ``tags``; None clears them.

        Returns
        -------
        Configuration
            This configuration.
        """
        self._tracer_tags = None if tags is None else dict(tags)
        return self

    # -- accessors ------------------------------------------------------------

    @property
    def service_name(self) -> str:
        """Return the service name."""
        return self._service_name

    @property
    def sampler(self) -> SamplerConfiguration | None:
        """Return the sampler configuration, if set."""
        return self._sampler

    @property
    def reporter(self) -> ReporterConfiguration | None:
        """Return the reporter configuration, if set."""
        return self._reporter

    @property
    def codec(self) -> CodecConfiguration | None:
        """Return the codec configuration, if set."""
        return self._codec

    @property
    def metrics_factory(self) -> MetricsFactory | None:
        """Return the explicit metrics factory, if set."""
        return self._metrics_factory

    @property
    def tracer_tags(self) -> Mapping[str, str | None] | None:
        """Return a read-only view of the tracer tags, if any were declared."""
        if self._tracer_tags is None:
            return None
        return MappingProxyType(self._tracer_tags)

    @property
    def state(self) -> TracerState:
        """Return the lifecycle state of the tracer slot."""
        tracer = self._tracer
        if tracer is None:
            return TracerState.UNBUILT
        return TracerState.CLOSED if tracer.closed else TracerState.BUILT

    # -- assembly -------------------------------------------------------------

    def get_tracer_builder(self) -> TracerBuilder:
        """Assemble a tracer builder from the declared settings.

        Unset sub-configurations are replaced in place by empty ones.

        Returns
        -------
        TracerBuilder
            Builder with sampler, reporter, metrics, tags and codecs applied.

        Raises
        ------
        InvalidSamplerTypeError
            Raised when the declared sampler type is not recognized.
        """
        if self._sampler is None:
            self._sampler = SamplerConfiguration()
        if self._reporter is None:
            self._reporter = ReporterConfiguration()
        if self._codec is None:
            self._codec = CodecConfiguration()
        factory = self._metrics_factory or load_metrics_factory()
        metrics = Metrics(factory)
        sampler = self._sampler.create_sampler(self._service_name, metrics)
        try:
            reporter = self._reporter.get_reporter()
            builder = (
                TracerBuilder(self._service_name)
                .with_sampler(sampler)
                .with_reporter(reporter)
                .with_metrics(metrics)
                .with_tags(self._tracer_tags or {})
            )
            self._codec.apply(builder)
        except BaseException:
            close_sampler(sampler)
            raise
        return builder

    def get_tracer(self) -> Tracer:
        """Return the tracer, building it on first use.

        A closed tracer is returned as is; it is never rebuilt.

        Returns
        -------
        Tracer
            Cached tracer.
        """
        tracer = self._tracer
        if tracer is not None:
            return tracer
        with self._lock:
            if self._tracer is None:
                self._tracer = self.get_tracer_builder().build()
                _LOGGER.info("Initialized tracer=%r", self._tracer)
            return self._tracer

    def close_tracer(self) -> None:
        """Close the tracer if one was built."""
        with self._lock:
            if self._tracer is not None:
                self._tracer.close()

    def describe(self) -> dict[str, object]:
        """Return a JSON-ready view of the declared configuration.

        Credentials are masked.

        Returns
        -------
        dict[str, object]
            Declared settings and tracer state.
        """
        sampler = self._sampler or SamplerConfiguration()
        reporter = self._reporter or ReporterConfiguration()
        sender = reporter.sender_configuration
        codec = self._codec or CodecConfiguration()
        return {
            "service_name": self._service_name,
            "state": self.state.value,
            "sampler": {
                "type": sampler.type,
                "param": sampler.param,
                "manager_host_port": sampler.manager_host_port,
            },
            "reporter": {
                "log_spans": reporter.log_spans,
                "flush_interval_ms": reporter.flush_interval_ms,
                "max_queue_size": reporter.max_queue_size,
                "sender": {
                    "explicit": None if sender.sender is None else repr(sender.sender),
                    "agent_host": sender.agent_host,
                    "agent_port": sender.agent_port,
                    "endpoint": sender.endpoint,
                    "auth_token": _masked(sender.auth_token),
                    "auth_username": sender.auth_username,
                    "auth_password": _masked(sender.auth_password),
                    "factory_name": sender.factory_name,
                },
            },
            "codecs": {
                fmt.value: [repr(item) for item in items] for fmt, items in codec.codecs.items()
            },
            "tags": None if self._tracer_tags is None else dict(self._tracer_tags),
            "metrics_factory": (
                None if self._metrics_factory is None else repr(self._metrics_factory)
            ),
        }

    def __repr__(self) -> str:
        return f"Configuration(service_name={self._service_name!r}, state={self.state.value!r})"


__all__ = [
    "Configuration",
    "ConfigurationSpec",
    "ReporterSpec",
    "SamplerSpec",
    "SenderSpec",
    "TracerState",
]
