"""Tracer object and the builder that assembles it."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, MutableMapping
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from types import MappingProxyType
from typing import Any

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.propagators.textmap import TextMapPropagator
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.sampling import ALWAYS_ON, ParentBased, Sampler
from opentelemetry.trace import NonRecordingSpan, SpanContext, set_span_in_context

from tracerconf.constants import SCOPE_NAME, ResourceAttribute
from tracerconf.errors import InvalidServiceNameError, UnsupportedFormatError
from tracerconf.metrics import Metrics, MetricsSpanProcessor, NoopMetricsFactory, TraceStartSampler
from tracerconf.propagation import Format, JaegerTextMapCodec
from tracerconf.sampling import close_sampler

_LOGGER = logging.getLogger(__name__)


def tracer_version() -> str:
    """Return the installed tracerconf version.

    Returns
    -------
    str
        Version string, or "0.0.0-dev" if not installed.
    """
    try:
        return pkg_version("tracerconf")
    except PackageNotFoundError:
        return "0.0.0-dev"


def check_valid_service_name(service_name: str | None) -> str:
    """Validate a service name.

    Returns
    -------
    str
        The validated name.

    Raises
    ------
    InvalidServiceNameError
        Raised when the name is None or blank.
    """
    if service_name is None or not service_name.strip():
        msg = "Service name must not be null or empty"
        raise InvalidServiceNameError(msg)
    return service_name


class Tracer:
    """Assembled tracer backed by an OpenTelemetry tracer provider."""

    def __init__(
        self,
        service_name: str,
        *,
        sampler: Sampler,
        reporter: SpanProcessor | None,
        metrics: Metrics,
        tags: Mapping[str, str | None],
        injectors: Mapping[Format, TextMapPropagator],
        extractors: Mapping[Format, TextMapPropagator],
    ) -> None:
        self.service_name = service_name
        self.sampler = sampler
        self.reporter = reporter
        self.metrics = metrics
        self._tags = MappingProxyType(dict(tags))
        self._injectors = dict(injectors)
        self._extractors = dict(extractors)
        attributes: dict[str, str] = {
            key: value for key, value in self._tags.items() if value is not None
        }
        attributes[ResourceAttribute.SERVICE_NAME.value] = service_name
        attributes[ResourceAttribute.TRACER_VERSION.value] = tracer_version()
        self.provider = TracerProvider(
            resource=Resource.create(attributes),
            sampler=ParentBased(root=TraceStartSampler(sampler, metrics)),
        )
        self.provider.add_span_processor(MetricsSpanProcessor(metrics))
        if reporter is not None:
            self.provider.add_span_processor(reporter)
        self._tracer = self.provider.get_tracer(SCOPE_NAME, tracer_version())
        self._lock = threading.Lock()
        self._closed = False

    @property
    def tags(self) -> Mapping[str, str | None]:
        """Return the tracer-wide tags."""
        return self._tags

    @property
    def closed(self) -> bool:
        """Return True once :meth:`close` ran."""
        return self._closed

    def injector(self, fmt: Format) -> TextMapPropagator:
        """Return the injector registered for ``fmt``.

        Returns
        -------
        TextMapPropagator
            Registered injector.

        Raises
        ------
        UnsupportedFormatError
            Raised when no injector is registered for ``fmt``.
        """
        codec = self._injectors.get(fmt)
        if codec is None:
            msg = f"Unsupported format {fmt!r}"
            raise UnsupportedFormatError(msg)
        return codec

    def extractor(self, fmt: Format) -> TextMapPropagator:
        """Return the extractor registered for ``fmt``.

        Returns
        -------
        TextMapPropagator
            Registered extractor.

        Raises
        ------
        UnsupportedFormatError
            Raised when no extractor is registered for ``fmt``.
        """
        codec = self._extractors.get(fmt)
        if codec is None:
            msg = f"Unsupported format {fmt!r}"
            raise UnsupportedFormatError(msg)
        return codec

    def start_as_current_span(self, name: str, **kwargs: Any) -> Any:
        """Start a span and make it current; see ``opentelemetry.trace.Tracer``.

        Returns
        -------
        Any
            Context manager yielding the started span.
        """
        return self._tracer.start_as_current_span(name, **kwargs)

    def start_span(self, name: str, **kwargs: Any) -> trace.Span:
        """Start a span without making it current.

        Returns
        -------
        trace.Span
            Started span.
        """
        return self._tracer.start_span(name, **kwargs)

    def inject(
        self,
        span_context: SpanContext | None,
        fmt: Format,
        carrier: MutableMapping[str, str],
    ) -> None:
        """Write ``span_context`` into ``carrier`` using the ``fmt`` injector.

        ``None`` injects the span of the current context.
        """
        injector = self.injector(fmt)
        context: Context | None = None
        if span_context is not None:
            context = set_span_in_context(NonRecordingSpan(span_context))
        injector.inject(carrier, context=context)

    def extract(self, fmt: Format, carrier: Mapping[str, str]) -> Context:
        """Read a remote context from ``carrier`` using the ``fmt`` extractor.

        Returns
        -------
        Context
            Context holding the remote span, if the carrier had one.
        """
        return self.extractor(fmt).extract(carrier, context=Context())

    def close(self) -> None:
        """Flush and shut the tracer down; later calls do nothing."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.provider.shutdown()
        close_sampler(self.sampler)
        _LOGGER.info("Tracer for service %s closed", self.service_name)

    def __repr__(self) -> str:
        return (
            f"Tracer(service_name={self.service_name!r}, "
            f"sampler={self.sampler.get_description()!r}, reporter={self.reporter!r}, "
            f"tags={dict(self._tags)!r}, closed={self._closed})"
        )


class TracerBuilder:
    """Collect tracer parts and build a :class:`Tracer`."""

    def __init__(self, service_name: str) -> None:
        self.service_name = check_valid_service_name(service_name)
        self.sampler: Sampler = ALWAYS_ON
        self.reporter: SpanProcessor | None = None
        self.metrics: Metrics | None = None
        self.tags: dict[str, str | None] = {}
        self.injectors: dict[Format, TextMapPropagator] = {
            Format.HTTP_HEADERS: JaegerTextMapCodec(url_encoding=True),
            Format.TEXT_MAP: JaegerTextMapCodec(url_encoding=False),
        }
        self.extractors: dict[Format, TextMapPropagator] = dict(self.injectors)

    def with_sampler(self, sampler: Sampler) -> TracerBuilder:
        """Set the sampler.

        Returns
        -------
        TracerBuilder
            This builder.
        """
        self.sampler = sampler
        return self

    def with_reporter(self, reporter: SpanProcessor | None) -> TracerBuilder:
        """Set the reporter.

        Returns
        -------
        TracerBuilder
            This builder.
        """
        self.reporter = reporter
        return self

    def with_metrics(self, metrics: Metrics) -> TracerBuilder:
        """Set the metrics sink.

        Returns
        -------
        TracerBuilder
            This builder.
        """
        self.metrics = metrics
        return self

    def with_tags(self, tags: Mapping[str, str | None]) -> TracerBuilder:
        """Merge tracer-wide tags.

        Returns
        -------
        TracerBuilder
            This builder.
        """
        self.tags.update(tags)
        return self

    def register_injector(self, fmt: Format, codec: TextMapPropagator) -> TracerBuilder:
        """Install ``codec`` as the injector for ``fmt``.

        Returns
        -------
        TracerBuilder
            This builder.
        """
        self.injectors[Format(fmt)] = codec
        return self

    def register_extractor(self, fmt: Format, codec: TextMapPropagator) -> TracerBuilder:
        """Install ``codec`` as the extractor for ``fmt``.

        Returns
        -------
        TracerBuilder
            This builder.
        """
        self.extractors[Format(fmt)] = codec
        return self

    def build(self) -> Tracer:
        """Assemble the tracer.

        Returns
        -------
        Tracer
            Ready-to-use tracer.
        """
        metrics = self.metrics or Metrics(NoopMetricsFactory())
        tracer = Tracer(
            self.service_name,
            sampler=self.sampler,
            reporter=self.reporter,
            metrics=metrics,
            tags=self.tags,
            injectors=self.injectors,
            extractors=self.extractors,
        )
        _LOGGER.info("Built tracer: %r", tracer)
        return tracer


__all__ = [
    "Tracer",
    "TracerBuilder",
    "check_valid_service_name",
    "tracer_version",
]
