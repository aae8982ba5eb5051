"""Propagation codecs and the per-wire-format codec registry."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

from opentelemetry import baggage
from opentelemetry.context import Context
from opentelemetry.propagators.textmap import (
    CarrierT,
    Getter,
    Setter,
    TextMapPropagator,
    default_getter,
    default_setter,
)
from opentelemetry.trace import (
    NonRecordingSpan,
    SpanContext,
    TraceFlags,
    get_current_span,
    set_span_in_context,
)

from tracerconf.constants import ConfigKey
from tracerconf.env_utils import PropertySource, env_value

if TYPE_CHECKING:
    from tracerconf.tracer import TracerBuilder

_LOGGER = logging.getLogger(__name__)

_TRACE_ID_LIMIT = 1 << 128
_SPAN_ID_LIMIT = 1 << 64


class Format(StrEnum):
    """Carrier shapes trace context can be propagated over."""

    HTTP_HEADERS = "http_headers"
    TEXT_MAP = "text_map"


class Propagation(StrEnum):
    """Propagation format names accepted in a propagation declaration."""

    JAEGER = "jaeger"
    B3 = "b3"


def _first_values(carrier: CarrierT, getter: Getter[CarrierT]) -> dict[str, tuple[str, str]]:
    values: dict[str, tuple[str, str]] = {}
    for key in getter.keys(carrier):
        found = getter.get(carrier, key)
        if found:
            values[key.lower()] = (key, found[0])
    return values


def _remote_span_context(trace_id: int, span_id: int, *, sampled: bool) -> SpanContext | None:
    if not (0 < trace_id < _TRACE_ID_LIMIT and 0 < span_id < _SPAN_ID_LIMIT):
        return None
    flags = TraceFlags(TraceFlags.SAMPLED if sampled else TraceFlags.DEFAULT)
    return SpanContext(trace_id, span_id, is_remote=True, trace_flags=flags)


class JaegerTextMapCodec(TextMapPropagator):
    """Jaeger ``uber-trace-id`` codec with ``uberctx-`` baggage.

    When ``url_encoding`` is set, values are percent-encoded on inject and
    decoded on extract, as HTTP header carriers require.
    """

    TRACE_ID_KEY = "uber-trace-id"
    BAGGAGE_PREFIX = "uberctx-"

    def __init__(self, *, url_encoding: bool = False) -> None:
        self.url_encoding = url_encoding

    def _encode(self, value: str) -> str:
        return quote(value, safe="") if self.url_encoding else value

    def _decode(self, value: str) -> str:
        return unquote(value) if self.url_encoding else value

    @staticmethod
    def _parse(value: str) -> SpanContext | None:
        parts = value.split(":")
        if len(parts) != 4:  # noqa: PLR2004
            _LOGGER.warning("Malformed %s header: %r", JaegerTextMapCodec.TRACE_ID_KEY, value)
            return None
        try:
            trace_id = int(parts[0], 16)
            span_id = int(parts[1], 16)
            flags = int(parts[3], 16)
        except ValueError:
            _LOGGER.warning("Malformed %s header: %r", JaegerTextMapCodec.TRACE_ID_KEY, value)
            return None
        return _remote_span_context(trace_id, span_id, sampled=bool(flags & TraceFlags.SAMPLED))

    def inject(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        """Write the span context and baggage of ``context`` into ``carrier``."""
        span_context = get_current_span(context).get_span_context()
        if not span_context.is_valid:
            return
        header = (
            f"{span_context.trace_id:032x}:{span_context.span_id:016x}:0:"
            f"{int(span_context.trace_flags) & TraceFlags.SAMPLED:x}"
        )
        setter.set(carrier, self.TRACE_ID_KEY, self._encode(header))
        for key, value in baggage.get_all(context).items():
            setter.set(carrier, f"{self.BAGGAGE_PREFIX}{key}", self._encode(str(value)))

    def extract(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        """Read a remote span context and baggage from ``carrier``.

        Returns
        -------
        Context
            ``context`` extended with what the carrier holds.
        """
        result = Context() if context is None else context
        span_context: SpanContext | None = None
        for lowered, (_, value) in _first_values(carrier, getter).items():
            if lowered == self.TRACE_ID_KEY:
                span_context = self._parse(self._decode(value))
            elif lowered.startswith(self.BAGGAGE_PREFIX):
                name = lowered.removeprefix(self.BAGGAGE_PREFIX)
                result = baggage.set_baggage(name, self._decode(value), result)
        if span_context is None:
            return result
        return set_span_in_context(NonRecordingSpan(span_context), result)

    @property
    def fields(self) -> set[str]:
        """Return the carrier keys written by ``inject``."""
        return {self.TRACE_ID_KEY}

    def __repr__(self) -> str:
        return f"JaegerTextMapCodec(url_encoding={self.url_encoding})"


class B3TextMapCodec(TextMapPropagator):
    """Zipkin B3 multi-header codec."""

    TRACE_ID_KEY = "X-B3-TraceId"
    SPAN_ID_KEY = "X-B3-SpanId"
    SAMPLED_KEY = "X-B3-Sampled"
    FLAGS_KEY = "X-B3-Flags"

    def inject(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        """Write the span context of ``context`` into ``carrier``."""
        span_context = get_current_span(context).get_span_context()
        if not span_context.is_valid:
            return
        setter.set(carrier, self.TRACE_ID_KEY, f"{span_context.trace_id:032x}")
        setter.set(carrier, self.SPAN_ID_KEY, f"{span_context.span_id:016x}")
        setter.set(carrier, self.SAMPLED_KEY, "1" if span_context.trace_flags.sampled else "0")

    def extract(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        """Read a remote span context from ``carrier``.

        Returns
        -------
        Context
            ``context`` with the remote span set when the carrier holds one.
        """
        result = Context() if context is None else context
        values = {key: value for key, (_, value) in _first_values(carrier, getter).items()}
        trace_id = values.get(self.TRACE_ID_KEY.lower())
        span_id = values.get(self.SPAN_ID_KEY.lower())
        if trace_id is None or span_id is None:
            return result
        sampled = values.get(self.SAMPLED_KEY.lower(), "").lower() in {"1", "true"}
        debug = values.get(self.FLAGS_KEY.lower()) == "1"
        try:
            span_context = _remote_span_context(
                int(trace_id, 16),
                int(span_id, 16),
                sampled=sampled or debug,
            )
        except ValueError:
            _LOGGER.warning("Malformed B3 headers: trace_id=%r span_id=%r", trace_id, span_id)
            return result
        if span_context is None:
            return result
        return set_span_in_context(NonRecordingSpan(span_context), result)

    @property
    def fields(self) -> set[str]:
        """Return the carrier keys written by ``inject``."""
        return {self.TRACE_ID_KEY, self.SPAN_ID_KEY, self.SAMPLED_KEY}

    def __repr__(self) -> str:
        return "B3TextMapCodec()"


class CompositeCodec(TextMapPropagator):
    """Codec over several children.

    Extraction returns the first child result carrying a new valid span
    context; injection runs every child in order.
    """

    def __init__(self, codecs: Iterable[TextMapPropagator]) -> None:
        self.codecs: tuple[TextMapPropagator, ...] = tuple(codecs)

    def inject(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        """Let every child write into ``carrier``."""
        for codec in self.codecs:
            codec.inject(carrier, context, setter)

    def extract(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        """Return the first child extraction that yields a span context.

        Returns
        -------
        Context
            First successful child result, else ``context`` unchanged.
        """
        base = Context() if context is None else context
        base_span = get_current_span(base)
        for codec in self.codecs:
            extracted = codec.extract(carrier, base, getter)
            span = get_current_span(extracted)
            if span is not base_span and span.get_span_context().is_valid:
                return extracted
        return base

    @property
    def fields(self) -> set[str]:
        """Return the union of child carrier keys."""
        keys: set[str] = set()
        for codec in self.codecs:
            keys |= codec.fields
        return keys

    def __repr__(self) -> str:
        return f"CompositeCodec({list(self.codecs)!r})"


def parse_propagation(raw: str | None) -> list[Propagation]:
    """Parse a comma-separated, case-insensitive propagation declaration.

    Unknown names are logged and skipped.

    Returns
    -------
    list[Propagation]
        Recognized formats in declaration order.
    """
    if raw is None:
        return []
    formats: list[Propagation] = []
    for token in raw.split(","):
        name = token.strip().lower()
        if not name:
            continue
        try:
            formats.append(Propagation(name))
        except ValueError:
            _LOGGER.error("Unknown propagation format %r", token.strip())  # noqa: TRY400
    return formats


class CodecConfiguration:
    """Ordered codecs per wire format."""

    def __init__(
        self,
        codecs: Mapping[Format, Sequence[TextMapPropagator]] | None = None,
    ) -> None:
        self._codecs: dict[Format, list[TextMapPropagator]] = {}
        for fmt, items in (codecs or {}).items():
            for codec in items:
                self._add(fmt, codec)

    @classmethod
    def from_propagation(cls, raw: str | Iterable[str] | None) -> CodecConfiguration:
        """Build codecs for a propagation declaration.

        Parameters
        ----------
        raw
            Comma-separated declaration, or an iterable of format names.

        Returns
        -------
        CodecConfiguration
            Codecs registered in declaration order.
        """
        declared = raw if raw is None or isinstance(raw, str) else ",".join(raw)
        config = cls()
        for propagation in parse_propagation(declared):
            if propagation is Propagation.JAEGER:
                config.with_codec(Format.HTTP_HEADERS, JaegerTextMapCodec(url_encoding=True))
                config.with_codec(Format.TEXT_MAP, JaegerTextMapCodec(url_encoding=False))
            elif propagation is Propagation.B3:
                codec = B3TextMapCodec()
                config.with_codec(Format.HTTP_HEADERS, codec)
                config.with_codec(Format.TEXT_MAP, codec)
        return config

    @classmethod
    def from_env(cls, source: PropertySource | None = None) -> CodecConfiguration:
        """Build codecs from the propagation key.

        Returns
        -------
        CodecConfiguration
            Codecs for the declared formats; empty when undeclared.
        """
        return cls.from_propagation(env_value(ConfigKey.PROPAGATION, source=source))

    def _add(self, fmt: Format, codec: TextMapPropagator) -> None:
        self._codecs.setdefault(Format(fmt), []).append(codec)

    def with_codec(self, fmt: Format, codec: TextMapPropagator) -> CodecConfiguration:
        """Append ``codec`` to the codecs of ``fmt``.

        Returns
        -------
        CodecConfiguration
            This configuration.
        """
        self._add(fmt, codec)
        return self

    @property
    def codecs(self) -> Mapping[Format, tuple[TextMapPropagator, ...]]:
        """Return a read-only view of the registered codecs."""
        return MappingProxyType({fmt: tuple(items) for fmt, items in self._codecs.items()})

    def codec_for(self, fmt: Format) -> TextMapPropagator | None:
        """Return the single or composite codec for ``fmt``.

        Returns
        -------
        TextMapPropagator | None
            None when nothing is registered for ``fmt``.
        """
        items = self._codecs.get(fmt)
        if not items:
            return None
        if len(items) == 1:
            return items[0]
        return CompositeCodec(items)

    def apply(self, builder: TracerBuilder) -> None:
        """Register injectors and extractors on ``builder``.

        Formats without codecs keep the builder defaults.
        """
        for fmt in (Format.HTTP_HEADERS, Format.TEXT_MAP):
            codec = self.codec_for(fmt)
            if codec is None:
                continue
            builder.register_injector(fmt, codec)
            builder.register_extractor(fmt, codec)

    def __repr__(self) -> str:
        return f"CodecConfiguration({dict(self._codecs)!r})"


__all__ = [
    "B3TextMapCodec",
    "CodecConfiguration",
    "CompositeCodec",
    "Format",
    "JaegerTextMapCodec",
    "Propagation",
    "parse_propagation",
]
