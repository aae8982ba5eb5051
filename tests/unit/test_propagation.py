"""Unit tests for propagation codecs and the codec registry."""

from __future__ import annotations

import logging

import pytest
from opentelemetry import baggage
from opentelemetry.context import Context
from opentelemetry.trace import (
    NonRecordingSpan,
    SpanContext,
    TraceFlags,
    get_current_span,
    set_span_in_context,
)

from tracerconf.env_utils import PropertySource
from tracerconf.propagation import (
    B3TextMapCodec,
    CodecConfiguration,
    CompositeCodec,
    Format,
    JaegerTextMapCodec,
    parse_propagation,
)
from tracerconf.tracer import TracerBuilder

_TRACE_ID = 0x0AF7651916CD43DD8448EB211C80319C
_SPAN_ID = 0x00F067AA0BA902B7


def _context(*, sampled: bool = True) -> Context:
    span_context = SpanContext(
        _TRACE_ID,
        _SPAN_ID,
        is_remote=False,
        trace_flags=TraceFlags(TraceFlags.SAMPLED if sampled else TraceFlags.DEFAULT),
    )
    return set_span_in_context(NonRecordingSpan(span_context), Context())


def _extracted(ctx: Context) -> SpanContext:
    return get_current_span(ctx).get_span_context()


def test_jaeger_and_b3_compose_per_format() -> None:
    """Ensure "jaeger,b3" yields a two-child composite per format in declared order."""
    builder = TracerBuilder("svc")
    CodecConfiguration.from_propagation("jaeger,b3").apply(builder)
    for fmt in (Format.HTTP_HEADERS, Format.TEXT_MAP):
        injector = builder.injectors[fmt]
        extractor = builder.extractors[fmt]
        assert isinstance(injector, CompositeCodec)
        assert isinstance(extractor, CompositeCodec)
        assert len(injector.codecs) == 2
        assert isinstance(injector.codecs[0], JaegerTextMapCodec)
        assert isinstance(injector.codecs[1], B3TextMapCodec)
    http_jaeger = builder.injectors[Format.HTTP_HEADERS].codecs[0]
    text_jaeger = builder.injectors[Format.TEXT_MAP].codecs[0]
    assert http_jaeger.url_encoding is True
    assert text_jaeger.url_encoding is False


def test_single_format_installs_codec_directly() -> None:
    """Ensure a single declared format installs its codec without a composite."""
    builder = TracerBuilder("svc")
    CodecConfiguration.from_propagation("B3").apply(builder)
    http = builder.injectors[Format.HTTP_HEADERS]
    text = builder.injectors[Format.TEXT_MAP]
    assert isinstance(http, B3TextMapCodec)
    assert http is text
    assert builder.extractors[Format.HTTP_HEADERS] is http


def test_unknown_format_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    """Ensure unknown names are logged and recognized ones still apply."""
    with caplog.at_level(logging.ERROR, logger="tracerconf.propagation"):
        formats = parse_propagation("zipkin, JAEGER,")
    assert [str(item) for item in formats] == ["jaeger"]
    assert "zipkin" in caplog.text


def test_empty_configuration_keeps_builder_defaults() -> None:
    """Ensure formats without codecs keep the builder's default codecs."""
    builder = TracerBuilder("svc")
    defaults = dict(builder.injectors)
    CodecConfiguration().apply(builder)
    assert builder.injectors == defaults
    assert isinstance(defaults[Format.HTTP_HEADERS], JaegerTextMapCodec)


def test_codecs_view_is_read_only() -> None:
    """Ensure the codecs view cannot be mutated and duplicates are kept."""
    codec = B3TextMapCodec()
    config = CodecConfiguration().with_codec(Format.TEXT_MAP, codec).with_codec(
        Format.TEXT_MAP, codec
    )
    view = config.codecs
    assert view[Format.TEXT_MAP] == (codec, codec)
    with pytest.raises(TypeError):
        view[Format.HTTP_HEADERS] = (codec,)  # type: ignore[index]


def test_codec_configuration_from_env() -> None:
    """Ensure the propagation key drives codec registration."""
    source = PropertySource({"JAEGER_PROPAGATION": "b3"}, environ={})
    codecs = CodecConfiguration.from_env(source).codecs
    assert set(codecs) == {Format.HTTP_HEADERS, Format.TEXT_MAP}
    assert CodecConfiguration.from_env(PropertySource(environ={})).codecs == {}


def test_jaeger_inject_extract_with_baggage() -> None:
    """Ensure the Jaeger codec writes and reads trace ids, flags and baggage."""
    codec = JaegerTextMapCodec(url_encoding=True)
    ctx = baggage.set_baggage("user", "a b", _context())
    carrier: dict[str, str] = {}
    codec.inject(carrier, ctx)
    assert carrier["uber-trace-id"] == f"{_TRACE_ID:032x}%3A{_SPAN_ID:016x}%3A0%3A1"
    assert carrier["uberctx-user"] == "a%20b"
    extracted = codec.extract({key.upper(): value for key, value in carrier.items()})
    span_context = _extracted(extracted)
    assert span_context.trace_id == _TRACE_ID
    assert span_context.span_id == _SPAN_ID
    assert span_context.is_remote
    assert span_context.trace_flags.sampled
    assert baggage.get_baggage("user", extracted) == "a b"


def test_jaeger_plain_variant_does_not_encode() -> None:
    """Ensure the text-map Jaeger codec leaves values untouched."""
    codec = JaegerTextMapCodec(url_encoding=False)
    carrier: dict[str, str] = {}
    codec.inject(carrier, _context(sampled=False))
    assert carrier["uber-trace-id"] == f"{_TRACE_ID:032x}:{_SPAN_ID:016x}:0:0"


def test_jaeger_malformed_header_is_ignored() -> None:
    """Ensure a malformed header leaves the context without a span."""
    codec = JaegerTextMapCodec()
    extracted = codec.extract({"uber-trace-id": "nope"})
    assert not _extracted(extracted).is_valid


def test_b3_inject_extract() -> None:
    """Ensure the B3 codec writes and reads multi-header context."""
    codec = B3TextMapCodec()
    carrier: dict[str, str] = {}
    codec.inject(carrier, _context())
    assert carrier == {
        "X-B3-TraceId": f"{_TRACE_ID:032x}",
        "X-B3-SpanId": f"{_SPAN_ID:016x}",
        "X-B3-Sampled": "1",
    }
    span_context = _extracted(codec.extract(carrier))
    assert span_context.trace_id == _TRACE_ID
    assert span_context.trace_flags.sampled


def test_b3_debug_flag_implies_sampled() -> None:
    """Ensure X-B3-Flags: 1 marks the extracted context sampled."""
    carrier = {"x-b3-traceid": f"{_TRACE_ID:032x}", "x-b3-spanid": f"{_SPAN_ID:016x}", "x-b3-flags": "1"}
    assert _extracted(B3TextMapCodec().extract(carrier)).trace_flags.sampled


def test_composite_extract_first_match_wins() -> None:
    """Ensure composite extraction returns the first child that finds a context."""
    other_trace = 0x1234
    carrier = {
        "X-B3-TraceId": f"{other_trace:032x}",
        "X-B3-SpanId": f"{_SPAN_ID:016x}",
        "X-B3-Sampled": "1",
        "uber-trace-id": f"{_TRACE_ID:032x}:{_SPAN_ID:016x}:0:1",
    }
    jaeger_first = CompositeCodec([JaegerTextMapCodec(), B3TextMapCodec()])
    b3_first = CompositeCodec([B3TextMapCodec(), JaegerTextMapCodec()])
    assert _extracted(jaeger_first.extract(carrier)).trace_id == _TRACE_ID
    assert _extracted(b3_first.extract(carrier)).trace_id == other_trace


def test_composite_extract_falls_through() -> None:
    """Ensure composite extraction tries later children when earlier ones find nothing."""
    carrier = {"X-B3-TraceId": f"{_TRACE_ID:032x}", "X-B3-SpanId": f"{_SPAN_ID:016x}"}
    codec = CompositeCodec([JaegerTextMapCodec(), B3TextMapCodec()])
    assert _extracted(codec.extract(carrier)).trace_id == _TRACE_ID
    assert not _extracted(codec.extract({})).is_valid


def test_composite_inject_writes_every_child() -> None:
    """Ensure composite injection lets every child write in order."""
    codec = CompositeCodec([JaegerTextMapCodec(), B3TextMapCodec()])
    carrier: dict[str, str] = {}
    codec.inject(carrier, _context())
    assert list(carrier) == ["uber-trace-id", "X-B3-TraceId", "X-B3-SpanId", "X-B3-Sampled"]
    assert codec.fields == {"uber-trace-id", "X-B3-TraceId", "X-B3-SpanId", "X-B3-Sampled"}
