"""Reporter configuration and the span processors it assembles."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from opentelemetry.context import Context
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter

from tracerconf.constants import ConfigKey
from tracerconf.env_utils import PropertySource, env_bool, env_int
from tracerconf.senders import SenderConfiguration

_LOGGER = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL_MS = 1000
DEFAULT_MAX_QUEUE_SIZE = 100
_MAX_EXPORT_BATCH_SIZE = 512


class RemoteReporter(BatchSpanProcessor):
    """Queue finished spans and flush them to a sender in the background."""

    def __init__(
        self,
        sender: SpanExporter,
        *,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
    ) -> None:
        super().__init__(
            sender,
            max_queue_size=max_queue_size,
            schedule_delay_millis=flush_interval_ms,
            max_export_batch_size=min(_MAX_EXPORT_BATCH_SIZE, max_queue_size),
        )
        self.sender = sender
        self.max_queue_size = max_queue_size
        self.flush_interval_ms = flush_interval_ms

    def __repr__(self) -> str:
        return (
            f"RemoteReporter(sender={self.sender!r}, max_queue_size={self.max_queue_size}, "
            f"flush_interval_ms={self.flush_interval_ms})"
        )


class LoggingReporter(SpanProcessor):
    """Log every finished span."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _LOGGER

    def on_end(self, span: ReadableSpan) -> None:
        """Log ``span`` at INFO."""
        span_context = span.get_span_context()
        if span_context is None:
            self._logger.info("Span reported: %s", span.name)
            return
        self._logger.info(
            "Span reported: %032x:%016x %s",
            span_context.trace_id,
            span_context.span_id,
            span.name,
        )

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Nothing is buffered; always succeeds.

        Returns
        -------
        bool
            True.
        """
        _ = timeout_millis
        return True

    def __repr__(self) -> str:
        return "LoggingReporter()"


def _raise_collected(errors: list[Exception]) -> None:
    if len(errors) == 1:
        raise errors[0]
    if errors:
        msg = "Multiple reporters failed"
        raise ExceptionGroup(msg, errors)


class CompositeReporter(SpanProcessor):
    """Forward every call to each child reporter in order.

    A failing child does not stop the remaining children; failures are
    re-raised once every child has run.
    """

    def __init__(self, *reporters: SpanProcessor) -> None:
        self.reporters: tuple[SpanProcessor, ...] = reporters

    def _each(self, call: Callable[[SpanProcessor], object]) -> list[object]:
        results: list[object] = []
        errors: list[Exception] = []
        for reporter in self.reporters:
            try:
                results.append(call(reporter))
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
        _raise_collected(errors)
        return results

    def on_start(self, span: Span, parent_context: Context | None = None) -> None:
        """Forward a span start."""
        self._each(lambda reporter: reporter.on_start(span, parent_context=parent_context))

    def on_end(self, span: ReadableSpan) -> None:
        """Forward a span finish."""
        self._each(lambda reporter: reporter.on_end(span))

    def shutdown(self) -> None:
        """Shut every child down."""
        self._each(lambda reporter: reporter.shutdown())

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Flush every child.

        Returns
        -------
        bool
            True when every child flushed.
        """
        results = self._each(lambda reporter: reporter.force_flush(timeout_millis))
        return all(bool(result) for result in results)

    def __repr__(self) -> str:
        return f"CompositeReporter{self.reporters!r}"


@dataclass(frozen=True)
class ReporterConfiguration:
    """Declared reporter settings."""

    log_spans: bool | None = None
    flush_interval_ms: int | None = None
    max_queue_size: int | None = None
    sender_configuration: SenderConfiguration = field(default_factory=SenderConfiguration)

    @classmethod
    def from_env(cls, source: PropertySource | None = None) -> ReporterConfiguration:
        """Read reporter and sender settings from properties and the environment.

        Returns
        -------
        ReporterConfiguration
            Settings with unset numeric keys left as None.
        """
        return cls(
            log_spans=env_bool(ConfigKey.REPORTER_LOG_SPANS, source=source),
            flush_interval_ms=env_int(ConfigKey.REPORTER_FLUSH_INTERVAL, source=source),
            max_queue_size=env_int(ConfigKey.REPORTER_MAX_QUEUE_SIZE, source=source),
            sender_configuration=SenderConfiguration.from_env(source),
        )

    def with_log_spans(self, log_spans: bool | None) -> ReporterConfiguration:
        """Return a copy with ``log_spans`` replaced."""
        return replace(self, log_spans=log_spans)

    def with_flush_interval_ms(self, flush_interval_ms: int | None) -> ReporterConfiguration:
        """Return a copy with ``flush_interval_ms`` replaced."""
        return replace(self, flush_interval_ms=flush_interval_ms)

    def with_max_queue_size(self, max_queue_size: int | None) -> ReporterConfiguration:
        """Return a copy with ``max_queue_size`` replaced."""
        return replace(self, max_queue_size=max_queue_size)

    def with_sender(self, sender_configuration: SenderConfiguration) -> ReporterConfiguration:
        """Return a copy with ``sender_configuration`` replaced."""
        return replace(self, sender_configuration=sender_configuration)

    def get_reporter(self) -> SpanProcessor:
        """Assemble the reporter these settings declare.

        Returns
        -------
        SpanProcessor
            Remote reporter, composed with a logging reporter when spans are logged.
        """
        reporter = RemoteReporter(
            self.sender_configuration.get_sender(),
            max_queue_size=(
                DEFAULT_MAX_QUEUE_SIZE if self.max_queue_size is None else self.max_queue_size
            ),
            flush_interval_ms=(
                DEFAULT_FLUSH_INTERVAL_MS
                if self.flush_interval_ms is None
                else self.flush_interval_ms
            ),
        )
        if self.log_spans:
            return CompositeReporter(reporter, LoggingReporter())
        return reporter


__all__ = [
    "DEFAULT_FLUSH_INTERVAL_MS",
    "DEFAULT_MAX_QUEUE_SIZE",
    "CompositeReporter",
    "LoggingReporter",
    "RemoteReporter",
    "ReporterConfiguration",
]
