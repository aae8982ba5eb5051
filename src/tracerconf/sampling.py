"""Sampler selection and the samplers it can produce."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from opentelemetry.context import Context
from opentelemetry.sdk.trace.sampling import (
    Decision,
    Sampler,
    SamplingResult,
    StaticSampler,
    TraceIdRatioBased,
)
from opentelemetry.trace import Link, SpanKind, TraceState, get_current_span
from opentelemetry.util.types import Attributes

from tracerconf.constants import ConfigKey
from tracerconf.env_utils import PropertySource, env_number, env_value, string_or_default
from tracerconf.errors import InvalidSamplerTypeError
from tracerconf.sampling_manager import (
    DEFAULT_HOST_PORT,
    HttpSamplingManager,
    SamplingManager,
    SamplingManagerError,
    SamplingStrategyResponse,
)

if TYPE_CHECKING:
    from tracerconf.metrics import Metrics

_LOGGER = logging.getLogger(__name__)

DEFAULT_SAMPLING_PROBABILITY = 0.001
DEFAULT_POLL_INTERVAL_MS = 60_000


class SamplerType(StrEnum):
    """Recognized sampler type tags."""

    CONST = "const"
    PROBABILISTIC = "probabilistic"
    RATE_LIMITING = "ratelimiting"
    REMOTE = "remote"


def _parent_trace_state(parent_context: Context | None) -> TraceState | None:
    span_context = get_current_span(parent_context).get_span_context()
    if span_context is None or not span_context.is_valid:
        return None
    return span_context.trace_state


class ConstSampler(StaticSampler):
    """Sampler that makes the same decision for every trace."""

    def __init__(self, decision: bool) -> None:
        super().__init__(Decision.RECORD_AND_SAMPLE if decision else Decision.DROP)
        self.decision = decision

    def get_description(self) -> str:
        """Return a human-readable description of the sampler.

        Returns
        -------
        str
            Description of the sampler.
        """
        return f"ConstSampler{{{self.decision}}}"


class RateLimiter:
    """Token bucket that refills at ``credits_per_second`` up to ``max_balance``."""

    def __init__(
        self,
        credits_per_second: float,
        max_balance: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.credits_per_second = credits_per_second
        self.max_balance = max_balance
        self._clock = clock
        self._balance = max_balance
        self._last_tick = clock()
        self._lock = threading.Lock()

    def check_credit(self, item_cost: float) -> bool:
        """Spend ``item_cost`` credits when the balance allows it.

        Returns
        -------
        bool
            True when the credits were available.
        """
        with self._lock:
            now = self._clock()
            elapsed = now - self._last_tick
            self._last_tick = now
            self._balance = min(
                self.max_balance,
                self._balance + elapsed * self.credits_per_second,
            )
            if self._balance < item_cost:
                return False
            self._balance -= item_cost
            return True


class RateLimitingSampler(Sampler):
    """Sample at most ``max_traces_per_second`` traces."""

    def __init__(
        self,
        max_traces_per_second: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_traces_per_second = max_traces_per_second
        self._limiter = RateLimiter(
            float(max_traces_per_second),
            max(float(max_traces_per_second), 1.0),
            clock=clock,
        )

    def should_sample(
        self,
        parent_context: Context | None,
        trace_id: int,
        name: str,
        kind: SpanKind | None = None,
        attributes: Attributes = None,
        links: Sequence[Link] | None = None,
        trace_state: TraceState | None = None,
    ) -> SamplingResult:
        """Sample while the limiter has credit.

        Returns
        -------
        SamplingResult
            Sampling decision.
        """
        _ = (trace_id, name, kind, links, trace_state)
        if self._limiter.check_credit(1.0):
            return SamplingResult(
                Decision.RECORD_AND_SAMPLE,
                attributes,
                _parent_trace_state(parent_context),
            )
        return SamplingResult(Decision.DROP, None, _parent_trace_state(parent_context))

    def get_description(self) -> str:
        """Return a human-readable description of the sampler.

        Returns
        -------
        str
            Description of the sampler.
        """
        return f"RateLimitingSampler{{{self.max_traces_per_second}}}"


def sampler_from_strategy(response: SamplingStrategyResponse) -> Sampler | None:
    """Build the sampler described by a polled strategy.

    Returns
    -------
    Sampler | None
        Sampler for probabilistic or rate-limiting strategies, else None.
    """
    if response.probabilistic_sampling is not None:
        rate = response.probabilistic_sampling.sampling_rate
        try:
            return TraceIdRatioBased(rate)
        except ValueError:
            _LOGGER.warning("Polled sampling rate out of range: %r", rate)
            return None
    if response.rate_limiting_sampling is not None:
        return RateLimitingSampler(response.rate_limiting_sampling.max_traces_per_second)
    return None


class RemoteControlledSampler(Sampler):
    """Sampler that periodically replaces its delegate from a remote strategy source."""

    def __init__(
        self,
        service_name: str,
        *,
        manager: SamplingManager,
        tracer_metrics: Metrics,
        initial_sampler: Sampler | None = None,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        start_polling: bool = True,
    ) -> None:
        self.service_name = service_name
        self.manager = manager
        self.poll_interval_ms = poll_interval_ms
        self._metrics = tracer_metrics
        self._lock = threading.Lock()
        self._sampler = initial_sampler or TraceIdRatioBased(DEFAULT_SAMPLING_PROBABILITY)
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None
        if start_polling:
            self._thread = threading.Thread(
                target=self._poll_loop,
                name="tracerconf-sampler-poll",
                daemon=True,
            )
            self._thread.start()

    @property
    def sampler(self) -> Sampler:
        """Return the current delegate sampler."""
        with self._lock:
            return self._sampler

    def _poll_loop(self) -> None:
        interval_s = self.poll_interval_ms / 1000.0
        while not self._stopped.wait(interval_s):
            try:
                self.update_sampler()
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Sampling strategy poll failed for service=%s", self.service_name)

    def update_sampler(self) -> None:
        """Poll the manager once and swap the delegate when the strategy changed."""
        try:
            response = self.manager.get_sampling_strategy(self.service_name)
        except SamplingManagerError as exc:
            self._metrics.sampler_query_failed.add(1)
            _LOGGER.warning("Failed to poll sampling strategy: %s", exc)
            return
        self._metrics.sampler_queried.add(1)
        sampler = sampler_from_strategy(response)
        if sampler is None:
            self._metrics.sampler_update_failed.add(1)
            _LOGGER.warning("Unsupported sampling strategy %r", response.strategy_type)
            return
        with self._lock:
            if sampler.get_description() == self._sampler.get_description():
                return
            self._sampler = sampler
        self._metrics.sampler_updated.add(1)

    def should_sample(
        self,
        parent_context: Context | None,
        trace_id: int,
        name: str,
        kind: SpanKind | None = None,
        attributes: Attributes = None,
        links: Sequence[Link] | None = None,
        trace_state: TraceState | None = None,
    ) -> SamplingResult:
        """Delegate to the current sampler.

        Returns
        -------
        SamplingResult
            Sampling decision of the delegate.
        """
        return self.sampler.should_sample(
            parent_context,
            trace_id,
            name,
            kind=kind,
            attributes=attributes,
            links=links,
            trace_state=trace_state,
        )

    def get_description(self) -> str:
        """Return a human-readable description of the sampler.

        Returns
        -------
        str
            Description of the sampler.
        """
        return f"RemoteControlledSampler{{{self.sampler.get_description()}}}"

    def close(self) -> None:
        """Stop polling."""
        self._stopped.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)


def close_sampler(sampler: Sampler) -> None:
    """Close ``sampler`` when it holds resources such as a poll thread."""
    close = getattr(sampler, "close", None)
    if callable(close):
        close()


def select_sampler(
    sampler_type: str | None,
    param: float | None,
    manager_host_port: str | None,
    *,
    service_name: str,
    tracer_metrics: Metrics,
) -> Sampler:
    """Dispatch a declared sampler type to a concrete sampler.

    Parameters
    ----------
    sampler_type
        Sampler type tag; None or blank selects ``remote``.
    param
        Sampler parameter; None selects the default sampling probability.
    manager_host_port
        Remote sampling manager ``host:port``; None selects the local default.
    service_name
        Service the remote sampler polls strategies for.
    tracer_metrics
        Metrics receiving remote poll outcomes.

    Returns
    -------
    Sampler
        Sampler matching the declared type.

    Raises
    ------
    InvalidSamplerTypeError
        Raised when the type tag is not recognized.
    """
    resolved_type = (
        sampler_type
        if sampler_type is not None and sampler_type.strip()
        else SamplerType.REMOTE.value
    )
    resolved_param = DEFAULT_SAMPLING_PROBABILITY if param is None else param
    host_port = string_or_default(manager_host_port, DEFAULT_HOST_PORT)
    if resolved_type == SamplerType.CONST:
        return ConstSampler(int(resolved_param) != 0)
    if resolved_type == SamplerType.PROBABILISTIC:
        return TraceIdRatioBased(float(resolved_param))
    if resolved_type == SamplerType.RATE_LIMITING:
        return RateLimitingSampler(int(resolved_param))
    if resolved_type == SamplerType.REMOTE:
        return RemoteControlledSampler(
            service_name,
            manager=HttpSamplingManager(host_port),
            tracer_metrics=tracer_metrics,
            initial_sampler=TraceIdRatioBased(float(resolved_param)),
        )
    raise InvalidSamplerTypeError(resolved_type)


@dataclass(frozen=True)
class SamplerConfiguration:
    """Declared sampler settings."""

    type: str | None = None
    param: float | None = None
    manager_host_port: str | None = None

    @classmethod
    def from_env(cls, source: PropertySource | None = None) -> SamplerConfiguration:
        """Read sampler settings from properties and the environment.

        Returns
        -------
        SamplerConfiguration
            Settings with unset keys left as None.
        """
        return (
            cls()
            .with_type(env_value(ConfigKey.SAMPLER_TYPE, source=source))
            .with_param(env_number(ConfigKey.SAMPLER_PARAM, source=source))
            .with_manager_host_port(env_value(ConfigKey.SAMPLER_MANAGER_HOST_PORT, source=source))
        )

    def with_type(self, sampler_type: str | None) -> SamplerConfiguration:
        """Return a copy with ``type`` replaced."""
        return replace(self, type=sampler_type)

    def with_param(self, param: float | None) -> SamplerConfiguration:
        """Return a copy with ``param`` replaced."""
        return replace(self, param=param)

    def with_manager_host_port(self, manager_host_port: str | None) -> SamplerConfiguration:
        """Return a copy with ``manager_host_port`` replaced."""
        return replace(self, manager_host_port=manager_host_port)

    def create_sampler(self, service_name: str, tracer_metrics: Metrics) -> Sampler:
        """Build the sampler these settings declare.

        Returns
        -------
        Sampler
            Selected sampler.
        """
        return select_sampler(
            self.type,
            self.param,
            self.manager_host_port,
            service_name=service_name,
            tracer_metrics=tracer_metrics,
        )


__all__ = [
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_SAMPLING_PROBABILITY",
    "ConstSampler",
    "RateLimiter",
    "RateLimitingSampler",
    "RemoteControlledSampler",
    "SamplerConfiguration",
    "SamplerType",
    "close_sampler",
    "sampler_from_strategy",
    "select_sampler",
]
