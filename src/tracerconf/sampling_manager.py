"""Remote sampling-strategy source."""

from __future__ import annotations

from typing import Protocol

import httpx
import msgspec

from tracerconf.serde import StructBaseCompat, describe_validation_error


DEFAULT_HOST_PORT = "localhost:5778"
_DEFAULT_TIMEOUT_S = 5.0


class ProbabilisticSamplingStrategy(StructBaseCompat, frozen=True, rename="camel"):
    """Probabilistic strategy payload."""

    sampling_rate: float


class RateLimitingSamplingStrategy(StructBaseCompat, frozen=True, rename="camel"):
    """Rate-limiting strategy payload."""

    max_traces_per_second: int


class OperationSamplingStrategy(StructBaseCompat, frozen=True, rename="camel"):
    """Per-operation strategy payload; only the defaults are retained."""

    default_sampling_probability: float | None = None
    default_lower_bound_traces_per_second: float | None = None


class SamplingStrategyResponse(StructBaseCompat, frozen=True, rename="camel"):
    """Strategy document returned by ``GET /sampling``."""

    strategy_type: str | None = None
    probabilistic_sampling: ProbabilisticSamplingStrategy | None = None
    rate_limiting_sampling: RateLimitingSamplingStrategy | None = None
    operation_sampling: OperationSamplingStrategy | None = None


class SamplingManagerError(RuntimeError):
    """Raised when a sampling strategy cannot be fetched or decoded."""


class SamplingManager(Protocol):
    """Source of sampling strategies for a service."""

    def get_sampling_strategy(self, service_name: str) -> SamplingStrategyResponse:
        """Return the current strategy for ``service_name``."""
        ...


def parse_sampling_strategy(payload: bytes | str) -> SamplingStrategyResponse:
    """Decode a JSON strategy document.

    Returns
    -------
    SamplingStrategyResponse
        Decoded strategy.

    Raises
    ------
    SamplingManagerError
        Raised when the payload is not a valid strategy document.
    """
    try:
        return msgspec.json.decode(payload, type=SamplingStrategyResponse)
    except msgspec.ValidationError as exc:
        msg = describe_validation_error(exc, subject="sampling strategy")
        raise SamplingManagerError(msg) from exc
    except msgspec.DecodeError as exc:
        msg = f"Cannot decode sampling strategy: {exc}"
        raise SamplingManagerError(msg) from exc


class HttpSamplingManager:
    """Fetch sampling strategies over HTTP from ``host:port``."""

    def __init__(
        self,
        host_port: str = DEFAULT_HOST_PORT,
        *,
        client: httpx.Client | None = None,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
    ) -> None:
        self.host_port = host_port
        self._client = client
        self._timeout_s = timeout_s

    def _url(self) -> str:
        return f"http://{self.host_port}/sampling"

    def get_sampling_strategy(self, service_name: str) -> SamplingStrategyResponse:
        """Return the current strategy for ``service_name``.

        Returns
        -------
        SamplingStrategyResponse
            Decoded strategy.

        Raises
        ------
        SamplingManagerError
            Raised when the request fails or the response cannot be decoded.
        """
        params = {"service": service_name}
        try:
            if self._client is not None:
                response = self._client.get(self._url(), params=params, timeout=self._timeout_s)
            else:
                response = httpx.get(self._url(), params=params, timeout=self._timeout_s)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            msg = f"Sampling strategy request to {self.host_port} failed: {exc}"
            raise SamplingManagerError(msg) from exc
        return parse_sampling_strategy(response.content)

    def __repr__(self) -> str:
        return f"HttpSamplingManager(host_port={self.host_port!r})"


__all__ = [
    "DEFAULT_HOST_PORT",
    "HttpSamplingManager",
    "OperationSamplingStrategy",
    "ProbabilisticSamplingStrategy",
    "RateLimitingSamplingStrategy",
    "SamplingManager",
    "SamplingManagerError",
    "SamplingStrategyResponse",
    "parse_sampling_strategy",
]
