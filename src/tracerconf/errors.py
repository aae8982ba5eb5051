"""Exception taxonomy for tracer configuration."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when a configuration cannot be assembled into a tracer."""


class InvalidServiceNameError(ConfigurationError):
    """Raised when a service name is missing or blank."""


class InvalidSamplerTypeError(ConfigurationError):
    """Raised when a sampler type tag is not recognized."""

    def __init__(self, sampler_type: str) -> None:
        self.sampler_type = sampler_type
        super().__init__(f"Invalid sampling strategy {sampler_type}")


class UnsupportedFormatError(ValueError):
    """Raised when a tracer has no codec for a wire format."""


__all__ = [
    "ConfigurationError",
    "InvalidSamplerTypeError",
    "InvalidServiceNameError",
    "UnsupportedFormatError",
]
