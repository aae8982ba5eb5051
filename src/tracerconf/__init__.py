"""Resolve declarative tracing configuration into a ready-to-use tracer."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tracerconf.configuration import Configuration, ConfigurationSpec, TracerState
    from tracerconf.env_utils import PropertySource
    from tracerconf.errors import (
        ConfigurationError,
        InvalidSamplerTypeError,
        InvalidServiceNameError,
        UnsupportedFormatError,
    )
    from tracerconf.metrics import (
        Metrics,
        MetricsFactory,
        NoopMetricsFactory,
        OtelMetricsFactory,
        register_metrics_factory,
    )
    from tracerconf.propagation import CodecConfiguration, Format, Propagation
    from tracerconf.reporters import ReporterConfiguration
    from tracerconf.sampling import SamplerConfiguration, SamplerType
    from tracerconf.senders import SenderConfiguration, SenderFactory, register_sender_factory
    from tracerconf.tracer import Tracer, TracerBuilder

__all__ = [
    "CodecConfiguration",
    "Configuration",
    "ConfigurationError",
    "ConfigurationSpec",
    "Format",
    "InvalidSamplerTypeError",
    "InvalidServiceNameError",
    "Metrics",
    "MetricsFactory",
    "NoopMetricsFactory",
    "OtelMetricsFactory",
    "Propagation",
    "PropertySource",
    "ReporterConfiguration",
    "SamplerConfiguration",
    "SamplerType",
    "SenderConfiguration",
    "SenderFactory",
    "Tracer",
    "TracerBuilder",
    "TracerState",
    "UnsupportedFormatError",
    "register_metrics_factory",
    "register_sender_factory",
]

_EXPORT_MAP: dict[str, tuple[str, str]] = {
    "CodecConfiguration": ("tracerconf.propagation", "CodecConfiguration"),
    "Configuration": ("tracerconf.configuration", "Configuration"),
    "ConfigurationError": ("tracerconf.errors", "ConfigurationError"),
    "ConfigurationSpec": ("tracerconf.configuration", "ConfigurationSpec"),
    "Format": ("tracerconf.propagation", "Format"),
    "InvalidSamplerTypeError": ("tracerconf.errors", "InvalidSamplerTypeError"),
    "InvalidServiceNameError": ("tracerconf.errors", "InvalidServiceNameError"),
    "Metrics": ("tracerconf.metrics", "Metrics"),
    "MetricsFactory": ("tracerconf.metrics", "MetricsFactory"),
    "NoopMetricsFactory": ("tracerconf.metrics", "NoopMetricsFactory"),
    "OtelMetricsFactory": ("tracerconf.metrics", "OtelMetricsFactory"),
    "Propagation": ("tracerconf.propagation", "Propagation"),
    "PropertySource": ("tracerconf.env_utils", "PropertySource"),
    "ReporterConfiguration": ("tracerconf.reporters", "ReporterConfiguration"),
    "SamplerConfiguration": ("tracerconf.sampling", "SamplerConfiguration"),
    "SamplerType": ("tracerconf.sampling", "SamplerType"),
    "SenderConfiguration": ("tracerconf.senders", "SenderConfiguration"),
    "SenderFactory": ("tracerconf.senders", "SenderFactory"),
    "Tracer": ("tracerconf.tracer", "Tracer"),
    "TracerBuilder": ("tracerconf.tracer", "TracerBuilder"),
    "TracerState": ("tracerconf.configuration", "TracerState"),
    "UnsupportedFormatError": ("tracerconf.errors", "UnsupportedFormatError"),
    "register_metrics_factory": ("tracerconf.metrics", "register_metrics_factory"),
    "register_sender_factory": ("tracerconf.senders", "register_sender_factory"),
}


def __getattr__(name: str) -> object:
    export = _EXPORT_MAP.get(name)
    if export is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)
    module_name, attr_name = export
    module = importlib.import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(__all__)
