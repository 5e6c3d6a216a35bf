"""Health subsystem — aggregator, built-in probes, probe registry."""

from .engine import (
    DuplicateNameError,
    HealthCheckAggregator,
    HealthwatchError,
    ProbeResult,
    Report,
    Status,
    UnknownProbeError,
    healthy,
    skipped,
    unhealthy,
)
from .registry import ProbeDef, ProbeRegistry, build_aggregator
