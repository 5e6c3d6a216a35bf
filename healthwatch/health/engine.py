"""Health check engine — result model + probe aggregator.

A probe is any zero-argument callable returning a ProbeResult. The
aggregator runs registered probes with a per-probe timeout and folds
their results into a Report.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


# ── Errors ───────────────────────────────────────────────────────────────────


class HealthwatchError(Exception):
    """Base class for aggregator misconfiguration errors."""


class DuplicateNameError(HealthwatchError, ValueError):
    """Raised when a probe name is registered twice."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Probe already registered: {name}")


class UnknownProbeError(HealthwatchError, KeyError):
    """Raised when a run is requested for probe names that are not registered."""

    def __init__(self, names: Iterable[str]) -> None:
        self.names = sorted(names)
        super().__init__(f"Unknown probe(s): {', '.join(self.names)}")

    def __str__(self) -> str:
        return self.args[0]


# ── Models ───────────────────────────────────────────────────────────────────


class Status(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    SKIPPED = "skipped"


@dataclass
class ProbeResult:
    """Outcome of a single probe invocation."""

    status: Status
    reason: str = ""
    latency_ms: float | None = None
    details: dict[str, Any] | None = None
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def is_healthy(self) -> bool:
        return self.status == Status.HEALTHY

    @property
    def is_unhealthy(self) -> bool:
        return self.status == Status.UNHEALTHY


def healthy(reason: str = "", **details: Any) -> ProbeResult:
    return ProbeResult(Status.HEALTHY, reason, details=details or None)


def unhealthy(reason: str, **details: Any) -> ProbeResult:
    return ProbeResult(Status.UNHEALTHY, reason, details=details or None)


def skipped(reason: str) -> ProbeResult:
    return ProbeResult(Status.SKIPPED, reason)


Probe = Callable[[], ProbeResult]


@dataclass
class Report:
    """Results of one run, in registration order."""

    entries: list[tuple[str, ProbeResult]] = field(default_factory=list)
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def status(self) -> Status:
        # Skipped probes never degrade the aggregate
        if any(r.is_unhealthy for _, r in self.entries):
            return Status.UNHEALTHY
        return Status.HEALTHY

    @property
    def is_healthy(self) -> bool:
        return self.status == Status.HEALTHY

    def get(self, name: str) -> ProbeResult | None:
        return next((r for n, r in self.entries if n == name), None)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the API."""
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "checks": [
                {
                    "name": name,
                    "status": r.status.value,
                    "reason": r.reason,
                    "latency_ms": r.latency_ms,
                    "timestamp": r.timestamp,
                    **({"details": r.details} if r.details else {}),
                }
                for name, r in self.entries
            ],
        }


# ── Aggregator ───────────────────────────────────────────────────────────────


@dataclass
class _Registration:
    name: str
    probe: Probe
    timeout: float | None = None


class HealthCheckAggregator:
    """Runs named probes and aggregates their results.

    ``max_workers=1`` runs probes one after another; a larger value runs
    them through a bounded thread pool. ``enabled`` maps probe names to an
    on/off flag. Probes switched off are reported as skipped and never
    invoked.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_workers: int = 1,
        enabled: Mapping[str, bool] | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.timeout = timeout
        self.max_workers = max_workers
        self._enabled: dict[str, bool] = dict(enabled or {})
        self._probes: dict[str, _Registration] = {}

    # ── Registration ──

    def register(self, name: str, probe: Probe, timeout: float | None = None) -> None:
        """Add a probe. Raises DuplicateNameError if ``name`` is taken."""
        if not name or not name.strip():
            raise ValueError("Probe name is required")
        if not callable(probe):
            raise TypeError(f"Probe {name!r} is not callable")
        if name in self._probes:
            raise DuplicateNameError(name)
        if timeout is not None and timeout <= 0:
            raise ValueError(f"Probe {name!r}: timeout must be positive")
        self._probes[name] = _Registration(name, probe, timeout)
        logger.debug("Registered probe %s", name)

    def unregister(self, name: str) -> None:
        if self._probes.pop(name, None) is None:
            raise UnknownProbeError([name])

    @property
    def names(self) -> list[str]:
        return list(self._probes)

    def is_enabled(self, name: str) -> bool:
        return self._enabled.get(name, True)

    def __contains__(self, name: object) -> bool:
        return name in self._probes

    def __len__(self) -> int:
        return len(self._probes)

    # ── Execution ──

    def run_all(
        self,
        timeout: float | None = None,
        names: Iterable[str] | None = None,
    ) -> Report:
        """Run every registered probe (or the ``names`` subset) once.

        ``timeout`` overrides the default per-probe timeout for this run;
        a timeout given at registration still wins for that probe.
        """
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        regs = self._select(names)
        t0 = time.perf_counter()

        if self.max_workers == 1 or len(regs) <= 1:
            results = [self._run_one(reg, timeout) for reg in regs]
        else:
            with ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(regs)),
                thread_name_prefix="healthwatch",
            ) as pool:
                futures = [pool.submit(self._run_one, reg, timeout) for reg in regs]
                results = [f.result() for f in futures]

        report = Report(entries=[(reg.name, r) for reg, r in zip(regs, results)])
        failed = [n for n, r in report.entries if r.is_unhealthy]
        if failed:
            logger.warning(
                "Health run: %s (%d probes, %.0fms), failing: %s",
                report.status.value, len(regs), (time.perf_counter() - t0) * 1000,
                ", ".join(failed),
            )
        else:
            logger.info(
                "Health run: %s (%d probes, %.0fms)",
                report.status.value, len(regs), (time.perf_counter() - t0) * 1000,
            )
        return report

    def _select(self, names: Iterable[str] | None) -> list[_Registration]:
        if names is None:
            return list(self._probes.values())
        wanted = set(names)
        missing = wanted - self._probes.keys()
        if missing:
            raise UnknownProbeError(missing)
        return [reg for reg in self._probes.values() if reg.name in wanted]

    def _run_one(self, reg: _Registration, run_timeout: float | None) -> ProbeResult:
        if not self.is_enabled(reg.name):
            return skipped("disabled by configuration")

        timeout = next(t for t in (reg.timeout, run_timeout, self.timeout) if t is not None)
        t0 = time.perf_counter()
        # Probes may return a shared result object; stamp a copy per run
        result = replace(
            _invoke(reg.name, reg.probe, timeout),
            latency_ms=round((time.perf_counter() - t0) * 1000, 1),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

        logger.debug(
            "Probe %s: %s (%.1fms) %s",
            reg.name, result.status.value, result.latency_ms, result.reason,
        )
        return result


def _invoke(name: str, probe: Probe, timeout: float) -> ProbeResult:
    """Call ``probe`` on a daemon thread and wait at most ``timeout`` seconds.

    A probe that overruns is abandoned; its thread keeps running until the
    probe returns on its own.
    """
    future: Future[Any] = Future()

    def target() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(probe())
        except Exception as exc:
            future.set_exception(exc)

    threading.Thread(target=target, name=f"probe-{name}", daemon=True).start()

    # Probes may raise TimeoutError themselves (socket timeouts do), so the
    # wait and the probe's own outcome are read separately.
    done, _ = wait([future], timeout=timeout)
    if not done:
        future.cancel()
        logger.warning("Probe %s timed out after %ss", name, timeout)
        return unhealthy(f"timed out after {timeout:g}s", timeout_seconds=timeout)

    exc = future.exception()
    if exc is not None:
        logger.warning("Probe %s raised %s: %s", name, type(exc).__name__, exc)
        return unhealthy(str(exc) or type(exc).__name__, error=type(exc).__name__)

    value = future.result()
    if not isinstance(value, ProbeResult):
        return unhealthy(f"probe returned {type(value).__name__}, expected ProbeResult")
    return value
