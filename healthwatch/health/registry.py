"""Probe registry — loads probes.yaml and builds the aggregator.

The API and the CLI both build their aggregator through here, so the
probe set is defined in one place.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from .engine import HealthCheckAggregator, Probe, ProbeResult, skipped
from .probes import (
    DatabaseProbe,
    FileFlagProbe,
    HttpProbe,
    MigrationsProbe,
    SmtpProbe,
    TcpProbe,
    load_custom,
)

if TYPE_CHECKING:
    from healthwatch.config import Settings

logger = logging.getLogger(__name__)

REGISTRY_PATH = Path("probes.yaml")


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass
class ProbeDef:
    """Definition of a single probe from the registry."""

    name: str
    type: str  # smtp | database | migrations | http | tcp | file | custom
    enabled: bool = True
    timeout_seconds: float | None = None

    url: str = ""  # http
    method: str = "GET"
    expected_status: int = 200
    host: str = ""  # smtp | tcp
    port: int = 0
    database_url: str = ""  # database | migrations
    script_location: str = ""  # migrations
    path: str = ""  # file
    target: str = ""  # custom: "module:callable"
    gate: str = ""  # any type: only run while this sentinel file exists


# ── Registry ─────────────────────────────────────────────────────────────────


class ProbeRegistry:
    """Loads and caches probe definitions from probes.yaml."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or REGISTRY_PATH
        self._probes: list[ProbeDef] = []
        self._loaded = False

    def load(self, force: bool = False) -> list[ProbeDef]:
        """Parse probes.yaml and return ProbeDef list."""
        if self._loaded and not force:
            return self._probes

        self._probes = []
        if not self._path.exists():
            logger.warning("Probe registry not found: %s", self._path)
            self._loaded = True
            return self._probes

        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            logger.error("Failed to parse %s: %s", self._path, e)
            self._loaded = True
            return self._probes

        if not isinstance(raw, dict):
            logger.error("Ignoring %s: top level must be a mapping with a 'probes' list", self._path)
            self._loaded = True
            return self._probes

        for entry in raw.get("probes", []) or []:
            try:
                self._probes.append(_parse_probe(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed probe entry %r: %s", entry, e)

        self._loaded = True
        logger.info("Loaded %d probe definitions from %s", len(self._probes), self._path)
        return self._probes

    @property
    def probes(self) -> list[ProbeDef]:
        return self.load()

    def get(self, name: str) -> ProbeDef | None:
        return next((p for p in self.probes if p.name == name), None)

    def reload(self) -> list[ProbeDef]:
        """Force reload from disk."""
        return self.load(force=True)

    def to_dict(self) -> list[dict[str, Any]]:
        return [
            {"name": p.name, "type": p.type, "enabled": p.enabled, "timeout_seconds": p.timeout_seconds}
            for p in self.probes
        ]


# ── Parsers ──────────────────────────────────────────────────────────────────


def _parse_probe(raw: dict[str, Any]) -> ProbeDef:
    if not isinstance(raw, dict):
        raise TypeError("probe entry must be a mapping")
    name = str(raw["name"]).strip()
    if not name:
        raise ValueError("probe 'name' is required")

    enabled = raw.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ValueError(f"'enabled' must be true or false, got {enabled!r}")

    timeout = raw.get("timeout_seconds")
    return ProbeDef(
        name=name,
        type=raw.get("type", "custom"),
        enabled=enabled,
        timeout_seconds=float(timeout) if timeout is not None else None,
        url=raw.get("url", ""),
        method=raw.get("method", "GET"),
        expected_status=int(raw.get("expected_status", 200)),
        host=raw.get("host", ""),
        port=int(raw.get("port", 0)),
        database_url=raw.get("database_url", ""),
        script_location=raw.get("script_location", ""),
        path=raw.get("path", ""),
        target=raw.get("target", ""),
        gate=raw.get("gate", ""),
    )


# ── Builders ─────────────────────────────────────────────────────────────────


def _require(d: ProbeDef, *fields: str) -> ProbeDef:
    missing = [f for f in fields if not getattr(d, f)]
    if missing:
        raise ValueError(f"Probe {d.name!r} ({d.type}) is missing: {', '.join(missing)}")
    return d


def _build_custom(d: ProbeDef) -> Probe:
    _require(d, "target")
    try:
        return load_custom(d.target)
    except ValueError as e:
        raise ValueError(f"Probe {d.name!r}: {e}") from e


def _disabled() -> ProbeResult:
    return skipped("disabled by configuration")


# Dispatcher; the second argument is the default network timeout
PROBE_BUILDERS: dict[str, Callable[[ProbeDef, float], Probe]] = {
    "smtp": lambda d, t: SmtpProbe(_require(d, "host").host, d.port or 25, t),
    "database": lambda d, t: DatabaseProbe(_require(d, "database_url").database_url),
    "migrations": lambda d, t: MigrationsProbe(
        _require(d, "database_url", "script_location").database_url, d.script_location,
    ),
    "http": lambda d, t: HttpProbe(_require(d, "url").url, d.method, d.expected_status, t),
    "tcp": lambda d, t: TcpProbe(_require(d, "host", "port").host, d.port, t),
    "file": lambda d, t: FileFlagProbe(_require(d, "path").path),
    "custom": lambda d, t: _build_custom(d),
}


def build_probe(defn: ProbeDef, default_timeout: float = 5.0) -> Probe:
    """Instantiate the probe described by ``defn``."""
    builder = PROBE_BUILDERS.get(defn.type)
    if builder is None:
        raise ValueError(f"Unknown probe type for {defn.name!r}: {defn.type}")
    probe = builder(defn, defn.timeout_seconds or default_timeout)
    if defn.gate:
        probe = FileFlagProbe(defn.gate, probe)
    return probe


def standard_probes(settings: Settings) -> list[ProbeDef]:
    """Probe definitions implied by settings alone."""
    defs = []
    if settings.database_url:
        defs.append(ProbeDef(name="database", type="database", database_url=settings.database_url))
        if settings.migrations_script_location:
            defs.append(ProbeDef(
                name="migrations", type="migrations",
                database_url=settings.database_url,
                script_location=settings.migrations_script_location,
            ))
    if settings.smtp_host:
        defs.append(ProbeDef(name="email", type="smtp", host=settings.smtp_host, port=settings.smtp_port))
    return defs


def build_aggregator(registry: ProbeRegistry, settings: Settings) -> HealthCheckAggregator:
    """Register every defined probe on a fresh aggregator.

    Standard probes from settings fill in names probes.yaml leaves free.
    Duplicate names inside probes.yaml raise DuplicateNameError. Disabled
    probes are registered as placeholders and never built, so their custom
    targets are not imported.
    """
    defs = list(registry.probes)
    taken = {d.name for d in defs}
    defs.extend(d for d in standard_probes(settings) if d.name not in taken)

    disabled = settings.disabled
    enabled = {d.name: d.enabled and d.name not in disabled for d in defs}

    aggregator = HealthCheckAggregator(
        timeout=settings.probe_timeout_seconds,
        max_workers=settings.max_workers,
        enabled=enabled,
    )
    for d in defs:
        if not enabled[d.name]:
            if d.type not in PROBE_BUILDERS:
                raise ValueError(f"Unknown probe type for {d.name!r}: {d.type}")
            aggregator.register(d.name, _disabled, timeout=d.timeout_seconds)
            continue
        aggregator.register(
            d.name,
            build_probe(d, settings.probe_timeout_seconds),
            timeout=d.timeout_seconds,
        )

    logger.info(
        "Aggregator ready: %d probes (%d disabled)",
        len(aggregator), sum(1 for on in enabled.values() if not on),
    )
    return aggregator
