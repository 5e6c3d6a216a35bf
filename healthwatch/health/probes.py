"""Built-in probes.

Supports: SMTP handshake, database ping, pending alembic migrations,
HTTP(S), TCP connect, sentinel-file gate, and custom callables.
Each probe is a zero-argument callable returning a ProbeResult.
"""

from __future__ import annotations

import importlib
import logging
import smtplib
import socket
import time
from pathlib import Path
from typing import Any

import httpx
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from alembic.util import CommandError
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .engine import Probe, ProbeResult, healthy, skipped, unhealthy

logger = logging.getLogger(__name__)


def _elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 1)


def _first_line(exc: BaseException) -> str:
    # SQLAlchemy appends the statement and a docs link on later lines
    return str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__


# ── Mail ─────────────────────────────────────────────────────────────────────


class SmtpProbe:
    """Lightweight SMTP handshake: connect, EHLO (or HELO), QUIT."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 25,
        timeout: float = 5.0,
        local_hostname: str | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.local_hostname = local_hostname  # None = socket.getfqdn()

    def __call__(self) -> ProbeResult:
        t0 = time.perf_counter()
        try:
            with smtplib.SMTP(
                self.host, self.port, local_hostname=self.local_hostname, timeout=self.timeout,
            ) as smtp:
                code, msg = smtp.ehlo()
                if not 200 <= code < 300:
                    code, msg = smtp.helo()
        except smtplib.SMTPException as e:
            return unhealthy(f"SMTP error: {type(e).__name__}: {e}")
        except OSError as e:
            return unhealthy(f"SMTP connect to {self.host}:{self.port} failed: {e}")

        reply = msg.decode(errors="replace").splitlines()[0] if msg else ""
        if 200 <= code < 300:
            result = healthy(f"{code} {reply}".strip())
        else:
            result = unhealthy(f"Handshake rejected: {code} {reply}".strip())
        result.latency_ms = _elapsed_ms(t0)
        return result


# ── Database ─────────────────────────────────────────────────────────────────


class DatabaseProbe:
    """Connect through SQLAlchemy and run ``SELECT 1``.

    The engine is created lazily and reused. ``disconnect()`` drops it and
    keeps the probe unhealthy until ``reconnect()`` is called.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self._engine: Engine | None = None
        self.connected = True

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = create_engine(self.database_url, pool_pre_ping=True)
        return self._engine

    def __call__(self) -> ProbeResult:
        if not self.connected:
            return unhealthy("Database disconnected")
        t0 = time.perf_counter()
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).scalar_one()
        except SQLAlchemyError as e:
            return unhealthy(f"Database error: {type(e).__name__}: {_first_line(e)}")

        result = healthy("SELECT 1 OK", dialect=self.engine.dialect.name)
        result.latency_ms = _elapsed_ms(t0)
        return result

    def disconnect(self) -> None:
        self.connected = False
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
        logger.info("Database probe disconnected")

    def reconnect(self) -> None:
        self.connected = True
        logger.info("Database probe reconnected")


class MigrationsProbe(DatabaseProbe):
    """Compare the database's alembic revision(s) with the script heads."""

    def __init__(self, database_url: str, script_location: str) -> None:
        super().__init__(database_url)
        self.script_location = script_location

    def __call__(self) -> ProbeResult:
        if not self.connected:
            return unhealthy("Database disconnected")
        t0 = time.perf_counter()
        try:
            cfg = AlembicConfig()
            cfg.set_main_option("script_location", self.script_location)
            heads = set(ScriptDirectory.from_config(cfg).get_heads())
            with self.engine.connect() as conn:
                current = set(MigrationContext.configure(conn).get_current_heads())
        except CommandError as e:
            return unhealthy(f"Migration scripts unavailable: {e}")
        except SQLAlchemyError as e:
            return unhealthy(f"Database error: {type(e).__name__}: {_first_line(e)}")

        if current == heads:
            result = healthy("Schema at head", heads=sorted(heads))
        else:
            result = unhealthy(
                f"Pending migrations: {', '.join(sorted(heads - current)) or 'none'}"
                f" (database at {', '.join(sorted(current)) or 'base'})",
                heads=sorted(heads),
                current=sorted(current),
            )
        result.latency_ms = _elapsed_ms(t0)
        return result


# ── Network ──────────────────────────────────────────────────────────────────


class HttpProbe:
    """HTTP(S) request with expected status."""

    def __init__(
        self,
        url: str,
        method: str = "GET",
        expected_status: int = 200,
        timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.method = method
        self.expected_status = expected_status
        self.timeout = timeout

    def __call__(self) -> ProbeResult:
        t0 = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                resp = client.request(self.method, self.url)
        except httpx.TimeoutException:
            return unhealthy(f"Request timed out ({self.timeout:g}s)")
        except httpx.HTTPError as e:
            return unhealthy(f"Connection error: {type(e).__name__}: {e}")

        if resp.status_code == self.expected_status:
            result = healthy(f"{resp.status_code} OK", status_code=resp.status_code)
        else:
            result = unhealthy(
                f"Expected {self.expected_status}, got {resp.status_code}",
                status_code=resp.status_code,
            )
        result.latency_ms = _elapsed_ms(t0)
        return result


class TcpProbe:
    """Raw TCP port connectivity check."""

    def __init__(self, host: str, port: int, timeout: float = 5.0) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout

    def __call__(self) -> ProbeResult:
        t0 = time.perf_counter()
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
            sock.close()
        except OSError as e:
            return unhealthy(f"TCP connect failed: {type(e).__name__}: {e}")
        result = healthy(f"Port {self.port} open")
        result.latency_ms = _elapsed_ms(t0)
        return result


# ── Sentinel / custom ────────────────────────────────────────────────────────


class FileFlagProbe:
    """Gate on the presence of a sentinel file.

    Alone, reports healthy when the file exists. Wrapping ``probe``, runs it
    only when the file exists and skips it otherwise.
    """

    def __init__(self, path: str | Path, probe: Probe | None = None) -> None:
        self.path = Path(path)
        self.probe = probe

    def __call__(self) -> ProbeResult:
        present = self.path.exists()
        if self.probe is None:
            if present:
                return healthy(f"{self.path} present")
            return unhealthy(f"{self.path} not present")
        if not present:
            return skipped(f"sentinel {self.path} not present")
        return self.probe()


def load_custom(target: str) -> Probe:
    """Resolve a ``"package.module:attr"`` reference to a probe callable.

    Raises ValueError when the reference is malformed, cannot be imported,
    or does not name a callable.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Custom probe target must look like 'module:callable', got {target!r}")
    try:
        obj: Any = importlib.import_module(module_name)
        for part in attr.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load custom probe target {target!r}: {e}") from e
    if not callable(obj):
        raise ValueError(f"Custom probe target {target!r} is not callable")
    return obj
