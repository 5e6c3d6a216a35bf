"""Shared test fixtures."""

from __future__ import annotations

import socket
import socketserver
import threading
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text

# ── Fake SMTP server ─────────────────────────────────────────────────────────


class _FakeSmtpHandler(socketserver.StreamRequestHandler):
    """Just enough SMTP for a handshake: greeting, EHLO/HELO, QUIT."""

    def handle(self) -> None:
        self.wfile.write(b"220 localhost fake SMTP ready\r\n")
        for line in self.rfile:
            cmd = line.decode(errors="replace").strip().upper()
            if cmd.startswith("EHLO"):
                self.wfile.write(b"250-localhost\r\n250 HELP\r\n")
            elif cmd.startswith("HELO"):
                self.wfile.write(b"250 localhost\r\n")
            elif cmd.startswith("QUIT"):
                self.wfile.write(b"221 Bye\r\n")
                return
            else:
                self.wfile.write(b"250 OK\r\n")


class _FakeSmtpServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


@pytest.fixture
def smtp_server() -> Generator[tuple[str, int], None, None]:
    """Run a fake SMTP server on a background thread; yields (host, port)."""
    server = _FakeSmtpServer(("127.0.0.1", 0), _FakeSmtpHandler)
    thread = threading.Thread(target=server.serve_forever, name="fake-smtp", daemon=True)
    thread.start()
    try:
        yield server.server_address[0], server.server_address[1]
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# ── Database ─────────────────────────────────────────────────────────────────


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'app.db'}"


@pytest.fixture
def unreachable_database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'no-such-dir' / 'app.db'}"


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    """A minimal alembic script directory with a single revision."""
    script_dir = tmp_path / "alembic"
    versions = script_dir / "versions"
    versions.mkdir(parents=True)
    (versions / "0001_init.py").write_text(
        'revision = "0001"\n'
        "down_revision = None\n"
        "branch_labels = None\n"
        "depends_on = None\n"
        "\n\n"
        "def upgrade():\n"
        "    pass\n"
        "\n\n"
        "def downgrade():\n"
        "    pass\n"
    )
    return script_dir


@pytest.fixture
def stamp() -> Callable[[str, str], None]:
    """Returns a helper recording a revision as the database's alembic version."""

    def _stamp(database_url: str, revision: str) -> None:
        engine = create_engine(database_url)
        with engine.begin() as conn:
            conn.execute(text(
                "CREATE TABLE IF NOT EXISTS alembic_version "
                "(version_num VARCHAR(32) NOT NULL PRIMARY KEY)"
            ))
            conn.execute(text("DELETE FROM alembic_version"))
            conn.execute(
                text("INSERT INTO alembic_version (version_num) VALUES (:v)"), {"v": revision},
            )
        engine.dispose()

    return _stamp
