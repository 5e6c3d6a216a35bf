from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_prefix": "HEALTHWATCH_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Probe definitions (absolute or relative to CWD)
    probes_file: str = "probes.yaml"

    # Execution
    probe_timeout_seconds: float = 5.0
    max_workers: int = 1  # 1 = sequential, >1 = bounded thread pool

    # Comma-separated probe names reported as skipped without running
    disabled_probes: str = ""

    # Standard probes, registered when configured and not defined in probes.yaml
    database_url: str = ""
    migrations_script_location: str = ""  # alembic dir; enables the "migrations" probe
    smtp_host: str = ""
    smtp_port: int = 25

    # Logging
    log_level: str = "INFO"

    @property
    def disabled(self) -> set[str]:
        return {n.strip() for n in self.disabled_probes.split(",") if n.strip()}


settings = Settings()
