"""
Gateway configuration.

Defaults describe the standard sandbox image. ``GatewayConfig.from_env`` lets
the deployment override them through ``GATEWAY_*`` environment variables.
"""

import json
import os
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..log_config import get_logger
from .types import BackupRoot

log = get_logger("config")

DEFAULT_BACKUP_ROOTS = (
    BackupRoot(path="/data/config/", prefix="config/"),
    BackupRoot(path="/data/skills/", prefix="skills/"),
)


class GatewayConfig(BaseModel):
    """Settings shared by the supervisor and the sync engine."""

    model_config = ConfigDict(frozen=True)

    backup_roots: tuple[BackupRoot, ...] = DEFAULT_BACKUP_ROOTS
    exclude_suffixes: tuple[str, ...] = (".lock", ".log", ".tmp")
    marker_key: str = ".last-sync"
    critical_file: str = "/data/config/gateway.json"

    start_command: str = "/usr/local/bin/start-gateway.sh"
    # Substrings identifying the long-running gateway. CLI invocations such as
    # "gateway-server devices list" must not match.
    process_signatures: tuple[str, ...] = ("start-gateway.sh", "gateway-server serve")
    service_port: int = 18789

    startup_timeout: float = 180.0
    list_timeout: float = 5.0
    read_timeout: float = 10.0
    listing_timeout: float = 15.0
    check_timeout: float = 5.0

    retry_attempts: int = Field(default=5, ge=1)
    retry_delay: float = Field(default=3.0, ge=0)

    @model_validator(mode="after")
    def check_roots(self) -> "GatewayConfig":
        prefixes = [root.prefix for root in self.backup_roots]
        paths = [root.path for root in self.backup_roots]
        for items, kind in ((prefixes, "prefix"), (paths, "path")):
            for i, a in enumerate(items):
                for b in items[i + 1 :]:
                    if a.startswith(b) or b.startswith(a):
                        raise ValueError(f"Backup root {kind}es overlap: {a!r} and {b!r}")
        if any(self.marker_key.startswith(prefix) for prefix in prefixes):
            raise ValueError(f"Marker key {self.marker_key!r} collides with a backup prefix")
        return self

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "GatewayConfig":
        """Build a config from ``GATEWAY_*`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        roots_json = env.get("GATEWAY_BACKUP_ROOTS")
        if roots_json:
            # {"<sandbox path>": "<key prefix>", ...}
            values["backup_roots"] = tuple(
                BackupRoot(path=path, prefix=prefix)
                for path, prefix in json.loads(roots_json).items()
            )

        suffixes = env.get("GATEWAY_EXCLUDE_SUFFIXES")
        if suffixes:
            values["exclude_suffixes"] = tuple(s.strip() for s in suffixes.split(",") if s.strip())

        for field_name, var in (
            ("marker_key", "GATEWAY_MARKER_KEY"),
            ("critical_file", "GATEWAY_CRITICAL_FILE"),
            ("start_command", "GATEWAY_START_COMMAND"),
        ):
            if env.get(var):
                values[field_name] = env[var]

        signatures = env.get("GATEWAY_PROCESS_SIGNATURES")
        if signatures:
            values["process_signatures"] = tuple(
                s.strip() for s in signatures.split(",") if s.strip()
            )

        port = env.get("GATEWAY_PORT")
        if port:
            try:
                values["service_port"] = int(port)
            except ValueError:
                log.warn("config.port_invalid", detail=f"invalid value '{port}', using default")

        values["startup_timeout"] = _resolve_seconds(
            env, "GATEWAY_STARTUP_TIMEOUT", default=180.0, min_value=10.0, max_value=900.0
        )
        values["retry_delay"] = _resolve_seconds(
            env, "GATEWAY_RETRY_DELAY", default=3.0, min_value=0.0, max_value=30.0
        )

        return cls(**values)


def _resolve_seconds(
    env: Any,
    name: str,
    default: float,
    min_value: float,
    max_value: float,
) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default

    try:
        value = float(raw)
    except ValueError:
        log.warn(
            "config.timeout_invalid",
            timeout_name=name,
            detail=f"invalid value '{raw}', using default",
        )
        return default

    if value < min_value:
        log.warn("config.timeout_clamped", timeout_name=name, detail=f"below min ({min_value}s)")
        return min_value
    if value > max_value:
        log.warn("config.timeout_clamped", timeout_name=name, detail=f"above max ({max_value}s)")
        return max_value
    return value
