"""Load and normalize dashboard configuration from YAML."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .runtime.engine.policy import BoardPolicy, policy_from_config
from .runtime.engine.titles import DEFAULT_SUMMARIZER_COMMAND, DEFAULT_SUMMARIZER_TIMEOUT_SECONDS
from .runtime.events.bus import DEFAULT_DEBOUNCE_SECONDS
from .runtime.sources.claude_code import (
    DEFAULT_ACTIVE_THRESHOLD_SECONDS,
    DEFAULT_HOME,
    DEFAULT_WATCH_DEBOUNCE_SECONDS,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".agent_dashboard" / "config.yaml"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4200
PORT_ENV_VARS = ("AGENT_DASHBOARD_PORT", "PORT")


@dataclass(frozen=True)
class ServerConfig:
    """HTTP listener settings."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cors: bool = True


@dataclass(frozen=True)
class ClaudeCodeSourceConfig:
    """Settings for the Claude Code session source.

    Attributes:
        enabled: Whether the source is registered at startup.
        home: Claude home directory holding ``teams/``, ``tasks/`` and ``todos/``.
        active_threshold_seconds: Recency window that marks a session active.
        watch_debounce_seconds: Delay used to coalesce filesystem events.
    """
    enabled: bool = True
    home: Path = DEFAULT_HOME
    active_threshold_seconds: float = DEFAULT_ACTIVE_THRESHOLD_SECONDS
    watch_debounce_seconds: float = DEFAULT_WATCH_DEBOUNCE_SECONDS


@dataclass(frozen=True)
class SummarizerConfig:
    """External summarizer used as the last title fallback."""
    enabled: bool = True
    command: str = DEFAULT_SUMMARIZER_COMMAND
    timeout_seconds: float = DEFAULT_SUMMARIZER_TIMEOUT_SECONDS


@dataclass(frozen=True)
class DashboardConfig:
    """Fully resolved configuration for one dashboard process."""
    server: ServerConfig = field(default_factory=ServerConfig)
    claude_code: ClaudeCodeSourceConfig = field(default_factory=ClaudeCodeSourceConfig)
    summarizer: SummarizerConfig = field(default_factory=SummarizerConfig)
    board: BoardPolicy = field(default_factory=BoardPolicy)
    broadcast_debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS


def _as_dict(value: Any) -> dict[str, Any]:
    """Return ``value`` only when it is a dictionary."""
    return value if isinstance(value, dict) else {}


def _as_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _as_float(value: Any, default: float, *, minimum: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _as_port(value: Any, default: int) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        return default
    return port if 0 < port < 65536 else default


def parse_config(raw: Any, *, environ: Optional[Mapping[str, str]] = None) -> DashboardConfig:
    """Normalize a parsed YAML mapping into a ``DashboardConfig``.

    Args:
        raw (Any): Parsed YAML document; non-mappings yield defaults.
        environ (Optional[Mapping[str, str]]): Environment used for port
            overrides; defaults to ``os.environ``.

    Returns:
        DashboardConfig: Configuration with invalid values replaced by defaults.
    """
    env = os.environ if environ is None else environ
    data = _as_dict(raw)

    server_cfg = _as_dict(data.get("server"))
    port = _as_port(server_cfg.get("port"), DEFAULT_PORT)
    for name in PORT_ENV_VARS:
        if env.get(name):
            port = _as_port(env.get(name), port)
            break
    server = ServerConfig(
        host=str(server_cfg.get("host") or DEFAULT_HOST).strip() or DEFAULT_HOST,
        port=port,
        cors=_as_bool(server_cfg.get("cors"), True),
    )

    claude_cfg = _as_dict(_as_dict(data.get("sources")).get("claude_code"))
    home_raw = str(claude_cfg.get("home") or "").strip()
    claude_code = ClaudeCodeSourceConfig(
        enabled=_as_bool(claude_cfg.get("enabled"), True),
        home=Path(home_raw).expanduser() if home_raw else DEFAULT_HOME,
        active_threshold_seconds=_as_float(claude_cfg.get("active_threshold_seconds"), DEFAULT_ACTIVE_THRESHOLD_SECONDS),
        watch_debounce_seconds=_as_float(claude_cfg.get("watch_debounce_seconds"), DEFAULT_WATCH_DEBOUNCE_SECONDS),
    )

    summarizer_cfg = _as_dict(data.get("summarizer"))
    summarizer = SummarizerConfig(
        enabled=_as_bool(summarizer_cfg.get("enabled"), True),
        command=str(summarizer_cfg.get("command") or DEFAULT_SUMMARIZER_COMMAND).strip() or DEFAULT_SUMMARIZER_COMMAND,
        timeout_seconds=_as_float(summarizer_cfg.get("timeout_seconds"), DEFAULT_SUMMARIZER_TIMEOUT_SECONDS, minimum=0.1),
    )

    broadcast_cfg = _as_dict(data.get("broadcast"))
    return DashboardConfig(
        server=server,
        claude_code=claude_code,
        summarizer=summarizer,
        board=policy_from_config(data.get("board")),
        broadcast_debounce_seconds=_as_float(broadcast_cfg.get("debounce_seconds"), DEFAULT_DEBOUNCE_SECONDS),
    )


def load_config(path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None) -> DashboardConfig:
    """Read configuration from ``path`` (or the default location) and normalize it.

    A missing default file yields defaults. An explicit path that cannot be
    read or parsed is an error.

    Raises:
        FileNotFoundError: If an explicit ``path`` does not exist.
        ValueError: If the file is not valid YAML.
    """
    target = path or DEFAULT_CONFIG_PATH
    if not target.exists():
        if path is not None:
            raise FileNotFoundError(f"Config file not found: {target}")
        return parse_config({}, environ=environ)
    try:
        raw = yaml.safe_load(target.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid config file {target}: {exc}") from exc
    logger.debug("Loaded config from %s", target)
    return parse_config(raw, environ=environ)
