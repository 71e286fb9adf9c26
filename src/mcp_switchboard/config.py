"""Server configuration loading and validation.

Configuration is merged from three layers, later layers winning:
built-in defaults, ``MCP_*`` environment variables, then values from a
YAML file or passed explicitly.
"""

from __future__ import annotations

import copy
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

TRANSPORTS = ("stdio", "http", "ws", "http+sse", "streamable-http")
STDIO_MODES = ("auto", "blocking", "polling")
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

DEFAULTS: dict[str, Any] = {
    "transport": "stdio",
    "host": "127.0.0.1",
    "port": 8080,
    "path": "/mcp",
    "log_level": "info",
    "log_file": "",
    "stdio": {
        "mode": "auto",
        "non_blocking": True,
        "buffer_interval": 10,
    },
    "session": {
        "ttl": 3600,
    },
    "security": {
        "rate_limit": 100,
        "rate_window": 60,
        "tool_rate_limits": {},
    },
    "performance": {
        "max_connections": 1000,
        "timeout": 30,
        "max_workers": 4,
        "max_pending": 64,
    },
    "audit": {
        "log_file": "",
    },
    "server": {
        "name": "mcp-switchboard",
        "version": "1.0.0",
    },
}

# Environment variable -> (section, key, converter)
ENV_VARS: dict[str, tuple[str | None, str, type]] = {
    "MCP_TRANSPORT": (None, "transport", str),
    "MCP_HOST": (None, "host", str),
    "MCP_PORT": (None, "port", int),
    "MCP_PATH": (None, "path", str),
    "MCP_LOG_LEVEL": (None, "log_level", str),
    "MCP_LOG_FILE": (None, "log_file", str),
    "MCP_STDIO_MODE": ("stdio", "mode", str),
    "MCP_SESSION_TTL": ("session", "ttl", float),
    "MCP_RATE_LIMIT": ("security", "rate_limit", int),
    "MCP_RATE_WINDOW": ("security", "rate_window", float),
    "MCP_MAX_CONNECTIONS": ("performance", "max_connections", int),
    "MCP_TIMEOUT": ("performance", "timeout", float),
    "MCP_MAX_WORKERS": ("performance", "max_workers", int),
    "MCP_AUDIT_LOG": ("audit", "log_file", str),
}


class ConfigError(Exception):
    """Raised when configuration loading or validation fails.

    Attributes:
        errors: Every problem found, one message each.
    """

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("Configuration validation failed: " + "; ".join(self.errors))


def expand_env_vars(value: str) -> str:
    """Expand environment variables in a string.

    Supports ${VAR_NAME} syntax. Unknown variables are left unchanged.

    Args:
        value: String potentially containing environment variable references.

    Returns:
        String with known environment variables expanded.
    """
    pattern = re.compile(r"\$\{([^}]+)\}")

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value
        if var_name == "HOME":
            return os.path.expanduser("~")
        return match.group(0)

    return pattern.sub(replacer, value)


def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``; None never overrides."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_environment(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Collect configuration values from ``MCP_*`` environment variables.

    Args:
        environ: Mapping to read instead of ``os.environ``.

    Returns:
        Nested configuration dict holding only the variables that are set.

    Raises:
        ConfigError: If a numeric variable cannot be converted.
    """
    environ = os.environ if environ is None else environ
    config: dict[str, Any] = {}
    errors = []

    for var, (section, key, convert) in ENV_VARS.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError:
            errors.append(f"{var} must be {convert.__name__}, got '{raw}'")
            continue
        target = config if section is None else config.setdefault(section, {})
        target[key] = value

    non_blocking = environ.get("MCP_STDIO_NON_BLOCKING")
    if non_blocking:
        config.setdefault("stdio", {})["non_blocking"] = _parse_bool(non_blocking)

    if errors:
        raise ConfigError(errors)
    return config


@dataclass
class ServerConfig:
    """Validated server configuration.

    Build instances with :meth:`from_dict` or :func:`load_config`, which
    apply defaults and environment overrides and validate the result.
    """

    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = 8080
    path: str = "/mcp"
    log_level: str = "info"
    log_file: str = ""

    # Stdio settings
    stdio_mode: str = "auto"
    stdio_non_blocking: bool = True
    stdio_buffer_interval: int = 10

    # Session settings
    session_ttl: float = 3600

    # Rate limiting
    rate_limit: int = 100
    rate_window: float = 60
    tool_rate_limits: dict[str, int] = field(default_factory=dict)

    # Performance settings
    max_connections: int = 1000
    timeout: float = 30
    max_workers: int = 4
    max_pending: int = 64

    # Audit settings
    audit_log_file: str = ""

    # Server identity
    server_name: str = "mcp-switchboard"
    server_version: str = "1.0.0"

    @classmethod
    def from_dict(
        cls,
        config: Mapping[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> ServerConfig:
        """Create a validated ServerConfig from a configuration dictionary.

        Args:
            config: Nested configuration (as parsed from YAML).
            environ: Environment to read ``MCP_*`` overrides from.

        Returns:
            ServerConfig instance with all settings populated.

        Raises:
            ConfigError: If any value is invalid.
        """
        merged = _merge(_merge(DEFAULTS, load_environment(environ)), config or {})
        bad_sections = [
            f"Section '{name}' must be a mapping"
            for name, default in DEFAULTS.items()
            if isinstance(default, dict) and not isinstance(merged[name], dict)
        ]
        if bad_sections:
            raise ConfigError(bad_sections)

        stdio = merged["stdio"]
        session = merged["session"]
        security = merged["security"]
        performance = merged["performance"]
        audit = merged["audit"]
        server = merged["server"]

        instance = cls(
            transport=merged["transport"],
            host=merged["host"],
            port=merged["port"],
            path=merged["path"],
            log_level=str(merged["log_level"]).lower(),
            log_file=expand_env_vars(str(merged["log_file"])),
            stdio_mode=stdio["mode"],
            stdio_non_blocking=stdio["non_blocking"],
            stdio_buffer_interval=stdio["buffer_interval"],
            session_ttl=session["ttl"],
            rate_limit=security["rate_limit"],
            rate_window=security["rate_window"],
            tool_rate_limits=dict(security["tool_rate_limits"] or {}),
            max_connections=performance["max_connections"],
            timeout=performance["timeout"],
            max_workers=performance["max_workers"],
            max_pending=performance["max_pending"],
            audit_log_file=expand_env_vars(str(audit["log_file"])),
            server_name=server["name"],
            server_version=str(server["version"]),
        )
        instance.validate()
        return instance

    def with_overrides(self, **overrides: Any) -> ServerConfig:
        """Return a validated copy with the given fields replaced; None values are skipped."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "log_level" in changes:
            changes["log_level"] = str(changes["log_level"]).lower()
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def validate(self) -> None:
        """Check every setting.

        Raises:
            ConfigError: Listing all invalid settings at once.
        """
        errors = []

        if self.transport not in TRANSPORTS:
            errors.append(
                f"Invalid transport: {self.transport}. Valid options: {', '.join(TRANSPORTS)}"
            )
        if not isinstance(self.port, int) or isinstance(self.port, bool) or not (
            1 <= self.port <= 65535
        ):
            errors.append(f"Invalid port: {self.port}. Must be between 1 and 65535")
        if not isinstance(self.path, str) or not self.path.startswith("/"):
            errors.append(f"Invalid path: {self.path}. Must start with '/'")
        if self.log_level not in LOG_LEVELS:
            errors.append(
                f"Invalid log level: {self.log_level}. Valid options: {', '.join(LOG_LEVELS)}"
            )
        if self.stdio_mode not in STDIO_MODES:
            errors.append(
                f"Invalid stdio mode: {self.stdio_mode}. Valid options: {', '.join(STDIO_MODES)}"
            )
        if not isinstance(self.stdio_buffer_interval, int) or self.stdio_buffer_interval < 1:
            errors.append("Stdio buffer interval must be at least 1 ms")

        positive = {
            "Session TTL": self.session_ttl,
            "Rate window": self.rate_window,
            "Max connections": self.max_connections,
            "Timeout": self.timeout,
            "Max workers": self.max_workers,
            "Max pending": self.max_pending,
        }
        for label, value in positive.items():
            if not isinstance(value, int | float) or isinstance(value, bool) or value <= 0:
                errors.append(f"{label} must be greater than 0")

        if not isinstance(self.rate_limit, int) or self.rate_limit < 0:
            errors.append("Rate limit must be 0 (disabled) or greater")
        if not isinstance(self.tool_rate_limits, dict) or not all(
            isinstance(v, int) and not isinstance(v, bool) for v in self.tool_rate_limits.values()
        ):
            errors.append("Tool rate limits must map tool names to integers")

        if errors:
            raise ConfigError(errors)

    def to_dict(self) -> dict[str, Any]:
        """Convert back to the nested layout accepted by :meth:`from_dict`."""
        return {
            "transport": self.transport,
            "host": self.host,
            "port": self.port,
            "path": self.path,
            "log_level": self.log_level,
            "log_file": self.log_file,
            "stdio": {
                "mode": self.stdio_mode,
                "non_blocking": self.stdio_non_blocking,
                "buffer_interval": self.stdio_buffer_interval,
            },
            "session": {"ttl": self.session_ttl},
            "security": {
                "rate_limit": self.rate_limit,
                "rate_window": self.rate_window,
                "tool_rate_limits": dict(self.tool_rate_limits),
            },
            "performance": {
                "max_connections": self.max_connections,
                "timeout": self.timeout,
                "max_workers": self.max_workers,
                "max_pending": self.max_pending,
            },
            "audit": {"log_file": self.audit_log_file},
            "server": {"name": self.server_name, "version": self.server_version},
        }


def load_config(path: str | Path, environ: Mapping[str, str] | None = None) -> ServerConfig:
    """Load server configuration from a YAML file.

    Args:
        path: Path to the configuration YAML file.
        environ: Environment to read ``MCP_*`` overrides from.

    Returns:
        ServerConfig instance.

    Raises:
        ConfigError: If the file cannot be found, parsed, or validated.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigError("Config file must contain a mapping")

    return ServerConfig.from_dict(config, environ=environ)
