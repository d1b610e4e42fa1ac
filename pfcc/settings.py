from __future__ import annotations

import os
import re
import tomllib
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


DEFAULT_CONFIG_PATH = "/etc/pfsense-controller/config.yaml"

_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
# Go-style durations, possibly compound: "90s", "1m30s", "1h", "250ms".
_DURATION_RE = re.compile(r"(?:\d+(?:\.\d+)?(?:ns|us|µs|ms|s|m|h))+")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigError(Exception):
    pass


def parse_duration(value: Any) -> float:
    """Seconds from ``30``, ``"30"``, ``"30s"``, ``"500ms"``, ``"2m"``, ``"1h"`` or ``"1m30s"``."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if _NUMBER_RE.fullmatch(text):
        return float(text)
    if not _DURATION_RE.fullmatch(text):
        raise ValueError(f"invalid duration: {value!r}")
    return sum(float(n) * _DURATION_UNITS[unit] for n, unit in _DURATION_PART_RE.findall(text))


def _env_bool(raw: str | None, default: bool = False) -> bool:
    if raw is None or raw.strip() == "":
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_int(raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class EndpointConfig(BaseModel):
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1, description="Base URL of the REST API, e.g. https://fw/api/v2")
    api_key: str = Field(..., min_length=1)
    request_timeout: float = Field(30.0, gt=0, description="Per-request timeout in seconds")
    insecure_tls: bool = False

    @field_validator("request_timeout", mode="before")
    @classmethod
    def _duration(cls, v: Any) -> float:
        return parse_duration(v)


class GlobalConfig(BaseModel):
    log_level: str = "info"
    poll_interval: float = Field(30.0, gt=0)
    retry_delay: float = Field(5.0, ge=0)
    retry_attempts: int = Field(3, ge=0)
    health_port: int = Field(8080, ge=1, le=65535)
    traefik_compat_mode: bool = False

    @field_validator("poll_interval", "retry_delay", mode="before")
    @classmethod
    def _duration(cls, v: Any) -> float:
        return parse_duration(v)


class Config(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    endpoints: list[EndpointConfig] = Field(default_factory=list)
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")


def _apply_env(raw: dict[str, Any], env: dict[str, str]) -> None:
    g = raw.setdefault("global", {}) or {}
    raw["global"] = g

    if env.get("PFSENSE_POLL_INTERVAL"):
        try:
            g["poll_interval"] = parse_duration(env["PFSENSE_POLL_INTERVAL"])
        except ValueError:
            pass
    if env.get("PFSENSE_RETRY_DELAY"):
        try:
            g["retry_delay"] = parse_duration(env["PFSENSE_RETRY_DELAY"])
        except ValueError:
            pass
    if env.get("PFSENSE_RETRY_ATTEMPTS"):
        g["retry_attempts"] = _env_int(env["PFSENSE_RETRY_ATTEMPTS"], g.get("retry_attempts", 3))
    if env.get("PFSENSE_LOG_LEVEL"):
        g["log_level"] = env["PFSENSE_LOG_LEVEL"]
    if env.get("PFSENSE_HEALTH_PORT"):
        port = _env_int(env["PFSENSE_HEALTH_PORT"], 0)
        if port > 0:
            g["health_port"] = port
    if env.get("PFSENSE_TRAEFIK_COMPAT_MODE"):
        g["traefik_compat_mode"] = _env_bool(env["PFSENSE_TRAEFIK_COMPAT_MODE"])

    # Single endpoint from the environment when the file defines none.
    if not raw.get("endpoints") and env.get("PFSENSE_URL"):
        raw["endpoints"] = [
            {
                "name": "default",
                "url": env["PFSENSE_URL"],
                "api_key": env.get("PFSENSE_API_KEY", ""),
                "insecure_tls": _env_bool(env.get("PFSENSE_INSECURE_TLS")),
                "request_timeout": 30.0,
            }
        ]


def _read_file(path: str) -> Any:
    if path.endswith(".toml"):
        with open(path, "rb") as f:
            return tomllib.load(f)
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: str = DEFAULT_CONFIG_PATH, env: dict[str, str] | None = None) -> Config:
    """Read the config file (if present), apply ``PFSENSE_*`` overrides, validate.

    ``.toml`` files are read as TOML, the layout older deployments use;
    anything else is YAML.

    Raises ConfigError for unreadable files, invalid values and when no
    endpoint is configured at all.
    """
    env = dict(os.environ) if env is None else env
    raw: dict[str, Any] = {}
    if path and os.path.isfile(path):
        try:
            raw = _read_file(path)
        except (OSError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"failed to read config file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"config file {path} must contain a mapping")

    _apply_env(raw, env)

    try:
        cfg = Config.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"configuration validation failed: {e}") from e

    if not cfg.endpoints:
        raise ConfigError("configuration validation failed: at least one endpoint must be configured")
    seen: set[str] = set()
    for ep in cfg.endpoints:
        if ep.name in seen:
            raise ConfigError(f"configuration validation failed: duplicate endpoint name '{ep.name}'")
        seen.add(ep.name)
    return cfg
