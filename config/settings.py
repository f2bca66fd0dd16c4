"""
Configuration loader for the Thread Relay service.
Reads settings from a YAML file with environment variable substitution,
then applies the plain environment overrides the service has always honoured
(CHECK_INTERVAL_MS, START_WORKER, HEADLESS, COOKIES_BASE64, LOG_LEVEL, ...).
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class StoreConfig:
    backend: str = "file"               # "file" | "memory"
    path: str = "./queue.json"


@dataclass
class WorkerConfig:
    poll_interval_ms: int = 15000
    auto_start: bool = True

    @property
    def poll_interval_s(self) -> float:
        return self.poll_interval_ms / 1000


@dataclass
class SessionConfig:
    backend: str = "messenger"          # "messenger" | "scripted"
    headless: bool = True
    cookies_base64: str = ""            # base64 JSON array of browser cookies
    base_url: str = "https://www.messenger.com"
    navigation_timeout_ms: int = 60000
    composer_timeout_ms: int = 10000
    settle_delay_ms: int = 1500
    post_send_delay_ms: int = 1200
    typing_delay_ms: int = 20


@dataclass
class RetryConfig:
    max_attempts: int = 0               # 0/1 = one-shot, failed stays failed
    backoff_seconds: float = 60.0


@dataclass
class PairingConfig:
    ttl_seconds: int = 7 * 24 * 3600    # 0 disables
    max_count: int = 1000               # 0 disables


@dataclass
class Settings:
    app_name: str = "ThreadRelay"
    debug: bool = False
    log_level: str = "info"
    port: int = 3000
    public_dir: str = "./public"
    store: StoreConfig = field(default_factory=StoreConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    pairing: PairingConfig = field(default_factory=PairingConfig)


_settings: Optional[Settings] = None

# Floor for worker.poll_interval_ms, whatever the source.
MIN_POLL_INTERVAL_MS = 1000


def _substitute_env_vars(value: str, env: dict[str, str]) -> str:
    """Replace ${VAR_NAME} patterns with values from `env`."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return env.get(var_name, "")
    return pattern.sub(replacer, value)


def _process_values(obj: Any, env: dict[str, str]) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj, env)
    elif isinstance(obj, dict):
        return {k: _process_values(v, env) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v, env) for v in obj]
    return obj


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or value == "":
        return default
    return str(value).strip().lower() not in ("false", "0", "no", "off")


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _apply_section(target: Any, raw: dict[str, Any]) -> None:
    for key, value in (raw or {}).items():
        if not hasattr(target, key):
            continue
        current = getattr(target, key)
        if isinstance(current, bool):
            value = _as_bool(value, current)
        elif isinstance(current, int):
            value = _as_int(value, current)
        elif isinstance(current, float):
            try:
                value = float(value)
            except (TypeError, ValueError):
                value = current
        elif value is None or value == "":
            value = current
        setattr(target, key, value)


def _apply_env_overrides(settings: Settings, env: dict[str, str]) -> None:
    """Plain environment variables win over the YAML file."""
    if env.get("CHECK_INTERVAL_MS"):
        settings.worker.poll_interval_ms = _as_int(env["CHECK_INTERVAL_MS"], settings.worker.poll_interval_ms)
    # Only an explicit "false" turns these off.
    if "START_WORKER" in env:
        settings.worker.auto_start = env["START_WORKER"].strip().lower() != "false"
    if "HEADLESS" in env:
        settings.session.headless = env["HEADLESS"].strip().lower() != "false"
    if env.get("COOKIES_BASE64"):
        settings.session.cookies_base64 = env["COOKIES_BASE64"]
    if env.get("SESSION_BACKEND"):
        settings.session.backend = env["SESSION_BACKEND"]
    if env.get("QUEUE_FILE"):
        settings.store.path = env["QUEUE_FILE"]
    if env.get("STORE_BACKEND"):
        settings.store.backend = env["STORE_BACKEND"]
    if env.get("LOG_LEVEL"):
        settings.log_level = env["LOG_LEVEL"]
    if env.get("PORT"):
        settings.port = _as_int(env["PORT"], settings.port)
    if env.get("RETRY_MAX_ATTEMPTS"):
        settings.retry.max_attempts = _as_int(env["RETRY_MAX_ATTEMPTS"], settings.retry.max_attempts)


def load_settings(config_path: str = None, env: dict[str, str] = None) -> Settings:
    """Load settings from YAML file, then apply environment overrides."""
    global _settings

    env = dict(os.environ if env is None else env)
    if config_path is None:
        config_path = env.get(
            "RELAY_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw, env)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = _as_bool(raw.get("debug"), settings.debug)
        settings.log_level = raw.get("log_level") or settings.log_level
        settings.port = _as_int(raw.get("port"), settings.port)
        settings.public_dir = raw.get("public_dir") or settings.public_dir

        _apply_section(settings.store, raw.get("store"))
        _apply_section(settings.worker, raw.get("worker"))
        _apply_section(settings.session, raw.get("session"))
        _apply_section(settings.retry, raw.get("retry"))
        _apply_section(settings.pairing, raw.get("pairing"))

    _apply_env_overrides(settings, env)
    settings.worker.poll_interval_ms = max(settings.worker.poll_interval_ms, MIN_POLL_INTERVAL_MS)

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
