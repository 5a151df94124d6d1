from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from feed_discovery.discovery.links import COMMON_FEED_PATHS
from feed_discovery.fetchers.http import DEFAULT_USER_AGENT
from feed_discovery.fetchers.relays import DEFAULT_RELAYS, RelayEndpoint, relays_from_config
from feed_discovery.utils import unique_ordered


def _coerce_bool(value: bool | str | int) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "y", "on"}:
            return True
        if normalized in {"false", "0", "no", "n", "off"}:
            return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _coerce_paths(value: list[str] | tuple[str, ...] | str) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    paths = [str(path).strip() for path in value if str(path).strip()]
    return unique_ordered(path if path.startswith("/") else f"/{path}" for path in paths)


@dataclass
class FetchConfig:
    timeout: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        self.timeout = float(self.timeout)
        self.user_agent = str(self.user_agent)


@dataclass
class DiscoveryConfig:
    max_concurrency: int = 4
    probe_common_paths: bool = True
    scan_content: bool = True
    common_paths: list[str] = field(default_factory=lambda: list(COMMON_FEED_PATHS))

    def __post_init__(self) -> None:
        self.max_concurrency = int(self.max_concurrency)
        self.probe_common_paths = _coerce_bool(self.probe_common_paths)
        self.scan_content = _coerce_bool(self.scan_content)
        self.common_paths = _coerce_paths(self.common_paths)


@dataclass
class AppConfig:
    fetch: FetchConfig = field(default_factory=FetchConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    relays: list[RelayEndpoint] = field(default_factory=lambda: list(DEFAULT_RELAYS))

    def validate(self) -> None:
        if self.fetch.timeout <= 0:
            raise ValueError("fetch.timeout must be positive")
        if self.discovery.max_concurrency < 1:
            raise ValueError("discovery.max_concurrency must be at least 1")
        if not self.relays:
            raise ValueError("At least one relay endpoint must be configured")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], env: Mapping[str, str] | None = None) -> "AppConfig":
        fetch = FetchConfig(**(data.get("fetch", {}) or {}))
        discovery = DiscoveryConfig(**(data.get("discovery", {}) or {}))
        raw_relays = data.get("relays")
        if raw_relays is None:
            relays = list(DEFAULT_RELAYS)
        elif isinstance(raw_relays, list):
            relays = relays_from_config(raw_relays, env if env is not None else os.environ)
        else:
            raise ValueError("relays must be a list")
        config = cls(fetch=fetch, discovery=discovery, relays=relays)
        config.validate()
        return config


DEFAULT_CONFIG_PATH = Path("config.yaml")
ENV_PREFIX = "FEED_DISCOVERY__"


def _deep_set(target: dict[str, Any], keys: list[str], value: Any) -> None:
    current = target
    for key in keys[:-1]:
        current = current.setdefault(key, {})
    current[keys[-1]] = value


def _parse_env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        if not path or any(not part for part in path):
            continue
        _deep_set(overrides, path, value)
    return overrides


def _merge_dicts(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    path: Path | str = DEFAULT_CONFIG_PATH,
    env: Mapping[str, str] | None = None,
) -> AppConfig:
    config_path = Path(path)
    data: dict[str, Any] = {}
    if config_path.exists():
        raw = config_path.read_text(encoding="utf-8")
        loaded = yaml.safe_load(raw) or {}
        if not isinstance(loaded, dict):
            raise ValueError("config.yaml must define a mapping at the top level")
        data = loaded

    environ = env if env is not None else os.environ
    env_overrides = _parse_env_overrides(environ)
    merged = _merge_dicts(data, env_overrides)
    return AppConfig.from_dict(merged, env=environ)
