from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml


MAX_FILENAME_LENGTH = 255  # unixes, windows xp+
# ".YYYY-MM-DD_HH:MM:SS_UTC.html" appended to every readable filename
MIN_READABLE_FILENAME_LENGTH = 29


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


def _coerce_optional_int(value: int | str | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"", "none", "null", "unbounded"}:
            return None
        value = int(normalized)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Invalid integer value: {value!r}")
    return value


def default_cache_location() -> Path:
    return Path(tempfile.gettempdir()) / "upton"


@dataclass
class CacheConfig:
    enabled: bool = True
    location: Path = field(default_factory=default_cache_location)
    readable_filenames: bool = False
    max_filename_length: int = MAX_FILENAME_LENGTH
    cache_failures: bool = True

    def __post_init__(self) -> None:
        self.enabled = _coerce_bool(self.enabled)
        self.location = Path(self.location)
        self.readable_filenames = _coerce_bool(self.readable_filenames)
        self.cache_failures = _coerce_bool(self.cache_failures)
        self.max_filename_length = int(self.max_filename_length)
        if self.max_filename_length <= 0:
            raise ValueError("max_filename_length must be positive")
        if self.readable_filenames and self.max_filename_length < MIN_READABLE_FILENAME_LENGTH:
            raise ValueError(
                f"max_filename_length must be at least {MIN_READABLE_FILENAME_LENGTH} "
                "with readable_filenames"
            )


@dataclass
class FetcherConfig:
    timeout: float = 20.0
    user_agent: str = "upton/0.1"
    # None retries timeouts forever.
    max_timeout_retries: int | None = None
    retry_wait_min: float = 1.0
    retry_wait_max: float = 8.0

    def __post_init__(self) -> None:
        self.timeout = float(self.timeout)
        self.retry_wait_min = float(self.retry_wait_min)
        self.retry_wait_max = float(self.retry_wait_max)
        self.max_timeout_retries = _coerce_optional_int(self.max_timeout_retries)
        if self.max_timeout_retries is not None and self.max_timeout_retries < 0:
            raise ValueError("max_timeout_retries must be >= 0")


@dataclass
class AppConfig:
    cache: CacheConfig = field(default_factory=CacheConfig)
    fetcher: FetcherConfig = field(default_factory=FetcherConfig)
    verbose: bool = False
    event_log: Path | None = None

    def __post_init__(self) -> None:
        self.verbose = _coerce_bool(self.verbose)
        if self.event_log is not None:
            self.event_log = Path(self.event_log)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppConfig":
        cache = CacheConfig(**(data.get("cache", {}) or {}))
        fetcher = FetcherConfig(**(data.get("fetcher", {}) or {}))
        return cls(
            cache=cache,
            fetcher=fetcher,
            verbose=data.get("verbose", False),
            event_log=data.get("event_log"),
        )

    @classmethod
    def from_options(
        cls,
        options: Mapping[str, Any] | None = None,
        base: "AppConfig | None" = None,
    ) -> "AppConfig":
        """Build a config from flat downloader options, ignoring unknown keys.

        ``None`` values fall back to ``base`` (or the defaults), so
        ``{"cache_location": None}`` still resolves to the temp directory.
        """
        options = {key: value for key, value in (options or {}).items() if value is not None}
        base = base or cls()

        cache_kwargs = {
            name: options[key] for key, name in _CACHE_OPTIONS.items() if key in options
        }
        fetcher_kwargs = {key: options[key] for key in _FETCHER_OPTIONS if key in options}
        cache = CacheConfig(**{**vars(base.cache), **cache_kwargs})
        fetcher = FetcherConfig(**{**vars(base.fetcher), **fetcher_kwargs})
        return cls(
            cache=cache,
            fetcher=fetcher,
            verbose=options.get("verbose", base.verbose),
            event_log=options.get("event_log", base.event_log),
        )


_CACHE_OPTIONS = {
    "cache": "enabled",
    "cache_location": "location",
    "readable_filenames": "readable_filenames",
    "max_filename_length": "max_filename_length",
    "cache_failures": "cache_failures",
}
_FETCHER_OPTIONS = (
    "timeout",
    "user_agent",
    "max_timeout_retries",
    "retry_wait_min",
    "retry_wait_max",
)

DEFAULT_CONFIG_PATH = Path("upton.yaml")
ENV_PREFIX = "UPTON__"


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
            raise ValueError(f"{config_path.name} must define a mapping at the top level")
        data = loaded

    env_overrides = _parse_env_overrides(os.environ if env is None else env)
    merged = _merge_dicts(data, env_overrides)
    return AppConfig.from_dict(merged)
