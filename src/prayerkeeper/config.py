from __future__ import annotations

from dataclasses import dataclass, field
import importlib
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class StorageConfig:
    path: str


@dataclass(frozen=True)
class LoggingConfig:
    file_path: Optional[str] = None
    level: str = "INFO"


@dataclass(frozen=True)
class LocationConfig:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class EngineConfig:
    target: str


@dataclass(frozen=True)
class JobsConfig:
    prefetch_days: int = 7


@dataclass(frozen=True)
class DeliveryConfig:
    command: List[str] = field(default_factory=list)
    timeout_seconds: int = 10


@dataclass(frozen=True)
class ServiceConfig:
    storage: StorageConfig
    engine: EngineConfig
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    location: Optional[LocationConfig] = None
    jobs: JobsConfig = field(default_factory=JobsConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file: {path}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping at root of config file: {path}")
    return data


class ConfigLoader:
    def __init__(
        self, root_dir: Path | None = None, config_path: Path | None = None
    ) -> None:
        self._root_dir = root_dir
        self._config_path = config_path

    def load(self) -> ServiceConfig:
        if self._config_path is not None:
            # An explicit file is used as-is, without config.d overlays.
            if not self._config_path.exists():
                raise ConfigError(f"Missing config file: {self._config_path}")
            merged = _load_yaml(self._config_path)
        else:
            merged = self._load_from_root(self._resolve_root_dir())

        config = self._build_config(merged)
        self._validate(config)
        return config

    def _load_from_root(self, root_dir: Path) -> Dict[str, Any]:
        config_path = root_dir / "config.yml"
        if not config_path.exists():
            raise ConfigError(f"Missing base config file: {config_path}")

        merged = _load_yaml(config_path)
        config_d = root_dir / "config.d"
        if config_d.exists():
            for path in sorted(config_d.glob("*.yml")):
                merged = _deep_merge(merged, _load_yaml(path))
        return merged

    def _resolve_root_dir(self) -> Path:
        if self._root_dir is not None:
            return self._root_dir
        env_dir = os.getenv("PRAYERKEEPER_CONFIG_DIR")
        if env_dir:
            return Path(env_dir)
        return Path("/etc/prayerkeeper")

    def _build_config(self, data: Dict[str, Any]) -> ServiceConfig:
        try:
            storage_data = data["storage"]
            engine_data = data["engine"]
        except KeyError as exc:
            raise ConfigError(f"Missing config section: {exc.args[0]}") from exc

        try:
            storage = StorageConfig(path=str(storage_data["path"]))
            engine = EngineConfig(target=str(engine_data["target"]))

            logging_data = data.get("logging") or {}
            logging_config = LoggingConfig(
                file_path=logging_data.get("file_path"),
                level=str(logging_data.get("level", "INFO")).upper(),
            )

            location = None
            location_data = data.get("location")
            if location_data:
                location = LocationConfig(
                    latitude=float(location_data["latitude"]),
                    longitude=float(location_data["longitude"]),
                )

            jobs_data = data.get("jobs") or {}
            jobs = JobsConfig(prefetch_days=int(jobs_data.get("prefetch_days", 7)))

            delivery_data = data.get("delivery") or {}
            delivery = DeliveryConfig(
                command=[str(part) for part in delivery_data.get("command") or []],
                timeout_seconds=int(delivery_data.get("timeout_seconds", 10)),
            )
        except KeyError as exc:
            raise ConfigError(f"Missing config key: {exc.args[0]}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid config value: {exc}") from exc

        return ServiceConfig(
            storage=storage,
            engine=engine,
            logging=logging_config,
            location=location,
            jobs=jobs,
            delivery=delivery,
        )

    def _validate(self, config: ServiceConfig) -> None:
        self._validate_location(config.location)
        if config.jobs.prefetch_days < 0:
            raise ConfigError(
                f"jobs.prefetch_days must not be negative: {config.jobs.prefetch_days}"
            )
        if config.logging.level not in LOG_LEVELS:
            raise ConfigError(f"Unknown logging level: {config.logging.level}")
        if ":" not in config.engine.target:
            raise ConfigError(
                f"engine.target must look like 'module:callable': {config.engine.target}"
            )

    def _validate_location(self, location: Optional[LocationConfig]) -> None:
        if location is None:
            return
        if not -90 <= location.latitude <= 90:
            raise ConfigError(f"Latitude out of range: {location.latitude}")
        if not -180 <= location.longitude <= 180:
            raise ConfigError(f"Longitude out of range: {location.longitude}")


def load_engine(target: str) -> Callable[..., Any]:
    module_name, _, attr_path = target.partition(":")
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"Cannot import engine module {module_name!r}: {exc}") from exc
    for attr in attr_path.split("."):
        try:
            obj = getattr(obj, attr)
        except AttributeError as exc:
            raise ConfigError(f"Engine {target!r} has no attribute {attr!r}") from exc
    if not callable(obj):
        raise ConfigError(f"Engine {target!r} is not callable")
    return obj
