"""Configuration loading & validation.

Precedence (last wins): base.yaml → overrides.local.yaml → ENV (RELAY__*).

Sections are validated by per-section schemas (`relay.config.schemas.*`);
unknown keys are rejected.
"""
from __future__ import annotations

import logging
import os
import pathlib
import threading
from functools import lru_cache
from typing import Any, Dict, Type

import yaml
from pydantic import BaseModel, ConfigDict, Field

from relay import metrics
from relay.errors import validate_error_type

from .schemas.dispatcher import DispatcherSettings
from .schemas.observability import LoggingConfig, MetricsConfig

log = logging.getLogger("relay.config")


class AggregatedConfig(BaseModel):
    schema_version: int = 1
    dispatcher: DispatcherSettings = Field(default_factory=DispatcherSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    model_config = ConfigDict(extra="forbid")


DEFAULT_CONFIG_DIR = "configs"
ENV_PREFIX = "RELAY__"

SUB_SCHEMA_CLASSES: Dict[str, Type[BaseModel]] = {
    "dispatcher": DispatcherSettings,
    "logging": LoggingConfig,
    "metrics": MetricsConfig,
}


class ConfigError(Exception):
    error_type = "config-invalid"


def _load_yaml_if_exists(path: pathlib.Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path.name}: top-level mapping expected")
    return data


def _merge_dict(
    base: Dict[str, Any], override: Dict[str, Any]
) -> Dict[str, Any]:
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            base[k] = _merge_dict(base[k], v)
        else:
            base[k] = v
    return base


def _cast_env_value(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        return int(value)
    except ValueError:
        try:
            return float(value)
        except ValueError:
            return value


def _apply_env(cfg: Dict[str, Any]) -> None:
    prefix_len = len(ENV_PREFIX)
    for env_key, value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        path_parts = env_key[prefix_len:].lower().split("__")
        target = cfg
        for part in path_parts[:-1]:
            if part not in target or not isinstance(target[part], dict):
                target[part] = {}
            target = target[part]
        target[path_parts[-1]] = _cast_env_value(value)
        dotted_path = ".".join(path_parts)
        metrics.inc("env_override_total", {"path": dotted_path})
        log.info("config env override path=%s source=env", dotted_path)


_lock = threading.Lock()


def _resolve_config_dir() -> pathlib.Path:
    """Resolve config directory each call honoring env var changes."""
    return pathlib.Path(os.getenv("RELAY_CONFIG_DIR", DEFAULT_CONFIG_DIR))


def _validate_sub_schemas(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Validate each known section via its schema class."""
    validated: Dict[str, Any] = {}
    for name, cls in SUB_SCHEMA_CLASSES.items():
        if name in raw:
            try:
                validated[name] = cls.model_validate(raw[name])
            except Exception as e:  # noqa: BLE001
                raise ConfigError(
                    f"Validation failed for section '{name}': {e}"
                ) from e
    return validated


def _normalize_and_validate(raw: Dict[str, Any]) -> None:
    """Apply cross-field normalizations and bounds validation.

    Normalizations:
      - dispatcher.reserved_names: stripped, duplicates dropped.
    Validations (error → raise):
      - reserved names must not contain the delimiter
      - schema_version must be 1
    """
    errors: list[tuple[str, str, str]] = []  # (path, code, msg)
    section = raw.get("dispatcher")
    if isinstance(section, dict):
        names = section.get("reserved_names")
        if isinstance(names, list):
            cleaned = []
            for n in names:
                n = str(n).strip()
                if n and n not in cleaned:
                    cleaned.append(n)
            section["reserved_names"] = cleaned
            delimiter = section.get("delimiter", ".")
            if delimiter and any(delimiter in n for n in cleaned):
                errors.append(
                    (
                        "dispatcher.reserved_names",
                        "config-invalid",
                        "reserved names cannot contain the delimiter",
                    )
                )
    version = raw.get("schema_version", 1)
    if version != 1:
        errors.append(
            ("schema_version", "config-out-of-range", "only 1 supported")
        )

    if errors:
        for path, code, _ in errors:
            metrics.inc(
                "config_validation_errors_total",
                {"path": path, "code": code},
            )
        for _, code, _ in errors:
            validate_error_type(code)
        details = ", ".join(f"{p}:{c}:{m}" for p, c, m in errors)
        raise ConfigError(f"config validation failed: {details}")


@lru_cache(maxsize=1)
def get_config() -> AggregatedConfig:  # noqa: D401
    with _lock:
        cfg_dir = _resolve_config_dir()
        base_cfg = _load_yaml_if_exists(cfg_dir / "base.yaml")
        overrides_cfg = _load_yaml_if_exists(cfg_dir / "overrides.local.yaml")
        merged = _merge_dict(base_cfg, overrides_cfg)
        _apply_env(merged)
        _normalize_and_validate(merged)
        validated_sub = _validate_sub_schemas(merged)
        merged.update(validated_sub)
        try:
            return AggregatedConfig.model_validate(merged)
        except Exception as e:  # noqa: BLE001
            raise ConfigError(str(e)) from e


def clear_config_cache() -> None:
    """Clear cached config (primarily for tests)."""
    get_config.cache_clear()


def as_dict() -> Dict[str, Any]:
    return get_config().model_dump()
