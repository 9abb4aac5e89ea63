"""Run settings resolved from defaults, a YAML run config and the environment."""

from __future__ import annotations

import os
import re
import shutil
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

ENV_PREFIX = "SPARK_E2E_"
CONFIG_ENV = f"{ENV_PREFIX}CONFIG"

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {None: 1.0, "ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

_DURATION_KEYS = (
    "poll_interval",
    "ready_timeout",
    "delete_timeout",
    "state_timeout",
    "state_interval",
    "pod_timeout",
    "pod_interval",
    "executor_timeout",
    "executor_interval",
)


def detect_cli() -> str:
    """Prefer ``oc`` when it is installed, otherwise fall back to ``kubectl``."""

    if shutil.which("oc"):
        return "oc"
    return "kubectl"


def parse_duration(value: Any, key: str = "duration") -> float:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a duration, got {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_PATTERN.match(str(value))
        if not match:
            raise ValueError(f"{key} must be a duration like 90, 90s or 5m, got {value!r}")
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"{key} must be positive, got {value!r}")
    return seconds


def parse_bool(value: Any, key: str = "flag") -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{key} must be a boolean, got {value!r}")


@dataclass(frozen=True)
class Settings:
    cli: str = ""
    context: Optional[str] = None
    namespace: str = "docling-spark"
    service_account: str = "spark-driver"
    input_claim: str = "docling-input"
    output_claim: str = "docling-output"
    # Full UBI image: copying into a pod needs tar.
    helper_image: str = "registry.access.redhat.com/ubi9/ubi"
    manifests_dir: Path = field(default_factory=lambda: Path("k8s"))
    poll_interval: float = 2.0
    ready_timeout: float = 120.0
    delete_timeout: float = 60.0
    state_timeout: float = 180.0
    state_interval: float = 10.0
    pod_timeout: float = 180.0
    pod_interval: float = 10.0
    executor_timeout: float = 300.0
    executor_interval: float = 15.0
    transport_retries: int = 3
    cleanup: bool = True

    @property
    def resolved_cli(self) -> str:
        return self.cli or detect_cli()

    def manifest(self, filename: str) -> Path:
        return self.manifests_dir / filename

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with the non-``None`` overrides applied and coerced."""

        cleaned = {key: value for key, value in overrides.items() if value is not None}
        if not cleaned:
            return self
        return replace(self, **_coerce(cleaned))


def _coerce(raw: Mapping[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(Settings)}
    values: Dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            raise ValueError(f"Unknown setting '{key}'")
        if key in _DURATION_KEYS:
            values[key] = parse_duration(value, key)
        elif key == "transport_retries":
            try:
                retries = int(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"transport_retries must be an integer, got {value!r}") from exc
            if retries < 0:
                raise ValueError("transport_retries must not be negative")
            values[key] = retries
        elif key == "cleanup":
            values[key] = parse_bool(value, key)
        elif key == "manifests_dir":
            values[key] = Path(value)
        elif key == "context":
            values[key] = str(value) if value else None
        else:
            values[key] = str(value)
    return values


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ValueError(f"Config file not found: {path}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def _from_env(env: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for f in fields(Settings):
        raw = env.get(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is not None and raw != "":
            values[f.name] = raw
    return values


def load_settings(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> Settings:
    """Resolve settings: defaults < YAML file < ``SPARK_E2E_*`` env < overrides."""

    env = os.environ if env is None else env
    merged: Dict[str, Any] = {}
    path = config_path or (Path(env[CONFIG_ENV]) if env.get(CONFIG_ENV) else None)
    if path is not None:
        merged.update(_load_yaml(path))
    merged.update(_from_env(env))
    merged.update({key: value for key, value in overrides.items() if value is not None})
    return Settings(**_coerce(merged))


__all__ = ["Settings", "detect_cli", "load_settings", "parse_bool", "parse_duration"]
