from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml


class SettingsError(ValueError):
    pass


@dataclass(frozen=True)
class EngineSettings:
    workers: int = 4
    poll_interval_s: float = 0.05
    log_level: str = "WARNING"
    log_format: str = "text"
    default_model: str = "gpt-4.1-mini"
    # name -> "package.module:function"
    tools: dict[str, str] = field(default_factory=dict)
    tasks: dict[str, str] = field(default_factory=dict)


_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_LOG_FORMATS = {"text", "json"}


def load_settings(path: str | Path | None = None, env: Optional[Mapping[str, str]] = None) -> EngineSettings:
    """Load engine settings from an optional YAML file, then the environment.

    File format (every key optional):
      workers: 4
      poll_interval_s: 0.05
      log_level: INFO
      log_format: json
      default_model: gpt-4.1-mini
      tools: {<name>: "package.module:function"}
      tasks: {<name>: "package.module:function"}

    Env overrides: WORKFLOW_WORKERS, WORKFLOW_LOG_LEVEL, WORKFLOW_LOG_FORMAT,
    OPENAI_MODEL.
    """
    settings = EngineSettings()
    if path:
        settings = replace(settings, **_read_file(Path(path)))
    settings = _apply_env(settings, os.environ if env is None else env)
    _check(settings)
    return settings


def _read_file(p: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise SettingsError(f"{p}: cannot read settings file: {e}") from e
    except yaml.YAMLError as e:
        raise SettingsError(f"{p}: invalid YAML: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SettingsError(f"{p}: settings file must be a mapping")

    known = {f.name for f in fields(EngineSettings)}
    unknown = sorted(str(k) for k in raw if k not in known)
    if unknown:
        raise SettingsError(f"{p}: unknown settings key(s): {', '.join(unknown)}")

    out: dict[str, Any] = {}
    for key, value in raw.items():
        if key == "workers":
            if isinstance(value, bool) or not isinstance(value, int):
                raise SettingsError(f"{p}: workers must be an integer")
            out[key] = value
        elif key == "poll_interval_s":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise SettingsError(f"{p}: poll_interval_s must be a number")
            out[key] = float(value)
        elif key in ("tools", "tasks"):
            out[key] = _import_map(p, key, value)
        else:
            if not isinstance(value, str) or not value.strip():
                raise SettingsError(f"{p}: {key} must be a non-empty string")
            out[key] = value.strip()
    return out


def _import_map(p: Path, key: str, value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SettingsError(f"{p}: {key} must be a mapping of name -> 'module:function'")
    out: dict[str, str] = {}
    for name, target in value.items():
        if not isinstance(name, str) or not name.strip():
            raise SettingsError(f"{p}: {key} names must be non-empty strings")
        if not isinstance(target, str) or ":" not in target:
            raise SettingsError(f"{p}: {key}.{name} must look like 'package.module:function'")
        out[name.strip()] = target.strip()
    return out


def _apply_env(settings: EngineSettings, env: Mapping[str, str]) -> EngineSettings:
    updates: dict[str, Any] = {}

    workers = (env.get("WORKFLOW_WORKERS") or "").strip()
    if workers:
        try:
            updates["workers"] = int(workers)
        except ValueError as e:
            raise SettingsError(f"WORKFLOW_WORKERS must be an integer, got {workers!r}") from e

    level = (env.get("WORKFLOW_LOG_LEVEL") or "").strip()
    if level:
        updates["log_level"] = level

    fmt = (env.get("WORKFLOW_LOG_FORMAT") or "").strip()
    if fmt:
        updates["log_format"] = fmt

    model = (env.get("OPENAI_MODEL") or "").strip()
    if model:
        updates["default_model"] = model

    return replace(settings, **updates) if updates else settings


def _check(settings: EngineSettings) -> None:
    if settings.workers < 1:
        raise SettingsError(f"workers must be >= 1, got {settings.workers}")
    if settings.poll_interval_s <= 0:
        raise SettingsError(f"poll_interval_s must be > 0, got {settings.poll_interval_s}")
    if settings.log_level.upper() not in _LOG_LEVELS:
        raise SettingsError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {settings.log_level!r}")
    if settings.log_format not in _LOG_FORMATS:
        raise SettingsError(f"log_format must be 'text' or 'json', got {settings.log_format!r}")
