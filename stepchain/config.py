from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import yaml

from stepchain.config_namespace import ConfigNamespace
from stepchain.logging_utils import DEFAULT_LOG_FORMAT, setup_logger
from stepchain.pipeline import ALLOWED_DUPLICATE_POLICIES, DuplicatePolicy, Pipeline
from stepchain.recorder import DefaultStepRecorder, NullStepRecorder, StepRecorder

DEFAULT_CONFIG_ENV_VAR = "STEPCHAIN_CONFIG"
LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
RECORDERS: tuple[str, ...] = ("default", "null")


def _load_yaml_mapping(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


def _deep_merge(base: Any, overlay: Any, *, path: str) -> Any:
    if overlay is None:
        return None

    if base is None:
        return overlay

    if isinstance(base, Mapping):
        if not isinstance(overlay, Mapping):
            raise ValueError(
                f"Invalid config overlay merge at {path}: base is mapping but overlay is {type(overlay).__name__}"
            )
        merged: dict[str, Any] = dict(base)
        for key, overlay_value in overlay.items():
            next_path = f"{path}.{key}" if path else str(key)
            if key in base:
                merged[key] = _deep_merge(base[key], overlay_value, path=next_path)
            else:
                merged[key] = overlay_value
        return merged

    if isinstance(base, (list, tuple)):
        if not isinstance(overlay, (list, tuple)):
            raise ValueError(
                f"Invalid config overlay merge at {path}: base is list but overlay is {type(overlay).__name__}"
            )
        return list(overlay)

    if isinstance(overlay, (Mapping, list, tuple)):
        raise ValueError(
            f"Invalid config overlay merge at {path}: base is {type(base).__name__} but overlay is {type(overlay).__name__}"
        )

    return overlay


def local_overlay_path(config_path: str) -> str:
    stem, ext = os.path.splitext(config_path)
    return f"{stem}.local{ext or '.yaml'}"


def load_config(
    config_path: str | os.PathLike[str] | None = None,
    *,
    env_var: str | None = DEFAULT_CONFIG_ENV_VAR,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load settings from a YAML file.

    An explicit `config_path` loads that file plus its `<stem>.local.yaml`
    overlay when present. Otherwise the file named by `env_var` is loaded on
    its own. With neither, the result is an empty mapping.
    """

    if config_path is None and env_var:
        raw_env = os.environ.get(env_var, "").strip()
        if raw_env:
            expanded = os.path.abspath(os.path.expandvars(os.path.expanduser(raw_env)))
            cfg = _load_yaml_mapping(expanded)
            return cfg, {"mode": "env", "paths": [expanded], "env_var": env_var}

    if config_path is None:
        return {}, {"mode": "defaults", "paths": [], "env_var": env_var}

    base_path = os.path.abspath(os.path.expanduser(os.fspath(config_path)))
    if not os.path.exists(base_path):
        raise FileNotFoundError(f"Missing config file: {base_path}")

    cfg = _load_yaml_mapping(base_path)
    loaded_paths = [base_path]
    mode = "base"

    overlay_path = local_overlay_path(base_path)
    if os.path.exists(overlay_path):
        overlay = _load_yaml_mapping(overlay_path)
        cfg = _deep_merge(cfg, overlay, path="")
        loaded_paths.append(overlay_path)
        mode = "base+local"

    return cfg, {"mode": mode, "paths": loaded_paths, "env_var": env_var}


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    format: str = DEFAULT_LOG_FORMAT
    file: str | None = None
    propagate: bool = False


@dataclass(frozen=True)
class PipelineSettings:
    duplicates: DuplicatePolicy = "move"
    recorder: str = "default"
    record_level: str = "DEBUG"
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "PipelineSettings":
        root = ConfigNamespace(dict(cfg), path="")
        ns = root.namespace("stepchain", default=None)

        duplicates = (
            ns.get_str("duplicates", default="move", choices=ALLOWED_DUPLICATE_POLICIES) or "move"
        )
        # An unquoted YAML `null` selects the null recorder.
        recorder = ns.get_str("recorder", default="default", choices=RECORDERS) or "null"
        record_level = ns.get_str("record_level", default="DEBUG", choices=LOG_LEVELS) or "DEBUG"

        log_ns = ns.namespace("logging", default=None)
        log_settings = LoggingSettings(
            level=log_ns.get_str("level", default="INFO", choices=LOG_LEVELS) or "INFO",
            format=log_ns.get_str("format", default=DEFAULT_LOG_FORMAT) or DEFAULT_LOG_FORMAT,
            file=log_ns.get_str("file", default=None),
            propagate=log_ns.get_bool("propagate", default=False),
        )

        ns.assert_consumed()
        return cls(
            duplicates=duplicates,  # type: ignore[arg-type]
            recorder=recorder,
            record_level=record_level,
            logging=log_settings,
        )

    @classmethod
    def load(
        cls,
        config_path: str | os.PathLike[str] | None = None,
        *,
        env_var: str | None = DEFAULT_CONFIG_ENV_VAR,
    ) -> "PipelineSettings":
        cfg, _meta = load_config(config_path, env_var=env_var)
        return cls.from_mapping(cfg)

    def configure_logging(self, name: str = "stepchain") -> logging.Logger:
        return setup_logger(
            name,
            level=self.logging.level,
            fmt=self.logging.format,
            log_file=self.logging.file,
            propagate=self.logging.propagate,
        )

    def make_recorder(self, logger: logging.Logger | None = None) -> StepRecorder:
        if self.recorder == "null":
            return NullStepRecorder()
        return DefaultStepRecorder(logger=logger, level=logging.getLevelName(self.record_level))

    def build_pipeline(self, name: str = "pipeline", *, logger: logging.Logger | None = None) -> Pipeline:
        return Pipeline(
            name,
            recorder=self.make_recorder(logger),
            duplicates=self.duplicates,
            logger=logger,
        )
