"""Ordered, named-step pipelines.

Build a chain of named callables, reorder it by name, and run all of it or a
slice of it. A `Pipeline` is itself a valid step, so pipelines nest.

The core (`stepchain.pipeline`, `stepchain.recorder`) depends on the standard
library only. YAML settings live in `stepchain.config`.
"""

from stepchain.config import LoggingSettings, PipelineSettings, load_config
from stepchain.config_namespace import ConfigNamespace
from stepchain.logging_utils import DEFAULT_LOG_FORMAT, setup_logger
from stepchain.pipeline import (
    ALLOWED_DUPLICATE_POLICIES,
    DuplicatePolicy,
    Pipeline,
    StepFn,
    UnknownStepError,
)
from stepchain.recorder import (
    DefaultStepRecorder,
    NullStepRecorder,
    StepRecorder,
    json_safe,
    utc_now_iso8601,
)

__version__ = "0.1.0"

__all__ = [
    "ALLOWED_DUPLICATE_POLICIES",
    "ConfigNamespace",
    "DEFAULT_LOG_FORMAT",
    "DefaultStepRecorder",
    "DuplicatePolicy",
    "LoggingSettings",
    "NullStepRecorder",
    "Pipeline",
    "PipelineSettings",
    "StepFn",
    "StepRecorder",
    "UnknownStepError",
    "json_safe",
    "load_config",
    "setup_logger",
    "utc_now_iso8601",
]
