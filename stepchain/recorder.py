"""Step recorders: observation hooks around every step a pipeline executes."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def json_safe(value: Any, *, max_depth: int = 4, max_items: int = 25) -> Any:
    if max_depth <= 0:
        return "<max_depth>"
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        items = list(value)
        out = [json_safe(item, max_depth=max_depth - 1, max_items=max_items) for item in items[:max_items]]
        if len(items) > max_items:
            out.append(f"<{len(items) - max_items} more>")
        return out
    if isinstance(value, dict):
        result: dict[str, Any] = {}
        for idx, (k, v) in enumerate(value.items()):
            if idx >= max_items:
                result["<more>"] = f"<{len(value) - max_items} more>"
                break
            result[str(k)] = json_safe(v, max_depth=max_depth - 1, max_items=max_items)
        return result
    return repr(value)


class StepRecorder(Protocol):
    def on_step_start(self, path: str, **metrics: Any) -> None:
        ...

    def on_step_end(self, record: dict[str, Any]) -> None:
        ...

    def on_step_error(self, path: str, step_name: str, exc: Exception) -> None:
        ...


def validate_recorder(recorder: Any) -> None:
    required = ("on_step_start", "on_step_end", "on_step_error")
    for name in required:
        method = getattr(recorder, name, None)
        if method is None or not callable(method):
            raise TypeError(f"Step recorder missing required method: {name}")


class DefaultStepRecorder:
    """Log one line when a step starts and one when it completes."""

    def __init__(self, *, logger: logging.Logger | None = None, level: int = logging.INFO):
        self.logger = logger or logging.getLogger(__name__)
        self.level = level

    def on_step_start(self, path: str, **metrics: Any) -> None:
        tokens: list[str] = []
        node_type = metrics.get("node_type")
        if isinstance(node_type, str) and node_type.strip():
            tokens.append(f"type={node_type.strip()}")

        position = metrics.get("position")
        if isinstance(position, int) and not isinstance(position, bool):
            tokens.append(f"position={position}")

        source = metrics.get("source")
        if isinstance(source, str) and source.strip():
            tokens.append(f"source={source.strip()}")

        doc = metrics.get("doc")
        if isinstance(doc, str) and doc.strip():
            tokens.append(f"doc={json.dumps(doc.strip(), ensure_ascii=False)}")

        tokens.append(f"extra_args={int(metrics.get('extra_args', 0) or 0)}")
        self.logger.log(self.level, "Step: %s (%s)", path, ", ".join(tokens))

    def on_step_end(self, record: dict[str, Any]) -> None:
        path = record.get("path", "<unknown>")
        record_type = record.get("type") or "function"
        meta = record.get("meta") if isinstance(record.get("meta"), dict) else {}
        source = meta.get("source")

        suffix_tokens: list[str] = [f"type={record_type}"]
        if isinstance(source, str) and source.strip():
            suffix_tokens.append(f"source={source.strip()}")
        if "result" in record:
            suffix_tokens.append(
                f"result={json.dumps(record['result'], ensure_ascii=False, default=str)}"
            )
        self.logger.log(self.level, "Completed step %s (%s)", path, ", ".join(suffix_tokens))

    def on_step_error(self, path: str, step_name: str, exc: Exception) -> None:
        self.logger.error("Step %s failed: %s: %s", path, type(exc).__name__, exc)


class NullStepRecorder:
    def on_step_start(self, path: str, **metrics: Any) -> None:
        return None

    def on_step_end(self, record: dict[str, Any]) -> None:
        return None

    def on_step_error(self, path: str, step_name: str, exc: Exception) -> None:
        return None
