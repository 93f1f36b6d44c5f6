"""Ordered, named-step execution chain.

A `Pipeline` owns two pieces of state kept in lockstep: an ordered list of step
names (execution order) and a name -> callable registry (behavior). Running a
pipeline folds the input through the selected steps in order; each step is
called as ``fn(current, *args)`` and its return value becomes ``current``.

`Pipeline` is itself callable with the same contract, so a pipeline can be
registered as a step of another pipeline.

Pipelines are mutable builders. They are not safe to mutate from several
threads, and mutating a pipeline while one of its runs is in progress is
unsupported.
"""

from __future__ import annotations

import difflib
import inspect
import logging
from typing import Any, Iterable, Iterator, Literal, Protocol, Sequence, TypeAlias

from stepchain.recorder import (
    DefaultStepRecorder,
    StepRecorder,
    json_safe,
    utc_now_iso8601,
    validate_recorder,
)

DuplicatePolicy: TypeAlias = Literal["move", "repeat"]
ALLOWED_DUPLICATE_POLICIES: tuple[str, ...] = ("move", "repeat")


class StepFn(Protocol):
    def __call__(self, value: Any, *args: Any) -> Any:
        ...


class UnknownStepError(ValueError):
    """Raised when an operation references a step name the pipeline does not hold."""

    def __init__(self, message: str, *, step: str, suggestions: Sequence[str] = ()):
        self.step = step
        self.suggestions = tuple(suggestions)
        if self.suggestions:
            message = f"{message} (did you mean: {', '.join(self.suggestions)})"
        super().__init__(message)


def _require_name(value: Any, *, label: str = "Step name") -> str:
    if not isinstance(value, str):
        raise TypeError(f"{label} must be a string (type={type(value).__name__})")
    if not value:
        raise ValueError(f"{label} cannot be empty")
    return value


def _require_callable(fn: Any, *, name: str) -> None:
    if not callable(fn):
        raise TypeError(f"Step {name} must be callable (type={type(fn).__name__})")


def _name_set(names: Iterable[str], *, label: str) -> set[str]:
    if isinstance(names, str):
        raise TypeError(f"{label} expects an iterable of step names, not a single string ({names!r})")
    return set(names)


def _callable_source(fn: Any) -> str:
    module = getattr(fn, "__module__", None) or "<unknown_module>"
    qualname = (
        getattr(fn, "__qualname__", None)
        or getattr(fn, "__name__", None)
        or type(fn).__qualname__
    )
    return f"{module}.{qualname}"


def _callable_doc(fn: Any) -> str | None:
    if not (inspect.isfunction(fn) or inspect.ismethod(fn)):
        return None
    doc = inspect.getdoc(fn)
    if not doc:
        return None
    return doc.strip().splitlines()[0]


def _attach_pipeline_error(
    exc: Exception,
    *,
    pipeline_path: str,
    pipeline_node_type: str,
    pipeline_step: str,
) -> None:
    # Innermost annotation wins; outer pipelines only fill what is missing.
    for attr, value in (
        ("pipeline_path", pipeline_path),
        ("pipeline_node_type", pipeline_node_type),
        ("pipeline_step", pipeline_step),
    ):
        if hasattr(exc, attr):
            continue
        try:
            setattr(exc, attr, value)
        except AttributeError:
            pass


class Pipeline:
    """A mutable, ordered chain of named steps."""

    def __init__(
        self,
        name: str = "pipeline",
        *,
        recorder: StepRecorder | None = None,
        duplicates: DuplicatePolicy = "move",
        logger: logging.Logger | None = None,
    ):
        self.name = _require_name(name, label="Pipeline name")
        if duplicates not in ALLOWED_DUPLICATE_POLICIES:
            allowed = ", ".join(ALLOWED_DUPLICATE_POLICIES)
            raise ValueError(f"Invalid duplicate policy: {duplicates!r} (allowed: {allowed})")
        self.duplicates: DuplicatePolicy = duplicates
        self.logger = logger or logging.getLogger(__name__)
        self.recorder: StepRecorder = recorder or DefaultStepRecorder(
            logger=self.logger, level=logging.DEBUG
        )
        validate_recorder(self.recorder)
        self._order: list[str] = []
        self._registry: dict[str, StepFn] = {}

    def __repr__(self) -> str:
        return f"Pipeline(name={self.name!r}, steps={self._order!r})"

    # Registration

    def step(self, name: str, fn: StepFn) -> "Pipeline":
        """Append `name`, or replace its callable in place when already registered."""

        name = _require_name(name)
        _require_callable(fn, name=name)
        if name in self._registry:
            self.logger.debug("Replaced step %s/%s", self.name, name)
        else:
            self._order.append(name)
            self.logger.debug(
                "Registered step %s/%s at position %d", self.name, name, len(self._order) - 1
            )
        self._registry[name] = fn
        return self

    def last(self, name: str, fn: StepFn) -> "Pipeline":
        return self.step(name, fn)

    def first(self, name: str, fn: StepFn) -> "Pipeline":
        """Place `name` at the front of the chain.

        A name that is already first keeps its position; only its callable is
        replaced.
        """

        name = _require_name(name)
        _require_callable(fn, name=name)
        if not self._order or self._order[0] != name:
            self._discard_for_insert(name)
            self._order.insert(0, name)
            self.logger.debug("Registered step %s/%s at position 0", self.name, name)
        self._registry[name] = fn
        return self

    def before(self, anchor: str, name: str, fn: StepFn) -> "Pipeline":
        """Insert `name` immediately before `anchor`.

        On an empty pipeline the anchor does not need to exist and `name`
        becomes the only step. Otherwise an unknown anchor raises
        `UnknownStepError` and nothing changes.

        When `anchor == name` only the callable is replaced and the order is
        left as is, under either duplicate policy. With `duplicates="repeat"`
        this differs from inserting a second occurrence of `name`.
        """

        return self._insert_relative(anchor, name, fn, relation="before")

    def after(self, anchor: str, name: str, fn: StepFn) -> "Pipeline":
        """Insert `name` immediately after `anchor`; same anchor rules as `before`."""

        return self._insert_relative(anchor, name, fn, relation="after")

    def drop(self, name: str) -> "Pipeline":
        """Remove `name` from the chain. Unknown names are ignored."""

        name = _require_name(name)
        if name not in self._order:
            return self
        self._order.remove(name)
        if name not in self._order:
            del self._registry[name]
        self.logger.debug("Dropped step %s/%s", self.name, name)
        return self

    def _discard_for_insert(self, name: str) -> None:
        if self.duplicates == "move" and name in self._order:
            self._order.remove(name)

    def _insert_relative(
        self, anchor: str, name: str, fn: StepFn, *, relation: Literal["before", "after"]
    ) -> "Pipeline":
        anchor = _require_name(anchor, label="Anchor step name")
        name = _require_name(name)
        _require_callable(fn, name=name)

        if self._order and anchor not in self._order:
            raise UnknownStepError(
                f'Cannot place "{name}" {relation} "{anchor}" since "{anchor}" is not yet defined.',
                step=anchor,
                suggestions=self.suggest(anchor),
            )

        if not self._order:
            self._order.append(name)
            self.logger.debug("Registered step %s/%s as the only step", self.name, name)
        elif name == anchor:
            self.logger.debug("Replaced step %s/%s", self.name, name)
        else:
            self._discard_for_insert(name)
            pivot = self._order.index(anchor)
            if relation == "after":
                pivot += 1
            self._order.insert(pivot, name)
            self.logger.debug(
                "Registered step %s/%s %s %s at position %d",
                self.name,
                name,
                relation,
                anchor,
                pivot,
            )
        self._registry[name] = fn
        return self

    # Execution

    def __call__(self, value: Any, *args: Any) -> Any:
        return self.run(value, *args)

    def run(self, value: Any, *args: Any) -> Any:
        order = list(self._order)
        return self._fold(order, range(len(order)), value, args, path_prefix=[self.name])

    def run_only(self, names: Iterable[str], value: Any, *args: Any) -> Any:
        """Run only the steps named in `names`, in pipeline order."""

        wanted = _name_set(names, label="run_only")
        order = list(self._order)
        positions = [i for i, step_name in enumerate(order) if step_name in wanted]
        return self._fold(order, positions, value, args, path_prefix=[self.name])

    def run_without(self, names: Iterable[str], value: Any, *args: Any) -> Any:
        """Run every step except those named in `names`."""

        excluded = _name_set(names, label="run_without")
        order = list(self._order)
        positions = [i for i, step_name in enumerate(order) if step_name not in excluded]
        return self._fold(order, positions, value, args, path_prefix=[self.name])

    def run_from(self, anchor: str, value: Any, *args: Any) -> Any:
        """Run from `anchor` (inclusive) to the end of the chain."""

        order = list(self._order)
        pivot = self._anchor_index(
            order, anchor, message='Cannot run from "{anchor}" as step is undefined.'
        )
        return self._fold(order, range(pivot, len(order)), value, args, path_prefix=[self.name])

    def run_until(self, anchor: str, value: Any, *args: Any) -> Any:
        """Run from the start of the chain through `anchor` (inclusive)."""

        order = list(self._order)
        pivot = self._anchor_index(
            order, anchor, message='Cannot run until "{anchor}" as step is undefined.'
        )
        return self._fold(order, range(pivot + 1), value, args, path_prefix=[self.name])

    def _anchor_index(self, order: list[str], anchor: str, *, message: str) -> int:
        anchor = _require_name(anchor, label="Anchor step name")
        if anchor not in order:
            raise UnknownStepError(
                message.format(anchor=anchor), step=anchor, suggestions=self.suggest(anchor)
            )
        return order.index(anchor)

    def _fold(
        self,
        order: list[str],
        positions: Iterable[int],
        value: Any,
        args: tuple[Any, ...],
        *,
        path_prefix: list[str],
    ) -> Any:
        output = value
        for position in positions:
            step_name = order[position]
            output = self._execute_step(
                self._registry[step_name],
                output,
                args,
                step_name=step_name,
                position=position,
                path_segments=[*path_prefix, step_name],
            )
        return output

    def _execute_step(
        self,
        fn: StepFn,
        value: Any,
        args: tuple[Any, ...],
        *,
        step_name: str,
        position: int,
        path_segments: list[str],
    ) -> Any:
        pipeline_path = "/".join(path_segments)
        node_type = "pipeline" if isinstance(fn, Pipeline) else "function"
        try:
            source = _callable_source(fn)
            self.recorder.on_step_start(
                pipeline_path,
                node_type=node_type,
                position=position,
                source=source,
                doc=_callable_doc(fn),
                extra_args=len(args),
            )

            if isinstance(fn, Pipeline):
                # Nested pipelines report their steps under this step's path.
                inner_order = list(fn._order)
                result = fn._fold(
                    inner_order, range(len(inner_order)), value, args, path_prefix=path_segments
                )
            else:
                result = fn(value, *args)
        except Exception as exc:
            try:
                self.recorder.on_step_error(pipeline_path, step_name, exc)
            except Exception:
                self.logger.exception(
                    "Step recorder failed during error handling for %s", pipeline_path
                )
            _attach_pipeline_error(
                exc,
                pipeline_path=pipeline_path,
                pipeline_node_type=node_type,
                pipeline_step=step_name,
            )
            raise

        # Recorder failures after a successful step are logged, not raised.
        try:
            record: dict[str, Any] = {
                "type": node_type,
                "name": step_name,
                "path": pipeline_path,
                "position": position,
                "created_at": utc_now_iso8601(),
                "meta": {"source": source},
            }
            if result is not None:
                record["result"] = json_safe(result)
            self.recorder.on_step_end(record)
        except Exception:
            self.logger.exception("Step recorder failed after %s", pipeline_path)
        return result

    # Introspection

    @property
    def steps(self) -> tuple[str, ...]:
        return tuple(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._order))

    def __contains__(self, name: object) -> bool:
        return name in self._registry

    def get(self, name: str) -> StepFn:
        fn = self._registry.get(name)
        if fn is None:
            raise UnknownStepError(f"Unknown step: {name}", step=name, suggestions=self.suggest(name))
        return fn

    def describe(self) -> tuple[dict[str, Any], ...]:
        rows: list[dict[str, Any]] = []
        for position, name in enumerate(self._order):
            fn = self._registry[name]
            rows.append(
                {
                    "position": position,
                    "name": name,
                    "kind": "pipeline" if isinstance(fn, Pipeline) else "function",
                    "source": _callable_source(fn),
                    "doc": _callable_doc(fn),
                }
            )
        return tuple(rows)

    def suggest(self, name: str, *, limit: int = 3) -> tuple[str, ...]:
        if not isinstance(name, str) or not name or not self._order:
            return ()
        return tuple(difflib.get_close_matches(name, list(dict.fromkeys(self._order)), n=limit))

    def copy(self) -> "Pipeline":
        clone = Pipeline(
            self.name, recorder=self.recorder, duplicates=self.duplicates, logger=self.logger
        )
        clone._order = list(self._order)
        clone._registry = dict(self._registry)
        return clone
