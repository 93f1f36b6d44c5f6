import pytest

from stepchain import NullStepRecorder, Pipeline, UnknownStepError


def _double(value, *args):
    return value * 2


def _add_one(value, *args):
    return value + 1


def _stringify(value, *args):
    return f"Result: {value}"


def _three_steps() -> Pipeline:
    return (
        Pipeline(recorder=NullStepRecorder())
        .step("double", _double)
        .step("add-one", _add_one)
        .step("stringify", _stringify)
    )


def test_single_step_returns_pipeline_and_runs():
    p = Pipeline()
    assert p.step("two", lambda number: number * 2) is p
    assert p.run(10) == 20


def test_multi_step_folds_in_registration_order():
    p = Pipeline()
    p.step("first", lambda s: s + "First Step")
    p.step("second", lambda s: s + " Second Step")

    assert p.run("") == "First Step Second Step"


def test_run_equals_left_to_right_fold():
    fns = [lambda x: x + 3, lambda x: x * 5, lambda x: x - 7, lambda x: x // 2]
    p = Pipeline()
    for idx, fn in enumerate(fns):
        p.step(f"s{idx}", fn)

    expected = 4
    for fn in fns:
        expected = fn(expected)
    assert p.run(4) == expected


def test_run_on_empty_pipeline_returns_input():
    marker = object()
    assert Pipeline().run(marker) is marker


def test_full_chain_mixed_registration_order():
    p = Pipeline()
    p.last("final", lambda s: s + " Final")
    p.step("step", lambda s: s + " Step")
    p.first("initial", lambda s: s + "Initial")
    p.first("result", lambda s: "Result: " + s)

    assert p.steps == ("result", "initial", "final", "step")
    assert p.run("") == "Result: Initial Final Step"


def test_extra_args_are_forwarded_to_every_step():
    seen: list[tuple] = []

    def tag(label):
        def _step(value, colour, size):
            seen.append((label, colour, size))
            return f"{value}{label} ({colour})"

        return _step

    p = Pipeline()
    p.step("initial", tag("Initial"))
    p.step("step", tag(" Step"))
    p.step("final", tag(" Final"))

    assert p.run("", "green", 3) == "Initial (green) Step (green) Final (green)"
    assert seen == [("Initial", "green", 3), (" Step", "green", 3), (" Final", "green", 3)]


def test_pipeline_is_callable_like_run():
    p = _three_steps()
    assert p(2) == p.run(2) == "Result: 5"


def test_run_only_uses_pipeline_order_not_argument_order():
    p = _three_steps()
    assert p.run_only(["stringify", "double"], 2) == "Result: 4"
    assert p.run_only(["double"], 2) == 4


def test_run_only_ignores_unknown_names():
    p = _three_steps()
    assert p.run_only(["nope", "double"], 2) == 4
    assert p.run_only([], 2) == 2


def test_run_without_skips_excluded_steps():
    p = _three_steps()
    assert p.run_without(["add-one"], 2) == "Result: 4"
    assert p.run_without(["missing"], 2) == "Result: 5"


@pytest.mark.parametrize("method", ["run_only", "run_without"])
def test_step_name_sets_reject_bare_strings(method):
    p = _three_steps()
    with pytest.raises(TypeError, match="not a single string"):
        getattr(p, method)("double", 2)


def test_run_from_starts_at_anchor_inclusive():
    assert _three_steps().run_from("add-one", 2) == "Result: 3"


def test_run_until_stops_after_anchor_inclusive():
    assert _three_steps().run_until("add-one", 2) == 5


def test_run_from_and_until_first_and_last_steps():
    p = _three_steps()
    assert p.run_from("double", 2) == p.run(2)
    assert p.run_until("stringify", 2) == p.run(2)
    assert p.run_until("double", 2) == 4
    assert p.run_from("stringify", 2) == "Result: 2"


def test_run_from_unknown_step_raises_without_running():
    calls: list[int] = []
    p = Pipeline().step("count", lambda v: calls.append(v) or v)

    with pytest.raises(UnknownStepError, match=r'Cannot run from "unknown" as step is undefined\.'):
        p.run_from("unknown", 2)
    assert calls == []


def test_run_until_unknown_step_raises_without_running():
    calls: list[int] = []
    p = Pipeline().step("count", lambda v: calls.append(v) or v)

    with pytest.raises(UnknownStepError, match=r'Cannot run until "unknown" as step is undefined\.'):
        p.run_until("unknown", 2)
    assert calls == []


@pytest.mark.parametrize("method", ["run_from", "run_until"])
def test_unknown_anchor_raises_on_empty_pipeline(method):
    with pytest.raises(ValueError):
        getattr(Pipeline(), method)("anything", 1)


def test_unknown_anchor_error_suggests_close_names():
    p = _three_steps()
    with pytest.raises(UnknownStepError) as excinfo:
        p.run_from("add_one", 2)

    assert excinfo.value.step == "add_one"
    assert excinfo.value.suggestions == ("add-one",)
    assert "did you mean: add-one" in str(excinfo.value)


def test_step_errors_propagate_unchanged_and_abort_remaining_steps():
    calls: list[str] = []
    boom = RuntimeError("boom")

    def fail(value):
        calls.append("fail")
        raise boom

    p = Pipeline(name="main", recorder=NullStepRecorder())
    p.step("ok", lambda v: calls.append("ok") or v)
    p.step("fail", fail)
    p.step("never", lambda v: calls.append("never") or v)

    with pytest.raises(RuntimeError) as excinfo:
        p.run(1)

    assert excinfo.value is boom
    assert calls == ["ok", "fail"]
    assert excinfo.value.pipeline_path == "main/fail"
    assert excinfo.value.pipeline_step == "fail"
    assert excinfo.value.pipeline_node_type == "function"


def test_runs_do_not_carry_state_between_invocations():
    p = _three_steps()
    assert p.run(2) == "Result: 5"
    assert p.run(2) == "Result: 5"
    assert p.run_only(["double"], 3) == 6
    assert p.run(3) == "Result: 7"
