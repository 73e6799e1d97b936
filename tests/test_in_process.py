# tests/test_in_process.py
import sys
import threading

import pytest

from seqtrace.config_store import TraceConfig
from seqtrace.dispatcher import OUTCOME_ENDED
from seqtrace.errors import MethodNotFoundError
from seqtrace.execution_tracer import ExecutionTracer
from seqtrace.hierarchy import type_name
from seqtrace.in_process import InProcessProgram, frame_depth, members_of

from conftest import call


class Bar:
    def __init__(self):
        self.count = 0

    def frotz(self):
        self.count += 1


class Foo:
    def __init__(self):
        self.bar = Bar()
        for _ in range(5):
            self.bar.frotz()

    def bar_method(self):
        return self._helper()

    def _helper(self):
        return 42

    def baz(self):
        pass

    def risky(self):
        raise ValueError("boom")

    def safe(self):
        try:
            self.risky()
        except ValueError:
            pass
        self.baz()


class Base:
    def __init__(self):
        self.ready = True


class Derived(Base):
    def __init__(self):
        super().__init__()


MODULE = __name__
FOO = type_name(Foo)
BAR = type_name(Bar)


def scenario():
    foo = Foo()
    foo.bar_method()
    foo.baz()
    return foo


def worker(results):
    results.append(Bar())


def threaded_scenario():
    results = []
    thread = threading.Thread(target=worker, args=(results,), name="bar-maker")
    thread.start()
    thread.join()
    return results


def tracer(**options):
    options.setdefault("log_events", False)
    return ExecutionTracer(TraceConfig(**options))


def test_full_trace_of_callable():
    result = tracer().trace_callable(scenario)

    assert result.outcome == OUTCOME_ENDED
    assert result.error is None
    assert isinstance(result.return_value, Foo)
    assert result.activations == [
        call(MODULE, "scenario",
             call(FOO, "__init__", call(BAR, "__init__"), *[call(BAR, "frotz") for _ in range(5)]),
             call(FOO, "bar_method", call(FOO, "_helper")),
             call(FOO, "baz")),
    ]
    assert result.mismatched_exits == 0


def test_frame_depths_follow_nesting():
    result = tracer().trace_callable(scenario)
    root = result.activations[0]
    init = root.children[0]
    assert init.stack_depth == root.stack_depth + 1
    assert init.children[0].stack_depth == root.stack_depth + 2


def test_types_are_recorded_for_snapshot():
    result = tracer().trace_callable(scenario)
    assert result.types[FOO][0] == FOO
    assert result.types[FOO][-1] == "builtins.object"
    assert BAR in result.types


def test_public_only():
    result = tracer(public_only=True).trace_callable(scenario)
    bar_method = result.activations[0].children[1]
    assert bar_method.qualified_name == f"{FOO}.bar_method"
    assert bar_method.num_calls == 0


def test_boundary_method_hides_nested_calls():
    result = tracer(boundary_methods=[f"{FOO}.__init__"]).trace_callable(scenario)
    root = result.activations[0]
    assert [c.member.name for c in root.children] == ["__init__", "bar_method", "baz"]
    assert root.children[0].num_calls == 0
    assert root.children[1].num_calls == 1


def test_exclude_pattern_skips_type():
    result = tracer(exclude_patterns=[BAR]).trace_callable(scenario)
    init = result.activations[0].children[0]
    assert init.qualified_name == f"{FOO}.__init__"
    assert init.num_calls == 0


def test_caught_exception_resynchronises_stack():
    foo = Foo()
    result = tracer().trace_callable(foo.safe)
    assert result.error is None
    assert result.activations == [call(FOO, "safe", call(FOO, "risky"), call(FOO, "baz"))]


def test_uncaught_exception_is_recorded_on_result():
    foo = Foo()
    result = tracer().trace_callable(foo.risky)
    assert result.error == "ValueError: boom"
    assert result.activations == [call(FOO, "risky")]
    assert result.outcome == OUTCOME_ENDED


def test_start_method_traces_only_that_call():
    result = tracer(start_method=f"{FOO}.bar_method").trace_callable(scenario)
    assert result.activations == [call(FOO, "bar_method", call(FOO, "_helper"))]


def test_missing_start_method_is_reported_before_running():
    ran = []
    with pytest.raises(MethodNotFoundError):
        tracer(start_method=f"{FOO}.does_not_exist").trace_callable(lambda: ran.append(True))
    assert ran == []


def test_constructor_chain_keeps_runtime_owner():
    result = tracer().trace_callable(Derived)
    derived = result.activations[0]
    assert derived.qualified_name == f"{type_name(Derived)}.__init__"
    base_init = derived.children[0]
    assert base_init.owner == type_name(Derived)
    assert base_init.member.declaring_type == type_name(Base)

    prepared = result.prepared(TraceConfig())
    assert prepared[0].num_calls == 0


def test_threads_get_their_own_root():
    result = tracer().trace_callable(threaded_scenario)
    roots = result.activations
    assert [r.qualified_name for r in roots] == [f"{MODULE}.threaded_scenario", f"{MODULE}.worker"]
    assert roots[1].children == [call(BAR, "__init__")]


def test_trace_hooks_are_restored():
    before = threading.gettrace()
    tracer().trace_callable(scenario)
    assert threading.gettrace() is before


def test_calls_without_requests_skip_the_program_lock():
    program = InProcessProgram()
    program._active = True
    hooks = []

    def unwatched():
        hooks.append(program._global_trace(sys._getframe(), "call", None))

    with program._lock:
        caller = threading.Thread(target=unwatched, name="unwatched")
        caller.start()
        caller.join(timeout=5)
        assert not caller.is_alive()
    assert hooks == [None]


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def test_members_of_reports_declaring_class():
    members = {m.name: m for m in members_of(Derived)}
    assert members["__init__"].declaring_type == type_name(Derived)
    assert "bar_method" not in members
    foo_members = {m.name: m for m in members_of(Foo)}
    assert foo_members["bar_method"].signature == ("self",)


def test_find_type_only_sees_loaded_types():
    program = InProcessProgram()
    assert {m.name for m in program.find_type(FOO)} >= {"__init__", "bar_method", "baz"}
    assert program.find_type("surely_not_loaded_module.Thing") is None
    module_names = {m.name for m in program.find_type(MODULE)}
    assert {"scenario", "worker"} <= module_names


def test_frame_depth_counts_frames():
    import sys

    frame = sys._getframe()
    assert frame_depth(frame) == frame_depth(frame.f_back) + 1
    assert frame_depth(None) == 0
