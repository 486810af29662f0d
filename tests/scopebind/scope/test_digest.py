"""
Tests for watches, digest convergence and phases.
"""

import logging
import math

import pytest

from scopebind.scope import DigestConvergenceError, PhaseConflictError, Scope


class Recorder:
    """Listener recording every (new_value, old_value) pair it receives."""

    def __init__(self):
        self.calls = []

    def __call__(self, new_value, old_value, scope):
        self.calls.append((new_value, old_value))

    @property
    def count(self) -> int:
        return len(self.calls)


def boom(*args):
    raise ValueError("boom")


class TestScopeModel:
    """Tests for scopes used as plain objects."""

    def test_can_be_used_as_an_object(self):
        scope = Scope()
        scope.aProperty = 1
        assert scope.aProperty == 1
        assert scope["aProperty"] == 1
        assert dict(scope) == {"aProperty": 1}

    def test_missing_attribute_raises_but_mapping_get_returns_none(self):
        scope = Scope()
        with pytest.raises(AttributeError):
            scope.missing
        assert scope.get("missing") is None

    def test_private_names_do_not_reach_the_model(self):
        scope = Scope()
        scope._scratch = 1
        assert "_scratch" not in scope

    def test_scopes_compare_by_identity(self):
        first, second = Scope(), Scope()
        assert first != second
        assert first == first
        assert len({first, second}) == 2
        assert bool(first) is True

    def test_scopes_have_increasing_ids(self):
        assert Scope().id < Scope().id


class TestWatch:
    """Tests for watch and digest."""

    @pytest.fixture
    def scope(self):
        return Scope()

    def test_calls_listener_on_first_digest(self, scope):
        listener = Recorder()
        scope.watch(lambda s: "wat", listener)
        scope.digest()
        assert listener.count == 1

    def test_calls_watch_function_with_scope(self, scope):
        seen = []
        scope.watch(lambda s: seen.append(s))
        scope.digest()
        assert seen[0] is scope

    def test_calls_listener_when_value_changes(self, scope):
        scope.someValue = "a"
        listener = Recorder()
        scope.watch(lambda s: s.someValue, listener)

        scope.digest()
        assert listener.count == 1
        scope.digest()
        assert listener.count == 1
        scope.someValue = "b"
        scope.digest()
        assert listener.count == 2

    def test_calls_listener_when_value_is_first_none(self, scope):
        listener = Recorder()
        scope.watch(lambda s: s.get("someValue"), listener)
        scope.digest()
        assert listener.calls == [(None, None)]

    def test_passes_new_value_as_old_value_first_time(self, scope):
        scope.someValue = 123
        listener = Recorder()
        scope.watch(lambda s: s.someValue, listener)
        scope.digest()
        assert listener.calls == [(123, 123)]

    def test_passes_previous_value_afterwards(self, scope):
        scope.someValue = 1
        listener = Recorder()
        scope.watch("someValue", listener)
        scope.digest()
        scope.someValue = 2
        scope.digest()
        assert listener.calls[-1] == (2, 1)

    def test_watch_may_omit_listener(self, scope):
        calls = []
        scope.watch(lambda s: calls.append(1))
        scope.digest()
        assert calls

    def test_triggers_chained_watchers_in_same_digest(self, scope):
        scope.name = "Jane"

        def upcase(new_value, old_value, s):
            if new_value:
                s.nameUpper = new_value.upper()

        def initial(new_value, old_value, s):
            if new_value:
                s.initial = new_value[0] + "."

        scope.watch(lambda s: s.get("nameUpper"), initial)
        scope.watch(lambda s: s.name, upcase)

        scope.digest()
        assert scope.initial == "J."

        scope.name = "Bob"
        scope.digest()
        assert scope.initial == "B."

    def test_gives_up_after_ttl_iterations(self, scope):
        scope.counterA = 0
        scope.counterB = 0

        def bump_b(new_value, old_value, s):
            s.counterB += 1

        def bump_a(new_value, old_value, s):
            s.counterA += 1

        scope.watch(lambda s: s.counterA, bump_b)
        scope.watch(lambda s: s.counterB, bump_a)

        with pytest.raises(DigestConvergenceError, match="10 digest iterations reached") as exc_info:
            scope.digest()
        assert exc_info.value.ttl == 10
        assert scope.phase is None

    def test_ends_digest_when_last_watch_is_clean(self, scope):
        scope.array = list(range(100))
        watch_calls = []

        for i in range(100):
            scope.watch(lambda s, i=i: watch_calls.append(i) or s.array[i])

        scope.digest()
        assert len(watch_calls) == 200

        scope.array[0] = 420
        scope.digest()
        assert len(watch_calls) == 301

    def test_runs_watches_added_during_digest(self, scope):
        scope.aValue = "abc"
        listener = Recorder()

        def add_watch(new_value, old_value, s):
            s.watch(lambda s: s.aValue, listener)

        scope.watch(lambda s: s.aValue, add_watch)
        scope.digest()
        assert listener.count == 1

    def test_compares_by_value_when_enabled(self, scope):
        scope.aValue = [1, 2, 3]
        listener = Recorder()
        scope.watch(lambda s: s.aValue, listener, True)

        scope.digest()
        assert listener.count == 1
        scope.aValue.append(4)
        scope.digest()
        assert listener.count == 2
        scope.digest()
        assert listener.count == 2
        assert listener.calls[-1][1] == [1, 2, 3]

    def test_same_reference_without_compare_by_value_never_refires(self, scope):
        scope.aValue = [1, 2, 3]
        listener = Recorder()
        scope.watch(lambda s: s.aValue, listener)
        scope.digest()
        scope.aValue.append(4)
        scope.digest()
        assert listener.count == 1

    def test_handles_nan(self, scope):
        scope.number = math.nan
        listener = Recorder()
        scope.watch(lambda s: s.number, listener)
        scope.digest()
        assert listener.count == 1
        scope.digest()
        assert listener.count == 1

    def test_accepts_expressions_for_watch_functions(self, scope):
        scope.aValue = 42
        listener = Recorder()
        scope.watch("aValue", listener)
        scope.digest()
        assert listener.calls == [(42, 42)]

    def test_supports_short_circuiting_expressions(self, scope):
        scope.a = True
        scope.b = False
        values = []
        scope.watch("a || b", lambda n, o, s: values.append(n))
        scope.watch("a && b", lambda n, o, s: values.append(n))
        scope.digest()
        assert sorted(values) == [False, True]

    def test_comparison_on_undefined_value_fires_once_defined(self, scope, caplog):
        caplog.set_level(logging.ERROR, logger="scopebind.scope.scope")
        listener = Recorder()
        scope.watch("count > 0", listener)
        scope.digest()
        assert listener.calls == [(False, False)]

        scope.count = 1
        scope.digest()
        assert listener.calls[-1] == (True, False)
        assert not any(record.getMessage() == "watcher_failed" for record in caplog.records)


class TestWatchErrors:
    """Tests for exceptions raised by watch functions and listeners."""

    @pytest.fixture
    def scope(self):
        return Scope()

    def test_catches_exceptions_in_watch_functions(self, scope):
        scope.aValue = "abc"
        listener = Recorder()
        scope.watch(boom)
        scope.watch(lambda s: s.aValue, listener)
        scope.digest()
        assert listener.count == 1

    def test_catches_exceptions_in_listeners(self, scope):
        scope.aValue = "abc"
        listener = Recorder()
        scope.watch(lambda s: s.aValue, boom)
        scope.watch(lambda s: s.aValue, listener)
        scope.digest()
        assert listener.count == 1

    def test_logs_failing_watchers(self, scope, caplog):
        caplog.set_level(logging.ERROR, logger="scopebind.scope.scope")
        scope.watch(boom)
        scope.digest()
        assert any(record.getMessage() == "watcher_failed" for record in caplog.records)


class TestDeregistration:
    """Tests for removing watches."""

    @pytest.fixture
    def scope(self):
        return Scope()

    def test_deregister_function_removes_watch(self, scope):
        scope.aValue = "abc"
        listener = Recorder()
        deregister = scope.watch(lambda s: s.aValue, listener)
        scope.digest()
        scope.aValue = "def"
        scope.digest()
        assert listener.count == 2

        deregister()
        scope.aValue = "ghi"
        scope.digest()
        assert listener.count == 2

    def test_watch_can_remove_itself_during_digest(self, scope):
        scope.aValue = "abc"
        watch_calls = []
        scope.watch(lambda s: watch_calls.append("first") or s.aValue)

        def second(s):
            watch_calls.append("second")
            deregister()

        deregister = scope.watch(second)
        scope.watch(lambda s: watch_calls.append("third") or s.aValue)

        scope.digest()
        assert watch_calls == ["first", "second", "third", "first", "third"]

    def test_watch_can_remove_another_during_digest(self, scope):
        scope.aValue = "abc"
        listener = Recorder()
        scope.watch(lambda s: s.aValue, lambda n, o, s: deregister())
        deregister = scope.watch(lambda s: None)
        scope.watch(lambda s: s.aValue, listener)

        scope.digest()
        assert listener.count == 1

    def test_watch_can_remove_several_during_digest(self, scope):
        listener = Recorder()

        def remove_both(s):
            deregister_first()
            deregister_second()

        deregister_first = scope.watch(remove_both)
        deregister_second = scope.watch(lambda s: s.get("aValue"), listener)

        scope.digest()
        assert listener.count == 0
        assert scope.watcher_count == 0


class TestWatchDelegates:
    """Tests for constant, one-time and literal watches."""

    @pytest.fixture
    def scope(self):
        return Scope()

    def test_removes_constant_watches_after_first_invocation(self, scope):
        listener = Recorder()
        scope.watch("[1, 2, 3]", listener)
        scope.digest()
        assert listener.calls == [([1, 2, 3], [1, 2, 3])]
        assert scope.watcher_count == 0

    def test_accepts_one_time_watches(self, scope):
        scope.aValue = 42
        listener = Recorder()
        scope.watch("::aValue", listener)
        scope.digest()
        assert listener.calls == [(42, 42)]

    def test_removes_one_time_watches_after_first_invocation(self, scope):
        scope.aValue = 42
        scope.watch("::aValue", Recorder())
        scope.digest()
        assert scope.watcher_count == 0

    def test_one_time_flag_does_not_contaminate_other_watches(self, scope):
        scope.aValue = 42
        scope.watch("::aValue", Recorder())
        scope.watch("aValue", Recorder())
        scope.digest()
        assert scope.watcher_count == 1

    def test_keeps_one_time_watch_until_value_defined(self, scope):
        scope.watch("::aValue", Recorder())
        scope.digest()
        assert scope.watcher_count == 1

        scope.aValue = 42
        scope.digest()
        assert scope.watcher_count == 0

    def test_keeps_one_time_watch_until_value_stays_defined(self, scope):
        scope.aValue = 42
        scope.watch("::aValue", Recorder())
        unwatch_deleter = scope.watch("aValue", lambda n, o, s: s.pop("aValue", None))

        scope.digest()
        assert scope.watcher_count == 2

        scope.aValue = 42
        unwatch_deleter()
        scope.digest()
        assert scope.watcher_count == 0

    def test_keeps_one_time_array_watch_until_all_items_defined(self, scope):
        scope.watch("::[1, 2, aValue]", Recorder(), True)
        scope.digest()
        assert scope.watcher_count == 1

        scope.aValue = 3
        scope.digest()
        assert scope.watcher_count == 0

    def test_keeps_one_time_object_watch_until_all_values_defined(self, scope):
        scope.watch("::{a: 1, b: aValue}", Recorder(), True)
        scope.digest()
        assert scope.watcher_count == 1

        scope.aValue = 3
        scope.digest()
        assert scope.watcher_count == 0

    def test_does_not_reevaluate_array_when_contents_unchanged(self, scope):
        values = []
        scope.a = 1
        scope.b = 2
        scope.c = 3
        scope.watch("[a, b, c]", lambda n, o, s: values.append(n))

        scope.digest()
        assert values == [[1, 2, 3]]
        scope.digest()
        assert len(values) == 1

        scope.c = 4
        scope.digest()
        assert values[-1] == [1, 2, 4]
        assert len(values) == 2

    def test_does_not_reevaluate_nested_literals_when_unchanged(self, scope):
        values = []
        scope.a = 1
        scope.b = 2
        scope.c = 3
        scope.watch("[a, [b, {c: c}]]", lambda n, o, s: values.append(n))

        scope.digest()
        scope.digest()
        assert values == [[1, [2, {"c": 3}]]]


class TestEvalAndApply:
    """Tests for eval, apply and phases."""

    @pytest.fixture
    def scope(self):
        return Scope()

    def test_eval_calls_function_with_scope(self, scope):
        scope.aValue = 42
        assert scope.eval(lambda s: s.aValue) == 42

    def test_eval_passes_locals_through(self, scope):
        scope.aValue = 42
        assert scope.eval(lambda s, locals: s.aValue + locals, 2) == 44

    def test_eval_accepts_expressions(self, scope):
        assert scope.eval("42") == 42

    def test_eval_expression_with_locals(self, scope):
        scope.a = 1
        assert scope.eval("a + b", {"b": 2}) == 3

    def test_eval_assigns_into_scope(self, scope):
        scope.eval("user.name = 'Jill'")
        assert scope.user == {"name": "Jill"}

    def test_apply_evaluates_then_digests(self, scope):
        scope.aValue = "someValue"
        listener = Recorder()
        scope.watch(lambda s: s.aValue, listener)
        scope.digest()

        result = scope.apply("aValue = 'someOtherValue'")
        assert result == "someOtherValue"
        assert listener.count == 2

    def test_apply_digests_even_when_evaluation_fails(self, scope):
        scope.aValue = 1
        listener = Recorder()
        scope.watch("aValue", listener)

        with pytest.raises(ValueError):
            scope.apply(boom)
        assert listener.count == 1

    def test_phase_reflects_current_activity(self, scope):
        scope.aValue = [1, 2, 3]
        phases = {}

        def watch_fn(s):
            phases["watch"] = s.phase
            return s.aValue

        def listener(new_value, old_value, s):
            phases["listener"] = s.phase

        scope.watch(watch_fn, listener)
        scope.apply(lambda s: phases.setdefault("apply", s.phase))

        assert phases == {"watch": "digest", "listener": "digest", "apply": "apply"}
        assert scope.phase is None

    def test_rejects_reentrant_digest(self, scope):
        with pytest.raises(PhaseConflictError, match="apply already in progress"):
            scope.apply(lambda s: s.digest())
        assert scope.phase is None

    def test_reentrant_digest_in_listener_is_logged(self, scope, caplog):
        caplog.set_level(logging.ERROR, logger="scopebind.scope.scope")
        scope.watch(lambda s: 1, lambda n, o, s: s.digest())
        scope.digest()
        assert scope.phase is None
        assert any(record.getMessage() == "watcher_failed" for record in caplog.records)


class TestPostDigest:
    """Tests for post-digest callbacks."""

    @pytest.fixture
    def scope(self):
        return Scope()

    def test_runs_after_each_digest(self, scope):
        calls = []
        scope.post_digest(lambda: calls.append(1))
        assert calls == []

        scope.digest()
        assert calls == [1]
        scope.digest()
        assert calls == [1]

    def test_is_not_part_of_the_digest(self, scope):
        scope.aValue = "original value"
        values = []
        scope.post_digest(lambda: scope.__setitem__("aValue", "changed value"))
        scope.watch(lambda s: s.aValue, lambda n, o, s: values.append(n))

        scope.digest()
        assert values == ["original value"]
        scope.digest()
        assert values == ["original value", "changed value"]

    def test_catches_exceptions(self, scope):
        calls = []
        scope.post_digest(boom)
        scope.post_digest(lambda: calls.append(1))
        scope.digest()
        assert calls == [1]

    def test_does_not_run_after_failed_digest(self, scope):
        calls = []
        scope.counter = 0

        def bump(new_value, old_value, s):
            s.counter += 1

        scope.watch(lambda s: s.counter, bump)
        scope.post_digest(lambda: calls.append(1))

        with pytest.raises(DigestConvergenceError):
            scope.digest()
        assert calls == []
