"""
Tests for expression safety guards.

Window and DOM objects are stand-ins exposing the same structural shape.
"""

import functools
import os
import types

import pytest

from scopebind.expr import (
    SecurityError,
    compile_expression,
    ensure_safe_function,
    ensure_safe_member_name,
    ensure_safe_object,
    is_dom_node_like,
    is_window_like,
)


def make_window() -> dict:
    """A mapping exposing the global-window capability signature."""
    return {
        "document": {},
        "location": "http://localhost",
        "alert": lambda message: None,
        "setInterval": lambda fn, delay: None,
        "scrollTo": lambda x, y: None,
    }


class FakeElement:
    """An object shaped like a DOM node."""

    nodeName = "HTML"

    def __init__(self):
        self.children = []
        self.attributes = {}

    def setAttribute(self, name, value):
        self.attributes[name] = value


class FakeWrappedElement:
    """An object shaped like a jQuery-wrapped element."""

    def __init__(self):
        self.children = []

    def attr(self, name):
        return None

    def prop(self, name):
        return None

    def find(self, selector):
        return self


class TestMemberNames:
    """Tests for the member-name guard."""

    def test_rejects_constructor(self):
        with pytest.raises(SecurityError):
            compile_expression("aString.constructor('return 1')()")

    @pytest.mark.parametrize(
        "source",
        [
            "obj.__proto__",
            "obj.__defineGetter__('evil', fn)",
            "obj.__defineSetter__('evil', fn)",
            "obj.__lookupGetter__('evil')",
            "obj.__lookupSetter__('evil')",
            "fn.__globals__",
            "obj.__class__.mro()",
        ],
    )
    def test_rejects_introspection_names_at_compile_time(self, source):
        with pytest.raises(SecurityError, match="is disallowed"):
            compile_expression(source)

    def test_rejects_forbidden_index_key_at_evaluation(self):
        expression = compile_expression("obj[key]")
        with pytest.raises(SecurityError):
            expression({"obj": {}, "key": "constructor"})

    def test_rejects_frame_internals(self):
        with pytest.raises(SecurityError):
            compile_expression("gen.gi_frame.f_globals")

    def test_allows_ordinary_names(self):
        assert ensure_safe_member_name("value") == "value"
        assert ensure_safe_member_name(0) == 0

    def test_error_carries_expression(self):
        with pytest.raises(SecurityError) as exc_info:
            compile_expression("a.__proto__")
        assert exc_info.value.expression == "a.__proto__"
        assert exc_info.value.path == "__proto__"


class TestFunctionInvocationMembers:
    """Tests for call/apply/bind and format members."""

    @pytest.mark.parametrize("member", ["call", "apply", "bind"])
    def test_rejects_invocation_members_on_functions(self, member):
        expression = compile_expression(f"fn.{member}({{}})")
        with pytest.raises(SecurityError):
            expression({"fn": lambda: None})

    def test_allows_call_key_on_plain_mappings(self):
        assert compile_expression("obj.call")({"obj": {"call": 42}}) == 42

    def test_rejects_string_format(self):
        expression = compile_expression("'{0.__class__}'.format(obj)")
        with pytest.raises(SecurityError):
            expression({"obj": 1})

    def test_rejects_string_format_map_through_index(self):
        expression = compile_expression("template['format_map'](values)")
        with pytest.raises(SecurityError):
            expression({"template": "{a}", "values": {"a": 1}})


class TestObjects:
    """Tests for the object guard."""

    def test_detects_window_structurally(self):
        assert is_window_like(make_window()) is True
        assert is_window_like({"document": {}}) is False

    def test_rejects_window_as_property(self):
        expression = compile_expression("anObject['wnd']")
        with pytest.raises(SecurityError, match="window"):
            expression({"anObject": {"wnd": make_window()}})

    def test_rejects_calling_window_functions(self):
        expression = compile_expression("wnd.scrollTo(500, 0)")
        with pytest.raises(SecurityError):
            expression({"wnd": make_window()})

    def test_rejects_function_returning_window(self):
        window = make_window()
        expression = compile_expression("getWnd()")
        with pytest.raises(SecurityError):
            expression({"getWnd": lambda: window})

    def test_rejects_window_passed_as_argument(self):
        window = make_window()
        expression = compile_expression("fn(wnd)")
        with pytest.raises(SecurityError):
            expression({"fn": lambda value: value, "wnd": window})

    def test_detects_dom_nodes_structurally(self):
        assert is_dom_node_like(FakeElement()) is True
        assert is_dom_node_like(FakeWrappedElement()) is True
        assert is_dom_node_like({"children": []}) is False

    def test_rejects_calling_functions_on_dom_element(self):
        element = FakeElement()
        expression = compile_expression("el.setAttribute('evil', 'true')")
        with pytest.raises(SecurityError, match="DOM"):
            expression({"el": element})
        assert element.attributes == {}

    def test_rejects_wrapped_elements(self):
        with pytest.raises(SecurityError):
            compile_expression("el.find('a')")({"el": FakeWrappedElement()})

    def test_rejects_aliased_function_constructor(self):
        expression = compile_expression("fnConstructor('return 1')")
        with pytest.raises(SecurityError):
            expression({"fnConstructor": types.FunctionType})

    def test_rejects_calling_functions_on_object(self):
        expression = compile_expression("obj.create({})")
        with pytest.raises(SecurityError):
            expression({"obj": object})

    @pytest.mark.parametrize("builtin", [eval, exec, compile, __import__, getattr, open, type])
    def test_rejects_code_constructing_builtins(self, builtin):
        expression = compile_expression("fn('1')")
        with pytest.raises(SecurityError):
            expression({"fn": builtin})

    def test_rejects_modules(self):
        expression = compile_expression("mod.getcwd()")
        with pytest.raises(SecurityError, match="module"):
            expression({"mod": os})

    def test_primitives_pass_through(self):
        for value in (None, 1, 1.5, "a", True, b"x"):
            assert ensure_safe_object(value) is value


class TestFunctions:
    """Tests for the function guard."""

    @pytest.mark.parametrize(
        "primitive", [functools.partial, types.MethodType, getattr, eval]
    )
    def test_rejects_binding_primitives(self, primitive):
        with pytest.raises(SecurityError):
            ensure_safe_function(primitive, "fn()")

    def test_rejects_partial_reached_through_expression(self):
        expression = compile_expression("p(fn, 1)")
        with pytest.raises(SecurityError):
            expression({"p": functools.partial, "fn": lambda x: x})

    def test_allows_ordinary_functions(self):
        fn = lambda: 42  # noqa: E731
        assert ensure_safe_function(fn) is fn
        assert ensure_safe_function(None) is None
