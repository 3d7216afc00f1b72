import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from dmflow.variables import (
    TypeMismatch,
    VariableDecl,
    VariableType,
    bind,
    placeholders,
    render,
    unresolved_markers,
)

SIZE = VariableDecl(name="size", type=VariableType.ENUM, values=("S", "M", "L"), required=True)
QTY = VariableDecl(name="qty", type=VariableType.NUMBER)
NAME = VariableDecl(name="name")


def test_render_substitutes_bound_values():
    rendered = render("Hi {{name}}, {{ qty }} x {{size}}?", {"name": "Sam", "qty": 2, "size": "M"})
    assert rendered.text == "Hi Sam, 2 x M?"
    assert rendered.unresolved == ()
    assert unresolved_markers(rendered.text) == []


def test_render_marks_missing_bindings_without_raising():
    rendered = render("Hi {{name}}, your {{size}} {{size}} tee", {"size": "L"})
    assert rendered.text == "Hi [[unresolved:name]], your L L tee"
    assert rendered.unresolved == ("name",)
    assert unresolved_markers(rendered.text) == ["name"]


def test_render_rechecks_values_against_declarations():
    rendered = render("Size {{size}}", {"size": "XL"}, {"size": SIZE})
    assert rendered.unresolved == ("size",)
    assert "[[unresolved:size]]" in rendered.text


def test_placeholders_in_order_without_duplicates():
    assert placeholders("{{b}} {{ a }} {{b}}") == ["b", "a"]
    assert placeholders("") == []


def test_bind_enum_is_case_sensitive():
    assert bind("size", " M ", SIZE) == "M"
    with pytest.raises(TypeMismatch):
        bind("size", "m", SIZE)


def test_bind_number_requires_finite_value():
    assert bind("qty", "3", QTY) == 3
    assert bind("qty", "2.5", QTY) == 2.5
    for bad in ("three", "inf", "nan", True):
        with pytest.raises(TypeMismatch):
            bind("qty", bad, QTY)


def test_bind_string_accepts_any_text():
    assert bind("name", "  Ana Maria ", NAME) == "Ana Maria"
    assert bind("name", 42, NAME) == "42"


def test_render_leaves_unbound_optional_variable_empty():
    rendered = render("Bye {{name}}, size {{size}}", {"size": "S"}, {"name": NAME, "size": SIZE})
    assert rendered.text == "Bye , size S"
    assert rendered.unresolved == ()
    assert unresolved_markers(rendered.text) == []

    missing = render("Bye {{name}}, size {{size}}", {}, {"name": NAME, "size": SIZE})
    assert missing.unresolved == ("size",)
    assert unresolved_markers(missing.text) == ["size"]
