from collections.abc import Callable
from dataclasses import FrozenInstanceError, replace
from pathlib import Path

import pytest

from cxxbind.cpp_model import (
    SNAPSHOT_SCHEMA_VERSION,
    SYNTHESIZED_DESTRUCTOR_INDEX,
    CppData,
    CppType,
    CppVisibility,
    DispatchKind,
    ModelError,
    cpp_data_from_dict,
    cpp_data_to_dict,
    ensure_explicit_destructors,
    load_cached_cpp_data,
    load_cpp_data,
    parse_cpp_type,
    save_cpp_data,
    split_by_headers,
    validate_cpp_data,
)


# ===--- Type spellings ---=== #


def test_parse_cpp_type_const_template_reference() -> None:
    parsed = parse_cpp_type("const QList<int>&")

    assert parsed == CppType("QList", "ref", True, (CppType("int"),))
    assert parsed.to_cpp_code() == "const QList<int>&"


@pytest.mark.parametrize(
    ("text", "base", "indirection", "is_const"),
    [
        ("int", "int", "none", False),
        ("int const*", "int", "ptr", True),
        ("char**", "char", "ptr_ptr", False),
        ("Widget&&", "Widget", "rvalue_ref", False),
        ("  unsigned   int  ", "unsigned int", "none", False),
    ],
)
def test_parse_cpp_type_suffixes_and_constness(
    text: str, base: str, indirection: str, is_const: bool
) -> None:
    parsed = parse_cpp_type(text)

    assert parsed.base == base
    assert parsed.indirection == indirection
    assert parsed.is_const is is_const


def test_parse_cpp_type_nested_templates_render_back() -> None:
    parsed = parse_cpp_type("QMap<QString, QList<int>>")

    assert parsed.template_arguments == (
        CppType("QString"),
        CppType("QList", template_arguments=(CppType("int"),)),
    )
    assert parsed.to_cpp_code() == "QMap<QString, QList<int>>"


@pytest.mark.parametrize("text", ["", "   ", "QList<int", "QList<int>>"])
def test_parse_cpp_type_rejects_malformed_spelling(text: str) -> None:
    with pytest.raises(ValueError):
        parse_cpp_type(text)


def test_cpp_type_rejects_unknown_indirection() -> None:
    with pytest.raises(ValueError, match="Unknown indirection"):
        CppType("int", "array")


def test_cpp_type_is_frozen() -> None:
    cpp_type = CppType("int")

    with pytest.raises(FrozenInstanceError):
        cpp_type.base = "long"  # type: ignore[misc]


def test_substitute_keeps_indirection_and_merges_constness() -> None:
    template_ref = CppType("T", "ref", True)

    assert template_ref.substitute({"T": CppType("int")}) == CppType("int", "ref", True)
    assert CppType("QList", template_arguments=(CppType("T", "ptr"),)).substitute(
        {"T": CppType("Widget")}
    ) == CppType("QList", template_arguments=(CppType("Widget", "ptr"),))
    assert CppType("U").substitute({"T": CppType("int")}) == CppType("U")


def test_value_type_drops_indirection_and_const() -> None:
    assert parse_cpp_type("const Point&").value_type() == CppType("Point")


# ===--- Methods ---=== #


def test_short_text_variants(make_method: Callable[..., object]) -> None:
    resize = make_method(
        "resize", scope="Widget", arguments=(("w", "int"), ("h", "int")), is_virtual=True
    )
    getter = make_method("x", scope="Point", return_type="int", is_const=True)
    log = make_method(
        "log", scope="Widget", arguments=(("format", "const char*"),), allows_variadic_arguments=True
    )
    paint = make_method("paint", scope="Shape", is_pure_virtual=True)
    create = make_method("create", scope="Widget", return_type="Widget*", is_static=True)

    assert resize.short_text() == "virtual void Widget::resize(int w, int h)"
    assert getter.short_text() == "int Point::x() const"
    assert log.short_text() == "void Widget::log(const char* format, ...)"
    assert paint.short_text() == "virtual void Shape::paint() = 0"
    assert create.short_text() == "static Widget* Widget::create()"


def test_dispatch_kind_follows_virtual_flags(make_method: Callable[..., object]) -> None:
    assert make_method("a", scope="W").dispatch_kind == DispatchKind.STATIC_SYMBOL
    assert make_method("b", scope="W", is_virtual=True).dispatch_kind == DispatchKind.VTABLE_SLOT
    assert (
        make_method("c", scope="W", is_pure_virtual=True).dispatch_kind
        == DispatchKind.VTABLE_SLOT
    )


# ===--- Enrichment ---=== #


def test_ensure_explicit_destructors_adds_one_per_class(widget_data: CppData) -> None:
    enriched = ensure_explicit_destructors(widget_data)
    added = enriched.methods[len(widget_data.methods) :]

    assert [m.scope for m in added] == ["Point", "Widget", "List"]
    assert [m.name for m in added] == ["~Point", "~Widget", "~List"]
    for method in added:
        assert method.is_destructor
        assert method.visibility == CppVisibility.PUBLIC
        assert not method.is_virtual
        assert method.original_index == SYNTHESIZED_DESTRUCTOR_INDEX
    assert added[2].origin.include_file == "widgets/containers.h"


def test_ensure_explicit_destructors_is_idempotent(widget_data: CppData) -> None:
    once = ensure_explicit_destructors(widget_data)

    assert ensure_explicit_destructors(once) is once


def test_ensure_explicit_destructors_keeps_declared_destructor(
    make_class: Callable[..., object], make_method: Callable[..., object]
) -> None:
    declared = make_method("~Widget", scope="Widget", return_type=None, is_destructor=True, is_virtual=True)
    data = CppData(types=(make_class("Widget"),), methods=(declared,))

    assert ensure_explicit_destructors(data).methods == (declared,)


def test_ensure_explicit_destructors_uses_unqualified_name(
    make_class: Callable[..., object],
) -> None:
    data = CppData(types=(make_class("ns::Widget"),))

    (destructor,) = ensure_explicit_destructors(data).methods

    assert destructor.name == "~Widget"
    assert destructor.scope == "ns::Widget"


def test_split_by_headers_is_disjoint_and_lossless(enriched_widget_data: CppData) -> None:
    partitions = split_by_headers(enriched_widget_data)

    assert list(partitions) == ["widgets/containers.h", "widgets/widget.h"]
    assert sum(len(p.methods) for p in partitions.values()) == len(
        enriched_widget_data.methods
    )
    assert sum(len(p.types) for p in partitions.values()) == len(enriched_widget_data.types)
    containers = partitions["widgets/containers.h"]
    assert [t.name for t in containers.types] == ["List"]
    assert set(containers.template_instantiations) == {"List"}
    assert partitions["widgets/widget.h"].template_instantiations == {}


def test_split_by_headers_empty_model() -> None:
    assert split_by_headers(CppData()) == {}


# ===--- Validation ---=== #


def test_validate_accepts_fixture(enriched_widget_data: CppData) -> None:
    validate_cpp_data(enriched_widget_data)


def test_validate_rejects_inheritance_cycle(make_class: Callable[..., object]) -> None:
    data = CppData(
        types=(
            make_class("A", bases=("C",)),
            make_class("B", bases=("A",)),
            make_class("C", bases=("B",)),
        )
    )

    with pytest.raises(ModelError, match="Inheritance cycle"):
        validate_cpp_data(data)


def test_validate_rejects_unknown_and_non_class_bases(
    make_class: Callable[..., object], make_enum: Callable[..., object]
) -> None:
    unknown = CppData(types=(make_class("A", bases=("Missing",)),))
    enum_base = CppData(types=(make_enum("E", (("X", 0),)), make_class("A", bases=("E",))))

    with pytest.raises(ModelError, match="unknown base class Missing"):
        validate_cpp_data(unknown)
    with pytest.raises(ModelError, match="unknown base class E"):
        validate_cpp_data(enum_base)


def test_validate_resolves_base_from_dependency(make_class: Callable[..., object]) -> None:
    dependency = CppData(types=(make_class("QObject"),))
    data = CppData(types=(make_class("Widget", bases=("QObject",)),))

    validate_cpp_data(data, (dependency,))


def test_validate_rejects_duplicate_types(make_class: Callable[..., object]) -> None:
    data = CppData(types=(make_class("A"), make_class("A", size=16)))

    with pytest.raises(ModelError, match="Duplicate type entity: A"):
        validate_cpp_data(data)


def test_validate_rejects_bad_instantiations(make_class: Callable[..., object]) -> None:
    int_args = ((CppType("int"),),)
    unknown = CppData(template_instantiations={"Nope": int_args})
    plain = CppData(types=(make_class("Plain"),), template_instantiations={"Plain": int_args})
    arity = CppData(
        types=(make_class("Map", template_arguments=("K", "V")),),
        template_instantiations={"Map": int_args},
    )

    with pytest.raises(ModelError, match="unknown type Nope"):
        validate_cpp_data(unknown)
    with pytest.raises(ModelError, match="not a class template"):
        validate_cpp_data(plain)
    with pytest.raises(ModelError, match="has 1 arguments, expected 2"):
        validate_cpp_data(arity)


# ===--- Snapshots ---=== #


def test_fixture_snapshot_loads_front_end_form(widget_data: CppData) -> None:
    point_ctor = widget_data.methods[0]

    assert [t.name for t in widget_data.types] == ["Color", "Point", "Widget", "List"]
    color, point, _, container = widget_data.types
    assert color.is_enum and not color.is_class
    assert point.kind.size == 8
    assert container.is_template
    assert point_ctor.is_constructor
    assert point_ctor.origin.location == ("widgets/widget.h", 14, 5)
    assert widget_data.methods[10].arguments[1].has_default_value
    assert widget_data.template_instantiations == {"List": ((CppType("int"),),)}


def test_save_then_load_preserves_model(tmp_path: Path, enriched_widget_data: CppData) -> None:
    path = tmp_path / "cache" / "model.json"

    save_cpp_data(path, enriched_widget_data)

    assert load_cpp_data(path) == enriched_widget_data
    assert f'"schema_version": {SNAPSHOT_SCHEMA_VERSION}' in path.read_text(encoding="utf-8")


def test_snapshot_rejects_other_schema_version(widget_data: CppData) -> None:
    raw = cpp_data_to_dict(widget_data)
    raw["schema_version"] = SNAPSHOT_SCHEMA_VERSION + 1

    with pytest.raises(ValueError, match="schema version"):
        cpp_data_from_dict(raw)


def test_snapshot_rejects_unknown_type_kind() -> None:
    with pytest.raises(ValueError, match="Unknown type kind"):
        cpp_data_from_dict({"types": [{"name": "U", "header": "u.h", "kind": "union"}]})


def test_load_cached_cpp_data_missing_or_unset(tmp_path: Path) -> None:
    assert load_cached_cpp_data(None) is None
    assert load_cached_cpp_data(tmp_path / "absent.json") is None


def test_load_cached_cpp_data_discards_stale_cache(
    tmp_path: Path, widget_data: CppData, capsys: pytest.CaptureFixture[str]
) -> None:
    path = tmp_path / "model.json"
    save_cpp_data(path, widget_data)
    text = path.read_text(encoding="utf-8").replace(
        f'"schema_version": {SNAPSHOT_SCHEMA_VERSION}',
        f'"schema_version": {SNAPSHOT_SCHEMA_VERSION - 1}',
    )
    path.write_text(text, encoding="utf-8")

    assert load_cached_cpp_data(path) is None
    assert not path.exists()
    assert "Discarding stale model cache" in capsys.readouterr().out


def test_load_cached_cpp_data_returns_valid_cache(
    tmp_path: Path, enriched_widget_data: CppData
) -> None:
    path = tmp_path / "model.json"
    save_cpp_data(path, enriched_widget_data)

    assert load_cached_cpp_data(path) == enriched_widget_data


def test_methods_are_value_objects(widget_data: CppData) -> None:
    first, second = widget_data.methods[4], widget_data.methods[5]

    assert first.name == second.name == "draw"
    assert first != second
    assert replace(second, arguments=()) == replace(first, original_index=5)
