from collections.abc import Callable

import pytest

from cxxbind.cpp_model import CppData
from cxxbind.emit import (
    ExternalImport,
    InitModuleSpec,
    InitReExport,
    ModuleSpec,
    SiblingImport,
    WriteConfig,
    _ModuleContext,
    assemble_init_source,
    assemble_module_source,
    format_file_header,
    format_import_block,
    render_cmakelists,
    render_cpp_function,
    render_cpp_source,
    render_ffi_module,
    render_global_header,
    render_init_module,
    render_python_modules,
    render_size_probe,
)
from cxxbind.ffi import FfiSynthesisResult, TypeIndex, synthesize_ffi_functions
from cxxbind.target import TargetModel, TargetPath, build_target_model

PREFIX = "widgets_c_lib"


def _lines(text: str) -> list[str]:
    return text.splitlines()


@pytest.fixture
def widget_ffi(enriched_widget_data: CppData) -> FfiSynthesisResult:
    return synthesize_ffi_functions(enriched_widget_data, PREFIX)


@pytest.fixture
def widget_model(enriched_widget_data: CppData, widget_ffi: FfiSynthesisResult) -> TargetModel:
    return build_target_model(enriched_widget_data, widget_ffi, "widgets")


@pytest.fixture
def widget_modules(widget_model: TargetModel, write_config: WriteConfig) -> dict[str, ModuleSpec]:
    return {spec.filename: spec for spec in render_python_modules(widget_model, write_config)}


def _cpp(result: FfiSynthesisResult, name: str) -> list[str]:
    (function,) = [f for f in result.functions if f.name == f"{PREFIX}_{name}"]
    return render_cpp_function(function)[1:]


# ===--- File headers and imports ---=== #


def test_t_01_format_file_header_without_header_line(write_config: WriteConfig) -> None:
    assert format_file_header(write_config) == [
        "# x-------------------------------------------x #",
        "# | Python bindings for widgets 0.1.0",
        "# | Generated by cxx-bindings-gen",
        "# | Source: widgets.json",
        "# x-------------------------------------------x #",
    ]


def test_t_02_format_file_header_names_single_header(write_config: WriteConfig) -> None:
    config = WriteConfig(
        package_name="widgets",
        package_version="0.1.0",
        library_name=PREFIX,
        source_label="widgets.json",
        header="widgets/widget.h",
    )

    lines = format_file_header(config)

    assert lines[4] == "# | Header: widgets/widget.h"
    assert lines[0] == lines[-1]


def test_t_03_format_file_header_rejects_empty_package() -> None:
    config = WriteConfig("", "0.1.0", PREFIX, "widgets.json")

    with pytest.raises(ValueError, match="package_name"):
        format_file_header(config)


def test_t_04_format_import_block_groups_and_ffi_alias() -> None:
    lines = format_import_block(
        ("ctypes", "enum"),
        (ExternalImport("cxxbind", ("runtime as _rt",)),),
        (SiblingImport("_ffi"), SiblingImport("widget")),
    )

    assert lines == [
        "import ctypes",
        "import enum",
        "",
        "from cxxbind import runtime as _rt",
        "",
        "from . import _ffi",
        "from . import widget as _widget",
    ]


def test_t_05_format_import_block_skips_empty_groups() -> None:
    assert format_import_block((), (), ()) == []
    assert format_import_block((), (), (SiblingImport("_ffi"),)) == ["from . import _ffi"]


def test_t_06_format_import_block_rejects_empty_names() -> None:
    with pytest.raises(ValueError, match="'cxxbind'"):
        format_import_block((), (ExternalImport("cxxbind", ()),), ())


def test_t_07_assemble_module_source_layout(write_config: WriteConfig) -> None:
    spec = ModuleSpec(
        filename="shapes.py",
        doc="Bindings for shapes.",
        plain_imports=("ctypes",),
        external_imports=(ExternalImport("cxxbind", ("runtime as _rt",)),),
        sibling_imports=(SiblingImport("_ffi"),),
        content_lines=("ANSWER = 42",),
    )

    source = assemble_module_source(write_config, spec)

    assert _lines(source)[5:] == [
        '"""Bindings for shapes."""',
        "",
        "from __future__ import annotations",
        "",
        "import ctypes",
        "",
        "from cxxbind import runtime as _rt",
        "",
        "from . import _ffi",
        "",
        "",
        "ANSWER = 42",
    ]
    assert source.endswith("ANSWER = 42\n")


@pytest.mark.parametrize("filename", ["", "shapes", "shapes.pyi"])
def test_t_08_assemble_module_source_rejects_bad_filename(
    write_config: WriteConfig, filename: str
) -> None:
    spec = ModuleSpec(filename, "Doc.", (), (), (), ())

    with pytest.raises(ValueError, match="spec.filename"):
        assemble_module_source(write_config, spec)


def test_t_09_assemble_init_source(write_config: WriteConfig) -> None:
    init_spec = InitModuleSpec(
        (
            InitReExport("containers", ("List_int",)),
            InitReExport("widget", ("Color", "Point")),
            InitReExport("extra", ()),
        )
    )

    source = assemble_init_source(write_config, init_spec)

    assert source == (
        '"""widgets 0.1.0: Python bindings for widgets_c_lib. Generated by cxx-bindings-gen."""\n'
        "\n"
        "from . import containers\n"
        "from . import widget\n"
        "from . import extra\n"
        "from .containers import List_int\n"
        "from .widget import (\n"
        "    Color,\n"
        "    Point,\n"
        ")\n"
        "\n"
        "__all__ = [\n"
        '    "containers",\n'
        '    "widget",\n'
        '    "extra",\n'
        '    "List_int",\n'
        '    "Color",\n'
        '    "Point",\n'
        "]\n"
    )


# ===--- Wrapper modules ---=== #


def test_module_context_records_sibling_and_external_imports() -> None:
    ctx = _ModuleContext("widgets", "containers")

    assert ctx.ref(TargetPath("widgets", "containers", "List_int")) == "List_int"
    assert ctx.ref(TargetPath("widgets", "widget", "Point")) == "_widget.Point"
    assert ctx.ref(TargetPath("qt", "core", "QObject")) == "_qt_core.QObject"

    spec = ctx.spec("containers.py", "Doc.", [])

    assert spec.sibling_imports == (SiblingImport("_ffi"), SiblingImport("widget"))
    assert spec.external_imports == (
        ExternalImport("cxxbind", ("runtime as _rt",)),
        ExternalImport("qt", ("core as _qt_core",)),
    )
    assert spec.plain_imports == ()


def test_widget_modules_and_imports(widget_modules: dict[str, ModuleSpec]) -> None:
    assert list(widget_modules) == ["containers.py", "widget.py"]
    widget = widget_modules["widget.py"]
    containers = widget_modules["containers.py"]

    assert widget.plain_imports == ("enum",)
    assert containers.plain_imports == ("ctypes",)
    assert widget.sibling_imports == (SiblingImport("_ffi"),)
    assert widget.doc == "Bindings for widget."


def test_enum_and_class_declarations(widget_modules: dict[str, ModuleSpec]) -> None:
    lines = widget_modules["widget.py"].content_lines

    assert "class Color(enum.IntEnum):" in lines
    assert "    Green = 1" in lines
    assert "class Point(_rt.MovableCppObject, _rt.CppDeletable):" in lines
    assert "    _cpp_size = 8" in lines
    assert "class Widget(_rt.CppObject, _rt.CppDeletable):" in lines
    assert "    Immovable: only reachable through CppBox, Ptr or Ref." in lines
    assert lines.index("class Color(enum.IntEnum):") < lines.index(
        "class Point(_rt.MovableCppObject, _rt.CppDeletable):"
    )


def test_movable_constructor_allocates_python_storage(
    widget_modules: dict[str, ModuleSpec],
) -> None:
    lines = list(widget_modules["widget.py"].content_lines)
    start = lines.index("    def new(x: int, y: int) -> _rt.CppBox[Point]:")

    assert lines[start - 1] == "    @staticmethod"
    assert lines[start + 1 : start + 5] == [
        '        """Point::Point(int x, int y)"""',
        "        output = Point.allocate()",
        f"        _ffi.lib.{PREFIX}_Point_new(x, y, output.as_raw_ptr())",
        "        return _rt.CppBox(output)",
    ]


def test_method_bodies_follow_return_conventions(
    widget_modules: dict[str, ModuleSpec],
) -> None:
    lines = widget_modules["widget.py"].content_lines

    assert f"        return _rt.CppBox.from_raw(Widget, _ffi.lib.{PREFIX}_Widget_new())" in lines
    assert "    def draw_int(self, times: int) -> None:" in lines
    assert "    def color(self) -> Color:" in lines
    assert f"        return Color(_ffi.lib.{PREFIX}_Widget_color(self.as_raw_ptr()))" in lines
    assert "    def position(self) -> _rt.CppBox[Point]:" in lines
    assert "    def name(self) -> bytes:" in lines
    assert "    def parent(self) -> _rt.Ptr[Widget]:" in lines
    assert (
        f"        return _rt.Ptr(Widget, _ffi.lib.{PREFIX}_Widget_parent(self.as_raw_ptr()))"
        in lines
    )
    assert "    def resize(self, width: int, height: int) -> None:" in lines
    assert f"        _ffi.lib.{PREFIX}_Widget_resize(self.as_raw_ptr(), width, height)" in lines


def test_protocol_methods(widget_modules: dict[str, ModuleSpec]) -> None:
    lines = widget_modules["widget.py"].content_lines

    assert "    def __eq__(self, other: object) -> bool:" in lines
    assert "        if not isinstance(other, (_rt.CppObject, _rt.CppBox, _rt.Ptr, _rt.Ref)):" in lines
    assert (
        f"        return bool(_ffi.lib.{PREFIX}_Point_operator_eq"
        "(self.as_raw_ptr(), _rt.as_raw_ptr(other)))"
    ) in lines
    assert "    def cpp_delete(cls, raw: int) -> None:" in lines
    assert f"        _ffi.lib.{PREFIX}_Point_delete(raw)" in lines


def test_free_function_and_builtin_reference(widget_modules: dict[str, ModuleSpec]) -> None:
    widget = widget_modules["widget.py"].content_lines
    containers = widget_modules["containers.py"].content_lines

    assert "def make_widget(name: bytes) -> _rt.Ptr[Widget]:" in widget
    assert f"    return _rt.Ptr(Widget, _ffi.lib.{PREFIX}_make_widget(name))" in widget
    assert "    def at(self, index: int) -> int:" in containers
    assert (
        f"        return _rt.deref_value(ctypes.c_int, _ffi.lib.{PREFIX}_List_int_at"
        "(self.as_raw_ptr(), index))"
    ) in containers


def test_generated_modules_compile(
    widget_modules: dict[str, ModuleSpec], write_config: WriteConfig
) -> None:
    for filename, spec in widget_modules.items():
        compile(assemble_module_source(write_config, spec), filename, "exec")


def test_init_reexports_unique_names(widget_model: TargetModel) -> None:
    assert render_init_module(widget_model) == InitModuleSpec(
        (
            InitReExport("containers", ("List_int",)),
            InitReExport("widget", ("Color", "Point", "Widget", "make_widget")),
        )
    )


def test_init_skips_names_shared_by_modules(make_class: Callable[..., object]) -> None:
    data = CppData(types=(make_class("a::Item"), make_class("b::Item")))
    model = build_target_model(data, synthesize_ffi_functions(data, "lib"), "pkg")

    assert render_init_module(model) == InitModuleSpec(
        (InitReExport("a", ()), InitReExport("b", ()))
    )


def test_ffi_module_prototypes(
    enriched_widget_data: CppData,
    widget_ffi: FfiSynthesisResult,
    write_config: WriteConfig,
) -> None:
    spec = render_ffi_module(write_config, widget_ffi.functions, TypeIndex(enriched_widget_data))
    lines = spec.content_lines

    assert spec.filename == "_ffi.py"
    assert spec.plain_imports == ("ctypes",)
    assert (
        f'    "{PREFIX}_Point_new": ([ctypes.c_int, ctypes.c_int, ctypes.c_void_p], None),'
        in lines
    )
    assert f'    "{PREFIX}_Widget_name": ([ctypes.c_void_p], ctypes.c_char_p),' in lines
    assert f'    "{PREFIX}_Widget_color": ([ctypes.c_void_p], ctypes.c_int),' in lines
    assert (
        f'    "{PREFIX}_List_int_at": ([ctypes.c_void_p, ctypes.c_int], ctypes.c_void_p),'
        in lines
    )
    assert lines[-5:] == (
        "lib = FfiLibrary(",
        f'    "{PREFIX}",',
        "    PROTOTYPES,",
        '    search_dirs=(_HERE, _HERE.parent / "c_lib" / "build"),',
        ")",
    )
    assert sum(1 for line in lines if line.startswith(f'    "{PREFIX}_')) == 17


# ===--- Native sources ---=== #


def test_cpp_constructors(widget_ffi: FfiSynthesisResult) -> None:
    assert _cpp(widget_ffi, "Point_new") == [
        f"void {PREFIX}_Point_new(int x, int y, Point* output) {{",
        "    new (output) Point(x, y);",
        "}",
    ]
    assert _cpp(widget_ffi, "Widget_new") == [
        f"Widget* {PREFIX}_Widget_new() {{",
        "    return new Widget();",
        "}",
    ]


def test_cpp_dispatch_kinds(widget_ffi: FfiSynthesisResult) -> None:
    assert _cpp(widget_ffi, "Point_x") == [
        f"int {PREFIX}_Point_x(const Point* this_ptr) {{",
        "    return this_ptr->Point::x();",
        "}",
    ]
    assert _cpp(widget_ffi, "Widget_resize") == [
        f"void {PREFIX}_Widget_resize(Widget* this_ptr, int width, int height) {{",
        "    this_ptr->resize(width, height);",
        "}",
    ]


def test_cpp_reference_and_value_returns(widget_ffi: FfiSynthesisResult) -> None:
    assert _cpp(widget_ffi, "List_int_at") == [
        f"const int* {PREFIX}_List_int_at(const List<int>* this_ptr, int index) {{",
        "    return &(this_ptr->List<int>::at(index));",
        "}",
    ]
    assert _cpp(widget_ffi, "Widget_position")[1] == (
        "    new (output) Point(this_ptr->Widget::position());"
    )
    assert _cpp(widget_ffi, "Point_operator_eq")[1] == (
        "    return this_ptr->Point::operator==(*other);"
    )


def test_cpp_destructors(widget_ffi: FfiSynthesisResult) -> None:
    assert _cpp(widget_ffi, "Point_delete") == [
        f"void {PREFIX}_Point_delete(Point* this_ptr) {{",
        "    std::destroy_at(this_ptr);",
        "}",
    ]
    assert _cpp(widget_ffi, "List_int_delete")[1] == "    delete this_ptr;"


def test_cpp_function_comment_quotes_declaration(widget_ffi: FfiSynthesisResult) -> None:
    (function,) = [f for f in widget_ffi.functions if f.name == f"{PREFIX}_Widget_draw_2"]

    assert render_cpp_function(function)[0] == "// void Widget::draw(int times)"


def test_cpp_source_layout(widget_ffi: FfiSynthesisResult, write_config: WriteConfig) -> None:
    source = render_cpp_source(write_config, widget_ffi.functions)
    lines = _lines(source)

    assert lines[:2] == [
        f"// {PREFIX}: generated by cxx-bindings-gen from widgets.json.",
        "// Do not edit.",
    ]
    assert f'#include "{PREFIX}_global.h"' in lines
    assert 'extern "C" {' in lines
    assert source.endswith('}  // extern "C"\n')
    assert sum(1 for line in lines if line.startswith("// ") and "(" in line) == 17


def test_global_header(write_config: WriteConfig) -> None:
    source = render_global_header(write_config, ("widgets/widget.h", "widgets/containers.h"))

    assert _lines(source)[2:] == [
        "",
        "#pragma once",
        "",
        "#include <widgets/widget.h>",
        "#include <widgets/containers.h>",
    ]


def test_size_probe_covers_movable_types_only(
    widget_model: TargetModel, write_config: WriteConfig
) -> None:
    source = render_size_probe(write_config, widget_model.types)

    assert _lines(source)[2:] == [
        "",
        f'#include "{PREFIX}_global.h"',
        "",
        "#include <cstdio>",
        "",
        'static_assert(sizeof(Point) == 8, "Point: assumed size 8 does not match the compiler");',
        "",
        "int main() {",
        '    std::printf("Point;%zu\\n", sizeof(Point));',
        "    return 0;",
        "}",
    ]


def test_size_probe_without_movable_types(write_config: WriteConfig) -> None:
    lines = _lines(render_size_probe(write_config, ()))

    assert lines[-3:] == ["int main() {", "    return 0;", "}"]
    assert not any(line.startswith("static_assert") for line in lines)


def test_cmakelists(write_config: WriteConfig) -> None:
    source = render_cmakelists(write_config, ("/opt/widgets/include",), ("widgets", "m"))
    lines = _lines(source)

    assert lines[0] == f"# {PREFIX}: generated by cxx-bindings-gen from widgets.json."
    assert f"project({PREFIX} CXX)" in lines
    assert f"add_library({PREFIX} SHARED {PREFIX}.cpp)" in lines
    assert (
        f'target_include_directories({PREFIX} PRIVATE "${{CMAKE_CURRENT_SOURCE_DIR}}" '
        '"/opt/widgets/include")'
    ) in lines
    assert f"target_link_libraries({PREFIX} PRIVATE widgets m)" in lines
    assert "target_link_libraries(sized_types PRIVATE widgets m)" in lines


def test_cmakelists_without_link_items(write_config: WriteConfig) -> None:
    lines = _lines(render_cmakelists(write_config, (), ()))

    assert not any(line.startswith("target_link_libraries") for line in lines)
    assert lines[-1] == 'target_include_directories(sized_types PRIVATE "${CMAKE_CURRENT_SOURCE_DIR}")'
