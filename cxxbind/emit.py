"""Source rendering for the generated package.

Pure functions only: everything here turns model objects into text or
into ModuleSpec values. Files are written by cxxbind.writer.
"""

from dataclasses import dataclass

from .cpp_model import DispatchKind
from .ffi import (
    ArgumentMeaning,
    CppFfiFunction,
    IndirectionChange,
    ReturnConvention,
    TypeIndex,
)
from .target import (
    ApiConversion,
    CompleteType,
    ScopeKind,
    SelfArgKind,
    TargetModel,
    TargetPath,
    TraitImpl,
    WrapperFunction,
    WrapperKind,
    WrapperType,
    complete_type,
    enum_member_name,
)

GENERATOR_NAME = "cxx-bindings-gen"
FFI_MODULE = "_ffi"
RUNTIME_ALIAS = "_rt"


# ===--- Shared run metadata ---=== #


@dataclass(frozen=True)
class WriteConfig:
    """Generation metadata embedded in every file preamble.

    Attributes:
        package_name: Python package name of the wrapper, e.g. "widgets".
        package_version: Version written to the manifest, e.g. "0.1.0".
        library_name: Name of the C++ wrapper shared library.
        source_label: Where the native model came from (snapshot file name).
        header: Declaring header when generating one partition, else None.
    """

    package_name: str
    package_version: str
    library_name: str
    source_label: str
    header: str | None = None


# ===--- Import spec types ---=== #


@dataclass(frozen=True)
class ExternalImport:
    """Import from outside the package.

    Renders as:
        from <module> import <name1>, <name2>, ...

    A name may carry an alias ("runtime as _rt").
    """

    module: str
    names: tuple[str, ...]


@dataclass(frozen=True)
class SiblingImport:
    """Whole-module import of a sibling module in the same package.

    Renders as:
        from . import <module_stem> as _<module_stem>

    Attribute access happens at call time, so import cycles between
    sibling modules are harmless.
    """

    module_stem: str

    @property
    def alias(self) -> str:
        return f"_{self.module_stem}"


@dataclass(frozen=True)
class ModuleSpec:
    """Complete input for one generated .py module file (not __init__.py).

    Attributes:
        filename: Output filename including .py extension.
        doc: Module docstring.
        plain_imports: Modules imported with a bare "import" statement.
        external_imports: Imports from outside the package.
        sibling_imports: Imports of sibling modules.
        content_lines: Generated source lines without header or imports.
    """

    filename: str
    doc: str
    plain_imports: tuple[str, ...]
    external_imports: tuple[ExternalImport, ...]
    sibling_imports: tuple[SiblingImport, ...]
    content_lines: tuple[str, ...]


@dataclass(frozen=True)
class InitReExport:
    """One module's entry in __init__.py.

    Renders as "from . import <module_stem>" followed, when names is
    non-empty, by a selective import of those names.
    """

    module_stem: str
    names: tuple[str, ...]


@dataclass(frozen=True)
class InitModuleSpec:
    re_exports: tuple[InitReExport, ...]


# ===--- Pure formatting functions ---=== #

_HEADER_BORDER: str = "# x-------------------------------------------x #"


def format_file_header(config: WriteConfig) -> list[str]:
    """Return comment-block lines for a generated module file header.

    Output format:
        # x-------------------------------------------x #
        # | Python bindings for widgets 0.1.0
        # | Generated by cxx-bindings-gen
        # | Source: widgets.json
        # | Header: widget.h
        # x-------------------------------------------x #

    The Header line is present only for single-header generation.

    Raises:
        ValueError: If config.package_name is empty.
    """
    if not config.package_name:
        raise ValueError("package_name must not be empty")

    lines: list[str] = [
        _HEADER_BORDER,
        f"# | Python bindings for {config.package_name} {config.package_version}",
        f"# | Generated by {GENERATOR_NAME}",
        f"# | Source: {config.source_label}",
    ]
    if config.header:
        lines.append(f"# | Header: {config.header}")
    lines.append(_HEADER_BORDER)
    return lines


def format_import_block(
    plain_imports: tuple[str, ...],
    external_imports: tuple[ExternalImport, ...],
    sibling_imports: tuple[SiblingImport, ...],
) -> list[str]:
    """Return import statement lines for a module file.

    Groups are emitted in the order plain, external, sibling, separated by a
    single blank line. Empty groups produce nothing.

    Raises:
        ValueError: If any ExternalImport has an empty names tuple.
    """
    for imp in external_imports:
        if not imp.names:
            raise ValueError(
                f"ExternalImport for module '{imp.module}' has empty names tuple"
            )

    groups: list[list[str]] = [
        [f"import {module}" for module in plain_imports],
        [f"from {imp.module} import {', '.join(imp.names)}" for imp in external_imports],
        [
            f"from . import {imp.module_stem}"
            if imp.module_stem == FFI_MODULE
            else f"from . import {imp.module_stem} as {imp.alias}"
            for imp in sibling_imports
        ],
    ]
    lines: list[str] = []
    for group in groups:
        if not group:
            continue
        if lines:
            lines.append("")
        lines.extend(group)
    return lines


def _docstring(text: str, indent: str) -> list[str]:
    text = text.replace("\\", "\\\\").replace('"""', '\\"\\"\\"').strip()
    lines = text.splitlines() or [""]
    if len(lines) == 1:
        return [f'{indent}"""{lines[0]}"""']
    result = [f'{indent}"""{lines[0]}']
    result.extend(f"{indent}{line}" if line else "" for line in lines[1:])
    result.append(f'{indent}"""')
    return result


def assemble_module_source(config: WriteConfig, spec: ModuleSpec) -> str:
    """Assemble a complete .py module source string from a ModuleSpec.

    File structure:
        <header_comment_block>
        <docstring>
                                    <- blank line
        from __future__ import annotations
                                    <- blank line
        <import_block>              <- omitted when there are no imports
                                    <- blank line
        <content_lines>

    Raises:
        ValueError: If spec.filename is empty or does not end with ".py".
    """
    if not spec.filename or not spec.filename.endswith(".py"):
        raise ValueError(
            f"spec.filename must be non-empty and end with '.py', got {spec.filename!r}"
        )

    parts: list[str] = list(format_file_header(config))
    parts.extend(_docstring(spec.doc, ""))
    parts.append("")
    parts.append("from __future__ import annotations")

    imports = format_import_block(
        spec.plain_imports, spec.external_imports, spec.sibling_imports
    )
    if imports:
        parts.append("")
        parts.extend(imports)

    if spec.content_lines:
        parts.extend(["", ""])
        parts.extend(spec.content_lines)

    return "\n".join(parts) + "\n"


def assemble_init_source(config: WriteConfig, init_spec: InitModuleSpec) -> str:
    """Assemble a complete __init__.py source string.

    Selective imports with more than one name use a parenthesized block with
    a trailing comma on every name. __all__ lists every re-exported name.
    """
    docstring = (
        f'"""{config.package_name} {config.package_version}: Python bindings '
        f'for {config.library_name}. Generated by {GENERATOR_NAME}."""'
    )
    parts: list[str] = [docstring, ""]

    exported: list[str] = []
    for re_export in init_spec.re_exports:
        parts.append(f"from . import {re_export.module_stem}")
        exported.append(re_export.module_stem)
    for re_export in init_spec.re_exports:
        if not re_export.names:
            continue
        if len(re_export.names) == 1:
            parts.append(f"from .{re_export.module_stem} import {re_export.names[0]}")
        else:
            name_lines = "\n".join(f"    {name}," for name in re_export.names)
            parts.append(f"from .{re_export.module_stem} import (\n{name_lines}\n)")
        exported.extend(re_export.names)

    parts.append("")
    parts.append("__all__ = [")
    parts.extend(f'    "{name}",' for name in exported)
    parts.append("]")
    return "\n".join(parts) + "\n"


# ===--- Python wrapper modules ---=== #


class _ModuleContext:
    """Resolves wrapper paths to expressions and records needed imports."""

    def __init__(self, package: str, module: str):
        self.package = package
        self.module = module
        self.siblings: set[str] = set()
        self.externals: set[tuple[str, str]] = set()
        self.uses_ctypes = False
        self.uses_enum = False

    def ref(self, path: TargetPath) -> str:
        if path.package == self.package and path.module == self.module:
            return path.name
        if path.package == self.package:
            self.siblings.add(path.module)
            return f"_{path.module}.{path.name}"
        alias = f"_{path.package}_{path.module}"
        self.externals.add((path.package, f"{path.module} as {alias}"))
        return f"{alias}.{path.name}"

    def spec(self, filename: str, doc: str, lines: list[str]) -> ModuleSpec:
        plain = []
        if self.uses_ctypes:
            plain.append("ctypes")
        if self.uses_enum:
            plain.append("enum")
        externals = [ExternalImport("cxxbind", (f"runtime as {RUNTIME_ALIAS}",))]
        by_package: dict[str, list[str]] = {}
        for package, name in sorted(self.externals):
            by_package.setdefault(package, []).append(name)
        externals.extend(ExternalImport(p, tuple(n)) for p, n in by_package.items())
        siblings = [SiblingImport(FFI_MODULE)]
        siblings.extend(SiblingImport(m) for m in sorted(self.siblings))
        return ModuleSpec(
            filename=filename,
            doc=doc,
            plain_imports=tuple(plain),
            external_imports=tuple(externals),
            sibling_imports=tuple(siblings),
            content_lines=tuple(lines),
        )


def _argument_annotation(value: CompleteType, ctx: _ModuleContext) -> str:
    conversion = value.api_conversion
    if conversion in (ApiConversion.ENUM, ApiConversion.OBJECT):
        return ctx.ref(value.wrapper)
    if conversion == ApiConversion.PTR:
        return f"{RUNTIME_ALIAS}.Ptr[{ctx.ref(value.wrapper)}] | None"
    return value.python_type or "int"


def _return_annotation(function: WrapperFunction, ctx: _ModuleContext) -> str:
    value = function.return_type
    convention = function.return_convention
    if convention == ReturnConvention.VOID:
        return "None"
    if convention in (ReturnConvention.OUTPUT_ARGUMENT, ReturnConvention.NEW_POINTER):
        return f"{RUNTIME_ALIAS}.CppBox[{ctx.ref(value.wrapper)}]"
    conversion = value.api_conversion
    if conversion == ApiConversion.ENUM:
        return ctx.ref(value.wrapper)
    if conversion == ApiConversion.REF:
        return f"{RUNTIME_ALIAS}.Ref[{ctx.ref(value.wrapper)}]"
    if conversion == ApiConversion.PTR:
        return f"{RUNTIME_ALIAS}.Ptr[{ctx.ref(value.wrapper)}]"
    if conversion == ApiConversion.RAW:
        return "int | None"
    return value.python_type or "None"


def _argument_expression(name: str, value: CompleteType, ctx: _ModuleContext) -> str:
    conversion = value.api_conversion
    if conversion == ApiConversion.ENUM:
        return f"int({name})"
    if conversion == ApiConversion.BUILTIN_REF:
        ctx.uses_ctypes = True
        return f"ctypes.byref({value.value_ctypes}({name}))"
    if conversion in (ApiConversion.OBJECT, ApiConversion.PTR):
        return f"{RUNTIME_ALIAS}.as_raw_ptr({name})"
    return name


def _call_expression(function: WrapperFunction, ctx: _ModuleContext) -> str:
    by_index = {a.ffi_index: a for a in function.arguments}
    parts = []
    for ffi_index, argument in enumerate(function.ffi_function.arguments):
        if ffi_index in by_index:
            wrapped = by_index[ffi_index]
            parts.append(_argument_expression(wrapped.name, wrapped.argument_type, ctx))
        elif argument.meaning == ArgumentMeaning.RETURN_VALUE:
            parts.append("output.as_raw_ptr()")
        else:
            parts.append("self.as_raw_ptr()")
    return f"{FFI_MODULE}.lib.{function.ffi_function.name}({', '.join(parts)})"


def _body_lines(function: WrapperFunction, ctx: _ModuleContext) -> list[str]:
    call = _call_expression(function, ctx)
    value = function.return_type
    convention = function.return_convention
    if convention == ReturnConvention.VOID:
        return [call]
    if convention == ReturnConvention.OUTPUT_ARGUMENT:
        return [
            f"output = {ctx.ref(value.wrapper)}.allocate()",
            call,
            f"return {RUNTIME_ALIAS}.CppBox(output)",
        ]
    if convention == ReturnConvention.NEW_POINTER:
        return [f"return {RUNTIME_ALIAS}.CppBox.from_raw({ctx.ref(value.wrapper)}, {call})"]

    conversion = value.api_conversion
    if conversion == ApiConversion.ENUM:
        return [f"return {ctx.ref(value.wrapper)}({call})"]
    if conversion == ApiConversion.REF:
        return [f"return {RUNTIME_ALIAS}.Ref({ctx.ref(value.wrapper)}, {call})"]
    if conversion == ApiConversion.PTR:
        return [f"return {RUNTIME_ALIAS}.Ptr({ctx.ref(value.wrapper)}, {call})"]
    if conversion == ApiConversion.BUILTIN_REF:
        ctx.uses_ctypes = True
        return [f"return {RUNTIME_ALIAS}.deref_value({value.value_ctypes}, {call})"]
    return [f"return {call}"]


def render_function(function: WrapperFunction, ctx: _ModuleContext, indent: str) -> list[str]:
    """Render one wrapper function as a method (indent set) or free function."""
    params = [
        f"{a.name}: {_argument_annotation(a.argument_type, ctx)}" for a in function.arguments
    ]
    lines: list[str] = []
    in_class = function.scope.kind != ScopeKind.FREE
    if in_class and function.self_arg_kind == SelfArgKind.NONE:
        lines.append(f"{indent}@staticmethod")
    elif in_class:
        params.insert(0, "self")
    returns = _return_annotation(function, ctx)
    lines.append(f"{indent}def {function.path.name}({', '.join(params)}) -> {returns}:")
    body_indent = indent + "    "
    if function.doc:
        lines.extend(_docstring(function.doc, body_indent))
    lines.extend(f"{body_indent}{line}" for line in _body_lines(function, ctx))
    return lines


def _render_trait(trait_impl: TraitImpl, ctx: _ModuleContext) -> list[str]:
    lines = [f"    # {trait_impl.trait}", ""]
    for function in trait_impl.functions:
        if function.is_deleter:
            lines.extend(
                [
                    "    @classmethod",
                    "    def cpp_delete(cls, raw: int) -> None:",
                    *_docstring(function.doc, "        "),
                    f"        {FFI_MODULE}.lib.{function.ffi_function.name}(raw)",
                ]
            )
        elif trait_impl.trait == "PartialEq":
            call = (
                f"{FFI_MODULE}.lib.{function.ffi_function.name}"
                f"(self.as_raw_ptr(), {RUNTIME_ALIAS}.as_raw_ptr(other))"
            )
            handles = ", ".join(
                f"{RUNTIME_ALIAS}.{name}" for name in ("CppObject", "CppBox", "Ptr", "Ref")
            )
            lines.extend(
                [
                    "    def __eq__(self, other: object) -> bool:",
                    *_docstring(function.doc, "        "),
                    f"        if not isinstance(other, ({handles})):",
                    "            return NotImplemented",
                    f"        return bool({call})",
                ]
            )
        else:
            lines.extend(render_function(function, ctx, "    "))
        lines.append("")
    return lines


def _class_bases(wrapper: WrapperType, deletable: bool) -> str:
    bases = [
        f"{RUNTIME_ALIAS}.MovableCppObject"
        if wrapper.kind == WrapperKind.MOVABLE_CLASS
        else f"{RUNTIME_ALIAS}.CppObject"
    ]
    if deletable:
        bases.append(f"{RUNTIME_ALIAS}.CppDeletable")
    return ", ".join(bases)


def _render_enum(wrapper: WrapperType, ctx: _ModuleContext) -> list[str]:
    ctx.uses_enum = True
    lines = [f"class {wrapper.path.name}(enum.IntEnum):"]
    lines.extend(_docstring(wrapper.doc, "    "))
    lines.append("")
    for value in wrapper.enum_values:
        lines.append(f"    {enum_member_name(value.name)} = {value.value}")
    if not wrapper.enum_values:
        lines.append("    pass")
    lines.append("")
    lines.append("")
    return lines


def _render_class(
    wrapper: WrapperType, model: TargetModel, ctx: _ModuleContext
) -> list[str]:
    trait_impls = model.trait_impls_for(wrapper.path)
    deletable = any(t.trait == "CppDeletable" for t in trait_impls)
    lines = [f"class {wrapper.path.name}({_class_bases(wrapper, deletable)}):"]
    doc = wrapper.doc
    if wrapper.kind == WrapperKind.MOVABLE_CLASS:
        doc += f"\n\nMovable: instances can live in Python-owned storage of {wrapper.size} bytes."
    else:
        doc += "\n\nImmovable: only reachable through CppBox, Ptr or Ref."
    lines.extend(_docstring(doc, "    "))
    lines.append("")
    if wrapper.kind == WrapperKind.MOVABLE_CLASS:
        lines.append(f"    _cpp_size = {wrapper.size}")
        lines.append("")
    for function in model.associated_functions(wrapper.path):
        lines.extend(render_function(function, ctx, "    "))
        lines.append("")
    for trait_impl in trait_impls:
        lines.extend(_render_trait(trait_impl, ctx))
    while lines and lines[-1] == "":
        lines.pop()
    lines.append("")
    lines.append("")
    return lines


def module_exports(model: TargetModel, module: str) -> list[str]:
    names = [t.path.name for t in model.types_in(module)]
    names.extend(f.path.name for f in model.free_functions_in(module))
    return names


def render_python_modules(model: TargetModel, config: WriteConfig) -> tuple[ModuleSpec, ...]:
    """Build one ModuleSpec per target module, in module name order."""
    specs = []
    for module in model.modules:
        name = module.path.module
        ctx = _ModuleContext(model.package, name)
        lines: list[str] = []
        types = model.types_in(name)
        for wrapper in types:
            if wrapper.kind == WrapperKind.ENUM:
                lines.extend(_render_enum(wrapper, ctx))
        for wrapper in types:
            if wrapper.kind != WrapperKind.ENUM:
                lines.extend(_render_class(wrapper, model, ctx))
        for function in model.free_functions_in(name):
            lines.extend(render_function(function, ctx, ""))
            lines.append("")
            lines.append("")
        while lines and lines[-1] == "":
            lines.pop()
        specs.append(ctx.spec(f"{name}.py", module.doc, lines))
    return tuple(specs)


def render_init_module(model: TargetModel) -> InitModuleSpec:
    """Re-export every module, plus the names that are unique across modules."""
    counts: dict[str, int] = {}
    for module in model.modules:
        for name in module_exports(model, module.path.module):
            counts[name] = counts.get(name, 0) + 1
    re_exports = []
    for module in model.modules:
        names = tuple(
            n for n in module_exports(model, module.path.module) if counts[n] == 1
        )
        re_exports.append(InitReExport(module.path.module, names))
    return InitModuleSpec(tuple(re_exports))


def render_ffi_module(
    config: WriteConfig, functions: tuple[CppFfiFunction, ...], index: TypeIndex
) -> ModuleSpec:
    """ctypes prototypes of the wrapper library, loaded lazily."""
    lines = ["_HERE = Path(__file__).resolve().parent", "", "PROTOTYPES = {"]
    for function in functions:
        argtypes = ", ".join(
            complete_type(a.argument_type, index, {}).ctypes_type for a in function.arguments
        )
        restype = complete_type(function.return_type, index, {}, is_return=True).ctypes_type
        lines.append(f'    "{function.name}": ([{argtypes}], {restype}),')
    lines.append("}")
    lines.append("")
    lines.append("lib = FfiLibrary(")
    lines.append(f'    "{config.library_name}",')
    lines.append("    PROTOTYPES,")
    lines.append('    search_dirs=(_HERE, _HERE.parent / "c_lib" / "build"),')
    lines.append(")")
    return ModuleSpec(
        filename=f"{FFI_MODULE}.py",
        doc=f"ctypes prototypes of the {config.library_name} wrapper library.",
        plain_imports=("ctypes",),
        external_imports=(
            ExternalImport("pathlib", ("Path",)),
            ExternalImport("cxxbind.runtime", ("FfiLibrary",)),
        ),
        sibling_imports=(),
        content_lines=tuple(lines),
    )


# ===--- Native sources ---=== #


def _cpp_banner(config: WriteConfig, comment: str = "//") -> list[str]:
    return [
        f"{comment} {config.library_name}: generated by {GENERATOR_NAME} from {config.source_label}.",
        f"{comment} Do not edit.",
    ]


def _native_call(function: CppFfiFunction) -> str:
    method = function.cpp_method
    args = []
    for argument in function.arguments:
        if argument.meaning != ArgumentMeaning.ARGUMENT:
            continue
        if argument.argument_type.conversion == IndirectionChange.NONE:
            args.append(argument.name)
        else:
            args.append(f"*{argument.name}")
    joined = ", ".join(args)

    if method.is_constructor:
        return f"{function.class_type.to_cpp_code()}({joined})"
    if method.operator:
        callee = f"operator{method.operator}"
    elif method.conversion_operator is not None:
        callee = f"operator {method.conversion_operator.to_cpp_code()}"
    else:
        callee = method.name.split("::")[-1] if function.class_type is not None else method.name

    if function.class_type is None:
        return f"{callee}({joined})"
    class_name = function.class_type.to_cpp_code()
    if method.is_static:
        return f"{class_name}::{callee}({joined})"
    if function.dispatch_kind == DispatchKind.VTABLE_SLOT:
        return f"this_ptr->{callee}({joined})"
    return f"this_ptr->{class_name}::{callee}({joined})"


def _cpp_function_body(function: CppFfiFunction) -> str:
    method = function.cpp_method
    if method.is_destructor:
        if function.class_is_movable:
            return "std::destroy_at(this_ptr);"
        return "delete this_ptr;"

    call = _native_call(function)
    convention = function.return_convention
    if convention == ReturnConvention.VOID:
        return f"{call};"
    if convention == ReturnConvention.DIRECT:
        return f"return {call};"
    if convention == ReturnConvention.REFERENCE_AS_POINTER:
        return f"return &({call});"
    returned = function.return_type.original_type
    if convention == ReturnConvention.OUTPUT_ARGUMENT:
        returned = function.arguments[function.return_type_ffi_index].argument_type.original_type
        target = returned.value_type().to_cpp_code()
        if method.is_constructor:
            return f"new (output) {call};"
        return f"new (output) {target}({call});"
    target = returned.value_type().to_cpp_code()
    if method.is_constructor:
        return f"return new {call};"
    return f"return new {target}({call});"


def render_cpp_function(function: CppFfiFunction) -> list[str]:
    params = ", ".join(
        f"{a.argument_type.ffi_type.to_cpp_code()} {a.name}" for a in function.arguments
    )
    returns = function.return_type.ffi_type.to_cpp_code()
    return [
        f"// {function.cpp_method.short_text()}",
        f"{returns} {function.name}({params}) {{",
        f"    {_cpp_function_body(function)}",
        "}",
    ]


def render_cpp_source(config: WriteConfig, functions: tuple[CppFfiFunction, ...]) -> str:
    """The C++ shim: one extern "C" function per ABI function."""
    lines = _cpp_banner(config)
    lines.extend(
        [
            "",
            f'#include "{config.library_name}_global.h"',
            "",
            "#include <memory>",
            "#include <new>",
            "",
            'extern "C" {',
        ]
    )
    for function in functions:
        lines.append("")
        lines.extend(render_cpp_function(function))
    lines.extend(["", '}  // extern "C"'])
    return "\n".join(lines) + "\n"


def render_global_header(config: WriteConfig, include_directives: tuple[str, ...]) -> str:
    lines = _cpp_banner(config)
    lines.extend(["", "#pragma once", ""])
    lines.extend(f"#include <{directive}>" for directive in include_directives)
    return "\n".join(lines) + "\n"


def render_size_probe(config: WriteConfig, types: tuple[WrapperType, ...]) -> str:
    """Check assumed sizes of movable types at compile time and print the real ones."""
    movable = [t for t in types if t.kind == WrapperKind.MOVABLE_CLASS]
    lines = _cpp_banner(config)
    lines.extend(["", f'#include "{config.library_name}_global.h"', "", "#include <cstdio>", ""])
    for wrapper in movable:
        name = wrapper.cpp_type.to_cpp_code()
        lines.append(
            f'static_assert(sizeof({name}) == {wrapper.size}, '
            f'"{name}: assumed size {wrapper.size} does not match the compiler");'
        )
    if movable:
        lines.append("")
    lines.append("int main() {")
    for wrapper in movable:
        name = wrapper.cpp_type.to_cpp_code()
        lines.append(f'    std::printf("{name};%zu\\n", sizeof({name}));')
    lines.append("    return 0;")
    lines.append("}")
    return "\n".join(lines) + "\n"


def render_cmakelists(
    config: WriteConfig, include_dirs: tuple[str, ...], link_items: tuple[str, ...]
) -> str:
    lib = config.library_name
    lines = _cpp_banner(config, "#")
    lines.extend(
        [
            "",
            "cmake_minimum_required(VERSION 3.10)",
            f"project({lib} CXX)",
            "",
            "set(CMAKE_CXX_STANDARD 17)",
            "set(CMAKE_CXX_STANDARD_REQUIRED ON)",
            "",
            f"add_library({lib} SHARED {lib}.cpp)",
            "add_executable(sized_types sized_types.cxx)",
        ]
    )
    dirs = " ".join(['"${CMAKE_CURRENT_SOURCE_DIR}"', *(f'"{d}"' for d in include_dirs)])
    for target in (lib, "sized_types"):
        lines.append(f"target_include_directories({target} PRIVATE {dirs})")
    if link_items:
        items = " ".join(link_items)
        lines.append(f"target_link_libraries({lib} PRIVATE {items})")
        lines.append(f"target_link_libraries(sized_types PRIVATE {items})")
    return "\n".join(lines) + "\n"
