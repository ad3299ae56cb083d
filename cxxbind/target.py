"""Python-side mirror of the bridged library.

Every native type becomes exactly one wrapper declaration and every ABI
function exactly one wrapper function, associated with a wrapper class, part
of a protocol implementation or free at module level. Overloads that would
share a Python name are told apart by caption strategies.
"""

import keyword
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import PurePosixPath

from .cpp_model import CppData, CppMethod, CppType, EnumValue
from .ffi import (
    ArgumentMeaning,
    CppFfiFunction,
    CppFfiType,
    FfiDiagnostic,
    FfiSynthesisResult,
    IndirectionChange,
    ReturnConvention,
    TypeIndex,
    operator_name,
    sanitize_identifier,
)


class CaptionError(Exception):
    """Overloads or enumerators could not be given distinct Python names."""


# ===--- Naming ---=== #

_CAMEL_WORD_RE = re.compile(r"(.)([A-Z][a-z]+)")
_CAMEL_TAIL_RE = re.compile(r"([a-z0-9])([A-Z])")
_UNDERSCORES_RE = re.compile(r"_+")

# Members every wrapper class inherits from the runtime, and members of the
# CppBox, Ptr and Ref handles that would hide a forwarded wrapper method.
RESERVED_MEMBER_NAMES = frozenset(
    {
        "from_raw",
        "as_raw_ptr",
        "allocate",
        "owns_storage",
        "cpp_delete",
        "get",
        "is_live",
        "as_ptr",
        "as_ref",
        "into_raw_ptr",
        "take",
        "close",
        "null",
        "is_null",
    }
)

# Module-level names used by generated modules.
RESERVED_MODULE_NAMES = frozenset({"annotations", "ctypes", "enum"})

# Parameter names that would shadow names used inside generated bodies.
RESERVED_ARGUMENT_NAMES = frozenset({"self", "cls", "ctypes", "output", "other", "raw"})


def snake_case(name: str) -> str:
    """Convert a C++ identifier to snake_case ("setText" -> "set_text")."""
    text = _CAMEL_WORD_RE.sub(r"\1_\2", sanitize_identifier(name))
    text = _CAMEL_TAIL_RE.sub(r"\1_\2", text)
    return _UNDERSCORES_RE.sub("_", text).lower()


def python_identifier(name: str) -> str:
    if not name:
        return "_"
    if name[0].isdigit():
        name = f"n{name}"
    if keyword.iskeyword(name):
        name += "_"
    return name


def type_fragment(cpp_type: CppType, with_indirection: bool = True) -> str:
    """Identifier fragment naming a type ("QList<Widget*>" -> "QList_Widget_ptr")."""
    text = sanitize_identifier(cpp_type.base.split("::")[-1])
    if cpp_type.template_arguments:
        text += "_" + "_".join(type_fragment(a) for a in cpp_type.template_arguments)
    if with_indirection and cpp_type.indirection in ("ptr", "ptr_ptr"):
        text += "_" + cpp_type.indirection
    return text


def python_type_name(cpp_type: CppType) -> str:
    """Class name of a wrapper type, without its module.

    The first namespace segment names the module, the remaining ones are
    folded into the class name.
    """
    segments = cpp_type.base.split("::")
    name = "_".join(sanitize_identifier(s) for s in segments[1:] or segments)
    if cpp_type.template_arguments:
        name += "_" + "_".join(type_fragment(a) for a in cpp_type.template_arguments)
    return python_identifier(name)


def module_name_for(qualified_name: str, header: str) -> str:
    """Module holding a declaration: its first namespace or its header's stem."""
    if "::" in qualified_name:
        return python_identifier(snake_case(qualified_name.split("::")[0]))
    stem = PurePosixPath(header.replace("\\", "/")).name.split(".")[0]
    return python_identifier(snake_case(stem) or "lib")


def enum_member_name(name: str) -> str:
    return python_identifier(sanitize_identifier(name))


def _check_enum_members(type_name: str, values: tuple[EnumValue, ...]) -> None:
    seen: dict[str, str] = {}
    for value in values:
        name = enum_member_name(value.name)
        if name in seen:
            raise CaptionError(
                f"Enumerators {seen[name]!r} and {value.name!r} of {type_name} "
                f"both map to Python name {name!r}"
            )
        seen[name] = value.name


# ===--- Target entities ---=== #


@dataclass(frozen=True)
class TargetPath:
    """Fully qualified Python name: package.module.name."""

    package: str
    module: str
    name: str

    def full_name(self) -> str:
        return ".".join(p for p in (self.package, self.module, self.name) if p)


class WrapperKind(str, Enum):
    ENUM = "enum"
    IMMOVABLE_CLASS = "immovable_class"
    MOVABLE_CLASS = "movable_class"


@dataclass(frozen=True)
class WrapperType:
    path: TargetPath
    kind: WrapperKind
    cpp_type: CppType
    size: int | None = None
    enum_values: tuple[EnumValue, ...] = ()
    doc: str = ""


class ScopeKind(str, Enum):
    IMPL = "impl"
    TRAIT_IMPL = "trait_impl"
    FREE = "free"


@dataclass(frozen=True)
class FunctionScope:
    kind: ScopeKind
    target_type: TargetPath | None = None

    @classmethod
    def impl(cls, target_type: TargetPath) -> "FunctionScope":
        return cls(ScopeKind.IMPL, target_type)

    @classmethod
    def trait_impl(cls, target_type: TargetPath) -> "FunctionScope":
        return cls(ScopeKind.TRAIT_IMPL, target_type)

    @classmethod
    def free(cls) -> "FunctionScope":
        return cls(ScopeKind.FREE)


class SelfArgKind(str, Enum):
    NONE = "none"
    CONST_REF = "const_ref"
    MUT_REF = "mut_ref"
    VALUE = "value"


class ApiConversion(str, Enum):
    """How a value is converted between Python and the ctypes call."""

    NONE = "none"
    ENUM = "enum"
    STRING = "string"
    BUILTIN_REF = "builtin_ref"
    OBJECT = "object"
    REF = "ref"
    PTR = "ptr"
    RAW = "raw"


BUILTIN_CTYPES = {
    "void": "None",
    "bool": "ctypes.c_bool",
    "char": "ctypes.c_char",
    "signed char": "ctypes.c_byte",
    "unsigned char": "ctypes.c_ubyte",
    "short": "ctypes.c_short",
    "unsigned short": "ctypes.c_ushort",
    "int": "ctypes.c_int",
    "unsigned int": "ctypes.c_uint",
    "long": "ctypes.c_long",
    "unsigned long": "ctypes.c_ulong",
    "long long": "ctypes.c_longlong",
    "unsigned long long": "ctypes.c_ulonglong",
    "float": "ctypes.c_float",
    "double": "ctypes.c_double",
    "long double": "ctypes.c_longdouble",
    "size_t": "ctypes.c_size_t",
    "int8_t": "ctypes.c_int8",
    "int16_t": "ctypes.c_int16",
    "int32_t": "ctypes.c_int32",
    "int64_t": "ctypes.c_int64",
    "uint8_t": "ctypes.c_uint8",
    "uint16_t": "ctypes.c_uint16",
    "uint32_t": "ctypes.c_uint32",
    "uint64_t": "ctypes.c_uint64",
}

_FLOAT_TYPES = {"float", "double", "long double"}


def builtin_python_type(base: str) -> str:
    if base == "void":
        return "None"
    if base == "bool":
        return "bool"
    if base == "char":
        return "bytes"
    if base in _FLOAT_TYPES:
        return "float"
    return "int"


@dataclass(frozen=True)
class CompleteType:
    """One value at every layer: native type, ABI type and Python view.

    Attributes:
        cpp_type: Type as declared by the native method.
        ffi_type: Type crossing the ABI boundary.
        conversion: Indirection change between the two.
        ctypes_type: ctypes expression used in argtypes/restype.
        api_conversion: Conversion between the ctypes value and Python.
        python_type: Annotation of builtin values, None for wrapper types.
        value_ctypes: ctypes type of the pointee for BUILTIN_REF.
        wrapper: Wrapper class or enum referenced by the value.
    """

    cpp_type: CppType
    ffi_type: CppType
    conversion: IndirectionChange
    ctypes_type: str
    api_conversion: ApiConversion
    python_type: str | None = None
    value_ctypes: str | None = None
    wrapper: TargetPath | None = None

    @property
    def is_unsafe(self) -> bool:
        return self.api_conversion in (ApiConversion.PTR, ApiConversion.RAW)


@dataclass(frozen=True)
class WrapperArgument:
    name: str
    argument_type: CompleteType
    ffi_index: int


@dataclass(frozen=True)
class WrapperFunction:
    """One Python callable backed by exactly one ABI function.

    is_deleter marks the synthesized deletion glue of CppDeletable, whose
    ffi_function is the class destructor bridge.
    """

    scope: FunctionScope
    is_unsafe: bool
    path: TargetPath
    arguments: tuple[WrapperArgument, ...]
    return_type: CompleteType
    self_arg_kind: SelfArgKind
    ffi_function: CppFfiFunction
    is_deleter: bool = False
    doc: str = ""

    @property
    def return_convention(self) -> ReturnConvention:
        return self.ffi_function.return_convention


@dataclass(frozen=True)
class TraitImpl:
    target_type: TargetPath
    trait: str
    associated_types: tuple[tuple[str, CompleteType], ...]
    functions: tuple[WrapperFunction, ...]


@dataclass(frozen=True)
class TargetModule:
    path: TargetPath
    doc: str = ""


@dataclass(frozen=True)
class TargetModel:
    package: str
    modules: tuple[TargetModule, ...]
    types: tuple[WrapperType, ...]
    functions: tuple[WrapperFunction, ...]
    trait_impls: tuple[TraitImpl, ...]
    diagnostics: tuple[FfiDiagnostic, ...] = field(default=())

    def types_in(self, module: str) -> list[WrapperType]:
        return [t for t in self.types if t.path.module == module]

    def associated_functions(self, target_type: TargetPath) -> list[WrapperFunction]:
        return [
            f
            for f in self.functions
            if f.scope.kind == ScopeKind.IMPL and f.scope.target_type == target_type
        ]

    def free_functions_in(self, module: str) -> list[WrapperFunction]:
        return [
            f
            for f in self.functions
            if f.scope.kind == ScopeKind.FREE and f.path.module == module
        ]

    def trait_impls_for(self, target_type: TargetPath) -> list[TraitImpl]:
        return [t for t in self.trait_impls if t.target_type == target_type]

    def find_type(self, path: TargetPath) -> WrapperType | None:
        for wrapper in self.types:
            if wrapper.path == path:
                return wrapper
        return None


def used_ffi_function_names(model: TargetModel) -> set[str]:
    """Names of the ABI functions the model calls."""
    names = {f.ffi_function.name for f in model.functions}
    for trait_impl in model.trait_impls:
        names.update(f.ffi_function.name for f in trait_impl.functions)
    return names


# ===--- Type mapping ---=== #


def complete_type(
    ffi_type: CppFfiType,
    index: TypeIndex,
    paths: dict[str, TargetPath],
    is_return: bool = False,
) -> CompleteType:
    """Describe how one ABI value is seen from Python."""
    native = ffi_type.original_type
    abi = ffi_type.ffi_type
    wrapper = paths.get(native.value_type().name_with_args())

    def make(ctypes_type, conversion, **kwargs):
        return CompleteType(
            native, abi, ffi_type.conversion, ctypes_type, conversion, **kwargs
        )

    if index.is_class(native):
        if wrapper is None or native.indirection == "ptr_ptr":
            return make("ctypes.c_void_p", ApiConversion.RAW, python_type="int")
        if native.indirection == "ptr":
            return make("ctypes.c_void_p", ApiConversion.PTR, wrapper=wrapper)
        if native.indirection == "ref" and is_return:
            return make("ctypes.c_void_p", ApiConversion.REF, wrapper=wrapper)
        return make("ctypes.c_void_p", ApiConversion.OBJECT, wrapper=wrapper)

    if index.is_enum(native):
        if native.indirection == "none" and wrapper is not None:
            return make("ctypes.c_int", ApiConversion.ENUM, wrapper=wrapper)
        if native.indirection == "none":
            return make("ctypes.c_int", ApiConversion.NONE, python_type="int")
        return make("ctypes.c_void_p", ApiConversion.RAW, python_type="int")

    if native.indirection == "none":
        return make(
            BUILTIN_CTYPES.get(native.base, "ctypes.c_void_p"),
            ApiConversion.NONE,
            python_type=builtin_python_type(native.base),
        )
    if native.base == "char" and native.indirection == "ptr" and native.is_const:
        return make("ctypes.c_char_p", ApiConversion.STRING, python_type="bytes")
    if native.indirection == "ref" and native.is_const and native.base != "void":
        return make(
            "ctypes.c_void_p",
            ApiConversion.BUILTIN_REF,
            python_type=builtin_python_type(native.base),
            value_ctypes=BUILTIN_CTYPES[native.base],
        )
    return make("ctypes.c_void_p", ApiConversion.RAW, python_type="int")


# ===--- Captions ---=== #


class CaptionStrategy(str, Enum):
    SELF_ONLY = "self_only"
    UNSAFE_ONLY = "unsafe_only"
    SELF_AND_ARG_TYPES = "self_and_arg_types"
    SELF_AND_ARG_NAMES = "self_and_arg_names"
    SELF_AND_INDEX = "self_and_index"


_SELF_CAPTIONS = {
    SelfArgKind.NONE: "static",
    SelfArgKind.CONST_REF: "",
    SelfArgKind.MUT_REF: "mut",
    SelfArgKind.VALUE: "value",
}


def _self_caption(function: WrapperFunction) -> str:
    if function.scope.kind == ScopeKind.FREE:
        return ""
    return _SELF_CAPTIONS[function.self_arg_kind]


def _caption(
    strategy: CaptionStrategy,
    function: WrapperFunction,
    position: int,
    group: list[WrapperFunction],
) -> str:
    if strategy == CaptionStrategy.SELF_ONLY:
        return _self_caption(function)
    if strategy == CaptionStrategy.UNSAFE_ONLY:
        return "unsafe" if function.is_unsafe else ""

    parts = []
    if len({f.self_arg_kind for f in group}) > 1:
        parts.append(_self_caption(function))
    if strategy == CaptionStrategy.SELF_AND_ARG_TYPES:
        parts.extend(
            snake_case(type_fragment(a.argument_type.cpp_type)) for a in function.arguments
        )
    elif strategy == CaptionStrategy.SELF_AND_ARG_NAMES:
        parts.extend(a.name for a in function.arguments)
    else:
        parts.append(str(position + 1))
    return "_".join(p for p in parts if p)


def _with_caption(base: str, caption: str) -> str:
    return f"{base}_{caption}" if caption else base


def caption_overloads(
    group: list[WrapperFunction], taken: frozenset[str] = frozenset()
) -> list[str]:
    """Choose final names for functions sharing a base name and scope.

    A group of one keeps its base name unless that name is taken. Otherwise
    strategies are tried in CaptionStrategy order and the first one giving
    pairwise distinct names, none of them in taken, wins.

    Args:
        group: Functions in declaration order; their path names hold the
            shared base name.
        taken: Names already used in the same scope.

    Returns:
        Final names, parallel to group.

    Raises:
        CaptionError: If every strategy leaves a collision.
    """
    base = group[0].path.name
    if len(group) == 1 and base not in taken:
        return [base]
    for strategy in CaptionStrategy:
        names = [
            _with_caption(base, _caption(strategy, f, i, group)) for i, f in enumerate(group)
        ]
        if len(set(names)) == len(names) and not taken.intersection(names):
            return names
    texts = "; ".join(f.ffi_function.cpp_method.short_text() for f in group)
    raise CaptionError(f"Cannot give distinct names to overloads of {base!r}: {texts}")


# ===--- Model construction ---=== #

# Operator protocols: (operator, operand count excluding receiver, trait, method).
_OPERATOR_TRAITS = (
    ("==", 1, "PartialEq", "__eq__"),
    ("*", 0, "Indirection", "indirection"),
    ("++", 0, "Increment", "inc"),
    ("--", 0, "Decrement", "dec"),
)


def _base_name(method: CppMethod) -> str:
    if method.is_constructor:
        return "new"
    if method.operator:
        return f"op_{operator_name(method)}"
    if method.conversion_operator is not None:
        return f"to_{snake_case(type_fragment(method.conversion_operator))}"
    return python_identifier(snake_case(method.name.split("::")[-1]))


def _self_arg_kind(method: CppMethod) -> SelfArgKind:
    if method.is_destructor:
        return SelfArgKind.VALUE
    if method.is_constructor or method.is_static or method.scope is None:
        return SelfArgKind.NONE
    return SelfArgKind.CONST_REF if method.is_const else SelfArgKind.MUT_REF


def _argument_python_name(name: str, taken: set[str]) -> str:
    result = python_identifier(snake_case(name) or "arg")
    while result in RESERVED_ARGUMENT_NAMES or result in taken:
        result += "_"
    taken.add(result)
    return result


def _wrapper_types(
    data: CppData, package: str, index: TypeIndex
) -> list[WrapperType]:
    result = []
    for type_data in data.types:
        module = module_name_for(type_data.name, type_data.header)
        if type_data.is_enum:
            _check_enum_members(type_data.name, type_data.kind.values)
            cpp_type = CppType(type_data.name)
            result.append(
                WrapperType(
                    TargetPath(package, module, python_type_name(cpp_type)),
                    WrapperKind.ENUM,
                    cpp_type,
                    enum_values=type_data.kind.values,
                    doc=f"C++ enum: {type_data.name}",
                )
            )
            continue
        variants = [CppType(type_data.name)]
        if type_data.is_template:
            variants = [
                CppType(type_data.name, template_arguments=tuple(args))
                for args in data.template_instantiations.get(type_data.name, ())
            ]
        for cpp_type in variants:
            movable = index.is_movable(cpp_type)
            result.append(
                WrapperType(
                    TargetPath(package, module, python_type_name(cpp_type)),
                    WrapperKind.MOVABLE_CLASS if movable else WrapperKind.IMMOVABLE_CLASS,
                    cpp_type,
                    size=type_data.kind.size if movable else None,
                    doc=f"C++ type: {cpp_type.to_cpp_code()}",
                )
            )
    return result


def _function_module(function: CppFfiFunction) -> str:
    method = function.cpp_method
    qualified = method.name if method.scope is None else method.scope
    return module_name_for(qualified, method.origin.include_file)


def _wrapper_function(
    function: CppFfiFunction,
    index: TypeIndex,
    paths: dict[str, TargetPath],
    local_types: dict[str, WrapperType],
    package: str,
) -> WrapperFunction:
    method = function.cpp_method
    owner = (
        local_types.get(function.class_type.name_with_args())
        if function.class_type is not None
        else None
    )
    if owner is not None:
        scope = FunctionScope.impl(owner.path)
        module = owner.path.module
        self_arg_kind = _self_arg_kind(method)
    else:
        scope = FunctionScope.free()
        module = _function_module(function)
        self_arg_kind = SelfArgKind.NONE

    taken: set[str] = set()
    arguments = []
    for ffi_index, argument in enumerate(function.arguments):
        if argument.meaning == ArgumentMeaning.RETURN_VALUE:
            continue
        if argument.meaning == ArgumentMeaning.THIS and owner is not None:
            continue
        arguments.append(
            WrapperArgument(
                _argument_python_name(argument.name, taken),
                complete_type(argument.argument_type, index, paths),
                ffi_index,
            )
        )

    if function.return_type_ffi_index is not None:
        returned = function.arguments[function.return_type_ffi_index].argument_type
    else:
        returned = function.return_type
    return_type = complete_type(returned, index, paths, is_return=True)

    is_unsafe = return_type.is_unsafe or any(a.argument_type.is_unsafe for a in arguments)
    doc = method.short_text()
    if is_unsafe:
        doc += "\n\nUnsafe: raw pointers are passed through unchecked."
    return WrapperFunction(
        scope=scope,
        is_unsafe=is_unsafe,
        path=TargetPath(package, module, _base_name(method)),
        arguments=tuple(arguments),
        return_type=return_type,
        self_arg_kind=self_arg_kind,
        ffi_function=function,
        doc=doc,
    )


def _operator_trait(function: WrapperFunction) -> tuple[str, str] | None:
    method = function.ffi_function.cpp_method
    if function.scope.kind != ScopeKind.IMPL or not method.operator or method.is_static:
        return None
    for operator, operand_count, trait, trait_method in _OPERATOR_TRAITS:
        if method.operator != operator or len(method.arguments) != operand_count:
            continue
        if trait == "PartialEq" and function.arguments[0].argument_type.wrapper is None:
            return None
        return trait, trait_method
    return None


def _split_traits(
    functions: list[WrapperFunction],
) -> tuple[list[WrapperFunction], list[TraitImpl]]:
    candidates: dict[tuple[TargetPath, str], list[tuple[WrapperFunction, str]]] = {}
    for function in functions:
        found = _operator_trait(function)
        if found is not None:
            trait, trait_method = found
            candidates.setdefault((function.scope.target_type, trait), []).append(
                (function, trait_method)
            )

    trait_impls = []
    moved: set[str] = set()
    for (target_type, trait), entries in candidates.items():
        if len(entries) != 1:
            continue
        function, trait_method = entries[0]
        moved.add(function.ffi_function.name)
        associated = ()
        if trait == "Indirection":
            associated = (("Output", function.return_type),)
        trait_impls.append(
            TraitImpl(
                target_type=target_type,
                trait=trait,
                associated_types=associated,
                functions=(
                    replace(
                        function,
                        scope=FunctionScope.trait_impl(target_type),
                        path=replace(function.path, name=trait_method),
                    ),
                ),
            )
        )
    remaining = [f for f in functions if f.ffi_function.name not in moved]
    return remaining, trait_impls


def _deletable_impl(
    function: CppFfiFunction, owner: WrapperType, index: TypeIndex, paths: dict
) -> TraitImpl:
    void = complete_type(function.return_type, index, paths, is_return=True)
    deleter = WrapperFunction(
        scope=FunctionScope.trait_impl(owner.path),
        is_unsafe=True,
        path=replace(owner.path, name="cpp_delete"),
        arguments=(),
        return_type=void,
        self_arg_kind=SelfArgKind.VALUE,
        ffi_function=function,
        is_deleter=True,
        doc=function.cpp_method.short_text(),
    )
    return TraitImpl(owner.path, "CppDeletable", (), (deleter,))


def _scope_key(function: WrapperFunction) -> tuple:
    if function.scope.kind == ScopeKind.FREE:
        return ("free", function.path.module)
    return ("impl", function.scope.target_type)


def _caption_all(
    functions: list[WrapperFunction],
    trait_impls: list[TraitImpl],
    types: list[WrapperType],
) -> list[WrapperFunction]:
    scopes: dict[tuple, dict[str, list[int]]] = {}
    for position, function in enumerate(functions):
        scopes.setdefault(_scope_key(function), {}).setdefault(
            function.path.name, []
        ).append(position)

    trait_names: dict[TargetPath, set[str]] = {}
    for trait_impl in trait_impls:
        trait_names.setdefault(trait_impl.target_type, set()).update(
            f.path.name for f in trait_impl.functions
        )
    class_names: dict[str, set[str]] = {}
    for wrapper in types:
        class_names.setdefault(wrapper.path.module, set()).add(wrapper.path.name)

    result = list(functions)
    for key, groups in scopes.items():
        if key[0] == "free":
            reserved = RESERVED_MODULE_NAMES | class_names.get(key[1], set())
        else:
            reserved = RESERVED_MEMBER_NAMES | trait_names.get(key[1], set())
        assigned: set[str] = set()
        for base, positions in groups.items():
            others = {name for name in groups if name != base}
            taken = frozenset(reserved | others | assigned)
            names = caption_overloads([functions[p] for p in positions], taken)
            for position, name in zip(positions, names):
                result[position] = replace(
                    functions[position], path=replace(functions[position].path, name=name)
                )
            assigned.update(names)
    return result


def build_target_model(
    data: CppData,
    ffi_result: FfiSynthesisResult,
    package: str,
    dependencies: tuple[CppData, ...] = (),
    external_paths: dict[str, TargetPath] | None = None,
) -> TargetModel:
    """Mirror the bridged library as Python wrapper declarations.

    Args:
        data: Enriched model of the generation unit.
        ffi_result: ABI functions synthesized from data.
        package: Python package name of the generated wrapper.
        dependencies: Models of dependency libraries.
        external_paths: Wrapper paths of dependency types, keyed by C++ name
            with template arguments.

    Returns:
        TargetModel whose functions carry final, collision-free names.

    Raises:
        CaptionError: If an overload set cannot be disambiguated.
    """
    index = TypeIndex(data, dependencies)
    types = _wrapper_types(data, package, index)
    local_types = {t.cpp_type.name_with_args(): t for t in types}
    paths = dict(external_paths or {})
    paths.update({name: t.path for name, t in local_types.items()})

    functions: list[WrapperFunction] = []
    trait_impls: list[TraitImpl] = []
    for function in ffi_result.functions:
        method = function.cpp_method
        if method.is_destructor:
            owner = local_types.get(function.class_type.name_with_args())
            if owner is not None:
                trait_impls.append(_deletable_impl(function, owner, index, paths))
            continue
        functions.append(_wrapper_function(function, index, paths, local_types, package))

    functions, operator_impls = _split_traits(functions)
    trait_impls.extend(operator_impls)
    functions = _caption_all(functions, trait_impls, types)

    module_names = sorted(
        {t.path.module for t in types} | {f.path.module for f in functions}
    )
    modules = tuple(
        TargetModule(TargetPath(package, name, ""), doc=f"Bindings for {name}.")
        for name in module_names
    )
    return TargetModel(
        package=package,
        modules=modules,
        types=tuple(types),
        functions=tuple(functions),
        trait_impls=tuple(trait_impls),
        diagnostics=ffi_result.diagnostics,
    )


def export_type_paths(model: TargetModel) -> dict[str, TargetPath]:
    """C++ name to wrapper path of every type, as recorded for dependents."""
    return {t.cpp_type.name_with_args(): t.path for t in model.types}
