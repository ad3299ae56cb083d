"""ABI shim synthesis.

Turns native methods into ABI-stable free functions: every argument and
return value crosses the boundary as a builtin, an enum or a pointer, and the
ownership of returned objects is spelled out explicitly.
"""

import re
from dataclasses import dataclass, replace
from enum import Enum

from .cpp_model import (
    CppArgument,
    CppData,
    CppMethod,
    CppType,
    CppTypeData,
    CppVisibility,
    DispatchKind,
    ModelError,
)


class IndirectionChange(str, Enum):
    NONE = "none"
    VALUE_TO_POINTER = "value_to_pointer"
    REFERENCE_TO_POINTER = "reference_to_pointer"


class ArgumentMeaning(str, Enum):
    THIS = "this"
    ARGUMENT = "argument"
    RETURN_VALUE = "return_value"


class ReturnConvention(str, Enum):
    VOID = "void"
    DIRECT = "direct"
    REFERENCE_AS_POINTER = "reference_as_pointer"
    OUTPUT_ARGUMENT = "output_argument"
    NEW_POINTER = "new_pointer"


OPERATOR_NAMES = {
    "==": "eq",
    "!=": "ne",
    "<": "lt",
    "<=": "le",
    ">": "gt",
    ">=": "ge",
    "+": "add",
    "-": "sub",
    "*": "mul",
    "/": "div",
    "%": "rem",
    "=": "assign",
    "+=": "add_assign",
    "-=": "sub_assign",
    "*=": "mul_assign",
    "/=": "div_assign",
    "[]": "index",
    "()": "call",
    "<<": "shl",
    ">>": "shr",
    "!": "not",
    "&&": "and",
    "||": "or",
    "&": "bit_and",
    "|": "bit_or",
    "^": "bit_xor",
    "~": "bit_not",
    "++": "inc",
    "--": "dec",
}

UNARY_OPERATOR_NAMES = {
    "*": "indirection",
    "-": "neg",
    "+": "unary_plus",
    "&": "address_of",
}

_IDENT_RE = re.compile(r"[^0-9A-Za-z_]+")


def sanitize_identifier(text: str) -> str:
    """Collapse a C++ spelling into an identifier fragment ("QList<int>" -> "QList_int")."""
    return _IDENT_RE.sub("_", text.replace("::", "_")).strip("_")


# ===--- ABI entities ---=== #


@dataclass(frozen=True)
class CppFfiType:
    """A native type together with its ABI-side spelling."""

    original_type: CppType
    ffi_type: CppType
    conversion: IndirectionChange


@dataclass(frozen=True)
class CppFfiArgument:
    name: str
    argument_type: CppFfiType
    meaning: ArgumentMeaning
    native_index: int | None = None


@dataclass(frozen=True)
class CppFfiFunction:
    """One extern "C" function bridging exactly one native method.

    Attributes:
        name: Exported symbol name.
        arguments: ABI arguments in call order.
        return_type: ABI return type (void for OUTPUT_ARGUMENT).
        return_convention: How the native return value crosses the boundary.
        return_type_ffi_index: Index of the RETURN_VALUE argument when the
            result is constructed into caller storage, else None.
        method_index: Index of the bridged method in CppData.methods.
        cpp_method: The bridged method, with template parameters substituted.
        class_type: Receiver class (with template arguments), None for free
            functions.
        class_is_movable: True when instances of class_type live in caller
            storage; destructors then destroy in place instead of deleting.
    """

    name: str
    arguments: tuple[CppFfiArgument, ...]
    return_type: CppFfiType
    return_convention: ReturnConvention
    return_type_ffi_index: int | None
    method_index: int
    cpp_method: CppMethod
    class_type: CppType | None = None
    class_is_movable: bool = False

    @property
    def dispatch_kind(self) -> DispatchKind:
        return self.cpp_method.dispatch_kind

    @property
    def has_receiver(self) -> bool:
        return bool(self.arguments) and self.arguments[0].meaning == ArgumentMeaning.THIS


@dataclass(frozen=True)
class FfiDiagnostic:
    method_index: int
    method_text: str
    reason: str


@dataclass(frozen=True)
class FfiSynthesisResult:
    functions: tuple[CppFfiFunction, ...]
    diagnostics: tuple[FfiDiagnostic, ...]

    def filtered(self, used_names: set[str]) -> "FfiSynthesisResult":
        """Keep only the functions whose names are in used_names."""
        return FfiSynthesisResult(
            functions=tuple(f for f in self.functions if f.name in used_names),
            diagnostics=self.diagnostics,
        )


# ===--- Type lookup ---=== #


class TypeIndex:
    """Name lookup over the current model and its dependencies."""

    def __init__(self, data: CppData, dependencies: tuple[CppData, ...] = ()):
        self.data = data
        self._types: dict[str, CppTypeData] = {}
        self._abstract: set[str] = set()
        self._hidden_destructors: set[str] = set()
        self._instantiations: dict[str, set[tuple[CppType, ...]]] = {}
        for model in (*dependencies, data):
            for type_data in model.types:
                self._types[type_data.name] = type_data
            for method in model.methods:
                if method.scope is None:
                    continue
                if method.is_pure_virtual:
                    self._abstract.add(method.scope)
                if method.is_destructor and method.visibility != CppVisibility.PUBLIC:
                    self._hidden_destructors.add(method.scope)
            for name, arg_lists in model.template_instantiations.items():
                self._instantiations.setdefault(name, set()).update(arg_lists)

    def find(self, name: str) -> CppTypeData | None:
        return self._types.get(name)

    def is_class(self, cpp_type: CppType) -> bool:
        type_data = self.find(cpp_type.base)
        return type_data is not None and type_data.is_class

    def is_enum(self, cpp_type: CppType) -> bool:
        type_data = self.find(cpp_type.base)
        return type_data is not None and type_data.is_enum

    def is_abstract(self, class_name: str) -> bool:
        return class_name in self._abstract

    def is_deletable(self, cpp_type: CppType) -> bool:
        """Class whose destructor is callable from the shim."""
        return self.is_class(cpp_type) and cpp_type.base not in self._hidden_destructors

    def is_movable(self, cpp_type: CppType) -> bool:
        """Class with a known layout that may live in caller-owned storage."""
        type_data = self.find(cpp_type.base)
        if type_data is None or not self.is_deletable(cpp_type):
            return False
        if cpp_type.template_arguments or type_data.kind.template_arguments:
            return False
        return type_data.kind.size is not None and not self.is_abstract(type_data.name)

    def is_known(self, cpp_type: CppType) -> bool:
        if cpp_type.is_builtin and not cpp_type.template_arguments:
            return True
        type_data = self.find(cpp_type.base)
        if type_data is None:
            return False
        if type_data.is_template:
            if not cpp_type.template_arguments:
                return False
            args = cpp_type.template_arguments
            return args in self._instantiations.get(type_data.name, set()) and all(
                self.is_known(a) for a in args
            )
        return not cpp_type.template_arguments


# ===--- Synthesis ---=== #


def _instantiate_method(method: CppMethod, mapping: dict[str, CppType]) -> CppMethod:
    return replace(
        method,
        arguments=tuple(
            CppArgument(a.name, a.argument_type.substitute(mapping), a.has_default_value)
            for a in method.arguments
        ),
        return_type=(
            method.return_type.substitute(mapping) if method.return_type is not None else None
        ),
        conversion_operator=(
            method.conversion_operator.substitute(mapping)
            if method.conversion_operator is not None
            else None
        ),
    )


def operator_name(method: CppMethod) -> str:
    operator = method.operator or ""
    operand_count = len(method.arguments) + (1 if method.scope and not method.is_static else 0)
    if operator in ("++", "--"):
        suffix = "_postfix" if operand_count == 2 else ""
        return OPERATOR_NAMES[operator] + suffix
    if operand_count == 1 and operator in UNARY_OPERATOR_NAMES:
        return UNARY_OPERATOR_NAMES[operator]
    return OPERATOR_NAMES.get(operator, sanitize_identifier(operator) or "op")


def ffi_base_name(prefix: str, method: CppMethod, class_type: CppType | None) -> str:
    parts = [prefix] if prefix else []
    if class_type is not None:
        parts.append(sanitize_identifier(class_type.name_with_args()))
    if method.is_constructor:
        parts.append("new")
    elif method.is_destructor:
        parts.append("delete")
    elif method.operator:
        parts.append(f"operator_{operator_name(method)}")
    elif method.conversion_operator is not None:
        parts.append(f"convert_to_{sanitize_identifier(method.conversion_operator.to_cpp_code())}")
    else:
        parts.append(sanitize_identifier(method.name))
    return "_".join(parts)


def _return_of(method: CppMethod, class_type: CppType | None) -> CppType | None:
    if method.is_constructor:
        return class_type
    if method.conversion_operator is not None:
        return method.conversion_operator
    return method.return_type


def _ineligibility(
    method: CppMethod, class_type: CppType | None, index: TypeIndex
) -> str | None:
    if method.allows_variadic_arguments:
        return "variadic arguments have no stable ABI"
    if method.template_arguments:
        return "template methods are not instantiated"
    if method.is_constructor and class_type is not None and index.is_abstract(class_type.base):
        return "constructor of an abstract class"
    types = [a.argument_type for a in method.arguments]
    returned = _return_of(method, class_type)
    if returned is not None:
        types.append(returned)
    for cpp_type in types:
        if cpp_type.indirection == "rvalue_ref":
            return f"rvalue reference {cpp_type.to_cpp_code()} is not supported"
        if not index.is_known(cpp_type):
            return f"unknown type {cpp_type.to_cpp_code()}"
    if (
        returned is not None
        and returned.indirection == "none"
        and index.is_class(returned)
        and not index.is_deletable(returned)
    ):
        return f"returned {returned.to_cpp_code()} has no public destructor"
    for argument in method.arguments:
        if argument.argument_type.is_void:
            return "void argument"
    return None


def _argument_ffi_type(cpp_type: CppType, index: TypeIndex) -> CppFfiType:
    if cpp_type.indirection == "ref":
        return CppFfiType(cpp_type, cpp_type.with_indirection("ptr"), IndirectionChange.REFERENCE_TO_POINTER)
    if cpp_type.indirection == "none" and index.is_class(cpp_type):
        pointer = replace(cpp_type, indirection="ptr", is_const=True)
        return CppFfiType(cpp_type, pointer, IndirectionChange.VALUE_TO_POINTER)
    return CppFfiType(cpp_type, cpp_type, IndirectionChange.NONE)


def _argument_name(argument: CppArgument, position: int, taken: set[str]) -> str:
    name = sanitize_identifier(argument.name) or f"arg{position + 1}"
    if name in taken or name[0].isdigit():
        name = f"arg{position + 1}"
    taken.add(name)
    return name


def _build_function(
    method: CppMethod,
    method_index: int,
    class_type: CppType | None,
    index: TypeIndex,
) -> CppFfiFunction:
    arguments: list[CppFfiArgument] = []
    taken = {"this_ptr", "output"}
    movable = class_type is not None and index.is_movable(class_type)

    if class_type is not None and not method.is_static and not method.is_constructor:
        this_type = replace(class_type, indirection="ptr", is_const=method.is_const)
        arguments.append(
            CppFfiArgument(
                "this_ptr",
                CppFfiType(this_type, this_type, IndirectionChange.NONE),
                ArgumentMeaning.THIS,
            )
        )

    for position, argument in enumerate(method.arguments):
        arguments.append(
            CppFfiArgument(
                _argument_name(argument, position, taken),
                _argument_ffi_type(argument.argument_type, index),
                ArgumentMeaning.ARGUMENT,
                native_index=position,
            )
        )

    void = CppType("void")
    returned = None if method.is_destructor else _return_of(method, class_type)
    return_type_ffi_index = None
    if returned is None or returned.is_void:
        convention = ReturnConvention.VOID
        return_type = CppFfiType(void, void, IndirectionChange.NONE)
    elif returned.indirection == "none" and index.is_class(returned):
        pointer = replace(returned, indirection="ptr", is_const=False)
        if index.is_movable(returned):
            convention = ReturnConvention.OUTPUT_ARGUMENT
            return_type_ffi_index = len(arguments)
            arguments.append(
                CppFfiArgument(
                    "output",
                    CppFfiType(returned, pointer, IndirectionChange.VALUE_TO_POINTER),
                    ArgumentMeaning.RETURN_VALUE,
                )
            )
            return_type = CppFfiType(void, void, IndirectionChange.NONE)
        else:
            convention = ReturnConvention.NEW_POINTER
            return_type = CppFfiType(returned, pointer, IndirectionChange.VALUE_TO_POINTER)
    elif returned.indirection == "ref":
        convention = ReturnConvention.REFERENCE_AS_POINTER
        return_type = CppFfiType(
            returned, returned.with_indirection("ptr"), IndirectionChange.REFERENCE_TO_POINTER
        )
    else:
        convention = ReturnConvention.DIRECT
        return_type = CppFfiType(returned, returned, IndirectionChange.NONE)

    return CppFfiFunction(
        name="",
        arguments=tuple(arguments),
        return_type=return_type,
        return_convention=convention,
        return_type_ffi_index=return_type_ffi_index,
        method_index=method_index,
        cpp_method=method,
        class_type=class_type,
        class_is_movable=movable,
    )


def _assign_names(prefix: str, functions: list[CppFfiFunction]) -> list[CppFfiFunction]:
    base_names = [ffi_base_name(prefix, f.cpp_method, f.class_type) for f in functions]
    counts: dict[str, int] = {}
    for name in base_names:
        counts[name] = counts.get(name, 0) + 1

    used: set[str] = set()
    ordinals: dict[str, int] = {}
    result = []
    for function, base in zip(functions, base_names):
        if counts[base] == 1:
            name = base
        else:
            ordinals[base] = ordinals.get(base, 0) + 1
            name = f"{base}_{ordinals[base]}"
        while name in used or (name != base and name in counts):
            name += "_"
        used.add(name)
        result.append(replace(function, name=name))
    return result


def synthesize_ffi_functions(
    data: CppData,
    prefix: str,
    dependencies: tuple[CppData, ...] = (),
    strict: bool = False,
) -> FfiSynthesisResult:
    """Produce one ABI function per eligible public method.

    Methods of class templates are bridged once per registered instantiation.
    Excluded methods are reported as diagnostics, never dropped silently.

    Args:
        data: Enriched model of the generation unit.
        prefix: Symbol prefix for exported names (the wrapper library name).
        dependencies: Models of dependency libraries used for type lookup.
        strict: Raise ModelError for variadic methods instead of reporting them.

    Returns:
        FfiSynthesisResult with functions in method order.

    Raises:
        ModelError: In strict mode, on the first variadic method.
    """
    index = TypeIndex(data, dependencies)
    functions: list[CppFfiFunction] = []
    diagnostics: list[FfiDiagnostic] = []

    for method_index, method in enumerate(data.methods):
        if method.visibility != CppVisibility.PUBLIC:
            continue

        if method.scope is None:
            variants: list[tuple[CppMethod, CppType | None]] = [(method, None)]
        else:
            class_data = index.find(method.scope)
            if class_data is None or not class_data.is_class:
                diagnostics.append(
                    FfiDiagnostic(method_index, method.short_text(), f"unknown class {method.scope}")
                )
                continue
            if class_data.is_template:
                arg_lists = data.template_instantiations.get(class_data.name, ())
                if not arg_lists:
                    diagnostics.append(
                        FfiDiagnostic(
                            method_index,
                            method.short_text(),
                            f"class template {class_data.name} has no registered instantiation",
                        )
                    )
                    continue
                variants = []
                for args in arg_lists:
                    mapping = dict(zip(class_data.kind.template_arguments, args))
                    variants.append(
                        (
                            _instantiate_method(method, mapping),
                            CppType(class_data.name, template_arguments=tuple(args)),
                        )
                    )
            else:
                variants = [(method, CppType(class_data.name))]

        for variant, class_type in variants:
            reason = _ineligibility(variant, class_type, index)
            if reason is not None:
                if strict and variant.allows_variadic_arguments:
                    raise ModelError(f"Cannot bridge {variant.short_text()}: {reason}")
                diagnostics.append(FfiDiagnostic(method_index, variant.short_text(), reason))
                continue
            functions.append(_build_function(variant, method_index, class_type, index))

    return FfiSynthesisResult(
        functions=tuple(_assign_names(prefix, functions)),
        diagnostics=tuple(diagnostics),
    )
