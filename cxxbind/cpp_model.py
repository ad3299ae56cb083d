"""Native (C++) semantic model of a wrapped library.

Holds the already-parsed facts handed over by the header front-end: types,
methods and template instantiations. Also hosts the enrichment passes that run
before ABI synthesis and the JSON snapshot format used for caching.
"""

import json
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

SNAPSHOT_SCHEMA_VERSION = 3

BUILTIN_TYPES = {
    "void",
    "bool",
    "char",
    "signed char",
    "unsigned char",
    "short",
    "unsigned short",
    "int",
    "unsigned int",
    "long",
    "unsigned long",
    "long long",
    "unsigned long long",
    "float",
    "double",
    "long double",
    "size_t",
    "int8_t",
    "int16_t",
    "int32_t",
    "int64_t",
    "uint8_t",
    "uint16_t",
    "uint32_t",
    "uint64_t",
}

INDIRECTIONS = ("none", "ptr", "ref", "ptr_ptr", "rvalue_ref")

SYNTHESIZED_DESTRUCTOR_INDEX = 1000


class ModelError(Exception):
    """Fatal inconsistency in the native model, reported before emission."""


# ===--- Types ---=== #


@dataclass(frozen=True)
class CppType:
    """Reference to a native type at one level of indirection.

    Attributes:
        base: Builtin name ("int"), class or enum name ("Widget",
            "ns::Widget") or template parameter name ("T").
        indirection: One of INDIRECTIONS.
        is_const: Constness of the pointee (or of the value for "none").
        template_arguments: Arguments of a template class instantiation,
            e.g. (int,) for QList<int>. None for non-template types.
    """

    base: str
    indirection: str = "none"
    is_const: bool = False
    template_arguments: tuple["CppType", ...] | None = None

    def __post_init__(self) -> None:
        if self.indirection not in INDIRECTIONS:
            raise ValueError(f"Unknown indirection: {self.indirection!r}")

    @property
    def is_void(self) -> bool:
        return self.base == "void" and self.indirection == "none"

    @property
    def is_builtin(self) -> bool:
        return self.base in BUILTIN_TYPES

    @property
    def is_pointer(self) -> bool:
        return self.indirection in ("ptr", "ptr_ptr")

    @property
    def is_reference(self) -> bool:
        return self.indirection in ("ref", "rvalue_ref")

    def name_with_args(self) -> str:
        """Base name including template arguments, e.g. "QList<int>"."""
        if not self.template_arguments:
            return self.base
        args = ", ".join(a.to_cpp_code() for a in self.template_arguments)
        return f"{self.base}<{args}>"

    def to_cpp_code(self) -> str:
        text = self.name_with_args()
        if self.is_const:
            text = f"const {text}"
        suffix = {"none": "", "ptr": "*", "ref": "&", "ptr_ptr": "**", "rvalue_ref": "&&"}
        return text + suffix[self.indirection]

    def with_indirection(self, indirection: str) -> "CppType":
        return replace(self, indirection=indirection)

    def value_type(self) -> "CppType":
        """The same type without indirection or constness."""
        return CppType(self.base, template_arguments=self.template_arguments)

    def substitute(self, mapping: dict[str, "CppType"]) -> "CppType":
        """Replace template parameter names with concrete argument types."""
        if self.base in mapping and not self.template_arguments:
            target = mapping[self.base]
            return CppType(
                target.base,
                self.indirection,
                self.is_const or target.is_const,
                target.template_arguments,
            )
        if self.template_arguments:
            return replace(
                self,
                template_arguments=tuple(
                    a.substitute(mapping) for a in self.template_arguments
                ),
            )
        return self


_SPACE_RE = re.compile(r"\s+")


def _split_template_args(text: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current = ""
    for ch in text:
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        current += ch
    if current.strip():
        parts.append(current)
    return parts


def parse_cpp_type(text: str) -> CppType:
    """Parse a C++ type spelling into a CppType.

    Supports leading or trailing const, one level of template arguments per
    name (nested templates recurse), and the "*", "**", "&", "&&" suffixes.

    Raises:
        ValueError: If the spelling is empty or has unbalanced brackets.
    """
    spelled = _SPACE_RE.sub(" ", text.strip())
    if not spelled:
        raise ValueError("Empty type spelling")

    indirection = "none"
    for suffix, kind in (("&&", "rvalue_ref"), ("**", "ptr_ptr"), ("*", "ptr"), ("&", "ref")):
        if spelled.endswith(suffix):
            indirection = kind
            spelled = spelled[: -len(suffix)].strip()
            break

    is_const = False
    if spelled.startswith("const "):
        is_const = True
        spelled = spelled[len("const ") :].strip()
    if spelled.endswith(" const"):
        is_const = True
        spelled = spelled[: -len(" const")].strip()

    template_arguments = None
    if "<" in spelled:
        if not spelled.endswith(">") or spelled.count("<") != spelled.count(">"):
            raise ValueError(f"Unbalanced template brackets in {text!r}")
        open_index = spelled.index("<")
        inner = spelled[open_index + 1 : -1]
        spelled = spelled[:open_index].strip()
        template_arguments = tuple(parse_cpp_type(a) for a in _split_template_args(inner))

    return CppType(spelled, indirection, is_const, template_arguments)


# ===--- Type entities ---=== #


class CppVisibility(str, Enum):
    PUBLIC = "public"
    PROTECTED = "protected"
    PRIVATE = "private"


@dataclass(frozen=True)
class EnumValue:
    name: str
    value: int


@dataclass(frozen=True)
class CppEnumKind:
    values: tuple[EnumValue, ...]


@dataclass(frozen=True)
class CppClassField:
    name: str
    field_type: CppType
    visibility: CppVisibility = CppVisibility.PUBLIC


@dataclass(frozen=True)
class CppClassKind:
    """Class-kind payload of a type entity.

    Attributes:
        size: sizeof() in bytes, or None when the class is opaque.
        bases: Ordered base class references.
        fields: Declared data members.
        template_arguments: Template parameter names ("T", ...) for class
            templates, None for ordinary classes.
    """

    size: int | None = None
    bases: tuple[CppType, ...] = ()
    fields: tuple[CppClassField, ...] = ()
    template_arguments: tuple[str, ...] | None = None


@dataclass(frozen=True)
class CppTypeData:
    name: str
    header: str
    kind: CppEnumKind | CppClassKind

    @property
    def is_class(self) -> bool:
        return isinstance(self.kind, CppClassKind)

    @property
    def is_enum(self) -> bool:
        return isinstance(self.kind, CppEnumKind)

    @property
    def is_template(self) -> bool:
        return self.is_class and bool(self.kind.template_arguments)


# ===--- Method entities ---=== #


class DispatchKind(str, Enum):
    STATIC_SYMBOL = "static_symbol"
    VTABLE_SLOT = "vtable_slot"


@dataclass(frozen=True)
class CppOrigin:
    include_file: str
    location: tuple[str, int, int] | None = None


@dataclass(frozen=True)
class CppArgument:
    name: str
    argument_type: CppType
    has_default_value: bool = False


@dataclass(frozen=True)
class CppMethod:
    """One callable of the library: free function or class member.

    Methods are value objects. Overloads share a name and are told apart
    later by the target model.
    """

    name: str
    origin: CppOrigin
    scope: str | None = None
    arguments: tuple[CppArgument, ...] = ()
    return_type: CppType | None = None
    allows_variadic_arguments: bool = False
    is_virtual: bool = False
    is_pure_virtual: bool = False
    is_const: bool = False
    is_static: bool = False
    visibility: CppVisibility = CppVisibility.PUBLIC
    is_signal: bool = False
    is_slot: bool = False
    is_constructor: bool = False
    is_destructor: bool = False
    operator: str | None = None
    conversion_operator: CppType | None = None
    template_arguments: tuple[str, ...] | None = None
    original_index: int = 0

    @property
    def dispatch_kind(self) -> DispatchKind:
        if self.is_virtual or self.is_pure_virtual:
            return DispatchKind.VTABLE_SLOT
        return DispatchKind.STATIC_SYMBOL

    def short_text(self) -> str:
        """C++ declaration used in generated documentation."""
        args = ", ".join(
            f"{a.argument_type.to_cpp_code()} {a.name}".strip() for a in self.arguments
        )
        if self.allows_variadic_arguments:
            args = f"{args}, ..." if args else "..."
        qualified = f"{self.scope}::{self.name}" if self.scope else self.name
        text = f"{qualified}({args})"
        if self.is_const:
            text += " const"
        if self.return_type is not None:
            text = f"{self.return_type.to_cpp_code()} {text}"
        prefix = ""
        if self.is_static:
            prefix = "static "
        elif self.is_virtual or self.is_pure_virtual:
            prefix = "virtual "
        if self.is_pure_virtual:
            text += " = 0"
        return prefix + text


# ===--- Aggregate model ---=== #


@dataclass(frozen=True)
class CppData:
    """All types, methods and instantiations of one generation unit."""

    types: tuple[CppTypeData, ...] = ()
    methods: tuple[CppMethod, ...] = ()
    template_instantiations: dict[str, tuple[tuple[CppType, ...], ...]] = field(
        default_factory=dict
    )


def ensure_explicit_destructors(data: CppData) -> CppData:
    """Add a public non-virtual destructor to every class that lacks one.

    Existing methods are scanned first, so running the pass again on its own
    output adds nothing.
    """
    classes_with_destructor = {
        m.scope for m in data.methods if m.is_destructor and m.scope is not None
    }
    added: list[CppMethod] = []
    for type_data in data.types:
        if not type_data.is_class or type_data.name in classes_with_destructor:
            continue
        added.append(
            CppMethod(
                name=f"~{type_data.name.split('::')[-1]}",
                origin=CppOrigin(include_file=type_data.header),
                scope=type_data.name,
                is_destructor=True,
                original_index=SYNTHESIZED_DESTRUCTOR_INDEX,
            )
        )
    if not added:
        return data
    return replace(data, methods=data.methods + tuple(added))


def split_by_headers(data: CppData) -> dict[str, CppData]:
    """Partition the model by declaring header.

    Methods go to the partition of their origin header, types to the
    partition of their own header. Instantiation entries follow their
    class-kind type.
    """
    methods: dict[str, list[CppMethod]] = {}
    types: dict[str, list[CppTypeData]] = {}
    instantiations: dict[str, dict[str, tuple[tuple[CppType, ...], ...]]] = {}

    for method in data.methods:
        methods.setdefault(method.origin.include_file, []).append(method)
    for type_data in data.types:
        types.setdefault(type_data.header, []).append(type_data)
        if type_data.is_class and type_data.name in data.template_instantiations:
            instantiations.setdefault(type_data.header, {})[type_data.name] = (
                data.template_instantiations[type_data.name]
            )

    result: dict[str, CppData] = {}
    for header in sorted(set(methods) | set(types)):
        result[header] = CppData(
            types=tuple(types.get(header, ())),
            methods=tuple(methods.get(header, ())),
            template_instantiations=instantiations.get(header, {}),
        )
    return result


# ===--- Validation ---=== #


def validate_cpp_data(data: CppData, dependencies: tuple[CppData, ...] = ()) -> None:
    """Reject inconsistent input before any downstream stage runs.

    Raises:
        ModelError: On duplicate type names, unknown or non-class bases,
            inheritance cycles, or instantiation entries that do not name a
            known class template (or have the wrong number of arguments).
    """
    seen: set[str] = set()
    for type_data in data.types:
        if type_data.name in seen:
            raise ModelError(f"Duplicate type entity: {type_data.name}")
        seen.add(type_data.name)

    known: dict[str, CppTypeData] = {}
    for dep in dependencies:
        for type_data in dep.types:
            known[type_data.name] = type_data
    for type_data in data.types:
        known[type_data.name] = type_data

    bases: dict[str, list[str]] = {}
    for type_data in data.types:
        if not type_data.is_class:
            continue
        names = []
        for base in type_data.kind.bases:
            target = known.get(base.base)
            if target is None or not target.is_class:
                raise ModelError(
                    f"Class {type_data.name} has unknown base class {base.to_cpp_code()}"
                )
            names.append(base.base)
        bases[type_data.name] = names

    _check_inheritance_cycles(bases)

    for name, arg_lists in data.template_instantiations.items():
        target = known.get(name)
        if target is None:
            raise ModelError(f"Template instantiation refers to unknown type {name}")
        if not target.is_class or not target.kind.template_arguments:
            raise ModelError(
                f"Template instantiation refers to {name}, which is not a class template"
            )
        expected = len(target.kind.template_arguments)
        for args in arg_lists:
            if len(args) != expected:
                raise ModelError(
                    f"Instantiation {name}<{', '.join(a.to_cpp_code() for a in args)}> "
                    f"has {len(args)} arguments, expected {expected}"
                )


def _check_inheritance_cycles(bases: dict[str, list[str]]) -> None:
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(name: str, chain: list[str]) -> None:
        if name in done:
            return
        if name in visiting:
            cycle = " -> ".join(chain[chain.index(name) :] + [name])
            raise ModelError(f"Inheritance cycle: {cycle}")
        visiting.add(name)
        for base in bases.get(name, ()):
            visit(base, chain + [name])
        visiting.discard(name)
        done.add(name)

    for name in sorted(bases):
        visit(name, [])


# ===--- Snapshot serialization ---=== #


def cpp_type_to_dict(cpp_type: CppType) -> dict:
    result: dict = {"base": cpp_type.base}
    if cpp_type.indirection != "none":
        result["indirection"] = cpp_type.indirection
    if cpp_type.is_const:
        result["const"] = True
    if cpp_type.template_arguments is not None:
        result["template_arguments"] = [
            cpp_type_to_dict(a) for a in cpp_type.template_arguments
        ]
    return result


def cpp_type_from_dict(raw: dict | str) -> CppType:
    """Build a CppType from its snapshot form or from a C++ spelling."""
    if isinstance(raw, str):
        return parse_cpp_type(raw)
    template_arguments = raw.get("template_arguments")
    return CppType(
        base=raw["base"],
        indirection=raw.get("indirection", "none"),
        is_const=bool(raw.get("const", False)),
        template_arguments=(
            tuple(cpp_type_from_dict(a) for a in template_arguments)
            if template_arguments is not None
            else None
        ),
    )


def _type_data_to_dict(type_data: CppTypeData) -> dict:
    result: dict = {"name": type_data.name, "header": type_data.header}
    if type_data.is_enum:
        result["kind"] = "enum"
        result["values"] = [{"name": v.name, "value": v.value} for v in type_data.kind.values]
        return result
    kind = type_data.kind
    result["kind"] = "class"
    result["size"] = kind.size
    result["bases"] = [cpp_type_to_dict(b) for b in kind.bases]
    result["fields"] = [
        {
            "name": f.name,
            "type": cpp_type_to_dict(f.field_type),
            "visibility": f.visibility.value,
        }
        for f in kind.fields
    ]
    if kind.template_arguments is not None:
        result["template_arguments"] = list(kind.template_arguments)
    return result


def _type_data_from_dict(raw: dict) -> CppTypeData:
    if raw["kind"] == "enum":
        kind: CppEnumKind | CppClassKind = CppEnumKind(
            values=tuple(EnumValue(v["name"], int(v["value"])) for v in raw["values"])
        )
    elif raw["kind"] == "class":
        template_arguments = raw.get("template_arguments")
        kind = CppClassKind(
            size=raw.get("size"),
            bases=tuple(cpp_type_from_dict(b) for b in raw.get("bases", [])),
            fields=tuple(
                CppClassField(
                    name=f["name"],
                    field_type=cpp_type_from_dict(f["type"]),
                    visibility=CppVisibility(f.get("visibility", "public")),
                )
                for f in raw.get("fields", [])
            ),
            template_arguments=(
                tuple(template_arguments) if template_arguments is not None else None
            ),
        )
    else:
        raise ValueError(f"Unknown type kind: {raw['kind']!r}")
    return CppTypeData(name=raw["name"], header=raw["header"], kind=kind)


_METHOD_FLAGS = (
    "allows_variadic_arguments",
    "is_virtual",
    "is_pure_virtual",
    "is_const",
    "is_static",
    "is_signal",
    "is_slot",
    "is_constructor",
    "is_destructor",
)


def _method_to_dict(method: CppMethod) -> dict:
    result: dict = {
        "name": method.name,
        "scope": method.scope,
        "origin": {"include_file": method.origin.include_file},
        "arguments": [
            {
                "name": a.name,
                "type": cpp_type_to_dict(a.argument_type),
                "has_default_value": a.has_default_value,
            }
            for a in method.arguments
        ],
        "return_type": (
            cpp_type_to_dict(method.return_type) if method.return_type is not None else None
        ),
        "visibility": method.visibility.value,
        "operator": method.operator,
        "conversion_operator": (
            cpp_type_to_dict(method.conversion_operator)
            if method.conversion_operator is not None
            else None
        ),
        "template_arguments": (
            list(method.template_arguments) if method.template_arguments is not None else None
        ),
        "original_index": method.original_index,
    }
    if method.origin.location is not None:
        result["origin"]["location"] = list(method.origin.location)
    for flag in _METHOD_FLAGS:
        if getattr(method, flag):
            result[flag] = True
    return result


def _method_from_dict(raw: dict, index: int) -> CppMethod:
    origin_raw = raw["origin"]
    location = origin_raw.get("location")
    return_type = raw.get("return_type")
    conversion = raw.get("conversion_operator")
    template_arguments = raw.get("template_arguments")
    return CppMethod(
        name=raw["name"],
        origin=CppOrigin(
            include_file=origin_raw["include_file"],
            location=tuple(location) if location is not None else None,
        ),
        scope=raw.get("scope"),
        arguments=tuple(
            CppArgument(
                name=a.get("name", ""),
                argument_type=cpp_type_from_dict(a["type"]),
                has_default_value=bool(a.get("has_default_value", False)),
            )
            for a in raw.get("arguments", [])
        ),
        return_type=cpp_type_from_dict(return_type) if return_type is not None else None,
        visibility=CppVisibility(raw.get("visibility", "public")),
        operator=raw.get("operator"),
        conversion_operator=(
            cpp_type_from_dict(conversion) if conversion is not None else None
        ),
        template_arguments=(
            tuple(template_arguments) if template_arguments is not None else None
        ),
        original_index=int(raw.get("original_index", index)),
        **{flag: bool(raw.get(flag, False)) for flag in _METHOD_FLAGS},
    )


def cpp_data_to_dict(data: CppData) -> dict:
    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "types": [_type_data_to_dict(t) for t in data.types],
        "methods": [_method_to_dict(m) for m in data.methods],
        "template_instantiations": {
            name: [[cpp_type_to_dict(a) for a in args] for args in arg_lists]
            for name, arg_lists in sorted(data.template_instantiations.items())
        },
    }


def cpp_data_from_dict(raw: dict) -> CppData:
    """Build a CppData from a snapshot dictionary.

    A missing schema_version is accepted (front-end output); a different one
    is rejected.

    Raises:
        ValueError: On schema mismatch or malformed entries.
        KeyError: On missing required keys.
    """
    version = raw.get("schema_version", SNAPSHOT_SCHEMA_VERSION)
    if version != SNAPSHOT_SCHEMA_VERSION:
        raise ValueError(
            f"Snapshot schema version {version} does not match {SNAPSHOT_SCHEMA_VERSION}"
        )
    return CppData(
        types=tuple(_type_data_from_dict(t) for t in raw.get("types", [])),
        methods=tuple(
            _method_from_dict(m, index) for index, m in enumerate(raw.get("methods", []))
        ),
        template_instantiations={
            name: tuple(tuple(cpp_type_from_dict(a) for a in args) for args in arg_lists)
            for name, arg_lists in raw.get("template_instantiations", {}).items()
        },
    )


def load_cpp_data(path: Path) -> CppData:
    with open(path, encoding="utf-8") as f:
        return cpp_data_from_dict(json.load(f))


def save_cpp_data(path: Path, data: CppData) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(cpp_data_to_dict(data), indent=2, sort_keys=True)
    path.write_text(text + "\n", encoding="utf-8")


def load_cached_cpp_data(path: Path | None) -> CppData | None:
    """Load an enriched model cache, or None when it cannot be used.

    A cache that fails to parse against the current schema is stale: it is
    deleted and the caller falls back to the front-end snapshot.
    """
    if path is None or not Path(path).is_file():
        return None
    try:
        return load_cpp_data(path)
    except (ValueError, KeyError, TypeError) as err:
        print(f"  Discarding stale model cache {path}: {err}")
        Path(path).unlink()
        return None
