"""C++ to Python bindings generator.

Reads the native model snapshot of a C++ library (the JSON produced by a
header front-end) and writes an installable package: an extern "C" shim,
ctypes prototypes and Python wrapper modules built on cxxbind.runtime.

Usage:
    python gen.py --input widgets.json --output-dir out/widgets --link widgets
"""

import argparse
import keyword
import re
import shlex
import tomllib
from dataclasses import dataclass
from pathlib import Path

from cxxbind.cpp_model import (
    CppData,
    ModelError,
    ensure_explicit_destructors,
    load_cached_cpp_data,
    load_cpp_data,
    save_cpp_data,
    split_by_headers,
    validate_cpp_data,
)
from cxxbind.emit import WriteConfig
from cxxbind.ffi import FfiDiagnostic
from cxxbind.target import CaptionError, WrapperKind, snake_case
from cxxbind.writer import (
    EXPORT_INFO_FILE,
    CommandError,
    DependencyInfo,
    FileWriteResult,
    PackageConfig,
    PackageWriteResult,
    write_package_tree,
)

DEFAULT_PACKAGE_VERSION = "0.1.0"
LIBRARY_SUFFIX = "_c_lib"


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    input_path: Path
    output_dir: Path
    package_name: str
    package_version: str
    library_name: str
    link_items: tuple[str, ...] = ()
    include_directives: tuple[str, ...] = ()
    include_dirs: tuple[Path, ...] = ()
    dependencies: tuple[Path, ...] = ()
    manifest_fragments: tuple[Path, ...] = ()
    cache_path: Path | None = None
    header: str | None = None
    target_platforms: tuple[str, ...] = ()
    post_commands: tuple[tuple[str, ...], ...] = ()
    local_paths: bool = False
    strict: bool = False


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "MISSING_OUTPUT_DIR",
    "INVALID_PACKAGE_NAME",
    "INVALID_VERSION",
    "INVALID_DEPENDENCY",
    "INVALID_MANIFEST",
    "INVALID_COMMAND",
    "UNKNOWN_HEADER",
}
_PACKAGE_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_VERSION_RE = re.compile(r"^\d+(\.\d+)*((a|b|rc)\d+)?(\.post\d+)?(\.dev\d+)?$")
_RESERVED_PACKAGE_NAMES = {"cxxbind", "ctypes", "enum", "gen"}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_package_name(name: str) -> str:
    if (
        _PACKAGE_NAME_RE.match(name)
        and not keyword.iskeyword(name)
        and name not in _RESERVED_PACKAGE_NAMES
    ):
        return name
    raise ConfigError(
        "INVALID_PACKAGE_NAME",
        f"Invalid package name: {name!r}",
        "Use a lowercase Python identifier (for example widgets or qt_core).",
    )


def validate_package_version(raw: str) -> str:
    if _VERSION_RE.match(raw):
        return raw
    raise ConfigError(
        "INVALID_VERSION",
        f"Invalid package version: {raw!r}",
        "Use a release number such as 0.1.0, 1.2rc1 or 2.0.0.dev3.",
    )


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def validate_dependency(path: Path) -> Path:
    path = validate_path_exists(
        path,
        "--dependency",
        "Pass the output directory of a previous generator run.",
    )
    if not (path / EXPORT_INFO_FILE).is_file():
        raise ConfigError(
            "INVALID_DEPENDENCY",
            f"{path} is not a generated package: {EXPORT_INFO_FILE} is missing.",
            "Generate the dependency first and pass its --output-dir here.",
        )
    return path


def validate_manifest_fragment(path: Path) -> Path:
    path = validate_path_exists(path, "--manifest-fragment")
    try:
        with open(path, "rb") as f:
            tomllib.load(f)
    except tomllib.TOMLDecodeError as err:
        raise ConfigError(
            "INVALID_MANIFEST",
            f"Manifest fragment {path} is not valid TOML: {err}",
            "Fix the fragment; it is merged into the generated pyproject.toml.",
        ) from err
    return path


def parse_post_command(raw: str) -> tuple[str, ...]:
    try:
        argv = shlex.split(raw)
    except ValueError as err:
        raise ConfigError(
            "INVALID_COMMAND",
            f"Cannot parse --post-command {raw!r}: {err}",
            "Quote the command as you would in a POSIX shell.",
        ) from err
    if not argv:
        raise ConfigError(
            "INVALID_COMMAND",
            "--post-command must not be empty.",
            'Pass a command line, for example --post-command "cmake -S c_lib -B c_lib/build".',
        )
    return tuple(argv)


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate Python bindings for a C++ library"
    )

    parser.add_argument("--input", type=Path, default=None)
    parser.add_argument("--output-dir", type=Path, default=None)
    parser.add_argument("--name", type=str, default=None)
    parser.add_argument(
        "--package-version", type=str, default=DEFAULT_PACKAGE_VERSION
    )

    parser.add_argument("--link", action="append", default=[])
    parser.add_argument("--include", action="append", default=[])
    parser.add_argument("--include-dir", action="append", type=Path, default=[])
    parser.add_argument("--dependency", action="append", type=Path, default=[])
    parser.add_argument(
        "--manifest-fragment", action="append", type=Path, default=[]
    )
    parser.add_argument("--target", action="append", default=[])
    parser.add_argument("--post-command", action="append", default=[])

    parser.add_argument("--cache", type=Path, default=None)
    parser.add_argument("--header", type=str, default=None)
    parser.add_argument("--local-paths", action="store_true", default=False)
    parser.add_argument("--strict", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig:
    input_path = validate_path_exists(
        args.input,
        "--input",
        "Pass the native model snapshot written by the header front-end:\n"
        "  --input /path/to/library.json",
    )
    if args.output_dir is None:
        raise ConfigError(
            "MISSING_OUTPUT_DIR",
            "--output-dir is required.",
            "Pass the directory the package should be written to.",
        )

    package_name = validate_package_name(
        args.name if args.name is not None else snake_case(input_path.stem)
    )
    package_version = validate_package_version(args.package_version)

    return GenerateConfig(
        input_path=input_path,
        output_dir=args.output_dir,
        package_name=package_name,
        package_version=package_version,
        library_name=f"{package_name}{LIBRARY_SUFFIX}",
        link_items=tuple(args.link),
        include_directives=tuple(args.include),
        include_dirs=tuple(args.include_dir),
        dependencies=tuple(validate_dependency(p) for p in args.dependency),
        manifest_fragments=tuple(
            validate_manifest_fragment(p) for p in args.manifest_fragment
        ),
        cache_path=args.cache,
        header=args.header,
        target_platforms=tuple(args.target),
        post_commands=tuple(parse_post_command(c) for c in args.post_command),
        local_paths=bool(args.local_paths),
        strict=bool(args.strict),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    return validate_config(parse_args(argv))


# ===--- Pipeline stages ---=== #


def load_model(config: GenerateConfig) -> CppData:
    """Return the enriched native model, from the cache when it is usable.

    A fresh snapshot is enriched (explicit destructors) and, when a cache
    path is configured, saved there for the next run.

    Raises:
        ModelError: If the snapshot cannot be read as a native model.
        OSError: If the snapshot or cache cannot be read or written.
    """
    cached = load_cached_cpp_data(config.cache_path)
    if cached is not None:
        print(f"  Cache: {config.cache_path}")
        return cached

    try:
        data = load_cpp_data(config.input_path)
    except (ValueError, KeyError, TypeError) as err:
        raise ModelError(f"Cannot read native model {config.input_path}: {err!r}") from err
    data = ensure_explicit_destructors(data)
    if config.cache_path is not None:
        save_cpp_data(config.cache_path, data)
    return data


def select_unit(data: CppData, header: str | None) -> tuple[CppData, tuple[CppData, ...]]:
    """Pick the part of the model to generate and the part used as context.

    Without a header the whole library is one unit. With a header, only its
    partition is generated; the types of every other header stay available
    for lookup.

    Raises:
        ConfigError: If no type or method is declared in header.
    """
    if header is None:
        return data, ()
    partitions = split_by_headers(data)
    if header not in partitions:
        known = ", ".join(partitions) or "(none)"
        raise ConfigError(
            "UNKNOWN_HEADER",
            f"No declarations come from header {header!r}.",
            f"Known headers: {known}",
        )
    unit = partitions[header]
    context = CppData(
        types=tuple(t for t in data.types if t.header != header),
        template_instantiations={
            name: arg_lists
            for name, arg_lists in data.template_instantiations.items()
            if name not in unit.template_instantiations
        },
    )
    return unit, (context,)


def build_write_config(config: GenerateConfig) -> WriteConfig:
    return WriteConfig(
        package_name=config.package_name,
        package_version=config.package_version,
        library_name=config.library_name,
        source_label=config.input_path.name,
        header=config.header,
    )


def build_package_config(config: GenerateConfig) -> PackageConfig:
    return PackageConfig(
        output_dir=config.output_dir,
        write_config=build_write_config(config),
        link_items=config.link_items,
        include_directives=config.include_directives,
        include_dirs=config.include_dirs,
        target_platforms=config.target_platforms,
        manifest_fragments=config.manifest_fragments,
        post_commands=config.post_commands,
        local_paths=config.local_paths,
        strict=config.strict,
    )


def run_generate(config: GenerateConfig) -> PackageWriteResult:
    """Execute the complete generation pipeline for a GenerateConfig.

    Stages: load dependencies -> load model (or cache) -> validate ->
    select unit -> synthesize, build target model and write the tree.

    Args:
        config: Validated GenerateConfig from build_config.

    Returns:
        PackageWriteResult describing every file written.

    Raises:
        ConfigError: If --header names no partition of the model.
        ModelError: Inconsistent model, or a variadic method in strict mode.
        CaptionError: An overload set cannot be given distinct names.
        CommandError: A post command failed; the previous output is kept.
        OSError: Unreadable input or filesystem write failure.
    """
    dependencies = tuple(DependencyInfo.load(path) for path in config.dependencies)
    for dependency in dependencies:
        print(
            f"  Dependency: {dependency.package_name} "
            f"({len(dependency.type_paths)} types)"
        )

    print(f"Loading: {config.input_path}")
    data = load_model(config)
    validate_cpp_data(data, tuple(d.cpp_data for d in dependencies))
    print(
        f"  Model: {len(data.types)} types, {len(data.methods)} methods, "
        f"{len(data.template_instantiations)} instantiated templates"
    )

    unit, context = select_unit(data, config.header)
    if config.header is not None:
        print(
            f"  Header: {config.header} "
            f"({len(unit.types)} types, {len(unit.methods)} methods)"
        )

    for include_dir in config.include_dirs:
        if not include_dir.is_dir():
            print(f"  Warning: include directory not found: {include_dir}")

    result = write_package_tree(build_package_config(config), unit, dependencies, context)
    print(
        f"  ABI: {len(result.ffi_result.functions)} functions, "
        f"{result.eliminated_ffi_functions} unused eliminated, "
        f"{len(result.ffi_result.diagnostics)} methods skipped"
    )
    print(
        f"  Written: {len(result.files)} files, "
        f"{result.total_lines} lines to {result.output_dir}"
    )

    summary = build_generation_summary(config, result)
    print_generation_summary(summary)

    return result


# ===--- Summary report ---=== #


@dataclass(frozen=True)
class GenerationCounts:
    """Item counts of one generated package.

    Attributes:
        enums: Enum wrappers.
        movable_classes: Classes whose instances may live in Python storage.
        immovable_classes: Classes only reachable through handles.
        functions: Associated and free wrapper functions.
        protocols: Protocol implementations (deletion and operators).
        ffi_functions: ABI functions kept in the shim.
        eliminated: ABI functions dropped because nothing calls them.
    """

    enums: int
    movable_classes: int
    immovable_classes: int
    functions: int
    protocols: int
    ffi_functions: int
    eliminated: int


@dataclass(frozen=True)
class GenerationSummary:
    """Complete, immutable data for the post-generation console report.

    Attributes:
        package_label: Package name and version, e.g. "widgets 0.1.0".
        library_name: Name of the C++ wrapper library.
        source_label: Snapshot file name, plus the header when generating one.
        output_dir: Output directory path as string.
        counts: Item counts from build_generation_counts.
        diagnostics: Methods left out of the shim, with reasons.
        files: Ordered write results from PackageWriteResult.files.
    """

    package_label: str
    library_name: str
    source_label: str
    output_dir: str
    counts: GenerationCounts
    diagnostics: tuple[FfiDiagnostic, ...]
    files: tuple[FileWriteResult, ...]


def build_generation_counts(result: PackageWriteResult) -> GenerationCounts:
    kinds = [t.kind for t in result.model.types]
    return GenerationCounts(
        enums=kinds.count(WrapperKind.ENUM),
        movable_classes=kinds.count(WrapperKind.MOVABLE_CLASS),
        immovable_classes=kinds.count(WrapperKind.IMMOVABLE_CLASS),
        functions=len(result.model.functions),
        protocols=len(result.model.trait_impls),
        ffi_functions=len(result.ffi_result.functions),
        eliminated=result.eliminated_ffi_functions,
    )


def build_generation_summary(
    config: GenerateConfig, result: PackageWriteResult
) -> GenerationSummary:
    source_label = config.input_path.name
    if config.header is not None:
        source_label += f" ({config.header})"
    return GenerationSummary(
        package_label=f"{config.package_name} {config.package_version}",
        library_name=config.library_name,
        source_label=source_label,
        output_dir=str(result.output_dir),
        counts=build_generation_counts(result),
        diagnostics=result.ffi_result.diagnostics,
        files=result.files,
    )


def format_generation_summary(summary: GenerationSummary) -> str:
    """Render a GenerationSummary as the multi-section console report.

    Class and ABI rows carry a split annotation only when it says something
    (immovable classes present, functions eliminated). The skipped-methods
    section is omitted when nothing was skipped. Returns a string with exactly
    one trailing newline.
    """
    counts = summary.counts
    lines: list[str] = []
    lines.append(f"{summary.package_label} bindings generated:")
    lines.append("")
    lines.append(f"  Library:    {summary.library_name}")
    lines.append(f"  Source:     {summary.source_label}")
    lines.append(f"  Output:     {summary.output_dir}")
    lines.append("")
    lines.append("  Wrappers generated:")

    def _row(label: str, count: int, note: str = "") -> str:
        row = f"    {label:<15}{count:>6}"
        return f"{row}  ({note})" if note else row

    classes = counts.movable_classes + counts.immovable_classes
    class_note = ""
    if counts.immovable_classes:
        class_note = (
            f"{counts.movable_classes} movable + {counts.immovable_classes} immovable"
        )
    lines.append(_row("Enums:", counts.enums))
    lines.append(_row("Classes:", classes, class_note))
    lines.append(_row("Functions:", counts.functions))
    lines.append(_row("Protocols:", counts.protocols))
    lines.append(
        _row(
            "ABI functions:",
            counts.ffi_functions,
            f"{counts.eliminated} unused eliminated" if counts.eliminated else "",
        )
    )

    if summary.diagnostics:
        lines.append("")
        lines.append(f"  Skipped methods: {len(summary.diagnostics)}")
        for diagnostic in summary.diagnostics:
            lines.append(f"    {diagnostic.method_text}: {diagnostic.reason}")

    lines.append("")
    lines.append("  Files written:")
    for file_result in summary.files:
        line_str = f"{file_result.line_count:>6,} lines"
        lines.append(f"    {file_result.filename:<28} {line_str}")

    total_lines = sum(f.line_count for f in summary.files)
    lines.append("")
    lines.append(f"  Total: {total_lines:,} lines across {len(summary.files)} files")
    lines.append("")
    build_dir = f"{summary.output_dir}/c_lib/build"
    lines.append(
        f"  Build: cmake -S {summary.output_dir}/c_lib -B {build_dir}"
        f" && cmake --build {build_dir}"
    )
    lines.append("")

    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Main generation ---=== #


def _report_config_error(err: ConfigError) -> None:
    print(f"Config error [{err.code}]: {err.message}")
    if err.suggestion:
        print(f"Hint: {err.suggestion}")


def main(argv=None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        _report_config_error(err)
        raise SystemExit(1) from err

    try:
        run_generate(config)
    except ConfigError as err:
        _report_config_error(err)
        raise SystemExit(1) from err
    except (ModelError, CaptionError) as err:
        print(f"Model error: {err}")
        raise SystemExit(1) from err
    except CommandError as err:
        print(f"Command error: {err}")
        raise SystemExit(1) from err
    except OSError as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except (RuntimeError, ValueError) as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
