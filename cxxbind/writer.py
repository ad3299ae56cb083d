"""Output tree writer.

Runs the back half of the pipeline for one generation unit: ABI synthesis,
target model, dead-code elimination of unreferenced ABI functions, and
rendering of every output file. The tree is built next to the destination
and swapped in only when everything, post commands included, succeeded.
"""

import json
import math
import re
import shutil
import subprocess
import tomllib
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path

from . import __version__
from .cpp_model import CppData, load_cpp_data, save_cpp_data
from .emit import (
    InitModuleSpec,
    ModuleSpec,
    WriteConfig,
    assemble_init_source,
    assemble_module_source,
    render_cmakelists,
    render_cpp_source,
    render_ffi_module,
    render_global_header,
    render_init_module,
    render_python_modules,
    render_size_probe,
)
from .ffi import FfiSynthesisResult, TypeIndex, synthesize_ffi_functions
from .target import (
    TargetModel,
    TargetPath,
    build_target_model,
    export_type_paths,
    used_ffi_function_names,
)

RUNTIME_DISTRIBUTION = "cxx-bindings-gen"
BUILD_METADATA_FILE = "build_metadata.json"
EXPORT_INFO_FILE = "export_info.json"
CPP_DATA_FILE = "cpp_data.json"
MANIFEST_FILE = "pyproject.toml"
C_LIB_DIR = "c_lib"


# ===--- Manifest ---=== #


def merge_manifest(a: dict, b: dict) -> dict:
    """Deep-merge manifest table b into a copy of a.

    Arrays concatenate with b's items after a's, tables merge key by key,
    anything else (including type conflicts) takes b's value. Neither input
    is modified.
    """
    result = dict(a)
    for key, b_value in b.items():
        a_value = result.get(key)
        if isinstance(a_value, list) and isinstance(b_value, list):
            result[key] = a_value + b_value
        elif isinstance(a_value, dict) and isinstance(b_value, dict):
            result[key] = merge_manifest(a_value, b_value)
        else:
            result[key] = b_value
    return result


_BARE_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _toml_key(key: str) -> str:
    return key if _BARE_KEY_RE.match(key) else json.dumps(key, ensure_ascii=False)


def _toml_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "nan"
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return repr(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(v) for v in value) + "]"
    if isinstance(value, dict):
        items = ", ".join(f"{_toml_key(k)} = {_toml_value(v)}" for k, v in value.items())
        return "{ " + items + " }" if items else "{}"
    raise TypeError(f"Cannot render {type(value).__name__} as TOML")


def _render_table(table: dict, prefix: tuple[str, ...], lines: list[str]) -> None:
    scalars = [(k, v) for k, v in table.items() if not isinstance(v, dict)]
    tables = [(k, v) for k, v in table.items() if isinstance(v, dict)]
    if prefix and (scalars or not tables):
        if lines:
            lines.append("")
        lines.append("[" + ".".join(_toml_key(p) for p in prefix) + "]")
    for key, value in scalars:
        lines.append(f"{_toml_key(key)} = {_toml_value(value)}")
    for key, value in tables:
        _render_table(value, (*prefix, key), lines)


def render_toml(table: dict) -> str:
    """Render a manifest table as TOML text.

    Key order follows the input, so equal inputs give byte-identical text.
    Nested tables become [section] headers; tables inside arrays are
    rendered inline.
    """
    lines: list[str] = []
    _render_table(table, (), lines)
    return "\n".join(lines) + "\n"


def load_manifest_fragment(path: Path) -> dict:
    """Read a user manifest fragment.

    Raises:
        tomllib.TOMLDecodeError: If the file is not valid TOML.
        OSError: If the file cannot be read.
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


# ===--- Dependencies ---=== #


@dataclass(frozen=True)
class DependencyInfo:
    """A previously generated output tree this unit builds on.

    Attributes:
        package_name: Python package of the dependency wrapper.
        library_name: C++ wrapper library of the dependency.
        output_dir: Root of the dependency's output tree.
        cpp_data: Enriched native model of the dependency.
        type_paths: Wrapper path of every dependency type, keyed by C++ name.
    """

    package_name: str
    library_name: str
    output_dir: Path
    cpp_data: CppData
    type_paths: dict[str, TargetPath]

    @classmethod
    def load(cls, path: Path) -> "DependencyInfo":
        """Read export_info.json and cpp_data.json from an output tree.

        Raises:
            OSError: If either file is missing or unreadable.
            ValueError: If either file is malformed.
        """
        path = Path(path)
        with open(path / EXPORT_INFO_FILE, encoding="utf-8") as f:
            raw = json.load(f)
        try:
            package_name = raw["package_name"]
            library_name = raw["library_name"]
            type_paths = {
                cpp_name: TargetPath(package_name, entry["module"], entry["name"])
                for cpp_name, entry in raw.get("types", {}).items()
            }
        except (KeyError, TypeError) as err:
            raise ValueError(f"Malformed {path / EXPORT_INFO_FILE}: {err!r}") from err
        try:
            cpp_data = load_cpp_data(path / CPP_DATA_FILE)
        except (KeyError, TypeError) as err:
            raise ValueError(f"Malformed {path / CPP_DATA_FILE}: {err!r}") from err
        return cls(
            package_name=package_name,
            library_name=library_name,
            output_dir=path,
            cpp_data=cpp_data,
            type_paths=type_paths,
        )


def _dependency_requirement(name: str, path: Path, local_paths: bool) -> str:
    if local_paths:
        return f"{name} @ {Path(path).resolve().as_uri()}"
    return name


def build_manifest(
    config: "PackageConfig", dependencies: tuple[DependencyInfo, ...] = ()
) -> dict:
    """Generated base manifest, before user fragments are merged in."""
    write_config = config.write_config
    runtime_root = Path(__file__).resolve().parent.parent
    requirements = [
        _dependency_requirement(RUNTIME_DISTRIBUTION, runtime_root, True)
        if config.local_paths
        else f"{RUNTIME_DISTRIBUTION}>={__version__}"
    ]
    requirements.extend(
        _dependency_requirement(d.package_name, d.output_dir, config.local_paths)
        for d in dependencies
    )
    return {
        "build-system": {
            "requires": ["setuptools>=61"],
            "build-backend": "setuptools.build_meta",
        },
        "project": {
            "name": write_config.package_name,
            "version": write_config.package_version,
            "requires-python": ">=3.11",
            "dependencies": requirements,
        },
        "tool": {
            "setuptools": {"packages": [write_config.package_name]},
            "cxxbind": {
                "library": write_config.library_name,
                "link": list(config.link_items),
                "targets": list(config.target_platforms),
            },
        },
    }


# ===--- External commands ---=== #


class CommandError(Exception):
    """An external command exited non-zero or could not be started."""

    def __init__(self, command: list[str], output: str, returncode: int | None = None):
        self.command = command
        self.output = output
        self.returncode = returncode
        status = f"exit code {returncode}" if returncode is not None else "not started"
        super().__init__(f"Command failed ({status}): {' '.join(command)}\n{output}".rstrip())


def run_command(argv: list[str], cwd: Path) -> str:
    """Run argv in cwd and return its combined output.

    Raises:
        CommandError: On a non-zero exit or a missing executable. Not retried.
    """
    argv = [str(a) for a in argv]
    try:
        completed = subprocess.run(
            argv,
            cwd=cwd,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as err:
        raise CommandError(argv, str(err)) from err
    output = (completed.stdout or "") + (completed.stderr or "")
    if completed.returncode != 0:
        raise CommandError(argv, output, completed.returncode)
    return output


# ===--- Write result types ---=== #


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing a single generated file.

    Attributes:
        filename: Path relative to the output root, "/"-separated.
        path: Absolute path of the file once the tree is in place.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    filename: str
    path: Path
    line_count: int
    byte_count: int


@dataclass(frozen=True)
class PackageWriteResult:
    """Result of writing one generation unit.

    Attributes:
        output_dir: Root of the written tree.
        files: One FileWriteResult per file, in write order.
        model: Target model the Python sources were rendered from.
        ffi_result: ABI functions left after dead-code elimination, with all
            synthesis diagnostics.
        eliminated_ffi_functions: Number of ABI functions dropped as unused.
    """

    output_dir: Path
    files: tuple[FileWriteResult, ...]
    model: TargetModel
    ffi_result: FfiSynthesisResult
    eliminated_ffi_functions: int = 0

    @property
    def total_lines(self) -> int:
        """Sum of line_count across all written files."""
        return sum(f.line_count for f in self.files)


@dataclass(frozen=True)
class PackageConfig:
    """Everything write_package_tree needs besides the models.

    Attributes:
        output_dir: Destination of the output tree.
        write_config: Names and labels shared by all rendered files.
        link_items: Native libraries the wrapper links against.
        include_directives: Headers included by the global header. Derived
            from the model when empty.
        include_dirs: Include search directories for the native build.
        target_platforms: Platform identifiers recorded for the build driver.
        manifest_fragments: User TOML fragments merged into pyproject.toml.
        post_commands: Commands run inside the finished tree before the swap.
        local_paths: Write dependencies as local file:// requirements.
        strict: Treat variadic methods as fatal model errors.
    """

    output_dir: Path
    write_config: WriteConfig
    link_items: tuple[str, ...] = ()
    include_directives: tuple[str, ...] = ()
    include_dirs: tuple[Path, ...] = ()
    target_platforms: tuple[str, ...] = ()
    manifest_fragments: tuple[Path, ...] = ()
    post_commands: tuple[tuple[str, ...], ...] = ()
    local_paths: bool = False
    strict: bool = False


# ===--- Writer I/O functions ---=== #


def _write_file(root: Path, final_root: Path, relative: str, content: str) -> FileWriteResult:
    file_path = root / relative
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(content, encoding="utf-8")
    return FileWriteResult(
        filename=relative,
        path=final_root / relative,
        line_count=content.count("\n"),
        byte_count=len(file_path.read_bytes()),
    )


def write_module(
    root: Path, final_root: Path, package_dir: str, config: WriteConfig, spec: ModuleSpec
) -> FileWriteResult:
    content = assemble_module_source(config, spec)
    return _write_file(root, final_root, f"{package_dir}/{spec.filename}", content)


def write_init_module(
    root: Path,
    final_root: Path,
    package_dir: str,
    config: WriteConfig,
    init_spec: InitModuleSpec,
) -> FileWriteResult:
    content = assemble_init_source(config, init_spec)
    return _write_file(root, final_root, f"{package_dir}/__init__.py", content)


def default_include_directives(data: CppData) -> tuple[str, ...]:
    """Every header that declares a type or method of the unit, sorted."""
    headers = {t.header for t in data.types}
    headers.update(m.origin.include_file for m in data.methods)
    return tuple(sorted(headers))


def _swap_into_place(built: Path, destination: Path) -> None:
    previous = destination.with_name(destination.name + ".old")
    if previous.exists():
        shutil.rmtree(previous)
    if destination.exists():
        destination.rename(previous)
    try:
        built.rename(destination)
    except OSError:
        if previous.exists() and not destination.exists():
            previous.rename(destination)
        raise
    if previous.exists():
        shutil.rmtree(previous)


def write_package_tree(
    config: PackageConfig,
    data: CppData,
    dependencies: tuple[DependencyInfo, ...] = (),
    context: tuple[CppData, ...] = (),
) -> PackageWriteResult:
    """Generate and write the complete output tree for one unit.

    The tree is rendered into "<output_dir>.new" and moved into place only
    after every file is written and every post command succeeded. On any
    failure the temporary tree is removed and an existing output_dir is left
    untouched.

    Args:
        config: Output location, names and build settings.
        data: Enriched and validated native model of the unit.
        dependencies: Previously generated trees this unit builds on.
        context: Models consulted for type lookup only, such as the other
            headers of the library when generating a single header.

    Returns:
        PackageWriteResult describing every file written.

    Raises:
        ModelError: From ABI synthesis in strict mode.
        CaptionError: If an overload set cannot be named.
        CommandError: If a post command fails.
        OSError: On filesystem failures.
    """
    write_config = config.write_config
    destination = Path(config.output_dir)
    final_root = destination.resolve()
    staging = destination.with_name(destination.name + ".new")
    if staging.exists():
        shutil.rmtree(staging)
    staging.mkdir(parents=True)

    try:
        dependency_models = tuple(d.cpp_data for d in dependencies) + tuple(context)
        external_paths: dict[str, TargetPath] = {}
        for dependency in dependencies:
            external_paths.update(dependency.type_paths)

        ffi_result = synthesize_ffi_functions(
            data, write_config.library_name, dependency_models, strict=config.strict
        )
        model = build_target_model(
            data, ffi_result, write_config.package_name, dependency_models, external_paths
        )
        used = ffi_result.filtered(used_ffi_function_names(model))
        index = TypeIndex(data, dependency_models)

        files: list[FileWriteResult] = []
        package_dir = write_config.package_name
        for spec in render_python_modules(model, write_config):
            files.append(write_module(staging, final_root, package_dir, write_config, spec))
        files.append(
            write_module(
                staging,
                final_root,
                package_dir,
                write_config,
                render_ffi_module(write_config, used.functions, index),
            )
        )
        files.append(
            write_init_module(
                staging, final_root, package_dir, write_config, render_init_module(model)
            )
        )

        lib = write_config.library_name
        include_directives = config.include_directives or default_include_directives(data)
        include_dirs = tuple(str(d) for d in config.include_dirs)
        native_files = (
            ("CMakeLists.txt", render_cmakelists(write_config, include_dirs, config.link_items)),
            (f"{lib}_global.h", render_global_header(write_config, include_directives)),
            (f"{lib}.cpp", render_cpp_source(write_config, used.functions)),
            ("sized_types.cxx", render_size_probe(write_config, model.types)),
        )
        for name, content in native_files:
            files.append(_write_file(staging, final_root, f"{C_LIB_DIR}/{name}", content))

        manifest = build_manifest(config, dependencies)
        for fragment in config.manifest_fragments:
            manifest = merge_manifest(manifest, load_manifest_fragment(fragment))
        files.append(_write_file(staging, final_root, MANIFEST_FILE, render_toml(manifest)))

        build_metadata = {
            "package_name": write_config.package_name,
            "cpp_wrapper_lib_name": lib,
            "link_items": list(config.link_items),
            "known_targets": list(config.target_platforms),
            "include_directives": list(include_directives),
            "include_dirs": list(include_dirs),
        }
        export_info = {
            "package_name": write_config.package_name,
            "library_name": lib,
            "types": {
                cpp_name: {"module": path.module, "name": path.name}
                for cpp_name, path in sorted(export_type_paths(model).items())
            },
        }
        for name, payload in ((BUILD_METADATA_FILE, build_metadata), (EXPORT_INFO_FILE, export_info)):
            text = json.dumps(payload, indent=2, sort_keys=True) + "\n"
            files.append(_write_file(staging, final_root, name, text))

        save_cpp_data(staging / CPP_DATA_FILE, data)
        files.append(
            FileWriteResult(
                filename=CPP_DATA_FILE,
                path=final_root / CPP_DATA_FILE,
                line_count=(staging / CPP_DATA_FILE).read_text(encoding="utf-8").count("\n"),
                byte_count=(staging / CPP_DATA_FILE).stat().st_size,
            )
        )

        for command in config.post_commands:
            print(f"  Running: {' '.join(command)}")
            run_command(list(command), staging)

        _swap_into_place(staging, destination)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    return PackageWriteResult(
        output_dir=final_root,
        files=tuple(files),
        model=model,
        ffi_result=used,
        eliminated_ffi_functions=len(ffi_result.functions) - len(used.functions),
    )
