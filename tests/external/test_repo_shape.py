from __future__ import annotations

import tomllib
from pathlib import Path


_README_ANCHORS = (
    # One-line summary
    "Generate ctypes bindings for C++ libraries",
    # Prerequisites section
    "Prerequisites",
    # Quick start flags
    "--input",
    "--output-dir",
    "--link",
    # Output tree table
    "__init__.py",
    "_ffi.py",
    "c_lib/CMakeLists.txt",
    "sized_types.cxx",
    "build_metadata.json",
    "export_info.json",
    # Multi-library section
    "--dependency",
    "--header",
    # Testing instructions
    "pytest",
)


def _tool_root() -> Path:
    return Path(__file__).resolve().parents[2]


def test_t_25_required_artifacts_exist() -> None:
    tool_root = _tool_root()
    required_paths = {
        "gen.py",
        "README.md",
        "pyproject.toml",
        "cxxbind/__init__.py",
        "cxxbind/cpp_model.py",
        "cxxbind/ffi.py",
        "cxxbind/target.py",
        "cxxbind/emit.py",
        "cxxbind/writer.py",
        "cxxbind/runtime.py",
        "tests/conftest.py",
        "tests/test_cli.py",
        "tests/test_cpp_model.py",
        "tests/test_ffi.py",
        "tests/test_target.py",
        "tests/test_emit.py",
        "tests/test_writer.py",
        "tests/test_runtime.py",
        "tests/fixtures/widgets.json",
        "tests/external/test_external_cli.py",
        "tests/external/test_repo_shape.py",
    }

    missing = sorted(path for path in required_paths if not (tool_root / path).exists())
    assert missing == []


def test_t_26_generated_artifacts_are_absent() -> None:
    tool_root = _tool_root()

    for relative_path in ("out", "build", "c_lib"):
        assert not (tool_root / relative_path).exists()

    assert list(tool_root.glob("*.so")) == []


def test_t_27_readme_includes_required_sections() -> None:
    readme = _tool_root() / "README.md"
    assert readme.exists(), "README.md must exist"
    content = readme.read_text(encoding="utf-8")
    missing = [anchor for anchor in _README_ANCHORS if anchor not in content]
    assert missing == [], f"README.md missing required anchors: {missing}"


def test_t_28_pyproject_exposes_cli_and_runtime() -> None:
    with open(_tool_root() / "pyproject.toml", "rb") as f:
        pyproject = tomllib.load(f)

    assert pyproject["project"]["name"] == "cxx-bindings-gen"
    assert pyproject["project"]["scripts"]["cxx-bindings-gen"] == "gen:main"
    assert "cxxbind" in pyproject["tool"]["setuptools"]["packages"]
