import argparse
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

from cxxbind.cpp_model import (  # noqa: E402
    CppArgument,
    CppClassKind,
    CppData,
    CppEnumKind,
    CppMethod,
    CppOrigin,
    CppTypeData,
    EnumValue,
    ensure_explicit_destructors,
    load_cpp_data,
    parse_cpp_type,
)
from cxxbind.emit import WriteConfig  # noqa: E402

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"
WIDGET_HEADER = "widgets/widget.h"


@pytest.fixture
def widget_snapshot() -> Path:
    return FIXTURES_DIR / "widgets.json"


@pytest.fixture
def widget_data(widget_snapshot: Path) -> CppData:
    return load_cpp_data(widget_snapshot)


@pytest.fixture
def enriched_widget_data(widget_data: CppData) -> CppData:
    return ensure_explicit_destructors(widget_data)


@pytest.fixture
def write_config() -> WriteConfig:
    return WriteConfig(
        package_name="widgets",
        package_version="0.1.0",
        library_name="widgets_c_lib",
        source_label="widgets.json",
    )


@pytest.fixture
def make_method() -> Callable[..., CppMethod]:
    def _make_method(
        name: str,
        *,
        scope: str | None = None,
        arguments: tuple[tuple[str, str], ...] = (),
        return_type: str | None = "void",
        header: str = WIDGET_HEADER,
        **flags: object,
    ) -> CppMethod:
        return CppMethod(
            name=name,
            origin=CppOrigin(include_file=header),
            scope=scope,
            arguments=tuple(
                CppArgument(arg_name, parse_cpp_type(arg_type))
                for arg_name, arg_type in arguments
            ),
            return_type=parse_cpp_type(return_type) if return_type is not None else None,
            **flags,
        )

    return _make_method


@pytest.fixture
def make_class() -> Callable[..., CppTypeData]:
    def _make_class(
        name: str,
        *,
        size: int | None = 8,
        header: str = WIDGET_HEADER,
        bases: tuple[str, ...] = (),
        template_arguments: tuple[str, ...] | None = None,
    ) -> CppTypeData:
        return CppTypeData(
            name=name,
            header=header,
            kind=CppClassKind(
                size=size,
                bases=tuple(parse_cpp_type(b) for b in bases),
                template_arguments=template_arguments,
            ),
        )

    return _make_class


@pytest.fixture
def make_enum() -> Callable[..., CppTypeData]:
    def _make_enum(
        name: str, values: tuple[tuple[str, int], ...], header: str = WIDGET_HEADER
    ) -> CppTypeData:
        return CppTypeData(
            name=name,
            header=header,
            kind=CppEnumKind(values=tuple(EnumValue(n, v) for n, v in values)),
        )

    return _make_enum


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"


@pytest.fixture
def missing_path(tmp_path: Path) -> Path:
    return tmp_path / "missing"


@pytest.fixture
def make_args(
    widget_snapshot: Path, output_dir: Path
) -> Callable[..., argparse.Namespace]:
    def _make_args(**overrides: object) -> argparse.Namespace:
        base_args: dict[str, object] = {
            "input": widget_snapshot,
            "output_dir": output_dir,
            "name": "widgets",
            "package_version": "0.1.0",
            "link": [],
            "include": [],
            "include_dir": [],
            "dependency": [],
            "manifest_fragment": [],
            "target": [],
            "post_command": [],
            "cache": None,
            "header": None,
            "local_paths": False,
            "strict": False,
        }
        base_args.update(overrides)
        return argparse.Namespace(**base_args)

    return _make_args
