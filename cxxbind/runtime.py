"""Ownership and iteration support shared by all generated wrappers.

Generated packages import this module at run time. It provides:

* CppObject / MovableCppObject: views of one native instance.
* CppDeletable: the per-type deletion capability.
* CppBox: the single owner of a native instance.
* Ptr / Ref: non-owning handles compared by native identity.
* CppIterator / cpp_iter: begin/end traversal as a Python iterator.
* FfiLibrary: lazy loader of the wrapper shared library.
"""

import ctypes
import ctypes.util
import os
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Generic, TypeVar

T = TypeVar("T")
T1 = TypeVar("T1")
T2 = TypeVar("T2")


class MovedOutError(RuntimeError):
    """An owning handle was used after its instance was moved away.

    This is a programming error in the calling code, not a recoverable
    condition.
    """


# ===--- Instance views ---=== #


class CppObject:
    """View of a native instance at a raw address.

    Wrapper classes of immovable C++ types derive from this directly: they
    never own storage and are only reachable through CppBox, Ptr or Ref.
    """

    def __init__(self, raw: int):
        raw = int(raw)
        if raw == 0:
            raise ValueError(f"{type(self).__name__} cannot view a null pointer")
        self._raw = raw

    @classmethod
    def from_raw(cls, raw: int):
        return cls(raw)

    def as_raw_ptr(self) -> int:
        return self._raw

    def __repr__(self) -> str:
        return f"<{type(self).__name__} at 0x{self._raw:x}>"


class MovableCppObject(CppObject):
    """View of a native instance whose storage may be owned by Python.

    Subclasses set _cpp_size to the verified sizeof() of the C++ class.
    allocate() reserves zeroed storage that a constructor or a by-value
    return can build the instance into.
    """

    _cpp_size: int = 0

    def __init__(self, raw: int, storage: ctypes.Array | None = None):
        super().__init__(raw)
        self._storage = storage

    @classmethod
    def allocate(cls):
        if cls._cpp_size <= 0:
            raise TypeError(f"{cls.__name__} has no known size")
        storage = ctypes.create_string_buffer(cls._cpp_size)
        return cls(ctypes.addressof(storage), storage)

    @property
    def owns_storage(self) -> bool:
        return self._storage is not None


class CppDeletable(ABC):
    """Deletion capability of a wrapper type."""

    @classmethod
    @abstractmethod
    def cpp_delete(cls, raw: int) -> None:
        """Destroy the native instance at raw."""


def as_raw_ptr(value: Any) -> int:
    """Return the raw address behind any handle kind (0 for None)."""
    if value is None:
        return 0
    if isinstance(value, (CppObject, CppBox, Ptr, Ref)):
        return value.as_raw_ptr()
    raise TypeError(f"Expected a C++ object handle, got {type(value).__name__}")


def deref_value(ctype: type, raw: int) -> Any:
    """Read a builtin value through a native pointer."""
    if not raw:
        raise ValueError("Cannot read through a null pointer")
    return ctype.from_address(raw).value


# ===--- Owning handle ---=== #


class CppBox(Generic[T]):
    """Owner of exactly one native instance.

    The instance is deleted exactly once: by close(), on leaving a with
    block, or when the box is garbage collected. take() moves ownership into
    a new box and leaves this one empty; any later access raises
    MovedOutError.
    """

    def __init__(self, value: T):
        if not isinstance(value, CppDeletable):
            raise TypeError(f"{type(value).__name__} does not implement CppDeletable")
        self._value: T | None = value

    @classmethod
    def from_raw(cls, value_type: type[T], raw: int) -> "CppBox[T] | None":
        """Take ownership of raw, or return None for a null pointer."""
        if not raw:
            return None
        return cls(value_type.from_raw(raw))

    def _live(self) -> T:
        value = self.__dict__.get("_value")
        if value is None:
            raise MovedOutError("CppBox was used after its instance was moved away")
        return value

    def get(self) -> T:
        return self._live()

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._live(), name)

    def is_live(self) -> bool:
        return self.__dict__.get("_value") is not None

    def as_raw_ptr(self) -> int:
        return self._live().as_raw_ptr()

    def as_ptr(self) -> "Ptr[T]":
        value = self._live()
        return Ptr(type(value), value.as_raw_ptr())

    def as_ref(self) -> "Ref[T]":
        value = self._live()
        return Ref(type(value), value.as_raw_ptr())

    def into_raw_ptr(self) -> int:
        """Release ownership without deleting; the caller becomes responsible.

        Raises:
            TypeError: If the instance lives in Python-owned storage, which
                cannot outlive its wrapper object.
        """
        value = self._live()
        if isinstance(value, MovableCppObject) and value.owns_storage:
            raise TypeError(f"{type(value).__name__} storage is owned by Python")
        self._value = None
        return value.as_raw_ptr()

    def take(self) -> "CppBox[T]":
        value = self._live()
        self._value = None
        return CppBox(value)

    def close(self) -> None:
        value = self.__dict__.get("_value")
        if value is None:
            return
        self._value = None
        type(value).cpp_delete(value.as_raw_ptr())

    def __enter__(self) -> "CppBox[T]":
        self._live()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self) -> None:
        self.close()

    def __repr__(self) -> str:
        value = self.__dict__.get("_value")
        if value is None:
            return "CppBox(<moved>)"
        return f"CppBox({value!r})"


# ===--- Non-owning handles ---=== #


class Ptr(Generic[T]):
    """Nullable non-owning pointer. Never deletes what it points to."""

    __slots__ = ("_type", "_raw")

    def __init__(self, value_type: type[T], raw: int):
        self._type = value_type
        self._raw = int(raw or 0)

    @classmethod
    def null(cls, value_type: type[T]) -> "Ptr[T]":
        return cls(value_type, 0)

    def is_null(self) -> bool:
        return self._raw == 0

    def as_raw_ptr(self) -> int:
        return self._raw

    def as_ref(self) -> "Ref[T] | None":
        if self._raw == 0:
            return None
        return Ref(self._type, self._raw)

    def get(self) -> T:
        if self._raw == 0:
            raise ValueError(f"Null Ptr[{self._type.__name__}] dereferenced")
        return self._type.from_raw(self._raw)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (Ptr, Ref)):
            return self._raw == other.as_raw_ptr()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._raw)

    def __repr__(self) -> str:
        return f"Ptr[{self._type.__name__}](0x{self._raw:x})"


class Ref(Generic[T]):
    """Non-null non-owning reference. Never deletes what it refers to."""

    __slots__ = ("_type", "_raw")

    def __init__(self, value_type: type[T], raw: int):
        if not raw:
            raise ValueError(f"Ref[{value_type.__name__}] cannot be null")
        self._type = value_type
        self._raw = int(raw)

    def as_raw_ptr(self) -> int:
        return self._raw

    def as_ptr(self) -> Ptr[T]:
        return Ptr(self._type, self._raw)

    def get(self) -> T:
        return self._type.from_raw(self._raw)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self.get(), name)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (Ptr, Ref)):
            return self._raw == other.as_raw_ptr()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._raw)

    def __repr__(self) -> str:
        return f"Ref[{self._type.__name__}](0x{self._raw:x})"


# ===--- Iterator bridge ---=== #


def _has_native_eq(value: object) -> bool:
    return type(value).__eq__ is not object.__eq__


class CppIterator(Generic[T1, T2]):
    """Python iterator over a native [begin, end) range.

    Forward: stop when begin == end, else read *begin and advance begin.
    Backward (next_back, reversed()): stop when begin == end, else retreat
    end and read *end. Both directions share the same two positions, so
    mixing them never yields an element twice.

    Construct through cpp_iter().
    """

    def __init__(self, begin: CppBox[T1], end: CppBox[T2]):
        self._begin = begin
        self._end = end

    def __iter__(self) -> "CppIterator[T1, T2]":
        return self

    def _exhausted(self) -> bool:
        return bool(self._begin.get() == self._end.as_ref())

    def __next__(self) -> Any:
        if self._exhausted():
            raise StopIteration
        begin = self._begin.get()
        value = begin.indirection()
        begin.inc()
        return value

    def next_back(self) -> Any:
        end = self._end.get()
        if not (hasattr(end, "dec") and hasattr(end, "indirection")):
            raise TypeError(f"{type(end).__name__} cannot move backwards")
        if self._exhausted():
            raise StopIteration
        end.dec()
        return end.indirection()

    def __reversed__(self) -> "_ReversedCppIterator":
        return _ReversedCppIterator(self)

    def close(self) -> None:
        self._begin.close()
        self._end.close()


class _ReversedCppIterator:
    def __init__(self, forward: CppIterator):
        self._forward = forward

    def __iter__(self) -> "_ReversedCppIterator":
        return self

    def __next__(self) -> Any:
        return self._forward.next_back()


def cpp_iter(begin: CppBox[T1], end: CppBox[T2]) -> CppIterator[T1, T2]:
    """Build a Python iterator from native begin and end iterators.

    Safety: begin and end must denote a valid range of the same container,
    and no other code may use or move these two iterators while the returned
    object is alive. The bridge checks nothing beyond begin == end and calls
    arbitrary library code on every step.

    Raises:
        TypeError: If the begin type lacks operator==, operator* or
            operator++ wrappers.
    """
    value = begin.get()
    missing = [name for name in ("indirection", "inc") if not hasattr(value, name)]
    if not _has_native_eq(value):
        missing.append("__eq__")
    if missing:
        raise TypeError(
            f"{type(value).__name__} is not a forward iterator (missing {', '.join(missing)})"
        )
    end.get()
    return CppIterator(begin, end)


# ===--- Shared library loading ---=== #


def _library_file_names(name: str) -> tuple[str, ...]:
    if sys.platform == "win32":
        return (f"{name}.dll",)
    if sys.platform == "darwin":
        return (f"lib{name}.dylib", f"lib{name}.so")
    return (f"lib{name}.so",)


class FfiLibrary:
    """Wrapper shared library loaded on first use.

    Lookup order: the directory named by the <NAME>_LIB_DIR environment
    variable, then search_dirs, then ctypes.util.find_library.
    """

    def __init__(
        self,
        name: str,
        prototypes: dict[str, tuple[list, Any]],
        search_dirs: tuple[Path, ...] = (),
    ):
        self._name = name
        self._prototypes = prototypes
        self._search_dirs = search_dirs
        self._lib: ctypes.CDLL | None = None

    @property
    def is_loaded(self) -> bool:
        return self._lib is not None

    def _find(self) -> str:
        dirs: list[Path] = []
        env_dir = os.environ.get(f"{self._name.upper()}_LIB_DIR")
        if env_dir:
            dirs.append(Path(env_dir))
        dirs.extend(Path(d) for d in self._search_dirs)
        for directory in dirs:
            for file_name in _library_file_names(self._name):
                candidate = directory / file_name
                if candidate.is_file():
                    return str(candidate)
        found = ctypes.util.find_library(self._name)
        if found:
            return found
        raise OSError(f"Cannot find shared library {self._name}")

    def library(self) -> ctypes.CDLL:
        if self._lib is None:
            lib = ctypes.CDLL(self._find())
            for symbol, (argtypes, restype) in self._prototypes.items():
                func = getattr(lib, symbol)
                func.argtypes = argtypes
                func.restype = restype
            self._lib = lib
        return self._lib

    def __getattr__(self, symbol: str) -> Any:
        if symbol.startswith("_"):
            raise AttributeError(symbol)
        if symbol not in self._prototypes:
            raise AttributeError(f"{self._name} has no function {symbol}")
        return getattr(self.library(), symbol)
