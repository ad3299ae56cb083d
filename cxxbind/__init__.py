"""C++ binding synthesis for Python.

The pipeline lives in cpp_model (native model and enrichment), ffi (ABI
shim synthesis), target (Python-side model), emit (rendering) and writer
(output tree). Generated packages depend only on cxxbind.runtime.
"""

__version__ = "0.1.0"
