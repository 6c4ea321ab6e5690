"""Load Python source files as isolated, uniquely named modules."""

from __future__ import annotations

import hashlib
import importlib.util
import sys
from pathlib import Path
from types import ModuleType


def module_name_for(path: Path, *, prefix: str) -> str:
    digest = hashlib.sha256(str(path.resolve()).encode("utf-8")).hexdigest()[:16]
    return f"{prefix}_{path.stem}_{digest}"


def load_module_from_path(path: Path, *, prefix: str) -> ModuleType:
    """Execute ``path`` as a fresh module without leaving it in ``sys.modules``.

    Raises whatever the module body raises; callers own the fault boundary.
    """

    module_name = module_name_for(path, prefix=prefix)
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load {path}")
    module = importlib.util.module_from_spec(spec)
    # Registered only while executing so dataclasses and typing can resolve the module.
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    finally:
        sys.modules.pop(module_name, None)
    return module


__all__ = ["load_module_from_path", "module_name_for"]
