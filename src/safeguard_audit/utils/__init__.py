"""Utility exports for concurrency and dynamic module loading helpers."""

from safeguard_audit.utils.concurrency import BoundedSemaphore, run_blocking_bounded
from safeguard_audit.utils.imports import load_module_from_path, module_name_for

__all__ = [
    "BoundedSemaphore",
    "load_module_from_path",
    "module_name_for",
    "run_blocking_bounded",
]
