"""
safeguard-audit — package root.

File: src/safeguard_audit/__init__.py

Purpose
- Security audit rule engine for Python applications: a rule registry and
  engine plus analysis helpers (secret scanning, sensitive entity fields,
  dependency manifests) used by the built-in rules.

Import boundary
- No config loading or logging setup at import time. Built-in rules register
  themselves when ``safeguard_audit.rules`` is imported.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
