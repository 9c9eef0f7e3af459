"""
patchgate — package root

File: src/patchgate/__init__.py
Last updated: 2026-10-18

Purpose
- Package root for the digest-addressed intent-to-patch artifact pipeline.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).

Non-functional requirements
- Keep import time small; stage modules are imported lazily by callers.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
