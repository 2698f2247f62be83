"""
maestro-fleet

File: src/maestro_fleet/__init__.py

Purpose
- Package root. Fleet-state aggregation and credential reconciliation for a
  set of isolated agent sandboxes (containers) driven through a docker-style
  engine CLI.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
