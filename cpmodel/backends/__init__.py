"""
Solver backends for cpmodel.

Each backend is a BaseAdapter subclass that lowers a Model onto one solver.
Backends are loaded lazily so a missing solver package only disables that
backend.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cpmodel.backends.base import BaseAdapter

# Registry of available backends
_BACKENDS: dict[str, type["BaseAdapter"] | None] = {}

# Backends shipped with the package, in order of preference
KNOWN_BACKENDS = ("scip", "ortools", "z3")


def register_backend(name: str, backend_class: type["BaseAdapter"]) -> None:
    """Register a backend class."""
    _BACKENDS[name.lower()] = backend_class


def get_backend(name: str) -> type["BaseAdapter"] | None:
    """
    Get a backend class by name.

    Returns None if the backend is not available (dependencies not installed).
    """
    name_lower = name.lower()

    # Lazy load backends to avoid import errors when deps missing
    if name_lower not in _BACKENDS:
        _try_load_backend(name_lower)

    return _BACKENDS.get(name_lower)


def _try_load_backend(name: str) -> None:
    """Try to load a backend, catching import errors."""
    if name == "scip":
        try:
            from cpmodel.backends.scip_backend import SCIPAdapter
            _BACKENDS["scip"] = SCIPAdapter
        except ImportError:
            _BACKENDS["scip"] = None

    elif name == "ortools":
        try:
            from cpmodel.backends.ortools_backend import ORToolsAdapter
            _BACKENDS["ortools"] = ORToolsAdapter
        except ImportError:
            _BACKENDS["ortools"] = None

    elif name == "z3":
        try:
            from cpmodel.backends.z3_backend import Z3Adapter
            _BACKENDS["z3"] = Z3Adapter
        except ImportError:
            _BACKENDS["z3"] = None


def available_backends() -> list[str]:
    """Return list of available backend names."""
    # Try loading all known backends
    for name in KNOWN_BACKENDS:
        if name not in _BACKENDS:
            _try_load_backend(name)

    return [name for name, cls in _BACKENDS.items() if cls is not None]


__all__ = ["get_backend", "register_backend", "available_backends", "KNOWN_BACKENDS"]
