"""
Exception hierarchy for cpmodel.

Four failure families are distinguished:

- ModelError: raised immediately by the builder call that received bad input
  (duplicate names, wrong arity, malformed n_ary_if, misplaced collections).
- LoweringError: raised while an adapter compiles a model; aborts the adapter.
- EvaluationError: raised by the evaluator; Solution.errors() collects these
  as diagnostics instead of propagating them.
- SolverError: raised by adapter.solve() when the solver proves the model
  infeasible or unbounded, or reports a failure.
"""

from __future__ import annotations


class CPModelError(Exception):
    """Base class for all cpmodel errors."""


class ModelError(CPModelError, ValueError):
    """Invalid model construction."""


class CollectionError(ModelError):
    """Collection lookup is missing, out of range, or failed."""

    def __init__(self, key, message: str):
        super().__init__(f"collection key {key}: {message}")
        self.key = key


class LoweringError(CPModelError):
    """The model cannot be translated for the selected back-end."""


class EvaluationError(CPModelError):
    """An expression cannot be evaluated on the given assignment."""


class SolverError(CPModelError):
    """The back-end solver failed to produce a usable result."""


class InfeasibleError(SolverError):
    """The solver proved the model infeasible."""


class UnboundedError(SolverError):
    """The solver proved the model unbounded."""


__all__ = [
    "CPModelError",
    "ModelError",
    "CollectionError",
    "LoweringError",
    "EvaluationError",
    "SolverError",
    "InfeasibleError",
    "UnboundedError",
]
