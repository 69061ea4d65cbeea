"""
Main solve() function for cpmodel.

This module provides the entry point for solving a Model with one of the
registered backends (SCIP, OR-Tools CP-SAT, Z3).
"""

from __future__ import annotations

from typing import Any

from cpmodel.backends import KNOWN_BACKENDS, get_backend
from cpmodel.model import Model
from cpmodel.solution import Solution

# Backends lowering through the epsilon discipline
EPSILON_SOLVERS = {"scip", "z3"}


def supported_solvers() -> list[str]:
    """Return list of all supported solver names."""
    return sorted(KNOWN_BACKENDS)


def solve(
    model: Model,
    *,
    solver: str = "scip",
    time_limit: float | None = None,
    verbose: int = 0,
    precision: int = 6,
    options: dict[str, Any] | None = None,
    epsilon: float | None = None,
) -> Solution:
    """
    Lower a model onto a solver and solve it.

    Args:
        model: The model to solve
        solver: Solver name - "scip", "ortools" or "z3"
        time_limit: Time limit in seconds (None for no limit)
        verbose: Verbosity level (0=quiet, 1=normal, 2=detailed, 3=debug)
        precision: Decimal places kept when reading values back
        options: Solver-specific parameters
        epsilon: Reification tolerance for "scip" and "z3"; defaults to the
            solver's feasibility tolerance

    Returns:
        Solution with status OPTIMAL, FEASIBLE or UNKNOWN

    Raises:
        InfeasibleError: If the solver proves the model infeasible
        UnboundedError: If the solver proves the model unbounded
        LoweringError: If the model uses something the solver cannot express

    Example:
        from cpmodel import Model, ObjectiveSense, solve

        model = Model()
        x = model.add_integer_variable("x", 0, 10)
        model.add_constraint(x >= 3)
        model.set_objective(ObjectiveSense.MINIMIZE, x)

        solution = solve(model, solver="scip", time_limit=60)
        print(solution.get(x))
    """
    solver_lower = solver.lower()

    if solver_lower not in KNOWN_BACKENDS:
        raise ValueError(
            f"Unknown solver: {solver}. Supported solvers: {supported_solvers()}"
        )

    # Get the appropriate backend
    backend_class = get_backend(solver_lower)
    if backend_class is None:
        raise ImportError(
            f"Backend '{solver_lower}' is not available. "
            f"Install the required package: pip install cpmodel[{solver_lower}]"
        )

    kwargs: dict[str, Any] = {}
    if epsilon is not None:
        if solver_lower not in EPSILON_SOLVERS:
            raise ValueError(f"epsilon does not apply to solver {solver_lower}")
        kwargs["epsilon"] = epsilon

    adapter = backend_class(
        model,
        time_limit=time_limit,
        verbose=verbose,
        precision=precision,
        options=options,
        **kwargs,
    )
    return adapter.solve()


__all__ = ["solve", "supported_solvers"]
