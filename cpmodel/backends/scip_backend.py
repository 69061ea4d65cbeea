"""
SCIP backend.

Lowers models through the epsilon discipline onto pyscipopt, which accepts
mixed-integer nonlinear constraints (products, powers, absolute values).
"""

from __future__ import annotations

import math
import time
from typing import Any

import pyscipopt
from pyscipopt import quicksum

from cpmodel.backends.base import is_number
from cpmodel.backends.lowering import EpsilonLowering
from cpmodel.errors import InfeasibleError, UnboundedError
from cpmodel.model import Model, ObjectiveSense
from cpmodel.solution import Solution, Status

# SCIP statuses meaning the search was stopped early
LIMIT_STATUSES = frozenset({
    "timelimit",
    "nodelimit",
    "totalnodelimit",
    "stallnodelimit",
    "memlimit",
    "gaplimit",
    "sollimit",
    "bestsollimit",
    "restartlimit",
    "primallimit",
    "duallimit",
    "userinterrupt",
})


class SCIPAdapter(EpsilonLowering):
    """
    Adapter for the SCIP solver via pyscipopt.

    Options are forwarded to ``setParam``, e.g.
    ``{"numerics/feastol": 1e-7, "limits/gap": 0.01}``.
    """

    name = "scip"

    def __init__(
        self,
        model: Model,
        time_limit: float | None = None,
        verbose: int = 0,
        precision: int = 6,
        options: dict[str, Any] | None = None,
        epsilon: float | None = None,
    ):
        super().__init__(model, time_limit, verbose, precision, options, epsilon)
        self.solver = pyscipopt.Model("cpmodel")
        if verbose < 2:
            self.solver.hideOutput()
        # Parameters first: the tolerance read while building depends on them
        for key, value in self.options.items():
            self.solver.setParam(key, value)
        self.build()

    # ========== Solver primitives ==========

    def _new_variable(self, kind: str, lower: float, upper: float, name: str) -> Any:
        return self.solver.addVar(
            name=name,
            vtype=kind,
            lb=None if lower == -math.inf else lower,
            ub=None if upper == math.inf else upper,
        )

    def _add_range(self, expression: Any, lower: float, upper: float, name: str) -> None:
        if lower == upper:
            self.solver.addCons(expression == lower, name=name)
            return
        if lower != -math.inf:
            self.solver.addCons(expression >= lower, name=name + "_lb")
        if upper != math.inf:
            self.solver.addCons(expression <= upper, name=name + "_ub")

    def _absolute(self, expression: Any) -> Any:
        return abs(expression)

    def _power(self, base: Any, exponent: float) -> Any:
        return base**exponent

    def _sum(self, items: list[Any]) -> Any:
        if not items:
            return 0.0
        return quicksum(items)

    def _tolerance(self) -> float:
        return self.solver.getParam("numerics/feastol")

    def _set_objective(self, handle: Any, sense: ObjectiveSense) -> None:
        self.solver.setObjective(
            handle, "minimize" if sense is ObjectiveSense.MINIMIZE else "maximize"
        )

    # ========== Solve ==========

    def solve(self) -> Solution:
        self._ensure_satisfiable()

        if self.time_limit is not None:
            self.solver.setParam("limits/time", self.time_limit)

        self._log(1, "Starting SCIP solver...")
        start = time.time()
        self.solver.optimize()
        status = self.solver.getStatus()
        self._log(1, f"SCIP finished with status {status} in {time.time() - start:.3f}s")

        if self.verbose >= 2:
            self._log(2, f"  Nodes: {self.solver.getNNodes()}")
            self._log(2, f"  Solutions found: {self.solver.getNSols()}")

        if status == "optimal":
            result = Status.OPTIMAL
        elif status == "infeasible":
            raise InfeasibleError("SCIP proved the model infeasible")
        elif status in ("unbounded", "inforunbd"):
            raise UnboundedError(f"SCIP reported status {status}")
        elif status in LIMIT_STATUSES and self.solver.getNSols() > 0:
            result = Status.FEASIBLE
        else:
            return Solution(self.model, Status.UNKNOWN)

        objective = None
        if self._objective_var is not None:
            objective = self.solver.getObjVal()
        return self._extract_solution(result, objective)

    def _value(self, handle: Any) -> float:
        if is_number(handle):
            return float(handle)
        return self.solver.getVal(handle)


__all__ = ["SCIPAdapter"]
