"""
Z3 backend.

Lowers models through the epsilon discipline onto Z3 arithmetic. Integer
and binary variables are Z3 ``Int`` constants, continuous ones ``Real``;
absolute values and indicators become ``If`` terms. Optimization uses
``Optimize``, pure feasibility a plain ``Solver``.
"""

from __future__ import annotations

import math
import time
from fractions import Fraction
from typing import Any

import z3

from cpmodel.backends.base import is_number
from cpmodel.backends.lowering import CONTINUOUS, EpsilonLowering
from cpmodel.errors import InfeasibleError, UnboundedError
from cpmodel.model import Model, ObjectiveSense
from cpmodel.solution import Solution, Status


class Z3Adapter(EpsilonLowering):
    """
    Adapter for the Z3 SMT solver.

    Z3 is exact, so the tolerance only has to separate the reification
    thresholds; options are forwarded to ``set`` on the solver, e.g.
    ``{"maxsat_engine": "wmax"}``.
    """

    name = "z3"
    DEFAULT_EPSILON = 1e-6

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
        self._constraints: list[Any] = []
        self._objective = None
        self._minimize = True
        self._model = None
        self.build()

    # ========== Solver primitives ==========

    def _new_variable(self, kind: str, lower: float, upper: float, name: str) -> Any:
        var = z3.Real(name) if kind == CONTINUOUS else z3.Int(name)
        if lower != -math.inf:
            self._constraints.append(var >= _numeral(lower))
        if upper != math.inf:
            self._constraints.append(var <= _numeral(upper))
        return var

    def _add_range(self, expression: Any, lower: float, upper: float, name: str) -> None:
        if lower == upper:
            self._constraints.append(expression == _numeral(lower))
            return
        if lower != -math.inf:
            self._constraints.append(expression >= _numeral(lower))
        if upper != math.inf:
            self._constraints.append(expression <= _numeral(upper))

    def _absolute(self, expression: Any) -> Any:
        return z3.If(expression >= 0, expression, -expression)

    def _product(self, a: Any, b: Any) -> Any:
        return z3.If(a == 1, b, 0)

    def _power(self, base: Any, exponent: float) -> Any:
        if float(exponent).is_integer():
            # Repeated products keep integer powers inside nonlinear arithmetic
            value = base
            for _ in range(abs(int(exponent)) - 1):
                value = value * base
            return 1 / _real(value) if exponent < 0 else value
        return _real(base) ** z3.RealVal(Fraction(exponent).limit_denominator(10**6))

    def _div(self, a: Any, b: Any) -> Any:
        if is_number(b):
            return super()._div(a, b)
        return a / _real(b)

    def _tolerance(self) -> float:
        return self.DEFAULT_EPSILON

    def _set_objective(self, handle: Any, sense: ObjectiveSense) -> None:
        self._objective = handle
        self._minimize = sense is ObjectiveSense.MINIMIZE

    # ========== Solve ==========

    def solve(self) -> Solution:
        self._ensure_satisfiable()

        solver = z3.Optimize() if self._objective is not None else z3.Solver()
        for constraint in self._constraints:
            solver.add(constraint)

        if self.time_limit:
            solver.set("timeout", int(self.time_limit * 1000))
        for key, value in self.options.items():
            solver.set(key, value)

        handle = None
        if self._objective is not None:
            if self._minimize:
                handle = solver.minimize(self._objective)
            else:
                handle = solver.maximize(self._objective)

        self._log(1, "Starting Z3 solver...")
        self._log(1, f"  Constraints: {len(self._constraints)}")
        start = time.time()
        result = self._check(solver)
        self._log(1, f"Z3 finished with {result} in {time.time() - start:.3f}s")

        if self.verbose >= 2:
            stats = solver.statistics()
            self._log(2, "Z3 Statistics:")
            for key in stats.keys():
                self._log(2, f"  {key}: {stats.get_key_value(key)}")

        if result == z3.unsat:
            raise InfeasibleError("Z3 proved the model infeasible")
        if result != z3.sat:
            self._log(1, f"  Reason: {solver.reason_unknown()}")
            return Solution(self.model, Status.UNKNOWN)

        if handle is not None and "oo" in str(handle.value()):
            raise UnboundedError(f"Z3 reported objective {handle.value()}")

        self._model = solver.model()
        objective = None
        if self._objective_var is not None:
            objective = self._value(self._objective_var)
        return self._extract_solution(Status.OPTIMAL, objective)

    def _check(self, solver: Any) -> Any:
        """Run the check, with z3's global verbosity raised only for its duration."""
        if self.verbose < 2:
            return solver.check()
        previous = z3.get_param("verbose")
        z3.set_param("verbose", 10)
        try:
            return solver.check()
        finally:
            z3.set_param("verbose", previous)

    def _value(self, handle: Any) -> float:
        if is_number(handle):
            return float(handle)
        return _to_float(self._model.eval(handle, model_completion=True))


def _numeral(value: float) -> Any:
    if float(value).is_integer():
        return int(value)
    return z3.RealVal(Fraction(value))


def _real(expression: Any) -> Any:
    if z3.is_arith(expression) and expression.is_int():
        return z3.ToReal(expression)
    return expression


def _to_float(value: Any) -> float:
    if z3.is_int_value(value):
        return float(value.as_long())
    if z3.is_rational_value(value):
        return value.numerator_as_long() / value.denominator_as_long()
    if z3.is_algebraic_value(value):
        return float(Fraction(value.approx(20).as_fraction()))
    raise ValueError(f"Cannot convert Z3 value {value} to float")


__all__ = ["Z3Adapter"]
