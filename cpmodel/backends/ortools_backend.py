"""
OR-Tools CP-SAT backend.

Comparisons, connectives, min/max/abs, products, conditionals and element
are posted with native CP-SAT constraints; booleans are strict 0/1 literals
(``x != 0``). CP-SAT is integral: real variables and fractional constants
are rejected while lowering, as is any division whose quotient is not a
constant integer.
"""

from __future__ import annotations

import math
import time
from typing import Any

from ortools.sat.python import cp_model

from cpmodel.backends.base import BaseAdapter, is_number
from cpmodel.errors import InfeasibleError, LoweringError, SolverError
from cpmodel.expression import Operator
from cpmodel.model import Model, ObjectiveSense
from cpmodel.solution import Solution, Status
from cpmodel.variables import Sequence, Variable, VariableType

# Domain used for unbounded model variables
BOUND = 10**9
# Widest domain of auxiliary variables
LIMIT = 10**18

_COMPARE = {
    Operator.LESS_THAN: lambda a, b: a < b,
    Operator.LESS_OR_EQUAL: lambda a, b: a <= b,
    Operator.GREATER_THAN: lambda a, b: a > b,
    Operator.GREATER_OR_EQUAL: lambda a, b: a >= b,
    Operator.EQUAL: lambda a, b: a == b,
    Operator.NOT_EQUAL: lambda a, b: a != b,
}

_NEGATION = {
    Operator.LESS_THAN: Operator.GREATER_OR_EQUAL,
    Operator.LESS_OR_EQUAL: Operator.GREATER_THAN,
    Operator.GREATER_THAN: Operator.LESS_OR_EQUAL,
    Operator.GREATER_OR_EQUAL: Operator.LESS_THAN,
    Operator.EQUAL: Operator.NOT_EQUAL,
    Operator.NOT_EQUAL: Operator.EQUAL,
}


def _clamp(lower: int, upper: int) -> tuple[int, int]:
    return max(-LIMIT, lower), min(LIMIT, upper)


class ORToolsAdapter(BaseAdapter):
    """
    OR-Tools CP-SAT backend.

    Every handle created here is tracked with integer bounds so auxiliary
    variables get tight domains. Options are set on the solver parameters,
    e.g. ``{"num_workers": 8}``.
    """

    name = "ortools"

    def __init__(
        self,
        model: Model,
        time_limit: float | None = None,
        verbose: int = 0,
        precision: int = 6,
        options: dict[str, Any] | None = None,
    ):
        super().__init__(model, time_limit, verbose, precision, options)

        # OR-Tools model and solver
        self.cp = cp_model.CpModel()
        self.solver = cp_model.CpSolver()

        # id(handle) -> (handle, lower, upper)
        self._bounds: dict[int, tuple[Any, int, int]] = {}
        # id(handle) -> handle, for boolean literals
        self._literals: dict[int, Any] = {}
        self._has_objective = False

        self.build()

    # ========== Bound tracking ==========

    def _track(self, handle: Any, lower: int, upper: int) -> Any:
        if not is_number(handle):
            self._bounds[id(handle)] = (handle, lower, upper)
        return handle

    def _bounds_of(self, handle: Any) -> tuple[int, int]:
        if is_number(handle):
            return handle, handle
        entry = self._bounds.get(id(handle))
        if entry is None:
            return -LIMIT, LIMIT
        return entry[1], entry[2]

    def _new_int(self, lower: int, upper: int, hint: str) -> Any:
        lower, upper = _clamp(lower, upper)
        return self._track(self.cp.NewIntVar(lower, upper, self._aux_name(hint)), lower, upper)

    def _new_bool(self, hint: str) -> Any:
        literal = self.cp.NewBoolVar(self._aux_name(hint))
        self._literals[id(literal)] = literal
        return self._track(literal, 0, 1)

    def _negate_literal(self, literal: Any) -> Any:
        negated = literal.Not()
        self._literals[id(negated)] = negated
        return self._track(negated, 0, 1)

    def _as_var(self, handle: Any) -> Any:
        """Integer constant or IntVar equal to handle."""
        if is_number(handle) or isinstance(handle, cp_model.IntVar):
            return handle
        lower, upper = self._bounds_of(handle)
        var = self._new_int(lower, upper, "expr")
        self.cp.Add(var == handle)
        return var

    # ========== Variables ==========

    def _constant(self, value: float) -> Any:
        if not float(value).is_integer():
            raise LoweringError(f"{self.name} supports only integer constants, got {value}")
        return int(value)

    def _constant_or_none(self, value: float) -> Any:
        return int(value) if float(value).is_integer() else None

    def _create_variable(self, variable: Variable) -> Any:
        if variable.type is VariableType.REAL:
            raise LoweringError(f"{self.name} does not support real variable {variable.name}")
        if variable.type is VariableType.BOOLEAN:
            literal = self.cp.NewBoolVar(variable.name)
            self._literals[id(literal)] = literal
            lower, upper = math.ceil(variable.lower_bound), math.floor(variable.upper_bound)
            if lower == upper:
                self.cp.Add(literal == lower)
            return self._track(literal, 0, 1)
        lower = -BOUND if variable.lower_bound == -math.inf else max(-BOUND, math.ceil(variable.lower_bound))
        upper = BOUND if variable.upper_bound == math.inf else min(BOUND, math.floor(variable.upper_bound))
        if lower > upper:
            raise LoweringError(f"variable {variable.name} has no integer value")
        return self._track(self.cp.NewIntVar(lower, upper, variable.name), lower, upper)

    def _create_sequence(self, sequence: Sequence) -> list[Any]:
        """0-based list variable with all-different; members read position + 1."""
        n = len(sequence)
        positions = [self.cp.NewIntVar(0, n - 1, f"{v.name}.pos") for v in sequence]
        self.cp.AddAllDifferent(positions)
        return [self._track(p + 1, 1, n) for p in positions]

    def _new_integer(self, lower: int, upper: int, hint: str) -> Any:
        return self._new_int(lower, upper, hint)

    # ========== Posting ==========

    def _post_equal(self, lhs: Any, rhs: Any) -> None:
        self.cp.Add(lhs == rhs)

    def _post_comparison(self, operator: Operator, lhs: Any, rhs: Any) -> None:
        self.cp.Add(_COMPARE[operator](lhs, rhs))

    def _post_true(self, handle: Any) -> None:
        if id(handle) in self._literals:
            self.cp.AddBoolAnd([handle])
        else:
            self.cp.Add(handle != 0)

    def _post_deduced(self, variable: Variable, handle: Any) -> None:
        self.cp.Add(self.vars[variable] == handle)

    def _post_objective(self, sense: ObjectiveSense, handle: Any) -> None:
        if sense is ObjectiveSense.MINIMIZE:
            self.cp.Minimize(handle)
        else:
            self.cp.Maximize(handle)
        self._has_objective = True

    # ========== Arithmetic ==========

    def _neg(self, a: Any) -> Any:
        lower, upper = self._bounds_of(a)
        return self._track(-a, -upper, -lower)

    def _add(self, a: Any, b: Any) -> Any:
        (la, ua), (lb, ub) = self._bounds_of(a), self._bounds_of(b)
        return self._track(a + b, *_clamp(la + lb, ua + ub))

    def _sub(self, a: Any, b: Any) -> Any:
        (la, ua), (lb, ub) = self._bounds_of(a), self._bounds_of(b)
        return self._track(a - b, *_clamp(la - ub, ua - lb))

    def _mul(self, a: Any, b: Any) -> Any:
        """Multiplication - variable * variable needs an auxiliary."""
        (la, ua), (lb, ub) = self._bounds_of(a), self._bounds_of(b)
        candidates = (la * lb, la * ub, ua * lb, ua * ub)
        lower, upper = _clamp(min(candidates), max(candidates))
        if is_number(a) or is_number(b):
            return self._track(a * b, lower, upper)
        result = self._new_int(lower, upper, "product")
        self.cp.AddMultiplicationEquality(result, [self._as_var(a), self._as_var(b)])
        return result

    def _div(self, a: Any, b: Any) -> Any:
        """Division folded at lowering time; only exact constant quotients are integral."""
        if is_number(b) and b == 0:
            raise LoweringError("division by constant zero")
        if not (is_number(a) and is_number(b)):
            raise LoweringError(
                f"{self.name} cannot divide non-constant operands: the quotient is not integral"
            )
        if a % b:
            raise LoweringError(f"{a} / {b} is not an integer")
        return a // b

    def _pow(self, base: Any, exponent: Any) -> Any:
        if not is_number(exponent) or exponent < 0:
            raise LoweringError(f"{self.name} requires a constant non-negative integer exponent")
        if is_number(base):
            return base**exponent
        result = 1
        for _ in range(exponent):
            result = self._mul(result, base)
        return result

    def _abs(self, a: Any) -> Any:
        if is_number(a):
            return abs(a)
        lower, upper = self._bounds_of(a)
        largest = max(abs(lower), abs(upper))
        smallest = 0 if lower <= 0 <= upper else min(abs(lower), abs(upper))
        result = self._new_int(smallest, largest, "abs")
        self.cp.AddAbsEquality(result, a)
        return result

    def _min(self, args: list[Any]) -> Any:
        if all(is_number(a) for a in args):
            return min(args)
        lowers, uppers = zip(*(self._bounds_of(a) for a in args))
        result = self._new_int(min(lowers), min(uppers), "min")
        self.cp.AddMinEquality(result, args)
        return result

    def _max(self, args: list[Any]) -> Any:
        if all(is_number(a) for a in args):
            return max(args)
        lowers, uppers = zip(*(self._bounds_of(a) for a in args))
        result = self._new_int(max(lowers), max(uppers), "max")
        self.cp.AddMaxEquality(result, args)
        return result

    # ========== Logic ==========

    def _reify(self, operator: Operator, lhs: Any, rhs: Any) -> Any:
        literal = self._new_bool("cmp")
        self.cp.Add(_COMPARE[operator](lhs, rhs)).OnlyEnforceIf(literal)
        self.cp.Add(_COMPARE[_NEGATION[operator]](lhs, rhs)).OnlyEnforceIf(literal.Not())
        return literal

    def _boolify(self, a: Any) -> Any:
        if is_number(a):
            return 1 if a else 0
        if id(a) in self._literals:
            return a
        return self._reify(Operator.NOT_EQUAL, a, 0)

    def _not(self, a: Any) -> Any:
        literal = self._boolify(a)
        if is_number(literal):
            return 1 - literal
        return self._negate_literal(literal)

    def _and(self, args: list[Any]) -> Any:
        """Logical AND."""
        literals = []
        for arg in args:
            literal = self._boolify(arg)
            if is_number(literal):
                if not literal:
                    return 0
                continue
            literals.append(literal)
        if not literals:
            return 1
        if len(literals) == 1:
            return literals[0]
        result = self._new_bool("and")
        self.cp.AddBoolAnd(literals).OnlyEnforceIf(result)
        self.cp.AddBoolOr([a.Not() for a in literals]).OnlyEnforceIf(result.Not())
        return result

    def _or(self, args: list[Any]) -> Any:
        """Logical OR."""
        literals = []
        for arg in args:
            literal = self._boolify(arg)
            if is_number(literal):
                if literal:
                    return 1
                continue
            literals.append(literal)
        if not literals:
            return 0
        if len(literals) == 1:
            return literals[0]
        result = self._new_bool("or")
        self.cp.AddBoolOr(literals).OnlyEnforceIf(result)
        self.cp.AddBoolAnd([a.Not() for a in literals]).OnlyEnforceIf(result.Not())
        return result

    def _in_set(self, value: Any, values: list[Any]) -> Any:
        constants = sorted({v for v in values if v is not None and is_number(v)})
        others = [v for v in values if v is not None and not is_number(v)]
        if is_number(value) and value in constants:
            return 1
        terms = [self._reify(Operator.EQUAL, value, v) for v in others]
        if constants and not is_number(value):
            literal = self._new_bool("in")
            domain = cp_model.Domain.FromValues(constants)
            self.cp.AddLinearExpressionInDomain(value, domain).OnlyEnforceIf(literal)
            complement = domain.complement()
            self.cp.AddLinearExpressionInDomain(value, complement).OnlyEnforceIf(literal.Not())
            terms.append(literal)
        return self._or(terms)

    # ========== Conditionals and element ==========

    def _if_then_else(self, condition: Any, then_value: Any, else_value: Any) -> Any:
        literal = self._boolify(condition)
        if is_number(literal):
            return then_value if literal else else_value
        (lt, ut), (le, ue) = self._bounds_of(then_value), self._bounds_of(else_value)
        result = self._new_int(min(lt, le), max(ut, ue), "ite")
        self.cp.Add(result == then_value).OnlyEnforceIf(literal)
        self.cp.Add(result == else_value).OnlyEnforceIf(literal.Not())
        return result

    def _lookup(self, index: Any, entries: list[tuple[int, Any]]) -> Any:
        """Element over possibly sparse positions."""
        positions = [p for p, _ in entries]
        first, last = min(positions), max(positions)
        self.cp.AddLinearExpressionInDomain(index, cp_model.Domain.FromValues(positions))
        by_position = dict(entries)
        filler = entries[0][1]
        values = [self._as_var(by_position.get(p, filler)) for p in range(first, last + 1)]

        offset = self._new_int(0, last - first, "offset")
        self.cp.Add(offset == index - first)
        lowers, uppers = zip(*(self._bounds_of(v) for v in values))
        result = self._new_int(min(lowers), max(uppers), "element")
        self.cp.AddElement(offset, values, result)
        return result

    # ========== Solve ==========

    def solve(self) -> Solution:
        """Solve the model and return the solution."""
        self._ensure_satisfiable()

        # Configure solver
        if self.time_limit is not None:
            self.solver.parameters.max_time_in_seconds = self.time_limit
        if self.verbose >= 2:
            self.solver.parameters.log_search_progress = True
        for key, value in self.options.items():
            setattr(self.solver.parameters, key, value)

        self._log(1, "Starting OR-Tools solver...")
        start = time.time()
        status = self.solver.Solve(self.cp)
        self._log(
            1,
            f"Solver finished with status: {self.solver.StatusName(status)} "
            f"in {time.time() - start:.3f}s",
        )

        if status == cp_model.OPTIMAL:
            result = Status.OPTIMAL
        elif status == cp_model.FEASIBLE:
            result = Status.FEASIBLE
        elif status == cp_model.INFEASIBLE:
            raise InfeasibleError("OR-Tools proved the model infeasible")
        elif status == cp_model.MODEL_INVALID:
            raise SolverError(f"OR-Tools rejected the model: {self.cp.Validate()}")
        else:
            return Solution(self.model, Status.UNKNOWN)

        objective = self.solver.ObjectiveValue() if self._has_objective else None
        return self._extract_solution(result, objective)

    def _value(self, handle: Any) -> float:
        if is_number(handle):
            return float(handle)
        return float(self.solver.Value(handle))


__all__ = ["ORToolsAdapter"]
