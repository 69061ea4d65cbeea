"""
Epsilon-tolerant lowering for algebraic (MIP/NLP) solvers.

The target solver only offers bounded variables, ranged constraints and
arithmetic (sums, products, powers, absolute values). Comparisons, logic,
element and permutations are encoded with binary variables and two
thresholds, ``epsilon`` and ``1.1 * epsilon``, where epsilon is the solver's
feasibility tolerance. The gap between the thresholds keeps the "true" and
"false" regions of every reification disjoint.
"""

from __future__ import annotations

import math
from abc import abstractmethod
from typing import Any

from cpmodel.backends.base import BaseAdapter, is_number
from cpmodel.errors import LoweringError
from cpmodel.expression import Expression, Operator
from cpmodel.model import Model, ObjectiveSense
from cpmodel.variables import Sequence, Variable, VariableType

INF = math.inf

# Solver variable kinds
CONTINUOUS = "C"
INTEGER = "I"
BINARY = "B"

_KINDS = {
    VariableType.BOOLEAN: BINARY,
    VariableType.INTEGER: INTEGER,
    VariableType.REAL: CONTINUOUS,
}


class EpsilonLowering(BaseAdapter):
    """
    Lowering shared by algebraic backends.

    Subclasses provide the solver primitives: _new_variable, _add_range,
    _absolute, _power, _tolerance and _set_objective, plus solve() and
    _value(). Everything else is expressed with Python arithmetic on the
    solver's expression objects.

    Attributes:
        epsilon: Tolerance used by every reification (set when building)
        n_variables: Number of solver variables created
        n_constraints: Number of ranged constraints posted
    """

    def __init__(
        self,
        model: Model,
        time_limit: float | None = None,
        verbose: int = 0,
        precision: int = 6,
        options: dict[str, Any] | None = None,
        epsilon: float | None = None,
    ):
        super().__init__(model, time_limit, verbose, precision, options)
        self._epsilon = epsilon
        self.epsilon = 0.0
        self.n_variables = 0
        self.n_constraints = 0
        self._objective_var = None

        # Handles known to take only the values 0 and 1, by id (object kept alive)
        self._binaries: dict[int, Any] = {}
        # bool(x) memo: id(x) -> (x, b)
        self._booleans: dict[int, tuple[Any, Any]] = {}

    # ========== Solver primitives ==========

    @abstractmethod
    def _new_variable(self, kind: str, lower: float, upper: float, name: str) -> Any:
        """Create a solver variable; infinite bounds mean unbounded."""
        raise NotImplementedError

    @abstractmethod
    def _add_range(self, expression: Any, lower: float, upper: float, name: str) -> None:
        """Post lower <= expression <= upper."""
        raise NotImplementedError

    @abstractmethod
    def _absolute(self, expression: Any) -> Any:
        raise NotImplementedError

    @abstractmethod
    def _power(self, base: Any, exponent: float) -> Any:
        raise NotImplementedError

    @abstractmethod
    def _tolerance(self) -> float:
        """Feasibility tolerance of the solver."""
        raise NotImplementedError

    @abstractmethod
    def _set_objective(self, handle: Any, sense: ObjectiveSense) -> None:
        raise NotImplementedError

    def _product(self, a: Any, b: Any) -> Any:
        return a * b

    def _sum(self, items: list[Any]) -> Any:
        if not items:
            return 0.0
        total = items[0]
        for item in items[1:]:
            total = total + item
        return total

    # ========== Building blocks ==========

    def build(self) -> None:
        self.epsilon = self._epsilon if self._epsilon is not None else self._tolerance()
        self._log(2, f"Using epsilon = {self.epsilon:g}")
        super().build()
        self._log(
            1, f"{self.name}: {self.n_variables} variables, {self.n_constraints} constraints"
        )

    def _variable(self, kind: str, lower: float, upper: float, name: str) -> Any:
        handle = self._new_variable(kind, lower, upper, name)
        self.n_variables += 1
        if kind == BINARY:
            self._binaries[id(handle)] = handle
        return handle

    def _new_binary(self, hint: str) -> Any:
        return self._variable(BINARY, 0.0, 1.0, self._aux_name(hint))

    def _new_integer(self, lower: int, upper: int, hint: str) -> Any:
        return self._variable(INTEGER, float(lower), float(upper), self._aux_name(hint))

    def _mark_binary(self, handle: Any) -> Any:
        if not is_number(handle):
            self._binaries[id(handle)] = handle
        return handle

    def _constrain(self, expression: Any, lower: float, upper: float) -> None:
        if is_number(expression):
            if not lower - self.epsilon <= expression <= upper + self.epsilon:
                self._violated.append(f"{expression} not in [{lower}, {upper}]")
            return
        self.n_constraints += 1
        self._add_range(expression, lower, upper, self._aux_name("c"))

    def _indicator(self, b: Any, expression: Any) -> Any:
        """b * expression for a 0/1-valued b, folding constants."""
        if is_number(b):
            return expression if b else 0.0
        if is_number(expression):
            return b * expression if expression else 0.0
        return self._product(b, expression)

    # ========== Variables ==========

    def _create_variable(self, variable: Variable) -> Any:
        return self._variable(
            _KINDS[variable.type], variable.lower_bound, variable.upper_bound, variable.name
        )

    def _create_sequence(self, sequence: Sequence) -> list[Any]:
        """Integer members over [1, n] channelled to an n x n assignment matrix."""
        n = len(sequence)
        members = [self._variable(INTEGER, 1.0, float(n), v.name) for v in sequence]
        matrix = [
            [self._new_binary(f"{sequence.name}_{i}_{value}") for value in range(1, n + 1)]
            for i in range(n)
        ]
        for i in range(n):
            self._constrain(self._sum(matrix[i]), 1.0, 1.0)
            self._constrain(self._sum([row[i] for row in matrix]), 1.0, 1.0)
            channel = self._sum([value * b for value, b in enumerate(matrix[i], start=1)])
            self._constrain(members[i] - channel, 0.0, 0.0)
        return members

    # ========== Posting ==========

    def _post_equal(self, lhs: Any, rhs: Any) -> None:
        self._constrain(lhs - rhs, 0.0, 0.0)

    def _post_comparison(self, operator: Operator, lhs: Any, rhs: Any) -> None:
        eps = self.epsilon
        delta = lhs - rhs
        if operator is Operator.LESS_OR_EQUAL:
            self._constrain(delta, -INF, eps)
        elif operator is Operator.LESS_THAN:
            self._constrain(delta, -INF, -1.1 * eps)
        elif operator is Operator.GREATER_OR_EQUAL:
            self._constrain(delta, -eps, INF)
        elif operator is Operator.GREATER_THAN:
            self._constrain(delta, 1.1 * eps, INF)
        elif operator is Operator.EQUAL:
            self._constrain(delta, -eps, eps)
        else:
            self._constrain(self._absolute(delta), 1.1 * eps, INF)

    def _post_true(self, handle: Any) -> None:
        self._constrain(handle, 1.0 - self.epsilon, INF)

    def _post_deduced(self, variable: Variable, handle: Any) -> None:
        self._constrain(self.vars[variable] - handle, 0.0, 0.0)

    def _post_objective(self, sense: ObjectiveSense, handle: Any) -> None:
        objective = self._variable(CONTINUOUS, -INF, INF, "objective")
        self._constrain(objective - handle, 0.0, 0.0)
        self._objective_var = objective
        self._set_objective(objective, sense)

    # ========== Reification ==========

    def _reify(self, operator: Operator, lhs: Any, rhs: Any) -> Any:
        eps = self.epsilon
        delta = lhs - rhs
        b = self._new_binary("cmp")
        not_b = 1 - b

        if operator is Operator.GREATER_OR_EQUAL:
            self._constrain(self._indicator(b, delta + eps), 0.0, INF)
            self._constrain(self._indicator(not_b, -1.1 * eps - delta), 0.0, INF)
        elif operator is Operator.LESS_OR_EQUAL:
            self._constrain(self._indicator(b, eps - delta), 0.0, INF)
            self._constrain(self._indicator(not_b, delta - 1.1 * eps), 0.0, INF)
        elif operator is Operator.GREATER_THAN:
            self._constrain(self._indicator(b, delta - 1.1 * eps), 0.0, INF)
            self._constrain(self._indicator(not_b, eps - delta), 0.0, INF)
        elif operator is Operator.LESS_THAN:
            self._constrain(self._indicator(b, -1.1 * eps - delta), 0.0, INF)
            self._constrain(self._indicator(not_b, delta + eps), 0.0, INF)
        elif operator is Operator.EQUAL:
            self._constrain(self._indicator(b, eps - delta), 0.0, INF)
            self._constrain(self._indicator(b, eps + delta), 0.0, INF)
            self._constrain(self._indicator(not_b, self._absolute(delta) - 1.1 * eps), 0.0, INF)
        else:
            magnitude = self._absolute(delta)
            self._constrain(self._indicator(b, magnitude - 1.1 * eps), 0.0, INF)
            self._constrain(self._indicator(not_b, eps - magnitude), 0.0, INF)
        return b

    def _boolify(self, x: Any) -> Any:
        """0/1 handle that is 1 exactly when |x| exceeds the tolerance."""
        if is_number(x):
            return 1.0 if x else 0.0
        if id(x) in self._binaries:
            return x
        cached = self._booleans.get(id(x))
        if cached is not None:
            return cached[1]
        eps = self.epsilon
        b = self._new_binary("bool")
        magnitude = self._absolute(x)
        self._constrain(magnitude - 1.1 * eps * b, 0.0, INF)
        self._constrain(self._indicator(1 - b, magnitude - eps), -INF, 0.0)
        self._booleans[id(x)] = (x, b)
        return b

    # ========== Logic ==========

    def _not(self, a: Any) -> Any:
        value = self._boolify(a)
        if is_number(value):
            return 1.0 - value
        return self._mark_binary(1 - value)

    def _and(self, args: list[Any]) -> Any:
        result = 1.0
        for arg in args:
            result = self._indicator(result, self._boolify(arg))
            if is_number(result) and not result:
                return 0.0
        return self._mark_binary(result)

    def _or(self, args: list[Any]) -> Any:
        terms = []
        for arg in args:
            value = self._boolify(arg)
            if is_number(value):
                if value:
                    return 1.0
                continue
            terms.append(value)
        if not terms:
            return 0.0
        if len(terms) == 1:
            return terms[0]
        return self._boolify(self._sum(terms))

    def _in_set(self, value: Any, values: list[Any]) -> Any:
        terms = []
        for candidate in values:
            if is_number(value) and is_number(candidate):
                terms.append(1.0 if value == candidate else 0.0)
            else:
                terms.append(self._reify(Operator.EQUAL, value, candidate))
        return self._or(terms)

    # ========== Arithmetic ==========

    def _div(self, a: Any, b: Any) -> Any:
        if is_number(b):
            if b == 0:
                raise LoweringError("division by constant zero")
            return a / b if is_number(a) else a * (1.0 / b)
        return a * self._power(b, -1.0)

    def _pow(self, base: Any, exponent: Any) -> Any:
        if not is_number(exponent):
            raise LoweringError(f"{self.name} requires a constant exponent in pow()")
        if is_number(base):
            try:
                return math.pow(base, exponent)
            except (ValueError, OverflowError, ZeroDivisionError) as exc:
                raise LoweringError(f"pow({base}, {exponent}) is undefined") from exc
        if exponent == 0:
            return 1.0
        if exponent == 1:
            return base
        return self._power(base, float(exponent))

    def _abs(self, a: Any) -> Any:
        return abs(a) if is_number(a) else self._absolute(a)

    def _min(self, args: list[Any]) -> Any:
        return self._extremum(args, minimum=True)

    def _max(self, args: list[Any]) -> Any:
        return self._extremum(args, minimum=False)

    def _extremum(self, args: list[Any], minimum: bool) -> Any:
        if all(is_number(a) for a in args):
            return min(args) if minimum else max(args)
        result = self._variable(CONTINUOUS, -INF, INF, self._aux_name("min" if minimum else "max"))
        selectors = [self._new_binary("argmin" if minimum else "argmax") for _ in args]
        self._constrain(self._sum(selectors), 1.0, 1.0)
        for arg, selector in zip(args, selectors):
            gap = arg - result if minimum else result - arg
            self._constrain(gap, 0.0, INF)
            self._constrain(self._indicator(selector, gap), -INF, 0.0)
        return result

    # ========== Conditionals and element ==========

    def _if_then_else(self, condition: Any, then_value: Any, else_value: Any) -> Any:
        c = self._boolify(condition)
        if is_number(c):
            return then_value if c else else_value
        return self._indicator(c, then_value) + self._indicator(1 - c, else_value)

    def _n_ary_if(self, conditions: list[Any], values: list[Any], otherwise: Any) -> Any:
        """First-match selection: each term is gated by all earlier conditions being false."""
        terms = []
        pending = 1.0
        for condition, value in zip(conditions, values):
            c = self._boolify(condition)
            terms.append(self._indicator(self._indicator(pending, c), value))
            pending = self._indicator(pending, 1.0 - c if is_number(c) else 1 - c)
        terms.append(self._indicator(pending, otherwise))
        terms = [t for t in terms if not (is_number(t) and t == 0)]
        return self._sum(terms)

    def _lookup(self, index: Any, entries: list[tuple[int, Any]]) -> Any:
        """Selector-based element: exactly one position is chosen and equals index."""
        selectors = [self._new_binary("select") for _ in entries]
        self._constrain(self._sum(selectors), 1.0, 1.0)
        chosen = self._sum([position * s for (position, _), s in zip(entries, selectors) if position])
        self._constrain(index - chosen, 0.0, 0.0)
        return self._sum([self._indicator(s, value) for (_, value), s in zip(entries, selectors)])

    def _keyed_membership(self, key: Any, keys: list[int], value: Any) -> Any:
        """
        element_of(v, collection(k)) with both k and v variable.

        When v is a bounded integer variable the membership table is a
        |K| x |V| matrix flattened to one element lookup.
        """
        if isinstance(value, Expression) and value.operator is Operator.NONE:
            value = value.operands[0]
        if not (
            isinstance(value, Variable)
            and value.type is not VariableType.REAL
            and math.isfinite(value.lower_bound)
            and math.isfinite(value.upper_bound)
        ):
            return super()._keyed_membership(key, keys, value)

        low, high = math.ceil(value.lower_bound), math.floor(value.upper_bound)
        width = high - low + 1
        flat = self._new_integer(0, len(keys) * width - 1, "member_index")
        self._post_equal(flat, (key - keys[0]) * width + self.translate(value) - low)
        entries = []
        for row, k in enumerate(keys):
            members = set(self._collection(k))
            for column in range(width):
                entries.append((row * width + column, float(low + column in members)))
        return self._mark_binary(self._lookup(flat, entries))


__all__ = ["EpsilonLowering", "CONTINUOUS", "INTEGER", "BINARY"]
