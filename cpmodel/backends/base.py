"""
Base adapter class for solver backends.

Provides the single walk over a Model shared by every backend: variable
materialization, deduced variables, constraints, objective, a per-node memo
and readout into a Solution. Backends implement the translation hooks.
"""

from __future__ import annotations

import math
import time
from abc import abstractmethod
from numbers import Real
from typing import Any

from cpmodel.errors import CollectionError, InfeasibleError, LoweringError
from cpmodel.expression import (
    COMPARISON_OPERATORS,
    Expression,
    Operator,
    custom_name,
    is_collection,
    stringify_operand,
)
from cpmodel.model import Model, ObjectiveSense
from cpmodel.solution import Solution, Status
from cpmodel.variables import IndexedVariable, Sequence, Variable


def is_number(handle: Any) -> bool:
    """True for Python numbers (folded constants), False for solver terms."""
    return isinstance(handle, Real)


class BaseAdapter:
    """
    Base class for backend adapters.

    Subclasses should:
    1. Call super().__init__() and create their solver model
    2. Implement _create_variable / _create_sequence
    3. Override the expression hooks (_reify, _and, _lookup, ...)
    4. Implement the _post_* methods for constraints and objective
    5. Call self.build() at the end of __init__ (lowering is eager)
    6. Implement solve() and _value()

    Attributes:
        model: The model being lowered
        vars: Mapping from model Variable to solver handle
        time_limit: Time limit in seconds (None for no limit)
        verbose: Verbosity level
        precision: Decimal places kept when reading values back
        options: Solver-specific parameters
    """

    name = "base"

    def __init__(
        self,
        model: Model,
        time_limit: float | None = None,
        verbose: int = 0,
        precision: int = 6,
        options: dict[str, Any] | None = None,
    ):
        # Configuration
        self.model = model
        self.time_limit = time_limit
        self.verbose = verbose
        self.precision = precision
        self.options = dict(options or {})

        # Variable mapping: model variable -> solver handle
        self.vars: dict[Variable, Any] = {}

        # Memo: id(IR node) -> (node, handle); the node is kept alive so ids stay unique
        self._cache: dict[int, tuple[Any, Any]] = {}

        self._aux_counter = 0
        self._violated: list[str] = []
        self._built = False

    # ========== Abstract methods to implement ==========

    @abstractmethod
    def solve(self) -> Solution:
        """
        Solve the lowered model.

        Raises:
            InfeasibleError: If the solver proves infeasibility
            UnboundedError: If the solver proves unboundedness
            SolverError: On any other solver failure
        """
        raise NotImplementedError

    @abstractmethod
    def _value(self, handle: Any) -> float:
        """Value of a solver handle in the incumbent solution."""
        raise NotImplementedError

    @abstractmethod
    def _create_variable(self, variable: Variable) -> Any:
        raise NotImplementedError

    @abstractmethod
    def _create_sequence(self, sequence: Sequence) -> list[Any]:
        """Create the permutation and return one handle per member (values 1..n)."""
        raise NotImplementedError

    @abstractmethod
    def _new_integer(self, lower: int, upper: int, hint: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    def _post_equal(self, lhs: Any, rhs: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def _post_comparison(self, operator: Operator, lhs: Any, rhs: Any) -> None:
        """Enforce a top-level comparison directly."""
        raise NotImplementedError

    @abstractmethod
    def _post_true(self, handle: Any) -> None:
        """Enforce a boolean-valued handle to be true."""
        raise NotImplementedError

    @abstractmethod
    def _post_deduced(self, variable: Variable, handle: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def _post_objective(self, sense: ObjectiveSense, handle: Any) -> None:
        raise NotImplementedError

    # ========== Model walk ==========

    def build(self) -> None:
        """Lower the whole model once."""
        if self._built:
            raise LoweringError(f"{self.name} adapter has already lowered its model")
        self._built = True
        start = time.time()
        model = self.model

        for sequence in model.sequences:
            handles = self._create_sequence(sequence)
            for variable, handle in zip(sequence, handles):
                self.vars[variable] = handle
            self._log(2, f"Created sequence {sequence.name} of length {len(sequence)}")

        for variable in model.variables:
            self.vars[variable] = self._create_variable(variable)
        for family in model.indexed_variables:
            for variable in family:
                self.vars[variable] = self._create_variable(variable)

        for variable in model.all_variables():
            if variable.deduced_from is not None:
                self._post_deduced(variable, self.translate(variable.deduced_from))
                self._log(2, f"Added deduction {variable.stringify()}")

        for constraint in model.constraints:
            self.post_constraint(constraint)
            self._log(2, f"Added constraint {constraint.stringify()}")

        if model.objective_sense is not ObjectiveSense.FEASIBLE:
            self._post_objective(model.objective_sense, self.translate(model.objective))
            self._log(2, f"Added objective {model.objective_sense.value} {model.objective.stringify()}")

        self._log(
            1,
            f"Lowered {len(self.vars)} variables and {len(model.constraints)} constraints "
            f"for {self.name} in {time.time() - start:.3f}s",
        )

    def post_constraint(self, constraint: Expression) -> None:
        """Lower a top-level constraint without a reification variable."""
        op = constraint.operator
        if op is Operator.NONE and isinstance(constraint.operands[0], Expression):
            self.post_constraint(constraint.operands[0])
        elif op is Operator.LOGICAL_AND:
            for operand in constraint.operands:
                self.post_constraint(Expression.wrap(operand))
        elif op in COMPARISON_OPERATORS:
            lhs = self.translate(constraint.operands[0])
            rhs = self.translate(constraint.operands[1])
            if is_number(lhs) and is_number(rhs):
                self._post_constant(self._fold(op, lhs, rhs), constraint)
            else:
                self._post_comparison(op, lhs, rhs)
        else:
            handle = self.translate(constraint)
            if is_number(handle):
                self._post_constant(handle, constraint)
            else:
                self._post_true(handle)

    def _post_constant(self, value: float, constraint: Expression) -> None:
        if not value:
            self._violated.append(constraint.stringify())
            self._log(1, f"Constraint is constant false: {constraint.stringify()}")

    def _ensure_satisfiable(self) -> None:
        """Raise for constraints that folded to false during lowering."""
        if self._violated:
            raise InfeasibleError(f"constraint is always false: {self._violated[0]}")

    # ========== Expression translation ==========

    def translate(self, operand: Any) -> Any:
        """
        Translate an operand to a solver handle.

        Expression nodes and indexed handles are memoized by identity, so
        translating the same node twice creates nothing new.
        """
        if isinstance(operand, float):
            return self._constant(operand)
        if isinstance(operand, Variable):
            try:
                return self.vars[operand]
            except KeyError:
                raise LoweringError(f"Unknown variable in expression: {operand.name}") from None
        if isinstance(operand, (Expression, IndexedVariable)):
            cached = self._cache.get(id(operand))
            if cached is not None:
                return cached[1]
            if isinstance(operand, IndexedVariable):
                handle = self._translate_indexed(operand)
            else:
                handle = self._translate_expression(operand)
            self._cache[id(operand)] = (operand, handle)
            return handle
        raise LoweringError(f"Unexpected operand: {operand!r}")

    def _translate_expression(self, expression: Expression) -> Any:
        op = expression.operator
        operands = expression.operands

        if op is Operator.NONE:
            return self.translate(operands[0])
        if op is Operator.NEGATE:
            return self._neg(self.translate(operands[0]))
        if op is Operator.ADD:
            return self._translate_nary(operands, self._add)
        if op is Operator.SUBTRACT:
            return self._translate_nary(operands, self._sub)
        if op is Operator.MULTIPLY:
            return self._translate_nary(operands, self._mul)
        if op is Operator.DIVIDE:
            return self._translate_nary(operands, self._div)
        if op in COMPARISON_OPERATORS:
            lhs = self.translate(operands[0])
            rhs = self.translate(operands[1])
            if is_number(lhs) and is_number(rhs):
                return self._constant(self._fold(op, lhs, rhs))
            return self._reify(op, lhs, rhs)
        if op is Operator.LOGICAL_NOT:
            return self._not(self.translate(operands[0]))
        if op is Operator.LOGICAL_AND:
            return self._and([self.translate(o) for o in operands])
        if op is Operator.LOGICAL_OR:
            return self._or([self.translate(o) for o in operands])
        if op is Operator.AT:
            return self._collection_at(operands[0], operands[1])
        if op is Operator.CUSTOM:
            return self._translate_custom(custom_name(operands[0]), operands[1:])
        if op is Operator.COLLECTION:
            raise LoweringError(
                f"{expression.stringify()} can only be used inside a collection-aware operator"
            )
        raise NotImplementedError(f"Operator {op.value} not implemented in translate")

    def _translate_nary(self, operands: list, op) -> Any:
        result = self.translate(operands[0])
        for operand in operands[1:]:
            result = op(result, self.translate(operand))
        return result

    def _translate_custom(self, name: str, arguments: list) -> Any:
        single_collection = len(arguments) == 1 and is_collection(arguments[0])

        if name in ("sum", "avg", "count", "min", "max") and single_collection:
            return self._aggregate(name, arguments[0])
        if name in ("element_of", "not_element_of") and len(arguments) == 2 and is_collection(arguments[1]):
            member = self._collection_membership(arguments[0], arguments[1])
            return member if name == "element_of" else self._not(member)
        if name == "at" and len(arguments) == 2 and is_collection(arguments[1]):
            return self._collection_at(arguments[1], arguments[0])

        if name == "count":
            return self._constant(float(len(arguments)))
        if name == "sum":
            if not arguments:
                return self._constant(0.0)
            return self._translate_nary(arguments, self._add)
        if name == "avg":
            total = self._translate_nary(arguments, self._add)
            return self._div(total, self._constant(float(len(arguments))))
        if name == "min":
            return self._min([self.translate(a) for a in arguments])
        if name == "max":
            return self._max([self.translate(a) for a in arguments])
        if name == "abs":
            return self._abs(self.translate(arguments[0]))
        if name == "pow":
            return self._pow(self.translate(arguments[0]), self.translate(arguments[1]))
        if name == "if_then_else":
            condition, then_value, else_value = (self.translate(a) for a in arguments)
            return self._if_then_else(condition, then_value, else_value)
        if name == "n_ary_if":
            handles = [self.translate(a) for a in arguments]
            return self._n_ary_if(handles[:-1:2], handles[1:-1:2], handles[-1])
        if name == "element_of":
            return self._in_set(self.translate(arguments[0]), [self.translate(a) for a in arguments[1:]])
        if name == "not_element_of":
            return self._not(
                self._in_set(self.translate(arguments[0]), [self.translate(a) for a in arguments[1:]])
            )
        if name == "at":
            entries = [(i + 1, self.translate(a)) for i, a in enumerate(arguments[1:])]
            return self._element(self.translate(arguments[0]), entries)
        raise LoweringError(f"Custom operator {name}() not supported by {self.name}")

    def _translate_indexed(self, handle: IndexedVariable) -> Any:
        """family[index] with a 0-based variable index."""
        entries = [(i, self.vars[v]) for i, v in enumerate(handle.family)]
        if not entries:
            raise LoweringError(f"{handle.reference()} reads from an empty family")
        return self._element(self.translate(handle.index), entries)

    def _element(self, index: Any, entries: list[tuple[int, Any]]) -> Any:
        """Select the value whose position equals index."""
        if is_number(index):
            position = round(index)
            for candidate, value in entries:
                if candidate == position:
                    return value
            raise LoweringError(
                f"index {position} out of range ({entries[0][0]}..{entries[-1][0]})"
            )
        return self._lookup(index, entries)

    @staticmethod
    def _fold(operator: Operator, lhs: float, rhs: float) -> float:
        return float({
            Operator.LESS_THAN: lhs < rhs,
            Operator.LESS_OR_EQUAL: lhs <= rhs,
            Operator.GREATER_THAN: lhs > rhs,
            Operator.GREATER_OR_EQUAL: lhs >= rhs,
            Operator.EQUAL: lhs == rhs,
            Operator.NOT_EQUAL: lhs != rhs,
        }[operator])

    # ========== Collections ==========

    def _collection(self, key: int) -> list[float]:
        try:
            return self.model.get_collection(key)
        except CollectionError as exc:
            raise LoweringError(str(exc)) from exc

    def _aggregate_value(self, name: str, values: list[float], key: int) -> float:
        if name == "count":
            return float(len(values))
        if name == "sum":
            return math.fsum(values)
        if not values:
            raise LoweringError(f"{name}() is undefined for empty collection at key {key}")
        if name == "avg":
            return math.fsum(values) / len(values)
        return min(values) if name == "min" else max(values)

    def _key_domain(self, key: Any) -> tuple[Any, list[int]]:
        """
        Reduce a collection key to one solver variable and its possible keys.

        Returns:
            (handle, keys) with keys a contiguous range within [0, number_of_keys)
        """
        if not self.model.has_collection_lookup:
            raise LoweringError(f"no collection lookup is set for key {stringify_operand(key)}")
        if isinstance(key, Expression) and key.operator is Operator.NONE:
            key = key.operands[0]
        last_key = self.model.number_of_keys - 1

        if isinstance(key, Variable):
            lower, upper = key.lower_bound, key.upper_bound
        elif isinstance(key, IndexedVariable):
            members = key.family.variables
            if not members:
                raise LoweringError(f"{key.reference()} reads from an empty family")
            lower = min(v.lower_bound for v in members)
            upper = max(v.upper_bound for v in members)
        else:
            raise LoweringError(
                f"collection key {stringify_operand(key)} is not reducible to a single "
                f"back-end variable"
            )

        first = max(0, _ceil(lower))
        last = min(last_key, _floor(upper))
        if first > last:
            raise LoweringError(
                f"collection key {stringify_operand(key)} has no value in "
                f"[0, {self.model.number_of_keys})"
            )
        if isinstance(key, IndexedVariable):
            handle = self._new_integer(first, last, "key")
            self._post_equal(handle, self.translate(key))
        else:
            handle = self.translate(key)
        return handle, list(range(first, last + 1))

    def _aggregate(self, name: str, container: Expression) -> Any:
        """count/sum/avg/min/max over collection(key)."""
        key = container.operands[0]
        if isinstance(key, float):
            values = self._collection(round(key))
            return self._constant(self._aggregate_value(name, values, round(key)))
        handle, keys = self._key_domain(key)
        entries = [
            (k, self._constant(self._aggregate_value(name, self._collection(k), k)))
            for k in keys
        ]
        self._log(3, f"Precomputed {name}() over keys {keys[0]}..{keys[-1]}")
        return self._element(handle, entries)

    def _collection_membership(self, value: Any, container: Expression) -> Any:
        """element_of(value, collection(key)) as a 0/1 handle."""
        key = container.operands[0]
        if isinstance(key, float):
            values = self._collection(round(key))
            if isinstance(value, float):
                return self._constant(float(value in values))
            return self._in_set(self.translate(value), [self._constant_or_none(v) for v in values])
        handle, keys = self._key_domain(key)
        if isinstance(value, float):
            entries = [(k, self._constant(float(value in self._collection(k)))) for k in keys]
            return self._element(handle, entries)
        return self._keyed_membership(handle, keys, value)

    def _keyed_membership(self, key: Any, keys: list[int], value: Any) -> Any:
        """Membership with variable key and variable value: one test per key."""
        value_handle = self.translate(value)
        entries = [
            (k, self._in_set(value_handle, [self._constant_or_none(v) for v in self._collection(k)]))
            for k in keys
        ]
        return self._element(key, entries)

    def _collection_at(self, container: Expression, index: Any) -> Any:
        """1-based read of collection(key) at index."""
        key = container.operands[0]
        index_handle = self.translate(index)
        if isinstance(key, float):
            values = self._collection(round(key))
            if not values:
                raise LoweringError(f"at() reads from empty collection at key {round(key)}")
            entries = [(i + 1, self._constant(v)) for i, v in enumerate(values)]
            return self._element(index_handle, entries)

        handle, keys = self._key_domain(key)
        tables = [self._collection(k) for k in keys]
        width = max(len(t) for t in tables)
        if width == 0:
            raise LoweringError(
                f"at() reads from empty collections at keys {keys[0]}..{keys[-1]}"
            )
        column = index_handle
        if not is_number(index_handle):
            column = self._new_integer(1, width, "at_column")
            self._post_equal(column, index_handle)
        elif not 1 <= round(index_handle) <= width:
            raise LoweringError(f"index {round(index_handle)} out of range (1..{width})")
        flat = self._new_integer(0, len(keys) * width - 1, "at_index")
        self._post_equal(flat, (handle - keys[0]) * width + column - 1)
        entries = [
            (row * width + column, self._constant(v))
            for row, table in enumerate(tables)
            for column, v in enumerate(table)
        ]
        return self._lookup(flat, entries)

    def _constant_or_none(self, value: float) -> Any:
        """Constant handle, or None when the backend cannot represent it."""
        return self._constant(value)

    # ========== Hooks (override in subclass) ==========

    def _constant(self, value: float) -> Any:
        return value

    def _neg(self, a: Any) -> Any:
        return -a

    def _add(self, a: Any, b: Any) -> Any:
        return a + b

    def _sub(self, a: Any, b: Any) -> Any:
        return a - b

    def _mul(self, a: Any, b: Any) -> Any:
        return a * b

    def _div(self, a: Any, b: Any) -> Any:
        raise NotImplementedError("Division not supported by this backend")

    def _pow(self, base: Any, exponent: Any) -> Any:
        raise NotImplementedError("Power not supported by this backend")

    def _abs(self, a: Any) -> Any:
        raise NotImplementedError("Abs not supported by this backend")

    def _min(self, args: list[Any]) -> Any:
        raise NotImplementedError("Min not supported by this backend")

    def _max(self, args: list[Any]) -> Any:
        raise NotImplementedError("Max not supported by this backend")

    def _reify(self, operator: Operator, lhs: Any, rhs: Any) -> Any:
        raise NotImplementedError("Comparison not supported by this backend")

    def _not(self, a: Any) -> Any:
        raise NotImplementedError("Not not supported by this backend")

    def _and(self, args: list[Any]) -> Any:
        raise NotImplementedError("And not supported by this backend")

    def _or(self, args: list[Any]) -> Any:
        raise NotImplementedError("Or not supported by this backend")

    def _if_then_else(self, condition: Any, then_value: Any, else_value: Any) -> Any:
        raise NotImplementedError("If-then-else not supported by this backend")

    def _n_ary_if(self, conditions: list[Any], values: list[Any], otherwise: Any) -> Any:
        result = otherwise
        for condition, value in zip(reversed(conditions), reversed(values)):
            result = self._if_then_else(condition, value, result)
        return result

    def _in_set(self, value: Any, values: list[Any]) -> Any:
        raise NotImplementedError("Set membership not supported by this backend")

    def _lookup(self, index: Any, entries: list[tuple[int, Any]]) -> Any:
        raise NotImplementedError("Element not supported by this backend")

    # ========== Readout ==========

    def _round(self, value: float) -> float:
        return round(value, self.precision) + 0.0

    def _extract_solution(self, status: Status, objective: float | None = None) -> Solution:
        """Read every variable of the model into a new Solution."""
        solution = Solution(self.model, status)
        for sequence in self.model.sequences:
            solution.set_sequence(
                sequence, [self._round(self._value(self.vars[v])) for v in sequence]
            )
        for variable in self.model.all_variables():
            solution.set(variable, self._round(self._value(self.vars[variable])))
        if objective is not None:
            solution.set_objective_value(self._round(objective))
        return solution

    # ========== Utility methods ==========

    def _aux_name(self, hint: str) -> str:
        self._aux_counter += 1
        return f"{hint}#{self._aux_counter}"

    def _log(self, level: int, msg: str) -> None:
        """Log message if verbosity is high enough."""
        if self.verbose >= level:
            print(msg)


def _ceil(value: float) -> int:
    return -(10**18) if value == -math.inf else math.ceil(value)


def _floor(value: float) -> int:
    return 10**18 if value == math.inf else math.floor(value)


__all__ = ["BaseAdapter", "is_number"]
