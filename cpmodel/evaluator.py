"""
Exact evaluation of expressions on an assignment.

Results are floats (comparisons and connectives yield 0.0 / 1.0) or None
when a needed value is missing; evaluation stops at the first undefined
dependency. No tolerance is applied: ``x < y`` is the IEEE comparison.

Errors that make a value undefined rather than missing (division by zero,
index out of range, failing collection lookup, aggregates over an empty
collection) raise EvaluationError.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, Callable

from cpmodel.errors import CollectionError, EvaluationError
from cpmodel.expression import Expression, Operator, custom_name, is_collection
from cpmodel.variables import IndexedVariable, Variable

if TYPE_CHECKING:
    from cpmodel.solution import Solution

# Signature of custom evaluators: (evaluator, arguments) -> value or None
CustomEvaluator = Callable[["Evaluator", list], "float | None"]


def _truth(value: float) -> float:
    return 1.0 if value else 0.0


class Evaluator:
    """
    Evaluates operands against the values held by a Solution.

    Custom operators are dispatched by name; additional ones can be
    registered per solution with ``Solution.add_evaluator``.
    """

    def __init__(self, solution: Solution):
        self.solution = solution
        self.model = solution.model
        self._custom: dict[str, CustomEvaluator] = {
            "sum": Evaluator._sum,
            "avg": Evaluator._avg,
            "count": Evaluator._count,
            "min": Evaluator._min,
            "max": Evaluator._max,
            "abs": Evaluator._abs,
            "pow": Evaluator._pow,
            "if_then_else": Evaluator._if_then_else,
            "n_ary_if": Evaluator._n_ary_if,
            "element_of": Evaluator._element_of,
            "not_element_of": Evaluator._not_element_of,
            "at": Evaluator._at,
        }
        self._custom.update(solution._evaluators)

    def evaluate(self, operand: Any) -> float | None:
        if isinstance(operand, float):
            return operand
        if isinstance(operand, Variable):
            return self._variable(operand)
        if isinstance(operand, IndexedVariable):
            return self._indexed(operand)
        if isinstance(operand, Expression):
            return self._expression(operand)
        if isinstance(operand, (int, bool)):
            return float(operand)
        raise EvaluationError(f"cannot evaluate operand {operand!r}")

    def values(self, operands: list) -> list[float] | None:
        """Evaluate all operands; None as soon as one is missing."""
        result = []
        for operand in operands:
            value = self.evaluate(operand)
            if value is None:
                return None
            result.append(value)
        return result

    # ========== Terminals ==========

    def _variable(self, variable: Variable) -> float | None:
        value = self.solution._values.get(variable)
        if value is not None:
            return value
        if variable.deduced_from is not None:
            return self.evaluate(variable.deduced_from)
        if variable.is_fixed:
            return variable.lower_bound
        return None

    def _indexed(self, handle: IndexedVariable) -> float | None:
        index = self.evaluate(handle.index)
        if index is None:
            return None
        position = round(index)
        if not 0 <= position < len(handle.family):
            raise EvaluationError(
                f"index {position} out of range for {handle.family.name} "
                f"(0..{len(handle.family) - 1})"
            )
        return self.evaluate(handle.family.variables[position])

    # ========== Operators ==========

    def _expression(self, expression: Expression) -> float | None:
        op = expression.operator
        operands = expression.operands

        if op is Operator.NONE:
            return self.evaluate(operands[0])

        if op is Operator.LOGICAL_AND:
            for operand in operands:
                value = self.evaluate(operand)
                if value is None:
                    return None
                if not value:
                    return 0.0
            return 1.0

        if op is Operator.LOGICAL_OR:
            for operand in operands:
                value = self.evaluate(operand)
                if value is None:
                    return None
                if value:
                    return 1.0
            return 0.0

        if op is Operator.CUSTOM:
            name = custom_name(operands[0])
            implementation = self._custom.get(name)
            if implementation is None:
                raise EvaluationError(f"no evaluator for custom operator {name}()")
            return implementation(self, operands[1:])

        if op is Operator.AT:
            return self._at(operands[1:] + operands[:1])

        if op is Operator.COLLECTION:
            raise EvaluationError(
                f"collection {expression.stringify()} has no numeric value"
            )

        values = self.values(operands)
        if values is None:
            return None

        if op is Operator.NEGATE:
            return -values[0]
        if op is Operator.LOGICAL_NOT:
            return _truth(not values[0])
        if op is Operator.ADD:
            return math.fsum(values)
        if op is Operator.SUBTRACT:
            result = values[0]
            for value in values[1:]:
                result -= value
            return result
        if op is Operator.MULTIPLY:
            return math.prod(values)
        if op is Operator.DIVIDE:
            result = values[0]
            for value in values[1:]:
                if value == 0:
                    raise EvaluationError(f"division by zero in {expression.stringify()}")
                result /= value
            return result

        lhs, rhs = values
        if op is Operator.LESS_THAN:
            return _truth(lhs < rhs)
        if op is Operator.LESS_OR_EQUAL:
            return _truth(lhs <= rhs)
        if op is Operator.GREATER_THAN:
            return _truth(lhs > rhs)
        if op is Operator.GREATER_OR_EQUAL:
            return _truth(lhs >= rhs)
        if op is Operator.EQUAL:
            return _truth(lhs == rhs)
        if op is Operator.NOT_EQUAL:
            return _truth(lhs != rhs)

        raise EvaluationError(f"unexpected operator {op.value}")

    # ========== Collections ==========

    def collection(self, expression: Expression) -> list[float] | None:
        """Values of ``collection(key)`` for the evaluated key."""
        key = self.evaluate(expression.operands[0])
        if key is None:
            return None
        try:
            return self.model.get_collection(round(key))
        except CollectionError as exc:
            raise EvaluationError(str(exc)) from exc

    def _items(self, arguments: list) -> tuple[list[float] | None, str]:
        """Values of a single collection argument or of inline arguments."""
        if len(arguments) == 1 and is_collection(arguments[0]):
            return self.collection(arguments[0]), arguments[0].stringify()
        return self.values(arguments), "operands"

    # ========== Custom operators ==========

    def _sum(self, arguments):
        values, _ = self._items(arguments)
        return None if values is None else math.fsum(values)

    def _avg(self, arguments):
        values, source = self._items(arguments)
        if values is None:
            return None
        if not values:
            raise EvaluationError(f"avg() is undefined for empty {source}")
        return math.fsum(values) / len(values)

    def _count(self, arguments):
        if len(arguments) == 1 and is_collection(arguments[0]):
            values = self.collection(arguments[0])
            return None if values is None else float(len(values))
        return float(len(arguments))

    def _min(self, arguments):
        values, source = self._items(arguments)
        if values is None:
            return None
        if not values:
            raise EvaluationError(f"min() is undefined for empty {source}")
        return min(values)

    def _max(self, arguments):
        values, source = self._items(arguments)
        if values is None:
            return None
        if not values:
            raise EvaluationError(f"max() is undefined for empty {source}")
        return max(values)

    def _abs(self, arguments):
        value = self.evaluate(arguments[0])
        return None if value is None else abs(value)

    def _pow(self, arguments):
        values = self.values(arguments)
        if values is None:
            return None
        try:
            return math.pow(values[0], values[1])
        except (ValueError, ZeroDivisionError, OverflowError) as exc:
            raise EvaluationError(f"pow({values[0]}, {values[1]}) is undefined: {exc}") from exc

    def _if_then_else(self, arguments):
        condition = self.evaluate(arguments[0])
        if condition is None:
            return None
        return self.evaluate(arguments[1] if condition else arguments[2])

    def _n_ary_if(self, arguments):
        for i in range(0, len(arguments) - 1, 2):
            condition = self.evaluate(arguments[i])
            if condition is None:
                return None
            if condition:
                return self.evaluate(arguments[i + 1])
        return self.evaluate(arguments[-1])

    def _element_of(self, arguments):
        value = self.evaluate(arguments[0])
        if value is None:
            return None
        values, _ = self._items(arguments[1:])
        if values is None:
            return None
        return _truth(value in values)

    def _not_element_of(self, arguments):
        result = self._element_of(arguments)
        return None if result is None else 1.0 - result

    def _at(self, arguments):
        index = self.evaluate(arguments[0])
        if index is None:
            return None
        position = round(index)
        if len(arguments) == 2 and is_collection(arguments[1]):
            values = self.collection(arguments[1])
            if values is None:
                return None
            if not 1 <= position <= len(values):
                raise EvaluationError(
                    f"index {position} out of range for {arguments[1].stringify()} "
                    f"(1..{len(values)})"
                )
            return values[position - 1]
        if not 1 <= position < len(arguments):
            raise EvaluationError(
                f"index {position} out of range for at() (1..{len(arguments) - 1})"
            )
        return self.evaluate(arguments[position])


__all__ = ["Evaluator", "CustomEvaluator"]
