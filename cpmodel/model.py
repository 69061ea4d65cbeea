"""
Model: owner of variables, indexed families, sequences, constraints,
objective and external collection lookup.

Entities are append-only. Names are unique per namespace (variables,
including family and sequence members; indexed families; sequences).
"""

from __future__ import annotations

from enum import Enum
from numbers import Integral
from typing import Any, Callable, Iterator

from cpmodel.errors import CollectionError, ModelError
from cpmodel.expression import (
    ARITHMETIC_OPERATORS,
    Expression,
    Operator,
    Term,
)
from cpmodel.variables import (
    IndexedVariable,
    IndexedVariables,
    Sequence,
    Variable,
    VariableType,
)

CollectionLookup = Callable[[int], Any]


class ObjectiveSense(Enum):
    FEASIBLE = "feasible"
    MINIMIZE = "minimize"
    MAXIMIZE = "maximize"


class Model:
    """
    A mixed CP / MIP model.

    Example:
        model = Model(ObjectiveSense.MINIMIZE)
        x = model.add_integer_variable("x", 0)
        y = model.add_integer_variable("y", 0)
        model.add_constraint(x + y >= 10)
        model.set_objective(ObjectiveSense.MINIMIZE, 2 * x + 3 * y)
    """

    def __init__(self, objective_sense: ObjectiveSense = ObjectiveSense.FEASIBLE):
        self.objective_sense = objective_sense
        self.objective: Expression = Expression.wrap(0.0)
        self.sequences: list[Sequence] = []
        self.variables: list[Variable] = []
        self.indexed_variables: list[IndexedVariables] = []
        self.constraints: list[Expression] = []

        self._names: dict[str, set[str]] = {
            "variable": set(),
            "indexed variables": set(),
            "sequence": set(),
        }
        self._collection_lookup: CollectionLookup | None = None
        self._number_of_keys = 0

    # ========== Variables ==========

    def add_variable(
        self,
        type: VariableType,
        name: str,
        lower_bound: float | None = None,
        upper_bound: float | None = None,
        expression: Any = None,
    ) -> Variable:
        """
        Add a variable with bounds, or deduced from an expression.

        Raises:
            ModelError: On duplicate name, inverted bounds, or a cyclic
                deduction
        """
        variable = self._new_variable(type, name, lower_bound, upper_bound, expression)
        self._register("variable", name)
        self.variables.append(variable)
        return variable

    def add_boolean_variable(self, name: str) -> Variable:
        return self.add_variable(VariableType.BOOLEAN, name)

    def add_integer_variable(
        self, name: str, lower_bound: float | None = None, upper_bound: float | None = None
    ) -> Variable:
        return self.add_variable(VariableType.INTEGER, name, lower_bound, upper_bound)

    def add_real_variable(
        self, name: str, lower_bound: float | None = None, upper_bound: float | None = None
    ) -> Variable:
        return self.add_variable(VariableType.REAL, name, lower_bound, upper_bound)

    def add_indexed_variables(self, type: VariableType, name: str) -> IndexedVariables:
        """Add an empty family; members are appended with ``emplace``."""
        self._register("indexed variables", name)
        family = IndexedVariables(self, type, name)
        self.indexed_variables.append(family)
        return family

    def add_sequence(self, name: str, n: int) -> Sequence:
        """Add n integer variables forming a permutation of 1..n."""
        if not isinstance(n, Integral) or n < 1:
            raise ModelError(f"sequence {name} must have a positive length, got {n}")
        sequence = Sequence(name, int(n))
        for member in sequence:
            if member.name in self._names["variable"]:
                raise ModelError(f"duplicate variable name: {member.name}")
        self._register("sequence", name)
        for member in sequence:
            self._names["variable"].add(member.name)
        self.sequences.append(sequence)
        return sequence

    def _add_member(
        self,
        family: IndexedVariables,
        lower_bound: float | None,
        upper_bound: float | None,
        expression: Any,
    ) -> Variable:
        name = f"{family.name}[{len(family.variables)}]"
        variable = self._new_variable(
            family.type, name, lower_bound, upper_bound, expression, owner=family
        )
        self._register("variable", name)
        family.variables.append(variable)
        return variable

    def _new_variable(
        self,
        type: VariableType,
        name: str,
        lower_bound: float | None,
        upper_bound: float | None,
        expression: Any,
        owner: IndexedVariables | None = None,
    ) -> Variable:
        if name in self._names["variable"]:
            raise ModelError(f"duplicate variable name: {name}")
        deduced_from = None
        if expression is not None:
            deduced_from = Expression.wrap(expression)
        variable = Variable(type, name, lower_bound, upper_bound, deduced_from)
        if variable.lower_bound > variable.upper_bound:
            raise ModelError(
                f"variable {name} has empty domain "
                f"[{variable.lower_bound}, {variable.upper_bound}]"
            )
        if deduced_from is not None:
            self._check_acyclic(variable, owner)
        return variable

    def _check_acyclic(self, variable: Variable, owner: IndexedVariables | None) -> None:
        """Reject a deduction that reaches the variable being defined."""
        visited: set[int] = set()
        stack: list[Any] = [variable.deduced_from]
        while stack:
            operand = stack.pop()
            if id(operand) in visited:
                continue
            visited.add(id(operand))
            if isinstance(operand, Expression):
                stack.extend(o for o in operand.operands if isinstance(o, Term))
            elif isinstance(operand, IndexedVariable):
                if operand.family is owner:
                    raise ModelError(
                        f"variable {variable.name} is deduced from its own family "
                        f"{owner.name}"
                    )
                stack.append(operand.index)
                stack.extend(operand.family.variables)
            elif isinstance(operand, Variable):
                if operand is variable:
                    raise ModelError(f"variable {variable.name} is deduced from itself")
                if operand.deduced_from is not None:
                    stack.append(operand.deduced_from)

    def _register(self, namespace: str, name: str) -> None:
        names = self._names[namespace]
        if name in names:
            raise ModelError(f"duplicate {namespace} name: {name}")
        names.add(name)

    def all_variables(self) -> Iterator[Variable]:
        """Sequence members, plain variables, then family members."""
        for sequence in self.sequences:
            yield from sequence
        yield from self.variables
        for family in self.indexed_variables:
            yield from family

    # ========== Objective and constraints ==========

    def set_objective(self, sense: ObjectiveSense, expression: Any = 0.0) -> Expression:
        self.objective_sense = sense
        self.objective = Expression.wrap(expression)
        return self.objective

    def add_constraint(self, constraint: Any) -> Expression:
        """
        Add a boolean-valued constraint.

        Raises:
            ModelError: If constraint is a constant, an arithmetic node or a
                bare collection
        """
        if not isinstance(constraint, Term):
            raise ModelError(f"constraint must be an expression, got {constraint!r}")
        constraint = Expression.wrap(constraint)
        if constraint.operator in ARITHMETIC_OPERATORS or constraint.operator is Operator.COLLECTION:
            raise ModelError(
                f"constraint must be boolean-valued: {constraint.stringify()}"
            )
        if constraint.operator is Operator.NONE and isinstance(constraint.operands[0], float):
            raise ModelError(f"constraint must not be a constant: {constraint.stringify()}")
        self.constraints.append(constraint)
        return constraint

    # ========== Collections ==========

    def set_collection_lookup(self, lookup: CollectionLookup, number_of_keys: int) -> None:
        """
        Register the external source of collections.

        Args:
            lookup: Callable mapping a key in [0, number_of_keys) to a
                sequence of numbers; it may raise or return None on failure
            number_of_keys: Number of valid keys
        """
        if number_of_keys < 0:
            raise ModelError(f"number of keys must be non-negative, got {number_of_keys}")
        self._collection_lookup = lookup
        self._number_of_keys = int(number_of_keys)

    @property
    def has_collection_lookup(self) -> bool:
        return self._collection_lookup is not None

    @property
    def number_of_keys(self) -> int:
        return self._number_of_keys

    def get_collection(self, key: Any) -> list[float]:
        """
        Return the collection stored under ``key``.

        Raises:
            CollectionError: If no lookup is set, the key is out of range, or
                the lookup fails
        """
        if self._collection_lookup is None:
            raise CollectionError(key, "no collection lookup is set")
        if isinstance(key, float) and key.is_integer():
            key = int(key)
        if not isinstance(key, Integral) or not 0 <= key < self._number_of_keys:
            raise CollectionError(key, f"key must be an integer in [0, {self._number_of_keys})")
        try:
            values = self._collection_lookup(int(key))
        except Exception as exc:
            raise CollectionError(key, f"lookup failed: {exc}") from exc
        if values is None:
            raise CollectionError(key, "lookup failed")
        return [float(v) for v in values]

    # ========== Output ==========

    def stringify(self) -> str:
        lines = ["Sequences:"]
        lines += [s.stringify() for s in self.sequences]
        lines.append("Variables:")
        lines += [v.stringify() for v in self.variables]
        lines.append("Indexed variables:")
        lines += [f.stringify() for f in self.indexed_variables]
        lines.append("Constraints:")
        lines += [c.stringify() for c in self.constraints]
        return "\n".join(lines) + "\n"

    def __repr__(self) -> str:
        return (
            f"Model({self.objective_sense.name}, {len(self.variables)} variables, "
            f"{len(self.constraints)} constraints)"
        )


__all__ = ["Model", "ObjectiveSense", "CollectionLookup"]
