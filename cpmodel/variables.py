"""
Decision variables, indexed families and permutation sequences.

All of these are created through a ``Model``, which owns them for its whole
lifetime; expressions only hold references.
"""

from __future__ import annotations

import math
from enum import Enum
from numbers import Integral
from typing import TYPE_CHECKING, Any, Iterator

from cpmodel.expression import Expression, Term

if TYPE_CHECKING:
    from cpmodel.model import Model


class VariableType(Enum):
    BOOLEAN = "boolean"
    INTEGER = "integer"
    REAL = "real"


def default_bounds(type: VariableType) -> tuple[float, float]:
    if type is VariableType.BOOLEAN:
        return 0.0, 1.0
    return -math.inf, math.inf


class Variable(Term):
    """
    A decision variable, or a variable deduced from an expression.

    Attributes:
        type: Variable type
        name: Unique name within the model
        lower_bound: Lower bound (-inf when unbounded)
        upper_bound: Upper bound (inf when unbounded)
        deduced_from: Defining expression, or None for decision variables
    """

    def __init__(
        self,
        type: VariableType,
        name: str,
        lower_bound: float | None = None,
        upper_bound: float | None = None,
        deduced_from: Expression | None = None,
    ):
        default_lower, default_upper = default_bounds(type)
        self.type = type
        self.name = name
        self.lower_bound = default_lower if lower_bound is None else float(lower_bound)
        self.upper_bound = default_upper if upper_bound is None else float(upper_bound)
        self.deduced_from = deduced_from

    @property
    def is_deduced(self) -> bool:
        return self.deduced_from is not None

    @property
    def is_fixed(self) -> bool:
        return self.lower_bound == self.upper_bound

    def reference(self) -> str:
        return self.name

    def stringify(self) -> str:
        if self.deduced_from is not None:
            return self.name + " := " + self.deduced_from.stringify()

        lower, upper = self.lower_bound, self.upper_bound
        if self.type is VariableType.BOOLEAN:
            if self.is_fixed:
                return self.name + " := " + ("true" if lower else "false")
            return self.name + " ∈ { false, true }"

        if self.type is VariableType.INTEGER:
            if self.is_fixed:
                return self.name + " := " + str(int(lower))
            low = "-infinity" if lower == -math.inf else str(int(lower))
            high = "infinity" if upper == math.inf else str(int(upper))
            return self.name + " ∈ { " + low + ", ..., " + high + " }"

        if self.is_fixed:
            return self.name + " := " + f"{lower:.2f}"
        low = "-infinity" if lower == -math.inf else f"{lower:.2f}"
        high = "infinity" if upper == math.inf else f"{upper:.2f}"
        return self.name + " ∈ [ " + low + ", " + high + " ]"

    def __repr__(self) -> str:
        return f"Variable({self.stringify()!r})"


class IndexedVariable(Term):
    """
    Handle for ``family[index]`` where index is a variable (0-based).

    Attributes:
        family: The indexed family
        index: Variable selecting the member
    """

    def __init__(self, family: IndexedVariables, index: Variable):
        self.family = family
        self.index = index

    def reference(self) -> str:
        return self.family.name + "[" + self.index.name + "]"

    def stringify(self) -> str:
        return self.reference()

    def __repr__(self) -> str:
        return f"IndexedVariable({self.reference()!r})"


class IndexedVariables:
    """
    Append-only family of variables sharing a type and a base name.

    Member ``i`` is named ``name[i]``. Indexing with an int returns the
    member; indexing with a Variable returns an IndexedVariable handle whose
    value is the member at the (0-based) position given by that variable.
    """

    def __init__(self, model: Model, type: VariableType, name: str):
        self._model = model
        self.type = type
        self.name = name
        self.variables: list[Variable] = []

    def emplace(
        self,
        lower_bound: float | None = None,
        upper_bound: float | None = None,
        expression: Any = None,
    ) -> Variable:
        """Append a member with bounds, or deduced from an expression."""
        return self._model._add_member(self, lower_bound, upper_bound, expression)

    def __getitem__(self, index: Any) -> Variable | IndexedVariable:
        if isinstance(index, Variable):
            return IndexedVariable(self, index)
        if isinstance(index, Integral):
            return self.variables[index]
        raise TypeError(
            f"{self.name}[...] expects an int or a Variable, got {type(index).__name__}"
        )

    def __len__(self) -> int:
        return len(self.variables)

    def __iter__(self) -> Iterator[Variable]:
        return iter(self.variables)

    def stringify(self) -> str:
        if not self.variables:
            return self.name + " := { }"
        members = ", ".join(v.stringify() for v in self.variables)
        return self.name + " := { " + members + " }"

    def __repr__(self) -> str:
        return f"IndexedVariables({self.name!r}, {len(self.variables)} members)"


class Sequence:
    """n integer variables whose values form a permutation of 1..n."""

    def __init__(self, name: str, n: int):
        self.name = name
        self.variables = [
            Variable(VariableType.INTEGER, f"{name}[{i}]", 1, n) for i in range(n)
        ]

    def __len__(self) -> int:
        return len(self.variables)

    def __getitem__(self, index: int) -> Variable:
        return self.variables[index]

    def __iter__(self) -> Iterator[Variable]:
        return iter(self.variables)

    def stringify(self) -> str:
        n = len(self.variables)
        members = ", ".join(v.name for v in self.variables)
        return (
            "( " + members + " ) is permutation of { 1, "
            + ("..., " if n > 2 else "") + str(n) + " }"
        )

    def __repr__(self) -> str:
        return f"Sequence({self.name!r}, {len(self.variables)})"


__all__ = [
    "VariableType",
    "Variable",
    "IndexedVariable",
    "IndexedVariables",
    "Sequence",
    "default_bounds",
]
