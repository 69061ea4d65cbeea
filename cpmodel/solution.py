"""
Solution: assignment of values to the variables of a model.

Solutions are produced by back-end adapters or filled in by hand, and can be
checked against their model without any solver.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from cpmodel.errors import EvaluationError, ModelError
from cpmodel.evaluator import CustomEvaluator, Evaluator
from cpmodel.expression import custom_index
from cpmodel.model import Model, ObjectiveSense
from cpmodel.variables import Sequence, Variable

# Absolute tolerance when comparing stored and recomputed values
TOLERANCE = 1e-6


class Status(Enum):
    UNKNOWN = "unknown"
    FEASIBLE = "feasible"
    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"


class Solution:
    """
    Values of a model's variables plus solve status.

    Attributes:
        model: The model this solution belongs to
        status: Solve status
    """

    def __init__(self, model: Model, status: Status = Status.UNKNOWN):
        self.model = model
        self.status = status
        self._values: dict[Variable, float] = {}
        self._sequences: dict[Sequence, list[float]] = {}
        self._objective: float | None = None
        self._evaluators: dict[str, CustomEvaluator] = {}

    # ========== Values ==========

    def set(self, variable: Variable, value: float) -> None:
        self._values[variable] = float(value)

    def get(self, variable: Variable) -> float | None:
        """Stored value, else the deduced or fixed value, else None."""
        return self.evaluate(variable)

    def set_sequence(self, sequence: Sequence, values: list[float]) -> None:
        if len(values) != len(sequence):
            raise ModelError(
                f"sequence {sequence.name} has {len(sequence)} members, got {len(values)} values"
            )
        values = [float(v) for v in values]
        for variable, value in zip(sequence, values):
            self._values[variable] = value
        self._sequences[sequence] = values

    def get_sequence(self, sequence: Sequence) -> list[float] | None:
        values = self._sequences.get(sequence)
        if values is not None:
            return list(values)
        values = [self._values.get(v) for v in sequence]
        if any(v is None for v in values):
            return None
        return values

    def set_objective_value(self, value: float | None) -> None:
        """Record the objective value reported by a solver."""
        self._objective = None if value is None else float(value)

    def objective_value(self) -> float | None:
        """
        Objective value of this assignment.

        Returns the solver-reported value when one was recorded, the
        evaluated objective otherwise; None for feasibility models or when
        values are missing.
        """
        if self.model.objective_sense is ObjectiveSense.FEASIBLE:
            return None
        if self._objective is not None:
            return self._objective
        try:
            return self.evaluate(self.model.objective)
        except EvaluationError:
            return None

    # ========== Evaluation ==========

    def add_evaluator(self, name: str, implementation: CustomEvaluator) -> None:
        """Register an evaluator for a custom operator name."""
        custom_index(name)
        self._evaluators[name] = implementation

    def evaluate(self, expression: Any) -> float | None:
        """
        Evaluate an operand on this assignment.

        Raises:
            EvaluationError: If the value is undefined (e.g. division by zero)
        """
        return Evaluator(self).evaluate(expression)

    def complete(self) -> bool:
        """True when every non-deduced, non-fixed variable has a value."""
        for variable in self.model.all_variables():
            if variable.is_deduced or variable.is_fixed:
                continue
            if variable not in self._values:
                return False
        return True

    def errors(self) -> list[str]:
        """Human-readable descriptions of violated or unevaluable constraints."""
        diagnostics = []
        evaluator = Evaluator(self)
        for constraint in self.model.constraints:
            text = constraint.stringify()
            try:
                value = evaluator.evaluate(constraint)
            except EvaluationError as exc:
                diagnostics.append(f"undefined: {text} ({exc})")
                continue
            if value is None:
                diagnostics.append(f"missing value: {text}")
            elif not value:
                diagnostics.append(f"infeasible: {text}")

        for variable in self.model.all_variables():
            stored = self._values.get(variable)
            if variable.deduced_from is None or stored is None:
                continue
            try:
                expected = evaluator.evaluate(variable.deduced_from)
            except EvaluationError:
                continue
            if expected is not None and not math.isclose(stored, expected, abs_tol=TOLERANCE):
                diagnostics.append(
                    f"inconsistent: {variable.name} = {stored:.6f} but "
                    f"{variable.deduced_from.stringify()} = {expected:.6f}"
                )
        return diagnostics

    def validate(self, expected_objective: float | None = None) -> str:
        """
        Report violated constraints and check the recorded objective.

        Args:
            expected_objective: Objective to compare against; defaults to the
                objective evaluated on this assignment
        """
        lines = [e for e in self.errors() if e.startswith("infeasible: ")]
        objective = expected_objective
        if objective is None:
            try:
                objective = self.evaluate(self.model.objective)
            except EvaluationError:
                objective = None
        if objective is None:
            lines.append("objective: n/a")
        elif self._objective is None:
            lines.append(f"missing objective, expected: {objective:.6f}")
        elif not math.isclose(self._objective, objective, abs_tol=TOLERANCE):
            lines.append(f"wrong objective, expected: {objective:.6f}")
        else:
            lines.append(f"objective: {objective:.6f}")
        return "\n".join(lines)

    # ========== Output ==========

    def stringify(self) -> str:
        lines = []
        for variable in self.model.all_variables():
            try:
                value = self.evaluate(variable)
            except EvaluationError:
                value = None
            lines.append(f"{variable.name} = " + ("n/a" if value is None else f"{value:.6f}"))
        objective = self.objective_value()
        lines.append("objective: " + ("n/a" if objective is None else f"{objective:.6f}"))
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Solution({self.status.name}, {len(self._values)} values)"


__all__ = ["Solution", "Status", "TOLERANCE"]
