"""
cpmodel: a solver-independent modeling layer for mixed CP / MIP problems.

Variables, indexed families, permutation sequences, constraints and an
objective are described once with ordinary Python operators, then lowered
onto SCIP, OR-Tools CP-SAT or Z3. Solutions can be checked against the model
without any solver.

Example usage:
    from cpmodel import Model, ObjectiveSense, max_of, solve

    model = Model()
    x = model.add_integer_variable("x", 0, 10)
    z = model.add_real_variable("z", 0, 5)
    model.add_constraint(max_of(x, 2 * z) <= 8)
    model.set_objective(ObjectiveSense.MAXIMIZE, x + z)

    solution = solve(model, solver="scip")
    print(solution.stringify())
"""

from cpmodel.errors import (
    CPModelError,
    CollectionError,
    EvaluationError,
    InfeasibleError,
    LoweringError,
    ModelError,
    SolverError,
    UnboundedError,
)
from cpmodel.expression import Expression, Operator, is_implication
from cpmodel.functions import (
    abs_of,
    at,
    avg,
    cbrt,
    collection,
    count,
    element_of,
    if_then_else,
    max_of,
    min_of,
    n_ary_if,
    not_element_of,
    pow_of,
    sqrt,
    sum_of,
)
from cpmodel.model import Model, ObjectiveSense
from cpmodel.solution import Solution, Status
from cpmodel.solver import solve, supported_solvers
from cpmodel.backends import get_backend
from cpmodel.variables import (
    IndexedVariable,
    IndexedVariables,
    Sequence,
    Variable,
    VariableType,
)

__version__ = "0.1.0"
__all__ = [
    "Model",
    "ObjectiveSense",
    "Variable",
    "VariableType",
    "IndexedVariable",
    "IndexedVariables",
    "Sequence",
    "Expression",
    "Operator",
    "Solution",
    "Status",
    "solve",
    "supported_solvers",
    "get_backend",
    "is_implication",
    "collection",
    "sum_of",
    "avg",
    "count",
    "min_of",
    "max_of",
    "abs_of",
    "pow_of",
    "sqrt",
    "cbrt",
    "if_then_else",
    "n_ary_if",
    "element_of",
    "not_element_of",
    "at",
    "CPModelError",
    "ModelError",
    "CollectionError",
    "LoweringError",
    "EvaluationError",
    "SolverError",
    "InfeasibleError",
    "UnboundedError",
]
