"""
Tests for cpmodel.evaluator.

Evaluation is exercised through Solution.evaluate, which is how callers
reach the evaluator.
"""

import pytest

from cpmodel import (
    EvaluationError,
    Solution,
    VariableType,
    abs_of,
    at,
    avg,
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
from cpmodel.expression import custom_operator


@pytest.fixture
def solution(model, xyz):
    """Solution with x = 2.5, y = 1, z = 4."""
    x, y, z = xyz
    sol = Solution(model)
    sol.set(x, 2.5)
    sol.set(y, 1)
    sol.set(z, 4)
    return sol


class TestArithmetic:
    """Test arithmetic operators."""

    def test_operators(self, solution, xyz):
        x, y, z = xyz
        assert solution.evaluate(x + z) == 6.5
        assert solution.evaluate(z - x) == 1.5
        assert solution.evaluate(x * z) == 10.0
        assert solution.evaluate(z / 2) == 2.0
        assert solution.evaluate(-x) == -2.5

    def test_constant(self, solution):
        assert solution.evaluate(3.0) == 3.0

    def test_division_by_zero(self, model, solution, xyz):
        x, y, z = xyz
        w = model.add_integer_variable("w", 0, 0)
        with pytest.raises(EvaluationError, match="division by zero"):
            solution.evaluate(x / w)

    def test_missing_value(self, model, solution, xyz):
        """A missing value propagates as None."""
        x, y, z = xyz
        w = model.add_integer_variable("w", 0, 5)
        assert solution.evaluate(x + w) is None
        assert solution.get(w) is None

    def test_fixed_variable_needs_no_value(self, model, solution):
        k = model.add_integer_variable("k", 7, 7)
        assert solution.get(k) == 7.0


class TestComparisons:
    """Test comparisons and boolean coercion."""

    def test_exact_comparisons(self, solution, xyz):
        """Comparisons use no tolerance."""
        x, y, z = xyz
        assert solution.evaluate(x < 2.5) == 0.0
        assert solution.evaluate(x <= 2.5) == 1.0
        assert solution.evaluate(x > 2.5 - 1e-12) == 1.0
        assert solution.evaluate(x == 2.5) == 1.0
        assert solution.evaluate(x != 2.5) == 0.0

    def test_boolean_coercion(self, solution, xyz):
        """Any non-zero value is true."""
        x, y, z = xyz
        assert solution.evaluate(~x) == 0.0
        assert solution.evaluate((x - 2.5) | y) == 1.0
        assert solution.evaluate((x - 2.5) & y) == 0.0

    def test_short_circuit(self, model, solution, xyz):
        """A decided connective ignores missing operands."""
        x, y, z = xyz
        w = model.add_integer_variable("w", 0, 5)
        assert solution.evaluate(y | (w >= 1)) == 1.0
        assert solution.evaluate((z < 0) & (w >= 1)) == 0.0
        assert solution.evaluate((w >= 1) & y) is None

    def test_implication(self, solution, xyz):
        x, y, z = xyz
        assert solution.evaluate(y.implies(z >= 4)) == 1.0
        assert solution.evaluate(y.implies(z >= 5)) == 0.0


class TestBuiltins:
    """Test named builtins over inline operands."""

    def test_aggregates(self, solution, xyz):
        x, y, z = xyz
        assert solution.evaluate(sum_of(x, z, 1)) == 7.5
        assert solution.evaluate(sum_of()) == 0.0
        assert solution.evaluate(avg(x, z)) == 3.25
        assert solution.evaluate(count(x, z, 1)) == 3.0
        assert solution.evaluate(min_of(x, z)) == 2.5
        assert solution.evaluate(max_of(x, z, 10)) == 10.0

    def test_abs_and_pow(self, solution, xyz):
        x, y, z = xyz
        assert solution.evaluate(abs_of(x - z)) == 1.5
        assert solution.evaluate(pow_of(z, 2)) == 16.0
        assert solution.evaluate(sqrt(z)) == 2.0

    def test_pow_undefined(self, model, solution):
        w = model.add_integer_variable("w", -4, -4)
        with pytest.raises(EvaluationError):
            solution.evaluate(sqrt(w))

    def test_if_then_else(self, solution, xyz):
        x, y, z = xyz
        assert solution.evaluate(if_then_else(y, x, z)) == 2.5
        assert solution.evaluate(if_then_else(~y, x, z)) == 4.0

    def test_n_ary_if_first_match(self, solution, xyz):
        """The first true condition wins."""
        x, y, z = xyz
        expr = n_ary_if(z >= 1, 10, z >= 2, 20, 30)
        assert solution.evaluate(expr) == 10.0
        expr = n_ary_if(z >= 5, 10, z >= 2, 20, 30)
        assert solution.evaluate(expr) == 20.0
        expr = n_ary_if(z >= 5, 10, z >= 6, 20, 30)
        assert solution.evaluate(expr) == 30.0

    def test_element_of(self, solution, xyz):
        x, y, z = xyz
        assert solution.evaluate(element_of(z, 1, 4, 9)) == 1.0
        assert solution.evaluate(element_of(z, 1, 9)) == 0.0
        assert solution.evaluate(not_element_of(z, 1, 9)) == 1.0

    def test_inline_at_is_one_based(self, solution, xyz):
        x, y, z = xyz
        w = 1.0
        assert solution.evaluate(at(y, x, z)) == 2.5
        assert solution.evaluate(at(2 * y, x, z)) == 4.0
        with pytest.raises(EvaluationError, match="out of range"):
            solution.evaluate(at(y - w, x, z))

    def test_unknown_custom_operator(self, solution, xyz):
        x, y, z = xyz
        with pytest.raises(EvaluationError, match="no evaluator"):
            solution.evaluate(custom_operator("mystery", x))

    def test_registered_evaluator(self, solution, xyz):
        """Evaluators can be added per solution."""
        x, y, z = xyz
        solution.add_evaluator("twice", lambda evaluator, args: 2 * evaluator.evaluate(args[0]))
        assert solution.evaluate(custom_operator("twice", z)) == 8.0


class TestIndexedAndDeduced:
    """Test indexed handles and deduced variables."""

    def test_indexed_is_zero_based(self, model, family):
        i = model.add_integer_variable("i", 0, 2)
        sol = Solution(model)
        sol.set(i, 0)
        assert sol.evaluate(family[i]) == 10.0
        sol.set(i, 2)
        assert sol.evaluate(family[i]) == 30.0

    def test_indexed_out_of_range(self, model, family):
        i = model.add_integer_variable("i", 0, 5)
        sol = Solution(model)
        sol.set(i, 3)
        with pytest.raises(EvaluationError, match="out of range"):
            sol.evaluate(family[i])

    def test_deduced_value(self, model, xyz):
        """A deduced variable without a stored value evaluates its expression."""
        x, y, z = xyz
        d = model.add_variable(VariableType.REAL, "d", expression=x * 2)
        sol = Solution(model)
        sol.set(x, 1.5)
        assert sol.get(d) == 3.0

    def test_stored_value_wins(self, model, xyz):
        x, y, z = xyz
        d = model.add_variable(VariableType.REAL, "d", expression=x * 2)
        sol = Solution(model)
        sol.set(x, 1.5)
        sol.set(d, 4.0)
        assert sol.get(d) == 4.0


class TestCollections:
    """Test builtins over external collections."""

    def test_aggregates(self, collection_model):
        k = collection_model.add_integer_variable("k", 0, 1)
        sol = Solution(collection_model)
        sol.set(k, 1)
        assert sol.evaluate(sum_of(collection(k))) == 150.0
        assert sol.evaluate(avg(collection(k))) == 50.0
        assert sol.evaluate(count(collection(k))) == 3.0
        assert sol.evaluate(min_of(collection(k))) == 40.0
        assert sol.evaluate(max_of(collection(0))) == 30.0

    def test_at_collection(self, collection_model):
        """Element with variable key and index reads 1-based positions."""
        key = collection_model.add_integer_variable("key", 0, 1)
        index = collection_model.add_integer_variable("index", 1, 3)
        sol = Solution(collection_model)
        sol.set(key, 1)
        sol.set(index, 3)
        assert sol.evaluate(at(index, collection(key))) == 60.0
        sol.set(index, 4)
        with pytest.raises(EvaluationError, match="out of range"):
            sol.evaluate(at(index, collection(key)))

    def test_membership(self, collection_model):
        k = collection_model.add_integer_variable("k", 0, 1)
        sol = Solution(collection_model)
        sol.set(k, 0)
        assert sol.evaluate(element_of(20, collection(k))) == 1.0
        assert sol.evaluate(not_element_of(50, collection(k))) == 1.0

    def test_empty_collection_avg(self, model):
        """avg over an empty collection is undefined."""
        model.set_collection_lookup(lambda key: [], 1)
        sol = Solution(model)
        assert sol.evaluate(sum_of(collection(0))) == 0.0
        assert sol.evaluate(count(collection(0))) == 0.0
        with pytest.raises(EvaluationError, match="avg"):
            sol.evaluate(avg(collection(0)))

    def test_bad_key(self, collection_model):
        sol = Solution(collection_model)
        with pytest.raises(EvaluationError, match="collection key 5"):
            sol.evaluate(sum_of(collection(5)))

    def test_bare_collection(self, collection_model):
        sol = Solution(collection_model)
        with pytest.raises(EvaluationError):
            sol.evaluate(collection(0))
