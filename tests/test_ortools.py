"""Tests for the OR-Tools CP-SAT backend.

These tests are skipped if OR-Tools is not available.
"""

import pytest

from cpmodel import (
    InfeasibleError,
    LoweringError,
    Model,
    ObjectiveSense,
    Status,
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
    solve,
    sum_of,
)
from cpmodel.backends import get_backend

ORTOOLS_AVAILABLE = get_backend("ortools") is not None

pytestmark = pytest.mark.skipif(
    not ORTOOLS_AVAILABLE,
    reason="OR-Tools backend not available"
)


class TestArithmetic:
    """Tests for arithmetic models."""

    def test_linear(self, minimize_model):
        """Minimise 2x + 3y subject to x + y >= 10."""
        x = minimize_model.add_integer_variable("x", 0)
        y = minimize_model.add_integer_variable("y", 0)
        minimize_model.add_constraint(x + y >= 10)
        minimize_model.set_objective(ObjectiveSense.MINIMIZE, 2 * x + 3 * y)

        sol = solve(minimize_model, solver="ortools")
        assert sol.status is Status.OPTIMAL
        assert sol.get(x) == 10
        assert sol.get(y) == 0
        assert sol.objective_value() == 20
        assert sol.errors() == []

    def test_product(self, minimize_model):
        """Minimise x + y subject to x * y >= 12."""
        x = minimize_model.add_integer_variable("x", 1, 100)
        y = minimize_model.add_integer_variable("y", 1, 100)
        minimize_model.add_constraint(x * y >= 12)
        minimize_model.set_objective(ObjectiveSense.MINIMIZE, x + y)

        sol = solve(minimize_model, solver="ortools")
        assert sol.get(x) * sol.get(y) >= 12
        assert sol.get(x) + sol.get(y) == 7

    def test_constant_division(self, model):
        x = model.add_integer_variable("x", 0, 20)
        model.add_constraint(x == sum_of(12) / 3)

        sol = solve(model, solver="ortools")
        assert sol.get(x) == 4
        assert sol.errors() == []

    def test_variable_division_rejected(self, model):
        """x / 2 >= 1 holds for x = 3 but has no integral quotient."""
        x = model.add_integer_variable("x", 3, 3)
        model.add_constraint(x / 2 >= 1)
        with pytest.raises(LoweringError, match="cannot divide non-constant operands"):
            solve(model, solver="ortools")

    def test_inline_avg_rejected(self, model):
        x = model.add_integer_variable("x", 1, 1)
        y = model.add_integer_variable("y", 2, 2)
        model.add_constraint(avg(x, y) <= 2)
        with pytest.raises(LoweringError, match="cannot divide non-constant operands"):
            solve(model, solver="ortools")

    def test_constant_division_not_integral(self, model):
        x = model.add_integer_variable("x", 0, 20)
        model.add_constraint(x == sum_of(7) / 2)
        with pytest.raises(LoweringError, match="not an integer"):
            solve(model, solver="ortools")

    def test_power(self, model):
        x = model.add_integer_variable("x", 0, 10)
        model.add_constraint(pow_of(x, 2) == 9)

        sol = solve(model, solver="ortools")
        assert sol.get(x) == 3

    def test_min_max_abs(self, model):
        x = model.add_integer_variable("x", 0, 10)
        z = model.add_integer_variable("z", 0, 10)
        low = model.add_variable(VariableType.INTEGER, "low", expression=min_of(x, z))
        high = model.add_variable(VariableType.INTEGER, "high", expression=max_of(x, z))
        gap = model.add_variable(VariableType.INTEGER, "gap", expression=abs_of(x - z))
        model.add_constraint(x == 3)
        model.add_constraint(z == 5)

        sol = solve(model, solver="ortools")
        assert (sol.get(low), sol.get(high), sol.get(gap)) == (3, 5, 2)


class TestIntegrality:
    """Tests for values CP-SAT cannot represent."""

    def test_real_variable_rejected(self, model):
        model.add_real_variable("x", 0, 1)
        with pytest.raises(LoweringError, match="real variable"):
            solve(model, solver="ortools")

    def test_fractional_constant_rejected(self, model):
        x = model.add_integer_variable("x", 0, 10)
        model.add_constraint(x >= 2.5)
        with pytest.raises(LoweringError, match="integer constants"):
            solve(model, solver="ortools")

    def test_epsilon_rejected(self, model):
        model.add_integer_variable("x", 0, 10)
        with pytest.raises(ValueError, match="epsilon"):
            solve(model, solver="ortools", epsilon=1e-6)


class TestComparisonsAndLogic:
    """Tests for comparisons and connectives."""

    def test_disequality_infeasible(self, model):
        x = model.add_integer_variable("x", 5, 5)
        model.add_constraint(x != 5)
        with pytest.raises(InfeasibleError):
            solve(model, solver="ortools")

    def test_strict_inequality_tied_bounds(self, model):
        x = model.add_integer_variable("x", 5, 5)
        y = model.add_integer_variable("y", 5, 5)
        model.add_constraint(x < y)
        with pytest.raises(InfeasibleError):
            solve(model, solver="ortools")

    def test_strict_inequality_feasible(self, model):
        x = model.add_integer_variable("x", 5, 5)
        y = model.add_integer_variable("y", 6, 6)
        model.add_constraint(x < y)

        sol = solve(model, solver="ortools")
        assert (sol.get(x), sol.get(y)) == (5, 6)

    def test_implication(self, minimize_model):
        x = minimize_model.add_integer_variable("x", 0, 10)
        y = minimize_model.add_boolean_variable("y")
        minimize_model.add_constraint(y.implies(x >= 4))
        minimize_model.add_constraint(y == 1)
        minimize_model.set_objective(ObjectiveSense.MINIMIZE, x)

        sol = solve(minimize_model, solver="ortools")
        assert sol.get(x) == 4

    def test_disjunction(self, minimize_model):
        x = minimize_model.add_integer_variable("x", 0, 10)
        minimize_model.add_constraint((x == 3) | (x >= 7))
        minimize_model.add_constraint(x >= 4)
        minimize_model.set_objective(ObjectiveSense.MINIMIZE, x)

        sol = solve(minimize_model, solver="ortools")
        assert sol.get(x) == 7

    @pytest.mark.parametrize("fixed,expected", [(5, 1), (1, 0)])
    def test_deduced_reification(self, model, fixed, expected):
        x = model.add_integer_variable("x", 0, 10)
        d = model.add_variable(VariableType.BOOLEAN, "d", expression=x >= 3)
        model.add_constraint(x == fixed)

        sol = solve(model, solver="ortools")
        assert sol.get(d) == expected
        assert sol.errors() == []

    def test_negated_integer(self, model):
        """!x is true exactly when x is zero."""
        x = model.add_integer_variable("x", 0, 5)
        model.add_constraint(~x)

        sol = solve(model, solver="ortools")
        assert sol.get(x) == 0

    def test_if_then_else(self, model):
        y = model.add_boolean_variable("y")
        r = model.add_variable(VariableType.INTEGER, "r", expression=if_then_else(y, 10, 20))
        model.add_constraint(y == 0)

        sol = solve(model, solver="ortools")
        assert sol.get(r) == 20

    def test_n_ary_if_first_match(self, model):
        z = model.add_integer_variable("z", 0, 10)
        r = model.add_variable(
            VariableType.INTEGER, "r", expression=n_ary_if(z >= 1, 10, z >= 2, 20, 30)
        )
        model.add_constraint(z == 3)

        sol = solve(model, solver="ortools")
        assert sol.get(r) == 10

    def test_not_element_of(self, minimize_model):
        x = minimize_model.add_integer_variable("x", 1, 10)
        minimize_model.add_constraint(not_element_of(x, 1, 2, 3))
        minimize_model.set_objective(ObjectiveSense.MINIMIZE, x)

        sol = solve(minimize_model, solver="ortools")
        assert sol.get(x) == 4


class TestElementAndCollections:
    """Tests for element lookups and collections."""

    def test_family_element(self, model, family):
        idx = model.add_integer_variable("idx", 0, 2)
        r = model.add_variable(VariableType.INTEGER, "r", expression=family[idx])
        model.add_constraint(idx == 2)

        sol = solve(model, solver="ortools")
        assert sol.get(r) == 30

    def test_inline_at(self, model):
        i = model.add_integer_variable("i", 1, 3)
        r = model.add_variable(VariableType.INTEGER, "r", expression=at(i, 7, 8, 9))
        model.add_constraint(i == 2)

        sol = solve(model, solver="ortools")
        assert sol.get(r) == 8

    def test_at_collection_variable_key(self, collection_model):
        """at(index, collection(key)) with key = 1, index = 3 yields 60."""
        key = collection_model.add_integer_variable("key", 0, 1)
        index = collection_model.add_integer_variable("index", 1, 3)
        r = collection_model.add_variable(
            VariableType.INTEGER, "r", expression=at(index, collection(key))
        )
        collection_model.add_constraint(key == 1)
        collection_model.add_constraint(index == 3)

        sol = solve(collection_model, solver="ortools")
        assert sol.get(r) == 60

    def test_at_ragged_collections(self, ragged_collections):
        """An index past the end of the selected collection is infeasible."""
        model = Model()
        model.set_collection_lookup(ragged_collections.__getitem__, 2)
        key = model.add_integer_variable("key", 0, 1)
        index = model.add_integer_variable("index", 1, 3)
        model.add_constraint(at(index, collection(key)) >= 0)
        model.add_constraint(key == 1)
        model.add_constraint(index == 3)
        with pytest.raises(InfeasibleError):
            solve(model, solver="ortools")

    def test_count_variable_key(self, ragged_collections):
        model = Model()
        model.set_collection_lookup(ragged_collections.__getitem__, 2)
        key = model.add_integer_variable("key", 0, 1)
        result = model.add_integer_variable("result", 0, 10)
        model.add_constraint((result == count(collection(key))) & (key == 0))

        sol = solve(model, solver="ortools")
        assert sol.get(result) == 3

    def test_keyed_membership(self, collection_model):
        key = collection_model.add_integer_variable("key", 0, 1)
        v = collection_model.add_integer_variable("v", 0, 100)
        collection_model.add_constraint(element_of(v, collection(key)))
        collection_model.add_constraint(key == 1)
        collection_model.set_objective(ObjectiveSense.MINIMIZE, v)

        sol = solve(collection_model, solver="ortools")
        assert sol.get(v) == 40


class TestCollectionMembership:
    """Tests for membership and aggregates over keyed collections."""

    def test_constant_in_variable_key(self, collection_model):
        """element_of(50, collection(key)) forces the key holding 50."""
        key = collection_model.add_integer_variable("key", 0, 1)
        collection_model.add_constraint(element_of(50, collection(key)))

        sol = solve(collection_model, solver="ortools")
        assert sol.get(key) == 1
        assert sol.errors() == []

    def test_variable_in_constant_key(self, collections):
        model = Model(ObjectiveSense.MINIMIZE)
        model.set_collection_lookup(collections.__getitem__, len(collections))
        v = model.add_integer_variable("v", 0, 100)
        model.add_constraint(element_of(v, collection(0)))
        model.add_constraint(v >= 15)
        model.set_objective(ObjectiveSense.MINIMIZE, v)

        sol = solve(model, solver="ortools")
        assert sol.get(v) == 20
        assert sol.errors() == []

    def test_family_indexed_key(self, collection_model):
        """sum_of(collection(keys[i])) reads the key through a family."""
        keys = collection_model.add_indexed_variables(VariableType.INTEGER, "keys")
        keys.emplace(0, 0)
        keys.emplace(1, 1)
        i = collection_model.add_integer_variable("i", 0, 1)
        total = collection_model.add_variable(
            VariableType.INTEGER, "total", expression=sum_of(collection(keys[i]))
        )
        collection_model.add_constraint(i == 1)

        sol = solve(collection_model, solver="ortools")
        assert sol.get(total) == 150
        assert sol.errors() == []

    def test_collection_avg_variable_key(self, collection_model):
        """Collection averages are precomputed, so integral ones lower fine."""
        key = collection_model.add_integer_variable("key", 0, 1)
        r = collection_model.add_variable(
            VariableType.INTEGER, "r", expression=avg(collection(key))
        )
        collection_model.add_constraint(key == 1)

        sol = solve(collection_model, solver="ortools")
        assert sol.get(r) == 50
        assert sol.errors() == []


class TestSequences:
    """Tests for permutation sequences."""

    def test_permutation(self, model):
        s = model.add_sequence("s", 4)
        model.add_constraint(s[0] == 4)

        sol = solve(model, solver="ortools")
        values = sol.get_sequence(s)
        assert sorted(values) == [1, 2, 3, 4]
        assert values[0] == 4

    def test_permutation_sum_is_fixed(self, model):
        s = model.add_sequence("s", 3)
        model.add_constraint(s[0] + s[1] + s[2] != 6)
        with pytest.raises(InfeasibleError):
            solve(model, solver="ortools")


class TestSolverOptions:
    """Tests for solver configuration."""

    def test_options_forwarded(self, model):
        x = model.add_integer_variable("x", 0, 10)
        model.add_constraint(x >= 3)

        sol = solve(model, solver="ortools", options={"num_workers": 1}, time_limit=10)
        assert sol.get(x) >= 3

    def test_verbose_logging(self, model, capsys):
        x = model.add_integer_variable("x", 0, 10)
        model.add_constraint(x >= 3)

        solve(model, solver="ortools", verbose=1)
        assert "Starting OR-Tools solver" in capsys.readouterr().out
