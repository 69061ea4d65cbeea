"""
Pytest configuration for cpmodel tests.

Provides small models and collection lookups shared across test modules.
"""

import pytest

from cpmodel import Model, ObjectiveSense, VariableType


@pytest.fixture
def model():
    """Empty feasibility model."""
    return Model()


@pytest.fixture
def xyz(model):
    """x (real), y (boolean), z (integer) on the model fixture."""
    x = model.add_real_variable("x", 0, 10)
    y = model.add_boolean_variable("y")
    z = model.add_integer_variable("z", 0, 10)
    return x, y, z


@pytest.fixture
def collections():
    """Three-element collections under keys 0 and 1."""
    return {0: [10.0, 20.0, 30.0], 1: [40.0, 50.0, 60.0]}


@pytest.fixture
def ragged_collections():
    """Collections of different sizes under keys 0 and 1."""
    return {0: [10.0, 20.0, 30.0], 1: [40.0, 50.0]}


@pytest.fixture
def collection_model(collections):
    """Model whose collection lookup serves the collections fixture."""
    m = Model()
    m.set_collection_lookup(collections.__getitem__, len(collections))
    return m


@pytest.fixture
def minimize_model():
    """Empty minimization model."""
    return Model(ObjectiveSense.MINIMIZE)


@pytest.fixture
def family(model):
    """Integer family a := { 10, 20, 30 } (fixed members)."""
    a = model.add_indexed_variables(VariableType.INTEGER, "a")
    for value in (10, 20, 30):
        a.emplace(value, value)
    return a
