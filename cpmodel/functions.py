"""
Named builtin constructors.

Each function returns an expression node; nothing is evaluated here.
Aggregates accept either inline operands or a single ``collection(key)``
node referring to an external collection registered on the model.

Indexing conventions:
    at(i, v1, ..., vm) and at(i, collection(k)) are 1-based,
    family[v] (IndexedVariables indexed by a variable) is 0-based.
"""

from __future__ import annotations

from typing import Any

from cpmodel.errors import ModelError
from cpmodel.expression import (
    Expression,
    Operator,
    as_operand,
    custom_operator,
    is_collection,
)


def collection(key: Any) -> Expression:
    """Reference to the external collection stored under ``key``."""
    key = as_operand(key)
    if is_collection(key):
        raise ModelError("collection() key cannot itself be a collection")
    return Expression(Operator.COLLECTION, [key])


def _check_single_collection(name: str, operands: tuple) -> None:
    if len(operands) > 1 and any(is_collection(as_operand(o)) for o in operands):
        raise ModelError(f"{name}() takes either one collection or inline operands")


def sum_of(*operands: Any) -> Expression:
    """Sum of operands (0 when empty)."""
    _check_single_collection("sum", operands)
    return custom_operator("sum", *operands)


def avg(*operands: Any) -> Expression:
    """Arithmetic mean of operands."""
    _check_single_collection("avg", operands)
    return custom_operator("avg", *operands)


def count(*operands: Any) -> Expression:
    """Number of operands, or size of a collection."""
    _check_single_collection("count", operands)
    return custom_operator("count", *operands)


def min_of(*operands: Any) -> Expression:
    _check_single_collection("min", operands)
    return custom_operator("min", *operands)


def max_of(*operands: Any) -> Expression:
    _check_single_collection("max", operands)
    return custom_operator("max", *operands)


def abs_of(operand: Any) -> Expression:
    return custom_operator("abs", operand)


def pow_of(base: Any, exponent: Any) -> Expression:
    return custom_operator("pow", base, exponent)


def sqrt(operand: Any) -> Expression:
    return custom_operator("pow", operand, 0.5)


def cbrt(operand: Any) -> Expression:
    return custom_operator("pow", operand, 1.0 / 3.0)


def if_then_else(condition: Any, then_value: Any, else_value: Any) -> Expression:
    """``then_value`` if condition is non-zero, ``else_value`` otherwise."""
    return custom_operator("if_then_else", condition, then_value, else_value)


def n_ary_if(*operands: Any) -> Expression:
    """
    First-match conditional.

    Operands are ``c1, v1, ..., cn, vn, else_value``; the value of the first
    truthy condition is returned, the else value if none holds.
    """
    return custom_operator("n_ary_if", *operands)


def element_of(value: Any, *values: Any) -> Expression:
    """1 if value equals one of ``values`` (or a member of a collection)."""
    _check_single_collection("element_of", values)
    return custom_operator("element_of", value, *values)


def not_element_of(value: Any, *values: Any) -> Expression:
    _check_single_collection("not_element_of", values)
    return custom_operator("not_element_of", value, *values)


def at(index: Any, *values: Any) -> Expression:
    """
    1-based read of inline values or of a collection.

    ``at(i, collection(k))`` yields an ``at`` node over the collection;
    ``at(i, v1, ..., vm)`` yields the custom ``at`` builtin.
    """
    if not values:
        raise ModelError("at() requires values or a collection to read from")
    _check_single_collection("at", values)
    first = as_operand(values[0])
    if is_collection(first):
        return Expression(Operator.AT, [first, as_operand(index)])
    return custom_operator("at", index, *values)


__all__ = [
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
]
