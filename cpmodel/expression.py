"""
Intermediate expression model.

An operand is one of:

- a constant (always stored as ``float``),
- a ``Variable`` reference,
- an ``IndexedVariable`` handle (family + index variable),
- an ``Expression`` node: an ``Operator`` tag with an ordered operand list.

Custom nodes carry the registry index of their builtin name as first operand
(an ``int``, never a float). The registry is process-wide and insertion
stable, so indices encoded in expressions stay meaningful across models.

Variables, indexed handles and expressions all derive from ``Term``, which
provides the Python operator surface (``+ - * / ** < <= > >= == !=`` plus
``~``, ``&`` and ``|`` for logical not/and/or) and fluent equivalents
(``times``, ``leq``, ``implies``, ...). Terms hash by identity so they can be
used as dictionary keys even though ``==`` builds an expression.
"""

from __future__ import annotations

from enum import Enum
from numbers import Real
from typing import Any, Iterable

from cpmodel.errors import ModelError


class Operator(Enum):
    """Operator tags of expression nodes."""

    NONE = "none"
    NEGATE = "negate"
    LOGICAL_NOT = "logical_not"
    LOGICAL_AND = "logical_and"
    LOGICAL_OR = "logical_or"
    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    DIVIDE = "divide"
    CUSTOM = "custom"
    LESS_THAN = "less_than"
    LESS_OR_EQUAL = "less_or_equal"
    GREATER_THAN = "greater_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    EQUAL = "equal"
    NOT_EQUAL = "not_equal"
    COLLECTION = "collection"
    AT = "at"


COMPARISON_OPERATORS = frozenset({
    Operator.LESS_THAN,
    Operator.LESS_OR_EQUAL,
    Operator.GREATER_THAN,
    Operator.GREATER_OR_EQUAL,
    Operator.EQUAL,
    Operator.NOT_EQUAL,
})

ARITHMETIC_OPERATORS = frozenset({
    Operator.NEGATE,
    Operator.ADD,
    Operator.SUBTRACT,
    Operator.MULTIPLY,
    Operator.DIVIDE,
})

SYMBOLS = {
    Operator.LOGICAL_AND: "&&",
    Operator.LOGICAL_OR: "||",
    Operator.ADD: "+",
    Operator.SUBTRACT: "-",
    Operator.MULTIPLY: "*",
    Operator.DIVIDE: "/",
    Operator.LESS_THAN: "<",
    Operator.LESS_OR_EQUAL: "<=",
    Operator.GREATER_THAN: ">",
    Operator.GREATER_OR_EQUAL: ">=",
    Operator.EQUAL: "==",
    Operator.NOT_EQUAL: "!=",
}

# Custom operators that may take a collection(k) operand
COLLECTION_AWARE = (
    "count", "sum", "avg", "min", "max", "element_of", "not_element_of", "at",
)

# Fixed arities of builtins; n_ary_if, min, max and at are checked separately
_ARITY = {"abs": 1, "pow": 2, "if_then_else": 3}


# ========== Custom operator registry ==========

_custom_operators: list[str] = []


def custom_index(name: str) -> int:
    """Return the registry index of ``name``, registering it if needed."""
    try:
        return _custom_operators.index(name)
    except ValueError:
        _custom_operators.append(name)
        return len(_custom_operators) - 1


def custom_name(index: int) -> str:
    """Return the builtin name registered at ``index``."""
    return _custom_operators[index]


# ========== Operands ==========

def as_operand(value: Any) -> Any:
    """
    Normalize a Python value into an operand.

    Numbers (including bools) become floats; terms are returned unchanged.

    Raises:
        TypeError: If value is neither a number nor a term
    """
    if isinstance(value, Term):
        return value
    if isinstance(value, Real):
        return float(value)
    raise TypeError(f"Unsupported operand type: {type(value).__name__}")


def _coerce(value: Any) -> Any:
    """Like as_operand but returns None for unsupported types."""
    if isinstance(value, Term):
        return value
    if isinstance(value, Real):
        return float(value)
    return None


def is_constant(operand: Any) -> bool:
    return isinstance(operand, float)


def is_collection(operand: Any) -> bool:
    return isinstance(operand, Expression) and operand.operator is Operator.COLLECTION


def stringify_operand(operand: Any, parenthesize: bool = True) -> str:
    """Canonical string of a single operand."""
    if isinstance(operand, float):
        return f"{operand:.2f}"
    if isinstance(operand, Expression):
        if parenthesize and operand.operator is not Operator.CUSTOM:
            return "( " + operand.stringify() + " )"
        return operand.stringify()
    if isinstance(operand, Term):
        return operand.reference()
    raise TypeError(f"Unexpected operand: {operand!r}")


# ========== Terms ==========

class Term:
    """Common operator surface of variables, indexed handles and expressions."""

    __hash__ = object.__hash__

    def reference(self) -> str:
        """String used when this term appears as an operand."""
        return self.stringify()

    def stringify(self) -> str:
        raise NotImplementedError

    # ---- arithmetic ----

    def __add__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.ADD, [self, other])

    def __radd__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.ADD, [other, self])

    def __sub__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.SUBTRACT, [self, other])

    def __rsub__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.SUBTRACT, [other, self])

    def __mul__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.MULTIPLY, [self, other])

    def __rmul__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.MULTIPLY, [other, self])

    def __truediv__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.DIVIDE, [self, other])

    def __rtruediv__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.DIVIDE, [other, self])

    def __pow__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else custom_operator("pow", self, other)

    def __rpow__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else custom_operator("pow", other, self)

    def __neg__(self):
        return Expression(Operator.NEGATE, [self])

    def __abs__(self):
        return custom_operator("abs", self)

    # ---- comparisons ----

    def __lt__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.LESS_THAN, [self, other])

    def __le__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.LESS_OR_EQUAL, [self, other])

    def __gt__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.GREATER_THAN, [self, other])

    def __ge__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.GREATER_OR_EQUAL, [self, other])

    def __eq__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.EQUAL, [self, other])

    def __ne__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else Expression(Operator.NOT_EQUAL, [self, other])

    # ---- logic ----

    def __invert__(self):
        return logical_not(self)

    def __and__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else logical_and(self, other)

    def __rand__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else logical_and(other, self)

    def __or__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else logical_or(self, other)

    def __ror__(self, other):
        other = _coerce(other)
        return NotImplemented if other is None else logical_or(other, self)

    # ---- fluent builders ----

    def plus(self, other) -> Expression:
        return Expression(Operator.ADD, [self, as_operand(other)])

    def minus(self, other) -> Expression:
        return Expression(Operator.SUBTRACT, [self, as_operand(other)])

    def times(self, other) -> Expression:
        return Expression(Operator.MULTIPLY, [self, as_operand(other)])

    def divided_by(self, other) -> Expression:
        return Expression(Operator.DIVIDE, [self, as_operand(other)])

    def lt(self, other) -> Expression:
        return Expression(Operator.LESS_THAN, [self, as_operand(other)])

    def leq(self, other) -> Expression:
        return Expression(Operator.LESS_OR_EQUAL, [self, as_operand(other)])

    def gt(self, other) -> Expression:
        return Expression(Operator.GREATER_THAN, [self, as_operand(other)])

    def geq(self, other) -> Expression:
        return Expression(Operator.GREATER_OR_EQUAL, [self, as_operand(other)])

    def eq(self, other) -> Expression:
        return Expression(Operator.EQUAL, [self, as_operand(other)])

    def neq(self, other) -> Expression:
        return Expression(Operator.NOT_EQUAL, [self, as_operand(other)])

    def logical_not(self) -> Expression:
        return logical_not(self)

    def logical_and(self, other) -> Expression:
        return logical_and(self, other)

    def logical_or(self, other) -> Expression:
        return logical_or(self, other)

    def implies(self, other) -> Expression:
        """Material implication, built as ``(!self) || other``."""
        return logical_or(logical_not(self), other)


class Expression(Term):
    """
    Operator node of the expression tree.

    Attributes:
        operator: Operator tag
        operands: Ordered operand list (constants, terms, or a registry
            index as first operand of custom nodes)
    """

    def __init__(self, operator: Operator, operands: Iterable[Any] = ()):
        self.operator = operator
        self.operands = list(operands)

    @classmethod
    def wrap(cls, operand: Any) -> Expression:
        """Wrap a constant or term into an expression (identity for expressions)."""
        operand = as_operand(operand)
        if isinstance(operand, Expression):
            return operand
        return cls(Operator.NONE, [operand])

    @property
    def name(self) -> str | None:
        """Builtin name for custom nodes, None otherwise."""
        if self.operator is Operator.CUSTOM:
            return custom_name(self.operands[0])
        return None

    @property
    def arguments(self) -> list[Any]:
        """Operands without the registry index of custom nodes."""
        if self.operator is Operator.CUSTOM:
            return self.operands[1:]
        return self.operands

    def clone(self) -> Expression:
        """Deep copy of the node tree; variables are shared, not copied."""
        return Expression(
            self.operator,
            [op.clone() if isinstance(op, Expression) else op for op in self.operands],
        )

    def stringify(self) -> str:
        op = self.operator
        if op is Operator.NONE:
            return stringify_operand(self.operands[0])
        if op is Operator.NEGATE:
            return "-" + stringify_operand(self.operands[0])
        if op is Operator.LOGICAL_NOT:
            return "!" + stringify_operand(self.operands[0])
        if op is Operator.CUSTOM:
            arguments = ", ".join(stringify_operand(a, False) for a in self.arguments)
            if not arguments:
                return self.name + "()"
            return self.name + "( " + arguments + " )"
        if op is Operator.COLLECTION:
            return "collection( " + stringify_operand(self.operands[0], False) + " )"
        if op is Operator.AT:
            container, index = self.operands
            return container.stringify() + "[" + stringify_operand(index, False) + "]"
        parenthesize = op not in COMPARISON_OPERATORS
        separator = " " + SYMBOLS[op] + " "
        return separator.join(stringify_operand(o, parenthesize) for o in self.operands)

    def __repr__(self) -> str:
        return f"Expression({self.stringify()!r})"


# ========== Builders ==========

def _join(operator: Operator, lhs: Any, rhs: Any) -> Expression:
    operands = []
    for operand in (as_operand(lhs), as_operand(rhs)):
        if isinstance(operand, Expression) and operand.operator is operator:
            operands.extend(operand.operands)
        else:
            operands.append(operand)
    return Expression(operator, operands)


def logical_and(lhs: Any, rhs: Any) -> Expression:
    """Conjunction; nested conjunctions are flattened."""
    return _join(Operator.LOGICAL_AND, lhs, rhs)


def logical_or(lhs: Any, rhs: Any) -> Expression:
    """Disjunction; nested disjunctions are flattened."""
    return _join(Operator.LOGICAL_OR, lhs, rhs)


def logical_not(operand: Any) -> Expression:
    """Negation; a double negation collapses to its operand."""
    operand = as_operand(operand)
    if isinstance(operand, Expression) and operand.operator is Operator.LOGICAL_NOT:
        return Expression.wrap(operand.operands[0])
    return Expression(Operator.LOGICAL_NOT, [operand])


def custom_operator(name: str, *operands: Any) -> Expression:
    """
    Build a custom (named builtin) node.

    Raises:
        ModelError: On wrong arity, malformed n_ary_if, or a collection
            operand passed to an operator that does not accept one
    """
    values = [as_operand(o) for o in operands]

    if name not in COLLECTION_AWARE and any(is_collection(v) for v in values):
        raise ModelError(
            f"{name}() does not accept a collection operand; "
            f"allowed operators: {', '.join(COLLECTION_AWARE)}"
        )
    if name in _ARITY and len(values) != _ARITY[name]:
        raise ModelError(f"{name}() takes {_ARITY[name]} operands, got {len(values)}")
    if name == "n_ary_if" and (len(values) < 3 or len(values) % 2 == 0):
        raise ModelError(
            "n_ary_if() takes condition/value pairs followed by an else value, "
            f"got {len(values)} operands"
        )
    if name in ("min", "max", "avg") and not values:
        raise ModelError(f"{name}() requires at least one operand")
    if name in ("element_of", "not_element_of", "at") and not values:
        raise ModelError(f"{name}() requires at least one operand")

    return Expression(Operator.CUSTOM, [custom_index(name), *values])


def is_implication(expression: Expression) -> tuple[Expression, Expression] | None:
    """
    Recognize ``(!condition) || consequence``.

    Returns:
        (condition, consequence) or None if expression is not an implication
    """
    if (
        not isinstance(expression, Expression)
        or expression.operator is not Operator.LOGICAL_OR
        or len(expression.operands) != 2
    ):
        return None
    negated, consequence = expression.operands
    if not isinstance(negated, Expression) or negated.operator is not Operator.LOGICAL_NOT:
        return None
    condition = negated.operands[0]
    if is_constant(condition):
        return None
    return Expression.wrap(condition), Expression.wrap(consequence)


__all__ = [
    "Operator",
    "Term",
    "Expression",
    "COMPARISON_OPERATORS",
    "ARITHMETIC_OPERATORS",
    "COLLECTION_AWARE",
    "as_operand",
    "is_constant",
    "is_collection",
    "stringify_operand",
    "custom_index",
    "custom_name",
    "custom_operator",
    "logical_and",
    "logical_or",
    "logical_not",
    "is_implication",
]
