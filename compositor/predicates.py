"""Conditional-inclusion predicates evaluated against a resolution context.

Conditions form a small closed union: ``Equals``, ``And``, ``Or`` and ``Not``.
Catalogs express them as tagged JSON objects, for example::

    {"and": [{"eq": ["region", "norway"]}, {"not": {"eq": ["environment", "test"]}}]}
"""

from dataclasses import dataclass
from typing import Any, Protocol, Union


class SupportsLookup(Protocol):
    def lookup(self, name: str) -> Any: ...


@dataclass(frozen=True)
class Equals:
    """True when the named context field equals ``value``."""

    field: str
    value: Any

    def evaluate(self, context: SupportsLookup) -> bool:
        return context.lookup(self.field) == self.value

    def __str__(self) -> str:
        return f"{self.field} == {self.value!r}"


@dataclass(frozen=True)
class And:
    left: "Predicate"
    right: "Predicate"

    def evaluate(self, context: SupportsLookup) -> bool:
        return self.left.evaluate(context) and self.right.evaluate(context)

    def __str__(self) -> str:
        return f"({self.left} and {self.right})"


@dataclass(frozen=True)
class Or:
    operands: tuple["Predicate", ...]

    def evaluate(self, context: SupportsLookup) -> bool:
        return any(operand.evaluate(context) for operand in self.operands)

    def __str__(self) -> str:
        return "(" + " or ".join(str(operand) for operand in self.operands) + ")"


@dataclass(frozen=True)
class Not:
    operand: "Predicate"

    def evaluate(self, context: SupportsLookup) -> bool:
        return not self.operand.evaluate(context)

    def __str__(self) -> str:
        return f"not {self.operand}"


Predicate = Union[Equals, And, Or, Not]


def evaluate(predicate: Predicate | None, context: SupportsLookup) -> bool:
    """Evaluate a predicate; an absent predicate always includes."""
    if predicate is None:
        return True
    return predicate.evaluate(context)


def parse_predicate(data: Any) -> Predicate:
    """Build a predicate from its tagged JSON form.

    Args:
        data: A mapping with exactly one of the keys ``eq``, ``and``, ``or``
            or ``not``.

    Returns:
        The equivalent predicate.

    Raises:
        ValueError: If the structure is not a recognised predicate.
    """
    if not isinstance(data, dict) or len(data) != 1:
        raise ValueError(f"Predicate must be an object with one operator: {data!r}")

    (operator, operand), = data.items()

    if operator == "eq":
        if not isinstance(operand, list) or len(operand) != 2 or not isinstance(operand[0], str):
            raise ValueError(f"'eq' expects [field, value], got {operand!r}")
        return Equals(operand[0], operand[1])

    if operator in ("and", "or"):
        if not isinstance(operand, list) or len(operand) < 2:
            raise ValueError(f"'{operator}' expects a list of at least two predicates")
        parsed = [parse_predicate(item) for item in operand]
        if operator == "or":
            return Or(tuple(parsed))
        # Left-fold into binary nodes
        combined = parsed[0]
        for item in parsed[1:]:
            combined = And(combined, item)
        return combined

    if operator == "not":
        return Not(parse_predicate(operand))

    raise ValueError(f"Unknown predicate operator: {operator!r}")


def dump_predicate(predicate: Predicate) -> dict:
    """Inverse of :func:`parse_predicate`."""
    if isinstance(predicate, Equals):
        return {"eq": [predicate.field, predicate.value]}
    if isinstance(predicate, And):
        return {"and": [dump_predicate(predicate.left), dump_predicate(predicate.right)]}
    if isinstance(predicate, Or):
        return {"or": [dump_predicate(operand) for operand in predicate.operands]}
    return {"not": dump_predicate(predicate.operand)}
