"""Row filters in PostgREST syntax ("column=op.value") for realtime bindings."""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

OPERATORS = ("eq", "neq", "lt", "lte", "gt", "gte", "in")


def _as_number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare(left: Any, right: str) -> Optional[int]:
    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        return (left_number > right_number) - (left_number < right_number)
    if left is None:
        return None
    left = str(left)
    return (left > right) - (left < right)


@dataclass(frozen=True)
class ChangeFilter:
    column: str
    operator: str
    value: Any

    @classmethod
    def parse(cls, expression: Optional[str]) -> Optional["ChangeFilter"]:
        if not expression:
            return None
        column, sep, rest = expression.partition("=")
        operator, dot, raw_value = rest.partition(".")
        if not sep or not dot or not column or operator not in OPERATORS:
            raise ValueError(f"Invalid realtime filter: {expression!r}")
        value: Any = raw_value
        if operator == "in":
            value = tuple(part.strip().strip('"') for part in raw_value.strip("()").split(",") if part.strip())
        return cls(column.strip(), operator, value)

    def matches(self, record: Optional[Mapping[str, Any]]) -> bool:
        if not record or self.column not in record:
            return False
        actual = record[self.column]
        text = None if actual is None else str(actual)

        if self.operator == "eq":
            return text == self.value
        if self.operator == "neq":
            return text != self.value
        if self.operator == "in":
            return text in self.value

        order = _compare(actual, self.value)
        if order is None:
            return False
        return {
            "lt": order < 0,
            "lte": order <= 0,
            "gt": order > 0,
            "gte": order >= 0,
        }[self.operator]


def records_for(event_type: str, new: Optional[Mapping], old: Optional[Mapping]) -> Tuple[Optional[Mapping], ...]:
    """Records a filter is evaluated against for each change type."""
    if event_type == "DELETE":
        return (old,)
    if event_type == "UPDATE":
        # A row leaving the filtered set is still reported to its subscribers
        return (new, old)
    return (new,)
