"""
Lane assignment for sequence diagrams.

Each distinct owner gets a 0-based column in the order it is first seen
during a depth-first, call-order walk of the tree. Repeated owners keep
their first column.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Union

from .activation import Activation


@dataclass(frozen=True, order=True)
class Lane:
    column: int
    name: str


class ColumnMap:
    def __init__(self) -> None:
        self._columns: Dict[str, int] = {}

    def add_name(self, name: str) -> int:
        if name not in self._columns:
            self._columns[name] = len(self._columns)
        return self._columns[name]

    def add_activation(self, activation: Activation) -> None:
        stack = [activation]
        while stack:
            current = stack.pop()
            self.add_name(current.owner)
            stack.extend(reversed(current.children))

    def add_list(self, activations: Iterable[Activation]) -> None:
        for activation in activations:
            self.add_activation(activation)

    def merge(self, other: "ColumnMap") -> None:
        """Append the other map's owners that this map has not seen yet."""
        for lane in other.lanes():
            self.add_name(lane.name)

    def get(self, name: str) -> Optional[int]:
        return self._columns.get(name)

    def column_of(self, activation: Activation) -> int:
        """Column of an activation's owner; KeyError if it was never added."""
        return self._columns[activation.owner]

    def lanes(self) -> List[Lane]:
        return sorted(Lane(column, name) for name, column in self._columns.items())

    def as_dict(self) -> Dict[str, int]:
        return dict(self._columns)

    def __contains__(self, name: object) -> bool:
        return name in self._columns

    def __len__(self) -> int:
        return len(self._columns)

    def __iter__(self) -> Iterator[Lane]:
        return iter(self.lanes())

    def __repr__(self) -> str:
        return f"ColumnMap({self._columns!r})"


def assign_columns(source: Union[Activation, Iterable[Activation]]) -> ColumnMap:
    """Build a ColumnMap for one activation tree or a list of roots."""
    column_map = ColumnMap()
    if isinstance(source, Activation):
        column_map.add_activation(source)
    else:
        column_map.add_list(source)
    return column_map
