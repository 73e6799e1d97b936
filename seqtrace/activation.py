"""
Activation tree model.

An Activation is one reconstructed call frame. Activations nest: the calls
made by a method are its children, in call order. Root activations (calls
with no traced caller) are collected in an ActivationList, usually one chain
per traced thread.

Parents are referenced weakly, so a tree is owned top-down by whoever holds
the root list.
"""

import weakref
from dataclasses import dataclass
from typing import List, Optional, Tuple

INDENT_SIZE = 4
UNKNOWN_DEPTH = -1
CONSTRUCTOR_NAME = "__init__"


@dataclass(frozen=True)
class Member:
    """Identity of a called routine."""

    declaring_type: str
    name: str
    signature: Tuple[str, ...] = ()
    synthetic: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.declaring_type}.{self.name}"

    @property
    def is_constructor(self) -> bool:
        return self.name == CONSTRUCTOR_NAME

    @property
    def is_public(self) -> bool:
        # Dunder methods are part of the public protocol of a type.
        if self.name.startswith("__") and self.name.endswith("__"):
            return True
        return not self.name.startswith("_")


class Activation:
    """One method call, i.e. one stack frame."""

    __hash__ = None  # mutable, compared structurally

    def __init__(
        self,
        parent: Optional["Activation"],
        owner: str,
        member: Member,
        stack_depth: int = UNKNOWN_DEPTH,
    ):
        self.owner = owner
        self.member = member
        self.stack_depth = stack_depth
        self.repetitions = 1
        self.children = ActivationList()
        self._parent_ref: Optional[weakref.ref] = None
        if parent is not None:
            parent.add(self)

    @property
    def parent(self) -> Optional["Activation"]:
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    @parent.setter
    def parent(self, parent: Optional["Activation"]) -> None:
        self._parent_ref = weakref.ref(parent) if parent is not None else None

    @property
    def qualified_name(self) -> str:
        """``owner.member`` as used by boundary methods and exclusion patterns."""
        return f"{self.owner}.{self.member.name}"

    @property
    def num_calls(self) -> int:
        return len(self.children)

    def add(self, child: "Activation") -> None:
        self.children.append(child)
        child.parent = self

    def increase_repetitions(self) -> None:
        self.repetitions += 1

    def label(self) -> str:
        text = self.qualified_name
        if self.repetitions > 1:
            text += f" (x {self.repetitions})"
        return text

    def to_text(self, indent: int = 0) -> str:
        """Render this activation and its descendants, one call per line."""
        lines: List[str] = []
        stack = [(self, indent)]
        while stack:
            activation, level = stack.pop()
            lines.append(" " * level + activation.label())
            for child in reversed(activation.children):
                stack.append((child, level + INDENT_SIZE))
        return "\n".join(lines) + "\n"

    def same_call(self, other: "Activation") -> bool:
        """Compare only this node's identity, ignoring children."""
        return self.owner == other.owner and self.member.name == other.member.name

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Activation):
            return NotImplemented
        return structurally_equal(self, other)

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return (
            f"Activation({self.qualified_name!r}, depth={self.stack_depth}, "
            f"repetitions={self.repetitions}, calls={self.num_calls})"
        )


class ActivationList(list):
    """Ordered sequence of Activations, e.g. the roots of a trace."""

    __hash__ = None

    def set_parent(self, parent: Optional[Activation]) -> None:
        for activation in self:
            activation.parent = parent

    def count_nodes(self) -> int:
        total = 0
        stack = list(self)
        while stack:
            activation = stack.pop()
            total += 1
            stack.extend(activation.children)
        return total

    def to_text(self) -> str:
        return "".join(activation.to_text() for activation in self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, list):
            return NotImplemented
        return lists_equal(self, other)

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return f"ActivationList({list.__repr__(self)})"


def structurally_equal(first: Activation, second: Activation) -> bool:
    """
    Owner, member name and children equal, recursively.

    Stack depth and repetition counts do not take part in the comparison.
    """
    stack = [(first, second)]
    while stack:
        a, b = stack.pop()
        if a is b:
            continue
        if not a.same_call(b) or len(a.children) != len(b.children):
            return False
        stack.extend(zip(a.children, b.children))
    return True


def lists_equal(first: List[Activation], second: List[Activation]) -> bool:
    if len(first) != len(second):
        return False
    return all(structurally_equal(a, b) for a, b in zip(first, second))
