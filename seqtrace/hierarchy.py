"""
Type hierarchy lookups used by the constructor filter.

A lookup never raises for an unknown type: it answers with an explicit
outcome, either Resolved(is_ancestor) or Unresolved(reason), and the caller
decides what "unknown" means.
"""

import inspect
import sys
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class Resolved:
    is_ancestor: bool


@dataclass(frozen=True)
class Unresolved:
    reason: str


HierarchyOutcome = Union[Resolved, Unresolved]


def type_name(cls: type) -> str:
    """Qualified name used as a trace owner for a class."""
    return f"{cls.__module__}.{cls.__qualname__}"


def ancestry_of(cls: type) -> Tuple[str, ...]:
    """Names of ``cls`` and all its base classes, in method resolution order."""
    try:
        mro = inspect.getmro(cls)
    except AttributeError:
        mro = (cls,)
    return tuple(type_name(c) for c in mro)


class TypeHierarchy:
    """Interface: answers whether one named type is a strict ancestor of another."""

    def is_ancestor(self, candidate: str, descendant: str) -> HierarchyOutcome:
        raise NotImplementedError


class MappingTypeHierarchy(TypeHierarchy):
    """Hierarchy recorded ahead of time, e.g. stored in a trace snapshot."""

    def __init__(self, ancestry: Optional[Mapping[str, Sequence[str]]] = None):
        self._ancestry: Dict[str, Tuple[str, ...]] = {
            name: tuple(chain) for name, chain in (ancestry or {}).items()
        }

    @property
    def ancestry(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self._ancestry)

    def record(self, name: str, chain: Iterable[str]) -> None:
        self._ancestry[name] = tuple(chain)

    def is_ancestor(self, candidate: str, descendant: str) -> HierarchyOutcome:
        chain = self._ancestry.get(descendant)
        if chain is None:
            return Unresolved(f"no recorded hierarchy for {descendant}")
        return Resolved(candidate != descendant and candidate in chain)


class RuntimeTypeHierarchy(TypeHierarchy):
    """
    Resolves names against classes already loaded in this interpreter.

    Only ``sys.modules`` is searched; nothing is imported, so looking a type
    up never runs module code.
    """

    def resolve(self, name: str) -> Optional[object]:
        return resolve_loaded(name)

    def is_ancestor(self, candidate: str, descendant: str) -> HierarchyOutcome:
        candidate_cls = self.resolve(candidate)
        descendant_cls = self.resolve(descendant)
        if not isinstance(candidate_cls, type):
            return Unresolved(f"type not loaded: {candidate}")
        if not isinstance(descendant_cls, type):
            return Unresolved(f"type not loaded: {descendant}")
        return Resolved(
            candidate_cls is not descendant_cls and issubclass(descendant_cls, candidate_cls)
        )


class ChainedTypeHierarchy(TypeHierarchy):
    """Asks each hierarchy in turn; the first resolved answer wins."""

    def __init__(self, *hierarchies: TypeHierarchy):
        self._hierarchies = hierarchies

    def is_ancestor(self, candidate: str, descendant: str) -> HierarchyOutcome:
        reasons = []
        for hierarchy in self._hierarchies:
            outcome = hierarchy.is_ancestor(candidate, descendant)
            if isinstance(outcome, Resolved):
                return outcome
            reasons.append(outcome.reason)
        return Unresolved("; ".join(reasons) or "no hierarchy configured")


def resolve_loaded(name: str) -> Optional[object]:
    """
    Find a loaded module or class by qualified name, without importing.

    ``pkg.mod.Outer.Inner`` is resolved by taking the longest prefix that is
    a key of ``sys.modules`` and walking the rest as attributes.
    """
    parts = name.split(".")
    for split in range(len(parts), 0, -1):
        module = sys.modules.get(".".join(parts[:split]))
        if module is None:
            continue
        obj: object = module
        for attribute in parts[split:]:
            obj = getattr(obj, attribute, None)
            if obj is None:
                return None
        return obj
    return None
