"""
Predicates over Activations.

A predicate is any callable taking an Activation and returning True when the
activation should be kept (filter) or lifted (find). The factories below
cover the cases the tracer needs; plain functions and lambdas work too.
"""

import logging
from typing import Callable

from .activation import Activation
from .config_store import split_qualified_name
from .hierarchy import TypeHierarchy, Unresolved
from .patterns import compile_pattern

logger = logging.getLogger(__name__)

Predicate = Callable[[Activation], bool]


def exclusion_filter(pattern: str) -> Predicate:
    """Reject activations whose ``owner.member`` matches ``pattern``."""
    matcher = compile_pattern(pattern)

    def accept(activation: Activation) -> bool:
        return not matcher.matches(activation.qualified_name)

    return accept


def method_filter(qualified_name: str) -> Predicate:
    """Accept only calls of exactly ``owner.member``."""
    owner, member_name = split_qualified_name(qualified_name)

    def accept(activation: Activation) -> bool:
        return activation.owner == owner and activation.member.name == member_name

    return accept


def all_of(*predicates: Predicate) -> Predicate:
    def accept(activation: Activation) -> bool:
        return all(predicate(activation) for predicate in predicates)

    return accept


def constructor_filter(hierarchy: TypeHierarchy) -> Predicate:
    """
    Hide constructor calls made by another constructor on the same object.

    A constructor whose parent is a constructor is rejected when the parent
    is generated code (e.g. a dataclass ``__init__``) or when the child's
    declaring type is a strict base class of the parent's declaring type,
    which is what ``super().__init__()`` chains look like. When the
    hierarchy cannot answer, the call is kept and a warning is logged.
    """

    def accept(activation: Activation) -> bool:
        parent = activation.parent
        if parent is None or not activation.member.is_constructor:
            return True
        if not parent.member.is_constructor:
            return True
        if parent.member.synthetic:
            return False

        outcome = hierarchy.is_ancestor(
            activation.member.declaring_type, parent.member.declaring_type
        )
        if isinstance(outcome, Unresolved):
            logger.warning(
                "TRACE | constructor-filter | unresolved | call=%s | reason=%s",
                activation.member.qualified_name,
                outcome.reason,
            )
            return True
        return not outcome.is_ancestor

    return accept
