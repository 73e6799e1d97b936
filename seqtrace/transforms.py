"""
Tree transformations over ActivationLists.

Every function here returns a new, structurally independent ActivationList
and leaves its input untouched. Walks use explicit work stacks because a
trace can be as deep as the traced program's own call stack.
"""

import logging
from typing import Callable, Iterator, List, Optional, Tuple

from .activation import Activation, ActivationList, structurally_equal
from .config_store import TraceConfig
from .filters import constructor_filter, exclusion_filter, method_filter
from .hierarchy import RuntimeTypeHierarchy, TypeHierarchy

logger = logging.getLogger(__name__)

Predicate = Callable[[Activation], bool]


def _copy_node(activation: Activation, parent: Optional[Activation]) -> Activation:
    node = Activation(parent, activation.owner, activation.member, activation.stack_depth)
    node.repetitions = activation.repetitions
    return node


def copy_tree(activation: Activation) -> Activation:
    """Deep copy of one activation and its subtree, as a new root."""
    root = _copy_node(activation, None)
    stack: List[Tuple[Activation, Activation]] = [(activation, root)]
    while stack:
        source, target = stack.pop()
        for child in source.children:
            stack.append((child, _copy_node(child, target)))
    return root


def copy_activations(activations: List[Activation]) -> ActivationList:
    return ActivationList(copy_tree(activation) for activation in activations)


def filter_activations(activations: List[Activation], predicate: Predicate) -> ActivationList:
    """
    Keep only accepted activations.

    A rejected activation is dropped together with its whole subtree; its
    descendants are not promoted. The predicate always sees the original
    node, with its original parent.
    """
    result = ActivationList()
    stack: List[Tuple[List[Activation], Optional[Activation]]] = [(activations, None)]
    while stack:
        siblings, target_parent = stack.pop()
        for activation in siblings:
            if not predicate(activation):
                continue
            node = _copy_node(activation, target_parent)
            if target_parent is None:
                result.append(node)
            stack.append((activation.children, node))
    return result


def find_activations(activations: List[Activation], predicate: Predicate) -> ActivationList:
    """
    Lift accepted activations to be roots.

    The search is depth first. An accepted activation is copied with its full
    subtree and not searched any further; below a rejected one the search
    continues.

    For example, with calls ``m(m1(q1, q2), m2)`` and ``p(m1(q3), p2)`` and a
    predicate accepting ``m1``, the result is ``m1(q1, q2)`` and ``m1(q3)``.
    """
    result = ActivationList()
    stack: List[Iterator[Activation]] = [iter(activations)]
    while stack:
        activation = next(stack[-1], None)
        if activation is None:
            stack.pop()
        elif predicate(activation):
            result.append(copy_tree(activation))
        else:
            stack.append(iter(activation.children))
    return result


def _collapse_siblings(siblings: ActivationList) -> None:
    index = 0
    while index < len(siblings):
        current = siblings[index]
        while index + 1 < len(siblings) and structurally_equal(current, siblings[index + 1]):
            del siblings[index + 1]
            current.increase_repetitions()
        index += 1


def collapse_repetitions(activations: List[Activation]) -> ActivationList:
    """
    Merge consecutive identical siblings into one activation with a count.

    Siblings are compared with their complete, not yet collapsed, subtrees.
    A level is fully collapsed before its surviving children are visited.
    """
    result = copy_activations(activations)
    stack: List[ActivationList] = [result]
    while stack:
        siblings = stack.pop()
        _collapse_siblings(siblings)
        for activation in siblings:
            stack.append(activation.children)
    return result


def prepare_for_diagram(
    activations: List[Activation],
    config: TraceConfig,
    hierarchy: Optional[TypeHierarchy] = None,
    hide_super_constructors: bool = True,
    collapse: bool = True,
) -> ActivationList:
    """
    Post-process a raw trace for rendering.

    Lifts the start method (when tracing was deferred), applies each exclude
    pattern, drops super-constructor calls and collapses repetitions. The
    last two steps can be switched off. Always pass the raw trace: collapsing
    an already collapsed tree would merge nodes whose repetition counts differ.
    """
    prepared = ActivationList(activations)
    if config.start_method:
        prepared = find_activations(prepared, method_filter(config.start_method))
    for pattern in config.effective_exclude_patterns():
        prepared = filter_activations(prepared, exclusion_filter(pattern))
    if hide_super_constructors:
        if hierarchy is None:
            hierarchy = RuntimeTypeHierarchy()
        prepared = filter_activations(prepared, constructor_filter(hierarchy))
    if collapse:
        prepared = collapse_repetitions(prepared)
    logger.debug(
        "TRACE | prepared | roots=%d | nodes=%d", len(prepared), prepared.count_nodes()
    )
    return prepared
