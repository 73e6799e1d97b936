# tests/test_transforms.py
from seqtrace.activation import ActivationList
from seqtrace.config_store import TraceConfig
from seqtrace.filters import exclusion_filter, method_filter
from seqtrace.hierarchy import MappingTypeHierarchy
from seqtrace.transforms import (
    collapse_repetitions,
    copy_activations,
    copy_tree,
    filter_activations,
    find_activations,
    prepare_for_diagram,
)

from conftest import call, names


def test_copy_is_equal_but_independent(withdrawal_tree):
    copied = copy_tree(withdrawal_tree[0])
    assert copied == withdrawal_tree[0]
    assert copied is not withdrawal_tree[0]

    copied.children[0].children.pop()
    assert withdrawal_tree[0].children[0].num_calls == 6
    assert copied != withdrawal_tree[0]


def test_copy_keeps_depth_and_repetitions():
    source = call("A", "a", call("B", "b", depth=5), depth=4)
    source.children[0].repetitions = 3
    copied = copy_activations([source])[0]
    assert copied.stack_depth == 4
    assert copied.children[0].stack_depth == 5
    assert copied.children[0].repetitions == 3
    assert copied.children[0].parent is copied


# -------------------------------------------------------------------
# filter
# -------------------------------------------------------------------

def test_exclusion_filter_drops_subtrees(withdrawal_tree):
    filtered = filter_activations(withdrawal_tree, exclusion_filter("Bar.*"))
    assert len(filtered) == 1
    root = filtered[0]
    assert root.num_calls == 3
    assert names(root.children) == ["Foo.__init__", "Foo.bar", "Foo.baz"]
    assert root.children[0].num_calls == 0


def test_rejected_node_descendants_are_not_promoted():
    tree = [call("A", "a", call("B", "b", call("C", "c")))]
    filtered = filter_activations(tree, exclusion_filter("B.*"))
    assert filtered == ActivationList([call("A", "a")])


def test_rejected_root_disappears():
    filtered = filter_activations([call("A", "a"), call("B", "b")], exclusion_filter("A.*"))
    assert names(filtered) == ["B.b"]


def test_filter_leaves_input_untouched(withdrawal_tree):
    before = copy_activations(withdrawal_tree)
    filter_activations(withdrawal_tree, exclusion_filter("Foo.*"))
    assert withdrawal_tree == before
    assert withdrawal_tree.count_nodes() == 10


def test_filter_predicate_sees_original_parent():
    seen = []

    def remember(activation):
        seen.append(activation.parent.qualified_name if activation.parent else None)
        return True

    filter_activations([call("A", "a", call("B", "b"))], remember)
    assert seen == [None, "A.a"]


def test_filter_accepting_everything_keeps_structure(withdrawal_tree):
    filtered = filter_activations(withdrawal_tree, lambda activation: True)
    assert filtered == withdrawal_tree
    assert filtered[0] is not withdrawal_tree[0]


# -------------------------------------------------------------------
# find
# -------------------------------------------------------------------

def test_find_lifts_matching_subtree(withdrawal_tree):
    found = find_activations(withdrawal_tree, method_filter("Foo.__init__"))
    assert len(found) == 1
    assert found[0].qualified_name == "Foo.__init__"
    assert found[0].num_calls == 6
    assert found[0].parent is None


def test_find_does_not_search_inside_matches():
    tree = [
        call("M", "m", call("M", "m1", call("Q", "q1"), call("Q", "q2")), call("M", "m2")),
        call("P", "p", call("M", "m1", call("Q", "q3")), call("P", "p2")),
    ]
    found = find_activations(tree, method_filter("M.m1"))
    assert found == ActivationList(
        [call("M", "m1", call("Q", "q1"), call("Q", "q2")), call("M", "m1", call("Q", "q3"))]
    )


def test_find_without_match_is_empty(withdrawal_tree):
    assert find_activations(withdrawal_tree, method_filter("Nope.never")) == ActivationList()


def test_find_matching_only_roots_is_a_copy(withdrawal_tree):
    found = find_activations(withdrawal_tree, lambda activation: activation.parent is None)
    assert found == copy_activations(withdrawal_tree)
    assert found.count_nodes() == 10


# -------------------------------------------------------------------
# collapse
# -------------------------------------------------------------------

def test_collapse_merges_consecutive_siblings(withdrawal_tree):
    collapsed = collapse_repetitions(withdrawal_tree)
    foo_init = collapsed[0].children[0]
    assert foo_init.num_calls == 2
    assert [(c.qualified_name, c.repetitions) for c in foo_init.children] == [
        ("Bar.__init__", 1),
        ("Bar.frotz", 5),
    ]
    # input keeps its six children
    assert withdrawal_tree[0].children[0].num_calls == 6


def test_collapse_only_merges_adjacent_calls():
    tree = [call("A", "a", call("B", "b"), call("C", "c"), call("B", "b"))]
    collapsed = collapse_repetitions(tree)
    assert names(collapsed[0].children) == ["B.b", "C.c", "B.b"]


def test_collapse_compares_whole_subtrees():
    tree = [call("A", "a", call("B", "b", call("C", "c")), call("B", "b"))]
    collapsed = collapse_repetitions(tree)
    assert collapsed[0].num_calls == 2


def test_collapse_handles_nested_repetitions():
    inner = [call("C", "c") for _ in range(3)]
    tree = [call("A", "a", call("B", "b", *inner), call("B", "b", *[call("C", "c") for _ in range(3)]))]
    collapsed = collapse_repetitions(tree)
    b = collapsed[0].children[0]
    assert b.repetitions == 2
    assert b.num_calls == 1
    assert b.children[0].repetitions == 3


def test_deep_tree_does_not_hit_recursion_limit():
    root = node = call("A", "a")
    for _ in range(5000):
        child = call("A", "a")
        node.add(child)
        node = child
    copied = copy_tree(root)
    assert ActivationList([copied]).count_nodes() == 5001
    assert filter_activations([root], exclusion_filter("B.*"))[0] == root
    assert collapse_repetitions([root]).count_nodes() == 5001


# -------------------------------------------------------------------
# prepare_for_diagram
# -------------------------------------------------------------------

def test_prepare_applies_start_excludes_constructors_and_collapse(withdrawal_tree):
    config = TraceConfig(start_method="Foo.__init__", exclude_patterns=["Bar.__init__"])
    prepared = prepare_for_diagram(withdrawal_tree, config, MappingTypeHierarchy())
    assert len(prepared) == 1
    assert prepared[0].qualified_name == "Foo.__init__"
    assert [(c.qualified_name, c.repetitions) for c in prepared[0].children] == [("Bar.frotz", 5)]


def test_prepare_drops_super_constructor_calls():
    tree = [call("app.Main", "run", call("app.Derived", "__init__",
                                        call("app.Derived", "__init__", declaring="app.Base")))]
    hierarchy = MappingTypeHierarchy({"app.Derived": ["app.Derived", "app.Base", "builtins.object"]})
    prepared = prepare_for_diagram(tree, TraceConfig(), hierarchy)
    assert prepared == ActivationList([call("app.Main", "run", call("app.Derived", "__init__"))])


def test_prepare_steps_can_be_switched_off(withdrawal_tree):
    prepared = prepare_for_diagram(
        withdrawal_tree,
        TraceConfig(),
        MappingTypeHierarchy(),
        hide_super_constructors=False,
        collapse=False,
    )
    assert prepared == withdrawal_tree
    assert prepared.count_nodes() == 10


def test_prepare_keeps_differing_repetition_counts_apart():
    tree = [call("A", "a", call("B", "b", call("C", "c"), call("C", "c")), call("B", "b", call("C", "c")))]
    prepared = prepare_for_diagram(tree, TraceConfig(), MappingTypeHierarchy())
    assert [(b.qualified_name, b.repetitions) for b in prepared[0].children] == [
        ("B.b", 1),
        ("B.b", 1),
    ]
    assert prepared[0].children[0].children[0].repetitions == 2
