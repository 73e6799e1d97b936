# tests/conftest.py
import pytest

from seqtrace.activation import Activation, ActivationList, Member


def call(owner, name, *children, declaring=None, depth=-1, synthetic=False):
    """Build a detached activation tree: call("Foo", "bar", call("Baz", "qux"))."""
    member = Member(declaring or owner, name, (), synthetic)
    node = Activation(None, owner, member, depth)
    for child in children:
        node.add(child)
    return node


def names(activations):
    return [a.qualified_name for a in activations]


@pytest.fixture
def withdrawal_tree():
    """Scenarios.testWithdrawal -> [Foo.__init__ -> [Bar.__init__, Bar.frotz x5], Foo.bar, Foo.baz]"""
    foo_init = call(
        "Foo",
        "__init__",
        call("Bar", "__init__"),
        *[call("Bar", "frotz") for _ in range(5)],
    )
    root = call("Scenarios", "testWithdrawal", foo_init, call("Foo", "bar"), call("Foo", "baz"))
    return ActivationList([root])
