# tests/test_formatters.py
import re

import pytest

from seqtrace.errors import ConfigurationError, FormatError
from seqtrace.formatters import (
    FormatterRegistry,
    SdeditTextDiagram,
    TextDiagram,
    default_registry,
    format_text,
)

from conftest import call


def occurrences(pattern, text):
    return len(re.findall(pattern, text))


def test_text_diagram_is_indented_tree(withdrawal_tree):
    text = format_text(withdrawal_tree).render()
    lines = text.splitlines()
    assert lines[0] == "Scenarios.testWithdrawal"
    assert lines[1] == "    Foo.__init__"
    assert lines[2] == "        Bar.__init__"
    assert len(lines) == 10


def test_sdedit_diagram(withdrawal_tree):
    sdedit = SdeditTextDiagram(withdrawal_tree).render()
    assert occurrences("Scenarios", sdedit) == 1
    assert occurrences("Foo", sdedit) == 1
    assert occurrences("Bar", sdedit) == 1
    assert occurrences(r"\.testWithdrawal", sdedit) == 1
    assert occurrences(r"\.__init__", sdedit) == 2
    assert occurrences(r"\.frotz", sdedit) == 5
    assert occurrences(r"\.bar", sdedit) == 1
    assert occurrences(r"\.baz", sdedit) == 1


def test_sdedit_layout():
    tree = [call("app.Main", "run", call("app.Repo", "load"))]
    assert SdeditTextDiagram(tree).render().splitlines() == [
        "Actor1:Actor",
        "main1:Main[a]",
        "repo1:Repo[a]",
        "",
        "Actor1:main1.run",
        "  main1:repo1.load",
        "main1:stop",
    ]


def test_sdedit_gives_each_root_its_own_actor():
    sdedit = SdeditTextDiagram([call("A", "a"), call("B", "b")]).render()
    assert "Actor1:Actor" in sdedit
    assert "Actor2:Actor" in sdedit
    assert "Actor2:b2.b" in sdedit


def test_registry_lookup():
    registry = default_registry()
    assert registry.names() == ["sdedit", "text"]
    assert isinstance(registry.format("text", [call("A", "a")]), TextDiagram)
    with pytest.raises(ConfigurationError) as excinfo:
        registry.get("png")
    assert str(excinfo.value) == "Illegal format: png. Should be one of sdedit, text"


def test_registries_are_independent():
    first = default_registry()
    second = FormatterRegistry()
    first.register("upper", lambda activations: TextDiagram("X"))
    assert "upper" in first.names()
    assert second.names() == []


def test_diagram_save(tmp_path, withdrawal_tree):
    path = tmp_path / "out.txt"
    diagram = format_text(withdrawal_tree)
    diagram.save(path)
    assert path.read_text(encoding="utf-8") == str(diagram)
    with pytest.raises(FormatError):
        diagram.save(tmp_path / "missing" / "out.txt")
