# tests/test_patterns.py
import pytest

from seqtrace.patterns import PatternSet, compile_pattern


def test_prefix_pattern():
    matcher = compile_pattern("app.models.*")
    assert matcher.kind == "prefix"
    assert matcher.matches("app.models.User.save")
    assert not matcher.matches("app.views.index")


def test_suffix_pattern():
    matcher = compile_pattern("*.<genexpr>")
    assert matcher.matches("pkg.mod.<genexpr>")
    assert not matcher.matches("pkg.mod.run")


def test_star_matches_everything():
    assert compile_pattern("*").matches("")
    assert compile_pattern("*").matches("anything.at.all")


def test_exact_pattern():
    matcher = compile_pattern("app.Account")
    assert matcher.matches("app.Account")
    assert not matcher.matches("app.AccountManager")


@pytest.mark.parametrize(
    "pattern, name",
    [
        ("*foo*", "*foobar"),
        ("a*b", "a*b"),
        ("**", "*x"),
        ("", ""),
    ],
)
def test_every_pattern_string_has_a_meaning(pattern, name):
    assert compile_pattern(pattern).matches(name)


def test_trailing_star_is_checked_first():
    matcher = compile_pattern("*foo*")
    assert matcher.kind == "prefix"
    assert matcher.text == "*foo"
    assert not matcher.matches("xfoo")


def test_inner_star_is_literal():
    matcher = compile_pattern("a*b")
    assert matcher.kind == "exact"
    assert not matcher.matches("axb")
    assert not compile_pattern("").matches("anything")


def test_pattern_set_matches_owner_or_full_name():
    patterns = PatternSet(["app.Account", "*.helper"])
    assert patterns.matches_call("app.Account", "deposit")
    assert patterns.matches_call("app.Other", "helper")
    assert not patterns.matches_call("app.Other", "deposit")


def test_empty_pattern_set_is_falsy():
    assert not PatternSet()
    assert len(PatternSet(["a*", "b*"])) == 2
    assert PatternSet(["a*", "b"]).patterns == ["a*", "b"]
