# tests/test_config_store.py
import json
import logging

import pytest

from seqtrace.config_store import (
    DEFAULT_CONFIG_NAME,
    STANDARD_EXCLUDES,
    TraceConfig,
    load_trace_config,
    save_trace_config,
    split_qualified_name,
)
from seqtrace.errors import ConfigurationError


def test_defaults():
    config = TraceConfig()
    assert config.include_patterns == []
    assert config.start_method is None
    assert config.std_excludes
    assert config.output_format == "text"


def test_effective_excludes_add_standard_patterns_once():
    config = TraceConfig(exclude_patterns=["app.legacy.*", "seqtrace.*"])
    patterns = config.effective_exclude_patterns()
    assert patterns[0] == "app.legacy.*"
    assert patterns.count("seqtrace.*") == 1
    assert set(STANDARD_EXCLUDES) <= set(patterns)
    assert TraceConfig(std_excludes=False).effective_exclude_patterns() == []


def test_split_qualified_name():
    assert split_qualified_name("pkg.mod.Type.method") == ("pkg.mod.Type", "method")
    for bad in ("method", ".method", "Type."):
        with pytest.raises(ConfigurationError):
            split_qualified_name(bad)


@pytest.mark.parametrize(
    "raw",
    [
        {"include_patterns": "app.*"},
        {"exclude_patterns": ["app.*", 3]},
        {"boundary_methods": ["nodot"]},
        {"start_method": "nodot"},
        {"public_only": "yes"},
        {"output_format": ""},
    ],
)
def test_invalid_values_are_rejected(raw):
    with pytest.raises(ConfigurationError):
        TraceConfig.from_dict(raw)


def test_unknown_keys_are_ignored_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="seqtrace.config_store"):
        config = TraceConfig.from_dict({"public_only": True, "colour": "blue"})
    assert config.public_only
    assert "colour" in caplog.text


def test_save_and_load(tmp_path):
    path = tmp_path / "trace.json"
    config = TraceConfig(include_patterns=["app.*"], start_method="app.Main.run", public_only=True)
    save_trace_config(config, path)

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert list(stored) == sorted(stored)
    assert load_trace_config(path) == config


def test_default_file_in_working_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_trace_config() == TraceConfig()

    (tmp_path / DEFAULT_CONFIG_NAME).write_text(json.dumps({"boundary_methods": ["lib.Client.get"]}),
                                               encoding="utf-8")
    assert load_trace_config().boundary_methods == ["lib.Client.get"]


def test_explicit_missing_or_broken_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_trace_config(tmp_path / "missing.json")
    broken = tmp_path / "broken.json"
    broken.write_text("[1, 2", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_trace_config(broken)
    not_object = tmp_path / "list.json"
    not_object.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_trace_config(not_object)
