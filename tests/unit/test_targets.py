"""Unit tests for fleetcheck.targets."""

from __future__ import annotations

import pytest

from fleetcheck.targets import TargetDescriptor, load_targets, parse_target_arg


def test_parse_named_target():
    target = parse_target_arg("prod-eu=/data/prod_eu.duckdb")
    assert target == TargetDescriptor(name="prod-eu", dsn="/data/prod_eu.duckdb")


def test_parse_bare_path_uses_file_stem():
    target = parse_target_arg("/data/qa.duckdb")
    assert target.name == "qa"
    assert target.dsn == "/data/qa.duckdb"


def test_parse_memory_dsn_keeps_raw_name():
    assert parse_target_arg(":memory:").name == ":memory:"


def test_blank_name_rejected():
    with pytest.raises(ValueError):
        parse_target_arg(" =/data/x.duckdb")


def test_str_is_name():
    assert str(TargetDescriptor(name="a", dsn="b")) == "a"


def test_load_targets_mapping(tmp_path):
    path = tmp_path / "targets.yml"
    path.write_text(
        "targets:\n"
        "  - name: prod-eu\n"
        "    dsn: /data/prod_eu.duckdb\n"
        "  - qa=/data/qa.duckdb\n",
        encoding="utf-8",
    )
    targets = load_targets(path)
    assert [t.name for t in targets] == ["prod-eu", "qa"]


def test_load_targets_plain_list(tmp_path):
    path = tmp_path / "targets.json"
    path.write_text('[{"name": "a", "dsn": "/a.duckdb"}]', encoding="utf-8")
    assert load_targets(path) == [TargetDescriptor(name="a", dsn="/a.duckdb")]


def test_load_targets_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError, match="Targets file not found"):
        load_targets(tmp_path / "nope.yml")


def test_load_targets_invalid_entry(tmp_path):
    path = tmp_path / "targets.yml"
    path.write_text("- name: a\n", encoding="utf-8")
    with pytest.raises(ValueError, match=r"targets\[0\]"):
        load_targets(path)


def test_load_targets_bad_root(tmp_path):
    path = tmp_path / "targets.yml"
    path.write_text("just a string\n", encoding="utf-8")
    with pytest.raises(ValueError, match="must contain a list"):
        load_targets(path)
