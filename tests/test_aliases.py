"""Tests for the persisted IP alias table."""

import json
import logging
from pathlib import Path

import pytest

from owrx_relay.core.aliases import (
    AliasRemoval,
    AliasTable,
    InvalidRangeError,
    normalize_ip,
    range_contains,
)


def _read(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


def test_add_then_lookup_matches_address_in_range(tmp_path: Path) -> None:
    table = AliasTable(tmp_path / "aliases.json")

    assert table.add("HOME", "192.168.0.0/24") is True

    assert table.lookup("192.168.0.42") == ["HOME"]
    assert table.lookup("::ffff:192.168.0.42") == ["HOME"]
    assert table.lookup("192.168.1.1") == []


def test_lookup_returns_every_matching_alias_in_order(tmp_path: Path) -> None:
    table = AliasTable(tmp_path / "aliases.json")
    table.add("OFFICE", "10.0.0.0/8")
    table.add("LAB", "10.1.0.0/16")
    table.add("ELSEWHERE", "172.16.0.0/12")

    assert table.lookup("10.1.2.3") == ["OFFICE", "LAB"]


def test_ipv6_and_explicit_ranges(tmp_path: Path) -> None:
    table = AliasTable(tmp_path / "aliases.json")
    table.add("V6", "2001:db8::/32")
    table.add("SPAN", "10.0.0.1-10.0.0.9")
    table.add("SINGLE", "8.8.8.8")

    assert table.lookup("2001:db8::1") == ["V6"]
    assert table.lookup("10.0.0.5") == ["SPAN"]
    assert table.lookup("10.0.0.10") == []
    assert table.lookup("8.8.8.8") == ["SINGLE"]
    assert table.lookup("not-an-ip") == []


def test_duplicate_add_is_reported_and_ignored(tmp_path: Path) -> None:
    path = tmp_path / "aliases.json"
    table = AliasTable(path)

    assert table.add("HOME", "192.168.0.0/24") is True
    assert table.add("HOME", "192.168.0.0/24") is False

    assert table.ranges("HOME") == ["192.168.0.0/24"]
    assert _read(path) == {"HOME": ["192.168.0.0/24"]}


def test_every_mutation_is_persisted(tmp_path: Path) -> None:
    path = tmp_path / "aliases.json"
    table = AliasTable(path)

    table.add("HOME", "192.168.0.0/24")
    table.add("HOME", "10.0.0.0/8")
    assert _read(path) == {"HOME": ["192.168.0.0/24", "10.0.0.0/8"]}

    table.remove("HOME", "192.168.0.0/24")
    assert _read(path) == {"HOME": ["10.0.0.0/8"]}

    reloaded = AliasTable.from_file(path)
    assert reloaded.as_dict() == {"HOME": ["10.0.0.0/8"]}


def test_removing_last_range_drops_the_alias(tmp_path: Path) -> None:
    path = tmp_path / "aliases.json"
    table = AliasTable(path)
    table.add("HOME", "192.168.0.0/24")

    assert table.remove("HOME", "192.168.0.0/24") is AliasRemoval.REMOVED

    assert "HOME" not in table
    assert list(table.items()) == []
    assert _read(path) == {}


def test_remove_reports_missing_name_and_range(tmp_path: Path) -> None:
    table = AliasTable(tmp_path / "aliases.json")
    table.add("HOME", "192.168.0.0/24")

    assert table.remove("WORK", "192.168.0.0/24") is AliasRemoval.NAME_NOT_FOUND
    assert table.remove("HOME", "10.0.0.0/8") is AliasRemoval.RANGE_NOT_FOUND
    assert table.ranges("HOME") == ["192.168.0.0/24"]


def test_invalid_range_is_rejected_without_writing(tmp_path: Path) -> None:
    path = tmp_path / "aliases.json"
    table = AliasTable(path)

    with pytest.raises(InvalidRangeError):
        table.add("HOME", "192.168.0.0/99")

    assert "HOME" not in table
    assert not path.exists()


def test_save_leaves_no_temporary_files(tmp_path: Path) -> None:
    table = AliasTable(tmp_path / "aliases.json")
    table.add("HOME", "192.168.0.0/24")

    assert [item.name for item in tmp_path.iterdir()] == ["aliases.json"]


def test_failed_replace_removes_temporary_file(tmp_path: Path, monkeypatch, caplog) -> None:
    table = AliasTable(tmp_path / "aliases.json")

    def _fail_replace(source, target):
        raise OSError("disk full")

    monkeypatch.setattr("owrx_relay.core.aliases.os.replace", _fail_replace)

    with caplog.at_level(logging.ERROR):
        assert table.add("HOME", "192.168.0.0/24") is True

    assert list(tmp_path.iterdir()) == []
    assert table.lookup("192.168.0.1") == ["HOME"]
    assert "Failed to save aliases" in caplog.text


def test_load_missing_file_starts_empty(tmp_path: Path) -> None:
    table = AliasTable.from_file(tmp_path / "missing.json")

    assert len(table) == 0


def test_load_corrupt_file_logs_and_starts_empty(tmp_path: Path, caplog) -> None:
    path = tmp_path / "aliases.json"
    path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.ERROR):
        table = AliasTable.from_file(path)

    assert len(table) == 0
    assert "Failed to load aliases" in caplog.text


def test_load_ignores_malformed_entries(tmp_path: Path) -> None:
    path = tmp_path / "aliases.json"
    path.write_text(
        json.dumps({"HOME": ["192.168.0.0/24", 5, "192.168.0.0/24"], "BAD": "x", "EMPTY": []}),
        encoding="utf-8",
    )

    table = AliasTable.from_file(path)

    assert table.as_dict() == {"HOME": ["192.168.0.0/24"]}


def test_persistence_failure_keeps_in_memory_state(tmp_path: Path, caplog) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    table = AliasTable(blocker / "aliases.json")

    with caplog.at_level(logging.ERROR):
        assert table.add("HOME", "192.168.0.0/24") is True

    assert table.lookup("192.168.0.1") == ["HOME"]
    assert "Failed to save aliases" in caplog.text


def test_helpers() -> None:
    assert normalize_ip("::ffff:1.2.3.4") == "1.2.3.4"
    assert normalize_ip("2001:db8::1") == "2001:db8::1"
    assert range_contains("1.2.3.4", "1.2.3.0/24")
    assert not range_contains("2001:db8::1", "1.2.3.0/24")
    assert not range_contains("1.2.3.4", "garbage")
