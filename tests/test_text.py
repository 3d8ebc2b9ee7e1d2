"""Tests for the MarkdownV2 escaping and conversion helpers."""

import math

import pytest

from owrx_relay.core.text import (
    degrees_to_compass,
    escape,
    escape_url,
    feet_to_km,
    format_mhz,
    format_timestamp,
    knots_to_kmh,
    link,
    stringify,
    to_number,
)

RESERVED = "_*[]()~`>#+-=|{}.!"


def test_escape_returns_empty_for_missing_text() -> None:
    assert escape(None) == ""
    assert escape("") == ""


@pytest.mark.parametrize("char", list(RESERVED))
def test_escape_prefixes_each_reserved_character_once(char: str) -> None:
    assert escape(f"a{char}b") == f"a\\{char}b"


def test_escape_escapes_backslash() -> None:
    assert escape("a\\b") == "a\\\\b"


def test_escape_leaves_other_characters_untouched() -> None:
    text = "Ünïcode 123 abc: ⇾ ▶ ok,"
    assert escape(text) == text


def test_escape_stringifies_scalars() -> None:
    assert escape(14.5) == "14\\.5"
    assert escape(True) == "true"


def test_escape_url_only_touches_parenthesis_and_backslash() -> None:
    assert escape_url("https://x.com/a_(b).c") == "https://x.com/a_(b\\).c"


def test_link_escapes_label_and_target_separately() -> None:
    assert (
        link("8.8.8.8", "https://ip-api.com#8.8.8.8")
        == "[8\\.8\\.8\\.8](https://ip-api.com#8.8.8.8)"
    )


def test_format_timestamp_renders_local_time(utc_timezone) -> None:
    assert format_timestamp(0) == "70-01-01 00:00:00"
    assert format_timestamp(1700000000000) == "23-11-14 22:13:20"
    assert format_timestamp("1700000000000") == "23-11-14 22:13:20"


def test_format_timestamp_rejects_non_numbers() -> None:
    assert format_timestamp(None) == ""
    assert format_timestamp("soon") == ""


def test_to_number_parses_leading_number() -> None:
    assert to_number("12.5abc") == 12.5
    assert to_number(" -3") == -3.0
    assert math.isnan(to_number("abc"))
    assert math.isnan(to_number(None))
    assert math.isnan(to_number(True))
    assert math.isnan(to_number({"a": 1}))


def test_to_number_out_of_float_range_is_nan() -> None:
    huge = int("9" * 400)

    assert math.isnan(to_number(huge))
    assert format_timestamp(huge) == ""


def test_unit_conversions_accept_numeric_strings() -> None:
    assert feet_to_km(1000) == pytest.approx(0.3048)
    assert feet_to_km("1000") == pytest.approx(0.3048)
    assert knots_to_kmh(10) == pytest.approx(18.52)
    assert knots_to_kmh("10") == pytest.approx(18.52)


def test_unit_conversions_yield_nan_for_garbage() -> None:
    assert math.isnan(feet_to_km("high"))
    assert math.isnan(knots_to_kmh(None))


@pytest.mark.parametrize(
    "degrees, expected",
    [
        (0, "(N \U0001F881)"),
        (360, "(N \U0001F881)"),
        (720, "(N \U0001F881)"),
        (11.24, "(N \U0001F881)"),
        (11.25, "(NNE \U0001F881\U0001F885)"),
        (90, "(E \U0001F882)"),
        ("180", "(S \U0001F883)"),
        (270, "(W \U0001F880)"),
        (348.75, "(N \U0001F881)"),
        (337.5, "(NNW \U0001F881\U0001F884)"),
    ],
)
def test_degrees_to_compass(degrees, expected: str) -> None:
    assert degrees_to_compass(degrees) == expected


def test_degrees_to_compass_unknown_bearing() -> None:
    assert degrees_to_compass("north") == ""


def test_format_mhz() -> None:
    assert format_mhz(14074000) == "14.074"
    assert format_mhz("7074000") == "7.074"
    assert format_mhz(None) == "NaN"


def test_stringify_matches_json_rendering() -> None:
    assert stringify(None) == ""
    assert stringify(False) == "false"
    assert stringify({"a": [1, 2]}) == '{"a":[1,2]}'
    assert stringify(7) == "7"
