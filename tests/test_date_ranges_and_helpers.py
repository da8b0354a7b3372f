"""
Date range key and numeric helper tests.
"""
from datetime import date

import pytest

from agency_dashboard.connectors.errors import InvalidRequest
from agency_dashboard.utils.date_ranges import resolve_range_key, week_start
from agency_dashboard.utils.helpers import (
    calculate_percentage_change,
    coerce_count,
    coerce_metric,
    normalize_domain,
    sum_known,
)

TODAY = date(2026, 3, 10)


# ---------------------------------------------------------------------------
# Range keys
# ---------------------------------------------------------------------------

def test_rolling_key():
    window = resolve_range_key("30d", today=TODAY)
    assert window.key == "30d"
    assert window.start == date(2026, 2, 8)
    assert window.end == TODAY


def test_rolling_key_is_normalised():
    assert resolve_range_key(" 7D ", today=TODAY).key == "7d"


@pytest.mark.parametrize("key", ["0d", "731d", "30", "thirty", "", "custom:2026-01-01", "custom:2026-13-01:2026-01-02"])
def test_malformed_keys_are_rejected(key):
    with pytest.raises(InvalidRequest):
        resolve_range_key(key, today=TODAY)


def test_custom_key_future_end_is_clamped():
    window = resolve_range_key("custom:2026-03-01:2026-04-01", today=TODAY)
    assert window.end == TODAY
    assert window.key == "custom:2026-03-01:2026-03-10"
    assert window.days == 10


def test_custom_key_start_after_end_is_rejected():
    with pytest.raises(InvalidRequest):
        resolve_range_key("custom:2026-03-05:2026-03-01", today=TODAY)


def test_week_start_monday():
    assert week_start(date(2026, 3, 10)) == date(2026, 3, 9)
    assert week_start(date(2026, 3, 9)) == date(2026, 3, 9)
    assert week_start(date(2026, 3, 8)) == date(2026, 3, 2)


# ---------------------------------------------------------------------------
# Numeric coercion
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("value", [None, "", "abc", float("nan"), float("inf"), True, [], {}])
def test_coerce_metric_unknowns(value):
    assert coerce_metric(value) is None


def test_coerce_metric_numbers():
    assert coerce_metric("12.5") == 12.5
    assert coerce_metric(0) == 0.0
    assert coerce_count("41.6") == 42
    assert coerce_count(None) is None


def test_percentage_change():
    assert calculate_percentage_change(150, 100) == 50.0
    assert calculate_percentage_change(50, 0) is None
    assert calculate_percentage_change(None, 10) is None
    assert calculate_percentage_change(10, None) is None


def test_sum_known():
    assert sum_known([1, None, 2]) == 3
    assert sum_known([None, None]) is None
    assert sum_known([]) is None


def test_normalize_domain():
    assert normalize_domain("https://www.Example.com/") == "example.com"
    assert normalize_domain("example.com") == "example.com"
