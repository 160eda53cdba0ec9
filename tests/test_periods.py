from datetime import date

import pytest

from periods import normalize_date, resolve_month


def test_normalize_date_accepts_both_shapes() -> None:
    assert normalize_date("2025-03-07") == "2025-03-07"
    assert normalize_date("07-03-2025") == "2025-03-07"
    assert normalize_date(" 2025-03-07 ") == "2025-03-07"


def test_normalize_date_rejects_malformed_values() -> None:
    for value in ("", None, "2025/03/07", "7-3-2025", "2025-13-01", "30-02-2024"):
        assert normalize_date(value) is None


def test_resolve_month_defaults_to_today() -> None:
    assert resolve_month(None, today=date(2025, 3, 15)) == "2025-03"
    assert resolve_month("", today=date(2025, 12, 1)) == "2025-12"
    assert resolve_month("2024-02") == "2024-02"


def test_resolve_month_rejects_bad_input() -> None:
    for value in ("2024-13", "2024-2", "March"):
        with pytest.raises(ValueError):
            resolve_month(value)
