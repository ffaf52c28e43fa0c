from datetime import date

import pytest

from availability import dates
from availability.errors import InvalidDateError


def test_parse_day_accepts_ymd_only():
    assert dates.parse_day("2026-01-15") == date(2026, 1, 15)
    with pytest.raises(InvalidDateError) as exc:
        dates.parse_day("2026-1-5", field="check_in")
    assert exc.value.reason_codes == ["INVALID_DATE"]
    assert exc.value.meta["field"] == "check_in"
    with pytest.raises(InvalidDateError):
        dates.parse_day("2026-02-30")
    with pytest.raises(InvalidDateError):
        dates.parse_day(None)


def test_weekday_keys_are_stable():
    # 2026-01-18 is a Sunday.
    keys = [dates.weekday_key(d) for d in dates.expand_range(date(2026, 1, 18), date(2026, 1, 24))]
    assert keys == ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def test_ranges_are_inclusive_or_half_open_as_named():
    assert dates.expand_range(date(2026, 1, 15), date(2026, 1, 17)) == [
        date(2026, 1, 15),
        date(2026, 1, 16),
        date(2026, 1, 17),
    ]
    assert dates.expand_range(date(2026, 1, 17), date(2026, 1, 15)) == []
    assert list(dates.iter_nights(date(2026, 1, 15), date(2026, 1, 17))) == [date(2026, 1, 15), date(2026, 1, 16)]
    assert dates.to_exclusive_end(date(2026, 1, 31)) == date(2026, 2, 1)
