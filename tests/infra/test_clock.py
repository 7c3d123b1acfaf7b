from datetime import date, timezone

from infra.time_utils import fixed_clock, now_utc, today_utc


def test_now_utc_is_aware() -> None:
    assert now_utc().tzinfo == timezone.utc


def test_today_utc_is_a_date() -> None:
    assert isinstance(today_utc(), date)


def test_fixed_clock() -> None:
    clock = fixed_clock(date(2024, 2, 6))
    assert clock() == date(2024, 2, 6)
    assert clock() == clock()
