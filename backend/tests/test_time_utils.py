from datetime import datetime, timedelta, timezone

from salonbook.time_utils import billing_period, expiry_after, parse_iso_datetime, to_utc_z


def test_state_timestamps_read_back_as_utc_naive():
    assert parse_iso_datetime("2026-10-19T09:30:00Z") == datetime(2026, 10, 19, 9, 30)
    assert parse_iso_datetime("2026-10-19T15:00:00+05:30") == datetime(2026, 10, 19, 9, 30)
    assert parse_iso_datetime("2026-10-19T09:30:00") == datetime(2026, 10, 19, 9, 30)
    assert parse_iso_datetime("  ") is None


def test_written_with_trailing_z_to_the_second():
    assert to_utc_z(datetime(2026, 10, 19, 9, 30, 15, 999)) == "2026-10-19T09:30:15Z"
    assert to_utc_z(datetime(2026, 10, 19, 15, 0, tzinfo=timezone(timedelta(hours=5, minutes=30)))) == (
        "2026-10-19T09:30:00Z"
    )
    assert to_utc_z(None) is None


def test_billing_period_uses_utc_month():
    assert billing_period(datetime(2026, 10, 31, 23, 0)) == "202610"
    # 01:00 IST on 1 November is still October in UTC
    assert billing_period(datetime(2026, 11, 1, 1, 0, tzinfo=timezone(timedelta(hours=5, minutes=30)))) == "202610"


def test_session_expiry_counts_from_last_touch():
    touched = datetime(2026, 10, 19, 9, 30)

    assert expiry_after(touched, 30) == datetime(2026, 10, 19, 10, 0)
