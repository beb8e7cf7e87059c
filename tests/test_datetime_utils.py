from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from boardhub.utils.datetime_utils import isoformat_utc, utcnow


def test_utcnow_is_timezone_aware() -> None:
    assert utcnow().tzinfo is UTC


def test_isoformat_utc_treats_naive_values_as_utc() -> None:
    assert isoformat_utc(datetime(2026, 2, 20, 12, 30)) == "2026-02-20T12:30:00+00:00"


def test_isoformat_utc_converts_offsets() -> None:
    moscow = timezone(timedelta(hours=3))
    assert isoformat_utc(datetime(2026, 2, 20, 15, 30, tzinfo=moscow)) == "2026-02-20T12:30:00+00:00"
