import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest
from zoneinfo import ZoneInfo

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from webcam_timelapse.exceptions import FormatError  # noqa: E402
from webcam_timelapse.timezones import (  # noqa: E402
    crossed_local_time,
    determine_timezone,
    local_date_key,
    local_days_between,
    local_noon,
    parse_date_string,
)

DENVER = ZoneInfo("America/Denver")


def test_parse_date_string():
    assert parse_date_string("2025-09-24") == date(2025, 9, 24)


@pytest.mark.parametrize("value", ["20250924", "09-24-2025", "2025/09/24", "2025-02-30", ""])
def test_parse_date_string_rejects_bad_values(value):
    with pytest.raises(FormatError):
        parse_date_string(value)


def test_determine_timezone():
    assert determine_timezone("America/Denver") == DENVER
    assert determine_timezone("Mars/Olympus") is None
    assert determine_timezone(None) is None


def test_local_date_key_uses_webcam_timezone():
    late_utc = datetime(2025, 9, 25, 2, 30, tzinfo=timezone.utc)
    assert local_date_key(late_utc, DENVER) == "2025-09-24"
    assert local_noon(date(2025, 9, 24), DENVER).utcoffset().total_seconds() == -6 * 3600


def test_local_days_between_spans_every_overlapping_day():
    start = datetime(2025, 11, 1, 23, 0, tzinfo=DENVER).timestamp()
    end = datetime(2025, 11, 3, 1, 0, tzinfo=DENVER).timestamp()
    assert local_days_between(start, end, DENVER) == [
        date(2025, 11, 1),
        date(2025, 11, 2),
        date(2025, 11, 3),
    ]
    assert local_days_between(end, start, DENVER) == []


def _firings(start, hours, clock, tz=DENVER):
    ticks = (start + timedelta(minutes=minute) for minute in range(hours * 60))
    return [tick for tick in ticks if crossed_local_time(tick, tz, clock)]


def test_crossed_local_time_fires_on_the_local_minute():
    assert crossed_local_time(datetime(2025, 9, 25, 7, 0, tzinfo=timezone.utc), DENVER, (1, 0))
    assert not crossed_local_time(datetime(2025, 9, 25, 6, 59, tzinfo=timezone.utc), DENVER, (1, 0))
    assert not crossed_local_time(datetime(2025, 9, 25, 7, 1, tzinfo=timezone.utc), DENVER, (1, 0))
    # A longer step reaching back over local midnight still sees the previous day.
    assert crossed_local_time(
        datetime(2025, 9, 25, 6, 2, tzinfo=timezone.utc), DENVER, (23, 59), step=timedelta(minutes=5)
    )


def test_crossed_local_time_fires_once_per_local_day_across_dst():
    # 02:30 does not exist on 2025-03-09 in Denver; that local day lasts 23 hours.
    spring = _firings(datetime(2025, 3, 9, 7, 0, tzinfo=timezone.utc), 23, (2, 30))
    assert len(spring) == 1

    # 01:30 happens twice on 2025-11-02; that local day lasts 25 hours.
    autumn = _firings(datetime(2025, 11, 2, 6, 0, tzinfo=timezone.utc), 25, (1, 30))
    assert autumn == [datetime(2025, 11, 2, 7, 30, tzinfo=timezone.utc)]
