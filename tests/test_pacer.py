from datetime import datetime, timedelta, timezone

import pytest

from src.pacer import Pacer


T0 = datetime(2013, 11, 8, 13, 39, 18, tzinfo=timezone.utc)


def test_first_record_has_no_delay():
    """Test nothing to wait for before the first record."""
    pacer = Pacer(ratio=1)

    assert pacer.delay_for(T0) == 0


def test_delay_scaled_by_ratio():
    """Test the gap between timestamps is divided by the ratio."""
    pacer = Pacer(ratio=4)
    pacer.delay_for(T0)

    assert pacer.delay_for(T0 + timedelta(seconds=2)) == pytest.approx(0.5)


def test_out_of_order_and_duplicate_timestamps():
    """Test non-increasing timestamps dispatch immediately."""
    pacer = Pacer(ratio=1)
    pacer.delay_for(T0)

    assert pacer.delay_for(T0) == 0
    assert pacer.delay_for(T0 - timedelta(seconds=5)) == 0
    # the earlier timestamp becomes the new reference
    assert pacer.delay_for(T0) == pytest.approx(5)


def test_disabled_pacer_never_sleeps():
    """Test pacing disabled ignores timestamps entirely."""
    sleeps = []
    pacer = Pacer(ratio=1, enabled=False, sleep=sleeps.append)

    for i in range(5):
        pacer.wait(T0 + timedelta(seconds=10 * i))

    assert sleeps == []
    assert pacer.last_timestamp is None


def test_wait_calls_sleep():
    """Test wait() sleeps for the computed delay only when positive."""
    sleeps = []
    pacer = Pacer(ratio=2, sleep=sleeps.append)

    pacer.wait(T0)
    pacer.wait(T0 + timedelta(seconds=3))
    pacer.wait(T0 + timedelta(seconds=3))

    assert sleeps == [pytest.approx(1.5)]


def test_total_delay_matches_timeline():
    """Test the summed delays equal the log span divided by the ratio."""
    sleeps = []
    pacer = Pacer(ratio=10, sleep=sleeps.append)
    offsets = [0, 1, 1.5, 4, 9, 20]

    for offset in offsets:
        pacer.wait(T0 + timedelta(seconds=offset))

    assert sum(sleeps) == pytest.approx(2.0)


def test_ratio_below_one_rejected():
    """Test slowing down the replay is not supported."""
    with pytest.raises(ValueError):
        Pacer(ratio=0.5)
