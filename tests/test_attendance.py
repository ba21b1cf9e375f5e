from datetime import datetime, timedelta

import pytest

import attendance
from attendance import AttendanceError

DAY = datetime(2026, 6, 15)


def at(hour, minute=0, day=DAY):
    return day.replace(hour=hour, minute=minute)


def test_full_day_is_present():
    rows = []
    attendance.clock_in(rows, at(9))
    entry = attendance.clock_out(rows, at(17, 30))
    assert entry["duration"] == 8.5
    assert entry["status"] == "present"
    assert len(rows) == 1


def test_clock_in_twice_same_day_rejected():
    rows = []
    attendance.clock_in(rows, at(9))
    with pytest.raises(AttendanceError):
        attendance.clock_in(rows, at(11))


def test_clock_out_requires_clock_in():
    with pytest.raises(AttendanceError):
        attendance.clock_out([], at(17))


def test_clock_out_before_clock_in_rejected():
    rows = []
    attendance.clock_in(rows, at(9))
    with pytest.raises(AttendanceError):
        attendance.clock_out(rows, at(8))
    assert rows[0]["timeOut"] is None


def test_second_clock_out_rejected():
    rows = []
    attendance.clock_in(rows, at(9))
    attendance.clock_out(rows, at(12))
    with pytest.raises(AttendanceError):
        attendance.clock_out(rows, at(13))


def test_open_day_stays_incomplete():
    rows = []
    entry = attendance.clock_in(rows, at(9))
    assert entry["status"] == "incomplete"
    assert entry["duration"] == 0


def test_summary_divides_by_recorded_days():
    rows = []
    for offset in range(3):
        day = DAY + timedelta(days=offset)
        attendance.clock_in(rows, at(9, day=day))
        attendance.clock_out(rows, at(17, day=day))
    attendance.clock_in(rows, at(9, day=DAY + timedelta(days=3)))

    stats = attendance.summarize(rows)
    assert stats["totalDays"] == 4
    assert stats["presentDays"] == 3
    assert stats["incompleteDays"] == 1
    assert stats["totalHours"] == 24
    assert stats["attendancePercentage"] == 75.0


def test_summary_respects_window():
    rows = []
    for offset in (0, 10):
        day = DAY + timedelta(days=offset)
        attendance.clock_in(rows, at(9, day=day))
        attendance.clock_out(rows, at(10, day=day))
    stats = attendance.summarize(rows, DAY, DAY + timedelta(days=5))
    assert stats["totalDays"] == 1
    assert attendance.summarize([])["attendancePercentage"] == 0
