from datetime import datetime, timedelta

import pytest

import lifecycle

NOW = datetime(2026, 7, 1, 11, 0)


def test_converted_and_revenue_predicates_differ():
    done_unpaid = {"washStatus": "completed", "is_amountPaid": False}
    done_paid = {"washStatus": "completed", "is_amountPaid": True}
    pending_paid = {"washStatus": "pending", "is_amountPaid": True}
    assert lifecycle.is_converted_wash(done_unpaid)
    assert not lifecycle.is_revenue_eligible(done_unpaid)
    assert lifecycle.is_revenue_eligible(done_paid)
    assert not lifecycle.is_converted_wash(pending_paid)
    assert not lifecycle.is_revenue_eligible(pending_paid)


def test_duration_is_never_negative():
    assert lifecycle.compute_duration(NOW, NOW + timedelta(minutes=45)) == 45
    assert lifecycle.compute_duration(NOW, NOW - timedelta(minutes=10)) == 0
    assert lifecycle.compute_duration(None, None, 30) == 30
    assert lifecycle.compute_duration(None, None) == 0


def test_status_progression_stamps_times():
    entry = lifecycle.new_wash_entry("Basic", 200, NOW, status="pending")
    lifecycle.apply_status(entry, "in-progress", NOW)
    assert entry["startTime"] == NOW
    lifecycle.apply_status(entry, "completed", NOW + timedelta(minutes=35))
    assert entry["endTime"] == NOW + timedelta(minutes=35)
    assert entry["duration"] == 35
    assert entry["washStatus"] == "completed"


def test_terminal_status_cannot_reopen():
    entry = lifecycle.new_wash_entry("Basic", 200, NOW)
    with pytest.raises(lifecycle.WashStateError):
        lifecycle.apply_status(entry, "pending", NOW)
    lifecycle.apply_status(entry, "notcompleted", NOW)
    assert entry["washStatus"] == "notcompleted"


def test_mark_converted_is_idempotent():
    lead = {"status": "Converted"}
    lifecycle.mark_converted(lead)
    assert lead["status"] == "Converted"


def test_find_entry():
    entry = lifecycle.new_wash_entry("Basic", 200, NOW)
    lead = {"washHistory": [entry]}
    assert lifecycle.find_entry(lead, str(entry["_id"])) is entry
    assert lifecycle.find_entry(lead, "nope") is None
