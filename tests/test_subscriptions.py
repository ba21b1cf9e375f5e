from datetime import datetime, timedelta

import pytest
from bson import ObjectId

import subscriptions
from subscriptions import SubscriptionError, ScheduledWashNotFound

NOW = datetime(2026, 3, 2, 10, 0)


def new_lead():
    return {"_id": ObjectId(), "id": 7, "customerName": "Asha", "area": "Baner", "leadType": "One-time", "status": "New", "washHistory": []}


def dates(n, start=NOW):
    return [start + timedelta(days=7 * i) for i in range(n)]


def subscribe(package_type="Premium", n=4, paid=True, **custom):
    lead = new_lead()
    package = subscriptions.resolve_package(package_type, **custom)
    subscriptions.create_subscription(lead, package, dates(n), paid, NOW)
    return lead


def test_premium_subscription_with_four_dates():
    lead = subscribe("Premium", 4)
    sub = lead["monthlySubscription"]
    assert sub["totalWashes"] == 4
    assert sub["isActive"] is True
    assert sub["completedWashes"] == 0
    assert [s["amount"] for s in sub["scheduledWashes"]] == [100, 100, 100, 100]
    assert [s["washNumber"] for s in sub["scheduledWashes"]] == [1, 2, 3, 4]
    assert lead["status"] == "Converted"
    assert lead["leadType"] == "Monthly"
    assert sub["endDate"] - sub["startDate"] == timedelta(days=30)


def test_every_slot_gets_one_pending_mirror():
    lead = subscribe("Premium", 4)
    slots = lead["monthlySubscription"]["scheduledWashes"]
    mirrors = [e for e in lead["washHistory"] if e["source"] == "subscription"]
    assert len(mirrors) == 4
    assert {m["scheduledWashId"] for m in mirrors} == {s["_id"] for s in slots}
    assert all(m["washStatus"] == "pending" for m in mirrors)


@pytest.mark.parametrize("price,washes", [(1000, 3), (100, 8), (500, 5), (250, 6)])
def test_rounding_drift_is_bounded_and_tracked(price, washes):
    lead = subscribe("Custom", washes, custom_plan_name="Family", total_washes=washes, price=price)
    sub = lead["monthlySubscription"]
    total = sum(s["amount"] for s in sub["scheduledWashes"])
    assert total == round(price / washes) * washes
    assert abs(price - total) <= washes - 1
    assert sub["roundingAdjustment"] == price - total


def test_custom_package_requires_a_name():
    with pytest.raises(SubscriptionError):
        subscriptions.resolve_package("Custom")
    with pytest.raises(SubscriptionError):
        subscriptions.resolve_package(None)


def test_unknown_package_type_becomes_named_custom_plan():
    package = subscriptions.resolve_package("Weekend Special", total_washes=2, price=350)
    assert package["packageType"] == "Custom"
    assert package["customPlanName"] == "Weekend Special"
    assert package["totalWashes"] == 2


def test_too_many_dates_rejected():
    lead = new_lead()
    with pytest.raises(SubscriptionError):
        subscriptions.create_subscription(lead, subscriptions.resolve_package("Basic"), dates(4), True, NOW)


def test_duplicate_days_collapse_to_one_slot():
    lead = new_lead()
    same_day = [NOW, NOW.replace(hour=15), NOW + timedelta(days=3)]
    subscriptions.create_subscription(lead, subscriptions.resolve_package("Basic"), same_day, False, NOW)
    assert len(lead["monthlySubscription"]["scheduledWashes"]) == 2


def test_active_subscription_blocks_a_second_one():
    lead = subscribe("Basic", 3)
    with pytest.raises(SubscriptionError):
        subscriptions.create_subscription(lead, subscriptions.resolve_package("Basic"), dates(3), True, NOW)


def test_auto_generate_fills_remaining_slots():
    lead = new_lead()
    subscriptions.create_subscription(lead, subscriptions.resolve_package("Basic"), [NOW], True, NOW)
    created = subscriptions.auto_generate_slots(lead, NOW)
    slots = lead["monthlySubscription"]["scheduledWashes"]
    assert len(created) == 2
    assert len(slots) == 3
    assert slots[1]["scheduledDate"] == NOW + timedelta(days=10)
    assert slots[2]["scheduledDate"] == NOW + timedelta(days=20)
    assert all(s["autoGenerated"] for s in created)
    assert subscriptions.auto_generate_slots(lead, NOW) == []


def test_washer_bound_only_to_near_slots():
    washer = ObjectId()
    lead = new_lead()
    near_and_far = [NOW, NOW + timedelta(days=1), NOW + timedelta(days=9)]
    subscriptions.create_subscription(lead, subscriptions.resolve_package("Basic"), near_and_far, True, NOW, washer)
    slots = lead["monthlySubscription"]["scheduledWashes"]
    assert [s["washer"] for s in slots] == [washer, washer, None]
    assert lead["assignedWasher"] == washer


def test_completing_all_washes_deactivates():
    lead = subscribe("Premium", 4)
    sub = lead["monthlySubscription"]
    for number in range(1, 5):
        subscriptions.complete_scheduled_wash(lead, number, NOW + timedelta(days=number))
        assert sub["completedWashes"] == sum(1 for s in sub["scheduledWashes"] if s["status"] == "completed")
        assert sub["isActive"] == (sub["completedWashes"] < sub["totalWashes"])
    assert sub["completedWashes"] == 4
    assert sub["isActive"] is False
    with pytest.raises(SubscriptionError):
        subscriptions.complete_scheduled_wash(lead, 1, NOW)


def test_completion_updates_mirror_instead_of_adding_one():
    lead = subscribe("Premium", 4)
    slot = lead["monthlySubscription"]["scheduledWashes"][0]
    subscriptions.complete_scheduled_wash(lead, str(slot["_id"]), NOW, feedback="spotless", duration=40)
    assert len(lead["washHistory"]) == 4
    mirror = next(e for e in lead["washHistory"] if e["scheduledWashId"] == slot["_id"])
    assert mirror["washStatus"] == "completed"
    assert mirror["feedback"] == "spotless"
    assert mirror["duration"] == 40


def test_completion_without_mirror_synthesizes_one():
    lead = subscribe("Premium", 4)
    lead["washHistory"] = []
    subscriptions.complete_scheduled_wash(lead, 2, NOW)
    assert len(lead["washHistory"]) == 1
    assert lead["washHistory"][0]["source"] == "subscription"
    assert lead["washHistory"][0]["washStatus"] == "completed"


def test_completing_same_slot_twice_rejected():
    lead = subscribe("Premium", 4)
    subscriptions.complete_scheduled_wash(lead, 1, NOW)
    with pytest.raises(SubscriptionError):
        subscriptions.complete_scheduled_wash(lead, 1, NOW)


def test_interior_allotment_is_enforced():
    lead = subscribe("Basic", 3)
    subscriptions.complete_scheduled_wash(lead, 1, NOW, is_interior=True)
    assert lead["monthlySubscription"]["usedInteriorWashes"] == 1
    with pytest.raises(SubscriptionError):
        subscriptions.complete_scheduled_wash(lead, 2, NOW, is_interior=True)


def test_unknown_slot():
    lead = subscribe("Basic", 3)
    with pytest.raises(ScheduledWashNotFound):
        subscriptions.complete_scheduled_wash(lead, 9, NOW)
    with pytest.raises(ScheduledWashNotFound):
        subscriptions.complete_scheduled_wash(new_lead(), 1, NOW)


def test_renewal_archives_finished_subscription():
    lead = subscribe("Basic", 3)
    for number in range(1, 4):
        subscriptions.complete_scheduled_wash(lead, number, NOW)
    old = lead["monthlySubscription"]
    subscriptions.create_subscription(lead, subscriptions.resolve_package("Premium"), dates(4, NOW + timedelta(days=31)), True, NOW)
    assert lead["pastSubscriptions"] == [old]
    assert lead["monthlySubscription"]["packageType"] == "Premium"
    assert subscriptions.find_slot(lead, old["scheduledWashes"][0]["_id"]) is old["scheduledWashes"][0]


def test_payment_correction_on_completed_slot():
    lead = subscribe("Premium", 4, paid=False)
    subscriptions.complete_scheduled_wash(lead, 1, NOW)
    slot = subscriptions.complete_scheduled_wash(lead, 1, NOW, paid=True)
    assert slot["is_amountPaid"] is True
    mirror = next(e for e in lead["washHistory"] if e["scheduledWashId"] == slot["_id"])
    assert mirror["is_amountPaid"] is True
    assert lead["monthlySubscription"]["completedWashes"] == 1


def test_record_payment_updates_amount_on_slot_and_mirror():
    lead = subscribe("Premium", 4)
    slot = lead["monthlySubscription"]["scheduledWashes"][1]
    subscriptions.record_payment(lead, slot, NOW, amount=120)
    mirror = next(e for e in lead["washHistory"] if e["scheduledWashId"] == slot["_id"])
    assert slot["amount"] == 120
    assert mirror["amount"] == 120
