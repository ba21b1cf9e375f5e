from datetime import datetime, timedelta

from bson import ObjectId

import lifecycle
import revenue
import subscriptions

NOW = datetime(2026, 5, 4, 9, 30)


def lead(**fields):
    doc = {"_id": ObjectId(), "customerName": "Kiran", "area": "Kothrud", "leadType": "One-time", "status": "New", "washHistory": []}
    doc.update(fields)
    return doc


def adhoc(doc, amount, paid=True, status="completed", when=NOW, wash_type="Basic"):
    doc["washHistory"].append(lifecycle.new_wash_entry(wash_type, amount, when, status=status, paid=paid))
    lifecycle.mark_converted(doc)
    return doc


def subscribed(package="Premium", paid=True, when=NOW):
    doc = lead(leadType="Monthly")
    n = subscriptions.PACKAGES[package][0]
    days = [when + timedelta(days=i) for i in range(n)]
    subscriptions.create_subscription(doc, subscriptions.resolve_package(package), days, paid, when)
    return doc


def test_total_is_independent_of_recording_mechanism():
    via_history = adhoc(lead(), 100)
    via_slot = subscribed("Premium")
    subscriptions.complete_scheduled_wash(via_slot, 1, NOW)

    assert revenue.total_revenue(revenue.collect_washes([via_history])) == 100
    assert revenue.total_revenue(revenue.collect_washes([via_slot])) == 100


def test_completed_subscription_counts_once():
    doc = subscribed("Premium")
    for number in range(1, 5):
        subscriptions.complete_scheduled_wash(doc, number, NOW + timedelta(days=number))
    summary = revenue.reconcile(revenue.collect_washes([doc]))
    assert summary["totalRevenue"] == 400
    assert summary["totalWashes"] == 4
    assert summary["revenueBySource"] == {"subscription": 400}


def test_legacy_mirror_without_source_is_skipped():
    doc = subscribed("Premium")
    subscriptions.complete_scheduled_wash(doc, 1, NOW)
    slot = doc["monthlySubscription"]["scheduledWashes"][0]
    legacy = {
        "_id": ObjectId(),
        "washType": "Premium",
        "amount": 100,
        "date": slot["scheduledDate"],
        "washStatus": "completed",
        "is_amountPaid": True,
    }
    doc["washHistory"] = [legacy]
    assert revenue.total_revenue(revenue.collect_washes([doc])) == 100


def test_unpaid_washes_are_converted_but_not_revenue():
    doc = adhoc(lead(), 250, paid=False)
    adhoc(doc, 150, paid=True)
    summary = revenue.reconcile(revenue.collect_washes([doc]))
    assert summary["totalRevenue"] == 150
    assert summary["paymentSummary"] == {"total": 400, "paid": 150, "unpaid": 250}
    assert len(summary["recentTransactions"]) == 2


def test_pending_and_failed_washes_are_ignored():
    doc = adhoc(lead(), 100, status="pending")
    adhoc(doc, 100, status="notcompleted")
    summary = revenue.reconcile(revenue.collect_washes([doc]))
    assert summary["totalRevenue"] == 0
    assert summary["recentTransactions"] == []


def test_history_of_unconverted_lead_is_not_revenue():
    doc = lead()
    doc["washHistory"].append(lifecycle.new_wash_entry("Basic", 100, NOW, paid=True))
    assert revenue.collect_washes([doc]) == []


def test_window_and_filters():
    early = adhoc(lead(area="Aundh"), 100, when=NOW - timedelta(days=40))
    late = adhoc(lead(area="Baner"), 300, when=NOW, wash_type="Deluxe")
    monthly = subscribed("Basic")
    subscriptions.complete_scheduled_wash(monthly, 1, NOW)
    leads = [early, late, monthly]

    assert revenue.total_revenue(revenue.collect_washes(leads)) == 500
    assert revenue.total_revenue(revenue.collect_washes(leads, start=NOW - timedelta(days=1))) == 400
    assert revenue.total_revenue(revenue.collect_washes(leads, wash_type="Deluxe")) == 300
    assert revenue.total_revenue(revenue.collect_washes(leads, area="bane")) == 300
    assert revenue.total_revenue(revenue.collect_washes(leads, customer_type="Monthly")) == 100


def test_breakdowns_by_type_and_customer():
    one_time = adhoc(lead(), 200, wash_type="Deluxe")
    monthly = subscribed("Basic")
    subscriptions.complete_scheduled_wash(monthly, 1, NOW)
    summary = revenue.reconcile(revenue.collect_washes([one_time, monthly]))
    assert summary["revenueByWashType"] == {"Deluxe": 200, "Basic": 100}
    assert summary["revenueByCustomerType"] == {"One-time": 200, "Monthly": 100}
    assert summary["customersByType"] == {"One-time": 1, "Monthly": 1}
    assert summary["totalCustomers"] == 2


def test_revenue_by_month():
    doc = adhoc(lead(), 100, when=datetime(2026, 4, 30, 18, 0))
    adhoc(doc, 50, when=datetime(2026, 5, 1, 8, 0))
    assert revenue.revenue_by_month(revenue.collect_washes([doc])) == {"2026-04": 100, "2026-05": 50}


def test_net_revenue_and_percent_change():
    expenses = [{"amount": 120}, {"amount": 30.5}]
    assert revenue.expense_total(expenses) == 150.5
    assert revenue.net_revenue(500, expenses) == 349.5
    assert revenue.percent_change(150, 100) == 50.0
    assert revenue.percent_change(50, 0) == 0
    assert revenue.percent_change(2, 3) == -33.3


def test_renewed_subscription_keeps_earlier_revenue():
    doc = subscribed("Basic")
    for number in range(1, 4):
        subscriptions.complete_scheduled_wash(doc, number, NOW)
    assert revenue.total_revenue(revenue.collect_washes([doc])) == 300

    later = NOW + timedelta(days=31)
    subscriptions.create_subscription(doc, subscriptions.resolve_package("Basic"), [later], True, later)
    subscriptions.complete_scheduled_wash(doc, 1, later)
    assert revenue.total_revenue(revenue.collect_washes([doc])) == 400


def test_paying_a_completed_slot_later_counts_it():
    doc = subscribed("Premium", paid=False)
    subscriptions.complete_scheduled_wash(doc, 1, NOW)
    assert revenue.total_revenue(revenue.collect_washes([doc])) == 0
    subscriptions.complete_scheduled_wash(doc, 1, NOW, paid=True)
    assert revenue.total_revenue(revenue.collect_washes([doc])) == 100
