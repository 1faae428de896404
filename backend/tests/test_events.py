from __future__ import annotations

import datetime as dt
from dataclasses import replace

from conftest import IST, at
from worknest.events import EventLedger, TaskFacts, classify, collect_events, resolve_deadline
from worknest.resets import ResetExecutor

DAY = dt.date(2024, 3, 15)
NOW = at(dt.date(2024, 3, 20), "12:00")


def make_facts(**overrides) -> TaskFacts:
    values = dict(
        entity="task",
        entity_id=1,
        title="Daily report",
        source="live",
        kind="daily",
        project_id=1,
        project_name="Apollo",
        assignee_ids=(7,),
        approval_status="approved",
        completed_at=at(DAY, "09:00"),
        approved_at=None,
        created_at=at(DAY, "08:00"),
        deadline_date=DAY,
        deadline_time="10:00",
        bonus_points=10,
        bonus_currency=100,
        penalty_points=5,
        penalty_currency=50,
    )
    values.update(overrides)
    return TaskFacts(**values)


def test_completion_before_deadline_is_a_bonus():
    event = classify(make_facts(), NOW, IST)
    assert event.outcome == "bonus"
    assert event.reason == "on_time"
    assert event.day == DAY
    assert (event.points, event.currency) == (10, 100)


def test_completion_exactly_at_deadline_is_on_time():
    event = classify(make_facts(completed_at=at(DAY, "10:00")), NOW, IST)
    assert event.outcome == "bonus"


def test_completion_after_deadline_is_a_fine():
    event = classify(make_facts(completed_at=at(DAY, "10:01")), NOW, IST)
    assert event.outcome == "fine"
    assert event.reason == "late"
    assert (event.points, event.currency) == (5, 50)


def test_fine_currency_falls_back_to_points():
    event = classify(make_facts(completed_at=at(DAY, "11:00"), penalty_currency=0, penalty_points=20), NOW, IST)
    assert event.currency == 20


def test_recurring_cycle_without_deadline_date_uses_completion_day():
    facts = make_facts(deadline_date=None, completed_at=at(dt.date(2024, 3, 18), "09:30"))
    assert resolve_deadline(facts, IST) == at(dt.date(2024, 3, 18), "10:00")


def test_deadline_date_without_time_means_end_of_day():
    facts = make_facts(kind="one-time", deadline_time=None, completed_at=at(DAY, "23:00"))
    assert classify(facts, NOW, IST).outcome == "bonus"


def test_due_date_is_the_last_fallback():
    facts = make_facts(kind="one-time", deadline_time=None, deadline_date=None, due_date=DAY, due_time="12:00")
    assert resolve_deadline(facts, IST) == at(DAY, "12:00")


def test_not_applicable_and_pending_produce_no_event():
    assert classify(make_facts(not_applicable=True), NOW, IST) is None
    assert classify(make_facts(approval_status="pending"), NOW, IST) is None


def test_approved_but_never_completed_is_fined_at_deadline():
    event = classify(make_facts(completed_at=None), NOW, IST)
    assert event.reason == "overdue"
    assert event.occurred_at == at(DAY, "10:00")
    assert classify(make_facts(completed_at=None), at(DAY, "09:00"), IST) is None


def test_rejected_is_fined_on_review_day():
    facts = make_facts(approval_status="rejected", approved_at=at(dt.date(2024, 3, 16), "15:00"))
    event = classify(facts, NOW, IST)
    assert event.outcome == "fine"
    assert event.day == dt.date(2024, 3, 16)


def test_deadline_passed_is_fined_on_deadline_day():
    event = classify(make_facts(approval_status="deadline_passed", completed_at=None), NOW, IST)
    assert event.reason == "deadline_passed"
    assert event.day == DAY


def test_ledger_keeps_one_event_per_entity_and_day():
    ledger = EventLedger()
    history = classify(make_facts(source="history"), NOW, IST)
    live = classify(make_facts(source="live"), NOW, IST)
    other_day = classify(replace(make_facts(), completed_at=at(dt.date(2024, 3, 16), "09:00"), deadline_date=dt.date(2024, 3, 16)), NOW, IST)

    assert ledger.add(history) is True
    assert ledger.add(live) is False
    assert ledger.add(other_day) is True
    assert [event.facts.source for event in ledger.events] == ["history", "live"]
    assert list(ledger.by_employee()) == [7]


def test_collect_events_prefers_history_over_live(session, factory):
    lead = factory.user("Kiran")
    project = factory.project()
    factory.task(
        project,
        title="Submit proposal",
        kind="one-time",
        assigned_to=lead.id,
        deadline_date=dt.date(2024, 3, 10),
        penalty_currency=50,
    )
    ResetExecutor(session, tz=IST, now=NOW).reset_all()

    ledger = collect_events(session, dt.date(2024, 3, 1), dt.date(2024, 3, 20), NOW, IST, employee_id=lead.id)

    assert len(ledger.events) == 1
    assert ledger.events[0].facts.source == "history"
    assert ledger.events[0].day == dt.date(2024, 3, 10)
