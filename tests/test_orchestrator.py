from datetime import date

from availability import orchestrator

from conftest import TENANT, TODAY, make_calendar, make_unit


def test_check_availability_reports_rules_then_overlap(s):
    cal = make_calendar(s, blackouts=["2026-01-16"])
    make_unit(s, links=[(cal.id, date(2026, 1, 1))])

    ok = orchestrator.check_availability(s, TENANT, "room-101", date(2026, 1, 17), date(2026, 1, 19), today=TODAY)
    assert ok.ok
    assert ok.nights == 2
    assert ok.resolved.link.calendar_id == cal.id

    orchestrator.reserve(s, TENANT, "room-101", date(2026, 1, 17), date(2026, 1, 19), today=TODAY)

    res = orchestrator.check_availability(s, TENANT, "room-101", date(2026, 1, 15), date(2026, 1, 18), today=TODAY)
    assert not res.ok
    assert res.reason_codes == ["BLACKOUT", "OVERLAP"]
    assert len(res.conflicts) == 1


def test_quote_uses_unit_rate_and_calendar_terms(s):
    cal = make_calendar(s, cancel_hours=72, cancel_fee=40)
    make_unit(s, links=[(cal.id, date(2026, 1, 1))])

    resolved, q = orchestrator.quote_stay(s, TENANT, "room-101", date(2026, 1, 15), date(2026, 1, 18))
    assert resolved.calendar.id == cal.id
    assert (q.nightly, q.nights, q.total, q.currency) == (395, 3, 1185, "USD")
    assert (q.cancel_hours, q.cancel_fee) == (72, 40)


def test_appointment_reservation_occupies_one_day(s):
    cal = make_calendar(s, category="appointments")
    make_unit(s, links=[(cal.id, date(2026, 1, 1))])

    r = orchestrator.reserve(
        s, TENANT, "room-101", date(2026, 2, 3), date(2026, 2, 9), mode="appointments", today=TODAY
    )
    assert (r.start_date, r.end_date) == (date(2026, 2, 3), date(2026, 2, 4))
