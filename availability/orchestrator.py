from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from . import dates, domain, errors, reservations, store
from .errors import InvalidDateRange, NoCalendarForDate, RuleRejection
from .models import Calendar, Reservation, Unit

DEFAULT_HOLD_MINUTES = int(os.getenv("DEFAULT_HOLD_MINUTES", "15"))


@dataclass(frozen=True)
class Resolved:
    unit: Unit
    link: domain.CalendarLink
    calendar: Calendar


@dataclass
class AvailabilityResult:
    ok: bool
    reason_codes: list[str]
    nights: int
    check_in: date
    check_out: date
    resolved: Resolved
    conflicts: list[dict] = field(default_factory=list)


def unit_links(unit: Unit) -> list[domain.CalendarLink]:
    return [domain.CalendarLink.from_dict(raw) for raw in (unit.calendars or [])]


def resolve_for(s: Session, tenant_id: str, unit_key: str, day: date) -> Resolved:
    unit = store.get_unit_by_tenant_and_key(s, tenant_id, unit_key)
    links = unit_links(unit)
    link = domain.resolve(links, day)
    if link is None:
        future = domain.earliest_effective_date(links)
        raise NoCalendarForDate(
            "No calendar is effective for the requested start date",
            future_effective_from=dates.to_ymd(future) if future else None,
        )
    cal = store.get_calendar(s, link.calendar_id)
    return Resolved(unit=unit, link=link, calendar=cal)


def _request(check_in: date, check_out: date | None, mode: domain.Category) -> domain.BookingRequest:
    if check_out is not None and check_out < check_in:
        raise InvalidDateRange("check_out must not be before check_in", check_in=str(check_in), check_out=str(check_out))
    return domain.BookingRequest(start=check_in, end=check_out, mode=mode)


def check_availability(
    s: Session,
    tenant_id: str,
    unit_key: str,
    check_in: date,
    check_out: date | None = None,
    mode: domain.Category = "reservations",
    today: date | None = None,
) -> AvailabilityResult:
    """
    Rules first, then overlap. Both are reported together so the caller sees
    the full set of reasons a request cannot be booked.
    """
    req = _request(check_in, check_out, mode)
    resolved = resolve_for(s, tenant_id, unit_key, req.start)
    decision = domain.evaluate(domain.rules_from_calendar(resolved.calendar), req, today or dates.today_utc())

    codes = list(decision.reason_codes)
    overlapping = store.find_overlapping(s, resolved.unit.id, req.start, req.end_exclusive)
    if overlapping:
        codes.append(errors.OVERLAP)

    return AvailabilityResult(
        ok=not codes,
        reason_codes=codes,
        nights=decision.nights,
        check_in=req.start,
        check_out=req.end_inclusive,
        resolved=resolved,
        conflicts=reservations.conflict_summary(overlapping),
    )


def quote_stay(
    s: Session,
    tenant_id: str,
    unit_key: str,
    check_in: date,
    check_out: date,
) -> tuple[Resolved, domain.Quote]:
    req = _request(check_in, check_out, "reservations")
    resolved = resolve_for(s, tenant_id, unit_key, req.start)
    n = domain.nights(req.start, req.end_inclusive)
    q = domain.quote(
        rate=resolved.unit.rate,
        currency=resolved.unit.currency,
        n=n,
        cancel_hours=resolved.calendar.cancel_hours if resolved.calendar.cancel_hours is not None else 48,
        cancel_fee=resolved.calendar.cancel_fee or 0,
    )
    return resolved, q


def reserve(
    s: Session,
    tenant_id: str,
    unit_key: str,
    check_in: date,
    check_out: date,
    *,
    mode: domain.Category = "reservations",
    status: str = "confirmed",
    hold_minutes: int | None = None,
    guest: dict[str, Any] | None = None,
    payment: dict[str, Any] | None = None,
    today: date | None = None,
) -> Reservation:
    """
    Resolve the calendar, evaluate its rules, then commit atomically.

    Nothing is written unless the rules pass and the overlap-guarded insert
    succeeds. Terms are copied onto the reservation at this point and never
    re-read from the calendar afterwards.
    """
    if status not in ("hold", "confirmed"):
        raise ValueError(f"Unsupported reservation status: {status}")

    req = _request(check_in, check_out, mode)
    resolved = resolve_for(s, tenant_id, unit_key, req.start)
    decision = domain.evaluate(domain.rules_from_calendar(resolved.calendar), req, today or dates.today_utc())
    if not decision.ok:
        raise RuleRejection(decision.reason_codes, unit_key=unit_key)

    now = datetime.now(tz=timezone.utc)
    hold_expires_at = None
    if status == "hold":
        minutes = hold_minutes if hold_minutes is not None else DEFAULT_HOLD_MINUTES
        hold_expires_at = now + timedelta(minutes=max(1, min(int(minutes), 60)))

    unit, cal = resolved.unit, resolved.calendar
    pay = dict(payment) if payment else None
    if pay is not None and not pay.get("currency"):
        pay["currency"] = unit.currency or "USD"

    reservation = Reservation(
        id=str(uuid4()),
        created_at=now,
        updated_at=now,
        tenant_id=tenant_id,
        unit_id=unit.id,
        unit_name=unit.name or "",
        unit_number=unit.unit_number or "",
        calendar_id=cal.id,
        calendar_name=cal.name,
        calendar_version=cal.version,
        start_date=req.start,
        end_date=req.end_exclusive,
        status=status,
        hold_expires_at=hold_expires_at,
        rate=float(unit.rate or 0),
        currency=unit.currency or "USD",
        cancel_hours=int(cal.cancel_hours if cal.cancel_hours is not None else 48),
        cancel_fee=float(cal.cancel_fee or 0),
        guest=dict(guest) if guest else None,
        payment=pay,
    )
    return reservations.commit_if_no_overlap(s, reservation)
