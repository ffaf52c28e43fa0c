"""
Bookable units and their calendar links.

Links are stored by value on the unit row and only ever appended or removed;
a link's calendar name and version are copied from the calendar when the
link is created.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import domain, store
from .errors import DuplicateLink, LinkNotFound, UnitExists
from .models import Unit

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _link_for(s: Session, calendar_id: str, effective_date: date) -> domain.CalendarLink:
    cal = store.get_calendar(s, calendar_id)
    return domain.CalendarLink(
        calendar_id=cal.id,
        name=cal.name,
        version=cal.version,
        effective_date=effective_date,
    )


def _check_distinct(links: list[domain.CalendarLink], new: domain.CalendarLink) -> None:
    for l in links:
        if l.name == new.name and l.effective_date == new.effective_date:
            raise DuplicateLink(
                "Calendar already linked on this effective date",
                name=new.name,
                effective_date=new.effective_date.isoformat(),
            )


def create_unit(
    s: Session,
    tenant_id: str,
    attrs: dict[str, Any],
    links: list[tuple[str, date]] | None = None,
) -> Unit:
    built: list[domain.CalendarLink] = []
    for calendar_id, effective_date in links or []:
        link = _link_for(s, calendar_id, effective_date)
        _check_distinct(built, link)
        built.append(link)

    now = _now()
    unit = Unit(
        id=str(uuid4()),
        created_at=now,
        updated_at=now,
        tenant_id=tenant_id,
        unit_key=attrs["unit_key"],
        name=attrs.get("name") or attrs["unit_key"],
        unit_number=attrs.get("unit_number"),
        unit_type=attrs.get("unit_type") or "guest_room",
        rate=float(attrs.get("rate") or 0),
        currency=attrs.get("currency") or "USD",
        calendars=[l.as_dict() for l in built],
        active=attrs.get("active", True),
    )
    try:
        s.add(unit)
        s.commit()
    except IntegrityError:
        s.rollback()
        raise UnitExists("Unit key already exists for this tenant", unit_key=attrs["unit_key"])
    logger.info("Created unit %s (%s) with %s calendar link(s)", unit.unit_key, unit.id, len(built))
    return unit


def add_link(s: Session, tenant_id: str, unit_key: str, calendar_id: str, effective_date: date) -> Unit:
    unit = store.get_unit_by_tenant_and_key(s, tenant_id, unit_key)
    current = [domain.CalendarLink.from_dict(raw) for raw in (unit.calendars or [])]
    link = _link_for(s, calendar_id, effective_date)
    _check_distinct(current, link)

    # New list object so SQLAlchemy sees the JSON column change.
    unit.calendars = [l.as_dict() for l in current] + [link.as_dict()]
    unit.updated_at = _now()
    s.add(unit)
    s.commit()
    return unit


def remove_link(s: Session, tenant_id: str, unit_key: str, calendar_id: str, effective_date: date) -> Unit:
    unit = store.get_unit_by_tenant_and_key(s, tenant_id, unit_key)
    current = [domain.CalendarLink.from_dict(raw) for raw in (unit.calendars or [])]
    kept = [l for l in current if not (l.calendar_id == calendar_id and l.effective_date == effective_date)]
    if len(kept) == len(current):
        raise LinkNotFound(
            "Calendar link not found",
            unit_key=unit_key,
            calendar_id=calendar_id,
            effective_date=effective_date.isoformat(),
        )
    unit.calendars = [l.as_dict() for l in kept]
    unit.updated_at = _now()
    s.add(unit)
    s.commit()
    return unit
