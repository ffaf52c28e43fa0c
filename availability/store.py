"""
Store boundary: the reads and writes the engine needs from the database.

Functions take an open Session and never commit; the caller owns the
transaction so a check and its insert can share one.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Iterable
from uuid import uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from . import dates
from .errors import CalendarNotFound, UnitNotFound
from .models import Calendar, Reservation, ReservationNight, Unit

ACTIVE_STATUSES = ("hold", "confirmed")

# Calendar content that versions carry; identity fields (id, name, version) are excluded.
CALENDAR_CONTENT_FIELDS = (
    "owner",
    "category",
    "currency",
    "cancel_hours",
    "cancel_fee",
    "lead_time_min_days",
    "lead_time_max_days",
    "blackouts",
    "recurring_blackouts",
    "holidays",
    "min_stay_by_weekday",
    "active",
)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _unexpired(now: datetime):
    # Expired holds still sit in the table until released; they block nothing.
    return or_(
        Reservation.status != "hold",
        Reservation.hold_expires_at.is_(None),
        Reservation.hold_expires_at >= now,
    )


def _apply_content(cal: Calendar, payload: dict[str, Any]) -> None:
    for f in CALENDAR_CONTENT_FIELDS:
        if f in payload:
            setattr(cal, f, payload[f])


#
# Calendars
#


def get_calendar(
    s: Session,
    calendar_id: str | None = None,
    *,
    name: str | None = None,
    version: int | None = None,
) -> Calendar:
    """Look a calendar up by id, by (name, version), or by name alone (latest version)."""
    cal: Calendar | None = None
    if calendar_id:
        cal = s.get(Calendar, calendar_id)
    elif name and version is not None:
        cal = s.scalars(select(Calendar).where(Calendar.name == name, Calendar.version == version)).first()
    elif name:
        cal = latest_calendar(s, name)
    if cal is None:
        raise CalendarNotFound(
            "Calendar not found",
            calendar_id=calendar_id,
            name=name,
            version=version,
        )
    return cal


def latest_calendar(s: Session, name: str, *, for_update: bool = False) -> Calendar | None:
    stmt = select(Calendar).where(Calendar.name == name).order_by(Calendar.version.desc()).limit(1)
    if for_update:
        stmt = stmt.with_for_update()
    return s.scalars(stmt).first()


def max_version(s: Session, name: str) -> int:
    return int(s.scalar(select(func.max(Calendar.version)).where(Calendar.name == name)) or 0)


def list_calendars(
    s: Session,
    *,
    owner: str | None = None,
    category: str | None = None,
    active: bool | None = None,
) -> list[Calendar]:
    stmt = select(Calendar)
    if owner:
        stmt = stmt.where(Calendar.owner == owner)
    if category:
        stmt = stmt.where(Calendar.category == category)
    if active is not None:
        stmt = stmt.where(Calendar.active.is_(active))
    return list(s.scalars(stmt.order_by(Calendar.name.asc(), Calendar.version.desc())))


def insert_calendar_version(s: Session, name: str, version: int, payload: dict[str, Any]) -> Calendar:
    now = _now()
    cal = Calendar(id=str(uuid4()), name=name, version=version, created_at=now, updated_at=now)
    _apply_content(cal, payload)
    s.add(cal)
    s.flush()  # surfaces a (name, version) uniqueness violation here
    return cal


def replace_latest_version(s: Session, name: str, payload: dict[str, Any]) -> Calendar | None:
    cal = latest_calendar(s, name, for_update=True)
    if cal is None:
        return None
    _apply_content(cal, payload)
    cal.updated_at = _now()
    s.add(cal)
    s.flush()
    return cal


#
# Units
#


def get_unit_by_tenant_and_key(s: Session, tenant_id: str, unit_key: str) -> Unit:
    unit = s.scalars(select(Unit).where(Unit.tenant_id == tenant_id, Unit.unit_key == unit_key)).first()
    if unit is None:
        raise UnitNotFound("Unit not found", tenant_id=tenant_id, unit_key=unit_key)
    return unit


def list_units(s: Session, tenant_id: str, *, active: bool | None = None) -> list[Unit]:
    stmt = select(Unit).where(Unit.tenant_id == tenant_id)
    if active is not None:
        stmt = stmt.where(Unit.active.is_(active))
    return list(s.scalars(stmt.order_by(Unit.unit_key.asc())))


#
# Reservations
#


def find_overlapping(
    s: Session,
    unit_id: str,
    start: date,
    end_exclusive: date,
    statuses: Iterable[str] = ACTIVE_STATUSES,
    now: datetime | None = None,
) -> list[Reservation]:
    # [start_date, end_date) intersects [start, end_exclusive)
    stmt = (
        select(Reservation)
        .where(Reservation.unit_id == unit_id)
        .where(Reservation.status.in_(list(statuses)))
        .where(_unexpired(now or _now()))
        .where(Reservation.start_date < end_exclusive)
        .where(Reservation.end_date > start)
        .order_by(Reservation.start_date.asc())
    )
    return list(s.scalars(stmt))


def insert_reservation(s: Session, reservation: Reservation) -> Reservation:
    """
    Add the reservation and claim each of its nights.

    Raises sqlalchemy IntegrityError on flush when any night is already
    claimed for the unit.
    """
    s.add(reservation)
    for night in dates.iter_nights(reservation.start_date, reservation.end_date):
        s.add(ReservationNight(unit_id=reservation.unit_id, night=night, reservation_id=reservation.id))
    s.flush()
    return reservation


def release_nights(s: Session, reservation_ids: Iterable[str]) -> int:
    ids = list(reservation_ids)
    if not ids:
        return 0
    return (
        s.query(ReservationNight)
        .filter(ReservationNight.reservation_id.in_(ids))
        .delete(synchronize_session=False)
    )


def find_in_window(
    s: Session,
    tenant_id: str,
    start: date,
    end_exclusive: date,
    *,
    unit_id: str | None = None,
    calendar_id: str | None = None,
    now: datetime | None = None,
) -> list[Reservation]:
    """Active reservations of a tenant intersecting [start, end_exclusive), by unit and/or calendar."""
    stmt = (
        select(Reservation)
        .where(Reservation.tenant_id == tenant_id)
        .where(Reservation.status.in_(ACTIVE_STATUSES))
        .where(_unexpired(now or _now()))
        .where(Reservation.start_date < end_exclusive)
        .where(Reservation.end_date > start)
    )
    if unit_id:
        stmt = stmt.where(Reservation.unit_id == unit_id)
    if calendar_id:
        stmt = stmt.where(Reservation.calendar_id == calendar_id)
    return list(s.scalars(stmt.order_by(Reservation.start_date.asc())))
