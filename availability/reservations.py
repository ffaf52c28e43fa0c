"""
Reservation overlap guard and lifecycle.

Committing a reservation inserts the row and one claim per night in a single
transaction. The claim table's primary key on (unit_id, night) makes the
store reject the second of two overlapping commits, whichever request
checked first.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import dates, store
from .errors import InvalidTransition, OverlapConflict, ReservationNotFound
from .models import Reservation

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _aware(ts: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def conflict_summary(rows: list[Reservation]) -> list[dict]:
    return [
        {
            "id": r.id,
            "start": dates.to_ymd(r.start_date),
            "end": dates.to_ymd(r.end_date),
            "status": r.status,
        }
        for r in rows
    ]


def has_overlap(s: Session, unit_id: str, start: date, end_exclusive: date) -> bool:
    return bool(store.find_overlapping(s, unit_id, start, end_exclusive))


def commit_if_no_overlap(s: Session, reservation: Reservation) -> Reservation:
    """
    Atomically insert `reservation` unless an active one intersects it.

    The pre-check only produces a friendlier conflict list; correctness
    comes from the claim insert failing inside the same transaction.
    """
    # Expired holds pass the pre-check; free their claims before inserting.
    release_expired_holds(s)

    existing = store.find_overlapping(s, reservation.unit_id, reservation.start_date, reservation.end_date)
    if existing:
        s.rollback()
        raise OverlapConflict(reservation.unit_id, conflict_summary(existing))

    try:
        store.insert_reservation(s, reservation)
        s.commit()
    except IntegrityError:
        s.rollback()
        logger.warning(
            "Lost overlap race for unit %s [%s, %s)",
            reservation.unit_id,
            reservation.start_date,
            reservation.end_date,
        )
        winners = store.find_overlapping(s, reservation.unit_id, reservation.start_date, reservation.end_date)
        raise OverlapConflict(reservation.unit_id, conflict_summary(winners))

    logger.info(
        "Committed reservation %s for unit %s [%s, %s) status=%s",
        reservation.id,
        reservation.unit_id,
        reservation.start_date,
        reservation.end_date,
        reservation.status,
    )
    return reservation


def release_expired_holds(s: Session, now: datetime | None = None) -> int:
    """
    Cancel holds whose expiry has passed and free their nights.

    Not a scheduler: callers run it on write paths before touching claims.
    """
    now = now or _now()
    expired_ids = list(
        s.scalars(
            select(Reservation.id)
            .where(Reservation.status == "hold")
            .where(Reservation.hold_expires_at.is_not(None))
            .where(Reservation.hold_expires_at < now)
        )
    )
    if not expired_ids:
        return 0

    released = s.execute(
        update(Reservation)
        .where(Reservation.id.in_(expired_ids))
        .where(Reservation.status == "hold")
        .values(status="cancelled", updated_at=now, hold_expires_at=None)
        .execution_options(synchronize_session=False)
    ).rowcount
    store.release_nights(s, expired_ids)
    s.commit()
    if released:
        logger.info("Released %s expired hold(s)", released)
    return released or 0


def get_reservation(s: Session, reservation_id: str, tenant_id: str | None = None) -> Reservation:
    r = s.get(Reservation, reservation_id)
    if r is None or (tenant_id is not None and r.tenant_id != tenant_id):
        raise ReservationNotFound("Reservation not found", reservation_id=reservation_id)
    return r


def confirm(s: Session, reservation_id: str, tenant_id: str | None = None) -> Reservation:
    now = _now()
    r = get_reservation(s, reservation_id, tenant_id)
    if r.status == "confirmed":
        return r
    if r.status != "hold":
        raise InvalidTransition(f"Reservation is not a hold (status={r.status})", reservation_id=r.id)

    expires = _aware(r.hold_expires_at)
    if expires is not None and expires < now:
        r.status = "cancelled"
        r.updated_at = now
        r.hold_expires_at = None
        s.add(r)
        store.release_nights(s, [r.id])
        s.commit()
        raise InvalidTransition("Hold expired", reservation_id=r.id)

    r.status = "confirmed"
    r.updated_at = now
    r.hold_expires_at = None
    s.add(r)
    s.commit()
    return r


def cancel(s: Session, reservation_id: str, tenant_id: str | None = None) -> Reservation:
    r = get_reservation(s, reservation_id, tenant_id)
    if r.status == "cancelled":
        raise InvalidTransition("Reservation is already cancelled", reservation_id=r.id)
    r.status = "cancelled"
    r.updated_at = _now()
    r.hold_expires_at = None
    s.add(r)
    store.release_nights(s, [r.id])
    s.commit()
    return r
