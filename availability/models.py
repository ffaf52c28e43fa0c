from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Calendar(Base):
    """
    A named, versioned availability policy.

    (name, version) is the identity; edits either add a version or overwrite
    the content of the latest one.
    """

    __tablename__ = "calendars"
    __table_args__ = (UniqueConstraint("name", "version", name="uq_calendars_name_version"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    name: Mapped[str] = mapped_column(String, index=True)
    version: Mapped[int] = mapped_column(Integer)

    owner: Mapped[str] = mapped_column(String, default="")
    category: Mapped[str] = mapped_column(String, default="reservations")  # reservations|appointments
    currency: Mapped[str] = mapped_column(String, default="USD")

    cancel_hours: Mapped[int] = mapped_column(Integer, default=48)
    cancel_fee: Mapped[float] = mapped_column(Float, default=0)

    lead_time_min_days: Mapped[int] = mapped_column(Integer, default=0)
    lead_time_max_days: Mapped[int] = mapped_column(Integer, default=365)

    blackouts: Mapped[list] = mapped_column(JSON, default=list)  # ["2026-01-16", ...]
    recurring_blackouts: Mapped[str | None] = mapped_column(String, nullable=True)  # RRULE text
    holidays: Mapped[list] = mapped_column(JSON, default=list)  # [{"date": "...", "min_nights": 3}]
    min_stay_by_weekday: Mapped[dict] = mapped_column(JSON, default=dict)  # {"Fri": 2, "Sat": 2}

    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)


class Unit(Base):
    __tablename__ = "units"
    __table_args__ = (UniqueConstraint("tenant_id", "unit_key", name="uq_units_tenant_unit_key"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    tenant_id: Mapped[str] = mapped_column(String, index=True)
    unit_key: Mapped[str] = mapped_column(String, index=True)  # stable public key

    name: Mapped[str] = mapped_column(String)
    unit_number: Mapped[str | None] = mapped_column(String, nullable=True)
    unit_type: Mapped[str] = mapped_column(String, default="guest_room")

    rate: Mapped[float] = mapped_column(Float, default=0)
    currency: Mapped[str] = mapped_column(String, default="USD")

    # Calendar links stored by value:
    # [{"calendar_id", "name", "version", "effective_date"}]
    calendars: Mapped[list] = mapped_column(JSON, default=list)

    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)


class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    tenant_id: Mapped[str] = mapped_column(String, index=True)
    unit_id: Mapped[str] = mapped_column(String, index=True)
    unit_name: Mapped[str] = mapped_column(String, default="")
    unit_number: Mapped[str | None] = mapped_column(String, nullable=True)

    # Calendar version that applied at commit time (snapshot, not a live reference)
    calendar_id: Mapped[str] = mapped_column(String, index=True)
    calendar_name: Mapped[str] = mapped_column(String, default="")
    calendar_version: Mapped[int] = mapped_column(Integer, default=1)

    start_date: Mapped[date] = mapped_column(Date, index=True)  # inclusive
    end_date: Mapped[date] = mapped_column(Date, index=True)  # exclusive

    status: Mapped[str] = mapped_column(String, index=True)  # hold|confirmed|cancelled
    hold_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    # Commercial terms captured at commit time
    rate: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String)
    cancel_hours: Mapped[int] = mapped_column(Integer)
    cancel_fee: Mapped[float] = mapped_column(Float)

    # Opaque pass-through snapshots (tokenized payment metadata only)
    guest: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payment: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class ReservationNight(Base):
    """
    One claimed night of a unit by an active (hold/confirmed) reservation.

    The primary key on (unit_id, night) is what makes two overlapping commits
    for the same unit impossible: the second insert fails inside its own
    transaction. Rows are removed in the same transaction that cancels the
    reservation.
    """

    __tablename__ = "reservation_nights"

    unit_id: Mapped[str] = mapped_column(String, primary_key=True)
    night: Mapped[date] = mapped_column(Date, primary_key=True)
    reservation_id: Mapped[str] = mapped_column(String, index=True)
