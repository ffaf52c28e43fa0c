from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, model_validator

from . import dates, domain, events, orchestrator, recurrence, reservations, store, units, versioning
from .db import session
from .errors import AvailabilityError, to_http
from .models import Calendar, Reservation, Unit
from .security import BOOKING_ROLES, MANAGE_ROLES, require_roles
from .tenancy import get_engine, get_tenant_id

app = FastAPI(
    title="Availability Service",
    version="0.1.0",
    description="Versioned availability calendars, calendar-to-unit links, booking rule evaluation and overlap-safe reservations.",
)


@app.exception_handler(AvailabilityError)
async def _availability_error(_request: Request, exc: AvailabilityError):
    http = to_http(exc)
    return JSONResponse(status_code=http.status_code, content={"detail": http.detail})


@app.get("/health")
def health():
    return {"status": "ok"}


#
# Calendars
#

RULE_FIELDS = {
    "cancel_hours",
    "cancel_fee",
    "lead_time_min_days",
    "lead_time_max_days",
    "blackouts",
    "recurring_blackouts",
    "holidays",
    "min_stay_by_weekday",
}


class HolidayIn(BaseModel):
    date: str
    min_nights: int = Field(default=1, ge=1)


class CalendarPayload(BaseModel):
    name: str = Field(min_length=1)
    owner: str = ""
    category: domain.Category = "reservations"
    currency: str = Field(default="USD", pattern=r"^[A-Za-z]{3}$")
    cancel_hours: int = Field(default=48, ge=0)
    cancel_fee: float = Field(default=0, ge=0)
    lead_time_min_days: int = Field(default=0, ge=0)
    lead_time_max_days: int = Field(default=365, ge=0)
    blackouts: list[str] = Field(default_factory=list)
    recurring_blackouts: str | None = Field(default=None, description="RRULE text, e.g. FREQ=WEEKLY;BYDAY=SU")
    holidays: list[HolidayIn] = Field(default_factory=list)
    min_stay_by_weekday: dict[str, int] = Field(default_factory=dict)
    active: bool = True

    @model_validator(mode="after")
    def _check_rules(self):
        if not self.name.strip():
            raise ValueError("name is required")
        if self.lead_time_min_days > self.lead_time_max_days:
            raise ValueError("lead_time_min_days must not exceed lead_time_max_days")
        for key, value in self.min_stay_by_weekday.items():
            if key not in dates.WEEKDAY_KEYS:
                raise ValueError(f"min_stay_by_weekday keys must be one of {', '.join(dates.WEEKDAY_KEYS)}")
            if value < 1:
                raise ValueError("min_stay_by_weekday values must be >= 1")
        # Domain errors are not ValueErrors; re-raise so they surface as 422s.
        try:
            for d in self.blackouts:
                dates.parse_day(d, field="blackouts")
            for h in self.holidays:
                dates.parse_day(h.date, field="holidays.date")
            if self.recurring_blackouts and self.recurring_blackouts.strip():
                recurrence.validate(self.recurring_blackouts)
        except AvailabilityError as e:
            raise ValueError(e.message)
        return self

    def content(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "category": self.category,
            "currency": self.currency.upper(),
            "cancel_hours": self.cancel_hours,
            "cancel_fee": self.cancel_fee,
            "lead_time_min_days": self.lead_time_min_days,
            "lead_time_max_days": self.lead_time_max_days,
            "blackouts": sorted(set(self.blackouts)),
            "recurring_blackouts": (self.recurring_blackouts or "").strip() or None,
            "holidays": [h.model_dump() for h in self.holidays],
            "min_stay_by_weekday": dict(self.min_stay_by_weekday),
            "active": self.active,
        }


class CalendarOut(BaseModel):
    id: str
    name: str
    version: int
    owner: str
    category: str
    currency: str
    active: bool
    created_at: datetime
    updated_at: datetime
    cancel_hours: int
    cancel_fee: float
    lead_time_min_days: int
    lead_time_max_days: int
    blackouts: list[str]
    recurring_blackouts: str | None
    holidays: list[dict]
    min_stay_by_weekday: dict[str, int]


def _calendar_out(cal: Calendar) -> CalendarOut:
    return CalendarOut(
        id=cal.id,
        name=cal.name,
        version=cal.version,
        owner=cal.owner or "",
        category=cal.category or "reservations",
        currency=cal.currency or "USD",
        active=bool(cal.active),
        created_at=cal.created_at,
        updated_at=cal.updated_at,
        cancel_hours=cal.cancel_hours if cal.cancel_hours is not None else 48,
        cancel_fee=cal.cancel_fee or 0,
        lead_time_min_days=cal.lead_time_min_days or 0,
        lead_time_max_days=cal.lead_time_max_days if cal.lead_time_max_days is not None else 365,
        blackouts=list(cal.blackouts or []),
        recurring_blackouts=cal.recurring_blackouts,
        holidays=list(cal.holidays or []),
        min_stay_by_weekday=dict(cal.min_stay_by_weekday or {}),
    )


@app.get("/calendars")
def list_calendars(
    owner: str | None = None,
    category: domain.Category | None = None,
    active: bool | None = None,
    full: bool = False,
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    with session(engine) as s:
        rows = store.list_calendars(s, owner=owner, category=category, active=active)
    exclude = None if full else RULE_FIELDS
    return [_calendar_out(c).model_dump(mode="json", exclude=exclude) for c in rows]


@app.post("/calendars", response_model=CalendarOut)
async def save_calendar(
    payload: CalendarPayload,
    mode: Literal["version", "overwrite"] = "version",
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*MANAGE_ROLES)),
):
    name = payload.name.strip()
    with session(engine) as s:
        if mode == "overwrite":
            cal = versioning.overwrite_latest(s, name, payload.content())
        else:
            cal = versioning.create_version(s, name, payload.content())

    await events.publish(
        events.CALENDAR_OVERWRITTEN if mode == "overwrite" else events.CALENDAR_VERSION_CREATED,
        {"calendar_id": cal.id, "name": cal.name, "version": cal.version},
    )
    return _calendar_out(cal)


@app.get("/calendars/by-name/{name}", response_model=CalendarOut)
def get_calendar_by_name(
    name: str,
    version: int | None = None,
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    with session(engine) as s:
        cal = store.get_calendar(s, name=name, version=version)
    return _calendar_out(cal)


@app.get("/calendars/{calendar_id}", response_model=CalendarOut)
def get_calendar(
    calendar_id: str,
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    with session(engine) as s:
        cal = store.get_calendar(s, calendar_id)
    return _calendar_out(cal)


@app.post("/calendars/{calendar_id}/deactivate", response_model=CalendarOut)
def deactivate_calendar(
    calendar_id: str,
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*MANAGE_ROLES)),
):
    with session(engine) as s:
        cal = versioning.deactivate(s, calendar_id)
    return _calendar_out(cal)


class AvailabilityGridOut(BaseModel):
    calendar_id: str
    year: int
    available: list[str]


@app.get("/calendars/{calendar_id}/availability", response_model=AvailabilityGridOut)
def calendar_availability(
    calendar_id: str,
    year: int | None = None,
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    year = year or dates.today_utc().year
    with session(engine) as s:
        cal = store.get_calendar(s, calendar_id)
    days = domain.available_days(domain.rules_from_calendar(cal), date(year, 1, 1), date(year, 12, 31))
    return AvailabilityGridOut(calendar_id=cal.id, year=year, available=[dates.to_ymd(d) for d in days])


#
# Units
#


class LinkIn(BaseModel):
    calendar_id: str = Field(min_length=1)
    effective_date: str


class LinkOut(BaseModel):
    calendar_id: str
    name: str
    version: int
    effective_date: str


class UnitCreate(BaseModel):
    unit_key: str = Field(min_length=1)
    name: str | None = None
    unit_number: str | None = None
    unit_type: str = "guest_room"
    rate: float = Field(default=0, ge=0)
    currency: str = Field(default="USD", pattern=r"^[A-Za-z]{3}$")
    active: bool = True
    calendars: list[LinkIn] = Field(default_factory=list)


class UnitOut(BaseModel):
    id: str
    unit_key: str
    name: str
    unit_number: str | None
    unit_type: str
    rate: float
    currency: str
    active: bool
    calendars: list[LinkOut]


def _unit_out(unit: Unit) -> UnitOut:
    return UnitOut(
        id=unit.id,
        unit_key=unit.unit_key,
        name=unit.name,
        unit_number=unit.unit_number,
        unit_type=unit.unit_type,
        rate=unit.rate or 0,
        currency=unit.currency or "USD",
        active=bool(unit.active),
        calendars=[LinkOut(**l.as_dict()) for l in orchestrator.unit_links(unit)],
    )


@app.post("/units", response_model=UnitOut)
def create_unit(
    payload: UnitCreate,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*MANAGE_ROLES)),
):
    links = [(l.calendar_id, dates.parse_day(l.effective_date, field="effective_date")) for l in payload.calendars]
    attrs = payload.model_dump(exclude={"calendars"})
    attrs["unit_key"] = payload.unit_key.strip()
    attrs["currency"] = payload.currency.upper()
    with session(engine) as s:
        unit = units.create_unit(s, tenant_id, attrs, links)
    return _unit_out(unit)


@app.get("/units", response_model=list[UnitOut])
def list_units(
    active: bool | None = None,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    with session(engine) as s:
        rows = store.list_units(s, tenant_id, active=active)
    return [_unit_out(u) for u in rows]


@app.get("/units/{unit_key}", response_model=UnitOut)
def get_unit(
    unit_key: str,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    with session(engine) as s:
        unit = store.get_unit_by_tenant_and_key(s, tenant_id, unit_key)
    return _unit_out(unit)


@app.post("/units/{unit_key}/calendars", response_model=UnitOut)
def link_calendar(
    unit_key: str,
    payload: LinkIn,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*MANAGE_ROLES)),
):
    effective = dates.parse_day(payload.effective_date, field="effective_date")
    with session(engine) as s:
        unit = units.add_link(s, tenant_id, unit_key, payload.calendar_id, effective)
    return _unit_out(unit)


@app.delete("/units/{unit_key}/calendars", response_model=UnitOut)
def unlink_calendar(
    unit_key: str,
    calendar_id: str,
    effective_date: str,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*MANAGE_ROLES)),
):
    effective = dates.parse_day(effective_date, field="effective_date")
    with session(engine) as s:
        unit = units.remove_link(s, tenant_id, unit_key, calendar_id, effective)
    return _unit_out(unit)


#
# Booking
#


class CalendarSummary(BaseModel):
    calendar_id: str
    name: str
    version: int
    effective_date: str


class AvailabilityOut(BaseModel):
    ok: bool
    reason_codes: list[str]
    unit_key: str
    check_in: str
    check_out: str
    nights: int
    calendar: CalendarSummary
    conflicts: list[dict]


class QuoteOut(BaseModel):
    unit_key: str
    check_in: str
    check_out: str
    currency: str
    nightly: float
    nights: int
    total: float
    cancel_hours: int
    cancel_fee: float
    calendar: CalendarSummary


def _summary(link: domain.CalendarLink) -> CalendarSummary:
    return CalendarSummary(**link.as_dict())


@app.get("/booking/availability", response_model=AvailabilityOut)
def booking_availability(
    unit_key: str,
    check_in: str,
    check_out: str | None = None,
    mode: domain.Category = "reservations",
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    start = dates.parse_day(check_in, field="check_in")
    end = dates.parse_day(check_out, field="check_out") if check_out else None
    with session(engine) as s:
        result = orchestrator.check_availability(s, tenant_id, unit_key, start, end, mode=mode)
    return AvailabilityOut(
        ok=result.ok,
        reason_codes=result.reason_codes,
        unit_key=unit_key,
        check_in=dates.to_ymd(result.check_in),
        check_out=dates.to_ymd(result.check_out),
        nights=result.nights,
        calendar=_summary(result.resolved.link),
        conflicts=result.conflicts,
    )


@app.get("/booking/quote", response_model=QuoteOut)
def booking_quote(
    unit_key: str,
    check_in: str,
    check_out: str,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    start = dates.parse_day(check_in, field="check_in")
    end = dates.parse_day(check_out, field="check_out")
    with session(engine) as s:
        resolved, q = orchestrator.quote_stay(s, tenant_id, unit_key, start, end)
    return QuoteOut(
        unit_key=unit_key,
        check_in=dates.to_ymd(start),
        check_out=dates.to_ymd(end),
        currency=q.currency,
        nightly=q.nightly,
        nights=q.nights,
        total=q.total,
        cancel_hours=q.cancel_hours,
        cancel_fee=q.cancel_fee,
        calendar=_summary(resolved.link),
    )


class GuestIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str | None = None
    email: str | None = None
    phone: str | None = None


class PaymentIn(BaseModel):
    """Tokenized payment metadata only; raw card data is rejected."""

    model_config = ConfigDict(extra="forbid")

    provider: str | None = None
    token: str | None = None
    intent_id: str | None = None
    brand: str | None = None
    last4: str | None = Field(default=None, pattern=r"^\d{4}$")
    amount: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, pattern=r"^[A-Za-z]{3}$")
    status: str | None = None


class ReserveRequest(BaseModel):
    unit_key: str = Field(min_length=1)
    check_in: str
    check_out: str
    mode: domain.Category = "reservations"
    status: Literal["hold", "confirmed"] = "confirmed"
    hold_minutes: int | None = None
    guest: GuestIn | None = None
    payment: PaymentIn | None = None


class ReservationOut(BaseModel):
    id: str
    status: str
    created_at: datetime
    updated_at: datetime
    hold_expires_at: datetime | None
    unit_id: str
    unit_name: str
    unit_number: str | None
    calendar_id: str
    calendar_name: str
    calendar_version: int
    start_date: str
    end_date: str  # exclusive
    rate: float
    currency: str
    cancel_hours: int
    cancel_fee: float
    guest: dict | None
    payment: dict | None


def _reservation_out(r: Reservation) -> ReservationOut:
    return ReservationOut(
        id=r.id,
        status=r.status,
        created_at=r.created_at,
        updated_at=r.updated_at,
        hold_expires_at=r.hold_expires_at,
        unit_id=r.unit_id,
        unit_name=r.unit_name or "",
        unit_number=r.unit_number,
        calendar_id=r.calendar_id,
        calendar_name=r.calendar_name or "",
        calendar_version=r.calendar_version,
        start_date=dates.to_ymd(r.start_date),
        end_date=dates.to_ymd(r.end_date),
        rate=r.rate,
        currency=r.currency,
        cancel_hours=r.cancel_hours,
        cancel_fee=r.cancel_fee,
        guest=r.guest,
        payment=r.payment,
    )


def _event_payload(tenant_id: str, r: Reservation) -> dict[str, Any]:
    return {
        "tenant_id": tenant_id,
        "reservation_id": r.id,
        "unit_id": r.unit_id,
        "calendar_id": r.calendar_id,
        "calendar_version": r.calendar_version,
        "start_date": dates.to_ymd(r.start_date),
        "end_date": dates.to_ymd(r.end_date),
        "status": r.status,
    }


@app.post("/booking/reserve", response_model=ReservationOut)
async def booking_reserve(
    payload: ReserveRequest,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    start = dates.parse_day(payload.check_in, field="check_in")
    end = dates.parse_day(payload.check_out, field="check_out")
    with session(engine) as s:
        r = orchestrator.reserve(
            s,
            tenant_id,
            payload.unit_key,
            start,
            end,
            mode=payload.mode,
            status=payload.status,
            hold_minutes=payload.hold_minutes,
            guest=payload.guest.model_dump(exclude_none=True) if payload.guest else None,
            payment=payload.payment.model_dump(exclude_none=True) if payload.payment else None,
        )

    await events.publish(events.RESERVATION_CREATED, _event_payload(tenant_id, r))
    return _reservation_out(r)


#
# Reservations
#


class ReservationListOut(BaseModel):
    overlap: bool
    items: list[dict]


@app.get("/reservations", response_model=ReservationListOut)
def list_reservations(
    start: str,
    end: str,
    unit_key: str | None = None,
    calendar_id: str | None = None,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    """Active reservations intersecting [start, end); `end` is exclusive."""
    if not unit_key and not calendar_id:
        raise HTTPException(status_code=400, detail="unit_key or calendar_id is required")
    lo = dates.parse_day(start, field="start")
    hi = dates.parse_day(end, field="end")
    with session(engine) as s:
        unit_id = store.get_unit_by_tenant_and_key(s, tenant_id, unit_key).id if unit_key else None
        rows = store.find_in_window(s, tenant_id, lo, hi, unit_id=unit_id, calendar_id=calendar_id)
    items = reservations.conflict_summary(rows)
    for item, r in zip(items, rows):
        item["unit_name"] = r.unit_name
    return ReservationListOut(overlap=bool(rows), items=items)


@app.get("/reservations/{reservation_id}", response_model=ReservationOut)
def get_reservation(
    reservation_id: str,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    with session(engine) as s:
        r = reservations.get_reservation(s, reservation_id, tenant_id)
    return _reservation_out(r)


@app.post("/reservations/{reservation_id}/confirm", response_model=ReservationOut)
async def confirm_reservation(
    reservation_id: str,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    with session(engine) as s:
        r = reservations.confirm(s, reservation_id, tenant_id)

    await events.publish(events.RESERVATION_CONFIRMED, _event_payload(tenant_id, r))
    return _reservation_out(r)


@app.post("/reservations/{reservation_id}/cancel", response_model=ReservationOut)
async def cancel_reservation(
    reservation_id: str,
    tenant_id: str = Depends(get_tenant_id),
    engine=Depends(get_engine),
    _principal=Depends(require_roles(*BOOKING_ROLES)),
):
    with session(engine) as s:
        r = reservations.cancel(s, reservation_id, tenant_id)

    await events.publish(events.RESERVATION_CANCELLED, _event_payload(tenant_id, r))
    return _reservation_out(r)
