from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Literal

from . import dates, errors, recurrence

Category = Literal["reservations", "appointments"]


@dataclass(frozen=True)
class CalendarLink:
    """
    Pointer from a unit to one calendar version, effective from `effective_date`.

    `name` and `version` are a denormalized snapshot for display.
    """

    calendar_id: str
    name: str
    version: int
    effective_date: date

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CalendarLink":
        return cls(
            calendar_id=str(raw["calendar_id"]),
            name=str(raw.get("name") or ""),
            version=int(raw.get("version") or 1),
            effective_date=dates.parse_day(raw["effective_date"], field="effective_date"),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "calendar_id": self.calendar_id,
            "name": self.name,
            "version": self.version,
            "effective_date": dates.to_ymd(self.effective_date),
        }


@dataclass(frozen=True)
class LeadTime:
    min_days: int = 0
    max_days: int = 365


@dataclass(frozen=True)
class HolidayRule:
    day: date
    min_nights: int = 1


@dataclass(frozen=True)
class CalendarRules:
    """The closed set of rule kinds a calendar can carry."""

    lead_time: LeadTime = field(default_factory=LeadTime)
    blackouts: frozenset[date] = frozenset()
    recurring_blackouts: str | None = None
    holidays: tuple[HolidayRule, ...] = ()
    min_stay_by_weekday: dict[str, int] = field(default_factory=dict)
    category: Category = "reservations"


@dataclass(frozen=True)
class BookingRequest:
    start: date
    end: date | None = None  # inclusive check-out as given by the caller
    mode: Category = "reservations"

    @property
    def end_inclusive(self) -> date:
        if self.mode == "appointments" or self.end is None:
            return self.start
        return self.end

    @property
    def end_exclusive(self) -> date:
        return dates.to_exclusive_end(self.end_inclusive)


@dataclass(frozen=True)
class Decision:
    ok: bool
    reason_codes: list[str]
    nights: int


@dataclass(frozen=True)
class Quote:
    currency: str
    nightly: float
    nights: int
    total: float
    cancel_hours: int
    cancel_fee: float


def rules_from_calendar(cal: Any) -> CalendarRules:
    """Build evaluator rules from a stored calendar (ORM row or anything with the same attributes)."""
    holidays = []
    for h in cal.holidays or []:
        raw_min = h.get("min_nights", h.get("minNights", 1))
        holidays.append(
            HolidayRule(
                day=dates.parse_day(h.get("date"), field="holidays.date"),
                min_nights=max(1, int(raw_min or 1)),
            )
        )
    return CalendarRules(
        lead_time=LeadTime(
            min_days=int(cal.lead_time_min_days if cal.lead_time_min_days is not None else 0),
            max_days=int(cal.lead_time_max_days if cal.lead_time_max_days is not None else 365),
        ),
        blackouts=frozenset(dates.parse_day(d, field="blackouts") for d in (cal.blackouts or [])),
        recurring_blackouts=cal.recurring_blackouts or None,
        holidays=tuple(holidays),
        min_stay_by_weekday=dict(cal.min_stay_by_weekday or {}),
        category=cal.category or "reservations",
    )


#
# Calendar link resolution
#


def resolve(links: Iterable[CalendarLink], target_day: date) -> CalendarLink | None:
    """Latest link effective on or before `target_day`; ties go to the highest (version, calendar_id)."""
    eligible = [l for l in links if l.effective_date <= target_day]
    if not eligible:
        return None
    return max(eligible, key=lambda l: (l.effective_date, l.version, l.calendar_id))


def earliest_effective_date(links: Iterable[CalendarLink]) -> date | None:
    eff = sorted(l.effective_date for l in links)
    return eff[0] if eff else None


#
# Rule evaluation
#


def nights(start: date, end_inclusive: date) -> int:
    return max(1, dates.day_diff(start, end_inclusive))


def _blacked_out(rules: CalendarRules, window_start: date, window_end: date) -> set[date]:
    out = {d for d in rules.blackouts if window_start <= d <= window_end}
    if rules.recurring_blackouts:
        out |= recurrence.expand(rules.recurring_blackouts, window_start, window_end)
    return out


def evaluate(rules: CalendarRules, req: BookingRequest, today: date) -> Decision:
    """
    Check every rule and report every violation.

    Order of the returned codes follows the order of the checks: lead time,
    blackout, holiday minimum stay, weekday minimum stay.
    """
    codes: list[str] = []
    end_incl = req.end_inclusive
    requested = dates.expand_range(req.start, end_incl) or [req.start]

    lead = dates.day_diff(today, req.start)
    if lead < rules.lead_time.min_days:
        codes.append(errors.LEAD_TOO_SOON)
    if lead > rules.lead_time.max_days:
        codes.append(errors.LEAD_TOO_FAR)

    if _blacked_out(rules, requested[0], requested[-1]):
        codes.append(errors.BLACKOUT)

    n = max(1, len(requested) - 1)
    wanted = set(requested)
    for h in rules.holidays:
        if h.day in wanted and n < h.min_nights:
            codes.append(errors.HOLIDAY_MIN_STAY)
            break

    if req.mode == "reservations":
        min_stay = int(rules.min_stay_by_weekday.get(dates.weekday_key(req.start)) or 1)
        if n < min_stay:
            codes.append(errors.MIN_STAY)

    return Decision(ok=not codes, reason_codes=codes, nights=n)


def available_days(rules: CalendarRules, start: date, end: date) -> list[date]:
    """Days in [start, end] that are not blacked out, explicitly or by recurrence."""
    blocked = _blacked_out(rules, start, end)
    return [d for d in dates.expand_range(start, end) if d not in blocked]


def quote(rate: float, currency: str, n: int, cancel_hours: int, cancel_fee: float) -> Quote:
    nightly = float(rate or 0)
    return Quote(
        currency=(currency or "USD"),
        nightly=nightly,
        nights=n,
        total=nightly * n,
        cancel_hours=int(cancel_hours),
        cancel_fee=float(cancel_fee),
    )
