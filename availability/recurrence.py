from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from dateutil.rrule import rrulestr

from .errors import InvalidRecurrenceError

Freq = str  # DAILY | WEEKLY | MONTHLY | YEARLY

_FREQS = {"DAILY", "WEEKLY", "MONTHLY", "YEARLY"}

# Anchor for rules without DTSTART or `start`. A Sunday, so a bare weekly
# rule means Sundays and interval rules keep one phase for every query.
RECURRENCE_EPOCH = date(1970, 1, 4)

# Sun..Sat keys (as used by min-stay rules) -> RFC 5545 BYDAY codes
_BYDAY = {"Sun": "SU", "Mon": "MO", "Tue": "TU", "Wed": "WE", "Thu": "TH", "Fri": "FR", "Sat": "SA"}


@dataclass(frozen=True)
class RecurrenceSpec:
    """
    Structured recurring-blackout rule.

    Calendars usually store the RRULE text form (e.g. `FREQ=WEEKLY;BYDAY=SU`);
    this is the typed equivalent. `start` anchors the rule; without it the
    rule is anchored at RECURRENCE_EPOCH.
    """

    freq: Freq = "WEEKLY"
    weekdays: tuple[str, ...] = ()
    interval: int = 1
    start: date | None = None

    def to_rrule(self) -> str:
        freq = (self.freq or "WEEKLY").strip().upper()
        if freq not in _FREQS:
            raise InvalidRecurrenceError(f"Unsupported recurrence frequency: {self.freq}")
        if self.interval < 1:
            raise InvalidRecurrenceError("Recurrence interval must be >= 1")
        parts = [f"FREQ={freq}", f"INTERVAL={int(self.interval)}"]
        if self.weekdays:
            codes = []
            for wd in self.weekdays:
                code = _BYDAY.get(wd) or (wd.strip().upper() if wd.strip().upper() in _BYDAY.values() else None)
                if code is None:
                    raise InvalidRecurrenceError(f"Unknown weekday: {wd}")
                codes.append(code)
            parts.append("BYDAY=" + ",".join(codes))
        return ";".join(parts)


def _build(spec: RecurrenceSpec | str):
    if isinstance(spec, RecurrenceSpec):
        text, start = spec.to_rrule(), spec.start
    else:
        text, start = spec, None
    text = (text or "").strip()
    if not text:
        raise InvalidRecurrenceError("Recurrence rule is empty")
    try:
        return rrulestr(text, dtstart=datetime.combine(start or RECURRENCE_EPOCH, time.min))
    except (ValueError, TypeError) as e:
        raise InvalidRecurrenceError(f"Invalid recurrence rule {text!r}: {e}", rule=text)


def validate(text: str) -> str:
    """Return the normalized rule text, raising InvalidRecurrenceError if it does not parse."""
    _build(text)
    return text.strip()


def expand(spec: RecurrenceSpec | str | None, window_start: date, window_end: date) -> set[date]:
    """
    Concrete days in [window_start, window_end] generated by the rule.

    Generation never runs past the window, so open-ended rules are safe. The
    anchor never depends on the window, so a day is in or out of the rule
    whichever window it is queried through.
    """
    if spec is None or window_end < window_start:
        return set()
    if isinstance(spec, str) and not spec.strip():
        return set()

    rule = _build(spec)
    lo = datetime.combine(window_start, time.min)
    hi = datetime.combine(window_end, time.max)
    try:
        hits = rule.between(lo, hi, inc=True)
    except TypeError:
        # DTSTART carried a timezone (e.g. `...T000000Z`); compare in UTC.
        hits = rule.between(lo.replace(tzinfo=timezone.utc), hi.replace(tzinfo=timezone.utc), inc=True)
    return {h.date() for h in hits}
