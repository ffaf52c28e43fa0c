"""
Error taxonomy for the booking engine.

Every error carries a stable machine-readable reason code so callers can
render a precise message without parsing strings. Routes translate them with
`to_http()`; policy rejections from the evaluator are plain decisions and
only become `RuleRejection` when a reserve command has to stop.
"""
from __future__ import annotations

from typing import Any

from fastapi import HTTPException

# Reason codes
LEAD_TOO_SOON = "LEAD_TOO_SOON"
LEAD_TOO_FAR = "LEAD_TOO_FAR"
BLACKOUT = "BLACKOUT"
HOLIDAY_MIN_STAY = "HOLIDAY_MIN_STAY"
MIN_STAY = "MIN_STAY"
OVERLAP = "OVERLAP"
UNIT_NOT_FOUND = "UNIT_NOT_FOUND"
NO_CALENDAR_FOR_DATE = "NO_CALENDAR_FOR_DATE"
CALENDAR_NOT_FOUND = "CALENDAR_NOT_FOUND"
INVALID_DATE = "INVALID_DATE"
INVALID_RECURRENCE = "INVALID_RECURRENCE"
VERSION_CONFLICT = "VERSION_CONFLICT"
INVALID_TRANSITION = "INVALID_TRANSITION"
RESERVATION_NOT_FOUND = "RESERVATION_NOT_FOUND"
UNIT_EXISTS = "UNIT_EXISTS"
DUPLICATE_LINK = "DUPLICATE_LINK"
LINK_NOT_FOUND = "LINK_NOT_FOUND"


class AvailabilityError(Exception):
    reason_code: str = "ERROR"
    status_code: int = 400
    error: str = "bad_request"

    def __init__(self, message: str, **meta: Any):
        super().__init__(message)
        self.message = message
        self.meta = meta

    @property
    def reason_codes(self) -> list[str]:
        return [self.reason_code]

    def detail(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ok": False,
            "error": self.error,
            "reason_codes": self.reason_codes,
            "message": self.message,
        }
        if self.meta:
            out["meta"] = self.meta
        return out


# Input errors: reported immediately, never retried.


class InvalidDateError(AvailabilityError):
    reason_code = INVALID_DATE

    def __init__(self, field: str, value: Any):
        super().__init__(f"{field} must be a YYYY-MM-DD date", field=field, value=str(value))


class InvalidDateRange(AvailabilityError):
    reason_code = INVALID_DATE


class InvalidRecurrenceError(AvailabilityError):
    reason_code = INVALID_RECURRENCE


class UnitNotFound(AvailabilityError):
    reason_code = UNIT_NOT_FOUND
    status_code = 404
    error = "not_found"


class CalendarNotFound(AvailabilityError):
    reason_code = CALENDAR_NOT_FOUND
    status_code = 404
    error = "calendar_missing"


class NoCalendarForDate(AvailabilityError):
    reason_code = NO_CALENDAR_FOR_DATE
    status_code = 409
    error = "no_calendar"


class ReservationNotFound(AvailabilityError):
    reason_code = RESERVATION_NOT_FOUND
    status_code = 404
    error = "not_found"


# Policy and conflict errors


class RuleRejection(AvailabilityError):
    status_code = 409
    error = "rejected"

    def __init__(self, reason_codes: list[str], **meta: Any):
        super().__init__("Request violates calendar rules: " + ", ".join(reason_codes), **meta)
        self._codes = list(reason_codes)

    @property
    def reason_codes(self) -> list[str]:
        return list(self._codes)


class OverlapConflict(AvailabilityError):
    reason_code = OVERLAP
    status_code = 409
    error = "conflict"

    def __init__(self, unit_id: str, conflicts: list[dict] | None = None):
        super().__init__("Unit already reserved on one or more requested dates", unit_id=unit_id)
        self.conflicts = conflicts or []

    def detail(self) -> dict[str, Any]:
        out = super().detail()
        out["conflicts"] = self.conflicts
        return out


class VersionConflictError(AvailabilityError):
    """Concurrent creators kept winning the (name, version) race; safe to retry."""

    reason_code = VERSION_CONFLICT
    status_code = 503
    error = "retryable"


class UnitExists(AvailabilityError):
    reason_code = UNIT_EXISTS
    status_code = 409
    error = "conflict"


class DuplicateLink(AvailabilityError):
    """A unit already links this calendar lineage on the same effective date."""

    reason_code = DUPLICATE_LINK
    status_code = 409
    error = "conflict"


class LinkNotFound(AvailabilityError):
    reason_code = LINK_NOT_FOUND
    status_code = 404
    error = "not_found"


class InvalidTransition(AvailabilityError):
    reason_code = INVALID_TRANSITION
    status_code = 409
    error = "conflict"


def to_http(exc: AvailabilityError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail())
