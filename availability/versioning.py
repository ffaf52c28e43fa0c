from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import store
from .errors import VersionConflictError
from .models import Calendar

VERSION_CREATE_MAX_ATTEMPTS = int(os.getenv("VERSION_CREATE_MAX_ATTEMPTS", "3"))

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    n = (name or "").strip()
    if not n:
        raise ValueError("name is required")
    return n


def create_version(s: Session, name: str, payload: dict[str, Any]) -> Calendar:
    """
    Insert `name` at (current max version + 1) and commit.

    A concurrent creator may take the same number first; the (name, version)
    unique constraint rejects our insert, so re-read the max and try again.
    """
    name = _clean_name(name)
    attempts = max(1, VERSION_CREATE_MAX_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        next_version = store.max_version(s, name) + 1
        try:
            cal = store.insert_calendar_version(s, name, next_version, payload)
            s.commit()
        except IntegrityError:
            s.rollback()
            logger.warning(
                "Calendar version race on %r v%s (attempt %s/%s)", name, next_version, attempt, attempts
            )
            continue
        logger.info("Created calendar %r v%s (%s)", name, cal.version, cal.id)
        return cal
    raise VersionConflictError(
        f"Could not allocate a version for calendar {name!r}; please retry",
        name=name,
        attempts=attempts,
    )


def overwrite_latest(s: Session, name: str, payload: dict[str, Any]) -> Calendar:
    """
    Replace the latest version's content in place (id, name, version unchanged).

    Reservations hold value snapshots of their terms, so this never changes
    an existing reservation. With no version yet, this is the first write.
    """
    name = _clean_name(name)
    cal = store.replace_latest_version(s, name, payload)
    if cal is None:
        return create_version(s, name, payload)
    s.commit()
    logger.info("Overwrote calendar %r v%s (%s)", name, cal.version, cal.id)
    return cal


def deactivate(s: Session, calendar_id: str) -> Calendar:
    cal = store.get_calendar(s, calendar_id)
    cal.active = False
    cal.updated_at = datetime.now(tz=timezone.utc)
    s.add(cal)
    s.commit()
    return cal
