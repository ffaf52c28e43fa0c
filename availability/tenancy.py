from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Annotated

from fastapi import Header, HTTPException
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .models import Base

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./availability.db")

logger = logging.getLogger(__name__)

# Second layer behind the night claims: reject overlapping active reservations
# for the same unit even if a writer bypasses the claim table.
_PG_NO_OVERLAP = """
ALTER TABLE reservations
  ADD CONSTRAINT reservations_no_unit_overlap
  EXCLUDE USING gist (
    unit_id WITH =,
    daterange(start_date, end_date, '[)') WITH &&
  ) WHERE (status IN ('hold', 'confirmed'));
"""


def _normalize_url(url: str) -> str:
    # Hosted Postgres often hands out postgres:// URLs; SQLAlchemy wants an explicit driver.
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def build_engine(url: str) -> Engine:
    url = _normalize_url(url)
    connect_args = {"check_same_thread": False, "timeout": 30} if url.startswith("sqlite") else {}
    eng = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    Base.metadata.create_all(eng)
    _ensure_schema(eng)
    return eng


def _ensure_schema(engine: Engine) -> None:
    """
    Install store-level guards that `create_all()` cannot express.

    Only PostgreSQL gets the exclusion constraint; SQLite relies on the
    reservation_nights primary key alone.
    """
    if engine.url.get_backend_name() != "postgresql":
        return
    try:
        with engine.begin() as conn:
            conn.exec_driver_sql("CREATE EXTENSION IF NOT EXISTS btree_gist;")
            exists = conn.exec_driver_sql(
                "SELECT 1 FROM pg_constraint WHERE conname = 'reservations_no_unit_overlap';"
            ).fetchone()
            if exists is None:
                conn.exec_driver_sql(_PG_NO_OVERLAP)
    except SQLAlchemyError as e:
        # The night-claim primary key still guards overlaps without it.
        logger.warning("Could not install reservations_no_unit_overlap constraint: %s", e)


@lru_cache(maxsize=1)
def _default_engine() -> Engine:
    return build_engine(DATABASE_URL)


def get_engine() -> Engine:
    return _default_engine()


def get_tenant_id(x_tenant_id: Annotated[str | None, Header()] = None) -> str:
    tenant = (x_tenant_id or "").strip()
    if not tenant:
        raise HTTPException(status_code=400, detail="Missing X-Tenant-Id header")
    return tenant
