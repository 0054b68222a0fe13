"""
startup.py — Database Startup Migrations (Idempotent)

Tables, columns, and indexes are defined in the ORM models and created via
Base.metadata.create_all(checkfirst=True). This file only handles
PostgreSQL-specific operations the ORM doesn't express: CHECK constraints
on the race's closed vocabularies.

Called by: main.py lifespan
Depends on: database.py (engine), models (Base), constants
"""

import logging
import os

from sqlalchemy import text as sqltext
from sqlalchemy.exc import SQLAlchemyError

from .constants import RESPONSE_TYPES, RFQ_STATUSES, RFQ_TYPES, URGENCIES
from .database import engine

log = logging.getLogger("rfq_race.startup")


def run_startup_migrations() -> None:
    """Execute all idempotent startup operations. Safe to call on every app boot."""
    if os.environ.get("TESTING"):
        log.info("TESTING mode — skipping startup migrations")
        return

    from .models import Base

    Base.metadata.create_all(bind=engine, checkfirst=True)
    log.info("ORM schema sync complete (create_all checkfirst=True)")

    if engine.dialect.name != "postgresql":
        return

    with engine.connect() as conn:
        _add_check_constraints(conn)
    log.info("Startup migrations complete")


def _exec(conn, stmt: str) -> None:
    """Execute a single DDL statement with rollback on failure."""
    try:
        conn.execute(sqltext(stmt))
        conn.commit()
    except SQLAlchemyError as e:
        log.warning("DDL failed: %s", e)
        conn.rollback()


def _in_list(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


def _add_check_constraints(conn) -> None:
    """Reject out-of-vocabulary statuses/types at the database level."""
    constraints = [
        ("rfqs", "chk_rfqs_status", f"status IN ({_in_list(RFQ_STATUSES)})"),
        ("rfqs", "chk_rfqs_type", f"rfq_type IN ({_in_list(RFQ_TYPES)})"),
        ("rfqs", "chk_rfqs_urgency", f"urgency IN ({_in_list(URGENCIES)})"),
        ("rfqs", "chk_rfqs_awarded", "(status = 'Awarded') = (awarded_to IS NOT NULL)"),
        (
            "rfq_responses",
            "chk_rfq_responses_type",
            f"response_type IN ({_in_list(RESPONSE_TYPES)})",
        ),
        ("rfq_responses", "chk_rfq_responses_price", "quoted_price IS NULL OR quoted_price >= 0"),
    ]
    for table, name, check in constraints:
        _exec(conn, f"""
            DO $$ BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = '{name}') THEN
                    ALTER TABLE {table} ADD CONSTRAINT {name} CHECK ({check});
                END IF;
            END $$;
        """)
