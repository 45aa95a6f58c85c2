from __future__ import annotations

import time
from typing import Any, Dict, Iterable

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from warranty_admin.database import engine

REQUIRED_TABLES = ("WarrantyDefinition", "ProductAssociation")


def check_database_health(required_tables: Iterable[str] = REQUIRED_TABLES) -> Dict[str, Any]:
    """
    Ping the database and confirm the warranty tables exist.

    A reachable database without the tables reports ``DOWN`` as well, since
    every definition operation would fail against it.
    """
    started = time.perf_counter()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            existing = set(inspect(connection).get_table_names())
    except SQLAlchemyError as exc:
        return {"status": "DOWN", "dialect": engine.dialect.name, "detail": str(exc)}

    report: Dict[str, Any] = {
        "status": "UP",
        "dialect": engine.dialect.name,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
    }
    missing = sorted(set(required_tables) - existing)
    if missing:
        report["status"] = "DOWN"
        report["missing_tables"] = missing
    return report
