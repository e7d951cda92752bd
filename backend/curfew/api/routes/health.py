from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from curfew.api.deps import get_db
from curfew.db.bootstrap import find_schema_gaps
from curfew.services.reconciliation import poll_hints

router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/ready")
def health_ready(db: Session = Depends(get_db)) -> JSONResponse:
    """Database ping and schema check, plus the poll cadence clients should use."""
    database: dict = {"ok": True, "schema_ok": False, "missing_tables": [], "missing_columns": []}
    try:
        db.execute(text("SELECT 1"))
        missing_tables, missing_columns = find_schema_gaps(db.connection())
    except SQLAlchemyError as exc:
        database.update(ok=False, error=str(exc))
    else:
        database.update(
            schema_ok=not missing_tables and not missing_columns,
            missing_tables=missing_tables,
            missing_columns=missing_columns,
        )

    ready = database["ok"] and database["schema_ok"]
    payload = {"status": "ok" if ready else "degraded", "database": database, "poll": poll_hints().as_dict()}
    return JSONResponse(status_code=200 if ready else 503, content=payload)
