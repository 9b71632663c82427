"""Health check endpoint with database connectivity check."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cinecriticas.api.deps import SettingsDep
from cinecriticas.core.database import check_db_connected, get_db
from cinecriticas.schemas.health import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
def get_health(
    settings: SettingsDep,
    db: Annotated[Session, Depends(get_db)],
) -> HealthResponse:
    """
    Return service health, database connectivity and the session backend in use.
    Used by load balancers and monitoring.
    """
    db_status = "connected" if check_db_connected(db) else "disconnected"

    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        database=db_status,
        session_backend=settings.SESSION_BACKEND,
    )
