"""Health, readiness and metrics endpoints for the billing service."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..db import get_session_dependency
from ..models import InvoiceSequence

LOGGER = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health/live")
def liveness() -> dict[str, str]:
    return {"status": "live"}


@router.get("/health/ready")
def readiness(session: Session = Depends(get_session_dependency)) -> dict[str, object]:
    """Report ready once the invoice schema answers queries."""

    try:
        branches = session.execute(
            select(func.count()).select_from(InvoiceSequence)
        ).scalar_one()
    except SQLAlchemyError as exc:
        LOGGER.warning("readiness_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Invoice store is not reachable",
        ) from exc

    return {
        "status": "ready",
        "currency": get_settings().currency,
        "numbered_branches": branches,
    }


@router.get("/metrics")
def metrics() -> Response:
    """Expose invoice transition and rejection counters for Prometheus."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
