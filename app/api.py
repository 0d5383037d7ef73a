"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.schemas import AnalyticsResponse, CycleReport, IngestionStatus, StoredReading
from services.analytics import DEFAULT_WINDOW_HOURS, WindowValidationError
from services.container import ServiceContainer

router = APIRouter()


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


@router.get(
    "/weather/analytics",
    response_model=AnalyticsResponse,
    summary="Min/max temperature and average humidity per city over a trailing window.",
)
async def get_analytics(
    hours: int = Query(DEFAULT_WINDOW_HOURS, description="Window length in hours (1-168)."),
    services: ServiceContainer = Depends(get_services),
) -> AnalyticsResponse:
    try:
        analytics = services.analytics.compute_analytics(hours)
    except WindowValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return AnalyticsResponse(period_hours=hours, analytics=analytics)


@router.get(
    "/weather/recent",
    response_model=List[StoredReading],
    summary="Most recent readings across all cities, newest first.",
)
async def get_recent_readings(
    limit: int = Query(50, ge=1, le=500),
    services: ServiceContainer = Depends(get_services),
) -> List[StoredReading]:
    return services.store.query_recent(limit)


@router.get(
    "/weather/cities/{city}/readings",
    response_model=List[StoredReading],
    summary="Most recent readings for one tracked city, newest first.",
)
async def get_city_readings(
    city: str,
    limit: int = Query(100, ge=1, le=500),
    services: ServiceContainer = Depends(get_services),
) -> List[StoredReading]:
    if city not in services.scheduler.cities:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"City {city!r} is not tracked.",
        )
    return services.store.query_by_city(city, limit)


@router.post(
    "/ingestion/run",
    response_model=CycleReport,
    summary="Run an ingestion cycle immediately.",
)
def run_ingestion(services: ServiceContainer = Depends(get_services)) -> CycleReport:
    report = services.scheduler.run_cycle()
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An ingestion cycle is already running or ingestion is stopped.",
        )
    return report


@router.get(
    "/ingestion/status",
    response_model=IngestionStatus,
    summary="Scheduler state and the last cycle report.",
)
async def get_ingestion_status(
    services: ServiceContainer = Depends(get_services),
) -> IngestionStatus:
    return services.scheduler.status()


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(services: ServiceContainer = Depends(get_services)) -> dict[str, object]:
    return {
        "status": "ok",
        "ingestion": services.scheduler.state.value,
        "readings": services.store.count(),
        "subscribers": services.channel.subscriber_count,
    }


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
