"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request, status

from ...config import settings

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/config", status_code=status.HTTP_200_OK)
def health_config(request: Request) -> dict:
    """Report the tunables the optimizer is running with."""
    registry = getattr(request.app.state, "schedulers", None)
    return {
        "status": "ok",
        "average_speed_kmh": settings.average_speed_kmh,
        "service_seconds": settings.service_seconds,
        "tie_epsilon_m": settings.tie_epsilon_m,
        "two_opt_max_iterations": settings.two_opt_max_iterations,
        "two_opt_time_budget_s": settings.two_opt_time_budget_s,
        "debounce_seconds": settings.debounce_seconds,
        "active_hawkers": len(registry) if registry is not None else 0,
    }
