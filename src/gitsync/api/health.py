"""Health check endpoint for monitoring and load balancer probes."""

from datetime import UTC, datetime
from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel

router = APIRouter(tags=["health"])


class HealthStatus(BaseModel):
    """Health check response."""

    status: Literal["ok"]
    timestamp: datetime


@router.get("/health", response_model=HealthStatus)
async def health_check() -> HealthStatus:
    """Returns 200 while the service is running."""
    return HealthStatus(status="ok", timestamp=datetime.now(UTC))
