"""Service-level HTTP routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_registry
from api.schemas import HealthResponse
from bridge.registry import SessionRegistry

router = APIRouter()


@router.get("/", response_model=HealthResponse)
async def health(registry: SessionRegistry = Depends(get_registry)) -> HealthResponse:
    return HealthResponse(active_calls=registry.active_sessions)
