"""
Health check API endpoints.

Routes: GET /health, GET /health/queue, GET /health/tools

Dependencies: testgen.core.queue, testgen.core.tools
System role: Health check HTTP API
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from testgen.api.deps import get_queue, get_tool_client
from testgen.core.queue import QueueBackend
from testgen.core.tools import ToolClient


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    message: str


router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check."""
    return HealthResponse(status="healthy", message="Server Healthy")


@router.get("/queue", response_model=HealthResponse)
async def health_check_queue(queue: QueueBackend = Depends(get_queue)) -> HealthResponse:
    """Queue backend health check."""
    if await queue.is_healthy():
        return HealthResponse(status="healthy", message=f"Queue '{queue.name}' reachable")
    return HealthResponse(status="unhealthy", message=f"Queue '{queue.name}' unreachable")


@router.get("/tools", response_model=HealthResponse)
async def health_check_tools(tool_client: ToolClient = Depends(get_tool_client)) -> HealthResponse:
    """Tool server health check."""
    if await tool_client.health_check():
        return HealthResponse(status="healthy", message="Tool server reachable")
    return HealthResponse(status="unhealthy", message="Tool server unreachable")
