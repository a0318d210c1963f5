"""Health, readiness and status endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_connection, get_service
from broker.connection import ConnectionManager

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness probe: returns 200 if the process is alive."""
    return {"status": "ok"}


@router.get("/ready")
async def ready(connection: ConnectionManager = Depends(get_connection)):
    """Readiness probe: the broker session must be connected."""
    if not connection.connected:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "mqtt": connection.status.value},
        )
    return {"status": "ready", "mqtt": connection.status.value}


@router.get("/api/status")
async def status(service=Depends(get_service)):
    """Latest aggregate plus which collaborators are configured."""
    return {
        "latest": service.aggregator.snapshot(),
        "ready_to_trigger": service.aggregator.ready,
        "mqtt": service.connection.status.value,
        "subscriptions": service.connection.topics,
        "gmail_enabled": service.mailbox.is_enabled(),
        "openai_configured": bool(service.settings.openai_api_key),
        "pipeline_running": service.orchestrator.running,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
