"""Webhook administration routes.

FastAPI router exposing the read APIs of the registry and circuit breakers
plus reload, test delivery and synthetic event firing.
"""

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import logging

from ..webhooks.dispatcher import get_service
from ..webhooks.errors import BuildError, ConfigError
from ..webhooks.models import DeliveryOutcome, DeliveryResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


class FireRequest(BaseModel):
    """Synthetic event to push through the pipeline."""

    kind: str = Field(..., min_length=1)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = False


class ReloadResponse(BaseModel):
    """Summary of a configuration reload."""

    status: str = "success"
    targets: int
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)


# ============================================================================
# Health & Stats Endpoints
# ============================================================================

@router.get("/health")
async def webhook_health():
    """Circuit state and queue depth for every configured target."""
    service = get_service()
    targets = service.health()
    degraded = any(
        entry["circuit"] and entry["circuit"]["state"] != "closed"
        for entry in targets
    )
    return {
        "status": "degraded" if degraded else "ok",
        "running": service.is_running,
        "targets": targets,
    }


@router.get("/stats")
async def webhook_stats():
    """Delivery counters per target and per event kind."""
    return get_service().get_stats()


@router.get("/deliveries/recent", response_model=List[DeliveryResult])
async def get_recent_deliveries(limit: int = Query(50, ge=1, le=1000)):
    """Get recent delivery results.

    Returns the most recent final outcomes for monitoring.
    """
    return get_service().get_recent_deliveries(limit=limit)


@router.get("/event-kinds")
async def list_event_kinds():
    """List all registered event kinds and the targets they route to."""
    return {"event_kinds": get_service().event_kinds()}


# ============================================================================
# Administration Endpoints
# ============================================================================

# Plain def: reload joins retired workers and test deliveries POST
# synchronously, so these run in the threadpool instead of the event loop.

@router.post("/reload", response_model=ReloadResponse)
def reload_config():
    """Reload the configuration file.

    On an invalid document the current configuration stays active.
    """
    service = get_service()
    try:
        summary = service.reload()
    except ConfigError as e:
        logger.warning(f"Reload rejected: {e}")
        raise HTTPException(status_code=400, detail={"message": str(e), "issues": e.issues})
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ReloadResponse(**summary)


@router.post("/targets/{target_id}/test", response_model=DeliveryResult)
def test_target(target_id: str, kind: Optional[str] = None):
    """Send a test event to a specific target.

    Makes one synchronous attempt, bypassing the queue and circuit breaker,
    to verify the target is configured correctly.
    """
    service = get_service()
    try:
        result = service.test_target(target_id, kind=kind)
    except KeyError:
        raise HTTPException(status_code=404, detail="Webhook target not found")
    except (ValueError, BuildError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    if result.outcome != DeliveryOutcome.DELIVERED:
        raise HTTPException(status_code=502, detail=f"Test webhook failed: {result.error_message}")
    return result


@router.post("/fire")
async def fire_event(request: FireRequest):
    """Manually fire an event through routing, filtering and rendering.

    With ``dry_run`` the payloads are rendered but nothing is enqueued.
    """
    return get_service().fire(request.kind, request.attributes, dry_run=request.dry_run)
