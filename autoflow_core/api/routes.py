"""
Automation API Routes

REST endpoints for managing automations, ingesting platform events and
inspecting runs. Every request is scoped to the tenant in ``X-Tenant-ID``.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Path, Query

from ..engine import AdmitResult, AutomationEngine
from ..errors import AutomationNotFoundError, RunNotFoundError
from ..graph import Automation
from ..runs import Run
from .base import success_response
from .dependencies import get_engine, get_tenant_id
from .schemas import (
    AutomationCreateRequest,
    AutomationUpdateRequest,
    EventRequest,
    ManualTriggerRequest,
    ValidateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Automations"])


# =============================================================================
# Helpers
# =============================================================================


async def _owned_automation(engine: AutomationEngine, automation_id: str, tenant_id: str) -> Automation:
    automation = await engine.automations.get(automation_id)
    if automation.tenant_id != tenant_id:
        raise AutomationNotFoundError(automation_id)
    return automation


async def _owned_run(engine: AutomationEngine, run_id: str, tenant_id: str) -> Run:
    run = await engine.get_run(run_id)
    if run.tenant_id != tenant_id:
        raise RunNotFoundError(run_id)
    return run


def admit_to_dict(result: AdmitResult) -> Dict[str, Any]:
    return {
        "status": result.status.value,
        "automationId": result.automation_id,
        "runId": result.run_id,
        "runStatus": result.run.status.value if result.run else None,
        "reason": result.reason,
    }


# =============================================================================
# Automations
# =============================================================================


@router.get("/automations", summary="List Automations")
async def list_automations(
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    automations = await engine.automations.list(tenant_id)
    return success_response(
        [a.to_dict() for a in automations],
        meta={"total": len(automations)},
    )


@router.post("/automations", status_code=201, summary="Create Automation")
async def create_automation(
    request: AutomationCreateRequest,
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    """Create an automation. The graph is validated before it is saved."""
    automation = await engine.automations.create(
        tenant_id,
        request.name,
        trigger=request.trigger,
        description=request.description,
        trigger_params=request.trigger_params.to_params() if request.trigger_params else None,
        channel_id=request.channel_id,
        nodes=request.to_nodes(),
        edges=request.to_edges(),
        is_active=request.is_active,
    )
    return success_response(automation.to_dict())


@router.post("/automations/validate", summary="Validate Graph")
async def validate_automation(
    request: ValidateRequest,
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    """Validate a graph without saving it."""
    result = engine.automations.validate(request.to_automation(tenant_id))
    return success_response(
        {
            "valid": result.valid,
            "issues": [issue.to_dict() for issue in result.issues],
        }
    )


@router.get("/automations/{automation_id}", summary="Get Automation")
async def get_automation(
    automation_id: str = Path(..., description="Automation ID"),
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    automation = await _owned_automation(engine, automation_id, tenant_id)
    return success_response(automation.to_dict())


@router.patch("/automations/{automation_id}", summary="Update Automation")
async def update_automation(
    automation_id: str = Path(..., description="Automation ID"),
    request: AutomationUpdateRequest = Body(...),
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    await _owned_automation(engine, automation_id, tenant_id)

    changes: Dict[str, Any] = {
        "name": request.name,
        "description": request.description,
        "trigger": request.trigger,
        "trigger_params": request.trigger_params.to_params() if request.trigger_params else None,
        "nodes": request.to_nodes(),
        "edges": request.to_edges(),
    }
    if request.channel_given:
        changes["channel_id"] = request.channel_id

    automation = await engine.automations.update(automation_id, **changes)
    return success_response(automation.to_dict())


@router.delete("/automations/{automation_id}", summary="Delete Automation")
async def delete_automation(
    automation_id: str = Path(..., description="Automation ID"),
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    await _owned_automation(engine, automation_id, tenant_id)
    await engine.automations.delete(automation_id)
    logger.info(f"Automation {automation_id} deleted by tenant {tenant_id}")
    return success_response({"id": automation_id, "deleted": True})


@router.patch("/automations/{automation_id}/toggle", summary="Toggle Automation")
async def toggle_automation(
    automation_id: str = Path(..., description="Automation ID"),
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    """Switch an automation on or off."""
    await _owned_automation(engine, automation_id, tenant_id)
    automation = await engine.automations.toggle_active(automation_id)
    return success_response(automation.to_dict())


@router.get("/automations/{automation_id}/run-count", summary="Run Count")
async def automation_run_count(
    automation_id: str = Path(..., description="Automation ID"),
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    automation = await _owned_automation(engine, automation_id, tenant_id)
    return success_response({"id": automation_id, "runCount": automation.run_count})


@router.post("/automations/{automation_id}/trigger", summary="Trigger Automation")
async def trigger_automation(
    automation_id: str = Path(..., description="Automation ID"),
    request: Optional[ManualTriggerRequest] = Body(default=None),
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    """Start a MANUAL automation."""
    request = request or ManualTriggerRequest()
    await _owned_automation(engine, automation_id, tenant_id)
    result = await engine.trigger_manually(
        automation_id,
        contact_id=request.contact_id,
        conversation_id=request.conversation_id,
        contact_name=request.contact_name,
        variables=request.variables,
        invocation_id=request.invocation_id,
    )
    return success_response(admit_to_dict(result))


@router.get("/automations/{automation_id}/runs", summary="List Runs")
async def list_automation_runs(
    automation_id: str = Path(..., description="Automation ID"),
    limit: int = Query(50, ge=1, le=500),
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    await _owned_automation(engine, automation_id, tenant_id)
    runs = await engine.list_runs(automation_id, limit=limit)
    return success_response([r.to_dict() for r in runs], meta={"total": len(runs)})


# =============================================================================
# Runs
# =============================================================================


@router.get("/runs/{run_id}", tags=["Runs"], summary="Get Run")
async def get_run(
    run_id: str = Path(..., description="Run ID"),
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    run = await _owned_run(engine, run_id, tenant_id)
    return success_response(run.to_dict())


@router.post("/runs/{run_id}/cancel", tags=["Runs"], summary="Cancel Run")
async def cancel_run(
    run_id: str = Path(..., description="Run ID"),
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    """Cancel a pending run. Finished runs are left as they are."""
    await _owned_run(engine, run_id, tenant_id)
    cancelled = await engine.cancel_run(run_id)
    run = await engine.get_run(run_id)
    return success_response({"cancelled": cancelled, "run": run.to_dict()})


# =============================================================================
# Events
# =============================================================================


@router.post("/events", tags=["Events"], summary="Ingest Event")
async def ingest_event(
    request: EventRequest,
    tenant_id: str = Depends(get_tenant_id),
    engine: AutomationEngine = Depends(get_engine),
):
    """Offer a platform event to every matching automation."""
    results = await engine.handle_event(request.to_event(tenant_id))
    return success_response(
        [admit_to_dict(r) for r in results],
        meta={"matched": len(results)},
    )
