"""
Maintenance Request Router - HTTP surface of the request lifecycle

Every transition endpoint delegates to the lifecycle service; role checks
happen there against the role policy, and domain errors are turned into
HTTP responses by the handlers registered in ``app.main``.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field

from app.auth.dependencies import get_current_user
from app.models.database_models import Actor, RequestPriority, RequestStatus
from app.models.request_actions import CreateRequest, MaterialInput, parse_action
from app.services.maintenance_request_service import MaintenanceRequestService, maintenance_request_service
from app.services.request_message_service import RequestMessageService, request_message_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/requests", tags=["maintenance-requests"])


def get_request_service() -> MaintenanceRequestService:
    return maintenance_request_service


def get_message_service() -> RequestMessageService:
    return request_message_service


# ═══════════════════════════════════════════════════════════════════════════
# REQUEST/RESPONSE MODELS
# ═══════════════════════════════════════════════════════════════════════════

class MaintenanceRequestCreate(BaseModel):
    # Presence is checked by the intake rules so missing and blank fields fail alike
    building: str = ""
    unit: str = ""
    description: str = ""
    tenant_name: Optional[str] = None
    tenant_phone: Optional[str] = None
    photos: List[str] = []


class StageMaterialRequest(BaseModel):
    name: str
    cost: float


class AssessmentSubmit(BaseModel):
    labor_cost: float
    # Omit to commit the materials staged through /assessment/materials
    materials: Optional[List[MaterialInput]] = None
    photos: List[str] = []
    priority: Optional[RequestPriority] = None


class RejectRequest(BaseModel):
    feedback: Optional[str] = None


class AuditRequest(BaseModel):
    completion_photos: List[str] = []


class MessageCreate(BaseModel):
    text: str = Field(..., description="Message body")


def _serialize_materials(materials: List[MaterialInput]) -> Dict[str, Any]:
    return {
        "materials": [m.model_dump() for m in materials],
        "materials_cost": sum(m.cost for m in materials),
        "count": len(materials),
    }


# ═══════════════════════════════════════════════════════════════════════════
# INTAKE AND READS
# ═══════════════════════════════════════════════════════════════════════════

@router.post("/", status_code=201)
async def create_request(
    body: MaintenanceRequestCreate,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    """Register a new maintenance request (Receiver)"""
    form = CreateRequest(**body.model_dump())
    request = await service.create_request(current_user, form)
    return request.to_public_dict()


@router.get("/")
async def list_requests(
    status: Optional[List[RequestStatus]] = Query(None, description="Filter by status (repeatable)"),
    priority: Optional[RequestPriority] = Query(None, description="Filter by priority"),
    building: Optional[str] = Query(None, description="Filter by building"),
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of requests to return"),
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    requests = await service.list_requests({
        "status": status,
        "priority": priority,
        "building": building,
        "limit": limit,
    })
    return {"data": [r.to_public_dict() for r in requests], "count": len(requests)}


@router.get("/queue")
async def get_work_queue(
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    """Requests awaiting an action from the caller's role"""
    requests = await service.get_work_queue(current_user)
    return {"data": [r.to_public_dict() for r in requests], "count": len(requests), "role": current_user.role.value}


@router.get("/stats")
async def get_request_stats(
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    return await service.get_stats()


@router.get("/{request_id}")
async def get_request(
    request_id: str,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    request = await service.get_request(request_id)
    return request.to_public_dict()


@router.get("/{request_id}/actions")
async def get_permitted_actions(
    request_id: str,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    actions = await service.get_permitted_actions(request_id, current_user)
    return {"request_id": request_id, "role": current_user.role.value, "actions": [a.value for a in actions]}


@router.post("/{request_id}/actions")
async def perform_action(
    request_id: str,
    body: Dict[str, Any] = Body(..., examples=[{"action": "reject", "feedback": "Over budget"}]),
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    """Apply any lifecycle action from a tagged body. Materials are taken from the body, not the staging list."""
    action = parse_action(body)
    request = await service.perform_action(request_id, action, current_user)
    return request.to_public_dict()


# ═══════════════════════════════════════════════════════════════════════════
# ASSESSMENT (Tech)
# ═══════════════════════════════════════════════════════════════════════════

@router.get("/{request_id}/assessment/materials")
async def get_staged_materials(
    request_id: str,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    return _serialize_materials(await service.staged_materials(request_id))


@router.post("/{request_id}/assessment/materials", status_code=201)
async def stage_material(
    request_id: str,
    body: StageMaterialRequest,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    staged = await service.stage_material(request_id, current_user, body.name, body.cost)
    return _serialize_materials(staged)


@router.delete("/{request_id}/assessment/materials/{index}")
async def unstage_material(
    request_id: str,
    index: int,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    staged = await service.unstage_material(request_id, current_user, index)
    return _serialize_materials(staged)


@router.post("/{request_id}/assessment")
async def submit_assessment(
    request_id: str,
    body: AssessmentSubmit,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    request = await service.submit_assessment(
        request_id,
        current_user,
        labor_cost=body.labor_cost,
        materials=body.materials,
        photos=body.photos,
        priority=body.priority,
    )
    return request.to_public_dict()


# ═══════════════════════════════════════════════════════════════════════════
# APPROVAL, FULFILMENT, EXECUTION, AUDIT
# ═══════════════════════════════════════════════════════════════════════════

@router.post("/{request_id}/authorize")
async def authorize_request(
    request_id: str,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    return (await service.authorize(request_id, current_user)).to_public_dict()


@router.post("/{request_id}/reject")
async def reject_request(
    request_id: str,
    body: Optional[RejectRequest] = None,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    feedback = body.feedback if body else None
    return (await service.reject(request_id, current_user, feedback)).to_public_dict()


@router.post("/{request_id}/fulfill")
async def fulfill_request(
    request_id: str,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    return (await service.fulfill(request_id, current_user)).to_public_dict()


@router.post("/{request_id}/collect")
async def confirm_collection(
    request_id: str,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    return (await service.confirm_collection(request_id, current_user)).to_public_dict()


@router.post("/{request_id}/audit")
async def request_audit(
    request_id: str,
    body: AuditRequest,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    return (await service.request_audit(request_id, current_user, body.completion_photos)).to_public_dict()


@router.post("/{request_id}/approve")
async def approve_and_close(
    request_id: str,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    return (await service.approve_and_close(request_id, current_user)).to_public_dict()


@router.post("/{request_id}/fail-audit")
async def fail_audit(
    request_id: str,
    current_user: Actor = Depends(get_current_user),
    service: MaintenanceRequestService = Depends(get_request_service),
):
    return (await service.fail_audit(request_id, current_user)).to_public_dict()


# ═══════════════════════════════════════════════════════════════════════════
# MESSAGES
# ═══════════════════════════════════════════════════════════════════════════

@router.get("/{request_id}/messages")
async def list_messages(
    request_id: str,
    current_user: Actor = Depends(get_current_user),
    messages: RequestMessageService = Depends(get_message_service),
):
    thread = await messages.list_messages(request_id)
    return {"data": [m.model_dump(mode="json") for m in thread], "count": len(thread)}


@router.post("/{request_id}/messages", status_code=201)
async def post_message(
    request_id: str,
    body: MessageCreate,
    current_user: Actor = Depends(get_current_user),
    messages: RequestMessageService = Depends(get_message_service),
):
    message = await messages.post_message(request_id, current_user, body.text)
    return message.model_dump(mode="json")
