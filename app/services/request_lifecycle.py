"""
Lifecycle state machine for maintenance requests.

``apply_transition`` is pure: it takes an immutable request snapshot, the
acting user and a tagged action, and returns the next snapshot together
with the notifications the transition wants sent. Nothing is persisted
or emitted here; the orchestrator in ``maintenance_request_service`` does
that under a per-request lock.

Checks run in a fixed order: request exists, role may act from the
current status, payload is well formed, action preconditions hold.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import (
    ForbiddenTransitionError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from app.models.database_models import (
    AIAnalysis,
    Actor,
    MaintenanceRequest,
    RequestAction,
    RequestStatus,
    UserRole,
)
from app.models.notification_models import NotificationIntent, NotificationType
from app.models.request_actions import (
    CreateRequest,
    Reject,
    RequestAudit,
    SubmitAssessment,
    TransitionAction,
)
from app.services import cost_ledger, history_log, role_policy

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_amount(value: float) -> str:
    text = f"{value:,.2f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


@dataclass(frozen=True)
class TransitionOutcome:
    request: MaintenanceRequest
    action: RequestAction
    previous_status: Optional[RequestStatus]
    notifications: List[NotificationIntent] = field(default_factory=list)


# A handler returns (field updates, history text, notifications)
HandlerResult = Tuple[Dict[str, object], str, List[NotificationIntent]]


def _notify_role(role: UserRole, ntype: NotificationType, title: str, body: str) -> NotificationIntent:
    return NotificationIntent(type=ntype, title=title, body=body, recipient_role=role)


def _notify_creator(request: MaintenanceRequest, ntype: NotificationType, title: str, body: str) -> NotificationIntent:
    return NotificationIntent(type=ntype, title=title, body=body, recipient_id=request.created_by_id)


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required")
    return str(value).strip()


# ═══════════════════════════════════════════════════════════════════════════
# CREATE
# ═══════════════════════════════════════════════════════════════════════════

def validate_create(form: CreateRequest, actor: Actor) -> Tuple[str, str, str]:
    """Role gate and required fields for intake; returns the cleaned location and description."""
    if not role_policy.can_create(actor.role):
        raise ForbiddenTransitionError(f"Role '{actor.role.value}' cannot create maintenance requests")
    return (
        _require_text(form.building, "building"),
        _require_text(form.unit, "unit"),
        _require_text(form.description, "description"),
    )


def build_new_request(
    form: CreateRequest,
    actor: Actor,
    request_id: str,
    request_no: str,
    now: Optional[datetime] = None,
    ai_analysis: Optional[AIAnalysis] = None,
) -> TransitionOutcome:
    """Intake by a Receiver: always born in Pending Assessment with one history entry."""
    building, unit, description = validate_create(form, actor)

    now = now or utc_now()
    request = MaintenanceRequest(
        id=request_id,
        request_no=request_no,
        building=building,
        unit=unit,
        description=description,
        tenant_name=(form.tenant_name or "").strip() or "N/A",
        tenant_phone=(form.tenant_phone or "").strip() or "N/A",
        created_by=actor.name,
        created_by_id=actor.id,
        status=role_policy.INITIAL_STATUS,
        assessment_photos=[p for p in form.photos if p],
        ai_analysis=ai_analysis,
        created_at=now,
        updated_at=now,
    )
    request = history_log.append(request, f"New request created by {actor.name}. Needs assessment.", now)

    intents = [
        _notify_role(
            UserRole.TECH,
            NotificationType.JOB_ASSIGNED,
            "Job Assigned",
            f"Action Required: Technical survey for unit {unit} in {building}",
        )
    ]
    return TransitionOutcome(request, RequestAction.CREATE, None, intents)


# ═══════════════════════════════════════════════════════════════════════════
# TRANSITION HANDLERS
# ═══════════════════════════════════════════════════════════════════════════

def _submit_assessment(request: MaintenanceRequest, action: SubmitAssessment, actor: Actor) -> HandlerResult:
    committed = cost_ledger.CostLedger.commit(request, action.labor_cost, action.materials, action.photos)
    updates: Dict[str, object] = {
        "labor_cost": committed.labor_cost,
        "materials_requested": committed.materials_requested,
        "total_cost": committed.total_cost,
        "assessment_photos": committed.assessment_photos,
    }
    if action.priority is not None:
        updates["priority"] = action.priority

    cur = settings.CURRENCY
    text = (
        f"{actor.name}: Assessment submitted. Labor: {format_amount(committed.labor_cost)} {cur}, "
        f"Materials: {format_amount(committed.materials_cost)} {cur}."
    )
    intents = [
        _notify_role(
            UserRole.MANAGER,
            NotificationType.ASSESSMENT_SUBMITTED,
            "Cost Approval Needed",
            f"{request.request_no}: cost review needed for unit {request.unit} in {request.building}: "
            f"{format_amount(committed.total_cost)} {cur}.",
        )
    ]
    return updates, text, intents


def _authorize(request: MaintenanceRequest, action, actor: Actor) -> HandlerResult:
    text = f"{actor.name}: Authorized. Procurement initiated."
    intents = [
        _notify_role(
            UserRole.STORE,
            NotificationType.REQUEST_AUTHORIZED,
            "Materials Requested",
            f"{request.request_no}: prepare {len(request.materials_requested)} item(s) for unit "
            f"{request.unit} in {request.building}.",
        )
    ]
    return {}, text, intents


def _reject(request: MaintenanceRequest, action: Reject, actor: Actor) -> HandlerResult:
    feedback = (action.feedback or "").strip() or None
    text = f"{actor.name}: Request rejected."
    if feedback:
        text = f"{text} Feedback: {feedback}"
    intents = [
        _notify_creator(
            request,
            NotificationType.REQUEST_REJECTED,
            "Request Rejected",
            f"{request.request_no} was rejected by {actor.name}." + (f" {feedback}" if feedback else ""),
        )
    ]
    return {"manager_feedback": feedback}, text, intents


def _fulfill(request: MaintenanceRequest, action, actor: Actor) -> HandlerResult:
    text = f"{actor.name}: Order fulfillment complete. Materials ready for collection."
    intents = [
        _notify_role(
            UserRole.TECH,
            NotificationType.MATERIALS_READY,
            "Materials Ready",
            f"{request.request_no}: materials are ready for pickup at the store.",
        )
    ]
    return {}, text, intents


def _confirm_collection(request: MaintenanceRequest, action, actor: Actor) -> HandlerResult:
    text = f"{actor.name}: Collected materials. Work is now active on site."
    intents = [_notify_creator(request, NotificationType.STATUS_UPDATE, "Status Update", text)]
    return {}, text, intents


def _request_audit(request: MaintenanceRequest, action: RequestAudit, actor: Actor) -> HandlerResult:
    photos = [p for p in action.completion_photos if p and str(p).strip()]
    if not photos:
        raise PreconditionFailedError(
            "At least one completion photo is required before requesting an audit", request.id
        )
    text = f"{actor.name}: Repair finished. Quality audit requested."
    intents = [
        _notify_role(
            UserRole.QA,
            NotificationType.AUDIT_REQUESTED,
            "Quality Audit Requested",
            f"{request.request_no}: work finished at unit {request.unit} in {request.building}, "
            f"{len(photos)} completion photo(s) attached.",
        )
    ]
    return {"completion_photos": photos}, text, intents


def _approve_and_close(request: MaintenanceRequest, action, actor: Actor) -> HandlerResult:
    text = f"{actor.name}: Standards verified. Order officially closed."
    intents = [
        _notify_creator(
            request,
            NotificationType.REQUEST_COMPLETED,
            "Request Completed",
            f"{request.request_no} for unit {request.unit} in {request.building} has been completed.",
        )
    ]
    return {}, text, intents


def _fail_audit(request: MaintenanceRequest, action, actor: Actor) -> HandlerResult:
    # Materials, labor and photos from the previous cycle stay as they are
    text = f"{actor.name}: Quality audit failed. Returned for rework."
    intents = [
        _notify_creator(request, NotificationType.STATUS_UPDATE, "Status Update", text),
        _notify_role(
            UserRole.TECH,
            NotificationType.REWORK_REQUIRED,
            "Rework Required",
            f"{request.request_no}: quality audit failed, work returned for rework.",
        ),
    ]
    return {}, text, intents


TRANSITION_HANDLERS: Dict[RequestAction, Callable[..., HandlerResult]] = {
    RequestAction.SUBMIT_ASSESSMENT: _submit_assessment,
    RequestAction.AUTHORIZE: _authorize,
    RequestAction.REJECT: _reject,
    RequestAction.FULFILL: _fulfill,
    RequestAction.CONFIRM_COLLECTION: _confirm_collection,
    RequestAction.REQUEST_AUDIT: _request_audit,
    RequestAction.APPROVE_AND_CLOSE: _approve_and_close,
    RequestAction.FAIL_AUDIT: _fail_audit,
}


# ═══════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════

def apply_transition(
    request: Optional[MaintenanceRequest],
    action: TransitionAction,
    actor: Actor,
    now: Optional[datetime] = None,
) -> TransitionOutcome:
    """Validate and apply one action; the input snapshot is never modified."""
    if request is None:
        raise NotFoundError("Maintenance request not found")

    kind = action.kind
    target = role_policy.resolve_transition(actor.role, request.status, kind)
    if target is None:
        reason = "it is closed" if request.is_terminal else f"it is '{request.status.value}'"
        raise ForbiddenTransitionError(
            f"Role '{actor.role.value}' cannot {kind.value} request {request.request_no}: {reason}",
            request.id,
        )

    updates, text, intents = TRANSITION_HANDLERS[kind](request, action, actor)

    now = now or utc_now()
    updated = request.model_copy(update={
        **updates,
        "status": target,
        "updated_at": now,
        "version": request.version + 1,
    })
    updated = history_log.append(updated, text, now)

    if not cost_ledger.is_consistent(updated):
        # Should be unreachable: only the ledger commit writes costs
        raise PreconditionFailedError(f"Cost totals inconsistent for {request.request_no}", request.id)

    logger.info(
        "Request %s: %s -> %s via %s by %s (%s)",
        request.request_no, request.status.value, target.value, kind.value, actor.name, actor.role.value,
    )
    return TransitionOutcome(updated, kind, request.status, intents)
