import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from app.core.exceptions import ForbiddenTransitionError, ValidationError
from app.database.request_repository import MaintenanceRequestRepository
from app.models.database_models import (
    Actor,
    MaintenanceRequest,
    RequestAction,
    RequestPriority,
    RequestStatus,
    TERMINAL_STATUSES,
)
from app.models.request_actions import (
    ApproveAndClose,
    Authorize,
    ConfirmCollection,
    CreateRequest,
    FailAudit,
    Fulfill,
    MaterialInput,
    Reject,
    RequestAudit,
    SubmitAssessment,
    TransitionAction,
)
from app.services import role_policy
from app.services.ai_classification_service import AIClassificationService, ai_classification_service, fallback_analysis
from app.services.cost_ledger import CostLedger
from app.services.notification_service import NotificationService, notification_service
from app.services.request_lifecycle import TransitionOutcome, apply_transition, build_new_request, validate_create
from app.services.request_number_service import RequestNumberService
from app.services.role_directory import RoleDirectory

logger = logging.getLogger(__name__)


class MaintenanceRequestService:
    """Runs lifecycle actions: lock, load, apply, persist, then notify."""

    def __init__(
        self,
        repository: Optional[MaintenanceRequestRepository] = None,
        notifications: Optional[NotificationService] = None,
        classifier: Optional[AIClassificationService] = None,
        numbers: Optional[RequestNumberService] = None,
        directory: Optional[RoleDirectory] = None,
        ledger: Optional[CostLedger] = None,
    ) -> None:
        self.repository = repository or MaintenanceRequestRepository()
        self.notifications = notifications or notification_service
        self.classifier = classifier or ai_classification_service
        self.numbers = numbers or RequestNumberService(self.repository.db)
        self.directory = directory or RoleDirectory()
        self.ledger = ledger or CostLedger()
        # One writer per request id; different ids never contend.
        # Entries live only while some caller holds or waits on them.
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _request_lock(self, request_id: str):
        lock = self._locks.get(request_id)
        if lock is None:
            lock = self._locks[request_id] = asyncio.Lock()
        self._lock_users[request_id] = self._lock_users.get(request_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[request_id] -= 1
            if not self._lock_users[request_id]:
                del self._lock_users[request_id]
                del self._locks[request_id]

    # ═══════════════════════════════════════════════════════════════════════
    # WRITES
    # ═══════════════════════════════════════════════════════════════════════

    async def create_request(self, actor: Actor, form: CreateRequest) -> MaintenanceRequest:
        """Receiver intake. AI classification is advisory and never blocks creation."""
        validate_create(form, actor)

        try:
            analysis = await self.classifier.classify(form.description)
        except Exception as e:
            logger.error(f"AI classification raised unexpectedly, using fallback: {str(e)}")
            analysis = fallback_analysis()

        request_no = await self.numbers.generate_request_no()
        outcome = build_new_request(
            form,
            actor,
            request_id=str(uuid.uuid4()),
            request_no=request_no,
            ai_analysis=analysis,
        )
        await self.repository.append_new(outcome.request)
        logger.info(f"Request {request_no} created by {actor.name} for {outcome.request.building}/{outcome.request.unit}")

        await self._emit(outcome)
        return outcome.request

    async def perform_action(self, request_id: str, action: TransitionAction, actor: Actor) -> MaintenanceRequest:
        """Apply one transition atomically with respect to other writers of the same id."""
        async with self._request_lock(request_id):
            current = await self.repository.get_by_id(request_id)
            outcome = apply_transition(current, action, actor)
            await self.repository.replace_by_id(outcome.request, expected_version=current.version)

        if outcome.action == RequestAction.SUBMIT_ASSESSMENT or outcome.request.is_terminal:
            self.ledger.discard(request_id)

        await self._emit(outcome)
        return outcome.request

    async def submit_assessment(
        self,
        request_id: str,
        actor: Actor,
        labor_cost: float,
        materials: Optional[List[MaterialInput]] = None,
        photos: Optional[List[str]] = None,
        priority: Optional[RequestPriority] = None,
    ) -> MaintenanceRequest:
        """When `materials` is None the staged ledger entries are committed."""
        if materials is None:
            materials = self.ledger.staged_materials(request_id)
        action = SubmitAssessment(
            labor_cost=labor_cost,
            materials=materials,
            photos=photos or [],
            priority=priority,
        )
        return await self.perform_action(request_id, action, actor)

    async def authorize(self, request_id: str, actor: Actor) -> MaintenanceRequest:
        return await self.perform_action(request_id, Authorize(), actor)

    async def reject(self, request_id: str, actor: Actor, feedback: Optional[str] = None) -> MaintenanceRequest:
        return await self.perform_action(request_id, Reject(feedback=feedback), actor)

    async def fulfill(self, request_id: str, actor: Actor) -> MaintenanceRequest:
        return await self.perform_action(request_id, Fulfill(), actor)

    async def confirm_collection(self, request_id: str, actor: Actor) -> MaintenanceRequest:
        return await self.perform_action(request_id, ConfirmCollection(), actor)

    async def request_audit(self, request_id: str, actor: Actor, completion_photos: List[str]) -> MaintenanceRequest:
        return await self.perform_action(request_id, RequestAudit(completion_photos=completion_photos), actor)

    async def approve_and_close(self, request_id: str, actor: Actor) -> MaintenanceRequest:
        return await self.perform_action(request_id, ApproveAndClose(), actor)

    async def fail_audit(self, request_id: str, actor: Actor) -> MaintenanceRequest:
        return await self.perform_action(request_id, FailAudit(), actor)

    # ── assessment staging ───────────────────────────────────────────────────

    async def _assessable(self, request_id: str, actor: Actor) -> MaintenanceRequest:
        request = await self.repository.get_by_id(request_id)
        if RequestAction.SUBMIT_ASSESSMENT not in role_policy.permitted_actions(actor.role, request.status):
            raise ForbiddenTransitionError(
                f"Role '{actor.role.value}' cannot stage materials for request {request.request_no} "
                f"in '{request.status.value}'",
                request_id,
            )
        return request

    async def stage_material(self, request_id: str, actor: Actor, name: str, cost) -> List[MaterialInput]:
        request = await self._assessable(request_id, actor)
        return self.ledger.add_material(request, name, cost)

    async def unstage_material(self, request_id: str, actor: Actor, index: int) -> List[MaterialInput]:
        request = await self._assessable(request_id, actor)
        return self.ledger.remove_material(request, index)

    async def staged_materials(self, request_id: str) -> List[MaterialInput]:
        request = await self.repository.get_by_id(request_id)
        return self.ledger.staged_materials(request)

    # ═══════════════════════════════════════════════════════════════════════
    # READS (no lock, may be slightly stale)
    # ═══════════════════════════════════════════════════════════════════════

    async def get_request(self, request_id: str) -> MaintenanceRequest:
        return await self.repository.get_by_id(request_id)

    async def list_requests(self, filters: Optional[Dict[str, Any]] = None) -> List[MaintenanceRequest]:
        filters = filters or {}
        status = filters.get("status")
        if isinstance(status, (str, RequestStatus)):
            status = [status]
        try:
            statuses = [RequestStatus(s).value for s in status] if status else None
            priority = RequestPriority(filters["priority"]).value if filters.get("priority") else None
        except ValueError as e:
            raise ValidationError(str(e))
        return await self.repository.list(
            status=statuses,
            priority=priority,
            building=filters.get("building"),
            limit=filters.get("limit"),
        )

    async def get_work_queue(self, actor: Actor) -> List[MaintenanceRequest]:
        """Requests the caller's role can act on; roles with no actions see every open request."""
        statuses = role_policy.actionable_statuses(actor.role)
        if not statuses:
            statuses = frozenset(RequestStatus) - TERMINAL_STATUSES
        return await self.repository.list(status=sorted(s.value for s in statuses))

    async def get_permitted_actions(self, request_id: str, actor: Actor) -> List[RequestAction]:
        request = await self.repository.get_by_id(request_id)
        return sorted(role_policy.permitted_actions(actor.role, request.status), key=lambda a: a.value)

    async def get_stats(self) -> Dict[str, Any]:
        requests = await self.repository.list()
        by_status = {s.value: 0 for s in RequestStatus}
        by_priority = {p.value: 0 for p in RequestPriority}
        for r in requests:
            by_status[r.status.value] += 1
            by_priority[r.priority.value] += 1
        return {
            "total": len(requests),
            "in_progress": sum(1 for r in requests if not r.is_terminal),
            "completed": by_status[RequestStatus.COMPLETED.value],
            "rejected": by_status[RequestStatus.REJECTED.value],
            "by_status": by_status,
            "by_priority": by_priority,
        }

    # ═══════════════════════════════════════════════════════════════════════
    # NOTIFICATIONS (after persist, best-effort)
    # ═══════════════════════════════════════════════════════════════════════

    async def _emit(self, outcome: TransitionOutcome) -> None:
        request = outcome.request
        for intent in outcome.notifications:
            if intent.recipient_id:
                recipients = [intent.recipient_id]
            else:
                recipients = self.directory.recipients_for(intent.recipient_role)
            for user_id in recipients:
                try:
                    sent = await self.notifications.create_notification(
                        user_id=user_id,
                        title=intent.title,
                        message=intent.body,
                        notification_type=intent.type,
                        related_id=request.id,
                    )
                    if not sent:
                        logger.warning(f"Notification '{intent.title}' for {user_id} on {request.request_no} was not stored")
                except Exception as e:
                    logger.error(f"Failed to emit notification for {request.request_no} to {user_id}: {str(e)}")


maintenance_request_service = MaintenanceRequestService()
