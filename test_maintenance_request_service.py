import asyncio
import json
from types import SimpleNamespace

import pytest

from app.core.exceptions import (
    ConcurrentModificationError,
    ForbiddenTransitionError,
    IndexOutOfRangeError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from app.database.request_repository import MaintenanceRequestRepository
from app.models.database_models import RequestAction, RequestPriority, RequestStatus
from app.models.notification_models import NotificationType
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
)
from app.services import role_policy
from app.services.ai_classification_service import AIClassificationService
from app.services.maintenance_request_service import MaintenanceRequestService
from app.services.request_message_service import RequestMessageService
from app.services.request_number_service import RequestNumberService
from app.services.role_directory import RoleDirectory

from conftest import MANAGER, QA, RECEIVER, ROLE_RECIPIENTS, STORE, TECH, new_request

S = RequestStatus

FORM = CreateRequest(building="Tower A", unit="101", description="AC leak", tenant_name="Ali")


class FakeGroqClient:
    """Mimics groq's chat.completions.create response shape"""

    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


class ExplodingNotifications:
    def __init__(self):
        self.attempts = 0

    async def create_notification(self, **kwargs):
        self.attempts += 1
        raise RuntimeError("notification store down")


async def _feed(notifications, user_id):
    return await notifications.get_user_notifications(user_id)


async def _drive_to_execution(service):
    request = await service.create_request(RECEIVER, FORM)
    await service.submit_assessment(request.id, TECH, 150, [MaterialInput(name="Filter", cost=80)])
    await service.authorize(request.id, MANAGER)
    await service.fulfill(request.id, STORE)
    return await service.confirm_collection(request.id, TECH)


# ── create ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_request_persists_and_notifies_tech(service, notifications):
    request = await service.create_request(RECEIVER, FORM)

    assert request.request_no == "REQ-0001"
    assert request.status == S.PENDING_ASSESSMENT
    assert request.tenant_name == "Ali"
    assert request.tenant_phone == "N/A"
    assert request.ai_analysis.fallback is True

    stored = await service.get_request(request.id)
    assert stored.model_dump() == request.model_dump()

    [note] = await _feed(notifications, "2")
    assert note.type == NotificationType.JOB_ASSIGNED
    assert note.request_id == request.id
    assert note.body == "Action Required: Technical survey for unit 101 in Tower A"


@pytest.mark.asyncio
async def test_request_numbers_are_sequential(service):
    first = await service.create_request(RECEIVER, FORM)
    second = await service.create_request(RECEIVER, FORM)

    assert (first.request_no, second.request_no) == ("REQ-0001", "REQ-0002")
    assert first.id != second.id
    assert await service.numbers.get_current_counter() == 2


@pytest.mark.asyncio
async def test_create_rejected_for_other_roles(service):
    with pytest.raises(ForbiddenTransitionError):
        await service.create_request(TECH, FORM)
    with pytest.raises(ValidationError):
        await service.create_request(RECEIVER, CreateRequest(building="Tower A", unit="", description="x"))

    assert await service.list_requests() == []
    # No request number is consumed by a refused intake
    assert await service.numbers.get_current_counter() == 0


@pytest.mark.asyncio
async def test_create_uses_ai_classification(db, notifications):
    client = FakeGroqClient(content=json.dumps({
        "category": "plumbing",
        "priority": "high",
        "potentialCause": "Worn seal",
        "requiredTools": ["Wrench"],
        "troubleshootingSteps": ["Shut valve", "Replace seal"],
    }))
    service = MaintenanceRequestService(
        repository=MaintenanceRequestRepository(db),
        notifications=notifications,
        classifier=AIClassificationService(client=client, enabled=True, timeout=5),
        numbers=RequestNumberService(db),
        directory=RoleDirectory(ROLE_RECIPIENTS),
    )

    request = await service.create_request(RECEIVER, FORM)

    assert request.ai_analysis.category == "Plumbing"
    assert request.ai_analysis.priority == RequestPriority.HIGH
    assert request.ai_analysis.fallback is False
    # Advisory only
    assert request.priority == RequestPriority.MEDIUM
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_create_survives_ai_failure(db, notifications):
    client = FakeGroqClient(error=RuntimeError("rate limited"))
    service = MaintenanceRequestService(
        repository=MaintenanceRequestRepository(db),
        notifications=notifications,
        classifier=AIClassificationService(client=client, enabled=True, timeout=5),
        numbers=RequestNumberService(db),
        directory=RoleDirectory(ROLE_RECIPIENTS),
    )

    request = await service.create_request(RECEIVER, FORM)

    assert request.status == S.PENDING_ASSESSMENT
    assert request.ai_analysis.fallback is True
    assert request.ai_analysis.troubleshooting_steps == ["Contact supervisor for detailed assessment."]


# ── transitions ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_happy_path_persists_and_notifies(service, notifications):
    request = await _drive_to_execution(service)
    request = await service.request_audit(request.id, TECH, ["after.jpg"])
    request = await service.approve_and_close(request.id, QA)

    stored = await service.get_request(request.id)
    assert stored.status == S.COMPLETED
    assert len(stored.history) == 7
    assert stored.total_cost == 230
    assert stored.version == 6

    manager_feed = await _feed(notifications, "3")
    assert [n.title for n in manager_feed] == ["Cost Approval Needed"]
    store_feed = await _feed(notifications, "4")
    assert [n.title for n in store_feed] == ["Materials Requested"]
    qa_feed = await _feed(notifications, "5")
    assert [n.title for n in qa_feed] == ["Quality Audit Requested"]
    tech_titles = {n.title for n in await _feed(notifications, "2")}
    assert tech_titles == {"Job Assigned", "Materials Ready"}
    receiver_types = {n.type for n in await _feed(notifications, "1")}
    assert receiver_types == {NotificationType.STATUS_UPDATE, NotificationType.REQUEST_COMPLETED}


@pytest.mark.asyncio
async def test_unknown_request_is_not_found(service):
    with pytest.raises(NotFoundError):
        await service.authorize("missing", MANAGER)
    with pytest.raises(NotFoundError):
        await service.get_request("missing")


@pytest.mark.asyncio
async def test_forbidden_action_leaves_stored_request_unchanged(service, notifications):
    request = await service.create_request(RECEIVER, FORM)

    with pytest.raises(ForbiddenTransitionError):
        await service.authorize(request.id, MANAGER)
    with pytest.raises(ForbiddenTransitionError):
        await service.submit_assessment(request.id, STORE, 10, [])

    assert (await service.get_request(request.id)).model_dump() == request.model_dump()
    assert await _feed(notifications, "3") == []


@pytest.mark.asyncio
async def test_precondition_failure_leaves_request_unchanged(service):
    request = await _drive_to_execution(service)

    with pytest.raises(PreconditionFailedError):
        await service.request_audit(request.id, TECH, [])

    assert (await service.get_request(request.id)).model_dump() == request.model_dump()


@pytest.mark.asyncio
async def test_concurrent_decisions_only_one_wins(service):
    request = await service.create_request(RECEIVER, FORM)
    await service.submit_assessment(request.id, TECH, 150, [MaterialInput(name="Filter", cost=80)])

    results = await asyncio.gather(
        service.authorize(request.id, MANAGER),
        service.reject(request.id, MANAGER, "no budget"),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ForbiddenTransitionError)

    stored = await service.get_request(request.id)
    assert stored.status == successes[0].status
    assert len(stored.history) == 3


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_transition(db):
    failing = ExplodingNotifications()
    service = MaintenanceRequestService(
        repository=MaintenanceRequestRepository(db),
        notifications=failing,
        classifier=AIClassificationService(enabled=False),
        numbers=RequestNumberService(db),
        directory=RoleDirectory(ROLE_RECIPIENTS),
    )

    request = await service.create_request(RECEIVER, FORM)
    updated = await service.submit_assessment(request.id, TECH, 100, [])

    assert updated.status == S.AWAITING_APPROVAL
    assert (await service.get_request(request.id)).status == S.AWAITING_APPROVAL
    assert failing.attempts == 2


@pytest.mark.asyncio
async def test_reject_notifies_creator_with_feedback(service, notifications):
    request = await service.create_request(RECEIVER, FORM)
    await service.submit_assessment(request.id, TECH, 100, [])

    rejected = await service.reject(request.id, MANAGER, "Out of budget")

    assert rejected.status == S.REJECTED
    assert rejected.manager_feedback == "Out of budget"
    [note] = [n for n in await _feed(notifications, "1") if n.type == NotificationType.REQUEST_REJECTED]
    assert "Out of budget" in note.body


@pytest.mark.asyncio
async def test_fail_audit_notifies_tech_for_rework(service, notifications):
    request = await _drive_to_execution(service)
    await service.request_audit(request.id, TECH, ["after.jpg"])

    failed = await service.fail_audit(request.id, QA)

    assert failed.status == S.IN_EXECUTION
    assert failed.completion_photos == ["after.jpg"]
    assert "Rework Required" in {n.title for n in await _feed(notifications, "2")}


@pytest.mark.asyncio
async def test_repository_rejects_stale_version(service):
    request = await service.create_request(RECEIVER, FORM)
    repository = service.repository
    moved = request.model_copy(update={"version": 1})
    await repository.replace_by_id(moved, expected_version=0)

    with pytest.raises(ConcurrentModificationError):
        await repository.replace_by_id(request.model_copy(update={"version": 1}), expected_version=0)


@pytest.mark.asyncio
async def test_repository_replace_unknown_is_not_found(db):
    repository = MaintenanceRequestRepository(db)

    with pytest.raises(NotFoundError):
        await repository.replace_by_id(new_request("ghost"), expected_version=0)


# ── assessment staging ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_staged_materials_are_committed_on_submit(service):
    request = await service.create_request(RECEIVER, FORM)

    await service.stage_material(request.id, TECH, "Filter", 80)
    await service.stage_material(request.id, TECH, "Gasket", 5)
    staged = await service.unstage_material(request.id, TECH, 1)
    assert [m.name for m in staged] == ["Filter"]
    # Stored request untouched until submission
    assert (await service.get_request(request.id)).total_cost == 0

    submitted = await service.submit_assessment(request.id, TECH, 150, photos=["before.jpg"])

    assert submitted.total_cost == 230
    assert [(m.id, m.name) for m in submitted.materials_requested] == [(1, "Filter")]
    assert submitted.assessment_photos == ["before.jpg"]
    assert await service.staged_materials(request.id) == []


@pytest.mark.asyncio
async def test_staging_requires_assessment_rights(service):
    request = await service.create_request(RECEIVER, FORM)

    with pytest.raises(ForbiddenTransitionError):
        await service.stage_material(request.id, MANAGER, "Filter", 80)
    with pytest.raises(IndexOutOfRangeError):
        await service.unstage_material(request.id, TECH, 0)
    with pytest.raises(NotFoundError):
        await service.stage_material("missing", TECH, "Filter", 80)


# ── reads ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_work_queue_and_filters(service):
    first = await service.create_request(RECEIVER, FORM)
    second = await service.create_request(RECEIVER, CreateRequest(building="Tower B", unit="7", description="Door jammed"))
    await service.submit_assessment(first.id, TECH, 50, [])

    assert [r.id for r in await service.get_work_queue(MANAGER)] == [first.id]
    assert [r.id for r in await service.get_work_queue(TECH)] == [second.id]
    assert await service.get_work_queue(STORE) == []
    assert {r.id for r in await service.get_work_queue(RECEIVER)} == {first.id, second.id}

    awaiting = await service.list_requests({"status": S.AWAITING_APPROVAL.value})
    assert [r.id for r in awaiting] == [first.id]
    assert [r.id for r in await service.list_requests({"building": "Tower B"})] == [second.id]

    with pytest.raises(ValidationError):
        await service.list_requests({"status": "Lost"})


@pytest.mark.asyncio
async def test_permitted_actions(service):
    request = await service.create_request(RECEIVER, FORM)
    await service.submit_assessment(request.id, TECH, 50, [])

    assert await service.get_permitted_actions(request.id, MANAGER) == [RequestAction.AUTHORIZE, RequestAction.REJECT]
    assert await service.get_permitted_actions(request.id, TECH) == []


@pytest.mark.asyncio
async def test_stats(service):
    first = await service.create_request(RECEIVER, FORM)
    await service.create_request(RECEIVER, FORM)
    await service.submit_assessment(first.id, TECH, 50, [], priority=RequestPriority.HIGH)
    await service.reject(first.id, MANAGER)

    stats = await service.get_stats()

    assert stats["total"] == 2
    assert stats["in_progress"] == 1
    assert stats["rejected"] == 1
    assert stats["completed"] == 0
    assert stats["by_status"][S.PENDING_ASSESSMENT.value] == 1
    assert stats["by_priority"] == {"Low": 0, "Medium": 1, "High": 1}


# ── messages ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_request_messages(service):
    messages = RequestMessageService(service.repository)
    request = await service.create_request(RECEIVER, FORM)

    await messages.post_message(request.id, TECH, "On my way")
    await messages.post_message(request.id, RECEIVER, " Tenant is home ")

    thread = await messages.list_messages(request.id)
    assert [(m.from_user_name, m.text) for m in thread] == [("Jaleel", "On my way"), ("Qasim", "Tenant is home")]

    with pytest.raises(ValidationError):
        await messages.post_message(request.id, TECH, "   ")
    with pytest.raises(NotFoundError):
        await messages.list_messages("missing")


# ── lock bookkeeping ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_locks_released_after_unknown_ids(service):
    for i in range(100):
        with pytest.raises(NotFoundError):
            await service.authorize(f"ghost-{i}", MANAGER)

    assert len(service._locks) == 0
    assert len(service._lock_users) == 0


@pytest.mark.asyncio
async def test_locks_released_after_contended_actions(service):
    request = await service.create_request(RECEIVER, FORM)
    await service.submit_assessment(request.id, TECH, 150, [])

    await asyncio.gather(
        service.authorize(request.id, MANAGER),
        service.reject(request.id, MANAGER),
        service.authorize(request.id, MANAGER),
        return_exceptions=True,
    )

    assert service._locks == {}
    assert service._lock_users == {}


@pytest.mark.asyncio
async def test_staging_dropped_when_request_closes(service):
    request = await service.create_request(RECEIVER, FORM)
    await service.submit_assessment(request.id, TECH, 100, [])
    service.ledger.add_material(request.id, "Leftover", 5)

    await service.reject(request.id, MANAGER)

    assert service.ledger.staged_materials(request.id) == []


# ── forbidden actions never touch storage ────────────────────────────────────

EVERY_ACTION = [
    SubmitAssessment(labor_cost=999, materials=[MaterialInput(name="Extra", cost=1)]),
    Authorize(),
    Reject(feedback="nope"),
    Fulfill(),
    ConfirmCollection(),
    RequestAudit(completion_photos=["x.jpg"]),
    ApproveAndClose(),
    FailAudit(),
]


async def _stored_at(service, status):
    """Persist a request in `status` by walking the workflow."""
    request = await service.create_request(RECEIVER, FORM)
    if status == S.PENDING_ASSESSMENT:
        return request
    request = await service.submit_assessment(request.id, TECH, 150, [MaterialInput(name="Filter", cost=80)])
    if status == S.RETURNED_TO_TECH:
        moved = request.model_copy(update={"status": status, "version": request.version + 1})
        return await service.repository.replace_by_id(moved, expected_version=request.version)
    if status == S.REJECTED:
        return await service.reject(request.id, MANAGER)
    steps = [
        (S.APPROVED_AWAITING_STORE, lambda: service.authorize(request.id, MANAGER)),
        (S.MATERIALS_READY, lambda: service.fulfill(request.id, STORE)),
        (S.IN_EXECUTION, lambda: service.confirm_collection(request.id, TECH)),
        (S.PENDING_VERIFICATION, lambda: service.request_audit(request.id, TECH, ["after.jpg"])),
        (S.COMPLETED, lambda: service.approve_and_close(request.id, QA)),
    ]
    for reached, step in steps:
        if request.status == status:
            break
        request = await step()
        assert request.status == reached
    return request


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [s for s in RequestStatus])
async def test_forbidden_combinations_leave_stored_request_unchanged(service, status):
    request = await _stored_at(service, status)
    before = await service.get_request(request.id)
    assert before.status == status

    for actor in (RECEIVER, TECH, MANAGER, STORE, QA):
        allowed = role_policy.permitted_actions(actor.role, status)
        for action in EVERY_ACTION:
            if action.kind in allowed:
                continue
            with pytest.raises(ForbiddenTransitionError):
                await service.perform_action(request.id, action, actor)

            after = await service.get_request(request.id)
            assert after.status == before.status
            assert len(after.history) == len(before.history)
            assert after.labor_cost == before.labor_cost
            assert after.total_cost == before.total_cost
            assert after.version == before.version
