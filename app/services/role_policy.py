"""
Role policy for the request lifecycle.

Authorization is a lookup in ``ROLE_POLICY``: role -> current status ->
{action: target status}. Adding a role or a status is a change to this
table only.
"""

from typing import Dict, FrozenSet, Optional

from app.models.database_models import RequestAction, RequestStatus, UserRole

S = RequestStatus
A = RequestAction

ROLE_POLICY: Dict[UserRole, Dict[RequestStatus, Dict[RequestAction, RequestStatus]]] = {
    UserRole.RECEIVER: {},
    UserRole.TECH: {
        S.PENDING_ASSESSMENT: {A.SUBMIT_ASSESSMENT: S.AWAITING_APPROVAL},
        S.RETURNED_TO_TECH: {A.SUBMIT_ASSESSMENT: S.AWAITING_APPROVAL},
        S.MATERIALS_READY: {A.CONFIRM_COLLECTION: S.IN_EXECUTION},
        S.IN_EXECUTION: {A.REQUEST_AUDIT: S.PENDING_VERIFICATION},
    },
    UserRole.MANAGER: {
        S.AWAITING_APPROVAL: {
            A.AUTHORIZE: S.APPROVED_AWAITING_STORE,
            A.REJECT: S.REJECTED,
        },
    },
    UserRole.STORE: {
        S.APPROVED_AWAITING_STORE: {A.FULFILL: S.MATERIALS_READY},
    },
    UserRole.QA: {
        S.PENDING_VERIFICATION: {
            A.APPROVE_AND_CLOSE: S.COMPLETED,
            A.FAIL_AUDIT: S.IN_EXECUTION,
        },
    },
}

# Roles allowed to open a new request; every request is born here
CREATE_ROLES: FrozenSet[UserRole] = frozenset({UserRole.RECEIVER})
INITIAL_STATUS = RequestStatus.PENDING_ASSESSMENT


def permitted_actions(role: UserRole, status: RequestStatus) -> FrozenSet[RequestAction]:
    """Actions `role` may take on a request in `status` (possibly empty)."""
    return frozenset(ROLE_POLICY.get(role, {}).get(status, {}))


def resolve_transition(
    role: UserRole, status: RequestStatus, action: RequestAction
) -> Optional[RequestStatus]:
    """Target status for (role, status, action), or None when not permitted."""
    return ROLE_POLICY.get(role, {}).get(status, {}).get(action)


def actionable_statuses(role: UserRole) -> FrozenSet[RequestStatus]:
    """Statuses in which `role` has at least one action: its work queue."""
    return frozenset(status for status, actions in ROLE_POLICY.get(role, {}).items() if actions)


def can_create(role: UserRole) -> bool:
    return role in CREATE_ROLES
