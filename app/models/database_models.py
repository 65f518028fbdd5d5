from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class RequestStatus(str, Enum):
    PENDING_ASSESSMENT = "Pending Assessment"      # waiting for technician survey
    RETURNED_TO_TECH = "Returned to Tech"          # reserved, nothing produces it yet
    AWAITING_APPROVAL = "Awaiting Approval"        # manager reviewing cost
    APPROVED_AWAITING_STORE = "Approved - Awaiting Store"
    MATERIALS_READY = "Materials Ready"            # ready for technician pickup
    IN_EXECUTION = "In Execution"
    PENDING_VERIFICATION = "Pending Verification"  # waiting for QA audit
    COMPLETED = "Completed"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.REJECTED})


class UserRole(str, Enum):
    RECEIVER = "receiver"
    TECH = "tech"
    MANAGER = "manager"
    STORE = "store"
    QA = "qa"


class RequestPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class RequestAction(str, Enum):
    CREATE = "create"
    SUBMIT_ASSESSMENT = "submit_assessment"
    AUTHORIZE = "authorize"
    REJECT = "reject"
    FULFILL = "fulfill"
    CONFIRM_COLLECTION = "confirm_collection"
    REQUEST_AUDIT = "request_audit"
    APPROVE_AND_CLOSE = "approve_and_close"
    FAIL_AUDIT = "fail_audit"


# Acting user, taken from the verified token
class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    role: UserRole


class RequestMaterial(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    cost: float


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    text: str
    created_at: datetime


class AIAnalysis(BaseModel):
    """Advisory classification attached to a new request"""
    category: str = "Other"
    priority: RequestPriority = RequestPriority.MEDIUM
    potential_cause: str = "Undetermined"
    required_tools: List[str] = []
    troubleshooting_steps: List[str] = []
    fallback: bool = False


# Maintenance Request Model
class MaintenanceRequest(BaseModel):
    """Immutable snapshot of a work order; transitions produce a new one."""

    model_config = ConfigDict(frozen=True)

    id: str
    request_no: str  # e.g., "REQ-0001"
    building: str
    unit: str
    description: str
    priority: RequestPriority = RequestPriority.MEDIUM
    tenant_name: str = "N/A"
    tenant_phone: str = "N/A"
    created_by: str
    created_by_id: str
    status: RequestStatus = RequestStatus.PENDING_ASSESSMENT
    materials_requested: List[RequestMaterial] = []
    labor_cost: float = 0.0
    total_cost: float = 0.0
    manager_feedback: Optional[str] = None
    history: List[HistoryEntry] = []  # chronological, oldest first
    assessment_photos: List[str] = []
    completion_photos: List[str] = []
    ai_analysis: Optional[AIAnalysis] = None
    version: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def materials_cost(self) -> float:
        return sum(m.cost for m in self.materials_requested)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialized view with the history exposed newest-first."""
        data = self.model_dump(mode="json")
        data["history"] = list(reversed(data["history"]))
        return data


# Per-request conversation between the parties working an order
class RequestMessage(BaseModel):
    id: Optional[str] = None
    request_id: str
    from_user_id: str
    from_user_name: str
    from_role: Optional[UserRole] = None
    text: str = Field(..., min_length=1)
    created_at: Optional[datetime] = None
