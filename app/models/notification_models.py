"""
Notification models for the request lifecycle.

Notifications are only ever produced by the transition layer; recipients
can read them and flip `read`, nothing else.
"""

from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from enum import Enum

from app.models.database_models import UserRole


class NotificationType(str, Enum):
    """Enumeration of all lifecycle notification types"""

    JOB_ASSIGNED = "job_assigned"
    ASSESSMENT_SUBMITTED = "assessment_submitted"
    REQUEST_AUTHORIZED = "request_authorized"
    REQUEST_REJECTED = "request_rejected"
    MATERIALS_READY = "materials_ready"
    AUDIT_REQUESTED = "audit_requested"
    REQUEST_COMPLETED = "request_completed"
    REWORK_REQUIRED = "rework_required"
    STATUS_UPDATE = "status_update"


class Notification(BaseModel):
    id: Optional[str] = None
    user_id: str
    type: NotificationType
    title: str
    body: str
    request_id: Optional[str] = None
    created_at: Optional[datetime] = None
    read: bool = False
    read_at: Optional[datetime] = None


class NotificationIntent(BaseModel):
    """What a transition wants sent; recipients are resolved after persist.

    Exactly one of `recipient_role` / `recipient_id` is set.
    """

    type: NotificationType
    title: str
    body: str
    recipient_role: Optional[UserRole] = None
    recipient_id: Optional[str] = None


class MarkAsReadRequest(BaseModel):
    notification_ids: List[str]
