"""
Tagged action variants accepted by the lifecycle state machine.

Each variant carries only the payload its transition needs; `RequestActionPayload`
is the discriminated union used to parse a raw ``{"action": ..., ...}`` body.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ValidationError
from app.models.database_models import RequestAction, RequestPriority


class MaterialInput(BaseModel):
    name: str
    cost: float


class CreateRequest(BaseModel):
    """Receiver intake form"""
    building: str = ""
    unit: str = ""
    description: str = ""
    tenant_name: Optional[str] = None
    tenant_phone: Optional[str] = None
    photos: List[str] = []


class _BaseAction(BaseModel):
    @property
    def kind(self) -> RequestAction:
        return RequestAction(self.action)


class SubmitAssessment(_BaseAction):
    action: Literal["submit_assessment"] = "submit_assessment"
    labor_cost: float = 0.0
    materials: List[MaterialInput] = []
    photos: List[str] = []
    priority: Optional[RequestPriority] = None


class Authorize(_BaseAction):
    action: Literal["authorize"] = "authorize"


class Reject(_BaseAction):
    action: Literal["reject"] = "reject"
    feedback: Optional[str] = None


class Fulfill(_BaseAction):
    action: Literal["fulfill"] = "fulfill"


class ConfirmCollection(_BaseAction):
    action: Literal["confirm_collection"] = "confirm_collection"


class RequestAudit(_BaseAction):
    action: Literal["request_audit"] = "request_audit"
    completion_photos: List[str] = []


class ApproveAndClose(_BaseAction):
    action: Literal["approve_and_close"] = "approve_and_close"


class FailAudit(_BaseAction):
    action: Literal["fail_audit"] = "fail_audit"


TransitionAction = Union[
    SubmitAssessment,
    Authorize,
    Reject,
    Fulfill,
    ConfirmCollection,
    RequestAudit,
    ApproveAndClose,
    FailAudit,
]

RequestActionPayload = Annotated[TransitionAction, Field(discriminator="action")]

_action_adapter = TypeAdapter(RequestActionPayload)


def parse_action(data: dict) -> TransitionAction:
    """Parse a raw action body into its tagged variant."""
    try:
        return _action_adapter.validate_python(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid action payload: {problems}")
