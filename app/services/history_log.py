"""Append-only audit trail of lifecycle events per request."""

from datetime import datetime
from typing import List, Optional

from app.core.exceptions import ValidationError
from app.models.database_models import HistoryEntry, MaintenanceRequest


def append(
    request: MaintenanceRequest,
    text: str,
    timestamp: datetime,
    entry_id: Optional[int] = None,
) -> MaintenanceRequest:
    """Return a new snapshot with one more history entry.

    Ids are strictly increasing; a caller-supplied id must exceed the last one.
    `created_at` never goes backwards relative to the previous entry.
    """
    if not isinstance(request, MaintenanceRequest):
        raise ValidationError("History can only be appended to a maintenance request")

    last = request.history[-1] if request.history else None
    next_id = last.id + 1 if last else 1
    if entry_id is not None:
        if entry_id < next_id:
            raise ValidationError(
                f"History entry id {entry_id} must be greater than {next_id - 1}", request.id
            )
        next_id = entry_id

    created_at = timestamp
    if last and created_at < last.created_at:
        created_at = last.created_at

    entry = HistoryEntry(id=next_id, text=text, created_at=created_at)
    return request.model_copy(update={"history": [*request.history, entry]})


def newest_first(request: MaintenanceRequest) -> List[HistoryEntry]:
    return list(reversed(request.history))
