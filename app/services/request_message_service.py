import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from app.core.exceptions import ValidationError
from app.database.collections import COLLECTIONS
from app.database.request_repository import MaintenanceRequestRepository
from app.models.database_models import Actor, RequestMessage

logger = logging.getLogger(__name__)


class RequestMessageService:
    """Conversation thread attached to a maintenance request."""

    def __init__(self, repository: Optional[MaintenanceRequestRepository] = None):
        self.repository = repository or MaintenanceRequestRepository()
        self.db = self.repository.db

    async def post_message(self, request_id: str, actor: Actor, text: str) -> RequestMessage:
        # Raises NotFoundError for unknown ids
        await self.repository.get_by_id(request_id)

        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text is required", request_id)

        message = RequestMessage(
            id=str(uuid.uuid4()),
            request_id=request_id,
            from_user_id=actor.id,
            from_user_name=actor.name,
            from_role=actor.role,
            text=text,
            created_at=datetime.now(timezone.utc),
        )
        success, _, error = await self.db.create_document(
            COLLECTIONS["request_messages"], message.model_dump(mode="json"), message.id
        )
        if not success:
            raise RuntimeError(f"Failed to store message: {error}")
        return message

    async def list_messages(self, request_id: str) -> List[RequestMessage]:
        """Oldest first, like a chat transcript."""
        await self.repository.get_by_id(request_id)
        success, documents, error = await self.db.query_documents(
            COLLECTIONS["request_messages"],
            [("request_id", "==", request_id)],
            order_by=[("created_at", "asc")],
        )
        if not success:
            logger.error(f"Failed to load messages for {request_id}: {error}")
            return []
        return [RequestMessage.model_validate({k: v for k, v in d.items() if not k.startswith("_")}) for d in documents]


request_message_service = RequestMessageService()
