import logging
from typing import Any, Dict, List, Optional

from app.core.exceptions import ConcurrentModificationError, NotFoundError
from app.database.collections import COLLECTIONS
from app.database.database_service import (
    NOT_FOUND,
    VERSION_CONFLICT,
    DatabaseService,
    database_service,
)
from app.models.database_models import MaintenanceRequest

logger = logging.getLogger(__name__)


class MaintenanceRequestRepository:
    """Storage contract the lifecycle reads and writes through."""

    def __init__(self, db: Optional[DatabaseService] = None) -> None:
        self.db = db or database_service
        self.collection = COLLECTIONS["maintenance_requests"]

    @staticmethod
    def _to_document(request: MaintenanceRequest) -> Dict[str, Any]:
        return request.model_dump(mode="json")

    @staticmethod
    def _from_document(document: Dict[str, Any]) -> MaintenanceRequest:
        data = {k: v for k, v in document.items() if not k.startswith("_")}
        return MaintenanceRequest.model_validate(data)

    async def get_by_id(self, request_id: str) -> MaintenanceRequest:
        success, document, error = await self.db.get_document(self.collection, request_id)
        if not success or not document:
            if error and error != NOT_FOUND:
                logger.error("Failed to load maintenance request %s: %s", request_id, error)
            raise NotFoundError(f"Maintenance request {request_id} not found", request_id)
        return self._from_document(document)

    async def append_new(self, request: MaintenanceRequest) -> MaintenanceRequest:
        success, _, error = await self.db.create_document(
            self.collection, self._to_document(request), request.id
        )
        if not success:
            raise RuntimeError(f"Failed to store maintenance request {request.id}: {error}")
        return request

    async def replace_by_id(self, request: MaintenanceRequest, expected_version: int) -> MaintenanceRequest:
        """Compare-and-swap on `version`; the new snapshot must carry expected_version + 1."""
        success, error = await self.db.replace_document(
            self.collection, request.id, self._to_document(request), expected_version=expected_version
        )
        if success:
            return request
        if error == VERSION_CONFLICT:
            raise ConcurrentModificationError(
                f"Maintenance request {request.id} was modified concurrently", request.id
            )
        if error == NOT_FOUND:
            raise NotFoundError(f"Maintenance request {request.id} not found", request.id)
        raise RuntimeError(f"Failed to update maintenance request {request.id}: {error}")

    async def list(
        self,
        status: Optional[List[str]] = None,
        priority: Optional[str] = None,
        building: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[MaintenanceRequest]:
        """Newest first. Reads may observe a slightly stale snapshot."""
        filters = []
        if status:
            filters.append(("status", "in", list(status)))
        if priority:
            filters.append(("priority", "==", priority))
        if building:
            filters.append(("building", "==", building))

        success, documents, error = await self.db.query_documents(
            self.collection,
            filters or None,
            order_by=[("created_at", "desc")],
            limit=limit,
        )
        if not success:
            raise ValueError(error or "Failed to fetch maintenance requests")

        requests: List[MaintenanceRequest] = []
        for raw in documents:
            try:
                requests.append(self._from_document(raw))
            except Exception as exc:
                logger.warning("Skipping maintenance request due to validation error: %s", exc)
                logger.debug("Failed document data: %s", raw)
        return requests
