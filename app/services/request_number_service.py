from ..database.database_service import DatabaseService, database_service
from ..database.collections import COLLECTIONS
from ..core.config import settings
from typing import Optional
import logging

logger = logging.getLogger(__name__)

COUNTER_ID = "maintenance_request_counter"


class RequestNumberService:
    def __init__(self, db: Optional[DatabaseService] = None):
        self.db = db or database_service

    async def generate_request_no(self) -> str:
        """
        Generate next display number in format: REQ-NNNN
        Example: REQ-0001, REQ-0002, etc.

        The counter lives in the counters collection and is bumped atomically
        by the backing store, so numbers are never handed out twice.
        """
        success, next_number, error = await self.db.increment_counter(COLLECTIONS['counters'], COUNTER_ID)
        if not success or next_number is None:
            logger.error(f"Failed to increment request counter: {error}")
            raise RuntimeError(f"Failed to increment request counter: {error}")

        request_no = f"{settings.REQUEST_NO_PREFIX}-{next_number:04d}"
        logger.info(f"Generated request number: {request_no}")
        return request_no

    async def get_current_counter(self) -> int:
        success, counter_data, error = await self.db.get_document(COLLECTIONS['counters'], COUNTER_ID)
        if not success or not counter_data:
            return 0
        return counter_data.get("counter", 0)
