import logging
from typing import Dict, List, Optional

from app.core.config import settings
from app.models.database_models import UserRole

logger = logging.getLogger(__name__)


class RoleDirectory:
    """Maps a role to the user ids that receive role-addressed notifications."""

    def __init__(self, recipients: Optional[Dict[str, List[str]]] = None):
        source = recipients if recipients is not None else settings.ROLE_RECIPIENTS
        self._recipients: Dict[UserRole, List[str]] = {}
        for role, user_ids in source.items():
            try:
                self._recipients[UserRole(role)] = [str(uid) for uid in user_ids]
            except ValueError:
                logger.warning("Ignoring recipients for unknown role %r", role)

    def recipients_for(self, role: UserRole) -> List[str]:
        users = self._recipients.get(role, [])
        if not users:
            logger.warning("No notification recipients configured for role %s", role.value)
        return list(users)
