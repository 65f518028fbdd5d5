import logging
from typing import Optional

from firebase_admin import auth

from ..core.firebase_init import initialize_firebase, is_firebase_available

logger = logging.getLogger(__name__)


class FirebaseAuth:
    def _ensure_initialized(self):
        if not is_firebase_available():
            if not initialize_firebase():
                raise Exception("Firebase initialization failed - Auth not available")

    async def verify_token(self, token: str) -> Optional[dict]:
        self._ensure_initialized()
        try:
            decoded_token = auth.verify_id_token(token)
            return decoded_token
        except Exception as e:
            logger.warning(f"Token verification failed: {e}")
            return None


firebase_auth = FirebaseAuth()
