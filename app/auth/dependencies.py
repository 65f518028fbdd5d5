from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from .firebase_auth import firebase_auth
from ..models.database_models import Actor, UserRole
import logging

security = HTTPBearer()
logger = logging.getLogger(__name__)


def actor_from_claims(claims: dict) -> Actor:
    """Build the acting user from verified token claims; the role comes from a custom claim."""
    try:
        role = UserRole(str(claims.get("role", "")).lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown or missing role: {claims.get('role')}",
        )
    uid = claims.get("uid") or claims.get("user_id") or claims.get("sub")
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token carries no user id",
            headers={"WWW-Authenticate": "Bearer"},
        )
    name = claims.get("name") or claims.get("email") or str(uid)
    return Actor(id=str(uid), name=name, role=role)


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Actor:
    """
    Verify Firebase authentication token and return the acting user.
    Raises 401 if token is invalid.
    """
    try:
        token = credentials.credentials
        user_data = await firebase_auth.verify_token(token)

        if not user_data:
            logger.warning("[Auth] Token verification failed - invalid token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )

        actor = actor_from_claims(user_data)
        logger.info(f"[Auth] Authenticated user: {actor.name} with role: {actor.role.value}")
        return actor
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[Auth] Authentication error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Authentication failed: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

