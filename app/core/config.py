# app/core/config.py
import json
import os
from dotenv import load_dotenv

load_dotenv()


def _load_role_recipients() -> dict:
    raw = os.getenv("ROLE_RECIPIENTS")
    if raw:
        return {role: list(ids) for role, ids in json.loads(raw).items()}
    # Default roster: one desk per role
    return {
        "receiver": ["1"],
        "tech": ["2"],
        "manager": ["3"],
        "store": ["4"],
        "qa": ["5"],
    }


class Settings:
    FIREBASE_PROJECT_ID: str = os.getenv("FIREBASE_PROJECT_ID", "intellimaintain")
    FIREBASE_SERVICE_ACCOUNT_PATH: str = os.getenv(
        "FIREBASE_SERVICE_ACCOUNT_PATH",
        "firebase-service-account.json",
    )

    # "memory" keeps everything in process; "firestore" uses firebase_admin
    DATABASE_BACKEND: str = os.getenv("DATABASE_BACKEND", "memory").lower()

    # GROQ-related
    GROQ_API_KEY: str | None = os.getenv("GROQ_API_KEY")
    GROQ_MODEL: str = os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")
    USE_GROQ: bool = os.getenv("USE_GROQ", "false").lower() == "true"
    AI_CLASSIFICATION_TIMEOUT: float = float(os.getenv("AI_CLASSIFICATION_TIMEOUT", "8"))

    REQUEST_NO_PREFIX: str = os.getenv("REQUEST_NO_PREFIX", "REQ")
    CURRENCY: str = os.getenv("CURRENCY", "AED")

    # Who receives role-addressed notifications (role -> user ids)
    ROLE_RECIPIENTS: dict = _load_role_recipients()

    NOTIFICATION_FEED_LIMIT: int = int(os.getenv("NOTIFICATION_FEED_LIMIT", "50"))


settings = Settings()


def assert_groq_ready():
    """Call this only if you actually plan to use GROQ."""
    if settings.USE_GROQ and not settings.GROQ_API_KEY:
        raise RuntimeError(
            "GROQ is enabled but GROQ_API_KEY is missing. "
            "Set it in .env or disable USE_GROQ."
        )

