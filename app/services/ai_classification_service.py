"""
Advisory AI classification of a new request description.

The result is a best-effort hint stored on the request. Any failure
(disabled, missing key, timeout, bad JSON) yields the fallback analysis;
nothing here is ever propagated to the caller creating the request.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.models.database_models import AIAnalysis, RequestPriority

logger = logging.getLogger(__name__)

CATEGORIES = ["Electrical", "Plumbing", "HVAC", "Carpentry", "Masonry", "Other"]

FALLBACK_STEPS = ["Contact supervisor for detailed assessment."]

_SYSTEM = (
    "You are a facility maintenance triage assistant. "
    "Classify maintenance issues and answer with a single JSON object only."
)

_PROMPT = """Analyze the following maintenance issue and provide a structured JSON response with:
- category ({categories})
- priority (Low, Medium, High)
- potentialCause (one sentence)
- requiredTools (array of strings)
- troubleshootingSteps (array of strings)

Description: "{description}\""""


def fallback_analysis() -> AIAnalysis:
    return AIAnalysis(
        category="Other",
        priority=RequestPriority.MEDIUM,
        potential_cause="Undetermined",
        required_tools=[],
        troubleshooting_steps=list(FALLBACK_STEPS),
        fallback=True,
    )


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def parse_analysis(raw: str) -> AIAnalysis:
    """Normalise the model's JSON into an AIAnalysis; raises ValueError on junk."""
    data: Dict[str, Any] = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("AI response is not a JSON object")

    category = str(data.get("category") or "Other").strip()
    category = next((c for c in CATEGORIES if c.lower() == category.lower()), "Other")

    priority_raw = str(data.get("priority") or "Medium").strip().capitalize()
    try:
        priority = RequestPriority(priority_raw)
    except ValueError:
        priority = RequestPriority.MEDIUM

    return AIAnalysis(
        category=category,
        priority=priority,
        potential_cause=str(data.get("potentialCause") or data.get("potential_cause") or "Undetermined").strip(),
        required_tools=_string_list(data.get("requiredTools", data.get("required_tools"))),
        troubleshooting_steps=_string_list(data.get("troubleshootingSteps", data.get("troubleshooting_steps"))),
    )


class AIClassificationService:
    def __init__(self, client=None, enabled: Optional[bool] = None, timeout: Optional[float] = None):
        self._client = client
        self.enabled = settings.USE_GROQ if enabled is None else enabled
        self.timeout = timeout if timeout is not None else settings.AI_CLASSIFICATION_TIMEOUT

    def _get_client(self):
        if self._client is None:
            from groq import Groq

            if not settings.GROQ_API_KEY:
                raise RuntimeError("GROQ_API_KEY is not configured")
            self._client = Groq(api_key=settings.GROQ_API_KEY)
        return self._client

    def _complete(self, description: str) -> str:
        resp = self._get_client().chat.completions.create(
            model=settings.GROQ_MODEL,
            messages=[
                {"role": "system", "content": _SYSTEM},
                {"role": "user", "content": _PROMPT.format(categories=", ".join(CATEGORIES), description=description)},
            ],
            response_format={"type": "json_object"},
            temperature=0.0,
            max_tokens=400,
        )
        return (resp.choices[0].message.content or "").strip()

    async def classify(self, description: str) -> AIAnalysis:
        """Best-effort classification; always returns an AIAnalysis."""
        if not self.enabled:
            return fallback_analysis()
        try:
            raw = await asyncio.wait_for(asyncio.to_thread(self._complete, description), timeout=self.timeout)
            analysis = parse_analysis(raw)
            logger.info(f"AI classification: {analysis.category}/{analysis.priority.value}")
            return analysis
        except asyncio.TimeoutError:
            logger.warning(f"AI classification timed out after {self.timeout}s, using fallback")
        except Exception as e:
            logger.warning(f"AI classification failed, using fallback: {str(e)}")
        return fallback_analysis()


ai_classification_service = AIClassificationService()
