"""
TicketFlow AI Advisor

Optional helper that suggests:
- a task breakdown (3-6 titles) for a ticket
- a (priority, type) classification for a new ticket

The engine must work the same with every call returning nothing. Failures
stay in here: task suggestions fall back to a fixed starter list and
classification falls back to MEDIUM / SELF_INITIATION.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

import httpx

from ..config import Settings
from ..errors import AdvisorError
from ..models import Priority, TicketType

logger = logging.getLogger(__name__)

MIN_SUGGESTED_TASKS = 3
MAX_SUGGESTED_TASKS = 6

FALLBACK_TASKS = [
    "Review requirements",
    "Investigate codebase",
    "Implement fix/feature",
    "Test changes",
]


@dataclass
class Suggestion:
    """Advisor's classification of a ticket."""
    priority: Priority = Priority.MEDIUM
    type: TicketType = TicketType.SELF_INITIATION


class TaskAdvisor(Protocol):

    async def suggest_tasks(self, title: str, type: TicketType, description: str) -> List[str]: ...

    async def suggest_classification(self, title: str, description: str) -> Optional[Suggestion]: ...


class NullAdvisor:
    """Advisor that never has an opinion."""

    async def suggest_tasks(self, title: str, type: TicketType, description: str) -> List[str]:
        return []

    async def suggest_classification(self, title: str, description: str) -> Optional[Suggestion]:
        return None


class GeminiAdvisor:
    """
    Advisor backed by the Gemini generateContent REST endpoint.

    Asks for JSON output with a response schema so the reply parses
    directly into titles or a classification.
    """

    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    async def suggest_tasks(self, title: str, type: TicketType, description: str) -> List[str]:
        prompt = (
            "You are a technical project manager.\n"
            f"Analyze the following ticket and break it down into {MIN_SUGGESTED_TASKS} to "
            f"{MAX_SUGGESTED_TASKS} concrete, actionable technical subtasks for a developer.\n\n"
            f"Ticket Title: {title}\n"
            f"Ticket Type: {type.value}\n"
            f"Description: {description}\n\n"
            "Return ONLY a list of strings acting as task titles."
        )
        schema = {"type": "ARRAY", "items": {"type": "STRING"}}

        try:
            data = await self._generate(prompt, schema)
        except AdvisorError as e:
            logger.warning("Task suggestion failed, using fallback list: %s", e)
            return list(FALLBACK_TASKS)

        if data is None:
            return []
        if not isinstance(data, list):
            logger.warning("Task suggestion was not a list, using fallback list")
            return list(FALLBACK_TASKS)

        titles = [str(t).strip() for t in data if str(t).strip()]
        return titles[:MAX_SUGGESTED_TASKS]

    async def suggest_classification(self, title: str, description: str) -> Optional[Suggestion]:
        prompt = (
            "Analyze this request and suggest a Priority (LOW, MEDIUM, HIGH, CRITICAL) "
            "and Type (BUG_ISSUE, FEATURE_REQUEST, SELF_INITIATION).\n"
            f"Title: {title}\n"
            f"Description: {description}"
        )
        schema = {
            "type": "OBJECT",
            "properties": {
                "priority": {"type": "STRING", "enum": [p.value for p in Priority]},
                "type": {"type": "STRING", "enum": [t.value for t in TicketType]},
            },
        }

        try:
            data = await self._generate(prompt, schema)
        except AdvisorError as e:
            logger.warning("Classification failed, using defaults: %s", e)
            return Suggestion()

        if not isinstance(data, dict):
            return Suggestion()
        try:
            return Suggestion(
                priority=Priority(data.get("priority", Priority.MEDIUM.value)),
                type=TicketType(data.get("type", TicketType.SELF_INITIATION.value)),
            )
        except ValueError:
            logger.warning("Classification out of range: %s", data)
            return Suggestion()

    async def _generate(self, prompt: str, schema: dict) -> Any:
        """Call the model; return parsed JSON, or None on an empty reply."""
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.BASE_URL}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    headers={"Content-Type": "application/json"},
                    json=body,
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AdvisorError(f"Gemini request failed: {e}") from e

        try:
            text = payload["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None

        text = (text or "").strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise AdvisorError(f"Gemini returned invalid JSON: {e}") from e


def get_advisor(settings: Settings) -> TaskAdvisor:
    """Pick the advisor the settings ask for."""
    if settings.advisor_enabled and settings.gemini_api_key:
        return GeminiAdvisor(
            settings.gemini_api_key,
            model=settings.gemini_model,
            timeout=settings.advisor_timeout_seconds,
        )
    return NullAdvisor()


async def suggest_defaults(
    advisor: TaskAdvisor,
    title: str,
    description: str,
    settings: Optional[Settings] = None,
) -> Suggestion:
    """Classification for a new ticket; no suggestion means the defaults."""
    try:
        suggestion = await advisor.suggest_classification(title, description)
    except Exception as e:  # advisor failures degrade to defaults
        logger.warning("Advisor raised during classification: %s", e)
        suggestion = None

    if suggestion is not None:
        return suggestion
    if settings is None:
        return Suggestion()
    return Suggestion(priority=settings.default_priority, type=settings.default_ticket_type)
