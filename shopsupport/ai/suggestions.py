# ==============================================================================
# FILE: shopsupport/ai/suggestions.py
# DESCRIPTION: AI collaborator - reply suggestions for staff and automatic
#              first responses for simple customer queries.
# ==============================================================================
import json
import os
from typing import Any, Dict, List, Optional, Protocol, Sequence

from openai import AsyncOpenAI, OpenAIError
from opentelemetry import trace
from pydantic import ValidationError

from shopsupport.core_config import get_secret
from shopsupport.data.models import AISuggestion
from shopsupport.errors import SuggestionServiceFailure
from logs.logging_config import get_core_logger, log_operation

logger = get_core_logger("suggestions")
tracer = trace.get_tracer(__name__)

HUMAN_REQUIRED = "HUMAN_REQUIRED"
DEFAULT_MODEL = "gpt-4o"


class SuggestionService(Protocol):
    """Opaque async AI collaborator."""

    async def generate_suggestions(
        self,
        message: str,
        history: Sequence[str],
        customer_profile: Optional[Dict[str, Any]] = None,
    ) -> List[AISuggestion]: ...

    async def generate_auto_response(
        self,
        message: str,
        customer_profile: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]: ...


# ------------------------------------------------------------------------------
# Prompt builders / response parsing (pure)
# ------------------------------------------------------------------------------
def build_suggestion_prompt(message: str, history: Sequence[str], customer_profile: Optional[Dict[str, Any]] = None) -> str:
    context_text = ""
    if history:
        context_text = "Previous conversation:\n" + "\n".join(history) + "\n\n"
    customer_info = ""
    if customer_profile:
        customer_info = f"Customer info: {json.dumps(customer_profile, indent=2, default=str)}\n\n"
    return (
        "You are a helpful customer support AI assistant. Based on the customer's message and context, "
        "suggest 3 appropriate response options.\n\n"
        f"{customer_info}{context_text}Customer message: \"{message}\"\n\n"
        "Provide 3 response suggestions that are:\n"
        "1. Professional and helpful\n"
        "2. Specific to the customer's inquiry\n"
        "3. Appropriate for a customer support context\n\n"
        "Respond with JSON in this format:\n"
        '{"suggestions": [{"text": "response text", "confidence": 0.9, "category": "information|support|resolution"}]}'
    )


def build_auto_response_prompt(message: str, customer_profile: Optional[Dict[str, Any]] = None) -> str:
    customer_info = ""
    if customer_profile:
        customer_info = f"Customer info: Name: {customer_profile.get('name')}, Email: {customer_profile.get('email')}\n"
    return (
        "You are an AI customer support assistant. The customer has sent this message:\n\n"
        f"{customer_info}Customer message: \"{message}\"\n\n"
        "If this is a simple query that can be handled automatically (like basic information requests, "
        "order status inquiries with order details provided, etc.), provide a helpful response.\n\n"
        f"If this requires human intervention, respond with \"{HUMAN_REQUIRED}\".\n\n"
        "Keep responses friendly, professional, and concise."
    )


def parse_suggestions(raw: Optional[str]) -> List[AISuggestion]:
    """Parse the model's JSON object; items that don't validate are dropped."""
    try:
        data = json.loads(raw or '{"suggestions": []}')
    except json.JSONDecodeError as e:
        raise SuggestionServiceFailure(f"Suggestion response was not JSON: {e}")
    items = data.get("suggestions") if isinstance(data, dict) else None
    if not isinstance(items, list):
        return []
    suggestions: List[AISuggestion] = []
    for item in items:
        try:
            suggestion = AISuggestion.model_validate(item)
        except ValidationError:
            logger.debug(f"Dropping malformed suggestion item: {item!r}")
            continue
        if suggestion.text.strip():
            suggestions.append(suggestion)
    return suggestions


def parse_auto_response(raw: Optional[str]) -> Optional[str]:
    content = (raw or "").strip()
    if not content or content == HUMAN_REQUIRED:
        return None
    return content


# ------------------------------------------------------------------------------
# OpenAI-backed implementation
# ------------------------------------------------------------------------------
class OpenAISuggestionService:
    """SuggestionService backed by the OpenAI chat completions API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or os.getenv("OPENAI_MODEL", DEFAULT_MODEL)

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=get_secret("OpenAIApiKey"))
        return self._client

    async def _complete(self, system: str, prompt: str, *, max_tokens: int, json_mode: bool) -> Optional[str]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self.client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            raise SuggestionServiceFailure(f"OpenAI request failed: {e}") from e
        if not response.choices:
            return None
        return response.choices[0].message.content

    async def generate_suggestions(
        self,
        message: str,
        history: Sequence[str],
        customer_profile: Optional[Dict[str, Any]] = None,
    ) -> List[AISuggestion]:
        with tracer.start_as_current_span("ai.generate_suggestions"), log_operation(logger, "generate_suggestions", model=self.model):
            raw = await self._complete(
                "You are an expert customer support AI that generates helpful response suggestions.",
                build_suggestion_prompt(message, history, customer_profile),
                max_tokens=800,
                json_mode=True,
            )
            return parse_suggestions(raw)

    async def generate_auto_response(
        self,
        message: str,
        customer_profile: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        with tracer.start_as_current_span("ai.generate_auto_response"), log_operation(logger, "generate_auto_response", model=self.model):
            raw = await self._complete(
                "You are a customer support AI that can handle simple queries automatically or escalate to humans when needed.",
                build_auto_response_prompt(message, customer_profile),
                max_tokens=300,
                json_mode=False,
            )
            return parse_auto_response(raw)
