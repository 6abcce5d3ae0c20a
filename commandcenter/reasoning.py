"""Client for the external reasoning service (OpenAI-compatible chat API)."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from .config import CommandCenterConfig
from .errors import ExternalServiceError
from .models import AnalysisResponse, TranslationResponse
from .prompts import (
    COMMAND_TRANSLATION_TEMPLATE,
    RESULT_ANALYSIS_TEMPLATE,
    SYSTEM_PROMPT,
    render,
)

logger = structlog.get_logger(__name__)

# Everything below 0x20 except tab/newline/carriage return, plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

MAX_OUTPUT_CHARS = 6000


def strip_fences(content: str) -> str:
    """Remove markdown code fences around a JSON answer."""
    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        content = "\n".join(line for line in lines if not line.strip().startswith("```"))
        content = content.strip()
    return content


def parse_json(content: str) -> Dict[str, Any]:
    """Parse a JSON object from a model answer.

    Tolerates fenced answers and gets one clean-up pass that strips control
    characters. Anything still unparseable is reported as a service failure.
    """
    content = strip_fences(content)
    try:
        result = json.loads(content)
    except json.JSONDecodeError:
        cleaned = _CONTROL_CHARS.sub("", content)
        try:
            result = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse reasoning JSON", content=content[:200], error=str(e))
            raise ExternalServiceError(f"Malformed JSON from reasoning service: {e}") from e
    if not isinstance(result, dict):
        raise ExternalServiceError("Reasoning service answer is not a JSON object")
    return result


class ReasoningClient:
    """Talks to the reasoning service over HTTP."""

    def __init__(
        self,
        config: Optional[CommandCenterConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or CommandCenterConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self.config.deepseek_base_url,
            headers={
                "Authorization": f"Bearer {self.config.deepseek_api_key or ''}",
                "Content-Type": "application/json",
            },
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(
        self,
        prompt: str,
        system: str = SYSTEM_PROMPT,
        timeout: float = 30.0,
    ) -> str:
        """Send one chat completion and return the assistant's text."""
        payload = {
            "model": self.config.deepseek_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.config.deepseek_temperature,
            "max_tokens": self.config.deepseek_max_tokens,
        }
        try:
            response = await self._client.post("/chat/completions", json=payload, timeout=timeout)
            response.raise_for_status()
            data = response.json()
            return data["choices"][0]["message"]["content"]
        except httpx.HTTPError as e:
            logger.warning("Reasoning service request failed", error=str(e))
            raise ExternalServiceError(f"Reasoning service unavailable: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning("Unexpected reasoning service response", error=str(e))
            raise ExternalServiceError(f"Unexpected reasoning service response: {e}") from e

    async def check_connection(self, timeout: float = 10.0) -> bool:
        """Verify the API key and connectivity with a trivial prompt."""
        try:
            await self.complete("Hello, are you ready?", system='Respond with "Ready"', timeout=timeout)
            return True
        except ExternalServiceError:
            return False

    async def translate(
        self,
        user_input: str,
        history: Optional[List[Dict[str, Any]]] = None,
        system_state: Optional[Dict[str, Any]] = None,
        timeout: float = 30.0,
    ) -> TranslationResponse:
        prompt = render(
            COMMAND_TRANSLATION_TEMPLATE,
            input=user_input,
            history=json.dumps(history or []),
            systemState=json.dumps(system_state or {}),
        )
        content = await self.complete(prompt, timeout=timeout)
        try:
            return TranslationResponse.model_validate(parse_json(content))
        except ValidationError as e:
            raise ExternalServiceError(f"Invalid translation response: {e}") from e

    async def analyze(
        self,
        user_input: str,
        command: str,
        output: str,
        timeout: float = 30.0,
    ) -> AnalysisResponse:
        prompt = render(
            RESULT_ANALYSIS_TEMPLATE,
            input=user_input,
            command=command,
            output=output[-MAX_OUTPUT_CHARS:],
        )
        content = await self.complete(prompt, timeout=timeout)
        try:
            return AnalysisResponse.model_validate(parse_json(content))
        except ValidationError as e:
            raise ExternalServiceError(f"Invalid analysis response: {e}") from e
