"""LLM completion client over LiteLLM.

One structured completion per call: the model is asked for a JSON object
and the reply is parsed and validated against a pydantic model by the
caller. Provider errors are surfaced as ``LLMError`` so workflow steps can
classify them; the raw provider message never reaches progress records.
"""

import json
import logging
import re
from typing import Any, Dict

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class LLMError(Exception):
    """Completion failed. ``retriable`` is False when retrying cannot help."""

    def __init__(self, message: str, retriable: bool = True):
        super().__init__(message)
        self.retriable = retriable


class LLMClient:
    def __init__(self, model: str, api_key: str = "", api_base: str = "", timeout: int = 60):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.model)

    def complete_json(self, system: str, prompt: str, max_tokens: int = 2048) -> Dict[str, Any]:
        """Return the model's reply parsed as a JSON object."""
        text = self.complete(system, prompt, max_tokens=max_tokens, json_mode=True)
        cleaned = _FENCE_RE.sub("", text.strip())
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise LLMError("Model returned malformed JSON") from exc
        if not isinstance(parsed, dict):
            raise LLMError("Model returned JSON that is not an object")
        return parsed

    def complete(self, system: str, prompt: str, max_tokens: int = 2048, json_mode: bool = False) -> str:
        if not self.configured:
            raise LLMError("LLM is not configured. Set LLM_MODEL.", retriable=False)

        import litellm

        kwargs: dict = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": 0.4,
            "timeout": self.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = litellm.completion(**kwargs)
        except Exception as exc:
            # LiteLLM wraps every provider failure in its own hierarchy
            logger.warning("LLM completion failed: %s", type(exc).__name__)
            raise LLMError("LLM completion failed") from exc

        content = response.choices[0].message.content
        if not content:
            raise LLMError("LLM returned an empty response")
        return content
