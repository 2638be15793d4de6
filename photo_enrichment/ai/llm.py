from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from photo_enrichment.ai.helpers import image_to_data_url

logger = logging.getLogger(__name__)

# ---------
# CONFIG
# ---------
DEFAULT_MODEL = "gpt-4o"


class LlmError(RuntimeError):
    """Model call failed (network, rate limit, timeout, empty choice)."""


@dataclass
class LlmReply:
    text: str
    model: str
    usage: Dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0


class LlmClient:
    """Thin async wrapper over chat completions with an optional image payload."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        default_model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
        api_key: Optional[str] = None,
    ) -> None:
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.default_model = default_model

    @staticmethod
    def build_messages(
        system_prompt: str,
        user_prompt: str,
        image_bytes: Optional[bytes] = None,
        image_mime: Optional[str] = None,
        detail: str = "high",
    ) -> List[Dict[str, Any]]:
        if image_bytes:
            user_content: Any = [
                {"type": "text", "text": user_prompt},
                {
                    "type": "image_url",
                    "image_url": {
                        "url": image_to_data_url(image_bytes, image_mime),
                        "detail": detail,
                    },
                },
            ]
        else:
            user_content = user_prompt
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        image_bytes: Optional[bytes] = None,
        image_mime: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 512,
        temperature: float = 0.2,
        detail: str = "high",
        json_mode: bool = True,
    ) -> LlmReply:
        model = model or self.default_model
        messages = self.build_messages(system_prompt, user_prompt, image_bytes, image_mime, detail)
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        started = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                **kwargs,
            )
        except OpenAIError as e:
            raise LlmError(f"{model} call failed: {e}") from e
        duration_ms = int((time.perf_counter() - started) * 1000)

        if not response.choices:
            raise LlmError(f"{model} returned no choices")

        usage = response.usage.model_dump() if response.usage is not None else {}
        text = response.choices[0].message.content or ""
        logger.debug("llm %s finished in %dms (%d chars)", model, duration_ms, len(text))
        return LlmReply(text=text, model=response.model or model, usage=usage, duration_ms=duration_ms)


def pick_model(overrides: Optional[Dict[str, str]], key: str, default: str) -> str:
    """Per-run override ('foodModel'), then 'defaultModel', then the configured default."""
    overrides = overrides or {}
    return overrides.get(key) or overrides.get("defaultModel") or default
