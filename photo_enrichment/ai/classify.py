from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from photo_enrichment.ai.classification import normalize_classification
from photo_enrichment.ai.helpers import parse_json_response, usage_entry
from photo_enrichment.ai.llm import LlmClient, LlmError, pick_model
from photo_enrichment.ai.prompts import get_classify_system_message, get_classify_user_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifyImageNode:
    llm: LlmClient
    model: str = "gpt-4o-mini"
    max_tokens: int = 128

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        """
        LangGraph node: one low-detail vision call that labels the photo.
        Writes classification (normalized), classification_raw and scene_tags.
        """
        image_bytes = state.get("image_bytes")
        if not image_bytes:
            return {"error": "classify_image: no image bytes in state"}

        model = pick_model(state.get("model_overrides"), "classifyModel", self.model)
        try:
            reply = await self.llm.complete(
                get_classify_system_message(),
                get_classify_user_message(),
                image_bytes=image_bytes,
                image_mime=state.get("image_mime"),
                model=model,
                max_tokens=self.max_tokens,
                detail="low",
            )
        except LlmError as e:
            logger.error("classify_image: model call failed: %s", e)
            return {"error": f"classify_image: {e}"}

        parsed = parse_json_response(reply.text)
        usage = [usage_entry("classify_image", reply.model, reply.usage, reply.duration_ms)]
        if not parsed.ok:
            logger.error("classify_image: unparsable output: %s", parsed.error)
            return {"error": f"classify_image: {parsed.error}", "debug_usage": usage}

        raw_label = str(parsed.value.get("classification") or "")
        classification = normalize_classification(raw_label)
        tags = parsed.value.get("tags") or []
        if not isinstance(tags, list):
            tags = [t.strip() for t in str(tags).split(",")]

        logger.info("classify_image: %r -> %s", raw_label, classification.value)
        return {
            "classification": classification.value,
            "classification_raw": raw_label,
            "scene_tags": [str(t).strip().lower() for t in tags if str(t).strip()],
            "error": None,
            "debug_usage": usage,
        }
