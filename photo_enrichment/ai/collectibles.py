from __future__ import annotations

import asyncio
import logging
import math
import re
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from photo_enrichment.ai.helpers import keywords_to_string, parse_json_response, usage_entry
from photo_enrichment.ai.llm import LlmClient, LlmError, pick_model
from photo_enrichment.ai.prompts import (
    build_describe_user_message,
    build_valuate_user_message,
    get_describe_system_message,
    get_identify_system_message,
    get_valuate_system_message,
)
from photo_enrichment.ai.search import SearchError, WebSearchClient, format_search_results
from photo_enrichment.ai.states import CollectibleRecord, CollectibleValuation, FinalResult, MarketDataPoint

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2048
MAX_VENUE_LENGTH = 120

_ID_STRIP_RE = re.compile(r"[^\w\s\-\,\.\#]")
_PRICE_RE = re.compile(r"-?\d+(?:\.\d+)?")


# -------------------------
# Sanitizers
# -------------------------

def sanitize_collectible_id(value: Any) -> str:
    return _ID_STRIP_RE.sub("", str(value or "")).strip()


def sanitize_price(value: Any) -> Optional[float]:
    """'$1,200.00' -> 1200.0; non-numeric, non-finite and negative prices -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            price = float(value)
        except OverflowError:
            return None
    else:
        text = str(value).replace(",", "")
        text = re.sub(r"[^\d.\-]+", " ", text)
        match = _PRICE_RE.search(text)
        if not match:
            return None
        price = float(match.group(0))
    if price < 0 or not math.isfinite(price):
        return None
    return price


def sanitize_url(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    url = value.strip()
    if not url.lower().startswith(("http://", "https://")) or len(url) > MAX_URL_LENGTH:
        return None
    return url


def sanitize_market_data(raw_items: Any, today: Optional[str] = None) -> List[MarketDataPoint]:
    today = today or date.today().isoformat()
    items: List[MarketDataPoint] = []
    for raw in raw_items if isinstance(raw_items, list) else []:
        if not isinstance(raw, dict):
            continue
        price = sanitize_price(raw.get("price"))
        if price is None:
            continue
        venue = str(raw.get("venue") or "").strip()[:MAX_VENUE_LENGTH] or "Unknown"
        items.append(
            MarketDataPoint(
                price=price,
                venue=venue,
                url=sanitize_url(raw.get("url")),
                date_seen=str(raw.get("date_seen") or today),
                condition=raw.get("condition"),
            )
        )
    return items


def normalize_valuation(raw: Dict[str, Any], today: Optional[str] = None) -> CollectibleValuation:
    """
    Accepts {valuation:{low,high,currency}, market_data, reasoning} or the flat
    {low, high, currency, ...} shape. When any market price survives, low/high
    are the min/max of those prices; otherwise the model's own range is kept.
    """
    nested = raw.get("valuation") if isinstance(raw.get("valuation"), dict) else raw
    market_data = sanitize_market_data(raw.get("market_data"), today)

    low = sanitize_price(nested.get("low"))
    high = sanitize_price(nested.get("high"))
    prices = [m["price"] for m in market_data]
    if prices:
        low, high = min(prices), max(prices)
    elif low is not None and high is not None and low > high:
        low, high = high, low

    return CollectibleValuation(
        low=low,
        high=high,
        currency=str(nested.get("currency") or "USD").upper(),
        reasoning=str(raw.get("reasoning") or nested.get("reasoning") or ""),
        market_data=market_data,
    )


def build_search_queries(collectible_id: str) -> List[str]:
    return [
        f'"{collectible_id}" price value',
        f'"{collectible_id}" for sale',
        f'"{collectible_id}" sold listings',
    ]


def _format_money(value: Optional[float]) -> str:
    if value is None:
        return "?"
    return f"{value:,.0f}" if value == int(value) else f"{value:,.2f}"


def describe_fallback(collectible: CollectibleRecord) -> str:
    ident = collectible.get("identification") or {}
    valuation = collectible.get("valuation") or {}
    name = ident.get("id") or "item"
    category = ident.get("category") or "collectible"
    condition = ident.get("condition") or "unknown"
    text = f"This {category} ({name}) is in {condition} condition."
    if valuation.get("low") is not None or valuation.get("high") is not None:
        text += (
            f" Estimated value: ${_format_money(valuation.get('low'))}-"
            f"${_format_money(valuation.get('high'))} {valuation.get('currency') or 'USD'}."
        )
    return text


# -------------------------
# Nodes
# -------------------------

class IdentifyCollectibleNode:
    """LangGraph node: what the item is, nothing about its value."""

    def __init__(self, llm: LlmClient, model: str = "gpt-4o", max_tokens: int = 256) -> None:
        self.llm = llm
        self.model = model
        self.max_tokens = max_tokens

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        override = state.get("collectible_override") or {}
        if isinstance(override.get("id"), str) and override["id"].strip():
            logger.info("identify_collectible: using human identification %r", override["id"])
            return {
                "collectible": CollectibleRecord(
                    identification={
                        "id": override["id"].strip(),
                        "category": override.get("category"),
                        "confidence": 1.0,
                        "source": "human",
                    },
                    review={"status": "confirmed"},
                ),
                "debug_usage": [usage_entry("identify_collectible", notes="human override")],
            }

        model = pick_model(state.get("model_overrides"), "collectibleModel", self.model)
        try:
            reply = await self.llm.complete(
                get_identify_system_message(),
                "Identify this item.",
                image_bytes=state.get("image_bytes"),
                image_mime=state.get("image_mime"),
                model=model,
                max_tokens=self.max_tokens,
            )
        except LlmError as e:
            logger.error("identify_collectible: model call failed: %s", e)
            return {"error": f"identify_collectible: {e}"}

        usage = [usage_entry("identify_collectible", reply.model, reply.usage, reply.duration_ms)]
        parsed = parse_json_response(reply.text)
        if not parsed.ok:
            logger.error("identify_collectible: unparsable output: %s", parsed.error)
            return {"error": f"identify_collectible: {parsed.error}", "debug_usage": usage}

        value = parsed.value
        try:
            confidence = max(0.0, min(1.0, float(value.get("confidence"))))
        except (TypeError, ValueError):
            confidence = 0.0

        identification = {
            "id": str(value.get("id") or "").strip() or None,
            "category": value.get("category"),
            "confidence": confidence,
            "source": "ai",
        }
        logger.info("identify_collectible: %s (%.2f)", identification["id"], confidence)
        return {
            "collectible": CollectibleRecord(identification=identification, review={"status": "pending"}),
            "debug_usage": usage,
        }


class ValuateCollectibleNode:
    """LangGraph node: web search for prices, then one synthesis call."""

    def __init__(
        self,
        llm: LlmClient,
        search: Optional[WebSearchClient],
        model: str = "gpt-4o",
        max_tokens: int = 1024,
    ) -> None:
        self.llm = llm
        self.search = search
        self.model = model
        self.max_tokens = max_tokens

    async def _run_searches(self, queries: Sequence[str]) -> tuple[List[str], List[Dict[str, Any]]]:
        async def one(query: str):
            if self.search is None:
                raise SearchError("web search is not configured")
            return await self.search.search(query)

        outcomes = await asyncio.gather(*(one(q) for q in queries), return_exceptions=True)
        blocks: List[str] = []
        snippets: List[Dict[str, Any]] = []
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("valuate_collectible: search %r failed: %s", query, outcome)
                blocks.append(f"Error searching for {query}: {outcome}")
                continue
            blocks.append(format_search_results(query, outcome))
            snippets.extend(r.to_dict() for r in outcome)
        return blocks, snippets

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        collectible = dict(state.get("collectible") or {})
        ident = collectible.get("identification") or {}
        collectible_id = sanitize_collectible_id(ident.get("id"))
        if not collectible_id:
            logger.info("valuate_collectible: no identification, skipping")
            return {}

        blocks, snippets = await self._run_searches(build_search_queries(collectible_id))
        model = pick_model(state.get("model_overrides"), "collectibleModel", self.model)
        try:
            reply = await self.llm.complete(
                get_valuate_system_message(),
                build_valuate_user_message(collectible_id, str(ident.get("category") or "unknown"), "\n\n".join(blocks)),
                model=model,
                max_tokens=self.max_tokens,
            )
        except LlmError as e:
            logger.error("valuate_collectible: model call failed: %s", e)
            return {"error": f"valuate_collectible: {e}"}

        usage = [usage_entry("valuate_collectible", reply.model, reply.usage, reply.duration_ms,
                             notes=f"{len(snippets)} search result(s)")]
        parsed = parse_json_response(reply.text)
        if not parsed.ok:
            logger.error("valuate_collectible: unparsable output: %s", parsed.error)
            return {"error": f"valuate_collectible: {parsed.error}", "debug_usage": usage}

        valuation = normalize_valuation(parsed.value)
        logger.info(
            "valuate_collectible: %s-%s %s from %d price point(s)",
            valuation["low"], valuation["high"], valuation["currency"], len(valuation["market_data"]),
        )
        collectible.update(valuation=valuation, search_snippets=snippets)
        return {"collectible": CollectibleRecord(**collectible), "debug_usage": usage}


class DescribeCollectibleNode:
    """LangGraph node: terminal narrative for a collectible; never leaves the description empty."""

    def __init__(self, llm: LlmClient, model: str = "gpt-4o-mini", max_tokens: int = 512) -> None:
        self.llm = llm
        self.model = model
        self.max_tokens = max_tokens

    async def __call__(self, state: Dict[str, Any]) -> Dict[str, Any]:
        collectible = CollectibleRecord(**(state.get("collectible") or {}))
        ident = collectible.get("identification") or {}
        valuation = collectible.get("valuation") or {}
        snippets = collectible.get("search_snippets") or []
        classification = state.get("classification") or "collectible"
        model = pick_model(state.get("model_overrides"), "describeModel", self.model)

        usage: List[Dict[str, Any]] = []
        generated: Dict[str, Any] = {}
        try:
            reply = await self.llm.complete(
                get_describe_system_message(),
                build_describe_user_message(ident, valuation, snippets),
                model=model,
                max_tokens=self.max_tokens,
                temperature=0.7,
            )
            usage.append(usage_entry("describe_collectible", reply.model, reply.usage, reply.duration_ms))
            parsed = parse_json_response(reply.text)
            if parsed.ok:
                generated = parsed.value
            else:
                logger.warning("describe_collectible: unparsable output, using template (%s)", parsed.error)
        except LlmError as e:
            logger.warning("describe_collectible: model call failed, using template: %s", e)

        description = str(generated.get("description") or "").strip() or describe_fallback(collectible)
        caption = str(generated.get("caption") or "").strip() or (ident.get("id") or "Collectible item")
        keywords = keywords_to_string(generated.get("keywords")) or ", ".join(
            k for k in (classification, ident.get("category"), ident.get("id")) if k
        )
        price_sources = generated.get("priceSources") if isinstance(generated.get("priceSources"), list) else []

        insights = {
            "identification": ident,
            "review": collectible.get("review") or {"status": "pending"},
            "valuation": valuation or None,
            "price_sources": price_sources,
            "search_results": snippets,
        }
        return {
            "final_result": FinalResult(
                caption=caption,
                description=description,
                keywords=keywords,
                classification=classification,
                collectible_insights=insights,
            ),
            "debug_usage": usage,
        }
