"""Topic selector: one JSON-mode model call that proposes a fresh article topic."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from openai import OpenAI

from .config import Settings, get_settings
from .errors import UpstreamGenerationFailure
from .gateway import complete_json, run_text_call
from .models import CatalogEntry, TopicDecision
from .schema import TOPIC_SCHEMA, validate_payload

logger = logging.getLogger(__name__)

MAX_EXISTING_TITLES = 50


def catalog_summary(catalog: Iterable[CatalogEntry], limit: int = 30) -> str:
    """Render catalog entries as ``name (category)`` for the topic prompt."""
    parts: List[str] = []
    for entry in list(catalog)[:limit]:
        parts.append(f"{entry.name} ({entry.category})" if entry.category else entry.name)
    return ", ".join(parts)


def build_topic_prompt(
    existing_titles: Sequence[str],
    catalog_text: str,
    steering_context: Optional[str] = None,
) -> str:
    titles = "\n".join(t.lower() for t in existing_titles[:MAX_EXISTING_TITLES])
    context_line = f"Additional context: {steering_context}" if steering_context else ""
    return f"""You are an SEO expert for a research peptide information website.

Existing articles (DO NOT DUPLICATE these topics):
{titles}

Available peptides in our database:
{catalog_text}

Generate a NEW, unique SEO-valuable topic for a research peptide article. The topic should:
1. NOT duplicate any existing article topics
2. Target relevant keywords researchers search for
3. Be educational and scientific (not promotional)
4. Focus on research applications, mechanisms, or safety
5. Be specific enough to provide value

{context_line}

Return ONLY a JSON object with these fields:
{{
  "keyword": "main SEO keyword/keyphrase",
  "title": "suggested article title",
  "reasoning": "why this topic is SEO-valuable"
}}"""


def select_topic(
    existing_titles: Sequence[str],
    catalog_text: str,
    steering_context: Optional[str] = None,
    *,
    client: OpenAI,
    settings: Optional[Settings] = None,
) -> TopicDecision:
    """
    Ask the text model for one new topic.

    Uniqueness against ``existing_titles`` is requested in the prompt only;
    the reply is not re-checked. Any gateway error or malformed reply raises
    UpstreamGenerationFailure.
    """
    settings = settings or get_settings()
    prompt = build_topic_prompt(existing_titles, catalog_text, steering_context)
    data = run_text_call(
        lambda: complete_json(
            client,
            model=settings.text_model,
            messages=[{"role": "user", "content": prompt}],
            step="topic",
        ),
        settings=settings,
        label="topic selection",
    )
    try:
        validate_payload(data, TOPIC_SCHEMA)
    except ValueError as exc:
        raise UpstreamGenerationFailure(f"Invalid topic response format: {exc}") from exc
    topic = TopicDecision(
        keyword=data["keyword"].strip(),
        title=data["title"].strip(),
        reasoning=str(data.get("reasoning") or "").strip(),
    )
    logger.info("Generated topic: %s (%s)", topic.title, topic.keyword)
    return topic
