"""
Article generator: a single forced tool call returning the whole article structure.

The tool arguments are validated against ``schemas/article_tool.json`` before
they are turned into an ArticleDraft, so a malformed reply surfaces as
UpstreamGenerationFailure rather than a stray parsing error.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from openai import OpenAI

from .config import Settings, get_settings
from .errors import UpstreamGenerationFailure
from .gateway import call_tool, run_text_call
from .models import ArticleDraft, CatalogEntry, Category, TopicDecision
from .schedule import target_words
from .schema import ARTICLE_TOOL_SCHEMA, tool_parameters, validate_payload

logger = logging.getLogger(__name__)

TOOL_NAME = "generate_seo_article"
TOOL_DESCRIPTION = (
    "Generate a complete SEO-optimized article with structured content and "
    "automatic category/peptide matching"
)
SLUG_MAX_LENGTH = 100

DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category(value="safety", label="Safety"),
    Category(value="handling", label="Handling"),
    Category(value="pharmacokinetics", label="Pharmacokinetics"),
    Category(value="verification", label="Verification"),
    Category(value="sourcing", label="Sourcing"),
)


def slugify(title: str) -> str:
    """Lowercase, hyphenate whitespace, drop anything outside [a-z0-9-], cap at 100 chars."""
    slug = re.sub(r"\s+", "-", title.lower().strip())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return slug[:SLUG_MAX_LENGTH]


def _system_prompt(
    categories: Sequence[Category], entities: Sequence[CatalogEntry], words: str
) -> str:
    category_text = ", ".join(f'"{c.value}" ({c.label})' for c in categories)
    entity_text = ", ".join(f'"{e.name}" (slug: {e.slug})' for e in entities)
    return f"""You are an expert SEO content writer for a peptide research information website.
Write comprehensive, scientifically accurate educational articles optimized for search engines.

SEO Requirements:
- Include the focus keyword naturally in the title, first paragraph, and 2-3 headings
- Use semantic variations and related terms throughout (1-2% keyword density)
- Write for researchers and scientists (professional but accessible tone)
- Structure content with clear H2/H3 hierarchy for readability
- Include actionable information, bullet lists, and informative callouts
- Aim for featured snippet potential with clear, concise answers
- Keep paragraphs concise (2-4 sentences each)

Content Guidelines:
- 100% original and unique content
- Scientifically accurate information
- Educational tone (not promotional)
- "Research use only" context
- Include practical tips and best practices
- Address common questions about the topic

Category Selection:
- Available categories: {category_text}
- Choose the MOST appropriate category for the article content
- If NO existing category fits well, you may suggest a NEW category (use kebab-case for value)

Peptide Matching:
- Available peptides in our database: {entity_text}
- Identify any peptides mentioned in your content and match them to our database
- Use exact slug values when matching
- Only match peptides that are actually relevant to the content

Images:
- Suggest up to three sections that deserve an illustration, using their heading ids

Target length: {words} words"""


def _user_prompt(topic: TopicDecision, steering_context: Optional[str]) -> str:
    context_line = f"Additional context: {steering_context}" if steering_context else ""
    return f"""Generate a complete SEO-optimized article about: "{topic.keyword}"
Suggested title: "{topic.title}"

{context_line}

Create a comprehensive article with:
1. An engaging, SEO-optimized title including the keyword
2. A meta description (summary) of 150-160 characters
3. Select the best category from available options (or suggest a new one if needed)
4. Well-structured content with headings, paragraphs, lists, and callouts
5. Identify any peptides mentioned and match them to our product database"""


def _draft_from_arguments(
    arguments: Dict[str, Any], categories: Iterable[Category]
) -> ArticleDraft:
    known = {c.value for c in categories}
    category = arguments["category"].strip()
    slug = slugify(arguments["title"]) or slugify(arguments.get("categoryLabel") or "") or "article"
    payload = dict(arguments)
    payload.update(
        {
            "category": category,
            "categoryLabel": (arguments.get("categoryLabel") or "").strip() or category,
            "slug": slug,
            "isNewCategory": bool(arguments.get("isNewCategory")) or category not in known,
            "relatedPeptides": arguments.get("relatedPeptides") or [],
            "matchedPeptideSlugs": arguments.get("matchedPeptideSlugs") or [],
            "imageSuggestions": arguments.get("imageSuggestions") or [],
        }
    )
    return ArticleDraft.model_validate(payload)


def generate_article(
    topic: TopicDecision,
    target_length: Optional[str],
    steering_context: Optional[str],
    categories: Sequence[Category],
    entities: Sequence[CatalogEntry],
    *,
    client: OpenAI,
    settings: Optional[Settings] = None,
) -> ArticleDraft:
    """
    Produce the structured article for ``topic``.

    A category outside ``categories`` is flagged ``is_new_category``; creating it
    is left to the caller. Entity slugs are whatever the model matched, with no
    fuzzy matching applied here.
    """
    settings = settings or get_settings()
    category_list: List[Category] = list(categories) or list(DEFAULT_CATEGORIES)
    messages = [
        {
            "role": "system",
            "content": _system_prompt(category_list, entities, target_words(target_length)),
        },
        {"role": "user", "content": _user_prompt(topic, steering_context)},
    ]
    arguments = run_text_call(
        lambda: call_tool(
            client,
            model=settings.text_model,
            messages=messages,
            tool_name=TOOL_NAME,
            description=TOOL_DESCRIPTION,
            parameters=tool_parameters(ARTICLE_TOOL_SCHEMA),
            step="article",
        ),
        settings=settings,
        label="article generation",
    )
    try:
        validate_payload(arguments, ARTICLE_TOOL_SCHEMA)
        draft = _draft_from_arguments(arguments, category_list)
    except ValueError as exc:
        logger.error("Article arguments rejected: %s", exc)
        raise UpstreamGenerationFailure(f"Invalid article response: {exc}") from exc

    logger.info(
        "Generated article %r (category=%s, new=%s, blocks=%s)",
        draft.title,
        draft.category,
        draft.is_new_category,
        len(draft.content),
    )
    return draft
