import json

import pytest

from article_autopilot.errors import RateLimited, UpstreamGenerationFailure
from article_autopilot.generator import TOOL_NAME, generate_article, slugify
from article_autopilot.models import CatalogEntry, Category, TopicDecision

TOPIC = TopicDecision(keyword="peptide storage", title="How to Store Peptides")
CATEGORIES = [Category(value="safety", label="Safety"), Category(value="handling", label="Handling")]
CATALOG = [CatalogEntry(name="BPC-157", slug="bpc-157")]


def article_arguments(**overrides):
    base = {
        "title": "How to Store Research Peptides: A Complete Guide",
        "summary": "Storage basics.",
        "category": "handling",
        "categoryLabel": "Handling",
        "isNewCategory": False,
        "tableOfContents": [{"id": "intro", "title": "Introduction", "level": 2}],
        "content": [
            {"type": "heading", "id": "intro", "level": 2, "text": "Introduction"},
            {"type": "paragraph", "text": "Keep peptides cold."},
            {"type": "callout", "variant": "warning", "text": "Avoid freeze-thaw."},
        ],
        "readTime": 6.4,
        "relatedPeptides": ["BPC-157"],
        "matchedPeptideSlugs": ["bpc-157"],
    }
    base.update(overrides)
    return base


def tool_reply(reply, arguments, seen=None):
    message = {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": TOOL_NAME, "arguments": json.dumps(arguments)},
            }
        ],
    }
    return reply(message, seen=seen)


def test_slugify():
    assert slugify("How to Store Research Peptides: A Guide") == "how-to-store-research-peptides-a-guide"
    assert slugify("  BPC-157 & TB-500  ") == "bpc-157--tb-500"
    assert len(slugify("word " * 40)) == 100


def test_generate_article_builds_draft(make_openai, reply, settings):
    seen = []
    client = make_openai(tool_reply(reply, article_arguments(), seen))

    draft = generate_article(
        TOPIC, "long", "storage focus", CATEGORIES, CATALOG, client=client, settings=settings
    )

    assert draft.slug == "how-to-store-research-peptides-a-complete-guide"
    assert draft.category == "handling"
    assert draft.is_new_category is False
    assert draft.read_time == 6
    assert draft.matched_peptide_slugs == ["bpc-157"]
    assert draft.content[2].variant == "warning"
    system, user = seen[0]["messages"]
    assert "2000-2500" in system["content"]
    assert '"handling" (Handling)' in system["content"]
    assert "bpc-157" in system["content"]
    assert "Additional context: storage focus" in user["content"]
    assert '"peptide storage"' in user["content"]


def test_unknown_category_is_flagged_new(make_openai, reply, settings):
    arguments = article_arguments(category="reconstitution", categoryLabel="Reconstitution")
    client = make_openai(tool_reply(reply, arguments))

    draft = generate_article(TOPIC, None, None, CATEGORIES, CATALOG, client=client, settings=settings)

    assert draft.is_new_category is True
    assert draft.category_label == "Reconstitution"


def test_default_categories_when_none_exist(make_openai, reply, settings):
    seen = []
    client = make_openai(tool_reply(reply, article_arguments(category="safety"), seen))

    draft = generate_article(TOPIC, None, None, [], [], client=client, settings=settings)

    assert draft.is_new_category is False
    assert '"sourcing" (Sourcing)' in seen[0]["messages"][0]["content"]


def test_image_suggestions_are_kept(make_openai, reply, settings):
    arguments = article_arguments(
        imageSuggestions=[
            {"sectionId": "intro", "sectionTitle": "Introduction", "imagePrompt": "vials in a fridge"}
        ]
    )
    client = make_openai(tool_reply(reply, arguments))

    draft = generate_article(TOPIC, None, None, CATEGORIES, CATALOG, client=client, settings=settings)

    assert draft.image_suggestions[0].section_id == "intro"
    assert draft.image_suggestions[0].image_prompt == "vials in a fridge"


def test_invalid_arguments_raise(make_openai, reply, settings):
    arguments = article_arguments()
    del arguments["content"]
    client = make_openai(tool_reply(reply, arguments))

    with pytest.raises(UpstreamGenerationFailure, match="Invalid article response"):
        generate_article(TOPIC, None, None, CATEGORIES, CATALOG, client=client, settings=settings)


def test_rate_limit_propagates(make_openai, reply, settings):
    client = make_openai(reply(status_code=429))

    with pytest.raises(RateLimited):
        generate_article(TOPIC, None, None, CATEGORIES, CATALOG, client=client, settings=settings)
