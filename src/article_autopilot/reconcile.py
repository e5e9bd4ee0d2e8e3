"""Keep heading ids and the table of contents in step; the content blocks win."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from .models import ContentBlock, ImageSuggestion, TocEntry

DEFAULT_HEADING_LEVEL = 2


@dataclass
class ReconciledContent:
    content: List[ContentBlock]
    table_of_contents: List[TocEntry]


def _key(text: str | None) -> str:
    return (text or "").strip().lower()


def reconcile(
    content: Iterable[ContentBlock], table_of_contents: Iterable[TocEntry]
) -> ReconciledContent:
    """
    Patch missing heading ids from the ToC, then rebuild the ToC from the headings.

    A heading without an id borrows the id of the first ToC entry whose title
    matches its text (trimmed, case-insensitive). The incoming ToC is then
    discarded: the result lists every heading that has both an id and text, in
    content order, with level defaulting to 2. Input blocks are not mutated.
    """
    toc_ids: dict[str, str] = {}
    for entry in table_of_contents:
        toc_ids.setdefault(_key(entry.title), entry.id)

    patched: List[ContentBlock] = []
    for block in content:
        if block.type == "heading" and block.text and not block.id:
            toc_id = toc_ids.get(_key(block.text))
            if toc_id:
                block = block.model_copy(update={"id": toc_id})
        patched.append(block)

    rebuilt = [
        TocEntry(id=block.id, title=block.text, level=block.level or DEFAULT_HEADING_LEVEL)
        for block in patched
        if block.type == "heading" and block.id and block.text
    ]
    return ReconciledContent(content=patched, table_of_contents=rebuilt)


def heading_suggestion(entry: TocEntry, article_title: str) -> ImageSuggestion:
    """Generic illustration request for a section the model did not describe."""
    return ImageSuggestion(
        section_id=entry.id,
        section_title=entry.title,
        image_prompt=(
            f"Scientific illustration depicting the concept of {entry.title} "
            f"in the context of {article_title}"
        ),
    )


def section_suggestions(
    table_of_contents: List[TocEntry],
    suggestions: Iterable[ImageSuggestion],
    *,
    article_title: str,
    limit: int = 3,
) -> List[ImageSuggestion]:
    """
    Pick the sections that get an illustration.

    Suggestions pointing at an unknown section id are dropped. With none left,
    the top-level headings of the reconciled ToC are used.
    """
    known_ids = {entry.id for entry in table_of_contents}
    kept = [s for s in suggestions if s.section_id in known_ids]
    if kept:
        return kept[:limit]
    if not table_of_contents:
        return []
    top_level = min(entry.level for entry in table_of_contents)
    return [
        heading_suggestion(entry, article_title)
        for entry in table_of_contents
        if entry.level == top_level
    ][:limit]
