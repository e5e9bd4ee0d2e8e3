"""Orchestrator for automated article generation.

One invocation walks these steps in order:
- auth (manual triggers only: bearer token + admin role)
- due check (skipped when forced)
- topic selection
- article generation
- reconciliation (heading ids and table of contents)
- images (never fatal)
- persistence
- schedule advance

Anything that fails before persistence leaves no trace, so the next tick
retries at the same due time. Collaborators are injected through
``PipelineDeps``; ``build_deps`` wires the file-backed defaults and the OpenAI
client, which is only created once a generative step actually runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from openai import OpenAI

from .auth import require_admin
from .config import Settings, get_settings
from .errors import ArticleNotFound, PersistenceFailure
from .gateway import build_client, generate_image
from .generator import generate_article
from .images import ImagePipeline
from .models import (
    ArticleDraft,
    CatalogEntry,
    Category,
    GeneratedImages,
    ImageSuggestion,
    Schedule,
    TocEntry,
    TopicDecision,
)
from .reconcile import heading_suggestion, reconcile, section_suggestions
from .schedule import DEFAULT_TARGET_LENGTH, advance, is_due
from .storage import (
    ArticleSink,
    ContentStore,
    FileArticleSink,
    FileContentStore,
    FileIdentityProvider,
    FileRoleDirectory,
    FileScheduleRepository,
    IdentityProvider,
    LocalObjectStore,
    RoleDirectory,
    ScheduleRepository,
    storage_root,
)
from .topics import catalog_summary, select_topic

logger = logging.getLogger(__name__)

TopicFn = Callable[[Sequence[str], str, Optional[str]], TopicDecision]
ArticleFn = Callable[
    [TopicDecision, str, Optional[str], Sequence[Category], Sequence[CatalogEntry]],
    ArticleDraft,
]
ImagesFn = Callable[..., GeneratedImages]


# --- Data containers -------------------------------------------------------


@dataclass
class Trigger:
    """How a run was started: cron tick, or an admin with a bearer token."""

    manual: bool = False
    force: bool = False
    token: Optional[str] = None


@dataclass
class RunResult:
    generated: bool
    message: str
    article: Optional[Dict[str, Any]] = None
    topic: Optional[TopicDecision] = None
    next_run_at: Optional[datetime] = None
    images: Optional[GeneratedImages] = None

    def to_wire(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"generated": self.generated, "message": self.message}
        if self.generated:
            body["success"] = True
        if self.article is not None:
            body["article"] = self.article
        if self.topic is not None:
            body["topic"] = self.topic.to_wire()
        if self.generated:
            body["nextRunAt"] = self.next_run_at.isoformat() if self.next_run_at else None
        elif self.next_run_at is not None:
            body["nextRun"] = self.next_run_at.isoformat()
        if self.images is not None:
            body["images"] = {
                "featuredImageUrl": self.images.featured_image_url,
                "contentImages": [img.to_wire() for img in self.images.content_images],
            }
        return body


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineDeps:
    schedules: ScheduleRepository
    content: ContentStore
    sink: ArticleSink
    identities: IdentityProvider
    roles: RoleDirectory
    topic_fn: TopicFn
    article_fn: ArticleFn
    images_fn: ImagesFn
    settings: Settings = field(default_factory=get_settings)
    clock: Callable[[], datetime] = _utcnow


def build_deps(
    settings: Optional[Settings] = None, client: Optional[OpenAI] = None
) -> PipelineDeps:
    """Wire file-backed stores and model-backed steps from settings."""
    settings = settings or get_settings()
    root = storage_root(settings)
    clients: List[OpenAI] = [client] if client is not None else []

    def _client() -> OpenAI:
        if not clients:
            clients.append(build_client(settings))
        return clients[0]

    def topic_fn(titles, catalog_text, steering):
        return select_topic(titles, catalog_text, steering, client=_client(), settings=settings)

    def article_fn(topic, target_length, steering, categories, entities):
        return generate_article(
            topic,
            target_length,
            steering,
            categories,
            entities,
            client=_client(),
            settings=settings,
        )

    store = LocalObjectStore(root, settings.image_bucket, settings.public_base_url)

    def images_fn(title, summary, suggestions, regenerate_featured=True, regenerate_sections=None):
        pipeline = ImagePipeline(
            lambda prompt: generate_image(_client(), model=settings.image_model, prompt=prompt),
            store,
            settings=settings,
        )
        return pipeline.generate_images(
            title,
            summary,
            suggestions,
            regenerate_featured=regenerate_featured,
            regenerate_sections=regenerate_sections,
        )

    return PipelineDeps(
        schedules=FileScheduleRepository(root),
        content=FileContentStore(root),
        sink=FileArticleSink(root, max_content_images=settings.max_section_images),
        identities=FileIdentityProvider(root),
        roles=FileRoleDirectory(root),
        topic_fn=topic_fn,
        article_fn=article_fn,
        images_fn=images_fn,
        settings=settings,
    )


# --- Steps ----------------------------------------------------------------


def build_article_record(
    draft: ArticleDraft, images: GeneratedImages, published_at: datetime, settings: Settings
) -> Dict[str, Any]:
    """Flatten the draft and its images into the persisted article shape."""
    record = draft.to_wire()
    record.update(
        {
            "featuredImageUrl": images.featured_image_url,
            "contentImages": [img.to_wire() for img in images.content_images],
            "publishedDate": published_at.isoformat(),
            "authorName": settings.author_name,
            "authorRole": settings.author_role,
        }
    )
    return record


def _ensure_category(deps: PipelineDeps, draft: ArticleDraft) -> None:
    if not draft.is_new_category:
        return
    logger.info("Creating new category: %s (%s)", draft.category, draft.category_label)
    try:
        deps.sink.insert_category(draft.category, draft.category_label)
    except Exception as exc:
        # Duplicates are expected when two runs propose the same category.
        logger.warning("Error inserting new category %s: %s", draft.category, exc)


def _generate_images(
    deps: PipelineDeps, draft: ArticleDraft, suggestions: Sequence[ImageSuggestion]
) -> GeneratedImages:
    try:
        return deps.images_fn(draft.title, draft.summary, suggestions, True)
    except Exception as exc:
        logger.error("Image generation failed, publishing without images: %s", exc)
        return GeneratedImages()


def _advance_schedule(deps: PipelineDeps, schedule: Schedule) -> Optional[datetime]:
    step = advance(schedule, deps.clock())
    try:
        deps.schedules.save(schedule.id, step.last_run_at, step.next_run_at)
    except PersistenceFailure as exc:
        logger.error("Article stored but schedule %s was not advanced: %s", schedule.id, exc)
        return None
    logger.info("Schedule %s advanced; next run at %s", schedule.id, step.next_run_at.isoformat())
    return step.next_run_at


def run_pipeline(trigger: Trigger, deps: PipelineDeps) -> RunResult:
    """
    Run one generation attempt.

    Raises Unauthorized / Forbidden before touching anything, and
    UpstreamGenerationFailure / PersistenceFailure for fatal errors; in all
    those cases the schedule is left as it was.
    """
    settings = deps.settings
    if trigger.manual:
        require_admin(trigger.token, deps.identities, deps.roles, role=settings.admin_role)
    force = trigger.force
    logger.info("Auto-generate triggered. Manual: %s, Force: %s", trigger.manual, force)

    record = deps.schedules.load()
    schedule = record if record is not None and record.active else None

    if schedule is None and not force:
        logger.info("No active schedule found and not force-generating")
        return RunResult(generated=False, message="No active schedule")

    if not is_due(schedule, deps.clock(), force):
        logger.info("Not time yet. Next run: %s", schedule.next_run_at)
        return RunResult(
            generated=False, message="Not scheduled yet", next_run_at=schedule.next_run_at
        )

    steering = schedule.additional_context if schedule else None
    target_length = schedule.target_length if schedule else DEFAULT_TARGET_LENGTH

    titles = deps.content.recent_titles(settings.existing_titles_limit)
    catalog = deps.content.catalog()
    categories = deps.content.categories()

    topic = deps.topic_fn(
        titles, catalog_summary(catalog, settings.catalog_prompt_limit), steering
    )
    draft = deps.article_fn(topic, target_length, steering, categories, catalog)

    synced = reconcile(draft.content, draft.table_of_contents)
    draft = draft.model_copy(
        update={"content": synced.content, "table_of_contents": synced.table_of_contents}
    )
    _ensure_category(deps, draft)

    suggestions = section_suggestions(
        draft.table_of_contents,
        draft.image_suggestions,
        article_title=draft.title,
        limit=settings.max_section_images,
    )
    images = _generate_images(deps, draft, suggestions)

    article_id = deps.sink.insert(build_article_record(draft, images, deps.clock(), settings))
    logger.info("Article saved: %s (%s)", draft.title, article_id)

    next_run_at = _advance_schedule(deps, schedule) if schedule else None
    return RunResult(
        generated=True,
        message="Article generated",
        article={
            "id": article_id,
            "title": draft.title,
            "slug": draft.slug,
            "category": draft.category,
        },
        topic=topic,
        next_run_at=next_run_at,
        images=images,
    )


def _stored_sections(record: Dict[str, Any], limit: int) -> List[ImageSuggestion]:
    """
    Sections of a stored article that may be re-illustrated.

    Already illustrated sections come first, then the stored suggestions; only
    ids present in the table of contents count. With neither, the top-level
    headings are used.
    """
    toc = [TocEntry.model_validate(entry) for entry in record.get("tableOfContents") or []]
    entries = {entry.id: entry for entry in toc}
    stored: Dict[str, ImageSuggestion] = {}
    for raw in record.get("imageSuggestions") or []:
        suggestion = ImageSuggestion.model_validate(raw)
        if suggestion.section_id in entries:
            stored.setdefault(suggestion.section_id, suggestion)

    picked: Dict[str, ImageSuggestion] = {}
    for image in record.get("contentImages") or []:
        section_id = image.get("sectionId")
        if section_id in entries and section_id not in picked:
            picked[section_id] = stored.get(section_id) or heading_suggestion(
                entries[section_id], record["title"]
            )
    for section_id, suggestion in stored.items():
        picked.setdefault(section_id, suggestion)

    if picked:
        return list(picked.values())[:limit]
    return section_suggestions(toc, [], article_title=record["title"], limit=limit)


def regenerate_images(
    article_id: str,
    deps: PipelineDeps,
    *,
    regenerate_featured: bool = True,
    regenerate_sections: Optional[Sequence[str]] = None,
) -> RunResult:
    """Re-run the image step for a stored article and merge the new URLs into it."""
    record = deps.sink.get(article_id)
    if record is None:
        raise ArticleNotFound(f"Article {article_id} not found.")
    suggestions = _stored_sections(record, deps.settings.max_section_images)
    images = deps.images_fn(
        record["title"],
        record.get("summary") or "",
        suggestions,
        regenerate_featured,
        regenerate_sections,
    )
    deps.sink.update_images(
        article_id,
        featured_image_url=images.featured_image_url,
        content_images=images.content_images,
    )
    return RunResult(
        generated=bool(images.featured_image_url or images.content_images),
        message="Images regenerated",
        article={"id": article_id, "title": record["title"], "slug": record.get("slug")},
        images=images,
    )
