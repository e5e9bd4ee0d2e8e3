from datetime import datetime, timezone

import pytest

from article_autopilot.errors import (
    ArticleNotFound,
    DuplicateCategory,
    Forbidden,
    PersistenceFailure,
    QuotaExhausted,
    Unauthorized,
)
from article_autopilot.models import (
    ArticleDraft,
    ContentBlock,
    ContentImage,
    GeneratedImages,
    Schedule,
    TocEntry,
    TopicDecision,
)
from article_autopilot.pipeline import (
    PipelineDeps,
    Trigger,
    build_article_record,
    regenerate_images,
    run_pipeline,
)

NOW = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)


class FakeSchedules:
    def __init__(self, schedule=None, fail_save=False):
        self.schedule = schedule
        self.fail_save = fail_save
        self.saves = []

    def load(self):
        return self.schedule

    def save(self, schedule_id, last_run_at, next_run_at):
        if self.fail_save:
            raise PersistenceFailure("disk full")
        self.saves.append((schedule_id, last_run_at, next_run_at))


class FakeContent:
    def recent_titles(self, limit=50):
        return ["Existing Article"]

    def categories(self):
        return []

    def catalog(self):
        return []


class FakeSink:
    def __init__(self, fail_insert=False, fail_category=False):
        self.fail_insert = fail_insert
        self.fail_category = fail_category
        self.inserted = []
        self.categories = []
        self.image_updates = []
        self.records = {}

    def insert(self, record):
        if self.fail_insert:
            raise PersistenceFailure("Could not store article")
        self.inserted.append(record)
        return f"article-{len(self.inserted)}"

    def insert_category(self, value, label):
        if self.fail_category:
            raise DuplicateCategory(f"Category {value!r} already exists.")
        self.categories.append((value, label))

    def get(self, article_id):
        return self.records.get(article_id)

    def update_images(self, article_id, *, featured_image_url=None, content_images=None):
        self.image_updates.append((article_id, featured_image_url, content_images))
        return self.records[article_id]


class FakeIdentities:
    def resolve(self, token):
        return {"admin-token": "admin-user", "user-token": "plain-user"}.get(token)


class FakeRoles:
    def has_role(self, user_id, role):
        return user_id == "admin-user" and role == "admin"


def make_draft(**overrides):
    base = dict(
        title="How to Store Peptides",
        summary="Storage basics.",
        slug="how-to-store-peptides",
        category="handling",
        category_label="Handling",
        table_of_contents=[TocEntry(id="intro", title="Introduction", level=1)],
        content=[
            ContentBlock(type="heading", text="Introduction"),
            ContentBlock(type="paragraph", text="Keep cold."),
        ],
        read_time=6,
    )
    base.update(overrides)
    return ArticleDraft(**base)


class Recorder:
    """Stands in for the model-backed steps and records what they were given."""

    def __init__(self, draft=None, images=None, article_error=None, images_error=None):
        self.draft = draft or make_draft()
        self.images = images or GeneratedImages(featured_image_url="https://cdn/featured.png")
        self.article_error = article_error
        self.images_error = images_error
        self.topic_calls = []
        self.article_calls = []
        self.image_calls = []

    def topic_fn(self, titles, catalog_text, steering):
        self.topic_calls.append((list(titles), catalog_text, steering))
        return TopicDecision(keyword="peptide storage", title="How to Store Peptides")

    def article_fn(self, topic, target_length, steering, categories, entities):
        self.article_calls.append((topic, target_length, steering))
        if self.article_error:
            raise self.article_error
        return self.draft

    def images_fn(self, title, summary, suggestions, regenerate_featured=True, regenerate_sections=None):
        self.image_calls.append((title, list(suggestions), regenerate_featured, regenerate_sections))
        if self.images_error:
            raise self.images_error
        return self.images


def make_schedule(**overrides):
    base = {
        "id": "sched-1",
        "active": True,
        "frequency": "daily",
        "timeOfDay": "09:00",
        "targetLength": "long",
        "additionalContext": "focus on storage",
    }
    base.update(overrides)
    return Schedule.model_validate(base)


def make_deps(settings, recorder, schedules=None, sink=None):
    return PipelineDeps(
        schedules=schedules or FakeSchedules(make_schedule()),
        content=FakeContent(),
        sink=sink or FakeSink(),
        identities=FakeIdentities(),
        roles=FakeRoles(),
        topic_fn=recorder.topic_fn,
        article_fn=recorder.article_fn,
        images_fn=recorder.images_fn,
        settings=settings,
        clock=lambda: NOW,
    )


def test_scheduled_run_generates_and_advances(settings):
    recorder = Recorder()
    schedules = FakeSchedules(make_schedule())
    sink = FakeSink()

    result = run_pipeline(Trigger(), make_deps(settings, recorder, schedules, sink))

    assert result.generated
    assert result.message == "Article generated"
    assert result.article["id"] == "article-1"
    assert schedules.saves == [
        ("sched-1", NOW, datetime(2025, 1, 11, 9, 0, tzinfo=timezone.utc))
    ]
    assert recorder.topic_calls[0][2] == "focus on storage"
    assert recorder.article_calls[0][1:] == ("long", "focus on storage")

    stored = sink.inserted[0]
    assert stored["featuredImageUrl"] == "https://cdn/featured.png"
    assert stored["contentImages"] == []
    assert stored["authorName"] == settings.author_name
    assert stored["publishedDate"] == NOW.isoformat()
    # Heading ids come from the ToC and the ToC is rebuilt from headings.
    assert stored["content"][0]["id"] == "intro"
    assert stored["tableOfContents"] == [{"id": "intro", "title": "Introduction", "level": 2}]

    wire = result.to_wire()
    assert wire["success"] is True
    assert wire["nextRunAt"] == "2025-01-11T09:00:00+00:00"
    assert wire["topic"]["keyword"] == "peptide storage"


def test_image_fallback_uses_top_level_headings(settings):
    recorder = Recorder()
    run_pipeline(Trigger(), make_deps(settings, recorder))

    _, suggestions, featured, sections = recorder.image_calls[0]
    assert [s.section_id for s in suggestions] == ["intro"]
    assert featured is True
    assert sections is None


def test_no_active_schedule(settings):
    recorder = Recorder()
    for schedules in (FakeSchedules(None), FakeSchedules(make_schedule(active=False))):
        result = run_pipeline(Trigger(), make_deps(settings, recorder, schedules))
        assert not result.generated
        assert result.message == "No active schedule"
        assert schedules.saves == []
    assert recorder.topic_calls == []


def test_not_due_reports_next_run(settings):
    next_run = datetime(2025, 1, 12, 9, 0, tzinfo=timezone.utc)
    schedules = FakeSchedules(make_schedule(nextRunAt=next_run))
    recorder = Recorder()

    result = run_pipeline(Trigger(), make_deps(settings, recorder, schedules))

    assert not result.generated
    assert result.message == "Not scheduled yet"
    assert result.to_wire()["nextRun"] == "2025-01-12T09:00:00+00:00"
    assert recorder.topic_calls == []


def test_forced_manual_run_without_schedule(settings):
    recorder = Recorder()
    schedules = FakeSchedules(None)
    sink = FakeSink()

    result = run_pipeline(
        Trigger(manual=True, force=True, token="admin-token"),
        make_deps(settings, recorder, schedules, sink),
    )

    assert result.generated
    assert result.next_run_at is None
    assert len(sink.inserted) == 1
    assert schedules.saves == []
    assert recorder.article_calls[0][1:] == ("standard", None)


def test_forced_run_on_inactive_schedule_does_not_advance(settings):
    schedules = FakeSchedules(make_schedule(active=False))

    result = run_pipeline(
        Trigger(manual=True, force=True, token="admin-token"),
        make_deps(settings, Recorder(), schedules),
    )

    assert result.generated
    assert schedules.saves == []


def test_forced_run_ignores_due_time(settings):
    schedules = FakeSchedules(make_schedule(nextRunAt="2030-01-01T00:00:00Z"))

    result = run_pipeline(
        Trigger(manual=True, force=True, token="admin-token"),
        make_deps(settings, Recorder(), schedules),
    )

    assert result.generated
    assert len(schedules.saves) == 1


@pytest.mark.parametrize(
    "token, error", [(None, Unauthorized), ("bogus", Unauthorized), ("user-token", Forbidden)]
)
def test_manual_run_requires_admin(settings, token, error):
    recorder = Recorder()
    schedules = FakeSchedules(make_schedule())
    sink = FakeSink()

    with pytest.raises(error):
        run_pipeline(
            Trigger(manual=True, force=True, token=token),
            make_deps(settings, recorder, schedules, sink),
        )

    assert sink.inserted == []
    assert schedules.saves == []
    assert recorder.topic_calls == []


def test_article_failure_leaves_schedule_untouched(settings):
    recorder = Recorder(article_error=QuotaExhausted("AI credits exhausted."))
    schedules = FakeSchedules(make_schedule())
    sink = FakeSink()

    with pytest.raises(QuotaExhausted):
        run_pipeline(Trigger(), make_deps(settings, recorder, schedules, sink))

    assert sink.inserted == []
    assert schedules.saves == []


def test_persistence_failure_leaves_schedule_untouched(settings):
    schedules = FakeSchedules(make_schedule())

    with pytest.raises(PersistenceFailure):
        run_pipeline(
            Trigger(), make_deps(settings, Recorder(), schedules, FakeSink(fail_insert=True))
        )

    assert schedules.saves == []


def test_missing_images_still_publish(settings):
    recorder = Recorder(images=GeneratedImages())
    sink = FakeSink()

    result = run_pipeline(Trigger(), make_deps(settings, recorder, sink=sink))

    assert result.generated
    assert sink.inserted[0]["featuredImageUrl"] is None
    assert sink.inserted[0]["contentImages"] == []


def test_image_step_crash_still_publishes(settings):
    recorder = Recorder(images_error=RuntimeError("storage offline"))
    sink = FakeSink()

    result = run_pipeline(Trigger(), make_deps(settings, recorder, sink=sink))

    assert result.generated
    assert sink.inserted[0]["featuredImageUrl"] is None


def test_new_category_is_created_and_duplicates_ignored(settings):
    draft = make_draft(category="reconstitution", category_label="Reconstitution", is_new_category=True)

    sink = FakeSink()
    run_pipeline(Trigger(), make_deps(settings, Recorder(draft=draft), sink=sink))
    assert sink.categories == [("reconstitution", "Reconstitution")]

    failing = FakeSink(fail_category=True)
    result = run_pipeline(Trigger(), make_deps(settings, Recorder(draft=draft), sink=failing))
    assert result.generated
    assert len(failing.inserted) == 1


def test_schedule_save_failure_after_insert_is_reported_not_raised(settings):
    schedules = FakeSchedules(make_schedule(), fail_save=True)
    sink = FakeSink()

    result = run_pipeline(Trigger(), make_deps(settings, Recorder(), schedules, sink))

    assert result.generated
    assert result.next_run_at is None
    assert len(sink.inserted) == 1


def test_build_article_record_shape(settings):
    images = GeneratedImages(
        featured_image_url="https://cdn/f.png",
        content_images=[ContentImage(section_id="intro", image_url="https://cdn/i.png", alt_text="Intro")],
    )
    record = build_article_record(make_draft(), images, NOW, settings)

    assert record["contentImages"] == [
        {"sectionId": "intro", "imageUrl": "https://cdn/i.png", "altText": "Intro"}
    ]
    assert record["readTime"] == 6
    assert record["authorRole"] == settings.author_role


def test_regenerate_images_updates_article(settings):
    recorder = Recorder(
        images=GeneratedImages(
            content_images=[
                ContentImage(section_id="intro", image_url="https://cdn/new.png", alt_text="Intro")
            ]
        )
    )
    sink = FakeSink()
    sink.records["a1"] = {
        "id": "a1",
        "title": "How to Store Peptides",
        "slug": "how-to-store-peptides",
        "summary": "Storage basics.",
        "tableOfContents": [{"id": "intro", "title": "Introduction", "level": 2}],
    }

    result = regenerate_images(
        "a1", make_deps(settings, recorder, sink=sink), regenerate_featured=False, regenerate_sections=["intro"]
    )

    assert result.message == "Images regenerated"
    assert result.generated
    _, suggestions, featured, sections = recorder.image_calls[0]
    assert [s.section_id for s in suggestions] == ["intro"]
    assert featured is False
    assert sections == ["intro"]
    article_id, featured_url, content_images = sink.image_updates[0]
    assert article_id == "a1"
    assert featured_url is None
    assert content_images[0].image_url == "https://cdn/new.png"


def test_regenerate_images_unknown_article(settings):
    with pytest.raises(ArticleNotFound):
        regenerate_images("missing", make_deps(settings, Recorder()))


def stored_article(**overrides):
    base = {
        "id": "x",
        "title": "Peptide Handling",
        "slug": "peptide-handling",
        "summary": "Handling basics.",
        "tableOfContents": [
            {"id": "a", "title": "Overview", "level": 2},
            {"id": "a1", "title": "Cold Chain", "level": 3},
            {"id": "a2", "title": "Light Exposure", "level": 3},
            {"id": "a3", "title": "Moisture", "level": 3},
            {"id": "e", "title": "Storage", "level": 2},
            {"id": "f", "title": "Summary", "level": 2},
        ],
        "imageSuggestions": [
            {"sectionId": "a1", "sectionTitle": "Cold Chain", "imagePrompt": "insulated box"},
            {"sectionId": "a2", "sectionTitle": "Light Exposure", "imagePrompt": "amber vial"},
            {"sectionId": "ghost", "sectionTitle": "Ghost", "imagePrompt": "nothing"},
        ],
        "contentImages": [
            {"sectionId": "a1", "imageUrl": "https://cdn/a1.png", "altText": "Cold Chain"},
            {"sectionId": "a3", "imageUrl": "https://cdn/a3.png", "altText": "Moisture"},
        ],
    }
    base.update(overrides)
    return base


def test_regenerate_images_targets_illustrated_subsections(settings):
    recorder = Recorder(
        images=GeneratedImages(
            content_images=[ContentImage(section_id="a1", image_url="https://cdn/new-a1.png", alt_text="Cold Chain")]
        )
    )
    sink = FakeSink()
    sink.records["x"] = stored_article()

    result = regenerate_images(
        "x", make_deps(settings, recorder, sink=sink), regenerate_featured=False, regenerate_sections=["a1"]
    )

    assert result.generated
    _, suggestions, _, sections = recorder.image_calls[0]
    assert [s.section_id for s in suggestions] == ["a1", "a3", "a2"]
    assert suggestions[0].image_prompt == "insulated box"
    assert "Moisture" in suggestions[1].image_prompt
    assert sections == ["a1"]


def test_regenerate_images_falls_back_to_top_level_headings(settings):
    recorder = Recorder(images=GeneratedImages())
    sink = FakeSink()
    sink.records["x"] = stored_article(imageSuggestions=[], contentImages=[])

    regenerate_images("x", make_deps(settings, recorder, sink=sink))

    _, suggestions, _, _ = recorder.image_calls[0]
    assert [s.section_id for s in suggestions] == ["a", "e", "f"]


def test_forced_run_without_schedule_reports_null_next_run(settings):
    result = run_pipeline(
        Trigger(manual=True, force=True, token="admin-token"),
        make_deps(settings, Recorder(), FakeSchedules(None)),
    )

    wire = result.to_wire()
    assert "nextRunAt" in wire
    assert wire["nextRunAt"] is None
