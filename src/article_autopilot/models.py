"""Data models for the article generation pipeline."""

import re
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


class _WireModel(BaseModel):
    """camelCase on the wire and on disk, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Schedule(_WireModel):
    """Recurrence configuration plus due-date bookkeeping for automatic runs."""

    id: str
    active: bool = Field(False, description="Automatic runs happen only while active.")
    frequency: Literal["daily", "weekly"] = "weekly"
    day_of_week: Optional[int] = Field(
        None, ge=0, le=6, description="0=Sunday; required for weekly, ignored for daily."
    )
    time_of_day: str = Field("09:00", description="HH:MM in UTC.")
    target_length: Literal["short", "standard", "long"] = "standard"
    additional_context: Optional[str] = Field(
        None, description="Free-text steering passed to both generation prompts."
    )
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None

    @field_validator("time_of_day")
    @classmethod
    def _normalize_time_of_day(cls, value: str) -> str:
        match = _TIME_OF_DAY.match(value.strip())
        if not match:
            raise ValueError("time_of_day must be HH:MM (24h).")
        return f"{match.group(1)}:{match.group(2)}"

    @field_validator("last_run_at", "next_run_at")
    @classmethod
    def _normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @field_validator("additional_context")
    @classmethod
    def _blank_context_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def _check_day_of_week(self) -> "Schedule":
        if self.frequency == "daily":
            self.day_of_week = None
        elif self.day_of_week is None:
            raise ValueError("day_of_week is required for weekly schedules.")
        return self

    @property
    def hour_minute(self) -> tuple[int, int]:
        hours, minutes = self.time_of_day.split(":")
        return int(hours), int(minutes)


class TopicDecision(_WireModel):
    """Keyword/title/reasoning picked for a single run; never persisted."""

    keyword: str
    title: str
    reasoning: str = ""


class TocEntry(_WireModel):
    id: str
    title: str
    level: int = 2


class ContentBlock(_WireModel):
    """One typed unit of article content.

    ``type`` is the tag: headings use ``id``/``level``/``text``, paragraphs and
    callouts use ``text`` (callouts also ``variant``), lists use ``items``.
    """

    type: Literal["heading", "paragraph", "list", "callout"]
    id: Optional[str] = None
    level: Optional[int] = None
    text: Optional[str] = None
    items: Optional[List[str]] = None
    variant: Optional[Literal["info", "warning", "note"]] = None


class ImageSuggestion(_WireModel):
    section_id: str
    section_title: str
    image_prompt: str = ""


class ArticleDraft(_WireModel):
    """Structured article content produced by the generator, before persistence."""

    title: str
    summary: str
    slug: str
    category: str
    category_label: str
    is_new_category: bool = False
    table_of_contents: List[TocEntry] = Field(default_factory=list)
    content: List[ContentBlock] = Field(default_factory=list)
    read_time: int = Field(5, description="Estimated reading time in minutes.")
    related_peptides: List[str] = Field(default_factory=list)
    matched_peptide_slugs: List[str] = Field(default_factory=list)
    image_suggestions: List[ImageSuggestion] = Field(default_factory=list)

    @field_validator("read_time", mode="before")
    @classmethod
    def _round_read_time(cls, value):
        # Models report minutes as floats ("6.5").
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return max(1, round(value))
        return value


class ContentImage(_WireModel):
    section_id: str
    image_url: str
    alt_text: str


class GeneratedImages(_WireModel):
    featured_image_url: Optional[str] = None
    content_images: List[ContentImage] = Field(default_factory=list)


class Category(_WireModel):
    value: str
    label: str
    description: Optional[str] = None


class CatalogEntry(_WireModel):
    """A canonical entity (product) that articles may link to."""

    name: str
    slug: str
    category: Optional[str] = None
    description: Optional[str] = None
    synonyms: List[str] = Field(default_factory=list)
