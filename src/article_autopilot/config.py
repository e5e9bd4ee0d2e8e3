"""Configuration helpers for the article autopilot."""

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    ai_api_key: str | None = Field(
        None, validation_alias=AliasChoices("AI_API_KEY", "OPENAI_API_KEY")
    )
    ai_base_url: str | None = Field(
        None,
        alias="AI_BASE_URL",
        description="OpenAI-compatible gateway URL; leave unset for the OpenAI default.",
    )
    text_model: str = Field(
        "google/gemini-3-flash-preview",
        description="Model used for topic selection and article generation.",
    )
    image_model: str = Field(
        "google/gemini-2.5-flash-image-preview",
        description="Model that returns images through the chat-completions endpoint.",
    )
    text_max_attempts: int = Field(
        1,
        description="Attempts per text-model call; 1 means failures are surfaced immediately.",
    )
    featured_image_attempts: int = Field(3, description="Attempts for the featured image.")
    section_image_attempts: int = Field(2, description="Attempts for each section image.")
    image_backoff_seconds: float = Field(
        2.0, description="Linear backoff unit; the wait before retry n is n times this."
    )
    max_section_images: int = Field(3, description="Upper bound on section images per article.")
    image_workers: int = Field(
        1, description="Section images rendered in parallel; 1 keeps them sequential."
    )
    existing_titles_limit: int = Field(
        50, description="Most recent article titles passed to the topic selector."
    )
    catalog_prompt_limit: int = Field(
        30, description="Catalog entries listed in the topic prompt."
    )
    data_dir: Path = Field(
        Path("data"),
        alias="AUTOPILOT_DATA_DIR",
        description="Root for schedule, article, category, role and image files.",
    )
    public_base_url: str = Field(
        "http://localhost:8000/storage",
        description="Prefix used to build public URLs for uploaded images.",
    )
    image_bucket: str = Field("article-images")
    author_name: str = Field("AI Editorial")
    author_role: str = Field("Auto-Generated")
    admin_role: str = Field("admin", description="Role required for manual triggers.")
    cron_secret: str | None = Field(
        None,
        alias="CRON_SECRET",
        description="When set, scheduled triggers must send it as X-Cron-Secret.",
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL")


def get_settings() -> Settings:
    """Return a settings instance read from the current environment."""
    return Settings()
