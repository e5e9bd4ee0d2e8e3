"""
Image pipeline: featured image plus up to three section images.

Every image goes through ``with_retry``; an image that never arrives, or that
fails to upload, is left out of the result instead of failing the run.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .config import Settings, get_settings
from .errors import ImageGenerationFailure
from .models import ContentImage, GeneratedImages, ImageSuggestion
from .retry import RetryPolicy, RetrySuccess, with_retry
from .storage import ObjectStore

logger = logging.getLogger(__name__)

# prompt -> data URL; raises ImageGenerationFailure (or anything else) on failure.
ImageFn = Callable[[str], str]

DATA_URL_PATTERN = re.compile(r"^data:image/(\w+);base64,(.+)$", re.DOTALL)
FILE_PREFIX_LENGTH = 50

_STYLE_FOOTER = (
    "16:9 aspect ratio. Ultra high resolution.\n"
    "IMPORTANT: No text, no labels, no words - purely visual illustration."
)


@dataclass
class DecodedImage:
    extension: str
    data: bytes

    @property
    def content_type(self) -> str:
        return f"image/{self.extension}"


def featured_prompt(title: str, summary: str) -> str:
    subject = (summary or "")[:100] or "peptide research"
    return (
        f'Create a professional scientific illustration for a research article titled "{title}".\n'
        "Style: Clean, modern, dark slate-900 background (#0f172a) with cyan and electric blue "
        "molecular/scientific accents.\n"
        f"Subject: Abstract visualization of {subject}.\n"
        "High-tech laboratory aesthetic. Professional, clinical, authoritative.\n"
        f"{_STYLE_FOOTER}"
    )


def section_prompt(suggestion: ImageSuggestion) -> str:
    return (
        f'Create a scientific illustration for a section titled "{suggestion.section_title}".\n'
        f"{suggestion.image_prompt}\n"
        "Style: Clean, minimal, dark slate-900 background (#0f172a), cyan/electric blue accents.\n"
        "Professional research/laboratory aesthetic.\n"
        f"{_STYLE_FOOTER}"
    )


def file_prefix(title: str) -> str:
    """Filename-safe prefix derived from the article title."""
    prefix = re.sub(r"[^a-z0-9]", "-", title.lower())
    prefix = re.sub(r"-+", "-", prefix)
    return prefix[:FILE_PREFIX_LENGTH]


def decode_data_url(data_url: str) -> DecodedImage:
    """Split a ``data:image/<ext>;base64,...`` URL into extension and bytes."""
    match = DATA_URL_PATTERN.match(data_url.strip())
    if not match:
        raise ValueError("Invalid base64 image format")
    try:
        data = base64.b64decode(match.group(2), validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 image payload: {exc}") from exc
    return DecodedImage(extension=match.group(1).lower(), data=data)


def _image_retryable(exc: BaseException) -> bool:
    # Parse errors and unexpected exceptions still get another attempt.
    if isinstance(exc, ImageGenerationFailure):
        return exc.retryable
    return True


class ImagePipeline:
    """Generates, uploads and collects article images for one run."""

    def __init__(
        self,
        image_fn: ImageFn,
        store: ObjectStore,
        *,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.image_fn = image_fn
        self.store = store
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.clock = clock

    def _policy(self, attempts: int) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=attempts,
            backoff_seconds=self.settings.image_backoff_seconds,
            retry_on=_image_retryable,
        )

    def _render(self, prompt: str, attempts: int, label: str) -> Optional[str]:
        result = with_retry(
            lambda _attempt: self.image_fn(prompt),
            self._policy(attempts),
            sleep=self.sleep,
            label=label,
        )
        if isinstance(result, RetrySuccess):
            return result.value
        logger.error("%s failed after %s attempt(s): %s", label, result.attempts, result.last_error)
        return None

    def _upload(self, data_url: str, name: str) -> Optional[str]:
        try:
            image = decode_data_url(data_url)
            return self.store.upload(f"{name}.{image.extension}", image.data, image.content_type)
        except Exception as exc:
            logger.error("Upload of %s failed: %s", name, exc)
            return None

    def _section_image(
        self, suggestion: ImageSuggestion, prefix: str, timestamp: int
    ) -> Optional[ContentImage]:
        label = f"section image {suggestion.section_id}"
        data_url = self._render(
            section_prompt(suggestion), self.settings.section_image_attempts, label
        )
        if not data_url:
            return None
        url = self._upload(data_url, f"{prefix}-{suggestion.section_id}-{timestamp}")
        if not url:
            return None
        return ContentImage(
            section_id=suggestion.section_id,
            image_url=url,
            alt_text=f"Illustration for {suggestion.section_title}",
        )

    def generate_images(
        self,
        title: str,
        summary: str,
        section_suggestions: Sequence[ImageSuggestion],
        regenerate_featured: bool = True,
        regenerate_sections: Optional[Sequence[str]] = None,
    ) -> GeneratedImages:
        """
        Produce the featured image (when requested) and section images.

        ``regenerate_sections`` narrows the suggestions to the listed section
        ids; at most ``max_section_images`` of what remains are rendered.
        """
        prefix = file_prefix(title)
        timestamp = int(self.clock() * 1000)
        featured_url: Optional[str] = None

        if regenerate_featured:
            data_url = self._render(
                featured_prompt(title, summary),
                self.settings.featured_image_attempts,
                "featured image",
            )
            if data_url:
                featured_url = self._upload(data_url, f"{prefix}-featured-{timestamp}")
            logger.info("Featured image: %s", "uploaded" if featured_url else "missing")

        sections: List[ImageSuggestion] = list(section_suggestions)
        if regenerate_sections is not None:
            wanted = set(regenerate_sections)
            sections = [s for s in sections if s.section_id in wanted]
        sections = sections[: self.settings.max_section_images]

        if self.settings.image_workers > 1 and len(sections) > 1:
            with ThreadPoolExecutor(max_workers=min(self.settings.image_workers, len(sections))) as pool:
                rendered = list(
                    pool.map(lambda s: self._section_image(s, prefix, timestamp), sections)
                )
        else:
            rendered = [self._section_image(s, prefix, timestamp) for s in sections]

        content_images = [image for image in rendered if image is not None]
        logger.info(
            "Image generation complete: featured=%s, sections=%s/%s",
            bool(featured_url),
            len(content_images),
            len(sections),
        )
        return GeneratedImages(featured_image_url=featured_url, content_images=content_images)
