"""
Collaborator interfaces for the pipeline and their file-backed implementations.

Layout under the data directory::

    schedule.json          the single schedule record
    articles.jsonl         one article record per line, newest last
    categories.jsonl       one category per line
    catalog.json           list of catalog entries (read-only here)
    user_roles.jsonl       {"userId": ..., "role": ...} per line
    api_tokens.json        {"<sha256 of bearer token>": "<user id>"}
    <bucket>/...           uploaded images

Writers serialize on a process-local lock per file.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Protocol

from pydantic import ValidationError

from .config import Settings, get_settings
from .errors import ArticleNotFound, DuplicateCategory, PersistenceFailure
from .models import CatalogEntry, Category, ContentImage, Schedule
from .schema import ARTICLE_RECORD_SCHEMA, validate_payload

logger = logging.getLogger(__name__)

_LOCKS: dict[str, Lock] = {}
_LOCKS_GUARD = Lock()


@contextmanager
def locked_path(path: Path) -> Iterator[None]:
    """Serialize writers of a single file within this process."""
    key = str(path.resolve())
    with _LOCKS_GUARD:
        lock = _LOCKS.setdefault(key, Lock())
    with lock:
        yield


# --- Interfaces -----------------------------------------------------------


class ScheduleRepository(Protocol):
    def load(self) -> Optional[Schedule]: ...

    def save(self, schedule_id: str, last_run_at: datetime, next_run_at: datetime) -> None: ...


class ContentStore(Protocol):
    def recent_titles(self, limit: int = 50) -> List[str]: ...

    def categories(self) -> List[Category]: ...

    def catalog(self) -> List[CatalogEntry]: ...


class ArticleSink(Protocol):
    def insert(self, record: Dict[str, Any]) -> str: ...

    def insert_category(self, value: str, label: str) -> None: ...

    def get(self, article_id: str) -> Optional[Dict[str, Any]]: ...

    def update_images(
        self,
        article_id: str,
        *,
        featured_image_url: Optional[str] = None,
        content_images: Optional[List[ContentImage]] = None,
    ) -> Dict[str, Any]: ...


class ObjectStore(Protocol):
    def upload(self, path: str, data: bytes, content_type: str) -> str: ...


class RoleDirectory(Protocol):
    def has_role(self, user_id: str, role: str) -> bool: ...


class IdentityProvider(Protocol):
    def resolve(self, token: str) -> Optional[str]: ...


# --- File helpers ---------------------------------------------------------


def storage_root(settings: Optional[Settings] = None) -> Path:
    """Base directory for all pipeline files (override via AUTOPILOT_DATA_DIR)."""
    settings = settings or get_settings()
    return Path(settings.data_dir).expanduser().resolve()


def _read_jsonl(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    records = []
    for line_no, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError:
            logger.warning("Skipping unreadable line %s in %s", line_no, path)
    return records


def _append_jsonl(path: Path, record: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False))
        f.write("\n")


def _write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(tmp, path)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PersistenceFailure(f"{path.name} is not valid JSON: {exc}") from exc


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# --- File-backed implementations -----------------------------------------


class FileScheduleRepository:
    """Single schedule record stored in ``schedule.json``."""

    def __init__(self, root: Path):
        self.path = Path(root) / "schedule.json"

    def load(self) -> Optional[Schedule]:
        data = _read_json(self.path, None)
        if not data:
            return None
        try:
            return Schedule.model_validate(data)
        except ValidationError as exc:
            raise PersistenceFailure(f"Invalid schedule record: {exc}") from exc

    def put(self, schedule: Schedule) -> None:
        """Replace the whole record (the settings form's job; used by setup and tests)."""
        with locked_path(self.path):
            _write_json_atomic(self.path, schedule.model_dump(mode="json", by_alias=True))

    def save(self, schedule_id: str, last_run_at: datetime, next_run_at: datetime) -> None:
        with locked_path(self.path):
            data = _read_json(self.path, None)
            if not data or data.get("id") != schedule_id:
                raise PersistenceFailure(f"Schedule {schedule_id} not found.")
            data["lastRunAt"] = last_run_at.isoformat()
            data["nextRunAt"] = next_run_at.isoformat()
            _write_json_atomic(self.path, data)


class FileContentStore:
    """Read side: recent article titles, categories and the entity catalog."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def recent_titles(self, limit: int = 50) -> List[str]:
        records = _read_jsonl(self.root / "articles.jsonl")
        titles = [r["title"] for r in reversed(records) if r.get("title")]
        return titles[:limit]

    def categories(self) -> List[Category]:
        return [
            Category.model_validate(r)
            for r in _read_jsonl(self.root / "categories.jsonl")
            if r.get("value")
        ]

    def catalog(self) -> List[CatalogEntry]:
        entries = _read_json(self.root / "catalog.json", [])
        return [CatalogEntry.model_validate(e) for e in entries]


class FileArticleSink:
    """Write side: article and category inserts into JSONL files."""

    def __init__(self, root: Path, max_content_images: int = 3):
        self.articles_path = Path(root) / "articles.jsonl"
        self.categories_path = Path(root) / "categories.jsonl"
        self.max_content_images = max_content_images

    def insert(self, record: Dict[str, Any]) -> str:
        payload = dict(record)
        payload.setdefault("id", os.urandom(16).hex())
        payload.setdefault("createdAt", _now_iso())
        try:
            validate_payload(payload, ARTICLE_RECORD_SCHEMA)
        except ValueError as exc:
            raise PersistenceFailure(f"Article rejected: {exc}") from exc
        try:
            with locked_path(self.articles_path):
                _append_jsonl(self.articles_path, payload)
        except OSError as exc:
            raise PersistenceFailure(f"Could not store article: {exc}") from exc
        return payload["id"]

    def insert_category(self, value: str, label: str) -> None:
        with locked_path(self.categories_path):
            existing = {r.get("value") for r in _read_jsonl(self.categories_path)}
            if value in existing:
                raise DuplicateCategory(f"Category {value!r} already exists.")
            _append_jsonl(
                self.categories_path, {"value": value, "label": label, "createdAt": _now_iso()}
            )

    def get(self, article_id: str) -> Optional[Dict[str, Any]]:
        for record in _read_jsonl(self.articles_path):
            if record.get("id") == article_id:
                return record
        return None

    def update_images(
        self,
        article_id: str,
        *,
        featured_image_url: Optional[str] = None,
        content_images: Optional[List[ContentImage]] = None,
    ) -> Dict[str, Any]:
        """
        Merge new image URLs into a stored article.

        A new featured URL replaces the old one; section images replace entries
        with the same section id. When the merged list exceeds
        ``max_content_images``, untouched entries are dropped first. The result
        must still satisfy the article record schema.
        """
        with locked_path(self.articles_path):
            records = _read_jsonl(self.articles_path)
            target = next((r for r in records if r.get("id") == article_id), None)
            if target is None:
                raise ArticleNotFound(f"Article {article_id} not found.")
            if featured_image_url:
                target["featuredImageUrl"] = featured_image_url
            if content_images:
                updated = {img.section_id: img.to_wire() for img in content_images}
                fresh = set(updated)
                merged = [
                    updated.pop(img.get("sectionId"), img)
                    for img in target.get("contentImages") or []
                ]
                merged.extend(updated.values())
                stale = [i for i, img in enumerate(merged) if img.get("sectionId") not in fresh]
                dropped = set(stale[: max(len(merged) - self.max_content_images, 0)])
                merged = [img for i, img in enumerate(merged) if i not in dropped]
                target["contentImages"] = merged[: self.max_content_images]
            target["updatedAt"] = _now_iso()
            try:
                validate_payload(target, ARTICLE_RECORD_SCHEMA)
            except ValueError as exc:
                raise PersistenceFailure(f"Article {article_id} rejected: {exc}") from exc
            tmp = self.articles_path.with_suffix(".jsonl.tmp")
            tmp.write_text(
                "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in records),
                encoding="utf-8",
            )
            os.replace(tmp, self.articles_path)
        return target


class LocalObjectStore:
    """Bucket directory on local disk served under ``public_base_url``."""

    def __init__(self, root: Path, bucket: str, public_base_url: str):
        self.bucket_dir = Path(root) / bucket
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        target = (self.bucket_dir / path).resolve()
        if self.bucket_dir.resolve() not in target.parents:
            raise PersistenceFailure(f"Refusing to write outside the bucket: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        with locked_path(target):
            # upsert
            target.write_bytes(data)
        logger.debug("Stored %s (%s, %s bytes)", target, content_type, len(data))
        return f"{self.public_base_url}/{self.bucket}/{path}"


class FileRoleDirectory:
    def __init__(self, root: Path):
        self.path = Path(root) / "user_roles.jsonl"

    def has_role(self, user_id: str, role: str) -> bool:
        return any(
            r.get("userId") == user_id and r.get("role") == role
            for r in _read_jsonl(self.path)
        )


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class FileIdentityProvider:
    """Resolves bearer tokens through SHA-256 digests kept in ``api_tokens.json``."""

    def __init__(self, root: Path):
        self.path = Path(root) / "api_tokens.json"

    def resolve(self, token: str) -> Optional[str]:
        if not token:
            return None
        tokens = _read_json(self.path, {})
        return tokens.get(hash_token(token))
