"""FastAPI trigger surfaces for the article pipeline."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import bearer_token, require_admin, uses_bearer_scheme
from .config import get_settings
from .errors import ArticleNotFound, AutopilotError, Forbidden, Unauthorized
from .pipeline import PipelineDeps, RunResult, Trigger, build_deps, regenerate_images, run_pipeline

logger = logging.getLogger(__name__)

app = FastAPI(title="Article Autopilot")


def _add_cors(app: FastAPI) -> None:
    """Let the admin UI call the API from the browser."""
    allow_all = os.getenv("CORS_ALLOW_ALL", "true").lower() == "true"
    origins_env = os.getenv("CORS_ALLOW_ORIGINS", "")
    origins = [o.strip() for o in origins_env.split(",") if o.strip()]
    allow_credentials = os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"
    if allow_all or not origins:
        origins = ["*"]
    if origins == ["*"] and allow_credentials:
        # Starlette/FastAPI disallow wildcard origins when credentials are enabled.
        allow_credentials = False
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-cron-secret"],
    )


_add_cors(app)


def _build_deps() -> PipelineDeps:
    return build_deps()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _error_for(exc: Exception, fallback: str) -> JSONResponse:
    if isinstance(exc, Unauthorized):
        return _error(status.HTTP_401_UNAUTHORIZED, str(exc))
    if isinstance(exc, Forbidden):
        return _error(status.HTTP_403_FORBIDDEN, str(exc))
    if isinstance(exc, ArticleNotFound):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))
    if isinstance(exc, AutopilotError):
        logger.error("%s: %s", fallback, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or fallback)
    logger.exception(fallback)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or fallback)


async def _json_body(request: Request) -> Dict[str, Any]:
    """Parse the request body; anything missing or malformed counts as ``{}``."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _run_pipeline(trigger: Trigger) -> RunResult:
    return run_pipeline(trigger, _build_deps())


def _regenerate(
    token: Optional[str], article_id: str, featured: bool, sections: Optional[list[str]]
) -> RunResult:
    deps = _build_deps()
    require_admin(token, deps.identities, deps.roles, role=deps.settings.admin_role)
    return regenerate_images(
        article_id, deps, regenerate_featured=featured, regenerate_sections=sections
    )


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/auto-generate")
async def auto_generate(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_cron_secret: Optional[str] = Header(None),
) -> JSONResponse:
    """
    Single entry point for both triggers.

    An ``Authorization: Bearer`` header makes this a manual run (admin only,
    body may carry ``forceGenerate``), even when the token is blank; without
    one it is a scheduled tick.
    """
    token = bearer_token(authorization)
    body = await _json_body(request)
    if uses_bearer_scheme(authorization):
        trigger = Trigger(manual=True, force=body.get("forceGenerate") is True, token=token)
    else:
        cron_secret = get_settings().cron_secret
        if cron_secret and x_cron_secret != cron_secret:
            return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
        if body.get("source"):
            logger.info("Scheduled trigger from %s", body["source"])
        trigger = Trigger()

    try:
        result = await run_in_threadpool(_run_pipeline, trigger)
    except Exception as exc:
        return _error_for(exc, "Failed to auto-generate article")
    return JSONResponse(status_code=status.HTTP_200_OK, content=result.to_wire())


@app.post("/articles/{article_id}/images")
async def article_images(
    article_id: str,
    request: Request,
    authorization: Optional[str] = Header(None),
) -> JSONResponse:
    """Regenerate the featured image and/or selected section images of a stored article."""
    body = await _json_body(request)
    featured = body.get("regenerateFeatured", True) is not False
    sections = body.get("regenerateSections")
    if sections is not None and not (
        isinstance(sections, list) and all(isinstance(s, str) for s in sections)
    ):
        return _error(status.HTTP_400_BAD_REQUEST, "regenerateSections must be a list of ids.")

    try:
        result = await run_in_threadpool(
            _regenerate, bearer_token(authorization), article_id, featured, sections
        )
    except Exception as exc:
        return _error_for(exc, "Failed to generate images")
    return JSONResponse(status_code=status.HTTP_200_OK, content=result.to_wire())


if __name__ == "__main__":
    import uvicorn

    from .logging_config import setup_logging

    setup_logging()
    uvicorn.run(
        "article_autopilot.server:app",
        host=os.getenv("AUTOPILOT_HOST", "0.0.0.0"),
        port=int(os.getenv("AUTOPILOT_PORT", "8000")),
        reload=os.getenv("AUTOPILOT_RELOAD", "false").lower() == "true",
    )
