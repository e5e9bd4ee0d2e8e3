"""Command-line entry points for the article autopilot."""

import dataclasses
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

import typer
from pydantic import BaseModel
from rich import print as rprint
from rich import print_json

from .errors import AutopilotError
from .logging_config import setup_logging
from .pipeline import PipelineDeps, Trigger, build_deps, regenerate_images, run_pipeline
from .schedule import describe

app = typer.Typer(help="Generate and publish articles on a schedule.")


def _to_plain(value: Any) -> Any:
    """
    Convert dataclasses, pydantic models, Paths, and date-like objects into
    JSON-serializable primitives.
    """
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if dataclasses.is_dataclass(value):
        return _to_plain(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_plain(item) for item in value]
    return value


def _build_deps() -> PipelineDeps:
    return build_deps()


def _emit(payload: Any) -> None:
    print_json(data=_to_plain(payload))


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override LOG_LEVEL for this invocation."
    ),
) -> None:
    setup_logging(log_level)


@app.command()
def run(
    force: bool = typer.Option(
        False, "--force", help="Generate even if the schedule is inactive or not due."
    ),
) -> None:
    """Run one pipeline tick, the same way the cron trigger does."""
    try:
        result = run_pipeline(Trigger(force=force), _build_deps())
    except AutopilotError as exc:
        rprint(f"[red]Run failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    colour = "green" if result.generated else "yellow"
    rprint(f"[{colour}]{result.message}[/{colour}]")
    _emit(result.to_wire())


@app.command()
def schedule() -> None:
    """Show the stored schedule and whether a run is due now."""
    deps = _build_deps()
    _emit(describe(deps.schedules.load(), datetime.now(timezone.utc)))


@app.command()
def images(
    article_id: str = typer.Argument(..., help="Id of a stored article."),
    featured: bool = typer.Option(
        True, "--featured/--no-featured", help="Regenerate the featured image."
    ),
    section: Optional[List[str]] = typer.Option(
        None, "--section", help="Section id to regenerate (repeatable). Default: all."
    ),
) -> None:
    """Regenerate images for an article that is already stored."""
    try:
        result = regenerate_images(
            article_id,
            _build_deps(),
            regenerate_featured=featured,
            regenerate_sections=section or None,
        )
    except AutopilotError as exc:
        rprint(f"[red]Image regeneration failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    _emit(result.to_wire())


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address."),
    port: int = typer.Option(8000, help="Bind port."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
) -> None:
    """Serve the HTTP trigger endpoints with uvicorn."""
    import uvicorn

    uvicorn.run("article_autopilot.server:app", host=host, port=port, reload=reload)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
