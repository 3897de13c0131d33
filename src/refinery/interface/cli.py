"""Refinery CLI: study queues, grading, card creation and configuration."""

import asyncio
import json
import logging
import random
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer

from refinery.application.config import AppConfig, resolve_config
from refinery.domain.errors import Conflict, RefineryError

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="refinery: reading notes turned into spaced-repetition flashcards.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage refinery configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _configure_logging(level: int) -> None:
    """0 shows warnings only, 1 adds info, 2 and above add debug output."""
    if level >= 2:
        logging.getLogger("refinery").setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")
    elif level == 1:
        logging.getLogger("refinery").setLevel(logging.INFO)
    else:
        logging.getLogger("refinery").setLevel(logging.WARNING)


def _resolve_with_overrides(ctx: typer.Context | None = None, **overrides: Any) -> AppConfig:
    config = resolve_config(overrides)
    bonus = ctx.obj.get("verbose_bonus", 0) if ctx is not None and ctx.obj else 0
    _configure_logging(config.verbose + bonus)
    return config


def _deck_or_default(deck: str | None, config: AppConfig) -> str:
    chosen = deck or config.default_deck
    if not chosen:
        typer.secho(
            "Error: no deck given and no default_deck configured.", fg="red", err=True
        )
        raise typer.Exit(1)
    return chosen


def _parse_now(value: str | None) -> datetime | None:
    """ISO-8601 timestamp; naive values are taken as UTC."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Not an ISO-8601 timestamp: {value}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _run_with_service(
    config: AppConfig,
    action: Callable[[Any], Awaitable[T]],
    rng: random.Random | None = None,
) -> T:
    """Build the review service, run `action` with it and map errors to exit codes."""
    from refinery.application.factory import get_review_service

    async def run() -> T:
        service = get_review_service(config, rng=rng)
        try:
            return await action(service)
        finally:
            await service.aclose()

    try:
        return asyncio.run(run())
    except Conflict as e:
        typer.secho(f"Conflict: {e}. Re-read the card and try again.", fg="red", err=True)
        raise typer.Exit(2) from None
    except RefineryError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from None


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
):
    """Global settings for refinery."""
    ctx.ensure_object(dict)
    # Added to the configured `verbose` level when a command resolves its config
    ctx.obj["verbose_bonus"] = verbose


# ---------------------------------------------------------------------------
# Study commands
# ---------------------------------------------------------------------------

ConfigFileOption = Annotated[
    Path | None, typer.Option("--config-file", help="Master YAML config (decks and algorithms).")
]
BackendOption = Annotated[str | None, typer.Option(help="Record store: couchdb or memory.")]
NowOption = Annotated[
    str | None, typer.Option("--now", help="Reference time (ISO-8601). Defaults to now.")
]
DeckArgument = Annotated[
    str | None, typer.Argument(help="Deck id. Defaults to default_deck from the config.")
]


@app.command("queue")
def queue(
    ctx: typer.Context,
    deck: DeckArgument = None,
    now: NowOption = None,
    seed: Annotated[
        int | None, typer.Option(help="Seed for the random new-card order.")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
    config_file: ConfigFileOption = None,
    backend: BackendOption = None,
):
    """Show today's study queue for a deck: due reviews first, then new cards."""
    config = _resolve_with_overrides(ctx, config_file=config_file, backend=backend)
    deck = _deck_or_default(deck, config)
    at = _parse_now(now)
    rng = random.Random(seed) if seed is not None else None

    result = _run_with_service(config, lambda service: service.build_queue(deck, now=at), rng=rng)

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "deck": deck,
                    "queue": result.ordered,
                    "reviews": len(result.review_queue),
                    "new": len(result.new_queue),
                    "not_due": result.not_due,
                    "suspended": result.suspended,
                    "capped_reviews": result.capped_reviews,
                    "capped_new": result.capped_new,
                },
                indent=2,
            )
        )
        return

    typer.echo(f"Reviews: {len(result.review_queue)}  New: {len(result.new_queue)}")
    if result.capped_reviews or result.capped_new:
        typer.secho(
            f"Over daily cap: {result.capped_reviews} reviews, {result.capped_new} new",
            fg="yellow",
        )
    for card_id in result.ordered:
        typer.echo(card_id)


@app.command("due")
def due(
    ctx: typer.Context,
    deck: DeckArgument = None,
    now: NowOption = None,
    config_file: ConfigFileOption = None,
    backend: BackendOption = None,
):
    """List every due card of a deck, earliest first, without daily caps."""
    config = _resolve_with_overrides(ctx, config_file=config_file, backend=backend)
    deck = _deck_or_default(deck, config)
    at = _parse_now(now)

    card_ids = _run_with_service(config, lambda service: service.due_cards(deck, now=at))
    if not card_ids:
        typer.secho("No cards due.", fg="green")
        return
    for card_id in card_ids:
        typer.echo(card_id)


@app.command("grade")
def grade(
    ctx: typer.Context,
    card_id: Annotated[str, typer.Argument(help="Card (record) id.")],
    grade_value: Annotated[str, typer.Argument(metavar="GRADE", help="fail, hard, good or easy.")],
    now: NowOption = None,
    config_file: ConfigFileOption = None,
    backend: BackendOption = None,
):
    """[bold green]Grade[/bold green] a card and reschedule it."""
    config = _resolve_with_overrides(ctx, config_file=config_file, backend=backend)
    at = _parse_now(now)

    outcome = _run_with_service(
        config, lambda service: service.grade_card(card_id, grade_value, now=at)
    )
    state = outcome.state
    typer.echo(
        f"{card_id}: {state.status.value}, next review {state.next_revision.isoformat()} "
        f"(ease {state.easiness_factor:.2f}, lapses {state.lapse_count}, "
        f"reviews {state.review_count})"
    )
    if outcome.leech_action is not None:
        typer.secho(f"Leech: {outcome.leech_action.name.lower()}", fg="yellow")
    if not outcome.counted_as_due:
        typer.echo("Reviewed ahead of schedule (not counted against the daily cap).")


@app.command("add")
def add(
    ctx: typer.Context,
    deck: Annotated[str, typer.Argument(help="Deck id.")],
    highlight: Annotated[str, typer.Argument(help="Highlighted passage.")],
    note: Annotated[str, typer.Option(help="Note attached to the passage.")] = "",
    source: Annotated[str, typer.Option(help="Where the passage comes from.")] = "manual",
    notebook: Annotated[str | None, typer.Option(help="Notebook name.")] = None,
    config_file: ConfigFileOption = None,
    backend: BackendOption = None,
):
    """Add a highlight as a new card."""
    config = _resolve_with_overrides(ctx, config_file=config_file, backend=backend)

    record = _run_with_service(
        config,
        lambda service: service.add_card(
            deck, highlight, note=note, source=source, notebook=notebook
        ),
    )
    typer.secho(f"Added {record.record_id}", fg="green")


@app.command("serve")
def serve(
    port: Annotated[int, typer.Option(help="Port to bind the server to.")] = 8778,
    host: Annotated[str, typer.Option(help="Host to bind the server to.")] = "127.0.0.1",
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("refinery.server:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show():
    """Display final resolved configuration."""
    config = resolve_config()
    d = {
        k: str(v) if isinstance(v, Path) else v
        for k, v in config.model_dump(exclude={"database_password"}).items()
    }
    typer.echo(json.dumps(d, indent=2))


@config_app.command("algorithms")
def config_algorithms(config_file: ConfigFileOption = None):
    """Validate the master config and list decks with their algorithms."""
    from refinery.application.deck_config import load_deck_registry

    config = _resolve_with_overrides(config_file=config_file)
    try:
        registry = load_deck_registry(config.config_file)
    except RefineryError as e:
        typer.secho(f"Error: {e}", fg="red", err=True)
        raise typer.Exit(1) from None

    for deck_id in registry.deck_ids:
        algo = registry.algorithm_for(deck_id)
        typer.echo(
            f"{deck_id}: {algo.cfg_id} (new/day {algo.new.max_per_day}, "
            f"rev/day {algo.rev.max_per_day}, leech after {algo.fail.fails_until_leech})"
        )
