"""CLI entry point using Typer."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

import structlog
import typer
from rich.console import Console
from rich.table import Table

from verumindex.config import settings
from verumindex.fetchers.kaspa import KaspaBlockchainFetcher
from verumindex.indexer import VerumIndexer
from verumindex.models import FeedOptions, IndexedComment, IndexedStory

app = typer.Typer(
    name="verum-index",
    help="Verum Index - Read social content from Verum transactions on Kaspa.",
)
console = Console()

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)

T = TypeVar("T")

FEED_KINDS = ("global", "trending", "user", "personalized")


def _open_fetcher(api_url: str | None) -> KaspaBlockchainFetcher:
    return KaspaBlockchainFetcher(api_url)


def _run(api_url: str | None, operation: Callable[[VerumIndexer], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with _open_fetcher(api_url) as fetcher:
            return await operation(VerumIndexer(fetcher))

    return asyncio.run(runner())


def _format_time(timestamp: int | None) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp, tz=UTC).strftime("%Y-%m-%d %H:%M")


def _short(value: str | None, length: int = 16) -> str:
    if not value:
        return "-"
    return value if len(value) <= length else f"{value[:length]}..."


def _fail(message: str | None) -> None:
    console.print(f"[bold red]Error:[/bold red] {message or 'unknown error'}")
    raise typer.Exit(1)


ApiUrlOption = typer.Option(
    None,
    "--api-url",
    help="Kaspa REST API base URL (defaults to VERUM_KASPA_API_URL, else the public API for VERUM_NETWORK)",
)


@app.command()
def chain(
    address: str = typer.Argument(..., help="Kaspa address whose chain to read"),
    limit: int = typer.Option(settings.chain_default_max_transactions, help="Maximum transactions"),
    since: int | None = typer.Option(None, help="Ignore transactions before this unix time"),
    api_url: str | None = ApiUrlOption,
) -> None:
    """Show a user's Verum transactions, newest first."""
    traversal = _run(api_url, lambda indexer: indexer.traverse_user_chain(address, limit, since))
    if not traversal.success or traversal.data is None:
        _fail(traversal.error)
    result = traversal.data

    if not result.transactions:
        console.print(f"[yellow]No Verum transactions found for {address}.[/yellow]")
        return

    table = Table(title=f"Chain for {_short(address, 24)}")
    table.add_column("Time", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Transaction", style="white")
    table.add_column("Content", style="green")

    for tx in result.transactions:
        payload = tx.payload
        table.add_row(
            _format_time(tx.block_time),
            payload.type.value if payload else "-",
            _short(tx.transaction_id),
            _short(payload.content if payload else None, 48),
        )

    console.print(table)
    console.print(f"Last transaction: {result.last_transaction_id or '-'}")
    console.print(f"Last subscribe: {result.last_subscribe_id or '-'}")


@app.command()
def story(
    first_tx_id: str = typer.Argument(..., help="Transaction id of the story's first segment"),
    api_url: str | None = ApiUrlOption,
) -> None:
    """Reassemble and print a multi-segment story."""
    result = _run(api_url, lambda indexer: indexer.get_story(first_tx_id))
    if not result.success or result.data is None:
        _fail(result.error)

    indexed = result.data
    console.print(f"[bold blue]{indexed.title or 'Untitled story'}[/bold blue]")
    console.print(f"Author: {indexed.author_address or 'unknown'}")
    console.print(f"Segments: {len(indexed.segments)} ({'complete' if indexed.is_complete else 'incomplete'})")
    console.print()
    console.print(indexed.content)


@app.command()
def engagement(
    target_id: str = typer.Argument(..., help="Transaction id of a post, story or comment"),
    actor: str | None = typer.Option(None, "--actor", help="Address whose like status to report"),
    api_url: str | None = ApiUrlOption,
) -> None:
    """Show likes, comments and engagement metrics for content."""
    result = _run(api_url, lambda indexer: indexer.get_content_engagement(target_id, actor))
    if not result.success or result.data is None:
        _fail(result.error)

    data = result.data
    table = Table(title=f"Engagement for {_short(target_id)} ({data.content_type})")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green")
    table.add_row("Likes", str(data.metrics.like_count))
    table.add_row("Comments", str(data.metrics.comment_count))
    table.add_row("Total", str(data.metrics.total_engagement))
    table.add_row("Last 24h", str(data.metrics.recent_activity))
    console.print(table)

    if data.actor_like_status is not None:
        liked = "Yes" if data.actor_like_status.has_liked else "No"
        console.print(f"Liked by {_short(actor, 24)}: {liked}")

    if data.comments:
        comments = Table(title="Comments")
        comments.add_column("Time", style="cyan")
        comments.add_column("Author", style="magenta")
        comments.add_column("Comment", style="white")
        for comment in data.comments:
            comments.add_row(_format_time(comment.timestamp), _short(comment.author_address, 24), comment.content)
        console.print(comments)


@app.command()
def profile(
    address: str = typer.Argument(..., help="Kaspa address"),
    api_url: str | None = ApiUrlOption,
) -> None:
    """Show a user's profile and activity stats."""

    async def load(indexer: VerumIndexer):
        return await asyncio.gather(indexer.get_user_profile(address), indexer.get_user_stats(address))

    profile_result, stats_result = _run(api_url, load)
    if not profile_result.success or profile_result.data is None:
        _fail(profile_result.error)

    user = profile_result.data
    table = Table(title=f"Profile: {user.nickname}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Address", user.address)
    table.add_row("Joined", _format_time(user.created_at))
    table.add_row("Last active", _format_time(user.updated_at))
    table.add_row("Posts", str(user.post_count))
    table.add_row("Following", str(user.following_count))

    if stats_result.success and stats_result.data is not None:
        stats = stats_result.data
        table.add_row("Stories", str(stats.story_count))
        table.add_row("Comments", str(stats.comment_count))
        table.add_row("Likes given", str(stats.like_count))

    console.print(table)


@app.command()
def feed(
    kind: str = typer.Option("global", "--kind", help=f"One of: {', '.join(FEED_KINDS)}"),
    address: str | None = typer.Option(None, "--address", help="Address for user and personalized feeds"),
    limit: int = typer.Option(20, help="Number of items"),
    offset: int = typer.Option(0, help="Items to skip"),
    no_replies: bool = typer.Option(False, "--no-replies", help="Leave comments out"),
    api_url: str | None = ApiUrlOption,
) -> None:
    """Show a content feed."""
    if kind not in FEED_KINDS:
        _fail(f"Unknown feed kind '{kind}'")
    if kind in ("user", "personalized") and not address:
        _fail(f"--address is required for the {kind} feed")

    options = FeedOptions(user_address=address, limit=limit, offset=offset, include_replies=not no_replies)

    async def load(indexer: VerumIndexer):
        if kind == "trending":
            return await indexer.get_trending_feed(options)
        if kind == "user":
            return await indexer.get_user_feed(address, options)
        if kind == "personalized":
            return await indexer.get_personalized_feed(address, options)
        return await indexer.get_global_feed(options)

    result = _run(api_url, load)
    if not result.success or result.data is None:
        _fail(result.error)

    if not result.data.items:
        console.print("[yellow]No content found.[/yellow]")
        return

    table = Table(title=f"{kind.capitalize()} feed")
    table.add_column("Time", style="cyan")
    table.add_column("Kind", style="magenta")
    table.add_column("Author", style="white")
    table.add_column("Content", style="green")
    table.add_column("Likes", style="yellow")

    for item in result.data.items:
        if isinstance(item, IndexedStory):
            label = "story"
        elif isinstance(item, IndexedComment):
            label = "comment"
        else:
            label = "post"
        table.add_row(
            _format_time(item.timestamp),
            label,
            _short(item.author_address, 24),
            _short(item.content, 60),
            str(item.like_count),
        )

    console.print(table)
    if result.data.has_more:
        console.print(f"More: --offset {result.data.next_offset}")


if __name__ == "__main__":
    app()
