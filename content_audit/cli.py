#!/usr/bin/env python3
"""
CLI Entry Point for the Content Audit Platform

Usage:
    content-audit [command] [options]

Commands:
    init            Initialize the database
    project         Create and list audit projects
    import          Import top pages and metrics from Search Console
    pages           List a project's pages, worst performers first
    page            Show one page with its guidelines
    set-content     Update a page's cached content, title or keyword
    analyze         Build content guidelines for a page now
    score           Score a page (queued, or inline with --inline)
    suggest         Generate auto-optimize changes and internal links
    changes         List, apply or reject auto-optimize changes
    links           List, apply or reject internal link suggestions
    alerts          View metric alerts for a project
    evaluate        Evaluate metric alerts for a project
    reanalyze       Queue re-analysis of stale pages
    worker          Launch a Celery worker with the beat scheduler

Jobs are sent to the Celery queue unless --inline is given, in which case
they run in this process together with every follow-up job they trigger.
"""

import asyncio
import functools
import subprocess
from pathlib import Path

import click
from loguru import logger
from rich import box
from rich.console import Console
from rich.table import Table

from content_audit.config.settings import LOG_FILE, LOG_LEVEL
from content_audit.errors import ContentAuditError

# Configure logging
logger.add(LOG_FILE, rotation="10 MB", level=LOG_LEVEL, retention="30 days")

console = Console()

owner_option = click.option(
    "--owner", "-o", required=True, envvar="CONTENT_AUDIT_OWNER",
    help="Owner (user) id; defaults to $CONTENT_AUDIT_OWNER",
)
inline_option = click.option(
    "--inline", is_flag=True, help="Run the job and its follow-ups in this process",
)


def handle_errors(func):
    """Report platform errors as CLI errors instead of tracebacks."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ContentAuditError as exc:
            logger.error("{}: {}", type(exc).__name__, exc)
            raise click.ClickException(str(exc)) from exc
    return wrapper


def _page_service(queue=None):
    from content_audit.modules.page_audit import PageAuditService
    return PageAuditService(queue if queue is not None else _celery_queue())


def _celery_queue():
    from content_audit.scheduler.celery_app import app
    from content_audit.scheduler.queue import CeleryJobQueue
    return CeleryJobQueue(app)


def _submit(job, inline: bool) -> None:
    """Send *job* to Celery, or run it here and print every result."""
    if not inline:
        _celery_queue().enqueue(job)
        click.echo(f"Queued {job.name} {job.to_payload()}")
        return

    from content_audit.scheduler.orchestrator import build_default_orchestrator
    from content_audit.scheduler.queue import InMemoryJobQueue

    queue = InMemoryJobQueue()
    orchestrator = build_default_orchestrator(queue)
    queue.enqueue(job)
    for result in asyncio.run(orchestrator.drain(queue)):
        click.echo(f"  {result}")


@click.group()
@click.version_option(version="1.0.0", prog_name="Content Audit Platform")
def cli():
    """Content Audit Platform: competitive content scoring and optimization."""
    pass


@cli.command()
def init():
    """Initialize the database."""
    from content_audit.database.models import init_db

    click.echo("Initializing database...")
    init_db()
    click.echo("Database initialized.")


# ---------------------------------------------------------------------------
# Projects & pages
# ---------------------------------------------------------------------------

@cli.group()
def project():
    """Manage audit projects."""
    pass


@project.command("create")
@owner_option
@click.option("--domain", "-d", required=True, help="Site domain, e.g. example.com")
@click.option("--gsc-property", default=None, help="Search Console property, e.g. sc-domain:example.com")
@click.option("--country", default="us", help="Primary country for ranking lookups")
@click.option("--language", default="en", help="Content language code")
@click.option("--max-pages", default=100, help="Maximum pages to import")
@click.option("--exclude", multiple=True, help="Path prefix to skip on import (repeatable)")
@handle_errors
def project_create(owner, domain, gsc_property, country, language, max_pages, exclude):
    """Create an audit project for a site."""
    created = _page_service().create_project(
        owner, domain,
        gsc_property=gsc_property,
        primary_country=country,
        language_code=language,
        max_pages=max_pages,
        excluded_paths=list(exclude),
    )
    click.echo(f"Created project {created['id']} for {created['site_domain']}.")


@project.command("list")
@owner_option
def project_list(owner):
    """List your audit projects."""
    projects = _page_service().list_projects(owner)
    table = Table(title="Audit Projects", box=box.SIMPLE)
    table.add_column("ID", justify="right")
    table.add_column("Domain")
    table.add_column("Property")
    table.add_column("Country")
    table.add_column("Max pages", justify="right")
    for item in projects:
        table.add_row(
            str(item["id"]), item["site_domain"], item["gsc_property"] or "-",
            item["primary_country"], str(item["max_pages"]),
        )
    console.print(table)


@cli.command("import")
@click.argument("project_id", type=int)
@owner_option
@click.option("--start", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Start date")
@click.option("--end", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="End date")
@inline_option
@handle_errors
def import_pages(project_id, owner, start, end, inline):
    """Import top pages and 30-day metrics for a project."""
    from content_audit.scheduler.jobs import ImportPagesJob

    job = ImportPagesJob(
        project_id=project_id,
        user_id=owner,
        start_date=start.date() if start else None,
        end_date=end.date() if end else None,
    )
    _submit(job, inline)


@cli.command()
@click.argument("project_id", type=int)
@owner_option
@click.option("--search", "-s", default=None, help="Filter on URL or title")
@click.option("--min-score", type=int, default=None, help="Minimum content score")
@click.option("--max-score", type=int, default=None, help="Maximum content score")
@click.option("--recommendation", "-r", default=None,
              help="Performing Well, Monitor or Needs Optimization")
@click.option("--page", "page_number", default=1, help="Page number")
@click.option("--page-size", default=20, help="Rows per page")
@handle_errors
def pages(project_id, owner, search, min_score, max_score, recommendation, page_number, page_size):
    """List pages, those most in need of work first."""
    listing = _page_service().list_pages(
        owner, project_id,
        search=search,
        min_score=min_score,
        max_score=max_score,
        recommendation=recommendation,
        page=page_number,
        page_size=page_size,
    )

    table = Table(
        title=f"Pages ({listing['total']} total, page {listing['page']})", box=box.SIMPLE
    )
    table.add_column("ID", justify="right")
    table.add_column("URL", overflow="fold")
    table.add_column("Score", justify="right")
    table.add_column("Recommendation")
    table.add_column("Clicks", justify="right")
    table.add_column("Impr.", justify="right")
    table.add_column("Pos.", justify="right")
    for row in listing["items"]:
        table.add_row(
            str(row["id"]),
            row["url"],
            "-" if row["content_score"] is None else str(row["content_score"]),
            row["recommendation"] or row["scoring_state"] or "-",
            "-" if row["clicks_30d"] is None else str(row["clicks_30d"]),
            "-" if row["impressions_30d"] is None else str(row["impressions_30d"]),
            "-" if row["avg_position"] is None else f"{row['avg_position']:.1f}",
        )
    console.print(table)


@cli.command()
@click.argument("page_id", type=int)
@owner_option
@handle_errors
def page(page_id, owner):
    """Show a page, its score and its guidelines."""
    data = _page_service().get_page(owner, page_id)

    click.echo(f"{data['url']}")
    click.echo(f"  Title: {data['title'] or '-'}")
    click.echo(f"  Main keyword: {data['main_keyword'] or '-'}")
    click.echo(f"  Content score: {data['content_score'] if data['content_score'] is not None else '-'}")
    click.echo(f"  Recommendation: {data['recommendation'] or '-'}")
    click.echo(f"  State: {data['scoring_state'] or '-'}")

    guidelines = data["guidelines"]
    if guidelines is None:
        click.echo("  No guidelines yet.")
        return

    click.echo(f"\nGuidelines for '{guidelines['keyword']}'"
               f"{' (fallback)' if guidelines['is_fallback'] else ''}:")
    click.echo(f"  Words: {guidelines['min_words']}-{guidelines['max_words']}"
               f" (avg {guidelines['avg_words']}, {guidelines['competitor_count']} competitors)")
    table = Table(box=box.SIMPLE)
    table.add_column("Term")
    table.add_column("Importance", justify="right")
    table.add_column("Avg count", justify="right")
    table.add_column("Present in", justify="right")
    for term in guidelines["important_terms"]:
        table.add_row(
            term["term"],
            f"{term['importance']:.2f}",
            f"{term.get('avg_count', 0):.1f}",
            f"{term.get('percentage_present', 0):.0f}%",
        )
    console.print(table)


@cli.command("set-content")
@click.argument("page_id", type=int)
@owner_option
@click.option("--file", "-f", "content_file", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Text file holding the page content")
@click.option("--title", default=None, help="Page title")
@click.option("--keyword", "-k", default=None, help="Main keyword")
@handle_errors
def set_content(page_id, owner, content_file, title, keyword):
    """Update a page's cached content, title or main keyword."""
    content = Path(content_file).read_text(encoding="utf-8") if content_file else None
    _page_service().update_page_content(
        owner, page_id, content=content, title=title, main_keyword=keyword
    )
    click.echo(f"Page {page_id} updated.")


# ---------------------------------------------------------------------------
# Analysis & scoring
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("page_id", type=int)
@owner_option
@click.option("--keyword", "-k", default=None, help="Keyword to analyze (defaults to the page's)")
@click.option("--country", default=None, help="Country for the ranking lookup")
@click.option("--language", default=None, help="Language code")
@handle_errors
def analyze(page_id, owner, keyword, country, language):
    """Build content guidelines from ranking competitors now."""
    from content_audit.modules.guideline_synthesizer import GuidelineSynthesizer
    from content_audit.modules.text_analyzer import TextAnalyzer
    from content_audit.providers.html_fetcher import HtmlContentFetcher
    from content_audit.providers.serper import SerperRankingLookup

    service = _page_service()
    service.synthesizer = GuidelineSynthesizer(
        TextAnalyzer(), HtmlContentFetcher(), SerperRankingLookup()
    )
    result = asyncio.run(
        service.run_keyword_analysis(owner, page_id, keyword, country, language)
    )

    click.echo(f"Guidelines for '{result['keyword']}':")
    click.echo(f"  Competitors analysed: {result['competitor_count']}"
               f"{' (fallback profile)' if result['is_fallback'] else ''}")
    click.echo(f"  Recommended words: {result['min_words']}-{result['max_words']}")
    click.echo(f"  Important terms: {', '.join(t['term'] for t in result['important_terms'][:10])}")


@cli.command()
@click.argument("page_id", type=int)
@click.option("--alerts/--no-alerts", default=True, help="Evaluate metric alerts afterwards")
@inline_option
@handle_errors
def score(page_id, alerts, inline):
    """Score a page against its guidelines."""
    from content_audit.scheduler.jobs import ScorePageJob

    _submit(ScorePageJob(page_id=page_id, follow_up_alerts=alerts), inline)


@cli.command()
@click.argument("page_id", type=int)
@owner_option
@click.option("--changes/--no-changes", default=True, help="Generate auto-optimize changes")
@click.option("--links/--no-links", default=True, help="Generate internal link suggestions")
@inline_option
@handle_errors
def suggest(page_id, owner, changes, links, inline):
    """Generate auto-optimize changes and internal link suggestions."""
    from content_audit.scheduler.jobs import GenerateSuggestionsJob

    job = GenerateSuggestionsJob(
        page_id=page_id, user_id=owner, auto_optimize=changes, internal_links=links
    )
    _submit(job, inline)


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("page_id", type=int)
@owner_option
@click.option("--status", "-s", default=None, help="suggested, applied or rejected")
@click.option("--apply", "apply_id", type=int, default=None, help="Apply a change by id")
@click.option("--reject", "reject_id", type=int, default=None, help="Reject a change by id")
@handle_errors
def changes(page_id, owner, status, apply_id, reject_id):
    """List, apply or reject auto-optimize changes."""
    from content_audit.modules.auto_optimizer import AutoOptimizer
    from content_audit.modules.text_analyzer import TextAnalyzer
    from content_audit.providers.html_fetcher import HtmlContentFetcher
    from content_audit.providers.openai_suggester import OpenAISuggestionGenerator

    optimizer = AutoOptimizer(TextAnalyzer(), OpenAISuggestionGenerator(), HtmlContentFetcher())
    if apply_id is not None:
        optimizer.apply_change(owner, apply_id)
        click.echo(f"Change {apply_id} applied.")
    if reject_id is not None:
        optimizer.reject_change(owner, reject_id)
        click.echo(f"Change {reject_id} rejected.")

    table = Table(title=f"Changes for page {page_id}", box=box.SIMPLE)
    table.add_column("ID", justify="right")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Suggested text", overflow="fold")
    table.add_column("Reasoning", overflow="fold")
    for change in optimizer.list_changes(owner, page_id, status):
        table.add_row(
            str(change["id"]), change["change_type"], change["status"],
            change["suggested_text"], change["reasoning"] or "",
        )
    console.print(table)


@cli.command()
@click.argument("page_id", type=int)
@owner_option
@click.option("--status", "-s", default=None, help="suggested, applied or rejected")
@click.option("--apply", "apply_id", type=int, default=None, help="Apply a link by id")
@click.option("--reject", "reject_id", type=int, default=None, help="Reject a link by id")
@handle_errors
def links(page_id, owner, status, apply_id, reject_id):
    """List, apply or reject internal link suggestions."""
    from content_audit.modules.internal_linking import InternalLinker

    linker = InternalLinker()
    if apply_id is not None:
        linker.apply_link(owner, apply_id)
        click.echo(f"Link {apply_id} applied.")
    if reject_id is not None:
        linker.reject_link(owner, reject_id)
        click.echo(f"Link {reject_id} rejected.")

    table = Table(title=f"Internal links from page {page_id}", box=box.SIMPLE)
    table.add_column("ID", justify="right")
    table.add_column("Target", overflow="fold")
    table.add_column("Anchor")
    table.add_column("Relevance", justify="right")
    table.add_column("Status")
    for link in linker.list_links(owner, page_id, status):
        table.add_row(
            str(link["id"]), link["target_url"], link["anchor_text"] or "",
            str(link["relevance_score"]), link["status"],
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Alerts & scheduling
# ---------------------------------------------------------------------------

@cli.command()
@click.argument("project_id", type=int)
@owner_option
@click.option("--all", "show_all", is_flag=True, help="Include resolved alerts")
@handle_errors
def alerts(project_id, owner, show_all):
    """View metric alerts for a project."""
    items = _page_service().list_alerts(owner, project_id, unresolved_only=not show_all)
    if not items:
        click.echo("No alerts.")
        return
    for alert in items:
        click.echo(f"[{alert['severity'].upper()}] {alert['title']}")
        click.echo(f"    {alert['message']}")


@cli.command()
@click.argument("project_id", type=int)
@inline_option
@handle_errors
def evaluate(project_id, inline):
    """Evaluate clicks and impressions changes for every page of a project."""
    from content_audit.scheduler.jobs import EvaluateProjectChangesJob

    _submit(EvaluateProjectChangesJob(project_id=project_id), inline)


@cli.command()
@click.option("--days", default=7, help="Re-analyse pages older than this many days")
@click.option("--limit", default=100, help="Maximum pages to queue")
@handle_errors
def reanalyze(days, limit):
    """Queue re-analysis of stale pages, oldest first."""
    queued = _page_service().queue_stale_pages(days=days, limit=limit)
    click.echo(f"Queued {queued} pages for re-analysis.")


@cli.command()
@click.option("--loglevel", "-l", default="info", help="Celery log level")
@click.option("--queues", "-Q", default="alerts,pipeline,imports", help="Queues to consume")
def worker(loglevel, queues):
    """Launch a Celery worker with the embedded beat scheduler (development)."""
    click.echo(f"Starting worker on queues: {queues}")
    subprocess.run([
        "celery", "-A", "content_audit.scheduler.celery_app", "worker",
        "--beat", f"--loglevel={loglevel}", "-Q", queues,
    ])


if __name__ == "__main__":
    cli()
