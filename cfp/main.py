"""
Main application entry point for the CFP pipeline.

Provides CLI interface for processing businesses and for running the
individual stages (fingerprint, notability, QID resolution) on their own.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from cfp.core.config import get_settings, print_configuration_summary, validate_required_settings
from cfp.core.exceptions import CFPError, ConfigurationError
from cfp.core.logging import set_correlation_id, setup_logging
from cfp.core.models import (
    Business,
    CrawledData,
    FingerprintAnalysis,
    Location,
    NotabilityVerdict,
    QidAttributeType,
)
from cfp.data.crawler import StaticCrawler
from cfp.data.llm_client import OpenRouterClient
from cfp.data.repository import BusinessRepository, FingerprintStore
from cfp.data.search_client import GoogleSearchClient
from cfp.fingerprint.engine import FingerprintEngine
from cfp.knowledge_graph.notability import DailyQueryBudget, NotabilityGate
from cfp.knowledge_graph.qid_cache import JsonFileQidStore, QidResolutionCache
from cfp.knowledge_graph.sparql_client import WikidataSparqlClient
from cfp.utils.reliability import get_circuit_breaker_status, reset_circuit_breaker
from cfp.workflows.cfp_orchestrator import StatusReport, create_cfp_orchestrator

console = Console()


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines instead of rich output")
@click.option("--correlation-id", help="Set correlation ID for request tracing")
@click.pass_context
def main(ctx, debug: bool, json_logs: bool, correlation_id: Optional[str]):
    """Crawl, fingerprint and publish businesses.

    Measures how LLMs talk about a business and publishes notable
    businesses to Wikidata.
    """
    ctx.ensure_object(dict)

    setup_logging(debug=debug, rich_output=not json_logs)

    if correlation_id:
        set_correlation_id(correlation_id)

    ctx.obj["debug"] = debug
    ctx.obj["correlation_id"] = correlation_id


def _fail(ctx, label: str, error: Exception) -> None:
    console.print(f"[red]{label}:[/red] {error}")
    if ctx.obj and ctx.obj.get("debug"):
        import traceback

        console.print(traceback.format_exc())
    sys.exit(1)


def _check_settings(workflow: str) -> None:
    missing = validate_required_settings(workflow)
    if missing:
        console.print("[red]Configuration Error:[/red]")
        for item in missing:
            console.print(f"  • Missing: {item}")
        sys.exit(1)


def _load_business(path: str) -> Business:
    return Business.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))


@main.command()
@click.argument("business_json", type=click.Path(exists=True, dir_okay=False))
@click.argument("crawled_json", type=click.Path(exists=True, dir_okay=False))
@click.option("--no-retry", is_flag=True, help="Do not retry retryable failures automatically")
@click.pass_context
def process(ctx, business_json: str, crawled_json: str, no_retry: bool):
    """Run the full pipeline for the business in BUSINESS_JSON.

    CRAWLED_JSON holds the crawl output for the business URL.
    """
    try:
        _check_settings("pipeline")
        business = _load_business(business_json)
        crawler = StaticCrawler.from_json_file(Path(crawled_json))
        orchestrator = create_cfp_orchestrator(crawler, auto_retry=not no_retry)

        if orchestrator.repository.find(business.id) is None:
            orchestrator.repository.add(business)

        console.print(f"[blue]Processing {business.name} ({business.id})[/blue]")

        async def run():
            try:
                await orchestrator.start_processing(business.id)
                await orchestrator.wait_for_retries()
            finally:
                await orchestrator.aclose()
            return orchestrator.get_status(business.id)

        report = asyncio.run(run())
        _display_status(report)
        sys.exit(0 if report.status != "error" else 1)

    except ConfigurationError as e:
        _fail(ctx, "Configuration Error", e)
    except CFPError as e:
        _fail(ctx, "Pipeline Error", e)


@main.command()
@click.argument("business_id")
@click.pass_context
def status(ctx, business_id: str):
    """Show the pipeline status of a stored business."""
    try:
        settings = get_settings()
        store_path = Path(settings.pipeline.business_store_path)
        repository = BusinessRepository(store_path)
        fingerprints = FingerprintStore(store_path.with_name("fingerprints.json"))

        business = repository.get(business_id)
        latest = fingerprints.latest(business_id)
        report = StatusReport(
            business_id=business.id,
            status=business.status,
            error_message=business.error_message,
            error_stage=business.error_stage,
            last_good_status=business.last_good_status,
            qid=business.qid,
            pipeline_attempts=business.pipeline_attempts,
            visibility_score=latest.visibility_score if latest else None,
            trend=fingerprints.trend(business_id) if latest else None,
        )
        _display_status(report)
        if latest:
            _display_leaderboard(latest)

    except CFPError as e:
        _fail(ctx, "Status Error", e)


@main.command()
@click.argument("business_id")
@click.option(
    "--crawled",
    "crawled_json",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Crawl output for the business URL",
)
@click.pass_context
def reset(ctx, business_id: str, crawled_json: str):
    """Reset an errored business to pending and run it again."""
    try:
        _check_settings("pipeline")
        crawler = StaticCrawler.from_json_file(Path(crawled_json))
        orchestrator = create_cfp_orchestrator(crawler)

        async def run():
            try:
                await orchestrator.reset_and_retry(business_id)
                await orchestrator.wait_for_retries()
            finally:
                await orchestrator.aclose()
            return orchestrator.get_status(business_id)

        report = asyncio.run(run())
        _display_status(report)
        sys.exit(0 if report.status != "error" else 1)

    except CFPError as e:
        _fail(ctx, "Reset Error", e)


@main.command()
@click.argument("business_id")
@click.pass_context
def publish(ctx, business_id: str):
    """Publish a fingerprinted business regardless of its tier."""
    try:
        _check_settings("pipeline")
        orchestrator = create_cfp_orchestrator(StaticCrawler())

        async def run():
            try:
                await orchestrator.manual_publish(business_id)
            finally:
                await orchestrator.aclose()

        asyncio.run(run())
        report = orchestrator.get_status(business_id)
        _display_status(report)
        sys.exit(0 if report.status == "published" else 1)

    except CFPError as e:
        _fail(ctx, "Publish Error", e)


@main.command()
@click.argument("business_json", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--crawled",
    "crawled_json",
    type=click.Path(exists=True, dir_okay=False),
    help="Optional crawl output used to enrich the prompts",
)
@click.pass_context
def fingerprint(ctx, business_json: str, crawled_json: Optional[str]):
    """Run a single fingerprint for BUSINESS_JSON without touching stored state."""
    try:
        _check_settings("fingerprint")
        settings = get_settings()
        business = _load_business(business_json)
        crawled = None
        if crawled_json:
            crawled = CrawledData.model_validate(
                json.loads(Path(crawled_json).read_text(encoding="utf-8"))
            )

        llm_client = OpenRouterClient(settings.llm)
        engine = FingerprintEngine(llm_client, settings.llm)
        console.print(
            f"[blue]Fingerprinting {business.name} across {len(engine.models)} models[/blue]"
        )

        async def run():
            try:
                return await engine.run(business, crawled)
            finally:
                await llm_client.aclose()

        analysis = asyncio.run(run())
        _display_analysis(analysis)
        _display_leaderboard(analysis)

    except CFPError as e:
        _fail(ctx, "Fingerprint Error", e)


@main.command()
@click.argument("name")
@click.option("--city", help="City the business operates in")
@click.option("--region", help="State or region")
@click.option("--website", help="Business website, excluded from independent sources")
@click.pass_context
def notability(ctx, name: str, city: Optional[str], region: Optional[str], website: Optional[str]):
    """Assess whether NAME has enough independent coverage to publish."""
    try:
        _check_settings("notability")
        settings = get_settings()
        search_client = GoogleSearchClient(settings.search)
        llm_client = OpenRouterClient(settings.llm)
        gate = NotabilityGate(
            search_client,
            llm_client,
            search_config=settings.search,
            llm_config=settings.llm,
            query_budget=DailyQueryBudget(settings.search.daily_query_limit),
        )

        async def run():
            try:
                return await gate.assess(name, Location(city=city, region=region), website)
            finally:
                await search_client.aclose()
                await llm_client.aclose()

        verdict = asyncio.run(run())
        _display_verdict(name, verdict)
        sys.exit(0 if verdict.passed else 1)

    except CFPError as e:
        _fail(ctx, "Notability Error", e)


@main.command()
@click.argument("attribute_type", type=click.Choice([t.value for t in QidAttributeType]))
@click.argument("text")
@click.option("--region", help="Region used to disambiguate city names")
@click.option("--external", is_flag=True, help="Allow a SPARQL lookup on cache miss")
@click.pass_context
def resolve_qid(ctx, attribute_type: str, text: str, region: Optional[str], external: bool):
    """Resolve TEXT to a Wikidata QID through the resolution cache."""
    try:
        kg_config = get_settings().knowledge_graph
        sparql_client = WikidataSparqlClient(kg_config) if external else None
        cache = QidResolutionCache(
            store=JsonFileQidStore(Path(kg_config.qid_cache_path)), sparql_client=sparql_client
        )
        attribute = QidAttributeType(attribute_type)

        async def run():
            try:
                if attribute == QidAttributeType.CITY:
                    return await cache.resolve_city(text, region, allow_external=external)
                return await cache.resolve(attribute, text, allow_external=external)
            finally:
                if sparql_client is not None:
                    await sparql_client.aclose()

        qid = asyncio.run(run())

        if qid:
            console.print(f"[green]{attribute.value} '{text}' → {qid}[/green]")
        else:
            console.print(f"[yellow]No QID found for {attribute.value} '{text}'[/yellow]")
        sys.exit(0 if qid else 1)

    except CFPError as e:
        _fail(ctx, "Resolution Error", e)


@main.command()
@click.pass_context
def config(ctx):
    """Display current configuration."""
    try:
        console.print("[blue]CFP Configuration[/blue]")

        missing = validate_required_settings()
        if missing:
            console.print("[red]⚠️  Configuration Issues:[/red]")
            for item in missing:
                console.print(f"  • Missing: {item}")
            console.print()
        else:
            console.print("[green]✅ Configuration Valid[/green]")
            console.print()

        print_configuration_summary()

        cb_status = get_circuit_breaker_status()
        if cb_status:
            cb_table = Table(title="Circuit Breakers")
            cb_table.add_column("Name", style="cyan")
            cb_table.add_column("State", style="white")
            cb_table.add_column("Failures", style="yellow")
            for name, breaker in cb_status.items():
                cb_table.add_row(name, breaker.get("state", "unknown"), str(breaker.get("failure_count", 0)))
            console.print(cb_table)

        sys.exit(0 if not missing else 1)

    except Exception as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        sys.exit(1)


@main.command()
@click.argument("breaker_name")
@click.pass_context
def reset_breaker(ctx, breaker_name: str):
    """Reset a circuit breaker by name."""
    success = reset_circuit_breaker(breaker_name)

    if success:
        console.print(f"[green]✅ Circuit breaker '{breaker_name}' reset successfully[/green]")
    else:
        console.print(f"[red]❌ Circuit breaker '{breaker_name}' not found[/red]")

    sys.exit(0 if success else 1)


def _status_value(status) -> str:
    """Safely extract status value from enum or string."""
    if hasattr(status, "value"):
        return status.value
    return str(status) if status else "unknown"


def _display_status(report: StatusReport) -> None:
    status_value = _status_value(report.status)
    if status_value == "published":
        console.print(f"[green]✅ Published as {report.qid}[/green]")
    elif status_value == "error":
        console.print(f"[red]❌ Failed during {report.error_stage}[/red]")

    table = Table(title=f"Business {report.business_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Status", status_value)
    table.add_row("Attempts", str(report.pipeline_attempts))
    if report.qid:
        table.add_row("QID", report.qid)
    if report.visibility_score is not None:
        table.add_row("Visibility Score", str(report.visibility_score))
    if report.trend:
        table.add_row("Trend", _status_value(report.trend))
    if report.error_message:
        message = report.error_message
        table.add_row("Error", message[:200] + "..." if len(message) > 200 else message)
    if report.last_good_status:
        table.add_row("Last Good Status", _status_value(report.last_good_status))
    if report.publish_skip_reasons:
        table.add_row("Publish Skipped", ", ".join(report.publish_skip_reasons))

    console.print(table)


def _display_analysis(analysis: FingerprintAnalysis) -> None:
    table = Table(title=f"Fingerprint: {analysis.business_name}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Visibility Score", str(analysis.visibility_score))
    table.add_row("Mention Rate", f"{analysis.mention_rate:.0%}")
    table.add_row("Sentiment", f"{analysis.sentiment_score:+.2f}")
    table.add_row("Average Rank", f"{analysis.avg_rank:.1f}" if analysis.avg_rank else "N/A")
    table.add_row("Successful Calls", f"{analysis.success_count}/{analysis.total_calls}")
    table.add_row("Confidence", f"{analysis.overall_confidence:.2f}")
    console.print(table)


def _display_leaderboard(analysis: FingerprintAnalysis) -> None:
    leaderboard = analysis.leaderboard
    entries = sorted(
        [leaderboard.target, *leaderboard.competitors],
        key=lambda e: (e.rank is None, e.rank or 0),
    )

    table = Table(title=f"Leaderboard ({_status_value(leaderboard.market_position)})")
    table.add_column("Rank", style="yellow")
    table.add_column("Business", style="cyan")
    table.add_column("Mentions", style="white")
    table.add_column("Share", style="white")

    for entry in entries:
        name = f"[bold]{entry.name}[/bold]" if entry.is_target else entry.name
        table.add_row(
            str(entry.rank) if entry.rank else "-",
            name,
            str(entry.mention_count),
            f"{entry.market_share:.0%}",
        )
    console.print(table)


def _display_verdict(name: str, verdict: NotabilityVerdict) -> None:
    if verdict.passed:
        console.print(f"[green]✅ {name} is notable ({verdict.confidence:.2f})[/green]")
    else:
        console.print(f"[red]❌ {name} is not notable ({verdict.confidence:.2f})[/red]")
        if verdict.reasons:
            console.print(f"[yellow]Reasons:[/yellow] {', '.join(verdict.reasons)}")

    if verdict.references:
        table = Table(title="Serious References")
        table.add_column("Source", style="cyan")
        table.add_column("Type", style="white")
        table.add_column("Trust", style="yellow")
        table.add_column("Title", style="dim")
        for ref in verdict.references:
            table.add_row(ref.source_domain, _status_value(ref.source_type), str(ref.trust_score), ref.title[:60])
        console.print(table)

    for suggestion in verdict.suggestions:
        console.print(f"  • {suggestion}")


if __name__ == "__main__":
    main()
