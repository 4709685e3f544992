"""Command-line interface for pubrisk."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

load_dotenv()

from pubrisk import __version__, config  # noqa: E402
from pubrisk.scoring.factors import DiagnosisResult, ProjectDiagnosis, RiskLevel  # noqa: E402
from pubrisk.services.cache import DiskCache  # noqa: E402
from pubrisk.services.scanner import (  # noqa: E402
    ManifestError,
    Scanner,
    detect_sdk_version,
    load_dependencies,
)
from pubrisk.versions import Version  # noqa: E402

app = typer.Typer(
    name="pubrisk",
    help="Dependency risk scoring for Dart and Flutter projects",
    add_completion=False,
)
cache_app = typer.Typer(help="Inspect or clear the local API cache.")
app.add_typer(cache_app, name="cache")

console = Console()

EXIT_RISKY = 1
EXIT_MANIFEST_ERROR = 2


def version_callback(value: bool):
    if value:
        console.print(f"pubrisk version {__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.INFO if verbose else logging.WARNING)


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """pubrisk - risk scores for pub.dev dependencies."""
    pass


@app.command()
def scan(
    pins: Optional[list[str]] = typer.Argument(None, help="Dependencies as NAME==VERSION"),
    deps_file: Optional[Path] = typer.Option(None, "--deps-file", "-f", help="JSON file with resolved dependencies"),
    sdk: Optional[str] = typer.Option(None, "--sdk", help="Host Dart SDK version (detected if omitted)"),
    concurrency: int = typer.Option(config.PUB_CONCURRENCY, "--concurrency", "-c", min=1, help="Maximum parallel pub.dev requests"),
    fresh: bool = typer.Option(False, "--fresh", help="Ignore cached API responses"),
    offline: bool = typer.Option(False, "--offline", help="Use cached data only, no network"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logging"),
):
    """Score the risk of every dependency of a project."""
    _setup_logging(verbose)

    if fresh and offline:
        console.print("[red]--fresh and --offline cannot be combined[/red]")
        raise typer.Exit(EXIT_MANIFEST_ERROR)

    try:
        manifest = load_dependencies(deps_file, pins or [])
    except ManifestError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(EXIT_MANIFEST_ERROR)

    sdk_version = detect_sdk_version(sdk) if sdk or manifest.sdk_version is None else manifest.sdk_version

    if output_json:
        diagnosis = asyncio.run(_scan(manifest.dependencies, sdk_version, manifest.sdk_constraint, concurrency, fresh, offline))
        diagnosis.skipped.extend(manifest.invalid)
        typer.echo(json.dumps(diagnosis.to_dict(), indent=2))
    else:
        with console.status(f"[bold blue]Scanning {len(manifest.dependencies)} dependencies...[/bold blue]"):
            diagnosis = asyncio.run(
                _scan(manifest.dependencies, sdk_version, manifest.sdk_constraint, concurrency, fresh, offline)
            )
        diagnosis.skipped.extend(manifest.invalid)
        _display_results(diagnosis)

    if diagnosis.critical_count or diagnosis.risky_count:
        raise typer.Exit(EXIT_RISKY)


async def _scan(
    dependencies: dict[str, Version],
    sdk_version: Optional[Version],
    sdk_constraint: Optional[str],
    concurrency: int,
    fresh: bool,
    offline: bool,
) -> ProjectDiagnosis:
    """Internal async function to run a scan."""
    async with Scanner(concurrency=concurrency) as scanner:
        return await scanner.scan(
            dependencies,
            sdk_version=sdk_version,
            sdk_constraint=sdk_constraint,
            fresh=fresh,
            offline=offline,
        )


def _top_concern(result: DiagnosisResult) -> str:
    scored = [s for s in result.signals if not s.failed and s.risk > 0]
    if not scored:
        return ""
    return max(scored, key=lambda s: s.risk).reason


def _display_results(diagnosis: ProjectDiagnosis):
    """Display results in a formatted way."""
    counts = diagnosis.counts_by_level()
    summary = "  ".join(
        f"[{level.color}]{level.label}: {counts[level.value]}[/{level.color}]" for level in RiskLevel
    )
    sdk = f"Dart SDK {diagnosis.sdk_version}" if diagnosis.sdk_version else "Dart SDK unknown"
    console.print(
        Panel(
            f"{summary}\n{diagnosis.total_packages} packages scored - {sdk}",
            title="[bold]pubrisk[/bold]",
        )
    )

    if not diagnosis.results:
        console.print("[yellow]No packages could be scored[/yellow]")
    else:
        table = Table(title="Dependency Risk")
        table.add_column("Package", style="cyan")
        table.add_column("Current")
        table.add_column("Latest")
        table.add_column("Score", justify="right")
        table.add_column("Risk")
        table.add_column("Top Concern")

        for result in diagnosis.results:
            color = result.risk_level.color
            table.add_row(
                result.package_name + (" [dim](cached)[/dim]" if result.from_cache else ""),
                str(result.current_version),
                str(result.latest_version) if result.latest_version else "?",
                f"[{color}]{result.score:.0f}[/{color}]",
                f"[{color}]{result.risk_level.label}[/{color}]",
                _top_concern(result),
            )
        console.print(table)

    flagged = [r for r in diagnosis.results if r.risk_level in (RiskLevel.WARNING, RiskLevel.RISKY, RiskLevel.CRITICAL)]
    if flagged:
        console.print("\n[bold]Recommendations:[/bold]")
        for result in flagged:
            console.print(f"  [{result.risk_level.color}]{result.package_name}[/{result.risk_level.color}]")
            for rec in result.recommendations:
                console.print(f"    - {rec}")

    if diagnosis.abandoned_packages:
        names = ", ".join(r.package_name for r in diagnosis.abandoned_packages)
        console.print(f"\n[red]Possibly abandoned:[/red] {names}")
    if diagnosis.skipped:
        console.print(f"\n[yellow]Skipped:[/yellow] {', '.join(diagnosis.skipped)}")


@cache_app.command("stats")
def cache_stats():
    """Show the number and size of cached API responses."""
    cache = DiskCache()
    entries, size = cache.stats()
    console.print(f"Cache directory: {cache.directory}")
    console.print(f"Entries: {entries}")
    console.print(f"Size: {size / 1024:.1f} KiB")


@cache_app.command("clear")
def cache_clear():
    """Delete every cached API response."""
    removed = DiskCache().clear()
    console.print(f"[green]Removed {removed} cached entries[/green]")


if __name__ == "__main__":
    app()
