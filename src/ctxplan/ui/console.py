"""Rich-powered console output for ctxplan."""

from __future__ import annotations

from collections.abc import Mapping

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from ctxplan import __version__
from ctxplan.corpus.models import CorpusSnapshot
from ctxplan.models import ContextPlan
from ctxplan.planning.registry import ProviderCapability

_TECHNIQUE_STYLES = {
    "none": "green",
    "prioritized-trim": "cyan",
    "chunk": "blue",
    "summarize": "magenta",
    "keyword-extract": "yellow",
}


class Console:
    """Terminal output for ctxplan using Rich."""

    def __init__(self, console: RichConsole | None = None) -> None:
        self.console = console or RichConsole()

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]ctxplan[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Budgeted context planning for LLM document generation[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def indexing_progress(self) -> Progress:
        """Create a progress bar for loading the corpus."""
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=self.console,
        )

    def show_corpus_stats(self, snapshot: CorpusSnapshot) -> None:
        """Display corpus statistics in a table."""
        table = Table(title="Corpus", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="right", style="cyan")

        table.add_row("Documents", str(len(snapshot)))
        table.add_row("Total tokens", f"{snapshot.total_tokens:,}")
        table.add_row("Rejected", str(len(snapshot.failures)))

        tiers: dict[str, int] = {}
        for record in snapshot.records:
            tiers[record.priority_tier.value] = tiers.get(record.priority_tier.value, 0) + 1
        if tiers:
            table.add_section()
            for tier in ("critical", "high", "medium", "low"):
                if tier in tiers:
                    table.add_row(f"  {tier}", str(tiers[tier]))

        self.console.print(table)

    def show_plan(self, plan: ContextPlan) -> None:
        """Display a context plan: budget panel, included and excluded documents."""
        used = plan.utilization_percent
        color = "green" if not plan.budget_exceeded and used <= 90 else "yellow"
        if plan.budget_exceeded:
            color = "red"

        self.console.print(
            Panel(
                f"[bold]Target:[/bold] {plan.target_document_type}\n"
                f"[bold]Strategy:[/bold] {plan.strategy_used.value} ({plan.loading_strategy})\n"
                f"[bold]Tokens:[/bold] [{color}]{plan.total_tokens_used:,} / "
                f"{plan.budget_tokens:,} ({used:.1f}%)[/{color}]",
                title="[bold]Context Plan[/bold]",
                border_style=color,
            )
        )

        if plan.included_documents:
            table = Table(title="Included", border_style="green")
            table.add_column("Document", style="bold")
            table.add_column("Tier")
            table.add_column("Technique")
            table.add_column("Tokens", justify="right")
            table.add_column("Original", justify="right", style="dim")
            table.add_column("Score", justify="right", style="cyan")
            for doc in plan.included_documents:
                technique = doc.technique_applied.value
                style = _TECHNIQUE_STYLES.get(technique, "white")
                name = f"{doc.document_id} [red](forced)[/red]" if doc.forced else doc.document_id
                table.add_row(
                    name,
                    doc.tier or doc.priority_tier.value,
                    f"[{style}]{technique}[/{style}]",
                    f"{doc.tokens_used:,}",
                    f"{doc.original_tokens:,}",
                    f"{doc.relevance_score:.1f}",
                )
            self.console.print(table)

        if plan.excluded_documents:
            table = Table(title="Excluded", border_style="yellow")
            table.add_column("Document", style="bold")
            table.add_column("Reason", style="yellow")
            table.add_column("Tokens", justify="right", style="dim")
            for doc in plan.excluded_documents:
                table.add_row(doc.document_id, doc.reason.value, f"{doc.original_tokens:,}")
            self.console.print(table)

        for warning in plan.warnings:
            self.warning(warning)

    def show_providers(self, providers: Mapping[str, ProviderCapability]) -> None:
        """Display the provider capability table."""
        table = Table(title="Providers", border_style="cyan")
        table.add_column("Provider", style="bold")
        table.add_column("Max context", justify="right")
        table.add_column("Margin", justify="right", style="dim")
        table.add_column("Budget", justify="right", style="cyan")
        for provider_id in sorted(providers):
            cap = providers[provider_id]
            table.add_row(
                provider_id,
                f"{cap.max_context_tokens:,}",
                f"{cap.safety_margin:.0%}",
                f"{cap.budget_tokens:,}",
            )
        self.console.print(table)
