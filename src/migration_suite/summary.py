"""Per-repository outcomes and the end-of-run summary."""

from dataclasses import dataclass, field
from enum import Enum

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .constants import EXIT_FAILURE, EXIT_OK


class RepoStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    PARTIAL = "partial"
    FAILED = "failed"


_STYLES = {
    RepoStatus.SUCCESS: "green",
    RepoStatus.SKIPPED: "dim",
    RepoStatus.PARTIAL: "yellow",
    RepoStatus.FAILED: "bold red",
}


@dataclass
class RepoOutcome:
    """The result of processing one repository.

    Attributes:
        name (str): The repository name.
        status (RepoStatus): Final classification.
        message (str): A one-line explanation.
        warnings (list[str]): Non-fatal problems met along the way.
        hint (str): Remediation advice for operator-actionable failures.
    """

    name: str
    status: RepoStatus
    message: str = ""
    warnings: list[str] = field(default_factory=list)
    hint: str = ""

    @property
    def failed(self) -> bool:
        """Partial pushes count as failures for the exit code."""
        return self.status in (RepoStatus.FAILED, RepoStatus.PARTIAL)


@dataclass
class RunSummary:
    """Aggregates outcomes for a whole run.

    Attributes:
        title (str): The phase name shown in the table title.
        outcomes (list[RepoOutcome]): Outcomes in processing order.
        aborted (bool): True if fail-fast stopped the run early.
    """

    title: str
    outcomes: list[RepoOutcome] = field(default_factory=list)
    aborted: bool = False

    def add(self, outcome: RepoOutcome) -> RepoOutcome:
        self.outcomes.append(outcome)
        return outcome

    def by_status(self, status: RepoStatus) -> list[RepoOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def failures(self) -> list[RepoOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def exit_code(self) -> int:
        return EXIT_FAILURE if self.failures or self.aborted else EXIT_OK

    def counts(self) -> dict[RepoStatus, int]:
        return {s: len(self.by_status(s)) for s in RepoStatus}

    def render(self, console: Console) -> None:
        """Prints the outcome table and totals."""
        table = Table(title=f"{self.title} Summary", show_lines=False)
        table.add_column("Repository", style="cyan")
        table.add_column("Status")
        table.add_column("Details")

        for outcome in self.outcomes:
            details = escape(outcome.message)
            for w in outcome.warnings:
                details += f"\n[yellow]⚠ {escape(w)}[/yellow]"
            if outcome.hint:
                details += f"\n[dim]{escape(outcome.hint)}[/dim]"
            style = _STYLES[outcome.status]
            table.add_row(
                outcome.name, f"[{style}]{outcome.status.value}[/{style}]", details
            )

        if self.outcomes:
            console.print(table)

        counts = self.counts()
        succeeded = counts[RepoStatus.SUCCESS]
        failed = counts[RepoStatus.FAILED] + counts[RepoStatus.PARTIAL]
        console.print(
            f"[bold]Succeeded:[/bold] {succeeded}  "
            f"[bold]Skipped:[/bold] {counts[RepoStatus.SKIPPED]}  "
            f"[bold]Failed:[/bold] {failed}"
        )
        if self.aborted:
            console.print(
                "[bold red]Run stopped at the first failure (--fail-fast).[/bold red]"
            )
