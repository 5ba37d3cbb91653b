import logging
from typing import Any, Dict, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chainaudit.domain.interfaces.user_interface import UserInterface
from chainaudit.domain.models.contract import AnalysisResult, Severity

logger = logging.getLogger(__name__)

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold white on red",
    Severity.HIGH: "bold red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
    Severity.INFORMATIONAL: "dim",
}

STATUS_STYLES = {
    "healthy": "bold green",
    "degraded": "yellow",
    "unhealthy": "bold red",
    "unknown": "dim",
}


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_analysis_result(self, result: AnalysisResult, platform: str) -> None:
        """Renders one analysis: a summary panel, the findings table, then messages.

        Args:
            result: The (possibly degraded) analysis result.
            platform: Platform id the contracts were analyzed for.
        """
        strategy = getattr(result, "fallback_strategy", "none")
        degradation = getattr(result, "degradation_level", "none")
        status = "[bold green]success[/bold green]" if result.success else "[bold red]failed[/bold red]"
        summary_lines = [
            f"Platform: [bold]{platform}[/bold]",
            f"Status: {status}",
            f"Findings: {len(result.vulnerabilities)}",
            f"Execution time: {result.execution_time:.2f}s",
        ]
        if strategy != "none":
            summary_lines.append(f"Fallback: [yellow]{strategy}[/yellow] (degradation: {degradation})")
        self.console.print(Panel(
            "\n".join(summary_lines),
            title="[bold cyan]Analysis Result[/bold cyan]",
            border_style="cyan",
            box=ROUNDED,
            padding=(0, 1),
        ))

        if result.vulnerabilities:
            table = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
            table.add_column("Severity", style="bold")
            table.add_column("Type")
            table.add_column("Location", style="dim")
            table.add_column("Title", style="white")
            table.add_column("Source", style="dim")
            table.add_column("Conf.", justify="right")
            ordered = sorted(result.vulnerabilities, key=lambda v: v.severity.rank, reverse=True)
            for vulnerability in ordered:
                location = vulnerability.location
                table.add_row(
                    Text(vulnerability.severity.value, style=SEVERITY_STYLES.get(vulnerability.severity, "")),
                    vulnerability.type,
                    f"{location.file}:{location.line}:{location.column}",
                    vulnerability.title,
                    vulnerability.source.value,
                    f"{vulnerability.confidence:.2f}",
                )
            self.console.print(table)
        else:
            self.console.print("[dim]No vulnerabilities reported.[/dim]")

        for error in result.errors:
            self.display_error(error)
        for warning in result.warnings:
            self.display_warning(warning)

    def display_health_summary(self, summary: Dict[str, Any]) -> None:
        table = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Platform", style="bold")
        table.add_column("Status")
        table.add_column("Version", style="dim")
        table.add_column("Notes", style="white")
        for platform in summary.get("platforms", []):
            status = platform.get("status", "unknown")
            table.add_row(
                platform.get("display_name") or platform.get("id", ""),
                Text(status, style=STATUS_STYLES.get(status, "")),
                platform.get("version") or "-",
                platform.get("error") or "",
            )
        self.console.print(table)
        self.console.print(
            f"Total: {summary.get('total', 0)}  "
            f"[green]healthy {summary.get('healthy', 0)}[/green]  "
            f"[yellow]degraded {summary.get('degraded', 0)}[/yellow]  "
            f"[red]unhealthy {summary.get('unhealthy', 0)}[/red]  "
            f"[dim]unknown {summary.get('unknown', 0)}[/dim]"
        )

    def display_validation(self, platform: str, report: Dict[str, Any]) -> None:
        valid = report.get("valid", False)
        lines = [f"[bold]{'ready' if valid else 'not ready'}[/bold]"]
        for issue in report.get("issues", []):
            lines.append(f"[red]- {issue}[/red]")
        for recommendation in report.get("recommendations", []):
            lines.append(f"[cyan]* {recommendation}[/cyan]")
        self.console.print(Panel(
            "\n".join(lines),
            title=f"[bold]Analyzer: {platform}[/bold]",
            border_style="green" if valid else "red",
            box=HEAVY,
            padding=(0, 1),
        ))

    def display_platforms(self, platforms: List[Dict[str, Any]]) -> None:
        table = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Id", style="bold")
        table.add_column("Name")
        table.add_column("Languages")
        table.add_column("Extensions", style="dim")
        table.add_column("Active")
        table.add_column("Analyzer")
        for platform in platforms:
            table.add_row(
                platform["id"],
                platform["display_name"],
                ", ".join(platform["languages"]),
                ", ".join(platform["file_extensions"]),
                "yes" if platform["is_active"] else "no",
                "yes" if platform["has_analyzer"] else "no",
            )
        self.console.print(table)

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
        """
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.debug(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)
