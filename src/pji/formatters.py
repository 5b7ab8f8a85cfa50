"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from .config import Config
    from .core import CleanReport, OperationResult, PullReport, ScanReport
    from .registry import RepoRecord
    from .worktrees import WorktreeRecord


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def print_json(self, output: Any):
        """Print a JSON document verbatim."""
        self.console.print(
            json.dumps(output, indent=2, default=str),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )

    def _format_date(self, dt: datetime | None) -> str:
        """Format datetime for display."""
        if dt is None:
            return "[dim]never[/]"

        now = datetime.now(dt.tzinfo)
        delta = now - dt

        if delta.days == 0:
            hours = delta.seconds // 3600
            if hours == 0:
                minutes = delta.seconds // 60
                return f"[green]{minutes}m ago[/]"
            return f"[green]{hours}h ago[/]"
        elif delta.days == 1:
            return "[green]yesterday[/]"
        elif delta.days < 7:
            return f"[yellow]{delta.days}d ago[/]"
        elif delta.days < 30:
            weeks = delta.days // 7
            return f"[yellow]{weeks}w ago[/]"
        else:
            return f"[red]{dt.strftime('%Y-%m-%d')}[/]"

    def _format_path(self, record: RepoRecord) -> str:
        path = escape(str(record.local_path))
        if not record.exists:
            return f"[red]{path}[/] [dim](missing)[/]"
        return f"[cyan]{path}[/]"

    # -------------------------------------------------------------------------
    # Repository lists
    # -------------------------------------------------------------------------

    def print_repo_list(self, records: list[RepoRecord], long: bool = False):
        """Print registered repositories."""
        if self.use_json:
            self.print_json({"count": len(records), "repositories": [r.to_dict() for r in records]})
            return

        if not records:
            self.console.print("[dim]No repositories registered. Try: pji scan[/]")
            return

        if not long:
            for record in records:
                self.console.print(self._format_path(record))
            return

        table = Table(title=f"Repositories ({len(records)})")
        table.add_column("Directory", no_wrap=True)
        table.add_column("Host", style="blue")
        table.add_column("Owner")
        table.add_column("Name", style="cyan")
        table.add_column("Remote")
        table.add_column("Created", justify="right")
        table.add_column("Last Opened", justify="right")

        for record in records:
            table.add_row(
                self._format_path(record),
                escape(record.identity.host),
                escape(record.identity.owner),
                escape(record.identity.name),
                escape(record.remote_url) if record.remote_url else "[dim]none[/]",
                self._format_date(record.created_at),
                self._format_date(record.last_opened_at),
            )
        self.console.print(table)

    def print_find_results(self, results: list[tuple[RepoRecord, float]], query: str):
        """Print ranked matches."""
        if self.use_json:
            self.print_json(
                {
                    "query": query,
                    "results": [{**r.to_dict(), "score": round(s, 3)} for r, s in results],
                }
            )
            return

        if not results:
            self.console.print(f"[yellow]No repository matches '{escape(query)}'[/]")
            return

        table = Table(title=f"Matches for '{escape(query)}'" if query else "Recently Opened")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Repository", style="cyan", no_wrap=True)
        table.add_column("Directory")
        table.add_column("Last Opened", justify="right")
        for i, (record, _) in enumerate(results):
            table.add_row(
                str(i),
                escape(record.identity.full_name),
                self._format_path(record),
                self._format_date(record.last_opened_at),
            )
        self.console.print(table)

    # -------------------------------------------------------------------------
    # Reconciliation reports
    # -------------------------------------------------------------------------

    def print_scan_report(self, report: ScanReport):
        """Print scan results."""
        if self.use_json:
            self.print_json(report.to_dict())
            return

        for record in report.added:
            self.console.print(f"[green]+[/] {escape(str(record.local_path))}")
        for record in report.updated:
            self.console.print(f"[blue]~[/] {escape(str(record.local_path))}")
        for record in report.orphaned:
            self.console.print(
                f"[yellow]?[/] {escape(str(record.local_path))} [dim](missing, run pji pull or pji clean)[/]"
            )
        for record in report.mismatched:
            self.console.print(
                f"[yellow]![/] {escape(str(record.local_path))} "
                f"[dim]remote {escape(record.remote_url or '')} does not match layout[/]"
            )
        for result in report.failed:
            self.console.print(f"[red]✗[/] {escape(str(result.path))}: {escape(result.error)}")

        parts = [f"[bold]Scanned:[/] {report.scanned}"]
        parts.append(f"[green]Added:[/] {len(report.added)}")
        parts.append(f"[blue]Updated:[/] {len(report.updated)}")
        parts.append(f"Unchanged: {len(report.unchanged)}")
        if report.orphaned:
            parts.append(f"[yellow]Orphaned:[/] {len(report.orphaned)}")
        if report.failed:
            parts.append(f"[red]Failed:[/] {len(report.failed)}")
        if report.deduplicated:
            parts.append(f"[magenta]Duplicates merged:[/] {report.deduplicated}")
        self.console.print()
        self.console.print(" | ".join(parts))

    def print_operation_results(self, results: list[OperationResult], operation: str):
        """Print operation results as table."""
        if not results:
            self.console.print(f"[dim]No repositories to {operation}[/]")
            return

        table = Table(title=f"{operation.title()} Results")
        table.add_column("Repository", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Message")

        success_count = 0
        for result in results:
            if result.success:
                success_count += 1
                status = "[green]✓[/]"
                message = escape(result.message[:60]) if result.message else "OK"
            else:
                status = "[red]✗[/]"
                message = f"[red]{escape(result.error[:60])}[/]" if result.error else "Failed"
            table.add_row(escape(result.key or result.name), status, message)

        self.console.print(table)
        self.console.print(f"\n[bold]Success:[/] {success_count}/{len(results)}")

    def print_pull_report(self, report: PullReport):
        """Print pull results."""
        if self.use_json:
            self.print_json(report.to_dict())
            return

        self.print_operation_results(report.cloned + report.failed, "clone")
        for record in report.skipped:
            self.console.print(
                f"[dim]skipped {escape(str(record.local_path))}: no remote URL[/]"
            )

    def print_clean_report(self, report: CleanReport, dry_run: bool = False):
        """Print clean results."""
        if self.use_json:
            self.print_json({**report.to_dict(), "dry_run": dry_run})
            return

        verb = "Would remove" if dry_run else "Removed"
        for record in report.removed:
            self.console.print(f"[red]-[/] {escape(str(record.local_path))}")
        self.console.print(
            f"[bold]{verb}:[/] {len(report.removed)} | "
            f"[magenta]Duplicates merged:[/] {report.deduplicated}"
        )

    # -------------------------------------------------------------------------
    # Worktrees
    # -------------------------------------------------------------------------

    def print_worktree_list(self, worktrees: list[WorktreeRecord], title: str):
        """Print worktrees of one repository."""
        if self.use_json:
            self.print_json({"repository": title, "worktrees": [w.to_dict() for w in worktrees]})
            return

        table = Table(title=f"Worktrees: {escape(title)}")
        table.add_column("Branch", style="cyan", no_wrap=True)
        table.add_column("Path")
        table.add_column("Commit", style="dim")
        table.add_column("State", justify="center")

        for wt in worktrees:
            if not wt.is_registered_with_git:
                state = "[red]stale (unknown to git)[/]"
            elif wt.prunable:
                state = "[red]prunable[/]"
            elif wt.locked:
                state = "[yellow]locked[/]"
            else:
                state = "[green]active[/]"
            branch = escape(wt.display_name)
            if not wt.matches_convention:
                branch = f"{branch} [dim](custom path)[/]"
            table.add_row(branch, escape(str(wt.path)), wt.commit[:8], state)
        self.console.print(table)

    # -------------------------------------------------------------------------
    # Config
    # -------------------------------------------------------------------------

    def print_config(self, config: Config, path: Path, registry_path: Path):
        """Print the effective configuration."""
        if self.use_json:
            self.print_json(
                {**config.to_dict(), "config_path": str(path), "registry_path": str(registry_path)}
            )
            return

        state = "" if path.exists() else " [dim](not created, using defaults)[/]"
        self.console.print(f"[bold]Config:[/] {escape(str(path))}{state}")
        self.console.print(f"[bold]Registry:[/] {escape(str(registry_path))}")
        self.console.print("[bold]Roots:[/]")
        for root in config.roots:
            marker = "" if root.is_dir() else " [red](missing)[/]"
            self.console.print(f"  [cyan]{escape(str(root))}[/]{marker}")
        if config.host_templates:
            table = Table(title="Host Templates")
            table.add_column("Host", style="blue")
            table.add_column("Home")
            table.add_column("Pull Request")
            table.add_column("Issue")
            for host, template in config.host_templates.items():
                table.add_row(
                    escape(host), escape(template.home), escape(template.pr), escape(template.issue)
                )
            self.console.print(table)
