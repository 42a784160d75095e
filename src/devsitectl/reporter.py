"""Rendering of pipeline reports and dependency checks."""
from __future__ import annotations

import json
from collections.abc import Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from .config import AppConfig
from .dependencies import DependencyResult
from .pipeline import PipelineReport, StepOutcome, StepStatus

_STATUS_STYLES = {
    StepStatus.APPLIED: "[green]applied[/green]",
    StepStatus.SKIPPED: "[cyan]skipped[/cyan]",
    StepStatus.FAILED: "[red]failed[/red]",
}


def connection_details(report: PipelineReport, config: AppConfig) -> dict[str, str]:
    """Return what a developer needs to reach the provisioned site."""
    request = report.request
    database = config.database
    return {
        "url": request.url,
        "project_dir": str(report.paths.project_dir),
        "database": request.database_name,
        "database_host": f"{database.host}:{database.port}",
        "database_user": database.username,
        "php_version": request.php_version,
    }


class ResultReporter:
    """Print step outcomes followed by connection details or the failure."""

    def __init__(self, console: Console, *, json_output: bool = False) -> None:
        """Render to *console*, as a table or as a JSON document."""
        self._console = console
        self._json = json_output

    def render(
        self,
        report: PipelineReport,
        config: AppConfig,
        *,
        warnings: Sequence[str] = (),
    ) -> None:
        """Render *report*."""
        if self._json:
            payload = report.to_dict()
            if report.succeeded:
                payload["connection"] = connection_details(report, config)
            payload["warnings"] = list(warnings)
            self._console.print_json(json.dumps(payload))
            return

        table = Table("Step", "Status", "Details", title=f"Provisioning {report.request.domain}")
        for outcome in report.outcomes:
            detail = Text(outcome.detail or "")
            table.add_row(outcome.step, _STATUS_STYLES[outcome.status], detail)
        self._console.print(table)

        failure = report.failure
        if failure is not None:
            self._render_failure(failure)
            return

        self._console.print(
            f"[green]Done[/green]: {report.changed} step(s) changed the system."
        )
        for key, value in connection_details(report, config).items():
            self._console.print(f"  {key.replace('_', ' ')}: {escape(value)}")
        for message in warnings:
            self._console.print(f"[yellow]warning[/yellow]: {escape(message)}")

    def render_checks(self, results: Sequence[DependencyResult]) -> None:
        """Render a batch dependency report."""
        if self._json:
            self._console.print_json(
                json.dumps(
                    {
                        "ok": all(result.ok for result in results),
                        "checks": [result.to_dict() for result in results],
                    }
                )
            )
            return
        table = Table("Check", "Status", "Details")
        for result in results:
            status = "[green]OK[/green]" if result.ok else "[red]MISSING[/red]"
            detail = result.message
            if result.error is not None and result.error.remediation:
                detail += f"\n{result.error.remediation}"
            table.add_row(result.id, status, Text(detail))
        self._console.print(table)

    def _render_failure(self, failure: StepOutcome) -> None:
        detail = escape(failure.detail or "")
        self._console.print(f"[red]Aborted at '{failure.step}': {detail}[/red]")
        if failure.error is not None and failure.error.remediation:
            self._console.print(f"  remediation: {escape(failure.error.remediation)}")


__all__ = ["ResultReporter", "connection_details"]
