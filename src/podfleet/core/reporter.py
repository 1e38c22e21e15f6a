"""Run summaries for logs, terminals and machines."""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from rich.console import Console
from rich.table import Table

from podfleet.models.live import InspectionResult
from podfleet.models.plan import ReconciliationPlan
from podfleet.models.report import HostReport, OperationResult, ResultStatus, RunReport


logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    ResultStatus.APPLIED: "green",
    ResultStatus.UNCHANGED: "dim",
    ResultStatus.FAILED: "red",
    ResultStatus.SKIPPED: "yellow",
    ResultStatus.CANCELLED: "yellow",
    ResultStatus.PLANNED: "cyan",
}


class StatusReporter:
    """Builds reports from execution results and renders them."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize reporter."""
        self.console = console or Console()

    def planned_results(self, plan: ReconciliationPlan) -> List[OperationResult]:
        """Results for a dry run: every operation planned, nothing executed."""
        return [
            OperationResult(
                op_id=operation.op_id,
                kind=operation.kind,
                target=operation.target,
                status=ResultStatus.PLANNED,
                detail=operation.reason,
            )
            for operation in plan.operations
        ]

    def host_report(
        self,
        plan: ReconciliationPlan,
        results: Iterable[OperationResult],
        dry_run: bool = False,
        duration: float = 0.0,
    ) -> HostReport:
        """Combine a plan and its results into a HostReport."""
        return HostReport(
            host=plan.host,
            results=list(results),
            unchanged=[{"type": kind, "name": name} for kind, name in plan.unchanged],
            blocked=dict(plan.blocked),
            warnings=list(plan.warnings),
            dry_run=dry_run,
            duration=duration,
        )

    def error_report(self, host: str, error: Exception, dry_run: bool = False, duration: float = 0.0) -> HostReport:
        """A HostReport for a host whose run could not proceed."""
        return HostReport(
            host=host,
            dry_run=dry_run,
            duration=duration,
            error=str(error),
            error_type=type(error).__name__,
        )

    def log_summary(self, report: RunReport) -> None:
        """Emit one summary line per host, plus failures."""
        for host in report.hosts:
            if host.error:
                logger.error(f"[{host.host}] {host.error_type}: {host.error}")
                continue
            counts = ", ".join(f"{status}={count}" for status, count in sorted(host.counts().items()))
            level = logging.INFO if host.ok else logging.WARNING
            logger.log(level, f"[{host.host}] {counts or 'nothing to do'} in {host.duration:.1f}s")
            for failure in host.failures():
                logger.warning(f"[{host.host}] {failure.kind.value} {failure.target}: {failure.outcome} ({failure.error})")
            for name, reason in host.blocked.items():
                logger.warning(f"[{host.host}] {name}: blocked ({reason})")
            for warning in host.warnings:
                logger.warning(f"[{host.host}] {warning}")
            for drift in host.drift:
                logger.warning(f"[{host.host}] drift after apply: {drift}")

        status = "succeeded" if report.ok else "failed"
        logger.info(f"Run {status} for {len(report.hosts)} host(s) in {report.duration:.1f}s")

    def render_plans(self, plans: Iterable[ReconciliationPlan]) -> None:
        """Print planned operations as a table."""
        plans = list(plans)
        table = Table(title="Plan")
        table.add_column("Host", style="cyan")
        table.add_column("#", justify="right")
        table.add_column("Operation", style="magenta")
        table.add_column("Target")
        table.add_column("Reason", style="dim")

        for plan in plans:
            if plan.is_empty:
                table.add_row(plan.host, "", "[dim]no changes[/dim]", "", "")
            for index, operation in enumerate(plan.operations, 1):
                reason = operation.reason
                if operation.changes:
                    reason = f"{reason}: {', '.join(operation.changes)}"
                table.add_row(plan.host, str(index), operation.kind.value, operation.target, reason)
            for name, reason in plan.blocked.items():
                table.add_row(plan.host, "", "[red]blocked[/red]", name, reason)

        self.console.print(table)
        for plan in plans:
            for warning in plan.warnings:
                self.console.print(f"[yellow]Warning[/yellow] [{plan.host}] {warning}")

    def render(self, report: RunReport) -> None:
        """Print a run report as a table."""
        title = "Dry run" if report.dry_run else "Apply"
        table = Table(title=title)
        table.add_column("Host", style="cyan")
        table.add_column("Type")
        table.add_column("Target")
        table.add_column("Outcome")
        table.add_column("Error", style="dim", max_width=60)

        for host in report.hosts:
            if host.error:
                table.add_row(host.host, "", "", f"[red]{host.error_type}[/red]", host.error)
                continue
            for result in host.results:
                style = _STATUS_STYLES.get(result.status, "")
                table.add_row(
                    host.host,
                    result.target_type,
                    result.target,
                    f"[{style}]{result.outcome}[/{style}]",
                    result.error or "",
                )
            for name, reason in host.blocked.items():
                table.add_row(host.host, "", name, "[red]failed: inspection-failed[/red]", reason)
            for drift in host.drift:
                table.add_row(host.host, "", "", "[red]drift[/red]", drift)

        self.console.print(table)

        counts = report.counts()
        summary = ", ".join(f"{count} {status}" for status, count in sorted(counts.items())) or "nothing to do"
        marker = "[green]✓[/green]" if report.ok else "[red]✗[/red]"
        self.console.print(f"{marker} {summary} ({report.duration:.1f}s)")
        for host in report.hosts:
            for warning in host.warnings:
                self.console.print(f"[yellow]Warning[/yellow] [{host.host}] {warning}")

    def render_inspection(self, results: Iterable[InspectionResult]) -> None:
        """Print live state of hosts."""
        for result in results:
            table = Table(title=f"Host {result.host}")
            table.add_column("Type", style="magenta")
            table.add_column("Name", style="cyan")
            table.add_column("State")
            table.add_column("Detail", style="dim", max_width=60)

            for name, container in sorted(result.containers.items()):
                color = "green" if container.is_running else "yellow"
                detail = container.image
                if not container.managed:
                    detail = f"{detail} (unmanaged)"
                state = container.status if not container.health else f"{container.status}/{container.health}"
                table.add_row("container", name, f"[{color}]{state}[/{color}]", detail)
            for name, network in sorted(result.networks.items()):
                table.add_row("network", name, network.driver, ", ".join(network.subnets))
            for path, directory in sorted(result.directories.items()):
                state = "present" if directory.exists else "[yellow]missing[/yellow]"
                detail = f"{directory.mode} {directory.owner}:{directory.group}" if directory.exists else ""
                table.add_row("directory", path, state, detail)
            for image, present in sorted(result.images.items()):
                table.add_row("image", image, "present" if present else "[yellow]missing[/yellow]", "")
            for error in result.errors:
                table.add_row(error.resource_type, error.name, "[red]error[/red]", error.message)

            self.console.print(table)

    def render_json(self, data: Any) -> None:
        """Print data as JSON."""
        self.console.print_json(json.dumps(data, default=str))


def inspection_to_dict(result: InspectionResult) -> Dict[str, Any]:
    """JSON-friendly view of an InspectionResult."""
    return {
        "host": result.host,
        "containers": {
            name: {
                "image": c.image,
                "status": c.status,
                "health": c.health,
                "managed": c.managed,
                "networks": list(c.networks),
                "restart_policy": c.restart_policy,
            }
            for name, c in result.containers.items()
        },
        "networks": {
            name: {"driver": n.driver, "subnets": list(n.subnets), "internal": n.internal}
            for name, n in result.networks.items()
        },
        "directories": {
            path: {"exists": d.exists, "mode": d.mode, "owner": d.owner, "group": d.group}
            for path, d in result.directories.items()
        },
        "images": dict(result.images),
        "errors": [
            {"type": e.resource_type, "name": e.name, "message": e.message}
            for e in result.errors
        ],
    }
