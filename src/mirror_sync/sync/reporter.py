"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_report`` -- post-apply summary.
- ``format_preview`` -- preview grouped by action.
- ``format_conflicts`` -- operator listing of conflict records.
- ``report_to_json`` / ``conflicts_to_json`` -- structured dicts.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from .models import SyncAction

if TYPE_CHECKING:
    from .models import Conflict, PlanItem, SyncReport


def _describe(item: PlanItem) -> str:
    target = item.destination_id or "(new)"
    return f"{item.title or item.source_id} [{item.source_id}] -> {target}"


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_report(report: SyncReport) -> str:
    """Format a completed apply report as human-readable text.

    Sections are only included when they contain at least one item.
    Skips without an error are summarised by count only.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report ({report.run_mode.value})"
    if report.run_id:
        header += f" run {report.run_id}"
    lines.append(header)
    lines.append(f"Started: {report.started_at.isoformat()}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at.isoformat()}")
    lines.append("")

    summary = report.summary
    lines.append(
        f"Processed {len(report.items)} documents: "
        f"{summary['create']} created, {summary['update']} updated, "
        f"{summary['conflict']} conflicts, {summary['skip']} skipped, "
        f"{summary['failed']} failed"
    )
    lines.append("")

    if report.created:
        lines.append("Created:")
        for item in report.created:
            lines.append(f"  {_describe(item)}")
        lines.append("")

    if report.updated:
        lines.append("Updated:")
        for item in report.updated:
            lines.append(f"  {_describe(item)}")
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts:")
        for item in report.conflicts:
            suffix = f" ({item.conflict_id})" if item.conflict_id else ""
            lines.append(f"  {_describe(item)}: {item.reason}{suffix}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for item in report.errors:
            lines.append(f"  {item.source_id}: [{item.error_kind}] {item.error}")
            if item.reason:
                lines.append(f"    hint: {item.reason}")
        lines.append("")

    quiet_skips = [i for i in report.skipped if not i.failed]
    if quiet_skips:
        lines.append(f"Skipped: {len(quiet_skips)} documents")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Preview
# ------------------------------------------------------------------


def format_preview(report: SyncReport) -> str:
    """Format a preview grouped by action.

    Each planned action is shown under an ``[ACTION]`` heading; skips are
    listed with their reason.

    Args:
        report: A preview report (``mode="preview"``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("PREVIEW -- No changes will be made")
    lines.append(f"Mode: {report.run_mode.value}")
    lines.append("")

    groups: dict[SyncAction, list[PlanItem]] = defaultdict(list)
    for item in report.items:
        groups[item.action].append(item)

    display_order = [
        SyncAction.CREATE,
        SyncAction.UPDATE,
        SyncAction.CONFLICT,
        SyncAction.SKIP,
    ]
    for action in display_order:
        if action not in groups:
            continue
        lines.append(f"[{action.value.upper()}]")
        for item in groups[action]:
            line = f"  {_describe(item)}"
            if item.error:
                line += f": {item.error}"
            elif item.reason:
                line += f": {item.reason}"
            lines.append(line)
        lines.append("")

    if not any(a != SyncAction.SKIP for a in groups):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflicts
# ------------------------------------------------------------------


def format_conflicts(conflicts: list[Conflict]) -> str:
    """Format conflict records for operator review."""
    if not conflicts:
        return "No conflicts."
    lines: list[str] = []
    for conflict in conflicts:
        lines.append(
            f"{conflict.conflict_id} [{conflict.status.value}] "
            f"{conflict.source_id} <-> {conflict.destination_id}"
        )
        lines.append(
            f"  source changed: {conflict.source_changed_at.isoformat()}, "
            f"destination changed: {conflict.destination_changed_at.isoformat()}"
        )
        if conflict.operator_notes:
            lines.append(f"  notes: {conflict.operator_notes}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with mode, counts and per-item details.
    """
    items = []
    for item in report.items:
        entry: dict = {
            "source_id": item.source_id,
            "title": item.title,
            "destination_id": item.destination_id,
            "action": item.action.value,
        }
        if item.reason:
            entry["reason"] = item.reason
        if item.error:
            entry["error"] = {"kind": item.error_kind, "message": item.error}
        if item.conflict_id:
            entry["conflict_id"] = item.conflict_id
        if report.mode == "apply":
            entry["media_count"] = item.media_count
        items.append(entry)

    return {
        "mode": report.mode,
        "run_mode": report.run_mode.value,
        "run_id": report.run_id,
        "started_at": report.started_at.isoformat(),
        "completed_at": (
            report.completed_at.isoformat() if report.completed_at else None
        ),
        "summary": report.summary,
        "items": items,
    }


def conflicts_to_json(conflicts: list[Conflict]) -> list[dict]:
    return [c.model_dump(mode="json") for c in conflicts]
