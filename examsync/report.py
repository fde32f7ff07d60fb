"""
Terminal rendering of import reports and link suggestions.

The core returns plain data; this is the only module that knows how it
looks on screen. Long error lists are cut after a few lines, like the
admin screens did.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from examsync.config import REPORT_PREVIEW_LIMIT
from examsync.model import (
    ConfidenceTier,
    ImportIssue,
    ImportOutcome,
    MatchCandidate,
    ParseResult,
    UnlinkedEntity,
)
from examsync.normalize import normalize_code


_TIER_STYLE = {
    ConfidenceTier.HIGH: "green",
    ConfidenceTier.MEDIUM: "yellow",
    ConfidenceTier.LOW: "red",
    ConfidenceTier.NONE: "dim",
}


def preview(issues: Sequence[ImportIssue], limit: int = REPORT_PREVIEW_LIMIT) -> List[str]:
    """
    First `limit` issues as text, plus a '... and N more' line if needed.
    """
    lines = [str(issue) for issue in issues[:limit]]
    if len(issues) > limit:
        lines.append(f"... and {len(issues) - limit} more")
    return lines


def summary_line(outcome: ImportOutcome, noun: str = "entries") -> str:
    text = f"Import finished: {outcome.created_count} {noun} created, {outcome.updated_count} updated"
    if outcome.is_partial_success:
        text += f" (partial success, {len(outcome.errors)} errors)"
    elif outcome.is_total_failure:
        text += f" (nothing imported, {len(outcome.errors)} errors)"
    return text


def _print_issues(console: Console, title: str, issues: Sequence[ImportIssue], style: str, limit: int) -> None:
    if not issues:
        return
    console.print(f"[bold {style}]{title} ({len(issues)}):[/]")
    for line in preview(issues, limit):
        console.print(f"  - {line}", markup=False, highlight=False)


def render_outcome(
    outcome: ImportOutcome,
    console: Console,
    noun: str = "entries",
    limit: int = REPORT_PREVIEW_LIMIT,
) -> None:
    style = "red" if outcome.is_total_failure else "green"
    console.print(f"[{style}]{summary_line(outcome, noun)}[/]")
    _print_issues(console, "Errors", outcome.errors, "red", limit)
    _print_issues(console, "Warnings", outcome.warnings, "yellow", limit)


def render_parse_result(result: ParseResult, console: Console, limit: int = REPORT_PREVIEW_LIMIT) -> None:
    """
    Dry-run view: what would be imported, without touching the catalog.
    """
    console.print(f"Valid rows: {len(result.rows)}")
    _print_issues(console, "Errors", result.errors, "red", limit)
    _print_issues(console, "Warnings", result.warnings, "yellow", limit)


def render_suggestions(
    unlinked: Sequence[UnlinkedEntity],
    suggestions: Dict[str, Optional[MatchCandidate]],
    console: Console,
    titles: Optional[Dict[str, str]] = None,
) -> None:
    """
    One table row per unlinked exam: raw code, extracted code, suggestion.

    Codes, names and titles are user text and are shown verbatim, never
    read as rich markup.
    """
    if not unlinked:
        console.print("All exams are linked to a course.")
        return

    titles = titles or {}
    table = Table(title=f"Exams without course ({len(unlinked)})", box=box.SIMPLE)
    table.add_column("Exam")
    table.add_column("Extracted code")
    table.add_column("Suggestion")
    table.add_column("Confidence")

    for entity in unlinked:
        candidate = suggestions.get(entity.entity_id)
        label = escape(entity.raw_code if not entity.label else f"{entity.raw_code} | {entity.label}")
        extracted = escape(normalize_code(entity.raw_code))
        if candidate is None:
            table.add_row(label, extracted, "-", "[dim]none[/]")
            continue
        target = candidate.target_code
        title = titles.get(candidate.target_id)
        if title:
            target = f"{target} - {title}"
        style = _TIER_STYLE[candidate.tier]
        table.add_row(label, extracted, escape(target), f"[{style}]{candidate.tier.value}[/]")

    console.print(table)
