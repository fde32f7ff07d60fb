"""
CLI (Command Line Interface).

This module provides terminal commands for the exam administration team, e.g.:

    examsync import-courses <file.csv>
    examsync import-exams <file.csv>
    examsync import-exams --format planning <planning.csv>
    examsync suggest
    examsync link <exam_code> <course_code>
    examsync auto-link

Note:
- Parsing, reconciliation and matching live in their own modules; this file
  only wires them to the JSON catalogs in the data folder
- Exit codes: 0 = done (possibly partial), 1 = nothing usable, 2 = fatal
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, TextColumn, TimeRemainingColumn

from examsync.config import default_data_dir
from examsync.errors import CatalogUnavailable, ExamSyncError, UploadRejected
from examsync.matching import auto_accept, manual_link, resolve
from examsync.model import ImportOutcome, ParseResult
from examsync.parse import parse, read_upload
from examsync.reconcile import CourseLookup, import_records
from examsync.report import render_outcome, render_parse_result, render_suggestions
from examsync.storage import JsonCatalog, record_link, unlinked_exams

logger = logging.getLogger(__name__)

console = Console()

EXIT_OK = 0
EXIT_NOTHING_DONE = 1
EXIT_FATAL = 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _data_dir(args: argparse.Namespace) -> Path:
    return Path(args.data_dir) if args.data_dir else default_data_dir()


def _run_import(
    result: ParseResult,
    catalog: JsonCatalog,
    noun: str,
    course_lookup: Optional[CourseLookup] = None,
) -> ImportOutcome:
    """
    Run the engine with a progress bar (one step per row).
    """
    progress = Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeRemainingColumn(),
        console=console,
        transient=True,
    )
    task = progress.add_task(f"Importing {noun}...", total=len(result.rows))

    def on_progress(done: int, total: int) -> None:
        progress.update(task, completed=done, total=total)

    with progress:
        return import_records(
            result.rows,
            catalog,
            on_progress=on_progress,
            parse_result=result,
            course_lookup=course_lookup,
        )


def _cmd_import(args: argparse.Namespace, kind: str) -> int:
    """
    Shared flow of import-courses / import-exams.

    Exams come either in the exam bulk format or as a planning export
    (--format planning); both land in the exams catalog.
    """
    noun = "courses" if kind == "courses" else "exams"
    fmt = args.format if kind == "exams" else kind
    try:
        text = read_upload(args.file, fmt)
    except UploadRejected as exc:
        console.print(f"[red]Upload rejected:[/] {escape(str(exc))}")
        return EXIT_FATAL

    result = parse(text, fmt, delimiter=args.delimiter)

    if args.dry_run:
        render_parse_result(result, console)
        return EXIT_OK if result.rows else EXIT_NOTHING_DONE

    if not result.rows:
        console.print(f"[red]No valid {noun} found in {escape(args.file)}.[/]")
        render_parse_result(result, console)
        return EXIT_NOTHING_DONE

    data_dir = _data_dir(args)
    try:
        catalog = JsonCatalog.open(noun, data_dir)
        course_lookup = None
        if kind == "exams" and not args.no_course_check:
            course_lookup = JsonCatalog.open("courses", data_dir)
        with catalog.batch():
            outcome = _run_import(result, catalog, noun, course_lookup)
    except CatalogUnavailable as exc:
        console.print(f"[red]Catalog unavailable:[/] {escape(str(exc))}")
        return EXIT_FATAL

    render_outcome(outcome, console, noun=noun)
    return EXIT_NOTHING_DONE if outcome.is_total_failure else EXIT_OK


def _cmd_suggest(args: argparse.Namespace) -> int:
    """
    Show a course suggestion for every exam without course.
    """
    data_dir = _data_dir(args)
    exams = JsonCatalog.open("exams", data_dir)
    courses = JsonCatalog.open("courses", data_dir)

    unlinked = unlinked_exams(exams)
    suggestions = resolve(unlinked, courses.sorted_entries())
    titles = {c.id: str(c.fields.get("full_title") or "") for c in courses}

    render_suggestions(unlinked, suggestions, console, titles=titles)
    return EXIT_OK


def _cmd_link(args: argparse.Namespace) -> int:
    """
    Link one exam to one course by hand.
    """
    exam_code = (args.exam_code or "").strip()
    course_code = (args.course_code or "").strip()
    if not exam_code or not course_code:
        console.print("Please provide an exam code and a course code.")
        return EXIT_NOTHING_DONE

    data_dir = _data_dir(args)
    exams = JsonCatalog.open("exams", data_dir)
    courses = JsonCatalog.open("courses", data_dir)

    exam = exams.get_by_key(exam_code)
    if exam is None:
        console.print(f"Unknown exam: {exam_code}", markup=False)
        return EXIT_NOTHING_DONE
    course = courses.get_by_key(course_code)
    if course is None:
        console.print(f"Unknown course: {course_code}", markup=False)
        return EXIT_NOTHING_DONE

    record_link(exams, manual_link(exam.id, course.id))
    console.print(f"Linked: {exam.code} -> {course.code}", markup=False)
    return EXIT_OK


def _cmd_auto_link(args: argparse.Namespace) -> int:
    """
    Accept every high-confidence suggestion.
    """
    data_dir = _data_dir(args)
    exams = JsonCatalog.open("exams", data_dir)
    courses = JsonCatalog.open("courses", data_dir)

    unlinked = unlinked_exams(exams)
    decisions = auto_accept(resolve(unlinked, courses.sorted_entries()))
    with exams.batch():
        for decision in decisions:
            record_link(exams, decision)

    remaining = len(unlinked) - len(decisions)
    console.print(f"Linked {len(decisions)} exams automatically ({remaining} still without course).")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="examsync", description="Exam & course bulk import")
    parser.add_argument("--data-dir", type=str, default=None, help="Folder with courses.json / exams.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_courses = sub.add_parser("import-courses", help="Import courses (Cours;Intit.Complet)")
    p_courses.add_argument("file", type=str, help="CSV file (max 5 MB)")
    p_courses.add_argument("--dry-run", action="store_true", help="Only parse and report")
    p_courses.add_argument("--delimiter", type=str, default=";", help="Column separator")

    p_exams = sub.add_parser("import-exams", help="Import exams (bulk format or planning export)")
    p_exams.add_argument("file", type=str, help="CSV file (max 10 MB)")
    p_exams.add_argument("--dry-run", action="store_true", help="Only parse and report")
    p_exams.add_argument("--delimiter", type=str, default=";", help="Column separator")
    p_exams.add_argument(
        "--format",
        choices=("exams", "planning"),
        default="exams",
        help="exams: code;name;emails;date;start;end, planning: Date;Jour;...;Secrétariat",
    )
    p_exams.add_argument(
        "--no-course-check", action="store_true", help="Do not look up the course of each exam"
    )

    sub.add_parser("suggest", help="Suggest courses for exams without course")

    p_link = sub.add_parser("link", help="Link an exam to a course by hand")
    p_link.add_argument("exam_code", type=str, help="Exam code as imported")
    p_link.add_argument("course_code", type=str, help="Course code (e.g. WMDS2221)")

    sub.add_parser("auto-link", help="Accept all high-confidence suggestions")

    return parser


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        if args.command == "import-courses":
            raise SystemExit(_cmd_import(args, "courses"))
        if args.command == "import-exams":
            raise SystemExit(_cmd_import(args, "exams"))
        if args.command == "suggest":
            raise SystemExit(_cmd_suggest(args))
        if args.command == "link":
            raise SystemExit(_cmd_link(args))
        if args.command == "auto-link":
            raise SystemExit(_cmd_auto_link(args))
    except ExamSyncError as exc:
        console.print(f"[red]Error:[/] {escape(str(exc))}")
        raise SystemExit(EXIT_FATAL)

    raise SystemExit(EXIT_FATAL)
