"""
Tests for the import engine.

A small in-memory catalog stands in for the real storage; it can be told
to refuse writes for given codes or to behave as if it were unreachable.
"""

import unittest
from typing import Any, Dict, List, Optional

from examsync.errors import CatalogError, CatalogUnavailable
from examsync.model import (
    CatalogEntry,
    IssueKind,
    ParsedCourseRecord,
    ParsedExamRecord,
    ParsedPlanningRecord,
    RowAction,
)
from examsync.parse import parse_courses
from examsync.reconcile import Create, ImportRun, RunState, Update, decide, import_records


class MemoryCatalog:
    def __init__(self, fail_codes: tuple = (), unavailable_after: Optional[int] = None) -> None:
        self.entries: Dict[str, Dict[str, Any]] = {}
        self.fail_codes = set(fail_codes)
        self.unavailable_after = unavailable_after
        self.calls = 0
        self._next = 1

    def _tick(self) -> None:
        self.calls += 1
        if self.unavailable_after is not None and self.calls > self.unavailable_after:
            raise CatalogUnavailable("connection lost")

    def get_by_key(self, code: str) -> Optional[CatalogEntry]:
        self._tick()
        for entry_id, raw in self.entries.items():
            if raw["code"] == code:
                return CatalogEntry(entry_id, code, dict(raw["fields"]))
        return None

    def create(self, code: str, fields: Dict[str, Any]) -> CatalogEntry:
        self._tick()
        if code in self.fail_codes:
            raise CatalogError("duplicate key value")
        entry_id = f"id-{self._next}"
        self._next += 1
        self.entries[entry_id] = {"code": code, "fields": dict(fields)}
        return CatalogEntry(entry_id, code, dict(fields))

    def update(self, entry_id: str, fields: Dict[str, Any]) -> CatalogEntry:
        self._tick()
        raw = self.entries[entry_id]
        if raw["code"] in self.fail_codes:
            raise CatalogError("row is locked")
        raw["fields"].update(fields)
        return CatalogEntry(entry_id, raw["code"], dict(raw["fields"]))


def _exam(code: str = "MATH101", **kw: Any) -> ParsedExamRecord:
    values = {"name": "Calculus I", "instructor_emails": ("a@x.be",)}
    values.update(kw)
    return ParsedExamRecord(code=code, **values)


class TestDecide(unittest.TestCase):
    def test_create_when_absent(self) -> None:
        decision = decide(ParsedCourseRecord("A", "Title"), None)
        self.assertIsInstance(decision, Create)
        self.assertEqual(decision.fields, {"full_title": "Title"})

    def test_update_only_carries_authoritative_fields(self) -> None:
        entry = CatalogEntry("id-1", "A", {"full_title": "Old", "instructions": "Bring ID"})
        decision = decide(ParsedCourseRecord("A", "New"), entry)
        self.assertIsInstance(decision, Update)
        self.assertEqual(decision.fields, {"full_title": "New"})


class TestImportRecords(unittest.TestCase):
    def test_create_then_update(self) -> None:
        catalog = MemoryCatalog()

        first = import_records([_exam()], catalog)
        self.assertEqual((first.created_count, first.updated_count), (1, 0))

        second = import_records([_exam()], catalog)
        self.assertEqual((second.created_count, second.updated_count), (0, 1))
        self.assertEqual(len(catalog.entries), 1)

    def test_rerun_is_idempotent(self) -> None:
        catalog = MemoryCatalog()
        rows = [ParsedCourseRecord(f"C{i}", f"Course {i}") for i in range(5)]

        first = import_records(rows, catalog)
        second = import_records(rows, catalog)

        self.assertEqual(second.created_count, 0)
        self.assertEqual(second.updated_count, first.created_count + first.updated_count)
        self.assertEqual(len(catalog.entries), 5)

    def test_update_preserves_fields_outside_the_upload(self) -> None:
        catalog = MemoryCatalog()
        entry = catalog.create("WMDS2221", {"full_title": "Old", "instructions": "Bring ID"})

        import_records([ParsedCourseRecord("WMDS2221", "New title")], catalog)

        fields = catalog.entries[entry.id]["fields"]
        self.assertEqual(fields["full_title"], "New title")
        self.assertEqual(fields["instructions"], "Bring ID")

    def test_create_leaves_unspecified_fields_unset(self) -> None:
        catalog = MemoryCatalog()
        import_records([ParsedCourseRecord("WMDS2221", "Data")], catalog)
        (raw,) = catalog.entries.values()
        self.assertNotIn("instructions", raw["fields"])

    def test_persistence_failure_is_isolated(self) -> None:
        catalog = MemoryCatalog(fail_codes=("B",))
        rows = [ParsedCourseRecord(c, "T") for c in ("A", "B", "C")]

        outcome = import_records(rows, catalog)

        self.assertEqual(outcome.created_count, 2)
        self.assertEqual(len(outcome.errors), 1)
        error = outcome.errors[0]
        self.assertEqual(error.kind, IssueKind.PERSISTENCE_FAILURE)
        self.assertEqual(error.key, "B")
        self.assertEqual(str(error), "B: duplicate key value")
        self.assertEqual(
            outcome.created_count + outcome.updated_count + len(outcome.persistence_failures),
            len(rows),
        )
        self.assertTrue(outcome.is_partial_success)

    def test_duplicate_codes_in_one_batch_last_write_wins(self) -> None:
        catalog = MemoryCatalog()
        rows = [ParsedCourseRecord("A", "first"), ParsedCourseRecord("A", "second")]

        outcome = import_records(rows, catalog)

        self.assertEqual((outcome.created_count, outcome.updated_count), (1, 1))
        (raw,) = catalog.entries.values()
        self.assertEqual(raw["fields"]["full_title"], "second")

    def test_progress_is_monotonic(self) -> None:
        seen: List[tuple] = []
        rows = [ParsedCourseRecord(c, "T") for c in ("A", "B", "C")]

        import_records(rows, MemoryCatalog(fail_codes=("B",)), on_progress=lambda d, t: seen.append((d, t)))

        self.assertEqual(seen, [(1, 3), (2, 3), (3, 3)])

    def test_failing_callback_does_not_stop_the_run(self) -> None:
        def boom(done: int, total: int) -> None:
            raise RuntimeError("ui closed")

        rows = [ParsedCourseRecord(c, "T") for c in ("A", "B")]
        with self.assertLogs("examsync.reconcile", level="WARNING"):
            outcome = import_records(rows, MemoryCatalog(), on_progress=boom)
        self.assertEqual(outcome.created_count, 2)

    def test_parser_issues_come_first(self) -> None:
        parsed = parse_courses("Cours;Intit.Complet\n;Missing code\nB;Title\n")
        outcome = import_records(parsed.rows, MemoryCatalog(fail_codes=("B",)), parse_result=parsed)

        self.assertEqual([e.kind for e in outcome.errors], [IssueKind.ROW_REJECTED, IssueKind.PERSISTENCE_FAILURE])

    def test_invalid_records_never_reach_the_catalog(self) -> None:
        catalog = MemoryCatalog()
        outcome = import_records([ParsedCourseRecord("", "No code"), _exam(date="2025/01/15")], catalog)

        self.assertEqual(outcome.processed_count, 0)
        self.assertEqual(catalog.calls, 0)
        self.assertEqual([e.kind for e in outcome.errors], [IssueKind.ROW_REJECTED] * 2)

    def test_unavailable_catalog_aborts(self) -> None:
        catalog = MemoryCatalog(unavailable_after=2)
        rows = [ParsedCourseRecord(c, "T") for c in ("A", "B", "C")]

        run = ImportRun(rows, catalog)
        with self.assertRaises(CatalogUnavailable):
            list(run)
        self.assertEqual(run.state, RunState.ABORTED)
        self.assertEqual(run.outcome.created_count, 1)

    def test_exam_update_keeps_course_link(self) -> None:
        catalog = MemoryCatalog()
        entry = catalog.create("MATH101", {"name": "Old", "course_id": "course-1"})

        import_records([_exam(date="2025-01-15")], catalog)

        fields = catalog.entries[entry.id]["fields"]
        self.assertEqual(fields["course_id"], "course-1")
        self.assertEqual(fields["date"], "2025-01-15")
        self.assertEqual(fields["instructor_emails"], ["a@x.be"])


class TestImportRun(unittest.TestCase):
    def test_states_and_events(self) -> None:
        run = ImportRun([ParsedCourseRecord("A", "T"), ParsedCourseRecord("A", "U")], MemoryCatalog())
        self.assertEqual(run.state, RunState.IDLE)

        events = list(run)

        self.assertEqual(run.state, RunState.COMPLETED)
        self.assertEqual([e.action for e in events], [RowAction.CREATED, RowAction.UPDATED])
        self.assertEqual([e.done for e in events], [1, 2])

    def test_not_restartable(self) -> None:
        run = ImportRun([ParsedCourseRecord("A", "T")], MemoryCatalog())
        list(run)
        with self.assertRaises(RuntimeError):
            iter(run)

    def test_stopping_between_rows(self) -> None:
        catalog = MemoryCatalog()
        run = ImportRun([ParsedCourseRecord(c, "T") for c in ("A", "B", "C")], catalog)

        for event in run:
            if event.done == 1:
                break

        self.assertEqual(run.outcome.created_count, 1)
        self.assertEqual(len(catalog.entries), 1)

    def test_course_lookup_links_new_exams(self) -> None:
        courses = MemoryCatalog()
        course = courses.create("WMDS2221", {"full_title": "Data science"})
        exams = MemoryCatalog()

        outcome = import_records(
            [_exam("WMDS2221=E"), _exam("XYZ999")],
            exams,
            course_lookup=courses,
        )

        self.assertEqual(outcome.created_count, 2)
        linked = [raw for raw in exams.entries.values() if raw["code"] == "WMDS2221=E"][0]
        self.assertEqual(linked["fields"]["course_id"], course.id)
        self.assertEqual(len(outcome.warnings), 1)
        self.assertEqual(str(outcome.warnings[0]), 'XYZ999: course "XYZ999" not found')

    def test_planning_records_are_linked_and_updated(self) -> None:
        courses = MemoryCatalog()
        course = courses.create("WMDS2221", {"full_title": "Data science"})
        exams = MemoryCatalog()
        first = ParsedPlanningRecord(
            "WMDS2221(T)=E", "Data science", ("Dupont",), "2025-01-15", "09:00", "11:00", 120, "A.10", "MED"
        )
        moved = ParsedPlanningRecord(
            "WMDS2221(T)=E", "Data science", ("Dupont",), "2025-01-16", "14:00", "16:00", 120, "B.02", "MED"
        )

        import_records([first], exams, course_lookup=courses)
        outcome = import_records([moved], exams, course_lookup=courses)

        self.assertEqual((outcome.created_count, outcome.updated_count), (0, 1))
        (raw,) = exams.entries.values()
        self.assertEqual(raw["fields"]["course_id"], course.id)
        self.assertEqual(raw["fields"]["date"], "2025-01-16")
        self.assertEqual(raw["fields"]["rooms"], "B.02")
        self.assertEqual(raw["fields"]["duration_minutes"], 120)
        self.assertEqual(raw["fields"]["instructors"], ["Dupont"])

    def test_planning_record_with_bad_duration_is_rejected(self) -> None:
        catalog = MemoryCatalog()
        record = ParsedPlanningRecord("WMDS2221=E", "Data science", duration_minutes=-5)

        outcome = import_records([record], catalog)

        self.assertEqual(catalog.entries, {})
        self.assertEqual(outcome.errors[0].kind, IssueKind.ROW_REJECTED)


if __name__ == "__main__":
    unittest.main()
