"""
Reconciliation (validated records -> catalog upserts).

Every record is matched against the catalog by its natural code:
- code already known  -> update the fields the upload is authoritative for
- code unknown        -> create the entry with all parsed fields
- catalog refuses     -> record a persistence failure and continue

Rows are processed strictly one after the other, in input order, so a
write for row N is visible to the lookup for row N+1 and progress always
moves forward by one.

The catalog is passed in as a capability (get_by_key / create / update);
this module never stores anything itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Union

from examsync.errors import CatalogUnavailable
from examsync.model import (
    CatalogEntry,
    ImportIssue,
    ImportOutcome,
    IssueKind,
    ParsedCourseRecord,
    ParsedRecord,
    ParseResult,
    ProgressEvent,
    RowAction,
)
from examsync.normalize import normalize_code
from examsync.parse import validate_record

logger = logging.getLogger(__name__)


class CatalogCapability(Protocol):
    """
    What the engine needs from whoever stores the entries.
    """

    def get_by_key(self, code: str) -> Optional[CatalogEntry]: ...

    def create(self, code: str, fields: Dict[str, Any]) -> CatalogEntry: ...

    def update(self, entry_id: str, fields: Dict[str, Any]) -> CatalogEntry: ...


class CourseLookup(Protocol):
    def get_by_key(self, code: str) -> Optional[CatalogEntry]: ...


ProgressCallback = Callable[[int, int], Any]


# ---------------------------------------------------------------------------
# Decisions and row results (tagged variants)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Create:
    record: ParsedRecord
    fields: Dict[str, Any]


@dataclass(frozen=True)
class Update:
    record: ParsedRecord
    entry: CatalogEntry
    fields: Dict[str, Any]


Decision = Union[Create, Update]


@dataclass(frozen=True)
class Created:
    entry: CatalogEntry


@dataclass(frozen=True)
class Updated:
    entry: CatalogEntry


@dataclass(frozen=True)
class Failed:
    code: str
    message: str


RowResult = Union[Created, Updated, Failed]


def decide(record: ParsedRecord, existing: Optional[CatalogEntry]) -> Decision:
    """
    Choose between create and update for one record.
    """
    if existing is None:
        return Create(record=record, fields=record.create_fields())
    return Update(record=record, entry=existing, fields=record.authoritative_fields())


def apply(decision: Decision, catalog: CatalogCapability) -> RowResult:
    """
    Execute one decision against the catalog.

    Any exception from the catalog becomes Failed, except CatalogUnavailable
    which aborts the whole run.
    """
    code = decision.record.code
    try:
        if isinstance(decision, Create):
            return Created(catalog.create(code, decision.fields))
        if isinstance(decision, Update):
            return Updated(catalog.update(decision.entry.id, decision.fields))
    except CatalogUnavailable:
        raise
    except Exception as exc:
        logger.warning("catalog rejected %s: %s", code, exc)
        return Failed(code=code, message=str(exc) or exc.__class__.__name__)
    raise TypeError(f"Unknown decision: {decision!r}")


# ---------------------------------------------------------------------------
# Import run (state machine)
# ---------------------------------------------------------------------------


class RunState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    ABORTED = "aborted"


class ImportRun:
    """
    One import call, driven by iteration.

    Iterating yields one ProgressEvent per processed row. A run can be
    iterated only once; stopping early (break) leaves the outcome with the
    rows processed so far. outcome is readable at any time.

    course_lookup is optional: when given, exam codes are normalized and
    looked up there, new exams get the course_id of the match and a
    warning is recorded when no course exists.
    """

    def __init__(
        self,
        records: Sequence[ParsedRecord],
        catalog: CatalogCapability,
        parse_result: Optional[ParseResult] = None,
        course_lookup: Optional[CourseLookup] = None,
    ) -> None:
        self._records = list(records)
        self._catalog = catalog
        self._course_lookup = course_lookup
        self.state = RunState.IDLE

        self._parse_errors: List[ImportIssue] = list(parse_result.errors) if parse_result else []
        self._parse_warnings: List[ImportIssue] = list(parse_result.warnings) if parse_result else []
        self._engine_errors: List[ImportIssue] = []
        self._engine_warnings: List[ImportIssue] = []
        self._created = 0
        self._updated = 0
        self._started = False

    @property
    def outcome(self) -> ImportOutcome:
        return ImportOutcome(
            created_count=self._created,
            updated_count=self._updated,
            errors=self._parse_errors + self._engine_errors,
            warnings=self._parse_warnings + self._engine_warnings,
        )

    def __iter__(self) -> Iterator[ProgressEvent]:
        if self._started:
            raise RuntimeError(f"import run already {self.state.value}")
        self._started = True
        return self._run()

    def _validate(self) -> List[ParsedRecord]:
        self.state = RunState.VALIDATING
        valid: List[ParsedRecord] = []
        for record in self._records:
            problem = validate_record(record)
            if problem:
                self._engine_errors.append(
                    ImportIssue(IssueKind.ROW_REJECTED, problem, key=record.code or "(no code)")
                )
                continue
            valid.append(record)
        return valid

    def _link_course(self, decision: Decision) -> Decision:
        record = decision.record
        if self._course_lookup is None or isinstance(record, ParsedCourseRecord):
            return decision

        course_code = normalize_code(record.code)
        course = self._course_lookup.get_by_key(course_code)
        if course is None:
            self._engine_warnings.append(
                ImportIssue(IssueKind.ROW_DEGRADED, f'course "{course_code}" not found', key=record.code)
            )
            return decision

        # Existing links are owned by the link workflow, never by an upload
        if isinstance(decision, Create):
            return Create(record=record, fields={**decision.fields, "course_id": course.id})
        return decision

    def _run(self) -> Iterator[ProgressEvent]:
        valid = self._validate()
        total = len(valid)

        self.state = RunState.RECONCILING
        logger.info("reconciling %d rows", total)

        for done, record in enumerate(valid, start=1):
            try:
                existing = self._catalog.get_by_key(record.code)
                decision = self._link_course(decide(record, existing))
                result = apply(decision, self._catalog)
            except CatalogUnavailable:
                self.state = RunState.ABORTED
                logger.error("catalog unavailable, aborting after %d of %d rows", done - 1, total)
                raise
            except Exception as exc:
                # Lookup failures are row failures too
                logger.warning("lookup failed for %s: %s", record.code, exc)
                result = Failed(code=record.code, message=str(exc) or exc.__class__.__name__)

            yield ProgressEvent(done=done, total=total, code=record.code, action=self._record(result))

        self.state = RunState.COMPLETED
        logger.info("import finished: %d created, %d updated", self._created, self._updated)

    def _record(self, result: RowResult) -> RowAction:
        if isinstance(result, Created):
            self._created += 1
            return RowAction.CREATED
        if isinstance(result, Updated):
            self._updated += 1
            return RowAction.UPDATED
        self._engine_errors.append(
            ImportIssue(IssueKind.PERSISTENCE_FAILURE, result.message, key=result.code)
        )
        return RowAction.FAILED


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def import_records(
    records: Sequence[ParsedRecord],
    catalog: CatalogCapability,
    on_progress: Optional[ProgressCallback] = None,
    parse_result: Optional[ParseResult] = None,
    course_lookup: Optional[CourseLookup] = None,
) -> ImportOutcome:
    """
    Upsert every record and return the aggregated outcome.

    on_progress(done, total) is called after each row; if it raises, the
    error is logged and the import goes on.
    """
    run = ImportRun(records, catalog, parse_result=parse_result, course_lookup=course_lookup)

    for event in run:
        if on_progress is None:
            continue
        try:
            on_progress(event.done, event.total)
        except Exception:
            logger.warning("progress callback failed at %d/%d", event.done, event.total, exc_info=True)

    return run.outcome
