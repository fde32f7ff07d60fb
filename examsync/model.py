"""
Central data model definitions used across the project.

This module defines the canonical structure of the records and results so that:
- the parser, the import engine and the matcher share the same field names
- the CLI and any host application render exactly what the core produced
- everything stays plain data (no I/O, no catalog access)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


# ---------------------------------------------------------------------------
# Parsed input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawRow:
    """
    One data line split into trimmed fields, with its 1-based source line.
    """

    line: int
    fields: Tuple[str, ...]


@dataclass(frozen=True)
class ParsedCourseRecord:
    """
    One course row: Cours;Intit.Complet
    """

    code: str
    full_title: str

    # Only the title is owned by the upload; instructions are edited by hand
    AUTHORITATIVE = ("full_title",)

    def create_fields(self) -> Dict[str, Any]:
        return {"full_title": self.full_title}

    def authoritative_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.AUTHORITATIVE}


@dataclass(frozen=True)
class ParsedExamRecord:
    """
    One exam row: code, name, instructor emails and an optional schedule.

    date is 'YYYY-MM-DD', start_time / end_time are 'HH:MM' (24h).
    Optional values are either well-formed or None.
    """

    code: str
    name: str
    instructor_emails: Tuple[str, ...]
    date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    AUTHORITATIVE = ("name", "instructor_emails", "date", "start_time", "end_time")

    def create_fields(self) -> Dict[str, Any]:
        return self.authoritative_fields()

    def authoritative_fields(self) -> Dict[str, Any]:
        return _plain_fields(self, self.AUTHORITATIVE)


@dataclass(frozen=True)
class ParsedPlanningRecord:
    """
    One line of the exam planning export:
    Date;Jour;Durée (h);Début;Fin;Activité;Code;Auditoires;Enseignants;Secrétariat

    code is the activity code (e.g. WMDS2221=E), name comes from the "Code"
    column. Dates and times are already converted to 'YYYY-MM-DD' / 'HH:MM';
    instructors are names, not emails.
    """

    code: str
    name: str
    instructors: Tuple[str, ...] = ()
    date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    duration_minutes: Optional[int] = None
    rooms: Optional[str] = None
    secretariat: Optional[str] = None

    AUTHORITATIVE = (
        "name",
        "instructors",
        "date",
        "start_time",
        "end_time",
        "duration_minutes",
        "rooms",
        "secretariat",
    )

    def create_fields(self) -> Dict[str, Any]:
        return self.authoritative_fields()

    def authoritative_fields(self) -> Dict[str, Any]:
        return _plain_fields(self, self.AUTHORITATIVE)


def _plain_fields(record: Any, names: Tuple[str, ...]) -> Dict[str, Any]:
    # Tuples become lists so the fields are JSON-ready
    out: Dict[str, Any] = {}
    for name in names:
        value = getattr(record, name)
        out[name] = list(value) if isinstance(value, tuple) else value
    return out


ParsedRecord = Union[ParsedCourseRecord, ParsedExamRecord, ParsedPlanningRecord]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CatalogEntry:
    """
    One stored entity as seen through a catalog capability.

    The id is owned by whoever stores the entry; code is the natural key.
    """

    id: str
    code: str
    fields: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Issues and import results
# ---------------------------------------------------------------------------


class IssueKind(str, Enum):
    STRUCTURAL = "structural"
    ROW_REJECTED = "row_rejected"
    ROW_DEGRADED = "row_degraded"
    PERSISTENCE_FAILURE = "persistence_failure"


@dataclass(frozen=True)
class ImportIssue:
    """
    One error or warning produced while parsing or importing.

    Row issues carry the source line, engine issues carry the natural code,
    structural issues carry neither.
    """

    kind: IssueKind
    message: str
    line: Optional[int] = None
    key: Optional[str] = None

    def __str__(self) -> str:
        if self.line is not None:
            return f"Line {self.line}: {self.message}"
        if self.key is not None:
            return f"{self.key}: {self.message}"
        return self.message


@dataclass
class ParseResult:
    rows: List[ParsedRecord] = field(default_factory=list)
    errors: List[ImportIssue] = field(default_factory=list)
    warnings: List[ImportIssue] = field(default_factory=list)


@dataclass
class ImportOutcome:
    """
    Aggregated result of one import call.

    created_count + updated_count + len(persistence_failures) equals the
    number of valid rows handed to the engine.
    """

    created_count: int = 0
    updated_count: int = 0
    errors: List[ImportIssue] = field(default_factory=list)
    warnings: List[ImportIssue] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return self.created_count + self.updated_count

    @property
    def persistence_failures(self) -> List[ImportIssue]:
        return [e for e in self.errors if e.kind is IssueKind.PERSISTENCE_FAILURE]

    @property
    def is_partial_success(self) -> bool:
        return bool(self.errors) and self.processed_count > 0

    @property
    def is_total_failure(self) -> bool:
        return bool(self.errors) and self.processed_count == 0


class RowAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    """
    Emitted once per processed row; done increases by exactly one each time.
    """

    done: int
    total: int
    code: str
    action: RowAction


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


@dataclass(frozen=True)
class UnlinkedEntity:
    """
    Something (typically an exam) that has no course link yet.
    """

    entity_id: str
    raw_code: str
    label: Optional[str] = None


@dataclass(frozen=True)
class MatchCandidate:
    target_id: str
    target_code: str
    tier: ConfidenceTier


@dataclass(frozen=True)
class LinkDecision:
    """
    An accepted association between an entity and a catalog entry.

    method is "auto" (high-confidence suggestion) or "manual".
    """

    entity_id: str
    target_id: str
    method: str
    tier: ConfidenceTier = ConfidenceTier.NONE
