"""
Parsing (delimited text -> validated records).

- Reads the bulk upload formats used by the secretariats
  - courses: Cours;Intit.Complet
  - exams:   Code Examen;Nom Examen;Enseignants;Date;Heure Début;Heure Fin
  - planning: Date;Jour;Durée (h);Début;Fin;Activité;Code;Auditoires;Enseignants;Secrétariat
    (the scheduling office export, with DD-MM-YY dates and 09h00 times)
- Produces records plus line-tagged errors (row rejected) and warnings
  (optional field dropped)

Important rules (DO NOT CHANGE):
- 1 data line = 1 record or exactly 1 error
- A bad header is reported but never stops parsing
- Parsing is pure: same text in, same result out
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from examsync.config import (
    ALLOWED_UPLOAD_EXTENSIONS,
    DEFAULT_DELIMITER,
    MAX_CODE_LENGTH,
    MAX_TITLE_LENGTH,
    upload_limit,
)
from examsync.errors import UploadRejected
from examsync.model import (
    ImportIssue,
    IssueKind,
    ParsedCourseRecord,
    ParsedExamRecord,
    ParsedPlanningRecord,
    ParsedRecord,
    ParseResult,
    RawRow,
)
from examsync.validators import (
    invalid_emails,
    is_valid_calendar_date,
    is_valid_clock_time,
    is_valid_email,
    split_emails,
    split_list,
    within_length,
)

logger = logging.getLogger(__name__)

HeaderTokens = Sequence[Union[str, Sequence[str]]]


# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------

COURSE_COLUMNS = ("code", "title")
COURSE_HEADER_TOKENS: HeaderTokens = (("code", "cours"), ("title", "intit"))

EXAM_COLUMNS = ("code", "name", "instructors", "date", "start", "end")
EXAM_HEADER_TOKENS: HeaderTokens = (("code",), ("name", "nom"), ("instructor", "enseignant"))

PLANNING_COLUMNS = (
    "date",
    "day",
    "duration",
    "start",
    "end",
    "activity",
    "name",
    "rooms",
    "instructors",
    "secretariat",
)
PLANNING_HEADER_TOKENS: HeaderTokens = (("date",), ("activ",), ("enseignant", "instructor"))

FORMATS = ("courses", "exams", "planning")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _split_lines(text: str) -> List[Tuple[int, str]]:
    """
    Return (source line number, trimmed line) for every non-empty line.
    """
    out: List[Tuple[int, str]] = []
    for number, line in enumerate(text.split("\n"), start=1):
        line = line.strip()
        if line:
            out.append((number, line))
    return out


def _split_fields(line: str, column_count: int, delimiter: str) -> Tuple[str, ...]:
    """
    Split one line positionally.

    Surplus fields are glued back into the last column so free text that
    contains the delimiter survives.
    """
    parts = line.split(delimiter)
    if len(parts) > column_count:
        head = parts[: column_count - 1]
        tail = delimiter.join(parts[column_count - 1 :])
        parts = head + [tail]
    return tuple(p.strip() for p in parts)


def _token_group(token: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    if isinstance(token, str):
        return (token.lower(),)
    return tuple(t.lower() for t in token)


def _missing_header_tokens(header: str, required: HeaderTokens) -> List[str]:
    lowered = header.lower()
    missing: List[str] = []
    for token in required:
        group = _token_group(token)
        if not any(t in lowered for t in group):
            missing.append(group[0])
    return missing


def _field(row: RawRow, index: int) -> str:
    return row.fields[index] if index < len(row.fields) else ""


def _rejected(row: RawRow, reason: str) -> ImportIssue:
    return ImportIssue(IssueKind.ROW_REJECTED, reason, line=row.line)


def _degraded(row: RawRow, label: str, value: str) -> ImportIssue:
    return ImportIssue(IssueKind.ROW_DEGRADED, f'invalid {label} "{value}"', line=row.line)


def _check_code(code: str) -> Optional[str]:
    if not code:
        return "missing code"
    if not within_length(code, MAX_CODE_LENGTH):
        return f"code too long (max {MAX_CODE_LENGTH} characters)"
    return None


def _check_text(value: str, label: str) -> Optional[str]:
    if not value:
        return f"missing {label}"
    if not within_length(value, MAX_TITLE_LENGTH):
        return f"{label} too long (max {MAX_TITLE_LENGTH} characters)"
    return None


# ---------------------------------------------------------------------------
# Planning export conversions
# ---------------------------------------------------------------------------

_PLANNING_DATE_RE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{2}|\d{4})$", re.ASCII)
_PLANNING_TIME_RE = re.compile(r"^(\d{1,2})[hH:](\d{0,2})$", re.ASCII)
_DURATION_RE = re.compile(r"^(\d+)\s*[hH]\s*(\d{0,2})$", re.ASCII)


def convert_planning_date(value: str) -> Optional[str]:
    """
    'DD-MM-YY' or 'DD-MM-YYYY' -> 'YYYY-MM-DD'.

    Two-digit years are read as 20YY and the year must fall in 2000-2100.
    A value that is already 'YYYY-MM-DD' is passed through. Returns None
    when the value does not name a real day.
    """
    value = value.strip()
    if is_valid_calendar_date(value):
        return value

    m = _PLANNING_DATE_RE.match(value)
    if not m:
        return None
    day, month, year = m.groups()
    if len(year) == 2:
        year = "20" + year
    if not 2000 <= int(year) <= 2100:
        return None

    converted = f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return converted if is_valid_calendar_date(converted) else None


def convert_planning_time(value: str) -> Optional[str]:
    """
    '09h00', '9h' or '09:00' -> 'HH:MM'. None when out of range.
    """
    m = _PLANNING_TIME_RE.match(value.strip())
    if not m:
        return None
    converted = f"{m.group(1).zfill(2)}:{m.group(2).zfill(2)}"
    return converted if is_valid_clock_time(converted) else None


def parse_duration(value: str) -> Optional[int]:
    """
    '02h00' -> 120, '2h' -> 120, '1h30' -> 90 (minutes).
    """
    m = _DURATION_RE.match(value.strip())
    if not m:
        return None
    return int(m.group(1)) * 60 + int(m.group(2) or 0)


# ---------------------------------------------------------------------------
# Generic table splitting
# ---------------------------------------------------------------------------


def parse_table(
    text: str,
    column_count: int,
    required_header_tokens: HeaderTokens,
    delimiter: str = DEFAULT_DELIMITER,
) -> Tuple[List[RawRow], List[ImportIssue]]:
    """
    Split text into header-checked raw rows.

    Returns the data rows and the structural issues (empty file, header
    tokens not found). Only an empty file prevents row splitting.
    """
    structural: List[ImportIssue] = []

    lines = _split_lines(text or "")
    if not lines:
        structural.append(ImportIssue(IssueKind.STRUCTURAL, "file is empty"))
        return [], structural

    _, header = lines[0]
    missing = _missing_header_tokens(header, required_header_tokens)
    if missing:
        structural.append(
            ImportIssue(
                IssueKind.STRUCTURAL,
                f"header does not contain the expected columns: {', '.join(missing)}",
            )
        )

    rows = [
        RawRow(line=number, fields=_split_fields(line, column_count, delimiter))
        for number, line in lines[1:]
    ]
    return rows, structural


# ---------------------------------------------------------------------------
# Row parsing (CORE LOGIC)
# ---------------------------------------------------------------------------


def parse_course_row(row: RawRow) -> Tuple[Optional[ParsedCourseRecord], Optional[ImportIssue]]:
    """
    Parse one course row. Returns (record, None) or (None, error).
    """
    code = _field(row, 0)
    title = _field(row, 1)

    reason = _check_code(code) or _check_text(title, "title")
    if reason:
        return None, _rejected(row, reason)

    return ParsedCourseRecord(code=code, full_title=title), None


def parse_exam_row(
    row: RawRow,
) -> Tuple[Optional[ParsedExamRecord], Optional[ImportIssue], List[ImportIssue]]:
    """
    Parse one exam row.

    Returns (record, error, warnings). A required-field problem gives
    (None, error, []); malformed optional fields are dropped and reported as
    warnings on a record that is still returned.
    """
    code = _field(row, 0)
    name = _field(row, 1)
    instructors_raw = _field(row, 2)

    reason = _check_code(code) or _check_text(name, "name")
    if reason:
        return None, _rejected(row, reason), []

    emails = split_emails(instructors_raw)
    if not emails:
        return None, _rejected(row, "missing instructor emails"), []
    bad = invalid_emails(emails)
    if bad:
        return None, _rejected(row, f"invalid emails: {', '.join(bad)}"), []

    warnings: List[ImportIssue] = []

    date: Optional[str] = _field(row, 3) or None
    if date is not None and not is_valid_calendar_date(date):
        warnings.append(_degraded(row, "date", date))
        date = None

    start: Optional[str] = _field(row, 4) or None
    if start is not None and not is_valid_clock_time(start):
        warnings.append(_degraded(row, "start time", start))
        start = None

    end: Optional[str] = _field(row, 5) or None
    if end is not None and not is_valid_clock_time(end):
        warnings.append(_degraded(row, "end time", end))
        end = None

    record = ParsedExamRecord(
        code=code,
        name=name,
        instructor_emails=tuple(emails),
        date=date,
        start_time=start,
        end_time=end,
    )
    return record, None, warnings


def parse_planning_row(
    row: RawRow,
) -> Tuple[Optional[ParsedPlanningRecord], Optional[ImportIssue], List[ImportIssue]]:
    """
    Parse one line of the planning export. Same contract as parse_exam_row.

    The date and the activity code must be present; a date, time or
    duration that cannot be converted is dropped with a warning. An empty
    "Code" column falls back to the activity code as the exam name.
    """
    expected = len(PLANNING_COLUMNS)
    if len(row.fields) < expected:
        return None, _rejected(row, f"insufficient columns ({len(row.fields)}/{expected})"), []

    (
        date_raw,
        _day,
        duration_raw,
        start_raw,
        end_raw,
        activity,
        name,
        rooms,
        instructors_raw,
        secretariat,
    ) = row.fields

    if not date_raw:
        return None, _rejected(row, "missing date"), []
    if not activity:
        return None, _rejected(row, "missing activity code"), []
    name = name or activity
    reason = _check_code(activity) or _check_text(name, "name")
    if reason:
        return None, _rejected(row, reason), []

    warnings: List[ImportIssue] = []

    date = convert_planning_date(date_raw)
    if date is None:
        warnings.append(_degraded(row, "date", date_raw))

    start = convert_planning_time(start_raw) if start_raw else None
    if start_raw and start is None:
        warnings.append(_degraded(row, "start time", start_raw))

    end = convert_planning_time(end_raw) if end_raw else None
    if end_raw and end is None:
        warnings.append(_degraded(row, "end time", end_raw))

    duration = parse_duration(duration_raw) if duration_raw else None
    if duration_raw and duration is None:
        warnings.append(_degraded(row, "duration", duration_raw))

    record = ParsedPlanningRecord(
        code=activity,
        name=name,
        instructors=tuple(split_list(instructors_raw)),
        date=date,
        start_time=start,
        end_time=end,
        # 00h00 means "not set" in the export
        duration_minutes=duration or None,
        rooms=rooms or None,
        secretariat=secretariat or None,
    )
    return record, None, warnings


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _collect(
    rows: List[RawRow],
    structural: List[ImportIssue],
    parse_row: Callable[[RawRow], Tuple[Optional[ParsedRecord], Optional[ImportIssue], List[ImportIssue]]],
) -> ParseResult:
    result = ParseResult(errors=list(structural))
    for row in rows:
        record, error, warnings = parse_row(row)
        result.warnings.extend(warnings)
        if error is not None:
            result.errors.append(error)
            continue
        result.rows.append(record)
    return result


def parse_courses(text: str, delimiter: str = DEFAULT_DELIMITER) -> ParseResult:
    rows, structural = parse_table(text, len(COURSE_COLUMNS), COURSE_HEADER_TOKENS, delimiter)
    result = ParseResult(errors=list(structural))

    for row in rows:
        record, error = parse_course_row(row)
        if error is not None:
            result.errors.append(error)
            continue
        result.rows.append(record)

    logger.debug("parsed %d course rows (%d errors)", len(result.rows), len(result.errors))
    return result


def parse_exams(text: str, delimiter: str = DEFAULT_DELIMITER) -> ParseResult:
    rows, structural = parse_table(text, len(EXAM_COLUMNS), EXAM_HEADER_TOKENS, delimiter)
    result = _collect(rows, structural, parse_exam_row)
    logger.debug(
        "parsed %d exam rows (%d errors, %d warnings)",
        len(result.rows),
        len(result.errors),
        len(result.warnings),
    )
    return result


def parse_planning(text: str, delimiter: str = DEFAULT_DELIMITER) -> ParseResult:
    rows, structural = parse_table(text, len(PLANNING_COLUMNS), PLANNING_HEADER_TOKENS, delimiter)
    result = _collect(rows, structural, parse_planning_row)
    logger.debug(
        "parsed %d planning rows (%d errors, %d warnings)",
        len(result.rows),
        len(result.errors),
        len(result.warnings),
    )
    return result


def parse(text: str, kind: str, delimiter: str = DEFAULT_DELIMITER) -> ParseResult:
    """
    Parse text in one of the bulk formats ("courses", "exams" or "planning").
    """
    if kind == "courses":
        return parse_courses(text, delimiter)
    if kind == "exams":
        return parse_exams(text, delimiter)
    if kind == "planning":
        return parse_planning(text, delimiter)
    raise ValueError(f"Unknown format: {kind!r}")


def validate_record(record: ParsedRecord) -> Optional[str]:
    """
    Re-check a record built outside the parser.

    Returns the first problem found, or None when the record could have
    come out of parse().
    """
    reason = _check_code(record.code)
    if reason:
        return reason

    if isinstance(record, ParsedCourseRecord):
        return _check_text(record.full_title, "title")

    reason = _check_text(record.name, "name")
    if reason:
        return reason

    if isinstance(record, ParsedExamRecord):
        if not record.instructor_emails:
            return "missing instructor emails"
        bad = [e for e in record.instructor_emails if not is_valid_email(e)]
        if bad:
            return f"invalid emails: {', '.join(bad)}"
    elif record.duration_minutes is not None and record.duration_minutes <= 0:
        return f'invalid duration "{record.duration_minutes}"'

    if record.date is not None and not is_valid_calendar_date(record.date):
        return f'invalid date "{record.date}"'
    for label, value in (("start time", record.start_time), ("end time", record.end_time)):
        if value is not None and not is_valid_clock_time(value):
            return f'invalid {label} "{value}"'
    return None


# ---------------------------------------------------------------------------
# Upload checks (before parsing)
# ---------------------------------------------------------------------------


def check_upload(path: Union[str, Path], kind: str) -> int:
    """
    Enforce the pre-parse constraints and return the file size in bytes.

    Raises UploadRejected for a missing, empty, oversized or non-CSV file.
    """
    p = Path(path)
    if not p.is_file():
        raise UploadRejected(f"file not found: {p}")

    if p.suffix.lower() not in ALLOWED_UPLOAD_EXTENSIONS:
        raise UploadRejected(
            f"invalid file type {p.suffix or '(none)'!r}: expected {', '.join(ALLOWED_UPLOAD_EXTENSIONS)}"
        )

    size = p.stat().st_size
    if size == 0:
        raise UploadRejected("file is empty")

    limit = upload_limit(kind)
    if size > limit:
        raise UploadRejected(f"file too large: {size} bytes (max {limit // (1024 * 1024)} MB)")

    return size


def read_upload(path: Union[str, Path], kind: str) -> str:
    """
    Check and decode an upload.

    UTF-8 (with or without BOM) is expected; spreadsheet exports saved as
    Windows-1252 are still accepted.
    """
    check_upload(path, kind)
    data = Path(path).read_bytes()
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("%s is not valid UTF-8, decoding as cp1252", path)
        return data.decode("cp1252", errors="replace")
