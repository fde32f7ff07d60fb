"""
JSON file catalog used by the CLI.

This module manages the files:

    data/courses.json
    data/exams.json

Both have the same shape:

    {"entries": [{"id": "...", "code": "...", <fields>...}, ...]}

The import engine only sees the get_by_key / create / update capability;
this is one concrete implementation of it. Link decisions are stored on the
exam entry itself (course_id + link_method).
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from examsync.config import default_data_dir
from examsync.errors import CatalogError, CatalogUnavailable
from examsync.model import CatalogEntry, LinkDecision, UnlinkedEntity

logger = logging.getLogger(__name__)


def _default_path(name: str) -> Path:
    """
    Return the path of <name>.json in the configured data folder
    (EXAMSYNC_DATA_DIR or the package-local default).
    """
    return default_data_dir() / f"{name}.json"


class JsonCatalog:
    """
    Catalog of entries keyed by natural code.

    Every write is saved at once, unless it happens inside batch(): then
    the file is written a single time when the block ends.

    A missing file is an empty catalog. A file that exists but cannot be
    read is CatalogUnavailable: silently starting empty would overwrite it
    on the next write.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._entries: List[Dict[str, Any]] = self._load()
        self._by_code: Dict[str, Dict[str, Any]] = {}
        self._by_id: Dict[str, Dict[str, Any]] = {}
        for raw in self._entries:
            self._by_code.setdefault(raw["code"], raw)
            self._by_id.setdefault(raw["id"], raw)
        self._batch_depth = 0
        self._dirty = False

    @classmethod
    def open(cls, name: str, data_dir: str | Path | None = None) -> "JsonCatalog":
        base = Path(data_dir) if data_dir is not None else None
        return cls(base / f"{name}.json" if base is not None else _default_path(name))

    # -----------------------------------------------------------------------
    # File I/O
    # -----------------------------------------------------------------------

    def _load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CatalogUnavailable(f"cannot read {self.path}: {exc}") from exc

        entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise CatalogUnavailable(f"{self.path} has no 'entries' list")
        return [e for e in entries if isinstance(e, dict) and e.get("id") and e.get("code")]

    def _save(self) -> None:
        payload = {"entries": self._entries}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as exc:
            raise CatalogUnavailable(f"cannot write {self.path}: {exc}") from exc
        self._dirty = False

    def _written(self) -> None:
        self._dirty = True
        if not self._batch_depth:
            self._save()

    @contextmanager
    def batch(self) -> Iterator["JsonCatalog"]:
        """
        Defer saving until the block ends, then write the file once.

        Writes made before an exception are still saved.
        """
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if not self._batch_depth and self._dirty:
                self._save()

    # -----------------------------------------------------------------------
    # Capability
    # -----------------------------------------------------------------------

    @staticmethod
    def _to_entry(raw: Dict[str, Any]) -> CatalogEntry:
        fields = {k: v for k, v in raw.items() if k not in ("id", "code")}
        return CatalogEntry(id=str(raw["id"]), code=str(raw["code"]), fields=fields)

    def get_by_key(self, code: str) -> Optional[CatalogEntry]:
        raw = self._by_code.get(code)
        return self._to_entry(raw) if raw is not None else None

    def get_by_id(self, entry_id: str) -> Optional[CatalogEntry]:
        raw = self._by_id.get(entry_id)
        return self._to_entry(raw) if raw is not None else None

    def create(self, code: str, fields: Dict[str, Any]) -> CatalogEntry:
        if not code:
            raise CatalogError("code is required")
        if code in self._by_code:
            raise CatalogError(f"an entry with code {code!r} already exists")

        raw: Dict[str, Any] = {"id": uuid.uuid4().hex, "code": code}
        raw.update({k: v for k, v in fields.items() if k not in ("id", "code")})
        self._entries.append(raw)
        self._by_code[code] = raw
        self._by_id[raw["id"]] = raw
        self._written()
        logger.debug("created %s in %s", code, self.path.name)
        return self._to_entry(raw)

    def update(self, entry_id: str, fields: Dict[str, Any]) -> CatalogEntry:
        raw = self._by_id.get(entry_id)
        if raw is None:
            raise CatalogError(f"no entry with id {entry_id!r}")

        raw.update({k: v for k, v in fields.items() if k not in ("id", "code")})
        self._written()
        logger.debug("updated %s in %s", raw["code"], self.path.name)
        return self._to_entry(raw)

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def __iter__(self) -> Iterator[CatalogEntry]:
        for raw in self._entries:
            yield self._to_entry(raw)

    def __len__(self) -> int:
        return len(self._entries)

    def sorted_entries(self) -> List[CatalogEntry]:
        """
        Entries ordered by code, the order used for stable suggestions.
        """
        return sorted(self, key=lambda e: e.code)


# ---------------------------------------------------------------------------
# Exam <-> course links
# ---------------------------------------------------------------------------


def unlinked_exams(exams: JsonCatalog) -> List[UnlinkedEntity]:
    """
    Exams without a course_id, ordered by exam code.
    """
    out: List[UnlinkedEntity] = []
    for entry in exams.sorted_entries():
        if not entry.fields.get("course_id"):
            out.append(UnlinkedEntity(entry.id, entry.code, entry.fields.get("name")))
    return out


def record_link(exams: JsonCatalog, decision: LinkDecision) -> CatalogEntry:
    """
    Persist a link decision on the exam entry.
    """
    return exams.update(
        decision.entity_id,
        {
            "course_id": decision.target_id,
            "link_method": decision.method,
            "link_tier": decision.tier.value,
        },
    )
