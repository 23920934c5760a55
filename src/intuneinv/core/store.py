# src/intuneinv/core/store.py
from __future__ import annotations
import getpass, pathlib, re
from typing import Any, Callable, Dict, Iterable, List, Optional

from intuneinv.core.cache import backup_path, make_backup, read_json, restore_backup, write_json_atomic
from intuneinv.core.errors import InventoryError, NotFoundError, StorageWriteError
from intuneinv.core.models import (
    AssignmentRecord, ContentHistoryEntry, InventoryRecord, ItemType, RunRecord, utc_now
)
from intuneinv.util.logging import get_logger, log_event

logger = get_logger(__name__)

SCHEMA_VERSION = 1

# File names
METADATA_FILE    = "metadata.json"
ASSIGNMENTS_FILE = "assignments.json"
HISTORY_FILE     = "content_history.json"
RUNS_FILE        = "runs.json"
REPORTS_DIR      = "reports"
SOURCE_DIR       = "source-code"

COLLECTION_FILES: Dict[ItemType, str] = {
    ItemType.APPLICATION: "applications.json",
    ItemType.SCRIPT: "scripts.json",
    ItemType.REMEDIATION: "remediations.json",
}

SOURCE_SUBDIRS: Dict[ItemType, str] = {
    ItemType.APPLICATION: "applications",
    ItemType.SCRIPT: "scripts",
    ItemType.REMEDIATION: "remediations",
}


class InventoryStore:
    """
    Flat-file inventory store. One JSON array per collection, all loaded into
    memory; every mutation rewrites the touched files atomically after taking
    a .backup copy, and restores those copies if any write in the unit fails.

    Single writer only: nothing guards against two processes sharing a root.
    """

    def __init__(self, root: str | pathlib.Path):
        self.root = pathlib.Path(root).expanduser()
        self._records: Dict[ItemType, Dict[str, InventoryRecord]] = {t: {} for t in ItemType}
        self._assignments: Dict[str, AssignmentRecord] = {}
        self._history: List[ContentHistoryEntry] = []
        self._runs: Dict[str, RunRecord] = {}
        self._metadata: Dict[str, Any] = {}
        self._init_layout()
        self._load()

    # ---------- layout / load ----------
    @property
    def reports_dir(self) -> pathlib.Path:
        return self.root / REPORTS_DIR

    @property
    def source_dir(self) -> pathlib.Path:
        return self.root / SOURCE_DIR

    def _path(self, name: str) -> pathlib.Path:
        return self.root / name

    def _init_layout(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.reports_dir.mkdir(exist_ok=True)
        self.source_dir.mkdir(exist_ok=True)
        if not self._path(METADATA_FILE).exists():
            now = utc_now()
            write_json_atomic(self._path(METADATA_FILE), {
                "schema_version": SCHEMA_VERSION, "created_at": now, "last_updated": now,
            })
        for name in (*COLLECTION_FILES.values(), ASSIGNMENTS_FILE, HISTORY_FILE, RUNS_FILE):
            if not self._path(name).exists():
                write_json_atomic(self._path(name), [])

    def _read(self, name: str) -> Any:
        p = self._path(name)
        try:
            return read_json(p)
        except ValueError as ex:
            bp = backup_path(p)
            logger.warning(f"{name} is unreadable ({ex}); trying {bp.name}")
            try:
                return read_json(bp)
            except ValueError:
                raise InventoryError(f"{name} and its backup are both unreadable: {ex}") from ex

    def _load(self) -> None:
        self._metadata = self._read(METADATA_FILE) or {}
        for kind, name in COLLECTION_FILES.items():
            rows = self._read(name) or []
            self._records[kind] = {r["id"]: InventoryRecord.from_dict(r) for r in rows}
        self._assignments = {a["id"]: AssignmentRecord.from_dict(a) for a in (self._read(ASSIGNMENTS_FILE) or [])}
        self._history = [ContentHistoryEntry.from_dict(h) for h in (self._read(HISTORY_FILE) or [])]
        self._runs = {r["id"]: RunRecord.from_dict(r) for r in (self._read(RUNS_FILE) or [])}

    # ---------- write unit ----------
    def _commit(self, writes: Dict[str, Any]) -> None:
        """
        Write every file in `writes` or none of them. The previous state of
        each file is copied to <name>.backup first.
        """
        meta = dict(self._metadata, last_updated=utc_now())
        writes = dict(writes)
        writes[METADATA_FILE] = meta
        backed_up: Dict[str, bool] = {}
        try:
            for name in writes:
                backed_up[name] = make_backup(self._path(name))
            for name, data in writes.items():
                write_json_atomic(self._path(name), data)
        except OSError as ex:
            for name, had in backed_up.items():
                try:
                    restore_backup(self._path(name), had)
                except OSError as rex:
                    logger.error(f"restore of {name} from backup failed: {rex}")
            raise StorageWriteError(f"write of {', '.join(writes)} failed: {ex}", files=list(writes)) from ex
        self._metadata = meta

    @staticmethod
    def _rows(items: Iterable[Any]) -> List[Dict[str, Any]]:
        return [i.to_dict() for i in items]

    # ---------- records ----------
    def upsert(self, record: InventoryRecord) -> InventoryRecord:
        kind = record.item_type
        record.last_updated = utc_now()
        updated = dict(self._records[kind])
        updated[record.id] = _copy(record)
        self._commit({COLLECTION_FILES[kind]: self._rows(updated.values())})
        self._records[kind] = updated
        return record

    def get(self, kind: ItemType, item_id: str) -> InventoryRecord:
        rec = self._records[kind].get(item_id)
        if rec is None:
            raise NotFoundError(kind.value, item_id)
        return _copy(rec)

    def exists(self, kind: ItemType, item_id: str) -> bool:
        return item_id in self._records[kind]

    def list(
        self,
        kind: ItemType,
        *,
        where: Optional[Callable[[InventoryRecord], bool]] = None,
        name_contains: Optional[str] = None,
        has_content: Optional[bool] = None,
    ) -> List[InventoryRecord]:
        out = list(self._records[kind].values())
        if name_contains:
            needle = name_contains.lower()
            out = [r for r in out if needle in r.display_name.lower()]
        if has_content is not None:
            out = [r for r in out if r.has_content == has_content]
        if where is not None:
            out = [r for r in out if where(r)]
        return [_copy(r) for r in sorted(out, key=lambda r: r.display_name)]

    def count(self, kind: ItemType) -> int:
        return len(self._records[kind])

    def delete(self, kind: ItemType, item_id: str) -> None:
        """Remove the record together with its assignments and content history."""
        if item_id not in self._records[kind]:
            raise NotFoundError(kind.value, item_id)
        records = {k: v for k, v in self._records[kind].items() if k != item_id}
        assignments = {
            k: a for k, a in self._assignments.items()
            if not (a.object_id == item_id and a.object_type == kind)
        }
        history = [h for h in self._history if not (h.item_id == item_id and h.item_type == kind)]
        self._commit({
            COLLECTION_FILES[kind]: self._rows(records.values()),
            ASSIGNMENTS_FILE: self._rows(assignments.values()),
            HISTORY_FILE: self._rows(history),
        })
        self._records[kind] = records
        self._assignments = assignments
        self._history = history
        log_event(logger, "record_deleted", kind=kind.value, id=item_id)

    def clear_collection(self, kind: ItemType) -> int:
        """
        Drop every record of `kind`. Assignments and content history are left
        alone; they stay until the owning id is deleted individually.
        """
        removed = len(self._records[kind])
        self._commit({COLLECTION_FILES[kind]: []})
        self._records[kind] = {}
        log_event(logger, "collection_cleared", kind=kind.value, removed=removed)
        return removed

    # ---------- content ----------
    def add_content(
        self,
        kind: ItemType,
        item_id: str,
        content: str,
        *,
        added_by: Optional[str] = None,
        comment: str = "",
        version: Optional[str] = None,
    ) -> ContentHistoryEntry:
        record = self.get(kind, item_id)
        if version is None:
            prior = sum(1 for h in self._history if h.item_id == item_id and h.item_type == kind)
            version = str(prior + 1)
        entry = ContentHistoryEntry(
            item_id=item_id,
            item_type=kind,
            content=content,
            added_by=added_by or getpass.getuser(),
            added_at=utc_now(),
            comment=comment or "",
            version=str(version),
        )
        record.content = content
        record.has_content = True
        record.last_updated = utc_now()
        records = dict(self._records[kind])
        records[item_id] = record
        history = self._history + [_copy(entry)]

        self._commit({
            COLLECTION_FILES[kind]: self._rows(records.values()),
            HISTORY_FILE: self._rows(history),
        })
        self._records[kind] = records
        self._history = history
        log_event(logger, "content_added", kind=kind.value, id=item_id, version=entry.version)
        return entry

    def get_content_history(self, kind: ItemType, item_id: str) -> List[ContentHistoryEntry]:
        """Newest first."""
        return [_copy(h) for h in reversed(self._history) if h.item_id == item_id and h.item_type == kind]

    def export_source(self, kind: ItemType, item_id: str) -> List[pathlib.Path]:
        """Write a record's content into source-code/<kind>/ and return the files written."""
        rec = self.get(kind, item_id)
        if not rec.has_content:
            raise ValueError(f"{kind.value} '{item_id}' has no content to export")
        folder = self.source_dir / SOURCE_SUBDIRS[kind]
        folder.mkdir(parents=True, exist_ok=True)
        stem = f"{_safe_name(rec.display_name)}_{rec.id}"
        written: List[pathlib.Path] = []
        if rec.content:
            suffix = "_detection.ps1" if kind == ItemType.REMEDIATION else ".ps1"
            p = folder / f"{stem}{suffix}"
            p.write_text(rec.content, encoding="utf-8")
            written.append(p)
        remediation = rec.metadata.get("remediation_script")
        if remediation:
            p = folder / f"{stem}_remediation.ps1"
            p.write_text(remediation, encoding="utf-8")
            written.append(p)
        return written

    # ---------- assignments ----------
    def upsert_assignments(self, assignments: Iterable[AssignmentRecord]) -> int:
        updated = dict(self._assignments)
        n = 0
        for a in assignments:
            a.last_updated = utc_now()
            updated[a.id] = _copy(a)
            n += 1
        if not n:
            return 0
        self._commit({ASSIGNMENTS_FILE: self._rows(updated.values())})
        self._assignments = updated
        return n

    def upsert_assignment(self, assignment: AssignmentRecord) -> AssignmentRecord:
        self.upsert_assignments([assignment])
        return assignment

    def list_assignments(
        self, kind: Optional[ItemType] = None, object_id: Optional[str] = None
    ) -> List[AssignmentRecord]:
        out = [
            a for a in self._assignments.values()
            if (kind is None or a.object_type == kind) and (object_id is None or a.object_id == object_id)
        ]
        out.sort(key=lambda a: (a.object_type.value, a.object_id, a.target_display))
        return [_copy(a) for a in out]

    # ---------- runs ----------
    def create_run(self, run: RunRecord) -> RunRecord:
        if run.id in self._runs:
            raise ValueError(f"run {run.id} already exists")
        return self.save_run(run)

    def save_run(self, run: RunRecord) -> RunRecord:
        runs = dict(self._runs)
        runs[run.id] = _copy(run)
        self._commit({RUNS_FILE: self._rows(runs.values())})
        self._runs = runs
        return run

    def get_run(self, run_id: str) -> RunRecord:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError("Run", run_id)
        return _copy(run)

    def list_runs(self, run_type: Optional[ItemType] = None, limit: Optional[int] = None) -> List[RunRecord]:
        """Newest first."""
        out = [r for r in self._runs.values() if run_type is None or r.run_type == run_type]
        out.sort(key=lambda r: r.started_at, reverse=True)
        return [_copy(r) for r in (out[:limit] if limit else out)]

    # ---------- aggregates ----------
    def statistics(self) -> Dict[str, Any]:
        per_type: Dict[str, Any] = {}
        for kind in ItemType:
            recs = self._records[kind].values()
            last = self.list_runs(kind, limit=1)
            per_type[kind.value] = {
                "count": len(self._records[kind]),
                "with_content": sum(1 for r in recs if r.has_content),
                "assignments": sum(1 for a in self._assignments.values() if a.object_type == kind),
                "last_run": last[0].to_dict() if last else None,
            }
        orphan_assignments = sum(
            1 for a in self._assignments.values() if a.object_id not in self._records[a.object_type]
        )
        orphan_history = sum(1 for h in self._history if h.item_id not in self._records[h.item_type])
        return {
            "root": str(self.root),
            "last_updated": self._metadata.get("last_updated"),
            "types": per_type,
            "total_records": sum(len(v) for v in self._records.values()),
            "total_assignments": len(self._assignments),
            "history_entries": len(self._history),
            "runs": len(self._runs),
            "orphaned_assignments": orphan_assignments,
            "orphaned_history": orphan_history,
        }


def _copy(obj):
    """Detached copy; callers never hold the store's own objects."""
    return type(obj).from_dict(obj.to_dict())


def _safe_name(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", name or "").strip("_")
    return cleaned[:80] or "item"
