from __future__ import annotations
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class ItemType(str, Enum):
    APPLICATION = "Application"
    SCRIPT = "Script"
    REMEDIATION = "Remediation"

    @classmethod
    def parse(cls, value: "str | ItemType") -> "ItemType":
        if isinstance(value, ItemType):
            return value
        v = (value or "").strip().lower().rstrip("s")
        for member in cls:
            if member.value.lower() == v or member.name.lower() == v:
                return member
        if v in ("app",):
            return cls.APPLICATION
        raise ValueError(f"Unknown item type: {value!r}")


class TargetKind(str, Enum):
    ALL_USERS = "AllUsers"
    ALL_DEVICES = "AllDevices"
    GROUP = "Group"
    EXCLUSION_GROUP = "ExclusionGroup"
    UNKNOWN = "Unknown"


GROUP_KINDS = (TargetKind.GROUP, TargetKind.EXCLUSION_GROUP)


class RunStatus(str, Enum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    COMPLETED_WITH_ERRORS = "CompletedWithErrors"
    FAILED = "Failed"


@dataclass
class InventoryRecord:
    id: str
    item_type: ItemType
    display_name: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    content: Optional[str] = None
    has_content: bool = False
    last_seen_at: str = field(default_factory=utc_now)
    run_id: Optional[str] = None
    last_updated: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.item_type, self.id)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["item_type"] = self.item_type.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InventoryRecord":
        return cls(
            id=d["id"],
            item_type=ItemType(d["item_type"]),
            display_name=d.get("display_name", ""),
            metadata=dict(d.get("metadata") or {}),
            content=d.get("content"),
            has_content=bool(d.get("has_content")),
            last_seen_at=d.get("last_seen_at") or utc_now(),
            run_id=d.get("run_id"),
            last_updated=d.get("last_updated"),
        )


@dataclass
class AssignmentRecord:
    id: str
    object_id: str
    object_type: ItemType
    target_kind: TargetKind
    target_group_id: Optional[str] = None
    resolved_group_name: Optional[str] = None
    intent: Optional[str] = None
    run_id: Optional[str] = None
    last_updated: Optional[str] = None

    def __post_init__(self):
        has_group = self.target_group_id is not None
        if has_group != (self.target_kind in GROUP_KINDS):
            raise ValueError(
                f"assignment {self.id}: target_group_id must be set exactly for group targets "
                f"(kind={self.target_kind.value}, group={self.target_group_id!r})"
            )

    @property
    def target_display(self) -> str:
        if self.target_kind == TargetKind.ALL_USERS:
            return "All Users"
        if self.target_kind == TargetKind.ALL_DEVICES:
            return "All Devices"
        if self.target_kind == TargetKind.EXCLUSION_GROUP:
            return f"Exclude: {self.resolved_group_name or self.target_group_id}"
        return self.resolved_group_name or self.target_group_id or "Unknown Target"

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["object_type"] = self.object_type.value
        d["target_kind"] = self.target_kind.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AssignmentRecord":
        return cls(
            id=d["id"],
            object_id=d["object_id"],
            object_type=ItemType(d["object_type"]),
            target_kind=TargetKind(d["target_kind"]),
            target_group_id=d.get("target_group_id"),
            resolved_group_name=d.get("resolved_group_name"),
            intent=d.get("intent"),
            run_id=d.get("run_id"),
            last_updated=d.get("last_updated"),
        )


@dataclass(frozen=True)
class ContentHistoryEntry:
    item_id: str
    item_type: ItemType
    content: str
    added_by: str
    added_at: str
    comment: str = ""
    version: str = "1"

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["item_type"] = self.item_type.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ContentHistoryEntry":
        return cls(
            item_id=d["item_id"],
            item_type=ItemType(d["item_type"]),
            content=d.get("content", ""),
            added_by=d.get("added_by", ""),
            added_at=d.get("added_at", ""),
            comment=d.get("comment", ""),
            version=str(d.get("version", "1")),
        )


@dataclass
class RunRecord:
    id: str
    run_type: ItemType
    started_at: str
    status: RunStatus = RunStatus.RUNNING
    ended_at: Optional[str] = None
    items_processed: int = 0
    error_count: int = 0
    error_messages: List[str] = field(default_factory=list)

    @classmethod
    def start(cls, run_type: ItemType) -> "RunRecord":
        return cls(id=str(uuid.uuid4()), run_type=run_type, started_at=utc_now())

    @property
    def is_closed(self) -> bool:
        return self.status != RunStatus.RUNNING

    def record_error(self, message: str) -> None:
        self.error_count += 1
        self.error_messages.append(message)

    def finish(self, status: RunStatus | None = None) -> None:
        """Close the run. Defaults to Completed / CompletedWithErrors by error count."""
        if self.is_closed:
            raise ValueError(f"run {self.id} already closed with status {self.status.value}")
        if status is None:
            status = RunStatus.COMPLETED if self.error_count == 0 else RunStatus.COMPLETED_WITH_ERRORS
        if status == RunStatus.RUNNING:
            raise ValueError("a run cannot be closed as Running")
        self.status = status
        self.ended_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["run_type"] = self.run_type.value
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RunRecord":
        return cls(
            id=d["id"],
            run_type=ItemType(d["run_type"]),
            started_at=d["started_at"],
            status=RunStatus(d.get("status", RunStatus.RUNNING.value)),
            ended_at=d.get("ended_at"),
            items_processed=int(d.get("items_processed", 0)),
            error_count=int(d.get("error_count", 0)),
            error_messages=list(d.get("error_messages") or []),
        )
