# src/intuneinv/core/normalizer.py
from __future__ import annotations
import base64, binascii, codecs
from typing import Any, Dict, Iterable, List, Optional, Tuple

from intuneinv.core.errors import NormalizationError
from intuneinv.core.graph_client import GraphClient
from intuneinv.core.models import AssignmentRecord, InventoryRecord, ItemType, TargetKind, utc_now
from intuneinv.http.errors import HttpError, NotFoundError as HttpNotFoundError
from intuneinv.util.logging import get_logger

logger = get_logger(__name__)

# source key -> metadata key. Anything not listed is dropped.
APPLICATION_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("@odata.type", "app_type"),
    ("description", "description"),
    ("publisher", "publisher"),
    ("developer", "developer"),
    ("owner", "owner"),
    ("notes", "notes"),
    ("appVersion", "version"),
    ("fileName", "file_name"),
    ("size", "size"),
    ("isFeatured", "is_featured"),
    ("isAssigned", "is_assigned"),
    ("publishingState", "publishing_state"),
    ("informationUrl", "information_url"),
    ("privacyInformationUrl", "privacy_information_url"),
    ("createdDateTime", "created"),
    ("lastModifiedDateTime", "last_modified"),
)

SCRIPT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("description", "description"),
    ("fileName", "file_name"),
    ("runAsAccount", "run_as_account"),
    ("runAs32Bit", "run_as_32bit"),
    ("enforceSignatureCheck", "enforce_signature_check"),
    ("createdDateTime", "created"),
    ("lastModifiedDateTime", "last_modified"),
)

REMEDIATION_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("description", "description"),
    ("publisher", "publisher"),
    ("version", "version"),
    ("runAsAccount", "run_as_account"),
    ("runAs32Bit", "run_as_32bit"),
    ("enforceSignatureCheck", "enforce_signature_check"),
    ("isGlobalScript", "is_global_script"),
    ("createdDateTime", "created"),
    ("lastModifiedDateTime", "last_modified"),
)

FIELD_MAP = {
    ItemType.APPLICATION: APPLICATION_FIELDS,
    ItemType.SCRIPT: SCRIPT_FIELDS,
    ItemType.REMEDIATION: REMEDIATION_FIELDS,
}

# base64 field holding the primary content per type
CONTENT_FIELD = {
    ItemType.SCRIPT: "scriptContent",
    ItemType.REMEDIATION: "detectionScriptContent",
}

TARGET_KINDS = {
    "#microsoft.graph.allLicensedUsersAssignmentTarget": TargetKind.ALL_USERS,
    "#microsoft.graph.allDevicesAssignmentTarget": TargetKind.ALL_DEVICES,
    "#microsoft.graph.groupAssignmentTarget": TargetKind.GROUP,
    "#microsoft.graph.exclusionGroupAssignmentTarget": TargetKind.EXCLUSION_GROUP,
}

UNKNOWN_TARGET = "Unknown Target"


def decode_content(value: Optional[str], *, item_id: str = "") -> str:
    """Decode a base64 content field to text. Empty/None gives ''."""
    if not value:
        return ""
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as ex:
        raise NormalizationError(f"content of {item_id or 'item'} is not valid base64: {ex}", item_id) from ex
    # PowerShell ISE and Windows PowerShell save UTF-16 with a BOM
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        encoding = "utf-16"
    else:
        encoding = "utf-8-sig"
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as ex:
        logger.warning(f"content of {item_id or 'item'} is not valid {encoding}; undecodable bytes replaced: {ex}")
        return raw.decode(encoding, errors="replace")


class Normalizer:
    """
    Source payload → internal records. Group names are memoized for one
    batch (begin_batch() starts a new one); the cache is never persisted.
    """
    def __init__(self, graph: Optional[GraphClient] = None):
        self._graph = graph
        self._group_names: Dict[str, str] = {}

    def begin_batch(self) -> None:
        self._group_names = {}

    def normalize(self, raw: Dict[str, Any], item_type: ItemType, *, run_id: Optional[str] = None) -> InventoryRecord:
        if not isinstance(raw, dict):
            raise NormalizationError(f"{item_type.value} payload is not an object: {type(raw).__name__}")
        item_id = raw.get("id")
        if not item_id:
            raise NormalizationError(f"{item_type.value} payload has no id (displayName={raw.get('displayName')!r})")

        metadata = {dst: raw[src] for src, dst in FIELD_MAP[item_type] if src in raw}

        content: Optional[str] = None
        field = CONTENT_FIELD.get(item_type)
        if field and raw.get(field):
            content = decode_content(raw.get(field), item_id=item_id)
        if item_type == ItemType.REMEDIATION and raw.get("remediationScriptContent"):
            metadata["remediation_script"] = decode_content(raw.get("remediationScriptContent"), item_id=item_id)

        has_content = bool(content) or bool(metadata.get("remediation_script"))
        return InventoryRecord(
            id=item_id,
            item_type=item_type,
            display_name=raw.get("displayName") or "",
            metadata=metadata,
            content=content or None,
            has_content=has_content,
            last_seen_at=utc_now(),
            run_id=run_id,
        )

    # ---------- assignments ----------
    def group_name(self, group_id: str) -> str:
        if group_id in self._group_names:
            return self._group_names[group_id]
        if self._graph is None:
            name = f"Unknown Group ({group_id})"
        else:
            try:
                name = self._graph.get_group_name(group_id) or f"Unknown Group ({group_id})"
            except HttpNotFoundError:
                name = f"Unknown Group ({group_id})"
            except HttpError as ex:
                logger.warning(f"group lookup failed for {group_id}: {ex}")
                name = f"Error Resolving ({group_id})"
        self._group_names[group_id] = name
        return name

    def resolve_assignment_targets(
        self,
        assignments: Iterable[Dict[str, Any]],
        *,
        object_id: str,
        object_type: ItemType,
        run_id: Optional[str] = None,
    ) -> List[AssignmentRecord]:
        out: List[AssignmentRecord] = []
        for index, a in enumerate(assignments or []):
            target = a.get("target") or {}
            discriminator = target.get("@odata.type", "")
            group_id = target.get("groupId")
            kind = TARGET_KINDS.get(discriminator, TargetKind.UNKNOWN)

            if kind in (TargetKind.GROUP, TargetKind.EXCLUSION_GROUP):
                if not group_id:
                    kind, resolved, gid = TargetKind.UNKNOWN, UNKNOWN_TARGET, None
                else:
                    resolved, gid = self.group_name(group_id), group_id
            elif kind == TargetKind.UNKNOWN:
                resolved = self.group_name(group_id) if group_id else UNKNOWN_TARGET
                gid = None
            else:
                resolved, gid = None, None

            out.append(AssignmentRecord(
                id=a.get("id") or f"{object_id}_{kind.value}_{group_id or ''}_{index}",
                object_id=object_id,
                object_type=object_type,
                target_kind=kind,
                target_group_id=gid,
                resolved_group_name=resolved,
                intent=a.get("intent"),
                run_id=run_id,
            ))
        return out
