# src/intuneinv/core/sync.py
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional

from intuneinv.core.auth import AuthError
from intuneinv.core.errors import StorageWriteError
from intuneinv.core.graph_client import GraphClient
from intuneinv.core.models import InventoryRecord, ItemType, RunRecord, RunStatus
from intuneinv.core.normalizer import Normalizer
from intuneinv.core.store import InventoryStore
from intuneinv.http.errors import HttpError
from intuneinv.util.logging import get_logger, log_event

logger = get_logger(__name__)

GRAPH_COLLECTIONS: Dict[ItemType, str] = {
    ItemType.APPLICATION: "deviceAppManagement/mobileApps",
    ItemType.SCRIPT: "deviceManagement/deviceManagementScripts",
    ItemType.REMEDIATION: "deviceManagement/deviceHealthScripts",
}

# list endpoints omit script bodies; these need the per-item detail call
CONTENT_TYPES = (ItemType.SCRIPT, ItemType.REMEDIATION)

# failures that end the whole run instead of a single item
FATAL_ERRORS = (AuthError, StorageWriteError)


class SyncOrchestrator:
    """
    One inventory run per call: fetch → normalize → upsert, audited by a
    RunRecord persisted before any work starts.
    """
    def __init__(self, graph: GraphClient, store: InventoryStore, normalizer: Optional[Normalizer] = None):
        self.graph = graph
        self.store = store
        self.normalizer = normalizer or Normalizer(graph)
        self.last_run: Optional[RunRecord] = None

    def run_inventory(
        self,
        item_type: ItemType,
        *,
        force: bool = False,
        include_content: bool = False,
        include_assignments: bool = False,
    ) -> RunRecord:
        collection = GRAPH_COLLECTIONS[item_type]
        run = RunRecord.start(item_type)
        self.store.create_run(run)
        self.last_run = run
        self.normalizer.begin_batch()
        log_event(
            logger, "run_started", run_id=run.id, run_type=item_type.value,
            force=force, include_content=include_content, include_assignments=include_assignments,
        )

        try:
            raw_items = self.graph.fetch_all(collection)
            if raw_items:
                if force:
                    self.store.clear_collection(item_type)
                for raw in raw_items:
                    try:
                        self._process_item(
                            raw, item_type, run,
                            include_content=include_content,
                            include_assignments=include_assignments,
                        )
                    except FATAL_ERRORS:
                        raise
                    except Exception as ex:
                        msg = f"{_describe(raw)}: {ex}"
                        run.record_error(msg)
                        logger.warning(f"[{item_type.value}] item failed: {msg}")
                    else:
                        run.items_processed += 1
        except Exception as ex:
            run.error_messages.append(f"Run failed: {ex}")
            run.finish(RunStatus.FAILED)
            self._persist_failed(run)
            log_event(
                logger, "run_failed", run_id=run.id, run_type=item_type.value,
                items_processed=run.items_processed, error_count=run.error_count, error=str(ex),
            )
            raise

        run.finish()
        self.store.save_run(run)
        log_event(
            logger, "run_completed", run_id=run.id, run_type=item_type.value, status=run.status.value,
            items_processed=run.items_processed, error_count=run.error_count,
        )
        return run

    def _process_item(
        self,
        raw: Dict[str, Any],
        item_type: ItemType,
        run: RunRecord,
        *,
        include_content: bool,
        include_assignments: bool,
    ) -> None:
        collection = GRAPH_COLLECTIONS[item_type]
        source = raw
        fetched_content = include_content and item_type in CONTENT_TYPES and bool(raw.get("id"))
        if fetched_content:
            source = self.graph.fetch_one(f"{collection}/{raw['id']}")

        record = self.normalizer.normalize(source, item_type, run_id=run.id)
        if not fetched_content and not record.has_content and self.store.exists(item_type, record.id):
            _carry_content(self.store.get(item_type, record.id), record)
        self.store.upsert(record)

        if include_assignments:
            raw_assignments = self.graph.fetch_all(f"{collection}/{record.id}/assignments")
            assignments = self.normalizer.resolve_assignment_targets(
                raw_assignments, object_id=record.id, object_type=item_type, run_id=run.id,
            )
            self.store.upsert_assignments(assignments)

    def _persist_failed(self, run: RunRecord) -> None:
        try:
            self.store.save_run(run)
        except StorageWriteError as ex:
            # the Running record written at start stays as evidence
            logger.error(f"could not persist failed run {run.id}: {ex}")

    def run_all(
        self,
        item_types: Optional[Iterable[ItemType]] = None,
        **options: bool,
    ) -> List[RunRecord]:
        """
        Inventory several types in sequence. A type whose collection fetch
        fails is left as a Failed run and the next type still runs.
        """
        runs: List[RunRecord] = []
        for item_type in item_types or list(ItemType):
            try:
                runs.append(self.run_inventory(item_type, **options))
            except HttpError as ex:
                logger.error(f"[{item_type.value}] inventory failed: {ex}")
                if self.last_run is not None:
                    runs.append(self.last_run)
        return runs


def _carry_content(stored: InventoryRecord, record: InventoryRecord) -> None:
    """Keep content from add_content or an earlier content run when this run did not fetch any."""
    record.content = stored.content
    record.has_content = stored.has_content
    if "remediation_script" in stored.metadata:
        record.metadata["remediation_script"] = stored.metadata["remediation_script"]


def _describe(raw: Any) -> str:
    if isinstance(raw, dict):
        name = raw.get("displayName") or "<unnamed>"
        return f"{name} ({raw.get('id') or 'no id'})"
    return repr(raw)[:80]
