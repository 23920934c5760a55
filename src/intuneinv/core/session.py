# src/intuneinv/core/session.py
from __future__ import annotations
from typing import Optional

from intuneinv.config.loader import Settings, load_settings
from intuneinv.core.auth import TokenProvider, clear_token_cache
from intuneinv.core.graph_client import GraphClient
from intuneinv.core.store import InventoryStore
from intuneinv.core.sync import SyncOrchestrator
from intuneinv.util.logging import get_logger, log_event

logger = get_logger(__name__)


class Session:
    """
    Everything one connected tenant needs: token provider, Graph client and
    the local store. Build with connect(), release with disconnect().
    """
    def __init__(self, settings: Settings, tokens: TokenProvider, graph: GraphClient, store: InventoryStore):
        self.settings = settings
        self.tokens = tokens
        self.graph = graph
        self.store = store
        self.connected = True

    @classmethod
    def connect(cls, settings: Optional[Settings] = None, *, validate: bool = True) -> "Session":
        settings = settings or load_settings()
        creds = settings.credentials
        tokens = TokenProvider(creds.tenant_id, creds.client_id, creds.client_secret)
        if validate:
            tokens.acquire()  # fail fast on bad credentials
        graph = GraphClient(
            tokens,
            base_url=settings.graph_base_url,
            timeout=settings.timeout_seconds,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay_seconds,
        )
        store = InventoryStore(settings.storage_root)
        log_event(logger, "session_connected", tenant_id=creds.tenant_id, storage_root=str(store.root))
        return cls(settings, tokens, graph, store)

    def orchestrator(self) -> SyncOrchestrator:
        self._require_connected()
        return SyncOrchestrator(self.graph, self.store)

    def _require_connected(self) -> None:
        if not self.connected:
            raise RuntimeError("session is disconnected")

    def disconnect(self) -> None:
        if not self.connected:
            return
        self.graph.close()
        clear_token_cache(self.tokens.tenant_id, self.tokens.client_id)
        self.connected = False
        log_event(logger, "session_disconnected", tenant_id=self.tokens.tenant_id)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()
