import sys
from pathlib import Path
from typing import Any, List

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from intuneinv.core.auth import clear_token_cache  # noqa: E402
from intuneinv.core.graph_client import GraphClient  # noqa: E402
from intuneinv.core.store import InventoryStore  # noqa: E402
from helpers import FakeSession  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_tokens():
    clear_token_cache()
    yield
    clear_token_cache()


@pytest.fixture
def store(tmp_path: Path) -> InventoryStore:
    return InventoryStore(tmp_path / "inventory")


@pytest.fixture
def make_graph():
    def _make(script: List[Any], **kwargs):
        session = FakeSession(script)
        kwargs.setdefault("retry_delay", 0)
        graph = GraphClient(
            lambda: "test-token",
            base_url="https://graph.test/beta",
            session=session,
            **kwargs,
        )
        return graph, session
    return _make
