from __future__ import annotations
import json, os, pathlib, sys
from dataclasses import dataclass, field
from typing import Any, Dict

APP_NAME = "IntuneInventory"
SETTINGS_PATH = pathlib.Path("config/appsettings.json")
GRAPH_BETA = "https://graph.microsoft.com/beta"


def default_storage_root() -> pathlib.Path:
    if sys.platform.startswith("win"):
        root = os.environ.get("APPDATA") or os.path.expanduser("~\\AppData\\Roaming")
        return pathlib.Path(root) / APP_NAME / "data"
    elif sys.platform == "darwin":
        return pathlib.Path.home() / "Library" / "Application Support" / APP_NAME / "data"
    else:
        return pathlib.Path.home() / ".local" / "share" / APP_NAME / "data"


def load_appsettings(path: pathlib.Path | None = None) -> dict:
    p = pathlib.Path(path) if path else SETTINGS_PATH
    if not p.exists():
        return {}
    try:
        text = p.read_text(encoding="utf-8").strip()
        if not text:
            return {}
        return json.loads(text)
    except json.JSONDecodeError:
        # malformed JSON → fall back to defaults
        return {}


def get_http_config(raw: Dict[str, Any] | None = None) -> Dict[str, Any]:
    cfg = (raw if raw is not None else load_appsettings()).get("http", {})
    return {
        "timeout_seconds": float(cfg.get("timeout_seconds", 30)),
        "max_retries": int(cfg.get("max_retries", 3)),
        "retry_delay_seconds": float(cfg.get("retry_delay_seconds", 5)),
    }


@dataclass
class Credentials:
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""


@dataclass
class Settings:
    credentials: Credentials = field(default_factory=Credentials)
    graph_base_url: str = GRAPH_BETA
    storage_root: pathlib.Path = field(default_factory=default_storage_root)
    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_delay_seconds: float = 5.0


def load_settings(path: pathlib.Path | None = None, env: Dict[str, str] | None = None) -> Settings:
    """
    Build Settings from appsettings.json, then let INTUNEINV_* environment
    variables override credentials and the storage root.
    """
    raw = load_appsettings(path)
    env = os.environ if env is None else env
    http_cfg = get_http_config(raw)
    creds_cfg = raw.get("credentials", {})
    storage_cfg = raw.get("storage", {})
    graph_cfg = raw.get("graph", {})

    creds = Credentials(
        tenant_id=env.get("INTUNEINV_TENANT_ID") or creds_cfg.get("tenant_id", ""),
        client_id=env.get("INTUNEINV_CLIENT_ID") or creds_cfg.get("client_id", ""),
        client_secret=env.get("INTUNEINV_CLIENT_SECRET") or creds_cfg.get("client_secret", ""),
    )
    root = env.get("INTUNEINV_STORAGE_ROOT") or storage_cfg.get("root")
    return Settings(
        credentials=creds,
        graph_base_url=str(graph_cfg.get("base_url", GRAPH_BETA)),
        storage_root=pathlib.Path(root).expanduser() if root else default_storage_root(),
        timeout_seconds=http_cfg["timeout_seconds"],
        max_retries=http_cfg["max_retries"],
        retry_delay_seconds=http_cfg["retry_delay_seconds"],
    )
