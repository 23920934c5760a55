# src/intuneinv/core/cache.py
from __future__ import annotations
import json, os, pathlib, shutil, tempfile
from typing import Any, Optional

BACKUP_SUFFIX = ".backup"


def backup_path(path: pathlib.Path) -> pathlib.Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def read_json(path: pathlib.Path) -> Optional[Any]:
    """Parsed file contents, or None when the file is missing. Malformed JSON raises ValueError."""
    if not path.exists(): return None
    text = path.read_text(encoding="utf-8")
    if not text.strip(): return None
    return json.loads(text)


def write_json_atomic(path: pathlib.Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix="._", suffix=".json")
    os.close(fd)
    try:
        pathlib.Path(tmp).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def make_backup(path: pathlib.Path) -> bool:
    """Copy path to path.backup. Returns False when there was nothing to copy."""
    if not path.exists():
        return False
    shutil.copy2(path, backup_path(path))
    return True


def restore_backup(path: pathlib.Path, had_backup: bool) -> None:
    if had_backup:
        shutil.copy2(backup_path(path), path)
    elif path.exists():
        # file did not exist before the failed write
        path.unlink()
