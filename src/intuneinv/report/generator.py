from __future__ import annotations
import csv, datetime, html, io, json, pathlib
from typing import Any, Dict, List, Optional, Sequence

import markdown

from intuneinv.core.models import InventoryRecord, ItemType
from intuneinv.core.store import InventoryStore

FORMATS = ("table", "csv", "json", "html")
EXTENSIONS = {"table": "txt", "csv": "csv", "json": "json", "html": "html"}

COLUMNS = ("item_type", "display_name", "id", "has_content", "assignments", "last_seen_at")

CSS = """
body { font-family: Segoe UI, Arial, sans-serif; margin: 2em; color: #222; }
table { border-collapse: collapse; margin-bottom: 1.5em; }
th, td { border: 1px solid #ccc; padding: 4px 8px; text-align: left; }
th { background: #f0f0f0; }
"""


def _now_str() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def _types(item_type: Optional[ItemType]) -> List[ItemType]:
    return [item_type] if item_type else list(ItemType)


def collect_rows(store: InventoryStore, item_type: Optional[ItemType] = None) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for kind in _types(item_type):
        for rec in store.list(kind):
            rows.append(_row(store, rec))
    return rows


def _row(store: InventoryStore, rec: InventoryRecord) -> Dict[str, Any]:
    targets = [a.target_display for a in store.list_assignments(rec.item_type, rec.id)]
    return {
        "item_type": rec.item_type.value,
        "display_name": rec.display_name,
        "id": rec.id,
        "has_content": rec.has_content,
        "assignments": "; ".join(targets),
        "last_seen_at": rec.last_seen_at,
    }


def render_table(rows: Sequence[Dict[str, Any]], columns: Sequence[str] = COLUMNS) -> str:
    """Fixed-width text table."""
    cells = [[str(r.get(c, "")) for c in columns] for r in rows]
    widths = [max([len(c)] + [len(row[i]) for row in cells]) for i, c in enumerate(columns)]
    def line(values):
        return "  ".join(v.ljust(w) for v, w in zip(values, widths)).rstrip()
    out = [line(columns), line("-" * w for w in widths)]
    out.extend(line(row) for row in cells)
    return "\n".join(out)


def render_csv(rows: Sequence[Dict[str, Any]], columns: Sequence[str] = COLUMNS) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(columns), extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue()


def render_json(store: InventoryStore, item_type: Optional[ItemType] = None) -> str:
    data = {
        "generated_at": _now_str(),
        "statistics": store.statistics(),
        "items": [
            {**rec.to_dict(), "assignments": [a.to_dict() for a in store.list_assignments(kind, rec.id)]}
            for kind in _types(item_type)
            for rec in store.list(kind)
        ],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def _md_cell(value: Any) -> str:
    return html.escape(str(value)).replace("|", "\\|")


def build_markdown(store: InventoryStore, item_type: Optional[ItemType] = None) -> str:
    stats = store.statistics()
    lines = [
        "# Intune Inventory Report",
        "",
        f"Generated {_now_str()} from `{stats['root']}`.",
        "",
        "## Summary",
        "",
        "| Type | Items | With content | Assignments | Last run |",
        "|---|---|---|---|---|",
    ]
    for kind in _types(item_type):
        t = stats["types"][kind.value]
        last = t["last_run"]
        last_s = f"{last['status']} ({last['started_at']})" if last else "never"
        lines.append(f"| {kind.value} | {t['count']} | {t['with_content']} | {t['assignments']} | {_md_cell(last_s)} |")

    for kind in _types(item_type):
        records = store.list(kind)
        lines += ["", f"## {kind.value}s ({len(records)})", ""]
        if not records:
            lines.append("_No items inventoried._")
            continue
        lines += ["| Name | Id | Content | Assignments |", "|---|---|---|---|"]
        for rec in records:
            r = _row(store, rec)
            lines.append(
                f"| {_md_cell(rec.display_name)} | `{rec.id}` | {'yes' if rec.has_content else 'no'} "
                f"| {_md_cell(r['assignments']) or '-'} |"
            )
    return "\n".join(lines) + "\n"


def render_html(store: InventoryStore, item_type: Optional[ItemType] = None) -> str:
    body = markdown.markdown(build_markdown(store, item_type), extensions=["extra", "sane_lists"])
    return (
        "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
        "<title>Intune Inventory Report</title>"
        f"<style>{CSS}</style></head>\n<body>\n{body}\n</body></html>\n"
    )


def render(store: InventoryStore, fmt: str, item_type: Optional[ItemType] = None) -> str:
    if fmt == "table":
        return render_table(collect_rows(store, item_type))
    if fmt == "csv":
        return render_csv(collect_rows(store, item_type))
    if fmt == "json":
        return render_json(store, item_type)
    if fmt == "html":
        return render_html(store, item_type)
    raise ValueError(f"Unknown report format {fmt!r}; expected one of {', '.join(FORMATS)}")


def save_report(store: InventoryStore, fmt: str, item_type: Optional[ItemType] = None) -> pathlib.Path:
    """Render and write under <root>/reports/ with a timestamped name."""
    text = render(store, fmt, item_type)
    stamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d_%H%M%S")
    scope = item_type.value.lower() if item_type else "all"
    path = store.reports_dir / f"inventory_{scope}_{stamp}.{EXTENSIONS[fmt]}"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path
