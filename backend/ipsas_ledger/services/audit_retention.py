"""Retention purge for the audit stores written by ``FileAuditWriter``.

Run daily by the scheduler in ``main``.  Ledger mutations are never removed;
read-access and system events age out of both the SQLite index and the daily
JSONL files.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ipsas_ledger.services.audit_service import AuditEventCategory

logger = logging.getLogger(__name__)

# Days to keep; None = forever.
RETENTION_DAYS: dict[AuditEventCategory, int | None] = {
    AuditEventCategory.MUTATION: None,
    AuditEventCategory.READ_ACCESS: 90,
    AuditEventCategory.SYSTEM: 30,
}


def _is_expired(category: AuditEventCategory, age_days: int) -> bool:
    days = RETENTION_DAYS.get(category)
    return days is not None and age_days >= days


def _purge_index(sqlite_path: Path, now: datetime) -> int:
    if not sqlite_path.exists():
        return 0
    deleted = 0
    conn = sqlite3.connect(str(sqlite_path))
    try:
        for category, days in RETENTION_DAYS.items():
            if days is None:
                continue
            cursor = conn.execute(
                "DELETE FROM audit_events WHERE category = ? AND timestamp < ?",
                (category.value, (now - timedelta(days=days)).isoformat()),
            )
            deleted += cursor.rowcount
        conn.commit()
    finally:
        conn.close()
    return deleted


def _line_expired(line: str, age_days: int) -> bool:
    try:
        category = AuditEventCategory(json.loads(line).get("category", "mutation"))
    except (json.JSONDecodeError, ValueError):
        # Unreadable lines stay
        return False
    return _is_expired(category, age_days)


def _purge_jsonl_file(path: Path, age_days: int) -> int:
    with open(path, encoding="utf-8") as f:
        lines = [l.strip() for l in f if l.strip()]
    keep = [l for l in lines if not _line_expired(l, age_days)]
    removed = len(lines) - len(keep)
    if not removed:
        return 0

    if keep:
        tmp = path.with_suffix(".tmp")
        tmp.write_text("\n".join(keep) + "\n", encoding="utf-8")
        tmp.replace(path)
    else:
        path.unlink()
    return removed


def _purge_jsonl(jsonl_dir: Path, now: datetime) -> int:
    if not jsonl_dir.exists():
        return 0
    shortest = min(d for d in RETENTION_DAYS.values() if d is not None)
    removed = 0
    for path in sorted(jsonl_dir.glob("*.jsonl")):
        try:
            day = datetime.strptime(path.stem, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            continue
        age_days = (now - day).days
        if age_days >= shortest:
            removed += _purge_jsonl_file(path, age_days)
    return removed


def purge_audit_retention(
    audit_base_path: str,
    now: datetime | None = None,
) -> dict[str, int]:
    """Remove expired events from both stores and return the counts."""
    base = Path(audit_base_path)
    now = now or datetime.now(timezone.utc)
    summary = {
        "sqlite_deleted": _purge_index(base / "audit.db", now),
        "jsonl_lines_removed": _purge_jsonl(base / "jsonl", now),
    }
    logger.info("Audit retention purge finished: %s", summary)
    return summary
