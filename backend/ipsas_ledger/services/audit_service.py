"""Audit trail for ledger operations.

Every state change the services commit (account maintenance, journal
entries moving through their lifecycle, entity and fund changes) produces an
``AuditEvent``.  Events go to two append-only stores under
``AUDIT_STORAGE_PATH``:

* ``jsonl/<YYYY-MM-DD>.jsonl`` -- one JSON object per line, one file per day
* ``audit.db`` -- a SQLite index over the same events, queryable by
  category, time and resource

Categories drive retention (see ``audit_retention``): MUTATION events are
kept forever, READ_ACCESS for 90 days and SYSTEM for 30.

Services take a writer at construction time and only ever call
``fire_and_forget``; ``NullAuditWriter`` is the default.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Protocol
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)

SYSTEM_NAME = "ipsas-ledger"


class AuditEventCategory(str, enum.Enum):
    MUTATION = "mutation"
    READ_ACCESS = "read_access"
    SYSTEM = "system"


@dataclasses.dataclass(frozen=True)
class AuditEvent:
    id: UUID
    timestamp: datetime
    category: AuditEventCategory
    user_id: str | None
    action: str
    resource_type: str | None
    resource_id: str | None
    details: dict | None
    ip_address: str | None = None
    system_name: str = SYSTEM_NAME

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["id"] = str(self.id)
        data["timestamp"] = self.timestamp.isoformat()
        data["category"] = self.category.value
        return data

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def to_row(self) -> tuple:
        """Values in ``INDEX_COLUMNS`` order."""
        data = self.to_dict()
        if self.details:
            data["details"] = json.dumps(self.details, default=str)
        else:
            data["details"] = None
        return tuple(data[c] for c in INDEX_COLUMNS)


# Action names are dotted, e.g. ``gl.transaction.post`` or
# ``read.api.gl.transactions``.  Anything without a known prefix is a
# mutation and is never purged.
_CATEGORY_PREFIXES: tuple[tuple[str, AuditEventCategory], ...] = (
    ("system.", AuditEventCategory.SYSTEM),
    ("scheduler.", AuditEventCategory.SYSTEM),
    ("error.", AuditEventCategory.SYSTEM),
    ("read.", AuditEventCategory.READ_ACCESS),
)


def classify_action(action: str) -> AuditEventCategory:
    lowered = action.lower()
    for prefix, category in _CATEGORY_PREFIXES:
        if lowered.startswith(prefix):
            return category
    return AuditEventCategory.MUTATION


def build_event(
    action: str,
    user_id: str | None = None,
    resource_type: str | None = None,
    resource_id: Any = None,
    details: dict | None = None,
) -> AuditEvent:
    """Build an event stamped now, categorised from *action*."""
    return AuditEvent(
        id=uuid4(),
        timestamp=datetime.now(timezone.utc),
        category=classify_action(action),
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=details,
    )


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

INDEX_COLUMNS = (
    "id",
    "timestamp",
    "category",
    "user_id",
    "action",
    "resource_type",
    "resource_id",
    "details",
    "ip_address",
    "system_name",
)

_INDEX_SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS audit_events (
    id            TEXT PRIMARY KEY,
    timestamp     TEXT NOT NULL,
    category      TEXT NOT NULL,
    user_id       TEXT,
    action        TEXT NOT NULL,
    resource_type TEXT,
    resource_id   TEXT,
    details       TEXT,
    ip_address    TEXT,
    system_name   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_audit_events_category_ts
    ON audit_events(category, timestamp);
CREATE INDEX IF NOT EXISTS ix_audit_events_resource
    ON audit_events(resource_type, resource_id);
"""

_INSERT = "INSERT OR IGNORE INTO audit_events ({}) VALUES ({})".format(
    ", ".join(INDEX_COLUMNS), ", ".join("?" for _ in INDEX_COLUMNS)
)


class AuditWriter(Protocol):
    def fire_and_forget(self, event: AuditEvent) -> None: ...


class NullAuditWriter:
    """Discards every event."""

    def fire_and_forget(self, event: AuditEvent) -> None:
        return None


# The loop only keeps weak references to tasks; hold them until they finish.
_pending_writes: set[asyncio.Task] = set()


class FileAuditWriter:
    """Appends events to the daily JSONL file and the SQLite index."""

    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path)
        self.jsonl_dir = self.base_path / "jsonl"
        self.sqlite_path = self.base_path / "audit.db"

        self.jsonl_dir.mkdir(parents=True, exist_ok=True)
        with self._index() as conn:
            conn.executescript(_INDEX_SCHEMA)

    @contextmanager
    def _index(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.sqlite_path))
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def jsonl_path(self, day: date) -> Path:
        return self.jsonl_dir / f"{day.isoformat()}.jsonl"

    def write(self, event: AuditEvent) -> None:
        """Blocking write to both stores.  Re-writing an event id is harmless."""
        with open(self.jsonl_path(event.timestamp.date()), "a", encoding="utf-8") as f:
            f.write(event.to_json_line() + "\n")
        with self._index() as conn:
            conn.execute(_INSERT, event.to_row())

    async def write_async(self, event: AuditEvent) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self.write, event)

    def fire_and_forget(self, event: AuditEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside the event loop (shutdown, CLI); write inline.
            try:
                self.write(event)
            except Exception:
                logger.exception("Audit write failed for event %s", event.id)
            return
        task = loop.create_task(self.write_async(event))
        _pending_writes.add(task)
        task.add_done_callback(_pending_writes.discard)
        task.add_done_callback(lambda t: _log_failed_write(t, event))


def _log_failed_write(task: asyncio.Task, event: AuditEvent) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(
            "Audit write failed for event %s (%s)", event.id, event.action,
            exc_info=task.exception(),
        )


# ---------------------------------------------------------------------------
# Process-wide writer
# ---------------------------------------------------------------------------

_audit_writer: AuditWriter | None = None


def get_audit_writer() -> AuditWriter:
    """Writer selected by ``AUDIT_ENABLED``, created on first use."""
    global _audit_writer
    if _audit_writer is None:
        from ipsas_ledger.config import settings

        if settings.AUDIT_ENABLED:
            _audit_writer = FileAuditWriter(settings.AUDIT_STORAGE_PATH)
        else:
            _audit_writer = NullAuditWriter()
    return _audit_writer
