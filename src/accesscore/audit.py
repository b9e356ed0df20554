"""Append-only audit trail of permission checks and grant/role changes.

Entries are immutable once written. Queries return newest first and AND
every filter they are given. Capacity is bounded: when the log is full the
oldest entry is dropped to make room.

Recording never fails the caller. An exception while appending is logged
and swallowed, so an audit problem cannot change a decision or block a
mutation.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import time
import uuid
from collections import Counter, deque
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from .exceptions import ValidationError
from .locking import LockRank, RWLock

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 100

EXPORT_FIELDS = (
    "id",
    "timestamp",
    "action",
    "user_id",
    "performed_by",
    "permission",
    "role",
    "resource",
    "granted",
)


class AuditAction(str, Enum):
    CHECK = "check"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REVOKED = "role_revoked"
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_REVOKED = "permission_revoked"


class AuditEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = ""
    performed_by: Optional[str] = None
    timestamp: datetime
    action: AuditAction
    permission: Optional[str] = None
    role: Optional[str] = None
    resource: Optional[str] = None
    granted: bool = False
    context: dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}


class AuditQuery(BaseModel):
    """Filters for :meth:`AuditLog.query`. Unset fields do not filter."""

    user_id: Optional[str] = None
    performed_by: Optional[str] = None
    action: Optional[AuditAction] = None
    permission: Optional[str] = None
    role: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = DEFAULT_QUERY_LIMIT

    def matches(self, entry: AuditEntry) -> bool:
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        if self.performed_by is not None and entry.performed_by != self.performed_by:
            return False
        if self.action is not None and entry.action != self.action:
            return False
        if self.permission is not None and entry.permission != self.permission:
            return False
        if self.role is not None and entry.role != self.role:
            return False
        if self.start_time is not None and entry.timestamp < self.start_time:
            return False
        if self.end_time is not None and entry.timestamp > self.end_time:
            return False
        return True


class PermissionStats(BaseModel):
    permission: str
    total_checks: int = 0
    granted: int = 0
    denied: int = 0
    unique_users: int = 0


class AuditLog:
    """Bounded, thread-safe, append-only audit log.

    Args:
        max_entries: Capacity; the oldest entry is dropped when exceeded.
        enabled: When False, nothing is recorded.
        record_checks: When False, permission checks are not recorded
            (mutations still are).
        clock: Wall-clock source in unix seconds.
    """

    def __init__(
        self,
        max_entries: int = 100_000,
        *,
        enabled: bool = True,
        record_checks: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries <= 0:
            raise ValidationError("Audit capacity must be positive", max_entries=max_entries)
        self.lock = RWLock("audit", LockRank.AUDIT)
        self.enabled = enabled
        self.record_checks = record_checks
        self._clock = clock
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)
        self._dropped = 0

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    @property
    def dropped(self) -> int:
        """Entries discarded because the log was full."""
        return self._dropped

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _append(self, **fields: Any) -> AuditEntry | None:
        if not self.enabled:
            return None
        try:
            entry = AuditEntry(timestamp=self._now(), **fields)
            with self.lock.write():
                if len(self._entries) == self._entries.maxlen:
                    self._dropped += 1
                    if self._dropped == 1 or self._dropped % 1000 == 0:
                        logger.warning("Audit log full (%d entries), dropping oldest", len(self._entries))
                self._entries.append(entry)
            return entry
        except Exception as e:
            logger.error("Failed to record audit entry (%s): %s", fields.get("action"), e)
            return None

    # ── recording ───────────────────────────────────────

    def log_check(
        self,
        user_id: str,
        permission: str,
        granted: bool,
        context: dict[str, str] | None = None,
        resource: str | None = None,
    ) -> AuditEntry | None:
        if not self.record_checks:
            return None
        return self._append(
            user_id=user_id,
            action=AuditAction.CHECK,
            permission=permission,
            granted=granted,
            resource=resource or None,
            context=dict(context or {}),
        )

    def log_role_change(
        self,
        user_id: str,
        performed_by: str | None,
        role: str,
        assigned: bool,
    ) -> AuditEntry | None:
        return self._append(
            user_id=user_id,
            performed_by=performed_by,
            action=AuditAction.ROLE_ASSIGNED if assigned else AuditAction.ROLE_REVOKED,
            role=role,
            granted=assigned,
        )

    def log_grant_change(
        self,
        user_id: str,
        performed_by: str | None,
        permission: str,
        granted: bool,
        role: str | None = None,
        context: dict[str, str] | None = None,
    ) -> AuditEntry | None:
        return self._append(
            user_id=user_id,
            performed_by=performed_by,
            action=AuditAction.PERMISSION_GRANTED if granted else AuditAction.PERMISSION_REVOKED,
            permission=permission,
            role=role,
            granted=granted,
            context=dict(context or {}),
        )

    # ── queries ─────────────────────────────────────────

    def query(self, query: AuditQuery | None = None) -> list[AuditEntry]:
        """Entries matching every filter in ``query``, newest first."""
        q = query or AuditQuery()
        limit = q.limit if q.limit > 0 else DEFAULT_QUERY_LIMIT
        results: list[AuditEntry] = []
        with self.lock.read():
            for entry in reversed(self._entries):
                if q.matches(entry):
                    results.append(entry)
                    if len(results) >= limit:
                        break
        return results

    def get_user_logs(self, user_id: str, limit: int = DEFAULT_QUERY_LIMIT) -> list[AuditEntry]:
        return self.query(AuditQuery(user_id=user_id, limit=limit))

    def stats(self, permission: str) -> PermissionStats:
        """Check statistics for one permission."""
        result = PermissionStats(permission=permission)
        users: set[str] = set()
        with self.lock.read():
            for entry in self._entries:
                if entry.action != AuditAction.CHECK or entry.permission != permission:
                    continue
                result.total_checks += 1
                if entry.granted:
                    result.granted += 1
                else:
                    result.denied += 1
                users.add(entry.user_id)
        result.unique_users = len(users)
        return result

    def role_stats(self) -> dict[str, int]:
        """Number of ``role_assigned`` entries per role."""
        with self.lock.read():
            counts = Counter(e.role for e in self._entries if e.action == AuditAction.ROLE_ASSIGNED and e.role)
        return dict(counts)

    def __len__(self) -> int:
        with self.lock.read():
            return len(self._entries)

    # ── retention ───────────────────────────────────────

    def prune(self, retention: float | timedelta) -> int:
        """Drop entries older than ``now - retention``.

        Returns:
            Number of removed entries.
        """
        seconds = retention.total_seconds() if isinstance(retention, timedelta) else float(retention)
        if seconds < 0:
            raise ValidationError("Retention must not be negative", retention=seconds)
        cutoff = self._now() - timedelta(seconds=seconds)
        with self.lock.write():
            before = len(self._entries)
            kept = [e for e in self._entries if e.timestamp >= cutoff]
            self._entries.clear()
            self._entries.extend(kept)
            removed = before - len(kept)
        if removed:
            logger.info("Pruned %d audit entries older than %s", removed, cutoff.isoformat())
        return removed

    # ── export ──────────────────────────────────────────

    def export(self, fmt: str, query: AuditQuery | None = None) -> str:
        """Serialize matching entries as ``json`` or ``csv``.

        Raises:
            ValidationError: unsupported format.
        """
        fmt = fmt.lower()
        if fmt not in ("json", "csv"):
            raise ValidationError(f"Invalid export format: {fmt}", format=fmt)
        entries = self.query(query)
        if fmt == "json":
            return json.dumps([e.model_dump(mode="json") for e in entries], ensure_ascii=False)

        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=[*EXPORT_FIELDS, "context"])
        writer.writeheader()
        for entry in entries:
            row = entry.model_dump(mode="json", include=set(EXPORT_FIELDS))
            row["context"] = json.dumps(entry.context, sort_keys=True) if entry.context else ""
            writer.writerow(row)
        return buf.getvalue()

    # ── snapshot support ────────────────────────────────

    def dump(self) -> list[AuditEntry]:
        with self.lock.read():
            return list(self._entries)

    def load(self, entries: list[AuditEntry]) -> None:
        with self.lock.write():
            self._entries.clear()
            self._entries.extend(entries)


__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditLog",
    "AuditQuery",
    "DEFAULT_QUERY_LIMIT",
    "PermissionStats",
]
