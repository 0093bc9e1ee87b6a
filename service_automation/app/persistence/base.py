"""
Definition store and audit sink interfaces.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..models import Definition, ExecutionRecord, ExecutionStatus


class DefinitionStore(ABC):
    """Read side used by the engine plus the management operations of the API.

    Definitions returned by a store are copies; mutating them never changes
    stored state. ``increment_stats`` must be atomic at the storage layer.
    """

    async def start(self):
        """Open connections. No-op by default."""

    async def stop(self):
        """Close connections. No-op by default."""

    @abstractmethod
    async def list_eligible(self, trigger_key: str) -> List[Definition]:
        """Enabled definitions for a trigger key, in no guaranteed order."""

    @abstractmethod
    async def get(self, definition_id: str) -> Optional[Definition]:
        """Get one definition regardless of enabled state."""

    @abstractmethod
    async def increment_stats(self, definition_id: str, executed_at: datetime) -> None:
        """Atomically bump ``execution_count`` and set ``last_executed_at``."""

    @abstractmethod
    async def save(self, definition: Definition) -> Definition:
        """Insert or replace a definition. Stats are preserved on replace."""

    @abstractmethod
    async def delete(self, definition_id: str) -> bool:
        """Delete a definition."""

    @abstractmethod
    async def set_enabled(self, definition_id: str, enabled: bool) -> Definition:
        """Toggle a definition; raises ``DefinitionNotFoundError`` if missing."""

    @abstractmethod
    async def list_definitions(self, trigger_key: Optional[str] = None) -> List[Definition]:
        """All definitions, optionally for one trigger key."""

    async def health_check(self) -> bool:
        return True


class AuditSink(ABC):
    """Append-only store of execution records."""

    async def start(self):
        """Open connections. No-op by default."""

    async def stop(self):
        """Close connections. No-op by default."""

    @abstractmethod
    async def append(self, record: ExecutionRecord) -> None:
        """Persist one record. Records are never updated afterwards."""

    @abstractmethod
    async def list_records(self, definition_id: Optional[str] = None,
                           trigger_key: Optional[str] = None,
                           limit: int = 50) -> List[ExecutionRecord]:
        """Most recent records first."""

    @abstractmethod
    async def get_stats(self, definition_id: str) -> Dict[str, Any]:
        """Aggregate statistics for one definition."""

    async def health_check(self) -> bool:
        return True


def summarize_records(records: Iterable[ExecutionRecord]) -> Dict[str, Any]:
    """Totals per status, success rate, average duration and last execution."""
    counts = {status.value: 0 for status in ExecutionStatus}
    total_duration = 0.0
    last: Optional[ExecutionRecord] = None
    total = 0

    for record in records:
        total += 1
        counts[record.status.value] += 1
        total_duration += record.duration_ms
        if last is None or record.executed_at > last.executed_at:
            last = record

    return {
        "total_executions": total,
        "successful": counts[ExecutionStatus.SUCCESS.value],
        "partial": counts[ExecutionStatus.PARTIAL.value],
        "failed": counts[ExecutionStatus.FAILED.value],
        "skipped": counts[ExecutionStatus.SKIPPED.value],
        "success_rate": (counts[ExecutionStatus.SUCCESS.value] / total * 100) if total else 0.0,
        "average_duration_ms": (total_duration / total) if total else 0.0,
        "last_execution": last.to_dict() if last else None,
    }
