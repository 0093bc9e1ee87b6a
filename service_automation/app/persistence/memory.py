"""
In-memory definition store and audit sink.

Used for local runs and tests. Both are guarded by a lock so that the
counter increment stays atomic even when callers run on several threads.
"""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.errors import DefinitionNotFoundError
from shared.logging import get_logger

from ..models import Definition, ExecutionRecord, utcnow
from .base import AuditSink, DefinitionStore, summarize_records


class InMemoryDefinitionStore(DefinitionStore):
    """Dict-backed definition store."""

    def __init__(self, definitions: Optional[List[Definition]] = None):
        self.logger = get_logger("automation.persistence.memory")
        self._lock = threading.Lock()
        self._definitions: Dict[str, Definition] = {}
        for definition in definitions or []:
            self._definitions[definition.definition_id] = definition.copy()

    async def list_eligible(self, trigger_key: str) -> List[Definition]:
        with self._lock:
            return [
                definition.copy()
                for definition in self._definitions.values()
                if definition.enabled and definition.trigger_key == trigger_key
            ]

    async def get(self, definition_id: str) -> Optional[Definition]:
        with self._lock:
            definition = self._definitions.get(definition_id)
            return definition.copy() if definition else None

    async def increment_stats(self, definition_id: str, executed_at: datetime) -> None:
        with self._lock:
            definition = self._definitions.get(definition_id)
            if definition is None:
                raise DefinitionNotFoundError(definition_id)
            definition.execution_count += 1
            definition.last_executed_at = executed_at

    async def save(self, definition: Definition) -> Definition:
        with self._lock:
            existing = self._definitions.get(definition.definition_id)
            stored = definition.copy()
            if existing is not None:
                stored.execution_count = existing.execution_count
                stored.last_executed_at = existing.last_executed_at
                stored.created_at = existing.created_at
                stored.updated_at = utcnow()
            self._definitions[stored.definition_id] = stored
            self.logger.info("Definition saved", definition_id=stored.definition_id, name=stored.name)
            return stored.copy()

    async def delete(self, definition_id: str) -> bool:
        with self._lock:
            return self._definitions.pop(definition_id, None) is not None

    async def set_enabled(self, definition_id: str, enabled: bool) -> Definition:
        with self._lock:
            definition = self._definitions.get(definition_id)
            if definition is None:
                raise DefinitionNotFoundError(definition_id)
            definition.enabled = enabled
            definition.updated_at = utcnow()
            return definition.copy()

    async def list_definitions(self, trigger_key: Optional[str] = None) -> List[Definition]:
        with self._lock:
            definitions = [
                definition.copy()
                for definition in self._definitions.values()
                if trigger_key is None or definition.trigger_key == trigger_key
            ]
        return sorted(definitions, key=lambda d: (d.priority, d.created_at), reverse=True)


class InMemoryAuditSink(AuditSink):
    """List-backed append-only audit sink."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: List[ExecutionRecord] = []

    async def append(self, record: ExecutionRecord) -> None:
        with self._lock:
            self._records.append(record)

    async def list_records(self, definition_id: Optional[str] = None,
                           trigger_key: Optional[str] = None,
                           limit: int = 50) -> List[ExecutionRecord]:
        with self._lock:
            records = [
                record for record in self._records
                if (definition_id is None or record.definition_id == definition_id)
                and (trigger_key is None or record.trigger_key == trigger_key)
            ]
        records.sort(key=lambda r: r.executed_at, reverse=True)
        return records[:limit]

    async def get_stats(self, definition_id: str) -> Dict[str, Any]:
        with self._lock:
            records = [r for r in self._records if r.definition_id == definition_id]
        return summarize_records(records)

    @property
    def records(self) -> List[ExecutionRecord]:
        """Snapshot in append order."""
        with self._lock:
            return list(self._records)
