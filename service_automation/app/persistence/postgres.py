"""
PostgreSQL definition store and audit sink.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg

from shared.errors import AuditWriteError, DefinitionNotFoundError, StoreError
from shared.logging import get_logger

from ..models import Action, Condition, Definition, ExecutionRecord, utcnow
from .base import AuditSink, DefinitionStore, summarize_records


async def _init_connection(conn: asyncpg.Connection):
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )


async def create_pool(dsn: str) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        dsn,
        min_size=2,
        max_size=10,
        command_timeout=30,
        init=_init_connection,
    )


class PostgresDefinitionStore(DefinitionStore):
    """Definitions in the ``automation_definitions`` table."""

    def __init__(self, dsn: str, pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.pool = pool
        self._owns_pool = pool is None
        self.logger = get_logger("automation.persistence.postgres")

    async def start(self):
        try:
            if self.pool is None:
                self.pool = await create_pool(self.dsn)
            await self._create_tables()
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL definition store", error=str(e))
            raise StoreError(f"Failed to start definition store: {e}")
        self.logger.info("PostgreSQL definition store started")

    async def stop(self):
        if self.pool and self._owns_pool:
            await self.pool.close()
            self.logger.info("PostgreSQL definition store stopped")

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS automation_definitions (
                    definition_id VARCHAR(255) PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    description TEXT,
                    trigger_key VARCHAR(255) NOT NULL,
                    conditions JSONB NOT NULL DEFAULT '[]',
                    actions JSONB NOT NULL DEFAULT '[]',
                    priority INTEGER NOT NULL DEFAULT 0,
                    enabled BOOLEAN NOT NULL DEFAULT TRUE,
                    valid_from TIMESTAMP WITH TIME ZONE,
                    valid_until TIMESTAMP WITH TIME ZONE,
                    execution_count INTEGER NOT NULL DEFAULT 0,
                    last_executed_at TIMESTAMP WITH TIME ZONE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE,
                    created_by VARCHAR(255)
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_automation_definitions_trigger
                ON automation_definitions(trigger_key, enabled);
            """)

    async def list_eligible(self, trigger_key: str) -> List[Definition]:
        rows = await self._fetch("""
            SELECT * FROM automation_definitions
            WHERE trigger_key = $1 AND enabled = TRUE
              AND (valid_from IS NULL OR valid_from <= NOW())
              AND (valid_until IS NULL OR valid_until >= NOW())
            ORDER BY priority DESC, created_at DESC
        """, trigger_key)
        return [self._row_to_definition(row) for row in rows]

    async def get(self, definition_id: str) -> Optional[Definition]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM automation_definitions WHERE definition_id = $1", definition_id
                )
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Error loading definition", definition_id=definition_id, error=str(e))
            raise StoreError(f"Error loading definition: {e}", {"definition_id": definition_id})
        return self._row_to_definition(row) if row else None

    async def increment_stats(self, definition_id: str, executed_at: datetime) -> None:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute("""
                    UPDATE automation_definitions
                    SET execution_count = execution_count + 1,
                        last_executed_at = GREATEST(COALESCE(last_executed_at, $2), $2)
                    WHERE definition_id = $1
                """, definition_id, executed_at)
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreError(f"Error updating stats: {e}", {"definition_id": definition_id})

        if result == "UPDATE 0":
            raise DefinitionNotFoundError(definition_id)

    async def save(self, definition: Definition) -> Definition:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    INSERT INTO automation_definitions (
                        definition_id, name, description, trigger_key, conditions, actions,
                        priority, enabled, valid_from, valid_until, created_at, created_by
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                    ON CONFLICT (definition_id) DO UPDATE SET
                        name = EXCLUDED.name,
                        description = EXCLUDED.description,
                        trigger_key = EXCLUDED.trigger_key,
                        conditions = EXCLUDED.conditions,
                        actions = EXCLUDED.actions,
                        priority = EXCLUDED.priority,
                        enabled = EXCLUDED.enabled,
                        valid_from = EXCLUDED.valid_from,
                        valid_until = EXCLUDED.valid_until,
                        updated_at = NOW()
                    RETURNING *
                """,
                    definition.definition_id, definition.name, definition.description,
                    definition.trigger_key,
                    [c.to_dict() for c in definition.conditions],
                    [a.to_dict() for a in definition.actions],
                    definition.priority, definition.enabled,
                    definition.valid_from, definition.valid_until,
                    definition.created_at, definition.created_by
                )
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Error saving definition", definition_id=definition.definition_id, error=str(e))
            raise StoreError(f"Error saving definition: {e}", {"definition_id": definition.definition_id})

        self.logger.info("Definition saved", definition_id=definition.definition_id, name=definition.name)
        return self._row_to_definition(row)

    async def delete(self, definition_id: str) -> bool:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM automation_definitions WHERE definition_id = $1", definition_id
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreError(f"Error deleting definition: {e}", {"definition_id": definition_id})
        return result == "DELETE 1"

    async def set_enabled(self, definition_id: str, enabled: bool) -> Definition:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    UPDATE automation_definitions SET enabled = $2, updated_at = $3
                    WHERE definition_id = $1
                    RETURNING *
                """, definition_id, enabled, utcnow())
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreError(f"Error updating definition: {e}", {"definition_id": definition_id})
        if row is None:
            raise DefinitionNotFoundError(definition_id)
        return self._row_to_definition(row)

    async def list_definitions(self, trigger_key: Optional[str] = None) -> List[Definition]:
        if trigger_key is None:
            rows = await self._fetch(
                "SELECT * FROM automation_definitions ORDER BY priority DESC, created_at DESC"
            )
        else:
            rows = await self._fetch("""
                SELECT * FROM automation_definitions WHERE trigger_key = $1
                ORDER BY priority DESC, created_at DESC
            """, trigger_key)
        return [self._row_to_definition(row) for row in rows]

    async def _fetch(self, query: str, *args) -> List[asyncpg.Record]:
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Error querying definitions", error=str(e))
            raise StoreError(f"Error querying definitions: {e}")

    @staticmethod
    def _row_to_definition(row) -> Definition:
        return Definition(
            definition_id=row["definition_id"],
            name=row["name"],
            description=row["description"],
            trigger_key=row["trigger_key"],
            conditions=[Condition.from_dict(c) for c in row["conditions"] or []],
            actions=[Action.from_dict(a) for a in row["actions"] or []],
            priority=row["priority"],
            enabled=row["enabled"],
            valid_from=row["valid_from"],
            valid_until=row["valid_until"],
            execution_count=row["execution_count"],
            last_executed_at=row["last_executed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
        )

    async def health_check(self) -> bool:
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False


class PostgresAuditSink(AuditSink):
    """Execution records in the ``automation_executions`` table."""

    def __init__(self, dsn: str, pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.pool = pool
        self._owns_pool = pool is None
        self.logger = get_logger("automation.persistence.audit")

    async def start(self):
        try:
            if self.pool is None:
                self.pool = await create_pool(self.dsn)
            async with self.pool.acquire() as conn:
                await conn.execute("""
                    CREATE TABLE IF NOT EXISTS automation_executions (
                        record_id VARCHAR(64) PRIMARY KEY,
                        definition_id VARCHAR(255) NOT NULL,
                        definition_name VARCHAR(255) NOT NULL,
                        trigger_key VARCHAR(255) NOT NULL,
                        triggered_by VARCHAR(255) NOT NULL,
                        status VARCHAR(16) NOT NULL,
                        action_results JSONB NOT NULL DEFAULT '[]',
                        logs JSONB NOT NULL DEFAULT '[]',
                        error TEXT,
                        executed_at TIMESTAMP WITH TIME ZONE NOT NULL,
                        duration_ms DOUBLE PRECISION NOT NULL DEFAULT 0
                    );
                """)
                await conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_automation_executions_definition
                    ON automation_executions(definition_id, executed_at DESC);
                """)
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL audit sink", error=str(e))
            raise StoreError(f"Failed to start audit sink: {e}")
        self.logger.info("PostgreSQL audit sink started")

    async def stop(self):
        if self.pool and self._owns_pool:
            await self.pool.close()

    async def append(self, record: ExecutionRecord) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute("""
                    INSERT INTO automation_executions (
                        record_id, definition_id, definition_name, trigger_key, triggered_by,
                        status, action_results, logs, error, executed_at, duration_ms
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                """,
                    record.record_id, record.definition_id, record.definition_name,
                    record.trigger_key, record.triggered_by, record.status.value,
                    [r.to_dict() for r in record.action_results], list(record.logs),
                    record.error, record.executed_at, record.duration_ms
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise AuditWriteError(f"Error appending execution record: {e}", {"record_id": record.record_id})

    async def list_records(self, definition_id: Optional[str] = None,
                           trigger_key: Optional[str] = None,
                           limit: int = 50) -> List[ExecutionRecord]:
        clauses, args = [], []
        if definition_id is not None:
            args.append(definition_id)
            clauses.append(f"definition_id = ${len(args)}")
        if trigger_key is not None:
            args.append(trigger_key)
            clauses.append(f"trigger_key = ${len(args)}")
        args.append(limit)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT * FROM automation_executions {where} "
                    f"ORDER BY executed_at DESC LIMIT ${len(args)}",
                    *args
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreError(f"Error querying execution records: {e}")
        return [ExecutionRecord.from_dict(dict(row)) for row in rows]

    async def get_stats(self, definition_id: str) -> Dict[str, Any]:
        # Stats are computed over the full history of one definition.
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT * FROM automation_executions WHERE definition_id = $1", definition_id
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreError(f"Error querying execution stats: {e}", {"definition_id": definition_id})
        return summarize_records(ExecutionRecord.from_dict(dict(row)) for row in rows)

    async def health_check(self) -> bool:
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
