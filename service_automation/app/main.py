"""
Automation service: condition/action rules and event workflows.
"""

import uuid
from typing import Dict, Optional

from fastapi import Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import DefinitionNotFoundError, ValidationError

from .actions import ActionDispatcher, ActionRegistry, register_builtin_handlers
from .cache.redis_cache import CachedDefinitionStore
from .engine import ExecutionOrchestrator
from .models import (
    RULE_TYPES,
    TRIGGER_EVENTS,
    DefinitionCreateRequest,
    DefinitionListResponse,
    DefinitionResponse,
    EnabledUpdateRequest,
    ExecutionListResponse,
    ExecutionSummaryResponse,
    ManualRunRequest,
    ManualRunResponse,
    TriggerRequest,
    TriggerResponse,
)
from .persistence import AuditSink, DefinitionStore, InMemoryAuditSink, InMemoryDefinitionStore
from .persistence.postgres import PostgresAuditSink, PostgresDefinitionStore

SERVICE_NAME = "automation"
SERVICE_PORT = 8020


class AutomationService(BaseService):
    """Automation service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 store: Optional[DefinitionStore] = None,
                 audit_sink: Optional[AuditSink] = None,
                 registry: Optional[ActionRegistry] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))

        self.store = store or self._build_store()
        self.audit_sink = audit_sink or self._build_audit_sink()

        if registry is None:
            registry = ActionRegistry()
            register_builtin_handlers(
                registry,
                webhook_timeout=self.config.webhook_timeout_seconds,
                webhook_retry=self.config.webhook_retry_config(),
            )
        self.registry = registry

        if self.config.webhook_budget_seconds > self.config.action_timeout_seconds:
            self.logger.warning(
                "Webhook retry budget exceeds action timeout; late attempts are cut off",
                webhook_budget_seconds=self.config.webhook_budget_seconds,
                action_timeout_seconds=self.config.action_timeout_seconds
            )

        self.dispatcher = ActionDispatcher(
            self.registry,
            timeout_seconds=self.config.action_timeout_seconds,
            metrics=self.metrics,
        )
        self.orchestrator = ExecutionOrchestrator(
            self.store,
            self.audit_sink,
            self.dispatcher,
            metrics=self.metrics,
            record_skipped=self.config.record_skipped,
        )

        self._setup_automation_routes()

    def _build_store(self) -> DefinitionStore:
        if self.config.definition_store == "postgres":
            store: DefinitionStore = PostgresDefinitionStore(self.config.postgres_dsn)
        else:
            store = InMemoryDefinitionStore()

        if self.config.definition_cache_enabled:
            store = CachedDefinitionStore(
                store,
                self.config.redis_url,
                ttl_seconds=self.config.definition_cache_ttl_seconds,
            )
        return store

    def _build_audit_sink(self) -> AuditSink:
        if self.config.audit_sink == "postgres":
            return PostgresAuditSink(self.config.postgres_dsn)
        return InMemoryAuditSink()

    def _validate_action_types(self, request: DefinitionCreateRequest):
        unknown = sorted({a.type for a in request.actions if a.type not in self.registry})
        if unknown:
            raise ValidationError(
                f"Unknown action types: {', '.join(unknown)}",
                {"unknown_action_types": unknown, "registered": self.registry.action_types()}
            )

    async def _get_definition(self, definition_id: str):
        definition = await self.store.get(definition_id)
        if definition is None:
            raise DefinitionNotFoundError(definition_id)
        return definition

    def _setup_automation_routes(self):
        """Set up automation-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Automation Service - rules and event workflows",
                "version": "1.0.0",
                "capabilities": ["condition_evaluation", "action_dispatch", "audit_trail"],
                "action_types": self.registry.action_types(),
            }

        @self.app.get("/automation/triggers")
        async def list_triggers():
            """Known rule types and domain events."""
            return {"rule_types": list(RULE_TYPES), "events": sorted(TRIGGER_EVENTS.values())}

        @self.app.post("/automation/triggers/{trigger_key}", response_model=TriggerResponse)
        async def fire_trigger(trigger_key: str, request: TriggerRequest):
            """Evaluate every eligible definition for a trigger key."""
            summaries = await self.orchestrator.evaluate_for_trigger(
                trigger_key, request.payload, triggered_by=request.triggered_by
            )
            self.metrics.record_business_event("trigger_evaluated")
            return TriggerResponse(
                trigger_key=trigger_key,
                results=[ExecutionSummaryResponse(**s.to_dict()) for s in summaries],
            )

        @self.app.get("/automation/actions")
        async def list_actions():
            """Registered action types."""
            return {"actions": self.registry.describe()}

        @self.app.get("/automation/definitions", response_model=DefinitionListResponse)
        async def list_definitions(trigger_key: Optional[str] = Query(None, description="Filter by trigger key")):
            """List definitions."""
            definitions = await self.store.list_definitions(trigger_key)
            return DefinitionListResponse(
                definitions=[DefinitionResponse.from_definition(d) for d in definitions],
                total=len(definitions),
            )

        @self.app.post("/automation/definitions", response_model=DefinitionResponse, status_code=201)
        async def create_definition(request: DefinitionCreateRequest):
            """Create a definition."""
            self._validate_action_types(request)
            definition = await self.store.save(request.to_definition(uuid.uuid4().hex))
            self.logger.info(
                "Definition created",
                definition_id=definition.definition_id,
                trigger_key=definition.trigger_key
            )
            return DefinitionResponse.from_definition(definition)

        @self.app.get("/automation/definitions/{definition_id}", response_model=DefinitionResponse)
        async def get_definition(definition_id: str):
            """Get one definition."""
            return DefinitionResponse.from_definition(await self._get_definition(definition_id))

        @self.app.put("/automation/definitions/{definition_id}", response_model=DefinitionResponse)
        async def update_definition(definition_id: str, request: DefinitionCreateRequest):
            """Replace a definition's content, keeping its identity and stats."""
            existing = await self._get_definition(definition_id)
            self._validate_action_types(request)

            definition = request.to_definition(definition_id)
            definition.created_at = existing.created_at
            definition.created_by = existing.created_by
            definition = await self.store.save(definition)
            self.logger.info(
                "Definition updated",
                definition_id=definition_id,
                trigger_key=definition.trigger_key
            )
            return DefinitionResponse.from_definition(definition)

        @self.app.delete("/automation/definitions/{definition_id}")
        async def delete_definition(definition_id: str):
            """Delete a definition. Its execution history is kept."""
            if not await self.store.delete(definition_id):
                raise DefinitionNotFoundError(definition_id)
            self.logger.info("Definition deleted", definition_id=definition_id)
            return {"definition_id": definition_id, "deleted": True}

        @self.app.put("/automation/definitions/{definition_id}/enabled", response_model=DefinitionResponse)
        async def set_enabled(definition_id: str, request: EnabledUpdateRequest):
            """Enable or disable a definition."""
            definition = await self.store.set_enabled(definition_id, request.enabled)
            return DefinitionResponse.from_definition(definition)

        @self.app.post("/automation/definitions/{definition_id}/test", response_model=ManualRunResponse)
        async def test_definition(definition_id: str, request: ManualRunRequest):
            """Run one definition against a sample payload and return its full trace."""
            outcome = await self.orchestrator.evaluate_single(definition_id, request.payload)
            return ManualRunResponse.from_outcome(outcome)

        @self.app.get("/automation/definitions/{definition_id}/stats")
        async def definition_stats(definition_id: str):
            """Execution statistics for one definition."""
            definition = await self._get_definition(definition_id)
            stats = await self.audit_sink.get_stats(definition_id)
            return {
                "definition_id": definition_id,
                "execution_count": definition.execution_count,
                "last_executed_at": definition.last_executed_at,
                **stats,
            }

        @self.app.get("/automation/executions", response_model=ExecutionListResponse)
        async def list_executions(
            definition_id: Optional[str] = Query(None, description="Filter by definition"),
            trigger_key: Optional[str] = Query(None, description="Filter by trigger key"),
            limit: int = Query(50, ge=1, le=500, description="Maximum records to return"),
        ):
            """Execution history, most recent first."""
            records = await self.audit_sink.list_records(
                definition_id=definition_id, trigger_key=trigger_key, limit=limit
            )
            return ExecutionListResponse(
                executions=[r.to_dict() for r in records],
                total=len(records),
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies."""
        dependencies = {
            "definition_store": "ok" if await self.store.health_check() else "error",
            "audit_sink": "ok" if await self.audit_sink.health_check() else "error",
        }
        if isinstance(self.store, CachedDefinitionStore):
            dependencies["definition_cache"] = "ok" if await self.store.cache_health() else "degraded"
        return dependencies

    async def start(self):
        """Start automation service components."""
        await self.store.start()
        await self.audit_sink.start()
        self.logger.info(
            "Automation service started",
            definition_store=type(self.store).__name__,
            audit_sink=type(self.audit_sink).__name__,
            action_types=len(self.registry)
        )

    async def stop(self):
        """Stop automation service components."""
        await self.store.stop()
        await self.audit_sink.stop()
        self.logger.info("Automation service stopped")


def create_app():
    """Create automation service application."""
    service = AutomationService()
    return service.app


if __name__ == "__main__":
    service = AutomationService()
    service.run()
