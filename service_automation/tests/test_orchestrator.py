"""
Unit tests for the execution orchestrator.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from shared.errors import AuditWriteError, DefinitionNotFoundError, StoreError
from service_automation.app.actions import ActionDispatcher, ActionRegistry, HandlerResult, register_builtin_handlers
from service_automation.app.engine import ExecutionOrchestrator, default_triggered_by, overall_status
from service_automation.app.models import (
    Action,
    ActionResult,
    ActionStatus,
    Condition,
    Definition,
    ExecutionStatus,
    MANUAL_TEST_TRIGGER,
    utcnow,
)
from service_automation.app.persistence import InMemoryAuditSink, InMemoryDefinitionStore


def make_definition(definition_id, priority=0, conditions=None, actions=None, trigger_key="pricing", **kwargs):
    return Definition(
        definition_id=definition_id,
        name=f"Definition {definition_id}",
        trigger_key=trigger_key,
        conditions=conditions or [],
        actions=actions if actions is not None else [Action("noop")],
        priority=priority,
        **kwargs
    )


def discount_definition(definition_id="rule-a", priority=10):
    return make_definition(
        definition_id,
        priority=priority,
        conditions=[Condition(field="total", operator="gt", value=100)],
        actions=[Action("apply_discount", {"discountPercent": 10})],
    )


class TestExecutionOrchestrator:
    """Test cases for ExecutionOrchestrator."""

    @pytest.fixture
    def registry(self):
        registry = ActionRegistry()
        register_builtin_handlers(registry)
        registry.register("noop", lambda c, p: HandlerResult.ok())
        registry.register("fail", lambda c, p: HandlerResult.fail("always fails"))
        return registry

    @pytest.fixture
    def store(self):
        return InMemoryDefinitionStore()

    @pytest.fixture
    def sink(self):
        return InMemoryAuditSink()

    @pytest.fixture
    def orchestrator(self, store, sink, registry):
        return ExecutionOrchestrator(store, sink, ActionDispatcher(registry, timeout_seconds=1))

    @pytest.mark.asyncio
    async def test_scenario_matching_discount(self, orchestrator, store, sink):
        await store.save(discount_definition())

        summaries = await orchestrator.evaluate_for_trigger("pricing", {"total": 150})

        assert len(summaries) == 1
        assert summaries[0].status == ExecutionStatus.SUCCESS
        assert summaries[0].definition_id == "rule-a"

        records = sink.records
        assert len(records) == 1
        result = records[0].action_results[0]
        assert result.status == ActionStatus.SUCCESS
        assert result.output["originalPrice"] == 150
        assert result.output["discountedPrice"] == 135
        assert result.output["discountAmount"] == 15

        definition = await store.get("rule-a")
        assert definition.execution_count == 1
        assert definition.last_executed_at is not None

    @pytest.mark.asyncio
    async def test_scenario_conditions_fail(self, orchestrator, store, sink):
        await store.save(discount_definition())

        with patch.object(orchestrator.dispatcher, "execute_actions", AsyncMock()) as execute_actions:
            summaries = await orchestrator.evaluate_for_trigger("pricing", {"total": 50})

        assert summaries[0].status == ExecutionStatus.SKIPPED
        execute_actions.assert_not_called()
        assert sink.records == []

        definition = await store.get("rule-a")
        assert definition.execution_count == 0
        assert definition.last_executed_at is None

    @pytest.mark.asyncio
    async def test_skipped_records_when_enabled(self, store, sink, registry):
        orchestrator = ExecutionOrchestrator(
            store, sink, ActionDispatcher(registry), record_skipped=True
        )
        await store.save(discount_definition())

        await orchestrator.evaluate_for_trigger("pricing", {"total": 50})

        assert len(sink.records) == 1
        assert sink.records[0].status == ExecutionStatus.SKIPPED
        assert (await store.get("rule-a")).execution_count == 0

    @pytest.mark.asyncio
    async def test_priority_order_with_failure_isolation(self, orchestrator, store, sink):
        await store.save(make_definition("low", priority=5))
        await store.save(make_definition("high", priority=10, actions=[Action("fail")]))

        summaries = await orchestrator.evaluate_for_trigger("pricing", {})

        assert [s.definition_id for s in summaries] == ["high", "low"]
        assert summaries[0].status == ExecutionStatus.FAILED
        assert summaries[1].status == ExecutionStatus.SUCCESS
        assert [r.definition_id for r in sink.records] == ["high", "low"]

    @pytest.mark.asyncio
    async def test_ties_broken_by_most_recent(self, orchestrator, store):
        now = utcnow()
        await store.save(make_definition("older", priority=1, created_at=now - timedelta(days=2)))
        await store.save(make_definition("newer", priority=1, created_at=now - timedelta(days=1)))

        summaries = await orchestrator.evaluate_for_trigger("pricing", {})

        assert [s.definition_id for s in summaries] == ["newer", "older"]

    @pytest.mark.asyncio
    async def test_no_first_match_wins(self, orchestrator, store, sink):
        await store.save(discount_definition("rule-a", priority=10))
        await store.save(discount_definition("rule-b", priority=5))

        summaries = await orchestrator.evaluate_for_trigger("pricing", {"total": 150})

        assert [s.status for s in summaries] == [ExecutionStatus.SUCCESS, ExecutionStatus.SUCCESS]
        assert len(sink.records) == 2

    @pytest.mark.asyncio
    async def test_validity_window_exclusion(self, orchestrator, store):
        now = utcnow()
        await store.save(make_definition("expired", priority=100, valid_until=now - timedelta(hours=1)))
        await store.save(make_definition("future", priority=50, valid_from=now + timedelta(hours=1)))
        await store.save(make_definition(
            "current", valid_from=now - timedelta(hours=1), valid_until=now + timedelta(hours=1)
        ))

        summaries = await orchestrator.evaluate_for_trigger("pricing", {})

        assert [s.definition_id for s in summaries] == ["current"]

    @pytest.mark.asyncio
    async def test_disabled_and_other_triggers_excluded(self, orchestrator, store):
        await store.save(make_definition("disabled", enabled=False))
        await store.save(make_definition("routing", trigger_key="routing"))
        await store.save(make_definition("pricing"))

        summaries = await orchestrator.evaluate_for_trigger("pricing", {})

        assert [s.definition_id for s in summaries] == ["pricing"]

    @pytest.mark.asyncio
    async def test_status_aggregation(self, orchestrator, store):
        await store.save(make_definition("none", priority=3, actions=[]))
        await store.save(make_definition("partial", priority=2, actions=[Action("noop"), Action("fail")]))
        await store.save(make_definition("failed", priority=1, actions=[Action("fail"), Action("missing")]))

        summaries = await orchestrator.evaluate_for_trigger("pricing", {})

        assert [s.status for s in summaries] == [
            ExecutionStatus.SUCCESS,
            ExecutionStatus.PARTIAL,
            ExecutionStatus.FAILED,
        ]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded_and_batch_continues(self, orchestrator, store, sink):
        await store.save(make_definition("broken", priority=10))
        await store.save(make_definition("healthy", priority=5))

        execute_actions = AsyncMock(side_effect=[
            RuntimeError("dispatcher crashed"),
            [ActionResult("noop", ActionStatus.SUCCESS)],
        ])
        with patch.object(orchestrator.dispatcher, "execute_actions", execute_actions):
            summaries = await orchestrator.evaluate_for_trigger("pricing", {})

        assert [s.status for s in summaries] == [ExecutionStatus.FAILED, ExecutionStatus.SUCCESS]
        assert sink.records[0].status == ExecutionStatus.FAILED
        assert sink.records[0].error == "dispatcher crashed"
        assert sink.records[1].definition_id == "healthy"

    @pytest.mark.asyncio
    async def test_fetch_failure_is_fatal(self, sink, registry):
        store = MagicMock()
        store.list_eligible = AsyncMock(side_effect=ConnectionError("db down"))
        orchestrator = ExecutionOrchestrator(store, sink, ActionDispatcher(registry))

        with pytest.raises(StoreError):
            await orchestrator.evaluate_for_trigger("pricing", {})

    @pytest.mark.asyncio
    async def test_stats_write_failure_is_reported(self, orchestrator, store, sink):
        await store.save(make_definition("rule-a"))

        with patch.object(store, "increment_stats", AsyncMock(side_effect=StoreError("stats down"))):
            outcome = await orchestrator.evaluate_one(await store.get("rule-a"), {}, "pricing", "order-1")

        assert outcome.status == ExecutionStatus.SUCCESS
        assert outcome.write_errors == ["stats: stats down"]
        assert len(sink.records) == 1

    @pytest.mark.asyncio
    async def test_audit_write_failure_is_reported(self, orchestrator, store, sink):
        await store.save(make_definition("rule-a"))

        with patch.object(sink, "append", AsyncMock(side_effect=AuditWriteError("sink down"))):
            summaries = await orchestrator.evaluate_for_trigger("pricing", {})

        assert summaries[0].status == ExecutionStatus.SUCCESS
        assert (await store.get("rule-a")).execution_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_invocations_increment_exactly(self, store, sink):
        registry = ActionRegistry()

        async def yielding(config, payload):
            await asyncio.sleep(0)
            return HandlerResult.ok()

        registry.register("noop", yielding)
        orchestrator = ExecutionOrchestrator(store, sink, ActionDispatcher(registry))
        await store.save(make_definition("rule-a"))

        n = 25
        await asyncio.gather(*[
            orchestrator.evaluate_for_trigger("pricing", {"id": f"order-{i}"}) for i in range(n)
        ])

        assert (await store.get("rule-a")).execution_count == n
        assert len(sink.records) == n

    @pytest.mark.asyncio
    async def test_triggered_by(self, orchestrator, store, sink):
        await store.save(make_definition("rule-a"))

        await orchestrator.evaluate_for_trigger("pricing", {"id": "order-7"})
        await orchestrator.evaluate_for_trigger("pricing", {}, triggered_by="admin")

        assert [r.triggered_by for r in sink.records] == ["order-7", "admin"]

    @pytest.mark.asyncio
    async def test_evaluate_single_runs_disabled_definition(self, orchestrator, store, sink):
        await store.save(discount_definition())
        await store.set_enabled("rule-a", False)

        outcome = await orchestrator.evaluate_single("rule-a", {"total": 150})

        assert outcome.status == ExecutionStatus.SUCCESS
        assert outcome.conditions_met
        assert outcome.triggered_by == MANUAL_TEST_TRIGGER
        assert "Conditions evaluation: PASSED" in outcome.logs
        assert "Executing action: apply_discount" in outcome.logs
        assert sink.records[0].trigger_key == MANUAL_TEST_TRIGGER

    @pytest.mark.asyncio
    async def test_evaluate_single_trace_when_skipped(self, orchestrator, store):
        await store.save(discount_definition())

        outcome = await orchestrator.evaluate_single("rule-a", {"total": 50})

        assert outcome.status == ExecutionStatus.SKIPPED
        assert "Condition total gt 100: failed" in outcome.logs
        assert "Conditions evaluation: FAILED" in outcome.logs
        assert outcome.action_results == []

    @pytest.mark.asyncio
    async def test_evaluate_single_not_found(self, orchestrator):
        with pytest.raises(DefinitionNotFoundError):
            await orchestrator.evaluate_single("missing", {})


class TestHelpers:
    """Test cases for orchestrator helpers."""

    def test_overall_status(self):
        ok = ActionResult("a", ActionStatus.SUCCESS)
        bad = ActionResult("b", ActionStatus.FAILED)
        assert overall_status([]) == ExecutionStatus.SUCCESS
        assert overall_status([ok, ok]) == ExecutionStatus.SUCCESS
        assert overall_status([bad, bad]) == ExecutionStatus.FAILED
        assert overall_status([ok, bad]) == ExecutionStatus.PARTIAL

    def test_default_triggered_by(self):
        assert default_triggered_by({"id": 42}, "order.created") == "42"
        assert default_triggered_by({"_id": "abc"}, "order.created") == "abc"
        assert default_triggered_by({}, "order.created") == "event:order.created"

    def test_select_eligible_filters_after_fetch(self):
        orchestrator = ExecutionOrchestrator(MagicMock(), MagicMock(), MagicMock())
        now = utcnow()
        definitions = [
            make_definition("a", priority=1),
            make_definition("b", priority=9, enabled=False),
            make_definition("c", priority=5, valid_until=now - timedelta(seconds=1)),
            make_definition("d", priority=3, trigger_key="routing"),
            make_definition("e", priority=7),
        ]
        selected = orchestrator.select_eligible(definitions, "pricing", now)
        assert [d.definition_id for d in selected] == ["e", "a"]
