"""
Execution orchestrator.

Selects eligible definitions for a trigger, folds their conditions, dispatches
actions on a match and records the outcome. Per attempt:

    Fetched -> ConditionsEvaluated -> Skipped
                                   -> ActionsDispatched -> Success | Partial | Failed

Definitions of one invocation are evaluated strictly one after another.
"""

import time
import uuid
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Sequence

from shared.errors import DefinitionNotFoundError, StoreError
from shared.logging import get_logger, set_trigger_context
from shared.metrics import MetricsCollector
from shared.tracing import trace_operation

from ..actions.dispatcher import ActionDispatcher
from ..conditions import fold_conditions
from ..models import (
    MANUAL_TEST_TRIGGER,
    ActionResult,
    Definition,
    EvaluationOutcome,
    ExecutionStatus,
    ExecutionSummary,
    utcnow,
)
from ..persistence.base import AuditSink, DefinitionStore


def overall_status(results: Sequence[ActionResult]) -> ExecutionStatus:
    """success if every action succeeded (or there were none), failed if all failed."""
    succeeded = sum(1 for result in results if result.succeeded)
    if succeeded == len(results):
        return ExecutionStatus.SUCCESS
    if succeeded == 0:
        return ExecutionStatus.FAILED
    return ExecutionStatus.PARTIAL


def default_triggered_by(payload: Mapping[str, Any], trigger_key: str) -> str:
    """Reference to the entity behind a payload."""
    for key in ("id", "_id"):
        value = payload.get(key) if isinstance(payload, Mapping) else None
        if value not in (None, ""):
            return str(value)
    return f"event:{trigger_key}"


class ExecutionOrchestrator:
    """Runs definitions against payloads and records what happened."""

    def __init__(self, store: DefinitionStore, audit_sink: AuditSink, dispatcher: ActionDispatcher,
                 metrics: Optional[MetricsCollector] = None, record_skipped: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.audit_sink = audit_sink
        self.dispatcher = dispatcher
        self.metrics = metrics
        self.record_skipped = record_skipped
        self.clock = clock or utcnow
        self.logger = get_logger("automation.engine")

    def select_eligible(self, definitions: Sequence[Definition], trigger_key: str,
                        now: datetime) -> List[Definition]:
        """Enabled, in-window definitions for a trigger in evaluation order.

        Priority descending, ties broken by the most recently created first.
        """
        eligible = [
            definition for definition in definitions
            if definition.enabled
            and definition.trigger_key == trigger_key
            and definition.is_within_validity(now)
        ]
        return sorted(eligible, key=lambda d: (d.priority, d.created_at), reverse=True)

    async def evaluate_for_trigger(self, trigger_key: str, payload: Mapping[str, Any],
                                   triggered_by: Optional[str] = None) -> List[ExecutionSummary]:
        """Evaluate every eligible definition for a trigger.

        There is no first-match-wins: each eligible definition whose conditions
        pass dispatches its actions. A failure to fetch definitions raises
        ``StoreError``; a failure inside one definition never stops the batch.
        """
        set_trigger_context(trigger_key=trigger_key)
        triggered_by = triggered_by or default_triggered_by(payload, trigger_key)

        try:
            fetched = await self.store.list_eligible(trigger_key)
        except StoreError:
            raise
        except Exception as e:
            self.logger.error("Failed to fetch eligible definitions", trigger_key=trigger_key, error=str(e))
            raise StoreError(f"Failed to fetch definitions for {trigger_key}: {e}",
                             {"trigger_key": trigger_key})

        definitions = self.select_eligible(fetched, trigger_key, self.clock())
        self.logger.info(
            "Evaluating trigger",
            trigger_key=trigger_key,
            triggered_by=triggered_by,
            fetched=len(fetched),
            eligible=len(definitions)
        )

        summaries: List[ExecutionSummary] = []
        for definition in definitions:
            outcome = await self._evaluate_guarded(definition, payload, trigger_key, triggered_by)
            summaries.append(outcome.to_summary())

        set_trigger_context(trigger_key=trigger_key, definition_id=None)
        return summaries

    async def evaluate_single(self, definition_id: str, payload: Mapping[str, Any]) -> EvaluationOutcome:
        """Manual test run of one definition.

        Ignores ``enabled`` and the validity window, and goes through the same
        evaluation path as triggered runs.
        """
        definition = await self.store.get(definition_id)
        if definition is None:
            raise DefinitionNotFoundError(definition_id)

        set_trigger_context(trigger_key=MANUAL_TEST_TRIGGER)
        return await self._evaluate_guarded(definition, payload, MANUAL_TEST_TRIGGER, MANUAL_TEST_TRIGGER)

    async def _evaluate_guarded(self, definition: Definition, payload: Mapping[str, Any],
                                trigger_key: str, triggered_by: str) -> EvaluationOutcome:
        started = time.perf_counter()
        try:
            return await self.evaluate_one(definition, payload, trigger_key, triggered_by)
        except Exception as e:
            self.logger.error(
                "Unexpected error evaluating definition",
                definition_id=definition.definition_id,
                error=str(e),
                exc_info=True
            )
            return await self._record_failure(definition, trigger_key, triggered_by, e, started)

    async def evaluate_one(self, definition: Definition, payload: Mapping[str, Any],
                           trigger_key: Optional[str] = None,
                           triggered_by: Optional[str] = None) -> EvaluationOutcome:
        """Evaluate a single definition against a payload."""
        trigger_key = trigger_key or definition.trigger_key
        started = time.perf_counter()
        set_trigger_context(trigger_key=trigger_key, definition_id=definition.definition_id)

        outcome = EvaluationOutcome(
            definition_id=definition.definition_id,
            definition_name=definition.name,
            trigger_key=trigger_key,
            triggered_by=triggered_by or default_triggered_by(payload, trigger_key),
            executed_at=self.clock(),
        )
        logs = outcome.logs

        with trace_operation(
            "automation.evaluate_definition",
            definition_id=definition.definition_id,
            trigger_key=trigger_key,
            priority=definition.priority,
        ) as span:
            logs.append(f"Starting evaluation: {definition.name}")
            logs.append(f"Trigger: {trigger_key}")

            matched, results = fold_conditions(definition.conditions, payload)
            for condition, result in zip(definition.conditions, results):
                logs.append(f"Condition {condition.describe()}: {'passed' if result else 'failed'}")
            logs.append(f"Conditions evaluation: {'PASSED' if matched else 'FAILED'}")
            outcome.conditions_met = matched

            if not matched:
                outcome.status = ExecutionStatus.SKIPPED
                self._finish(outcome, started)
                span.set_attribute("status", outcome.status.value)
                if self.record_skipped:
                    await self._append_record(outcome)
                return outcome

            outcome.action_results = await self.dispatcher.execute_actions(definition.actions, payload, logs)
            outcome.status = overall_status(outcome.action_results)
            if outcome.status == ExecutionStatus.FAILED:
                outcome.error = f"All {len(outcome.action_results)} actions failed"

            self._finish(outcome, started)
            span.set_attribute("status", outcome.status.value)

            await self._increment_stats(outcome)
            await self._append_record(outcome)

        return outcome

    def _finish(self, outcome: EvaluationOutcome, started: float):
        elapsed = time.perf_counter() - started
        outcome.duration_ms = round(elapsed * 1000, 3)
        outcome.logs.append(
            f"Evaluation completed in {outcome.duration_ms:.0f}ms with status {outcome.status.value}"
        )
        if self.metrics:
            self.metrics.record_evaluation(outcome.status.value, elapsed)

        self.logger.info(
            "Definition evaluated",
            definition_id=outcome.definition_id,
            definition_name=outcome.definition_name,
            status=outcome.status.value,
            duration_ms=outcome.duration_ms,
            actions=len(outcome.action_results)
        )

    async def _increment_stats(self, outcome: EvaluationOutcome):
        try:
            await self.store.increment_stats(outcome.definition_id, outcome.executed_at)
        except Exception as e:
            self._write_failed("stats", outcome, e)

    async def _append_record(self, outcome: EvaluationOutcome):
        try:
            await self.audit_sink.append(outcome.to_record(str(uuid.uuid4())))
        except Exception as e:
            self._write_failed("audit", outcome, e)

    def _write_failed(self, kind: str, outcome: EvaluationOutcome, error: Exception):
        # Actions already ran; a failed write is reported, never rolled back.
        self.logger.warning(
            "Execution write failed",
            kind=kind,
            definition_id=outcome.definition_id,
            error=str(error)
        )
        if self.metrics:
            self.metrics.record_write_failure(kind)
        outcome.write_errors.append(f"{kind}: {error}")

    async def _record_failure(self, definition: Definition, trigger_key: str, triggered_by: str,
                              error: Exception, started: float) -> EvaluationOutcome:
        outcome = EvaluationOutcome(
            definition_id=definition.definition_id,
            definition_name=definition.name,
            trigger_key=trigger_key,
            triggered_by=triggered_by,
            status=ExecutionStatus.FAILED,
            error=str(error) or type(error).__name__,
            executed_at=self.clock(),
        )
        outcome.logs.append(f"Evaluation error: {outcome.error}")
        self._finish(outcome, started)
        await self._append_record(outcome)
        return outcome
