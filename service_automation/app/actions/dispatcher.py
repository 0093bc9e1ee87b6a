"""
Sequential action dispatch with per-action failure isolation.
"""

import asyncio
from typing import Any, List, Mapping, Optional, Sequence

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import Action, ActionResult, ActionStatus
from .registry import ActionRegistry, HandlerResult


class ActionDispatcher:
    """Runs an ordered action list against a payload.

    Every action gets its own result regardless of what happened to the
    previous ones. Unknown types, handler exceptions and timeouts all become
    failed results.
    """

    def __init__(self, registry: ActionRegistry, timeout_seconds: float = 10.0,
                 metrics: Optional[MetricsCollector] = None):
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.logger = get_logger("automation.actions.dispatcher")

    @staticmethod
    def order_actions(actions: Sequence[Action]) -> List[Action]:
        """Stable sort by ``order`` (missing counts as 0)."""
        return sorted(actions, key=lambda action: action.sort_order)

    async def execute_action(self, action: Action, payload: Mapping[str, Any]) -> ActionResult:
        """Execute one action inside the failure boundary."""
        handler = self.registry.get(action.type)
        if handler is None:
            return ActionResult(
                action_type=action.type,
                status=ActionStatus.FAILED,
                error=f"Unknown action type: {action.type}",
            )

        try:
            result = await asyncio.wait_for(
                handler.execute(dict(action.config or {}), payload),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.logger.warning(
                "Action timed out",
                action_type=action.type,
                timeout_seconds=self.timeout_seconds
            )
            return ActionResult(
                action_type=action.type,
                status=ActionStatus.FAILED,
                error=f"Action timed out after {self.timeout_seconds}s",
            )
        except Exception as e:
            self.logger.warning(
                "Action handler raised",
                action_type=action.type,
                error=str(e),
                exc_info=True
            )
            return ActionResult(
                action_type=action.type,
                status=ActionStatus.FAILED,
                error=str(e) or type(e).__name__,
            )

        if not isinstance(result, HandlerResult):
            return ActionResult(
                action_type=action.type,
                status=ActionStatus.FAILED,
                error=f"Handler returned unexpected result type: {type(result).__name__}",
            )

        if result.success:
            return ActionResult(action_type=action.type, status=ActionStatus.SUCCESS, output=result.output)

        return ActionResult(
            action_type=action.type,
            status=ActionStatus.FAILED,
            error=result.error or "Action failed",
            output=result.output,
        )

    async def execute_actions(self, actions: Sequence[Action], payload: Mapping[str, Any],
                              logs: Optional[List[str]] = None) -> List[ActionResult]:
        """Execute actions sequentially in dispatch order."""
        results: List[ActionResult] = []

        for action in self.order_actions(actions):
            if logs is not None:
                logs.append(f"Executing action: {action.type}")

            result = await self.execute_action(action, payload)
            results.append(result)

            if self.metrics:
                self.metrics.record_action(action.type, result.status.value)

            if logs is not None:
                if result.succeeded:
                    logs.append(f"Action {action.type} completed successfully")
                else:
                    logs.append(f"Action {action.type} failed: {result.error}")

        return results
