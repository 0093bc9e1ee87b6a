"""
Action handler interface and registry.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from shared.logging import get_logger


@dataclass
class HandlerResult:
    """What a handler reports back to the dispatcher."""
    success: bool
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: Any = None) -> "HandlerResult":
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, error: str, output: Any = None) -> "HandlerResult":
        return cls(success=False, output=output, error=error)


class ActionHandler(ABC):
    """Executes one action type against a payload.

    Expected validation problems (missing or malformed config) are reported
    with ``HandlerResult.fail``; handlers should not raise for them.
    """

    action_type: str = ""
    description: str = ""
    required_config: Tuple[str, ...] = ()

    def missing_config(self, config: Mapping[str, Any]) -> Optional[str]:
        """Return an error message if a required config key is missing."""
        missing = [
            key for key in self.required_config
            if config.get(key) is None or config.get(key) == ""
        ]
        if missing:
            return f"Missing required config: {', '.join(missing)}"
        return None

    @abstractmethod
    async def execute(self, config: Mapping[str, Any], payload: Mapping[str, Any]) -> HandlerResult:
        """Run the action."""


HandlerFunction = Callable[[Mapping[str, Any], Mapping[str, Any]], Any]


class FunctionActionHandler(ActionHandler):
    """Adapts a plain ``(config, payload)`` callable to the handler interface.

    The callable may be sync or async and may return a ``HandlerResult`` or a
    mapping with ``success``/``output``/``error`` keys. Sync callables run in a
    worker thread so they stay under the dispatcher timeout.
    """

    def __init__(self, action_type: str, func: HandlerFunction, description: str = ""):
        self.action_type = action_type
        self.func = func
        self.description = description or (inspect.getdoc(func) or "").split("\n")[0]

    async def execute(self, config: Mapping[str, Any], payload: Mapping[str, Any]) -> HandlerResult:
        if inspect.iscoroutinefunction(self.func):
            result = await self.func(config, payload)
        else:
            result = await asyncio.to_thread(self.func, config, payload)
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, HandlerResult):
            return result
        if isinstance(result, Mapping):
            return HandlerResult(
                success=bool(result.get("success")),
                output=result.get("output"),
                error=result.get("error"),
            )
        raise TypeError(
            f"Handler for {self.action_type!r} returned {type(result).__name__}, "
            "expected HandlerResult or mapping"
        )


class ActionRegistry:
    """Maps action type tags to handlers."""

    def __init__(self):
        self.logger = get_logger("automation.actions.registry")
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, action_type: str, handler: Union[ActionHandler, HandlerFunction]) -> ActionHandler:
        """Register a handler (or plain callable) under a type tag."""
        if not action_type:
            raise ValueError("action_type must be a non-empty string")

        if not isinstance(handler, ActionHandler):
            if not callable(handler):
                raise TypeError(f"Handler for {action_type!r} is not callable")
            handler = FunctionActionHandler(action_type, handler)

        if action_type in self._handlers:
            self.logger.warning("Replacing action handler", action_type=action_type)

        self._handlers[action_type] = handler
        self.logger.debug("Action handler registered", action_type=action_type)
        return handler

    def register_handler(self, handler: ActionHandler) -> ActionHandler:
        """Register a handler under its own ``action_type``."""
        return self.register(handler.action_type, handler)

    def unregister(self, action_type: str) -> bool:
        """Remove a handler."""
        return self._handlers.pop(action_type, None) is not None

    def get(self, action_type: str) -> Optional[ActionHandler]:
        """Get the handler for a type tag."""
        return self._handlers.get(action_type)

    def action_types(self) -> List[str]:
        return sorted(self._handlers)

    def describe(self) -> List[Dict[str, Any]]:
        """Registered handlers as plain dicts for the API."""
        return [
            {
                "type": action_type,
                "description": handler.description,
                "required_config": list(handler.required_config),
            }
            for action_type, handler in sorted(self._handlers.items())
        ]

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
