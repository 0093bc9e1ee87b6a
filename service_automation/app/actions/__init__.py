"""
Action handlers, registry and dispatcher.
"""

from .builtin import BUILTIN_HANDLERS, DescribedEffectHandler, register_builtin_handlers
from .dispatcher import ActionDispatcher
from .registry import ActionHandler, ActionRegistry, FunctionActionHandler, HandlerResult
from .webhook import CallWebhookHandler

__all__ = [
    "ActionDispatcher",
    "ActionHandler",
    "ActionRegistry",
    "BUILTIN_HANDLERS",
    "CallWebhookHandler",
    "DescribedEffectHandler",
    "FunctionActionHandler",
    "HandlerResult",
    "register_builtin_handlers",
]
