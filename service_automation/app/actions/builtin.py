"""
Built-in action handlers.

Handlers never touch the payload or any external entity store. Their output
describes the effect that downstream consumers should apply (the discount to
give, the segment to assign, the task to create). ``call_webhook`` is the one
handler that performs real I/O; see ``webhook.py``.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from shared.retry import RetryConfig

from .registry import ActionHandler, ActionRegistry, HandlerResult
from .webhook import CallWebhookHandler


def _entity_id(payload: Mapping[str, Any]) -> Optional[Any]:
    return payload.get("id") or payload.get("_id")


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _money(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class DescribedEffectHandler(ActionHandler):
    """Base for handlers whose result is a description of an effect."""

    async def execute(self, config: Mapping[str, Any], payload: Mapping[str, Any]) -> HandlerResult:
        missing = self.missing_config(config)
        if missing:
            return HandlerResult.fail(missing)
        return self.describe_effect(config, payload)

    def describe_effect(self, config: Mapping[str, Any], payload: Mapping[str, Any]) -> HandlerResult:
        raise NotImplementedError


# --- Commerce rules ----------------------------------------------------------


class ApplyDiscountHandler(DescribedEffectHandler):
    action_type = "apply_discount"
    description = "Compute a percentage discount on the payload price"
    required_config = ("discountPercent",)

    def describe_effect(self, config, payload):
        percent = _to_decimal(config.get("discountPercent"))
        if percent is None or percent < 0 or percent > 100:
            return HandlerResult.fail("discountPercent must be a number between 0 and 100")

        raw_price = payload.get("price")
        if raw_price is None:
            raw_price = payload.get("total")
        original = _to_decimal(raw_price)
        if original is None:
            return HandlerResult.fail("Payload has no numeric price or total")

        discount = original * percent / Decimal(100)
        discounted = original - discount
        return HandlerResult.ok({
            "originalPrice": _money(original),
            "discountPercent": float(percent),
            "discountedPrice": _money(discounted),
            "discountAmount": _money(discount),
            "message": f"{percent.normalize():f}% discount applied",
        })


class ReorderStockHandler(DescribedEffectHandler):
    action_type = "reorder_stock"
    description = "Request a stock reorder for the payload product"
    required_config = ("reorderQuantity",)

    def describe_effect(self, config, payload):
        quantity = config.get("reorderQuantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            return HandlerResult.fail("reorderQuantity must be a positive integer")
        return HandlerResult.ok({
            "productId": payload.get("productId") or _entity_id(payload),
            "currentStock": payload.get("stock"),
            "reorderQuantity": quantity,
            "message": f"Reorder initiated for {quantity} units",
        })


class AssignSegmentHandler(DescribedEffectHandler):
    action_type = "assign_segment"
    description = "Assign the payload user to a customer segment"
    required_config = ("segment",)

    def describe_effect(self, config, payload):
        segment = config["segment"]
        return HandlerResult.ok({
            "userId": payload.get("userId") or _entity_id(payload),
            "segment": segment,
            "message": f"User assigned to segment: {segment}",
        })


class BlockOrderHandler(DescribedEffectHandler):
    action_type = "block_order"
    description = "Flag the payload order as blocked"

    def describe_effect(self, config, payload):
        reason = config.get("reason") or "Blocked by rule"
        return HandlerResult.ok({
            "orderId": payload.get("orderId") or _entity_id(payload),
            "blocked": True,
            "reason": reason,
            "message": f"Order blocked: {reason}",
        })


class SendAlertHandler(DescribedEffectHandler):
    action_type = "send_alert"
    description = "Raise an operational alert"
    required_config = ("message",)

    def describe_effect(self, config, payload):
        recipients = config.get("recipients") or []
        if isinstance(recipients, str):
            recipients = [recipients]
        return HandlerResult.ok({
            "alertType": config.get("alertType", "info"),
            "message": config["message"],
            "recipients": list(recipients),
            "status": "Alert queued",
        })


class RouteToWarehouseHandler(DescribedEffectHandler):
    action_type = "route_to_warehouse"
    description = "Route the payload order to a warehouse"
    required_config = ("warehouse",)

    def describe_effect(self, config, payload):
        warehouse = config["warehouse"]
        return HandlerResult.ok({
            "orderId": payload.get("orderId") or _entity_id(payload),
            "warehouse": warehouse,
            "location": config.get("location"),
            "message": f"Order routed to warehouse: {warehouse}",
        })


class AssignUserHandler(DescribedEffectHandler):
    action_type = "assign_user"
    description = "Assign the payload entity to a user"
    required_config = ("userId",)

    def describe_effect(self, config, payload):
        user_id = config["userId"]
        return HandlerResult.ok({
            "entityId": _entity_id(payload),
            "assignedTo": user_id,
            "message": f"Assigned to user: {user_id}",
        })


# --- Workflow steps ----------------------------------------------------------


class SendEmailHandler(DescribedEffectHandler):
    action_type = "send_email"
    description = "Queue an email"
    required_config = ("recipient",)

    def describe_effect(self, config, payload):
        return HandlerResult.ok({
            "to": config["recipient"],
            "subject": config.get("subject"),
            "template": config.get("template"),
            "message": "Email queued",
        })


class SendSmsHandler(DescribedEffectHandler):
    action_type = "send_sms"
    description = "Queue an SMS message"
    required_config = ("phone", "message")

    def describe_effect(self, config, payload):
        return HandlerResult.ok({
            "to": config["phone"],
            "message": config["message"],
            "status": "SMS queued",
        })


class SendNotificationHandler(DescribedEffectHandler):
    action_type = "send_notification"
    description = "Queue an in-app notification"
    required_config = ("message",)

    def describe_effect(self, config, payload):
        user_id = config.get("userId") or payload.get("userId")
        if not user_id:
            return HandlerResult.fail("No notification recipient: set userId in config or payload")
        return HandlerResult.ok({
            "userId": user_id,
            "title": config.get("title"),
            "message": config["message"],
            "status": "Notification queued",
        })


class UpdateFieldHandler(DescribedEffectHandler):
    action_type = "update_field"
    description = "Request a field update on an entity"
    required_config = ("field",)

    def describe_effect(self, config, payload):
        return HandlerResult.ok({
            "entity": config.get("entity"),
            "entityId": config.get("entityId") or _entity_id(payload),
            "field": config["field"],
            "value": config.get("value"),
            "message": f"Field update requested: {config['field']}",
        })


class CreateTaskHandler(DescribedEffectHandler):
    action_type = "create_task"
    description = "Request creation of a task"
    required_config = ("title",)

    def describe_effect(self, config, payload):
        return HandlerResult.ok({
            "title": config["title"],
            "description": config.get("description"),
            "assignedTo": config.get("assignedTo"),
            "relatedEntityId": _entity_id(payload),
            "message": "Task creation requested",
        })


class AddTagHandler(DescribedEffectHandler):
    action_type = "add_tag"
    description = "Request a tag on an entity"
    required_config = ("tag",)

    def describe_effect(self, config, payload):
        return HandlerResult.ok({
            "entity": config.get("entity"),
            "entityId": config.get("entityId") or _entity_id(payload),
            "tag": config["tag"],
            "message": f"Tag requested: {config['tag']}",
        })


class SuspendUserHandler(DescribedEffectHandler):
    action_type = "suspend_user"
    description = "Request suspension of a user"

    def describe_effect(self, config, payload):
        user_id = config.get("userId") or payload.get("userId")
        if not user_id:
            return HandlerResult.fail("No user to suspend: set userId in config or payload")
        return HandlerResult.ok({
            "userId": user_id,
            "reason": config.get("reason"),
            "message": "User suspension requested",
        })


BUILTIN_HANDLERS = (
    ApplyDiscountHandler,
    ReorderStockHandler,
    AssignSegmentHandler,
    BlockOrderHandler,
    SendAlertHandler,
    RouteToWarehouseHandler,
    AssignUserHandler,
    SendEmailHandler,
    SendSmsHandler,
    SendNotificationHandler,
    UpdateFieldHandler,
    CreateTaskHandler,
    AddTagHandler,
    SuspendUserHandler,
)


def register_builtin_handlers(registry: ActionRegistry, webhook_timeout: float = 2.5,
                              webhook_retry: Optional[RetryConfig] = None,
                              webhook_handler: Optional[CallWebhookHandler] = None) -> Dict[str, ActionHandler]:
    """Register every built-in handler, including ``call_webhook``."""
    registered: Dict[str, ActionHandler] = {}
    for handler_class in BUILTIN_HANDLERS:
        handler = handler_class()
        registered[handler.action_type] = registry.register_handler(handler)

    if webhook_handler is None:
        webhook_handler = CallWebhookHandler(
            timeout=webhook_timeout,
            retry_config=webhook_retry,
        )
    registered[webhook_handler.action_type] = registry.register_handler(webhook_handler)
    return registered
