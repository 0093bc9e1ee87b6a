"""
Unit tests for action handlers, registry and dispatcher.
"""

import asyncio
import copy
import time

import httpx
import pytest

from shared.circuit_breaker import CircuitBreakerManager
from shared.retry import RetryConfig
from service_automation.app.actions import (
    ActionDispatcher,
    ActionHandler,
    ActionRegistry,
    CallWebhookHandler,
    FunctionActionHandler,
    HandlerResult,
    register_builtin_handlers,
)
from service_automation.app.models import Action, ActionStatus


class RaisingHandler(ActionHandler):
    action_type = "explode"

    async def execute(self, config, payload):
        raise RuntimeError("handler blew up")


class SlowHandler(ActionHandler):
    action_type = "slow"

    async def execute(self, config, payload):
        await asyncio.sleep(1)
        return HandlerResult.ok()


def fast_retry(max_attempts=3):
    return RetryConfig(max_attempts=max_attempts, base_delay=0, jitter=False)


class TestActionRegistry:
    """Test cases for ActionRegistry."""

    @pytest.fixture
    def registry(self):
        return ActionRegistry()

    def test_register_callable(self, registry):
        handler = registry.register("noop", lambda config, payload: HandlerResult.ok())
        assert isinstance(handler, FunctionActionHandler)
        assert "noop" in registry
        assert len(registry) == 1

    def test_replace_handler(self, registry):
        registry.register("noop", lambda c, p: HandlerResult.ok("first"))
        registry.register("noop", lambda c, p: HandlerResult.ok("second"))
        assert len(registry) == 1

    def test_unregister(self, registry):
        registry.register("noop", lambda c, p: HandlerResult.ok())
        assert registry.unregister("noop")
        assert not registry.unregister("noop")
        assert registry.get("noop") is None

    def test_rejects_non_callable(self, registry):
        with pytest.raises(TypeError):
            registry.register("bad", "not callable")

    def test_rejects_empty_tag(self, registry):
        with pytest.raises(ValueError):
            registry.register("", lambda c, p: None)

    def test_builtin_handlers(self, registry):
        register_builtin_handlers(registry)
        for action_type in (
            "apply_discount", "reorder_stock", "assign_segment", "block_order",
            "send_alert", "route_to_warehouse", "assign_user", "send_email",
            "send_sms", "send_notification", "update_field", "create_task",
            "add_tag", "suspend_user", "call_webhook",
        ):
            assert action_type in registry

        described = {item["type"]: item for item in registry.describe()}
        assert described["apply_discount"]["required_config"] == ["discountPercent"]


class TestFunctionActionHandler:
    """Test cases for adapting plain callables."""

    @pytest.mark.asyncio
    async def test_sync_mapping_result(self):
        handler = FunctionActionHandler("tag", lambda c, p: {"success": True, "output": {"tag": c["tag"]}})
        result = await handler.execute({"tag": "vip"}, {})
        assert result.success
        assert result.output == {"tag": "vip"}

    @pytest.mark.asyncio
    async def test_async_callable(self):
        async def handler_fn(config, payload):
            return HandlerResult.fail("nope")

        result = await FunctionActionHandler("x", handler_fn).execute({}, {})
        assert not result.success
        assert result.error == "nope"

    @pytest.mark.asyncio
    async def test_bad_return_type_raises(self):
        with pytest.raises(TypeError):
            await FunctionActionHandler("x", lambda c, p: 42).execute({}, {})


class TestActionDispatcher:
    """Test cases for ActionDispatcher."""

    @pytest.fixture
    def registry(self):
        registry = ActionRegistry()
        registry.register("ok", lambda c, p: HandlerResult.ok({"step": c.get("step")}))
        registry.register("fail", lambda c, p: HandlerResult.fail("expected failure"))
        registry.register_handler(RaisingHandler())
        registry.register_handler(SlowHandler())
        return registry

    @pytest.fixture
    def dispatcher(self, registry):
        return ActionDispatcher(registry, timeout_seconds=0.05)

    @pytest.mark.asyncio
    async def test_isolates_raising_handler(self, dispatcher):
        actions = [Action("ok", {"step": 1}), Action("explode"), Action("ok", {"step": 3})]
        results = await dispatcher.execute_actions(actions, {})

        assert len(results) == 3
        assert results[0].status == ActionStatus.SUCCESS
        assert results[1].status == ActionStatus.FAILED
        assert "handler blew up" in results[1].error
        assert results[2].status == ActionStatus.SUCCESS
        assert results[2].output == {"step": 3}

    @pytest.mark.asyncio
    async def test_no_short_circuit_on_failure(self, dispatcher):
        results = await dispatcher.execute_actions([Action("fail"), Action("ok")], {})
        assert [r.status for r in results] == [ActionStatus.FAILED, ActionStatus.SUCCESS]
        assert results[0].error == "expected failure"

    @pytest.mark.asyncio
    async def test_stable_order(self, dispatcher):
        actions = [
            Action("ok", {"step": "b"}, order=2),
            Action("ok", {"step": "a1"}),
            Action("ok", {"step": "c"}, order=5),
            Action("ok", {"step": "a2"}, order=0),
        ]
        results = await dispatcher.execute_actions(actions, {})
        assert [r.output["step"] for r in results] == ["a1", "a2", "b", "c"]

    @pytest.mark.asyncio
    async def test_unknown_action_type(self, dispatcher):
        results = await dispatcher.execute_actions([Action("teleport")], {})
        assert results[0].status == ActionStatus.FAILED
        assert results[0].error == "Unknown action type: teleport"

    @pytest.mark.asyncio
    async def test_timeout_is_failed_result(self, dispatcher):
        results = await dispatcher.execute_actions([Action("slow"), Action("ok")], {})
        assert results[0].status == ActionStatus.FAILED
        assert "timed out" in results[0].error
        assert results[1].status == ActionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_blocking_sync_handler_times_out(self, registry, dispatcher):
        def blocking(config, payload):
            time.sleep(0.3)
            return HandlerResult.ok()

        registry.register("blocking", blocking)
        started = time.monotonic()

        results = await dispatcher.execute_actions([Action("blocking"), Action("ok")], {})

        assert results[0].status == ActionStatus.FAILED
        assert "timed out" in results[0].error
        assert results[1].status == ActionStatus.SUCCESS
        assert time.monotonic() - started < 0.25

    @pytest.mark.asyncio
    async def test_trace_logs(self, dispatcher):
        logs = []
        await dispatcher.execute_actions([Action("ok"), Action("fail")], {}, logs)
        assert logs == [
            "Executing action: ok",
            "Action ok completed successfully",
            "Executing action: fail",
            "Action fail failed: expected failure",
        ]


class TestBuiltinHandlers:
    """Test cases for the built-in handlers."""

    @pytest.fixture
    def dispatcher(self):
        registry = ActionRegistry()
        register_builtin_handlers(registry)
        return ActionDispatcher(registry, timeout_seconds=1)

    async def run(self, dispatcher, action_type, config, payload):
        results = await dispatcher.execute_actions([Action(action_type, config)], payload)
        return results[0]

    @pytest.mark.asyncio
    async def test_apply_discount_on_total(self, dispatcher):
        result = await self.run(dispatcher, "apply_discount", {"discountPercent": 10}, {"total": 150})
        assert result.status == ActionStatus.SUCCESS
        assert result.output["originalPrice"] == 150
        assert result.output["discountedPrice"] == 135
        assert result.output["discountAmount"] == 15
        assert result.output["message"] == "10% discount applied"

    @pytest.mark.asyncio
    async def test_apply_discount_prefers_price(self, dispatcher):
        result = await self.run(dispatcher, "apply_discount", {"discountPercent": 25}, {"price": 19.99, "total": 100})
        assert result.output["originalPrice"] == 19.99
        assert result.output["discountedPrice"] == 14.99
        assert result.output["discountAmount"] == 5.0

    @pytest.mark.asyncio
    async def test_apply_discount_missing_config(self, dispatcher):
        result = await self.run(dispatcher, "apply_discount", {}, {"total": 150})
        assert result.status == ActionStatus.FAILED
        assert "discountPercent" in result.error

    @pytest.mark.asyncio
    async def test_apply_discount_out_of_range(self, dispatcher):
        result = await self.run(dispatcher, "apply_discount", {"discountPercent": 150}, {"total": 150})
        assert result.status == ActionStatus.FAILED

    @pytest.mark.asyncio
    async def test_apply_discount_without_price(self, dispatcher):
        result = await self.run(dispatcher, "apply_discount", {"discountPercent": 10}, {"sku": "A1"})
        assert result.status == ActionStatus.FAILED

    @pytest.mark.asyncio
    async def test_handlers_do_not_mutate_payload(self, dispatcher):
        payload = {"total": 150, "orderId": "o-1", "userId": "u-1", "stock": 2}
        snapshot = copy.deepcopy(payload)
        actions = [
            Action("apply_discount", {"discountPercent": 10}),
            Action("block_order", {"reason": "fraud"}),
            Action("assign_segment", {"segment": "vip"}),
            Action("reorder_stock", {"reorderQuantity": 50}),
        ]
        results = await dispatcher.execute_actions(actions, payload)
        assert all(r.succeeded for r in results)
        assert payload == snapshot

    @pytest.mark.asyncio
    async def test_block_order(self, dispatcher):
        result = await self.run(dispatcher, "block_order", {"reason": "fraud"}, {"orderId": "o-1"})
        assert result.output == {
            "orderId": "o-1",
            "blocked": True,
            "reason": "fraud",
            "message": "Order blocked: fraud",
        }

    @pytest.mark.asyncio
    async def test_reorder_stock_rejects_bad_quantity(self, dispatcher):
        result = await self.run(dispatcher, "reorder_stock", {"reorderQuantity": "lots"}, {})
        assert result.status == ActionStatus.FAILED

    @pytest.mark.asyncio
    async def test_send_sms_requires_phone_and_message(self, dispatcher):
        result = await self.run(dispatcher, "send_sms", {"message": "hi"}, {})
        assert result.status == ActionStatus.FAILED
        assert result.error == "Missing required config: phone"

    @pytest.mark.asyncio
    async def test_send_notification_falls_back_to_payload_user(self, dispatcher):
        result = await self.run(dispatcher, "send_notification", {"message": "Shipped"}, {"userId": "u-9"})
        assert result.output["userId"] == "u-9"

    @pytest.mark.asyncio
    async def test_suspend_user_without_user(self, dispatcher):
        result = await self.run(dispatcher, "suspend_user", {"reason": "abuse"}, {})
        assert result.status == ActionStatus.FAILED

    @pytest.mark.asyncio
    async def test_assign_user_uses_entity_id(self, dispatcher):
        result = await self.run(dispatcher, "assign_user", {"userId": "agent-1"}, {"_id": "t-1"})
        assert result.output["entityId"] == "t-1"
        assert result.output["assignedTo"] == "agent-1"


class TestCallWebhookHandler:
    """Test cases for the webhook handler."""

    def make_handler(self, responder, max_attempts=3, failure_threshold=5):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return responder(request, len(calls))

        webhook = CallWebhookHandler(
            timeout=1,
            retry_config=fast_retry(max_attempts),
            transport=httpx.MockTransport(handler),
            breakers=CircuitBreakerManager(),
            failure_threshold=failure_threshold,
        )
        return webhook, calls

    @pytest.mark.asyncio
    async def test_posts_payload(self):
        webhook, calls = self.make_handler(lambda request, n: httpx.Response(200, json={"ok": True}))
        result = await webhook.execute({"url": "https://hooks.example.com/order"}, {"orderId": "o-1"})

        assert result.success
        assert result.output == {"url": "https://hooks.example.com/order", "method": "POST", "statusCode": 200}
        assert len(calls) == 1
        assert calls[0].method == "POST"
        assert b"o-1" in calls[0].content

    @pytest.mark.asyncio
    async def test_missing_url(self):
        webhook, calls = self.make_handler(lambda request, n: httpx.Response(200))
        result = await webhook.execute({}, {})
        assert not result.success
        assert result.error == "No webhook URL provided"
        assert calls == []

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        webhook, calls = self.make_handler(
            lambda request, n: httpx.Response(503) if n < 3 else httpx.Response(204)
        )
        result = await webhook.execute({"url": "https://hooks.example.com/x"}, {})
        assert result.success
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        webhook, calls = self.make_handler(lambda request, n: httpx.Response(500), max_attempts=2)
        result = await webhook.execute({"url": "https://hooks.example.com/x"}, {})
        assert not result.success
        assert "after 2 attempts" in result.error
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        webhook, calls = self.make_handler(lambda request, n: httpx.Response(404))
        result = await webhook.execute({"url": "https://hooks.example.com/x"}, {})
        assert not result.success
        assert result.error == "Webhook returned HTTP 404"
        assert result.output["statusCode"] == 404
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_circuit_opens_per_host(self):
        webhook, calls = self.make_handler(
            lambda request, n: httpx.Response(500), max_attempts=1, failure_threshold=2
        )
        for _ in range(2):
            await webhook.execute({"url": "https://down.example.com/x"}, {})

        result = await webhook.execute({"url": "https://down.example.com/x"}, {})
        assert not result.success
        assert "OPEN" in result.error
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_unsupported_method(self):
        webhook, calls = self.make_handler(lambda request, n: httpx.Response(200))
        result = await webhook.execute({"url": "https://hooks.example.com/x", "method": "TRACE"}, {})
        assert not result.success
        assert calls == []
