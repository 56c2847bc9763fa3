"""Tests for the node executors and the executor registry."""

import json

import httpx
import pytest

from flowengine.config import get_testing_config
from flowengine.core.exceptions import IntegrationError, UnsupportedNodeTypeError
from flowengine.executors import (
    AiExecutor,
    ExecutorRegistry,
    GateExecutor,
    HttpExecutor,
    PlatformActionExecutor,
    TriggerExecutor,
    build_request_url,
    create_executor_registry,
    values_equal,
)
from flowengine.models.core import ErrorKind, HaltReason

from .conftest import (
    FakeModelClient,
    FakePlatformClient,
    FakeToolConnector,
    make_context,
    make_node,
    make_result,
)


def http_node(**mapping):
    return make_node("http-1", "HTTP Request", actionType="http", config={"inputMapping": mapping})


def mock_transport(status_code=200, captured=None, **response_kwargs):
    def handler(request):
        if captured is not None:
            captured.append(request)
        return httpx.Response(status_code, **response_kwargs)
    return httpx.MockTransport(handler)


class TestTriggerExecutor:

    @pytest.mark.asyncio
    async def test_manual_trigger_stamps_payload(self):
        node = make_node("t", "Trigger", "trigger", triggerType="manual")
        context = make_context(trigger_input={"x": "3"})

        result = await TriggerExecutor().execute(node, {}, context)

        assert result.success
        assert result.output["triggerType"] == "manual"
        assert result.output["event"] == "manual.trigger"
        assert result.output["x"] == "3"
        assert "timestamp" in result.output
        assert result.input == {"x": "3"}

    @pytest.mark.asyncio
    async def test_event_trigger_uses_configured_event(self):
        node = make_node("t", "Trigger", "trigger", triggerType="event")
        result = await TriggerExecutor().execute(node, {"event": "contact.created"}, make_context())

        assert result.success
        assert result.output["event"] == "contact.created"

    @pytest.mark.asyncio
    async def test_event_trigger_default_event(self):
        node = make_node("t", "Trigger", "trigger", triggerType="event")
        result = await TriggerExecutor().execute(node, {}, make_context())
        assert result.output["event"] == "workflow.triggered"

    @pytest.mark.asyncio
    async def test_unknown_trigger_type(self):
        node = make_node("t", "Trigger", "trigger", triggerType="webhook")
        result = await TriggerExecutor().execute(node, {}, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.UNSUPPORTED_TRIGGER_TYPE


class TestHttpExecutor:

    def test_build_request_url_appends_query(self):
        assert build_request_url("https://x/y", [{"key": "q", "value": "1"}]) == "https://x/y?q=1"

    def test_build_request_url_respects_existing_query(self):
        url = build_request_url("https://x/y?a=2", [{"key": "q", "value": "1"}, {"key": "", "value": "z"}])
        assert url == "https://x/y?a=2&q=1"

    def test_build_request_url_without_parameters(self):
        assert build_request_url("https://x/y", None) == "https://x/y"
        assert build_request_url("https://x/y", []) == "https://x/y"

    @pytest.mark.asyncio
    async def test_query_parameters_reach_the_request(self):
        captured = []
        mapping = {"uri": "https://x/y", "method": "POST", "queryParameters": [{"key": "q", "value": "1"}]}
        executor = HttpExecutor(transport=mock_transport(200, captured, json={"ok": True}))

        result = await executor.execute(http_node(**mapping), mapping, make_context())

        assert result.success
        assert str(captured[0].url) == "https://x/y?q=1"
        assert captured[0].method == "POST"

    @pytest.mark.asyncio
    async def test_success_output_shape(self):
        mapping = {"uri": "https://api.test/users", "method": "get"}
        executor = HttpExecutor(transport=mock_transport(200, json={"users": [1, 2]}))

        result = await executor.execute(http_node(**mapping), mapping, make_context())

        assert result.success
        assert result.output["statusCode"] == 200
        assert result.output["body"] == {"users": [1, 2]}
        assert "content-type" in result.output["headers"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [200, 201, 204, 299, 301, 404, 500])
    async def test_success_matches_2xx(self, status_code):
        mapping = {"uri": "https://api.test/thing", "method": "GET"}
        executor = HttpExecutor(transport=mock_transport(status_code, text="payload"))

        result = await executor.execute(http_node(**mapping), mapping, make_context())

        assert result.success == (200 <= status_code < 300)
        assert result.output["statusCode"] == status_code
        if not result.success:
            assert result.error.kind == ErrorKind.HTTP_ERROR
            assert result.error.details["status"] == status_code

    @pytest.mark.asyncio
    async def test_text_body_is_kept_as_text(self):
        mapping = {"uri": "https://api.test/plain", "method": "GET"}
        executor = HttpExecutor(transport=mock_transport(200, text="plain text"))

        result = await executor.execute(http_node(**mapping), mapping, make_context())
        assert result.output["body"] == "plain text"

    @pytest.mark.asyncio
    async def test_string_body_is_parsed_and_headers_merged(self):
        captured = []
        mapping = {
            "uri": "https://api.test/items",
            "method": "PUT",
            "body": '{"name": "widget"}',
            "headers": {"X-Trace": "abc"},
        }
        executor = HttpExecutor(transport=mock_transport(200, captured, json={}))

        await executor.execute(http_node(**mapping), mapping, make_context())

        request = captured[0]
        assert json.loads(request.content) == {"name": "widget"}
        assert request.headers["content-type"] == "application/json"
        assert request.headers["x-trace"] == "abc"

    @pytest.mark.asyncio
    async def test_body_ignored_for_get(self):
        captured = []
        mapping = {"uri": "https://api.test/items", "method": "GET", "body": {"ignored": True}}
        executor = HttpExecutor(transport=mock_transport(200, captured, json={}))

        await executor.execute(http_node(**mapping), mapping, make_context())
        assert captured[0].content == b""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, []])
    async def test_empty_json_body_is_sent(self, body):
        captured = []
        mapping = {"uri": "https://api.test/items", "method": "POST", "body": body}
        executor = HttpExecutor(transport=mock_transport(200, captured, json={}))

        await executor.execute(http_node(**mapping), mapping, make_context())
        assert json.loads(captured[0].content) == body

    @pytest.mark.asyncio
    async def test_invalid_json_body(self):
        mapping = {"uri": "https://api.test/items", "method": "POST", "body": "{not json"}
        executor = HttpExecutor(transport=mock_transport(200, json={}))

        result = await executor.execute(http_node(**mapping), mapping, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.HTTP_EXECUTION_ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mapping", [{"method": "GET"}, {"uri": "https://api.test"}])
    async def test_missing_uri_or_method(self, mapping):
        result = await HttpExecutor().execute(http_node(**mapping), mapping, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.MISSING_FIELD

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        mapping = {"uri": "https://unreachable.test", "method": "GET"}
        executor = HttpExecutor(transport=httpx.MockTransport(handler))

        result = await executor.execute(http_node(**mapping), mapping, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.HTTP_EXECUTION_ERROR
        assert result.output is None


class TestPlatformActionExecutor:

    def platform_node(self, **config):
        return make_node("act", "Create Contact", actionType="platform-action", config=config)

    @pytest.mark.asyncio
    async def test_runs_action_with_connection(self, platform_client):
        tokens = []

        def factory(token):
            tokens.append(token)
            return platform_client

        node = self.platform_node(actionId="create-contact", connectionId="conn-1")
        context = make_context(platform_token="token-123")

        result = await PlatformActionExecutor(factory).execute(node, {"email": "a@b.com"}, context)

        assert result.success
        assert result.output == {"id": "created-1"}
        assert tokens == ["token-123"]
        assert platform_client.calls == [
            {"action_id": "create-contact", "input": {"email": "a@b.com"}, "connection_id": "conn-1"}
        ]

    @pytest.mark.asyncio
    async def test_legacy_action_type_is_accepted(self, platform_client):
        node = make_node("act", "Legacy", actionType="action", config={"actionId": "x"})
        assert node.action_type == "platform-action"

        result = await PlatformActionExecutor(lambda token: platform_client).execute(node, {}, make_context())
        assert result.success
        assert platform_client.calls[0]["connection_id"] is None

    @pytest.mark.asyncio
    async def test_missing_action_id(self, platform_client):
        result = await PlatformActionExecutor(lambda token: platform_client).execute(
            self.platform_node(), {}, make_context()
        )

        assert not result.success
        assert result.error.kind == ErrorKind.MISSING_FIELD
        assert platform_client.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [RuntimeError("boom"), IntegrationError("rejected", service="platform")])
    async def test_client_failure(self, error):
        client = FakePlatformClient(error=error)
        node = self.platform_node(actionId="create-contact")

        result = await PlatformActionExecutor(lambda token: client).execute(node, {}, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.ACTION_EXECUTION_ERROR

    @pytest.mark.asyncio
    async def test_client_factory_failure(self):
        def factory(token):
            raise ValueError("platform token is malformed")

        node = self.platform_node(actionId="create-contact")

        result = await PlatformActionExecutor(factory).execute(node, {}, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.ACTION_EXECUTION_ERROR
        assert result.error.message == "platform token is malformed"


class TestAiExecutor:

    schema = {"type": "object", "properties": {"name": {"type": "string"}}}
    mcp = {"url": "https://tools.test/mcp", "type": "http", "headers": {"Authorization": "Bearer t"}}

    def ai_node(self, **config):
        return make_node("ai-1", "Summarize", actionType="ai", config=config)

    @pytest.mark.asyncio
    async def test_unstructured_text(self, model_client):
        node = self.ai_node(structuredOutput=False)
        context = make_context([make_result("t", "Trigger", {"x": 1})])

        result = await AiExecutor(model_client).execute(node, {"prompt": "Say hi"}, context)

        assert result.success
        assert result.output == {"text": "hi"}
        prompt = model_client.calls[0]["prompt"]
        assert prompt.startswith("Say hi")
        assert "Available data from previous steps:" in prompt
        assert '"node": "Trigger"' in prompt
        assert model_client.calls[0]["output_schema"] is None

    @pytest.mark.asyncio
    async def test_structured_output_validated(self):
        client = FakeModelClient(value={"name": "Ada"})
        node = self.ai_node(outputSchema=self.schema)

        result = await AiExecutor(client, model="test-model").execute(node, {"prompt": "Who?"}, make_context())

        assert result.success
        assert result.output == {"name": "Ada"}
        assert client.calls[0]["model"] == "test-model"
        assert client.calls[0]["output_schema"] == self.schema

    @pytest.mark.asyncio
    async def test_missing_prompt(self, model_client):
        result = await AiExecutor(model_client).execute(self.ai_node(structuredOutput=False), {}, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.AI_EXECUTION_ERROR
        assert model_client.calls == []

    @pytest.mark.asyncio
    async def test_structured_mode_requires_schema(self, model_client):
        result = await AiExecutor(model_client).execute(self.ai_node(), {"prompt": "x"}, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.AI_EXECUTION_ERROR

    @pytest.mark.asyncio
    async def test_tool_server_closed_after_success(self, model_client, tool_connector):
        node = self.ai_node(structuredOutput=False, mcp=self.mcp)

        result = await AiExecutor(model_client, tool_connector).execute(node, {"prompt": "x"}, make_context())

        assert result.success
        assert tool_connector.opened == 1
        assert tool_connector.closed == 1
        assert tool_connector.last_open["transport"] == "http"
        assert model_client.calls[0]["tools"] is not None

    @pytest.mark.asyncio
    async def test_tool_server_closed_when_model_raises(self, tool_connector):
        client = FakeModelClient(error=RuntimeError("model unavailable"))
        node = self.ai_node(structuredOutput=False, mcp=self.mcp)

        result = await AiExecutor(client, tool_connector).execute(node, {"prompt": "x"}, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.AI_EXECUTION_ERROR
        assert "model unavailable" in result.error.message
        assert tool_connector.closed == 1

    @pytest.mark.asyncio
    async def test_tool_server_closed_when_validation_fails(self, tool_connector):
        client = FakeModelClient(value={"name": 5})
        node = self.ai_node(outputSchema=self.schema, mcp=self.mcp)

        result = await AiExecutor(client, tool_connector).execute(node, {"prompt": "x"}, make_context())

        assert not result.success
        assert result.error.kind == ErrorKind.AI_EXECUTION_ERROR
        assert tool_connector.opened == 1
        assert tool_connector.closed == 1

    @pytest.mark.asyncio
    async def test_unreachable_tool_server_is_skipped(self, model_client):
        connector = FakeToolConnector(fail_on_open=True)
        node = self.ai_node(structuredOutput=False, mcp=self.mcp)

        result = await AiExecutor(model_client, connector).execute(node, {"prompt": "x"}, make_context())

        assert result.success
        assert model_client.calls[0]["tools"] is None
        assert connector.closed == 0

    @pytest.mark.asyncio
    async def test_incomplete_mcp_config_opens_nothing(self, model_client, tool_connector):
        node = self.ai_node(structuredOutput=False, mcp={"url": "https://tools.test/mcp"})

        await AiExecutor(model_client, tool_connector).execute(node, {"prompt": "x"}, make_context())

        assert tool_connector.opened == 0


class TestGateExecutor:

    def gate_node(self, **condition):
        return make_node("gate", "Gate", actionType="gate", config={"condition": condition})

    @pytest.fixture
    def previous(self):
        return [make_result("t", "Trigger", {"x": "3", "count": 2})]

    @pytest.mark.asyncio
    async def test_condition_not_met_blocks(self, previous):
        node = self.gate_node(field="$.Trigger.x", operator="equals", value="5")

        result = await GateExecutor().execute(node, {}, make_context(previous))

        assert not result.success
        assert result.error.kind == ErrorKind.GATE_CONDITION_FAILED
        assert result.halt_reason == HaltReason.GATE_BLOCKED
        assert result.error.message == "Gate condition not met: 3 !== 5"
        assert result.output == {"conditionMet": False, "fieldValue": "3", "expectedValue": "5", "operator": "equals"}

    @pytest.mark.asyncio
    async def test_condition_met_with_var_reference(self, previous):
        node = self.gate_node(field={"$var": "$.Previous Steps.Trigger.x"}, operator="equals", value="3")

        result = await GateExecutor().execute(node, {}, make_context(previous))

        assert result.success
        assert result.halt_reason is None
        assert result.output["conditionMet"] is True

    @pytest.mark.asyncio
    async def test_not_equals(self, previous):
        node = self.gate_node(field="$.Trigger.count", operator="not_equals", value=3)
        result = await GateExecutor().execute(node, {}, make_context(previous))
        assert result.success

    @pytest.mark.asyncio
    async def test_no_type_coercion(self, previous):
        node = self.gate_node(field="$.Trigger.count", operator="equals", value="2")
        result = await GateExecutor().execute(node, {}, make_context(previous))
        assert not result.success

    @pytest.mark.asyncio
    async def test_unknown_operator(self, previous):
        node = self.gate_node(field="$.Trigger.x", operator="greater_than", value="1")

        result = await GateExecutor().execute(node, {}, make_context(previous))

        assert result.error.kind == ErrorKind.NODE_EXECUTION_ERROR
        assert result.halt_reason == HaltReason.ERROR

    @pytest.mark.asyncio
    async def test_missing_value(self, previous):
        node = self.gate_node(field="$.Trigger.x", operator="equals")
        result = await GateExecutor().execute(node, {}, make_context(previous))
        assert result.error.kind == ErrorKind.MISSING_FIELD

    @pytest.mark.asyncio
    async def test_missing_condition(self, previous):
        node = make_node("gate", "Gate", actionType="gate", config={})
        result = await GateExecutor().execute(node, {}, make_context(previous))
        assert result.error.kind == ErrorKind.MISSING_FIELD

    @pytest.mark.asyncio
    async def test_unknown_node_in_field(self, previous):
        node = self.gate_node(field="$.Nobody.x", operator="equals", value="1")
        result = await GateExecutor().execute(node, {}, make_context(previous))
        assert result.error.kind == ErrorKind.REFERENCE_ERROR

    def test_values_equal(self):
        assert values_equal(1, 1.0)
        assert values_equal("a", "a")
        assert values_equal(None, None)
        assert not values_equal(True, 1)
        assert not values_equal("5", 5)
        assert values_equal({"a": [1]}, {"a": [1]})


class TestExecutorRegistry:

    def test_default_registry(self, platform_client, model_client, tool_connector):
        registry = create_executor_registry(
            get_testing_config(),
            platform_client_factory=lambda token: platform_client,
            model_client=model_client,
            tool_connector=tool_connector,
        )

        assert registry.list_action_types() == ["ai", "gate", "http", "platform-action"]
        assert isinstance(registry.get_executor(make_node("h", "H", actionType="http")), HttpExecutor)
        assert isinstance(registry.get_executor(make_node("g", "G", actionType="gate")), GateExecutor)

    def test_unknown_trigger_type_goes_to_trigger_executor(self):
        registry = ExecutorRegistry()
        registry.register_trigger(TriggerExecutor())

        node = make_node("t", "T", "trigger", triggerType="webhook")
        assert isinstance(registry.get_executor(node), TriggerExecutor)

    def test_unknown_action_type(self):
        registry = ExecutorRegistry()

        with pytest.raises(UnsupportedNodeTypeError):
            registry.get_executor(make_node("x", "X", actionType="email"))

    def test_register_action_rejects_empty_type(self):
        with pytest.raises(ValueError):
            ExecutorRegistry().register_action(" ", GateExecutor())
