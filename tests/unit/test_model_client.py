"""Unit tests for model_client module."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError, APITimeoutError, RateLimitError
from tenacity import wait_none

from config import AgentConfig
from exceptions import (
    MalformedResponseError,
    ModelTimeoutError,
    ModelTransportError,
    StaleCursorError,
)
from item_types import (
    AssistantMessage,
    ComputerCall,
    ComputerCallOutput,
    FunctionCall,
    ResponseCursor,
    UserMessage,
)
import model_client as model_client_module
from model_client import ModelClient

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/responses")


def response(response_id: str, *output: dict) -> SimpleNamespace:
    return SimpleNamespace(id=response_id, output=list(output))


MESSAGE = {
    "type": "message",
    "id": "msg_1",
    "role": "assistant",
    "status": "completed",
    "content": [{"type": "output_text", "text": "Done.", "annotations": []}],
}


@pytest.fixture
def openai_client() -> MagicMock:
    client = MagicMock()
    client.responses.create = AsyncMock(return_value=response("resp_1", MESSAGE))
    return client


@pytest.fixture
def model_client(openai_client: MagicMock) -> ModelClient:
    client = ModelClient(
        AgentConfig(api_key="test-key", max_retries=3), viewport=(1024, 768), client=openai_client
    )
    client.retry_wait = wait_none()
    return client


class TestRequestNext:
    """Tests for the request/response exchange."""

    @pytest.mark.asyncio
    async def test_sends_items_and_tools(self, model_client, openai_client):
        reply = await model_client.request_next(
            [UserMessage(content="How much is NVIDIA stock?")], conversation_id="conv-1"
        )

        kwargs = openai_client.responses.create.await_args.kwargs
        assert kwargs["model"] == "computer-use-preview"
        assert kwargs["input"] == [{"role": "user", "content": "How much is NVIDIA stock?"}]
        assert kwargs["previous_response_id"] is None
        assert kwargs["truncation"] == "auto"
        computer_tool = kwargs["tools"][0]
        assert computer_tool["type"] == "computer_use_preview"
        assert (computer_tool["display_width"], computer_tool["display_height"]) == (1024, 768)
        assert computer_tool["environment"] == "browser"
        assert {tool.get("name") for tool in kwargs["tools"][1:]} == {"goto", "back"}

        assert isinstance(reply.items[0], AssistantMessage)
        assert reply.items[0].text == "Done."
        assert reply.cursor == ResponseCursor(response_id="resp_1", conversation_id="conv-1")

    @pytest.mark.asyncio
    async def test_cursor_threaded_as_previous_response_id(self, model_client, openai_client):
        cursor = ResponseCursor(response_id="resp_0", conversation_id="conv-1")
        output = ComputerCallOutput(call_id="call_1", screenshot="AAAA", current_url="https://x.com")

        await model_client.request_next([output], cursor, conversation_id="conv-1")

        kwargs = openai_client.responses.create.await_args.kwargs
        assert kwargs["previous_response_id"] == "resp_0"
        assert kwargs["input"][0]["type"] == "computer_call_output"

    @pytest.mark.asyncio
    async def test_parses_calls(self, model_client, openai_client):
        openai_client.responses.create.return_value = response(
            "resp_2",
            {"type": "reasoning", "id": "rs_1", "summary": []},
            {
                "type": "computer_call",
                "id": "cu_1",
                "call_id": "call_1",
                "action": {"type": "click", "x": 10, "y": 20, "button": "left"},
                "pending_safety_checks": [],
                "status": "completed",
            },
            {
                "type": "function_call",
                "id": "fc_1",
                "call_id": "call_2",
                "name": "goto",
                "arguments": '{"url": "https://example.com"}',
            },
        )

        reply = await model_client.request_next([], conversation_id="conv-1")

        assert [item.type for item in reply.items] == ["reasoning", "computer_call", "function_call"]
        assert isinstance(reply.items[1], ComputerCall)
        assert isinstance(reply.items[2], FunctionCall)


class TestCursorValidation:
    """A cursor only works for its own, live conversation."""

    @pytest.mark.asyncio
    async def test_cursor_from_other_conversation_rejected(self, model_client, openai_client):
        cursor = ResponseCursor(response_id="resp_0", conversation_id="conv-A")

        with pytest.raises(StaleCursorError):
            await model_client.request_next([], cursor, conversation_id="conv-B")
        openai_client.responses.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cursor_of_retired_conversation_rejected(self, model_client, openai_client):
        cursor = ResponseCursor(response_id="resp_0", conversation_id="conv-1")
        model_client.retire("conv-1")

        with pytest.raises(StaleCursorError):
            await model_client.request_next([], cursor, conversation_id="conv-1")
        openai_client.responses.create.assert_not_awaited()

    def test_retired_conversations_are_bounded(self, model_client, monkeypatch):
        monkeypatch.setattr(model_client_module, "MAX_RETIRED_CONVERSATIONS", 2)

        for conversation_id in ("conv-0", "conv-1", "conv-2"):
            model_client.retire(conversation_id)

        assert list(model_client._retired) == ["conv-1", "conv-2"]

    @pytest.mark.asyncio
    async def test_recently_retired_cursor_still_rejected(self, model_client, monkeypatch):
        monkeypatch.setattr(model_client_module, "MAX_RETIRED_CONVERSATIONS", 2)
        for conversation_id in ("conv-0", "conv-1", "conv-2"):
            model_client.retire(conversation_id)
        cursor = ResponseCursor(response_id="resp_9", conversation_id="conv-2")

        with pytest.raises(StaleCursorError):
            await model_client.request_next([], cursor, conversation_id="conv-2")


class TestMalformedReplies:
    """Replies the loop cannot interpret."""

    @pytest.mark.asyncio
    async def test_empty_output(self, model_client, openai_client):
        openai_client.responses.create.return_value = response("resp_1")
        with pytest.raises(MalformedResponseError):
            await model_client.request_next([], conversation_id="conv-1")

    @pytest.mark.asyncio
    async def test_missing_id(self, model_client, openai_client):
        openai_client.responses.create.return_value = response("", MESSAGE)
        with pytest.raises(MalformedResponseError):
            await model_client.request_next([], conversation_id="conv-1")

    @pytest.mark.asyncio
    async def test_unknown_action_type(self, model_client, openai_client):
        openai_client.responses.create.return_value = response(
            "resp_1",
            {"type": "computer_call", "id": "cu_1", "call_id": "c", "action": {"type": "teleport"}},
        )
        with pytest.raises(MalformedResponseError):
            await model_client.request_next([], conversation_id="conv-1")

    @pytest.mark.asyncio
    async def test_invalid_function_arguments(self, model_client, openai_client):
        openai_client.responses.create.return_value = response(
            "resp_1",
            {"type": "function_call", "id": "fc_1", "call_id": "c", "name": "goto", "arguments": "{url:"},
        )
        with pytest.raises(MalformedResponseError):
            await model_client.request_next([], conversation_id="conv-1")

    @pytest.mark.asyncio
    async def test_non_object_function_arguments(self, model_client, openai_client):
        openai_client.responses.create.return_value = response(
            "resp_1",
            {"type": "function_call", "id": "fc_1", "call_id": "c", "name": "goto", "arguments": "[1]"},
        )
        with pytest.raises(MalformedResponseError):
            await model_client.request_next([], conversation_id="conv-1")


class TestTransportErrors:
    """Connection problems are retried; timeouts are not."""

    @pytest.mark.asyncio
    async def test_connection_error_retried_then_succeeds(self, model_client, openai_client):
        openai_client.responses.create.side_effect = [
            APIConnectionError(request=REQUEST),
            response("resp_1", MESSAGE),
        ]

        reply = await model_client.request_next([], conversation_id="conv-1")

        assert openai_client.responses.create.await_count == 2
        assert reply.cursor.response_id == "resp_1"

    @pytest.mark.asyncio
    async def test_connection_error_exhausts_retries(self, model_client, openai_client):
        openai_client.responses.create.side_effect = APIConnectionError(request=REQUEST)

        with pytest.raises(ModelTransportError):
            await model_client.request_next([], conversation_id="conv-1")
        assert openai_client.responses.create.await_count == 3

    @pytest.mark.asyncio
    async def test_rate_limit_maps_to_transport_error(self, model_client, openai_client):
        openai_client.responses.create.side_effect = RateLimitError(
            "slow down", response=httpx.Response(429, request=REQUEST), body=None
        )

        with pytest.raises(ModelTransportError):
            await model_client.request_next([], conversation_id="conv-1")

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self, model_client, openai_client):
        openai_client.responses.create.side_effect = APITimeoutError(request=REQUEST)

        with pytest.raises(ModelTimeoutError):
            await model_client.request_next([], conversation_id="conv-1", timeout=5)
        openai_client.responses.create.assert_awaited_once()
