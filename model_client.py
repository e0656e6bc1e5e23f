"""Model client: talks to the OpenAI Responses API on behalf of the orchestration loop."""
from __future__ import annotations

import json
import logging
from collections import OrderedDict
from typing import Any, Optional, Sequence

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import AgentConfig
from exceptions import (
    MalformedResponseError,
    ModelTimeoutError,
    ModelTransportError,
    StaleCursorError,
)
from item_types import (
    ConversationItem,
    FunctionCall,
    ModelReply,
    ResponseCursor,
    parse_item,
)
from prompts import get_computer_use_tools

# Retired conversation ids remembered per client; the oldest are forgotten first.
MAX_RETIRED_CONVERSATIONS = 1024


class ModelClient:
    """Sends conversation items to the model and returns the next batch of output items.

    Only new items are sent on each request; earlier turns are resolved by the
    endpoint through ``previous_response_id``. A cursor is bound to the
    conversation that produced it and is refused once that conversation is
    retired.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        viewport: tuple[int, int] = (1024, 768),
        client: Optional[AsyncOpenAI] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or AgentConfig()
        self.logger = logger or logging.getLogger("model_client")
        self.tools = get_computer_use_tools(*viewport)
        # Retries are handled by tenacity so timeouts can be kept out of them.
        self.client = client or AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.request_timeout,
            max_retries=0,
        )
        self.retry_wait = wait_exponential(multiplier=1.0, min=1.0, max=10)
        self._retired: OrderedDict[str, None] = OrderedDict()

    def retire(self, conversation_id: str) -> None:
        """Mark a conversation as ended; its cursors are rejected from now on."""
        self._retired[conversation_id] = None
        self._retired.move_to_end(conversation_id)
        while len(self._retired) > MAX_RETIRED_CONVERSATIONS:
            self._retired.popitem(last=False)

    def _check_cursor(self, cursor: Optional[ResponseCursor], conversation_id: str) -> None:
        if cursor is None:
            return
        if cursor.conversation_id in self._retired:
            raise StaleCursorError(
                cursor.response_id, cursor.conversation_id, "conversation has ended"
            )
        if cursor.conversation_id != conversation_id:
            raise StaleCursorError(
                cursor.response_id,
                cursor.conversation_id,
                f"cursor belongs to another conversation than {conversation_id}",
            )

    async def request_next(
        self,
        items: Sequence[ConversationItem],
        cursor: Optional[ResponseCursor] = None,
        *,
        conversation_id: str,
        timeout: Optional[float] = None,
    ) -> ModelReply:
        """Request the next model turn for ``items`` on top of ``cursor``."""
        self._check_cursor(cursor, conversation_id)
        timeout = timeout or self.config.request_timeout
        previous_response_id = cursor.response_id if cursor else None
        payload = [item.to_input() for item in items]
        self.logger.info(
            f"Requesting model turn: {len(payload)} new item(s), "
            f"previous_response_id={previous_response_id}"
        )

        try:
            response = await self._create(payload, previous_response_id, timeout)
        except APITimeoutError as e:
            raise ModelTimeoutError(timeout) from e
        except (APIConnectionError, RateLimitError) as e:
            raise ModelTransportError(
                f"Model endpoint unreachable: {e}", base_url=self.config.base_url
            ) from e
        except APIStatusError as e:
            raise ModelTransportError(
                f"Model endpoint returned HTTP {e.status_code}: {e.message}",
                base_url=self.config.base_url,
            ) from e

        response_id = getattr(response, "id", None)
        if not response_id:
            raise MalformedResponseError("Model response has no id", response=str(response))
        reply = ModelReply(
            items=self._parse_output(getattr(response, "output", None)),
            cursor=ResponseCursor(response_id=response_id, conversation_id=conversation_id),
        )
        self.logger.debug(f"Model turn {response_id}: {[item.type for item in reply.items]}")
        return reply

    async def _create(
        self, payload: list[dict[str, Any]], previous_response_id: Optional[str], timeout: float
    ) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=self.retry_wait,
            retry=(
                retry_if_exception_type((APIConnectionError, RateLimitError))
                & retry_if_not_exception_type(APITimeoutError)
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self.logger.warning(
                        f"Retrying model request (attempt {attempt.retry_state.attempt_number}"
                        f"/{self.config.max_retries})"
                    )
                return await self.client.responses.create(
                    model=self.config.model,
                    input=payload,
                    previous_response_id=previous_response_id,
                    tools=self.tools,
                    truncation="auto",
                    timeout=timeout,
                )

    def _parse_output(self, output: Any) -> list[ConversationItem]:
        if not output:
            raise MalformedResponseError("Model response has no output items")
        items: list[ConversationItem] = []
        for raw in output:
            data = raw.model_dump() if hasattr(raw, "model_dump") else dict(raw)
            try:
                item = parse_item(data)
            except ValidationError as e:
                raise MalformedResponseError(
                    f"Unrecognized output item of type {data.get('type')!r}: "
                    f"{e.error_count()} validation error(s)",
                    response=json.dumps(data, default=str),
                ) from e
            if isinstance(item, FunctionCall):
                self._check_arguments(item)
            items.append(item)
        return items

    def _check_arguments(self, call: FunctionCall) -> None:
        """Function arguments must be a JSON object."""
        try:
            arguments = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"Invalid JSON arguments for function {call.name}", response=call.arguments
            ) from e
        if not isinstance(arguments, dict):
            raise MalformedResponseError(
                f"Arguments for function {call.name} are not an object", response=call.arguments
            )
