"""Orchestration loop driving a remote browser through the computer-use model."""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, List, Optional, TypeVar, Union

from actuator import Actuator
from config import AgentConfig, CuaConfig
from exceptions import (
    ActionLimitExceeded,
    MalformedResponseError,
    ReasoningStallExceeded,
    RunStateError,
    TransportError,
    UnknownFunctionError,
)
from item_types import (
    AssistantMessage,
    CallItem,
    CallOutputItem,
    ComputerCall,
    ComputerCallOutput,
    ConversationItem,
    DeveloperMessage,
    FunctionCall,
    FunctionCallOutput,
    ModelReply,
    Observation,
    Reasoning,
    ResponseCursor,
    ScreenshotAction,
    Session,
    UserMessage,
    is_call,
    is_call_output,
    parse_item,
)
from model_client import ModelClient
from prompts import (
    CONFIRM_PAGE_PROMPT,
    CONTINUE_TASK_PROMPT,
    RESUME_PROMPT,
    UNKNOWN_FUNCTION_RESULT,
)
from transcript import Transcript, TranscriptStep
from utils import detect_url, normalize_url

T = TypeVar("T")


class RunState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_ACTION = "executing_action"
    AWAITING_USER = "awaiting_user"
    DONE = "done"


@dataclass
class StepResult:
    """What one caller operation produced."""

    items: List[ConversationItem]
    cursor: Optional[ResponseCursor]
    awaiting_user: bool
    done: bool
    state: RunState
    pending_calls: List[CallItem] = field(default_factory=list)
    transcript: List[TranscriptStep] = field(default_factory=list)
    cancelled: bool = False

    @property
    def messages(self) -> List[AssistantMessage]:
        return [item for item in self.items if isinstance(item, AssistantMessage)]

    @property
    def final_text(self) -> str:
        messages = self.messages
        return messages[-1].text if messages else ""


@dataclass
class RunHandle:
    """All mutable state of one run. Runs never share any of it."""

    session: Session
    goal: str
    initial_url: Optional[str] = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    conversation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: RunState = RunState.AWAITING_MODEL
    cursor: Optional[ResponseCursor] = None
    items: List[ConversationItem] = field(default_factory=list)
    transcript: Transcript = field(default_factory=Transcript)
    # Items appended to the log but not yet delivered to the model.
    pending_input: List[ConversationItem] = field(default_factory=list)
    pending_calls: List[CallItem] = field(default_factory=list)
    started: bool = False
    warming_up: bool = False
    warmup_steps: int = 0
    stall_count: int = 0
    actions_this_turn: int = 0
    cancel_requested: bool = False
    error: Optional[BaseException] = None
    last_result: Optional[StepResult] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def done(self) -> bool:
        return self.state is RunState.DONE


class Orchestrator:
    """Turns model output into actuator calls and actuator observations back into model input.

    The loop is an explicit state machine over ``RunState``. Each caller
    operation drives it until the run needs the caller again: a message to
    answer, calls to execute in caller-driven mode, or the end of the run.
    Cancellation is checked between transitions only; an in-flight actuator or
    model call always runs to completion first.
    """

    def __init__(
        self,
        actuator: Actuator,
        model_client: ModelClient,
        config: Optional[AgentConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.actuator = actuator
        self.model_client = model_client
        self.config = config or AgentConfig()
        self.logger = logger or logging.getLogger("cua_agent")

    @classmethod
    def from_config(cls, config: CuaConfig, logger: Optional[logging.Logger] = None) -> "Orchestrator":
        logger = logger or logging.getLogger("cua_agent")
        actuator = Actuator(config.browser, logger=logger.getChild("actuator"))
        model_client = ModelClient(
            config.agent,
            viewport=(config.browser.viewport_width, config.browser.viewport_height),
            logger=logger.getChild("model_client"),
        )
        return cls(actuator, model_client, config.agent, logger=logger)

    # ─────────────────────────────────────────────────────────────────────────
    # Caller surface
    # ─────────────────────────────────────────────────────────────────────────

    def create_run(
        self, session: Session, goal: str, initial_url: Optional[str] = None
    ) -> RunHandle:
        """Build a run without touching the browser or the model."""
        return RunHandle(session=session, goal=goal, initial_url=initial_url)

    async def start_run(
        self, session: Session, goal: str, initial_url: Optional[str] = None
    ) -> RunHandle:
        """Create a run and drive its first turn; the result is on ``handle.last_result``."""
        handle = self.create_run(session, goal, initial_url)
        await self.begin_run(handle)
        return handle

    async def begin_run(self, handle: RunHandle) -> StepResult:
        """Connect, pre-navigate when the goal names a page, and drive the first turn."""
        async with handle.lock:
            if handle.started:
                raise RunStateError(f"Run {handle.run_id} was already started", handle.state.value)
            handle.started = True
            mark = self._mark(handle)
            self.logger.info(f"[{handle.run_id}] Starting run on session {handle.session.session_id}")
            await self._actuate(handle, self.actuator.connect(handle.session))

            self._queue(handle, DeveloperMessage(content=self.config.developer_prompt))
            handle.transcript.add_user(handle.goal)
            target = normalize_url(handle.initial_url) if handle.initial_url else detect_url(handle.goal)
            if target:
                # The first reply rarely carries a tool call, so open the page ourselves.
                self.logger.info(f"[{handle.run_id}] Pre-navigating to {target}")
                await self._actuate(handle, self.actuator.navigate(handle.session, target))
                handle.warming_up = True
                self._queue(handle, UserMessage(content=CONFIRM_PAGE_PROMPT))
            else:
                self._queue(handle, UserMessage(content=handle.goal))
            return await self._drive(handle, mark)

    async def continue_run(self, handle: RunHandle, user_text: str) -> StepResult:
        """Answer the model with new user text."""
        async with handle.lock:
            self._require(handle, RunState.AWAITING_USER)
            mark = self._mark(handle)
            handle.transcript.add_user(user_text)
            self._queue(handle, UserMessage(content=user_text))
            handle.actions_this_turn = 0
            handle.state = RunState.AWAITING_MODEL
            return await self._drive(handle, mark)

    async def submit_computer_call_output(
        self, handle: RunHandle, output: Union[CallOutputItem, dict[str, Any]]
    ) -> StepResult:
        """Deliver the output of a pending call that the caller executed itself."""
        async with handle.lock:
            self._require(handle, RunState.EXECUTING_ACTION)
            if isinstance(output, dict):
                output = parse_item(output)
            if not is_call_output(output):
                raise RunStateError(
                    f"Expected a call output, got {output.type}", handle.state.value
                )
            call = next(
                (c for c in handle.pending_calls if c.call_id == output.call_id),
                None,
            )
            if call is None:
                raise RunStateError(
                    f"No pending call with call_id {output.call_id!r}",
                    handle.state.value,
                )
            if isinstance(call, ComputerCall) != isinstance(output, ComputerCallOutput):
                raise RunStateError(
                    f"{output.type} does not answer {call.type} {call.call_id}", handle.state.value
                )
            if isinstance(call, ComputerCall) and not output.acknowledged_safety_checks:
                output = output.model_copy(
                    update={"acknowledged_safety_checks": list(call.pending_safety_checks)}
                )

            mark = self._mark(handle)
            handle.pending_calls.remove(call)
            handle.transcript.add_action(call)
            self._queue(handle, output)
            if handle.pending_calls:
                return self._result(handle, mark)
            handle.state = RunState.AWAITING_MODEL
            return await self._drive(handle, mark)

    async def execute_pending(self, handle: RunHandle) -> StepResult:
        """Execute the pending calls of a caller-driven run and continue."""
        async with handle.lock:
            self._require(handle, RunState.EXECUTING_ACTION)
            mark = self._mark(handle)
            await self._execute_calls(handle)
            return await self._drive(handle, mark)

    async def retry_step(self, handle: RunHandle) -> StepResult:
        """Re-issue the model request that last failed; no action is executed again."""
        async with handle.lock:
            self._require(handle, RunState.AWAITING_MODEL)
            if not handle.started:
                raise RunStateError(f"Run {handle.run_id} has not been started", handle.state.value)
            self.logger.info(f"[{handle.run_id}] Retrying model step")
            handle.error = None
            return await self._drive(handle, self._mark(handle))

    def cancel(self, handle: RunHandle) -> None:
        """Request a stop at the next state transition."""
        self.logger.info(f"[{handle.run_id}] Cancellation requested")
        handle.cancel_requested = True
        if not handle.lock.locked() and not handle.done:
            self._finish(handle)
            handle.last_result = self._result(handle, self._mark(handle), cancelled=True)

    async def end_run(self, handle: RunHandle) -> StepResult:
        """Close the run and release the browser connection; the session itself is the caller's."""
        async with handle.lock:
            mark = self._mark(handle)
            if not handle.transcript.is_closed:
                handle.transcript.close()
            if not handle.done:
                # Pending calls are abandoned; the closed transcript ends the run.
                handle.pending_calls = []
                handle.state = RunState.AWAITING_MODEL
                await self._drive(handle, mark)
            await self.actuator.disconnect(handle.session)
            self.logger.info(f"[{handle.run_id}] Run ended")
            return self._result(handle, mark)

    # ─────────────────────────────────────────────────────────────────────────
    # State machine
    # ─────────────────────────────────────────────────────────────────────────

    async def _drive(self, handle: RunHandle, mark: tuple[int, int]) -> StepResult:
        while True:
            if handle.cancel_requested:
                self.logger.info(f"[{handle.run_id}] Cancelled in state {handle.state.value}")
                self._finish(handle)
                return self._result(handle, mark, cancelled=True)

            if handle.state is RunState.AWAITING_MODEL:
                if handle.transcript.is_closed:
                    self._finish(handle)
                    continue
                reply = await self._request(handle)
                self._absorb(handle, reply)
            elif handle.state is RunState.EXECUTING_ACTION:
                if not self._runs_inline(handle):
                    self.logger.info(
                        f"[{handle.run_id}] {len(handle.pending_calls)} call(s) left to the caller"
                    )
                    break
                await self._execute_calls(handle)
            else:
                break
        return self._result(handle, mark)

    def _runs_inline(self, handle: RunHandle) -> bool:
        """Whether pending calls execute without returning to the caller."""
        if self.config.auto_execute or handle.warming_up:
            return True
        # A screenshot changes nothing on the page; answer it right away.
        return all(
            isinstance(call, ComputerCall) and isinstance(call.action, ScreenshotAction)
            for call in handle.pending_calls
        )

    async def _request(self, handle: RunHandle) -> ModelReply:
        try:
            return await self._shielded(
                handle,
                self.model_client.request_next(
                    list(handle.pending_input),
                    handle.cursor,
                    conversation_id=handle.conversation_id,
                ),
            )
        except (TransportError, MalformedResponseError) as e:
            # Pending input stays queued so retry_step can resend it.
            self.logger.error(f"[{handle.run_id}] Model step failed: {e}")
            handle.error = e
            raise

    def _absorb(self, handle: RunHandle, reply: ModelReply) -> None:
        """Commit a model reply to the run and pick the next state."""
        try:
            if not reply.items:
                raise MalformedResponseError("Model reply has no items")
            for item in reply.items:
                if isinstance(item, FunctionCall) and item.name == "goto":
                    self._goto_url(item)
        except MalformedResponseError as e:
            self.logger.error(f"[{handle.run_id}] Rejected model reply: {e}")
            handle.error = e
            raise

        handle.pending_input.clear()
        handle.cursor = reply.cursor
        handle.items.extend(reply.items)

        calls = [item for item in reply.items if is_call(item)]
        messages = [item for item in reply.items if isinstance(item, AssistantMessage)]
        for message in messages:
            if not handle.transcript.add_message(message):
                self.logger.debug(f"[{handle.run_id}] Message {message.id} already in transcript")

        if all(isinstance(item, Reasoning) for item in reply.items):
            self._on_stall(handle)
            return
        handle.stall_count = 0

        if calls:
            if handle.warming_up:
                handle.warmup_steps += 1
            handle.pending_calls = calls
            handle.state = RunState.EXECUTING_ACTION
        elif handle.warming_up:
            self.logger.info(f"[{handle.run_id}] Page confirmed; handing over the original goal")
            self._end_warmup(handle)
        else:
            handle.state = RunState.AWAITING_USER

    def _on_stall(self, handle: RunHandle) -> None:
        handle.stall_count += 1
        cap = self.config.reasoning_stall_cap
        self.logger.warning(
            f"[{handle.run_id}] Reasoning-only reply ({handle.stall_count} in a row"
            f"{f', cap {cap}' if cap is not None else ''})"
        )
        if cap is not None and handle.stall_count > cap:
            error = ReasoningStallExceeded(cap, run_id=handle.run_id)
            self._finish(handle, error)
            raise error
        self._queue(handle, UserMessage(content=CONTINUE_TASK_PROMPT))
        handle.state = RunState.AWAITING_MODEL

    def _end_warmup(self, handle: RunHandle) -> None:
        handle.warming_up = False
        self._queue(handle, UserMessage(content=RESUME_PROMPT))
        self._queue(handle, UserMessage(content=handle.goal))
        handle.state = RunState.AWAITING_MODEL

    async def _execute_calls(self, handle: RunHandle) -> None:
        """Run pending calls one by one, queueing each output before the next starts."""
        while handle.pending_calls:
            if handle.cancel_requested:
                return
            call = handle.pending_calls[0]
            handle.actions_this_turn += 1
            limit = self.config.max_actions_per_turn
            if limit is not None and handle.actions_this_turn > limit:
                error = ActionLimitExceeded(limit, run_id=handle.run_id)
                self.logger.error(f"[{handle.run_id}] {error}")
                self._finish(handle, error)
                raise error

            handle.transcript.add_action(call)
            output = await self._run_call(handle, call)
            handle.pending_calls.pop(0)
            self._queue(handle, output)

        handle.state = RunState.AWAITING_MODEL
        if handle.warming_up and handle.warmup_steps >= self.config.max_warmup_steps:
            self.logger.warning(
                f"[{handle.run_id}] No message after {handle.warmup_steps} warm-up step(s); "
                "handing over the original goal"
            )
            self._end_warmup(handle)

    async def _run_call(self, handle: RunHandle, call: CallItem) -> CallOutputItem:
        if isinstance(call, ComputerCall):
            observation = await self._actuate(
                handle, self.actuator.execute(handle.session, call.action)
            )
            if call.pending_safety_checks:
                self.logger.warning(
                    f"[{handle.run_id}] Acknowledging safety checks: "
                    f"{[check.code or check.id for check in call.pending_safety_checks]}"
                )
            return ComputerCallOutput(
                call_id=call.call_id,
                screenshot=observation.screenshot,
                current_url=observation.current_url,
                acknowledged_safety_checks=list(call.pending_safety_checks),
            )
        try:
            result = await self._dispatch_function(handle, call)
        except UnknownFunctionError as e:
            self.logger.warning(f"[{handle.run_id}] {e}; answering with a no-op")
            result = UNKNOWN_FUNCTION_RESULT.format(name=call.name)
        return FunctionCallOutput(call_id=call.call_id, result=result)

    async def _dispatch_function(self, handle: RunHandle, call: FunctionCall) -> str:
        if call.name == "goto":
            url = self._goto_url(call)
            observation = await self._actuate(handle, self.actuator.navigate(handle.session, url))
            return self._function_result(observation)
        if call.name == "back":
            observation = await self._actuate(handle, self.actuator.back(handle.session))
            return self._function_result(observation)
        raise UnknownFunctionError(call.name, call_id=call.call_id)

    @staticmethod
    def _goto_url(call: FunctionCall) -> str:
        try:
            arguments = json.loads(call.arguments or "{}")
        except ValueError as e:
            raise MalformedResponseError("Invalid JSON arguments for goto", response=call.arguments) from e
        url = arguments.get("url") if isinstance(arguments, dict) else None
        if not isinstance(url, str) or not url.strip():
            raise MalformedResponseError("goto called without a url", response=call.arguments)
        return normalize_url(url)

    @staticmethod
    def _function_result(observation: Observation) -> str:
        if observation.error:
            return f"error: {observation.error}"
        return "success"

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    async def _actuate(self, handle: RunHandle, coro: Awaitable[T]) -> T:
        """Run an actuator call; a transport failure ends the run."""
        try:
            return await self._shielded(handle, coro)
        except TransportError as e:
            self.logger.error(f"[{handle.run_id}] Browser session unreachable: {e}")
            self._finish(handle, e)
            raise

    async def _shielded(self, handle: RunHandle, coro: Awaitable[T]) -> T:
        """Let an in-flight call finish even if the driving task is cancelled."""
        task = asyncio.ensure_future(coro)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            handle.cancel_requested = True
            self.logger.info(f"[{handle.run_id}] Cancelled; waiting for the in-flight call")
            try:
                await task
            except Exception as e:
                self.logger.error(f"[{handle.run_id}] In-flight call failed after cancellation: {e}")
            self._finish(handle)
            raise

    def _queue(self, handle: RunHandle, item: ConversationItem) -> None:
        handle.items.append(item)
        handle.pending_input.append(item)

    def _finish(self, handle: RunHandle, error: Optional[BaseException] = None) -> None:
        if error is not None:
            handle.error = error
        handle.state = RunState.DONE
        handle.pending_calls = []
        self.model_client.retire(handle.conversation_id)

    def _require(self, handle: RunHandle, *states: RunState) -> None:
        if handle.state not in states:
            expected = " or ".join(state.value for state in states)
            raise RunStateError(
                f"Run {handle.run_id} is {handle.state.value}, expected {expected}",
                handle.state.value,
            )

    @staticmethod
    def _mark(handle: RunHandle) -> tuple[int, int]:
        return len(handle.items), len(handle.transcript)

    @staticmethod
    def _result(handle: RunHandle, mark: tuple[int, int], cancelled: bool = False) -> StepResult:
        items_mark, steps_mark = mark
        result = StepResult(
            items=handle.items[items_mark:],
            cursor=handle.cursor,
            awaiting_user=handle.state is RunState.AWAITING_USER,
            done=handle.state is RunState.DONE,
            state=handle.state,
            pending_calls=list(handle.pending_calls),
            transcript=handle.transcript.steps[steps_mark:],
            cancelled=cancelled,
        )
        handle.last_result = result
        return result
