"""Pytest fixtures for the computer-use agent tests."""
from __future__ import annotations

import itertools
import json
import tempfile
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from actuator import Actuator
from agent import Orchestrator
from config import AgentConfig, BrowserConfig
from item_types import (
    Action,
    AssistantMessage,
    ComputerCall,
    ConversationItem,
    FunctionCall,
    ModelReply,
    Observation,
    OutputText,
    Reasoning,
    ResponseCursor,
    SafetyCheck,
    Session,
    parse_action,
)

FAKE_SCREENSHOT = "iVBORw0KGgo="


class ItemFactory:
    """Builds model output items with unique ids."""

    def __init__(self):
        self._ids = itertools.count(1)

    def _next(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def message(self, text: str, id: Optional[str] = None) -> AssistantMessage:
        return AssistantMessage(id=id or self._next("msg"), content=[OutputText(text=text)])

    def reasoning(self) -> Reasoning:
        return Reasoning(id=self._next("rs"))

    def computer_call(
        self,
        action: Action | dict[str, Any],
        call_id: Optional[str] = None,
        safety_checks: Sequence[SafetyCheck] = (),
    ) -> ComputerCall:
        if isinstance(action, dict):
            action = parse_action(action)
        return ComputerCall(
            id=self._next("cu"),
            call_id=call_id or self._next("call"),
            action=action,
            pending_safety_checks=list(safety_checks),
        )

    def function_call(
        self, name: str, arguments: dict[str, Any] | str = "{}", call_id: Optional[str] = None
    ) -> FunctionCall:
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return FunctionCall(
            id=self._next("fc"), call_id=call_id or self._next("call"), name=name, arguments=arguments
        )


class ScriptedModelClient:
    """Stand-in for ModelClient that replays scripted reply batches.

    A batch may be a list of items or an exception to raise. When the script
    runs out, ``forever`` is replayed if given.
    """

    def __init__(
        self,
        batches: Sequence[List[ConversationItem] | BaseException],
        forever: Optional[Callable[[], List[ConversationItem]]] = None,
        events: Optional[list] = None,
    ):
        self.batches = list(batches)
        self.forever = forever
        self.events = events if events is not None else []
        self.requests: list[tuple[list[ConversationItem], Optional[ResponseCursor]]] = []
        self.retired: set[str] = set()

    async def request_next(self, items, cursor=None, *, conversation_id, timeout=None):
        self.requests.append((list(items), cursor))
        self.events.append(("model", len(self.requests)))
        if self.batches:
            batch = self.batches.pop(0)
        elif self.forever is not None:
            batch = self.forever()
        else:
            raise AssertionError("model called more often than scripted")
        if isinstance(batch, BaseException):
            raise batch
        return ModelReply(
            items=batch,
            cursor=ResponseCursor(
                response_id=f"resp_{len(self.requests)}", conversation_id=conversation_id
            ),
        )

    def retire(self, conversation_id: str) -> None:
        self.retired.add(conversation_id)


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def session() -> Session:
    return Session(
        session_id="sess-1",
        connect_endpoint="wss://connect.example.com?sessionId=sess-1",
        live_view_url="https://www.example.com/devtools-fullscreen/inspector.html?wss=abc",
    )


@pytest.fixture
def items() -> ItemFactory:
    return ItemFactory()


@pytest.fixture
def events() -> list:
    """Shared, ordered record of model and actuator calls."""
    return []


@pytest.fixture
def observation() -> Observation:
    return Observation(screenshot=FAKE_SCREENSHOT, current_url="https://example.com/")


@pytest.fixture
def mock_browser() -> MagicMock:
    """Create a mock RemoteBrowser for actuator tests."""
    browser = MagicMock()
    browser.connect = AsyncMock()
    browser.close = AsyncMock()
    browser.is_connected = MagicMock(return_value=True)
    browser.goto = AsyncMock()
    browser.go_back = AsyncMock()
    browser.screenshot = AsyncMock(return_value=FAKE_SCREENSHOT)
    browser.get_url = MagicMock(return_value="https://example.com/")
    browser.click = AsyncMock()
    browser.double_click = AsyncMock()
    browser.move = AsyncMock()
    browser.scroll = AsyncMock()
    browser.drag = AsyncMock()
    browser.type_text = AsyncMock()
    browser.press = AsyncMock()
    browser.wait = AsyncMock()
    browser.wait_for_load_state = AsyncMock()
    return browser


@pytest.fixture
def browser_config() -> BrowserConfig:
    return BrowserConfig(settle_delay=0, wait_duration=0, action_timeout=5, connect_timeout=5)


@pytest.fixture
def actuator(browser_config: BrowserConfig, mock_browser: MagicMock) -> Actuator:
    return Actuator(browser_config, browser_factory=lambda session: mock_browser)


@pytest.fixture
def fake_actuator(events: list, observation: Observation) -> MagicMock:
    """Actuator double recording every call into ``events``."""

    def recorder(name: str):
        async def call(session, *args, **kwargs):
            events.append((name, *args))
            return observation

        return call

    fake = MagicMock(spec=Actuator)
    for name in ("connect", "navigate", "back", "execute", "screenshot", "disconnect"):
        setattr(fake, name, AsyncMock(side_effect=recorder(name)))
    return fake


@pytest.fixture
def scripted_model(events: list) -> Callable[..., ScriptedModelClient]:
    def factory(*batches, forever=None) -> ScriptedModelClient:
        return ScriptedModelClient(batches, forever=forever, events=events)

    return factory


@pytest.fixture
def make_orchestrator(fake_actuator: MagicMock) -> Callable[..., Orchestrator]:
    def factory(model_client, **overrides) -> Orchestrator:
        config = AgentConfig(api_key="test-key", **overrides)
        return Orchestrator(fake_actuator, model_client, config)

    return factory
