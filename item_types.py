"""Typed conversation items and browser actions exchanged with the model."""
from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Item(BaseModel):
    """Common base: items are immutable once built, unknown API fields are dropped."""

    model_config = ConfigDict(frozen=True, extra="ignore")


# ─────────────────────────────────────────────────────────────────────────────
# Actions
# ─────────────────────────────────────────────────────────────────────────────


class Point(_Item):
    x: int
    y: int


class ClickAction(_Item):
    type: Literal["click"] = "click"
    x: int
    y: int
    button: Literal["left", "right", "wheel", "back", "forward"] = "left"


class DoubleClickAction(_Item):
    type: Literal["double_click"] = "double_click"
    x: int
    y: int


class TypeAction(_Item):
    type: Literal["type"] = "type"
    text: str


class KeyPressAction(_Item):
    type: Literal["keypress"] = "keypress"
    keys: List[str]


class ScrollAction(_Item):
    type: Literal["scroll"] = "scroll"
    x: int
    y: int
    scroll_x: int = 0
    scroll_y: int = 0


class DragAction(_Item):
    type: Literal["drag"] = "drag"
    path: List[Point] = Field(default_factory=list)


class MoveAction(_Item):
    type: Literal["move"] = "move"
    x: int
    y: int


class WaitAction(_Item):
    type: Literal["wait"] = "wait"


class ScreenshotAction(_Item):
    type: Literal["screenshot"] = "screenshot"


Action = Annotated[
    Union[
        ClickAction,
        DoubleClickAction,
        TypeAction,
        KeyPressAction,
        ScrollAction,
        DragAction,
        MoveAction,
        WaitAction,
        ScreenshotAction,
    ],
    Field(discriminator="type"),
]


# ─────────────────────────────────────────────────────────────────────────────
# Conversation items
# ─────────────────────────────────────────────────────────────────────────────


class SafetyCheck(_Item):
    id: str
    code: Optional[str] = None
    message: Optional[str] = None


class OutputText(_Item):
    type: Literal["output_text", "refusal"] = "output_text"
    text: str = ""
    refusal: Optional[str] = None

    @property
    def display_text(self) -> str:
        return self.text or self.refusal or ""


class DeveloperMessage(_Item):
    type: Literal["developer_message"] = "developer_message"
    content: str

    def to_input(self) -> dict[str, Any]:
        return {"role": "developer", "content": self.content}


class UserMessage(_Item):
    type: Literal["user_message"] = "user_message"
    content: str

    def to_input(self) -> dict[str, Any]:
        return {"role": "user", "content": self.content}


class AssistantMessage(_Item):
    """A model message; with no accompanying call it hands control back to the user."""

    type: Literal["message"] = "message"
    id: str
    content: List[OutputText] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(part.display_text for part in self.content).strip()

    def to_input(self) -> dict[str, Any]:
        return {
            "type": "message",
            "id": self.id,
            "role": "assistant",
            "content": [{"type": "output_text", "text": part.display_text} for part in self.content],
        }


class Reasoning(_Item):
    type: Literal["reasoning"] = "reasoning"
    id: str
    summary: List[dict[str, Any]] = Field(default_factory=list)

    def to_input(self) -> dict[str, Any]:
        return {"type": "reasoning", "id": self.id, "summary": list(self.summary)}


class ComputerCall(_Item):
    type: Literal["computer_call"] = "computer_call"
    id: str
    call_id: str
    action: Action
    pending_safety_checks: List[SafetyCheck] = Field(default_factory=list)

    def to_input(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ComputerCallOutput(_Item):
    type: Literal["computer_call_output"] = "computer_call_output"
    call_id: str
    screenshot: str
    current_url: Optional[str] = None
    acknowledged_safety_checks: List[SafetyCheck] = Field(default_factory=list)

    def to_input(self) -> dict[str, Any]:
        output: dict[str, Any] = {
            "type": "input_image",
            "image_url": f"data:image/png;base64,{self.screenshot}",
        }
        if self.current_url:
            output["current_url"] = self.current_url
        payload: dict[str, Any] = {
            "type": "computer_call_output",
            "call_id": self.call_id,
            "output": output,
        }
        if self.acknowledged_safety_checks:
            payload["acknowledged_safety_checks"] = [
                check.model_dump(exclude_none=True) for check in self.acknowledged_safety_checks
            ]
        return payload


class FunctionCall(_Item):
    type: Literal["function_call"] = "function_call"
    id: str
    call_id: str
    name: str
    arguments: str = "{}"

    def to_input(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class FunctionCallOutput(_Item):
    type: Literal["function_call_output"] = "function_call_output"
    call_id: str
    result: str

    def to_input(self) -> dict[str, Any]:
        return {"type": "function_call_output", "call_id": self.call_id, "output": self.result}


ConversationItem = Annotated[
    Union[
        DeveloperMessage,
        UserMessage,
        AssistantMessage,
        Reasoning,
        ComputerCall,
        ComputerCallOutput,
        FunctionCall,
        FunctionCallOutput,
    ],
    Field(discriminator="type"),
]

CallItem = Union[ComputerCall, FunctionCall]
CallOutputItem = Union[ComputerCallOutput, FunctionCallOutput]

conversation_item_adapter: TypeAdapter[ConversationItem] = TypeAdapter(ConversationItem)
action_adapter: TypeAdapter[Action] = TypeAdapter(Action)


def parse_item(data: dict[str, Any]) -> ConversationItem:
    """Build a conversation item from its wire form; unknown types raise ValidationError."""
    return conversation_item_adapter.validate_python(data)


def parse_action(data: dict[str, Any]) -> Action:
    """Build an action from its wire form; unknown types raise ValidationError."""
    return action_adapter.validate_python(data)


def is_call(item: ConversationItem) -> bool:
    return isinstance(item, (ComputerCall, FunctionCall))


def is_call_output(item: ConversationItem) -> bool:
    return isinstance(item, (ComputerCallOutput, FunctionCallOutput))


# ─────────────────────────────────────────────────────────────────────────────
# Sessions, observations and cursors
# ─────────────────────────────────────────────────────────────────────────────

_INSPECTOR_PATH = "devtools-fullscreen/inspector.html"
_VIEWER_PATH = "devtools-internal-compiled/index.html"


class Session(_Item):
    """A live remote browser session, owned by the session manager."""

    session_id: str
    connect_endpoint: str
    viewport_width: int = 1024
    viewport_height: int = 768
    region: str = "us-west-2"
    live_view_url: Optional[str] = None

    @property
    def viewer_url(self) -> Optional[str]:
        """Live-view URL rewritten to the embeddable viewer."""
        if not self.live_view_url:
            return None
        return self.live_view_url.replace(_INSPECTOR_PATH, _VIEWER_PATH)


class Observation(_Item):
    """What the actuator reports after every call."""

    screenshot: str
    current_url: str = ""
    error: Optional[str] = None


class ResponseCursor(_Item):
    """Opaque pointer to the last model response of one conversation."""

    response_id: str
    conversation_id: str


class ModelReply(_Item):
    items: List[ConversationItem] = Field(default_factory=list)
    cursor: ResponseCursor
