"""Caller-visible transcript of a run: surfaced messages, user turns and actions."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import List, Literal, Optional

from item_types import (
    AssistantMessage,
    ClickAction,
    ComputerCall,
    DoubleClickAction,
    DragAction,
    FunctionCall,
    KeyPressAction,
    MoveAction,
    ScreenshotAction,
    ScrollAction,
    TypeAction,
    WaitAction,
)

StepTool = Literal[
    "MESSAGE",
    "CLICK",
    "TYPE",
    "KEYPRESS",
    "SCROLL",
    "DOUBLE_CLICK",
    "DRAG",
    "MOVE",
    "WAIT",
    "SCREENSHOT",
    "GOTO",
    "NAVBACK",
    "ACT",
    "CLOSE",
]


@dataclass
class TranscriptStep:
    """One line of the run as a user would see it."""

    text: str
    tool: StepTool
    instruction: str
    step_number: int
    message_id: Optional[str] = None


@dataclass
class Transcript:
    """Ordered steps of one run; assistant messages appear at most once per id."""

    steps: List[TranscriptStep] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def last_step(self) -> Optional[TranscriptStep]:
        return self.steps[-1] if self.steps else None

    @property
    def is_closed(self) -> bool:
        return self.last_step is not None and self.last_step.tool == "CLOSE"

    def _append(
        self, text: str, tool: StepTool, instruction: str = "", message_id: Optional[str] = None
    ) -> TranscriptStep:
        step = TranscriptStep(
            text=text,
            tool=tool,
            instruction=instruction,
            step_number=len(self.steps) + 1,
            message_id=message_id,
        )
        self.steps.append(step)
        return step

    def has_message(self, message_id: str) -> bool:
        return any(step.message_id == message_id for step in self.steps)

    def add_message(self, message: AssistantMessage) -> bool:
        """Record an assistant message; returns False when its id was already recorded."""
        if self.has_message(message.id):
            return False
        self._append(message.text, "MESSAGE", message_id=message.id)
        return True

    def add_user(self, text: str) -> TranscriptStep:
        return self._append(text, "MESSAGE")

    def add_action(self, call: ComputerCall | FunctionCall) -> TranscriptStep:
        if isinstance(call, FunctionCall):
            return self._add_function(call)
        action = call.action
        if isinstance(action, ClickAction):
            return self._append(
                f"Clicking at position ({action.x}, {action.y})",
                "CLICK",
                f"click({action.x}, {action.y})",
            )
        if isinstance(action, DoubleClickAction):
            return self._append(
                f"Double-clicking at position ({action.x}, {action.y})",
                "DOUBLE_CLICK",
                f"double_click({action.x}, {action.y})",
            )
        if isinstance(action, TypeAction):
            return self._append(f'Typing text: "{action.text}"', "TYPE", action.text)
        if isinstance(action, KeyPressAction):
            keys = ", ".join(action.keys)
            return self._append(f"Pressing keys: {keys}", "KEYPRESS", keys)
        if isinstance(action, ScrollAction):
            return self._append(
                f"Scrolling by ({action.scroll_x}, {action.scroll_y})",
                "SCROLL",
                f"scroll({action.scroll_x}, {action.scroll_y})",
            )
        if isinstance(action, DragAction):
            if action.path:
                start, end = action.path[0], action.path[-1]
                text = f"Dragging from ({start.x}, {start.y}) to ({end.x}, {end.y})"
            else:
                text = "Dragging along an empty path"
            return self._append(text, "DRAG", "drag")
        if isinstance(action, MoveAction):
            return self._append(
                f"Moving cursor to position ({action.x}, {action.y})", "MOVE", "move"
            )
        if isinstance(action, WaitAction):
            return self._append("Waiting for page to respond", "WAIT", "wait")
        if isinstance(action, ScreenshotAction):
            return self._append("Taking screenshot of current page", "SCREENSHOT", "screenshot")
        return self._append(f"Performing {action.type} action", "ACT", action.type)

    def _add_function(self, call: FunctionCall) -> TranscriptStep:
        if call.name == "goto":
            url = json.loads(call.arguments or "{}").get("url", "")
            return self._append(f"Navigating to {url}", "GOTO", f"goto({url})")
        if call.name == "back":
            return self._append("Going back to the previous page", "NAVBACK", "back()")
        return self._append("Unknown action", "ACT", call.name)

    def close(self) -> TranscriptStep:
        """Mark the run as ended by the caller."""
        return self._append("Session ended", "CLOSE", "close()")
