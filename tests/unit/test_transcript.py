"""Unit tests for transcript module."""
from __future__ import annotations

import pytest

from transcript import Transcript


class TestMessages:
    def test_message_recorded_once_per_id(self, items):
        transcript = Transcript()
        message = items.message("Looking up NVIDIA.", id="msg_1")

        assert transcript.add_message(message) is True
        assert transcript.add_message(message) is False

        assert len(transcript) == 1
        assert transcript.last_step.tool == "MESSAGE"
        assert transcript.last_step.message_id == "msg_1"

    def test_user_text_has_no_message_id(self):
        transcript = Transcript()
        step = transcript.add_user("How much is NVIDIA stock?")

        assert step.text == "How much is NVIDIA stock?"
        assert step.message_id is None

    def test_step_numbers_are_sequential(self, items):
        transcript = Transcript()
        transcript.add_user("hi")
        transcript.add_message(items.message("hello"))
        transcript.add_action(items.computer_call({"type": "wait"}))

        assert [step.step_number for step in transcript.steps] == [1, 2, 3]


class TestActions:
    """Each action kind maps to a readable step."""

    @pytest.mark.parametrize(
        "action,tool,text",
        [
            ({"type": "click", "x": 10, "y": 20}, "CLICK", "Clicking at position (10, 20)"),
            ({"type": "double_click", "x": 1, "y": 2}, "DOUBLE_CLICK", "Double-clicking at position (1, 2)"),
            ({"type": "type", "text": "NVDA"}, "TYPE", 'Typing text: "NVDA"'),
            ({"type": "keypress", "keys": ["CTRL", "L"]}, "KEYPRESS", "Pressing keys: CTRL, L"),
            (
                {"type": "scroll", "x": 0, "y": 0, "scroll_x": 0, "scroll_y": 300},
                "SCROLL",
                "Scrolling by (0, 300)",
            ),
            (
                {"type": "drag", "path": [{"x": 1, "y": 2}, {"x": 3, "y": 4}]},
                "DRAG",
                "Dragging from (1, 2) to (3, 4)",
            ),
            ({"type": "move", "x": 5, "y": 6}, "MOVE", "Moving cursor to position (5, 6)"),
            ({"type": "wait"}, "WAIT", "Waiting for page to respond"),
            ({"type": "screenshot"}, "SCREENSHOT", "Taking screenshot of current page"),
        ],
    )
    def test_computer_actions(self, items, action, tool, text):
        step = Transcript().add_action(items.computer_call(action))

        assert step.tool == tool
        assert step.text == text

    def test_goto(self, items):
        step = Transcript().add_action(items.function_call("goto", {"url": "https://nasdaq.com"}))

        assert step.tool == "GOTO"
        assert step.text == "Navigating to https://nasdaq.com"

    def test_back(self, items):
        assert Transcript().add_action(items.function_call("back")).tool == "NAVBACK"

    def test_unknown_function(self, items):
        step = Transcript().add_action(items.function_call("open_tab"))

        assert step.tool == "ACT"
        assert step.text == "Unknown action"


class TestClose:
    def test_close_marks_transcript_closed(self):
        transcript = Transcript()
        transcript.add_user("hi")
        assert not transcript.is_closed

        step = transcript.close()

        assert step.tool == "CLOSE"
        assert step.text == "Session ended"
        assert transcript.is_closed

    def test_empty_transcript_is_open(self):
        transcript = Transcript()
        assert not transcript.is_closed
        assert transcript.last_step is None
