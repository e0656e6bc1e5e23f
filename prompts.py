"""Prompts and tool definitions for the computer-use model"""
from typing import Any

DEVELOPER_PROMPT = (
    "You are a helpful assistant that can use a web browser to accomplish tasks. "
    "Your starting point is the Google search page. If you see nothing, trying going to Google."
)

# First user turn when the run starts on a pre-navigated page.
CONFIRM_PAGE_PROMPT = "What page are we on? Can you take a screenshot to confirm?"

# Sent when the model only reasoned and produced nothing actionable.
CONTINUE_TASK_PROMPT = "Please continue with the task."

# Sent ahead of the original goal once the warm-up turn is over.
RESUME_PROMPT = "Let's continue."

UNKNOWN_FUNCTION_RESULT = "Unknown function '{name}'. No action was taken; use goto or back."


def get_computer_use_tools(display_width: int, display_height: int) -> list[dict[str, Any]]:
    """Return the tool list sent with every model request."""
    return [
        {
            "type": "computer_use_preview",
            "display_width": display_width,
            "display_height": display_height,
            "environment": "browser",
        },
        {
            "type": "function",
            "name": "goto",
            "description": "Go to a specific URL.",
            "parameters": {
                "type": "object",
                "properties": {
                    "url": {
                        "type": "string",
                        "description": "Fully qualified URL to navigate to.",
                    },
                },
                "additionalProperties": False,
                "required": ["url"],
            },
        },
        {
            "type": "function",
            "name": "back",
            "description": "Go back to the previous page.",
            "parameters": {
                "type": "object",
                "properties": {},
                "additionalProperties": False,
            },
        },
    ]
