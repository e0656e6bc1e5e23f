"""Custom exception hierarchy for the browser computer-use agent."""
from __future__ import annotations

from typing import Any, Optional


class CuaError(Exception):
    """Base exception for all agent-related errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Transport exceptions (fatal to the current run step)
class TransportError(CuaError):
    """Base exception for unreachable or timed-out collaborators."""

    pass


class ActuatorTransportError(TransportError):
    """Raised when the remote browser session cannot be reached."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        details = {"session_id": session_id} if session_id else {}
        super().__init__(message, details)
        self.session_id = session_id


class ActuatorTimeoutError(ActuatorTransportError):
    """Raised when an actuator call exceeds its timeout."""

    def __init__(self, operation: str, timeout: float, session_id: Optional[str] = None):
        super().__init__(f"Actuator {operation} timed out after {timeout}s", session_id=session_id)
        self.details["timeout"] = timeout
        self.operation = operation
        self.timeout = timeout


class ModelTransportError(TransportError):
    """Raised when unable to reach the model endpoint."""

    def __init__(self, message: str, base_url: Optional[str] = None):
        details = {"base_url": base_url} if base_url else {}
        super().__init__(message, details)
        self.base_url = base_url


class ModelTimeoutError(ModelTransportError):
    """Raised when a model call times out."""

    def __init__(self, timeout: Optional[float]):
        super().__init__(f"Model call timed out after {timeout}s")
        self.details["timeout"] = timeout
        self.timeout = timeout


# Browser exceptions (page-level, the session itself is still healthy)
class BrowserActionError(CuaError):
    """Raised when a browser primitive fails on the page."""

    def __init__(self, message: str, action: Optional[str] = None):
        details = {"action": action} if action else {}
        super().__init__(message, details)
        self.action = action


class NavigationError(BrowserActionError):
    """Raised when page navigation fails."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(message, action="goto")
        if url:
            self.details["url"] = url
        if timeout:
            self.details["timeout"] = timeout
        self.url = url
        self.timeout = timeout


class BrowserNotConnectedError(ActuatorTransportError):
    """Raised when attempting to use the browser before connecting."""

    def __init__(self):
        super().__init__("Browser is not connected. Call connect() first.")


# Model response exceptions
class MalformedResponseError(CuaError):
    """Raised when the model returns a reply that cannot be interpreted."""

    def __init__(self, message: str, response: Optional[str] = None):
        details = {"response_preview": response[:200]} if response else {}
        super().__init__(message, details)
        self.response = response


class ModelClientError(CuaError):
    """Base exception for misuse of the model client adapter."""

    pass


class StaleCursorError(ModelClientError):
    """Raised when a response cursor is used outside the conversation that produced it."""

    def __init__(self, response_id: str, conversation_id: str, reason: str):
        super().__init__(
            f"Stale response cursor: {reason}",
            {"response_id": response_id, "conversation_id": conversation_id},
        )
        self.response_id = response_id
        self.conversation_id = conversation_id


# Recoverable exceptions (compensated by the loop or the actuator)
class UnknownFunctionError(CuaError):
    """Raised when the model calls a function outside the dispatch table."""

    def __init__(self, name: str, call_id: Optional[str] = None):
        details = {"name": name}
        if call_id:
            details["call_id"] = call_id
        super().__init__(f"Unknown function: {name}", details)
        self.name = name
        self.call_id = call_id


class InvalidActionTarget(CuaError):
    """Raised when an action has no valid target on the current viewport."""

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        coordinates: Optional[tuple[float, float]] = None,
    ):
        details: dict[str, Any] = {}
        if action:
            details["action"] = action
        if coordinates:
            details["coordinates"] = coordinates
        super().__init__(message, details)
        self.action = action
        self.coordinates = coordinates


# Run exceptions
class RunError(CuaError):
    """Base exception for orchestration loop errors."""

    pass


class ReasoningStallExceeded(RunError):
    """Raised when the model keeps returning reasoning-only batches."""

    def __init__(self, cap: int, run_id: Optional[str] = None):
        details: dict[str, Any] = {"cap": cap}
        if run_id:
            details["run_id"] = run_id
        super().__init__(f"Model returned reasoning-only replies more than {cap} times in a row", details)
        self.cap = cap
        self.run_id = run_id


class ActionLimitExceeded(RunError):
    """Raised when a single turn executes more actions than allowed."""

    def __init__(self, limit: int, run_id: Optional[str] = None):
        details: dict[str, Any] = {"limit": limit}
        if run_id:
            details["run_id"] = run_id
        super().__init__(f"Turn exceeded maximum actions ({limit})", details)
        self.limit = limit
        self.run_id = run_id


class RunStateError(RunError):
    """Raised when a caller operation does not fit the run's current state."""

    def __init__(self, message: str, state: Optional[str] = None):
        details = {"state": state} if state else {}
        super().__init__(message, details)
        self.state = state


# Configuration exceptions
class ConfigurationError(CuaError):
    """Raised when configuration is invalid."""

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a required config file is not found."""

    def __init__(self, file_path: str):
        super().__init__(f"Configuration file not found: {file_path}", {"file_path": file_path})
        self.file_path = file_path
