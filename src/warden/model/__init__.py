"""
Model contract for Warden.

A Model turns a transcript into a stream of events. Concrete providers
implement Model.invoke(); ScriptedModel replays canned responses.
"""

from warden.model.base import (
    ErrorEvent,
    Finish,
    Model,
    ModelEvent,
    ModelRequest,
    ScriptedModel,
    TextDelta,
    ToolCallEvent,
    ToolResultEvent,
    text_response,
    tool_call_response,
)

__all__ = [
    "ErrorEvent",
    "Finish",
    "Model",
    "ModelEvent",
    "ModelRequest",
    "ScriptedModel",
    "TextDelta",
    "ToolCallEvent",
    "ToolResultEvent",
    "text_response",
    "tool_call_response",
]
