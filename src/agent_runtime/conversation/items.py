"""
Item Log types.

A conversation is an ordered list of items: messages, tool calls and tool
results. A tool call and the tool result sharing its ``call_id`` form a
pair that must always be kept or dropped together.
"""

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from ..errors import InvalidSessionDataError


@dataclass
class MessageItem:
    """A user, assistant or system message."""

    role: Literal["user", "assistant", "system"]
    content: str
    type: Literal["message"] = field(default="message", init=False)


@dataclass
class ToolCallItem:
    """A tool invocation requested by the model."""

    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    type: Literal["tool_call"] = field(default="tool_call", init=False)


@dataclass
class ToolResultItem:
    """The output of a tool invocation."""

    call_id: str
    name: str
    output: str
    type: Literal["tool_result"] = field(default="tool_result", init=False)


Item = Union[MessageItem, ToolCallItem, ToolResultItem]

MESSAGE_ROLES = ("user", "assistant", "system")


def is_message(item: Item) -> bool:
    return isinstance(item, MessageItem)


def is_tool_item(item: Item) -> bool:
    return isinstance(item, (ToolCallItem, ToolResultItem))


def call_id_of(item: Item) -> str | None:
    """Return the call id of a tool item, or None for messages."""
    if isinstance(item, (ToolCallItem, ToolResultItem)):
        return item.call_id
    return None


def item_to_dict(item: Item) -> dict[str, Any]:
    """Convert an item to its persisted wire shape."""
    if isinstance(item, MessageItem):
        return {"type": "message", "role": item.role, "content": item.content}
    if isinstance(item, ToolCallItem):
        return {
            "type": "tool_call",
            "callId": item.call_id,
            "name": item.name,
            "arguments": item.arguments,
        }
    if isinstance(item, ToolResultItem):
        return {
            "type": "tool_result",
            "callId": item.call_id,
            "name": item.name,
            "output": item.output,
        }
    raise TypeError(f"Unsupported item type: {type(item).__name__}")


def item_from_dict(data: Any) -> Item:
    """Rebuild an item from its wire shape.

    Raises:
        InvalidSessionDataError: if the record is not a known item shape.
    """
    if not isinstance(data, dict):
        raise InvalidSessionDataError("item must be an object")

    item_type = data.get("type")
    try:
        if item_type == "message":
            role = data["role"]
            if role not in MESSAGE_ROLES:
                raise InvalidSessionDataError(f"unknown message role '{role}'")
            return MessageItem(role=role, content=str(data.get("content") or ""))
        if item_type == "tool_call":
            return ToolCallItem(
                call_id=data["callId"],
                name=data["name"],
                arguments=dict(data.get("arguments") or {}),
            )
        if item_type == "tool_result":
            return ToolResultItem(
                call_id=data["callId"],
                name=data.get("name", ""),
                output=str(data.get("output") or ""),
            )
    except KeyError as e:
        raise InvalidSessionDataError(f"{item_type} item missing field {e}") from e

    raise InvalidSessionDataError(f"unknown item type '{item_type}'")
