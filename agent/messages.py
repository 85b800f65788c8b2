"""Conversation model: messages, content blocks and the append-only transcript."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Union

from agent.exceptions import TranscriptError

ROLES = ("user", "assistant", "tool_result")


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: str = field(default="text", init=False)


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict = field(default_factory=dict)
    type: str = field(default="tool_use", init=False)


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False
    type: str = field(default="tool_result", init=False)


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass(frozen=True)
class Message:
    """One conversational turn. Content is plain text or a tuple of blocks."""
    role: str
    content: str | tuple[ContentBlock, ...]

    def __post_init__(self):
        if self.role not in ROLES:
            raise TranscriptError(f"Unknown message role '{self.role}'")
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))
        if self.role == "tool_result":
            if isinstance(self.content, str) or not self.content:
                raise TranscriptError("tool_result messages must contain tool_result blocks")
            if not all(isinstance(b, ToolResultBlock) for b in self.content):
                raise TranscriptError("tool_result messages may only contain tool_result blocks")

    @property
    def blocks(self) -> tuple[ContentBlock, ...]:
        if isinstance(self.content, str):
            return (TextBlock(self.content),)
        return self.content

    @property
    def text(self) -> str:
        """Concatenated text of the message, ignoring tool blocks."""
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    def to_dict(self) -> dict:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        blocks = []
        for block in self.content:
            if isinstance(block, TextBlock):
                blocks.append({"type": "text", "text": block.text})
            elif isinstance(block, ToolUseBlock):
                blocks.append({
                    "type": "tool_use", "id": block.id,
                    "name": block.name, "input": dict(block.input),
                })
            else:
                blocks.append({
                    "type": "tool_result", "tool_use_id": block.tool_use_id,
                    "content": block.content, "is_error": block.is_error,
                })
        return {"role": self.role, "content": blocks}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        content = data.get("content", "")
        if isinstance(content, str):
            return cls(role=data.get("role", "user"), content=content)
        blocks: list[ContentBlock] = []
        for raw in content:
            kind = raw.get("type")
            if kind == "text":
                blocks.append(TextBlock(raw.get("text", "")))
            elif kind == "tool_use":
                blocks.append(ToolUseBlock(raw["id"], raw["name"], raw.get("input") or {}))
            elif kind == "tool_result":
                blocks.append(ToolResultBlock(
                    raw["tool_use_id"], raw.get("content", ""), bool(raw.get("is_error", False))
                ))
            else:
                raise TranscriptError(f"Unknown content block type '{kind}'")
        return cls(role=data.get("role", "user"), content=tuple(blocks))


class Transcript:
    """
    Immutable, append-only log of messages.

    ``append`` returns a new Transcript; existing versions never change, so a
    caller can hold on to the history it passed in while the loop extends it.
    """

    __slots__ = ("_messages", "_tool_use_ids")

    def __init__(self, messages: tuple[Message, ...] = (), _tool_use_ids: frozenset[str] | None = None):
        self._messages = tuple(messages)
        if _tool_use_ids is None:
            _tool_use_ids = frozenset()
            for message in self._messages:
                _tool_use_ids = self._check(message, _tool_use_ids)
        self._tool_use_ids = _tool_use_ids

    @staticmethod
    def _check(message: Message, known_ids: frozenset[str]) -> frozenset[str]:
        if message.role == "tool_result":
            for block in message.blocks:
                if block.tool_use_id not in known_ids:
                    raise TranscriptError(
                        f"tool_result references unknown tool_use id '{block.tool_use_id}'"
                    )
            return known_ids
        new_ids = [b.id for b in message.blocks if isinstance(b, ToolUseBlock)]
        if new_ids:
            return known_ids | frozenset(new_ids)
        return known_ids

    def append(self, message: Message) -> "Transcript":
        ids = self._check(message, self._tool_use_ids)
        return Transcript(self._messages + (message,), _tool_use_ids=ids)

    def extend(self, messages) -> "Transcript":
        transcript = self
        for message in messages:
            transcript = transcript.append(message)
        return transcript

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    def plain_turns(self) -> list[tuple[str, str]]:
        """(role, text) pairs of user/assistant turns, for text-only providers."""
        turns = []
        for message in self._messages:
            if message.role not in ("user", "assistant"):
                continue
            text = message.text
            if not text and not isinstance(message.content, str):
                continue
            turns.append((message.role, text))
        return turns

    def to_dicts(self) -> list[dict]:
        return [m.to_dict() for m in self._messages]

    @classmethod
    def from_dicts(cls, data: list[dict]) -> "Transcript":
        return cls(tuple(Message.from_dict(d) for d in data))

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, index):
        return self._messages[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, Transcript):
            return NotImplemented
        return self._messages == other._messages

    def __repr__(self) -> str:
        return f"Transcript({len(self._messages)} messages)"
