"""Parser for <tool_call> blocks emitted by models without native tool calling."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field

from agent.response import ToolCall, new_tool_call_id

logger = logging.getLogger(__name__)

OPEN_TAG = "<tool_call>"
CLOSE_TAG = "</tool_call>"


@dataclass(frozen=True)
class TaggedBlock:
    """A complete <tool_call>...</tool_call> span found in the text."""
    start: int
    end: int
    payload: str


@dataclass
class ParsedOutput:
    """Model text with tool-call blocks removed, plus the accepted calls."""
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    dropped: int = 0


class ToolCallParser:
    """
    Extract tool calls from free-form model output.

    Blocks look like::

        <tool_call>
        {"name": "search_items", "arguments": {"query": "budget"}}
        </tool_call>

    A block is accepted only if its payload decodes to an object carrying a
    tool name. Anything else is dropped without raising: the text channel is
    lossy and the loop treats "no valid call" as a final answer.
    """

    def __init__(self, id_factory=new_tool_call_id):
        self._new_id = id_factory

    def parse(self, raw_text: str) -> ParsedOutput:
        blocks = self.scan(raw_text)
        if not blocks:
            return ParsedOutput(text=raw_text)

        tool_calls: list[ToolCall] = []
        dropped = 0
        for block in blocks:
            call = self._to_tool_call(block.payload)
            if call is None:
                dropped += 1
                logger.debug("Dropped malformed tool_call block: %r", block.payload[:200])
                continue
            tool_calls.append(call)

        return ParsedOutput(
            text=self._strip_blocks(raw_text, blocks),
            tool_calls=tool_calls,
            dropped=dropped,
        )

    @staticmethod
    def scan(text: str) -> list[TaggedBlock]:
        """Find complete tagged blocks in order. Unterminated tags are ignored."""
        blocks: list[TaggedBlock] = []
        pos = 0
        while True:
            start = text.find(OPEN_TAG, pos)
            if start == -1:
                break
            body_start = start + len(OPEN_TAG)
            end = text.find(CLOSE_TAG, body_start)
            if end == -1:
                break
            # A second opening tag before the close means the first was never closed
            nested = text.find(OPEN_TAG, body_start, end)
            if nested != -1:
                pos = nested
                continue
            blocks.append(TaggedBlock(start, end + len(CLOSE_TAG), text[body_start:end].strip()))
            pos = end + len(CLOSE_TAG)
        return blocks

    @staticmethod
    def _strip_blocks(text: str, blocks: list[TaggedBlock]) -> str:
        parts = []
        pos = 0
        for block in blocks:
            parts.append(text[pos:block.start])
            pos = block.end
        parts.append(text[pos:])
        return "".join(parts).strip()

    def _to_tool_call(self, payload: str) -> ToolCall | None:
        data = self._decode(payload)
        if not isinstance(data, dict):
            return None

        name = None
        for key in ("name", "tool_name", "tool"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                name = value.strip()
                break
        if name is None:
            return None

        arguments = None
        for key in ("arguments", "args", "tool_args"):
            if key in data:
                arguments = data[key]
                break
        if isinstance(arguments, str):
            # Some models double-encode the arguments object
            decoded = self._decode(arguments)
            arguments = decoded if isinstance(decoded, dict) else None
        if not isinstance(arguments, dict):
            arguments = {}

        return ToolCall(id=self._new_id(), name=name, arguments=arguments)

    def _decode(self, text: str) -> object | None:
        """Parse JSON text, attempting one repair pass when needed."""
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass
        repaired = self._repair_json(text)
        if repaired == text:
            return None
        try:
            return json.loads(repaired)
        except json.JSONDecodeError:
            return None

    @staticmethod
    def _repair_json(text: str) -> str:
        cleaned = text.strip()
        cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", cleaned)
        cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)
        if '"' not in cleaned:
            cleaned = re.sub(r"(?<!\\)'", '"', cleaned)
        return cleaned


def parse_tool_calls(raw_text: str) -> ParsedOutput:
    """Module-level convenience wrapper around ToolCallParser."""
    return ToolCallParser().parse(raw_text)
