"""Tool catalog: the closed set of tools the assistant may call, and their renderings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable


class ToolName(str, Enum):
    LIST_CONTAINERS = "list_containers"
    CREATE_CONTAINER = "create_container"
    RENAME_CONTAINER = "rename_container"
    LIST_ITEMS = "list_items"
    GET_ITEM = "get_item"
    SEARCH_ITEMS = "search_items"
    CREATE_ITEM = "create_item"
    UPDATE_ITEM_TITLE = "update_item_title"
    UPDATE_ITEM_CONTENT = "update_item_content"
    MOVE_ITEM = "move_item"
    DELETE_ITEM = "delete_item"
    FETCH_WEBPAGE = "fetch_webpage"
    FETCH_TRANSCRIPT = "fetch_transcript"
    SUMMARIZE_ITEM = "summarize_item"

    @classmethod
    def lookup(cls, name: str) -> "ToolName | None":
        try:
            return cls(name)
        except ValueError:
            return None


JSON_TYPES = {
    "string": str,
    "number": (int, float),
    "integer": int,
    "boolean": bool,
    "array": list,
    "object": dict,
}


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str
    description: str
    required: bool = True
    enum: tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolDefinition:
    name: ToolName
    description: str
    parameters: tuple[ToolParameter, ...] = field(default_factory=tuple)

    @property
    def required(self) -> list[str]:
        return [p.name for p in self.parameters if p.required]

    def json_schema(self) -> dict:
        properties = {}
        for param in self.parameters:
            prop = {"type": param.type, "description": param.description}
            if param.enum:
                prop["enum"] = list(param.enum)
            properties[param.name] = prop
        return {"type": "object", "properties": properties, "required": self.required}


def _param(name: str, description: str, required: bool = True, enum: tuple[str, ...] = ()) -> ToolParameter:
    return ToolParameter(name=name, type="string", description=description, required=required, enum=enum)


DEFAULT_TOOLS: tuple[ToolDefinition, ...] = (
    # Containers
    ToolDefinition(
        ToolName.LIST_CONTAINERS,
        "List all vaults the user has. Returns vault IDs, names, and item counts.",
    ),
    ToolDefinition(
        ToolName.CREATE_CONTAINER,
        "Create a new vault to organize items.",
        (_param("name", "Name for the new vault"),),
    ),
    ToolDefinition(
        ToolName.RENAME_CONTAINER,
        "Rename an existing vault.",
        (
            _param("container_id", "ID of the vault to rename"),
            _param("name", "New name for the vault"),
        ),
    ),
    # Item reads
    ToolDefinition(
        ToolName.LIST_ITEMS,
        "List all items in a specific vault. Returns item IDs, titles, types, and summaries.",
        (_param("container_id", "ID of the vault to list items from"),),
    ),
    ToolDefinition(
        ToolName.GET_ITEM,
        "Get full details of a specific item including its content.",
        (_param("item_id", "ID of the item to retrieve"),),
    ),
    ToolDefinition(
        ToolName.SEARCH_ITEMS,
        "Search across all vault items by keyword. Searches titles, content, and summaries.",
        (_param("query", "Search query to find matching items"),),
    ),
    # Item writes
    ToolDefinition(
        ToolName.CREATE_ITEM,
        "Create a new note or URL item in a vault.",
        (
            _param("container_id", "ID of the vault to create the item in"),
            _param("title", "Title for the new item"),
            _param("content", "Content of the note, or URL if creating a link"),
            _param("item_type", "Type of item to create", required=False, enum=("note", "url")),
        ),
    ),
    ToolDefinition(
        ToolName.UPDATE_ITEM_TITLE,
        "Update the title of an existing item.",
        (
            _param("item_id", "ID of the item to update"),
            _param("title", "New title for the item"),
        ),
    ),
    ToolDefinition(
        ToolName.UPDATE_ITEM_CONTENT,
        "Replace the content of an existing item.",
        (
            _param("item_id", "ID of the item to update"),
            _param("content", "New content for the item"),
        ),
    ),
    ToolDefinition(
        ToolName.MOVE_ITEM,
        "Move an item to a different vault.",
        (
            _param("item_id", "ID of the item to move"),
            _param("target_container_id", "ID of the destination vault"),
        ),
    ),
    ToolDefinition(
        ToolName.DELETE_ITEM,
        "Delete an item permanently. Use with caution.",
        (_param("item_id", "ID of the item to delete"),),
    ),
    # Web
    ToolDefinition(
        ToolName.FETCH_WEBPAGE,
        "Fetch and extract text content from a webpage URL.",
        (_param("url", "URL of the webpage to fetch"),),
    ),
    ToolDefinition(
        ToolName.FETCH_TRANSCRIPT,
        "Get the transcript/captions from a YouTube video.",
        (_param("url", "YouTube video URL"),),
    ),
    # Summaries
    ToolDefinition(
        ToolName.SUMMARIZE_ITEM,
        "Generate or regenerate the AI summary for an item.",
        (_param("item_id", "ID of the item to summarize"),),
    ),
)

# Tools that require user confirmation before execution
DESTRUCTIVE_TOOLS: frozenset[ToolName] = frozenset({
    ToolName.DELETE_ITEM,
    ToolName.UPDATE_ITEM_CONTENT,
    ToolName.MOVE_ITEM,
})

# Tools that modify data; observers are notified after they succeed
WRITE_TOOLS: frozenset[ToolName] = frozenset({
    ToolName.CREATE_CONTAINER,
    ToolName.RENAME_CONTAINER,
    ToolName.CREATE_ITEM,
    ToolName.UPDATE_ITEM_TITLE,
    ToolName.UPDATE_ITEM_CONTENT,
    ToolName.MOVE_ITEM,
    ToolName.DELETE_ITEM,
})

PROMPT_TOOL_INSTRUCTIONS = """To use a tool, respond with this EXACT format (you can include text before or after):
<tool_call>
{"name": "tool_name", "arguments": {"param1": "value1", "param2": "value2"}}
</tool_call>

You can make multiple tool calls in one response. After each tool execution, you'll receive the result and can continue.

If you don't need to use a tool, just respond normally without the <tool_call> tags."""


class ToolCatalog:
    """Immutable lookup over a set of tool definitions."""

    def __init__(self, definitions: Iterable[ToolDefinition] = DEFAULT_TOOLS):
        self._definitions: dict[ToolName, ToolDefinition] = {}
        for definition in definitions:
            if definition.name in self._definitions:
                raise ValueError(f"Duplicate tool definition: {definition.name.value}")
            self._definitions[definition.name] = definition

    def __iter__(self):
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name) -> bool:
        return self.get(name) is not None

    def get(self, name: "str | ToolName") -> ToolDefinition | None:
        tool = name if isinstance(name, ToolName) else ToolName.lookup(name)
        if tool is None:
            return None
        return self._definitions.get(tool)

    @property
    def names(self) -> list[str]:
        return [d.name.value for d in self._definitions.values()]

    def to_tool_summary(self) -> str:
        """Short `- name: description` list for system prompts."""
        return "\n".join(f"- {d.name.value}: {d.description}" for d in self)

    def to_prompt_tools(self) -> str:
        """Tool descriptions plus the tagged-block instructions for text-only models."""
        descriptions = []
        for d in self:
            lines = []
            for p in d.parameters:
                enum_str = f" [{', '.join(p.enum)}]" if p.enum else ""
                flag = " (required)" if p.required else " (optional)"
                lines.append(f"    - {p.name}: {p.description}{enum_str}{flag}")
            params = "\n".join(lines) or "    (none)"
            descriptions.append(f"- {d.name.value}: {d.description}\n  Parameters:\n{params}")

        return (
            "You have access to the following tools to help the user:\n\n"
            + "\n\n".join(descriptions)
            + "\n\n"
            + PROMPT_TOOL_INSTRUCTIONS
        )

    def to_function_schemas(self) -> list[dict]:
        """OpenAI-style function definitions for native tool calling."""
        return [
            {
                "type": "function",
                "function": {
                    "name": d.name.value,
                    "description": d.description,
                    "parameters": d.json_schema(),
                },
            }
            for d in self
        ]

    def validate_arguments(self, name: "str | ToolName", arguments: dict) -> list[str]:
        """Return a list of problems with the arguments; empty when valid."""
        definition = self.get(name)
        if definition is None:
            return [f"Unknown tool: {name}"]

        problems = []
        for param in definition.parameters:
            value = arguments.get(param.name)
            if value is None or value == "":
                if param.required:
                    problems.append(f"Missing required argument '{param.name}'")
                continue
            expected = JSON_TYPES.get(param.type)
            # Models often send ids as numbers; scalars are accepted for strings
            if param.type == "string" and isinstance(value, (int, float)) and not isinstance(value, bool):
                continue
            if expected and not isinstance(value, expected):
                problems.append(f"Argument '{param.name}' must be of type {param.type}")
                continue
            if param.enum and value not in param.enum:
                problems.append(
                    f"Argument '{param.name}' must be one of: {', '.join(param.enum)}"
                )
        return problems
