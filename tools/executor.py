"""Tool executor: runs model-requested tool calls against the vault backend."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from agent.config import ToolSettings
from agent.exceptions import ConfigError, ItemNotFoundError, ToolExecutionError
from agent.response import ToolCall, ToolResult
from tools.catalog import DESTRUCTIVE_TOOLS, WRITE_TOOLS, ToolCatalog, ToolName
from tools.web import WebFetcher
from vaults.backend import VaultBackend
from vaults.models import ContainerInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

KeyProvider = Callable[[str, "str | None", bool], Awaitable[Any]]
ContainerLister = Callable[[], list[ContainerInfo]]
ConfirmCallback = Callable[[str], Awaitable["bool | None"]]
ChangeNotifier = Callable[[], None]

CANCELLED_MESSAGE = "Action cancelled by user"


@dataclass
class ExecutorContext:
    """
    Collaborators the executor calls back into.

    get_key          -- async (container_id, display_name, is_protected) -> key.
                        May prompt a human; its failures become tool errors.
    list_containers  -- synchronous snapshot of known containers.
    confirm          -- async (message) -> bool | None, asked before destructive
                        tools. Left unset, or resolving to anything but an
                        explicit False, the action is allowed.
    on_data_change   -- called after a successful write; errors are logged only.
    """
    get_key: KeyProvider
    list_containers: ContainerLister
    confirm: ConfirmCallback | None = None
    on_data_change: ChangeNotifier | None = None


class ToolExecutor:
    """Dispatch ToolCalls to vault and web operations. ``execute`` never raises."""

    def __init__(
        self,
        backend: VaultBackend,
        context: ExecutorContext,
        fetcher: WebFetcher | None = None,
        catalog: ToolCatalog | None = None,
        settings: ToolSettings | None = None,
        telemetry=None,
    ):
        self.backend = backend
        self.context = context
        self.fetcher = fetcher or WebFetcher()
        self.catalog = catalog or ToolCatalog()
        self.settings = settings or ToolSettings()
        self.telemetry = telemetry

        self._handlers = self._build_handlers()
        missing = [tool.value for tool in ToolName if tool not in self._handlers]
        if missing:
            raise ConfigError(f"No handler for tools: {', '.join(missing)}")

    def _build_handlers(self) -> dict[ToolName, Callable[[dict], Awaitable[Any]]]:
        return {
            ToolName.LIST_CONTAINERS: self._list_containers,
            ToolName.CREATE_CONTAINER: self._create_container,
            ToolName.RENAME_CONTAINER: self._rename_container,
            ToolName.LIST_ITEMS: self._list_items,
            ToolName.GET_ITEM: self._get_item,
            ToolName.SEARCH_ITEMS: self._search_items,
            ToolName.CREATE_ITEM: self._create_item,
            ToolName.UPDATE_ITEM_TITLE: self._update_item_title,
            ToolName.UPDATE_ITEM_CONTENT: self._update_item_content,
            ToolName.MOVE_ITEM: self._move_item,
            ToolName.DELETE_ITEM: self._delete_item,
            ToolName.FETCH_WEBPAGE: self._fetch_webpage,
            ToolName.FETCH_TRANSCRIPT: self._fetch_transcript,
            ToolName.SUMMARIZE_ITEM: self._summarize_item,
        }

    # ── Entry point ──────────────────────────────────────────────────

    async def execute(self, tool_call: ToolCall) -> ToolResult:
        """Execute a tool call and return its result; failures are captured."""
        started = time.monotonic()
        result = await self._execute(tool_call)
        duration_ms = (time.monotonic() - started) * 1000

        if result.success:
            logger.info("Tool %s (%s) succeeded in %.1fms", tool_call.name, tool_call.id, duration_ms)
        else:
            logger.info("Tool %s (%s) failed: %s", tool_call.name, tool_call.id, result.error)

        self._record(tool_call, result, duration_ms)
        return result

    def _record(self, tool_call: ToolCall, result: ToolResult, duration_ms: float) -> None:
        if self.telemetry is None:
            return
        try:
            self.telemetry.record_tool_call(
                tool_name=tool_call.name,
                args=dict(tool_call.arguments) if isinstance(tool_call.arguments, dict) else {},
                duration_ms=duration_ms,
                success=result.success,
                result_summary=_summarize(result),
                error=result.error,
            )
        except Exception:
            logger.warning("Telemetry for tool %s failed", tool_call.name, exc_info=True)

    async def _execute(self, tool_call: ToolCall) -> ToolResult:
        tool = ToolName.lookup(tool_call.name)
        if tool is None or tool not in self.catalog:
            return ToolResult.fail(tool_call.id, f"Unknown tool: {tool_call.name}")

        args = tool_call.arguments if isinstance(tool_call.arguments, dict) else {}
        problems = self.catalog.validate_arguments(tool, args)
        if problems:
            return ToolResult.fail(tool_call.id, "; ".join(problems))

        try:
            if tool in DESTRUCTIVE_TOOLS and not await self._confirmed(tool):
                logger.info("Tool %s cancelled by user", tool.value)
                return ToolResult.fail(tool_call.id, CANCELLED_MESSAGE)

            result = await self._handlers[tool](args)
        except Exception as e:
            logger.debug("Tool %s raised", tool.value, exc_info=True)
            return ToolResult.fail(tool_call.id, str(e) or type(e).__name__)

        if tool in WRITE_TOOLS:
            self._notify_change()

        return ToolResult.ok(tool_call.id, result)

    async def _confirmed(self, tool: ToolName) -> bool:
        if not self.settings.confirm_destructive or self.context.confirm is None:
            return True
        answer = await self.context.confirm(
            f'Assistant wants to execute "{tool.value}". Allow this action?'
        )
        return answer is not False

    def _notify_change(self) -> None:
        if self.context.on_data_change is None:
            return
        try:
            self.context.on_data_change()
        except Exception:
            logger.warning("on_data_change callback failed", exc_info=True)

    # ── Container helpers ────────────────────────────────────────────

    def _container(self, container_id: str) -> ContainerInfo | None:
        for container in self.context.list_containers():
            if container.id == container_id:
                return container
        return None

    async def _key_for(self, container_id: str) -> Any:
        info = self._container(container_id)
        return await self.context.get_key(
            container_id,
            info.name if info else None,
            info.is_protected if info else False,
        )

    async def _first_container(
        self, operation: Callable[[ContainerInfo, Any], Awaitable[T | None]]
    ) -> tuple[ContainerInfo, T] | None:
        """
        Try ``operation`` in each container with that container's key.

        Failures in containers that do not hold the target are expected and
        skipped; the first non-None value wins.
        """
        for container in self.context.list_containers():
            try:
                key = await self.context.get_key(container.id, container.name, container.is_protected)
                value = await operation(container, key)
            except Exception as e:
                logger.debug("Container %s skipped: %s", container.id, e)
                continue
            if value is not None:
                return container, value
        return None

    # ── Container tools ──────────────────────────────────────────────

    async def _list_containers(self, args: dict) -> list[dict]:
        vaults = await self.backend.list_vaults()
        return [
            {
                "id": str(v.id),
                "name": v.name,
                "item_count": v.item_count or 0,
                "is_protected": v.has_password,
            }
            for v in vaults
        ]

    async def _create_container(self, args: dict) -> dict:
        vault = await self.backend.create_vault(str(args["name"]))
        return {
            "id": str(vault.id),
            "name": vault.name,
            "message": f'Created vault "{vault.name}"',
        }

    async def _rename_container(self, args: dict) -> dict:
        await self.backend.rename_vault(str(args["container_id"]), str(args["name"]))
        return {"success": True, "message": f'Renamed vault to "{args["name"]}"'}

    # ── Item reads ───────────────────────────────────────────────────

    async def _list_items(self, args: dict) -> list[dict]:
        container_id = str(args["container_id"])
        key = await self._key_for(container_id)
        items = await self.backend.list_items(container_id, key)
        return [
            {
                "id": str(item.id),
                "title": item.title,
                "type": item.item_type or "note",
                "summary": item.summary or None,
                "created_at": item.created_at,
                "updated_at": item.updated_at,
            }
            for item in items
        ]

    async def _get_item(self, args: dict) -> dict:
        item_id = str(args["item_id"])

        async def read(container: ContainerInfo, key: Any):
            return await self.backend.get_item(item_id, key)

        found = await self._first_container(read)
        if found is None:
            raise ItemNotFoundError(f"Item {item_id} not found")

        container, item = found
        return {
            "id": str(item.id),
            "container_id": container.id,
            "title": item.title,
            "content": item.content or item.content_preview,
            "type": item.item_type or "note",
            "summary": item.summary or None,
            "created_at": item.created_at,
            "updated_at": item.updated_at,
        }

    async def _search_items(self, args: dict) -> list[dict]:
        query = str(args["query"])
        limit = self.settings.search_limit
        try:
            hits = await self.backend.search(query, limit)
        except Exception as e:
            logger.info("Indexed search unavailable (%s); scanning vaults", e)
            return await self._manual_search(query)

        return [
            {
                "id": str(hit.id),
                "title": hit.title,
                "snippet": (hit.snippet or "")[: self.settings.snippet_chars],
                "score": hit.score,
            }
            for hit in hits[:limit]
        ]

    async def _manual_search(self, query: str) -> list[dict]:
        """Case-insensitive scan of every readable container. Never raises."""
        needle = query.lower()
        limit = self.settings.search_limit
        snippet_chars = self.settings.snippet_chars
        results: list[dict] = []

        try:
            containers = self.context.list_containers()
        except Exception:
            logger.warning("Container listing failed during manual search", exc_info=True)
            return results

        for container in containers:
            try:
                key = await self.context.get_key(container.id, container.name, container.is_protected)
                items = await self.backend.list_items(container.id, key)
            except Exception as e:
                logger.debug("Manual search skipped container %s: %s", container.id, e)
                continue

            for item in items:
                fields = (item.title, item.content, item.summary)
                if not any(f and needle in f.lower() for f in fields):
                    continue
                results.append({
                    "id": str(item.id),
                    "container_id": container.id,
                    "container_name": container.name,
                    "title": item.title or "",
                    "snippet": (item.content or item.summary or "")[:snippet_chars],
                })
                if len(results) >= limit:
                    return results

        return results

    # ── Item writes ──────────────────────────────────────────────────

    async def _create_item(self, args: dict) -> dict:
        container_id = str(args["container_id"])
        key = await self._key_for(container_id)
        item = await self.backend.add_item(
            container_id,
            str(args["title"]),
            str(args["content"]),
            str(args.get("item_type") or "note"),
            key,
        )
        return {
            "id": str(item.id),
            "container_id": container_id,
            "title": item.title,
            "message": f'Created item "{item.title}" in vault',
        }

    async def _update_item_title(self, args: dict) -> dict:
        await self.backend.update_item_title(str(args["item_id"]), str(args["title"]))
        return {"success": True, "message": f'Updated title to "{args["title"]}"'}

    async def _update_item_content(self, args: dict) -> dict:
        item_id = str(args["item_id"])
        content = str(args["content"])

        async def write(container: ContainerInfo, key: Any):
            await self.backend.update_item_content(item_id, content, key)
            return True

        if await self._first_container(write) is None:
            raise ToolExecutionError(f"Could not update item {item_id}")
        return {"success": True, "message": "Updated item content"}

    async def _move_item(self, args: dict) -> dict:
        await self.backend.move_item(str(args["item_id"]), str(args["target_container_id"]))
        return {"success": True, "message": "Moved item to target vault"}

    async def _delete_item(self, args: dict) -> dict:
        await self.backend.delete_item(str(args["item_id"]))
        return {"success": True, "message": "Deleted item"}

    # ── Web and summaries ────────────────────────────────────────────

    async def _fetch_webpage(self, args: dict) -> dict:
        url = str(args["url"])
        text = await self.fetcher.fetch_text(url)
        limit = self.settings.webpage_char_limit
        return {
            "url": url,
            "content": text[:limit],
            "truncated": len(text) > limit,
        }

    async def _fetch_transcript(self, args: dict) -> dict:
        url = str(args["url"])
        transcript = await self.fetcher.fetch_transcript(url)
        if not transcript:
            return {"url": url, "transcript": None, "message": "No transcript available"}
        limit = self.settings.transcript_char_limit
        return {
            "url": url,
            "transcript": transcript[:limit],
            "truncated": len(transcript) > limit,
        }

    async def _summarize_item(self, args: dict) -> dict:
        return {
            "item_id": str(args["item_id"]),
            "message": "Summary generation requested. This will be processed separately.",
        }


def _summarize(result: ToolResult, limit: int = 200) -> str:
    if not result.success:
        return f"error: {result.error}"[:limit]
    return json.dumps(result.result, default=str)[:limit]
