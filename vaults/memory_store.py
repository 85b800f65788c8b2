"""In-memory vault backend with per-vault access keys."""

from __future__ import annotations

import hashlib
import hmac
import itertools
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from agent.exceptions import (
    ConfigError,
    ItemNotFoundError,
    SearchUnavailableError,
    VaultAccessError,
)
from vaults.backend import VaultBackend
from vaults.models import ContainerInfo, ItemRecord, SearchHit, VaultRecord
from vaults.search_index import SearchIndex

logger = logging.getLogger(__name__)


def derive_key(vault_id: str, password: str = "") -> str:
    """Derive the access key for a vault from its password (empty when unprotected)."""
    return hashlib.sha256(f"{vault_id}:{password}".encode("utf-8")).hexdigest()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class _Vault:
    id: str
    name: str
    key: str
    has_password: bool = False
    item_ids: list[str] = field(default_factory=list)


class InMemoryVaultStore(VaultBackend):
    """
    Reference backend that keeps everything in dictionaries.

    Item bodies are only readable with the key of the vault that holds them,
    mirroring an encrypted store: a wrong key raises VaultAccessError.
    """

    def __init__(self, search_enabled: bool = True):
        self.search_enabled = search_enabled
        self._vaults: dict[str, _Vault] = {}
        self._items: dict[str, ItemRecord] = {}
        self._index = SearchIndex()
        self._vault_ids = itertools.count(1)
        self._item_ids = itertools.count(1)

    # ── Setup helpers ────────────────────────────────────────────────

    def add_vault(self, name: str, password: str = "") -> VaultRecord:
        vault_id = str(next(self._vault_ids))
        vault = _Vault(
            id=vault_id,
            name=name,
            key=derive_key(vault_id, password),
            has_password=bool(password),
        )
        self._vaults[vault_id] = vault
        return self._record(vault)

    def seed_item(
        self,
        vault_id: str,
        title: str,
        content: str = "",
        item_type: str = "note",
        summary: str | None = None,
    ) -> ItemRecord:
        vault = self._vault(vault_id)
        now = _now()
        item = ItemRecord(
            id=str(next(self._item_ids)),
            vault_id=vault.id,
            title=title,
            content=content,
            item_type=item_type,
            summary=summary,
            created_at=now,
            updated_at=now,
        )
        self._items[item.id] = item
        vault.item_ids.append(item.id)
        self._index.index_item(item)
        return item

    def key_for(self, vault_id: str, password: str = "") -> str:
        """Return the key for a vault if the password is right."""
        vault = self._vault(vault_id)
        key = derive_key(vault_id, password)
        if not hmac.compare_digest(key, vault.key):
            raise VaultAccessError(f"Wrong password for vault '{vault.name}'")
        return key

    def containers(self) -> list[ContainerInfo]:
        """Synchronous snapshot of known vaults."""
        return [
            ContainerInfo(id=v.id, name=v.name, is_protected=v.has_password)
            for v in self._vaults.values()
        ]

    @classmethod
    def from_json(cls, path: str, search_enabled: bool = True) -> "InMemoryVaultStore":
        """
        Seed a store from a JSON file::

            {"vaults": [{"name": "Work", "password": "", "items": [
                {"title": "...", "content": "...", "summary": "...", "item_type": "note"}
            ]}]}
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load vaults from {path}: {e}")

        store = cls(search_enabled=search_enabled)
        for vault_raw in raw.get("vaults", []):
            if not isinstance(vault_raw, dict) or not vault_raw.get("name"):
                raise ConfigError("each vault entry needs a name")
            vault = store.add_vault(vault_raw["name"], vault_raw.get("password", ""))
            for item_raw in vault_raw.get("items", []):
                store.seed_item(
                    vault.id,
                    title=item_raw.get("title", "Untitled"),
                    content=item_raw.get("content", ""),
                    item_type=item_raw.get("item_type", "note"),
                    summary=item_raw.get("summary"),
                )
        return store

    # ── VaultBackend ─────────────────────────────────────────────────

    async def list_vaults(self) -> list[VaultRecord]:
        return [self._record(v) for v in self._vaults.values()]

    async def create_vault(self, name: str) -> VaultRecord:
        return self.add_vault(name)

    async def rename_vault(self, vault_id: str, name: str) -> None:
        self._vault(vault_id).name = name

    async def list_items(self, vault_id: str, key) -> list[ItemRecord]:
        vault = self._unlock(vault_id, key)
        return [self._items[item_id] for item_id in vault.item_ids]

    async def get_item(self, item_id: str, key) -> ItemRecord | None:
        item = self._item(item_id)
        self._unlock(item.vault_id, key)
        return item

    async def search(self, query: str, limit: int) -> list[SearchHit]:
        if not self.search_enabled:
            raise SearchUnavailableError("Search index is not available")
        hits = []
        for item_id, score in self._index.search(query, top_k=limit):
            hits.append(SearchHit(
                id=item_id,
                title=self._index.title(item_id),
                snippet=self._index.snippet(item_id),
                score=score,
            ))
        return hits

    async def add_item(self, vault_id: str, title: str, content: str, item_type: str, key) -> ItemRecord:
        self._unlock(vault_id, key)
        return self.seed_item(vault_id, title, content, item_type)

    async def update_item_title(self, item_id: str, title: str) -> None:
        item = self._item(item_id)
        item.title = title
        item.updated_at = _now()
        self._index.index_item(item)

    async def update_item_content(self, item_id: str, content: str, key) -> None:
        item = self._item(item_id)
        self._unlock(item.vault_id, key)
        item.content = content
        item.updated_at = _now()
        self._index.index_item(item)

    async def move_item(self, item_id: str, target_vault_id: str) -> None:
        item = self._item(item_id)
        target = self._vault(target_vault_id)
        self._vaults[item.vault_id].item_ids.remove(item_id)
        target.item_ids.append(item_id)
        item.vault_id = target.id
        item.updated_at = _now()

    async def delete_item(self, item_id: str) -> None:
        item = self._item(item_id)
        self._vaults[item.vault_id].item_ids.remove(item_id)
        del self._items[item_id]
        self._index.remove_item(item_id)

    # ── Internals ────────────────────────────────────────────────────

    def _vault(self, vault_id) -> _Vault:
        vault = self._vaults.get(str(vault_id))
        if vault is None:
            raise ItemNotFoundError(f"Vault {vault_id} not found")
        return vault

    def _item(self, item_id) -> ItemRecord:
        item = self._items.get(str(item_id))
        if item is None:
            raise ItemNotFoundError(f"Item {item_id} not found")
        return item

    def _unlock(self, vault_id, key) -> _Vault:
        vault = self._vault(vault_id)
        if not isinstance(key, str) or not hmac.compare_digest(key, vault.key):
            logger.debug("Key rejected for vault %s", vault.id)
            raise VaultAccessError(f"Cannot unlock vault '{vault.name}'")
        return vault

    @staticmethod
    def _record(vault: _Vault) -> VaultRecord:
        return VaultRecord(
            id=vault.id,
            name=vault.name,
            item_count=len(vault.item_ids),
            has_password=vault.has_password,
        )
