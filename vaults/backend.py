"""Abstract storage interface the tool executor drives."""

from abc import ABC, abstractmethod
from typing import Any

from vaults.models import ItemRecord, SearchHit, VaultRecord


class VaultBackend(ABC):
    """
    Async storage for vaults and their items.

    Operations that read or write item bodies take the vault key; a wrong key
    must raise (``VaultAccessError`` or ``ItemNotFoundError``) rather than
    return garbage, which is what lets callers locate an item by trying each
    vault in turn.
    """

    @abstractmethod
    async def list_vaults(self) -> list[VaultRecord]:
        ...

    @abstractmethod
    async def create_vault(self, name: str) -> VaultRecord:
        ...

    @abstractmethod
    async def rename_vault(self, vault_id: str, name: str) -> None:
        ...

    @abstractmethod
    async def list_items(self, vault_id: str, key: Any) -> list[ItemRecord]:
        ...

    @abstractmethod
    async def get_item(self, item_id: str, key: Any) -> ItemRecord | None:
        ...

    @abstractmethod
    async def search(self, query: str, limit: int) -> list[SearchHit]:
        """Indexed search. Raises when the index is unavailable."""
        ...

    @abstractmethod
    async def add_item(
        self,
        vault_id: str,
        title: str,
        content: str,
        item_type: str,
        key: Any,
    ) -> ItemRecord:
        ...

    @abstractmethod
    async def update_item_title(self, item_id: str, title: str) -> None:
        ...

    @abstractmethod
    async def update_item_content(self, item_id: str, content: str, key: Any) -> None:
        ...

    @abstractmethod
    async def move_item(self, item_id: str, target_vault_id: str) -> None:
        ...

    @abstractmethod
    async def delete_item(self, item_id: str) -> None:
        ...
