"""Records exchanged between the vault backend and the tool executor."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ContainerInfo:
    """Snapshot of a vault as known to the caller."""
    id: str
    name: str
    is_protected: bool = False


@dataclass
class VaultRecord:
    id: str
    name: str
    item_count: int = 0
    has_password: bool = False


@dataclass
class ItemRecord:
    id: str
    vault_id: str
    title: str
    content: str = ""
    item_type: str = "note"
    summary: str | None = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def content_preview(self) -> str:
        return self.content[:500]


@dataclass
class SearchHit:
    id: str
    title: str
    snippet: str
    score: float
