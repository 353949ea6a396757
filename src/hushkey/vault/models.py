# HushKey: Vault Data Models
#
# Plain in-memory entities moved between the item store and the backup
# codecs:
#   Vault        - a named container of items
#   Item         - a typed secret; `data` is the type-dependent attribute bag
#   Category     - user-defined label with a colour tag
#   BackupBundle - {vaults, categories, items, settings} for one export/import
#
# `to_dict()` / `from_dict()` use the camelCase wire shape stored inside
# encrypted HKB payloads so containers stay compatible across clients.

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return now.replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid4())


class ItemType(str, Enum):
    """Closed set of item types. The value is the wire tag."""

    LOGIN = "LOGIN"
    CARD = "CARD"
    IDENTITY = "IDENTITY"
    NOTE = "NOTE"
    WIFI = "WIFI"
    BANK = "BANK"
    LICENSE = "LICENSE"
    DATABASE = "DATABASE"
    SERVER = "SERVER"
    SSH_KEY = "SSH_KEY"
    ID_CARD = "ID_CARD"
    FILE = "FILE"

    @property
    def slug(self) -> str:
        """Lower-case tag used in archive entry names (items_<slug>.csv)."""
        return self.value.lower()

    @classmethod
    def from_tag(cls, tag: str) -> "ItemType":
        """Parse a tag case-insensitively ("login", "SSH_KEY", "ssh-key")."""
        normalized = tag.strip().upper().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown item type: {tag!r}")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Category:
    id: str
    name: str
    color: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Category":
        return cls(
            id=data.get("id") or new_id(),
            name=data.get("name", ""),
            color=data.get("color", "") or "",
        )


@dataclass
class Vault:
    """A named container of items."""

    id: str
    name: str
    description: Optional[str] = None
    icon: str = "shield"
    created_at: str = field(default_factory=utc_now_iso)
    item_count: int = 0
    is_shared: bool = False
    shared_with: List[str] = field(default_factory=list)
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "createdAt": self.created_at,
            "itemCount": self.item_count,
            "isShared": self.is_shared,
            "sharedWith": list(self.shared_with),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vault":
        return cls(
            id=data.get("id") or new_id(),
            name=data.get("name", ""),
            description=data.get("description"),
            icon=data.get("icon") or "shield",
            created_at=data.get("createdAt") or utc_now_iso(),
            item_count=int(data.get("itemCount") or 0),
            is_shared=bool(data.get("isShared", False)),
            shared_with=list(data.get("sharedWith") or []),
            notes=data.get("notes"),
        )


@dataclass
class Item:
    """A typed vault entry.

    The shape of `data` is determined by `type`; the CSV codec knows which
    keys belong to which type.
    """

    id: str
    vault_id: str
    type: ItemType
    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None
    category_id: Optional[str] = None
    is_favorite: bool = False
    folder: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    last_updated: str = field(default_factory=utc_now_iso)

    def __post_init__(self):
        if not isinstance(self.type, ItemType):
            self.type = ItemType.from_tag(self.type)

    @property
    def attachments(self) -> List[Dict[str, Any]]:
        """File attachments carried in the attribute bag, if any."""
        attachments = self.data.get("attachments")
        return attachments if isinstance(attachments, list) else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "vaultId": self.vault_id,
            "categoryId": self.category_id,
            "type": self.type.value,
            "name": self.name,
            "notes": self.notes,
            "isFavorite": self.is_favorite,
            "folder": self.folder,
            "createdAt": self.created_at,
            "lastUpdated": self.last_updated,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        return cls(
            id=data.get("id") or new_id(),
            vault_id=data.get("vaultId", ""),
            type=ItemType.from_tag(data.get("type", "")),
            name=data.get("name", ""),
            data=dict(data.get("data") or {}),
            notes=data.get("notes"),
            category_id=data.get("categoryId"),
            is_favorite=bool(data.get("isFavorite", False)),
            folder=data.get("folder"),
            created_at=data.get("createdAt") or data.get("lastUpdated") or utc_now_iso(),
            last_updated=data.get("lastUpdated") or utc_now_iso(),
        )


@dataclass
class BackupBundle:
    """In-memory aggregate handed between the orchestrator and the codecs."""

    vaults: List[Vault] = field(default_factory=list)
    categories: List[Category] = field(default_factory=list)
    items: List[Item] = field(default_factory=list)
    settings: Optional[Dict[str, Any]] = None

    @property
    def entity_count(self) -> int:
        return len(self.vaults) + len(self.categories) + len(self.items)

    def items_of_type(self, item_type: ItemType) -> List[Item]:
        return [item for item in self.items if item.type == item_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vaults": [v.to_dict() for v in self.vaults],
            "categories": [c.to_dict() for c in self.categories],
            "items": [i.to_dict() for i in self.items],
            "settings": self.settings,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupBundle":
        return cls(
            vaults=[Vault.from_dict(v) for v in data.get("vaults") or []],
            categories=[Category.from_dict(c) for c in data.get("categories") or []],
            items=[Item.from_dict(i) for i in data.get("items") or []],
            settings=data.get("settings"),
        )
