"""In-memory snapshots of host documents (actors and their embedded items)."""

from __future__ import annotations

import copy
import dataclasses
from typing import Any, Dict, Iterator, List, Optional

from officers_log.config import get_settings
from officers_log.schemas.flags import parse_flag


def get_path(data: dict, path: str, default: Any = None) -> Any:
    """Read a dotted path (``"system.determination.value"``) from nested dicts."""
    cur: Any = data
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur


def set_path(data: dict, path: str, value: Any) -> None:
    """Write a dotted path, creating intermediate dicts as needed."""
    parts = path.split(".")
    cur = data
    for part in parts[:-1]:
        nxt = cur.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[part] = nxt
        cur = nxt
    cur[parts[-1]] = value


@dataclasses.dataclass
class ItemDoc:
    """An item embedded on an actor: a log, value, milestone, focus or talent."""
    id: str
    type: str
    name: str = ""
    img: str = ""
    sort: int = 0
    created_time: float = 0.0
    system: Dict[str, Any] = dataclasses.field(default_factory=dict)
    flags: Dict[str, Dict[str, Any]] = dataclasses.field(default_factory=dict)

    def get_raw_flag(self, namespace: str, key: str) -> Any:
        return (self.flags.get(namespace) or {}).get(key)

    def get_flag(self, key: str) -> Any:
        """Typed flag from the module namespace (``None`` if unset or malformed)."""
        return parse_flag(key, self.get_raw_flag(get_settings().module_id, key))

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    def apply(self, changes: Dict[str, Any]) -> None:
        """Apply host-style dotted changes (``{"system.used": True, "img": ...}``)."""
        for path, value in changes.items():
            if "." not in path:
                setattr(self, path, copy.deepcopy(value))
                continue
            head, rest = path.split(".", 1)
            target = getattr(self, head)
            set_path(target, rest, copy.deepcopy(value))


@dataclasses.dataclass
class ActorDoc:
    """A character (or other actor) with its embedded items in host order."""
    id: str
    name: str = ""
    type: str = "character"
    system: Dict[str, Any] = dataclasses.field(default_factory=dict)
    flags: Dict[str, Dict[str, Any]] = dataclasses.field(default_factory=dict)
    items: Dict[str, ItemDoc] = dataclasses.field(default_factory=dict)

    def get(self, item_id: Optional[str]) -> Optional[ItemDoc]:
        if not item_id:
            return None
        return self.items.get(str(item_id))

    def of_type(self, item_type: str) -> List[ItemDoc]:
        return [i for i in self.items.values() if i.type == item_type]

    def logs(self) -> List[ItemDoc]:
        return self.of_type("log")

    def values(self) -> List[ItemDoc]:
        return self.of_type("value")

    def milestones(self) -> List[ItemDoc]:
        return self.of_type("milestone")

    def __iter__(self) -> Iterator[ItemDoc]:
        return iter(self.items.values())

    def get_raw_flag(self, namespace: str, key: str) -> Any:
        return (self.flags.get(namespace) or {}).get(key)

    def get_flag(self, key: str) -> Any:
        return parse_flag(key, self.get_raw_flag(get_settings().module_id, key))

    @property
    def is_character(self) -> bool:
        return self.type == "character"

    def apply(self, changes: Dict[str, Any]) -> None:
        for path, value in changes.items():
            if "." not in path:
                setattr(self, path, copy.deepcopy(value))
                continue
            head, rest = path.split(".", 1)
            set_path(getattr(self, head), rest, copy.deepcopy(value))

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["items"] = [i.to_dict() for i in self.items.values()]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ActorDoc":
        items = {}
        for raw in data.get("items", []):
            item = ItemDoc(**raw)
            items[item.id] = item
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            type=data.get("type", "character"),
            system=copy.deepcopy(data.get("system", {})),
            flags=copy.deepcopy(data.get("flags", {})),
            items=items,
        )
