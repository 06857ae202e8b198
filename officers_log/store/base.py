"""Document store contract used by the callback flow.

The store serializes writes per actor; callers never hold a snapshot across
an ``await`` and expect it to stay current. Re-read with ``get_actor`` when
freshness matters.
"""

from __future__ import annotations

import abc
import itertools
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from officers_log.config import get_settings
from officers_log.documents import ActorDoc, ItemDoc
from officers_log.schemas.flags import dump_flag

_created_counter = itertools.count()


def new_document_id() -> str:
    """Opaque, never-reused document id."""
    return uuid.uuid4().hex[:16]


def next_created_time() -> float:
    """Monotonic creation timestamp; ties inside the same clock tick are broken by a counter."""
    return time.time() * 1000 + next(_created_counter) * 1e-6


class DocumentStore(abc.ABC):

    @property
    def namespace(self) -> str:
        return get_settings().module_id

    # -- reads -------------------------------------------------------------

    @abc.abstractmethod
    async def get_actor(self, actor_id: str) -> Optional[ActorDoc]:
        """Fresh snapshot of an actor and all its items, or ``None``."""

    @abc.abstractmethod
    async def get_setting(self, key: str, default: Any = None) -> Any:
        ...

    # -- writes ------------------------------------------------------------

    @abc.abstractmethod
    async def update_actor(self, actor_id: str, changes: Dict[str, Any], *, render: bool = True) -> None:
        ...

    @abc.abstractmethod
    async def update_item(self, actor_id: str, item_id: str, changes: Dict[str, Any], *, render: bool = True) -> None:
        ...

    @abc.abstractmethod
    async def create_items(self, actor_id: str, specs: Iterable[dict]) -> List[ItemDoc]:
        ...

    @abc.abstractmethod
    async def delete_items(self, actor_id: str, item_ids: Iterable[str]) -> None:
        ...

    @abc.abstractmethod
    async def set_setting(self, key: str, value: Any) -> None:
        ...

    @abc.abstractmethod
    async def update_setting(self, key: str, update: Callable[[Any], Any], default: Any = None) -> Any:
        """Read-modify-write one setting atomically; returns the stored value.

        ``update`` gets a private copy of the current value (or ``default``)
        and returns the replacement.
        """

    @abc.abstractmethod
    async def _write_flag(self, actor_id: str, item_id: Optional[str], namespace: str,
                          key: str, value: Any, *, unset: bool = False) -> None:
        """Low-level flag write; ``item_id=None`` targets the actor itself."""

    # -- flags -------------------------------------------------------------

    async def set_flag(self, actor_id: str, item_id: Optional[str], key: str, value: Any,
                       namespace: Optional[str] = None) -> None:
        ns = namespace or self.namespace
        await self._write_flag(actor_id, item_id, ns, key, self._stored_flag(ns, key, value))

    async def unset_flag(self, actor_id: str, item_id: Optional[str], key: str,
                         namespace: Optional[str] = None) -> None:
        await self._write_flag(actor_id, item_id, namespace or self.namespace, key, None, unset=True)

    def flag_changes(self, key: str, value: Any, namespace: Optional[str] = None) -> Dict[str, Any]:
        """A flag write as dotted ``update_item`` changes.

        Lets several writes to one document go out as a single update.
        """
        ns = namespace or self.namespace
        return {f"flags.{ns}.{key}": self._stored_flag(ns, key, value)}

    def _stored_flag(self, namespace: str, key: str, value: Any) -> Any:
        # Only the module namespace is schema-checked; "world" flags are host-owned.
        return dump_flag(key, value) if namespace == self.namespace else value

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def prepare_item_spec(spec: dict) -> ItemDoc:
        """Build an ``ItemDoc`` from a create spec, assigning id and creation time."""
        return ItemDoc(
            id=str(spec.get("id") or new_document_id()),
            type=str(spec["type"]),
            name=str(spec.get("name") or ""),
            img=str(spec.get("img") or ""),
            sort=int(spec.get("sort") or 0),
            created_time=float(spec.get("created_time") or next_created_time()),
            system=dict(spec.get("system") or {}),
            flags=dict(spec.get("flags") or {}),
        )
