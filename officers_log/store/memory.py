"""Process-local document store (tests, headless play, single-table demos)."""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional

from officers_log.documents import ActorDoc, ItemDoc
from officers_log.errors import DocumentNotFound
from officers_log.store.base import DocumentStore
from officers_log.utils.logging_config import get_logger

logger = get_logger("officers_log.store.memory")


class InMemoryDocumentStore(DocumentStore):
    """Keeps actors in a dict and hands out deep copies.

    Writes take a per-actor ``asyncio.Lock`` so mutations of one actor are
    serialized, matching the host's single-writer-per-document behaviour.
    """

    def __init__(self, actors: Optional[Iterable[ActorDoc]] = None):
        self._actors: Dict[str, ActorDoc] = {}
        self._settings: Dict[str, Any] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.render_requests: List[str] = []
        for actor in actors or []:
            self.add_actor(actor)

    def add_actor(self, actor: ActorDoc) -> None:
        self._actors[actor.id] = copy.deepcopy(actor)

    def _require(self, actor_id: str) -> ActorDoc:
        actor = self._actors.get(actor_id)
        if actor is None:
            raise DocumentNotFound("actor", actor_id)
        return actor

    def _require_item(self, actor: ActorDoc, item_id: str) -> ItemDoc:
        item = actor.items.get(item_id)
        if item is None:
            raise DocumentNotFound("item", item_id)
        return item

    def _rendered(self, actor_id: str, render: bool) -> None:
        if render:
            self.render_requests.append(actor_id)

    async def get_actor(self, actor_id: str) -> Optional[ActorDoc]:
        actor = self._actors.get(actor_id)
        return copy.deepcopy(actor) if actor else None

    async def get_setting(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self._settings.get(key, default))

    async def set_setting(self, key: str, value: Any) -> None:
        self._settings[key] = copy.deepcopy(value)

    async def update_setting(self, key: str, update: Callable[[Any], Any], default: Any = None) -> Any:
        # No await between read and write, so this is atomic on the loop
        value = update(copy.deepcopy(self._settings.get(key, default)))
        self._settings[key] = copy.deepcopy(value)
        return copy.deepcopy(value)

    async def update_actor(self, actor_id: str, changes: Dict[str, Any], *, render: bool = True) -> None:
        async with self._locks[actor_id]:
            self._require(actor_id).apply(changes)
        self._rendered(actor_id, render)

    async def update_item(self, actor_id: str, item_id: str, changes: Dict[str, Any], *, render: bool = True) -> None:
        async with self._locks[actor_id]:
            actor = self._require(actor_id)
            self._require_item(actor, item_id).apply(changes)
        self._rendered(actor_id, render)

    async def create_items(self, actor_id: str, specs: Iterable[dict]) -> List[ItemDoc]:
        created = []
        async with self._locks[actor_id]:
            actor = self._require(actor_id)
            for spec in specs:
                item = self.prepare_item_spec(spec)
                if item.id in actor.items:
                    raise ValueError(f"Duplicate item id {item.id}")
                actor.items[item.id] = item
                created.append(copy.deepcopy(item))
        logger.info("created %d item(s)", len(created), extra={"actor_id": actor_id})
        self._rendered(actor_id, True)
        return created

    async def delete_items(self, actor_id: str, item_ids: Iterable[str]) -> None:
        async with self._locks[actor_id]:
            actor = self._require(actor_id)
            for item_id in item_ids:
                actor.items.pop(str(item_id), None)
        self._rendered(actor_id, True)

    async def _write_flag(self, actor_id: str, item_id: Optional[str], namespace: str,
                          key: str, value: Any, *, unset: bool = False) -> None:
        async with self._locks[actor_id]:
            actor = self._require(actor_id)
            doc = actor if item_id is None else self._require_item(actor, item_id)
            bag = doc.flags.setdefault(namespace, {})
            if unset:
                bag.pop(key, None)
            else:
                bag[key] = copy.deepcopy(value)
