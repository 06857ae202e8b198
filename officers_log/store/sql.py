"""SQLAlchemy-backed document store."""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import flag_modified

from officers_log.documents import ActorDoc, ItemDoc, set_path
from officers_log.errors import DocumentNotFound, PersistenceError
from officers_log.models import Actor, Item, WorldSetting
from officers_log.store.base import DocumentStore
from officers_log.utils.logging_config import get_logger

logger = get_logger("officers_log.store.sql")

_JSON_COLUMNS = ("system", "flags")


def _item_to_doc(row: Item) -> ItemDoc:
    return ItemDoc(
        id=row.id,
        type=row.type,
        name=row.name or "",
        img=row.img or "",
        sort=row.sort or 0,
        created_time=row.created_time or 0.0,
        system=copy.deepcopy(row.system or {}),
        flags=copy.deepcopy(row.flags or {}),
    )


def _actor_to_doc(row: Actor) -> ActorDoc:
    return ActorDoc(
        id=row.id,
        name=row.name or "",
        type=row.type or "character",
        system=copy.deepcopy(row.system or {}),
        flags=copy.deepcopy(row.flags or {}),
        items={i.id: _item_to_doc(i) for i in row.items},
    )


def _apply_changes(row: Any, changes: Dict[str, Any]) -> None:
    """Apply dotted host-style changes to an ORM row, flagging mutated JSON columns."""
    touched = set()
    for path, value in changes.items():
        if "." not in path:
            setattr(row, path, copy.deepcopy(value))
            continue
        head, rest = path.split(".", 1)
        if head not in _JSON_COLUMNS:
            raise ValueError(f"Cannot update nested path on column {head!r}")
        # Reassign a copy so the JSON column sees a new object
        data = copy.deepcopy(getattr(row, head) or {})
        set_path(data, rest, copy.deepcopy(value))
        setattr(row, head, data)
        touched.add(head)
    for column in touched:
        flag_modified(row, column)


class SqlDocumentStore(DocumentStore):
    """One session per operation.

    Each write re-reads the row it changes, so writes to one actor are
    serialized in-process; ``FOR UPDATE`` covers other processes where the
    database supports it.
    """

    def __init__(self, session_factory=None):
        if session_factory is None:
            from officers_log.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._setting_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _load_actor_row(self, db, actor_id: str) -> Actor:
        result = await db.execute(select(Actor).where(Actor.id == actor_id).with_for_update())
        row = result.scalar_one_or_none()
        if row is None:
            raise DocumentNotFound("actor", actor_id)
        return row

    async def _load_item_row(self, db, actor_id: str, item_id: str) -> Item:
        result = await db.execute(
            select(Item).where(Item.actor_id == actor_id, Item.id == item_id).with_for_update()
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise DocumentNotFound("item", item_id)
        return row

    async def add_actor(self, actor: ActorDoc) -> None:
        """Insert an actor snapshot with all its items (seeding / import)."""
        try:
            async with self._session_factory() as db:
                db.add(Actor(id=actor.id, name=actor.name, type=actor.type,
                             system=copy.deepcopy(actor.system), flags=copy.deepcopy(actor.flags)))
                for item in actor.items.values():
                    db.add(Item(actor_id=actor.id, **copy.deepcopy(item.to_dict())))
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to add actor {actor.id}: {e}") from e

    async def get_actor(self, actor_id: str) -> Optional[ActorDoc]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(Actor).where(Actor.id == actor_id).options(selectinload(Actor.items))
                )
                row = result.scalar_one_or_none()
                return _actor_to_doc(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read actor {actor_id}: {e}") from e

    async def get_setting(self, key: str, default: Any = None) -> Any:
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(WorldSetting).where(WorldSetting.key == key))
                row = result.scalar_one_or_none()
                if row is None or row.value is None:
                    return default
                return copy.deepcopy(row.value)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read setting {key}: {e}") from e

    async def set_setting(self, key: str, value: Any) -> None:
        await self.update_setting(key, lambda _current: value)

    async def update_setting(self, key: str, update: Callable[[Any], Any], default: Any = None) -> Any:
        async with self._setting_locks[key]:
            retried = False
            while True:
                try:
                    return await self._update_setting_once(key, update, default)
                except IntegrityError as e:
                    # Another process inserted the row first; apply on top of theirs once
                    if retried:
                        raise PersistenceError(f"Failed to write setting {key}: {e}") from e
                    retried = True
                    logger.info("setting %s inserted concurrently, retrying", key)
                except SQLAlchemyError as e:
                    raise PersistenceError(f"Failed to write setting {key}: {e}") from e

    async def _update_setting_once(self, key: str, update: Callable[[Any], Any], default: Any) -> Any:
        async with self._session_factory() as db:
            result = await db.execute(select(WorldSetting).where(WorldSetting.key == key).with_for_update())
            row = result.scalar_one_or_none()
            current = row.value if row is not None and row.value is not None else default
            value = update(copy.deepcopy(current))
            if row is None:
                db.add(WorldSetting(key=key, value=copy.deepcopy(value)))
            else:
                row.value = copy.deepcopy(value)
                flag_modified(row, "value")
            await db.commit()
            return copy.deepcopy(value)

    async def update_actor(self, actor_id: str, changes: Dict[str, Any], *, render: bool = True) -> None:
        try:
            async with self._locks[actor_id], self._session_factory() as db:
                row = await self._load_actor_row(db, actor_id)
                _apply_changes(row, changes)
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update actor {actor_id}: {e}") from e

    async def update_item(self, actor_id: str, item_id: str, changes: Dict[str, Any], *, render: bool = True) -> None:
        try:
            async with self._locks[actor_id], self._session_factory() as db:
                row = await self._load_item_row(db, actor_id, item_id)
                _apply_changes(row, changes)
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update item {item_id}: {e}") from e

    async def create_items(self, actor_id: str, specs: Iterable[dict]) -> List[ItemDoc]:
        docs = [self.prepare_item_spec(spec) for spec in specs]
        try:
            async with self._locks[actor_id], self._session_factory() as db:
                await self._load_actor_row(db, actor_id)
                for doc in docs:
                    db.add(Item(actor_id=actor_id, **copy.deepcopy(doc.to_dict())))
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create items on {actor_id}: {e}") from e
        logger.info("created %d item(s)", len(docs), extra={"actor_id": actor_id})
        return docs

    async def delete_items(self, actor_id: str, item_ids: Iterable[str]) -> None:
        ids = [str(i) for i in item_ids]
        if not ids:
            return
        try:
            async with self._locks[actor_id], self._session_factory() as db:
                await db.execute(delete(Item).where(Item.actor_id == actor_id, Item.id.in_(ids)))
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete items on {actor_id}: {e}") from e

    async def _write_flag(self, actor_id: str, item_id: Optional[str], namespace: str,
                          key: str, value: Any, *, unset: bool = False) -> None:
        try:
            async with self._locks[actor_id], self._session_factory() as db:
                if item_id is None:
                    row = await self._load_actor_row(db, actor_id)
                else:
                    row = await self._load_item_row(db, actor_id, item_id)
                flags = copy.deepcopy(row.flags or {})
                bag = flags.setdefault(namespace, {})
                if unset:
                    bag.pop(key, None)
                else:
                    bag[key] = copy.deepcopy(value)
                row.flags = flags
                flag_modified(row, "flags")
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to write flag {key} on {item_id or actor_id}: {e}") from e
