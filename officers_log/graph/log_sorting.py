"""
Mission log ordering.

Four modes:

- ``created``: oldest first, ties by name then id.
- ``alpha``: by name, ties by the sheet's sort key.
- ``chain``: completed arcs first as blocks, then callback chains in
  pre-order, each chain placed by its earliest log.
- ``custom``: leave the stored order alone.

Pure and synchronous over a snapshot; safe to call on every render.  The
only state kept between calls is the UI collapse set in
:class:`ArcCollapseState`, which lives in process memory.
"""
from __future__ import annotations

import dataclasses
import math
from collections import defaultdict
from typing import Dict, List, Optional, Set

from officers_log.documents import ActorDoc, ItemDoc
from officers_log.graph.arc_chains import compute_best_chain_ending_at, get_callback_edges_for_value
from officers_log.graph.log_graph import LogGraph
from officers_log.schemas.flags import ARC_INFO, MISSION_LOG_SORT_MODE
from officers_log.utils.logging_config import get_logger

logger = get_logger("officers_log.graph.log_sorting")

SORT_MODES = ("created", "alpha", "chain", "custom")
DEFAULT_SORT_MODE = "created"


def normalize_sort_mode(mode: Optional[str]) -> str:
    m = str(mode or "").strip().lower()
    if m == "creation":
        return "created"
    return m if m in SORT_MODES else DEFAULT_SORT_MODE


@dataclasses.dataclass
class ArcGroup:
    arc_id: str
    label: str
    ids: List[str]
    value_name: str = ""
    collapsed: bool = False


@dataclasses.dataclass
class SortResult:
    mode: str
    ordered_ids: List[str]
    indent_child_ids: Set[str] = dataclasses.field(default_factory=set)
    arc_groups: List[ArcGroup] = dataclasses.field(default_factory=list)


class ArcCollapseState:
    """Per-actor set of collapsed arc ids. UI state only, never persisted."""

    def __init__(self):
        self._collapsed: Dict[str, Set[str]] = defaultdict(set)

    def is_collapsed(self, actor_id: str, arc_id: str) -> bool:
        if not actor_id or not arc_id:
            return False
        return str(arc_id) in self._collapsed.get(str(actor_id), ())

    def set_collapsed(self, actor_id: str, arc_id: str, collapsed: bool) -> None:
        if not actor_id or not arc_id:
            return
        group = self._collapsed[str(actor_id)]
        if collapsed:
            group.add(str(arc_id))
        else:
            group.discard(str(arc_id))

    def toggle(self, actor_id: str, arc_id: str) -> bool:
        nxt = not self.is_collapsed(actor_id, arc_id)
        self.set_collapsed(actor_id, arc_id, nxt)
        return nxt


# ---------------------------------------------------------------------------
# Sort keys
# ---------------------------------------------------------------------------

def _time_key(item: Optional[ItemDoc]) -> float:
    if item is None:
        return math.inf
    try:
        t = float(item.created_time)
    except (TypeError, ValueError):
        return math.inf
    return t if math.isfinite(t) else math.inf


def _name_key(item: ItemDoc) -> str:
    return str(item.name or "").casefold()


def _created_key(item: ItemDoc):
    # Item.sort is the manual drag order, which belongs to "custom" only
    return (_time_key(item), _name_key(item), str(item.id))


def _alpha_key(item: ItemDoc):
    return (_name_key(item), int(item.sort or 0), str(item.id))


# ---------------------------------------------------------------------------
# Chain mode
# ---------------------------------------------------------------------------

def _arc_blocks(actor: ActorDoc, logs: List[ItemDoc]) -> List[dict]:
    by_id = {log.id: log for log in logs}
    graph = LogGraph(actor)
    candidates: List[dict] = []

    arc_ends = [(log, log.get_flag(ARC_INFO)) for log in logs]
    arc_ends = [(log, arc) for log, arc in arc_ends if arc is not None and arc.is_arc]

    for log, arc in arc_ends:
        value_id = arc.value_id or graph.primary_value_for(log)

        steps = arc.steps
        if steps <= 0:
            steps = len(arc.chain_log_ids) or 1

        chain_ids: List[str] = []
        if value_id:
            disallow: Set[str] = set()
            for other, other_arc in arc_ends:
                if other.id != log.id:
                    disallow.update(other_arc.chain_log_ids)
            incoming = get_callback_edges_for_value(actor, value_id)
            full = compute_best_chain_ending_at(incoming, log.id, disallow).chain_log_ids
            chain_ids = full[-steps:] if len(full) > steps else full

        # Older arcs may have no usable links left; trust what was stored
        if not chain_ids:
            chain_ids = list(arc.chain_log_ids)

        present = [cid for cid in chain_ids if cid in by_id]
        if not present:
            continue
        value = actor.get(value_id)
        candidates.append({
            "arc_id": log.id,
            "ids": present,
            "max_time": max(_time_key(by_id[cid]) for cid in present),
            "value_name": value.name if value is not None else "",
        })

    # Claim in block order, so a shorter or older arc keeps its logs
    candidates.sort(key=lambda b: (len(b["ids"]), b["max_time"]))
    blocks: List[dict] = []
    claimed: Set[str] = set()
    for block in candidates:
        if any(cid in claimed for cid in block["ids"]):
            logger.debug("arc %s overlaps an earlier arc block; skipped", block["arc_id"])
            continue
        claimed.update(block["ids"])
        blocks.append(block)
    return blocks


def _components(graph: LogGraph, logs: List[ItemDoc]) -> List[List[ItemDoc]]:
    by_id = {log.id: log for log in logs}
    adj = graph.chain_component_adjacency(logs)
    seen: Set[str] = set()
    out: List[List[ItemDoc]] = []
    for log in logs:
        if log.id in seen:
            continue
        stack = [log.id]
        seen.add(log.id)
        members: List[str] = []
        while stack:
            cur = stack.pop()
            members.append(cur)
            for nxt in adj.get(cur, ()):
                if nxt not in seen and nxt in by_id:
                    seen.add(nxt)
                    stack.append(nxt)
        out.append([by_id[m] for m in members])
    return out


def _order_component(items: List[ItemDoc], parents: Dict[str, str]) -> List[ItemDoc]:
    """Pre-order walk: parent first, siblings oldest first."""
    by_id = {i.id: i for i in items}
    children: Dict[str, List[str]] = defaultdict(list)
    roots: List[str] = []
    for item in items:
        parent = parents.get(item.id)
        if parent and parent in by_id:
            children[parent].append(item.id)
        else:
            roots.append(item.id)

    def by_time(iid: str):
        return (_time_key(by_id[iid]), iid)

    roots.sort(key=by_time)
    for kids in children.values():
        kids.sort(key=by_time)

    visited: Set[str] = set()
    ordered: List[ItemDoc] = []

    def visit(iid: str) -> None:
        stack = [iid]
        while stack:
            cur = stack.pop()
            if cur in visited:
                continue
            visited.add(cur)
            ordered.append(by_id[cur])
            stack.extend(reversed(children.get(cur, ())))

    for root in roots:
        visit(root)

    # A parent cycle leaves nodes without a root; keep them, oldest first
    if len(ordered) != len(items):
        for iid in sorted((i.id for i in items if i.id not in visited), key=by_time):
            visit(iid)
    return ordered


def _chain_sort(actor: ActorDoc, logs: List[ItemDoc], collapse: Optional[ArcCollapseState]) -> SortResult:
    graph = LogGraph(actor)
    blocks = _arc_blocks(actor, logs)
    arc_groups = []
    for idx, block in enumerate(blocks):
        label = f"Arc {idx + 1}"
        if block["value_name"]:
            label += f" ({block['value_name']})"
        arc_groups.append(ArcGroup(
            arc_id=block["arc_id"],
            label=label,
            ids=block["ids"],
            value_name=block["value_name"],
            collapsed=collapse.is_collapsed(actor.id, block["arc_id"]) if collapse else False,
        ))

    in_arcs = {iid for g in arc_groups for iid in g.ids}
    remaining = [log for log in logs if log.id not in in_arcs]
    parents = graph.valid_parent_map(remaining)

    components = []
    for members in _components(graph, remaining):
        ordered = _order_component(members, parents)
        components.append((min(_time_key(i) for i in ordered), ordered))
    components.sort(key=lambda c: c[0])

    ordered_ids = [iid for g in arc_groups for iid in g.ids]
    ordered_ids += [item.id for _, comp in components for item in comp]

    # Anything both passes missed goes last, oldest first
    placed = set(ordered_ids)
    leftovers = sorted((log for log in logs if log.id not in placed), key=_created_key)
    if leftovers:
        logger.warning("chain sort left %d logs unplaced on actor %s", len(leftovers), actor.id)
        ordered_ids += [log.id for log in leftovers]

    return SortResult(
        mode="chain",
        ordered_ids=ordered_ids,
        indent_child_ids=set(graph.valid_parent_map().keys()),
        arc_groups=arc_groups,
    )


def sort_logs(actor: ActorDoc, mode: Optional[str], collapse: Optional[ArcCollapseState] = None) -> SortResult:
    """Order an actor's logs for display."""
    sort_mode = normalize_sort_mode(mode)
    logs = actor.logs()

    if sort_mode == "custom":
        return SortResult(mode=sort_mode, ordered_ids=[log.id for log in logs])
    if sort_mode == "alpha":
        return SortResult(mode=sort_mode, ordered_ids=[log.id for log in sorted(logs, key=_alpha_key)])
    if sort_mode == "chain":
        return _chain_sort(actor, logs, collapse)
    return SortResult(mode=sort_mode, ordered_ids=[log.id for log in sorted(logs, key=_created_key)])


# ---------------------------------------------------------------------------
# Persisted preference
# ---------------------------------------------------------------------------

def get_sort_mode_for_actor(actor: Optional[ActorDoc]) -> str:
    if actor is None:
        return DEFAULT_SORT_MODE
    return normalize_sort_mode(actor.get_flag(MISSION_LOG_SORT_MODE))


async def set_sort_mode_for_actor(store, actor: ActorDoc, mode: str) -> str:
    normalized = normalize_sort_mode(mode)
    await store.set_flag(actor.id, None, MISSION_LOG_SORT_MODE, normalized)
    return normalized
