"""Per-character view over logs, their callback links and completed arcs."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Set

from officers_log.documents import ActorDoc, ItemDoc
from officers_log.graph.arc_chains import get_consumed_arc_log_ids
from officers_log.graph.eligibility import is_callback_target_compatible
from officers_log.mission import is_log_used
from officers_log.schemas.flags import (
    ARC_INFO,
    CALLBACK_LINK,
    CALLBACK_LINK_DISABLED,
    CALLBACK_VALUE_ID,
    PRIMARY_VALUE_ID,
    CallbackLink,
)
from officers_log.values import get_value_state_array, is_value_invoked_state

_CHILD_KEY = re.compile(r"^child[A-Z]$")
CHILD_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def milestone_child_log_ids(milestone: ItemDoc) -> List[str]:
    """Log ids in a milestone's lettered child slots (childA, childB, ...)."""
    keys = sorted(k for k in milestone.system if _CHILD_KEY.match(k))
    out = []
    for key in keys:
        val = str(milestone.system.get(key) or "")
        if val and val != "-":
            out.append(val)
    return out


def milestone_is_arc(milestone: ItemDoc) -> bool:
    return bool((milestone.system.get("arc") or {}).get("isArc"))


class LogGraph:
    """Read-only derived views over one actor snapshot.

    Build a new instance per snapshot; nothing here is refreshed in place.
    """

    def __init__(self, actor: ActorDoc):
        self.actor = actor
        self.logs: List[ItemDoc] = actor.logs()
        self.logs_by_id: Dict[str, ItemDoc] = {log.id: log for log in self.logs}
        self._primary_cache: Dict[str, str] = {}
        self._boundaries: Optional[Set[str]] = None

    # ------------------------------------------------------------------
    # Link accessors
    # ------------------------------------------------------------------

    @staticmethod
    def is_link_disabled(log: ItemDoc) -> bool:
        return log.get_flag(CALLBACK_LINK_DISABLED) is True

    def active_link(self, log: ItemDoc) -> Optional[CallbackLink]:
        """The log's outgoing callback edge unless missing or manually disabled."""
        if self.is_link_disabled(log):
            return None
        link = log.get_flag(CALLBACK_LINK)
        if link is None or not link.from_log_id:
            return None
        return link

    def callback_target_ids(self) -> Set[str]:
        """Logs already claimed as a callback target by some active link."""
        out = set()
        for log in self.logs:
            link = self.active_link(log)
            if link:
                out.add(link.from_log_id)
        return out

    def incoming_children(self, log_id: str) -> List[ItemDoc]:
        return [
            log for log in self.logs
            if (link := self.active_link(log)) is not None and link.from_log_id == log_id
        ]

    # ------------------------------------------------------------------
    # Arc views
    # ------------------------------------------------------------------

    def consumed_arc_node_ids(self) -> Set[str]:
        return get_consumed_arc_log_ids(self.actor)

    def completed_arc_boundary_ids(self, include_milestones: bool = True) -> Set[str]:
        """Arc-ending logs, plus the last child of every completed arc milestone."""
        if include_milestones and self._boundaries is not None:
            return self._boundaries
        ends: Set[str] = set()
        for log in self.logs:
            arc = log.get_flag(ARC_INFO)
            if arc is not None and arc.is_arc:
                ends.add(log.id)

        if not include_milestones:
            return ends

        # Older worlds recorded arcs on milestones only
        for ms in self.actor.milestones():
            if not milestone_is_arc(ms):
                continue
            try:
                steps = int((ms.system.get("arc") or {}).get("steps") or 0)
            except (TypeError, ValueError):
                continue
            if steps <= 0:
                continue
            child_ids = milestone_child_log_ids(ms)
            if len(child_ids) != steps:
                continue
            ends.add(child_ids[-1])
        self._boundaries = ends
        return ends

    def is_arc_boundary(self, log_id: str) -> bool:
        return log_id in self.completed_arc_boundary_ids()

    # ------------------------------------------------------------------
    # Primary value
    # ------------------------------------------------------------------

    def primary_value_for(self, log: Optional[ItemDoc]) -> str:
        """Explicit flag, else link value, else arc value, else ``""`` (unknown).

        Never inferred from the log icon: icons derive from Value order.
        """
        if log is None or log.type != "log":
            return ""
        cached = self._primary_cache.get(log.id)
        if cached is not None:
            return cached

        primary = log.get_flag(PRIMARY_VALUE_ID) or ""
        if not primary:
            link = log.get_flag(CALLBACK_LINK)
            primary = link.value_id if link else ""
        if not primary:
            arc = log.get_flag(ARC_INFO)
            primary = arc.value_id if arc else ""
        self._primary_cache[log.id] = primary
        return primary

    def _value_consistent(self, a_id: str, b_id: str, value_id: str) -> bool:
        if not value_id:
            return True
        a_primary = self.primary_value_for(self.logs_by_id.get(a_id))
        b_primary = self.primary_value_for(self.logs_by_id.get(b_id))
        if a_primary and a_primary != value_id:
            return False
        if b_primary and b_primary != value_id:
            return False
        return True

    # ------------------------------------------------------------------
    # Chain structure
    # ------------------------------------------------------------------

    def valid_parent_map(self, logs: Optional[Iterable[ItemDoc]] = None) -> Dict[str, str]:
        """child id -> parent id for links that survive the chain rules.

        Dropped: disabled links, parents outside ``logs``, parents already
        consumed by or ending a completed arc (the next mission starts a new
        chain), and links whose value disagrees with either end's primary value.
        """
        pool = list(self.logs if logs is None else logs)
        pool_ids = {log.id for log in pool}
        boundaries = self.completed_arc_boundary_ids() | self.consumed_arc_node_ids()

        parents: Dict[str, str] = {}
        for log in pool:
            link = self.active_link(log)
            if link is None:
                continue
            parent_id = link.from_log_id
            if parent_id not in pool_ids or parent_id in boundaries:
                continue
            if not self._value_consistent(log.id, parent_id, link.value_id):
                continue
            parents[log.id] = parent_id
        return parents

    def chain_component_adjacency(self, logs: Iterable[ItemDoc]) -> Dict[str, Set[str]]:
        """Undirected adjacency from callback links plus milestone-derived edges."""
        pool = list(logs)
        pool_ids = {log.id for log in pool}
        boundaries = self.completed_arc_boundary_ids()
        disabled = {log.id for log in pool if self.is_link_disabled(log)}
        adj: Dict[str, Set[str]] = {log.id: set() for log in pool}

        def connect(a: str, b: str) -> None:
            adj.setdefault(a, set()).add(b)
            adj.setdefault(b, set()).add(a)

        for child, parent in self.valid_parent_map(pool).items():
            connect(child, parent)

        for ms in self.actor.milestones():
            child_ids = [cid for cid in milestone_child_log_ids(ms) if cid in pool_ids]
            if not child_ids:
                continue
            ms_value = ms.get_flag(CALLBACK_VALUE_ID) or ""

            if milestone_is_arc(ms):
                for a, b in zip(child_ids, child_ids[1:]):
                    if b in disabled:
                        continue
                    if not self._value_consistent(a, b, ms_value):
                        continue
                    connect(a, b)
            else:
                a = str(ms.system.get("childA") or "")
                b = str(ms.system.get("childB") or "")
                if not a or not b or a not in pool_ids or b not in pool_ids:
                    continue
                if b in disabled:
                    continue
                if a in boundaries or b in boundaries:
                    continue
                if not self._value_consistent(a, b, ms_value):
                    continue
                connect(a, b)
        return adj

    # ------------------------------------------------------------------
    # Callback targets
    # ------------------------------------------------------------------

    def unclaimed_logs(self, exclude_log_id: Optional[str] = None) -> List[ItemDoc]:
        """Logs that could still be called back to: unused, untargeted, not the current log."""
        targeted = self.callback_target_ids()
        return [
            log for log in self.logs
            if log.id != exclude_log_id
            and log.id not in targeted
            and not is_log_used(log)
        ]

    def has_eligible_callback_target(self, mission_log_id: Optional[str], value_id: str) -> bool:
        """At least one unclaimed log invoked ``value_id`` and sits on a compatible chain."""
        if not value_id:
            return False
        # Without a mission log we can't tell what is current; let the prompt decide
        if not mission_log_id:
            return True
        for log in self.unclaimed_logs(mission_log_id):
            states = get_value_state_array(log, value_id)
            if not any(is_value_invoked_state(s) for s in states):
                continue
            if is_callback_target_compatible(
                value_id, self.primary_value_for(log), self.is_arc_boundary(log.id)
            ):
                return True
        return False
