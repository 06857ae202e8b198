"""
Arc chain engine.

Callback links form a directed "calls back to" graph per value.  An arc is
a long enough chain of those links ending at the current log; completed
arcs consume their member logs so no log counts toward two arcs.

The search is a memoized longest-path walk over predecessors.  Cycles are
possible with hand-edited data and are treated as chain breaks, never as
errors.
"""
from __future__ import annotations

import dataclasses
from typing import Dict, Iterable, List, Optional, Set

from officers_log.config import get_settings
from officers_log.documents import ActorDoc
from officers_log.schemas.flags import ARC_INFO, CALLBACK_LINK, ArcInfo


@dataclasses.dataclass(frozen=True)
class ChainResult:
    length: int
    chain_log_ids: List[str]


@dataclasses.dataclass(frozen=True)
class ArcEligibility:
    qualifies: bool
    arcs_earned: int
    required_length: int
    chain_length: int
    chain_log_ids: List[str]
    chain_for_arc: List[str]
    consumed_count: int


def get_arcs_earned(actor: Optional[ActorDoc]) -> int:
    if actor is None:
        return 0
    count = 0
    for log in actor.logs():
        arc = log.get_flag(ARC_INFO)
        if arc is not None and arc.is_arc:
            count += 1
    return count


def get_consumed_arc_log_ids(actor: Optional[ActorDoc]) -> Set[str]:
    """Every log id already claimed by a completed arc."""
    consumed: Set[str] = set()
    if actor is None:
        return consumed
    for log in actor.logs():
        arc = log.get_flag(ARC_INFO)
        if arc is None or not arc.is_arc:
            continue
        consumed.update(arc.chain_log_ids)
    return consumed


def get_callback_edges_for_value(actor: ActorDoc, value_id: str) -> Dict[str, List[str]]:
    """child id -> predecessor ids, restricted to links recorded under ``value_id``.

    Order follows the actor's item order so the first-max tie-break in
    :func:`compute_best_chain_ending_at` is deterministic.
    """
    incoming: Dict[str, List[str]] = {}
    for log in actor.logs():
        link = log.get_flag(CALLBACK_LINK)
        if link is None or link.value_id != value_id:
            continue
        src, dst = link.from_log_id, log.id
        if not src or not dst or src == dst:
            continue
        preds = incoming.setdefault(dst, [])
        if src not in preds:
            preds.append(src)
    return incoming


def compute_best_chain_ending_at(
    incoming: Dict[str, List[str]],
    end_log_id: str,
    disallow_node_ids: Optional[Iterable[str]] = None,
) -> ChainResult:
    """Longest chain of predecessors ending at ``end_log_id``, oldest first."""
    disallow = set(disallow_node_ids or ())
    memo: Dict[str, tuple] = {}  # node -> (length, prev)
    visiting: Set[str] = set()

    def visit(node: str) -> tuple:
        if node in disallow:
            memo[node] = (0, None)
            return memo[node]
        if node in memo:
            return memo[node]
        if node in visiting:
            # cycle: break the chain here
            memo[node] = (1, None)
            return memo[node]

        visiting.add(node)
        best = (1, None)
        for pred in incoming.get(node, ()):
            if pred in disallow:
                continue
            pred_len = visit(pred)[0]
            if not pred_len:
                continue
            if pred_len + 1 > best[0]:
                best = (pred_len + 1, pred)
        visiting.discard(node)
        memo[node] = best
        return best

    end_len = visit(end_log_id)[0]
    if not end_len:
        return ChainResult(length=0, chain_log_ids=[])

    chain: List[str] = []
    seen: Set[str] = set()
    cur: Optional[str] = end_log_id
    while cur and cur not in seen:
        seen.add(cur)
        chain.append(cur)
        cur = memo.get(cur, (0, None))[1]
    chain.reverse()
    return ChainResult(length=end_len, chain_log_ids=chain)


def get_arc_eligibility(actor: ActorDoc, value_id: str, end_log_id: str) -> ArcEligibility:
    """Whether the chain ending at ``end_log_id`` completes an arc for ``value_id``.

    The n-th arc on a character needs ``base_arc_length + n - 1`` linked logs.
    """
    arcs_earned = get_arcs_earned(actor)
    required = get_settings().base_arc_length + arcs_earned
    consumed = get_consumed_arc_log_ids(actor)
    incoming = get_callback_edges_for_value(actor, value_id)
    result = compute_best_chain_ending_at(incoming, end_log_id, consumed)

    ids = result.chain_log_ids
    chain_for_arc = ids[-required:] if len(ids) >= required else list(ids)
    return ArcEligibility(
        qualifies=result.length >= required,
        arcs_earned=arcs_earned,
        required_length=required,
        chain_length=result.length,
        chain_log_ids=list(ids),
        chain_for_arc=chain_for_arc,
        consumed_count=len(consumed),
    )


def build_arc_info(eligibility: ArcEligibility, value_id: str) -> Optional[ArcInfo]:
    if not eligibility.qualifies:
        return None
    return ArcInfo(
        is_arc=True,
        steps=eligibility.required_length,
        value_id=value_id,
        chain_log_ids=list(eligibility.chain_for_arc),
    )
