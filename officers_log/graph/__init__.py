from officers_log.graph.arc_chains import (
    ArcEligibility,
    ChainResult,
    build_arc_info,
    compute_best_chain_ending_at,
    get_arc_eligibility,
    get_arcs_earned,
    get_callback_edges_for_value,
    get_consumed_arc_log_ids,
)
from officers_log.graph.eligibility import is_callback_target_compatible
from officers_log.graph.log_graph import LogGraph, milestone_child_log_ids
from officers_log.graph.log_sorting import (
    ArcCollapseState,
    ArcGroup,
    SortResult,
    get_sort_mode_for_actor,
    normalize_sort_mode,
    set_sort_mode_for_actor,
    sort_logs,
)
