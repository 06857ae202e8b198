"""Tests for the arc chain engine: longest-chain search and arc eligibility."""

from officers_log.config import get_settings
from officers_log.graph.arc_chains import (
    build_arc_info,
    compute_best_chain_ending_at,
    get_arc_eligibility,
    get_arcs_earned,
    get_callback_edges_for_value,
    get_consumed_arc_log_ids,
)

from helpers import chain, make_actor, make_log

BASE = get_settings().base_arc_length


class TestComputeBestChain:

    def test_single_node(self):
        result = compute_best_chain_ending_at({}, "a")
        assert result.length == 1
        assert result.chain_log_ids == ["a"]

    def test_linear_chain_is_oldest_first(self):
        incoming = {"b": ["a"], "c": ["b"]}
        result = compute_best_chain_ending_at(incoming, "c")
        assert result.length == 3
        assert result.chain_log_ids == ["a", "b", "c"]

    def test_picks_longest_branch(self):
        incoming = {"d": ["x", "c"], "c": ["b"], "b": ["a"]}
        result = compute_best_chain_ending_at(incoming, "d")
        assert result.chain_log_ids == ["a", "b", "c", "d"]

    def test_tie_keeps_first_predecessor(self):
        incoming = {"d": ["b", "c"], "b": ["a"], "c": ["z"]}
        result = compute_best_chain_ending_at(incoming, "d")
        assert result.chain_log_ids == ["a", "b", "d"]

    def test_disallowed_end_has_no_chain(self):
        result = compute_best_chain_ending_at({"b": ["a"]}, "b", {"b"})
        assert result.length == 0
        assert result.chain_log_ids == []

    def test_disallowed_predecessor_breaks_chain(self):
        incoming = {"b": ["a"], "c": ["b"]}
        result = compute_best_chain_ending_at(incoming, "c", {"b"})
        assert result.chain_log_ids == ["c"]

    def test_cycle_terminates_without_repeats(self):
        incoming = {"a": ["b"], "b": ["a"]}
        result = compute_best_chain_ending_at(incoming, "a")
        ids = result.chain_log_ids
        assert ids[-1] == "a"
        assert len(ids) == len(set(ids))

    def test_self_cycle_is_harmless(self):
        result = compute_best_chain_ending_at({"a": ["a"]}, "a")
        assert result.chain_log_ids == ["a"]


class TestCallbackEdges:

    def test_filters_by_value(self):
        actor = make_actor(
            make_log("a", 1),
            make_log("b", 2, parent="a", value_id="v1"),
            make_log("c", 3, parent="a", value_id="v2"),
        )
        assert get_callback_edges_for_value(actor, "v1") == {"b": ["a"]}
        assert get_callback_edges_for_value(actor, "v2") == {"c": ["a"]}

    def test_skips_self_links(self):
        actor = make_actor(make_log("a", 1, parent="a", value_id="v1"))
        assert get_callback_edges_for_value(actor, "v1") == {}


class TestArcEligibility:

    def test_chain_of_base_length_qualifies(self):
        ids = [f"l{i}" for i in range(BASE)]
        actor = make_actor(*chain("v1", *ids))
        result = get_arc_eligibility(actor, "v1", ids[-1])
        assert result.qualifies is True
        assert result.required_length == BASE
        assert result.chain_for_arc == ids

    def test_short_chain_does_not_qualify(self):
        ids = [f"l{i}" for i in range(BASE - 1)]
        actor = make_actor(*chain("v1", *ids))
        result = get_arc_eligibility(actor, "v1", ids[-1])
        assert result.qualifies is False
        assert result.chain_for_arc == ids

    def test_arc_takes_only_the_newest_required_logs(self):
        ids = [f"l{i}" for i in range(BASE + 2)]
        actor = make_actor(*chain("v1", *ids))
        result = get_arc_eligibility(actor, "v1", ids[-1])
        assert result.chain_length == BASE + 2
        assert result.chain_for_arc == ids[-BASE:]

    def test_each_earned_arc_raises_the_requirement(self):
        first = [f"a{i}" for i in range(BASE)]
        logs = chain("v1", *first)
        logs[-1] = make_log(first[-1], BASE, parent=first[-2], value_id="v1", primary="v1",
                            arc={"is_arc": True, "steps": BASE, "value_id": "v1", "chain_log_ids": first})
        actor = make_actor(*logs, *chain("v2", "b0", "b1", "b2", "b3", start=10))
        assert get_arcs_earned(actor) == 1
        result = get_arc_eligibility(actor, "v2", "b3")
        assert result.required_length == BASE + 1
        assert result.arcs_earned == 1

    def test_consumed_logs_never_count_twice(self):
        first = ["a0", "a1", "a2"]
        logs = [
            make_log("a0", 1, primary="v1"),
            make_log("a1", 2, parent="a0", value_id="v1"),
            make_log("a2", 3, parent="a1", value_id="v1",
                     arc={"is_arc": True, "steps": 3, "value_id": "v1", "chain_log_ids": first}),
            make_log("n0", 4, parent="a2", value_id="v1"),
            make_log("n1", 5, parent="n0", value_id="v1"),
        ]
        actor = make_actor(*logs)
        assert get_consumed_arc_log_ids(actor) == set(first)
        result = get_arc_eligibility(actor, "v1", "n1")
        assert result.chain_log_ids == ["n0", "n1"]
        assert not set(result.chain_for_arc) & set(first)
        assert result.consumed_count == 3

    def test_other_values_are_ignored(self):
        actor = make_actor(
            make_log("a", 1),
            make_log("b", 2, parent="a", value_id="v2"),
            make_log("c", 3, parent="b", value_id="v1"),
        )
        result = get_arc_eligibility(actor, "v1", "c")
        assert result.chain_log_ids == ["b", "c"]


class TestBuildArcInfo:

    def test_none_when_not_qualifying(self):
        actor = make_actor(*chain("v1", "a"))
        assert build_arc_info(get_arc_eligibility(actor, "v1", "a"), "v1") is None

    def test_arc_info_carries_chain(self):
        ids = [f"l{i}" for i in range(BASE)]
        actor = make_actor(*chain("v1", *ids))
        arc = build_arc_info(get_arc_eligibility(actor, "v1", ids[-1]), "v1")
        assert arc.is_arc is True
        assert arc.steps == BASE
        assert arc.value_id == "v1"
        assert arc.chain_log_ids == ids
