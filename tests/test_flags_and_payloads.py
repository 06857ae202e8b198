"""Tests for typed flag parsing and WebSocket payload validation."""

import pytest

from officers_log.schemas.flags import (
    ARC_INFO,
    CALLBACK_LINK,
    CALLBACK_LINK_DISABLED,
    MILESTONE_BENEFIT,
    ArcInfo,
    CallbackLink,
    dump_flag,
    parse_flag,
)
from officers_log.schemas.ws_messages import VALID_ACTIONS, validate_ws_payload


class TestParseFlag:

    def test_callback_link_from_camel_case(self):
        link = parse_flag(CALLBACK_LINK, {"fromLogId": "a", "valueId": "v1", "milestoneId": "m1"})
        assert isinstance(link, CallbackLink)
        assert (link.from_log_id, link.value_id, link.milestone_id) == ("a", "v1", "m1")

    def test_numeric_ids_become_strings(self):
        link = parse_flag(CALLBACK_LINK, {"fromLogId": 42, "valueId": 7})
        assert link.from_log_id == "42"
        assert link.value_id == "7"

    def test_unset_and_unknown_are_none(self):
        assert parse_flag(CALLBACK_LINK, None) is None
        assert parse_flag("somethingElse", {"a": 1}) is None

    def test_malformed_value_is_treated_as_absent(self):
        assert parse_flag(ARC_INFO, {"isArc": True, "steps": "many"}) is None
        assert parse_flag(CALLBACK_LINK, "not a dict") is None

    def test_arc_chain_ids_are_cleaned(self):
        arc = parse_flag(ARC_INFO, {"isArc": True, "steps": 2, "chainLogIds": ["a", None, "", "b"]})
        assert arc.chain_log_ids == ["a", "b"]

    def test_arc_chain_ids_not_a_list(self):
        arc = parse_flag(ARC_INFO, {"isArc": True, "chainLogIds": "a,b"})
        assert arc.chain_log_ids == []

    def test_milestone_benefit_sync_policy_is_checked(self):
        assert parse_flag(MILESTONE_BENEFIT, {"syncPolicy": "sometimes"}) is None
        assert parse_flag(MILESTONE_BENEFIT, {"syncPolicy": "once"}).sync_policy == "once"


class TestDumpFlag:

    def test_model_dumps_with_aliases(self):
        raw = dump_flag(ARC_INFO, ArcInfo(is_arc=True, steps=3, value_id="v1", chain_log_ids=["a", "b", "c"]))
        assert raw == {"isArc": True, "steps": 3, "valueId": "v1", "chainLogIds": ["a", "b", "c"]}

    def test_plain_dict_is_validated_then_dumped(self):
        raw = dump_flag(CALLBACK_LINK, {"fromLogId": "a"})
        assert raw == {"fromLogId": "a", "valueId": "", "milestoneId": None}

    def test_scalar_flag(self):
        assert dump_flag(CALLBACK_LINK_DISABLED, True) is True

    def test_unknown_key_raises(self):
        with pytest.raises(KeyError):
            dump_flag("notAFlag", 1)

    def test_round_trip_through_store_form(self):
        link = CallbackLink(from_log_id="a", value_id="v1")
        assert parse_flag(CALLBACK_LINK, dump_flag(CALLBACK_LINK, link)) == link


class TestValidateWsPayload:

    def test_every_action_has_a_schema(self):
        for action in VALID_ACTIONS:
            ok, result = validate_ws_payload(action, {})
            # Required fields missing, but the action itself is known
            assert not (ok is False and str(result).startswith("Unknown action"))

    def test_unknown_action(self):
        ok, err = validate_ws_payload("warp-core-breach", {})
        assert ok is False
        assert err == "Unknown action: warp-core-breach"

    def test_link_log_defaults_to_unlink(self):
        ok, data = validate_ws_payload("link-log", {"actor_id": "a1", "log_id": "l1"})
        assert ok is True
        assert data["from_log_id"] == ""
        assert data["value_id"] == ""

    def test_missing_required_field_is_named(self):
        ok, err = validate_ws_payload("link-log", {"log_id": "l1"})
        assert ok is False
        assert "actor_id" in err

    def test_callback_response_action_must_be_yes_or_no(self):
        ok, _ = validate_ws_payload("callback-response", {"request_id": "r1", "action": "maybe"})
        assert ok is False
        ok, data = validate_ws_payload("callback-response", {"request_id": "r1", "action": "no"})
        assert ok is True
        assert data["value_state"] == "positive"

    def test_callback_prompt_value_state(self):
        base = {"actor_id": "a1", "target_user_id": "u1"}
        ok, data = validate_ws_payload("callback-prompt", base)
        assert ok is True
        assert data["as_gm"] is False
        ok, _ = validate_ws_payload("callback-prompt", {**base, "default_value_state": "ecstatic"})
        assert ok is False

    def test_choose_benefit_nests_the_benefit(self):
        ok, data = validate_ws_payload("choose-benefit", {
            "actor_id": "a1", "log_id": "l1",
            "benefit": {"action": "attr", "key": "daring"},
        })
        assert ok is True
        assert data["benefit"]["applied"] is True
        assert data["benefit"]["key"] == "daring"

    def test_oversized_id_rejected(self):
        ok, _ = validate_ws_payload("toggle-arc", {"actor_id": "a1", "arc_id": "x" * 65})
        assert ok is False
