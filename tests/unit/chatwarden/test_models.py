# -*- coding: utf-8 -*-
"""Tests for domain types."""

# Third-Party
import pytest

# First-Party
from chatwarden.models import Actor, EmojiUsage, MemberSet, PolicyChange, RuleSet, ScriptErrorKind, ScriptLimits, ScriptResult


def test_member_set_drops_blanks_and_duplicates():
    members = MemberSet.of(["1", "1", " ", ""], ["g"])
    assert members.users == frozenset({"1"})
    assert members.groups == frozenset({"g"})
    assert not members.is_empty
    assert MemberSet().is_empty


def test_rule_set_grants_user_or_group():
    rules = RuleSet(users=frozenset({"1"}), groups=frozenset({"g"}))
    assert rules.grants(Actor.of("1"))
    assert rules.grants(Actor.of("2", ["g"]))
    assert not rules.grants(Actor.of("2", ["h"]))


def test_apply_remove_wins_on_overlap():
    change = PolicyChange(add=MemberSet.of(["1"], ["g"]), remove=MemberSet.of(["1"]))
    result = RuleSet().apply(change)
    assert result.users == frozenset()
    assert result.groups == frozenset({"g"})


def test_apply_removing_absent_member_is_noop():
    rules = RuleSet(users=frozenset({"1"}))
    assert rules.apply(PolicyChange.revoke(users=["2"])) == rules


def test_to_dict_is_sorted():
    rules = RuleSet(users=frozenset({"b", "a"}), groups=frozenset({"z"}))
    assert rules.to_dict() == {"users": ["a", "b"], "groups": ["z"]}


def test_script_result_is_mutually_exclusive():
    with pytest.raises(ValueError):
        ScriptResult(output="x", error=ScriptResult.failure(ScriptErrorKind.TIMEOUT, "t").error)


def test_script_result_flags():
    assert ScriptResult.success("4").ok
    silent = ScriptResult.failure(ScriptErrorKind.RUNTIME_ERROR, None)
    assert not silent.ok
    assert silent.is_silent
    assert not ScriptResult.failure(ScriptErrorKind.RUNTIME_ERROR, "boom").is_silent


def test_script_limits_seconds():
    assert ScriptLimits(timeout_ms=1500).timeout_seconds == 1.5


def test_emoji_markup():
    assert EmojiUsage("1", "pog").markup == "<:pog:1>"
    assert EmojiUsage("2", "dance", animated=True).markup == "<a:dance:2>"
