"""
tests/test_registry.py - Rule Registry Tests

Verifies:
    - Candidate lookup in registration order
    - Composition through includes
    - Scoped rule visibility and release
    - Loading rule sets from dictionaries and YAML
"""
import logging
import operator

import pytest

from derivation import Rule, RuleSet, Term, Var, fact, proxy_rule
from derivation.cycle import Deferred

T = Var("T")
INT = Term("Int")
STR = Term("Str")


@pytest.fixture
def basics():
    return RuleSet(
        [
            fact(INT, 1, name="one"),
            fact(INT, 2, name="two"),
            fact(STR, "s", name="str"),
            Rule(Term("List", T), (T,), lambda x: [x], name="singleton"),
        ],
        name="basics",
    )


# =============================================================================
# QUERIES
# =============================================================================

class TestRulesFor:
    """Candidate selection."""

    def test_registration_order(self, basics):
        names = [c.rule.name for c in basics.rules_for(INT)]
        assert names == ["one", "two"]

    def test_polymorphic_candidate(self, basics):
        (candidate,) = basics.rules_for(Term("List", STR))
        assert candidate.rule.name == "singleton"
        assert candidate.antecedents == (STR,)
        assert candidate.substitution == {"T": STR}

    def test_no_match(self, basics):
        assert basics.rules_for(Term("Float")) == []

    def test_len_and_iteration(self, basics):
        assert len(basics) == 4
        assert basics.level == 1
        assert [r.name for r in basics] == ["one", "two", "str", "singleton"]

    def test_stats(self, basics):
        basics.rules_for(INT)
        basics.rules_for(Term("Float"))
        assert basics.stats == {"queries": 2, "candidates": 2}

    def test_warns_on_unreachable_rule(self, caplog):
        with caplog.at_level(logging.WARNING, logger="derivation.registry"):
            RuleSet([Rule(Term("Any"), (Term("Box", T),), lambda b: b)])
        assert "never be selected" in caplog.text


class TestIncludes:
    """Rule-set composition."""

    def test_included_rules_follow_own(self, basics):
        extra = RuleSet([fact(INT, 3, name="three")], name="extra")
        combined = RuleSet([fact(INT, 0, name="zero")], name="combined", includes=[basics, extra])
        names = [c.rule.name for c in combined.rules_for(INT)]
        assert names == ["zero", "one", "two", "three"]

    def test_diamond_includes_appear_once(self, basics):
        left = RuleSet([], includes=[basics])
        right = RuleSet([], includes=[basics])
        top = RuleSet([], includes=[left, right])
        assert len(top) == len(basics)

    def test_identities_are_distinct(self, basics):
        other = RuleSet(list(basics))
        assert other.identity != basics.identity
        assert basics.lineage == (basics.identity,)


# =============================================================================
# SCOPES
# =============================================================================

class TestScopedRules:
    """Temporary rule injection."""

    def test_scoped_rules_visible_inside(self, basics):
        injected = fact(Term("Service"), "svc", name="service")
        with basics.with_scoped_rules([injected]) as scope:
            (candidate,) = scope.rules_for(Term("Service"))
            assert candidate.rule is injected
            assert scope.is_scoped
            assert scope.lineage == (scope.identity, basics.identity)
        assert basics.rules_for(Term("Service")) == []

    def test_scoped_rules_tried_first(self, basics):
        override = fact(INT, 99, name="override")
        with basics.with_scoped_rules([override]) as scope:
            candidates = scope.rules_for(INT)
        assert [c.rule.name for c in candidates] == ["override", "one", "two"]
        assert [c.level for c in candidates] == [2, 1, 1]

    def test_scope_released_on_error(self, basics):
        injected = fact(Term("Service"), "svc")
        with pytest.raises(KeyError):
            with basics.with_scoped_rules([injected]) as scope:
                raise KeyError("boom")
        with pytest.raises(RuntimeError):
            scope.rules_for(Term("Service"))
        assert basics.rules_for(Term("Service")) == []

    def test_empty_scope_is_current_set(self, basics):
        with basics.with_scoped_rules([]) as scope:
            assert scope is basics

    def test_same_rules_give_same_scope_identity(self, basics):
        injected = (fact(Term("Service"), "svc"),)
        with basics.with_scoped_rules(injected) as first:
            first_identity = first.identity
        with basics.with_scoped_rules(injected) as second:
            assert second.identity == first_identity


# =============================================================================
# PERSISTENCE
# =============================================================================

RULES_YAML = """
name: arithmetic
rules:
  - name: zero
    consequent: Int
    value: 0
  - name: forty
    consequent: {type: term, functor: Base}
    value: 40
  - name: add
    description: Sum of two numbers
    consequent: Sum
    antecedents: [Base, Two]
    invoke: "operator:add"
  - name: two
    consequent: Two
    value: 2
proxies:
  - {type: term, functor: Node}
"""


class TestLoading:
    """Rule supply from dictionaries and YAML."""

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(RULES_YAML)

        rule_set = RuleSet.from_yaml(str(path))

        assert rule_set.name == "arithmetic"
        assert len(rule_set) == 5
        (add,) = rule_set.rules_for(Term("Sum"))
        assert add.rule.invoke is operator.add
        assert add.rule.description == "Sum of two numbers"
        assert add.antecedents == (Term("Base"), Term("Two"))

        (proxy,) = rule_set.rules_for(Term("Deferred", Term("Node")))
        handle = proxy.rule.apply([], proxy.goal)
        assert isinstance(handle, Deferred)
        assert handle.descriptor == Term("Node")

    def test_fact_value(self):
        rule_set = RuleSet.from_dict({"rules": [{"consequent": "Int", "value": 7}]})
        (candidate,) = rule_set.rules_for(INT)
        assert candidate.rule.apply([], INT) == 7

    def test_includes(self, basics):
        rule_set = RuleSet.from_dict({"rules": [{"consequent": "Int", "value": 7}]}, includes=[basics])
        assert len(rule_set.rules_for(INT)) == 3

    @pytest.mark.parametrize(
        "rule_data",
        [
            {"value": 1},
            {"consequent": "Int"},
            {"consequent": "Int", "invoke": "operator"},
            {"consequent": "Int", "invoke": "no_such_module_xyz:thing"},
            {"consequent": "Int", "invoke": "operator:no_such_attr"},
            {"consequent": "Int", "invoke": "math:pi"},
            {"consequent": "Int", "value": 1, "antecedents": ["Str"]},
            {"consequent": {"type": "var", "name": "T"}, "value": 1},
        ],
    )
    def test_invalid_rules(self, rule_data):
        with pytest.raises(ValueError):
            RuleSet.from_dict({"rules": [rule_data]})

    def test_proxy_rule_pattern(self):
        rule = proxy_rule(Term("List", T))
        rule_set = RuleSet([rule])
        assert rule_set.rules_for(Term("Deferred", Term("List", INT)))
        assert rule_set.rules_for(Term("Deferred", INT)) == []
