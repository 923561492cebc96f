"""Unit tests for exemption parsing and evaluation."""

import pytest

from admission.core.errors import ConfigMalformedError
from admission.schemas.context import RequestContext
from admission.services.exemption_evaluator import ExemptionEvaluator, parse_exemption_list


class TestParseExemptionList:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (None, frozenset()),
            ("", frozenset()),
            ("null", frozenset()),
            ('["admin", "ops"]', frozenset({"admin", "ops"})),
            (["a", "b"], frozenset({"a", "b"})),
            (frozenset({"x"}), frozenset({"x"})),
        ],
    )
    def test_accepted_shapes(self, raw, expected) -> None:
        assert parse_exemption_list(raw) == expected

    @pytest.mark.parametrize("raw", ["not json", '{"a": 1}', "[1, 2]", '"admin"', 42])
    def test_rejected_shapes(self, raw) -> None:
        with pytest.raises(ConfigMalformedError):
            parse_exemption_list(raw)


class TestExemptionEvaluator:
    def test_no_exemptions_configured(self, make_policy) -> None:
        evaluator = ExemptionEvaluator()

        assert evaluator.is_exempt(make_policy(), RequestContext(ip="1.2.3.4")) is False

    @pytest.mark.parametrize(
        ("field", "context"),
        [
            ("exempt_roles", RequestContext(user_roles=("user", "admin"))),
            ("exempt_users", RequestContext(user_id="match")),
            ("exempt_ips", RequestContext(ip="match")),
            ("exempt_api_keys", RequestContext(api_key="match")),
        ],
    )
    def test_each_rule_exempts(self, make_policy, field, context) -> None:
        values = {"admin"} if field == "exempt_roles" else {"match"}
        policy = make_policy(**{field: values})

        assert ExemptionEvaluator().is_exempt(policy, context) is True

    def test_json_text_lists_are_parsed(self, make_policy) -> None:
        policy = make_policy(exempt_ips='["10.0.0.1", "10.0.0.2"]')

        assert ExemptionEvaluator().is_exempt(policy, RequestContext(ip="10.0.0.2")) is True

    def test_malformed_list_is_treated_as_empty(self, make_policy, caplog) -> None:
        policy = make_policy(exempt_users="{broken", exempt_ips=["1.2.3.4"])
        evaluator = ExemptionEvaluator()

        assert evaluator.is_exempt(policy, RequestContext(user_id="anyone")) is False
        assert evaluator.is_exempt(policy, RequestContext(user_id="anyone", ip="1.2.3.4")) is True
        assert any(r.message == "exemption.config_malformed" for r in caplog.records)

    def test_results_are_cached_per_identity(self, make_policy) -> None:
        policy = make_policy(exempt_users=["vip"])
        evaluator = ExemptionEvaluator()

        evaluator.is_exempt(policy, RequestContext(user_id="vip"))
        evaluator.is_exempt(policy, RequestContext(user_id="vip"))
        evaluator.is_exempt(policy, RequestContext(user_id="other"))

        stats = evaluator.stats()
        assert stats["hits"] == 1
        assert stats["entries"] == 2

    def test_invalidate_policy_drops_cached_results(self, make_policy) -> None:
        policy = make_policy(exempt_users=["vip"])
        evaluator = ExemptionEvaluator()
        evaluator.is_exempt(policy, RequestContext(user_id="vip"))

        assert evaluator.invalidate_policy(policy.id) == 1
        assert evaluator.stats()["entries"] == 0
