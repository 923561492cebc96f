"""Unit tests for scope key derivation."""

import hashlib

import pytest

from admission.schemas.context import RequestContext
from admission.services.scope_key import build_scope_key, pattern_bucket


@pytest.mark.parametrize(
    ("scope_type", "context", "expected"),
    [
        ("global", RequestContext(ip="1.2.3.4"), "rl:k:global"),
        ("user", RequestContext(user_id="u-1"), "rl:k:user:u-1"),
        ("user", RequestContext(), "rl:k:user:anonymous"),
        ("ip", RequestContext(ip="1.2.3.4"), "rl:k:ip:1.2.3.4"),
        ("ip", RequestContext(), "rl:k:ip:unknown"),
        ("api_key", RequestContext(api_key="abc"), "rl:k:key:abc"),
        ("api_key", RequestContext(), "rl:k:key:none"),
        ("endpoint", RequestContext(endpoint="/v1/items"), "rl:k:endpoint:/v1/items"),
        ("role", RequestContext(user_roles=("admin", "user")), "rl:k:role:admin"),
        ("role", RequestContext(), "rl:k:role:norole"),
        ("service", RequestContext(service="billing"), "rl:k:service:billing"),
        ("service", RequestContext(), "rl:k:service:default"),
    ],
)
def test_dimension_per_scope_type(make_policy, scope_type, context, expected) -> None:
    policy = make_policy(limit_key="k", scope_type=scope_type)

    assert build_scope_key(policy, context) == expected


def test_matching_pattern_adds_endpoint_bucket(make_policy) -> None:
    policy = make_policy(limit_key="api_user", scope_type="user", scope_pattern=r"^/v1/reports")
    context = RequestContext(user_id="u-1", endpoint="/v1/reports/42")

    digest = hashlib.md5(b"/v1/reports/42").hexdigest()[:8]
    assert build_scope_key(policy, context) == f"rl:api_user:user:u-1:pattern:{digest}"


def test_non_matching_pattern_keeps_coarse_key(make_policy) -> None:
    policy = make_policy(limit_key="api_user", scope_type="user", scope_pattern=r"^/v1/reports")

    assert (
        build_scope_key(policy, RequestContext(user_id="u-1", endpoint="/v1/items"))
        == "rl:api_user:user:u-1"
    )


def test_malformed_pattern_never_matches() -> None:
    assert pattern_bucket("([unclosed", "/v1/items") is None
    assert pattern_bucket(None, "/v1/items") is None
    assert pattern_bucket(".*", None) is None


def test_scope_key_is_deterministic(make_policy) -> None:
    policy = make_policy(scope_type="ip")
    context = RequestContext(ip="10.0.0.1", user_id="ignored")

    assert build_scope_key(policy, context) == build_scope_key(policy, context)
