import pytest

from ideaboard.core.auth import bearer_token, issue_account_token, verify_account_token
from ideaboard.core.config import Settings
from ideaboard.core.errors import IdentityRequiredError, ValidationError
from ideaboard.core.identity import (
    Identity,
    TrustedNetworkPolicy,
    build_request_context,
    client_ip,
    display_name,
    resolve_identity,
)
from ideaboard.tests.mocks import AI_IDEA, TEST_JWT_SECRET


def _cfg(**overrides):
    values = {"JWT_SECRET": TEST_JWT_SECRET}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_session_header_resolves_to_session_identity():
    identity = resolve_identity({"x-session-id": " abc "}, _cfg())
    assert identity == Identity.session("abc")
    assert identity.key == "session:abc"


def test_no_credentials_is_anonymous():
    assert resolve_identity({}, _cfg()) is None


def test_overlong_session_id_rejected():
    with pytest.raises(ValidationError):
        resolve_identity({"x-session-id": "x" * 129}, _cfg())


def test_bearer_token_wins_over_session():
    cfg = _cfg()
    token = issue_account_token("user-7", cfg)
    identity = resolve_identity({"authorization": f"Bearer {token}", "x-session-id": "abc"}, cfg)
    assert identity == Identity.user("user-7")


def test_expired_token_rejected():
    cfg = _cfg()
    token = issue_account_token("user-7", cfg, expires_in_seconds=-60)
    with pytest.raises(IdentityRequiredError):
        verify_account_token(token, cfg)


def test_token_signed_with_other_secret_rejected():
    token = issue_account_token("user-7", _cfg(JWT_SECRET="someone-else-entirely-0123456789abcdef"))
    with pytest.raises(IdentityRequiredError):
        verify_account_token(token, _cfg())


def test_tokens_rejected_when_no_secret_configured():
    with pytest.raises(IdentityRequiredError):
        verify_account_token("anything", Settings(_env_file=None, JWT_SECRET=None))


def test_bearer_token_parsing():
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("Basic abc") is None
    assert bearer_token("Bearer ") is None
    assert bearer_token(None) is None


def test_client_ip_prefers_forwarded_for():
    assert client_ip({"x-forwarded-for": "198.51.100.1, 10.0.0.1"}, "127.0.0.1") == "198.51.100.1"
    assert client_ip({}, "127.0.0.1") == "127.0.0.1"
    assert client_ip({}, None) == "unknown"


def test_request_context_reads_shared_flag():
    ctx = build_request_context({"x-session-id": "s1", "x-shared-access": "TRUE"}, "1.2.3.4", _cfg())
    assert ctx.shared_access is True
    assert ctx.client_ip == "1.2.3.4"
    assert build_request_context({}, None, _cfg()).shared_access is False


def test_request_context_keeps_socket_peer_apart_from_forwarded_address():
    ctx = build_request_context({"x-forwarded-for": "10.0.0.5"}, "198.51.100.3", _cfg())
    assert ctx.client_ip == "10.0.0.5"
    assert ctx.peer_ip == "198.51.100.3"
    assert build_request_context({}, None, _cfg()).peer_ip == "unknown"


def test_trusted_network_policy():
    policy = TrustedNetworkPolicy(["10.0.0.0/8", "2001:db8::/32", "garbage"])
    assert policy.is_trusted("10.1.2.3")
    assert policy.is_trusted("::ffff:10.1.2.3")
    assert policy.is_trusted("2001:db8::1")
    assert not policy.is_trusted("192.168.1.1")
    assert not policy.is_trusted("unknown")
    assert not policy.is_trusted("not-an-ip")
    assert len(policy.networks) == 2
    assert not TrustedNetworkPolicy().is_trusted("10.1.2.3")


def test_display_name_is_stable_and_opaque():
    name = display_name(Identity.session("secret-token"))
    assert name == display_name(Identity.session("secret-token"))
    assert name.startswith("@u_")
    assert "secret" not in name
    assert name != display_name(Identity.user("secret-token"))


def test_account_can_submit_and_vote_over_http(client, test_settings):
    token = issue_account_token("acct-1", test_settings)
    auth = {"Authorization": f"Bearer {token}", "X-Forwarded-For": "203.0.113.30"}

    idea = client.post("/api/ideas", json={"body": AI_IDEA}, headers=auth)
    assert idea.status_code == 200
    assert idea.json()["is_owner"] is True

    session = client.get("/api/session", headers=auth).json()
    assert session["identity_kind"] == "user"
    assert session["session_id"] is None
    assert session["has_submitted"] is True
