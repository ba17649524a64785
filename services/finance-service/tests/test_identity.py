import httpx
import pytest

from identity import (
    NullTokenVerifier,
    SupabaseTokenVerifier,
    bearer_token,
    build_token_verifier,
)
from shared.provider_settings import ProviderSettingsError


def _verifier(handler) -> SupabaseTokenVerifier:
    return SupabaseTokenVerifier(
        "https://project.supabase.co/",
        "service-role-key",
        transport=httpx.MockTransport(handler),
    )


def test_valid_token_resolves_to_user_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "user-123", "email": "student@example.com"})

    assert _verifier(handler).verify_token("jwt-token") == "user-123"
    assert str(seen[0].url) == "https://project.supabase.co/auth/v1/user"
    assert seen[0].headers["authorization"] == "Bearer jwt-token"
    assert seen[0].headers["apikey"] == "service-role-key"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, json={"message": "invalid JWT"}),
        httpx.Response(200, json={"email": "no-id@example.com"}),
        httpx.Response(200, text="not json"),
    ],
)
def test_unverifiable_tokens_resolve_to_none(response: httpx.Response) -> None:
    assert _verifier(lambda request: response).verify_token("jwt-token") is None


def test_network_failure_resolves_to_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert _verifier(handler).verify_token("jwt-token") is None


def test_empty_token_skips_the_call() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert _verifier(handler).verify_token("") is None


@pytest.mark.parametrize(
    "header,expected",
    [
        ("Bearer abc.def", "abc.def"),
        ("bearer   abc ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        (None, None),
    ],
)
def test_bearer_token_extraction(header, expected) -> None:
    assert bearer_token(header) == expected


def test_factory_selects_verifier(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AUTH_PROVIDER", raising=False)
    assert isinstance(build_token_verifier(), NullTokenVerifier)

    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role-key")
    assert isinstance(build_token_verifier("supabase"), SupabaseTokenVerifier)


def test_factory_rejects_incomplete_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    with pytest.raises(ProviderSettingsError):
        build_token_verifier("supabase")
    with pytest.raises(ProviderSettingsError):
        build_token_verifier("ldap")
