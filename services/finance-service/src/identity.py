"""
Token verification collaborator.

The finance service never manages users itself. It only asks an identity
backend whether a bearer token belongs to someone and, if so, who. A token that
cannot be verified for any reason resolves to no user, which means "do not
persist", never "fail the request".
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Protocol, runtime_checkable

import httpx

from shared.observability.privacy import hash_payload, mask_secret
from shared.observability.telemetry import CORRELATION_ID_HEADER, current_request_id
from shared.provider_settings import ProviderSettingsError, parse_float

logger = logging.getLogger(__name__)

SUPPORTED_AUTH_PROVIDERS = {"none", "supabase"}
DEFAULT_AUTH_TIMEOUT_SECONDS = 5.0


@runtime_checkable
class TokenVerifier(Protocol):
    name: str

    def verify_token(self, token: str) -> Optional[str]:
        """Return the user id the token belongs to, or None."""
        ...


class NullTokenVerifier:
    """Accepts no tokens; analyses are never persisted."""

    name = "none"

    def verify_token(self, token: str) -> Optional[str]:
        return None


class SupabaseTokenVerifier:
    """Resolves tokens through the Supabase auth `user` endpoint."""

    name = "supabase"

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        timeout_seconds: float = DEFAULT_AUTH_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._user_url = f"{base_url.rstrip('/')}/auth/v1/user"
        self._service_key = service_key
        self._timeout = timeout_seconds
        self._transport = transport

    def verify_token(self, token: str) -> Optional[str]:
        if not token:
            return None

        headers = {"apikey": self._service_key, "Authorization": f"Bearer {token}"}
        request_id = current_request_id()
        if request_id:
            headers[CORRELATION_ID_HEADER] = request_id

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(self._user_url, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                {
                    "event": "token_verification_failed",
                    "provider": self.name,
                    "token_hash": hash_payload(token),
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            return None

        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(user_id, str) or not user_id:
            logger.warning({"event": "token_verification_no_user", "provider": self.name})
            return None
        return user_id


def bearer_token(authorization: str | None) -> Optional[str]:
    """Pull the token out of an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def build_token_verifier(name: str | None = None) -> TokenVerifier:
    provider = (name if name is not None else os.getenv("AUTH_PROVIDER", "none")).strip().lower() or "none"
    if provider not in SUPPORTED_AUTH_PROVIDERS:
        raise ProviderSettingsError(
            f"Unsupported auth provider '{provider}'. Expected one of: {', '.join(sorted(SUPPORTED_AUTH_PROVIDERS))}."
        )
    if provider == "none":
        return NullTokenVerifier()

    base_url = (os.getenv("SUPABASE_URL") or "").strip()
    service_key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not base_url or not service_key:
        raise ProviderSettingsError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required when AUTH_PROVIDER=supabase")

    timeout = parse_float(os.getenv("AUTH_TIMEOUT_SECONDS"), DEFAULT_AUTH_TIMEOUT_SECONDS, "AUTH_TIMEOUT_SECONDS")
    if timeout <= 0:
        raise ProviderSettingsError("AUTH_TIMEOUT_SECONDS must be positive")
    logger.info(
        {
            "event": "token_verifier_configured",
            "provider": provider,
            "base_url": base_url,
            "service_key": mask_secret(service_key),
        }
    )
    return SupabaseTokenVerifier(base_url, service_key, timeout_seconds=timeout)
