import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, override
from urllib.parse import urlencode

import requests
from django.conf import settings

from core.crm.circuit_breaker import (
    crm_circuit_open,
    is_crm_availability_error,
    record_crm_availability_failure,
    reset_crm_circuit_failures,
)
from core.crm.exceptions import CRMUnavailableError
from core.exceptions import ConfigurationMissing, RefreshFailed

logger = logging.getLogger("core.crm")

_session_local = threading.local()


class _CRMTimeoutSession(requests.Session):
    def __init__(self, default_timeout: float) -> None:
        super().__init__()
        self.default_timeout = default_timeout

    @override
    def request(self, method: str, url: str, **kwargs: object) -> requests.Response:
        if "timeout" not in kwargs or kwargs.get("timeout") is None:
            kwargs["timeout"] = self.default_timeout
        return super().request(method, url, **kwargs)


@dataclass(frozen=True, slots=True)
class TokenGrant:
    access_token: str
    expires_in: int
    refresh_token: str = ""
    token_type: str = "Bearer"


def get_crm_session() -> requests.Session:
    session = getattr(_session_local, "session", None)
    if session is not None:
        return session

    session = _CRMTimeoutSession(settings.CRM_REQUEST_TIMEOUT_SECONDS)
    _session_local.session = session
    return session


def clear_crm_session_cache() -> None:
    if hasattr(_session_local, "session"):
        delattr(_session_local, "session")


def crm_accounts_domain(api_domain: str | None = None) -> str:
    """Return the OAuth accounts host that belongs to the CRM API data centre."""
    configured = str(settings.CRM_ACCOUNTS_DOMAIN or "").strip()
    if configured and api_domain is None:
        return configured.rstrip("/")

    domain = str(api_domain if api_domain is not None else settings.CRM_API_DOMAIN)
    if ".eu" in domain:
        return "https://accounts.zoho.eu"
    if ".com.au" in domain:
        return "https://accounts.zoho.com.au"
    return "https://accounts.zoho.com"


def _client_credentials() -> tuple[str, str]:
    client_id = str(settings.CRM_CLIENT_ID or "").strip()
    client_secret = str(settings.CRM_CLIENT_SECRET or "").strip()
    if not client_id or not client_secret:
        raise ConfigurationMissing("CRM OAuth is not configured: CRM_CLIENT_ID and CRM_CLIENT_SECRET are required.")
    return client_id, client_secret


def with_crm_circuit_breaker[T](fn: Callable[[requests.Session], T]) -> T:
    if crm_circuit_open():
        raise CRMUnavailableError("CRM circuit breaker is open")

    try:
        result = fn(get_crm_session())
    except Exception as exc:
        if is_crm_availability_error(exc):
            record_crm_availability_failure()
            # A broken keep-alive connection should not be reused.
            clear_crm_session_cache()
        raise

    reset_crm_circuit_failures()
    return result


def _json_or_empty(response: requests.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _post_token_endpoint(form: dict[str, str]) -> TokenGrant:
    url = f"{crm_accounts_domain()}/oauth/v2/token"

    response = with_crm_circuit_breaker(lambda session: session.post(url, data=form))
    payload = _json_or_empty(response)

    remote_error = payload.get("error")
    if not response.ok or remote_error or not payload.get("access_token"):
        detail = remote_error or payload or f"HTTP {response.status_code}"
        logger.warning(
            "portal.crm.token.rejected grant_type=%s status_code=%s error=%s",
            form.get("grant_type"),
            response.status_code,
            detail,
            extra={
                "event": "portal.crm.token.rejected",
                "component": "crm",
                "outcome": "rejected",
                "status_code": response.status_code,
            },
        )
        raise RefreshFailed(f"Failed to refresh token: {detail}")

    try:
        expires_in = int(payload.get("expires_in") or 0)
    except (TypeError, ValueError):
        expires_in = 0

    return TokenGrant(
        access_token=str(payload["access_token"]),
        expires_in=expires_in,
        refresh_token=str(payload.get("refresh_token") or ""),
        token_type=str(payload.get("token_type") or "Bearer"),
    )


def refresh_access_token(refresh_token: str) -> TokenGrant:
    client_id, client_secret = _client_credentials()
    return _post_token_endpoint(
        {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        }
    )


def exchange_authorization_code(code: str, *, redirect_uri: str) -> TokenGrant:
    client_id, client_secret = _client_credentials()
    return _post_token_endpoint(
        {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "code": code,
        }
    )


def build_authorization_url(*, redirect_uri: str) -> str:
    client_id = str(settings.CRM_CLIENT_ID or "").strip()
    if not client_id:
        raise ConfigurationMissing("CRM OAuth is not configured: CRM_CLIENT_ID is required.")

    query = urlencode(
        {
            "scope": settings.CRM_SCOPES,
            "client_id": client_id,
            "response_type": "code",
            "access_type": "offline",
            "redirect_uri": redirect_uri,
            "prompt": "consent",
        }
    )
    return f"{crm_accounts_domain()}/oauth/v2/auth?{query}"


def crm_get(path: str, *, access_token: str, params: dict[str, str] | None = None) -> requests.Response:
    url = f"{settings.CRM_API_DOMAIN}/{path.lstrip('/')}"
    headers = {"Authorization": f"Zoho-oauthtoken {access_token}"}
    return with_crm_circuit_breaker(lambda session: session.get(url, headers=headers, params=params))


__all__ = [
    "TokenGrant",
    "get_crm_session",
    "clear_crm_session_cache",
    "crm_accounts_domain",
    "with_crm_circuit_breaker",
    "refresh_access_token",
    "exchange_authorization_code",
    "build_authorization_url",
    "crm_get",
]
