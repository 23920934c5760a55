from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from intuneinv.util.logging import get_logger, log_event

logger = get_logger(__name__)

REFRESH_MARGIN = timedelta(minutes=5)


class AuthError(Exception):
    code = "auth_error"; hint = "Unknown error."
    def __init__(
        self,
        message: str = "",
        *,
        hint: str | None = None,
        error_code: str | None = None,
        error_description: str | None = None,
    ):
        super().__init__(message or self.__class__.__name__)
        if hint: self.hint = hint
        self.error_code = error_code or self.code
        self.error_description = error_description or message

class InvalidTenantId(AuthError):
    code = "invalid_tenant_id"; hint = "Tenant ID invalid or unreachable."
class InvalidClientId(AuthError):
    code = "invalid_client_id"; hint = "Client ID invalid."
class InvalidClientSecret(AuthError):
    code = "invalid_client_secret"; hint = "Client Secret rejected."
class NetworkError(AuthError):
    code = "network_error"; hint = "Network or timeout issue."
class ConsentRequired(AuthError):
    code = "consent_required"; hint = "Admin consent required for Graph permissions."


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: datetime

    def remaining(self, now: datetime | None = None) -> timedelta:
        return self.expires_at - (now or datetime.now(timezone.utc))


# (tenant_id, client_id) -> token
_TOKENS: Dict[Tuple[str, str], AccessToken] = {}


def clear_token_cache(tenant_id: str | None = None, client_id: str | None = None) -> None:
    if tenant_id is None and client_id is None:
        _TOKENS.clear()
        return
    _TOKENS.pop((tenant_id or "", client_id or ""), None)


class TokenProvider:
    """
    Client-credentials bearer tokens for Graph.

    Tokens are cached per (tenant, client) and reused while more than
    REFRESH_MARGIN of lifetime remains. Failures are never retried.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        tenant_id = (tenant_id or "").strip()
        client_id = (client_id or "").strip()
        client_secret = (client_secret or "").strip()
        if not tenant_id: raise InvalidTenantId("Tenant ID required.")
        if not client_id: raise InvalidClientId("Client ID required.")
        if not client_secret: raise InvalidClientSecret("Client Secret required.")

        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def cache_key(self) -> Tuple[str, str]:
        return (self.tenant_id, self.client_id)

    def cached(self) -> Optional[AccessToken]:
        return _TOKENS.get(self.cache_key)

    def acquire(self, force_refresh: bool = False) -> AccessToken:
        now = self._clock()
        current = _TOKENS.get(self.cache_key)
        if current and not force_refresh and current.remaining(now) > REFRESH_MARGIN:
            return current

        from intuneinv.core.auth_helpers import build_authority, msal_acquire_token

        res = msal_acquire_token(self.client_id, self._client_secret, build_authority(self.tenant_id))
        expires_in = int(res.get("expires_in") or 3599)
        token = AccessToken(token=res["access_token"], expires_at=now + timedelta(seconds=expires_in))
        _TOKENS[self.cache_key] = token
        log_event(
            logger, "token_acquired",
            tenant_id=self.tenant_id, client_id=self.client_id[:6] + "...",
            expires_at=token.expires_at.isoformat(), forced=force_refresh,
        )
        return token

    def __call__(self) -> str:
        """Bearer string for GraphClient's token_provider hook."""
        return self.acquire().token
