from __future__ import annotations
from typing import Any, Dict
import msal
import requests

from intuneinv.core.auth import (
    AuthError, InvalidTenantId, InvalidClientId, InvalidClientSecret,
    NetworkError, ConsentRequired
)

SCOPES = ["https://graph.microsoft.com/.default"]

def build_authority(tenant_id: str) -> str:
    return f"https://login.microsoftonline.com/{tenant_id}"

def _map_msal_error(code: str, desc: str) -> AuthError:
    d = desc or ""
    kw = {"error_code": code or None, "error_description": d}
    if "AADSTS7000215" in d:  # invalid client secret
        return InvalidClientSecret(f"Invalid client secret. {d}".strip(), **kw)
    if "AADSTS700016" in d:  # invalid client id
        return InvalidClientId(f"Invalid client ID or app not found. {d}".strip(), **kw)
    if "invalid_tenant" in d or "AADSTS90002" in d:
        return InvalidTenantId(f"Invalid tenant ID or tenant not found. {d}".strip(), **kw)
    if "AADSTS65001" in d or "consent_required" in d:
        return ConsentRequired(f"Admin consent required. {d}".strip(), **kw)
    return AuthError(f"{code}: {d}" if code else d, **kw)

def msal_acquire_token(client_id: str, client_secret: str, authority: str) -> Dict[str, Any]:
    """
    One client-credentials exchange. A fresh MSAL app (and so an empty MSAL
    token cache) is built each call; caching is TokenProvider's job.
    """
    try:
        app = msal.ConfidentialClientApplication(
            client_id=client_id,
            client_credential=client_secret,
            authority=authority,
        )
        res = app.acquire_token_for_client(scopes=SCOPES)
    except requests.exceptions.RequestException as ex:
        raise NetworkError(str(ex)) from ex
    except ValueError as ex:
        # msal raises ValueError for malformed authorities (bad tenant)
        raise InvalidTenantId(str(ex)) from ex

    if not res or "access_token" not in res:
        res = res or {}
        raise _map_msal_error(res.get("error", ""), res.get("error_description", "Unknown error"))

    return res
