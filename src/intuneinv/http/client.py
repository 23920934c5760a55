from __future__ import annotations
import json as _json
from typing import Any, Dict, Optional
import requests

from intuneinv.http.errors import (
    HttpError, UnauthorizedError, ForbiddenError, NotFoundError,
    ThrottleError, ServerError, NetworkError
)
from intuneinv.util.logging import get_logger


class HttpClient:
    """Single-attempt JSON transport. Retry policy lives with the caller."""

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 30.0,
        logger=None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._log = logger or get_logger(__name__)

    def full_url(self, url: str) -> str:
        if url.startswith("http://") or url.startswith("https://"):
            return url
        if self.base_url:
            return f"{self.base_url}/{url.lstrip('/')}"
        return url

    def send(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None
    ) -> requests.Response:
        full = self.full_url(url)
        self._log.debug(f"HTTP {method.upper()} {full}")
        try:
            resp = self._session.request(
                method=method.upper(),
                url=full,
                headers=headers or {},
                params=params,
                json=json,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as ex:
            raise NetworkError(-1, full, str(ex)) from ex

        if resp.status_code < 400:
            self._log.debug(f"HTTP {resp.status_code} {full}")
            return resp

        # Map to typed errors
        body_snip = _safe_snip(resp)
        if resp.status_code == 401:
            raise UnauthorizedError(401, full, "Unauthorized", body_snip)
        if resp.status_code == 403:
            raise ForbiddenError(403, full, "Forbidden", body_snip)
        if resp.status_code == 404:
            raise NotFoundError(404, full, "Not Found", body_snip)
        if resp.status_code == 429:
            raise ThrottleError(429, full, "Too Many Requests", body_snip)
        if 500 <= resp.status_code <= 599:
            raise ServerError(resp.status_code, full, "Server error", body_snip)
        raise HttpError(resp.status_code, full, "HTTP error", body_snip)

    def send_json(self, method: str, url: str, **kwargs) -> dict:
        r = self.send(method, url, **kwargs)
        return decode_json(r)

    def close(self) -> None:
        self._session.close()


def decode_json(resp: requests.Response) -> dict:
    text = resp.text or ""
    if not text.strip():
        return {}
    return _json.loads(text)


def _safe_snip(resp: requests.Response, max_len: int = 400) -> str:
    txt = resp.text or ""
    return txt[:max_len]
