# src/intuneinv/core/graph_client.py
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

import requests

from intuneinv.config.loader import GRAPH_BETA
from intuneinv.http.client import HttpClient, decode_json
from intuneinv.http.errors import FetchError, HttpError, is_client_error
from intuneinv.http.throttle import DEFAULT_MAX_ATTEMPTS, FIXED_DELAY_SECONDS, sleep_backoff
from intuneinv.util.logging import get_logger, log_event

# Graph has used all three over the API's lifetime.
NEXT_LINK_KEYS = ("@odata.nextLink", "odata.nextLink", "nextLink")


def next_link(page: Dict[str, Any]) -> Optional[str]:
    for key in NEXT_LINK_KEYS:
        link = page.get(key)
        if link:
            return link
    return None


class GraphClient:
    """
    Tiny Graph wrapper. Token is provided lazily via token_provider().
    """
    def __init__(
        self,
        token_provider: Callable[[], str],
        *,
        base_url: str = GRAPH_BETA,
        timeout: float = 30.0,
        max_retries: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = FIXED_DELAY_SECONDS,
        logger=None,
        session: Optional[requests.Session] = None,
    ):
        self._token_provider = token_provider
        self._log = logger or get_logger(__name__)
        self._http = HttpClient(base_url=base_url, timeout=timeout, logger=self._log, session=session)
        self.max_retries = max(1, int(max_retries))
        self.retry_delay = float(retry_delay)

    def _auth_headers(self, extra: Dict[str, str] | None = None) -> Dict[str, str]:
        h = {"Authorization": f"Bearer {self._token_provider()}", "Accept": "application/json"}
        if extra:
            h.update(extra)
        return h

    def fetch_all(self, path: str) -> List[Dict[str, Any]]:
        """
        Follow continuation links until exhausted and return every `value`
        item in request order. Each page gets max_retries attempts.
        """
        out: List[Dict[str, Any]] = []
        url: Optional[str] = self._http.full_url(path)
        pages = 0
        while url:
            page = self._get_page(url)
            out.extend(page.get("value", []) or [])
            pages += 1
            url = next_link(page)
        log_event(self._log, "fetch_all_done", path=path, pages=pages, items=len(out))
        return out

    def _get_page(self, url: str) -> Dict[str, Any]:
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self._http.send("GET", url, headers=self._auth_headers())
                return decode_json(resp)
            except (HttpError, ValueError) as ex:
                if attempt >= self.max_retries:
                    raise FetchError(url, attempt, ex) from ex
                self._log.warning(f"page request failed (attempt {attempt}/{self.max_retries}): {url}: {ex}")
                sleep_backoff(self.retry_delay)

    def fetch_one(self, path: str, method: str = "GET", body: Any = None) -> Dict[str, Any]:
        """
        Single call with up to max_retries attempts. 4xx responses are final;
        only 5xx and transport failures are retried.
        """
        url = self._http.full_url(path)
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._http.send_json(method, url, headers=self._auth_headers(), json=body)
            except HttpError as ex:
                if is_client_error(ex):
                    raise
                if attempt >= self.max_retries:
                    raise FetchError(url, attempt, ex) from ex
                self._log.warning(f"{method.upper()} failed (attempt {attempt}/{self.max_retries}): {url}: {ex}")
                sleep_backoff(self.retry_delay)

    def get_group_name(self, group_id: str) -> str:
        data = self.fetch_one(f"groups/{group_id}?$select=id,displayName")
        return data.get("displayName") or ""

    def close(self) -> None:
        self._http.close()
