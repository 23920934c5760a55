import json
from typing import Any, Dict, List, Optional

import requests

from intuneinv.http.errors import NotFoundError


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, headers=None):
        self.status_code = status_code
        self.text = "" if body is None else json.dumps(body)
        self.headers = headers or {}


class FakeSession:
    """Stands in for requests.Session; replays scripted responses in order."""

    def __init__(self, script: List[Any]):
        self.script = list(script)
        self.calls: List[dict] = []
        self.closed = False

    def request(self, method, url, headers=None, params=None, json=None, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json})
        if not self.script:
            raise AssertionError(f"unexpected request {method} {url}")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


def ok(body: Any) -> FakeResponse:
    return FakeResponse(200, body)


def conn_error(msg: str = "connection reset") -> requests.exceptions.ConnectionError:
    return requests.exceptions.ConnectionError(msg)


class FakeGraph:
    """
    GraphClient double for orchestrator tests. Collections and assignment
    lists are keyed by path; an Exception value is raised instead of returned.
    """

    def __init__(
        self,
        collections: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        groups: Optional[Dict[str, Any]] = None,
    ):
        self.collections = collections or {}
        self.details = details or {}
        self.groups = groups or {}
        self.fetch_all_calls: List[str] = []
        self.fetch_one_calls: List[str] = []
        self.group_calls: List[str] = []

    def fetch_all(self, path: str):
        self.fetch_all_calls.append(path)
        value = self.collections.get(path, [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    def fetch_one(self, path: str, method: str = "GET", body: Any = None):
        self.fetch_one_calls.append(path)
        value = self.details.get(path)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise NotFoundError(404, path, "Not Found")
        return value

    def get_group_name(self, group_id: str) -> str:
        self.group_calls.append(group_id)
        value = self.groups.get(group_id)
        if isinstance(value, Exception):
            raise value
        return value or ""
