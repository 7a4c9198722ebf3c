"""
Shared test fixtures
FakeTableService stands in for the requests session talking to PostgREST
"""

import fnmatch
import os
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlencode

os.environ.setdefault("EXPLORER_ENV", "test")

import pytest
import requests

from cache import MemoryCache
from postgrest_client import PostgRESTClient

BASE_URL = "http://postgrest.test"

RESERVED_PARAMS = {"select", "order", "limit", "offset", "or", "and"}

Rows = Union[List[Dict[str, Any]], Callable[[Dict[str, str]], Any]]


class _MockResponse:
    """Simple mock for HTTP responses"""

    def __init__(self, payload: Any, status_code: int = 200, headers: Optional[Dict] = None, url: str = ""):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        self.url = url

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


def _strip(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _matches(row: Dict[str, Any], column: str, expression: str) -> bool:
    """Evaluate the simple operators; anything else passes every row"""
    actual = row.get(column)
    text = "" if actual is None else str(actual)
    if expression == "is.null":
        return actual is None
    if expression == "not.is.null":
        return actual is not None
    if expression.startswith("eq."):
        return text == expression[3:]
    if expression.startswith("in.(") and expression.endswith(")"):
        return text in {_strip(v) for v in expression[4:-1].split(",")}
    if expression.startswith("ilike."):
        return fnmatch.fnmatch(text.lower(), expression[6:].lower())
    return True


class FakeTableService:
    """
    Session double routing ``GET {base}/{table}`` to in-memory rows

    Every request is recorded so tests can assert on the exact parameters
    sent upstream.
    """

    def __init__(self):
        self.tables: Dict[str, Rows] = {}
        self.rpcs: Dict[str, Any] = {}
        self.failures: Dict[str, Union[int, Exception]] = {}
        self.totals: Dict[str, int] = {}
        self.urls: Dict[str, Any] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, table: str, rows: Rows, total: Optional[int] = None) -> "FakeTableService":
        self.tables[table] = rows
        if total is not None:
            self.totals[table] = total
        return self

    def fail(self, table: str, error: Union[int, Exception] = 500) -> "FakeTableService":
        self.failures[table] = error
        return self

    def calls_to(self, table: str) -> List[Dict[str, str]]:
        return [c["params"] for c in self.calls if c["table"] == table]

    def _respond_external(self, url: str) -> _MockResponse:
        payload = self.urls.get(url)
        if payload is None:
            return _MockResponse({"error": "not found"}, 404, url=url)
        if isinstance(payload, Exception):
            raise payload
        return _MockResponse(payload, url=url)

    def get(self, url: str, params=None, headers=None, timeout=None) -> _MockResponse:
        if not url.startswith(BASE_URL):
            self.calls.append({"table": None, "url": url, "params": {}, "headers": headers})
            return self._respond_external(url)

        path = url[len(BASE_URL) + 1:]
        query = dict(params or [])
        self.calls.append({"table": path, "url": url, "params": query, "headers": headers or {}})
        full_url = f"{url}?{urlencode(params or [])}"

        failure = self.failures.get(path)
        if isinstance(failure, Exception):
            raise failure
        if failure is not None:
            return _MockResponse({"message": "failure"}, failure, url=full_url)

        if path.startswith("rpc/"):
            name = path[4:]
            if name not in self.rpcs:
                return _MockResponse({"message": "function not found"}, 404, url=full_url)
            result = self.rpcs[name]
            return _MockResponse(result(query) if callable(result) else result, url=full_url)

        if path not in self.tables:
            return _MockResponse({"message": f"relation {path} does not exist"}, 404, url=full_url)

        source = self.tables[path]
        rows = source(query) if callable(source) else list(source)
        for column, expression in query.items():
            if column not in RESERVED_PARAMS:
                rows = [r for r in rows if _matches(r, column, expression)]

        total = self.totals.get(path, len(rows))
        offset = int(query.get("offset", 0))
        rows = rows[offset:]
        if "limit" in query:
            rows = rows[: int(query["limit"])]

        response_headers = {}
        if (headers or {}).get("Prefer") == "count=exact":
            end = offset + len(rows) - 1
            response_headers["Content-Range"] = f"{offset}-{end}/{total}" if rows else f"*/{total}"
        return _MockResponse(rows, headers=response_headers, url=full_url)


@pytest.fixture
def fake_service():
    return FakeTableService()


@pytest.fixture
def table_client(fake_service):
    return PostgRESTClient(BASE_URL, cache=MemoryCache(default_ttl=60), session=fake_service)
