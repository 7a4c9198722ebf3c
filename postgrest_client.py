"""
HTTP client for the PostgREST table service

Builds table and RPC requests from typed filters, requests exact counts and
parses them from ``Content-Range``. Single-entity lookups can be memoized
through ``fetch_cached``; paginated reads always go upstream.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from cache import MemoryCache
from exceptions import UpstreamError
from filters import Filter, build_params

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Rows returned by a table query plus the exact total when requested"""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    total: Optional[int] = None

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None


def parse_content_range(header: Optional[str], fallback: int) -> int:
    """Extract the total from ``Content-Range: 0-19/1234``"""
    if not header or "/" not in header:
        return fallback
    total = header.split("/")[1].strip()
    if not total.isdigit():
        return fallback
    return int(total)


class PostgRESTClient:
    """
    Read-only client for the tabular REST data service

    Every request uses the configured timeout and never retries; retry policy
    belongs to the caller.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 15,
        pool_size: int = 20,
        cache: Optional[MemoryCache] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the table client

        Args:
            base_url: Table service root (e.g., http://localhost:3000)
            timeout: Request timeout in seconds
            pool_size: Connection pool size, matched to the fan-out width
            cache: Short-TTL cache for single-entity lookups
            session: Pre-built session (tests inject a fake here)
        """
        if not base_url:
            raise ValueError("base_url is required")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache = cache if cache is not None else MemoryCache(default_ttl=10)

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(
                max_retries=Retry(total=0, raise_on_status=False),
                pool_connections=pool_size,
                pool_maxsize=pool_size,
            )
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def _get(
        self, url: str, params: List, headers: Optional[Dict[str, str]] = None
    ) -> requests.Response:
        """Make GET request with error handling"""
        try:
            response = self.session.get(
                url, params=params, headers=headers or {}, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {url} - {e}")
            raise UpstreamError(f"Request failed: {e}", url=url) from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Request failed: {url} - HTTP {response.status_code}")
            raise UpstreamError(
                f"Query failed: HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        return response

    def query(
        self,
        table: str,
        select: Optional[str] = None,
        filters: Optional[Iterable[Filter]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        count: bool = False,
    ) -> QueryResult:
        """
        Query a table or view

        Args:
            table: Table or view name (e.g., transactions_main)
            select: Comma-separated column list
            filters: Typed filter expressions
            order: Comma-separated ``col.asc|desc`` terms
            limit: Maximum rows to return
            offset: Rows to skip
            count: Request an exact total via ``Prefer: count=exact``

        Returns:
            QueryResult with rows and, when ``count`` is set, the total
        """
        params: List = []
        if select:
            params.append(("select", select))
        if order:
            params.append(("order", order))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))
        params.extend(build_params(filters))

        headers = {"Prefer": "count=exact"} if count else None
        response = self._get(f"{self.base_url}/{table}", params, headers)

        try:
            rows = response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Malformed response from {table}: {e}", url=response.url
            ) from e
        if not isinstance(rows, list):
            raise UpstreamError(f"Unexpected response shape from {table}", url=response.url)

        total = None
        if count:
            total = parse_content_range(response.headers.get("Content-Range"), len(rows))
        return QueryResult(rows=rows, total=total)

    def rpc(self, function: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Call a server-side function; every parameter value is stringified"""
        query_params = [(key, str(value)) for key, value in (params or {}).items()]
        response = self._get(f"{self.base_url}/rpc/{function}", query_params)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Malformed response from rpc/{function}: {e}", url=response.url
            ) from e

    def fetch_cached(self, key: str, fetcher: Callable[[], Any]) -> Any:
        """Memoize a single-entity lookup for the cache TTL"""
        return self.cache.get_or_set(key, fetcher)

    def clear_cache(self) -> None:
        self.cache.clear()
