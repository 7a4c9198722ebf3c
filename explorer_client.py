"""
Yaci Explorer client
Single entry point wiring the table client, caches and services together
"""

import logging
import re
from typing import Any, Dict, List, Optional

import requests

from analytics import AnalyticsService
from blocks import BlockService
from cache import MemoryCache, RedisCache
from concurrency import optional, run_concurrently
from config import config
from denom_resolver import DenomResolver
from exceptions import ExplorerError
from models import (
    AddressStats,
    Block,
    ChainInfo,
    ChainStats,
    EnrichedTransaction,
    Fee,
    PaginatedResponse,
    ResolvedDenom,
    SearchResult,
)
from postgrest_client import PostgRESTClient
from search_api import SearchService
from tx_enrichment import TX_TABLE, TransactionService

logger = logging.getLogger(__name__)

CHAIN_INFO_KEY = "chain_info"

UNKNOWN_CHAIN = ChainInfo(
    chain_id="unknown",
    chain_name="Unknown Network",
    base_denom="unknown",
    display_denom="UNKNOWN",
    decimals=6,
)


def chain_name_for(chain_id: str) -> str:
    """Human readable name derived from a chain id"""
    if chain_id == "9001":
        return "EVM Testnet"
    if "testnet" in chain_id or "mainnet" in chain_id:
        return re.sub(r"\b\w", lambda m: m.group().upper(), chain_id.replace("-", " ", 1))
    return f"Chain {chain_id}"


def display_denom_for(base_denom: str) -> str:
    if base_denom.startswith("a"):
        return base_denom[1:].upper()
    return base_denom.upper()


def decimals_for(base_denom: str) -> int:
    if base_denom.startswith("a"):
        return 18
    if base_denom.startswith("u"):
        return 6
    return 0


class YaciExplorerClient:
    """
    Read-only explorer client

    All caches are owned by this object. ``clear_caches()`` drops every one
    of them, which is what a chain reset needs.
    """

    def __init__(
        self,
        settings=config,
        session: Optional[requests.Session] = None,
        store=None,
    ):
        self.settings = settings
        self.cache = MemoryCache(
            default_ttl=settings.CACHE_TTL_SECONDS, max_size=settings.CACHE_MAX_SIZE
        )
        self.client = PostgRESTClient(
            settings.POSTGREST_URL,
            timeout=settings.HTTP_TIMEOUT,
            pool_size=settings.HTTP_POOL_SIZE,
            cache=self.cache,
            session=session,
        )
        if store is None:
            store = RedisCache(settings.REDIS_URL, key_prefix=settings.CACHE_KEY_PREFIX)
        self.store = store

        self.blocks = BlockService(self.client)
        self.transactions = TransactionService(
            self.client,
            address_scan_cap=settings.ADDRESS_MESSAGE_SCAN_CAP,
            message_type_hash_cap=settings.MESSAGE_TYPE_HASH_CAP,
            message_type_sample_limit=settings.ANALYTICS_MESSAGE_SAMPLE_LIMIT,
        )
        self.analytics = AnalyticsService(self.client, self.blocks, settings=settings)
        self.search_service = SearchService(self.blocks, self.transactions, self.analytics)
        self.denoms = DenomResolver(
            store,
            client=self.client,
            rest_endpoint=settings.CHAIN_REST_ENDPOINT,
            session=session,
            timeout=settings.HTTP_TIMEOUT,
        )

    # ==================== BLOCKS ====================

    def get_blocks(self, limit: int = 20, offset: int = 0) -> PaginatedResponse:
        return self.blocks.get_blocks(limit, offset)

    def get_block(self, height: int) -> Block:
        return self.blocks.get_block(height)

    def get_latest_block(self) -> Block:
        return self.blocks.get_latest_block()

    # ==================== TRANSACTIONS ====================

    def get_transactions(self, limit: int = 20, offset: int = 0, **filters) -> PaginatedResponse:
        return self.transactions.get_transactions(limit, offset, **filters)

    def get_transaction(self, tx_hash: str) -> EnrichedTransaction:
        return self.transactions.get_transaction(tx_hash)

    def get_transaction_by_evm_hash(self, evm_hash: str) -> EnrichedTransaction:
        return self.transactions.get_transaction_by_evm_hash(evm_hash)

    def get_transactions_by_address(
        self, address: str, limit: int = 50, offset: int = 0
    ) -> PaginatedResponse:
        return self.transactions.get_transactions_by_address(address, limit, offset)

    def get_distinct_message_types(self) -> List[str]:
        return self.transactions.get_distinct_message_types()

    # ==================== ANALYTICS ====================

    def get_chain_stats(self) -> ChainStats:
        return self.analytics.get_chain_stats()

    def get_address_stats(self, address: str) -> AddressStats:
        return self.analytics.get_address_stats(address)

    # ==================== SEARCH ====================

    def search(self, query: str) -> List[SearchResult]:
        return self.search_service.search(query)

    # ==================== DENOMS ====================

    def resolve_denom(self, denom: str) -> ResolvedDenom:
        return self.denoms.resolve(denom)

    def format_amount(self, amount: Any, denom: str, **options) -> str:
        return self.denoms.format_amount(amount, denom, **options)

    # ==================== CHAIN INFO ====================

    def _detect_chain_info(self) -> ChainInfo:
        parts = run_concurrently(
            {
                "latest": self.blocks.get_latest_block,
                "fee": optional(
                    lambda: self.client.query(
                        TX_TABLE, select="fee", order="height.desc", limit=1
                    ).first(),
                    label="newest fee",
                ),
            }
        )
        chain_id = parts["latest"].chain_id or "unknown"
        coins = Fee.from_dict((parts["fee"] or {}).get("fee")).amount
        base_denom = coins[0].denom if coins and coins[0].denom else "unknown"
        return ChainInfo(
            chain_id=chain_id,
            chain_name=chain_name_for(chain_id),
            base_denom=base_denom,
            display_denom=display_denom_for(base_denom),
            decimals=decimals_for(base_denom),
        )

    def get_chain_info(self) -> ChainInfo:
        """Chain id and native denom detected from indexed data, cached until cleared"""
        cached = self.cache.get(CHAIN_INFO_KEY)
        if cached is not None:
            return cached
        try:
            info = self._detect_chain_info()
        except ExplorerError as e:
            logger.error(f"Failed to detect chain info: {e}")
            return UNKNOWN_CHAIN
        self.cache.set(CHAIN_INFO_KEY, info, None)
        return info

    # ==================== CACHES ====================

    def clear_caches(self) -> None:
        self.cache.clear()
        self.denoms.clear()
        logger.info("Explorer caches cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        return {"memory": self.cache.get_stats(), "store": self.store.get_stats()}

    def close(self) -> None:
        if hasattr(self.store, "close"):
            self.store.close()
