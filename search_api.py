"""
Search API for the block explorer
Classifies a raw query string and resolves it against every plausible resource
"""

import logging
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from analytics import AnalyticsService
from blocks import BlockService
from concurrency import run_concurrently
from models import SearchResult
from tx_enrichment import TransactionService

logger = logging.getLogger(__name__)

SCORE_EXACT = 100
SCORE_EVM_ACTIVITY = 95
SCORE_ADDRESS_ACTIVITY = 90
SCORE_BARE_ADDRESS = 80


class ResourceType(Enum):
    """What a query string could name"""

    BLOCK_HEIGHT = "block_height"
    TX_HASH = "tx_hash"
    EVM_TX_HASH = "evm_tx_hash"
    EVM_ADDRESS = "evm_address"
    BECH32_ADDRESS = "bech32_address"
    VALIDATOR_ADDRESS = "validator_address"
    UNKNOWN = "unknown"


# Heights fit in a signed 64-bit integer
MAX_HEIGHT_DIGITS = 19

# Checked in order; the more specific pattern wins
PATTERNS = [
    (
        ResourceType.BLOCK_HEIGHT,
        re.compile(rf"^(0|[1-9][0-9]{{0,{MAX_HEIGHT_DIGITS - 1}}})$"),
    ),
    (ResourceType.EVM_TX_HASH, re.compile(r"^0x[0-9a-fA-F]{64}$")),
    (ResourceType.EVM_ADDRESS, re.compile(r"^0x[0-9a-fA-F]{40}$")),
    (ResourceType.TX_HASH, re.compile(r"^[0-9a-fA-F]{64}$")),
    (ResourceType.VALIDATOR_ADDRESS, re.compile(r"^[a-z]+valoper1[a-z0-9]{38,}$", re.I)),
    (ResourceType.BECH32_ADDRESS, re.compile(r"^[a-z]+1[a-z0-9]{38,}$", re.I)),
]


def classify(query: str) -> ResourceType:
    """
    Map a query string to the resource type it could name

    Block heights are canonical decimal integers, so "007" and "1,000" are
    not heights. Digit strings too long for a height fall through to the
    hash pattern or to unknown.
    """
    query = (query or "").strip()
    for resource, pattern in PATTERNS:
        if pattern.match(query):
            return resource
    return ResourceType.UNKNOWN


class SearchService:
    """Concurrent search over blocks, transactions and addresses"""

    def __init__(
        self,
        blocks: BlockService,
        transactions: TransactionService,
        analytics: AnalyticsService,
    ):
        self.blocks = blocks
        self.transactions = transactions
        self.analytics = analytics

    @staticmethod
    def _lookup(name: str, func: Callable[[], Optional[SearchResult]]) -> Callable[[], Optional[SearchResult]]:
        """A failing lookup counts as no match"""

        def wrapper():
            try:
                return func()
            except Exception as e:
                logger.warning(f"Search lookup {name} failed: {e}")
                return None

        return wrapper

    # ==================== LOOKUPS ====================

    def _block(self, height: int) -> Optional[SearchResult]:
        block = self.blocks.get_block(height)
        return SearchResult(type="block", value=block, score=SCORE_EXACT)

    def _transaction(self, tx_hash: str) -> Optional[SearchResult]:
        tx = self.transactions.get_transaction(tx_hash.upper())
        return SearchResult(type="transaction", value=tx, score=SCORE_EXACT)

    def _evm_transaction(self, evm_hash: str) -> Optional[SearchResult]:
        tx = self.transactions.get_transaction_by_evm_hash(evm_hash)
        return SearchResult(type="transaction", value=tx, score=SCORE_EXACT)

    def _address(self, address: str) -> Optional[SearchResult]:
        value = {"address": address}
        try:
            stats = self.analytics.get_address_stats(address)
        except Exception as e:
            logger.warning(f"Address stats unavailable for {address}: {e}")
            return SearchResult(type="address", value=value, score=SCORE_BARE_ADDRESS)

        if stats.transaction_count > 0:
            value["transaction_count"] = stats.transaction_count
            return SearchResult(type="address", value=value, score=SCORE_ADDRESS_ACTIVITY)
        return SearchResult(type="address", value=value, score=SCORE_BARE_ADDRESS)

    def _evm_address(self, address: str) -> Optional[SearchResult]:
        if self.analytics.has_evm_activity(address):
            return SearchResult(
                type="evm_address", value={"address": address}, score=SCORE_EVM_ACTIVITY
            )
        return None

    # ==================== DISPATCH ====================

    def _lookups_for(self, query: str, resource: ResourceType) -> Dict[str, Callable]:
        if resource is ResourceType.BLOCK_HEIGHT:
            return {"block": lambda: self._block(int(query))}
        if resource is ResourceType.EVM_TX_HASH:
            return {
                "evm_transaction": lambda: self._evm_transaction(query),
                "transaction": lambda: self._transaction(query[2:]),
            }
        if resource is ResourceType.TX_HASH:
            return {"transaction": lambda: self._transaction(query)}
        if resource is ResourceType.EVM_ADDRESS:
            return {
                "evm_address": lambda: self._evm_address(query),
                "address": lambda: self._address(query),
            }
        if resource in (ResourceType.BECH32_ADDRESS, ResourceType.VALIDATOR_ADDRESS):
            return {"address": lambda: self._address(query)}
        return {}

    def search(self, query: str) -> List[SearchResult]:
        """
        Resolve a query against every resource type it could name

        Returns:
            Matches ranked by descending score. Lookups run concurrently and a
            failing lookup is treated as no match.
        """
        query = (query or "").strip()
        resource = classify(query)
        lookups = self._lookups_for(query, resource)
        if not lookups:
            return []

        found = run_concurrently(
            {name: self._lookup(name, func) for name, func in lookups.items()}
        )

        # one transaction may answer both hash lookups
        results = self._dedupe([found[name] for name in lookups if found[name] is not None])
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    @staticmethod
    def _dedupe(results: List[SearchResult]) -> List[SearchResult]:
        seen = set()
        unique = []
        for result in results:
            key = (result.type, _identity(result.value))
            if key in seen:
                continue
            seen.add(key)
            unique.append(result)
        return unique


def _identity(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("address") or value.get("id")
    return getattr(value, "id", None)
