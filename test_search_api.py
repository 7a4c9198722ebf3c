"""
Tests for search_api.py
"""

from unittest.mock import MagicMock

import pytest

from exceptions import BlockNotFound, TransactionNotFound, UpstreamError
from models import AddressStats, Block, EnrichedTransaction
from search_api import ResourceType, SearchService, classify

TX_HASH = "ab" * 32
EVM_ADDRESS = "0x" + "cd" * 20
BECH32 = "manifest1" + "q" * 38
VALOPER = "manifestvaloper1" + "q" * 38


@pytest.fixture
def services():
    blocks = MagicMock()
    transactions = MagicMock()
    analytics = MagicMock()
    analytics.get_address_stats.return_value = AddressStats(address="x", transaction_count=0)
    analytics.has_evm_activity.return_value = False
    return blocks, transactions, analytics


@pytest.fixture
def search(services):
    return SearchService(*services)


class TestClassify:
    """Query classification"""

    @pytest.mark.parametrize(
        "query,expected",
        [
            ("12345", ResourceType.BLOCK_HEIGHT),
            ("  42 ", ResourceType.BLOCK_HEIGHT),
            ("0", ResourceType.BLOCK_HEIGHT),
            ("007", ResourceType.UNKNOWN),
            ("1,000", ResourceType.UNKNOWN),
            (TX_HASH, ResourceType.TX_HASH),
            (TX_HASH.upper(), ResourceType.TX_HASH),
            ("0x" + TX_HASH, ResourceType.EVM_TX_HASH),
            (EVM_ADDRESS, ResourceType.EVM_ADDRESS),
            (BECH32, ResourceType.BECH32_ADDRESS),
            (VALOPER, ResourceType.VALIDATOR_ADDRESS),
            ("hello", ResourceType.UNKNOWN),
            ("", ResourceType.UNKNOWN),
            ("0x1234", ResourceType.UNKNOWN),
            ("9" * 19, ResourceType.BLOCK_HEIGHT),
            ("1" * 20, ResourceType.UNKNOWN),
            ("1" * 64, ResourceType.TX_HASH),
            ("1" * 5000, ResourceType.UNKNOWN),
        ],
    )
    def test_classify(self, query, expected):
        assert classify(query) is expected


class TestSearch:
    """Lookup dispatch and ranking"""

    def test_block_height(self, search, services):
        blocks, _, _ = services
        blocks.get_block.return_value = Block(id=42)

        results = search.search("42")

        assert len(results) == 1
        assert results[0].type == "block"
        assert results[0].score == 100
        blocks.get_block.assert_called_once_with(42)

    def test_missing_block_is_no_match(self, search, services):
        blocks, _, _ = services
        blocks.get_block.side_effect = BlockNotFound(42)
        assert search.search("42") == []

    def test_native_hash_uppercased(self, search, services):
        _, transactions, _ = services
        transactions.get_transaction.return_value = EnrichedTransaction(id=TX_HASH.upper())

        results = search.search(TX_HASH)

        assert results[0].type == "transaction"
        transactions.get_transaction.assert_called_once_with(TX_HASH.upper())

    def test_evm_hash_checks_both_forms(self, search, services):
        _, transactions, _ = services
        tx = EnrichedTransaction(id="NATIVE")
        transactions.get_transaction_by_evm_hash.return_value = tx
        transactions.get_transaction.return_value = tx

        results = search.search("0x" + TX_HASH)

        assert len(results) == 1
        transactions.get_transaction_by_evm_hash.assert_called_once_with("0x" + TX_HASH)
        transactions.get_transaction.assert_called_once_with(TX_HASH.upper())

    def test_evm_hash_native_fallback(self, search, services):
        _, transactions, _ = services
        transactions.get_transaction_by_evm_hash.side_effect = TransactionNotFound("0x")
        transactions.get_transaction.return_value = EnrichedTransaction(id=TX_HASH.upper())

        results = search.search("0x" + TX_HASH)

        assert [r.value.id for r in results] == [TX_HASH.upper()]

    def test_address_with_activity(self, search, services):
        _, _, analytics = services
        analytics.get_address_stats.return_value = AddressStats(address=BECH32, transaction_count=3)

        results = search.search(BECH32)

        assert results[0].score == 90
        assert results[0].value == {"address": BECH32, "transaction_count": 3}

    def test_bare_address(self, search):
        results = search.search(BECH32)
        assert results[0].score == 80
        assert results[0].value == {"address": BECH32}

    def test_address_stats_failure_still_matches(self, search, services):
        _, _, analytics = services
        analytics.get_address_stats.side_effect = UpstreamError("down")

        results = search.search(VALOPER)

        assert results[0].type == "address"
        assert results[0].score == 80

    def test_evm_address_ranked_first(self, search, services):
        _, _, analytics = services
        analytics.has_evm_activity.return_value = True
        analytics.get_address_stats.return_value = AddressStats(address=EVM_ADDRESS, transaction_count=2)

        results = search.search(EVM_ADDRESS)

        assert [(r.type, r.score) for r in results] == [("evm_address", 95), ("address", 90)]

    def test_evm_address_without_activity(self, search):
        results = search.search(EVM_ADDRESS)
        assert [r.type for r in results] == ["address"]

    def test_oversized_digit_query(self, search, services):
        """Very long digit strings are unknown, never an error"""
        blocks, _, _ = services
        assert search.search("1" * 5000) == []
        blocks.get_block.assert_not_called()

    def test_unknown_query(self, search, services):
        blocks, transactions, analytics = services
        assert search.search("not a thing") == []
        blocks.get_block.assert_not_called()
        transactions.get_transaction.assert_not_called()
        analytics.get_address_stats.assert_not_called()

    def test_result_to_dict(self, search, services):
        blocks, _, _ = services
        blocks.get_block.return_value = Block(id=7)
        data = search.search("7")[0].to_dict()
        assert data["type"] == "block"
        assert data["value"]["height"] == 7
