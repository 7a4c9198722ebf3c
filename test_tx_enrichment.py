"""
Tests for tx_enrichment.py
"""

import base64
import json

import pytest
import requests
from eth_account import Account
from eth_utils import to_checksum_address

from exceptions import TransactionNotFound, UpstreamError
from tx_enrichment import TransactionService, address_filter, decode_error_field

TX_HASH = "AB" * 32
EVM_HASH = "0xabc" + "1" * 61
PRIVATE_KEY = "0x" + "46" * 32
EVM_MSG_TYPE = "/cosmos.evm.vm.v1.MsgEthereumTx"
SEND_TYPE = "/cosmos.bank.v1beta1.MsgSend"


def _b64(payload) -> str:
    return base64.b64encode(json.dumps(payload).encode()).decode()


def _tx_row(tx_hash=TX_HASH, height=100, error=None, timestamp="2024-01-01T00:00:00Z"):
    return {
        "id": tx_hash,
        "fee": {"amount": [{"denom": "umfx", "amount": "500"}], "gasLimit": "200000"},
        "memo": "",
        "error": error,
        "height": height,
        "timestamp": timestamp,
        "gas_used": 80000,
        "gas_wanted": 200000,
    }


def _send_message(tx_hash=TX_HASH, index=0, sender="manifest1from"):
    return {
        "id": tx_hash,
        "message_index": index,
        "type": SEND_TYPE,
        "sender": sender,
        "mentions": [sender, "manifest1to"],
        "metadata": {"fromAddress": sender, "toAddress": "manifest1to"},
    }


def _event(tx_hash, event_index, attr_index, event_type, key, value):
    return {
        "id": tx_hash,
        "event_index": event_index,
        "attr_index": attr_index,
        "event_type": event_type,
        "attr_key": key,
        "attr_value": value,
        "msg_index": 0,
    }


def _signed_evm_tx() -> bytes:
    signed = Account.sign_transaction(
        {
            "nonce": 1,
            "gasPrice": 10**9,
            "gas": 21000,
            "to": to_checksum_address("0x" + "22" * 20),
            "value": 0,
            "data": b"",
            "chainId": 9001,
        },
        PRIVATE_KEY,
    )
    return bytes(signed.raw_transaction)


class TestErrorField:
    """Log data stored in the error column"""

    def test_base64_json_means_success(self):
        assert decode_error_field(_b64([{"events": []}])) is None

    def test_plain_error_unchanged(self):
        assert decode_error_field("out of gas in location: WritePerByte") == (
            "out of gas in location: WritePerByte"
        )

    def test_base64_non_json_unchanged(self):
        value = base64.b64encode(b"not json at all").decode()
        assert decode_error_field(value) == value

    def test_empty(self):
        assert decode_error_field(None) is None
        assert decode_error_field("") == ""

    def test_address_filter(self):
        group = address_filter("manifest1abc")
        assert group.body() == "(sender.eq.manifest1abc,mentions.cs.{manifest1abc})"


class TestGetTransaction:
    """Single transaction enrichment"""

    def test_full_enrichment(self, fake_service, table_client):
        fake_service.add("transactions_main", [_tx_row(error=_b64({"log": "ok"}))])
        fake_service.add("transactions_raw", [])
        fake_service.add("messages_main", [_send_message()])
        fake_service.add(
            "events_main",
            [
                _event(TX_HASH, 0, 0, "transfer", "recipient", "manifest1to"),
                _event(TX_HASH, 0, 1, "transfer", "amount", "1umfx"),
            ],
        )

        tx = TransactionService(table_client).get_transaction(TX_HASH)

        assert tx.id == TX_HASH
        assert tx.error is None
        assert tx.success
        assert tx.fee.amount[0].denom == "umfx"
        assert len(tx.messages) == 1
        assert tx.messages[0].decoded.kind == "bank_send"
        assert tx.messages[0].decoded.to_address == "manifest1to"
        assert [e.attr_key for e in tx.events] == ["recipient", "amount"]
        assert tx.evm_data is None

    def test_child_queries_are_ordered(self, fake_service, table_client):
        fake_service.add("transactions_main", [_tx_row()])
        fake_service.add("transactions_raw", [])
        fake_service.add("messages_main", [])
        fake_service.add("events_main", [])

        TransactionService(table_client).get_transaction(TX_HASH)

        assert fake_service.calls_to("messages_main")[0]["order"] == "message_index.asc"
        assert fake_service.calls_to("events_main")[0]["order"] == "event_index.asc,attr_index.asc"

    def test_raw_payload_preferred_over_metadata(self, fake_service, table_client):
        raw_msg = {"@type": SEND_TYPE, "from_address": "raw_sender", "to_address": "raw_to"}
        fake_service.add("transactions_main", [_tx_row()])
        fake_service.add(
            "transactions_raw",
            [{"id": TX_HASH, "data": {"tx": {"body": {"messages": [raw_msg]}}}}],
        )
        fake_service.add("messages_main", [_send_message()])
        fake_service.add("events_main", [])

        tx = TransactionService(table_client).get_transaction(TX_HASH)

        assert tx.messages[0].decoded.to_address == "raw_to"
        assert tx.raw_data == {"tx": {"body": {"messages": [raw_msg]}}}

    def test_genuine_error_kept(self, fake_service, table_client):
        fake_service.add("transactions_main", [_tx_row(error="insufficient funds")])
        fake_service.add("transactions_raw", [])
        fake_service.add("messages_main", [])
        fake_service.add("events_main", [])

        tx = TransactionService(table_client).get_transaction(TX_HASH)
        assert tx.error == "insufficient funds"
        assert not tx.success

    def test_evm_hash_from_events_overrides_bytes(self, fake_service, table_client):
        raw = _signed_evm_tx()
        fake_service.add("transactions_main", [_tx_row()])
        fake_service.add(
            "transactions_raw",
            [
                {
                    "id": TX_HASH,
                    "data": {
                        "tx": {
                            "body": {
                                "messages": [
                                    {"@type": EVM_MSG_TYPE, "raw": base64.b64encode(raw).decode()}
                                ]
                            }
                        }
                    },
                }
            ],
        )
        fake_service.add(
            "messages_main",
            [{"id": TX_HASH, "message_index": 0, "type": EVM_MSG_TYPE, "metadata": {}}],
        )
        fake_service.add(
            "events_main",
            [
                _event(TX_HASH, 0, 0, "ethereum_tx", "ethereumTxHash", EVM_HASH),
                _event(TX_HASH, 0, 1, "ethereum_tx", "txGasUsed", "21000"),
            ],
        )

        tx = TransactionService(table_client).get_transaction(TX_HASH)

        assert tx.evm_data.hash == EVM_HASH
        assert tx.evm_data.gas_used == 21000
        assert tx.evm_data.nonce == 1
        assert tx.decoded_input.method_name == "Native Transfer"

    def test_ingest_error_stand_in(self, fake_service, table_client):
        fake_service.add("transactions_main", [])
        fake_service.add(
            "transactions_raw",
            [
                {
                    "id": TX_HASH,
                    "data": {
                        "error": {
                            "message": "failed to decode tx",
                            "reason": "unknown field",
                            "hash": TX_HASH,
                            "height": "12",
                        }
                    },
                }
            ],
        )

        tx = TransactionService(table_client).get_transaction(TX_HASH)

        assert tx.id == TX_HASH
        assert tx.height == 12
        assert tx.error == "failed to decode tx: unknown field"
        assert tx.ingest_error.reason == "unknown field"
        assert tx.messages == []

    def test_not_found(self, fake_service, table_client):
        fake_service.add("transactions_main", [])
        fake_service.add("transactions_raw", [])
        with pytest.raises(TransactionNotFound):
            TransactionService(table_client).get_transaction(TX_HASH)

    def test_raw_failure_is_tolerated(self, fake_service, table_client):
        fake_service.add("transactions_main", [_tx_row()])
        fake_service.fail("transactions_raw", 500)
        fake_service.add("messages_main", [])
        fake_service.add("events_main", [])

        tx = TransactionService(table_client).get_transaction(TX_HASH)
        assert tx.id == TX_HASH
        assert tx.raw_data is None

    def test_child_failure_degrades_to_empty(self, fake_service, table_client):
        fake_service.add("transactions_main", [_tx_row()])
        fake_service.add("transactions_raw", [])
        fake_service.fail("messages_main", requests.ConnectionError("reset"))
        fake_service.add("events_main", [])

        tx = TransactionService(table_client).get_transaction(TX_HASH)
        assert tx.messages == []

    def test_main_failure_propagates(self, fake_service, table_client):
        fake_service.fail("transactions_main", 503)
        fake_service.add("transactions_raw", [])
        with pytest.raises(UpstreamError):
            TransactionService(table_client).get_transaction(TX_HASH)

    def test_repeat_calls_are_identical(self, fake_service, table_client):
        fake_service.add("transactions_main", [_tx_row()])
        fake_service.add("transactions_raw", [])
        fake_service.add("messages_main", [_send_message()])
        fake_service.add("events_main", [_event(TX_HASH, 0, 0, "message", "action", "send")])
        service = TransactionService(table_client)

        first = json.dumps(service.get_transaction(TX_HASH).to_dict(), sort_keys=True)
        second = json.dumps(service.get_transaction(TX_HASH).to_dict(), sort_keys=True)
        assert first == second


class TestEvmLookup:
    """Lookups by EVM transaction hash"""

    def test_find_hash(self, fake_service, table_client):
        fake_service.add(
            "events_main", [_event(TX_HASH, 0, 0, "ethereum_tx", "ethereumTxHash", EVM_HASH)]
        )

        assert TransactionService(table_client).find_hash_by_evm_hash(EVM_HASH.upper()) == TX_HASH
        params = fake_service.calls_to("events_main")[0]
        assert params["event_type"] == "eq.ethereum_tx"
        assert params["attr_key"] == "eq.ethereumTxHash"
        assert params["limit"] == "1"

    def test_unknown_evm_hash(self, fake_service, table_client):
        fake_service.add("events_main", [])
        with pytest.raises(TransactionNotFound):
            TransactionService(table_client).get_transaction_by_evm_hash(EVM_HASH)


class TestGetTransactions:
    """Filtered transaction lists"""

    def _tables(self, fake_service, rows, total=None):
        fake_service.add("transactions_main", rows, total=total)
        fake_service.add("messages_main", [])
        fake_service.add("events_main", [])

    def test_page_with_children(self, fake_service, table_client):
        self._tables(fake_service, [_tx_row("T2", 2), _tx_row("T1", 1)], total=2)
        fake_service.add("messages_main", [_send_message("T1"), _send_message("T2")])

        page = TransactionService(table_client).get_transactions(limit=20)

        assert [t.id for t in page.data] == ["T2", "T1"]
        assert page.data[0].messages[0].id == "T2"
        assert page.pagination.total == 2
        assert page.pagination.has_next is False
        params = fake_service.calls_to("transactions_main")[0]
        assert params["order"] == "height.desc"

    def test_status_filters(self, fake_service, table_client):
        self._tables(fake_service, [])
        service = TransactionService(table_client)

        service.get_transactions(status="failed")
        service.get_transactions(status="success")

        calls = fake_service.calls_to("transactions_main")
        assert calls[0]["error"] == "not.is.null"
        assert calls[1]["error"] == "is.null"

    def test_unknown_status(self, table_client):
        with pytest.raises(ValueError):
            TransactionService(table_client).get_transactions(status="pending")

    def test_height_range_keeps_both_bounds(self, fake_service, table_client):
        self._tables(fake_service, [])
        TransactionService(table_client).get_transactions(block_height_min=10, block_height_max=20)

        params = fake_service.calls_to("transactions_main")[0]
        assert params["and"] == "(height.gte.10,height.lte.20)"
        assert "height" not in params

    def test_exact_height_wins_over_range(self, fake_service, table_client):
        self._tables(fake_service, [])
        TransactionService(table_client).get_transactions(block_height=15, block_height_min=10)
        assert fake_service.calls_to("transactions_main")[0]["height"] == "eq.15"

    def test_message_type_filter(self, fake_service, table_client):
        self._tables(fake_service, [_tx_row("T1")])
        fake_service.add(
            "messages_main",
            [_send_message("T1"), {"id": "T9", "message_index": 0, "type": "/other.Msg"}],
        )

        TransactionService(table_client).get_transactions(message_type=SEND_TYPE)

        pre_query = fake_service.calls_to("messages_main")[0]
        assert pre_query["type"] == f"eq.{SEND_TYPE}"
        assert pre_query["limit"] == "1000"
        assert fake_service.calls_to("transactions_main")[0]["or"] == "(id.eq.T1)"

    def test_message_type_without_matches(self, fake_service, table_client):
        self._tables(fake_service, [_tx_row("T1")])

        page = TransactionService(table_client).get_transactions(message_type="/none.Msg")

        assert page.data == []
        assert page.pagination.total == 0
        assert fake_service.calls_to("transactions_main") == []


class TestAddressTransactions:
    """Address history"""

    def _tables(self, fake_service):
        fake_service.add(
            "messages_main",
            [
                _send_message("T1", 0, "manifest1me"),
                _send_message("T2", 0, "manifest1other"),
                _send_message("T1", 1, "manifest1me"),
            ],
        )
        fake_service.add("transactions_main", [_tx_row("T1", 10), _tx_row("T2", 20)])
        fake_service.add("events_main", [_event("T2", 0, 0, "transfer", "recipient", "manifest1me")])

    def test_newest_first_with_children(self, fake_service, table_client):
        self._tables(fake_service)

        page = TransactionService(table_client).get_transactions_by_address("manifest1me")

        assert [t.id for t in page.data] == ["T2", "T1"]
        assert len(page.data[1].messages) == 2
        assert page.data[0].events[0].attr_value == "manifest1me"
        assert page.pagination.total == 2

        scan = fake_service.calls_to("messages_main")[0]
        assert scan["or"] == "(sender.eq.manifest1me,mentions.cs.{manifest1me})"
        assert scan["limit"] == "5000"

    def test_paging_happens_before_child_fetch(self, fake_service, table_client):
        self._tables(fake_service)

        page = TransactionService(table_client).get_transactions_by_address("manifest1me", limit=1, offset=1)

        assert [t.id for t in page.data] == ["T1"]
        assert page.pagination.has_prev is True
        assert fake_service.calls_to("events_main")[0]["id"] == "in.(T1)"

    def test_scan_cap_respected(self, fake_service, table_client):
        self._tables(fake_service)
        TransactionService(table_client, address_scan_cap=2).get_transactions_by_address("manifest1me")
        assert fake_service.calls_to("messages_main")[0]["limit"] == "2"

    def test_unknown_address(self, fake_service, table_client):
        fake_service.add("messages_main", [])
        page = TransactionService(table_client).get_transactions_by_address("manifest1none")
        assert page.data == []
        assert page.pagination.total == 0


class TestDistinctMessageTypes:
    def test_sorted_unique(self, fake_service, table_client):
        fake_service.add(
            "messages_main",
            [{"type": "/b.Msg"}, {"type": "/a.Msg"}, {"type": "/b.Msg"}, {"type": None}],
        )
        assert TransactionService(table_client).get_distinct_message_types() == ["/a.Msg", "/b.Msg"]
