"""
Transaction enrichment

Joins the canonical transaction, raw ingested payload, messages and event
attributes into one EnrichedTransaction. Lists are enriched with bounded
parallel fetches; address listings page the hash list first and then batch
their child queries.
"""

import base64
import binascii
import json
import logging
from dataclasses import fields
from typing import Any, Dict, Iterable, List, Optional

from concurrency import map_concurrently, optional, run_concurrently
from config import config
from evm_decoder import EVM_EVENT_TYPE, EVM_HASH_ATTR, reconstruct
from exceptions import TransactionNotFound
from filters import Contains, Eq, ILike, In, IsNull, NotNull, Or, between
from message_decoder import decode_message
from models import (
    EnrichedTransaction,
    Event,
    IngestError,
    Message,
    PaginatedResponse,
    Transaction,
)
from postgrest_client import PostgRESTClient

logger = logging.getLogger(__name__)

TX_TABLE = "transactions_main"
RAW_TABLE = "transactions_raw"
MESSAGES_TABLE = "messages_main"
EVENTS_TABLE = "events_main"

MESSAGE_ORDER = "message_index.asc"
EVENT_ORDER = "event_index.asc,attr_index.asc"

# Hashes per membership query when resolving address history
HASH_BATCH_SIZE = 100


def decode_error_field(error: Optional[str]) -> Optional[str]:
    """
    Separate real errors from log data stored in the error column

    A value that base64-decodes to valid JSON is event data and means the
    transaction succeeded; anything else is a genuine error message.
    """
    if not error or not isinstance(error, str):
        return error
    try:
        json.loads(base64.b64decode(error, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return error
    return None


def address_filter(address: str) -> Or:
    """Messages sent by ``address`` or mentioning it"""
    return Or(Eq("sender", address), Contains("mentions", address))


def raw_messages(raw_row: Optional[Dict[str, Any]]) -> List[Any]:
    data = (raw_row or {}).get("data") or {}
    return ((data.get("tx") or {}).get("body") or {}).get("messages") or []


def _enrich(tx: Transaction, **extra) -> EnrichedTransaction:
    base = {f.name: getattr(tx, f.name) for f in fields(Transaction)}
    return EnrichedTransaction(**base, **extra)


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def _chunks(items: List[str], size: int) -> List[List[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class TransactionService:
    """Assembles enriched transactions from the four transaction tables"""

    def __init__(
        self,
        client: PostgRESTClient,
        address_scan_cap: int = config.ADDRESS_MESSAGE_SCAN_CAP,
        message_type_hash_cap: int = config.MESSAGE_TYPE_HASH_CAP,
        message_type_sample_limit: int = config.ANALYTICS_MESSAGE_SAMPLE_LIMIT,
    ):
        self.client = client
        self.address_scan_cap = address_scan_cap
        self.message_type_hash_cap = message_type_hash_cap
        self.message_type_sample_limit = message_type_sample_limit

    # ==================== CHILD RECORDS ====================

    def get_messages(self, tx_hash: str) -> List[Message]:
        result = self.client.query(
            MESSAGES_TABLE, filters=[Eq("id", tx_hash)], order=MESSAGE_ORDER
        )
        return [Message.from_row(row) for row in result.rows]

    def get_events(self, tx_hash: str) -> List[Event]:
        result = self.client.query(
            EVENTS_TABLE, filters=[Eq("id", tx_hash)], order=EVENT_ORDER
        )
        return [Event.from_row(row) for row in result.rows]

    def _children(self, tx_hash: str) -> Dict[str, list]:
        """Messages and events in parallel; a failed fetch yields an empty list"""
        return run_concurrently(
            {
                "messages": optional(
                    lambda: self.get_messages(tx_hash), [], f"messages:{tx_hash}"
                ),
                "events": optional(
                    lambda: self.get_events(tx_hash), [], f"events:{tx_hash}"
                ),
            }
        )

    @staticmethod
    def _decode_messages(
        messages: List[Message], raw_row: Optional[Dict[str, Any]] = None
    ) -> List[Message]:
        """Attach raw payloads positionally, falling back to the metadata"""
        payloads = raw_messages(raw_row)
        for idx, msg in enumerate(messages):
            raw = payloads[idx] if idx < len(payloads) else None
            msg.data = raw or msg.metadata
            msg.decoded = decode_message(msg.data or {}, msg.type)
        return messages

    # ==================== SINGLE TRANSACTION ====================

    @staticmethod
    def ingest_stand_in(
        tx_hash: str, raw_row: Optional[Dict[str, Any]]
    ) -> Optional[EnrichedTransaction]:
        """Placeholder for a transaction the indexer could only record as an error"""
        data = (raw_row or {}).get("data") or {}
        error = data.get("error")
        if not isinstance(error, dict):
            return None

        ingest_error = IngestError(
            message=str(error.get("message") or "ingest error"),
            reason=error.get("reason"),
            hash=error.get("hash") or tx_hash,
        )
        height = error.get("height", data.get("height"))
        return EnrichedTransaction(
            id=tx_hash,
            height=int(height) if height is not None else None,
            timestamp=error.get("timestamp") or data.get("timestamp"),
            error=ingest_error.formatted(),
            ingest_error=ingest_error,
            raw_data=data,
        )

    def get_transaction(self, tx_hash: str) -> EnrichedTransaction:
        """
        Get a fully enriched transaction

        Raises:
            TransactionNotFound: neither a canonical row nor an ingest error exists
            UpstreamError: the canonical lookup itself failed
        """
        lookups = run_concurrently(
            {
                "main": lambda: self.client.query(
                    TX_TABLE, filters=[Eq("id", tx_hash)]
                ).first(),
                "raw": optional(
                    lambda: self.client.query(
                        RAW_TABLE, filters=[Eq("id", tx_hash)]
                    ).first(),
                    label=f"raw:{tx_hash}",
                ),
            }
        )
        main, raw_row = lookups["main"], lookups["raw"]

        if main is None:
            stand_in = self.ingest_stand_in(tx_hash, raw_row)
            if stand_in is None:
                raise TransactionNotFound(tx_hash)
            logger.info(f"Serving ingest-error stand-in for {tx_hash}")
            return stand_in

        tx = Transaction.from_row(main)
        tx.error = decode_error_field(tx.error)

        children = self._children(tx_hash)
        messages = self._decode_messages(children["messages"], raw_row)
        events = children["events"]

        evm_data = reconstruct(
            tx_hash, messages, events, raw_row, success=tx.error is None
        )

        return _enrich(
            tx,
            messages=messages,
            events=events,
            evm_data=evm_data,
            decoded_input=evm_data.decoded_input if evm_data else None,
            raw_data=(raw_row or {}).get("data"),
        )

    def find_hash_by_evm_hash(self, evm_hash: str) -> Optional[str]:
        """Native hash of the transaction that emitted ``evm_hash``"""
        row = self.client.query(
            EVENTS_TABLE,
            select="id",
            filters=[
                Eq("event_type", EVM_EVENT_TYPE),
                Eq("attr_key", EVM_HASH_ATTR),
                ILike("attr_value", evm_hash),
            ],
            limit=1,
        ).first()
        return row["id"] if row else None

    def get_transaction_by_evm_hash(self, evm_hash: str) -> EnrichedTransaction:
        tx_hash = self.find_hash_by_evm_hash(evm_hash)
        if tx_hash is None:
            raise TransactionNotFound(evm_hash)
        return self.get_transaction(tx_hash)

    # ==================== LISTS ====================

    def _with_children(self, row: Dict[str, Any]) -> EnrichedTransaction:
        tx = Transaction.from_row(row)
        tx.error = decode_error_field(tx.error)
        children = self._children(tx.id)
        return _enrich(
            tx,
            messages=self._decode_messages(children["messages"]),
            events=children["events"],
        )

    def _hashes_for_message_type(self, message_type: str) -> List[str]:
        result = self.client.query(
            MESSAGES_TABLE,
            select="id",
            filters=[Eq("type", message_type)],
            order="id.desc",
            limit=self.message_type_hash_cap,
        )
        return _unique(row.get("id") for row in result.rows)

    def get_transactions(
        self,
        limit: int = 20,
        offset: int = 0,
        status: Optional[str] = None,
        block_height: Optional[int] = None,
        block_height_min: Optional[int] = None,
        block_height_max: Optional[int] = None,
        timestamp_min: Optional[str] = None,
        timestamp_max: Optional[str] = None,
        message_type: Optional[str] = None,
    ) -> PaginatedResponse:
        """
        List transactions, newest first

        Args:
            status: "success" or "failed"
            block_height: Exact height; takes precedence over the range
            block_height_min / block_height_max: Inclusive height range
            timestamp_min / timestamp_max: Inclusive ISO-8601 range
            message_type: Only transactions carrying this message type URL
        """
        filters = []
        if status == "success":
            filters.append(IsNull("error"))
        elif status == "failed":
            filters.append(NotNull("error"))
        elif status:
            raise ValueError(f"Unknown status filter: {status}")

        if block_height is not None:
            filters.append(Eq("height", block_height))
        else:
            filters.extend(between("height", block_height_min, block_height_max))
        filters.extend(between("timestamp", timestamp_min, timestamp_max))

        if message_type:
            hashes = self._hashes_for_message_type(message_type)
            if not hashes:
                return PaginatedResponse.build([], 0, limit, offset)
            filters.append(Or([Eq("id", h) for h in hashes]))

        result = self.client.query(
            TX_TABLE,
            filters=filters,
            order="height.desc",
            limit=limit,
            offset=offset,
            count=True,
        )
        enriched = map_concurrently(self._with_children, result.rows)
        total = result.total if result.total is not None else len(enriched)
        return PaginatedResponse.build(enriched, total, limit, offset)

    def address_hashes(self, address: str) -> List[Dict[str, Any]]:
        """
        Every transaction touching ``address`` as ``id,height,timestamp``
        rows, newest first. The message scan is capped.
        """
        messages = self.client.query(
            MESSAGES_TABLE,
            select="id",
            filters=[address_filter(address)],
            order="id.desc",
            limit=self.address_scan_cap,
        )
        hashes = _unique(row.get("id") for row in messages.rows)
        if not hashes:
            return []

        def fetch(batch: List[str]) -> List[Dict[str, Any]]:
            return self.client.query(
                TX_TABLE, select="id,height,timestamp", filters=[In("id", batch)]
            ).rows

        rows = [
            row
            for batch in map_concurrently(fetch, _chunks(hashes, HASH_BATCH_SIZE))
            for row in batch
        ]
        rows.sort(key=lambda r: (r.get("height") or 0, r.get("id") or ""), reverse=True)
        return rows

    def get_transactions_by_address(
        self, address: str, limit: int = 50, offset: int = 0
    ) -> PaginatedResponse:
        ordered = self.address_hashes(address)
        page = [row["id"] for row in ordered[offset : offset + limit]]
        if not page:
            return PaginatedResponse.build([], len(ordered), limit, offset)

        batch = run_concurrently(
            {
                "transactions": lambda: self.client.query(
                    TX_TABLE, filters=[In("id", page)]
                ).rows,
                "messages": lambda: self.client.query(
                    MESSAGES_TABLE, filters=[In("id", page)], order=f"id.asc,{MESSAGE_ORDER}"
                ).rows,
                "events": lambda: self.client.query(
                    EVENTS_TABLE, filters=[In("id", page)], order=f"id.asc,{EVENT_ORDER}"
                ).rows,
            }
        )

        messages_by_tx: Dict[str, List[Message]] = {}
        for row in batch["messages"]:
            messages_by_tx.setdefault(row.get("id"), []).append(Message.from_row(row))
        events_by_tx: Dict[str, List[Event]] = {}
        for row in batch["events"]:
            events_by_tx.setdefault(row.get("id"), []).append(Event.from_row(row))
        tx_by_id = {row.get("id"): row for row in batch["transactions"]}

        enriched = []
        for tx_hash in page:
            row = tx_by_id.get(tx_hash)
            if row is None:
                continue
            tx = Transaction.from_row(row)
            tx.error = decode_error_field(tx.error)
            messages = self._decode_messages(messages_by_tx.get(tx_hash, []))
            events = events_by_tx.get(tx_hash, [])
            evm_data = reconstruct(tx_hash, messages, events, success=tx.error is None)
            enriched.append(
                _enrich(
                    tx,
                    messages=messages,
                    events=events,
                    evm_data=evm_data,
                    decoded_input=evm_data.decoded_input if evm_data else None,
                )
            )

        return PaginatedResponse.build(enriched, len(ordered), limit, offset)

    def get_distinct_message_types(self) -> List[str]:
        result = self.client.query(
            MESSAGES_TABLE,
            select="type",
            order="type.asc",
            limit=self.message_type_sample_limit,
        )
        return sorted({row["type"] for row in result.rows if row.get("type")})
