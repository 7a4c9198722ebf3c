"""
Typed records returned by the explorer core

Rows from the table service are parsed into these dataclasses; ``to_dict``
produces the JSON shape handed to consumers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from message_decoder import DecodedMessage


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# ==================== CHAIN RECORDS ====================


@dataclass
class Coin:
    """Token amount with denomination"""

    denom: str
    amount: str

    @property
    def amount_decimal(self) -> Decimal:
        return Decimal(self.amount)


@dataclass
class Fee:
    """Transaction fee; the indexer stores the limit as ``gasLimit``"""

    amount: List[Coin] = field(default_factory=list)
    gas_limit: str = "0"
    payer: Optional[str] = None
    granter: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Fee:
        data = data or {}
        coins = data.get("amount") or []
        return cls(
            amount=[
                Coin(denom=c.get("denom", ""), amount=str(c.get("amount", "0")))
                for c in coins
                if isinstance(c, dict)
            ],
            gas_limit=str(data.get("gasLimit", data.get("gas_limit", "0"))),
            payer=data.get("payer"),
            granter=data.get("granter"),
        )


@dataclass
class Block:
    """Raw block row from ``blocks_raw``"""

    id: int
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Block:
        return cls(id=_int(row.get("id")), data=row.get("data") or {})

    @property
    def height(self) -> int:
        return self.id

    @property
    def header(self) -> Dict[str, Any]:
        return (self.data.get("block") or {}).get("header") or {}

    @property
    def chain_id(self) -> Optional[str]:
        return self.header.get("chain_id") or self.header.get("chainId")

    @property
    def time(self) -> Optional[str]:
        return self.header.get("time")

    @property
    def proposer_address(self) -> Optional[str]:
        return self.header.get("proposer_address") or self.header.get("proposerAddress")

    @property
    def block_hash(self) -> Optional[str]:
        block_id = self.data.get("block_id") or self.data.get("blockId") or {}
        return block_id.get("hash")

    @property
    def raw_txs(self) -> List[str]:
        return ((self.data.get("block") or {}).get("data") or {}).get("txs") or []

    @property
    def decoded_txs(self) -> Optional[List[Any]]:
        return self.data.get("txs")

    @property
    def signature_count(self) -> int:
        block = self.data.get("block") or {}
        commit = (
            block.get("last_commit")
            or block.get("lastCommit")
            or self.data.get("lastCommit")
            or {}
        )
        return len(commit.get("signatures") or [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "height": self.height,
            "chain_id": self.chain_id,
            "time": self.time,
            "proposer_address": self.proposer_address,
            "hash": self.block_hash,
            "tx_count": len(self.raw_txs),
            "signature_count": self.signature_count,
            "data": self.data,
        }


@dataclass
class Message:
    """Row from ``messages_main``"""

    id: str
    message_index: int
    type: Optional[str] = None
    sender: Optional[str] = None
    mentions: List[str] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None
    decoded: Optional[DecodedMessage] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Message:
        return cls(
            id=row.get("id", ""),
            message_index=_int(row.get("message_index")),
            type=row.get("type"),
            sender=row.get("sender"),
            mentions=row.get("mentions") or [],
            metadata=row.get("metadata"),
        )


@dataclass
class Event:
    """One attribute row from ``events_main``"""

    id: str
    event_index: int
    attr_index: int
    event_type: str
    attr_key: str
    attr_value: Optional[str] = None
    msg_index: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Event:
        msg_index = row.get("msg_index")
        return cls(
            id=row.get("id", ""),
            event_index=_int(row.get("event_index")),
            attr_index=_int(row.get("attr_index")),
            event_type=row.get("event_type", ""),
            attr_key=row.get("attr_key", ""),
            attr_value=row.get("attr_value"),
            msg_index=None if msg_index is None else _int(msg_index),
        )

    @property
    def message_position(self) -> int:
        """Message this attribute belongs to; null means the first message"""
        return 0 if self.msg_index is None else self.msg_index


# ==================== EVM ====================


@dataclass
class DecodedParam:
    name: str
    type: str
    value: Any


@dataclass
class DecodedInput:
    """Call data decoded against a known method signature"""

    method_id: str
    method_name: str
    params: List[DecodedParam] = field(default_factory=list)


@dataclass
class AccessListEntry:
    address: str
    storage_keys: List[str] = field(default_factory=list)


@dataclass
class EvmTransaction:
    """Ethereum-style transaction embedded in a chain message"""

    hash: str
    tx_hash: str
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    value: str = "0"
    gas_limit: int = 0
    gas_price: str = "0"
    gas_used: int = 0
    nonce: int = 0
    input_data: str = "0x"
    contract_address: Optional[str] = None
    status: int = 1
    type: int = 0
    max_fee_per_gas: Optional[str] = None
    max_priority_fee_per_gas: Optional[str] = None
    access_list: List[AccessListEntry] = field(default_factory=list)
    decoded_input: Optional[DecodedInput] = None


# ==================== TRANSACTIONS ====================


@dataclass
class IngestError:
    """Failure payload recorded by the raw ingester"""

    message: str
    reason: Optional[str]
    hash: str

    def formatted(self) -> str:
        return f"{self.message}: {self.reason}" if self.reason else self.message


@dataclass
class Transaction:
    """Canonical row from ``transactions_main``"""

    id: str
    fee: Fee = field(default_factory=Fee)
    memo: Optional[str] = None
    error: Optional[str] = None
    height: Optional[int] = None
    timestamp: Optional[str] = None
    proposal_ids: Optional[List[str]] = None
    gas_used: Optional[int] = None
    gas_wanted: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Transaction:
        height = row.get("height")
        return cls(
            id=row.get("id", ""),
            fee=Fee.from_dict(row.get("fee")),
            memo=row.get("memo"),
            error=row.get("error"),
            height=None if height is None else _int(height),
            timestamp=row.get("timestamp"),
            proposal_ids=row.get("proposal_ids"),
            gas_used=None if row.get("gas_used") is None else _int(row.get("gas_used")),
            gas_wanted=None
            if row.get("gas_wanted") is None
            else _int(row.get("gas_wanted")),
        )


@dataclass
class EnrichedTransaction(Transaction):
    """Canonical transaction (or ingest-error stand-in) with its children"""

    messages: List[Message] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    evm_data: Optional[EvmTransaction] = None
    decoded_input: Optional[DecodedInput] = None
    ingest_error: Optional[IngestError] = None
    raw_data: Optional[Dict[str, Any]] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ==================== PAGINATION ====================


@dataclass
class Pagination:
    total: int
    limit: int
    offset: int
    has_next: bool
    has_prev: bool


@dataclass
class PaginatedResponse:
    data: List[Any]
    pagination: Pagination

    @classmethod
    def build(cls, data: List[Any], total: int, limit: int, offset: int) -> PaginatedResponse:
        return cls(
            data=data,
            pagination=Pagination(
                total=total,
                limit=limit,
                offset=offset,
                has_next=offset + limit < total,
                has_prev=offset > 0,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [item.to_dict() if hasattr(item, "to_dict") else item for item in self.data],
            "pagination": asdict(self.pagination),
        }


# ==================== AGGREGATES ====================


@dataclass
class ChainStats:
    latest_block: int = 0
    total_transactions: int = 0
    avg_block_time: float = 0.0
    tps: float = 0.0
    active_validators: int = 0
    total_supply: str = "0"


@dataclass
class AddressStats:
    address: str
    transaction_count: int = 0
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None
    total_sent: int = 0
    total_received: int = 0


@dataclass
class ChainInfo:
    chain_id: str
    chain_name: str
    base_denom: str
    display_denom: str
    decimals: int


@dataclass
class SearchResult:
    type: str
    value: Any
    score: int

    def to_dict(self) -> Dict[str, Any]:
        value = self.value.to_dict() if hasattr(self.value, "to_dict") else self.value
        return {"type": self.type, "value": value, "score": self.score}


# ==================== DENOMS ====================


@dataclass
class ResolvedDenom:
    denom: str
    symbol: str
    display_name: str
    decimals: int
    is_ibc: bool
    source: str  # database | static | ibc-cache | inferred


@dataclass
class IBCChannelInfo:
    channel_id: str
    port_id: str
    counterparty_channel_id: str
    counterparty_port_id: str
    counterparty_chain_id: str
    connection_id: str
    state: str


@dataclass
class IBCDenomInfo:
    denom: str
    base_denom: str
    display_name: str
    symbol: str
    decimals: int
    path: str
    source_chain_id: str
    ibc_hash: str


def to_dict(obj: Any) -> Any:
    """Serialize any record (or list of records) for JSON output"""
    if isinstance(obj, list):
        return [to_dict(item) for item in obj]
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    return obj
