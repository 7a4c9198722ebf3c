"""
EVM sub-transaction reconstruction

Two sources feed the view of an Ethereum-style transaction embedded in a
chain message: the signed transaction bytes carried in the raw payload, and
the ``ethereum_tx`` event attributes emitted on execution. Fields are merged
with a fixed precedence per field.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import rlp
from eth_account import Account
from eth_utils import big_endian_to_int, keccak, to_checksum_address
from rlp.exceptions import DecodingError as RLPDecodingError

from message_decoder import is_evm_message_type
from models import AccessListEntry, Event, EvmTransaction, Message
from signature_decoder import decode_input

logger = logging.getLogger(__name__)

EVM_EVENT_TYPE = "ethereum_tx"
EVM_HASH_ATTR = "ethereumTxHash"

LEGACY_TX = 0
ACCESS_LIST_TX = 1
DYNAMIC_FEE_TX = 2


@dataclass
class DecodedEvmPayload:
    """Fields recovered from signed transaction bytes"""

    hash: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    value: str = "0"
    gas_limit: int = 0
    gas_price: str = "0"
    nonce: int = 0
    input_data: str = "0x"
    type: int = LEGACY_TX
    chain_id: Optional[int] = None
    max_fee_per_gas: Optional[str] = None
    max_priority_fee_per_gas: Optional[str] = None
    access_list: List[AccessListEntry] = field(default_factory=list)


# ==================== RAW BYTES ====================


def _to_bytes(value: Any) -> Optional[bytes]:
    """Raw bytes arrive as base64 (protobuf JSON) or 0x hex"""
    if not value or not isinstance(value, str):
        return None
    try:
        if value.startswith("0x"):
            return bytes.fromhex(value[2:])
        return base64.b64decode(value, validate=True)
    except (ValueError, binascii.Error):
        return None


def _address(raw: bytes) -> Optional[str]:
    return to_checksum_address(raw) if raw else None


def _access_list(items: List[Any]) -> List[AccessListEntry]:
    return [
        AccessListEntry(
            address=to_checksum_address(address),
            storage_keys=["0x" + key.hex() for key in keys],
        )
        for address, keys in items
    ]


def decode_signed_transaction(raw: bytes) -> DecodedEvmPayload:
    """
    Decode a signed legacy, EIP-2930 or EIP-1559 transaction

    Raises:
        ValueError: when the bytes are not a recognised transaction envelope
    """
    if not raw:
        raise ValueError("empty transaction bytes")

    try:
        if raw[0] >= 0xC0:
            nonce, gas_price, gas, to, value, data, _v, _r, _s = rlp.decode(raw)
            payload = DecodedEvmPayload(
                type=LEGACY_TX,
                gas_price=str(big_endian_to_int(gas_price)),
            )
        elif raw[0] == ACCESS_LIST_TX:
            (chain_id, nonce, gas_price, gas, to, value, data, access_list,
             _y, _r, _s) = rlp.decode(raw[1:])
            payload = DecodedEvmPayload(
                type=ACCESS_LIST_TX,
                chain_id=big_endian_to_int(chain_id),
                gas_price=str(big_endian_to_int(gas_price)),
                access_list=_access_list(access_list),
            )
        elif raw[0] == DYNAMIC_FEE_TX:
            (chain_id, nonce, tip_cap, fee_cap, gas, to, value, data, access_list,
             _y, _r, _s) = rlp.decode(raw[1:])
            payload = DecodedEvmPayload(
                type=DYNAMIC_FEE_TX,
                chain_id=big_endian_to_int(chain_id),
                gas_price=str(big_endian_to_int(fee_cap)),
                max_fee_per_gas=str(big_endian_to_int(fee_cap)),
                max_priority_fee_per_gas=str(big_endian_to_int(tip_cap)),
                access_list=_access_list(access_list),
            )
        else:
            raise ValueError(f"unsupported transaction type 0x{raw[0]:02x}")

        payload.nonce = big_endian_to_int(nonce)
        payload.gas_limit = big_endian_to_int(gas)
        payload.to_address = _address(to)
        payload.value = str(big_endian_to_int(value))
        payload.input_data = "0x" + data.hex()
    except (RLPDecodingError, TypeError, AttributeError) as e:
        raise ValueError(f"malformed transaction bytes: {e}") from e

    payload.hash = "0x" + keccak(raw).hex()

    try:
        payload.from_address = Account.recover_transaction(raw)
    except Exception as e:
        logger.debug(f"Could not recover sender for {payload.hash}: {e}")

    return payload


def _decode_any_payload(data: Dict[str, Any], sender: Optional[str]) -> DecodedEvmPayload:
    """Older message layout: transaction fields inside a ``data`` Any"""
    type_url = data.get("@type", "")
    if "DynamicFeeTx" in type_url:
        tx_type = DYNAMIC_FEE_TX
    elif "AccessListTx" in type_url:
        tx_type = ACCESS_LIST_TX
    else:
        tx_type = LEGACY_TX

    input_bytes = _to_bytes(data.get("data")) or b""
    fee_cap = data.get("gas_fee_cap")
    return DecodedEvmPayload(
        from_address=sender or None,
        to_address=data.get("to") or None,
        value=str(data.get("value") or "0"),
        gas_limit=int(data.get("gas") or 0),
        gas_price=str(data.get("gas_price") or fee_cap or "0"),
        nonce=int(data.get("nonce") or 0),
        input_data="0x" + input_bytes.hex(),
        type=tx_type,
        max_fee_per_gas=fee_cap,
        max_priority_fee_per_gas=data.get("gas_tip_cap"),
        access_list=[
            AccessListEntry(address=a.get("address", ""), storage_keys=a.get("storage_keys") or [])
            for a in data.get("accesses") or []
        ],
    )


def decode_raw_payload(raw_record: Optional[Dict[str, Any]]) -> Optional[DecodedEvmPayload]:
    """Locate the EVM message in a raw transaction record and decode it"""
    if not raw_record:
        return None

    data = raw_record.get("data") or {}
    messages = ((data.get("tx") or {}).get("body") or {}).get("messages") or []
    for msg in messages:
        if not isinstance(msg, dict) or "MsgEthereumTx" not in msg.get("@type", ""):
            continue

        raw = _to_bytes(msg.get("raw"))
        if raw:
            try:
                return decode_signed_transaction(raw)
            except ValueError as e:
                logger.warning(f"Undecodable EVM bytes in {raw_record.get('id')}: {e}")
                return None

        if isinstance(msg.get("data"), dict):
            try:
                return _decode_any_payload(msg["data"], msg.get("from"))
            except (TypeError, ValueError) as e:
                logger.warning(f"Undecodable EVM payload in {raw_record.get('id')}: {e}")
                return None
    return None


# ==================== RECONSTRUCTION ====================


def contract_address_for(sender: str, nonce: int) -> str:
    """Address of a contract created by ``sender`` at ``nonce``"""
    sender_bytes = bytes.fromhex(sender[2:] if sender.startswith("0x") else sender)
    return to_checksum_address(keccak(rlp.encode([sender_bytes, nonce]))[12:])


def event_attributes(events: List[Event]) -> Dict[str, str]:
    """First non-empty value per ``ethereum_tx`` attribute key"""
    attrs: Dict[str, str] = {}
    for event in events:
        if event.event_type != EVM_EVENT_TYPE or not event.attr_value:
            continue
        attrs.setdefault(event.attr_key, event.attr_value)
    return attrs


def has_evm_messages(messages: List[Message]) -> bool:
    return any(is_evm_message_type(m.type) for m in messages)


def _int_or(value: Optional[str], default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def reconstruct(
    tx_hash: str,
    messages: List[Message],
    events: List[Event],
    raw_record: Optional[Dict[str, Any]] = None,
    success: bool = True,
) -> Optional[EvmTransaction]:
    """
    Build the EVM view of a transaction

    Args:
        tx_hash: Native transaction hash
        messages: Transaction messages (used for EVM detection)
        events: Transaction event attributes
        raw_record: Row from ``transactions_raw``
        success: Native success flag; becomes the EVM status

    Returns:
        EvmTransaction, or None when the transaction has no EVM data
    """
    if not has_evm_messages(messages):
        return None

    decoded = decode_raw_payload(raw_record)
    attrs = event_attributes(events)
    event_hash = attrs.get(EVM_HASH_ATTR)
    gas_used = attrs.get("txGasUsed")

    if decoded is None and not event_hash and not gas_used:
        return None

    decoded = decoded or DecodedEvmPayload(value=None)
    event_amount = attrs.get("amount")

    if decoded.value is not None and not (decoded.value == "0" and event_amount):
        value = decoded.value
    else:
        value = event_amount or "0"

    from_address = decoded.from_address or attrs.get("sender")
    to_address = decoded.to_address or attrs.get("recipient")

    contract_address = attrs.get("contract_address")
    if not contract_address and to_address is None and decoded.hash and from_address:
        try:
            contract_address = contract_address_for(from_address, decoded.nonce)
        except ValueError as e:
            logger.debug(f"Could not derive contract address for {tx_hash}: {e}")

    return EvmTransaction(
        hash=event_hash or decoded.hash or tx_hash,
        tx_hash=tx_hash,
        from_address=from_address,
        to_address=to_address,
        value=value,
        gas_limit=decoded.gas_limit,
        gas_price=decoded.gas_price,
        gas_used=_int_or(gas_used, 0),
        nonce=decoded.nonce,
        input_data=decoded.input_data,
        contract_address=contract_address,
        status=1 if success else 0,
        type=_int_or(attrs.get("txType"), decoded.type),
        max_fee_per_gas=decoded.max_fee_per_gas,
        max_priority_fee_per_gas=decoded.max_priority_fee_per_gas,
        access_list=decoded.access_list,
        decoded_input=decode_input(decoded.input_data),
    )
