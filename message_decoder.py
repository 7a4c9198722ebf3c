"""
Message payload decoding
Turns raw message JSON into a tagged union keyed by type URL, with an opaque
variant for anything unrecognised
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


# ==================== DATA MODELS ====================


@dataclass
class DecodedMessage:
    """Common header of every decoded message variant"""

    kind: str
    type_url: str
    type_name: str
    sender: Optional[str] = None

    @property
    def known(self) -> bool:
        return self.kind != "opaque"


@dataclass
class BankSend(DecodedMessage):
    to_address: Optional[str] = None
    amount: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class BankMultiSend(DecodedMessage):
    inputs: List[Dict[str, Any]] = field(default_factory=list)
    outputs: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class StakingDelegation(DecodedMessage):
    """Delegate and undelegate share one shape"""

    validator: Optional[str] = None
    amount: Optional[Dict[str, str]] = None


@dataclass
class StakingRedelegate(DecodedMessage):
    validator_src: Optional[str] = None
    validator_dst: Optional[str] = None
    amount: Optional[Dict[str, str]] = None


@dataclass
class CreateValidator(DecodedMessage):
    validator: Optional[str] = None
    moniker: Optional[str] = None
    commission: Dict[str, Any] = field(default_factory=dict)
    self_delegation: Optional[Dict[str, str]] = None


@dataclass
class WithdrawReward(DecodedMessage):
    validator: Optional[str] = None


@dataclass
class GovSubmitProposal(DecodedMessage):
    title: Optional[str] = None
    initial_deposit: List[Dict[str, str]] = field(default_factory=list)
    messages: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class GovVote(DecodedMessage):
    proposal_id: Optional[str] = None
    option: Optional[str] = None


@dataclass
class GovDeposit(DecodedMessage):
    proposal_id: Optional[str] = None
    amount: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class IbcTransfer(DecodedMessage):
    receiver: Optional[str] = None
    source_port: Optional[str] = None
    source_channel: Optional[str] = None
    token: Optional[Dict[str, str]] = None
    timeout_height: Optional[Dict[str, Any]] = None
    timeout_timestamp: Optional[str] = None
    memo: Optional[str] = None


@dataclass
class IbcPacket(DecodedMessage):
    """Relayer messages carrying a packet (recv, ack, timeout)"""

    source_port: Optional[str] = None
    source_channel: Optional[str] = None
    destination_port: Optional[str] = None
    destination_channel: Optional[str] = None
    sequence: Optional[str] = None
    packet_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WasmStoreCode(DecodedMessage):
    code_size: int = 0


@dataclass
class WasmInstantiate(DecodedMessage):
    admin: Optional[str] = None
    code_id: Optional[str] = None
    label: Optional[str] = None
    msg: Any = None
    funds: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class WasmExecute(DecodedMessage):
    contract: Optional[str] = None
    msg: Any = None
    funds: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class EthereumTx(DecodedMessage):
    """Wrapper around a signed EVM transaction"""

    raw: Optional[str] = None
    hash: Optional[str] = None


@dataclass
class AuthzGrant(DecodedMessage):
    grantee: Optional[str] = None
    authorization: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthzExec(DecodedMessage):
    msgs: List[DecodedMessage] = field(default_factory=list)


@dataclass
class OpaqueMessage(DecodedMessage):
    """Unknown type: the payload is kept as-is"""

    payload: Dict[str, Any] = field(default_factory=dict)


# ==================== MESSAGE TYPE REGISTRY ====================


class MessageTypeRegistry:
    """Registry of known message types with human-readable names"""

    COSMOS_MESSAGES = {
        "/cosmos.bank.v1beta1.MsgSend": "Bank Transfer",
        "/cosmos.bank.v1beta1.MsgMultiSend": "Multi-Send",
        "/cosmos.staking.v1beta1.MsgDelegate": "Delegate",
        "/cosmos.staking.v1beta1.MsgUndelegate": "Undelegate",
        "/cosmos.staking.v1beta1.MsgBeginRedelegate": "Redelegate",
        "/cosmos.staking.v1beta1.MsgCreateValidator": "Create Validator",
        "/cosmos.distribution.v1beta1.MsgWithdrawDelegatorReward": "Withdraw Rewards",
        "/cosmos.distribution.v1beta1.MsgWithdrawValidatorCommission": "Withdraw Commission",
        "/cosmos.gov.v1beta1.MsgSubmitProposal": "Submit Proposal",
        "/cosmos.gov.v1.MsgSubmitProposal": "Submit Proposal",
        "/cosmos.gov.v1beta1.MsgVote": "Vote",
        "/cosmos.gov.v1.MsgVote": "Vote",
        "/cosmos.gov.v1beta1.MsgDeposit": "Deposit",
        "/cosmos.gov.v1.MsgDeposit": "Deposit",
        "/cosmos.authz.v1beta1.MsgGrant": "Grant Authorization",
        "/cosmos.authz.v1beta1.MsgExec": "Execute Authorized",
    }

    IBC_MESSAGES = {
        "/ibc.applications.transfer.v1.MsgTransfer": "IBC Transfer",
        "/ibc.core.channel.v1.MsgRecvPacket": "IBC Receive Packet",
        "/ibc.core.channel.v1.MsgAcknowledgement": "IBC Acknowledgement",
        "/ibc.core.channel.v1.MsgTimeout": "IBC Timeout",
        "/ibc.core.client.v1.MsgUpdateClient": "Update IBC Client",
    }

    WASM_MESSAGES = {
        "/cosmwasm.wasm.v1.MsgStoreCode": "Store Contract Code",
        "/cosmwasm.wasm.v1.MsgInstantiateContract": "Instantiate Contract",
        "/cosmwasm.wasm.v1.MsgExecuteContract": "Execute Contract",
    }

    EVM_MESSAGES = {
        "/cosmos.evm.vm.v1.MsgEthereumTx": "Ethereum Transaction",
        "/ethermint.evm.v1.MsgEthereumTx": "Ethereum Transaction",
    }

    @classmethod
    def get_all_messages(cls) -> Dict[str, str]:
        """Get combined registry of all message types"""
        all_messages = {}
        all_messages.update(cls.COSMOS_MESSAGES)
        all_messages.update(cls.IBC_MESSAGES)
        all_messages.update(cls.WASM_MESSAGES)
        all_messages.update(cls.EVM_MESSAGES)
        return all_messages

    @classmethod
    def get_type_name(cls, type_url: str) -> str:
        """Human-readable name; unknown types fall back to the last path segment"""
        name = cls.get_all_messages().get(type_url)
        if name:
            return name
        return type_url.rsplit(".", 1)[-1] if type_url else "Unknown Message"


def is_evm_message_type(type_url: Optional[str]) -> bool:
    """True when a message type marks its transaction as EVM-flavoured"""
    return bool(type_url) and ("MsgEthereumTx" in type_url or "evm" in type_url)


# ==================== DECODERS ====================


def _decode_base64_json(value: Any) -> Any:
    """Contract messages arrive either as objects or base64 JSON"""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(base64.b64decode(value, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return value


def _bank(type_url: str, name: str, msg: Dict[str, Any]) -> DecodedMessage:
    if type_url.endswith("MsgMultiSend"):
        inputs = msg.get("inputs", [])
        sender = inputs[0].get("address") if inputs else None
        return BankMultiSend("bank_multi_send", type_url, name, sender, inputs, msg.get("outputs", []))
    return BankSend(
        "bank_send",
        type_url,
        name,
        msg.get("from_address") or msg.get("fromAddress"),
        msg.get("to_address") or msg.get("toAddress"),
        msg.get("amount", []),
    )


def _staking(type_url: str, name: str, msg: Dict[str, Any]) -> DecodedMessage:
    delegator = msg.get("delegator_address") or msg.get("delegatorAddress")
    if type_url.endswith("MsgBeginRedelegate"):
        return StakingRedelegate(
            "staking_redelegate",
            type_url,
            name,
            delegator,
            msg.get("validator_src_address"),
            msg.get("validator_dst_address"),
            msg.get("amount"),
        )
    if type_url.endswith("MsgCreateValidator"):
        return CreateValidator(
            "staking_create_validator",
            type_url,
            name,
            delegator,
            msg.get("validator_address"),
            (msg.get("description") or {}).get("moniker"),
            msg.get("commission") or {},
            msg.get("value"),
        )
    kind = "staking_undelegate" if type_url.endswith("MsgUndelegate") else "staking_delegate"
    return StakingDelegation(
        kind,
        type_url,
        name,
        delegator,
        msg.get("validator_address") or msg.get("validatorAddress"),
        msg.get("amount"),
    )


def _distribution(type_url: str, name: str, msg: Dict[str, Any]) -> DecodedMessage:
    if type_url.endswith("MsgWithdrawValidatorCommission"):
        validator = msg.get("validator_address")
        return WithdrawReward("distribution_withdraw_commission", type_url, name, validator, validator)
    return WithdrawReward(
        "distribution_withdraw_reward",
        type_url,
        name,
        msg.get("delegator_address"),
        msg.get("validator_address"),
    )


def _gov(type_url: str, name: str, msg: Dict[str, Any]) -> DecodedMessage:
    if type_url.endswith("MsgVote"):
        return GovVote(
            "gov_vote",
            type_url,
            name,
            msg.get("voter"),
            str(msg.get("proposal_id")) if msg.get("proposal_id") is not None else None,
            msg.get("option"),
        )
    if type_url.endswith("MsgDeposit"):
        return GovDeposit(
            "gov_deposit",
            type_url,
            name,
            msg.get("depositor"),
            str(msg.get("proposal_id")) if msg.get("proposal_id") is not None else None,
            msg.get("amount", []),
        )
    content = msg.get("content") or {}
    return GovSubmitProposal(
        "gov_submit_proposal",
        type_url,
        name,
        msg.get("proposer"),
        msg.get("title") or content.get("title"),
        msg.get("initial_deposit", []),
        msg.get("messages", []),
    )


def _ibc(type_url: str, name: str, msg: Dict[str, Any]) -> DecodedMessage:
    if type_url.endswith("MsgTransfer"):
        return IbcTransfer(
            "ibc_transfer",
            type_url,
            name,
            msg.get("sender"),
            msg.get("receiver"),
            msg.get("source_port") or msg.get("sourcePort"),
            msg.get("source_channel") or msg.get("sourceChannel"),
            msg.get("token"),
            msg.get("timeout_height"),
            msg.get("timeout_timestamp"),
            msg.get("memo"),
        )
    packet = msg.get("packet")
    if isinstance(packet, dict):
        data = _decode_base64_json(packet.get("data"))
        return IbcPacket(
            "ibc_packet",
            type_url,
            name,
            msg.get("signer"),
            packet.get("source_port") or packet.get("sourcePort"),
            packet.get("source_channel") or packet.get("sourceChannel"),
            packet.get("destination_port") or packet.get("destinationPort"),
            packet.get("destination_channel") or packet.get("destinationChannel"),
            str(packet.get("sequence")) if packet.get("sequence") is not None else None,
            data if isinstance(data, dict) else {},
        )
    return _opaque(type_url, name, msg)


def _wasm(type_url: str, name: str, msg: Dict[str, Any]) -> DecodedMessage:
    sender = msg.get("sender")
    if type_url.endswith("MsgStoreCode"):
        return WasmStoreCode("wasm_store_code", type_url, name, sender, len(msg.get("wasm_byte_code") or ""))
    if type_url.endswith("MsgInstantiateContract"):
        return WasmInstantiate(
            "wasm_instantiate",
            type_url,
            name,
            sender,
            msg.get("admin"),
            str(msg.get("code_id")) if msg.get("code_id") is not None else None,
            msg.get("label"),
            _decode_base64_json(msg.get("msg")),
            msg.get("funds", []),
        )
    return WasmExecute(
        "wasm_execute",
        type_url,
        name,
        sender,
        msg.get("contract"),
        _decode_base64_json(msg.get("msg")),
        msg.get("funds", []),
    )


def _evm(type_url: str, name: str, msg: Dict[str, Any]) -> DecodedMessage:
    raw = msg.get("raw")
    if raw is None and isinstance(msg.get("data"), dict):
        raw = msg["data"].get("raw")
    return EthereumTx("evm_ethereum_tx", type_url, name, msg.get("from"), raw, msg.get("hash"))


def _authz(type_url: str, name: str, msg: Dict[str, Any]) -> DecodedMessage:
    if type_url.endswith("MsgExec"):
        inner = [decode_message(m) for m in msg.get("msgs", []) if isinstance(m, dict)]
        return AuthzExec("authz_exec", type_url, name, msg.get("grantee"), inner)
    return AuthzGrant(
        "authz_grant",
        type_url,
        name,
        msg.get("granter"),
        msg.get("grantee"),
        (msg.get("grant") or {}).get("authorization") or {},
    )


def _opaque(type_url: str, name: str, msg: Dict[str, Any]) -> DecodedMessage:
    sender = (
        msg.get("sender")
        or msg.get("from_address")
        or msg.get("delegator_address")
        or msg.get("creator")
        or msg.get("signer")
        or None
    )
    return OpaqueMessage("opaque", type_url, name, sender, msg)


DECODERS: Dict[str, Callable[[str, str, Dict[str, Any]], DecodedMessage]] = {
    "/cosmos.bank.": _bank,
    "/cosmos.staking.": _staking,
    "/cosmos.distribution.": _distribution,
    "/cosmos.gov.": _gov,
    "/cosmos.authz.": _authz,
    "/ibc.": _ibc,
    "/cosmwasm.": _wasm,
}


def decode_message(msg: Dict[str, Any], type_url: Optional[str] = None) -> DecodedMessage:
    """
    Decode a raw message payload

    Args:
        msg: Raw message JSON (as found in the transaction body)
        type_url: Type URL when it is not embedded as ``@type``

    Returns:
        A DecodedMessage variant; unknown or malformed payloads decode to
        OpaqueMessage
    """
    msg = msg if isinstance(msg, dict) else {}
    type_url = type_url or msg.get("@type") or msg.get("type") or ""
    name = MessageTypeRegistry.get_type_name(type_url)

    if type_url in MessageTypeRegistry.EVM_MESSAGES or "MsgEthereumTx" in type_url:
        decoder = _evm
    else:
        decoder = next(
            (fn for prefix, fn in DECODERS.items() if type_url.startswith(prefix)), _opaque
        )

    try:
        return decoder(type_url, name, msg)
    except (AttributeError, TypeError) as e:
        logger.debug(f"Falling back to opaque decode for {type_url}: {e}")
        return _opaque(type_url, name, msg)
