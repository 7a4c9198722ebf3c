"""
Denomination and IBC channel resolution

Resolution order for a denom: metadata loaded from the ``denom_metadata``
table, the persisted resolved-IBC cache, the static table of well-known
denoms, then inference from the denom prefix.
"""

import hashlib
import json
import logging
import math
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Union

import requests

from cache import MemoryCache, RedisCache
from config import config
from exceptions import ExplorerError, UpstreamError
from models import Event, IBCChannelInfo, IBCDenomInfo, ResolvedDenom
from postgrest_client import PostgRESTClient

logger = logging.getLogger(__name__)

METADATA_TABLE = "denom_metadata"
IBC_PREFIX = "ibc/"
RECV_PACKET_EVENT = "recv_packet"

# denom -> (display name, symbol, decimals)
KNOWN_DENOMS = {
    "ujuno": ("Juno", "JUNO", 6),
    "uatom": ("Cosmos Hub", "ATOM", 6),
    "uosmo": ("Osmosis", "OSMO", 6),
    "uakt": ("Akash", "AKT", 6),
    "ustars": ("Stargaze", "STARS", 6),
    "aevmos": ("Evmos", "EVMOS", 18),
    "inj": ("Injective", "INJ", 18),
    "axl": ("Axelar", "AXL", 6),
    "umfx": ("Manifest", "MFX", 6),
    "upoa": ("POA", "POA", 6),
}

# IBC hash -> (base denom, source chain)
IBC_DENOM_MAP = {
    "C4CFF46FD6DE35CA4CF4CE031E643C8FDC9BA4B99AE598E9B0ED98FE3A2319F9": ("uatom", "cosmoshub"),
}

Store = Union[MemoryCache, RedisCache]


def ibc_hash(denom: str) -> Optional[str]:
    """Hash portion of an ``ibc/HASH`` denom"""
    if not denom.startswith(IBC_PREFIX):
        return None
    return denom[len(IBC_PREFIX):]


def ibc_denom_hash(port: str, channel: str, base_denom: str) -> str:
    """Uppercase SHA-256 hex of the ``{port}/{channel}/{base_denom}`` trace"""
    path = f"{port}/{channel}/{base_denom}"
    return hashlib.sha256(path.encode("utf-8")).hexdigest().upper()


def extract_symbol(base_denom: str) -> str:
    if base_denom.startswith(("u", "a")):
        return base_denom[1:].upper()
    return base_denom.upper()


def guess_decimals(base_denom: str) -> int:
    if base_denom.startswith("a"):
        return 18
    return 6


def static_metadata(denom: str) -> ResolvedDenom:
    """Static table lookup with prefix inference as the last resort"""
    hash_part = ibc_hash(denom)
    if hash_part is not None:
        mapped = IBC_DENOM_MAP.get(hash_part.upper())
        if mapped and mapped[0] in KNOWN_DENOMS:
            name, symbol, decimals = KNOWN_DENOMS[mapped[0]]
            return ResolvedDenom(denom, symbol, name, decimals, True, "static")
        return ResolvedDenom(denom, denom, denom, 6, True, "inferred")

    known = KNOWN_DENOMS.get(denom.lower())
    if known:
        name, symbol, decimals = known
        return ResolvedDenom(denom, symbol, name, decimals, False, "static")

    if denom.startswith("u"):
        symbol = denom[1:].upper()
        return ResolvedDenom(denom, symbol, symbol, 6, False, "static")
    if denom.startswith("a"):
        symbol = denom[1:].upper()
        return ResolvedDenom(denom, symbol, symbol, 18, False, "static")

    return ResolvedDenom(denom, denom.upper(), denom, 0, False, "inferred")


def extract_ibc_packets(events: List[Event]) -> List[Dict[str, Any]]:
    """
    Collect received IBC transfer packets from transaction events

    Returns:
        One entry per ``recv_packet`` event carrying parseable packet data:
        ``{"packet", "src_channel", "src_port", "dst_channel", "dst_port"}``
    """
    grouped: Dict[int, Dict[str, str]] = {}
    for event in events:
        if event.event_type == RECV_PACKET_EVENT:
            grouped.setdefault(event.event_index, {})[event.attr_key] = event.attr_value

    packets = []
    for index in sorted(grouped):
        attrs = grouped[index]
        try:
            packet = json.loads(attrs.get("packet_data") or "")
        except json.JSONDecodeError:
            logger.debug(f"Skipping recv_packet event {index} without packet data")
            continue
        if not isinstance(packet, dict) or "denom" not in packet:
            continue
        packets.append(
            {
                "packet": packet,
                "src_channel": attrs.get("packet_src_channel", ""),
                "src_port": attrs.get("packet_src_port") or "transfer",
                "dst_channel": attrs.get("packet_dst_channel", ""),
                "dst_port": attrs.get("packet_dst_port") or "transfer",
            }
        )
    return packets


class DenomResolver:
    """Resolves denominations for display, with persisted IBC caches"""

    def __init__(
        self,
        store: Store,
        client: Optional[PostgRESTClient] = None,
        rest_endpoint: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = config.HTTP_TIMEOUT,
    ):
        self.store = store
        self.client = client
        self.rest_endpoint = (rest_endpoint or "").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.metadata: Dict[str, Dict[str, Any]] = {}

    # ==================== PERSISTED CACHES ====================

    def _document(self, key: str) -> Dict[str, Any]:
        doc = self.store.get(key)
        if not isinstance(doc, dict):
            if doc is not None:
                logger.warning(f"Ignoring malformed cache document {key}")
            return {}
        return doc

    def _put(self, key: str, entry_key: str, value: Dict[str, Any]) -> None:
        doc = self._document(key)
        doc[entry_key] = value
        self.store.set(key, doc, None)

    def get_cached_ibc_denom(self, hash_part: str) -> Optional[IBCDenomInfo]:
        entry = self._document(config.IBC_CACHE_KEY).get(hash_part)
        if not entry:
            return None
        try:
            return IBCDenomInfo(**entry)
        except TypeError:
            logger.warning(f"Ignoring malformed IBC cache entry {hash_part}")
            return None

    def _cached_channel(self, port: str, channel: str) -> Optional[IBCChannelInfo]:
        entry = self._document(config.CHANNEL_CACHE_KEY).get(f"{port}/{channel}")
        if not entry:
            return None
        try:
            return IBCChannelInfo(**entry)
        except TypeError:
            return None

    def clear(self) -> None:
        """Forget everything resolved so far, for chain resets"""
        self.metadata = {}
        self.store.delete(config.IBC_CACHE_KEY)
        self.store.delete(config.CHANNEL_CACHE_KEY)
        logger.info("Denom caches cleared")

    # ==================== METADATA ====================

    def load_metadata(self) -> int:
        """Load authoritative metadata from the database; returns entries loaded"""
        if self.client is None:
            return 0
        try:
            rows = self.client.query(METADATA_TABLE, select="denom,symbol,decimals").rows
        except ExplorerError as e:
            logger.warning(f"Denom metadata unavailable: {e}")
            return 0
        self.metadata = {row["denom"]: row for row in rows if row.get("denom")}
        logger.info(f"Loaded {len(self.metadata)} denom metadata entries")
        return len(self.metadata)

    def resolve(self, denom: str) -> ResolvedDenom:
        entry = self.metadata.get(denom)
        if entry:
            decimals = entry.get("decimals")
            return ResolvedDenom(
                denom=denom,
                symbol=entry["symbol"],
                display_name=entry["symbol"],
                decimals=6 if decimals is None else int(decimals),
                is_ibc=denom.startswith(IBC_PREFIX),
                source="database",
            )

        hash_part = ibc_hash(denom)
        if hash_part is not None:
            info = self.get_cached_ibc_denom(hash_part)
            if info:
                return ResolvedDenom(
                    denom, info.symbol, info.display_name, info.decimals, True, "ibc-cache"
                )

        return static_metadata(denom)

    def format_amount(
        self,
        amount: Union[str, int, float],
        denom: str,
        max_decimals: int = 2,
        abbreviated: bool = False,
    ) -> str:
        """Scale a base-unit amount by the denom's decimals for display"""
        try:
            value = float(amount)
        except (TypeError, ValueError):
            return "0"
        if math.isnan(value):
            return "0"

        converted = value / 10 ** self.resolve(denom).decimals
        if abbreviated:
            for threshold, suffix in ((1e9, "B"), (1e6, "M"), (1e3, "K")):
                if converted >= threshold:
                    return f"{converted / threshold:.{max_decimals}f}{suffix}"
        return f"{converted:.{max_decimals}f}"

    # ==================== IBC ====================

    def _get_json(self, url: str) -> Dict[str, Any]:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"Chain node request failed: {e}", url=url) from e
        if not response.ok:
            raise UpstreamError(
                f"Chain node returned {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Malformed chain node response: {e}", url=url) from e

    def query_channel_info(self, channel: str, port: str = "transfer") -> IBCChannelInfo:
        """
        Channel metadata from the chain node, cached without expiry

        Raises:
            UpstreamError: node not configured, unreachable, or missing the
                counterparty chain id
        """
        cached = self._cached_channel(port, channel)
        if cached:
            return cached

        if not self.rest_endpoint:
            raise UpstreamError("No chain REST endpoint configured")

        base = f"{self.rest_endpoint}/ibc/core/channel/v1/channels/{channel}/ports/{port}"
        data = self._get_json(base).get("channel") or {}
        client_state = self._get_json(f"{base}/client_state")
        chain_id = (
            (client_state.get("identified_client_state") or {}).get("client_state") or {}
        ).get("chain_id")
        if not chain_id:
            raise UpstreamError(f"No counterparty chain id for {port}/{channel}", url=base)

        counterparty = data.get("counterparty") or {}
        hops = data.get("connection_hops") or []
        info = IBCChannelInfo(
            channel_id=channel,
            port_id=port,
            counterparty_channel_id=counterparty.get("channel_id", ""),
            counterparty_port_id=counterparty.get("port_id") or "transfer",
            counterparty_chain_id=chain_id,
            connection_id=hops[0] if hops else "",
            state=data.get("state") or "STATE_OPEN",
        )
        self._put(config.CHANNEL_CACHE_KEY, f"{port}/{channel}", asdict(info))
        return info

    def resolve_ibc_denom_from_event(
        self,
        packet: Dict[str, Any],
        src_channel: str,
        src_port: str = "transfer",
        dst_channel: str = "",
        dst_port: str = "transfer",
    ) -> Optional[IBCDenomInfo]:
        """Derive and cache the IBC identity of a received transfer packet"""
        try:
            channel = self.query_channel_info(dst_channel, dst_port)
        except ExplorerError as e:
            logger.warning(f"Cannot resolve IBC denom over {dst_port}/{dst_channel}: {e}")
            return None

        base_denom = packet["denom"]
        hash_hex = ibc_denom_hash(src_port, src_channel, base_denom)
        symbol = extract_symbol(base_denom)
        info = IBCDenomInfo(
            denom=f"{IBC_PREFIX}{hash_hex}",
            base_denom=base_denom,
            display_name=f"{symbol} (from {channel.counterparty_chain_id})",
            symbol=symbol,
            decimals=guess_decimals(base_denom),
            path=f"{src_port}/{src_channel}/{base_denom}",
            source_chain_id=channel.counterparty_chain_id,
            ibc_hash=hash_hex,
        )
        self._put(config.IBC_CACHE_KEY, hash_hex, asdict(info))
        return info

    def resolve_packets(self, events: List[Event]) -> List[IBCDenomInfo]:
        """Resolve every received transfer packet found in the events"""
        resolved = []
        for item in extract_ibc_packets(events):
            info = self.resolve_ibc_denom_from_event(
                item["packet"],
                item["src_channel"],
                item["src_port"],
                item["dst_channel"],
                item["dst_port"],
            )
            if info:
                resolved.append(info)
        return resolved
