"""
Analytics aggregation ladder

Every statistic first reads its pre-aggregated view (or RPC). When that read
fails or comes back empty, the same statistic is computed client-side from a
bounded window of raw rows. Raw fallbacks never scan past their cap.
"""

import logging
import re
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from blocks import BlockService
from concurrency import map_concurrently, optional, run_concurrently
from config import config
from exceptions import ExplorerError
from filters import Eq, Gte, ILike, In, NotNull
from models import AddressStats, Block, ChainStats, Fee
from postgrest_client import PostgRESTClient
from tx_enrichment import (
    EVENTS_TABLE,
    HASH_BATCH_SIZE,
    MESSAGES_TABLE,
    TX_TABLE,
    address_filter,
    decode_error_field,
)

logger = logging.getLogger(__name__)

GAS_BUCKETS = [
    (0, 100_000, "0-100k"),
    (100_000, 250_000, "100k-250k"),
    (250_000, 500_000, "250k-500k"),
    (500_000, 1_000_000, "500k-1M"),
    (1_000_000, None, "1M+"),
]

# Total fee across denoms, in base units
COST_BUCKETS = [
    (0, 10_000, "< 10k"),
    (10_000, 50_000, "10k-50k"),
    (50_000, 100_000, "50k-100k"),
    (100_000, None, "> 100k"),
]

FAILURE_TYPES_TOPN = 5

# Address history used for first/last seen
ADDRESS_SEEN_SAMPLE = 100

_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse RFC 3339 timestamps, including nanosecond precision"""
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _amount(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _is_empty(result: Any) -> bool:
    return result is None or (isinstance(result, (list, dict)) and not result)


def _bucket(value: int, buckets=GAS_BUCKETS) -> str:
    for low, high, label in buckets:
        if value >= low and (high is None or value < high):
            return label
    return buckets[0][2]


def _capped(limit: Optional[int], cap: int) -> int:
    """Requested scan size, never past the configured cap"""
    return min(limit or cap, cap)


class AnalyticsService:
    """View-or-fallback statistics over the indexed chain data"""

    def __init__(
        self,
        client: PostgRESTClient,
        blocks: BlockService,
        settings=config,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.blocks = blocks
        self.settings = settings
        self.now = now

    def _ladder(self, name: str, view: Callable[[], Any], fallback: Callable[[], Any]) -> Any:
        """Return the view result, or the fallback when the view errors or is empty"""
        try:
            result = view()
        except (ExplorerError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"View {name} unavailable ({e}), using raw fallback")
        else:
            if not _is_empty(result):
                return result
            logger.debug(f"View {name} returned no rows, using raw fallback")
        return fallback()

    def _recent_rows(self, table: str, select: str, limit: int, **kwargs) -> List[Dict[str, Any]]:
        return self.client.query(table, select=select, limit=limit, **kwargs).rows

    # ==================== CHAIN SUMMARY ====================

    def _chain_counts_view(self) -> Optional[Dict[str, int]]:
        row = self.client.query("chain_stats", limit=1).first()
        if not row:
            return None
        return {
            "latest_block": int(row.get("latest_block") or 0),
            "total_transactions": int(row.get("total_transactions") or 0),
        }

    def _chain_counts_fallback(self) -> Dict[str, int]:
        result = self.client.query(TX_TABLE, select="id", limit=1, count=True)
        return {"latest_block": 0, "total_transactions": result.total or 0}

    def _recent_tps(self) -> float:
        rows = self._recent_rows(TX_TABLE, "timestamp", 100, order="height.desc")
        cutoff = self.now() - timedelta(minutes=1)
        recent = [
            r for r in rows if (parse_timestamp(r.get("timestamp")) or cutoff) > cutoff
        ]
        return len(recent) / 60

    def get_chain_stats(self) -> ChainStats:
        parts = run_concurrently(
            {
                "counts": lambda: self._ladder(
                    "chain_stats", self._chain_counts_view, self._chain_counts_fallback
                ),
                "latest": optional(self.blocks.get_latest_block, label="latest block"),
                "block_time": optional(
                    lambda: self.get_block_time_analysis(),
                    {"avg": 0.0, "min": 0.0, "max": 0.0},
                    "block time",
                ),
                "tps": optional(self._recent_tps, 0.0, "tps"),
            }
        )
        latest: Optional[Block] = parts["latest"]
        counts = parts["counts"]
        return ChainStats(
            latest_block=counts["latest_block"] or (latest.height if latest else 0),
            total_transactions=counts["total_transactions"],
            avg_block_time=parts["block_time"]["avg"],
            tps=parts["tps"],
            active_validators=latest.signature_count if latest else 0,
        )

    def _unique_senders(self) -> int:
        rows = self._recent_rows(
            MESSAGES_TABLE,
            "sender",
            self.settings.ANALYTICS_MESSAGE_SAMPLE_LIMIT,
            filters=[NotNull("sender")],
            order="id.desc",
        )
        return len({r["sender"] for r in rows if r.get("sender")})

    def get_network_metrics(self) -> Dict[str, Any]:
        """
        Network health over recent blocks and transactions

        Totals are exact counts. Rates and averages come from the most recent
        window of rows; ``unique_addresses`` counts distinct senders in the
        message sample and is None when messages cannot be read.
        """
        parts = run_concurrently(
            {
                "blocks": lambda: self.client.query(
                    "blocks_raw",
                    order="id.desc",
                    limit=self.settings.BLOCK_INTERVAL_LOOKBACK,
                    count=True,
                ),
                "transactions": lambda: self.client.query(
                    TX_TABLE,
                    select="error,fee",
                    order="height.desc",
                    limit=self.settings.ANALYTICS_GAS_SCAN_CAP,
                    count=True,
                ),
                "addresses": optional(self._unique_senders, label="unique addresses"),
            }
        )
        blocks = [Block.from_row(r) for r in parts["blocks"].rows]
        transactions = parts["transactions"].rows
        total_blocks = parts["blocks"].total or 0
        total_transactions = parts["transactions"].total or 0
        latest = blocks[0] if blocks else None

        intervals = self._block_intervals(blocks)
        failed = sum(
            1 for r in transactions if decode_error_field(r.get("error")) is not None
        )
        gas_limits = [
            g for g in (_amount(Fee.from_dict(r.get("fee")).gas_limit) for r in transactions) if g
        ]
        return {
            "latest_height": latest.height if latest else 0,
            "total_transactions": total_transactions,
            "total_blocks": total_blocks,
            "avg_block_time": sum(intervals) / len(intervals) if intervals else 0.0,
            "active_validators": latest.signature_count if latest else 0,
            "last_block_time": (latest.time if latest else None) or format_timestamp(self.now()),
            "tx_per_block": round(total_transactions / total_blocks) if total_blocks else 0,
            "success_rate": (
                (len(transactions) - failed) / len(transactions) * 100 if transactions else 100.0
            ),
            "avg_gas_limit": round(sum(gas_limits) / len(gas_limits)) if gas_limits else 0,
            "unique_addresses": parts["addresses"],
        }

    # ==================== VOLUME ====================

    def _timestamps_since(self, cutoff: datetime) -> List[datetime]:
        rows = self._recent_rows(
            TX_TABLE,
            "timestamp",
            self.settings.ANALYTICS_VOLUME_SCAN_CAP,
            filters=[Gte("timestamp", format_timestamp(cutoff))],
            order="timestamp.desc",
        )
        parsed = (parse_timestamp(r.get("timestamp")) for r in rows)
        return [ts for ts in parsed if ts is not None]

    def get_tx_volume_daily(self, days: int = 30) -> List[Dict[str, Any]]:
        """Transactions per day, oldest first"""

        def view():
            rows = self.client.query("tx_volume_daily", order="date.desc", limit=days).rows
            return [{"date": r["date"], "count": int(r["count"])} for r in reversed(rows)]

        def fallback():
            counts = Counter(
                ts.strftime("%Y-%m-%d")
                for ts in self._timestamps_since(self.now() - timedelta(days=days))
            )
            return [{"date": d, "count": c} for d, c in sorted(counts.items())]

        return self._ladder("tx_volume_daily", view, fallback)

    def get_tx_volume_hourly(self, hours: int = 24) -> List[Dict[str, Any]]:
        """Transactions per hour, oldest first"""

        def view():
            rows = self.client.query("tx_volume_hourly", order="hour.desc", limit=hours).rows
            return [{"hour": r["hour"], "count": int(r["count"])} for r in reversed(rows)]

        def fallback():
            counts = Counter(
                ts.strftime("%Y-%m-%d %H:00")
                for ts in self._timestamps_since(self.now() - timedelta(hours=hours))
            )
            return [{"hour": h, "count": c} for h, c in sorted(counts.items())]

        return self._ladder("tx_volume_hourly", view, fallback)

    # ==================== DISTRIBUTIONS ====================

    def get_message_type_stats(self) -> List[Dict[str, Any]]:
        def view():
            rows = self.client.query("message_type_stats").rows
            return [{"type": r["type"], "count": int(r["count"])} for r in rows]

        def fallback():
            rows = self._recent_rows(
                MESSAGES_TABLE,
                "type",
                self.settings.ANALYTICS_MESSAGE_SAMPLE_LIMIT,
                order="id.desc",
            )
            counts = Counter(r.get("type") or "Unknown" for r in rows)
            return [
                {"type": t, "count": c}
                for t, c in counts.most_common(self.settings.ANALYTICS_MESSAGE_TOPN)
            ]

        return self._ladder("message_type_stats", view, fallback)

    def get_event_type_stats(self) -> List[Dict[str, Any]]:
        """Most frequent event types with their share of the sample"""

        def view():
            rows = self.client.query("event_type_stats").rows
            return [
                {
                    "type": r["event_type"] if "event_type" in r else r["type"],
                    "count": int(r["count"]),
                    "percentage": float(r.get("percentage") or 0),
                }
                for r in rows
            ]

        def fallback():
            # attr_index 0 yields one row per event
            rows = self._recent_rows(
                EVENTS_TABLE,
                "event_type",
                self.settings.ANALYTICS_EVENT_SAMPLE_LIMIT,
                filters=[Eq("attr_index", 0)],
                order="id.desc",
            )
            counts = Counter(r.get("event_type") or "Unknown" for r in rows)
            total = len(rows) or 1
            return [
                {"type": t, "count": c, "percentage": c / total * 100}
                for t, c in counts.most_common(self.settings.ANALYTICS_EVENT_TOPN)
            ]

        return self._ladder("event_type_stats", view, fallback)

    def get_gas_distribution(self) -> List[Dict[str, Any]]:
        def view():
            rows = self.client.query("gas_usage_distribution").rows
            return [{"range": r["range"], "count": int(r["count"])} for r in rows]

        return self._ladder(
            "gas_usage_distribution",
            view,
            lambda: self.get_gas_usage_distribution(self.settings.ANALYTICS_GAS_SCAN_CAP),
        )

    def get_gas_usage_distribution(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        limit = _capped(limit, self.settings.ANALYTICS_GAS_SCAN_CAP)
        rows = self._recent_rows(TX_TABLE, "gas_used", limit, order="height.desc")
        counts = Counter(_bucket(_amount(r.get("gas_used"))) for r in rows)
        return [{"range": label, "count": counts.get(label, 0)} for _, _, label in GAS_BUCKETS]

    def get_gas_efficiency(self, limit: Optional[int] = None) -> Dict[str, Any]:
        limit = _capped(limit, self.settings.ANALYTICS_GAS_SCAN_CAP)
        rows = self._recent_rows(TX_TABLE, "gas_used,gas_wanted", limit, order="height.desc")
        if not rows:
            return {
                "avg_gas_limit": 0,
                "total_gas_limit": 0,
                "avg_gas_used": 0,
                "efficiency_percent": 0.0,
                "transaction_count": 0,
            }
        wanted = sum(_amount(r.get("gas_wanted")) for r in rows)
        used = sum(_amount(r.get("gas_used")) for r in rows)
        return {
            "avg_gas_limit": round(wanted / len(rows)),
            "total_gas_limit": wanted,
            "avg_gas_used": round(used / len(rows)),
            "efficiency_percent": used / wanted * 100 if wanted else 0.0,
            "transaction_count": len(rows),
        }

    # ==================== FEES ====================

    def _fee_rows(self, select: str) -> List[Dict[str, Any]]:
        return self._recent_rows(
            TX_TABLE, select, self.settings.ANALYTICS_FEE_SCAN_CAP, order="height.desc"
        )

    def get_fee_revenue(self) -> List[Dict[str, Any]]:
        """Total fees collected per denomination"""

        def view():
            rows = self.client.query("fee_revenue").rows
            return [{"denom": r["denom"], "total_amount": _amount(r["total_amount"])} for r in rows]

        def fallback():
            totals: Dict[str, int] = defaultdict(int)
            for row in self._fee_rows("fee"):
                for coin in Fee.from_dict(row.get("fee")).amount:
                    totals[coin.denom] += _amount(coin.amount)
            return [{"denom": d, "total_amount": a} for d, a in sorted(totals.items())]

        return self._ladder("fee_revenue", view, fallback)

    def get_fee_revenue_over_time(self, days: int = 7) -> List[Dict[str, Any]]:
        cutoff = self.now() - timedelta(days=days)
        revenue: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for row in self._fee_rows("fee,timestamp"):
            ts = parse_timestamp(row.get("timestamp"))
            if ts is None or ts < cutoff:
                continue
            day = revenue[ts.strftime("%Y-%m-%d")]
            for coin in Fee.from_dict(row.get("fee")).amount:
                day[coin.denom] += _amount(coin.amount)
        return [{"date": d, "revenue": dict(r)} for d, r in sorted(revenue.items())]

    def get_average_gas_price(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Mean fee paid per unit of gas limit, per denomination

        Transactions without a gas limit carry no price and are skipped.
        """
        limit = _capped(limit, self.settings.ANALYTICS_GAS_SCAN_CAP)
        prices: Dict[str, List[float]] = defaultdict(list)
        for row in self._recent_rows(TX_TABLE, "fee", limit, order="height.desc"):
            fee = Fee.from_dict(row.get("fee"))
            gas_limit = _amount(fee.gas_limit)
            if gas_limit <= 0:
                continue
            for coin in fee.amount:
                prices[coin.denom].append(_amount(coin.amount) / gas_limit)
        return [
            {"denom": d, "avg_price": sum(p) / len(p)} for d, p in sorted(prices.items())
        ]

    def get_transaction_cost_distribution(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Transactions bucketed by total fee, with the mean gas limit per bucket"""
        limit = _capped(limit, self.settings.ANALYTICS_GAS_SCAN_CAP)
        counts: Counter = Counter()
        gas_limits: Dict[str, int] = defaultdict(int)
        for row in self._recent_rows(TX_TABLE, "fee", limit, order="height.desc"):
            fee = Fee.from_dict(row.get("fee"))
            label = _bucket(sum(_amount(c.amount) for c in fee.amount), COST_BUCKETS)
            counts[label] += 1
            gas_limits[label] += _amount(fee.gas_limit)
        return [
            {
                "bucket": label,
                "count": counts[label],
                "avg_gas_limit": gas_limits[label] / counts[label] if counts[label] else 0,
            }
            for _, _, label in COST_BUCKETS
        ]

    def get_unique_denoms(self) -> List[str]:
        """Every denomination seen in recent fees, sorted"""
        denoms = {
            coin.denom
            for row in self._fee_rows("fee")
            for coin in Fee.from_dict(row.get("fee")).amount
            if coin.denom
        }
        return sorted(denoms)

    def _message_types_for(self, hashes: List[str]) -> List[str]:
        def fetch(batch: List[str]) -> List[Dict[str, Any]]:
            return self.client.query(
                MESSAGES_TABLE, select="id,type", filters=[In("id", batch)]
            ).rows

        batches = [hashes[i : i + HASH_BATCH_SIZE] for i in range(0, len(hashes), HASH_BATCH_SIZE)]
        return [
            row.get("type") or "Unknown"
            for rows in map_concurrently(fetch, batches)
            for row in rows
        ]

    def get_failed_transaction_stats(self) -> Dict[str, Any]:
        """
        Recent failures with their rate, most common message types and fees

        Log data stored in the error column does not count as a failure. The
        rate is taken against the exact transaction total.
        """
        parts = run_concurrently(
            {
                "failed": lambda: self._recent_rows(
                    TX_TABLE,
                    "id,fee,error",
                    self.settings.ANALYTICS_SUCCESS_SCAN_CAP,
                    filters=[NotNull("error")],
                    order="height.desc",
                ),
                "total": lambda: self.client.query(
                    TX_TABLE, select="id", limit=1, count=True
                ).total,
            }
        )
        failed = [r for r in parts["failed"] if decode_error_field(r.get("error")) is not None]
        total = parts["total"] or 0

        fees: Dict[str, int] = defaultdict(int)
        for row in failed:
            for coin in Fee.from_dict(row.get("fee")).amount:
                fees[coin.denom] += _amount(coin.amount)

        hashes = list(dict.fromkeys(r["id"] for r in failed if r.get("id")))
        types = Counter(self._message_types_for(hashes)) if hashes else Counter()
        return {
            "total_failed": len(failed),
            "failure_rate": len(failed) / total * 100 if total else 0.0,
            "top_failure_types": [
                {"type": t, "count": c} for t, c in types.most_common(FAILURE_TYPES_TOPN)
            ],
            "failed_fees": dict(sorted(fees.items())),
        }

    # ==================== BLOCK TIMES ====================

    def _block_intervals(self, blocks: List[Block]) -> List[float]:
        """Seconds between consecutive blocks, newest first"""
        times = [parse_timestamp(b.time) for b in blocks]
        deltas = []
        for newer, older in zip(times, times[1:]):
            if newer is None or older is None:
                continue
            delta = (newer - older).total_seconds()
            if 0 < delta < self.settings.BLOCK_INTERVAL_MAX_SECONDS:
                deltas.append(delta)
        return deltas

    def get_block_time_analysis(self, limit: Optional[int] = None) -> Dict[str, float]:
        """
        Average, min and max seconds between consecutive recent blocks

        Deltas outside (0, BLOCK_INTERVAL_MAX_SECONDS) are dropped as restarts
        or clock skew; an empty set reports zeros.
        """
        limit = limit or self.settings.BLOCK_INTERVAL_LOOKBACK
        rows = self.client.query("blocks_raw", order="id.desc", limit=limit).rows
        deltas = self._block_intervals([Block.from_row(r) for r in rows])

        if not deltas:
            return {"avg": 0.0, "min": 0.0, "max": 0.0}
        return {
            "avg": sum(deltas) / len(deltas),
            "min": min(deltas),
            "max": max(deltas),
        }

    def get_block_time_stats(self) -> Dict[str, float]:
        def view():
            row = self.client.query("block_time_stats", limit=1).first()
            if not row:
                return None
            return {
                "avg_block_time": float(row["avg_block_time"]),
                "min_block_time": float(row["min_block_time"]),
                "max_block_time": float(row["max_block_time"]),
            }

        def fallback():
            analysis = self.get_block_time_analysis()
            return {
                "avg_block_time": analysis["avg"],
                "min_block_time": analysis["min"],
                "max_block_time": analysis["max"],
            }

        return self._ladder("block_time_stats", view, fallback)

    # ==================== SUCCESS RATE ====================

    @staticmethod
    def _rate(total: int, failed: int) -> Dict[str, Any]:
        successful = total - failed
        return {
            "total": total,
            "successful": successful,
            "failed": failed,
            "success_rate_percent": successful / total * 100 if total else 0.0,
        }

    def get_success_rate(self) -> Dict[str, Any]:
        def view():
            row = self.client.query("tx_success_rate", limit=1).first()
            if not row:
                return None
            return {
                "total": int(row["total"]),
                "successful": int(row["successful"]),
                "failed": int(row["failed"]),
                "success_rate_percent": float(row["success_rate_percent"]),
            }

        def fallback():
            rows = self._recent_rows(
                TX_TABLE,
                "error",
                self.settings.ANALYTICS_SUCCESS_SCAN_CAP,
                order="height.desc",
            )
            failed = sum(1 for r in rows if decode_error_field(r.get("error")) is not None)
            return self._rate(len(rows), failed)

        return self._ladder("tx_success_rate", view, fallback)

    # ==================== WINDOWED COUNTS ====================

    @staticmethod
    def _unwrap(result: Any) -> Any:
        """RPC results arrive as a scalar, an object, or a one-row list"""
        if isinstance(result, list):
            return result[0] if result else None
        return result

    def get_stats_in_window(self, window_minutes: int = 60) -> Dict[str, Any]:
        def view():
            row = self._unwrap(self.client.rpc("tx_stats_in_window", {"window_minutes": window_minutes}))
            if not row:
                return None
            return {
                "tx_count": int(row["tx_count"]),
                "avg_gas_used": float(row.get("avg_gas_used") or 0),
                "success_rate": float(row.get("success_rate") or 0),
            }

        def fallback():
            cutoff = self.now() - timedelta(minutes=window_minutes)
            rows = self._recent_rows(
                TX_TABLE,
                "error,gas_used",
                self.settings.ANALYTICS_VOLUME_SCAN_CAP,
                filters=[Gte("timestamp", format_timestamp(cutoff))],
                order="height.desc",
            )
            if not rows:
                return {"tx_count": 0, "avg_gas_used": 0.0, "success_rate": 0.0}
            failed = sum(1 for r in rows if decode_error_field(r.get("error")) is not None)
            return {
                "tx_count": len(rows),
                "avg_gas_used": sum(_amount(r.get("gas_used")) for r in rows) / len(rows),
                "success_rate": (len(rows) - failed) / len(rows) * 100,
            }

        return self._ladder("tx_stats_in_window", view, fallback)

    def get_count_in_range(
        self,
        minutes: Optional[int] = None,
        hours: Optional[int] = None,
        days: Optional[int] = None,
    ) -> int:
        params = {
            k: v for k, v in (("minutes", minutes), ("hours", hours), ("days", days)) if v
        }
        if not params:
            raise ValueError("One of minutes, hours or days is required")

        def view():
            result = self._unwrap(self.client.rpc("tx_count_in_range", params))
            if isinstance(result, dict):
                result = next(iter(result.values()), None)
            return None if result is None else int(result)

        def fallback():
            window = timedelta(
                minutes=minutes or 0, hours=hours or 0, days=days or 0
            )
            result = self.client.query(
                TX_TABLE,
                select="id",
                filters=[Gte("timestamp", format_timestamp(self.now() - window))],
                limit=1,
                count=True,
            )
            return result.total or 0

        return self._ladder("tx_count_in_range", view, fallback)

    # ==================== ADDRESSES ====================

    def _timestamps_for(self, hashes: List[str]) -> Dict[str, str]:
        def fetch(batch: List[str]) -> List[Dict[str, Any]]:
            return self.client.query(
                TX_TABLE, select="id,timestamp", filters=[In("id", batch)]
            ).rows

        batches = [hashes[i : i + HASH_BATCH_SIZE] for i in range(0, len(hashes), HASH_BATCH_SIZE)]
        return {
            row["id"]: row.get("timestamp")
            for rows in map_concurrently(fetch, batches)
            for row in rows
        }

    def get_daily_active_addresses(self, days: int = 30) -> List[Dict[str, Any]]:
        """Unique senders per day, newest first"""

        def view():
            rows = self.client.query(
                "daily_active_addresses", order="date.desc", limit=days
            ).rows
            return [
                {"date": r["date"], "active_addresses": int(r["active_addresses"])}
                for r in rows
            ]

        def fallback():
            rows = self._recent_rows(
                MESSAGES_TABLE,
                "id,sender",
                self.settings.ANALYTICS_MESSAGE_SAMPLE_LIMIT,
                order="id.desc",
            )
            rows = [r for r in rows if r.get("sender")]
            timestamps = self._timestamps_for(sorted({r["id"] for r in rows}))
            cutoff = self.now() - timedelta(days=days)

            senders: Dict[str, set] = defaultdict(set)
            for row in rows:
                ts = parse_timestamp(timestamps.get(row["id"]))
                if ts is not None and ts >= cutoff:
                    senders[ts.strftime("%Y-%m-%d")].add(row["sender"])
            return [
                {"date": d, "active_addresses": len(s)}
                for d, s in sorted(senders.items(), reverse=True)
            ]

        return self._ladder("daily_active_addresses", view, fallback)

    def get_address_stats(self, address: str) -> AddressStats:
        messages = self._recent_rows(
            MESSAGES_TABLE,
            "id,sender",
            self.settings.ADDRESS_MESSAGE_SCAN_CAP,
            filters=[address_filter(address)],
            order="id.desc",
        )

        hashes = list(dict.fromkeys(m["id"] for m in messages if m.get("id")))
        stats = AddressStats(address=address, transaction_count=len(hashes))

        if hashes:
            rows = self.client.query(
                TX_TABLE,
                select="id,timestamp",
                filters=[In("id", hashes[:ADDRESS_SEEN_SAMPLE])],
                order="timestamp.asc",
            ).rows
            if rows:
                stats.first_seen = rows[0].get("timestamp")
                stats.last_seen = rows[-1].get("timestamp")

        stats.total_sent = sum(1 for m in messages if m.get("sender") == address)
        stats.total_received = len(messages) - stats.total_sent
        return stats

    def has_evm_activity(self, address: str) -> bool:
        """True when any event attribute carries this EVM address"""
        row = self.client.query(
            EVENTS_TABLE, select="id", filters=[ILike("attr_value", address)], limit=1
        ).first()
        return row is not None
