"""
Yaci Explorer API
Read-only JSON surface over the explorer client
"""

import logging

from flask import Flask, jsonify, request
from flask_cors import CORS
from flasgger import Swagger

from config import config
from exceptions import NotFoundError, UpstreamError
from explorer_client import YaciExplorerClient
from models import to_dict

logger = logging.getLogger(__name__)

# ==================== SWAGGER CONFIGURATION ====================

swagger_config = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec",
            "route": "/apispec.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs",
}

swagger_template = {
    "info": {
        "title": "Yaci Explorer API",
        "description": "Decoded blocks, transactions, analytics and search over an indexed chain",
        "version": "1.0.0",
    },
    "basePath": "/",
    "schemes": ["https", "http"],
    "tags": [
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Blocks", "description": "Block data endpoints"},
        {"name": "Transactions", "description": "Transaction endpoints"},
        {"name": "Addresses", "description": "Address activity endpoints"},
        {"name": "Analytics", "description": "Analytics and statistics endpoints"},
        {"name": "Search", "description": "Search and discovery endpoints"},
        {"name": "Denoms", "description": "Denomination display endpoints"},
        {"name": "Cache", "description": "Cache management"},
    ],
}


def _page_args(default_limit: int):
    limit = request.args.get("limit", default_limit, type=int)
    offset = request.args.get("offset", 0, type=int)
    if limit < 1 or offset < 0:
        raise ValueError("limit must be positive and offset non-negative")
    return min(limit, config.MAX_PAGE_SIZE), offset


def create_app(explorer: YaciExplorerClient = None) -> Flask:
    """Build the Flask app around an explorer client"""
    explorer = explorer or YaciExplorerClient()

    app = Flask(__name__)
    CORS(app, origins=config.CORS_ORIGINS)
    Swagger(app, config=swagger_config, template=swagger_template)
    app.config["EXPLORER"] = explorer

    # ==================== ERROR HANDLERS ====================

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(UpstreamError)
    def handle_upstream(e):
        logger.error(f"Upstream failure: {e}")
        return jsonify({"error": str(e)}), 502

    @app.errorhandler(ValueError)
    def handle_bad_request(e):
        return jsonify({"error": str(e)}), 400

    # ==================== HEALTH ====================

    @app.route("/health", methods=["GET"])
    def health_endpoint():
        """
        Health check
        ---
        tags:
          - Health
        responses:
          200:
            description: Service is running
        """
        return jsonify({"status": "ok", "cache": explorer.get_cache_stats()})

    # ==================== BLOCKS ====================

    @app.route("/api/blocks", methods=["GET"])
    def get_blocks_endpoint():
        """
        Get paginated blocks, newest first
        ---
        tags:
          - Blocks
        parameters:
          - name: limit
            in: query
            type: integer
            default: 20
          - name: offset
            in: query
            type: integer
            default: 0
        responses:
          200:
            description: Page of blocks with pagination metadata
          502:
            description: Table service unavailable
        """
        limit, offset = _page_args(20)
        return jsonify(explorer.get_blocks(limit, offset).to_dict())

    @app.route("/api/blocks/latest", methods=["GET"])
    def get_latest_block_endpoint():
        return jsonify(explorer.get_latest_block().to_dict())

    @app.route("/api/blocks/<int:height>", methods=["GET"])
    def get_block_endpoint(height: int):
        """
        Get block by height
        ---
        tags:
          - Blocks
        parameters:
          - name: height
            in: path
            type: integer
            required: true
        responses:
          200:
            description: Block
          404:
            description: Block not found
        """
        return jsonify(explorer.get_block(height).to_dict())

    # ==================== TRANSACTIONS ====================

    @app.route("/api/transactions", methods=["GET"])
    def get_transactions_endpoint():
        """
        Get paginated transactions with filtering
        ---
        tags:
          - Transactions
        parameters:
          - name: limit
            in: query
            type: integer
            default: 20
          - name: offset
            in: query
            type: integer
            default: 0
          - name: status
            in: query
            type: string
            enum: [success, failed]
          - name: block_height
            in: query
            type: integer
          - name: block_height_min
            in: query
            type: integer
          - name: block_height_max
            in: query
            type: integer
          - name: timestamp_min
            in: query
            type: string
          - name: timestamp_max
            in: query
            type: string
          - name: message_type
            in: query
            type: string
        responses:
          200:
            description: Page of enriched transactions
          400:
            description: Invalid filter
        """
        limit, offset = _page_args(config.TX_PAGE_SIZE)
        page = explorer.get_transactions(
            limit,
            offset,
            status=request.args.get("status"),
            block_height=request.args.get("block_height", type=int),
            block_height_min=request.args.get("block_height_min", type=int),
            block_height_max=request.args.get("block_height_max", type=int),
            timestamp_min=request.args.get("timestamp_min"),
            timestamp_max=request.args.get("timestamp_max"),
            message_type=request.args.get("message_type"),
        )
        return jsonify(page.to_dict())

    @app.route("/api/transactions/<tx_hash>", methods=["GET"])
    def get_transaction_endpoint(tx_hash: str):
        """
        Get a fully enriched transaction
        ---
        tags:
          - Transactions
        parameters:
          - name: tx_hash
            in: path
            type: string
            required: true
        responses:
          200:
            description: Transaction with messages, events and EVM data
          404:
            description: Transaction not found
        """
        return jsonify(explorer.get_transaction(tx_hash).to_dict())

    @app.route("/api/evm/transactions/<evm_hash>", methods=["GET"])
    def get_evm_transaction_endpoint(evm_hash: str):
        return jsonify(explorer.get_transaction_by_evm_hash(evm_hash).to_dict())

    @app.route("/api/message-types", methods=["GET"])
    def get_message_types_endpoint():
        return jsonify(explorer.get_distinct_message_types())

    # ==================== ADDRESSES ====================

    @app.route("/api/addresses/<address>/transactions", methods=["GET"])
    def get_address_transactions_endpoint(address: str):
        """
        Transactions touching an address, newest first
        ---
        tags:
          - Addresses
        parameters:
          - name: address
            in: path
            type: string
            required: true
          - name: limit
            in: query
            type: integer
            default: 50
          - name: offset
            in: query
            type: integer
            default: 0
        responses:
          200:
            description: Page of enriched transactions
        """
        limit, offset = _page_args(50)
        return jsonify(explorer.get_transactions_by_address(address, limit, offset).to_dict())

    @app.route("/api/addresses/<address>/stats", methods=["GET"])
    def get_address_stats_endpoint(address: str):
        return jsonify(to_dict(explorer.get_address_stats(address)))

    # ==================== ANALYTICS ====================

    @app.route("/api/stats", methods=["GET"])
    def get_stats_endpoint():
        """
        Chain summary statistics
        ---
        tags:
          - Analytics
        responses:
          200:
            description: Latest block, total transactions, block time, TPS and validators
        """
        return jsonify(to_dict(explorer.get_chain_stats()))

    @app.route("/api/chain-info", methods=["GET"])
    def get_chain_info_endpoint():
        return jsonify(to_dict(explorer.get_chain_info()))

    @app.route("/api/analytics/tx-volume/daily", methods=["GET"])
    def get_daily_volume_endpoint():
        days = request.args.get("days", 30, type=int)
        return jsonify(explorer.analytics.get_tx_volume_daily(days))

    @app.route("/api/analytics/tx-volume/hourly", methods=["GET"])
    def get_hourly_volume_endpoint():
        hours = request.args.get("hours", 24, type=int)
        return jsonify(explorer.analytics.get_tx_volume_hourly(hours))

    @app.route("/api/analytics/message-types", methods=["GET"])
    def get_message_type_stats_endpoint():
        return jsonify(explorer.analytics.get_message_type_stats())

    @app.route("/api/analytics/event-types", methods=["GET"])
    def get_event_type_stats_endpoint():
        return jsonify(explorer.analytics.get_event_type_stats())

    @app.route("/api/analytics/fees", methods=["GET"])
    def get_fee_revenue_endpoint():
        return jsonify(explorer.analytics.get_fee_revenue())

    @app.route("/api/analytics/fees/daily", methods=["GET"])
    def get_fee_revenue_over_time_endpoint():
        days = request.args.get("days", 7, type=int)
        return jsonify(explorer.analytics.get_fee_revenue_over_time(days))

    @app.route("/api/analytics/fees/distribution", methods=["GET"])
    def get_cost_distribution_endpoint():
        limit = request.args.get("limit", type=int)
        return jsonify(explorer.analytics.get_transaction_cost_distribution(limit))

    @app.route("/api/analytics/failures", methods=["GET"])
    def get_failed_transactions_endpoint():
        """
        Failed transaction statistics
        ---
        tags:
          - Analytics
        responses:
          200:
            description: Failure count and rate, top failing message types and fees spent
        """
        return jsonify(explorer.analytics.get_failed_transaction_stats())

    @app.route("/api/analytics/denoms", methods=["GET"])
    def get_unique_denoms_endpoint():
        return jsonify({"denoms": explorer.analytics.get_unique_denoms()})

    @app.route("/api/analytics/network", methods=["GET"])
    def get_network_metrics_endpoint():
        """
        Network health metrics
        ---
        tags:
          - Analytics
        responses:
          200:
            description: Heights, totals, block time, throughput, success rate and sender count
        """
        return jsonify(explorer.analytics.get_network_metrics())

    @app.route("/api/analytics/block-time", methods=["GET"])
    def get_block_time_endpoint():
        """
        Block interval statistics
        ---
        tags:
          - Analytics
        parameters:
          - name: limit
            in: query
            type: integer
            description: Analyse the most recent N blocks instead of the aggregate view
        responses:
          200:
            description: Average, minimum and maximum seconds between blocks
        """
        limit = request.args.get("limit", type=int)
        if limit:
            return jsonify(explorer.analytics.get_block_time_analysis(limit))
        return jsonify(explorer.analytics.get_block_time_stats())

    @app.route("/api/analytics/gas", methods=["GET"])
    def get_gas_distribution_endpoint():
        return jsonify(explorer.analytics.get_gas_distribution())

    @app.route("/api/analytics/gas/efficiency", methods=["GET"])
    def get_gas_efficiency_endpoint():
        limit = request.args.get("limit", type=int)
        return jsonify(explorer.analytics.get_gas_efficiency(limit))

    @app.route("/api/analytics/gas/price", methods=["GET"])
    def get_gas_price_endpoint():
        limit = request.args.get("limit", type=int)
        return jsonify(explorer.analytics.get_average_gas_price(limit))

    @app.route("/api/analytics/success-rate", methods=["GET"])
    def get_success_rate_endpoint():
        return jsonify(explorer.analytics.get_success_rate())

    @app.route("/api/analytics/window", methods=["GET"])
    def get_window_stats_endpoint():
        minutes = request.args.get("minutes", 60, type=int)
        return jsonify(explorer.analytics.get_stats_in_window(minutes))

    @app.route("/api/analytics/count", methods=["GET"])
    def get_count_in_range_endpoint():
        """
        Transaction count over a trailing window
        ---
        tags:
          - Analytics
        parameters:
          - name: minutes
            in: query
            type: integer
          - name: hours
            in: query
            type: integer
          - name: days
            in: query
            type: integer
        responses:
          200:
            description: Number of transactions in the window
          400:
            description: No window given
        """
        count = explorer.analytics.get_count_in_range(
            minutes=request.args.get("minutes", type=int),
            hours=request.args.get("hours", type=int),
            days=request.args.get("days", type=int),
        )
        return jsonify({"count": count})

    @app.route("/api/analytics/active-addresses", methods=["GET"])
    def get_active_addresses_endpoint():
        days = request.args.get("days", 30, type=int)
        return jsonify(explorer.analytics.get_daily_active_addresses(days))

    # ==================== SEARCH ====================

    @app.route("/api/search", methods=["GET"])
    def search_endpoint():
        """
        Search blocks, transactions and addresses
        ---
        tags:
          - Search
        parameters:
          - name: q
            in: query
            type: string
            required: true
            description: Block height, tx hash, EVM tx hash or address
        responses:
          200:
            description: Ranked matches, best first
        """
        query = request.args.get("q", "")
        return jsonify({"query": query, "results": [r.to_dict() for r in explorer.search(query)]})

    # ==================== DENOMS ====================

    @app.route("/api/denoms/format", methods=["GET"])
    def format_amount_endpoint():
        denom = request.args.get("denom")
        if not denom:
            raise ValueError("denom is required")
        formatted = explorer.format_amount(
            request.args.get("amount", "0"),
            denom,
            max_decimals=request.args.get("max_decimals", 2, type=int),
            abbreviated=request.args.get("abbreviated", "false").lower() == "true",
        )
        return jsonify({"denom": denom, "formatted": formatted})

    @app.route("/api/denoms/<path:denom>", methods=["GET"])
    def resolve_denom_endpoint(denom: str):
        return jsonify(to_dict(explorer.resolve_denom(denom)))

    # ==================== CACHE ====================

    @app.route("/api/cache/clear", methods=["POST"])
    def clear_cache_endpoint():
        """
        Drop every cache, for chain resets
        ---
        tags:
          - Cache
        responses:
          200:
            description: Caches cleared
        """
        explorer.clear_caches()
        return jsonify({"status": "cleared"})

    return app


if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, config.LOG_LEVEL), format=config.LOG_FORMAT)

    explorer = YaciExplorerClient()
    explorer.denoms.load_metadata()

    logger.info("Starting Yaci Explorer API")
    logger.info(f"Table service: {config.POSTGREST_URL}")
    logger.info(f"Port: {config.EXPLORER_PORT}")

    create_app(explorer).run(
        host=config.EXPLORER_HOST,
        port=config.EXPLORER_PORT,
        debug=config.DEBUG,
        threaded=True,
    )
