import json

import pytest

from cache import MemoryCache
from config import config
from explorer_api import create_app
from explorer_client import YaciExplorerClient

TX_HASH = "AB" * 32


def _block_row(height: int) -> dict:
    return {
        "id": height,
        "data": {"block": {"header": {"chain_id": "manifest-testnet", "height": str(height)}}},
    }


@pytest.fixture
def explorer(fake_service):
    return YaciExplorerClient(config, session=fake_service, store=MemoryCache(default_ttl=None))


@pytest.fixture
def client(explorer):
    app = create_app(explorer)
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def _body(resp):
    return json.loads(resp.data.decode())


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert _body(resp)["status"] == "ok"


def test_blocks_endpoint(fake_service, client):
    fake_service.add("blocks_raw", [_block_row(3), _block_row(2)], total=3)
    resp = client.get("/api/blocks?limit=2")
    assert resp.status_code == 200
    data = _body(resp)
    assert [b["height"] for b in data["data"]] == [3, 2]
    assert data["pagination"]["has_next"] is True


def test_page_size_clamped(fake_service, client):
    fake_service.add("blocks_raw", [])
    client.get("/api/blocks?limit=5000")
    assert fake_service.calls_to("blocks_raw")[0]["limit"] == str(config.MAX_PAGE_SIZE)


def test_invalid_page_args(client):
    assert client.get("/api/blocks?limit=0").status_code == 400
    assert client.get("/api/blocks?offset=-1").status_code == 400


def test_block_not_found(fake_service, client):
    fake_service.add("blocks_raw", [])
    resp = client.get("/api/blocks/99")
    assert resp.status_code == 404
    assert "not found" in _body(resp)["error"]


def test_upstream_failure(fake_service, client):
    fake_service.fail("blocks_raw", 500)
    assert client.get("/api/blocks/latest").status_code == 502


def test_transaction_endpoint(fake_service, client):
    fake_service.add("transactions_main", [{"id": TX_HASH, "height": 5, "error": None}])
    fake_service.add("transactions_raw", [])
    fake_service.add("messages_main", [])
    fake_service.add("events_main", [])

    resp = client.get(f"/api/transactions/{TX_HASH}")

    assert resp.status_code == 200
    data = _body(resp)
    assert data["id"] == TX_HASH
    assert data["messages"] == []


def test_transaction_not_found(fake_service, client):
    fake_service.add("transactions_main", [])
    fake_service.add("transactions_raw", [])
    assert client.get(f"/api/transactions/{TX_HASH}").status_code == 404


def test_transactions_filters(fake_service, client):
    fake_service.add("transactions_main", [])
    resp = client.get("/api/transactions?status=failed&block_height_min=10&block_height_max=20")
    assert resp.status_code == 200
    params = fake_service.calls_to("transactions_main")[0]
    assert params["error"] == "not.is.null"
    assert params["and"] == "(height.gte.10,height.lte.20)"


def test_transactions_bad_status(client):
    assert client.get("/api/transactions?status=pending").status_code == 400


def test_search_endpoint(fake_service, client):
    fake_service.add("blocks_raw", [_block_row(1)])
    resp = client.get("/api/search?q=1")
    assert resp.status_code == 200
    data = _body(resp)
    assert data["query"] == "1"
    assert data["results"][0]["type"] == "block"


def test_count_requires_window(client):
    assert client.get("/api/analytics/count").status_code == 400


def test_count_endpoint(fake_service, client):
    fake_service.rpcs["tx_count_in_range"] = 12
    resp = client.get("/api/analytics/count?hours=2")
    assert _body(resp) == {"count": 12}


def test_denom_endpoints(client):
    resp = client.get("/api/denoms/umfx")
    assert _body(resp)["symbol"] == "MFX"

    resp = client.get("/api/denoms/ibc/ABCDEF")
    assert _body(resp)["is_ibc"] is True

    resp = client.get("/api/denoms/format?amount=1500000&denom=umfx")
    assert _body(resp)["formatted"] == "1.50"

    assert client.get("/api/denoms/format?amount=1").status_code == 400


def test_cache_clear(fake_service, client):
    fake_service.add("blocks_raw", [_block_row(7)])
    client.get("/api/blocks/7")
    client.get("/api/blocks/7")
    assert len(fake_service.calls_to("blocks_raw")) == 1

    resp = client.post("/api/cache/clear")
    assert _body(resp) == {"status": "cleared"}

    client.get("/api/blocks/7")
    assert len(fake_service.calls_to("blocks_raw")) == 2


def test_network_metrics_endpoint(fake_service, client):
    fake_service.add("blocks_raw", [_block_row(9)], total=9)
    fake_service.add("transactions_main", [{"error": None, "fee": {"gasLimit": "5000"}}], total=18)
    fake_service.add("messages_main", [{"sender": "manifest1a"}])

    resp = client.get("/api/analytics/network")

    assert resp.status_code == 200
    data = _body(resp)
    assert data["latest_height"] == 9
    assert data["tx_per_block"] == 2
    assert data["unique_addresses"] == 1


def test_failures_endpoint(fake_service, client):
    fake_service.add("transactions_main", [{"id": "A", "error": "out of gas", "fee": None}], total=4)
    fake_service.add("messages_main", [{"id": "A", "type": "/cosmos.bank.v1beta1.MsgSend"}])

    data = _body(client.get("/api/analytics/failures"))

    assert data["total_failed"] == 1
    assert data["failure_rate"] == 25.0
    assert data["top_failure_types"] == [{"type": "/cosmos.bank.v1beta1.MsgSend", "count": 1}]


def test_fee_analytics_endpoints(fake_service, client):
    fake_service.add(
        "transactions_main",
        [{"fee": {"amount": [{"denom": "umfx", "amount": "500"}], "gasLimit": "1000"}}],
    )

    assert _body(client.get("/api/analytics/denoms")) == {"denoms": ["umfx"]}
    assert _body(client.get("/api/analytics/gas/price")) == [{"denom": "umfx", "avg_price": 0.5}]
    buckets = _body(client.get("/api/analytics/fees/distribution?limit=50"))
    assert [b["count"] for b in buckets] == [1, 0, 0, 0]
    assert fake_service.calls_to("transactions_main")[-1]["limit"] == "50"
