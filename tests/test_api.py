import time
from dataclasses import replace
from unittest.mock import MagicMock

import jwt
import pytest
from starlette.testclient import TestClient

from txray_indexer import mcp_main
from txray_indexer.aggregates import refresh_aggregates
from txray_indexer.api import build_context, starlette_app
from txray_indexer.cursor import CursorStore
from txray_indexer.mcp_server import create_server

from .conftest import ALICE, BOB


def bearer(config, wallet=ALICE) -> dict:
    tok = jwt.encode(
        {"wallet_address": wallet, "aud": "authenticated", "exp": int(time.time()) + 600},
        config.jwt_secret, algorithm="HS256",
    )
    return {"Authorization": f"Bearer {tok}"}


@pytest.fixture
def client(config, conn, indexer):
    return TestClient(starlette_app(build_context(config, conn, indexer)))


@pytest.fixture
def populated(client, chain, conn):
    chain.add_tx(10, sender=ALICE)
    chain.add_tx(11, sender=ALICE)
    chain.add_tx(12, sender=BOB)
    assert client.post("/index", params={"secret": "cron-secret"}).status_code == 200
    return client


def test_index_requires_secret(client, chain):
    assert client.post("/index").status_code == 403
    assert client.post("/index", params={"secret": "wrong"}).status_code == 403
    assert chain.calls == []


def test_index_run(client, chain):
    chain.add_tx(10)
    r = client.post("/index", headers={"x-cron-secret": "cron-secret"})
    assert r.status_code == 200
    assert r.json() == {"ok": True, "inserted": 1, "last_block_number": 100, "head_block_number": 100}


def test_index_lease_conflict(client, conn):
    CursorStore(conn).acquire_lease("other-run", 300)
    assert client.post("/index", params={"secret": "cron-secret"}).status_code == 409


def test_index_config_error(config, conn, make_indexer):
    ix = make_indexer(replace(config, contracts=()))
    c = TestClient(starlette_app(build_context(ix.config, conn, ix)))
    r = c.post("/index", params={"secret": "cron-secret"})
    assert r.status_code == 500
    assert "contracts" in r.json()["error"]


def test_index_failure_reports_500(client, chain, conn):
    chain.failures["eth_blockNumber"].append({"code": -32602, "message": "invalid"})
    r = client.post("/index", params={"secret": "cron-secret"})
    assert r.status_code == 500
    assert "invalid" in r.json()["error"]
    assert client.get("/health").json()["index_cursor"]["status"] == "error"


def test_summary_global_and_all(populated):
    r = populated.get("/summary")
    assert r.status_code == 200
    assert r.json()["total_transactions"] == 3
    assert r.headers["cache-control"] == "max-age=60, stale-while-revalidate=300"
    assert populated.get("/all").json()["total_transactions"] == 3


def test_wallet_summary_needs_matching_token(populated, config):
    assert populated.get("/summary", params={"wallet": ALICE}).status_code == 403
    assert populated.get("/summary", headers={"x-wallet-address": ALICE}).status_code == 403
    assert populated.get("/summary", params={"wallet": BOB}, headers=bearer(config)).status_code == 403

    r = populated.get("/summary", params={"wallet": ALICE}, headers=bearer(config))
    assert r.status_code == 200
    assert r.json()["total_transactions"] == 2
    assert r.json()["wallet"] == ALICE


def test_token_alone_scopes_to_its_wallet(populated, config):
    rows = populated.get("/txs", headers=bearer(config, BOB)).json()
    assert [t["from_address"] for t in rows] == [BOB]


def test_all_ignores_auth(populated):
    r = populated.get("/all", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 200


def test_txs_pagination_header(populated):
    r = populated.get("/txs", params={"limit": 2})
    assert r.status_code == 200
    assert [t["block_number"] for t in r.json()] == [12, 11]
    nxt = r.headers["x-next-cursor"]
    r2 = populated.get("/txs", params={"limit": 2, "cursor": nxt})
    assert [t["block_number"] for t in r2.json()] == [10]
    assert "x-next-cursor" not in r2.headers


def test_bad_parameters_are_400(populated):
    assert populated.get("/txs", params={"limit": "many"}).status_code == 400
    assert populated.get("/txs", params={"cursor": "bogus"}).status_code == 400
    assert populated.get("/txs", params={"cursor": "11:0x" + "ff" * 32}).status_code == 400
    assert populated.get("/timeseries", params={"granularity": "year"}).status_code == 400
    assert populated.get("/timeseries", params={"from": "yesterday"}).status_code == 400


def test_timeseries(populated, conn):
    r = populated.get("/timeseries", params={"granularity": "month", "order": "asc"})
    assert r.status_code == 200
    assert sum(b["transaction_count"] for b in r.json()) == 3


def test_timeseries_range(populated, conn):
    refresh_aggregates(conn)
    r = populated.get("/timeseries", params={"granularity": "day", "from": "2000-01-01T00:00:00Z", "to": "2000-01-02T00:00:00Z"})
    assert r.json() == []


def test_preflight_and_cors(client):
    r = client.options("/summary", headers={"Origin": "https://app.example"})
    assert r.status_code == 204
    assert r.headers["access-control-allow-origin"] == "*"
    assert "authorization" in r.headers["access-control-allow-headers"]


def test_search_wallets_and_health(populated):
    assert populated.get("/search-wallets", params={"q": ALICE[2:8]}).json() == [ALICE]
    assert populated.get("/search-wallets", params={"q": "a1"}).json() == []
    health = populated.get("/health").json()["index_cursor"]
    assert health["last_block_number"] == 100
    assert health["status"] == "active"


def test_route_list(client):
    assert "POST /index" in client.get("/").json()["routes"]


def test_mcp_server_builds(config, conn, indexer):
    mcp = create_server(ctx=build_context(config, conn, indexer))
    assert mcp.name == "txray-indexer"


def test_serve_runs_http_transport(config, monkeypatch):
    server = MagicMock()
    monkeypatch.setattr(mcp_main, "create_server", lambda cfg: server)
    mcp_main.serve(replace(config, host="127.0.0.1", port=9123))
    server.run.assert_called_once_with(transport="http", host="127.0.0.1", port=9123)
