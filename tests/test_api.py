import time

import pytest
from fastapi.testclient import TestClient

from api import create_application
from config import Settings
from engine.fallback import build_fallback_records
from engine.models import Algorithm
from routes.metrics.utils import format_block_time, format_hashrate


@pytest.fixture
def app():
    return create_application(Settings(FEED_ENABLED=False, TELEGRAM_BOT_TOKEN="", TELEGRAM_CHAT_ID=""))


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def recent_blocks(make_block):
    stamp = time.time()
    return [
        make_block(5, algorithm=Algorithm.SCRYPT, difficulty=10_000_000, timestamp=stamp - 60, miner="busy", pool="PoolA"),
        make_block(4, algorithm=Algorithm.SCRYPT, difficulty=10_000_000, timestamp=stamp - 120, miner="busy", pool="PoolA"),
        make_block(3, algorithm=Algorithm.SCRYPT, difficulty=10_000_000, timestamp=stamp - 180, miner="solo"),
        make_block(2, algorithm=Algorithm.SKEIN, difficulty=5.0, timestamp=stamp - 240, taproot=True),
        make_block(1, algorithm=Algorithm.SKEIN, difficulty=5.0, timestamp=stamp - 300, miner="busy"),
    ]


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["app"] == "BlockWave API"


def test_routes_listing(client):
    paths = {route["path"] for route in client.get("/routes").json()}
    assert {"/health", "/metrics/hashrate", "/metrics/blocks", "/metrics/miners"} <= paths


def test_health_without_feed(client):
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["feed"]["enabled"] is False
    assert body["feed"]["status"] == "disconnected"
    assert body["process"]["threads"] >= 1


def test_status_headers(client, app, recent_blocks):
    app.state.engine.apply_snapshot(recent_blocks)

    response = client.get("/metrics/status")

    assert "X-Process-Time" in response.headers
    assert response.headers["X-Feed-Status"] == "disconnected"
    assert response.headers["X-Data-Freshness"] == "stale"
    body = response.json()
    assert body["windowSize"] == 5
    assert body["connectionState"] is None
    assert body["diagnostics"]["snapshots_applied"] == 1


def test_hashrate(client, app, recent_blocks):
    app.state.engine.apply_snapshot(recent_blocks)

    body = client.get("/metrics/hashrate").json()

    algorithms = {item["algorithm"]: item for item in body["algorithms"]}
    scrypt = algorithms["scrypt"]
    assert scrypt["blockCount"] == 3
    assert scrypt["hashrate"] == pytest.approx(35791394133333.33, rel=1e-6)
    assert scrypt["hashrateDisplay"] == "35.79 TH/s"
    assert scrypt["avgBlockTimeDisplay"] == "20 min 0 s"
    assert algorithms["qubit"]["hashrate"] is None
    assert algorithms["qubit"]["hashrateDisplay"] == "N/A"
    assert body["network"]["blockCount"] == 5
    assert body["horizonSeconds"] == 3600


def test_difficulties(client, app, recent_blocks):
    app.state.engine.apply_snapshot(recent_blocks)

    body = client.get("/metrics/difficulties").json()

    assert [point["height"] for point in body["difficulties"]["skein"]] == [1, 2]
    assert body["difficulties"]["odocrypt"] == []


def test_distribution(client, app, recent_blocks):
    app.state.engine.apply_snapshot(recent_blocks)

    body = client.get("/metrics/distribution", params={"collapse_below": 50}).json()

    assert body["totalBlocks"] == 5
    counts = {item["algorithm"]: item["count"] for item in body["algorithms"]}
    assert counts["scrypt"] == 3
    assert sum(counts.values()) == 5
    assert [(item["label"], item["count"]) for item in body["slices"]] == [("Scrypt", 3), ("Other", 2)]
    assert body["taprootSignaling"]["count"] == 1


def test_miners(client, app, recent_blocks):
    app.state.engine.apply_snapshot(recent_blocks)

    body = client.get("/metrics/miners").json()

    assert body["multiBlockMiners"][0]["address"] == "busy"
    assert body["multiBlockMiners"][0]["count"] == 3
    assert body["multiBlockMiners"][0]["poolIdentifier"] == "PoolA"
    assert [miner["address"] for miner in body["singleBlockMiners"]] == ["solo"]
    assert body["unattributedBlocks"] == 1


def test_blocks_pagination(client, app, recent_blocks):
    app.state.engine.apply_snapshot(recent_blocks)

    body = client.get("/metrics/blocks", params={"page": 1, "per_page": 2}).json()

    assert [block["height"] for block in body["blocks"]] == [3, 2]
    assert body["totalPages"] == 3
    assert body["blocks"][0]["algo"] == "scrypt"
    assert body["blocks"][0]["synthetic"] is False


def test_fallback_blocks_are_marked(client, app):
    app.state.engine.apply_snapshot(build_fallback_records(), fallback=True)

    response = client.get("/metrics/blocks")

    assert response.headers["X-Data-Freshness"] == "fallback"
    body = response.json()
    assert body["feed"]["usingFallbackData"] is True
    assert all(block["synthetic"] for block in body["blocks"])


def test_engine_missing_before_startup(app):
    response = TestClient(app).get("/metrics/hashrate")
    assert response.status_code == 503


@pytest.mark.parametrize("value, expected", [
    (None, "N/A"),
    (0, "0.00 H/s"),
    (1500, "1.50 KH/s"),
    (2.5e18, "2.50 EH/s"),
    (7e21, "7000.00 EH/s"),
])
def test_format_hashrate(value, expected):
    assert format_hashrate(value) == expected


def test_format_block_time():
    assert format_block_time(None) == "N/A"
    assert format_block_time(75) == "1 min 15 s"


def test_presentation_defaults_follow_app_settings(recent_blocks):
    config = Settings(
        FEED_ENABLED=False,
        BLOCKS_PER_PAGE=2,
        OTHER_THRESHOLD_PERCENT=50.0,
        TELEGRAM_BOT_TOKEN="",
        TELEGRAM_CHAT_ID="",
    )
    app = create_application(config)

    with TestClient(app) as client:
        app.state.engine.apply_snapshot(recent_blocks)

        blocks = client.get("/metrics/blocks").json()
        assert blocks["perPage"] == 2
        assert [block["height"] for block in blocks["blocks"]] == [5, 4]

        distribution = client.get("/metrics/distribution").json()
        assert [item["label"] for item in distribution["slices"]] == ["Scrypt", "Other"]

        miners = client.get("/metrics/miners", params={"collapse_below": 0}).json()
        assert len(miners["slices"]) == 3
