from unittest.mock import AsyncMock, patch

from API_LAYER import app as app_module
from tests.fakes import RECIPIENT, TAKER


def assert_envelope(response, status_code, error_type):
    assert response.status_code == status_code
    body = response.json()
    assert set(body) == {"error"}
    assert body["error"]["type"] == error_type
    assert body["error"]["message"]


def test_unclassifiable_text_is_422_and_creates_nothing(client, pipeline):
    response = client.post(
        "/intents/submit", json={"text": "asdkjasd", "user_id": "u-1", "taker_address": TAKER}
    )

    assert_envelope(response, 422, "ClassificationError")
    assert pipeline.intents._rows == {}


def test_classify_endpoint_rejects_empty_text(client):
    assert_envelope(client.post("/intents/classify", json={"text": "   "}), 422, "ClassificationError")


def test_unknown_intent_is_404(client):
    assert_envelope(client.get("/intents/does-not-exist"), 404, "IntentNotFoundError")


def test_second_build_is_409(client):
    submitted = client.post(
        "/intents/submit", json={"text": "swap 100 USDC to ETH", "user_id": "u-1", "taker_address": TAKER}
    ).json()
    intent_id = submitted["intent"]["intent_id"]

    assert client.post(f"/intents/{intent_id}/build").status_code == 200
    assert_envelope(client.post(f"/intents/{intent_id}/build"), 409, "InvalidTransitionError")


def test_limiter_rejection_is_403(client):
    client.put("/limits/u-1", json={"daily_usd_cap": "1000"})
    submitted = client.post(
        "/intents/submit",
        json={"text": f"send 50000 USDC to {RECIPIENT}", "user_id": "u-1", "taker_address": TAKER},
    ).json()
    intent_id = submitted["intent"]["intent_id"]

    assert_envelope(client.post(f"/intents/{intent_id}/build"), 403, "LimiterRejection")
    assert client.get(f"/intents/{intent_id}").json()["intent"]["status"] == "failed"


def test_provider_failure_is_502(client, pipeline):
    with patch.object(pipeline.executors["trade.swap"].provider, "get_swap_quote", AsyncMock(side_effect=RuntimeError("down"))):
        response = client.post(
            "/intents/submit", json={"text": "swap 100 USDC to ETH", "user_id": "u-1", "taker_address": TAKER}
        )

    assert_envelope(response, 502, "ProviderError")


def test_unexpected_error_hides_details(client, pipeline):
    with patch.object(pipeline, "get_intent", AsyncMock(side_effect=RuntimeError("secret internals"))), \
         patch.object(app_module, "DEBUG", False):
        response = client.get("/intents/anything")

    assert_envelope(response, 500, "InternalError")
    assert "secret" not in response.json()["error"]["message"]


def test_missing_pipeline_is_503(client):
    with patch.object(app_module, "pipeline", None):
        response = client.get("/intents/anything")

    assert_envelope(response, 503, "PersistenceError")


def test_failures_are_counted(client):
    before = client.get("/metrics").json()["errors"]

    client.get("/intents/does-not-exist")

    assert client.get("/metrics").json()["errors"] == before + 1
