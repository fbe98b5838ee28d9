from tests.fakes import TAKER


def submit(client, text="swap 100 USDC to ETH", **extra):
    payload = {"text": text, "user_id": "u-1", "taker_address": TAKER, **extra}
    response = client.post("/intents/submit", json=payload)
    assert response.status_code == 200, response.text
    return response.json()


def test_root_and_health(client):
    assert client.get("/").status_code == 200
    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["pipeline_ready"] is True


def test_classify_only(client):
    body = client.post("/intents/classify", json={"text": "swap 100 USDC to ETH"}).json()

    assert body["parsed"]["action"] == "trade.swap"
    assert body["parsed"]["risk_level"] == "MEDIUM"
    assert body["parsed"]["requires_confirmation"] is False
    assert body["description"] == "Swap 100 USDC for ETH"


def test_submit_previews_swap(client):
    body = submit(client)

    intent = body["intent"]
    assert intent["status"] == "previewed"
    assert intent["quote"]["kind"] == "swap"
    assert intent["preview"]["summary"].startswith("Swap 100 USDC")
    assert body["description"] == "Swap 100 USDC for ETH"


def test_submit_without_execute_then_execute(client):
    intent_id = submit(client, execute=False)["intent"]["intent_id"]
    assert client.get(f"/intents/{intent_id}").json()["intent"]["status"] == "planned"

    executed = client.post(f"/intents/{intent_id}/execute").json()

    assert executed["intent"]["status"] == "previewed"


def test_build_submit_complete_flow(client):
    intent_id = submit(client)["intent"]["intent_id"]

    built = client.post(f"/intents/{intent_id}/build").json()
    assert built["intent"]["status"] == "building"
    assert built["transaction"]["strategy"] == "permit2_signature"
    transaction_id = built["intent"]["transaction_id"]

    submitted = client.post(f"/intents/{intent_id}/submitted", json={"tx_hash": "0xhash"}).json()
    assert submitted["intent"]["status"] == "submitted"

    status = client.post(
        f"/transactions/{transaction_id}/status", json={"status": "confirmed", "gas_used": "150000"}
    ).json()
    assert status["transaction"]["status"] == "confirmed"

    completed = client.post(f"/intents/{intent_id}/completed", json={"succeeded": True}).json()
    assert completed["intent"]["status"] == "completed"


def test_cancel_previewed(client):
    intent_id = submit(client)["intent"]["intent_id"]

    body = client.post(f"/intents/{intent_id}/cancel").json()

    assert body["intent"]["status"] == "rejected"


def test_limits_round_trip(client):
    update = {"daily_usd_cap": "500", "max_approval_usd": "100", "allowlist": [TAKER]}
    assert client.put("/limits/u-1", json=update).status_code == 200

    body = client.get("/limits/u-1").json()

    assert body["limits"]["daily_usd_cap"] == "500"
    assert body["limits"]["allowlist"] == [TAKER.lower()]
    assert body["reserved_usd"] == "0"


def test_invalid_limits_payload_is_rejected(client):
    response = client.put("/limits/u-1", json={"daily_usd_cap": "-5"})

    assert response.status_code == 422
