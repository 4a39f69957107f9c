"""HTTP surface tests: routing, validation and error mapping around the engine."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from main import create_app


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as c:
        yield c


def _create(client, **overrides) -> dict:
    body = {"category": "science", "difficulty": "normal", "questionCount": 2, "hostName": "Host"}
    body.update(overrides)
    r = client.post("/api/buzzer/matches", json=body)
    assert r.status_code == 200, r.text
    return r.json()


def _state(client, match_id: str) -> dict:
    r = client.get("/api/buzzer/state", params={"matchId": match_id})
    assert r.status_code == 200, r.text
    return r.json()


class TestBuzzerFlow:
    """The end-to-end scenarios, driven over HTTP."""

    def test_scenarios(self, client, bank) -> None:
        # 1. create
        created = _create(client)
        assert len(created["joinCode"]) == 6
        state = _state(client, created["matchId"])
        assert state["match"]["state"] == "waiting"
        assert state["question"] is None
        assert len(state["players"]) == 1

        # 2. join by code, then late join rejected
        r = client.post("/api/buzzer/join", json={"joinCode": created["joinCode"], "name": "Alice"})
        assert r.status_code == 200
        alice = r.json()
        r = client.post("/api/buzzer/join", json={"joinCode": created["joinCode"], "name": "Bob"})
        bob = r.json()
        assert len(_state(client, created["matchId"])["players"]) == 3

        # 3. start
        r = client.post("/api/buzzer/start", json={"matchId": created["matchId"], "token": created["hostToken"]})
        assert r.status_code == 200
        assert r.json() == {"ok": True}
        r = client.post("/api/buzzer/join", json={"joinCode": created["joinCode"], "name": "Late"})
        assert r.status_code == 409
        assert r.json()["error"] == "Conflict"

        state = _state(client, created["matchId"])
        assert state["match"]["state"] == "in_progress"
        assert state["match"]["current_index"] == 0
        assert set(state["question"]) == {"id", "prompt", "choices"}
        assert len(state["question"]["choices"]) == 4

        # 4. buzz race
        r = client.post("/api/buzzer/buzz", json={"matchId": created["matchId"], "token": alice["token"]})
        assert r.status_code == 200
        r = client.post("/api/buzzer/buzz", json={"matchId": created["matchId"], "token": bob["token"]})
        assert r.status_code == 409
        assert r.json() == {"error": "Conflict", "detail": "Locked by another"}
        assert _state(client, created["matchId"])["match"]["locked_by"] == alice["playerId"]

        # 5. correct answer from the lock holder
        key = bank.get_question(state["question"]["id"]).answerIndex
        r = client.post("/api/buzzer/answer", json={
            "matchId": created["matchId"], "token": alice["token"], "answerIndex": key,
        })
        assert r.status_code == 200
        assert r.json() == {"correct": True, "finished": False, "nextIndex": 1}
        state = _state(client, created["matchId"])
        assert {p["name"]: p["score"] for p in state["players"]}["Alice"] == 1
        assert state["lastAnswer"]["correct"] is True

        # 6. last question finishes the match
        key = bank.get_question(state["question"]["id"]).answerIndex
        r = client.post("/api/buzzer/answer", json={
            "matchId": created["matchId"], "token": bob["token"], "answerIndex": (key + 1) % 4,
        })
        assert r.status_code == 200
        assert r.json() == {"correct": False, "finished": True}

        state = _state(client, created["matchId"])
        assert state["match"]["state"] == "finished"
        assert state["question"] is None
        assert len(state["history"]) == 2
        for path in ("buzz", "answer"):
            body = {"matchId": created["matchId"], "token": bob["token"]}
            if path == "answer":
                body["answerIndex"] = 0
            r = client.post(f"/api/buzzer/{path}", json=body)
            assert r.status_code == 409

    def test_answer_key_never_in_live_payloads(self, client) -> None:
        created = _create(client)
        client.post("/api/buzzer/start", json={"matchId": created["matchId"], "token": created["hostToken"]})

        r = client.get("/api/buzzer/state", params={"matchId": created["matchId"]})
        assert "answerIndex" not in r.json()["question"]
        assert "answer_index" not in r.text

        r = client.get("/api/buzzer/events", params={"matchId": created["matchId"]})
        assert r.status_code == 200
        for event in r.json()["events"]:
            if event["type"] == "question":
                assert "answerIndex" not in event["payload"]
                assert "answer_index" not in event["payload"]


class TestErrors:
    """Engine errors map to status codes with a kind and a reason."""

    def test_not_your_turn_is_403(self, client) -> None:
        created = _create(client)
        alice = client.post("/api/buzzer/join", json={"matchId": created["matchId"], "name": "Alice"}).json()
        client.post("/api/buzzer/start", json={"matchId": created["matchId"], "token": created["hostToken"]})
        client.post("/api/buzzer/buzz", json={"matchId": created["matchId"], "token": created["hostToken"]})

        r = client.post("/api/buzzer/answer", json={
            "matchId": created["matchId"], "token": alice["token"], "answerIndex": 0,
        })
        assert r.status_code == 403
        assert r.json() == {"error": "Forbidden", "detail": "Not your turn"}

    def test_non_host_start_is_403(self, client) -> None:
        created = _create(client)
        alice = client.post("/api/buzzer/join", json={"matchId": created["matchId"], "name": "Alice"}).json()

        r = client.post("/api/buzzer/start", json={"matchId": created["matchId"], "token": alice["token"]})
        assert r.status_code == 403

    def test_bad_token_is_401(self, client) -> None:
        created = _create(client)
        r = client.post("/api/buzzer/buzz", json={"matchId": created["matchId"], "token": "wrong-token-123"})
        assert r.status_code == 401
        assert r.json()["error"] == "Unauthorized"

    def test_unknown_match_is_404(self, client) -> None:
        r = client.get("/api/buzzer/state", params={"matchId": "missing"})
        assert r.status_code == 404
        assert r.json() == {"error": "NotFound", "detail": "Match not found"}

    def test_no_questions_is_404(self, client) -> None:
        r = client.post("/api/buzzer/matches", json={"category": "art", "hostName": "Host"})
        assert r.status_code == 404

    @pytest.mark.parametrize("body", [
        {"category": "science", "hostName": ""},
        {"category": "science", "hostName": "Host", "difficulty": "extreme"},
        {"category": "science", "hostName": "Host", "questionCount": 50},
        {"hostName": "Host"},
    ])
    def test_invalid_create_is_400(self, client, body) -> None:
        r = client.post("/api/buzzer/matches", json=body)
        assert r.status_code == 400
        assert r.json()["error"] == "Invalid"

    def test_join_without_target_is_400(self, client) -> None:
        r = client.post("/api/buzzer/join", json={"name": "Alice"})
        assert r.status_code == 400

    def test_answer_index_out_of_range_is_400(self, client) -> None:
        created = _create(client)
        r = client.post("/api/buzzer/answer", json={
            "matchId": created["matchId"], "token": created["hostToken"], "answerIndex": 7,
        })
        assert r.status_code == 400

    def test_short_token_is_400(self, client) -> None:
        created = _create(client)
        r = client.post("/api/buzzer/buzz", json={"matchId": created["matchId"], "token": "short"})
        assert r.status_code == 400


class TestMisc:
    def test_health(self, client) -> None:
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}

    def test_request_id_echoed(self, client) -> None:
        r = client.get("/health", headers={"X-Request-ID": "abc123"})
        assert r.headers["X-Request-ID"] == "abc123"
        assert client.get("/health").headers["X-Request-ID"]

    def test_catalog(self, client) -> None:
        r = client.get("/api/categories")
        assert [c["slug"] for c in r.json()["items"]] == ["history", "science"]
        r = client.get("/api/difficulties")
        assert [d["key"] for d in r.json()["items"]] == ["easy", "normal", "hard"]

    def test_event_feed_since(self, client) -> None:
        created = _create(client)
        first = client.get("/api/buzzer/events", params={"matchId": created["matchId"]}).json()
        client.post("/api/buzzer/join", json={"matchId": created["matchId"], "name": "Alice"})

        r = client.get("/api/buzzer/events", params={
            "matchId": created["matchId"], "since_id": first["lastEventId"],
        })
        assert [e["type"] for e in r.json()["events"]] == ["join"]

    def test_game_event_summary(self, client) -> None:
        _create(client)
        r = client.get("/api/game-events/summary")
        assert r.status_code == 200
        assert r.json()["events"] >= 1
