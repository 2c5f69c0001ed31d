import os, importlib

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

os.environ.setdefault("ORIGIN", "http://localhost:5173")
app_mod = importlib.import_module("main")

PLAYERS = {"N": "pN", "E": "pE", "S": "pS", "W": "pW"}


@pytest.fixture(scope="module")
def client():
    with TestClient(app_mod.app) as c:
        yield c


def _headers(player_id: str, name: str = "") -> dict:
    return {"x-user-id": player_id, "x-user-name": name or player_id}


def _started_match(client) -> str:
    r = client.post("/api/game/create", json={"room_name": "Test"}, headers=_headers("pN", "North"))
    assert r.status_code == 200
    match_id = r.json()["match_id"]
    for seat in ("E", "S", "W"):
        rs = client.post(f"/api/game/{match_id}/seat", json={"seat": seat}, headers=_headers(PLAYERS[seat]))
        assert rs.status_code == 200
    start = client.post(f"/api/game/{match_id}/start", headers=_headers("pN"))
    assert start.status_code == 200
    return match_id


def test_create_claim_start_flow(client):
    r = client.post("/api/game/create", json={"room_name": "Flow"}, headers=_headers("pN", "North"))
    assert r.status_code == 200
    body = r.json()
    assert body["seat"] == "N"
    match_id = body["match_id"]

    claimed = client.post(f"/api/game/{match_id}/seat", json={"seat": "E"}, headers=_headers("pE", "East"))
    assert claimed.status_code == 200
    state = claimed.json()
    assert state["phase"] == "lobby"
    east = next(s for s in state["seats"] if s["seat"] == "E")
    assert east["player_id"] == "pE"
    assert east["name"] == "East"

    taken = client.post(f"/api/game/{match_id}/seat", json={"seat": "E"}, headers=_headers("pX"))
    assert taken.status_code == 409
    assert taken.json()["detail"]["code"] == "seat_conflict"

    early = client.post(f"/api/game/{match_id}/start", headers=_headers("pN"))
    assert early.status_code == 409

    for seat in ("S", "W"):
        client.post(f"/api/game/{match_id}/seat", json={"seat": seat}, headers=_headers(PLAYERS[seat]))
    started = client.post(f"/api/game/{match_id}/start", headers=_headers("pN"))
    assert started.status_code == 200
    st = started.json()
    assert st["phase"] == "bidding_round_1"
    assert st["dealer"] == "E"
    assert st["turn"] == "S"
    assert st["hand_number"] == 1
    assert st["upcard"] is not None
    assert st["kitty_count"] == 3
    assert len(st["hand"]) == 5


def test_state_exposes_only_the_viewers_hand(client):
    match_id = _started_match(client)

    mine = client.get(f"/api/game/state/{match_id}", headers={"x-user-id": "pE"}).json()
    assert len(mine["hand"]) == 5
    assert "hands" not in mine
    assert all(s["hand_count"] == 5 for s in mine["seats"])

    other = client.get(f"/api/game/state/{match_id}", headers={"x-user-id": "pW"}).json()
    assert {c["id"] for c in mine["hand"]}.isdisjoint(c["id"] for c in other["hand"])

    observer = client.get(f"/api/game/state/{match_id}").json()
    assert observer["hand"] is None
    assert observer["legal_cards"] == []


def test_out_of_turn_bid_is_rejected(client):
    match_id = _started_match(client)
    r = client.post(f"/api/game/{match_id}/bid", json={"type": "order_up"}, headers=_headers("pN"))
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["code"] == "out_of_turn"
    assert detail["retryable"] is False

    wrong_phase = client.post(
        f"/api/game/{match_id}/bid", json={"type": "call_trump", "suit": "♠"}, headers=_headers("pS")
    )
    assert wrong_phase.status_code == 409
    assert wrong_phase.json()["detail"]["code"] == "phase_mismatch"

    passed = client.post(f"/api/game/{match_id}/bid", json={"type": "pass"}, headers=_headers("pS"))
    assert passed.status_code == 200
    assert passed.json()["turn"] == "W"


def test_order_up_discard_and_play(client):
    match_id = _started_match(client)
    ordered = client.post(f"/api/game/{match_id}/bid", json={"type": "order_up"}, headers=_headers("pS"))
    assert ordered.status_code == 200
    assert ordered.json()["phase"] == "dealer_discard"
    assert ordered.json()["turn"] == "E"

    dealer = client.get(f"/api/game/state/{match_id}", headers={"x-user-id": "pE"}).json()
    assert len(dealer["discard_candidates"]) == 6
    discarded = client.post(
        f"/api/game/{match_id}/discard",
        json={"card": dealer["discard_candidates"][-1]["id"]},
        headers=_headers("pE"),
    )
    assert discarded.status_code == 200
    assert discarded.json()["phase"] == "playing"
    assert discarded.json()["kitty_count"] == 4

    leader = client.get(f"/api/game/state/{match_id}", headers={"x-user-id": "pS"}).json()
    assert leader["turn"] == "S"
    assert len(leader["legal_cards"]) == 5
    stale = client.post(
        f"/api/game/{match_id}/play",
        json={"card": leader["legal_cards"][0], "handNumber": 1, "trickNumber": 2},
        headers=_headers("pS"),
    )
    assert stale.status_code == 409
    assert stale.json()["detail"]["code"] == "phase_mismatch"

    played = client.post(
        f"/api/game/{match_id}/play",
        json={"card": leader["legal_cards"][0], "handNumber": 1, "trickNumber": 1},
        headers=_headers("pS"),
    )
    assert played.status_code == 200
    st = played.json()
    assert st["turn"] == "W"
    assert st["trick"]["cards_played"]["S"]["id"] == leader["legal_cards"][0]
    assert len(st["hand"]) == 4


def test_unknown_match(client):
    assert client.get("/api/game/state/nope").status_code == 404
    r = client.post("/api/game/nope/start", headers=_headers("pN"))
    assert r.status_code == 404


def test_ws_errors_do_not_disconnect(client):
    match_id = _started_match(client)

    with client.websocket_connect(f"/ws/{match_id}?player_id=pN") as ws:
        first_message = ws.receive_json()
        assert first_message["type"] == "state"
        assert len(first_message["payload"]["hand"]) == 5

        ws.send_json({"type": "pass"})
        error_message = ws.receive_json()
        assert error_message["type"] == "error"
        assert error_message["code"] == "out_of_turn"

        ws.send_json({"type": "declare"})
        invalid = ws.receive_json()
        assert invalid["type"] == "error"
        assert invalid["code"] == "invalid_action"


def test_ws_action_broadcasts_state(client):
    match_id = _started_match(client)

    with client.websocket_connect(f"/ws/{match_id}?player_id=pS") as ws:
        first_state = ws.receive_json()
        assert first_state["type"] == "state"
        assert first_state["payload"]["turn"] == "S"

        ws.send_json({"type": "pass"})
        state_update = ws.receive_json()
        assert state_update["type"] == "state"
        assert state_update["payload"]["turn"] == "W"
        assert state_update["payload"]["bidding"]["passed_seats"] == ["S"]
        assert state_update["payload"]["version"] == first_state["payload"]["version"] + 1


def test_ws_malformed_frame_keeps_connection(client):
    match_id = _started_match(client)

    with client.websocket_connect(f"/ws/{match_id}?player_id=pN") as ws:
        assert ws.receive_json()["type"] == "state"

        ws.send_text("not json")
        invalid = ws.receive_json()
        assert invalid["type"] == "error"
        assert invalid["code"] == "invalid_action"

        ws.send_json({"type": "pass"})
        still_open = ws.receive_json()
        assert still_open["code"] == "out_of_turn"
        assert len(app_mod.hub.rooms[match_id]) == 1

    assert match_id not in app_mod.hub.rooms


class DeadSocket:
    async def send_json(self, data):
        raise WebSocketDisconnect(code=1006)


def _register(match_id: str, player_id: str, ws) -> None:
    app_mod.hub.rooms.setdefault(match_id, []).append(ws)
    app_mod.hub.ws_player[ws] = player_id
    app_mod.hub.ws_room[ws] = match_id


def test_dead_socket_does_not_fail_committed_rest_action(client):
    match_id = _started_match(client)
    dead = DeadSocket()
    _register(match_id, "pW", dead)

    r = client.post(f"/api/game/{match_id}/bid", json={"type": "pass"}, headers=_headers("pS"))
    assert r.status_code == 200
    assert r.json()["turn"] == "W"
    assert match_id not in app_mod.hub.rooms
    assert dead not in app_mod.hub.ws_player


def test_dead_socket_is_dropped_without_closing_the_sender(client):
    match_id = _started_match(client)

    with client.websocket_connect(f"/ws/{match_id}?player_id=pS") as ws:
        assert ws.receive_json()["type"] == "state"
        dead = DeadSocket()
        _register(match_id, "pW", dead)

        ws.send_json({"type": "pass"})
        state_update = ws.receive_json()
        assert state_update["type"] == "state"
        assert state_update["payload"]["turn"] == "W"

        ws.send_json({"type": "pass"})
        error_message = ws.receive_json()
        assert error_message["code"] == "out_of_turn"
        assert dead not in app_mod.hub.ws_room
        assert len(app_mod.hub.rooms[match_id]) == 1
