from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from fastapi import (
    Body,
    FastAPI,
    WebSocket,
    WebSocketDisconnect,
    Header,
    Query,
    HTTPException,
)
from fastapi.middleware.cors import CORSMiddleware
from pydantic import TypeAdapter, ValidationError

import game
from app.database import data_engine, init_db
from app.services.matches import MatchStore
from app.settings import settings
from errors import EuchreError, MatchNotFound, WriteConflict
from models import (
    Action,
    CallTrump,
    ClaimSeat,
    CreateGameRequest,
    Discard,
    MatchRecord,
    OrderUp,
    PassBid,
    PlayCard,
    Player,
    StartHand,
)

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

store = MatchStore()
action_adapter = TypeAdapter(Action)


@app.on_event("startup")
async def _prepare_db() -> None:
    settings.log_status()
    await init_db()


@app.on_event("shutdown")
async def _close_db() -> None:
    await data_engine.dispose()


# ---------- errors ----------
def _rejection(exc: Exception) -> HTTPException:
    if isinstance(exc, MatchNotFound):
        return HTTPException(status_code=404, detail="match_not_found")
    return HTTPException(
        status_code=409,
        detail={"code": exc.code, "message": str(exc), "retryable": isinstance(exc, WriteConflict)},
    )


async def _state_for(match: MatchRecord, viewer_id: Optional[str]) -> dict:
    hand = await store.load_hand(match.id, viewer_id)
    return game.to_state(match, viewer_id, hand).model_dump(mode="json", by_alias=True)


async def _apply(match_id: str, actor_id: str, action) -> dict:
    try:
        match = await store.apply(match_id, actor_id, action)
    except (EuchreError, WriteConflict, MatchNotFound) as exc:
        raise _rejection(exc)
    await broadcast_room(match_id)
    return await _state_for(match, actor_id)


# ---------- REST ----------
@app.post("/api/game/create")
async def create_game(
    req: CreateGameRequest,
    x_user_id: str = Header(...),
    x_user_name: str = Header("Player"),
):
    match = await store.create_match(req.room_name, Player(id=x_user_id, name=x_user_name))
    return {"match_id": match.id, "seat": "N"}


@app.post("/api/game/{match_id}/seat")
async def claim_seat(
    match_id: str,
    req: ClaimSeat,
    x_user_id: str = Header(...),
    x_user_name: Optional[str] = Header(None),
):
    if x_user_name and req.name == "Player":
        req = req.model_copy(update={"name": x_user_name})
    return await _apply(match_id, x_user_id, req)


@app.post("/api/game/{match_id}/start")
async def start_hand(match_id: str, x_user_id: str = Header(...)):
    return await _apply(match_id, x_user_id, StartHand())


@app.post("/api/game/{match_id}/bid")
async def bid(
    match_id: str,
    req: Union[OrderUp, PassBid, CallTrump] = Body(..., discriminator="type"),
    x_user_id: str = Header(...),
):
    return await _apply(match_id, x_user_id, req)


@app.post("/api/game/{match_id}/discard")
async def discard(match_id: str, req: Discard, x_user_id: str = Header(...)):
    return await _apply(match_id, x_user_id, req)


@app.post("/api/game/{match_id}/play")
async def play_card(match_id: str, req: PlayCard, x_user_id: str = Header(...)):
    return await _apply(match_id, x_user_id, req)


@app.get("/api/game/state/{match_id}")
async def game_state(match_id: str, x_user_id: Optional[str] = Header(None)):
    try:
        match = await store.load(match_id)
    except MatchNotFound as exc:
        raise _rejection(exc)
    return await _state_for(match, x_user_id)


# ---------- WebSockets hub ----------
class Hub:
    def __init__(self):
        self.rooms: Dict[str, List[WebSocket]] = {}
        self.ws_player: Dict[WebSocket, str] = {}
        self.ws_room: Dict[WebSocket, str] = {}

    async def connect_room(self, match_id: str, player_id: str, ws: WebSocket):
        await ws.accept()
        self.rooms.setdefault(match_id, []).append(ws)
        self.ws_player[ws] = player_id
        self.ws_room[ws] = match_id
        logger.info("Player %s connected to match %s", player_id, match_id)

    def disconnect(self, ws: WebSocket):
        self.ws_player.pop(ws, None)
        rid = self.ws_room.pop(ws, None)
        if rid and ws in self.rooms.get(rid, []):
            self.rooms[rid].remove(ws)
            if not self.rooms[rid]:
                self.rooms.pop(rid, None)

    async def send_room_state(self, match_id: str):
        sockets = list(self.rooms.get(match_id, []))
        if not sockets:
            return
        try:
            match = await store.load(match_id)
        except MatchNotFound:
            return
        for ws in sockets:
            player_id = self.ws_player.get(ws)
            try:
                payload = await _state_for(match, player_id)
                await ws.send_json({"type": "state", "payload": payload})
            except (RuntimeError, WebSocketDisconnect):
                logger.info("Dropping dead socket of %s in match %s", player_id, match_id)
                self.disconnect(ws)

hub = Hub()

# ---------- broadcasters ----------
async def broadcast_room(match_id: str):
    await hub.send_room_state(match_id)

# ---------- WS endpoints ----------
@app.websocket("/ws/{match_id}")
async def ws_room(ws: WebSocket, match_id: str, player_id: str = Query(...)):
    try:
        await store.load(match_id)
    except MatchNotFound:
        await ws.close(code=1008, reason="match_not_found")
        return

    await hub.connect_room(match_id, player_id, ws)
    try:
        await broadcast_room(match_id)
        while True:
            data = await ws.receive_text()
            try:
                action = action_adapter.validate_json(data)
            except ValidationError as exc:
                await ws.send_json({"type": "error", "code": "invalid_action", "error": str(exc)})
                continue
            try:
                await store.apply(match_id, player_id, action)
            except (EuchreError, WriteConflict) as exc:
                await ws.send_json({"type": "error", "code": exc.code, "error": str(exc)})
            except MatchNotFound:
                await ws.close(code=1011, reason="match_not_found")
                break
            else:
                await broadcast_room(match_id)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(ws)
