from __future__ import annotations
from typing import Annotated, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field, ConfigDict, model_validator

Suit = Literal["♠","♥","♦","♣"]
Seat = Literal["N","E","S","W"]
Team = Literal["NS","EW"]
Phase = Literal["lobby", "bidding_round_1", "bidding_round_2", "dealer_discard", "playing", "finished"]

SEATS: List[Seat] = ["N", "E", "S", "W"]
TEAMS: List[Team] = ["NS", "EW"]

SUIT_COLOR: Dict[Suit, Literal["red", "black"]] = {
    "♠": "black",
    "♣": "black",
    "♥": "red",
    "♦": "red",
}

RANK_CODES: Dict[int, str] = {
    9: "9",
    10: "0",
    11: "J",
    12: "Q",
    13: "K",
    14: "A",
}

SUIT_CODES: Dict[Suit, str] = {
    "♠": "S",
    "♣": "C",
    "♥": "H",
    "♦": "D",
}


def card_id(suit: Suit, rank: int) -> Optional[str]:
    suit_code = SUIT_CODES.get(suit)
    rank_code = RANK_CODES.get(rank)
    if not suit_code or not rank_code:
        return None
    return f"c_{rank_code.lower()}{suit_code.lower()}"


def _parse_card_id(value: str) -> Optional[tuple[Suit, int]]:
    if len(value) != 4 or not value.startswith("c_"):
        return None
    rank_code, suit_code = value[2].upper(), value[3].upper()
    rank = next((r for r, code in RANK_CODES.items() if code == rank_code), None)
    suit = next((s for s, code in SUIT_CODES.items() if code == suit_code), None)
    if rank is None or suit is None:
        return None
    return suit, rank


class Card(BaseModel):
    id: str
    suit: Suit
    rank: int = Field(ge=9, le=14)  # 9..14 (11=J,12=Q,13=K,14=A)
    color: Optional[Literal["red", "black"]] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def fill_defaults(cls, value):
        if isinstance(value, str):
            value = {"id": value}
        if isinstance(value, dict):
            if value.get("suit") is None or value.get("rank") is None:
                parsed = _parse_card_id(value.get("id") or "")
                if parsed:
                    suit, rank = parsed
                    value = {**value, "suit": suit, "rank": rank}
            suit = value.get("suit")
            rank = value.get("rank")
            if suit in SUIT_COLOR:
                value = {**value, "color": SUIT_COLOR[suit]}
            # canonical id always follows suit and rank
            if suit in SUIT_CODES and isinstance(rank, int):
                cid = card_id(suit, rank)
                if cid:
                    value = {**value, "id": cid}
        return value

    def __str__(self) -> str:
        label = {11: "J", 12: "Q", 13: "K", 14: "A"}.get(self.rank, str(self.rank))
        return f"{label}{self.suit}"


class Player(BaseModel):
    id: str
    name: str
    seat: Optional[Seat] = None


class BiddingRecord(BaseModel):
    round: Literal[1, 2] = 1
    passed_seats: List[Seat] = Field(default_factory=list)
    caller_seat: Optional[Seat] = None


class TrickRecord(BaseModel):
    trick_number: int = Field(ge=1, le=5)
    lead_seat: Seat
    lead_suit: Optional[Suit] = None
    # insertion order is play order
    cards_played: Dict[Seat, Card] = Field(default_factory=dict)


class HandResult(BaseModel):
    hand_number: int
    maker_seat: Seat
    maker_team: Team
    maker_tricks: int
    scoring_team: Team
    points: int
    outcome: Literal["march", "made", "euchre"]


# ----------------------------------------------------------------------
# Stage: one variant per phase, discriminated by ``phase``
# ----------------------------------------------------------------------
class LobbyStage(BaseModel):
    phase: Literal["lobby"] = "lobby"


class BiddingStage(BaseModel):
    phase: Literal["bidding_round_1", "bidding_round_2"]
    upcard: Card
    kitty: List[Card]
    bidding: BiddingRecord


class DiscardStage(BaseModel):
    phase: Literal["dealer_discard"] = "dealer_discard"
    upcard: Card
    kitty: List[Card]
    trump: Suit
    maker_seat: Seat
    bidding: BiddingRecord


class PlayingStage(BaseModel):
    phase: Literal["playing"] = "playing"
    upcard: Card
    kitty: List[Card]
    trump: Suit
    maker_seat: Seat
    bidding: BiddingRecord
    trick: TrickRecord
    tricks_taken: Dict[Team, int] = Field(default_factory=lambda: {"NS": 0, "EW": 0})
    trick_winners: List[Seat] = Field(default_factory=list)
    last_trick: Optional[TrickRecord] = None


class FinishedStage(BaseModel):
    phase: Literal["finished"] = "finished"


Stage = Annotated[
    Union[LobbyStage, BiddingStage, DiscardStage, PlayingStage, FinishedStage],
    Field(discriminator="phase"),
]


class MatchRecord(BaseModel):
    id: str
    name: str = "Euchre"
    version: int = 0
    seats: Dict[Seat, Optional[str]] = Field(default_factory=lambda: {seat: None for seat in SEATS})
    players: Dict[str, Player] = Field(default_factory=dict)
    dealer: Seat = "N"
    turn: Seat = "N"
    score: Dict[Team, int] = Field(default_factory=lambda: {"NS": 0, "EW": 0})
    hand_number: int = 0
    winner: Optional[Team] = None
    last_hand: Optional[HandResult] = None
    stage: Stage = Field(default_factory=LobbyStage)

    @property
    def phase(self) -> Phase:
        return self.stage.phase


# ----------------------------------------------------------------------
# Actions
# ----------------------------------------------------------------------
class ClaimSeat(BaseModel):
    type: Literal["claim_seat"] = "claim_seat"
    seat: Seat
    name: str = "Player"


class StartHand(BaseModel):
    type: Literal["start_hand"] = "start_hand"


class OrderUp(BaseModel):
    type: Literal["order_up"] = "order_up"


class PassBid(BaseModel):
    type: Literal["pass"] = "pass"


class CallTrump(BaseModel):
    type: Literal["call_trump"] = "call_trump"
    suit: Suit


class Discard(BaseModel):
    type: Literal["discard"] = "discard"
    card: Card


class PlayCard(BaseModel):
    type: Literal["play_card"] = "play_card"
    card: Card
    hand_number: Optional[int] = Field(default=None, alias="handNumber")
    trick_number: Optional[int] = Field(default=None, alias="trickNumber")

    model_config = ConfigDict(populate_by_name=True)


Action = Annotated[
    Union[ClaimSeat, StartHand, OrderUp, PassBid, CallTrump, Discard, PlayCard],
    Field(discriminator="type"),
]


class CreateGameRequest(BaseModel):
    room_name: str = "Euchre"

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ----------------------------------------------------------------------
# Per-viewer state
# ----------------------------------------------------------------------
class SeatView(BaseModel):
    seat: Seat
    team: Team
    player_id: Optional[str] = None
    name: Optional[str] = None
    hand_count: int = 0


class GameState(BaseModel):
    match_id: str
    room_name: str
    version: int
    phase: Phase
    seats: List[SeatView]
    me: Optional[Player]
    dealer: Seat
    turn: Optional[Seat] = None
    score: Dict[Team, int]
    hand_number: int
    upcard: Optional[Card] = None
    kitty_count: int = 0
    trump: Optional[Suit] = None
    maker_seat: Optional[Seat] = None
    bidding: Optional[BiddingRecord] = None
    trick: Optional[TrickRecord] = None
    last_trick: Optional[TrickRecord] = None
    tricks_taken: Dict[Team, int] = Field(default_factory=dict)
    trick_winners: List[Seat] = Field(default_factory=list)
    hand: Optional[List[Card]] = None
    legal_cards: List[str] = Field(default_factory=list)
    discard_candidates: List[Card] = Field(default_factory=list)
    winner: Optional[Team] = None
    last_hand: Optional[HandResult] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")
