from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from errors import (
    IllegalBid,
    IllegalDiscard,
    IllegalPlay,
    MatchFinished,
    OutOfTurn,
    PhaseMismatch,
    SeatConflict,
)
from models import (
    SEATS,
    BiddingRecord,
    BiddingStage,
    Card,
    DiscardStage,
    FinishedStage,
    GameState,
    HandResult,
    LobbyStage,
    MatchRecord,
    PlayingStage,
    Player,
    Seat,
    SeatView,
    Suit,
    Team,
    TrickRecord,
)

logger = logging.getLogger(__name__)

SUITS: List[Suit] = ["♠", "♥", "♦", "♣"]
RANKS = [9, 10, 11, 12, 13, 14]
JACK = 11

HAND_SIZE = 5
TRICKS_PER_HAND = 5
WINNING_SCORE = 10

TEAM_OF_SEAT: Dict[Seat, Team] = {"N": "NS", "S": "NS", "E": "EW", "W": "EW"}

# suit sharing the color of the key suit
SAME_COLOR_SUIT: Dict[Suit, Suit] = {"♠": "♣", "♣": "♠", "♥": "♦", "♦": "♥"}


# ----------------------------------------------------------------------
# Seats and teams
# ----------------------------------------------------------------------
def next_seat(seat: Seat) -> Seat:
    return SEATS[(SEATS.index(seat) + 1) % len(SEATS)]


def team_of(seat: Seat) -> Team:
    return TEAM_OF_SEAT[seat]


def other_team(team: Team) -> Team:
    return "EW" if team == "NS" else "NS"


def seat_of(match: MatchRecord, player_id: Optional[str]) -> Optional[Seat]:
    if not player_id:
        return None
    for seat, occupant in match.seats.items():
        if occupant == player_id:
            return seat
    return None


# ----------------------------------------------------------------------
# Deck & dealer
# ----------------------------------------------------------------------
def make_deck() -> List[Card]:
    return [Card(suit=suit, rank=rank) for suit in SUITS for rank in RANKS]


@dataclass
class Deal:
    dealer: Seat
    hands: Dict[Seat, List[Card]]
    upcard: Card
    kitty: List[Card]

    @property
    def first_bidder(self) -> Seat:
        return next_seat(self.dealer)


def deal_hand(dealer: Seat, rng: Optional[random.Random] = None) -> Deal:
    deck = make_deck()
    (rng or random).shuffle(deck)

    order: List[Seat] = []
    cursor = next_seat(dealer)
    for _ in range(len(SEATS)):
        order.append(cursor)
        cursor = next_seat(cursor)

    hands: Dict[Seat, List[Card]] = {seat: [] for seat in SEATS}
    idx = 0
    for _ in range(HAND_SIZE):
        for seat in order:
            hands[seat].append(deck[idx])
            idx += 1

    upcard = deck[idx]
    kitty = deck[idx + 1:]
    return Deal(dealer=dealer, hands=hands, upcard=upcard, kitty=kitty)


# ----------------------------------------------------------------------
# Card ranking
# ----------------------------------------------------------------------
def is_right_bower(card: Card, trump: Suit) -> bool:
    return card.rank == JACK and card.suit == trump


def is_left_bower(card: Card, trump: Suit) -> bool:
    return card.rank == JACK and card.suit == SAME_COLOR_SUIT[trump]


def effective_suit(card: Card, trump: Optional[Suit]) -> Suit:
    if trump is not None and is_left_bower(card, trump):
        return trump
    return card.suit


def card_strength(card: Card, trump: Suit, lead_suit: Optional[Suit]) -> int:
    """Strength of ``card`` inside a trick; 0 means it cannot win.

    Bowers sit above every other trump, trumps above the led suit, and cards
    that neither follow nor trump never win.
    """
    if is_right_bower(card, trump):
        return 200
    if is_left_bower(card, trump):
        return 199
    suit = effective_suit(card, trump)
    if suit == trump:
        return 100 + card.rank
    if lead_suit is not None and suit == lead_suit:
        return card.rank
    return 0


def legal_cards(hand: List[Card], trick: TrickRecord, trump: Suit) -> List[Card]:
    if not trick.cards_played or trick.lead_suit is None:
        return list(hand)
    following = [card for card in hand if effective_suit(card, trump) == trick.lead_suit]
    return following or list(hand)


def trick_winner(trick: TrickRecord, trump: Suit) -> Seat:
    return max(
        trick.cards_played.items(),
        key=lambda item: card_strength(item[1], trump, trick.lead_suit),
    )[0]


# ----------------------------------------------------------------------
# Scoring
# ----------------------------------------------------------------------
def score_hand(hand_number: int, maker_seat: Seat, tricks_taken: Dict[Team, int]) -> HandResult:
    maker_team = team_of(maker_seat)
    maker_tricks = tricks_taken.get(maker_team, 0)
    if maker_tricks == TRICKS_PER_HAND:
        scoring_team, points, outcome = maker_team, 2, "march"
    elif maker_tricks >= 3:
        scoring_team, points, outcome = maker_team, 1, "made"
    else:
        scoring_team, points, outcome = other_team(maker_team), 2, "euchre"
    return HandResult(
        hand_number=hand_number,
        maker_seat=maker_seat,
        maker_team=maker_team,
        maker_tricks=maker_tricks,
        scoring_team=scoring_team,
        points=points,
        outcome=outcome,
    )


def match_winner(score: Dict[Team, int]) -> Optional[Team]:
    leaders = [team for team, value in score.items() if value >= WINNING_SCORE]
    if not leaders:
        return None
    return max(leaders, key=lambda team: score[team])


# ----------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------
@dataclass
class TableSnapshot:
    """Committed match record plus every seat's private hand."""

    match: MatchRecord
    hands: Dict[Seat, List[Card]] = field(default_factory=dict)


@dataclass
class Transition:
    match: MatchRecord
    hands: Dict[Seat, List[Card]]
    touched: Set[Seat] = field(default_factory=set)
    event: str = ""

    @property
    def snapshot(self) -> TableSnapshot:
        return TableSnapshot(match=self.match, hands=self.hands)


def new_match(match_id: str, room_name: str, host: Player) -> MatchRecord:
    match = MatchRecord(id=match_id, name=room_name)
    match.seats["N"] = host.id
    match.players[host.id] = Player(id=host.id, name=host.name, seat="N")
    return match


def apply_action(
    snapshot: TableSnapshot,
    actor_id: str,
    action,
    *,
    rng: Optional[random.Random] = None,
) -> Transition:
    """Validate ``action`` against ``snapshot`` and return the next state.

    The snapshot is never modified. Any rule violation raises a
    :class:`errors.EuchreError` subclass and produces no transition.
    """
    handler = _HANDLERS.get(action.type)
    if handler is None:
        raise PhaseMismatch(f"Unknown action {action.type!r}")
    transition = Transition(
        match=snapshot.match.model_copy(deep=True),
        hands={seat: list(cards) for seat, cards in snapshot.hands.items()},
        event=action.type,
    )
    handler(transition, actor_id, action, rng)
    return transition


def _require_not_finished(match: MatchRecord):
    if match.winner is not None or match.phase == "finished":
        raise MatchFinished("Match is already finished")


def _require_turn(match: MatchRecord, actor_id: str) -> Seat:
    seat = seat_of(match, actor_id)
    if seat is None or seat != match.turn:
        raise OutOfTurn("Not your turn")
    return seat


def _claim_seat(t: Transition, actor_id: str, action, rng):
    match = t.match
    if match.seats.get(action.seat):
        raise SeatConflict("Seat already taken")
    if seat_of(match, actor_id) is not None:
        raise SeatConflict("You already claimed a seat")
    match.seats[action.seat] = actor_id
    match.players[actor_id] = Player(id=actor_id, name=action.name, seat=action.seat)


def _start_hand(t: Transition, actor_id: str, action, rng):
    match = t.match
    _require_not_finished(match)
    if match.phase != "lobby":
        raise PhaseMismatch("Hand already in progress")
    if seat_of(match, actor_id) is None:
        raise OutOfTurn("Only seated players can start a hand")
    if not all(match.seats.get(seat) for seat in SEATS):
        raise SeatConflict("Need all 4 seats filled to start a hand")

    deal = deal_hand(next_seat(match.dealer), rng)
    match.dealer = deal.dealer
    match.turn = deal.first_bidder
    match.hand_number += 1
    match.stage = BiddingStage(
        phase="bidding_round_1",
        upcard=deal.upcard,
        kitty=deal.kitty,
        bidding=BiddingRecord(round=1),
    )
    t.hands = {seat: list(cards) for seat, cards in deal.hands.items()}
    t.touched = set(SEATS)


def _order_up(t: Transition, actor_id: str, action, rng):
    match = t.match
    _require_not_finished(match)
    if match.phase != "bidding_round_1":
        raise PhaseMismatch("Ordering up is only possible in bidding round 1")
    seat = _require_turn(match, actor_id)
    stage = match.stage
    bidding = stage.bidding.model_copy(update={"caller_seat": seat})
    match.stage = DiscardStage(
        upcard=stage.upcard,
        kitty=list(stage.kitty),
        trump=stage.upcard.suit,
        maker_seat=seat,
        bidding=bidding,
    )
    match.turn = match.dealer


def _pass(t: Transition, actor_id: str, action, rng):
    match = t.match
    _require_not_finished(match)
    if match.phase not in ("bidding_round_1", "bidding_round_2"):
        raise PhaseMismatch("Passing is only possible while bidding")
    seat = _require_turn(match, actor_id)
    stage = match.stage
    passed = list(stage.bidding.passed_seats)

    if stage.phase == "bidding_round_1":
        if seat not in passed:
            passed.append(seat)
        if len(passed) >= len(SEATS):
            stage.phase = "bidding_round_2"
            stage.bidding = BiddingRecord(round=2)
            match.turn = next_seat(match.dealer)
        else:
            stage.bidding.passed_seats = passed
            match.turn = next_seat(seat)
        return

    if seat == match.dealer and len(passed) >= len(SEATS) - 1:
        raise IllegalBid("Dealer must call trump")
    if seat not in passed:
        passed.append(seat)
    stage.bidding.passed_seats = passed
    match.turn = match.dealer if len(passed) >= len(SEATS) - 1 else next_seat(seat)


def _call_trump(t: Transition, actor_id: str, action, rng):
    match = t.match
    _require_not_finished(match)
    if match.phase != "bidding_round_2":
        raise PhaseMismatch("Calling trump is only possible in bidding round 2")
    seat = _require_turn(match, actor_id)
    stage = match.stage
    if action.suit == stage.upcard.suit:
        raise IllegalBid("Cannot call the suit of the turned-down upcard")
    lead = next_seat(match.dealer)
    match.stage = PlayingStage(
        upcard=stage.upcard,
        kitty=[*stage.kitty, stage.upcard],
        trump=action.suit,
        maker_seat=seat,
        bidding=stage.bidding.model_copy(update={"caller_seat": seat}),
        trick=TrickRecord(trick_number=1, lead_seat=lead),
    )
    match.turn = lead


def _discard(t: Transition, actor_id: str, action, rng):
    match = t.match
    if match.phase != "dealer_discard":
        raise PhaseMismatch("No discard is pending")
    seat = seat_of(match, actor_id)
    if seat is None or seat != match.dealer or match.turn != match.dealer:
        raise OutOfTurn("Only the dealer discards")
    stage = match.stage
    hand = t.hands.get(seat, [])
    if len(hand) != HAND_SIZE:
        raise IllegalDiscard(f"Dealer must hold {HAND_SIZE} cards before discarding")
    candidates = [*hand, stage.upcard]
    if action.card not in candidates:
        raise IllegalDiscard("Card is not in the dealer's hand or the upcard")
    remaining = [card for card in candidates if card != action.card]
    if len(remaining) != HAND_SIZE:
        raise IllegalDiscard(f"Dealer must keep exactly {HAND_SIZE} cards")

    lead = next_seat(match.dealer)
    t.hands[seat] = remaining
    t.touched.add(seat)
    match.stage = PlayingStage(
        upcard=stage.upcard,
        kitty=[*stage.kitty, action.card],
        trump=stage.trump,
        maker_seat=stage.maker_seat,
        bidding=stage.bidding,
        trick=TrickRecord(trick_number=1, lead_seat=lead),
    )
    match.turn = lead


def _play_card(t: Transition, actor_id: str, action, rng):
    match = t.match
    if match.phase != "playing":
        raise PhaseMismatch("No trick is being played")
    stage = match.stage
    trick = stage.trick
    if action.hand_number is not None and action.hand_number != match.hand_number:
        raise PhaseMismatch("Hand mismatch")
    if action.trick_number is not None and action.trick_number != trick.trick_number:
        raise PhaseMismatch("Trick mismatch")
    seat = _require_turn(match, actor_id)
    if seat in trick.cards_played:
        raise IllegalPlay("Already played in this trick")
    hand = t.hands.get(seat, [])
    if action.card not in hand:
        raise IllegalPlay("Card not in hand")
    if action.card not in legal_cards(hand, trick, stage.trump):
        raise IllegalPlay("Must follow suit")

    if not trick.cards_played:
        trick.lead_suit = effective_suit(action.card, stage.trump)
    trick.cards_played[seat] = action.card
    t.hands[seat] = [card for card in hand if card != action.card]
    t.touched.add(seat)
    match.turn = next_seat(seat)

    if len(trick.cards_played) == len(SEATS):
        _complete_trick(t)


def _complete_trick(t: Transition):
    match = t.match
    stage = match.stage
    trick = stage.trick
    winner = trick_winner(trick, stage.trump)
    stage.tricks_taken[team_of(winner)] += 1
    stage.trick_winners.append(winner)
    stage.last_trick = trick
    logger.debug("Match %s: trick %s won by %s", match.id, trick.trick_number, winner)

    if trick.trick_number >= TRICKS_PER_HAND:
        _finish_hand(t)
        return
    stage.trick = TrickRecord(trick_number=trick.trick_number + 1, lead_seat=winner)
    match.turn = winner


def _finish_hand(t: Transition):
    match = t.match
    stage = match.stage
    result = score_hand(match.hand_number, stage.maker_seat, stage.tricks_taken)
    match.score[result.scoring_team] += result.points
    match.last_hand = result
    logger.info(
        "Match %s: hand %s %s, %s +%s (score NS %s, EW %s)",
        match.id,
        result.hand_number,
        result.outcome,
        result.scoring_team,
        result.points,
        match.score["NS"],
        match.score["EW"],
    )
    match.winner = match_winner(match.score)
    match.stage = FinishedStage() if match.winner else LobbyStage()
    for seat in SEATS:
        if t.hands.get(seat):
            t.hands[seat] = []
            t.touched.add(seat)


_HANDLERS: Dict[str, Callable] = {
    "claim_seat": _claim_seat,
    "start_hand": _start_hand,
    "order_up": _order_up,
    "pass": _pass,
    "call_trump": _call_trump,
    "discard": _discard,
    "play_card": _play_card,
}


# ----------------------------------------------------------------------
# Views
# ----------------------------------------------------------------------
def hand_counts(match: MatchRecord) -> Dict[Seat, int]:
    stage = match.stage
    if stage.phase in ("lobby", "finished"):
        return {seat: 0 for seat in SEATS}
    if stage.phase != "playing":
        return {seat: HAND_SIZE for seat in SEATS}
    completed = len(stage.trick_winners)
    return {
        seat: HAND_SIZE - completed - (1 if seat in stage.trick.cards_played else 0)
        for seat in SEATS
    }


def to_state(match: MatchRecord, viewer_id: Optional[str], hand: Optional[List[Card]] = None) -> GameState:
    """Project the match for one viewer. Only ``hand`` (the viewer's own) is exposed."""
    stage = match.stage
    my_seat = seat_of(match, viewer_id)
    counts = hand_counts(match)
    seats = []
    for seat in SEATS:
        occupant = match.seats.get(seat)
        player = match.players.get(occupant) if occupant else None
        seats.append(
            SeatView(
                seat=seat,
                team=team_of(seat),
                player_id=occupant,
                name=player.name if player else None,
                hand_count=counts[seat],
            )
        )

    state = GameState(
        match_id=match.id,
        room_name=match.name,
        version=match.version,
        phase=match.phase,
        seats=seats,
        me=match.players.get(viewer_id) if viewer_id else None,
        dealer=match.dealer,
        turn=match.turn if stage.phase not in ("lobby", "finished") else None,
        score=dict(match.score),
        hand_number=match.hand_number,
        hand=list(hand) if hand is not None and my_seat else None,
        winner=match.winner,
        last_hand=match.last_hand,
    )
    if isinstance(stage, (BiddingStage, DiscardStage, PlayingStage)):
        state.upcard = stage.upcard
        state.kitty_count = len(stage.kitty)
        state.bidding = stage.bidding
    if isinstance(stage, (DiscardStage, PlayingStage)):
        state.trump = stage.trump
        state.maker_seat = stage.maker_seat
    if isinstance(stage, PlayingStage):
        state.trick = stage.trick
        state.last_trick = stage.last_trick
        state.tricks_taken = dict(stage.tricks_taken)
        state.trick_winners = list(stage.trick_winners)
        if hand and my_seat == match.turn and my_seat not in stage.trick.cards_played:
            state.legal_cards = [card.id for card in legal_cards(hand, stage.trick, stage.trump)]
    if isinstance(stage, DiscardStage) and hand is not None and my_seat == match.dealer:
        state.discard_candidates = [*hand, stage.upcard]
    return state
