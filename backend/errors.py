from __future__ import annotations


class EuchreError(ValueError):
    """Rule violation raised by the engine before anything is written.

    Not retryable: resubmitting the same action against the same state fails
    the same way.
    """

    code = "rule_violation"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SeatConflict(EuchreError):
    code = "seat_conflict"


class OutOfTurn(EuchreError):
    code = "out_of_turn"


class PhaseMismatch(EuchreError):
    code = "phase_mismatch"


class IllegalBid(EuchreError):
    code = "illegal_bid"


class IllegalDiscard(EuchreError):
    code = "illegal_discard"


class IllegalPlay(EuchreError):
    code = "illegal_play"


class MatchFinished(EuchreError):
    code = "match_finished"


class WriteConflict(RuntimeError):
    """A concurrent writer committed first. The caller may resubmit."""

    code = "write_conflict"


class MatchNotFound(LookupError):
    code = "match_not_found"
