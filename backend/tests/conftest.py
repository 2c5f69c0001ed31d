import os
import tempfile

import pytest

os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.mkdtemp(prefix='euchre-'), 'test.db')}",
)

from game import TableSnapshot, apply_action, new_match  # noqa: E402
from models import Card, ClaimSeat, Player  # noqa: E402

PLAYERS = {"N": "pN", "E": "pE", "S": "pS", "W": "pW"}


def card(code: str) -> Card:
    return Card.model_validate(code)


def seated_table() -> TableSnapshot:
    snapshot = TableSnapshot(match=new_match("m1", "Test", Player(id="pN", name="North")))
    for seat in ("E", "S", "W"):
        snapshot = apply_action(snapshot, PLAYERS[seat], ClaimSeat(seat=seat, name=seat)).snapshot
    return snapshot


class NoShuffle:
    """Random stand-in that keeps the deck in construction order."""

    def shuffle(self, seq):
        return None


@pytest.fixture
def table() -> TableSnapshot:
    return seated_table()
