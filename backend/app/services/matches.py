from __future__ import annotations

import logging
import random
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import game
from app.database import AsyncSessionMaker, HandRow, MatchResultRow, MatchRow
from errors import EuchreError, MatchNotFound, WriteConflict
from models import Card, MatchRecord, Player, Seat

logger = logging.getLogger(__name__)


class MatchTransaction:
    """One read-validate-write unit against a freshly read snapshot.

    ``stage`` records the transition to write; the enclosing
    :meth:`MatchStore.transaction` commits it only if nobody else wrote the
    match in between.
    """

    def __init__(self, snapshot: game.TableSnapshot, hand_rows: Dict[str, HandRow]):
        self.snapshot = snapshot
        self.expected_version = snapshot.match.version
        self.hand_rows = hand_rows
        self.staged: Optional[game.Transition] = None

    def stage(self, transition: game.Transition) -> None:
        self.staged = transition


class MatchStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession] = AsyncSessionMaker):
        self._session_maker = session_maker

    async def create_match(self, room_name: str, host: Player) -> MatchRecord:
        match = game.new_match(str(uuid.uuid4())[:8], room_name, host)
        async with self._session_maker() as session:
            async with session.begin():
                session.add(MatchRow(id=match.id, version=match.version, payload=match.model_dump(mode="json")))
        logger.info("Match %s created by %s", match.id, host.id)
        return match

    async def load(self, match_id: str) -> MatchRecord:
        async with self._session_maker() as session:
            row = await self._get_match_row(session, match_id)
            return self._to_record(row)

    async def load_hand(self, match_id: str, viewer_id: Optional[str]) -> Optional[List[Card]]:
        """Return the hand owned by ``viewer_id``; nobody else's hand is readable."""
        if not viewer_id:
            return None
        async with self._session_maker() as session:
            match = self._to_record(await self._get_match_row(session, match_id))
            seat = game.seat_of(match, viewer_id)
            if seat is None:
                return None
            result = await session.execute(
                select(HandRow).where(
                    HandRow.match_id == match_id,
                    HandRow.seat == seat,
                    HandRow.owner_id == viewer_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return []
            return [Card.model_validate(card) for card in row.cards]

    @asynccontextmanager
    async def transaction(self, match_id: str) -> AsyncIterator[MatchTransaction]:
        async with self._session_maker() as session:
            try:
                row = await self._get_match_row(session, match_id)
                result = await session.execute(select(HandRow).where(HandRow.match_id == match_id))
                hand_rows = {hand.seat: hand for hand in result.scalars().all()}
                snapshot = game.TableSnapshot(
                    match=self._to_record(row),
                    hands={
                        seat: [Card.model_validate(card) for card in hand.cards]
                        for seat, hand in hand_rows.items()
                    },
                )
                tx = MatchTransaction(snapshot, hand_rows)
                yield tx
                if tx.staged is not None:
                    await self._write(session, tx)
                    await session.commit()
            except (OperationalError, IntegrityError) as exc:
                await session.rollback()
                if isinstance(exc, OperationalError) and "locked" not in str(exc).lower():
                    raise
                logger.warning("Match %s: write conflict (%s)", match_id, exc.__class__.__name__)
                raise WriteConflict(f"Match {match_id} was modified concurrently") from exc
            except BaseException:
                await session.rollback()
                raise

    async def apply(
        self,
        match_id: str,
        actor_id: str,
        action,
        *,
        rng: Optional[random.Random] = None,
    ) -> MatchRecord:
        """Apply one action atomically. Rule errors and conflicts are raised, never retried."""
        try:
            async with self.transaction(match_id) as tx:
                tx.stage(game.apply_action(tx.snapshot, actor_id, action, rng=rng))
        except EuchreError as exc:
            logger.debug("Match %s: %s by %s rejected: %s", match_id, action.type, actor_id, exc)
            raise
        match = tx.staged.match
        logger.info("Match %s: %s by %s committed (version %s)", match_id, action.type, actor_id, match.version)
        return match

    async def _write(self, session: AsyncSession, tx: MatchTransaction) -> None:
        transition = tx.staged
        match = transition.match
        match.version = tx.expected_version + 1
        result = await session.execute(
            update(MatchRow)
            .where(MatchRow.id == match.id, MatchRow.version == tx.expected_version)
            .values(version=match.version, payload=match.model_dump(mode="json"))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Match %s: stale version %s", match.id, tx.expected_version)
            raise WriteConflict(f"Match {match.id} was modified concurrently")

        for seat in sorted(transition.touched):
            self._write_hand(session, tx, match, seat, transition.hands.get(seat, []))

        if match.winner and tx.snapshot.match.winner is None:
            session.add(
                MatchResultRow(
                    match_id=match.id,
                    winner_team=match.winner,
                    score_ns=match.score["NS"],
                    score_ew=match.score["EW"],
                    hands_played=match.hand_number,
                    players={seat: match.seats.get(seat) for seat in match.seats},
                )
            )
            logger.info("Match %s finished: %s wins %s-%s", match.id, match.winner, match.score["NS"], match.score["EW"])
        await session.flush()

    def _write_hand(self, session: AsyncSession, tx: MatchTransaction, match: MatchRecord, seat: Seat, cards: List[Card]):
        owner_id = match.seats.get(seat)
        payload = [card.model_dump(mode="json") for card in cards]
        row = tx.hand_rows.get(seat)
        if row is None:
            session.add(HandRow(match_id=match.id, seat=seat, owner_id=owner_id, cards=payload))
        else:
            row.owner_id = owner_id
            row.cards = payload

    async def _get_match_row(self, session: AsyncSession, match_id: str) -> MatchRow:
        result = await session.execute(select(MatchRow).where(MatchRow.id == match_id))
        row = result.scalar_one_or_none()
        if row is None:
            raise MatchNotFound(match_id)
        return row

    @staticmethod
    def _to_record(row: MatchRow) -> MatchRecord:
        match = MatchRecord.model_validate(row.payload)
        match.version = row.version
        return match
