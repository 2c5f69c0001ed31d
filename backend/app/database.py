"""
Document store for matches.

One JSON match record per game (with a version column used for
compare-and-set), one private hand row per seat, and an archive row per
finished match.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.settings import settings

DATABASE_URL = settings.database_url


data_engine = create_async_engine(DATABASE_URL, future=True, echo=settings.sql_echo)
AsyncSessionMaker = async_sessionmaker(data_engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


class MatchRow(Base):
    __tablename__ = "matches"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class HandRow(Base):
    __tablename__ = "hands"

    match_id: Mapped[str] = mapped_column(String, primary_key=True)
    seat: Mapped[str] = mapped_column(String(1), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    cards: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)


class MatchResultRow(Base):
    __tablename__ = "match_results"

    match_id: Mapped[str] = mapped_column(String, primary_key=True)
    winner_team: Mapped[str] = mapped_column(String(2), nullable=False)
    score_ns: Mapped[int] = mapped_column(Integer, nullable=False)
    score_ew: Mapped[int] = mapped_column(Integer, nullable=False)
    hands_played: Mapped[int] = mapped_column(Integer, nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    players: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)


async def init_db() -> None:
    async with data_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
