# db.py
"""
Audit Store – async persistence of settled chain activity

Responsibilities:
- Async database engine & session lifecycle
- Append-only record of every emitted chain event
- One row per settled spin for player history queries

Chain state itself lives in memory; this is the audit trail the
service writes after each successful transaction.
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any, AsyncGenerator, Iterable, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    func,
    select,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)
from sqlalchemy.pool import NullPool

from slotchain.chain import Event

# =====================================================
# CONFIG
# =====================================================

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+aiosqlite:///./slotchain.db"
)

DB_ECHO = os.getenv("DB_ECHO", "").lower() in ("1", "true", "yes")


# =====================================================
# BASE
# =====================================================

class Base(DeclarativeBase):
    pass


# =====================================================
# MODELS
# =====================================================

class ChainEvent(Base):
    """
    Immutable event record (append-only).
    Payload is the event args as JSON; 256-bit ints are stored as strings.
    """

    __tablename__ = "chain_events"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    name: Mapped[str] = mapped_column(
        String(64),
        index=True,
        nullable=False,
    )

    contract: Mapped[str] = mapped_column(
        String(42),
        index=True,
        nullable=False,
    )

    block_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    tx_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class SpinRecord(Base):
    __tablename__ = "spins"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    machine: Mapped[str] = mapped_column(
        String(42),
        index=True,
        nullable=False,
    )

    player: Mapped[str] = mapped_column(
        String(42),
        index=True,
        nullable=False,
    )

    # "0,1,3" – Bar, Cherries, Logo
    reels: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
    )

    # Smallest units (6 decimals)
    bet_amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    payout: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    won_jackpot: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # 256-bit seed does not fit an integer column
    random_seed: Mapped[str] = mapped_column(
        String(80),
        nullable=False,
    )

    block_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


# =====================================================
# ENGINE & SESSION
# =====================================================

engine = create_async_engine(
    DATABASE_URL,
    echo=DB_ECHO,
    # sqlite connections must not outlive the event loop that opened them
    **({"poolclass": NullPool} if DATABASE_URL.startswith("sqlite") else {}),
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


# =====================================================
# INIT
# =====================================================

async def init_db() -> None:
    """
    Creates all tables. Safe to run on every startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# =====================================================
# REPOSITORY HELPERS
# =====================================================

def _jsonable(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        # JSON consumers lose precision past 2**53
        return str(value) if abs(value) > 2 ** 53 else value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


async def record_events(session: AsyncSession, events: Iterable[Event]) -> int:
    """
    Persist one transaction's events in a single commit.
    Returns the number of event rows written.
    """
    count = 0
    for event in events:
        session.add(ChainEvent(
            name=event.name,
            contract=event.address,
            block_number=event.block_number,
            tx_index=event.tx_index,
            payload=json.dumps(_jsonable(event.args)),
        ))
        count += 1

        if event.name == "SpinSettled":
            args = event.args
            session.add(SpinRecord(
                machine=event.address,
                player=args["player"],
                reels=",".join(str(r) for r in args["reels"]),
                bet_amount=args["bet_amount"],
                payout=args["payout"],
                won_jackpot=args["won_jackpot"],
                random_seed=str(args["random_seed"]),
                block_number=event.block_number,
            ))

    await session.commit()
    return count


async def list_spins(
    session: AsyncSession,
    player: str,
    machine: Optional[str] = None,
    limit: int = 50,
) -> List[SpinRecord]:
    """Newest first."""
    query = select(SpinRecord).where(SpinRecord.player == player)
    if machine:
        query = query.where(SpinRecord.machine == machine)
    query = query.order_by(SpinRecord.id.desc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def list_events(
    session: AsyncSession,
    name: Optional[str] = None,
    limit: int = 100,
) -> List[ChainEvent]:
    query = select(ChainEvent)
    if name:
        query = query.where(ChainEvent.name == name)
    query = query.order_by(ChainEvent.id.desc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())
