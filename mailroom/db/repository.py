"""Persistence of per-recipient send results."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailroom.db.models import SentEmail
from mailroom.models import SendResult


class SendResultRepository:
    """Writes one row per successful send; each write commits on its own."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, result: SendResult) -> SentEmail:
        row = SentEmail(**result.model_dump())
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
        return row

    async def list_by_sender(self, sender_id: str, *, offset: int = 0, limit: int = 50) -> list[SentEmail]:
        stmt = (
            select(SentEmail)
            .where(SentEmail.sender_id == sender_id)
            .order_by(SentEmail.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())
