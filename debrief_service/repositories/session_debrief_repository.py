"""Repository for SessionDebrief: version allocation, supersession and inserts."""
from __future__ import annotations
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import and_, desc, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from debrief_service.db.chunking import (
    DEFAULT_PARAMETER_LIMIT,
    chunked_insert,
    where_in_chunks,
)
from debrief_service.models.session_debrief import SessionDebrief


class SessionDebriefRepository:
    """Data access for session debriefs.

    Never deletes rows. The only updates are flag and interaction-timestamp
    changes; ``version`` and ``summary`` are written once at insert.
    """

    def __init__(self, session: AsyncSession, parameter_limit: int = DEFAULT_PARAMETER_LIMIT):
        self._session = session
        self._parameter_limit = parameter_limit

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_for_user(self, debrief_id: int, user_id: str, session_id: int) -> SessionDebrief | None:
        result = await self._session.execute(
            select(SessionDebrief).where(
                and_(
                    SessionDebrief.id == debrief_id,
                    SessionDebrief.user_id == user_id,
                    SessionDebrief.session_id == session_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_active(self, user_id: str, session_id: int) -> SessionDebrief | None:
        """Current active debrief, highest version first if more than one is flagged."""
        result = await self._session.execute(
            select(SessionDebrief)
            .where(
                and_(
                    SessionDebrief.user_id == user_id,
                    SessionDebrief.session_id == session_id,
                    SessionDebrief.is_active.is_(True),
                )
            )
            .order_by(desc(SessionDebrief.version))
            .limit(1)
        )
        return result.scalars().first()

    async def get_active_for_sessions(self, user_id: str, session_ids: Sequence[int]) -> dict[int, SessionDebrief]:
        """Active debrief per session for many sessions in one query per id chunk."""

        async def _query(chunk: list[int]) -> list[SessionDebrief]:
            result = await self._session.execute(
                select(SessionDebrief)
                .where(
                    and_(
                        SessionDebrief.user_id == user_id,
                        SessionDebrief.session_id.in_(chunk),
                        SessionDebrief.is_active.is_(True),
                    )
                )
                .order_by(SessionDebrief.session_id, SessionDebrief.version)
            )
            return list(result.scalars().all())

        rows = await where_in_chunks(list(session_ids), _query, chunk_size=self._in_chunk_size())
        # Ascending version order, so the highest version wins
        return {row.session_id: row for row in rows}

    async def get_next_version(self, user_id: str, session_id: int) -> int:
        result = await self._session.execute(
            select(func.max(SessionDebrief.version)).where(
                and_(
                    SessionDebrief.user_id == user_id,
                    SessionDebrief.session_id == session_id,
                )
            )
        )
        return (result.scalar() or 0) + 1

    async def get_max_versions(self, user_id: str, session_ids: Sequence[int]) -> dict[int, int]:
        """Highest existing version per session; sessions without debriefs map to 0."""

        async def _query(chunk: list[int]) -> list[Any]:
            result = await self._session.execute(
                select(SessionDebrief.session_id, func.max(SessionDebrief.version))
                .where(
                    and_(
                        SessionDebrief.user_id == user_id,
                        SessionDebrief.session_id.in_(chunk),
                    )
                )
                .group_by(SessionDebrief.session_id)
            )
            return list(result.all())

        versions = {session_id: 0 for session_id in session_ids}
        for session_id, max_version in await where_in_chunks(
            list(session_ids), _query, chunk_size=self._in_chunk_size()
        ):
            versions[session_id] = max_version or 0
        return versions

    async def list_by_session(
        self,
        user_id: str,
        session_id: int,
        include_inactive: bool = False,
        limit: int = 10,
    ) -> list[SessionDebrief]:
        query = select(SessionDebrief).where(
            and_(
                SessionDebrief.user_id == user_id,
                SessionDebrief.session_id == session_id,
            )
        )
        if not include_inactive:
            query = query.where(SessionDebrief.dismissed_at.is_(None))

        query = (
            query.order_by(desc(SessionDebrief.is_active), desc(SessionDebrief.version))
            .limit(limit)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_recent(self, user_id: str, limit: int = 10) -> list[SessionDebrief]:
        result = await self._session.execute(
            select(SessionDebrief)
            .where(
                and_(
                    SessionDebrief.user_id == user_id,
                    SessionDebrief.dismissed_at.is_(None),
                )
            )
            .order_by(desc(SessionDebrief.is_active), desc(SessionDebrief.created_at))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_versions(self, user_id: str, session_id: int) -> list[SessionDebrief]:
        """Every version for a session, oldest first."""
        result = await self._session.execute(
            select(SessionDebrief)
            .where(
                and_(
                    SessionDebrief.user_id == user_id,
                    SessionDebrief.session_id == session_id,
                )
            )
            .order_by(SessionDebrief.version)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Supersession
    # ------------------------------------------------------------------

    async def deactivate(self, debrief_ids: Iterable[int]) -> None:
        """Flip ``is_active`` off for all ids with one grouped UPDATE."""
        await self._set_active(debrief_ids, False)

    async def reactivate(self, debrief_ids: Iterable[int]) -> None:
        await self._set_active(debrief_ids, True)

    async def _set_active(self, debrief_ids: Iterable[int], is_active: bool) -> None:
        ids = list(dict.fromkeys(debrief_ids))
        if not ids:
            return

        async def _update(chunk: list[int]) -> None:
            await self._session.execute(
                update(SessionDebrief)
                .where(SessionDebrief.id.in_(chunk))
                .values(is_active=is_active, updated_at=datetime.utcnow())
                .execution_options(synchronize_session="fetch")
            )

        await where_in_chunks(ids, _update, chunk_size=self._in_chunk_size())

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    async def insert_one(self, payload: Mapping[str, Any]) -> SessionDebrief:
        debrief = SessionDebrief(**payload)
        self._session.add(debrief)
        await self._session.flush()
        await self._session.refresh(debrief)
        return debrief

    async def insert_many(self, payloads: Sequence[Mapping[str, Any]]) -> list[SessionDebrief]:
        """Insert all payloads with a single statement."""
        if not payloads:
            return []
        result = await self._session.scalars(
            insert(SessionDebrief).returning(SessionDebrief, sort_by_parameter_order=True),
            [dict(payload) for payload in payloads],
        )
        return list(result.all())

    async def insert_chunked(
        self,
        payloads: Sequence[Mapping[str, Any]],
        parameter_limit: int | None = None,
        inserted: list[SessionDebrief] | None = None,
    ) -> list[SessionDebrief]:
        """Insert payloads in statements that stay under the parameter budget.

        Rows are appended to ``inserted`` as each statement succeeds, so a
        caller can tell which chunks landed when a later one fails.
        """
        async def _insert(chunk: list[Mapping[str, Any]]) -> list[SessionDebrief]:
            rows = await self.insert_many(chunk)
            if inserted is not None:
                inserted.extend(rows)
            return rows

        return await chunked_insert(
            payloads,
            _insert,
            parameter_limit=parameter_limit or self._parameter_limit,
        )

    # ------------------------------------------------------------------
    # Reader interaction
    # ------------------------------------------------------------------

    async def update_fields(self, debrief: SessionDebrief, **values: Any) -> SessionDebrief:
        for key, value in values.items():
            setattr(debrief, key, value)
        debrief.updated_at = datetime.utcnow()
        await self._session.flush()
        return debrief

    def _in_chunk_size(self) -> int:
        # Leave room for the non-IN parameters of the statement
        return max(1, self._parameter_limit - 2)
