from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from debrief_service.core.exceptions import NotFoundError

T = TypeVar("T")


class BaseService:
    def __init__(self, session: AsyncSession):
        self._session = session

    def _require(self, entity: str, value: T | None, details: dict | None = None) -> T:
        if value is None:
            raise NotFoundError(entity, f"{entity.replace('_', ' ').capitalize()} not found", details)
        return value
