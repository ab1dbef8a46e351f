from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncSession

from debrief_service.core.logging import get_logger

T = TypeVar('T')

logger = get_logger(__name__)

# Messages drivers/ORMs raise when a transaction is opened inside another one
NESTED_TRANSACTION_SIGNATURES = (
    "cannot start a transaction within a transaction",
    "transaction is already begun",
    "already in a transaction",
    "nested transactions are not supported",
)


def is_nested_transaction_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(signature in message for signature in NESTED_TRANSACTION_SIGNATURES)


async def run_in_transaction(
    session: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    supports_nested: bool = True,
    event: str = "transaction_fallback",
    **log_context,
) -> T:
    """Run ``work`` atomically when the session can open a unit for it.

    - session idle: ``BEGIN``/``COMMIT`` around the work
    - session already in a transaction: ``SAVEPOINT`` when ``supports_nested``
    - otherwise, or when the backend rejects ``begin()`` as a nested
      transaction, the same work runs without a wrapper and a warning is
      logged. The caller's enclosing transaction then owns the commit.
    """
    if session.in_transaction() and not supports_nested:
        logger.warning(event, reason="nested_transactions_unsupported", **log_context)
        return await work()

    try:
        if session.in_transaction():
            transaction = await session.begin_nested()
        else:
            transaction = await session.begin()
    except InvalidRequestError as exc:
        if not is_nested_transaction_error(exc):
            raise
        logger.warning(event, reason="transaction_rejected", error=str(exc), **log_context)
        return await work()

    try:
        result = await work()
    except BaseException:
        await transaction.rollback()
        raise
    await transaction.commit()
    return result


@asynccontextmanager
async def savepoint(session: AsyncSession, *, enabled: bool = True) -> AsyncIterator[None]:
    """Scope a failure to the enclosed statements when SAVEPOINTs are available."""
    if enabled and session.in_transaction():
        async with session.begin_nested():
            yield
    else:
        yield
