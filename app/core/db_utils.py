"""
Database utilities for connection management and error handling
"""
import asyncio
import functools
import logging
from typing import Callable, Any, TypeVar, cast, Awaitable

from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings

logger = logging.getLogger(__name__)

# Define a type variable for the return type of the decorated function
T = TypeVar('T')

CONNECTION_ERROR_NAMES = (
    "ConnectionError", "OperationalError",
    "ConnectionDoesNotExistError", "ConnectionRefusedError",
)

def is_connection_error(exc: BaseException) -> bool:
    error_name = type(exc).__name__
    return any(err in error_name for err in CONNECTION_ERROR_NAMES)

def has_pending_writes(session: AsyncSession) -> bool:
    return bool(session.new or session.dirty or session.deleted)

def with_db_retry(
    max_retries: int = settings.DB_RETRY_ATTEMPTS,
    retry_delay: float = settings.DB_RETRY_DELAY
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator that retries read-only database operations on connection errors.

    Only apply it to queries: payment and toggle writes are not safe to replay.
    A session holding unflushed changes is never rolled back; the error is
    re-raised instead. Flushed but uncommitted writes are invisible here, so
    reads inside a write flow use the non-retrying helpers.

    Args:
        max_retries: Maximum number of retries before giving up
        retry_delay: Delay between retries in seconds

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            retries = 0
            last_error = None

            while retries <= max_retries:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not is_connection_error(e):
                        # Not a connection error, re-raise immediately
                        raise
                    sessions = [arg for arg in (*args, *kwargs.values()) if isinstance(arg, AsyncSession)]
                    if any(has_pending_writes(session) for session in sessions):
                        # Rolling back here would drop the caller's unflushed changes
                        logger.error(f"Database connection error in {func.__name__} during a write, not retrying: {e}")
                        raise
                    retries += 1
                    last_error = e

                    # A failed statement leaves the session needing a rollback before reuse
                    for session in sessions:
                        await session.rollback()

                    if retries <= max_retries:
                        delay = retry_delay * (2 ** (retries - 1))  # Exponential backoff
                        logger.warning(
                            f"Database connection error in {func.__name__}: {str(e)}. "
                            f"Retrying in {delay:.2f}s... (Attempt {retries}/{max_retries})"
                        )
                        await asyncio.sleep(delay)

            logger.error(f"Database operation {func.__name__} failed after {max_retries} retries: {last_error}")
            if last_error:
                raise last_error
            raise RuntimeError("Database operation failed with unknown error")

        return cast(Callable[..., Awaitable[T]], wrapper)

    return decorator
