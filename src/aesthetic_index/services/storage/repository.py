"""Shared async repository helpers for SQLModel session work."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Generic, TypeVar

import structlog
from sqlalchemy.exc import OperationalError
from sqlmodel import Session
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from aesthetic_index.core.config import StorageConfig
from aesthetic_index.core.errors import OperationTimeoutError, TransientStorageError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    TimeoutError,
    ConnectionError,
    TransientStorageError,
)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "storage_retry",
        attempt=retry_state.attempt_number,
        error=str(error),
    )


class AsyncRepository(Generic[T]):
    """Wrap sync SQLModel session work for async callers.

    Each call runs in its own Session on a worker thread, bounded by the
    operation timeout and retried with exponential backoff on transient errors.
    """

    def __init__(self, engine: Engine, config: StorageConfig | None = None) -> None:
        self._engine = engine
        self._storage_config = config or StorageConfig()

    def _retrying(self, retry_timeouts: bool = True) -> AsyncRetrying:
        cfg = self._storage_config
        retry = retry_if_exception_type(TRANSIENT_ERRORS)
        if not retry_timeouts:
            retry = retry & retry_if_not_exception_type((OperationTimeoutError, TimeoutError))
        return AsyncRetrying(
            stop=stop_after_attempt(cfg.retry_attempts),
            wait=wait_exponential(
                multiplier=cfg.retry_min_wait_seconds,
                min=cfg.retry_min_wait_seconds,
                max=cfg.retry_max_wait_seconds,
            ),
            retry=retry,
            before_sleep=_log_retry,
            reraise=True,
        )

    async def _attempt(self, fn: Callable[[Session], T]) -> T:
        def _run() -> T:
            with Session(self._engine) as session:
                return fn(session)

        timeout = self._storage_config.operation_timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(_run), timeout=timeout)
        except TimeoutError as e:
            msg = f"Storage operation exceeded {timeout}s"
            raise OperationTimeoutError(msg) from e

    async def _run_session(self, fn: Callable[[Session], T], retry_timeouts: bool = True) -> T:
        """Run a sync function inside a Session on a worker thread.

        A timed-out attempt keeps running on its thread and may still commit,
        so work that is not idempotent passes `retry_timeouts=False` and gets
        the OperationTimeoutError instead of a second attempt.
        """
        return await self._retrying(retry_timeouts)(self._attempt, fn)
