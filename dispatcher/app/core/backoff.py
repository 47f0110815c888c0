"""Backoff utilities.

`exponential_backoff` hands out one delay per attempt and sleeps between
attempts (never after the last one). `retry_with_backoff` drives an async call
through it and re-raises the last error once the attempts run out.
"""
import asyncio
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
) -> AsyncIterator[float]:
    delay = initial_delay
    attempt = 0
    while attempt < max_attempts:
        attempt += 1
        yield delay
        if attempt == max_attempts:
            return
        delay = min(delay * multiplier, max_delay)
        await asyncio.sleep(delay)


async def retry_with_backoff(
    call: Callable[[], Awaitable[T]],
    *,
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
    operation: str = "operation",
) -> T:
    attempt = 0
    async for _delay in exponential_backoff(initial_delay, max_delay, multiplier, max_attempts):
        attempt += 1
        try:
            return await call()
        except Exception as exc:
            logger.warning("{} failed (attempt {}/{}): {}", operation, attempt, max_attempts, exc)
            if attempt >= max_attempts:
                raise
    raise RuntimeError(f"{operation} was not attempted (max_attempts={max_attempts})")
